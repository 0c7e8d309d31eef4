# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains classes and functions for turning physical lines of Objective-C
source into logical lines: comments are replaced by whitespace and
backslash-newline continuations are joined.
"""
from __future__ import annotations

import itertools as it
import logging
from collections.abc import Generator, Iterable, Iterator
from typing import Any

log = logging.getLogger(__name__)


class logical_line:
    """
    A logical line of code, built from one or more physical lines.
    Whitespace is kept as-is so that columns in the first physical line
    survive; each comment becomes a single space.
    """

    def __init__(self, start_line: int = 1) -> None:
        self.parts: list[str] = []
        self.start_line = start_line
        self.end_line = start_line
        self.physical_lines: list[int] = []

    def append(self, c: str) -> None:
        if c.isspace():
            c = " "
        self.parts.append(c)

    def append_space(self) -> None:
        """
        Append whitespace in place of a comment, unless the line already
        ends in a space.
        """
        if not self.parts or self.parts[-1] != " ":
            self.parts.append(" ")

    def add_physical_line(self, line: int) -> None:
        self.physical_lines.append(line)
        self.end_line = line

    def text(self) -> str:
        return "".join(self.parts).rstrip()

    def category(self) -> str:
        """
        Report a category for this line:
        * BLANK if it is empty or only whitespace.
        * CPP_DIRECTIVE if it is a preprocessor directive.
        * SRC_NONBLANK otherwise.
        """
        stripped = self.text().lstrip()
        if not stripped:
            return "BLANK"
        if stripped[0] == "#":
            return "CPP_DIRECTIVE"
        return "SRC_NONBLANK"

    def __repr__(self) -> str:
        return (
            f"logical_line(start_line={self.start_line!r},"
            f"end_line={self.end_line!r},text={self.text()!r})"
        )


class iter_keep1:
    """
    An iterator wrapper that allows a single item to be 'put back'
    and picked up for the next iteration.
    """

    def __init__(self, iterable: Iterable) -> None:
        self.iterator = iter(iterable)
        self.single = None

    def __iter__(self) -> iter_keep1:
        return self

    def __next__(self) -> Any:
        if self.single is not None:
            res, self.single = self.single, None
            return res
        return next(self.iterator)

    def putback(self, item: Any) -> None:
        if self.single is not None:
            raise RuntimeError(
                "iter_keep1 can only have one item put back at a time!",
            )
        self.single = item


class c_cleaner:
    """
    Approximation of translation phases 2 and 3 of a C preprocessor.
    Removes comments while leaving string and character literals intact.
    State is kept across physical lines and cleared with logical_newline.
    """

    def __init__(self) -> None:
        self.state = ["TOPLEVEL"]

    def logical_newline(self, outbuf: logical_line) -> None:
        """
        Reset state when a newline without continuation is found.
        """
        top = self.state[-1]
        if top == "IN_INLINE_COMMENT":
            self.state = ["TOPLEVEL"]
            outbuf.append_space()
        elif top == "FOUND_SLASH":
            self.state = ["TOPLEVEL"]
            outbuf.append("/")
        elif top in ["SINGLE_QUOTATION", "DOUBLE_QUOTATION", "ESCAPING"]:
            log.debug("unterminated literal at end of line")
            self.state = ["TOPLEVEL"]

    def in_block_comment(self) -> bool:
        return self.state[-1] in [
            "IN_BLOCK_COMMENT",
            "IN_BLOCK_COMMENT_FOUND_STAR",
        ]

    def process(self, chars: Iterator[str], outbuf: logical_line) -> None:
        """
        Add the characters in chars to outbuf, stripping comments.
        """
        state = self.state
        inbuffer = iter_keep1(chars)
        for char in inbuffer:
            top = state[-1]
            if top == "TOPLEVEL":
                if char == "/":
                    state.append("FOUND_SLASH")
                elif char == '"':
                    state.append("DOUBLE_QUOTATION")
                    outbuf.append(char)
                elif char == "'":
                    state.append("SINGLE_QUOTATION")
                    outbuf.append(char)
                else:
                    outbuf.append(char)
            elif top in ["DOUBLE_QUOTATION", "SINGLE_QUOTATION"]:
                outbuf.parts.append(char)
                if char == "\\":
                    state.append("ESCAPING")
                elif (char == '"' and top == "DOUBLE_QUOTATION") or (
                    char == "'" and top == "SINGLE_QUOTATION"
                ):
                    state.pop()
            elif top == "ESCAPING":
                outbuf.parts.append(char)
                state.pop()
            elif top == "FOUND_SLASH":
                state.pop()
                if char == "/":
                    state.append("IN_INLINE_COMMENT")
                elif char == "*":
                    state.append("IN_BLOCK_COMMENT")
                else:
                    outbuf.append("/")
                    inbuffer.putback(char)
            elif top == "IN_BLOCK_COMMENT":
                if char == "*":
                    state.append("IN_BLOCK_COMMENT_FOUND_STAR")
            elif top == "IN_BLOCK_COMMENT_FOUND_STAR":
                if char == "/":
                    state.pop()
                    state.pop()
                    outbuf.append_space()
                elif char != "*":
                    state.pop()
            elif top == "IN_INLINE_COMMENT":
                return
            else:
                raise RuntimeError("Unknown parser state!")


def c_file_source(
    fp: Iterable[str],
) -> Generator[logical_line, None, tuple[int, int]]:
    """
    Process the lines of fp in terms of logical and physical lines of
    Objective-C code. Yield each non-blank logical line.
    Return the total number of non-blank physical lines and the total
    number of physical lines at exit.
    """
    cleaner = c_cleaner()
    curr_line = logical_line(1)

    total_sloc = 0
    physical_line_num = 0
    continued = False
    for physical_line_num, line in enumerate(fp, start=1):
        end = len(line)
        if end > 0 and line[end - 1] == "\n":
            end -= 1
        if end > 0 and line[end - 1] == "\r":
            end -= 1

        continued = end > 0 and line[end - 1] == "\\"
        if continued:
            end -= 1

        before = len(curr_line.parts)
        cleaner.process(it.islice(line, 0, end), curr_line)
        if "".join(curr_line.parts[before:]).strip():
            curr_line.add_physical_line(physical_line_num)
            total_sloc += 1

        if continued or cleaner.in_block_comment():
            continue

        cleaner.logical_newline(curr_line)
        if curr_line.category() != "BLANK":
            yield curr_line
        curr_line = logical_line(physical_line_num + 1)

    if curr_line.category() != "BLANK":
        yield curr_line

    if continued:
        log.warning("backslash-newline at end of file")
    if cleaner.in_block_comment():
        log.warning("unterminated comment at end of file")

    return (total_sloc, physical_line_num)
