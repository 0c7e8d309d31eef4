# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains the Configuration class used to specify predefined macros and
include options for a preprocessing session.
"""
from __future__ import annotations

import os
from pathlib import Path

# Macros that every Objective-C translation unit sees.
# Values are lexed, so string values must carry their own quotes.
STANDARD_MACROS = {
    "__STDC__": "1",
    "__STDC_VERSION__": "201112L",
    "__STDC_HOSTED__": "1",
    "__OBJC__": "1",
    "__OBJC2__": "1",
    "__APPLE__": "1",
    "__MACH__": "1",
    "__GNUC__": "4",
    "__clang__": "1",
    "__LINE__": "1",
    "__FILE__": '"file"',
    "__DATE__": '"??? ?? ????"',
    "__TIME__": '"??:??:??"',
}


class Configuration:
    """
    Represents the settings shared by every file of one analysis:
    - Macros defined before any source is read
    - Paths searched when classifying include directives
    - The encoding used to read source files
    """

    def __init__(
        self,
        *,
        defines: list[str] | None = None,
        include_paths: list[str | os.PathLike[str]] | None = None,
        standard_macros: bool = True,
        encoding: str = "utf-8",
    ) -> None:
        self._defines: list[str]
        if defines is None:
            self._defines = []
        elif not isinstance(defines, list) or not all(
            [isinstance(d, str) for d in defines],
        ):
            raise TypeError("'defines' must be a list of strings.")
        else:
            self._defines = list(defines)

        self._include_paths: list[Path]
        if include_paths is None:
            self._include_paths = []
        elif not isinstance(include_paths, list) or not all(
            [isinstance(p, (str, os.PathLike)) for p in include_paths],
        ):
            raise TypeError(
                "Each path in 'include_paths' must be PathLike.",
            )
        else:
            self._include_paths = [Path(p) for p in include_paths]

        if not isinstance(encoding, str):
            raise TypeError("'encoding' must be a string.")
        self.encoding = encoding

        self.standard_macros: dict[str, str] = {}
        if standard_macros:
            self.standard_macros = dict(STANDARD_MACROS)

    @classmethod
    def from_environment(cls, environ: dict[str, str] | None = None):
        """
        Build a Configuration from OBJCSCAN_DEFINES (whitespace separated)
        and OBJCSCAN_INCLUDE_PATH (os.pathsep separated).
        """
        if environ is None:
            environ = dict(os.environ)
        defines = environ.get("OBJCSCAN_DEFINES", "").split()
        include_paths: list[str | os.PathLike[str]] = [
            p for p in environ.get("OBJCSCAN_INCLUDE_PATH", "").split(os.pathsep)
            if p
        ]
        return cls(defines=defines, include_paths=include_paths)

    @property
    def defines(self) -> list[str]:
        return list(self._defines)

    @property
    def include_paths(self) -> list[Path]:
        return list(self._include_paths)

    def define(self, definition: str) -> None:
        """
        Add a definition of the form NAME, NAME=value or NAME(args)=value.
        """
        if not isinstance(definition, str):
            raise TypeError("'definition' must be a string.")
        self._defines.append(definition)

    def undefine(self, name: str) -> None:
        """
        Remove every definition of `name`, including a standard macro.
        """
        self._defines = [d for d in self._defines if _define_name(d) != name]
        self.standard_macros.pop(name, None)

    def add_include_path(self, path: str | os.PathLike[str]) -> None:
        """
        Insert a new path into the list of include paths.
        """
        self._include_paths.append(Path(path))


def _define_name(definition: str) -> str:
    """
    Return the macro name of a NAME[(args)][=value] definition string.
    """
    end = len(definition)
    for c in ["(", "="]:
        idx = definition.find(c)
        if idx != -1:
            end = min(end, idx)
    return definition[:end].strip()
