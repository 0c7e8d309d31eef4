# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains classes that define:
- Tokens from lexing Objective-C source and directive lines
- The directive-line parser and the constant-expression evaluator
- Macros, the layered macro table and conditional-compilation state
- The macro expansion engine and the preprocessing session
"""
from __future__ import annotations

import collections
import contextlib
import io
import itertools as it
import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar

import numpy as np

from objcscan import util
from objcscan.config import Configuration
from objcscan.file_source import c_file_source

log = logging.getLogger(__name__)


def _representation_string(
    obj: Any,
    *,
    name: str | None = None,
    attrs: list[str] | None = None,
) -> str:
    """
    Helper function to build representation strings of the form:
    Name(attribute={attribute!r},...)
    """
    if not name:
        name = obj.__class__.__name__
    if not attrs:
        attrs = obj.__dict__
    properties = ",".join(f"{a}={getattr(obj, a)!r}" for a in attrs)
    return f"{name}({properties})"


class TokenError(ValueError):
    """
    Represents an error encountered during tokenization.
    """


class ParseError(ValueError):
    """
    Represents an error encountered during parsing.
    """


class EvaluationError(ParseError):
    """
    Represents a constant expression that could not be evaluated.
    """


class MismatchError(ValueError):
    """
    Represents a macro invocation whose arguments could not be matched.
    """


class MacroExpandOverflow(ValueError):
    """
    Represents MacroExpander overflow
    """


class TokenType(Enum):
    IDENTIFIER = "IDENTIFIER"
    STRING_LITERAL = "STRING_LITERAL"
    CHARACTER_LITERAL = "CHARACTER_LITERAL"
    NUMBER_LITERAL = "NUMBER_LITERAL"
    PUNCTUATOR = "PUNCTUATOR"
    PREPROCESSOR = "PREPROCESSOR"
    EOF = "EOF"


@dataclass(frozen=True)
class Token:
    """
    Represents a token of Objective-C source.
    Tokens are immutable: expansion builds new tokens instead of
    modifying existing ones.
    """

    value: str
    type: TokenType
    line: int = 1
    column: int = 0
    uri: str = ""
    generated: bool = False
    prev_white: bool = field(default=False, compare=False)
    original_value: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.original_value is None:
            object.__setattr__(self, "original_value", self.value)

    def __str__(self) -> str:
        return self.value


# Longest match first.
PUNCTUATORS = sorted(
    [
        "...", "<<=", ">>=", "->*",
        "->", "++", "--", "<<", ">>", "<=", ">=", "==", "!=", "&&", "||",
        "+=", "-=", "*=", "/=", "%=", "&=", "|=", "^=", "::", ".*", "##",
        "+", "-", "*", "/", "%", "=", "<", ">", "!", "~", "&", "|", "^",
        ".", ";", ":", ",", "(", ")", "{", "}", "[", "]", "?", "#", "@",
        "\\",
    ],
    key=len,
    reverse=True,
)  # fmt: skip

STRING_PREFIXES = ["u8", "@", "L", "u", "U"]


class Lexer:
    """
    A lexer for Objective-C preprocessing tokens.
    """

    def __init__(
        self,
        string: str,
        line: int = 1,
        uri: str = "",
        column: int = 0,
    ) -> None:
        self.string = string
        self.line = line
        self.uri = uri
        self.column = column
        self.pos = 0
        self.prev_white = False

    def read(self, n: int = 1) -> str:
        """
        Return the next n characters in the string.
        """
        return self.string[self.pos : self.pos + n]

    def eos(self) -> bool:
        """
        Return True when the end of the string is reached.
        """
        return self.pos >= len(self.string)

    def whitespace(self) -> None:
        """
        Consume whitespace and advance position.
        """
        while not self.eos() and self.read().isspace():
            self.pos += 1
            self.prev_white = True

    def match(self, literal: str) -> None:
        """
        Match a character/string literal exactly and advance position.
        """
        if self.read(len(literal)) == literal:
            self.pos += len(literal)
        else:
            raise TokenError()

    def match_any(self, literals: list[str]) -> int:
        """
        Match one from a list of character/string literals exactly.
        Return the matched index and advance position.
        """
        for index, literal in enumerate(literals):
            if self.read(len(literal)) == literal:
                self.pos += len(literal)
                return index

        raise TokenError()

    def _token(self, col: int, token_type: TokenType) -> Token:
        return Token(
            self.string[col : self.pos],
            token_type,
            self.line,
            self.column + col,
            self.uri,
            prev_white=self.prev_white,
        )

    def number(self) -> Token:
        """
        Match a 'preprocessing number'.

        <exponent> := ['e'|'E'|'p'|'P']['+'|'-']
        <number> := .?<digit>[<alpha>|<digit>|'_'|'.'|<exponent>]*
        """
        col = self.pos
        if self.read() == ".":
            self.pos += 1

        if not self.read().isdigit():
            self.pos = col
            raise TokenError("Invalid preprocessing number.")
        self.pos += 1

        exponents = ["e+", "e-", "E+", "E-", "p+", "p-", "P+", "P-"]
        while not self.eos():
            if self.read(2) in exponents:
                self.pos += 2
            elif self.read().isalnum() or self.read() in ["_", "."]:
                self.pos += 1
            else:
                break

        return self._token(col, TokenType.NUMBER_LITERAL)

    def _quoted(self, quote: str, prefixes: list[str]) -> None:
        """
        Match an optionally prefixed literal between quote characters.
        """
        for prefix in prefixes:
            if self.read(len(prefix) + 1) == prefix + quote:
                self.pos += len(prefix)
                break
        self.match(quote)

        while not self.eos() and self.read() != quote:
            if self.read() == "\\" and len(self.read(2)) == 2:
                self.pos += 2
            else:
                self.pos += 1

        self.match(quote)

    def character_constant(self) -> Token:
        """
        Match a character constant.

        <character-constant> := <prefix>?'''[<char>|'\\'<char>]+'''
        """
        col = self.pos
        try:
            self._quoted("'", ["u8", "L", "u", "U"])
        except TokenError:
            self.pos = col
            raise TokenError("Invalid character constant.")
        return self._token(col, TokenType.CHARACTER_LITERAL)

    def string_constant(self) -> Token:
        """
        Match a string constant, including Objective-C @"" strings.

        <string-constant> := <prefix>?'"'.*'"'
        """
        col = self.pos
        try:
            self._quoted('"', STRING_PREFIXES)
        except TokenError:
            self.pos = col
            raise TokenError("Invalid string constant.")
        return self._token(col, TokenType.STRING_LITERAL)

    def identifier(self) -> Token:
        """
        Match an identifier.

        <identifier> := [<alpha>|'_'|'$'][<alpha>|<digit>|'_'|'$']*
        """
        col = self.pos
        if self.eos() or not (self.read().isalpha() or self.read() in "_$"):
            raise TokenError("Invalid identifier.")

        while not self.eos() and (self.read().isalnum() or self.read() in "_$"):
            self.pos += 1

        return self._token(col, TokenType.IDENTIFIER)

    def punctuator(self) -> Token:
        """
        Match a punctuator or operator, preferring the longest match.
        """
        col = self.pos
        try:
            self.match_any(PUNCTUATORS)
        except TokenError:
            self.pos = col
            raise TokenError("Invalid punctuator.")
        return self._token(col, TokenType.PUNCTUATOR)

    def tokenize_one(self) -> Token | None:
        """
        Consume and return next token. Returns None if not possible.
        """
        candidates = [
            self.number,
            self.character_constant,
            self.string_constant,
            self.identifier,
            self.punctuator,
        ]
        token = None
        for f in candidates:
            col = self.pos
            try:
                token = f()
                self.prev_white = False
                break
            except TokenError:
                self.pos = col
        return token

    def tokenize(self) -> list[Token]:
        """
        Return a list of all tokens in the string.
        """
        tokens = []
        self.whitespace()
        while not self.eos():
            token = self.tokenize_one()

            # Treat unmatched single characters as punctuators
            if token is None:
                col = self.pos
                self.pos += 1
                token = self._token(col, TokenType.PUNCTUATOR)
                self.prev_white = False
            tokens.append(token)

            self.whitespace()

        return tokens


def lex(text: str, line: int = 1, uri: str = "") -> list[Token]:
    """
    Return the tokens of text, terminated by an EOF token.
    """
    tokens = Lexer(text, line, uri).tokenize()
    tokens.append(Token("", TokenType.EOF, line, len(text), uri))
    return tokens


def lex_source(source: str | Iterable[str], uri: str = "") -> list[Token]:
    """
    Return the tokens of a whole source file, terminated by an EOF token.
    Every logical directive line becomes a single PREPROCESSOR token.
    """
    if isinstance(source, str):
        source = io.StringIO(source)

    tokens: list[Token] = []
    total_physical_lines = 0
    walker = c_file_source(source)
    try:
        while True:
            logical = next(walker)
            text = logical.text()
            if logical.category() == "CPP_DIRECTIVE":
                column = len(text) - len(text.lstrip())
                tokens.append(
                    Token(
                        text.strip(),
                        TokenType.PREPROCESSOR,
                        logical.start_line,
                        column,
                        uri,
                    ),
                )
            else:
                tokens.extend(Lexer(text, logical.start_line, uri).tokenize())
    except StopIteration as stopit:
        _, total_physical_lines = stopit.value

    tokens.append(
        Token("", TokenType.EOF, max(total_physical_lines, 1), 0, uri),
    )
    return tokens


class LineKind(Enum):
    DEFINE_LINE = "DEFINE_LINE"
    INCLUDE_LINE = "INCLUDE_LINE"
    IFDEF_LINE = "IFDEF_LINE"
    IF_LINE = "IF_LINE"
    ELIF_LINE = "ELIF_LINE"
    ELSE_LINE = "ELSE_LINE"
    ENDIF_LINE = "ENDIF_LINE"
    UNDEF_LINE = "UNDEF_LINE"
    LINE_LINE = "LINE_LINE"
    ERROR_LINE = "ERROR_LINE"
    PRAGMA_LINE = "PRAGMA_LINE"
    WARNING_LINE = "WARNING_LINE"
    UNRECOGNIZED_LINE = "UNRECOGNIZED_LINE"


class IncludePath:
    """
    Represents an include path enclosed by "" or <>
    """

    def __init__(self, path: str, system: bool):
        self.path = path
        self.system = system

    def __repr__(self) -> str:
        return _representation_string(self)


@dataclass(eq=False)
class DirectiveLine:
    """
    The parsed form of one preprocessor directive line.
    Subclasses carry the parts of the line specific to their kind.
    """

    kind: ClassVar[LineKind] = LineKind.UNRECOGNIZED_LINE

    tokens: list[Token]

    @property
    def keyword(self) -> Token | None:
        if len(self.tokens) > 1:
            return self.tokens[1]
        return None

    def spelling(self) -> list[str]:
        """
        Recover the original spelling of this directive in the input code.
        Useful primarily for debugging and generating error messages.
        """
        out = []
        for token in self.tokens:
            if token.prev_white:
                out.append(" ")
            out.append(str(token))
        return ["".join(out)]


@dataclass(eq=False)
class DefineLine(DirectiveLine):
    """
    A #define directive.
    `params` is None for an object-like macro.
    """

    kind: ClassVar[LineKind] = LineKind.DEFINE_LINE

    name: Token
    params: list[Token] | None
    variadic: Token | None
    replacement: list[Token]


@dataclass(eq=False)
class UndefLine(DirectiveLine):
    kind: ClassVar[LineKind] = LineKind.UNDEF_LINE

    name: Token


@dataclass(eq=False)
class IncludeLine(DirectiveLine):
    """
    An #include, #import or #include_next directive.
    Its body is an IncludePath or, for computed includes, a list of tokens.
    """

    kind: ClassVar[LineKind] = LineKind.INCLUDE_LINE

    body: IncludePath | list[Token]


@dataclass(eq=False)
class IfdefLine(DirectiveLine):
    """
    An #ifdef or (when negated) #ifndef directive.
    """

    kind: ClassVar[LineKind] = LineKind.IFDEF_LINE

    name: Token
    negated: bool = False


@dataclass(eq=False)
class IfLine(DirectiveLine):
    kind: ClassVar[LineKind] = LineKind.IF_LINE

    expression: list[Token]


@dataclass(eq=False)
class ElifLine(IfLine):
    kind: ClassVar[LineKind] = LineKind.ELIF_LINE


@dataclass(eq=False)
class ElseLine(DirectiveLine):
    kind: ClassVar[LineKind] = LineKind.ELSE_LINE


@dataclass(eq=False)
class EndifLine(DirectiveLine):
    kind: ClassVar[LineKind] = LineKind.ENDIF_LINE


@dataclass(eq=False)
class MessageLine(DirectiveLine):
    """
    A directive whose only content is free-form tokens: #pragma,
    #error, #warning and #line.
    """

    body: list[Token]


@dataclass(eq=False)
class PragmaLine(MessageLine):
    kind: ClassVar[LineKind] = LineKind.PRAGMA_LINE


@dataclass(eq=False)
class ErrorLine(MessageLine):
    kind: ClassVar[LineKind] = LineKind.ERROR_LINE


@dataclass(eq=False)
class WarningLine(MessageLine):
    kind: ClassVar[LineKind] = LineKind.WARNING_LINE


@dataclass(eq=False)
class LineLine(MessageLine):
    kind: ClassVar[LineKind] = LineKind.LINE_LINE


class Parser:
    """
    A generic token parser for matching tokens from a list.
    """

    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    def cursor(self) -> Token:
        """
        Return the current token in the list.
        """
        try:
            return self.tokens[self.pos]
        except IndexError:
            raise ParseError("No tokens left for cursor to traverse")

    def eol(self) -> bool:
        """
        Return True when the end of the list is reached.
        """
        return self.pos >= len(self.tokens)

    def match_type(self, token_type: TokenType) -> Token:
        """
        Match a token of the specified type and advance position.
        """
        token = self.cursor()
        if token.type is not token_type:
            raise ParseError(f"Expected {token_type.value}.")
        self.pos += 1
        return token

    def match_value(
        self,
        token_value: str,
        token_type: TokenType = TokenType.PUNCTUATOR,
    ) -> Token:
        """
        Match a token of the specified value (and type), and advance
        position.
        """
        token = self.cursor()
        if token.type is not token_type or token.value != token_value:
            raise ParseError(f"Expected {token_value!s}.")
        self.pos += 1
        return token

    def rest(self) -> list[Token]:
        """
        Consume and return all remaining tokens.
        """
        remaining = self.tokens[self.pos :]
        self.pos = len(self.tokens)
        return remaining


class DirectiveParser(Parser):
    """
    A specialized token parser for recognizing directive lines.
    """

    KEYWORDS = [
        "define",
        "undef",
        "include",
        "import",
        "include_next",
        "ifdef",
        "ifndef",
        "if",
        "elif",
        "else",
        "endif",
        "pragma",
        "error",
        "warning",
        "line",
    ]

    def keyword(self, *values: str) -> Token:
        """
        Match one of the directive keywords in values.
        """
        token = self.cursor()
        if token.type is not TokenType.IDENTIFIER or token.value not in values:
            raise ParseError(f"Expected one of {values}.")
        self.pos += 1
        return token

    def __variadic(self) -> Token:
        """
        Match a variadic parameter.
        An unnamed variadic parameter is called __VA_ARGS__.

        <variadic> := <identifier>?'...'
        """
        initial_pos = self.pos
        identifier = None
        try:
            identifier = self.match_type(TokenType.IDENTIFIER)
        except ParseError:
            self.pos = initial_pos

        try:
            ellipsis = self.match_value("...")
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Not a variadic parameter.")

        if identifier is not None:
            return identifier
        return Token(
            "__VA_ARGS__",
            TokenType.IDENTIFIER,
            ellipsis.line,
            ellipsis.column,
            ellipsis.uri,
            generated=True,
        )

    def parameter_list(self) -> tuple[list[Token], Token | None]:
        """
        Match the parameters of a function-like macro, up to but not
        including the closing parenthesis.

        <parameter-list> := [<identifier>[','<identifier>]*[','<variadic>]?
                             | <variadic>]?
        """
        params: list[Token] = []
        if self.cursor().value == ")":
            return (params, None)

        while True:
            try:
                return (params, self.__variadic())
            except ParseError:
                pass

            params.append(self.match_type(TokenType.IDENTIFIER))
            if self.cursor().value == ")":
                return (params, None)
            self.match_value(",")

    def macro_definition(
        self,
    ) -> tuple[Token, list[Token] | None, Token | None]:
        """
        Match a macro name and its optional parameter list.
        Return a tuple of the name, the parameters (or None) and the
        variadic parameter (or None).
        """
        name = self.match_type(TokenType.IDENTIFIER)

        # Whitespace is NOT permitted before the opening paren of a
        # function-like macro.
        if self.eol() or self.cursor().value != "(" or self.cursor().prev_white:
            return (name, None, None)

        self.match_value("(")
        params, variadic = self.parameter_list()
        self.match_value(")")
        return (name, params, variadic)

    def define(self) -> DefineLine:
        """
        Match a define directive.

        <define> := 'define'<identifier>['('<parameter-list>')']?<token-list>?
        """
        initial_pos = self.pos
        try:
            self.keyword("define")
            name, params, variadic = self.macro_definition()
            return DefineLine(self.tokens, name, params, variadic, self.rest())
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid define directive.")

    def undef(self) -> UndefLine:
        """
        Match an #undef directive.

        <undef> := 'undef'<identifier>
        """
        initial_pos = self.pos
        try:
            self.keyword("undef")
            name = self.match_type(TokenType.IDENTIFIER)
            return UndefLine(self.tokens, name)
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid undef directive.")

    def include(self) -> IncludeLine:
        """
        Match an #include, #import or #include_next directive.

        <include> := ['include'|'import'|'include_next']<include-body>
        """
        initial_pos = self.pos
        try:
            self.keyword("include", "import", "include_next")

            path_pos = self.pos
            body: IncludePath | list[Token]
            try:
                body = self.include_path()
            except ParseError:
                self.pos = path_pos
                body = self.rest()
                if not body:
                    raise ParseError("Missing include body.")

            return IncludeLine(self.tokens, body)
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid include directive.")

    def include_path(self) -> IncludePath:
        """
        Match an include path.

        <include-path> := ['<'<token>+'>'|<string-literal>]
        """
        initial_pos = self.pos

        # Match system include
        try:
            self.match_value("<")
            path_tokens = []
            while self.cursor().value != ">":
                path_tokens.append(self.cursor())
                self.pos += 1
            self.match_value(">")
            path_str = util.serialize(path_tokens, "")
            if util.valid_path(path_str):
                return IncludePath(path_str, system=True)
        except ParseError:
            self.pos = initial_pos

        # Match local include
        try:
            token = self.match_type(TokenType.STRING_LITERAL)
            if token.value.startswith('"'):
                path_str = token.value[1:-1]
                if util.valid_path(path_str):
                    return IncludePath(path_str, system=False)
        except ParseError:
            pass

        self.pos = initial_pos
        raise ParseError("Invalid path.")

    def ifdef(self) -> IfdefLine:
        """
        Match an #ifdef or #ifndef directive.

        <ifdef> := ['ifdef'|'ifndef']<identifier>
        """
        initial_pos = self.pos
        try:
            keyword = self.keyword("ifdef", "ifndef")
            name = self.match_type(TokenType.IDENTIFIER)
            return IfdefLine(self.tokens, name, keyword.value == "ifndef")
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid ifdef directive.")

    def if_(self) -> IfLine:
        """
        Match an #if directive.

        <if> := 'if'<token-list>
        """
        initial_pos = self.pos
        try:
            self.keyword("if")
            expression = self.rest()
            if not expression:
                raise ParseError("Missing expression.")
            return IfLine(self.tokens, expression)
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid if directive.")

    def elif_(self) -> ElifLine:
        """
        Match an #elif directive.

        <elif> := 'elif'<token-list>
        """
        initial_pos = self.pos
        try:
            self.keyword("elif")
            expression = self.rest()
            if not expression:
                raise ParseError("Missing expression.")
            return ElifLine(self.tokens, expression)
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid elif directive.")

    def else_(self) -> ElseLine:
        initial_pos = self.pos
        try:
            self.keyword("else")
            return ElseLine(self.tokens)
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid else directive.")

    def endif(self) -> EndifLine:
        initial_pos = self.pos
        try:
            self.keyword("endif")
            return EndifLine(self.tokens)
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid endif directive.")

    def message(self) -> MessageLine:
        """
        Match a #pragma, #error, #warning or #line directive.

        <message> := ['pragma'|'error'|'warning'|'line']<token-list>
        """
        kinds: dict[str, type[MessageLine]] = {
            "pragma": PragmaLine,
            "error": ErrorLine,
            "warning": WarningLine,
            "line": LineLine,
        }
        keyword = self.keyword(*kinds.keys())
        return kinds[keyword.value](self.tokens, self.rest())

    def parse(self) -> DirectiveLine:
        """
        Parse a preprocessor directive line.

        <directive> := '#'[<define>|<undef>|<include>|<ifdef>|<if>|<elif>|
                           <else>|<endif>|<message>]

        Raises
        ------
        ParseError
            If the line is not a directive, or is a malformed instance of
            a known directive.
        """
        try:
            self.match_value("#")
        except ParseError:
            raise ParseError("Not a directive.")

        if self.eol():
            return DirectiveLine(self.tokens)

        candidates = [
            self.define,
            self.undef,
            self.include,
            self.ifdef,
            self.if_,
            self.elif_,
            self.else_,
            self.endif,
            self.message,
        ]
        for f in candidates:
            try:
                directive = f()
                if not self.eol():
                    chars = util.serialize(self.tokens)
                    log.warning(
                        f"Additional tokens at end of directive: {chars}",
                    )
                return directive
            except ParseError:
                pass

        keyword = self.cursor()
        if keyword.type is TokenType.IDENTIFIER and keyword.value in self.KEYWORDS:
            raise ParseError(f"Invalid {keyword.value} directive.")
        return DirectiveLine(self.tokens)


def parse_directive(text: str, line: int = 1, uri: str = "") -> DirectiveLine:
    """
    Parse the text of a directive line.
    """
    return DirectiveParser(Lexer(text, line, uri).tokenize()).parse()


class ExpressionEvaluator(Parser):
    """
    A specialized token parser for recognizing/evaluating expressions.
    Expects `defined` and macros to be substituted already.
    """

    # Operator precedence, associativity and Python equivalent
    # Lower numbers = higher precedence
    # Based on:
    # https://en.cppreference.com/w/cpp/language/operator_precedence
    OpInfo = collections.namedtuple("OpInfo", ["prec", "assoc"])
    UnaryOperators = {
        "-": OpInfo(12, "RIGHT"),
        "+": OpInfo(12, "RIGHT"),
        "!": OpInfo(12, "RIGHT"),
        "~": OpInfo(12, "RIGHT"),
    }
    BinaryOperators = {
        "?": OpInfo(1, "RIGHT"),
        "||": OpInfo(2, "LEFT"),
        "&&": OpInfo(3, "LEFT"),
        "|": OpInfo(4, "LEFT"),
        "^": OpInfo(5, "LEFT"),
        "&": OpInfo(6, "LEFT"),
        "==": OpInfo(7, "LEFT"),
        "!=": OpInfo(7, "LEFT"),
        "<": OpInfo(8, "LEFT"),
        "<=": OpInfo(8, "LEFT"),
        ">": OpInfo(8, "LEFT"),
        ">=": OpInfo(8, "LEFT"),
        "<<": OpInfo(9, "LEFT"),
        ">>": OpInfo(9, "LEFT"),
        "+": OpInfo(10, "LEFT"),
        "-": OpInfo(10, "LEFT"),
        "*": OpInfo(11, "LEFT"),
        "/": OpInfo(11, "LEFT"),
        "%": OpInfo(11, "LEFT"),
    }

    ESCAPES = {
        "n": 10,
        "t": 9,
        "r": 13,
        "0": 0,
        "a": 7,
        "b": 8,
        "f": 12,
        "v": 11,
        "\\": 92,
        "'": 39,
        '"': 34,
        "?": 63,
    }

    def call(self) -> np.integer:
        """
        Match a built-in call or function-like macro and return 0.

        <call> := <identifier>'('<expression-list>?')'
        """
        initial_pos = self.pos
        try:
            self.match_type(TokenType.IDENTIFIER)
            self.match_value("(")
            depth = 1
            while depth > 0:
                token = self.cursor()
                if token.value == "(":
                    depth += 1
                elif token.value == ")":
                    depth -= 1
                self.pos += 1

            # Any function call that still exists after substitution
            # evaluates to false
            return np.int64(0)
        except ParseError:
            self.pos = initial_pos
            raise ParseError("Invalid function call.")

    @staticmethod
    def integer(text: str) -> np.integer:
        """
        Convert a C integer literal to a 64-bit integer.
        """
        value = text
        unsigned = False
        while value and value[-1] in "uUlL":
            if value[-1] in "uU":
                unsigned = True
            value = value[:-1]

        base = 10
        bases = {"0x": 16, "0X": 16, "0b": 2, "0B": 2}
        if value[0:2] in bases:
            base = bases[value[0:2]]
            value = value[2:]
        elif len(value) > 1 and value.startswith("0"):
            base = 8

        try:
            int_value = int(value, base)
        except ValueError:
            raise ParseError(f"Not an integer constant: {text}")

        # Preprocessor always uses 64-bit arithmetic!
        if unsigned or int_value > np.iinfo(np.int64).max:
            return np.uint64(int_value & 0xFFFFFFFFFFFFFFFF)
        return np.int64(int_value)

    @staticmethod
    def character(text: str) -> np.integer:
        """
        Convert a C character literal to its integer value.
        """
        body = text[text.index("'") + 1 : -1]
        if not body:
            raise ParseError("Empty character constant.")
        if body[0] != "\\":
            return np.int64(ord(body[0]))

        escape = body[1:]
        if escape[:1] in ["x", "X"]:
            return np.int64(int(escape[1:], 16))
        if escape[:1].isdigit() and len(escape) > 1:
            return np.int64(int(escape, 8))
        if escape in ExpressionEvaluator.ESCAPES:
            return np.int64(ExpressionEvaluator.ESCAPES[escape])
        return np.int64(ord(escape[0]))

    def term(self) -> np.integer:
        """
        Match a constant, function call or identifier and convert it to
        an integer.

        <term> := [<integer-constant>|<character-constant>|<call>|
                   <identifier>]
        """
        token = self.cursor()
        if token.type is TokenType.NUMBER_LITERAL:
            self.pos += 1
            return self.integer(token.value)

        if token.type is TokenType.CHARACTER_LITERAL:
            self.pos += 1
            try:
                return self.character(token.value)
            except ValueError:
                raise ParseError(f"Invalid character constant: {token}")

        try:
            return self.call()
        except ParseError:
            pass

        # Any identifier that still exists after substitution evaluates
        # to false, except for the boolean keywords.
        if token.type is TokenType.IDENTIFIER:
            self.pos += 1
            if token.value in ["true", "YES"]:
                return np.int64(1)
            return np.int64(0)

        raise ParseError(
            "Expected integer constant, character constant, identifier or "
            + "function call.",
        )

    def primary(self) -> np.integer:
        """
        Match a simple expression

        <primary> := [<unary-op><expression>|'('<expression>')'|<term>]
        """
        token = self.cursor()

        if (
            token.type is TokenType.PUNCTUATOR
            and token.value in ExpressionEvaluator.UnaryOperators
        ):
            self.pos += 1
            prec, _ = ExpressionEvaluator.UnaryOperators[token.value]
            expr = self.expression(prec)
            return self.__apply_unary_op(token.value, expr)

        if token.type is TokenType.PUNCTUATOR and token.value == "(":
            self.pos += 1
            expr = self.expression()
            self.match_value(")")
            return expr

        return self.term()

    def expression(self, min_precedence: int = 0) -> np.integer:
        """
        Match a preprocessor expression.
        Minimum precedence used to match operators during precedence
        climbing.

        <expression> := <primary>[<binary-op><expression>]?
        """
        expr = self.primary()

        # Recursion is terminated based on operator precedence
        while (
            not self.eol()
            and self.cursor().type is TokenType.PUNCTUATOR
            and (self.cursor().value in ExpressionEvaluator.BinaryOperators)
            and (
                ExpressionEvaluator.BinaryOperators[self.cursor().value].prec
                >= min_precedence
            )
        ):
            operator = self.match_type(TokenType.PUNCTUATOR)
            (prec, assoc) = ExpressionEvaluator.BinaryOperators[operator.value]

            # The ternary conditional operator is treated as a
            # special-case of a binary operator:
            # lhs "?"<expression>":" rhs
            if operator.value == "?":
                true_result = self.expression()
                self.match_value(":")

            # Minimum precedence for right-hand side depends on
            # associativity
            if assoc == "LEFT":
                rhs = self.expression(prec + 1)
            else:
                rhs = self.expression(prec)

            if operator.value == "?":
                expr = true_result if expr else rhs
            else:
                expr = self.__apply_binary_op(operator.value, expr, rhs)

        return expr

    @staticmethod
    def __apply_unary_op(op: str, operand: np.integer) -> np.integer:
        """
        Apply the specified unary operator: op operand
        """
        if op == "-":
            return -operand
        elif op == "+":
            return +operand
        elif op == "!":
            return np.int64(not operand)
        elif op == "~":
            return ~operand
        else:
            raise ValueError("Not a valid unary operator.")

    @staticmethod
    def __apply_binary_op(
        op: str,
        lhs: np.integer,
        rhs: np.integer,
    ) -> np.integer:
        """
        Apply the specified binary operator: lhs op rhs
        """
        # Logical operators do not convert their operands.
        if op == "||":
            return np.int64(bool(lhs) or bool(rhs))
        elif op == "&&":
            return np.int64(bool(lhs) and bool(rhs))

        # Usual arithmetic conversions: if either side is unsigned, both are.
        if isinstance(lhs, np.unsignedinteger) or isinstance(
            rhs,
            np.unsignedinteger,
        ):
            lhs = np.uint64(lhs.astype(np.uint64))
            rhs = np.uint64(rhs.astype(np.uint64))

        if op == "|":
            return lhs | rhs
        elif op == "^":
            return lhs ^ rhs
        elif op == "&":
            return lhs & rhs
        elif op == "==":
            return np.int64(lhs == rhs)
        elif op == "!=":
            return np.int64(lhs != rhs)
        elif op == "<":
            return np.int64(lhs < rhs)
        elif op == "<=":
            return np.int64(lhs <= rhs)
        elif op == ">":
            return np.int64(lhs > rhs)
        elif op == ">=":
            return np.int64(lhs >= rhs)
        elif op == "<<":
            return lhs << rhs
        elif op == ">>":
            return lhs >> rhs
        elif op == "+":
            return lhs + rhs
        elif op == "-":
            return lhs - rhs
        elif op == "*":
            return lhs * rhs
        elif op in ["/", "%"]:
            if rhs == 0:
                raise EvaluationError("Division by zero.")
            if op == "/":
                return lhs // rhs  # force integer division
            return lhs % rhs
        else:
            raise ValueError("Not a binary operator.")

    def evaluate(self) -> bool:
        """
        Evaluate a preprocessor expression.
        Return True/False or raise EvaluationError if the expression is
        not recognized.
        """
        try:
            with np.errstate(over="ignore"):
                test_val = self.expression()
        except ValueError as e:
            raise EvaluationError(f"Could not evaluate expression: {e}")
        if not self.eol():
            rest = util.serialize(self.tokens[self.pos :])
            raise EvaluationError(f"Unexpected tokens in expression: {rest}")
        return bool(test_val != 0)


class Macro:
    """
    Represents a macro definition.
    `params` is None for an object-like macro, and a (possibly empty) list
    of parameter names for a function-like macro. When `variadic` is set,
    the last parameter absorbs any extra arguments.
    """

    def __init__(
        self,
        name: str,
        params: list[str] | None,
        body: list[Token],
        variadic: bool = False,
    ) -> None:
        if variadic and not params:
            raise ValueError("A variadic macro needs a variadic parameter.")
        self.name = name
        self.params = params
        self.body = body
        self.variadic = variadic

    def check_arguments_count(self, count: int) -> bool:
        """
        Return True if an invocation with `count` arguments can expand.
        """
        if self.params is None:
            return count == 0
        if self.variadic:
            return count >= len(self.params) - 1
        return count == len(self.params)

    def is_function_like(self) -> bool:
        return self.params is not None

    def __repr__(self) -> str:
        return _representation_string(
            self,
            attrs=["name", "params", "body", "variadic"],
        )

    def __str__(self) -> str:
        params = ""
        if self.params is not None:
            dots = "..." if self.variadic else ""
            params = f"({', '.join(self.params)}{dots})"
        return f"{self.name}{params} -> '{util.serialize(self.body)}'"

    def spelling(self) -> list[str]:
        """
        Return (a list containing) a string with a lexable representation of
        this Macro.
        """
        replacement_str = util.serialize(self.body)
        if self.params is None:
            return [f"{self.name!s}={replacement_str!s}"]
        arg_str = ",".join(self.params)
        if self.variadic:
            arg_str += "..."
        return [f"{self.name!s}({arg_str!s})={replacement_str!s}"]


def make_macro(
    name: Token,
    params: list[Token] | None,
    variadic: Token | None,
    body: list[Token],
) -> Macro:
    """
    Return a Macro from the parts of a definition.
    The variadic parameter, if any, becomes the last parameter.
    """
    names = None
    if params is not None:
        names = [p.value for p in params]
        if variadic is not None:
            names.append(variadic.value)
    return Macro(name.value, names, list(body), variadic is not None)


def make_macro_from_line(line: DefineLine) -> Macro:
    """
    Return the Macro defined by a parsed #define line.
    """
    params = line.params
    if params is None and line.variadic is not None:
        params = []
    return make_macro(line.name, params, line.variadic, line.replacement)


def macro_from_definition_string(string: str) -> Macro:
    """
    Construct a Macro by parsing a string of the form
    MACRO, MACRO=expansion or MACRO(args)=expansion.
    """
    tokens = Lexer(string).tokenize()
    parser = DirectiveParser(tokens)

    name, params, variadic = parser.macro_definition()

    # Any remaining tokens after an "=" are the macro expansion
    if not parser.eol():
        parser.match_value("=")
        expansion = parser.rest()
    else:
        expansion = [Token("1", TokenType.NUMBER_LITERAL)]

    if params is None and variadic is not None:
        params = []
    return make_macro(name, params, variadic, expansion)


class MacroTable:
    """
    A layered mapping from macro names to definitions:
    - a permanent layer of predefined macros
    - a user layer, consulted first and cleared at the end of each file
    - a multiset of names currently disabled for rescanning
    """

    def __init__(self) -> None:
        self._predefined: dict[str, Macro] = {}
        self._user: dict[str, Macro] = {}
        self._undefined: set[str] = set()
        self._disabled: collections.Counter[str] = collections.Counter()

    def define(self, macro: Macro) -> None:
        """
        Define a macro, as if the preprocessor encountered #define.
        A previous definition of the same name is replaced.
        """
        self._user[macro.name] = macro
        self._undefined.discard(macro.name)

    def define_predefined(self, macro: Macro) -> None:
        self._predefined[macro.name] = macro

    def undefine(self, name: str) -> None:
        """
        Undefine a macro until the end of the current file.
        """
        self._user.pop(name, None)
        if name in self._predefined:
            self._undefined.add(name)

    def get(self, name: str) -> Macro | None:
        """
        Returns
        -------
        Macro | None
            The macro associated with `name`, or None if there is none or
            it is disabled.
        """
        if self._disabled[name] > 0:
            return None
        if name in self._user:
            return self._user[name]
        if name in self._undefined:
            return None
        return self._predefined.get(name)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def disable(self, name: str) -> None:
        self._disabled[name] += 1

    def enable(self, name: str) -> None:
        if self._disabled[name] <= 0:
            raise RuntimeError(f"Macro '{name}' is not disabled.")
        self._disabled[name] -= 1
        if self._disabled[name] == 0:
            del self._disabled[name]

    def is_disabled(self, name: str) -> bool:
        return self._disabled[name] > 0

    @contextlib.contextmanager
    def disabled(self, name: str) -> Iterator[None]:
        """
        Disable `name` for the duration of a with-block.
        """
        self.disable(name)
        try:
            yield
        finally:
            self.enable(name)

    def clear_user(self) -> None:
        """
        Forget every user definition and #undef of a predefined macro.
        """
        self._user.clear()
        self._undefined.clear()

    def user_macros(self) -> dict[str, Macro]:
        return dict(self._user)


@dataclass
class ConditionalState:
    """
    Conditional-compilation state of one file context.
    `nested_depth` counts conditionals entered while already skipping;
    `taken` records, for each conditional whose branches are being
    decided, whether one of its branches has been active.
    """

    skipping: bool = False
    nested_depth: int = 0
    include_under_analysis: str | None = None
    taken: list[bool] = field(default_factory=list)

    def reset(self) -> None:
        self.skipping = False
        self.nested_depth = 0
        self.include_under_analysis = None
        self.taken = []


@dataclass(frozen=True)
class Include:
    """
    An include directive seen at `line` of an analyzed file.
    """

    line: int
    path: str


@dataclass(frozen=True)
class PreprocessorAction:
    """
    The rewrite produced for the head of a token window: the number of
    tokens consumed, the consumed tokens, and the tokens to emit instead.
    """

    consumed: int
    skipped: tuple[Token, ...] = ()
    injected: tuple[Token, ...] = ()


NO_OPERATION = PreprocessorAction(0)


def quote(text: str) -> str:
    """
    Return the body of a string literal spelling `text`.
    Whitespace between tokens collapses to a single space, and '"' and
    '\\' are escaped. Whitespace inside literals is kept.
    """
    out = []
    pending_space = False
    suppress_space = False
    literal = None
    escaped = False
    for c in text:
        if literal is not None:
            if c == '"':
                out.append('\\"')
            elif c == "\\":
                out.append("\\\\")
            else:
                out.append(c)
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == literal:
                literal = None
            continue

        if c.isspace():
            if out and not suppress_space:
                pending_space = True
            continue

        if pending_space:
            out.append(" ")
            pending_space = False
        suppress_space = False

        if c == '"':
            out.append('\\"')
            literal = c
        elif c == "'":
            out.append(c)
            literal = c
        elif c == "\\":
            out.append("\\\\")
            suppress_space = True
        else:
            out.append(c)
    return "".join(out)


def concatenate(left: Token | None, right: Token | None) -> Token | None:
    """
    Paste two tokens into one, positioned where the left one was.
    Return None when there is nothing to paste.
    """
    if left is None:
        return right
    if right is None:
        return left
    return Token(
        left.value + right.value,
        left.type,
        left.line,
        left.column,
        left.uri,
        generated=True,
        prev_white=left.prev_white,
    )


def paste_tokens(tokens: list[Token]) -> list[Token]:
    """
    Evaluate every ## operator in tokens, left to right.
    Consecutive ## operators chain to the next operand.
    """
    out: list[Token] = []
    idx = 0
    while idx < len(tokens):
        tok = tokens[idx]
        if tok.value != "##":
            out.append(tok)
            idx += 1
            continue

        idx += 1
        while idx < len(tokens) and tokens[idx].value == "##":
            idx += 1

        left = out.pop() if out else None
        right = tokens[idx] if idx < len(tokens) else None
        pasted = concatenate(left, right)
        if pasted is not None:
            out.append(pasted)
        idx += 1
    return out


def _match(tokens: Iterator[Token], value: str) -> Token:
    """
    Return the next token if it has `value`.
    """
    token = next(tokens, None)
    if token is None:
        raise MismatchError(f"Mismatch: expected '{value}', got end of stream")
    if token.value != value:
        raise MismatchError(f"Mismatch: expected '{value}', got '{token}'")
    return token


def match_arguments(tokens: Iterable[Token]) -> tuple[int, list[Token]]:
    """
    Match a parenthesized, comma-separated argument list at the start of
    tokens. Each argument is returned as one string-typed token holding
    its serialized text.

    Returns
    -------
    tuple[int, list[Token]]
        The number of tokens consumed, including both parentheses, and the
        arguments. (0, []) if no complete argument list was found.
    """
    stream = iter(tokens)
    try:
        _match(stream, "(")
    except MismatchError:
        return (0, [])

    consumed = 1
    arguments: list[Token] = []
    current: list[Token] = []
    nesting_level = 0
    try:
        while True:
            token = next(stream, None)
            if token is None:
                raise MismatchError(
                    "reached the end of the stream while matching a macro "
                    + "argument",
                )
            consumed += 1

            if nesting_level == 0 and token.value in [",", ")"]:
                if current:
                    first = current[0]
                    arguments.append(
                        Token(
                            util.serialize(current).strip(),
                            TokenType.STRING_LITERAL,
                            first.line,
                            first.column,
                            first.uri,
                            generated=True,
                        ),
                    )
                current = []
                if token.value == ")":
                    return (consumed, arguments)
                continue

            if token.value == "(":
                nesting_level += 1
            elif token.value == ")":
                nesting_level -= 1
            current.append(token)
    except MismatchError as e:
        log.debug(f"{e}")
        return (0, [])


def reallocate(tokens: list[Token], token: Token) -> list[Token]:
    """
    Place tokens on the line of `token`, at increasing columns starting
    at its column.
    """
    reallocated = []
    column = token.column
    for t in tokens:
        reallocated.append(
            replace(
                t,
                line=token.line,
                column=column,
                uri=token.uri,
                generated=True,
            ),
        )
        column += len(t.value) + 1
    return reallocated


class _Frame:
    """
    Pending tokens of one level of expansion: the input window at the
    bottom of the stack, or the replacement of the macro `name` above it.
    """

    def __init__(
        self,
        tokens: list[Token],
        pos: int = 0,
        name: str | None = None,
    ) -> None:
        self.tokens = tokens
        self.pos = pos
        self.name = name

    def eol(self) -> bool:
        return self.pos >= len(self.tokens)


class MacroExpander:
    """
    Expands the macro invocation at the head of a token window.

    Each replacement is pushed as a frame on a stack with its macro
    disabled; tokens are read from the top frame, so a function-like
    macro at the end of a replacement can take its arguments from the
    frames (and finally the input window) below it.

    An exhausted frame stays on the stack until everything above it has
    been rescanned, so its macro stays disabled and A -> B -> A stops at
    the second A. Only frames with tokens left count toward max_level,
    along with the nesting of argument pre-expansion. A chain of plain
    renames A0 -> A1 -> ... therefore expands fully however long it is.
    """

    def __init__(self, macros: MacroTable, max_level: int = 200) -> None:
        self.macros = macros

        # Prevent infinite recursion. CPP standard requires this be at
        # least 15, but cpp has been implemented to handle 200.
        self.max_level = max_level
        self.level = 0

    def overflow_check(self, stack: list[_Frame] | None = None) -> None:
        """
        Raise MacroExpandOverflow if we exceed the allowable # of levels.
        """
        level = self.level
        if stack is not None:
            level += sum(1 for frame in stack[1:] if not frame.eol())
        if level >= self.max_level:
            raise MacroExpandOverflow

    def expand_head(
        self,
        tokens: list[Token],
        start: int = 0,
    ) -> tuple[int, list[Token]]:
        """
        Expand the macro invocation starting at tokens[start].

        Returns
        -------
        tuple[int, list[Token]]
            The number of tokens of the window consumed and the fully
            rescanned replacement. (0, []) if nothing was expanded.
        """
        if start >= len(tokens):
            return (0, [])
        head = tokens[start]
        if self.macros.get(head.value) is None:
            return (0, [])

        stack = [_Frame(tokens, start + 1)]
        self.level += 1
        try:
            self.overflow_check()
            replacement = self._replace(head, stack)
            if replacement is None:
                return (0, [])
            self._push(stack, replacement, head.value)
            expansion = self._rescan(stack)
            consumed = stack[0].pos - start
        except MacroExpandOverflow:
            log.warning(
                f"Expansion of '{head}' exceeded {self.max_level} levels; "
                + "leaving it unexpanded.",
            )
            return (0, [])
        finally:
            self._unwind(stack)
            self.level -= 1

        return (consumed, reallocate(expansion, head))

    def expand_all(self, tokens: list[Token]) -> list[Token]:
        """
        Return tokens with every macro invocation expanded.
        """
        out: list[Token] = []
        pos = 0
        while pos < len(tokens):
            if tokens[pos].type is TokenType.IDENTIFIER:
                consumed, replacement = self.expand_head(tokens, pos)
                if consumed > 0:
                    out.extend(replacement)
                    pos += consumed
                    continue
            out.append(tokens[pos])
            pos += 1
        return out

    def _push(self, stack: list[_Frame], tokens: list[Token], name: str) -> None:
        self.macros.disable(name)
        stack.append(_Frame(tokens, 0, name))
        self.overflow_check(stack)

    def _pop(self, stack: list[_Frame]) -> None:
        frame = stack.pop()
        if frame.name is not None:
            self.macros.enable(frame.name)

    def _unwind(self, stack: list[_Frame]) -> None:
        """
        Pop every frame above the input window, re-enabling its macro.
        """
        while len(stack) > 1:
            self._pop(stack)

    def _rescan(self, stack: list[_Frame]) -> list[Token]:
        """
        Read tokens from the frames above the input window until all are
        exhausted, expanding the identifiers that name enabled macros.
        """
        out = []
        while len(stack) > 1:
            top = stack[-1]
            if top.eol():
                self._pop(stack)
                continue

            token = top.tokens[top.pos]
            top.pos += 1
            if token.type is TokenType.IDENTIFIER:
                replacement = self._replace(token, stack)
                if replacement is not None:
                    self._push(stack, replacement, token.value)
                    continue
            out.append(token)
        return out

    def _lookahead(self, stack: list[_Frame]) -> Iterator[Token]:
        """
        Yield the unread tokens of every frame, top first, stopping at
        the end of the stream.
        """
        for frame in reversed(stack):
            for token in it.islice(frame.tokens, frame.pos, None):
                if token.type is TokenType.EOF:
                    return
                yield token

    def _consume(self, stack: list[_Frame], count: int) -> None:
        """
        Advance past `count` tokens, popping exhausted frames on the way.
        """
        while count > 0:
            frame = stack[-1]
            available = len(frame.tokens) - frame.pos
            if available == 0:
                if len(stack) == 1:
                    raise RuntimeError("Consumed past the end of the input.")
                self._pop(stack)
                continue
            step = min(count, available)
            frame.pos += step
            count -= step

    def _relex(self, tokens: list[Token], where: Token) -> list[Token]:
        """
        Serialize tokens and lex the result again, so that pasted text
        becomes proper tokens.
        """
        text = util.serialize(tokens)
        return Lexer(text, where.line, where.uri, where.column).tokenize()

    def _replace(self, name: Token, stack: list[_Frame]) -> list[Token] | None:
        """
        Return the replacement for the macro invocation starting with
        `name`, consuming its arguments from the stack, or None if `name`
        does not start an expandable invocation.
        """
        macro = self.macros.get(name.value)
        if macro is None:
            return None

        if macro.params is None:
            return self._relex(paste_tokens(macro.body), name)

        consumed, arguments = match_arguments(self._lookahead(stack))
        if consumed == 0:
            return None
        if not macro.check_arguments_count(len(arguments)):
            log.debug(
                f"'{macro.name}' expects {len(macro.params)} argument(s), "
                + f"got {len(arguments)}; leaving it unexpanded.",
            )
            return None

        self._consume(stack, consumed)

        params = macro.params
        if len(arguments) > len(params):
            # Group all extra arguments into the variadic one
            vaargs = arguments[len(params) - 1 :]
            folded = replace(vaargs[0], value=util.serialize(vaargs, ","))
            arguments = arguments[: len(params) - 1] + [folded]

        body = self._replace_params(macro.body, params, arguments)
        return self._relex(paste_tokens(body), name)

    def _replace_params(
        self,
        body: list[Token],
        params: list[str],
        arguments: list[Token],
    ) -> list[Token]:
        """
        Substitute arguments for parameters in a macro body.
        - #param is replaced by the stringized, unexpanded argument
        - a parameter next to ## is replaced by the unexpanded argument
        - any other parameter is replaced by the fully expanded argument
        """
        out: list[Token] = []
        for idx, tok in enumerate(body):
            try:
                index = params.index(tok.value)
            except ValueError:
                out.append(tok)
                continue

            prev = body[idx - 1].value if idx > 0 else None
            succ = body[idx + 1].value if idx + 1 < len(body) else None

            if index >= len(arguments):
                # An omitted variadic argument disappears together with a
                # preceding ##, and with ", ##" (GNU extension).
                if prev == "#":
                    out.pop()
                    out.append(
                        Token(
                            '""',
                            TokenType.STRING_LITERAL,
                            tok.line,
                            tok.column,
                            tok.uri,
                            generated=True,
                        ),
                    )
                elif prev == "##":
                    out.pop()
                    if idx > 1 and body[idx - 2].value == ",":
                        out.pop()
                continue

            argument = arguments[index]
            if prev == "#":
                out.pop()
                value = f'"{quote(argument.value)}"'
            elif prev == "##" or succ == "##":
                value = argument.value
            else:
                arg_tokens = Lexer(
                    argument.value,
                    argument.line,
                    argument.uri,
                ).tokenize()
                value = util.serialize(self.expand_all(arg_tokens))

            out.append(
                Token(
                    value,
                    argument.type,
                    argument.line,
                    argument.column,
                    argument.uri,
                    generated=True,
                ),
            )
        return out


class Preprocessor:
    """
    Represents one preprocessing session, including:
    - Active macro definitions (predefined and per-file)
    - The conditional-compilation state of the file being analyzed
    - The include directives seen in each analyzed file
    """

    def __init__(self, configuration: Configuration | None = None) -> None:
        if configuration is None:
            configuration = Configuration()
        elif not isinstance(configuration, Configuration):
            raise TypeError("'configuration' must be a Configuration.")
        self.configuration = configuration

        self.macros = MacroTable()
        for name, value in configuration.standard_macros.items():
            body = Lexer(value).tokenize()
            self.macros.define_predefined(Macro(name, None, body))
        for definition in configuration.defines:
            self.macros.define_predefined(
                macro_from_definition_string(definition),
            )

        self.expander = MacroExpander(self.macros)

        # State which is not shared between files
        self.state = ConditionalState()
        self._state_stack: list[ConditionalState] = []
        self._current_file: str | None = None

        self._included: dict[str, set[Include]] = collections.defaultdict(set)
        self._missing: dict[str, set[Include]] = collections.defaultdict(set)
        self._found_incl: dict[tuple[str, str, bool], str | None] = {}

    def begin_file(self, filename: str) -> None:
        """
        Mark the start of the analysis of `filename`.
        """
        log.debug(f"begin preprocessing '{filename}'")
        self._current_file = filename

    def finished_preprocessing(self, filename: str | None = None) -> None:
        """
        Mark the end of the analysis of a file.

        A macro definition lasts (independent of block structure) until a
        corresponding #undef directive is encountered or (if none is
        encountered) until the end of the translation unit.
        """
        log.debug(f"finished preprocessing '{filename}'")
        self.macros.clear_user()
        self.state.reset()
        self._state_stack = []
        self._current_file = None

    def push_state(self, include_file: str | None = None) -> None:
        """
        Save the conditional state and start a fresh one for include_file.
        """
        self._state_stack.append(self.state)
        self.state = ConditionalState(include_under_analysis=include_file)

    def pop_state(self) -> None:
        """
        Restore the conditional state saved by the last push_state.
        """
        if not self._state_stack:
            raise RuntimeError("No conditional state to restore.")
        self.state = self._state_stack.pop()

    def file_under_analysis(self) -> str | None:
        if self.state.include_under_analysis is not None:
            return self.state.include_under_analysis
        return self._current_file

    def in_skipping_mode(self) -> bool:
        return self.state.skipping

    def define(self, macro: Macro) -> None:
        self.macros.define(macro)

    def undefine(self, name: str) -> None:
        self.macros.undefine(name)

    def get_macro(self, name: str) -> Macro | None:
        return self.macros.get(name)

    def has_macro(self, name: str) -> bool:
        return self.get_macro(name) is not None

    def value_of(self, name: str) -> str | None:
        """
        Return the replacement text of the macro `name`, or None.
        """
        macro = self.macros.get(name)
        if macro is None:
            return None
        return util.serialize(macro.body)

    def expand_function_like_macro(self, name: str, rest: list[Token]) -> str:
        """
        Return the text produced by invoking `name` on the argument list
        at the start of rest, or an empty string if it does not expand.
        """
        head = Token(name, TokenType.IDENTIFIER)
        consumed, replacement = self.expander.expand_head([head] + rest)
        if consumed == 0:
            return ""
        return util.serialize(replacement)

    def get_included_files(self, filename: str) -> set[Include]:
        return set(self._included.get(filename, set()))

    def get_missing_include_files(self, filename: str) -> set[Include]:
        return set(self._missing.get(filename, set()))

    def find_include_file(
        self,
        filename: str,
        this_path: str,
        is_system_include: bool = False,
    ) -> str | None:
        """
        Determine and return the full path to `filename`.

        Parameters
        ----------
        filename: str
            The name of the include file to find.

        this_path: str
            The directory of the file containing the include directive.

        is_system_include: bool, default: False
            Whether the include file is a system header or not.

        Returns
        -------
        str | None
            The full path to `filename` if it was found and `None` otherwise.
        """
        key = (filename, this_path, is_system_include)
        if key in self._found_incl:
            return self._found_incl[key]

        local_paths: list[str | os.PathLike[str]] = []
        if not is_system_include:
            local_paths += [this_path]

        found = None
        for path in local_paths + self.configuration.include_paths:
            test_path = os.path.abspath(os.path.join(path, filename))
            if os.path.isfile(test_path):
                found = test_path
                break

        self._found_incl[key] = found
        return found

    def process(self, tokens: list[Token]) -> PreprocessorAction:
        """
        Decide how to rewrite the head of the token window `tokens`.
        """
        if not tokens:
            return NO_OPERATION
        return self._process(tokens, 0)

    def preprocess(self, tokens: list[Token]) -> list[Token]:
        """
        Return the rewritten token stream: directives removed, skipped
        tokens dropped and macros expanded.
        """
        output: list[Token] = []
        pos = 0
        while pos < len(tokens):
            action = self._process(tokens, pos)
            if action is NO_OPERATION:
                output.append(tokens[pos])
                pos += 1
            else:
                output.extend(action.injected)
                pos += action.consumed
        return output

    def preprocess_text(self, text: str, uri: str = "") -> list[Token]:
        """
        Lex and preprocess `text` as the content of the file `uri`.
        """
        if self._current_file is None:
            self.begin_file(uri)
        return self.preprocess(lex_source(text, uri))

    def preprocess_file(self, filename: str) -> list[Token]:
        """
        Read, lex and preprocess `filename`.
        """
        self.begin_file(filename)
        with open(
            filename,
            encoding=self.configuration.encoding,
            errors="replace",
        ) as f:
            tokens = lex_source(f, filename)
        return self.preprocess(tokens)

    def _strip(self, tokens: list[Token], start: int) -> PreprocessorAction:
        return PreprocessorAction(1, (tokens[start],))

    def _process(self, tokens: list[Token], start: int) -> PreprocessorAction:
        token = tokens[start]
        filename = self.file_under_analysis() or token.uri

        if token.type is TokenType.PREPROCESSOR:
            try:
                line = parse_directive(token.value, token.line, token.uri)
            except ParseError as e:
                log.warning(f"Cannot parse '{token.value}', ignoring... ({e})")
                self._handle_malformed_conditional(token, filename)
                return self._strip(tokens, start)

            # ElifLine derives from IfLine, so it is tested first
            if isinstance(line, IfdefLine):
                self.handle_ifdef_line(line, token, filename)
            elif isinstance(line, ElseLine):
                self.handle_else_line(token, filename)
            elif isinstance(line, EndifLine):
                self.handle_endif_line(token, filename)
            elif isinstance(line, ElifLine):
                self.handle_elif_line(line, token, filename)
            elif isinstance(line, IfLine):
                self.handle_if_line(line, token, filename)
            elif self.in_skipping_mode():
                pass
            elif isinstance(line, DefineLine):
                self.handle_define_line(line, token, filename)
            elif isinstance(line, IncludeLine):
                self.handle_include_line(line, token, filename)
            elif isinstance(line, UndefLine):
                self.handle_undef_line(line, token, filename)

            # All other directives are stripped from the stream
            return self._strip(tokens, start)

        if token.type is not TokenType.EOF:
            if self.in_skipping_mode():
                return self._strip(tokens, start)

            if token.type not in [
                TokenType.STRING_LITERAL,
                TokenType.NUMBER_LITERAL,
            ]:
                return self.handle_identifiers_and_keywords(tokens, start, filename)

        return NO_OPERATION

    def _handle_malformed_conditional(self, token: Token, filename: str) -> None:
        """
        Keep #if/#endif nesting balanced when an opening or continuing
        conditional cannot be parsed: treat it as a failed evaluation.
        """
        tokens = Lexer(token.value).tokenize()
        if len(tokens) < 2:
            return
        keyword = tokens[1].value
        if keyword in ["if", "ifdef", "ifndef"]:
            if self.state.skipping:
                self.state.nested_depth += 1
            else:
                self.state.taken.append(True)
        elif keyword == "elif" and self.state.nested_depth == 0:
            if self._branch_taken():
                self.state.skipping = True
            else:
                self._enter_branch(True)

    def _enter_branch(self, active: bool) -> None:
        self.state.skipping = not active
        if self.state.taken:
            self.state.taken[-1] = self.state.taken[-1] or active

    def _branch_taken(self) -> bool:
        if self.state.taken:
            return self.state.taken[-1]
        return not self.state.skipping

    def handle_ifdef_line(self, line: IfdefLine, token: Token, filename: str) -> None:
        if self.state.skipping:
            self.state.nested_depth += 1
            return

        defined = self.macros.get(line.name.value) is not None
        active = defined != line.negated
        self.state.taken.append(active)
        if not active:
            log.debug(
                f"[{filename}:{token.line}]: '{token}' evaluated to false, "
                + "skipping tokens that follow",
            )
            self.state.skipping = True

    def handle_else_line(self, token: Token, filename: str) -> None:
        if self.state.nested_depth != 0:
            return

        if self.state.taken:
            active = not self.state.taken[-1]
            self.state.taken[-1] = True
        else:
            active = self.state.skipping

        if active:
            log.debug(
                f"[{filename}:{token.line}]: #else, returning to non-skipping mode",
            )
        else:
            log.debug(f"[{filename}:{token.line}]: skipping tokens inside the #else")
        self.state.skipping = not active

    def handle_endif_line(self, token: Token, filename: str) -> None:
        if self.state.nested_depth > 0:
            self.state.nested_depth -= 1
            return

        if self.state.skipping:
            log.debug(
                f"[{filename}:{token.line}]: #endif, returning to non-skipping mode",
            )
        self.state.skipping = False
        if self.state.taken:
            self.state.taken.pop()

    def handle_if_line(self, line: IfLine, token: Token, filename: str) -> None:
        if self.state.skipping:
            self.state.nested_depth += 1
            return

        log.debug(f"[{filename}:{token.line}]: handling #if line '{token}'")
        active = self._evaluate_condition(line, token, filename)
        self.state.taken.append(active)
        self.state.skipping = not active
        if not active:
            log.debug(
                f"[{filename}:{token.line}]: '{token}' evaluated to false, "
                + "skipping tokens that follow",
            )

    def handle_elif_line(self, line: ElifLine, token: Token, filename: str) -> None:
        # Handling of an elif line is similar to handling of an if line but
        # doesn't increase the nesting level
        if self.state.nested_depth != 0:
            return

        if self._branch_taken():
            log.debug(f"[{filename}:{token.line}]: skipping tokens inside the #elif")
            self.state.skipping = True
            return

        # The preceding clauses evaluated to false. Skipping must be
        # switched off while the expression is evaluated.
        self.state.skipping = False
        log.debug(f"[{filename}:{token.line}]: handling #elif line '{token}'")
        active = self._evaluate_condition(line, token, filename)
        self._enter_branch(active)
        if not active:
            log.debug(
                f"[{filename}:{token.line}]: '{token}' evaluated to false, "
                + "skipping tokens that follow",
            )

    def _evaluate_condition(self, line: IfLine, token: Token, filename: str) -> bool:
        try:
            return self.evaluate_expression(line.expression)
        except ParseError as e:
            log.error(
                f"[{filename}:{token.line}]: error evaluating the expression "
                + f"'{token}', assuming 'true' ... ({e})",
            )
            return True

    def evaluate_expression(self, tokens: list[Token]) -> bool:
        """
        Evaluate a #if expression: substitute defined(), expand macros
        and evaluate the result.

        Raises
        ------
        EvaluationError
            If the expression cannot be evaluated.
        """
        substituted = self._substitute_defined(tokens)
        expanded = self.expander.expand_all(substituted)
        return ExpressionEvaluator(expanded).evaluate()

    def _substitute_defined(self, tokens: list[Token]) -> list[Token]:
        """
        Replace each defined(X) or defined X by 1 or 0.
        """
        out = []
        idx = 0
        while idx < len(tokens):
            tok = tokens[idx]
            if tok.type is not TokenType.IDENTIFIER or tok.value != "defined":
                out.append(tok)
                idx += 1
                continue

            parser = Parser(tokens)
            parser.pos = idx + 1
            try:
                if not parser.eol() and parser.cursor().value == "(":
                    parser.match_value("(")
                    name = parser.match_type(TokenType.IDENTIFIER)
                    parser.match_value(")")
                else:
                    name = parser.match_type(TokenType.IDENTIFIER)
            except ParseError:
                raise EvaluationError("Expected identifier after 'defined'")

            value = "1" if self.has_macro(name.value) else "0"
            out.append(
                Token(
                    value,
                    TokenType.NUMBER_LITERAL,
                    tok.line,
                    tok.column,
                    tok.uri,
                    generated=True,
                ),
            )
            idx = parser.pos
        return out

    def handle_define_line(self, line: DefineLine, token: Token, filename: str) -> None:
        macro = make_macro_from_line(line)
        spelling = macro.spelling()[0]
        log.debug(f"[{filename}:{token.line}]: storing macro: '{spelling}'")
        self.macros.define(macro)

    def handle_undef_line(self, line: UndefLine, token: Token, filename: str) -> None:
        log.debug(f"[{filename}:{token.line}]: removing macro: '{line.name}'")
        self.macros.undefine(line.name.value)

    def handle_include_line(
        self,
        line: IncludeLine,
        token: Token,
        filename: str,
    ) -> None:
        """
        Record the target of an include directive as found or missing.
        The included text is never read.
        """
        body = line.body
        if not isinstance(body, IncludePath):
            # Computed include, e.g. #include HEADER
            expansion = self.expander.expand_all(body)
            try:
                body = DirectiveParser(expansion).include_path()
            except ParseError:
                log.warning(
                    f"{filename}:{token.line}: cannot resolve computed "
                    + f"include '{line.spelling()[0]}'",
                )
                return

        this_path = os.path.dirname(filename)
        include_file = self.find_include_file(body.path, this_path, body.system)
        include = Include(token.line, body.path)
        if include_file:
            self._included[filename].add(include)
        else:
            self._missing[filename].add(include)
            kind = "system include" if body.system else "user include"
            log.warning(
                f"{filename}:{token.line}: {kind} '{body.path}' not found\n"
                + f"{token.line:>5} | {line.spelling()[0]}",
            )

    def handle_identifiers_and_keywords(
        self,
        tokens: list[Token],
        start: int,
        filename: str,
    ) -> PreprocessorAction:
        """
        Every identifier and every keyword can be a macro instance.
        """
        curr = tokens[start]
        consumed, replacement = self.expander.expand_head(tokens, start)
        if consumed == 0:
            return NO_OPERATION

        log.debug(
            f"[{filename}:{curr.line}]: replacing "
            + f"'{util.serialize(tokens[start : start + consumed])}' -> "
            + f"'{util.serialize(replacement)}'",
        )
        return PreprocessorAction(
            consumed,
            tuple(tokens[start : start + consumed]),
            tuple(replacement),
        )
