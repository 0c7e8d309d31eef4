# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Preprocessing front end for Objective-C source: conditional compilation,
macro expansion and include tracking over a token stream.
"""
from __future__ import annotations

from objcscan.config import Configuration
from objcscan.preprocessor import (
    Include,
    Macro,
    Preprocessor,
    Token,
    TokenType,
    lex,
    lex_source,
)
from objcscan.scanner import ScanResult, scan_files

__version__ = "1.0.0"

__all__ = [
    "Configuration",
    "Include",
    "Macro",
    "Preprocessor",
    "ScanResult",
    "Token",
    "TokenType",
    "lex",
    "lex_source",
    "scan_files",
]
