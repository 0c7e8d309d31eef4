# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains functions and classes related to finding and preprocessing the
source files of an Objective-C code base.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from tqdm import tqdm

from objcscan.config import Configuration
from objcscan.preprocessor import Include, Preprocessor, Token

log = logging.getLogger(__name__)

SOURCE_EXTENSIONS = (".h", ".m", ".mm", ".c")


@dataclass
class ScanResult:
    """
    The preprocessed tokens of one file and the include directives it
    contains, split into those that were found and those that were not.
    """

    path: str
    tokens: list[Token] = field(default_factory=list)
    included: set[Include] = field(default_factory=set)
    missing: set[Include] = field(default_factory=set)

    def __repr__(self) -> str:
        return (
            f"ScanResult(path={self.path!r},tokens={len(self.tokens)},"
            f"included={len(self.included)},missing={len(self.missing)})"
        )


def find_source_files(
    root: str | os.PathLike[str],
    extensions: Iterable[str] = SOURCE_EXTENSIONS,
) -> list[Path]:
    """
    Return every file below root with one of the given extensions,
    sorted by path.
    """
    suffixes = {e.lower() for e in extensions}
    return sorted(
        p
        for p in Path(root).rglob("*")
        if p.is_file() and p.suffix.lower() in suffixes
    )


def scan_files(
    paths: Iterable[str | os.PathLike[str]],
    configuration: Configuration | None = None,
    *,
    show_progress: bool = False,
) -> list[ScanResult]:
    """
    Preprocess each file with one shared session and return a ScanResult
    per file, in order. Macros defined by a file do not leak into the
    next one. Bytes that cannot be decoded are replaced, and a file that
    cannot be read yields an empty ScanResult.
    """
    preprocessor = Preprocessor(configuration)

    results = []
    for path in tqdm(
        list(paths),
        desc="Preprocessing",
        unit=" files",
        leave=False,
        disable=not show_progress,
    ):
        filename = str(path)
        log.debug(f"Preprocessing {filename}")
        try:
            tokens = preprocessor.preprocess_file(filename)
        except OSError as e:
            log.warning(f"Could not read {filename}: {e}")
            results.append(ScanResult(filename))
            continue
        finally:
            preprocessor.finished_preprocessing(filename)

        results.append(
            ScanResult(
                filename,
                tokens,
                preprocessor.get_included_files(filename),
                preprocessor.get_missing_include_files(filename),
            ),
        )
    return results
