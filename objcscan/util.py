# Copyright (C) 2019-2024 Intel Corporation
# SPDX-License-Identifier: BSD-3-Clause
"""
Contains utility functions shared by the other modules.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

log = logging.getLogger(__name__)


def valid_path(path: str) -> bool:
    """
    Check if a path looks like something that could name a file.

    Returns
    -------
    bool
        False if the path is empty or contains characters that cannot
        appear in a filename, True otherwise.
    """
    if not path or not path.strip():
        return False

    # Null bytes and line breaks never appear in real include targets.
    for c in ["\0", "\n", "\r"]:
        if c in path:
            log.debug(f"Rejecting path containing {c!r}: {path!r}")
            return False
    return True


def serialize(tokens: Iterable[Any], spacer: str = " ") -> str:
    """
    Join the text of each token with `spacer`.
    """
    return spacer.join(str(t) for t in tokens)
