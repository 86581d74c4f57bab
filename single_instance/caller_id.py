#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
single_instance/caller_id.py
============================

Derive "which program called me" from the live call stack.

The walk starts at the caller of resolve_caller_identifier() and moves
outward (f_back) until it finds a frame whose source file carries the
requested extension. Frames that belong to this package are skipped, so a
library call such as enter_single_instance() resolves to the user's script
rather than to our own modules.

Interpreters without frame support (inspect.currentframe() returns None)
get None back; callers must then pass an identifier explicitly.
"""

from __future__ import annotations

import os
import inspect
from typing import Any, Optional

MAX_FRAME_DEPTH = 100
DEFAULT_EXTENSION = ".py"

_PACKAGE_DIR = os.path.normcase(os.path.dirname(os.path.abspath(__file__)))


def _is_package_file(filename: str) -> bool:
    try:
        path = os.path.normcase(os.path.abspath(filename))
    except (TypeError, ValueError):
        return False
    return os.path.dirname(path) == _PACKAGE_DIR


def _has_extension(filename: str, extension: str) -> bool:
    ext = os.path.splitext(filename)[1]
    return bool(ext) and os.path.normcase(ext) == os.path.normcase(extension)


def resolve_caller_identifier(
    extension: str = DEFAULT_EXTENSION,
    *,
    frame: Optional[Any] = None,
    max_depth: int = MAX_FRAME_DEPTH,
) -> Optional[str]:
    """
    Return the source path of the nearest calling frame ending in `extension`.

    `frame` overrides the starting point of the walk; it may be any object
    exposing `f_code.co_filename` and `f_back`. Returns None when the stack
    is exhausted, `max_depth` frames were examined without a match, or frame
    introspection is unavailable.
    """
    if not extension:
        return None
    if not extension.startswith("."):
        extension = "." + extension

    if frame is None:
        current = inspect.currentframe()
        if current is None:
            return None
        frame = current.f_back
        del current

    depth = 0
    while frame is not None and depth < max_depth:
        code = getattr(frame, "f_code", None)
        filename = getattr(code, "co_filename", None) if code is not None else None
        if filename and _has_extension(filename, extension) and not _is_package_file(filename):
            return filename
        frame = getattr(frame, "f_back", None)
        depth += 1

    return None
