#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
single_instance/utils.py
========================

Shared helpers for the single_instance package.

Key responsibilities
--------------------
- Load YAML settings and normalize path fields relative to the settings file.
- Resolve the lock directory used by the POSIX backend.
- Provide a logging helper (rotating file + console) driven by YAML levels.

Conventions
-----------
- `settings['_meta']['settings_dir']` is injected by load_settings() so other
  helpers can resolve relative paths consistently.
- Settings are optional everywhere; every helper accepts None.
"""

from __future__ import annotations

import os
import logging
import tempfile
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

import yaml


DEFAULT_LOCKS_SUBDIR = "single_instance"


# -----------------------------------------------------------------------------
# Settings loading / normalization
# -----------------------------------------------------------------------------

def _abspath_relative_to(base_dir: str, maybe_path: Optional[str]) -> Optional[str]:
    """Return absolute path given a base directory."""
    if not maybe_path:
        return None
    p = str(maybe_path).strip()
    if not p:
        return None
    p = os.path.expanduser(p)
    if os.path.isabs(p):
        return p
    return os.path.abspath(os.path.join(base_dir, p))


def load_settings(path: str) -> Dict[str, Any]:
    """
    Load YAML settings and inject a `_meta` section with:
      - settings_file (abs path)
      - settings_dir  (dir of the file)

    String values under `paths:` are normalized to absolute paths.
    """
    path = os.path.abspath(path)
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Settings file must contain a mapping: {path}")

    settings_dir = os.path.dirname(path)
    data.setdefault("_meta", {})
    data["_meta"]["settings_file"] = path
    data["_meta"]["settings_dir"] = settings_dir

    if isinstance(data.get("paths"), dict):
        for k, v in list(data["paths"].items()):
            if isinstance(v, str):
                data["paths"][k] = _abspath_relative_to(settings_dir, v)

    return data


def resolve_lock_dir(settings: Optional[Dict[str, Any]] = None) -> str:
    """
    Return the absolute directory holding POSIX lock files.

    Order of resolution:
      1) settings['paths']['locks_dir']
      2) <tempdir>/single_instance

    The directory is NOT created here; the lock creates it on acquire.
    """
    if isinstance(settings, dict):
        paths = settings.get("paths", {}) or {}
        p = paths.get("locks_dir")
        if p:
            return os.path.abspath(p)
    return os.path.join(tempfile.gettempdir(), DEFAULT_LOCKS_SUBDIR)


# -----------------------------------------------------------------------------
# Logging helpers
# -----------------------------------------------------------------------------

def _level_from_name(name: str, default=logging.INFO) -> int:
    level = getattr(logging, str(name).upper(), None)
    return level if isinstance(level, int) else default


def setup_logger(
    name: str,
    settings: Optional[Dict[str, Any]] = None,
    *,
    level_override: Optional[str] = None,
    to_console: bool = True,
    to_file: bool = False,
    logfile_path: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Create or reuse a configured logger.

    Parameters
    ----------
    name : str
        Logger name; also used to lookup per-logger level in YAML under
        `logging_levels.<name>` (falls back to `logging_levels.default`).
    settings : dict
        Settings dict loaded via load_settings(), or None.
    level_override : str
        Force a level (e.g., "DEBUG") ignoring YAML.
    to_console : bool
        Attach a stream handler to stderr.
    to_file : bool
        Attach a RotatingFileHandler under `paths.logs_dir`.
    logfile_path : str
        Full path to a logfile; overrides the default derived from logs_dir/name.
    max_bytes : int
        RotatingFileHandler maxBytes.
    backup_count : int
        RotatingFileHandler backupCount.
    """
    logger = logging.getLogger(name)

    default_level = logging.INFO
    if settings:
        levels = settings.get("logging_levels", {}) or {}
        level_name = levels.get(name, levels.get("default", "INFO"))
        default_level = _level_from_name(level_name, logging.INFO)

    if level_override:
        default_level = _level_from_name(level_override, default_level)

    logger.setLevel(default_level)

    # Idempotent handler attachment
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    if to_console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)

    if to_file:
        if not logfile_path:
            logs_dir = (settings.get("paths", {}) or {}).get("logs_dir") if settings else None
            logs_dir = logs_dir or os.path.abspath("logs")
            logfile_path = os.path.join(logs_dir, f"{name}.log")

        if not any(isinstance(h, RotatingFileHandler) and getattr(h, "baseFilename", None) == logfile_path
                   for h in logger.handlers):
            os.makedirs(os.path.dirname(logfile_path), exist_ok=True)
            fh = RotatingFileHandler(logfile_path, maxBytes=max_bytes, backupCount=backup_count)
            fh.setFormatter(fmt)
            logger.addHandler(fh)

    for h in logger.handlers:
        h.setLevel(default_level)

    return logger
