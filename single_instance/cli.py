#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
single_instance/cli.py
======================

Role
----
Run a command only if no other instance of it is running on this host.

   $ single-instance --id nightly-backup -- rsync -a /src /dst
   $ single-instance --settings single_instance_settings.yaml -- ./report.py
   $ single-instance --id nightly-backup --status

Without --id, the identifier is the command line with its executable
resolved to an absolute path.

Exit codes
----------
RC_OK              = 0  (clean finish, or --status found the identifier free)
RC_FATAL_ERR       = 2  (configuration error: settings, identifier, command)
RC_ALREADY_RUNNING = 3  (another instance holds the identifier)
Otherwise the wrapped command's own return code is passed through.
"""

from __future__ import annotations

import os
import sys
import shlex
import shutil
import argparse
import subprocess
from typing import List, Optional

from .guard import enter_single_instance, exit_single_instance
from .instance_lock import SingleInstanceError, holder_pid, is_running
from .utils import load_settings, resolve_lock_dir, setup_logger

# -----------------------------------------------------------------------------
# Exit codes
RC_OK = 0                 # Clean finish
RC_FATAL_ERR = 2          # Unrecoverable/config error
RC_ALREADY_RUNNING = 3    # Identifier held elsewhere
RC_INTERRUPTED = 130      # Ctrl-C while the command was running
# -----------------------------------------------------------------------------


def command_identifier(command: List[str]) -> str:
    """Stable identifier for a command line: absolute executable + args."""
    exe = command[0]
    resolved = shutil.which(exe) or exe
    return shlex.join([os.path.abspath(resolved)] + list(command[1:]))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="single-instance",
        description="Run a command unless another instance of it is already running.",
    )
    parser.add_argument("--id", dest="identifier",
                        help="Instance identifier (default: derived from the command line).")
    parser.add_argument("--settings",
                        help="Path to YAML settings (paths.locks_dir, logging_levels).")
    parser.add_argument("--lock-dir",
                        help="Directory for lock files (overrides settings; POSIX only).")
    parser.add_argument("--status", action="store_true",
                        help="Only report whether the identifier is currently held.")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging.")
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="Command to run (prefix with -- to stop option parsing).")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]

    settings = None
    if args.settings:
        try:
            settings = load_settings(args.settings)
        except Exception as e:
            print(f"[FATAL] Cannot load settings: {e}", file=sys.stderr)
            return RC_FATAL_ERR

    logger = setup_logger(
        "single_instance",
        settings=settings,
        level_override="DEBUG" if args.verbose else None,
        to_file=bool(((settings or {}).get("paths") or {}).get("logs_dir")),
    )

    lock_dir = args.lock_dir or resolve_lock_dir(settings)
    identifier = args.identifier or (command_identifier(command) if command else None)
    if not identifier:
        logger.error("Nothing to guard: pass --id and/or a command to run.")
        return RC_FATAL_ERR

    if args.status:
        try:
            running = is_running(identifier, lock_dir)
        except SingleInstanceError as e:
            logger.error(str(e))
            return RC_FATAL_ERR
        if not running:
            print(f"{identifier}: not running")
            return RC_OK
        pid = holder_pid(identifier, lock_dir)
        owner = f" (pid {pid})" if pid is not None else ""
        print(f"{identifier}: running{owner}")
        return RC_ALREADY_RUNNING

    if not command:
        logger.error("No command given.")
        return RC_FATAL_ERR

    try:
        acquired = enter_single_instance(identifier, lock_dir=lock_dir)
    except SingleInstanceError as e:
        logger.error(str(e))
        return RC_FATAL_ERR

    if not acquired:
        pid = holder_pid(identifier, lock_dir)
        owner = f" (pid {pid})" if pid is not None else ""
        logger.warning(f"{identifier} is already running{owner}; not starting another.")
        return RC_ALREADY_RUNNING

    try:
        logger.info(f"Running {shlex.join(command)} as {identifier!r}")
        rc = subprocess.run(command).returncode
        logger.debug(f"Command finished with rc={rc}")
        return rc
    except FileNotFoundError:
        logger.error(f"Command not found: {command[0]}")
        return RC_FATAL_ERR
    except KeyboardInterrupt:
        return RC_INTERRUPTED
    finally:
        exit_single_instance()


if __name__ == "__main__":
    raise SystemExit(main())
