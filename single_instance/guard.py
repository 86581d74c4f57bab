#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
single_instance/guard.py
========================

Process-wide enter/exit surface on top of InstanceLock.

One guard per process: enter_single_instance() stores the live lock in
module state, exit_single_instance() releases it. Call exit on every exit
path; it is also registered with atexit after a successful enter.
"""

from __future__ import annotations

import os
import atexit
import inspect
import logging
import threading
from typing import Optional

from .caller_id import DEFAULT_EXTENSION, resolve_caller_identifier
from .instance_lock import AlreadyEnteredError, IdentifierError, InstanceLock

logger = logging.getLogger(__name__)

_GUARD: Optional[InstanceLock] = None
_STATE_LOCK = threading.Lock()
_ATEXIT_REGISTERED = False


def enter_single_instance(identifier: Optional[str] = None, *, lock_dir: Optional[str] = None) -> bool:
    """
    Claim the process-wide single-instance guard.

    Without `identifier`, the calling script's path is used (see
    resolve_caller_identifier). Returns False when another process already
    holds the identifier; raises IdentifierError when no identifier can be
    determined and AlreadyEnteredError when this process already holds the
    guard.
    """
    global _GUARD, _ATEXIT_REGISTERED

    if not identifier:
        frame = inspect.currentframe()
        try:
            identifier = resolve_caller_identifier(
                DEFAULT_EXTENSION, frame=frame.f_back if frame is not None else None
            )
        finally:
            del frame
        if not identifier:
            raise IdentifierError(
                "No instance identifier given and none could be resolved from the call stack"
            )
        # co_filename may be relative to the working directory.
        # co_filename can be relative (python main.py on 3.8); pin it to one path.
        identifier = os.path.abspath(identifier)
        logger.debug(f"Resolved instance identifier from call stack: {identifier}")

    with _STATE_LOCK:
        if _GUARD is not None:
            raise AlreadyEnteredError(
                f"Single instance already entered as {_GUARD.identifier!r}"
            )

        guard = InstanceLock(identifier, lock_dir=lock_dir)
        if not guard.acquire():
            logger.info(f"Another instance of {identifier!r} is already running")
            return False

        _GUARD = guard
        if not _ATEXIT_REGISTERED:
            atexit.register(exit_single_instance)
            _ATEXIT_REGISTERED = True

    return True


def exit_single_instance() -> None:
    """Release the process-wide guard if held. Always safe to call."""
    global _GUARD

    with _STATE_LOCK:
        guard, _GUARD = _GUARD, None

    if guard is not None:
        guard.release()


def current_guard() -> Optional[InstanceLock]:
    """The InstanceLock currently held by enter_single_instance(), if any."""
    return _GUARD
