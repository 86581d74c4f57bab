#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
single_instance/instance_lock.py
================================

Host-wide, non-blocking "only one of me" lock keyed by an identifier.

Backends
--------
- POSIX: flock(LOCK_EX | LOCK_NB) on <lock_dir>/<lock_name>.lock. The kernel
  drops the lock when the owning process exits or crashes. The file stays
  on disk; removing it would let two processes lock two different inodes.
- Windows: a named mutex (Global\\single_instance.<lock_name>). CreateMutexW
  reports ERROR_ALREADY_EXISTS when another process holds a handle; the OS
  closes our handle, and destroys the mutex, when this process dies.

Both checks are a single OS call; there is no "exists?" then "create" step.

Limitations
-----------
- flock is not reliable on every network filesystem; keep lock_dir local.
- Processes that use different lock directories never see each other.
- A forked child inherits the locked descriptor; the lock then lives until
  both processes have exited or released it.
"""

from __future__ import annotations

import os
import sys
import errno
import hashlib
import logging
from typing import Optional
from urllib.parse import quote

from .utils import resolve_lock_dir

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200
WINDOWS_NAME_PREFIX = "Global\\single_instance."

if sys.platform == "win32":
    import ctypes
    from ctypes import wintypes

    ERROR_ALREADY_EXISTS = 183
    SYNCHRONIZE = 0x00100000

    _kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    _CreateMutexW = _kernel32.CreateMutexW
    _CreateMutexW.argtypes = [wintypes.LPVOID, wintypes.BOOL, wintypes.LPCWSTR]
    _CreateMutexW.restype = wintypes.HANDLE

    _OpenMutexW = _kernel32.OpenMutexW
    _OpenMutexW.argtypes = [wintypes.DWORD, wintypes.BOOL, wintypes.LPCWSTR]
    _OpenMutexW.restype = wintypes.HANDLE

    _CloseHandle = _kernel32.CloseHandle
    _CloseHandle.argtypes = [wintypes.HANDLE]
    _CloseHandle.restype = wintypes.BOOL
else:
    import fcntl


class SingleInstanceError(RuntimeError):
    """Base class for single-instance guard errors."""


class IdentifierError(SingleInstanceError):
    """No usable instance identifier could be determined."""


class AlreadyEnteredError(SingleInstanceError):
    """The guard already holds ownership in this process."""


def lock_name(identifier: str) -> str:
    """
    Map an identifier to a name safe for file names and mutex names.

    The identifier is taken as filesystem bytes (undecodable path bytes
    survive via os.fsencode), and every byte outside [A-Za-z0-9_.~-] is
    percent-escaped, path separators included. Over-long names keep a
    readable prefix and gain a SHA-1 digest of the full identifier.
    """
    if not identifier:
        raise IdentifierError("Instance identifier must be a non-empty string")
    raw = os.fsencode(identifier)
    name = quote(raw, safe="")
    if len(name) > MAX_NAME_LENGTH:
        digest = hashlib.sha1(raw).hexdigest()
        name = f"{name[:MAX_NAME_LENGTH - len(digest) - 1]}-{digest}"
    return name


def lock_path(identifier: str, lock_dir: Optional[str] = None) -> str:
    """Absolute path of the POSIX lock file for `identifier`."""
    return os.path.join(lock_dir or resolve_lock_dir(), lock_name(identifier) + ".lock")


def _would_block(exc: OSError) -> bool:
    return exc.errno in (errno.EAGAIN, errno.EWOULDBLOCK, errno.EACCES)


def _read_if_held(path: str) -> Optional[bytes]:
    """
    Contents of the lock file at `path` if someone holds it, else None.

    Only takes a shared, non-blocking lock for the check, so it never
    competes with an acquire() for ownership.
    """
    try:
        fd = os.open(path, os.O_RDONLY)
    except FileNotFoundError:
        return None

    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
        except OSError as e:
            if not _would_block(e):
                raise
        else:
            # Nobody holds it exclusively; whatever is in the file is stale.
            fcntl.flock(fd, fcntl.LOCK_UN)
            return None

        return os.read(fd, 64)
    finally:
        os.close(fd)


def is_running(identifier: str, lock_dir: Optional[str] = None) -> bool:
    """
    True when some process currently holds `identifier`.

    Read-only check: it never takes ownership, so it cannot make a
    concurrent acquire() fail.
    """
    if sys.platform == "win32":
        handle = _OpenMutexW(SYNCHRONIZE, False, WINDOWS_NAME_PREFIX + lock_name(identifier))
        if not handle:
            return False
        _CloseHandle(handle)
        return True
    return _read_if_held(lock_path(identifier, lock_dir)) is not None


def holder_pid(identifier: str, lock_dir: Optional[str] = None) -> Optional[int]:
    """
    Return the pid recorded by the current holder of `identifier`, if any.

    None when the lock is free, the pid is unreadable, or on Windows where
    the mutex carries no owner information.
    """
    if sys.platform == "win32":
        return None

    content = _read_if_held(lock_path(identifier, lock_dir))
    if content is None:
        return None
    raw = content.decode("ascii", errors="replace").strip()

    try:
        return int(raw.split()[0])
    except (IndexError, ValueError):
        return None


class InstanceLock:
    """
    Non-blocking exclusive lock for one instance identifier.

    Each object owns at most one live handle. Use acquire()/release()
    directly, or as a context manager:

        with InstanceLock("job-42") as acquired:
            if not acquired:
                return
            ...
    """

    def __init__(self, identifier: str, lock_dir: Optional[str] = None):
        if not identifier:
            raise IdentifierError("Instance identifier must be a non-empty string")
        self.identifier = identifier
        self.lock_dir = lock_dir or resolve_lock_dir()
        self.name = lock_name(identifier)
        self._handle = None

    def __repr__(self) -> str:
        state = "held" if self.held else "free"
        return f"<InstanceLock {self.identifier!r} {state}>"

    @property
    def held(self) -> bool:
        return self._handle is not None

    @property
    def path(self) -> str:
        """System-visible name of the primitive (file path or mutex name)."""
        if sys.platform == "win32":
            return WINDOWS_NAME_PREFIX + self.name
        return os.path.join(self.lock_dir, self.name + ".lock")

    # -- acquire ---------------------------------------------------------------

    def acquire(self) -> bool:
        """
        Try to take ownership without waiting.

        Returns True when this object now owns the identifier, False when
        another holder exists. Raises AlreadyEnteredError if this object
        already holds it, OSError if the primitive cannot be created.
        """
        if self._handle is not None:
            raise AlreadyEnteredError(f"Instance lock {self.identifier!r} is already held")

        if sys.platform == "win32":
            acquired = self._acquire_mutex()
        else:
            acquired = self._acquire_flock()

        if acquired:
            logger.debug(f"Acquired instance lock {self.identifier!r} at {self.path}")
        else:
            logger.debug(f"Instance lock {self.identifier!r} is held by another process")
        return acquired

    def _acquire_flock(self) -> bool:
        os.makedirs(self.lock_dir, exist_ok=True)
        path = self.path
        writable = True
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        except PermissionError:
            # Created by another user; a read-only descriptor can still flock.
            fd = os.open(path, os.O_RDONLY)
            writable = False

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            if _would_block(e):
                return False
            raise

        if writable:
            try:
                os.ftruncate(fd, 0)
                os.write(fd, f"{os.getpid()}\n".encode("ascii"))
            except OSError as e:
                logger.warning(f"Could not record pid in {path}: {e}")

        self._handle = fd
        return True

    def _acquire_mutex(self) -> bool:
        handle = _CreateMutexW(None, False, self.path)
        if not handle:
            raise ctypes.WinError(ctypes.get_last_error())

        if ctypes.get_last_error() == ERROR_ALREADY_EXISTS:
            _CloseHandle(handle)
            return False

        self._handle = handle
        return True

    # -- release ---------------------------------------------------------------

    def release(self) -> None:
        """Give up ownership if held. Never raises; no-op when not held."""
        handle, self._handle = self._handle, None
        if handle is None:
            return

        if sys.platform == "win32":
            if not _CloseHandle(handle):
                logger.warning(f"CloseHandle failed for instance lock {self.identifier!r}")
        else:
            try:
                fcntl.flock(handle, fcntl.LOCK_UN)
            except OSError as e:
                logger.warning(f"Unlock failed for {self.path}: {e}")
            finally:
                try:
                    os.close(handle)
                except OSError as e:
                    logger.warning(f"Close failed for {self.path}: {e}")

        logger.debug(f"Released instance lock {self.identifier!r}")

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
