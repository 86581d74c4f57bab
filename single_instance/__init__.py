"""Process-singleton guard: keep one instance of a program running per host."""

from .caller_id import MAX_FRAME_DEPTH, resolve_caller_identifier
from .guard import current_guard, enter_single_instance, exit_single_instance
from .instance_lock import (
    AlreadyEnteredError,
    IdentifierError,
    InstanceLock,
    SingleInstanceError,
    holder_pid,
    is_running,
    lock_name,
)

__version__ = "1.0.0"

__all__ = [
    "AlreadyEnteredError",
    "IdentifierError",
    "InstanceLock",
    "MAX_FRAME_DEPTH",
    "SingleInstanceError",
    "current_guard",
    "enter_single_instance",
    "exit_single_instance",
    "holder_pid",
    "is_running",
    "lock_name",
    "resolve_caller_identifier",
]
