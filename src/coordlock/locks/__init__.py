"""Locking protocol on top of a coordination store.

The engine implements the sequential-node recipe; the service hands out
ready-to-use exclusive and durable locks.
"""

from coordlock.locks.engine import DurableLock, ExclusiveLock, LockEngine
from coordlock.locks.executor import SerialExecutor
from coordlock.locks.monitor import LockMonitor
from coordlock.locks.ordering import find_predecessor, sequence_number, sort_lock_names
from coordlock.locks.policy import KillAction, KillReason, kill_action
from coordlock.locks.recovery import create_recovery_key, matches_recovery_key, parse_recovery_key
from coordlock.locks.service import LockQueue, LockService

__all__ = [
    "DurableLock",
    "ExclusiveLock",
    "KillAction",
    "KillReason",
    "LockEngine",
    "LockMonitor",
    "LockQueue",
    "LockService",
    "SerialExecutor",
    "create_recovery_key",
    "find_predecessor",
    "kill_action",
    "matches_recovery_key",
    "parse_recovery_key",
    "sequence_number",
    "sort_lock_names",
]
