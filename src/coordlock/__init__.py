"""
coordlock - Distributed mutual-exclusion locks on a coordination store.

Exclusive locks live as long as the store session; durable locks survive
process restarts and are taken back with a recovery key.

Example usage:
    from coordlock import LockService, LockServiceConfig

    with LockService.from_config(LockServiceConfig.from_env()) as service:
        with service.acquire_exclusive_lock("nightly-import", timeout=30):
            run_import()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from coordlock.core.lazy import make_dir, make_getattr
from coordlock.core.version import __version__

if TYPE_CHECKING:
    from coordlock.core.config import LockServiceConfig, NodeInfo, RetryConfig, StoreConfig
    from coordlock.core.exceptions import (
        CoordLockError,
        InvalidLockArgumentError,
        LockAcquisitionFailedError,
        LockAcquisitionTimeoutError,
        LockStolenError,
        StoreError,
    )
    from coordlock.locks.engine import DurableLock, ExclusiveLock, LockEngine
    from coordlock.locks.monitor import LockMonitor
    from coordlock.locks.policy import KillReason
    from coordlock.locks.service import LockQueue, LockService
    from coordlock.store.factory import create_store

_EXPORTS = {
    # Config
    "LockServiceConfig": "coordlock.core.config",
    "NodeInfo": "coordlock.core.config",
    "RetryConfig": "coordlock.core.config",
    "StoreConfig": "coordlock.core.config",
    # Exceptions
    "CoordLockError": "coordlock.core.exceptions",
    "InvalidLockArgumentError": "coordlock.core.exceptions",
    "LockAcquisitionFailedError": "coordlock.core.exceptions",
    "LockAcquisitionTimeoutError": "coordlock.core.exceptions",
    "LockStolenError": "coordlock.core.exceptions",
    "StoreError": "coordlock.core.exceptions",
    # Locks
    "DurableLock": "coordlock.locks.engine",
    "ExclusiveLock": "coordlock.locks.engine",
    "LockEngine": "coordlock.locks.engine",
    "LockMonitor": "coordlock.locks.monitor",
    "KillReason": "coordlock.locks.policy",
    "LockQueue": "coordlock.locks.service",
    "LockService": "coordlock.locks.service",
    # Store
    "create_store": "coordlock.store.factory",
}

__all__ = ["__version__", *_EXPORTS]

__getattr__ = make_getattr(__name__, _EXPORTS)
__dir__ = make_dir(globals(), _EXPORTS)
