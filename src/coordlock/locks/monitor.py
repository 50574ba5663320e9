"""Callbacks for lock state changes."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coordlock.locks.engine import LockEngine


class LockMonitor:
    """Receives asynchronous notifications about a lock.

    Subclass and override what you need; every method is a no-op here.
    Callbacks run on the lock's own worker thread, one at a time, and
    ``lock_acquired``, ``lock_released`` and ``lock_lost`` fire at most
    once per lock. Exceptions raised here are logged and ignored.
    """

    def lock_acquired(self, lock: LockEngine) -> None:
        pass

    def lock_released(self, lock: LockEngine) -> None:
        pass

    def lock_lost(self, lock: LockEngine) -> None:
        """Called when the lock was taken away (session loss, deletion, steal)."""

    def lock_suspended(self, lock: LockEngine) -> None:
        """Called when the store connection dropped while the lock was held.

        The lock may come back; ``lock_lost`` follows if it does not.
        ``lock.is_valid()`` returns False here without waiting.
        """
