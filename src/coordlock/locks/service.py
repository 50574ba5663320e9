"""Lock service facade.

Usage:
    service = LockService.from_config(LockServiceConfig.from_env())
    with service.acquire_exclusive_lock("nightly-import", timeout=30):
        ...  # lock held

    lock = service.acquire_durable_lock("package-install")
    save(lock.recovery_key)
    # ... after a restart ...
    lock = service.recover_durable_lock("package-install", None, load())
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from coordlock.core.config import LockServiceConfig, NodeInfo
from coordlock.core.exceptions import InvalidLockArgumentError, NoNodeError
from coordlock.core.identifiers import is_valid_id, join_path
from coordlock.locks.engine import DurableLock, ExclusiveLock
from coordlock.locks.monitor import LockMonitor
from coordlock.locks.ordering import sort_lock_names
from coordlock.store.base import CoordinationStore
from coordlock.store.factory import create_store
from coordlock.store.retry import call_with_retry


@dataclass
class LockQueue:
    """Snapshot of the contenders for one lock, head first."""

    lock_id: str
    path: str
    durable: bool
    contenders: list[str] = field(default_factory=list)

    @property
    def active(self) -> str | None:
        return self.contenders[0] if self.contenders else None

    @property
    def waiting(self) -> list[str]:
        return self.contenders[1:]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["active"] = self.active
        return data


class LockService:
    """Hands out exclusive and durable locks on one coordination store.

    Args:
        store: Coordination store client shared by every lock
        config: Lock service configuration
        node_info: Identity written into lock nodes (default: from environment)
    """

    def __init__(
        self,
        store: CoordinationStore,
        *,
        config: LockServiceConfig | None = None,
        node_info: NodeInfo | None = None,
        logger: logging.Logger | None = None,
        owns_store: bool = False,
    ):
        self.store = store
        self.config = config or LockServiceConfig()
        self.node_info = node_info or NodeInfo.from_env()
        self.logger = logger or logging.getLogger(__name__)
        self._owns_store = owns_store

    @classmethod
    def from_config(cls, config: LockServiceConfig, logger: logging.Logger | None = None) -> LockService:
        """Create a service with its own store connection; close it with :meth:`close`."""
        store = create_store(config=config.store, logger=logger)
        return cls(store, config=config, logger=logger, owns_store=True)

    def close(self) -> None:
        if self._owns_store:
            self.store.close()

    def __enter__(self) -> LockService:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def acquire_exclusive_lock(
        self,
        lock_id: str,
        monitor: LockMonitor | None = None,
        timeout: float | None = None,
    ) -> ExclusiveLock:
        """Acquire a lock that lives as long as the store session."""
        lock = ExclusiveLock(
            lock_id,
            self.store,
            monitor=monitor,
            config=self.config,
            node_info=self.node_info,
            logger=self.logger,
        )
        lock.acquire(timeout)
        return lock

    def acquire_durable_lock(
        self,
        lock_id: str,
        monitor: LockMonitor | None = None,
        timeout: float | None = None,
    ) -> DurableLock:
        """Acquire a lock that survives the process; see ``recovery_key``."""
        lock = DurableLock(
            lock_id,
            self.store,
            monitor=monitor,
            config=self.config,
            node_info=self.node_info,
            logger=self.logger,
        )
        lock.acquire(timeout)
        return lock

    def recover_durable_lock(
        self,
        lock_id: str,
        monitor: LockMonitor | None,
        recovery_key: str,
    ) -> DurableLock:
        """Take over a durable lock from a previous owner using its recovery key."""
        lock = DurableLock(
            lock_id,
            self.store,
            monitor=monitor,
            config=self.config,
            node_info=self.node_info,
            logger=self.logger,
        )
        lock.recover(recovery_key)
        return lock

    def describe_lock(self, lock_id: str, *, durable: bool = False) -> LockQueue:
        """List the current contenders of a lock, active one first."""
        path = self._lock_path(lock_id, durable)
        try:
            children = call_with_retry(self.store.list_children, path, config=self.config.retry, logger=self.logger)
        except NoNodeError:
            children = []
        return LockQueue(lock_id=lock_id, path=path, durable=durable, contenders=sort_lock_names(children))

    def break_lock(self, lock_id: str, *, durable: bool = False) -> str | None:
        """Delete the active lock node; its holder sees the lock as lost.

        Returns the name of the deleted node, or None if nobody held the lock.
        """
        queue = self.describe_lock(lock_id, durable=durable)
        if queue.active is None:
            return None
        try:
            call_with_retry(
                self.store.delete_node,
                join_path(queue.path, queue.active),
                config=self.config.retry,
                logger=self.logger,
            )
        except NoNodeError:
            self.logger.info(f"Lock node {queue.active} of '{lock_id}' vanished before it could be broken")
            return None
        self.logger.warning(f"Broke lock '{lock_id}' held by {queue.active}")
        return queue.active

    def _lock_path(self, lock_id: str, durable: bool) -> str:
        if not is_valid_id(lock_id):
            raise InvalidLockArgumentError(f"Invalid lock id {lock_id!r}", argument="lock_id")
        parent = self.config.durable_path if durable else self.config.exclusive_path
        return join_path(parent, lock_id)
