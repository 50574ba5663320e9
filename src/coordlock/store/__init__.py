"""Coordination store clients.

``CoordinationStore`` is the protocol the lock engine talks to; the
in-memory implementation serves tests and single-process use, the
ZooKeeper implementation talks to a real ensemble through kazoo.
"""

from coordlock.store.base import (
    CoordinationStore,
    CreateMode,
    NodeEvent,
    NodeEventType,
    NodeStat,
    SessionState,
)
from coordlock.store.factory import create_store
from coordlock.store.memory import InMemoryCoordinationServer, InMemoryCoordinationStore
from coordlock.store.retry import call_with_retry, retry_store_operation

__all__ = [
    "CoordinationStore",
    "CreateMode",
    "NodeEvent",
    "NodeEventType",
    "NodeStat",
    "SessionState",
    "InMemoryCoordinationServer",
    "InMemoryCoordinationStore",
    "ZooKeeperCoordinationStore",
    "call_with_retry",
    "create_store",
    "retry_store_operation",
]


from coordlock.core.lazy import make_getattr

__getattr__ = make_getattr(
    __name__,
    {
        "ZooKeeperCoordinationStore": "coordlock.store.zookeeper",
    },
)
