"""ZooKeeper coordination store built on kazoo.

Translates kazoo exceptions into the coordlock store errors, kazoo watch
events into :class:`NodeEvent` and ``KazooState`` transitions into
:class:`SessionState`. Callbacks run on kazoo's event thread.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

from kazoo import exceptions as kazoo_errors
from kazoo.client import KazooClient
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import EventType, KazooState, WatchedEvent

from coordlock.core.config import StoreConfig
from coordlock.core.exceptions import (
    BadVersionError,
    NodeExistsError,
    NoNodeError,
    SessionLossError,
    StoreError,
    StoreUnavailableError,
)
from coordlock.store.base import (
    CreateMode,
    NodeEvent,
    NodeEventType,
    NodeStat,
    SessionListener,
    SessionState,
    WatchCallback,
)

_EVENT_TYPES = {
    EventType.CREATED: NodeEventType.CREATED,
    EventType.DELETED: NodeEventType.DELETED,
    EventType.CHANGED: NodeEventType.CHANGED,
    EventType.CHILD: NodeEventType.CHILD,
}

_SESSION_STATES = {
    KazooState.CONNECTED: SessionState.CONNECTED,
    KazooState.SUSPENDED: SessionState.SUSPENDED,
    KazooState.LOST: SessionState.LOST,
}


@contextlib.contextmanager
def _translate_errors(path: str | None) -> Iterator[None]:
    try:
        yield
    except kazoo_errors.NoNodeError as e:
        raise NoNodeError("Node does not exist", path=path) from e
    except kazoo_errors.NodeExistsError as e:
        raise NodeExistsError("Node already exists", path=path) from e
    except kazoo_errors.BadVersionError as e:
        raise BadVersionError("Version mismatch", path=path) from e
    except kazoo_errors.NotEmptyError as e:
        raise StoreError("Node has children", path=path) from e
    except (kazoo_errors.SessionExpiredError, kazoo_errors.ConnectionClosedError) as e:
        raise SessionLossError("Session expired", path=path, details=type(e).__name__) from e
    except (kazoo_errors.ConnectionLoss, kazoo_errors.OperationTimeoutError, KazooTimeoutError) as e:
        raise StoreUnavailableError("Connection to ZooKeeper lost", path=path, details=type(e).__name__) from e
    except kazoo_errors.KazooException as e:
        raise StoreError("ZooKeeper operation failed", path=path, details=f"{type(e).__name__}: {e!s}") from e


def _stat(znode_stat: Any) -> NodeStat:
    owner = getattr(znode_stat, "ephemeralOwner", 0)
    return NodeStat(
        version=znode_stat.version,
        ephemeral_owner=owner or None,
        num_children=getattr(znode_stat, "numChildren", 0),
    )


class ZooKeeperCoordinationStore:
    """Coordination store backed by a ZooKeeper ensemble.

    Args:
        config: Connection settings (hosts, session and connect timeouts)
        client: Pre-built ``KazooClient``; created from ``config`` when omitted
        start: Connect immediately (default: True)
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        client: KazooClient | None = None,
        start: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.config = config or StoreConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._client = client or KazooClient(hosts=self.config.hosts, timeout=self.config.session_timeout)
        self._lock = threading.Lock()
        self._listener_wrappers: dict[SessionListener, Callable[[KazooState], None]] = {}
        if start:
            self.start()

    def start(self) -> None:
        self.logger.info(f"Connecting to ZooKeeper at {self.config.hosts}")
        with _translate_errors(None):
            self._client.start(timeout=self.config.connect_timeout)

    @property
    def client(self) -> KazooClient:
        return self._client

    @property
    def session_id(self) -> int | None:
        client_id = self._client.client_id
        return client_id[0] if client_id else None

    def create_node(
        self,
        path: str,
        data: bytes = b"",
        *,
        mode: CreateMode = CreateMode.PERSISTENT,
        make_parents: bool = False,
    ) -> str:
        with _translate_errors(path):
            return self._client.create(
                path,
                value=data,
                ephemeral=mode.ephemeral,
                sequence=mode.sequential,
                makepath=make_parents,
            )

    def exists(self, path: str, watch: WatchCallback | None = None) -> bool:
        with _translate_errors(path):
            return self._client.exists(path, watch=self._wrap_watch(watch)) is not None

    def list_children(self, path: str, watch: WatchCallback | None = None) -> list[str]:
        with _translate_errors(path):
            return list(self._client.get_children(path, watch=self._wrap_watch(watch)))

    def delete_node(self, path: str, version: int = -1) -> None:
        with _translate_errors(path):
            self._client.delete(path, version=version)

    def read_node(self, path: str, watch: WatchCallback | None = None) -> tuple[bytes, NodeStat]:
        with _translate_errors(path):
            data, znode_stat = self._client.get(path, watch=self._wrap_watch(watch))
        return data or b"", _stat(znode_stat)

    def write_node(self, path: str, data: bytes, version: int = -1) -> NodeStat:
        with _translate_errors(path):
            return _stat(self._client.set(path, data, version=version))

    def add_session_listener(self, listener: SessionListener) -> None:
        def forward(state: KazooState) -> None:
            session_state = _SESSION_STATES.get(state)
            if session_state is not None:
                listener(session_state)

        with self._lock:
            if listener in self._listener_wrappers:
                return
            self._listener_wrappers[listener] = forward
        self._client.add_listener(forward)

    def remove_session_listener(self, listener: SessionListener) -> None:
        with self._lock:
            forward = self._listener_wrappers.pop(listener, None)
        if forward is not None:
            self._client.remove_listener(forward)

    def close(self) -> None:
        self.logger.info("Closing ZooKeeper session")
        try:
            self._client.stop()
        finally:
            self._client.close()

    def _wrap_watch(self, watch: WatchCallback | None) -> Callable[[WatchedEvent], None] | None:
        # A fresh wrapper per registration; kazoo drops it once it fires or
        # the session ends, so nothing here outlives the watch.
        if watch is None:
            return None

        def wrapper(event: WatchedEvent) -> None:
            event_type = _EVENT_TYPES.get(event.type)
            if event_type is None:
                self.logger.debug(f"Ignoring ZooKeeper event {event!r}")
                return
            watch(NodeEvent(event_type, event.path))

        return wrapper
