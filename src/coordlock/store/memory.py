"""In-process coordination store.

``InMemoryCoordinationServer`` holds a single node tree shared by any number
of ``InMemoryCoordinationStore`` clients. Each client owns a session, the
ephemeral nodes it created, and one dispatcher thread that delivers watch
events and session transitions in order. The server follows ZooKeeper
semantics closely enough to exercise the locking protocol:

- sequential nodes get a 10-digit, zero-padded, per-parent counter suffix,
- watches are one-shot and deduplicated per (client, callback, path),
- expiring or closing a session deletes its ephemeral nodes,
- a suspended client keeps its session but every operation fails with
  ``StoreUnavailableError``; watch events are held back until it reconnects.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from coordlock.core.constants import SEQUENCE_DIGITS
from coordlock.core.exceptions import (
    BadVersionError,
    NodeExistsError,
    NoNodeError,
    SessionLossError,
    StoreError,
    StoreUnavailableError,
)
from coordlock.core.identifiers import node_name, parent_path
from coordlock.store.base import (
    CreateMode,
    NodeEvent,
    NodeEventType,
    NodeStat,
    SessionListener,
    SessionState,
    WatchCallback,
)

_STOP = object()


@dataclass
class _Node:
    data: bytes = b""
    version: int = 0
    ephemeral_owner: int | None = None
    children: set[str] = field(default_factory=set)
    next_sequence: int = 0

    def stat(self) -> NodeStat:
        return NodeStat(
            version=self.version,
            ephemeral_owner=self.ephemeral_owner,
            num_children=len(self.children),
        )


@dataclass
class _InjectedFailure:
    error: BaseException
    after_apply: bool


def _validate_path(path: str) -> str:
    if not isinstance(path, str) or not path.startswith("/"):
        raise StoreError("Node paths must be absolute", path=str(path))
    if path != "/" and (path.endswith("/") or "//" in path):
        raise StoreError("Malformed node path", path=path)
    return path


class InMemoryCoordinationServer:
    """Shared node tree backing any number of in-memory clients."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._nodes: dict[str, _Node] = {"/": _Node()}
        self._data_watches: dict[str, list[tuple[InMemoryCoordinationStore, WatchCallback]]] = {}
        self._child_watches: dict[str, list[tuple[InMemoryCoordinationStore, WatchCallback]]] = {}
        self._ephemerals: dict[int, set[str]] = {}
        self._session_ids = itertools.count(1)

    def connect(self, name: str | None = None) -> InMemoryCoordinationStore:
        """Open a new client session."""
        with self._lock:
            session_id = next(self._session_ids)
            self._ephemerals[session_id] = set()
        client = InMemoryCoordinationStore(self, session_id, name=name, logger=self.logger)
        self.logger.debug(f"Session {session_id} connected")
        return client

    # ==================== INSPECTION ====================

    def node_exists(self, path: str) -> bool:
        with self._lock:
            return path in self._nodes

    def get_data(self, path: str) -> bytes:
        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                raise NoNodeError("Node does not exist", path=path)
            return node.data

    def get_children(self, path: str) -> list[str]:
        with self._lock:
            node = self._nodes.get(path)
            return sorted(node.children) if node is not None else []

    def watch_count(self, path: str) -> int:
        """Number of pending data and child watches registered on ``path``."""
        with self._lock:
            return len(self._data_watches.get(path, ())) + len(self._child_watches.get(path, ()))

    # ==================== OPERATIONS ====================

    def _create(
        self,
        client: InMemoryCoordinationStore,
        path: str,
        data: bytes,
        mode: CreateMode,
        make_parents: bool,
    ) -> str:
        path = _validate_path(path)
        if path == "/":
            raise NodeExistsError("Node already exists", path=path)
        parent = parent_path(path)
        if parent not in self._nodes:
            if not make_parents:
                raise NoNodeError("Parent node does not exist", path=parent)
            self._make_parents(parent)
        parent_node = self._nodes[parent]
        if parent_node.ephemeral_owner is not None:
            raise StoreError("Ephemeral nodes may not have children", path=parent)

        if mode.sequential:
            sequence = parent_node.next_sequence
            parent_node.next_sequence += 1
            path = f"{path}{sequence:0{SEQUENCE_DIGITS}d}"
        if path in self._nodes:
            raise NodeExistsError("Node already exists", path=path)

        owner = client.session_id if mode.ephemeral else None
        self._nodes[path] = _Node(data=bytes(data), ephemeral_owner=owner)
        parent_node.children.add(node_name(path))
        if owner is not None:
            self._ephemerals[owner].add(path)

        self._fire(self._data_watches, path, NodeEventType.CREATED)
        self._fire(self._child_watches, parent, NodeEventType.CHILD)
        return path

    def _make_parents(self, path: str) -> None:
        current = ""
        for segment in path.strip("/").split("/"):
            current = f"{current}/{segment}"
            if current in self._nodes:
                continue
            parent = parent_path(current)
            self._nodes[current] = _Node()
            self._nodes[parent].children.add(segment)
            self._fire(self._data_watches, current, NodeEventType.CREATED)
            self._fire(self._child_watches, parent, NodeEventType.CHILD)

    def _delete(self, path: str, version: int) -> None:
        path = _validate_path(path)
        node = self._nodes.get(path)
        if node is None or path == "/":
            raise NoNodeError("Node does not exist", path=path)
        if node.children:
            raise StoreError("Node has children", path=path)
        if version != -1 and version != node.version:
            raise BadVersionError("Version mismatch on delete", path=path, details=f"expected {version}")

        parent = parent_path(path)
        del self._nodes[path]
        self._nodes[parent].children.discard(node_name(path))
        if node.ephemeral_owner is not None:
            self._ephemerals.get(node.ephemeral_owner, set()).discard(path)

        self._fire(self._data_watches, path, NodeEventType.DELETED)
        self._fire(self._child_watches, path, NodeEventType.DELETED)
        self._fire(self._child_watches, parent, NodeEventType.CHILD)

    def _exists(self, client: InMemoryCoordinationStore, path: str, watch: WatchCallback | None) -> bool:
        path = _validate_path(path)
        if watch is not None:
            self._register(self._data_watches, path, client, watch)
        return path in self._nodes

    def _read(
        self, client: InMemoryCoordinationStore, path: str, watch: WatchCallback | None
    ) -> tuple[bytes, NodeStat]:
        path = _validate_path(path)
        node = self._nodes.get(path)
        if node is None:
            raise NoNodeError("Node does not exist", path=path)
        if watch is not None:
            self._register(self._data_watches, path, client, watch)
        return node.data, node.stat()

    def _write(self, path: str, data: bytes, version: int) -> NodeStat:
        path = _validate_path(path)
        node = self._nodes.get(path)
        if node is None:
            raise NoNodeError("Node does not exist", path=path)
        if version != -1 and version != node.version:
            raise BadVersionError("Version mismatch on write", path=path, details=f"expected {version}")
        node.data = bytes(data)
        node.version += 1
        self._fire(self._data_watches, path, NodeEventType.CHANGED)
        return node.stat()

    def _list(self, client: InMemoryCoordinationStore, path: str, watch: WatchCallback | None) -> list[str]:
        path = _validate_path(path)
        node = self._nodes.get(path)
        if node is None:
            raise NoNodeError("Node does not exist", path=path)
        if watch is not None:
            self._register(self._child_watches, path, client, watch)
        # Unordered on purpose: callers must sort by sequence themselves.
        return list(node.children)

    # ==================== WATCHES & SESSIONS ====================

    @staticmethod
    def _register(
        table: dict[str, list[tuple[InMemoryCoordinationStore, WatchCallback]]],
        path: str,
        client: InMemoryCoordinationStore,
        watch: WatchCallback,
    ) -> None:
        entries = table.setdefault(path, [])
        if (client, watch) not in entries:
            entries.append((client, watch))

    def _fire(
        self,
        table: dict[str, list[tuple[InMemoryCoordinationStore, WatchCallback]]],
        path: str,
        event_type: NodeEventType,
    ) -> None:
        event = NodeEvent(event_type, path)
        for client, watch in table.pop(path, []):
            client._deliver_watch(watch, event)

    def _drop_watches(self, client: InMemoryCoordinationStore) -> None:
        for table in (self._data_watches, self._child_watches):
            for path in list(table):
                remaining = [entry for entry in table[path] if entry[0] is not client]
                if remaining:
                    table[path] = remaining
                else:
                    del table[path]

    def _end_session(self, client: InMemoryCoordinationStore) -> None:
        """Reap the session's ephemeral nodes and forget its watches."""
        self._drop_watches(client)
        for path in sorted(self._ephemerals.pop(client.session_id, set()), reverse=True):
            if path in self._nodes:
                self._delete(path, -1)

    def expire_session(self, client: InMemoryCoordinationStore) -> None:
        """Expire ``client``'s session as the server would after a timeout."""
        with self._lock:
            if client._state is SessionState.LOST:
                return
            self.logger.debug(f"Expiring session {client.session_id}")
            self._end_session(client)
            client._transition(SessionState.LOST)


class InMemoryCoordinationStore:
    """Client session on an :class:`InMemoryCoordinationServer`.

    ``call_counts`` counts store operations by name plus ``watch_events``
    delivered to this client.
    """

    def __init__(
        self,
        server: InMemoryCoordinationServer,
        session_id: int,
        *,
        name: str | None = None,
        logger: logging.Logger | None = None,
    ):
        self._server = server
        self._session_id = session_id
        self.name = name or f"session-{session_id}"
        self.logger = logger or logging.getLogger(__name__)
        self._state = SessionState.CONNECTED
        self._closed = False
        self._listeners: list[SessionListener] = []
        self._listeners_lock = threading.Lock()
        self._held_events: list[tuple[WatchCallback, NodeEvent]] = []
        self._failures: dict[str, deque[_InjectedFailure]] = {}
        self._events: queue.SimpleQueue = queue.SimpleQueue()
        self.call_counts: Counter[str] = Counter()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name=f"coordlock-store-{self.name}",
            daemon=True,
        )
        self._dispatcher.start()

    def __repr__(self) -> str:
        return f"InMemoryCoordinationStore(name={self.name!r}, state={self._state.name})"

    @property
    def session_id(self) -> int | None:
        return None if self._state is SessionState.LOST else self._session_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def server(self) -> InMemoryCoordinationServer:
        return self._server

    # ==================== STORE PROTOCOL ====================

    def create_node(
        self,
        path: str,
        data: bytes = b"",
        *,
        mode: CreateMode = CreateMode.PERSISTENT,
        make_parents: bool = False,
    ) -> str:
        return self._call("create_node", self._server._create, self, path, data, mode, make_parents)

    def exists(self, path: str, watch: WatchCallback | None = None) -> bool:
        return self._call("exists", self._server._exists, self, path, watch)

    def list_children(self, path: str, watch: WatchCallback | None = None) -> list[str]:
        return self._call("list_children", self._server._list, self, path, watch)

    def delete_node(self, path: str, version: int = -1) -> None:
        self._call("delete_node", self._server._delete, path, version)

    def read_node(self, path: str, watch: WatchCallback | None = None) -> tuple[bytes, NodeStat]:
        return self._call("read_node", self._server._read, self, path, watch)

    def write_node(self, path: str, data: bytes, version: int = -1) -> NodeStat:
        return self._call("write_node", self._server._write, path, data, version)

    def add_session_listener(self, listener: SessionListener) -> None:
        with self._listeners_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_session_listener(self, listener: SessionListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def close(self) -> None:
        """Close the session; ephemeral nodes are deleted and listeners see LOST."""
        with self._server._lock:
            if self._closed:
                return
            self._closed = True
            if self._state is not SessionState.LOST:
                self._server._end_session(self)
                self._transition(SessionState.LOST)
            self._events.put(_STOP)
        if threading.current_thread() is not self._dispatcher:
            self._dispatcher.join(timeout=5)

    # ==================== SIMULATION HOOKS ====================

    def suspend(self) -> None:
        """Simulate a dropped connection; the session stays alive."""
        with self._server._lock:
            if self._state is SessionState.CONNECTED:
                self._transition(SessionState.SUSPENDED)

    def reconnect(self) -> None:
        """Re-establish a suspended connection and release held-back events."""
        with self._server._lock:
            if self._state is SessionState.SUSPENDED:
                self._transition(SessionState.CONNECTED)

    def expire(self) -> None:
        """Expire this client's session."""
        self._server.expire_session(self)

    def inject_failure(self, operation: str, error: BaseException, *, after_apply: bool = False) -> None:
        """Make the next ``operation`` call raise ``error``.

        With ``after_apply`` the operation takes effect on the server before
        the error is raised, like a reply lost on the wire.
        """
        with self._server._lock:
            self._failures.setdefault(operation, deque()).append(_InjectedFailure(error, after_apply))

    def flush(self, timeout: float | None = 5.0) -> bool:
        """Wait until every callback queued so far has been dispatched."""
        if threading.current_thread() is self._dispatcher:
            return True
        done = threading.Event()
        self._events.put((done.set, ()))
        return done.wait(timeout)

    # ==================== INTERNALS ====================

    def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        with self._server._lock:
            self.call_counts[operation] += 1
            if self._closed or self._state is SessionState.LOST:
                raise SessionLossError("Session expired", details=self.name)
            if self._state is SessionState.SUSPENDED:
                raise StoreUnavailableError("Connection to coordination store lost", details=self.name)
            pending = self._failures.get(operation)
            failure = pending.popleft() if pending else None
            if failure is not None and not failure.after_apply:
                raise failure.error
            result = func(*args)
            if failure is not None:
                raise failure.error
            return result

    def _deliver_watch(self, watch: WatchCallback, event: NodeEvent) -> None:
        self.call_counts["watch_events"] += 1
        if self._state is SessionState.SUSPENDED:
            self._held_events.append((watch, event))
        else:
            self._events.put((watch, (event,)))

    def _transition(self, state: SessionState) -> None:
        self._state = state
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            self._events.put((listener, (state,)))
        if state is SessionState.CONNECTED:
            for watch, event in self._held_events:
                self._events.put((watch, (event,)))
        if state is not SessionState.SUSPENDED:
            self._held_events.clear()

    def _dispatch_loop(self) -> None:
        while True:
            item = self._events.get()
            if item is _STOP:
                return
            callback, args = item
            try:
                callback(*args)
            except Exception:
                self.logger.exception(f"Store callback {callback!r} failed on {self.name}")
