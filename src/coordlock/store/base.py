"""Coordination store abstraction.

Design principles:
- The store is the only source of truth for lock ownership; engines keep
  nothing but the name of the node they created.
- Watches are one-shot: a callback fires at most once per registration and
  must be re-armed explicitly.
- Callbacks run on the store's notification thread and must not block.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class CreateMode(Enum):
    """Lifetime and naming of a created node."""

    PERSISTENT = "persistent"
    EPHEMERAL = "ephemeral"
    PERSISTENT_SEQUENTIAL = "persistent_sequential"
    EPHEMERAL_SEQUENTIAL = "ephemeral_sequential"

    @property
    def ephemeral(self) -> bool:
        return self in (CreateMode.EPHEMERAL, CreateMode.EPHEMERAL_SEQUENTIAL)

    @property
    def sequential(self) -> bool:
        return self in (CreateMode.PERSISTENT_SEQUENTIAL, CreateMode.EPHEMERAL_SEQUENTIAL)


class NodeEventType(Enum):
    CREATED = "created"
    DELETED = "deleted"
    CHANGED = "changed"
    CHILD = "child"


class SessionState(Enum):
    """Connection state reported to session listeners.

    ``SUSPENDED`` means the connection dropped but the session (and thus
    every ephemeral node) may still be alive; ``LOST`` means the session
    expired and ephemeral nodes are gone.
    """

    CONNECTED = "connected"
    SUSPENDED = "suspended"
    LOST = "lost"


@dataclass(frozen=True)
class NodeEvent:
    event_type: NodeEventType
    path: str


@dataclass(frozen=True)
class NodeStat:
    """Node metadata returned by reads and writes."""

    version: int
    ephemeral_owner: int | None = None
    num_children: int = 0


WatchCallback = Callable[[NodeEvent], None]
SessionListener = Callable[[SessionState], None]


class CoordinationStore(Protocol):
    """Client interface to a hierarchical coordination store."""

    @property
    def session_id(self) -> int | None:
        """Identifier of the current session, None when not connected."""

    def create_node(
        self,
        path: str,
        data: bytes = b"",
        *,
        mode: CreateMode = CreateMode.PERSISTENT,
        make_parents: bool = False,
    ) -> str:
        """Create a node and return its actual path (with sequence suffix)."""

    def exists(self, path: str, watch: WatchCallback | None = None) -> bool:
        """Return True if the node exists; the watch fires on create/delete/change."""

    def list_children(self, path: str, watch: WatchCallback | None = None) -> list[str]:
        """Return child names (unordered). Raises NoNodeError if the parent is absent."""

    def delete_node(self, path: str, version: int = -1) -> None:
        """Delete a node, optionally only at ``version``."""

    def read_node(self, path: str, watch: WatchCallback | None = None) -> tuple[bytes, NodeStat]:
        """Return node data and stat; the watch fires on delete/change."""

    def write_node(self, path: str, data: bytes, version: int = -1) -> NodeStat:
        """Replace node data, optionally only at ``version``."""

    def add_session_listener(self, listener: SessionListener) -> None:
        """Register a callback for session state transitions."""

    def remove_session_listener(self, listener: SessionListener) -> None:
        """Unregister a session callback; unknown listeners are ignored."""

    def close(self) -> None:
        """Close the session, releasing ephemeral nodes."""
