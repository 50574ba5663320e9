"""Pytest configuration and fixtures for coordlock tests"""

from __future__ import annotations

import threading
import time
from collections import Counter
from collections.abc import Callable, Iterator

import pytest

from coordlock.core.config import LockServiceConfig, NodeInfo, RetryConfig
from coordlock.locks.monitor import LockMonitor
from coordlock.locks.service import LockService
from coordlock.store.memory import InMemoryCoordinationServer, InMemoryCoordinationStore


class RecordingMonitor(LockMonitor):
    """Lock monitor that records every callback and exposes one Event per kind."""

    KINDS = ("acquired", "released", "lost", "suspended")

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.counts: Counter[str] = Counter()
        self.threads: set[str] = set()
        self.events = {kind: threading.Event() for kind in self.KINDS}
        self._lock = threading.Lock()

    def _record(self, kind: str) -> None:
        with self._lock:
            self.calls.append(kind)
            self.counts[kind] += 1
            self.threads.add(threading.current_thread().name)
        self.events[kind].set()

    def lock_acquired(self, lock) -> None:
        self._record("acquired")

    def lock_released(self, lock) -> None:
        self._record("released")

    def lock_lost(self, lock) -> None:
        self._record("lost")

    def lock_suspended(self, lock) -> None:
        self._record("suspended")

    def wait_for(self, kind: str, timeout: float = 5.0) -> bool:
        return self.events[kind].wait(timeout)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def server() -> InMemoryCoordinationServer:
    return InMemoryCoordinationServer()


@pytest.fixture
def connect(server: InMemoryCoordinationServer) -> Iterator[Callable[..., InMemoryCoordinationStore]]:
    """Factory opening store clients that are closed after the test."""
    clients: list[InMemoryCoordinationStore] = []

    def _connect(name: str | None = None) -> InMemoryCoordinationStore:
        client = server.connect(name=name)
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        client.close()


@pytest.fixture
def store(connect) -> InMemoryCoordinationStore:
    return connect("primary")


@pytest.fixture
def config() -> LockServiceConfig:
    """Service configuration with fast retries and a short suspend timeout."""
    return LockServiceConfig(
        suspend_timeout=0.5,
        retry=RetryConfig(max_retries=2, base_delay=0.01, max_delay=0.02, jitter=False),
    )


@pytest.fixture
def node_info() -> NodeInfo:
    return NodeInfo(node_id="test-node", location="rack-1")


@pytest.fixture
def service(store, config, node_info) -> LockService:
    return LockService(store, config=config, node_info=node_info)


@pytest.fixture
def make_service(connect, config, node_info) -> Callable[..., LockService]:
    """Factory building a service on its own store client (one per simulated process)."""

    def _make(name: str | None = None) -> LockService:
        return LockService(connect(name), config=config, node_info=node_info)

    return _make


@pytest.fixture
def make_monitor() -> Callable[[], RecordingMonitor]:
    return RecordingMonitor


@pytest.fixture
def eventually() -> Callable[..., bool]:
    return wait_until
