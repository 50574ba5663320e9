"""Coordination store selection."""

from __future__ import annotations

import logging
import os

from coordlock.core.config import StoreConfig
from coordlock.core.constants import DEFAULT_STORE_BACKEND, ENV_STORE
from coordlock.store.base import CoordinationStore
from coordlock.store.memory import InMemoryCoordinationServer


def create_store(
    name: str | None = None,
    *,
    config: StoreConfig | None = None,
    logger: logging.Logger | None = None,
) -> CoordinationStore:
    """Create a coordination store from an explicit name, the config or ``COORDLOCK_STORE``.

    ``memory`` returns a client on a private in-process server, which is
    only useful within a single process (tests, dry runs). Unknown names
    log a warning and fall back to ZooKeeper.
    """
    log = logger or logging.getLogger(__name__)
    cfg = config or StoreConfig()
    requested = (name or cfg.backend or os.environ.get(ENV_STORE, DEFAULT_STORE_BACKEND)).strip().lower()

    if requested == "memory":
        log.debug("Using in-memory coordination store")
        return InMemoryCoordinationServer(logger=log).connect()

    if requested != "zookeeper":
        log.warning("Unknown store backend '%s'; falling back to zookeeper", requested)

    # Imported lazily so the in-memory store does not load kazoo.
    from coordlock.store.zookeeper import ZooKeeperCoordinationStore

    return ZooKeeperCoordinationStore(cfg, logger=log)
