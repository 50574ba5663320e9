"""Configuration dataclasses for coordlock.

These dataclasses centralize all configuration options for type safety
and easy testing. They can be created from environment variables, from
command-line arguments, or used directly in code.
"""

from __future__ import annotations

import argparse
import logging
import math
import os
import socket
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from coordlock.core.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_HOSTS,
    DEFAULT_LOCKS_ROOT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_NODE_LOCATION,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_EXPONENTIAL_BASE,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_SESSION_TIMEOUT,
    DEFAULT_SUSPEND_TIMEOUT,
    DURABLE_LOCKS_NODE,
    ENV_HOSTS,
    ENV_LOCKS_ROOT,
    ENV_MAX_RETRIES,
    ENV_NODE_ID,
    ENV_NODE_LOCATION,
    ENV_RETRY_BASE_DELAY,
    ENV_RETRY_MAX_DELAY,
    ENV_SESSION_TIMEOUT,
    ENV_SUSPEND_TIMEOUT,
    EXCLUSIVE_LOCKS_NODE,
)
from coordlock.core.exceptions import ConfigurationError


def _parse_env_numeric(value: str | None, cast: Callable[[str], Any]) -> Any | None:
    """Parse an environment value, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, float) and not math.isfinite(parsed):
        return None
    return parsed


def _env_number(
    environ: Mapping[str, str],
    name: str,
    cast: Callable[[str], Any],
    default: Any,
    logger: logging.Logger,
) -> Any:
    raw = environ.get(name)
    parsed = _parse_env_numeric(raw, cast)
    if parsed is not None and parsed >= 0:
        return parsed
    if raw is not None:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using default {default}")
    return default


@dataclass
class RetryConfig:
    """Configuration for retrying transient store failures.

    Attributes:
        max_retries: Retry attempts after the first failure (default: 5)
        base_delay: Initial delay in seconds (default: 0.2)
        max_delay: Maximum delay cap in seconds (default: 2.0)
        exponential_base: Multiplier for exponential backoff (default: 2)
        jitter: Add randomization to delays (default: True)
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_RETRY_BASE_DELAY
    max_delay: float = DEFAULT_RETRY_MAX_DELAY
    exponential_base: int = DEFAULT_RETRY_EXPONENTIAL_BASE
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must not be negative", field="max_retries")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must not be negative", field="base_delay")
        # Guard against invalid windows that can otherwise cause negative sleep.
        if self.max_delay < self.base_delay:
            self.max_delay = self.base_delay

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt`` (0-based), without jitter."""
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "exponential_base": self.exponential_base,
            "jitter": self.jitter,
        }


@dataclass
class StoreConfig:
    """Connection settings for the coordination store.

    Attributes:
        backend: Store implementation name ("zookeeper" or "memory")
        hosts: ZooKeeper connect string (default: "127.0.0.1:2181")
        session_timeout: Session timeout in seconds (default: 10)
        connect_timeout: Initial connection timeout in seconds (default: 15)
    """

    backend: str | None = None
    hosts: str = DEFAULT_HOSTS
    session_timeout: float = DEFAULT_SESSION_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT


@dataclass(frozen=True)
class NodeInfo:
    """Identity of the local process used to build lock node content."""

    node_id: str
    location: str = DEFAULT_NODE_LOCATION

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> NodeInfo:
        env = os.environ if environ is None else environ
        node_id = (env.get(ENV_NODE_ID) or "").strip() or socket.gethostname()
        location = (env.get(ENV_NODE_LOCATION) or "").strip() or DEFAULT_NODE_LOCATION
        return cls(node_id=node_id, location=location)


@dataclass
class LockServiceConfig:
    """Master configuration for the lock service.

    Attributes:
        locks_root: Store path below which lock parents live
        suspend_timeout: Seconds ``is_valid()`` waits for a suspended lock to resume
        retry: Retry configuration for transient store errors
        store: Store connection configuration
    """

    locks_root: str = DEFAULT_LOCKS_ROOT
    suspend_timeout: float = DEFAULT_SUSPEND_TIMEOUT
    retry: RetryConfig = field(default_factory=RetryConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def __post_init__(self) -> None:
        root = "/" + self.locks_root.strip().strip("/")
        if root == "/":
            raise ConfigurationError("locks_root must name a node below the store root", field="locks_root")
        self.locks_root = root
        if self.suspend_timeout < 0:
            raise ConfigurationError("suspend_timeout must not be negative", field="suspend_timeout")

    @property
    def exclusive_path(self) -> str:
        return f"{self.locks_root}/{EXCLUSIVE_LOCKS_NODE}"

    @property
    def durable_path(self) -> str:
        return f"{self.locks_root}/{DURABLE_LOCKS_NODE}"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> LockServiceConfig:
        """Create configuration from ``COORDLOCK_*`` environment variables.

        Invalid numeric values are ignored with a warning and the default
        is kept.
        """
        env = os.environ if environ is None else environ
        log = logger or logging.getLogger(__name__)

        retry = RetryConfig(
            max_retries=_env_number(env, ENV_MAX_RETRIES, int, DEFAULT_MAX_RETRIES, log),
            base_delay=_env_number(env, ENV_RETRY_BASE_DELAY, float, DEFAULT_RETRY_BASE_DELAY, log),
            max_delay=_env_number(env, ENV_RETRY_MAX_DELAY, float, DEFAULT_RETRY_MAX_DELAY, log),
        )
        store = StoreConfig(
            hosts=(env.get(ENV_HOSTS) or "").strip() or DEFAULT_HOSTS,
            session_timeout=_env_number(env, ENV_SESSION_TIMEOUT, float, DEFAULT_SESSION_TIMEOUT, log),
        )
        return cls(
            locks_root=(env.get(ENV_LOCKS_ROOT) or "").strip() or DEFAULT_LOCKS_ROOT,
            suspend_timeout=_env_number(env, ENV_SUSPEND_TIMEOUT, float, DEFAULT_SUSPEND_TIMEOUT, log),
            retry=retry,
            store=store,
        )

    @classmethod
    def from_args(cls, args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> LockServiceConfig:
        """Create configuration from parsed CLI arguments layered over the environment."""
        config = cls.from_env(environ)
        hosts = getattr(args, "hosts", None)
        if hosts:
            config.store.hosts = hosts
        backend = getattr(args, "store", None)
        if backend:
            config.store.backend = backend
        locks_root = getattr(args, "locks_root", None)
        if locks_root:
            config = cls(
                locks_root=locks_root,
                suspend_timeout=config.suspend_timeout,
                retry=config.retry,
                store=config.store,
            )
        return config
