"""Retry of transient coordination store failures.

Only ``StoreUnavailableError`` (connection loss while the session may still
be alive) is retried. Session expiry and protocol errors such as
``NoNodeError`` or ``BadVersionError`` carry meaning for the locking
protocol and propagate on the first occurrence.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any, TypeVar

from coordlock.core.config import RetryConfig
from coordlock.core.exceptions import StoreUnavailableError

T = TypeVar("T")

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (StoreUnavailableError,)


def _operation_name(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", None) or repr(func)


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    config: RetryConfig | None = None,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    operation_name: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` and retry transient store errors with exponential backoff.

    Backoff Formula:
        delay = min(base_delay * (exponential_base ** attempt), max_delay)
        if jitter: delay = delay * random.uniform(0.5, 1.5)
    """
    cfg = config or RetryConfig()
    _logger = logger or logging.getLogger(__name__)
    name = operation_name or _operation_name(func)

    for attempt in range(cfg.max_retries + 1):  # +1 for initial attempt
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                _logger.info(f"{name} succeeded on attempt {attempt + 1}/{cfg.max_retries + 1}")
            return result
        except RETRYABLE_EXCEPTIONS as e:
            if attempt == cfg.max_retries:
                _logger.error(f"All {cfg.max_retries + 1} attempts failed for {name}: {e!s}")
                raise

            delay = cfg.delay_for(attempt)
            if cfg.jitter:
                delay = delay * random.uniform(0.5, 1.5)

            _logger.warning(
                f"{name} attempt {attempt + 1}/{cfg.max_retries + 1} failed: {e!s}. Retrying in {delay:.2f}s..."
            )
            sleep(delay)

    # Unreachable: the last attempt always returns or raises.
    raise RuntimeError(f"Retry loop exited unexpectedly for {name}")


def retry_store_operation(
    config: RetryConfig | None = None,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator form of :func:`call_with_retry`.

    Example:
        @retry_store_operation(RetryConfig(max_retries=3))
        def list_queue():
            return store.list_children(path)
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return call_with_retry(func, *args, config=config, logger=logger, **kwargs)

        return wrapper

    return decorator
