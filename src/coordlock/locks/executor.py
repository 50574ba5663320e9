"""Serialized execution of lock engine operations.

Every engine owns one worker thread. Protocol steps, kill handling and
monitor callbacks all run there, so they never interleave for one lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from coordlock.core.config import RetryConfig
from coordlock.store.retry import call_with_retry


class SerialExecutor:
    """Single-worker executor with transient store error retry.

    Args:
        name: Thread name prefix for the worker
        retry: Retry configuration applied to every operation
        logger: Logger for retry messages
    """

    def __init__(
        self,
        name: str,
        *,
        retry: RetryConfig | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.name = name
        self.retry = retry or RetryConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._worker_ident: int | None = None
        self._shutdown = False
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=name,
            initializer=self._bind_worker,
        )

    def _bind_worker(self) -> None:
        self._worker_ident = threading.get_ident()

    @property
    def in_worker(self) -> bool:
        return self._worker_ident is not None and threading.get_ident() == self._worker_ident

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return call_with_retry(
            fn,
            *args,
            config=self.retry,
            logger=self.logger,
            operation_name=getattr(fn, "__name__", None),
        )

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Queue ``fn`` without blocking; runs inline once shut down."""
        with self._lock:
            if not self._shutdown:
                return self._pool.submit(self._call, fn, *args)
        future: Future = Future()
        try:
            future.set_result(self._call(fn, *args))
        except BaseException as e:
            future.set_exception(e)
        return future

    def run(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run ``fn`` on the worker and wait for its result.

        Calls made from the worker itself run inline so callbacks may use
        blocking engine operations without deadlocking.
        """
        if self.in_worker:
            return self._call(fn, *args)
        with self._lock:
            if not self._shutdown:
                future = self._pool.submit(self._call, fn, *args)
            else:
                future = None
        if future is None:
            return self._call(fn, *args)
        return future.result()

    def shutdown(self) -> None:
        """Stop accepting work; queued operations still run."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        # May be called from the worker itself, so never wait here.
        self._pool.shutdown(wait=False)
