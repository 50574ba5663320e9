"""Lock engine implementing the sequential-node locking protocol.

Design principles:
- The store is the only truth: a lock is held while this engine's node is
  the lowest-sequence child of the lock node.
- Contenders list children without a watch and watch only their immediate
  predecessor, so a release wakes exactly one waiter.
- Every protocol step, kill and monitor callback runs on the engine's
  serialized executor; store callbacks only set flags or submit work.
- A killed engine is closed for good. Acquire again with a new engine.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from types import TracebackType

from coordlock.core.config import LockServiceConfig, NodeInfo
from coordlock.core.constants import LOCK_NAME_PREFIX
from coordlock.core.exceptions import (
    BadVersionError,
    InvalidLockArgumentError,
    LockAcquisitionFailedError,
    LockAcquisitionTimeoutError,
    LockStolenError,
    NoNodeError,
    SessionLossError,
    StoreError,
)
from coordlock.core.identifiers import build_node_content, is_valid_id, join_path, node_name
from coordlock.core.logging import with_log_context
from coordlock.locks.executor import SerialExecutor
from coordlock.locks.monitor import LockMonitor
from coordlock.locks.ordering import find_predecessor, sort_lock_names
from coordlock.locks.policy import NOTIFY_RELEASED, KillReason, kill_action
from coordlock.locks.recovery import create_recovery_key, matches_recovery_key, parse_recovery_key
from coordlock.store.base import CoordinationStore, CreateMode, NodeEvent, NodeEventType, SessionState
from coordlock.store.retry import call_with_retry

NOTIFY_ACQUIRED = "acquired"
NOTIFY_SUSPENDED = "suspended"


class _Deadline:
    """Fixed point in time bounding an acquisition; None means unbounded."""

    def __init__(self, timeout: float | None):
        self.timeout = timeout if timeout is not None and timeout > 0 else None
        self._expires_at = time.monotonic() + self.timeout if self.timeout is not None else None

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at


class LockEngine:
    """One contender for one lock.

    Args:
        lock_id: Lock identifier, ``[A-Za-z0-9._-]{1,255}``
        store: Coordination store client
        parent_path: Store path below which the lock node ``<lock_id>`` lives
        monitor: Optional :class:`LockMonitor` for asynchronous notifications
        ephemeral: Create ephemeral lock nodes (released with the session)
        recoverable: Allow :meth:`recover` and keep the node on disconnect
        config: Service configuration (retry, suspend timeout)
        node_info: Identity written into the lock node
    """

    def __init__(
        self,
        lock_id: str,
        store: CoordinationStore,
        *,
        parent_path: str,
        monitor: LockMonitor | None = None,
        ephemeral: bool = True,
        recoverable: bool = False,
        config: LockServiceConfig | None = None,
        node_info: NodeInfo | None = None,
        logger: logging.Logger | None = None,
    ):
        if not is_valid_id(lock_id):
            raise InvalidLockArgumentError(
                f"Invalid lock id {lock_id!r}",
                argument="lock_id",
                details="use 1-255 characters from [A-Za-z0-9._-]",
            )
        self._id = lock_id
        self.store = store
        self.monitor = monitor
        self.ephemeral = ephemeral
        self.recoverable = recoverable
        self.config = config or LockServiceConfig()
        self.lock_node_path = join_path(parent_path, lock_id)
        self.logger = with_log_context(logger or logging.getLogger(__name__), lock_id=lock_id)
        self._node_content = build_node_content(node_info)
        self._executor = SerialExecutor(f"coordlock-{lock_id}", retry=self.config.retry, logger=self.logger)

        self._state_lock = threading.RLock()
        self._my_lock_name: str | None = None
        self._active_lock_name: str | None = None
        self._recovery_key: str | None = None
        self._expected_content: str | None = None
        self._started = False
        self._closed = False
        self._disposed = False
        self._abort = False
        self._create_attempted = False
        self._node_changed = False
        self._own_watch_armed = False
        self._notified: set[str] = set()
        self._not_suspended = threading.Event()
        self._not_suspended.set()
        self._wakeup = threading.Event()

    # ==================== PUBLIC API ====================

    @property
    def id(self) -> str:
        return self._id

    @property
    def my_lock_name(self) -> str | None:
        with self._state_lock:
            return self._my_lock_name

    @property
    def active_lock_name(self) -> str | None:
        with self._state_lock:
            return self._active_lock_name

    @property
    def closed(self) -> bool:
        with self._state_lock:
            return self._closed

    def acquire(self, timeout: float | None = None) -> LockEngine:
        """Block until the lock is held.

        Args:
            timeout: Seconds to wait; None or <= 0 waits forever

        Raises:
            LockAcquisitionTimeoutError: The deadline passed first
            LockAcquisitionFailedError: The protocol could not complete
        """
        deadline = _Deadline(timeout)
        self._begin()
        self._run_protocol(self._create_lock_node, (), deadline, wait_for_predecessor=True)
        return self

    def recover(self, recovery_key: str) -> LockEngine:
        """Re-acquire a durable lock node created by an earlier engine.

        Never waits: the recovered node must already be the active lock.
        """
        try:
            if not self.recoverable:
                raise InvalidLockArgumentError(
                    "Only durable locks can be recovered", argument="recovery_key", details=self._id
                )
            lock_name, expected_content = parse_recovery_key(recovery_key)
        except InvalidLockArgumentError:
            self._dispose()
            raise
        self._begin()
        self._run_protocol(
            self._recover_lock_node,
            (lock_name, expected_content),
            _Deadline(None),
            wait_for_predecessor=False,
        )
        return self

    def is_valid(self) -> bool:
        """Return True while this engine holds the lock.

        On a suspended lock this waits up to ``suspend_timeout`` for the
        connection to come back, then gives the lock up.
        """
        if not self._not_suspended.is_set():
            if self._executor.in_worker:
                # Monitor callbacks cannot wait for the resume they would block.
                return False
            wait_for = self.config.suspend_timeout
            if not self._not_suspended.wait(wait_for):
                self.logger.warning(f"Lock still suspended after {wait_for:.1f}s; giving it up")
                self.kill(KillReason.COORDINATION_DISCONNECT)
                return False
        with self._state_lock:
            return self._is_held()

    def is_suspended(self) -> bool:
        return not self._not_suspended.is_set()

    def kill(self, reason: KillReason) -> None:
        self._executor.run(self._do_kill, reason)

    def release(self) -> None:
        """Release the lock; a no-op if it is not held anymore."""
        self.kill(KillReason.REGULAR_RELEASE)

    def __enter__(self) -> LockEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        with self._state_lock:
            if self._is_held():
                flags = ["ACQUIRED"]
            else:
                flags = ["RELEASED" if self._closed else "NOT ACQUIRED"]
            if self.is_suspended():
                flags.append("SUSPENDED")
            return (
                f"{type(self).__name__}({self._id!r}, {', '.join(flags)}, "
                f"my={self._my_lock_name}, active={self._active_lock_name})"
            )

    # ==================== PROTOCOL ====================

    def _begin(self) -> None:
        with self._state_lock:
            if self._closed:
                raise LockAcquisitionFailedError(self._id, "Lock engine is closed")
            if self._started:
                raise LockAcquisitionFailedError(self._id, "Lock engine was already used")
            self._started = True
        self.store.add_session_listener(self._session_state_changed)

    def _run_protocol(
        self,
        claim_node: Callable[..., None],
        claim_args: tuple,
        deadline: _Deadline,
        *,
        wait_for_predecessor: bool,
    ) -> None:
        try:
            self._executor.run(claim_node, *claim_args)
            self._executor.run(self._acquire_loop, deadline, wait_for_predecessor)
        except BaseException as e:
            # Stop an in-flight loop that outlived an interrupted caller.
            self._abort = True
            self._wakeup.set()
            self.kill(KillReason.LOCK_STOLEN if isinstance(e, LockStolenError) else KillReason.ACQUIRE_FAILED)
            self._dispose()
            if not isinstance(e, Exception):
                raise
            if isinstance(e, (LockAcquisitionTimeoutError, LockAcquisitionFailedError)):
                raise
            raise LockAcquisitionFailedError(
                self._id, "Unable to acquire lock", details=f"{type(e).__name__}: {e!s}"
            ) from e

    def _create_lock_node(self) -> None:
        self._check_not_aborted()
        path = None
        if self._create_attempted:
            # A previous attempt may have created the node before the reply was lost.
            path = self._find_own_node()
            if path is not None:
                self.logger.debug(f"Adopting lock node {node_name(path)} from an interrupted create")
        if path is None:
            self._create_attempted = True
            mode = CreateMode.EPHEMERAL_SEQUENTIAL if self.ephemeral else CreateMode.PERSISTENT_SEQUENTIAL
            path = self.store.create_node(
                join_path(self.lock_node_path, LOCK_NAME_PREFIX),
                self._node_content.encode("utf-8"),
                mode=mode,
                make_parents=True,
            )
        name = node_name(path)
        with self._state_lock:
            self._my_lock_name = name
            self._recovery_key = create_recovery_key(name, self._node_content)
            self._expected_content = self._node_content
        self.logger.debug(f"Created lock node {name}")
        self._watch_own_node()

    def _find_own_node(self) -> str | None:
        try:
            children = self.store.list_children(self.lock_node_path)
        except NoNodeError:
            return None
        for child in sort_lock_names(children):
            path = join_path(self.lock_node_path, child)
            try:
                data, _ = self.store.read_node(path)
            except NoNodeError:
                continue
            if data.decode("utf-8", errors="replace") == self._node_content:
                return path
        return None

    def _recover_lock_node(self, lock_name: str, expected_content: str) -> None:
        self._check_not_aborted()
        path = join_path(self.lock_node_path, lock_name)
        new_key = create_recovery_key(lock_name, self._node_content)
        try:
            data, stat = self.store.read_node(path)
        except NoNodeError as e:
            raise LockAcquisitionFailedError(self._id, "Lock node to recover does not exist", details=lock_name) from e

        content = data.decode("utf-8", errors="replace")
        if content != new_key and not matches_recovery_key(content, lock_name, expected_content):
            raise LockAcquisitionFailedError(self._id, "Recovery key does not match the lock node", details=lock_name)
        # Checked before the rewrite so a rejected key stays usable.
        self._check_recovered_is_active(lock_name)

        if content != new_key:
            try:
                self.store.write_node(path, new_key.encode("utf-8"), version=stat.version)
            except BadVersionError as e:
                raise LockAcquisitionFailedError(
                    self._id, "Lock node was recovered concurrently", details=lock_name
                ) from e
            except NoNodeError as e:
                raise LockAcquisitionFailedError(
                    self._id, "Lock node was deleted during recovery", details=lock_name
                ) from e

        with self._state_lock:
            self._my_lock_name = lock_name
            self._recovery_key = new_key
            self._expected_content = new_key
        self.logger.debug(f"Recovered lock node {lock_name}")
        self._watch_own_node()

    def _check_recovered_is_active(self, lock_name: str) -> None:
        try:
            children = self.store.list_children(self.lock_node_path)
        except NoNodeError:
            children = []
        names = sort_lock_names(children)
        if names and names[0] != lock_name:
            raise LockAcquisitionFailedError(
                self._id, "Recovered lock is not the active lock", details=f"{lock_name} queued behind {names[0]}"
            )

    def _acquire_loop(self, deadline: _Deadline, wait_for_predecessor: bool) -> None:
        while True:
            self._check_not_aborted()
            if self._node_changed:
                self._node_changed = False
                self._watch_own_node()
            try:
                children = self.store.list_children(self.lock_node_path)
            except NoNodeError:
                children = []
            names = sort_lock_names(children)
            my_name = self.my_lock_name

            if not names or my_name not in names:
                raise LockAcquisitionFailedError(self._id, "Lock node disappeared while acquiring", details=my_name)

            with self._state_lock:
                self._active_lock_name = names[0]

            if names[0] == my_name:
                self._watch_own_node()
                self.logger.info(f"Acquired lock ({my_name})")
                self._notify(NOTIFY_ACQUIRED)
                return

            predecessor = find_predecessor(names, my_name)
            if predecessor is None:
                raise LockAcquisitionFailedError(self._id, "Unable to discover preceding lock node", details=my_name)
            if not wait_for_predecessor:
                raise LockAcquisitionFailedError(
                    self._id, "Recovered lock is not the active lock", details=f"{my_name} queued behind {names[0]}"
                )

            # Clear before watching so an event racing the exists() call is not lost.
            self._wakeup.clear()
            self._check_not_aborted()
            if self.store.exists(join_path(self.lock_node_path, predecessor), watch=self._predecessor_changed):
                self.logger.debug(f"Waiting for {predecessor} ({names.index(my_name)} ahead)")
                if not self._wakeup.wait(deadline.remaining()):
                    raise LockAcquisitionTimeoutError(self._id, deadline.timeout)
            if deadline.expired():
                raise LockAcquisitionTimeoutError(self._id, deadline.timeout)

    def _watch_own_node(self) -> None:
        """Arm the one-shot watch on our node and verify it is still ours."""
        path = join_path(self.lock_node_path, self._my_lock_name)
        # One watch at a time; the store delivers every registration.
        watch = None if self._own_watch_armed else self._lock_node_changed
        self._own_watch_armed = True
        try:
            data, _ = self.store.read_node(path, watch=watch)
        except BaseException:
            if watch is not None:
                self._own_watch_armed = False
            raise
        if data.decode("utf-8", errors="replace") != self._expected_content:
            raise LockStolenError(self._id, "Lock node content changed", details=self._my_lock_name)

    def _check_not_aborted(self) -> None:
        if self._abort:
            raise LockAcquisitionFailedError(self._id, "Lock acquisition aborted")
        with self._state_lock:
            if self._closed:
                raise LockAcquisitionFailedError(self._id, "Lock engine is closed")

    def _is_held(self) -> bool:
        return not self._closed and self._my_lock_name is not None and self._my_lock_name == self._active_lock_name

    # ==================== KILL ====================

    def _do_kill(self, reason: KillReason) -> None:
        with self._state_lock:
            if self._my_lock_name is None or self._closed:
                return
            self._closed = True
            my_name = self._my_lock_name

        action = kill_action(reason, self.recoverable)
        level = logging.INFO if reason is KillReason.REGULAR_RELEASE else logging.WARNING
        self.logger.log(level, f"Killing lock {my_name} ({reason.name})")

        if action.delete_node:
            self._delete_own_node(my_name)

        with self._state_lock:
            self._active_lock_name = None
        self._not_suspended.set()
        self._wakeup.set()

        if action.notify == NOTIFY_RELEASED:
            self.logger.info(f"Released lock ({my_name})")
        else:
            self.logger.warning(f"Lost lock ({my_name}, {reason.name})")
        self._notify(action.notify)
        self._dispose()

    def _delete_own_node(self, name: str) -> None:
        path = join_path(self.lock_node_path, name)
        try:
            call_with_retry(self.store.delete_node, path, config=self.config.retry, logger=self.logger)
        except NoNodeError:
            self.logger.debug(f"Lock node {name} already gone")
        except SessionLossError:
            # Ephemeral nodes are reaped together with the session.
            self.logger.debug(f"Session expired while deleting lock node {name}")
        except Exception as e:
            self.logger.warning(f"Unable to delete lock node {name}: {e!s}")
            return
        with self._state_lock:
            self._my_lock_name = None

    def _dispose(self) -> None:
        with self._state_lock:
            self._closed = True
            if self._disposed:
                return
            self._disposed = True
        self.store.remove_session_listener(self._session_state_changed)
        self._executor.shutdown()

    # ==================== NOTIFICATIONS ====================

    def _notify(self, kind: str) -> None:
        if self.monitor is None:
            return
        if kind != NOTIFY_SUSPENDED:
            with self._state_lock:
                if kind in self._notified:
                    return
                self._notified.add(kind)
        try:
            getattr(self.monitor, f"lock_{kind}")(self)
        except Exception:
            self.logger.exception(f"Lock monitor failed in lock_{kind}")

    # ==================== STORE CALLBACKS ====================

    def _lock_node_changed(self, event: NodeEvent) -> None:
        self._own_watch_armed = False
        with self._state_lock:
            if self._closed:
                return
            held = self._is_held()
        if not held:
            # Still queued; let the acquire loop re-list and recheck the content.
            if event.event_type is NodeEventType.CHANGED:
                self._node_changed = True
            self._wakeup.set()
            return
        if event.event_type is NodeEventType.DELETED:
            self.logger.warning(f"Lock node {node_name(event.path)} was deleted remotely")
            self._executor.submit(self._do_kill, KillReason.LOCK_DELETED)
        elif event.event_type is NodeEventType.CHANGED:
            self.logger.warning(f"Lock node {node_name(event.path)} was modified remotely; lock stolen")
            self._executor.submit(self._do_kill, KillReason.LOCK_STOLEN)

    def _predecessor_changed(self, event: NodeEvent) -> None:
        self._wakeup.set()

    def _session_state_changed(self, state: SessionState) -> None:
        with self._state_lock:
            if self._closed:
                return
            held = self._is_held()

        if state is SessionState.LOST:
            self._wakeup.set()
            # While still acquiring, the acquire path fails and cleans up itself.
            if held:
                self.logger.warning("Coordination session lost")
                self._executor.submit(self._do_kill, KillReason.COORDINATION_DISCONNECT)
        elif state is SessionState.SUSPENDED:
            if held and self._not_suspended.is_set():
                self._not_suspended.clear()
                self.logger.warning("Connection to coordination store suspended")
                self._executor.submit(self._notify, NOTIFY_SUSPENDED)
        elif state is SessionState.CONNECTED:
            if not self._not_suspended.is_set():
                self._executor.submit(self._resume)

    def _resume(self) -> None:
        with self._state_lock:
            if self._closed or self._not_suspended.is_set():
                return
            my_name = self._my_lock_name

        try:
            try:
                children = self.store.list_children(self.lock_node_path)
            except NoNodeError:
                children = []
            names = sort_lock_names(children)
            if my_name not in names:
                self._do_kill(KillReason.LOCK_DELETED)
                return
            if names[0] != my_name:
                self.logger.warning(f"Lock node {my_name} is no longer the active lock after reconnect")
                self._do_kill(KillReason.RESUME_FAILED)
                return
            self._watch_own_node()
        except NoNodeError:
            self._do_kill(KillReason.LOCK_DELETED)
            return
        except LockStolenError:
            self._do_kill(KillReason.LOCK_STOLEN)
            return
        except StoreError as e:
            self.logger.warning(f"Unable to verify lock after reconnect: {e!s}")
            self._do_kill(KillReason.RESUME_FAILED)
            return

        with self._state_lock:
            self._active_lock_name = my_name
        self._not_suspended.set()
        self.logger.info(f"Lock resumed after reconnect ({my_name})")


class ExclusiveLock(LockEngine):
    """Lock tied to the store session; lost when the session ends."""

    def __init__(
        self,
        lock_id: str,
        store: CoordinationStore,
        *,
        parent_path: str | None = None,
        monitor: LockMonitor | None = None,
        config: LockServiceConfig | None = None,
        node_info: NodeInfo | None = None,
        logger: logging.Logger | None = None,
    ):
        config = config or LockServiceConfig()
        super().__init__(
            lock_id,
            store,
            parent_path=parent_path or config.exclusive_path,
            monitor=monitor,
            ephemeral=True,
            recoverable=False,
            config=config,
            node_info=node_info,
            logger=logger,
        )


class DurableLock(LockEngine):
    """Lock that survives process restarts.

    Keep :attr:`recovery_key` somewhere safe; it is the only way to get the
    lock back after the owning process went away.
    """

    def __init__(
        self,
        lock_id: str,
        store: CoordinationStore,
        *,
        parent_path: str | None = None,
        monitor: LockMonitor | None = None,
        config: LockServiceConfig | None = None,
        node_info: NodeInfo | None = None,
        logger: logging.Logger | None = None,
    ):
        config = config or LockServiceConfig()
        super().__init__(
            lock_id,
            store,
            parent_path=parent_path or config.durable_path,
            monitor=monitor,
            ephemeral=False,
            recoverable=True,
            config=config,
            node_info=node_info,
            logger=logger,
        )

    @property
    def recovery_key(self) -> str | None:
        with self._state_lock:
            return self._recovery_key
