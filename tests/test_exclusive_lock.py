"""Tests for exclusive (session-bound) locks."""

from __future__ import annotations

import threading
import time

import pytest

from coordlock.core.exceptions import (
    InvalidLockArgumentError,
    LockAcquisitionFailedError,
    LockAcquisitionTimeoutError,
    StoreUnavailableError,
)
from coordlock.locks.engine import ExclusiveLock
from coordlock.locks.policy import KillReason
from coordlock.store.base import CreateMode

LOCK_PATH = "/coordlock/locks/exclusive/job"


def _acquire_in_thread(service, lock_id, monitor=None, timeout=None):
    result: dict = {}

    def target() -> None:
        try:
            result["lock"] = service.acquire_exclusive_lock(lock_id, monitor, timeout=timeout)
        except Exception as e:
            result["error"] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread, result


class TestAcquireAndRelease:
    """Basic lifecycle of an uncontended lock"""

    def test_acquire_creates_ephemeral_sequential_node(self, service, server, make_monitor):
        monitor = make_monitor()

        lock = service.acquire_exclusive_lock("job", monitor)

        assert lock.is_valid()
        assert lock.id == "job"
        assert lock.my_lock_name == "lock-0000000000"
        assert lock.active_lock_name == lock.my_lock_name
        assert server.get_children(LOCK_PATH) == ["lock-0000000000"]
        assert server.get_data(f"{LOCK_PATH}/lock-0000000000").decode().startswith("test-node-rack-1-")
        assert monitor.wait_for("acquired")
        lock.release()

    def test_release_deletes_node_and_notifies_once(self, service, server, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)

        lock.release()
        lock.release()

        assert not lock.is_valid()
        assert lock.closed
        assert lock.my_lock_name is None
        assert server.get_children(LOCK_PATH) == []
        assert monitor.calls == ["acquired", "released"]

    def test_context_manager_releases(self, service, server):
        with service.acquire_exclusive_lock("job") as lock:
            assert lock.is_valid()

        assert not lock.is_valid()
        assert server.get_children(LOCK_PATH) == []

    def test_monitor_callbacks_run_on_lock_worker(self, service, make_monitor):
        monitor = make_monitor()

        service.acquire_exclusive_lock("job", monitor).release()

        assert monitor.threads
        assert all(name.startswith("coordlock-job") for name in monitor.threads)

    def test_engine_cannot_be_reused(self, service):
        lock = service.acquire_exclusive_lock("job")
        lock.release()

        with pytest.raises(LockAcquisitionFailedError):
            lock.acquire()

    def test_repr_shows_state(self, service):
        lock = service.acquire_exclusive_lock("job")
        assert "ACQUIRED" in repr(lock)
        assert "lock-0000000000" in repr(lock)

        lock.release()
        assert "RELEASED" in repr(lock)

    @pytest.mark.parametrize("lock_id", ["", "a/b", "..", ".", "has space", "x" * 256, None])
    def test_invalid_id_fails_before_store_calls(self, service, store, lock_id):
        with pytest.raises(InvalidLockArgumentError):
            service.acquire_exclusive_lock(lock_id)

        assert sum(store.call_counts.values()) == 0

    def test_recover_is_not_allowed(self, store, config):
        lock = ExclusiveLock("job", store, config=config)

        with pytest.raises(InvalidLockArgumentError):
            lock.recover("lock-0000000000_content")


class TestContention:
    """Mutual exclusion, fairness and timeouts between contenders"""

    def test_second_contender_times_out_without_orphan(self, make_service, server, make_monitor):
        holder = make_service("holder").acquire_exclusive_lock("job")
        monitor = make_monitor()

        started = time.monotonic()
        with pytest.raises(LockAcquisitionTimeoutError) as exc_info:
            make_service("waiter").acquire_exclusive_lock("job", monitor, timeout=0.1)
        elapsed = time.monotonic() - started

        assert 0.09 <= elapsed < 2.0
        assert exc_info.value.lock_id == "job"
        assert isinstance(exc_info.value, TimeoutError)
        assert server.get_children(LOCK_PATH) == [holder.my_lock_name]
        assert monitor.calls == ["lost"]
        assert holder.is_valid()

    def test_waiter_acquires_after_release(self, make_service, make_monitor):
        holder = make_service("holder").acquire_exclusive_lock("job")
        monitor = make_monitor()
        thread, result = _acquire_in_thread(make_service("waiter"), "job", monitor)

        assert not monitor.wait_for("acquired", timeout=0.2)
        holder.release()
        thread.join(timeout=5)

        assert "error" not in result
        assert result["lock"].is_valid()
        result["lock"].release()

    def test_mutual_exclusion(self, make_service):
        services = [make_service(f"worker-{i}") for i in range(4)]
        holders = 0
        max_holders = 0
        guard = threading.Lock()
        errors: list[Exception] = []

        def work(service) -> None:
            nonlocal holders, max_holders
            try:
                for _ in range(3):
                    with service.acquire_exclusive_lock("job", timeout=10):
                        with guard:
                            holders += 1
                            max_holders = max(max_holders, holders)
                        time.sleep(0.002)
                        with guard:
                            holders -= 1
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=work, args=(service,)) for service in services]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert max_holders == 1

    def test_contenders_are_served_in_queue_order(self, make_service, server, make_monitor, eventually):
        holder = make_service("holder").acquire_exclusive_lock("job")
        order: list[str] = []
        waiters = []
        for name in ("first", "second", "third"):
            monitor = make_monitor()
            monitor.lock_acquired = lambda lock, name=name: order.append(name)
            thread, result = _acquire_in_thread(make_service(name), "job", monitor)
            waiters.append((thread, result))
            expected = len(waiters) + 1
            assert eventually(lambda expected=expected: len(server.get_children(LOCK_PATH)) == expected)

        holder.release()
        for thread, result in waiters:
            thread.join(timeout=5)
            assert "error" not in result
            result["lock"].release()

        assert order == ["first", "second", "third"]

    def test_release_wakes_only_the_next_waiter(self, make_service, server, eventually):
        holder = make_service("holder").acquire_exclusive_lock("job")
        waiter_services = [make_service(f"waiter-{i}") for i in range(4)]
        waiters = []
        for service in waiter_services:
            waiters.append(_acquire_in_thread(service, "job"))
            assert eventually(lambda service=service: service.store.call_counts["exists"] >= 1)

        before = [dict(service.store.call_counts) for service in waiter_services]
        holder.release()
        first_thread, first_result = waiters[0]
        first_thread.join(timeout=5)
        assert first_result["lock"].is_valid()

        for service, counts in zip(waiter_services[1:], before[1:], strict=True):
            assert service.store.call_counts["watch_events"] == counts.get("watch_events", 0)
            assert service.store.call_counts["list_children"] == counts["list_children"]

        for thread, result in waiters:
            thread.join(timeout=5)
            result["lock"].release()

    def test_interrupt_racing_the_wait_is_not_lost(self, make_service, store, server, config, monkeypatch):
        holder = make_service("holder").acquire_exclusive_lock("job")
        lock = ExclusiveLock("job", store, config=config)
        list_children = store.list_children

        def interrupted_while_listing(path, watch=None):
            children = list_children(path, watch)
            # What an interrupted caller does while the worker is mid-iteration.
            lock._abort = True
            lock._wakeup.set()
            return children

        monkeypatch.setattr(store, "list_children", interrupted_while_listing)

        started = time.monotonic()
        with pytest.raises(LockAcquisitionFailedError, match="aborted"):
            lock.acquire(timeout=5)

        assert time.monotonic() - started < 2
        assert server.get_children(LOCK_PATH) == [holder.my_lock_name]
        holder.release()

    def test_queued_waiter_fails_when_its_node_is_deleted(self, make_service, connect, server, eventually):
        holder = make_service("holder").acquire_exclusive_lock("job")
        thread, result = _acquire_in_thread(make_service("waiter"), "job", timeout=5)
        assert eventually(lambda: len(server.get_children(LOCK_PATH)) == 2)

        waiter_node = server.get_children(LOCK_PATH)[1]
        connect("admin").delete_node(f"{LOCK_PATH}/{waiter_node}")
        holder.release()
        thread.join(timeout=5)

        assert isinstance(result["error"], LockAcquisitionFailedError)


class TestRemoteKill:
    """Locks notice deletion, steals and session loss"""

    def test_remote_delete_kills_lock(self, service, connect, server, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)

        connect("admin").delete_node(f"{LOCK_PATH}/{lock.my_lock_name}")

        assert monitor.wait_for("lost")
        assert not lock.is_valid()
        assert lock.closed
        assert monitor.calls == ["acquired", "lost"]

    def test_remote_write_is_a_steal(self, service, connect, server, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)
        node = f"{LOCK_PATH}/{lock.my_lock_name}"

        connect("thief").write_node(node, b"someone-else")

        assert monitor.wait_for("lost")
        assert not lock.is_valid()
        # A stolen node belongs to the thief and is left alone.
        assert server.get_data(node) == b"someone-else"

    def test_session_expiry_kills_lock(self, service, store, server, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)

        store.expire()

        assert monitor.wait_for("lost")
        assert not lock.is_valid()
        assert server.get_children(LOCK_PATH) == []

    def test_notifications_are_delivered_once(self, service, store, connect, make_monitor, eventually):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)
        node = f"{LOCK_PATH}/{lock.my_lock_name}"

        connect("admin").delete_node(node)
        assert monitor.wait_for("lost")
        lock.release()
        lock.kill(KillReason.COORDINATION_DISCONNECT)
        store.expire()
        assert store.flush()

        assert monitor.counts == {"acquired": 1, "lost": 1}

    def test_lock_deleted_keeps_my_lock_name(self, service, connect, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)
        name = lock.my_lock_name

        connect("admin").delete_node(f"{LOCK_PATH}/{name}")
        assert monitor.wait_for("lost")

        assert lock.my_lock_name == name
        assert lock.active_lock_name is None


class TestMonitorIsolation:
    """Monitor failures never leak into the protocol"""

    def test_failing_monitor_does_not_break_acquire(self, service, make_monitor):
        monitor = make_monitor()

        def broken(lock):
            raise RuntimeError("monitor bug")

        monitor.lock_acquired = broken
        lock = service.acquire_exclusive_lock("job", monitor)

        assert lock.is_valid()
        lock.release()

    def test_monitor_may_release_from_callback(self, service, server, make_monitor):
        monitor = make_monitor()
        monitor.lock_acquired = lambda lock: lock.release()

        lock = service.acquire_exclusive_lock("job", monitor)

        assert monitor.wait_for("released")
        assert not lock.is_valid()
        assert server.get_children(LOCK_PATH) == []


class TestStoreFailures:
    """Transient and permanent store errors during acquisition"""

    def test_lost_create_reply_adopts_existing_node(self, service, store, server):
        store.inject_failure("create_node", StoreUnavailableError("reply lost"), after_apply=True)

        lock = service.acquire_exclusive_lock("job")

        assert lock.is_valid()
        assert server.get_children(LOCK_PATH) == [lock.my_lock_name]
        lock.release()

    def test_persistent_outage_fails_acquire(self, service, store, server):
        for _ in range(3):
            store.inject_failure("create_node", StoreUnavailableError("down"))

        with pytest.raises(LockAcquisitionFailedError) as exc_info:
            service.acquire_exclusive_lock("job")

        assert isinstance(exc_info.value.__cause__, StoreUnavailableError)
        assert server.get_children(LOCK_PATH) == []

    def test_unparsable_node_names_sort_last(self, service, store):
        store.create_node(f"{LOCK_PATH}/lock-bogus", mode=CreateMode.PERSISTENT, make_parents=True)

        lock = service.acquire_exclusive_lock("job", timeout=1)

        assert lock.my_lock_name == "lock-0000000000"
        assert lock.is_valid()
        lock.release()


class TestSuspension:
    """Connection loss without session expiry"""

    def test_suspend_and_resume(self, service, store, make_monitor, eventually):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)

        store.suspend()
        assert monitor.wait_for("suspended")
        assert lock.is_suspended()
        assert "SUSPENDED" in repr(lock)

        store.reconnect()
        assert eventually(lambda: not lock.is_suspended())
        assert lock.is_valid()
        assert monitor.calls == ["acquired", "suspended"]
        lock.release()

    def test_is_valid_gives_up_after_suspend_timeout(self, service, store, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)
        store.suspend()
        assert monitor.wait_for("suspended")

        started = time.monotonic()
        assert not lock.is_valid()

        assert time.monotonic() - started >= 0.4
        assert monitor.wait_for("lost")
        assert lock.closed

    def test_node_deleted_during_suspension(self, service, store, connect, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)

        store.suspend()
        assert monitor.wait_for("suspended")
        connect("admin").delete_node(f"{LOCK_PATH}/{lock.my_lock_name}")
        store.reconnect()

        assert monitor.wait_for("lost")
        assert not lock.is_valid()
        assert monitor.counts["lost"] == 1

    def test_session_expiry_during_suspension(self, service, store, make_monitor):
        monitor = make_monitor()
        lock = service.acquire_exclusive_lock("job", monitor)

        store.suspend()
        assert monitor.wait_for("suspended")
        store.expire()

        assert monitor.wait_for("lost")
        assert not lock.is_valid()

    def test_is_valid_from_suspended_callback_keeps_lock(self, service, store, make_monitor, eventually):
        answers = []

        class CheckingMonitor(make_monitor):
            def lock_suspended(self, lock) -> None:
                answers.append(lock.is_valid())
                super().lock_suspended(lock)

        monitor = CheckingMonitor()
        lock = service.acquire_exclusive_lock("job", monitor)

        store.suspend()
        assert monitor.wait_for("suspended")
        assert answers == [False]
        assert not lock.closed

        store.reconnect()
        assert eventually(lambda: not lock.is_suspended())
        assert lock.is_valid()
        assert monitor.counts["lost"] == 0
        lock.release()
