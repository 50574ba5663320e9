"""Tests for command-line interface"""

import json
import sys
from unittest.mock import patch

import pytest

import coordlock.cli as cli
from coordlock.cli import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_OK, EXIT_TIMEOUT, build_parser, main
from coordlock.core.exceptions import LockAcquisitionTimeoutError
from coordlock.locks.service import LockQueue, LockService


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep main() from reconfiguring the root logger or reading a stray .env file."""
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli, "load_dotenv", lambda *args, **kwargs: False)
    monkeypatch.delenv("COORDLOCK_STORE", raising=False)


def _run(*args: str) -> int:
    return main(["--store", "memory", *args])


class TestCLIArguments:
    """Test command-line argument parsing"""

    def test_parse_status(self):
        args = build_parser().parse_args(["status", "nightly-import", "--durable", "--json"])
        assert args.command == "status"
        assert args.lock_id == "nightly-import"
        assert args.durable is True
        assert args.json is True

    def test_parse_run_options(self):
        args = build_parser().parse_args(["run", "job", "--timeout", "2.5", "--", "echo", "-n", "hi"])
        assert args.timeout == 2.5
        assert args.durable is False
        assert args.recovery_key is None
        assert [part for part in args.cmd if part != "--"] == ["echo", "-n", "hi"]

    def test_parse_global_options(self):
        args = build_parser().parse_args(
            ["--hosts", "zk1:2181", "--store", "memory", "--locks-root", "/apps", "break", "job"]
        )
        assert args.hosts == "zk1:2181"
        assert args.store == "memory"
        assert args.locks_root == "/apps"

    def test_log_level_default_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        args = build_parser().parse_args(["status", "job"])
        assert args.log_level == "DEBUG"

    def test_unknown_store_is_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--store", "etcd", "status", "job"])
        assert exc_info.value.code == 2

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_version_flag(self, capsys):
        with patch.object(sys, "argv", ["coordlock", "--version"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 0
        assert "coordlock" in capsys.readouterr().out


class TestStatusCommand:
    """Test the status subcommand"""

    def test_free_lock(self, capsys):
        assert _run("status", "job") == EXIT_OK
        assert capsys.readouterr().out.strip() == "exclusive lock 'job' is free"

    def test_json_output(self, capsys):
        assert _run("status", "job", "--durable", "--json") == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload == {
            "lock_id": "job",
            "path": "/coordlock/locks/durable/job",
            "durable": True,
            "contenders": [],
            "active": None,
        }

    def test_held_lock_lists_waiters(self, capsys, monkeypatch):
        def fake_describe(self, lock_id, *, durable=False):
            return LockQueue(lock_id, "/x", durable, ["lock-0000000000", "lock-0000000001"])

        monkeypatch.setattr(LockService, "describe_lock", fake_describe)

        assert _run("status", "job") == EXIT_OK
        out = capsys.readouterr().out
        assert "exclusive lock 'job' held by lock-0000000000" in out
        assert "  1. lock-0000000001" in out

    def test_invalid_lock_id(self, capsys):
        assert _run("status", "../etc") == EXIT_FAILURE
        assert capsys.readouterr().err.startswith("ERROR: Invalid lock id")


class TestRunCommand:
    """Test the run subcommand"""

    def test_returns_command_exit_code(self):
        assert _run("run", "job", "--", sys.executable, "-c", "raise SystemExit(3)") == 3

    def test_successful_command(self):
        assert _run("run", "job", "--timeout", "5", "--", sys.executable, "-c", "pass") == EXIT_OK

    def test_durable_run_prints_recovery_key(self, capsys):
        assert _run("run", "job", "--durable", "--", sys.executable, "-c", "pass") == EXIT_OK
        assert "recovery key: lock-0000000000_" in capsys.readouterr().err

    def test_missing_command(self, capsys):
        assert _run("run", "job") == EXIT_FAILURE
        assert "run requires a command" in capsys.readouterr().err

    def test_recovery_key_requires_durable(self, capsys):
        assert _run("run", "job", "--recovery-key", "lock-0000000000_x", "--", "true") == EXIT_FAILURE
        assert "--recovery-key requires --durable" in capsys.readouterr().err

    def test_recovery_of_missing_node_fails(self, capsys):
        code = _run("run", "job", "--durable", "--recovery-key", "lock-0000000007_x", "--", "true")
        assert code == EXIT_FAILURE
        assert "does not exist" in capsys.readouterr().err

    def test_unrunnable_command(self, capsys):
        assert _run("run", "job", "--", "/nonexistent/coordlock-test-binary") == EXIT_FAILURE
        assert "cannot run /nonexistent/coordlock-test-binary" in capsys.readouterr().err

    def test_timeout_exit_code(self, capsys, monkeypatch):
        def timed_out(self, lock_id, monitor=None, timeout=None):
            raise LockAcquisitionTimeoutError(lock_id, timeout)

        monkeypatch.setattr(LockService, "acquire_exclusive_lock", timed_out)

        assert _run("run", "job", "--timeout", "1", "--", "true") == EXIT_TIMEOUT
        assert capsys.readouterr().err.startswith("ERROR: [job] Unable to acquire lock within the given timeout")


class TestBreakCommand:
    """Test the break subcommand"""

    def test_break_free_lock(self, capsys):
        assert _run("break", "job") == EXIT_OK
        assert capsys.readouterr().out.strip() == "lock 'job' is not held"

    def test_break_held_lock(self, capsys, monkeypatch):
        monkeypatch.setattr(LockService, "break_lock", lambda self, lock_id, durable=False: "lock-0000000004")

        assert _run("break", "job", "--durable") == EXIT_OK
        assert capsys.readouterr().out.strip() == "deleted lock-0000000004"


def test_keyboard_interrupt(capsys, monkeypatch):
    def interrupted(service, args):
        raise KeyboardInterrupt

    monkeypatch.setitem(cli._COMMANDS, "status", interrupted)

    assert _run("status", "job") == EXIT_INTERRUPTED
    assert "Interrupted" in capsys.readouterr().err


def test_dotenv_is_loaded_before_parsing(monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "load_dotenv", lambda: calls.append("loaded") or True)

    assert _run("status", "job") == EXIT_OK
    assert calls == ["loaded"]
