"""Command line interface for coordlock.

Exit codes:
    0  success (``run``: the command's own exit code)
    1  error (invalid arguments, store failure, lock acquisition failure)
    2  lock acquisition timed out
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import subprocess
import sys
from collections.abc import Sequence

from dotenv import load_dotenv

from coordlock.core.config import LockServiceConfig
from coordlock.core.constants import ENV_LOG_LEVEL, STORE_BACKENDS, VALID_LOG_LEVELS
from coordlock.core.exceptions import CoordLockError, LockAcquisitionTimeoutError
from coordlock.core.logging import setup_logging
from coordlock.core.version import __version__
from coordlock.locks.engine import LockEngine
from coordlock.locks.monitor import LockMonitor
from coordlock.locks.service import LockService

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 2
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


class _CommandLockMonitor(LockMonitor):
    """Warns on stderr when the lock guarding a running command goes away."""

    def lock_lost(self, lock: LockEngine) -> None:
        print(f"WARNING: lock '{lock.id}' was lost while the command was running", file=sys.stderr)

    def lock_suspended(self, lock: LockEngine) -> None:
        print(f"WARNING: connection suspended while holding lock '{lock.id}'", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coordlock",
        description="Distributed locks on ZooKeeper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show who holds a lock and who is waiting
  coordlock status nightly-import

  # Run a command while holding a lock (wait at most 30 seconds)
  coordlock run nightly-import --timeout 30 -- ./import.sh

  # Durable lock: the recovery key is printed to stderr
  coordlock run package-install --durable -- ./install.sh

  # Take over a durable lock after a crash
  coordlock run package-install --durable --recovery-key lock-0000000004_... -- ./install.sh

  # Forcefully remove the active lock node
  coordlock break nightly-import
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--hosts", help="ZooKeeper connect string (default: COORDLOCK_HOSTS or 127.0.0.1:2181)")
    parser.add_argument("--store", choices=STORE_BACKENDS, help="Coordination store backend (default: zookeeper)")
    parser.add_argument("--locks-root", help="Store path holding all locks (default: /coordlock/locks)")
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get(ENV_LOG_LEVEL, "WARNING"),
        choices=list(VALID_LOG_LEVELS),
        help="Logging level (default: WARNING, or LOG_LEVEL environment variable)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log output format (default: text)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status = subparsers.add_parser("status", help="Show the active holder and waiting contenders")
    status.add_argument("lock_id")
    status.add_argument("--durable", action="store_true", help="Inspect a durable lock")
    status.add_argument("--json", action="store_true", help="Print the queue as JSON")

    run = subparsers.add_parser("run", help="Run a command while holding a lock")
    run.add_argument("lock_id")
    run.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the lock (default: forever)")
    run.add_argument("--durable", action="store_true", help="Use a durable lock")
    run.add_argument("--recovery-key", help="Recover a durable lock instead of queueing for it")
    run.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run (prefix with --)")

    break_ = subparsers.add_parser("break", help="Delete the active lock node")
    break_.add_argument("lock_id")
    break_.add_argument("--durable", action="store_true", help="Break a durable lock")

    return parser


def _bootstrap_dotenv() -> None:
    """Load COORDLOCK_* settings from a .env file; the real environment wins."""
    try:
        if load_dotenv():
            logger.debug(".env file found and loaded")
    except OSError as e:
        print(f"Warning: Failed to load .env file: {e}", file=sys.stderr)


def _exit_error(msg: str) -> int:
    print(f"ERROR: {msg}", file=sys.stderr)
    return EXIT_FAILURE


def _cmd_status(service: LockService, args: argparse.Namespace) -> int:
    queue = service.describe_lock(args.lock_id, durable=args.durable)
    if args.json:
        print(json.dumps(queue.to_dict(), indent=2))
        return EXIT_OK
    kind = "durable" if args.durable else "exclusive"
    if queue.active is None:
        print(f"{kind} lock '{args.lock_id}' is free")
        return EXIT_OK
    print(f"{kind} lock '{args.lock_id}' held by {queue.active}")
    for position, name in enumerate(queue.waiting, start=1):
        print(f"  {position}. {name}")
    return EXIT_OK


def _cmd_run(service: LockService, args: argparse.Namespace) -> int:
    command = list(args.cmd)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        return _exit_error("run requires a command after --")
    if args.recovery_key and not args.durable:
        return _exit_error("--recovery-key requires --durable")

    monitor = _CommandLockMonitor()
    if args.recovery_key:
        lock = service.recover_durable_lock(args.lock_id, monitor, args.recovery_key)
    elif args.durable:
        lock = service.acquire_durable_lock(args.lock_id, monitor, timeout=args.timeout)
    else:
        lock = service.acquire_exclusive_lock(args.lock_id, monitor, timeout=args.timeout)

    with lock:
        if args.durable:
            print(f"recovery key: {lock.recovery_key}", file=sys.stderr)
        logger.info(f"Running {command[0]} under lock '{args.lock_id}'")
        try:
            completed = subprocess.run(command, check=False)
        except OSError as e:
            return _exit_error(f"cannot run {command[0]}: {e}")
    return completed.returncode


def _cmd_break(service: LockService, args: argparse.Namespace) -> int:
    broken = service.break_lock(args.lock_id, durable=args.durable)
    if broken is None:
        print(f"lock '{args.lock_id}' is not held")
    else:
        print(f"deleted {broken}")
    return EXIT_OK


_COMMANDS = {
    "status": _cmd_status,
    "run": _cmd_run,
    "break": _cmd_break,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the ``coordlock`` command."""
    _bootstrap_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_format)

    try:
        config = LockServiceConfig.from_args(args)
        with LockService.from_config(config) as service:
            return _COMMANDS[args.command](service, args)
    except LockAcquisitionTimeoutError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_TIMEOUT
    except CoordLockError as e:
        return _exit_error(str(e))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
