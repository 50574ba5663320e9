"""Recovery key format for durable locks.

A recovery key is ``<lockName>_<nodeContent>``. Node content never contains
``_``, so a well-formed key splits into exactly two parts.
"""

from __future__ import annotations

from coordlock.core.constants import RECOVERY_KEY_SEPARATOR
from coordlock.core.exceptions import InvalidLockArgumentError


def create_recovery_key(lock_name: str, node_content: str) -> str:
    return f"{lock_name}{RECOVERY_KEY_SEPARATOR}{node_content}"


def parse_recovery_key(recovery_key: str) -> tuple[str, str]:
    """Split a recovery key into ``(lock_name, node_content)``.

    Raises:
        InvalidLockArgumentError: If the key is not exactly two non-blank parts
    """
    if not isinstance(recovery_key, str) or not recovery_key.strip():
        raise InvalidLockArgumentError("Recovery key must not be empty", argument="recovery_key")
    parts = recovery_key.split(RECOVERY_KEY_SEPARATOR)
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise InvalidLockArgumentError(
            "Malformed recovery key",
            argument="recovery_key",
            details=f"expected '<lockName>{RECOVERY_KEY_SEPARATOR}<nodeContent>'",
        )
    return parts[0], parts[1]


def matches_recovery_key(current_content: str, lock_name: str, expected_content: str) -> bool:
    """Return True if a node's content belongs to the holder of the key.

    A node written by its creator carries the bare identity content; once
    recovered it carries the full recovery key of the recovering engine.
    """
    return current_content in (expected_content, create_recovery_key(lock_name, expected_content))
