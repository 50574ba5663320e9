"""Ordering of sequential lock nodes."""

from __future__ import annotations

from collections.abc import Iterable

from coordlock.core.constants import LOCK_NAME_PREFIX


def sequence_number(name: str) -> int:
    """Parse the sequence suffix of a lock node name.

    Returns -1 when ``name`` does not look like ``lock-<digits>``.
    """
    if not name.startswith(LOCK_NAME_PREFIX):
        return -1
    suffix = name[len(LOCK_NAME_PREFIX) :]
    if not suffix.isascii() or not suffix.isdigit():
        return -1
    return int(suffix)


def _sort_key(name: str) -> tuple[int, int, str]:
    sequence = sequence_number(name)
    if sequence < 0:
        return (1, 0, name)
    return (0, sequence, name)


def sort_lock_names(names: Iterable[str]) -> list[str]:
    """Sort lock node names by sequence number.

    Names without a parsable sequence sort after every valid one and
    lexically among themselves.
    """
    return sorted(names, key=_sort_key)


def find_predecessor(sorted_names: list[str], my_name: str) -> str | None:
    """Name immediately before ``my_name``, or None if it is first or absent."""
    try:
        index = sorted_names.index(my_name)
    except ValueError:
        return None
    if index == 0:
        return None
    return sorted_names[index - 1]
