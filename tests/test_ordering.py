"""Tests for lock node ordering and predecessor lookup."""

from __future__ import annotations

import pytest

from coordlock.locks.ordering import find_predecessor, sequence_number, sort_lock_names


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("lock-0000000000", 0),
        ("lock-0000000042", 42),
        ("lock-9999999999", 9999999999),
        ("lock-bogus", -1),
        ("lock-", -1),
        ("lock-12a", -1),
        ("other-0000000001", -1),
        ("lock-١٢", -1),
    ],
)
def test_sequence_number(name: str, expected: int) -> None:
    assert sequence_number(name) == expected


def test_unparsable_names_sort_after_valid_ones() -> None:
    names = ["lock-0000000003", "lock-0000000001", "lock-bogus"]

    assert sort_lock_names(names) == ["lock-0000000001", "lock-0000000003", "lock-bogus"]


def test_unparsable_names_sort_lexically_among_themselves() -> None:
    names = ["lock-zz", "lock-0000000010", "lock-aa", "lock-0000000002"]

    assert sort_lock_names(names) == ["lock-0000000002", "lock-0000000010", "lock-aa", "lock-zz"]


def test_sort_uses_numeric_not_lexical_order() -> None:
    # Sequence suffixes wider than the usual padding still order numerically.
    names = ["lock-10000000000", "lock-9999999999"]

    assert sort_lock_names(names) == ["lock-9999999999", "lock-10000000000"]


def test_find_predecessor() -> None:
    names = ["lock-0000000001", "lock-0000000003", "lock-0000000007"]

    assert find_predecessor(names, "lock-0000000001") is None
    assert find_predecessor(names, "lock-0000000003") == "lock-0000000001"
    assert find_predecessor(names, "lock-0000000007") == "lock-0000000003"
    assert find_predecessor(names, "lock-0000000005") is None
    assert find_predecessor([], "lock-0000000001") is None
