from __future__ import annotations

import pytest

from wbsuite.entries import Position, WorldEntry
from wbsuite.sorting import UNRECOGNIZED_SCORE, load_order, score, sort_entries


def _entry(uid: int, position: int, *, depth: int | float = 4, order: int = 0) -> WorldEntry:
    return WorldEntry(uid=uid, position=position, depth=depth, order=order)


def test_fixed_anchors_come_before_depth_based_positions() -> None:
    entries = [
        _entry(1, Position.AFTER_AUTHOR_NOTE),
        _entry(2, Position.AT_DEPTH, depth=10),
        _entry(3, Position.AFTER_EXAMPLE_MESSAGES),
        _entry(4, Position.BEFORE_AUTHOR_NOTE),
        _entry(5, Position.BEFORE_CHARACTER_DEFINITION),
        _entry(6, Position.BEFORE_EXAMPLE_MESSAGES),
        _entry(7, Position.AFTER_CHARACTER_DEFINITION),
    ]

    ordered = sort_entries(entries, author_note_depth=4)

    assert [entry.uid for entry in ordered] == [5, 7, 6, 3, 2, 4, 1]


def test_author_note_entries_interleave_with_depth_entries() -> None:
    before_note = _entry(1, Position.BEFORE_AUTHOR_NOTE)
    at_depth = _entry(2, Position.AT_DEPTH, depth=5)

    assert score(before_note, 4.5) == pytest.approx(5.1)
    assert [entry.uid for entry in sort_entries([at_depth, before_note], 4.5)] == [1, 2]
    assert [entry.uid for entry in sort_entries([at_depth, before_note], 4)] == [2, 1]


def test_default_author_note_depth_is_four() -> None:
    assert score(_entry(1, Position.AFTER_AUTHOR_NOTE)) == pytest.approx(4.4)


def test_unknown_position_sorts_last() -> None:
    odd = _entry(1, 9)
    normal = _entry(2, Position.AT_DEPTH, depth=0)

    assert score(odd) == UNRECOGNIZED_SCORE
    assert [entry.uid for entry in sort_entries([odd, normal])] == [2, 1]


def test_ties_break_on_order_then_uid() -> None:
    entries = [
        _entry(9, Position.AT_DEPTH, order=1),
        _entry(3, Position.AT_DEPTH, order=1),
        _entry(5, Position.AT_DEPTH, order=0),
    ]

    assert [entry.uid for entry in sort_entries(entries)] == [5, 3, 9]
    assert [entry.uid for entry in load_order(entries)] == [5, 3, 9]


def test_sorting_is_idempotent() -> None:
    entries = [
        _entry(uid, position, depth=uid % 3, order=uid % 2)
        for uid, position in enumerate([4, 2, 0, 3, 4, 6, 1, 5, 2])
    ]

    once = sort_entries(entries, 3)

    assert sort_entries(once, 3) == once
