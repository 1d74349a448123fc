from __future__ import annotations

from typing import Iterable

from .entries import Position, WorldEntry

DEFAULT_AUTHOR_NOTE_DEPTH = 4
UNRECOGNIZED_SCORE = -9999

_ANCHOR_SCORES = {
    Position.BEFORE_CHARACTER_DEFINITION: 100000,
    Position.AFTER_CHARACTER_DEFINITION: 90000,
    Position.BEFORE_EXAMPLE_MESSAGES: 80000,
    Position.AFTER_EXAMPLE_MESSAGES: 70000,
}


def score(entry: WorldEntry, author_note_depth: int | float | None = None) -> float:
    """
    Priority of an entry; higher scores are presented first.

    Fixed anchors dominate. ``at_depth`` entries score their own depth and
    author-note entries sit just above the note depth, so both compete in the
    same small neighbourhood.
    """
    note_depth = DEFAULT_AUTHOR_NOTE_DEPTH if author_note_depth is None else author_note_depth
    try:
        position = Position(entry.position)
    except ValueError:
        return UNRECOGNIZED_SCORE
    if position in _ANCHOR_SCORES:
        return _ANCHOR_SCORES[position]
    if position is Position.AT_DEPTH:
        return entry.depth
    if position is Position.BEFORE_AUTHOR_NOTE:
        return note_depth + 0.6
    return note_depth + 0.4


def sort_key(
    entry: WorldEntry, author_note_depth: int | float | None = None
) -> tuple[float, float, int]:
    return (-score(entry, author_note_depth), entry.order, entry.uid)


def sort_entries(
    entries: Iterable[WorldEntry], author_note_depth: int | float | None = None
) -> list[WorldEntry]:
    return sorted(entries, key=lambda entry: sort_key(entry, author_note_depth))


def load_order(entries: Iterable[WorldEntry]) -> list[WorldEntry]:
    """Baseline order used right after loading: order, then uid."""
    return sorted(entries, key=lambda entry: (entry.order, entry.uid))


__all__ = [
    "DEFAULT_AUTHOR_NOTE_DEPTH",
    "UNRECOGNIZED_SCORE",
    "load_order",
    "score",
    "sort_entries",
    "sort_key",
]
