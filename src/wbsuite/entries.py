from __future__ import annotations

import logging
import math
from copy import deepcopy
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

DEFAULT_ORDER = 0
DEFAULT_DEPTH = 4


class Position(IntEnum):
    """Insertion anchors understood by the prompt assembler."""

    BEFORE_CHARACTER_DEFINITION = 0
    AFTER_CHARACTER_DEFINITION = 1
    BEFORE_AUTHOR_NOTE = 2
    AFTER_AUTHOR_NOTE = 3
    AT_DEPTH = 4
    BEFORE_EXAMPLE_MESSAGES = 5
    AFTER_EXAMPLE_MESSAGES = 6


DEFAULT_POSITION = int(Position.AFTER_CHARACTER_DEFINITION)

# Fields owned by WorldEntry; anything else on a record is carried in `extra`.
_MODELED_FIELDS = frozenset(
    {
        "uid",
        "comment",
        "content",
        "key",
        "disable",
        "constant",
        "selective",
        "order",
        "depth",
        "position",
    }
)


@dataclass
class WorldEntry:
    """
    A single worldbook entry as held in memory.

    Unknown fields read from storage are kept in ``extra`` so that writing the
    entry back never drops data the editor does not model.
    """

    uid: int
    comment: str = ""
    content: str = ""
    key: list[str] = field(default_factory=list)
    disable: bool = False
    constant: bool = False
    order: int | float = DEFAULT_ORDER
    depth: int | float = DEFAULT_DEPTH
    position: int = DEFAULT_POSITION
    extra: dict[str, object] = field(default_factory=dict)

    @property
    def selective(self) -> bool:
        return not self.constant

    def clone(self) -> "WorldEntry":
        return deepcopy(self)

    def to_record(self) -> dict[str, object]:
        record: dict[str, object] = deepcopy(self.extra)
        record.update(
            {
                "uid": self.uid,
                "comment": self.comment,
                "content": self.content,
                "key": list(self.key),
                "disable": self.disable,
                "constant": self.constant,
                "selective": not self.constant,
                "order": self.order,
                "depth": self.depth,
                "position": self.position,
            }
        )
        return record


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and not math.isfinite(value))


def _coerce_number(value: object, default: int) -> int | float:
    if not _is_number(value):
        return default
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value  # type: ignore[return-value]


def _coerce_position(value: object) -> int:
    if _is_number(value) and float(value).is_integer():  # type: ignore[arg-type]
        return int(value)  # type: ignore[arg-type]
    return DEFAULT_POSITION


def _coerce_uid(value: object) -> int | None:
    if _is_number(value) and float(value).is_integer() and value >= 0:  # type: ignore[operator]
        return int(value)  # type: ignore[arg-type]
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
    return None


def _coerce_keys(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item if isinstance(item, str) else str(item) for item in value if item is not None]


def entry_from_record(
    record: Mapping[str, object],
    *,
    uid_hint: object = None,
) -> tuple[WorldEntry, bool]:
    """
    Build a WorldEntry from an arbitrary record.

    Returns the entry and whether its uid came from the record or hint. When
    neither yields a usable uid the entry carries ``-1`` and the caller must
    assign one.
    """
    uid = _coerce_uid(record.get("uid"))
    if uid is None:
        uid = _coerce_uid(uid_hint)
    comment = record.get("comment")
    content = record.get("content")
    disable = record.get("disable")
    constant = record.get("constant")
    entry = WorldEntry(
        uid=uid if uid is not None else -1,
        comment=comment if isinstance(comment, str) else "",
        content=content if isinstance(content, str) else "",
        key=_coerce_keys(record.get("key")),
        disable=disable if isinstance(disable, bool) else False,
        constant=constant if isinstance(constant, bool) else False,
        order=_coerce_number(record.get("order"), DEFAULT_ORDER),
        depth=_coerce_number(record.get("depth"), DEFAULT_DEPTH),
        position=_coerce_position(record.get("position")),
        extra={
            name: deepcopy(value)
            for name, value in record.items()
            if name not in _MODELED_FIELDS
        },
    )
    return entry, uid is not None


def normalize_entries(
    raw: Mapping[object, object] | Iterable[object] | None,
) -> list[WorldEntry]:
    """
    Turn a raw per-uid mapping (or a list of records) into well-typed entries.

    Malformed fields are replaced with defaults and records that are not
    mappings are skipped. Entries whose uid is missing, unparsable or already
    taken are given the next free uid. Normalizing an already normalized list
    returns an equal list.
    """
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        items: Iterable[tuple[object, object]] = raw.items()
    else:
        items = ((None, record) for record in raw)

    entries: list[WorldEntry] = []
    needs_uid: list[WorldEntry] = []
    used: set[int] = set()
    for hint, record in items:
        if isinstance(record, WorldEntry):
            record = record.to_record()
        if not isinstance(record, Mapping):
            logger.debug("Skipping non-mapping entry record under key %r", hint)
            continue
        entry, has_uid = entry_from_record(record, uid_hint=hint)
        if has_uid and entry.uid not in used:
            used.add(entry.uid)
        else:
            needs_uid.append(entry)
        entries.append(entry)

    next_uid = max(used, default=-1) + 1
    for entry in needs_uid:
        while next_uid in used:
            next_uid += 1
        entry.uid = next_uid
        used.add(next_uid)
    return entries


def matches_search(entry: WorldEntry, query: str | None) -> bool:
    if not query:
        return True
    needle = query.strip().casefold()
    if not needle:
        return True
    if needle == str(entry.uid):
        return True
    if needle in entry.comment.casefold() or needle in entry.content.casefold():
        return True
    return any(needle in keyword.casefold() for keyword in entry.key)


def max_uid(entries: Iterable[WorldEntry]) -> int:
    return max((entry.uid for entry in entries), default=-1)


__all__ = [
    "DEFAULT_DEPTH",
    "DEFAULT_ORDER",
    "DEFAULT_POSITION",
    "Position",
    "WorldEntry",
    "entry_from_record",
    "matches_search",
    "max_uid",
    "normalize_entries",
]
