from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Union

from .entries import WorldEntry
from .errors import ValidationError

_TEXT_FIELDS = frozenset({"comment", "content"})
_FLAG_FIELDS = frozenset({"disable", "constant"})
_NUMERIC_FIELDS = frozenset({"order", "depth", "position"})
PATCHABLE_FIELDS = _TEXT_FIELDS | _FLAG_FIELDS | _NUMERIC_FIELDS | {"key"}


def _check_value(name: str, value: object) -> object:
    if name not in PATCHABLE_FIELDS:
        raise ValidationError(f"Field '{name}' cannot be edited.")
    if name in _TEXT_FIELDS:
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string.")
        return value
    if name in _FLAG_FIELDS:
        if not isinstance(value, bool):
            raise ValidationError(f"{name} must be a boolean.")
        return value
    if name == "key":
        if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
            raise ValidationError("key must be a list of strings.")
        return list(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} must be a number.")
    if name == "position" and not float(value).is_integer():
        raise ValidationError("position must be an integer.")
    return int(value) if name == "position" else value


@dataclass(frozen=True)
class EntryPatch:
    """Assigns the given field values to an entry."""

    values: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        checked = {name: _check_value(name, value) for name, value in self.values.items()}
        object.__setattr__(self, "values", checked)

    @classmethod
    def of(cls, **values: object) -> "EntryPatch":
        return cls(values)

    def apply(self, entry: WorldEntry) -> None:
        for name, value in self.values.items():
            setattr(entry, name, list(value) if name == "key" else value)  # type: ignore[arg-type]


@dataclass(frozen=True)
class ToggleFlag:
    """Flips a boolean field (``disable`` or ``constant``)."""

    field: str

    def __post_init__(self) -> None:
        if self.field not in _FLAG_FIELDS:
            raise ValidationError(f"Field '{self.field}' is not a flag.")

    def apply(self, entry: WorldEntry) -> None:
        setattr(entry, self.field, not getattr(entry, self.field))


@dataclass(frozen=True)
class AdjustNumber:
    """Adds ``delta`` to ``order`` or ``depth``."""

    field: str
    delta: int | float

    def __post_init__(self) -> None:
        if self.field not in {"order", "depth"}:
            raise ValidationError(f"Field '{self.field}' cannot be adjusted.")
        if isinstance(self.delta, bool) or not isinstance(self.delta, (int, float)):
            raise ValidationError("delta must be a number.")

    def apply(self, entry: WorldEntry) -> None:
        setattr(entry, self.field, getattr(entry, self.field) + self.delta)


Mutation = Union[EntryPatch, ToggleFlag, AdjustNumber]


def mutation_from_payload(payload: Mapping[str, object]) -> Mutation:
    """
    Parse one of ``{"set": {...}}``, ``{"toggle": "<flag>"}`` or
    ``{"adjust": {"field": ..., "delta": ...}}``.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Invalid payload.")
    if "set" in payload:
        values = payload["set"]
        if not isinstance(values, Mapping) or not values:
            raise ValidationError("set must be a non-empty object.")
        return EntryPatch(dict(values))
    if "toggle" in payload:
        flag = payload["toggle"]
        if not isinstance(flag, str):
            raise ValidationError("toggle must name a flag.")
        return ToggleFlag(flag)
    if "adjust" in payload:
        adjust = payload["adjust"]
        if not isinstance(adjust, Mapping) or not isinstance(adjust.get("field"), str):
            raise ValidationError("adjust needs a field and a delta.")
        return AdjustNumber(adjust["field"], adjust.get("delta"))  # type: ignore[arg-type]
    raise ValidationError("Expected one of: set, toggle, adjust.")


__all__ = [
    "AdjustNumber",
    "EntryPatch",
    "Mutation",
    "PATCHABLE_FIELDS",
    "ToggleFlag",
    "mutation_from_payload",
]
