from __future__ import annotations

import json
from typing import Iterable, Mapping

from .entries import WorldEntry, normalize_entries
from .errors import NotFoundError, ValidationError
from .sorting import load_order
from .storage import BookStorage, RawBook, validate_book_name


def _raw_entry_map(raw: RawBook | None) -> dict[str, object]:
    if not raw:
        return {}
    entries = raw.get("entries")
    if isinstance(entries, dict):
        return {str(key): value for key, value in entries.items()}
    return {}


def unwrap_entries(document: object) -> Mapping[object, object] | list[object]:
    """
    Accept either ``{"entries": {...}}`` or a bare uid-to-record mapping.

    A list of records is accepted in both positions as well.
    """
    if isinstance(document, Mapping):
        entries = document.get("entries")
        if isinstance(entries, (Mapping, list)):
            return entries
        if "entries" in document:
            raise ValidationError("The entries field must be an object or a list.")
        return document
    if isinstance(document, list):
        return document
    raise ValidationError("A book document must be a JSON object.")


def read_book_entries(storage: BookStorage, name: str) -> list[WorldEntry]:
    """Load and normalize a book, ordered by (order, uid)."""
    raw = storage.load_book(name)
    if raw is None:
        raise NotFoundError(f"Book not found: {name}")
    return load_order(normalize_entries(_raw_entry_map(raw)))


def build_entries_payload(
    entries: Iterable[WorldEntry],
    existing: Mapping[str, object] | None = None,
) -> dict[str, dict[str, object]]:
    """
    Serialize entries keyed by uid, layering each one over the persisted
    record with the same uid so fields unknown to the editor survive.
    """
    existing = existing or {}
    payload: dict[str, dict[str, object]] = {}
    for entry in entries:
        key = str(entry.uid)
        previous = existing.get(key)
        record: dict[str, object] = dict(previous) if isinstance(previous, Mapping) else {}
        record.update(entry.to_record())
        payload[key] = record
    return payload


def write_book_entries(
    storage: BookStorage,
    name: str,
    entries: Iterable[WorldEntry],
    *,
    create_if_missing: bool = False,
) -> None:
    current = storage.load_book(name)
    if current is None and not create_if_missing:
        raise NotFoundError(f"Book not found: {name}")
    document: RawBook = dict(current or {})
    document["entries"] = build_entries_payload(entries, _raw_entry_map(current))
    storage.save_book(name, document, create_if_missing=create_if_missing)


def export_book_document(storage: BookStorage, name: str) -> RawBook:
    raw = storage.load_book(name)
    if raw is None:
        raise NotFoundError(f"Book not found: {name}")
    existing = _raw_entry_map(raw)
    entries = load_order(normalize_entries(existing))
    document: RawBook = dict(raw)
    document["entries"] = build_entries_payload(entries, existing)
    return document


def parse_book_document(text: str) -> object:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Import file is not valid JSON: {exc}") from exc


def import_book_document(
    storage: BookStorage,
    name: str,
    document: object,
    *,
    overwrite: bool = False,
) -> list[WorldEntry]:
    name = validate_book_name(name)
    if not overwrite and storage.load_book(name) is not None:
        raise ValidationError(f"A book named '{name}' already exists.")
    entries = load_order(normalize_entries(unwrap_entries(document)))
    # Unknown fields already ride along in each entry's `extra`.
    payload = build_entries_payload(entries)
    storage.save_book(name, {"entries": payload}, create_if_missing=True)
    return entries


__all__ = [
    "build_entries_payload",
    "export_book_document",
    "import_book_document",
    "parse_book_document",
    "read_book_entries",
    "unwrap_entries",
    "write_book_entries",
]
