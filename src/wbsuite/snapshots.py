from __future__ import annotations

from typing import Any

from .errors import NotFoundError, ValidationError
from .host import HostState
from .store import EntryStore


class SnapshotRegistry:
    """
    Named on/off states of a book's entries.

    A snapshot is the list of uids that were enabled when it was saved. They
    live in the host's extension metadata as
    ``{book: {"snapshots": {name: [uid, ...]}}}``.
    """

    def __init__(self, host: HostState) -> None:
        self.host = host

    def _book_snapshots(self, metadata: dict[str, Any], book: str) -> dict[str, list[int]]:
        book_meta = metadata.get(book)
        if not isinstance(book_meta, dict):
            return {}
        snapshots = book_meta.get("snapshots")
        if not isinstance(snapshots, dict):
            return {}
        return {
            name: [uid for uid in uids if isinstance(uid, int) and not isinstance(uid, bool)]
            for name, uids in snapshots.items()
            if isinstance(name, str) and isinstance(uids, list)
        }

    def names(self, book: str) -> list[str]:
        return sorted(self._book_snapshots(self.host.get_suite_metadata(), book))

    def get(self, book: str, name: str) -> list[int]:
        snapshots = self._book_snapshots(self.host.get_suite_metadata(), book)
        if name not in snapshots:
            raise NotFoundError(f"Snapshot '{name}' not found for book '{book}'.")
        return snapshots[name]

    def save(self, store: EntryStore, name: str) -> list[int]:
        book = store.current_book
        if book is None:
            raise ValidationError("No book is open.")
        name = (name or "").strip()
        if not name:
            raise ValidationError("Snapshot name must not be empty.")
        enabled = [entry.uid for entry in store.entries() if not entry.disable]
        metadata = dict(self.host.get_suite_metadata())
        book_meta = metadata.get(book)
        book_meta = dict(book_meta) if isinstance(book_meta, dict) else {}
        snapshots = book_meta.get("snapshots")
        snapshots = dict(snapshots) if isinstance(snapshots, dict) else {}
        snapshots[name] = enabled
        book_meta["snapshots"] = snapshots
        metadata[book] = book_meta
        self.host.save_suite_metadata(metadata)
        return enabled

    def apply(self, store: EntryStore, name: str) -> None:
        book = store.current_book
        if book is None:
            raise ValidationError("No book is open.")
        store.set_enabled_only(self.get(book, name))

    def delete(self, book: str, name: str) -> None:
        metadata = dict(self.host.get_suite_metadata())
        book_meta = metadata.get(book)
        snapshots = book_meta.get("snapshots") if isinstance(book_meta, dict) else None
        if not isinstance(snapshots, dict) or name not in snapshots:
            raise NotFoundError(f"Snapshot '{name}' not found for book '{book}'.")
        snapshots = dict(snapshots)
        del snapshots[name]
        metadata[book] = {**book_meta, "snapshots": snapshots}
        self.host.save_suite_metadata(metadata)

    def rename_book(self, old_name: str, new_name: str) -> bool:
        metadata = dict(self.host.get_suite_metadata())
        if old_name not in metadata:
            return False
        metadata[new_name] = metadata.pop(old_name)
        self.host.save_suite_metadata(metadata)
        return True


__all__ = ["SnapshotRegistry"]
