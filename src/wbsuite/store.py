from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from .book_io import read_book_entries, write_book_entries
from .entries import WorldEntry, entry_from_record, matches_search, max_uid
from .errors import NotFoundError, ValidationError, WorldbookError
from .patches import EntryPatch, Mutation
from .scheduler import DebounceScheduler
from .sorting import sort_entries
from .storage import BookStorage

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.28

EntryDraft = Mapping[str, object] | EntryPatch | WorldEntry


@dataclass
class EditorSession:
    """Everything the editor holds for the book it currently has open."""

    book: str | None = None
    entries: list[WorldEntry] = field(default_factory=list)
    selected: set[int] = field(default_factory=set)
    search: str = ""
    dirty: bool = False


def _entry_from_draft(draft: EntryDraft) -> WorldEntry:
    if isinstance(draft, WorldEntry):
        return draft.clone()
    if isinstance(draft, EntryPatch):
        entry = WorldEntry(uid=-1)
        draft.apply(entry)
        return entry
    if isinstance(draft, Mapping):
        entry, _ = entry_from_record(draft)
        return entry
    raise ValidationError(f"Unsupported entry draft: {type(draft).__name__}")


class EntryStore:
    """
    In-memory cache of one open book with coalesced persistence.

    Single-entry edits are written after ``debounce_seconds`` of inactivity;
    create, delete and batch edits are written immediately. Any pending write
    is forced before the open book changes.
    """

    def __init__(
        self,
        storage: BookStorage,
        *,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        scheduler: DebounceScheduler | None = None,
    ) -> None:
        self.storage = storage
        self.debounce_seconds = debounce_seconds
        self._scheduler = scheduler or DebounceScheduler()
        self._lock = self._scheduler.lock
        self.session = EditorSession()

    @property
    def current_book(self) -> str | None:
        return self.session.book

    @property
    def selected(self) -> set[int]:
        with self._lock:
            return set(self.session.selected)

    def entries(self) -> list[WorldEntry]:
        with self._lock:
            return [entry.clone() for entry in self.session.entries]

    def get(self, uid: int) -> WorldEntry | None:
        with self._lock:
            entry = self._find(uid)
            return entry.clone() if entry is not None else None

    def has_pending_flush(self) -> bool:
        book = self.session.book
        return book is not None and self._scheduler.pending(book)

    def _find(self, uid: int) -> WorldEntry | None:
        for entry in self.session.entries:
            if entry.uid == uid:
                return entry
        return None

    def _require_book(self) -> str:
        if self.session.book is None:
            raise ValidationError("No book is open.")
        return self.session.book

    def load(self, name: str) -> list[WorldEntry]:
        """Open ``name`` as the current book, flushing the previous one first."""
        with self._lock:
            self.flush()
            entries = read_book_entries(self.storage, name)
            self.session = EditorSession(book=name, entries=entries)
            logger.debug("Loaded book %r with %d entries", name, len(entries))
            return [entry.clone() for entry in entries]

    def close_book(self, *, flush: bool = True) -> None:
        with self._lock:
            if flush:
                self.flush()
            elif self.session.book is not None:
                self._scheduler.cancel(self.session.book)
            self.session = EditorSession()

    def close(self) -> None:
        with self._lock:
            try:
                self.flush()
            finally:
                self._scheduler.shutdown()

    def follow_rename(self, old_name: str, new_name: str) -> None:
        with self._lock:
            if self.session.book == old_name:
                self.session.book = new_name

    def presentation_order(self, author_note_depth: int | float | None = None) -> list[WorldEntry]:
        return sort_entries(self.entries(), author_note_depth)

    def _persist(self) -> None:
        book = self._require_book()
        write_book_entries(self.storage, book, self.session.entries)
        self.session.dirty = False
        logger.debug("Persisted %d entries to %r", len(self.session.entries), book)

    def _persist_now(self) -> None:
        self._scheduler.cancel(self._require_book())
        self.session.dirty = True
        self._persist()

    def _debounced_flush(self, book: str) -> None:
        if self.session.book != book:
            logger.warning("Dropping debounced write for %r; the open book changed", book)
            return
        try:
            self._persist()
        except WorldbookError as exc:
            logger.warning("Debounced write to %r failed; will retry on next flush: %s", book, exc)

    def flush(self) -> bool:
        """
        Persist now if a debounced write is pending or a previous write failed.

        If the open book has been removed from storage in the meantime, its
        unsaved edits are discarded and the session is closed, so the editor
        can go on to open another book.
        """
        with self._lock:
            book = self.session.book
            if book is None:
                return False
            cancelled = self._scheduler.cancel(book)
            if not cancelled and not self.session.dirty:
                return False
            try:
                self._persist()
            except NotFoundError:
                logger.warning("Book %r no longer exists; discarding its unsaved edits", book)
                self.session = EditorSession()
                return False
            return True

    def mutate(self, uid: int, mutation: Mutation) -> bool:
        with self._lock:
            book = self._require_book()
            entry = self._find(uid)
            if entry is None:
                return False
            mutation.apply(entry)
            self.session.dirty = True
            self._scheduler.schedule(
                book, self.debounce_seconds, lambda: self._debounced_flush(book)
            )
            return True

    def batch_mutate(self, uids: Iterable[int], mutation: Mutation) -> int:
        with self._lock:
            self._require_book()
            targets = set(uids)
            changed = 0
            for entry in self.session.entries:
                if entry.uid in targets:
                    mutation.apply(entry)
                    changed += 1
            if changed:
                self._persist_now()
            return changed

    def create(self, drafts: Iterable[EntryDraft]) -> list[WorldEntry]:
        with self._lock:
            self._require_book()
            next_uid = max_uid(self.session.entries) + 1
            created: list[WorldEntry] = []
            for draft in drafts:
                entry = _entry_from_draft(draft)
                entry.uid = next_uid
                next_uid += 1
                created.append(entry)
            if not created:
                return []
            self.session.entries[:0] = created
            self._persist_now()
            return [entry.clone() for entry in created]

    def delete(self, uids: Iterable[int]) -> int:
        with self._lock:
            self._require_book()
            targets = set(uids)
            before = len(self.session.entries)
            self.session.entries = [
                entry for entry in self.session.entries if entry.uid not in targets
            ]
            removed = before - len(self.session.entries)
            self.session.selected -= targets
            if removed:
                self._persist_now()
            return removed

    def set_enabled_only(self, uids: Iterable[int]) -> None:
        """Enable exactly ``uids`` and disable every other entry, persisting immediately."""
        with self._lock:
            self._require_book()
            enabled = set(uids)
            for entry in self.session.entries:
                entry.disable = entry.uid not in enabled
            self._persist_now()

    def set_search(self, query: str) -> None:
        with self._lock:
            self.session.search = query or ""

    def visible(self) -> list[WorldEntry]:
        with self._lock:
            return [
                entry.clone()
                for entry in self.session.entries
                if matches_search(entry, self.session.search)
            ]

    def toggle_selection(self, uid: int) -> bool:
        with self._lock:
            if self._find(uid) is None:
                raise NotFoundError(f"Entry {uid} is not in {self.session.book!r}.")
            if uid in self.session.selected:
                self.session.selected.discard(uid)
                return False
            self.session.selected.add(uid)
            return True

    def select_all(self, *, invert: bool = False) -> set[int]:
        with self._lock:
            visible_uids = {entry.uid for entry in self.visible()}
            if invert:
                self.session.selected = visible_uids - self.session.selected
            else:
                self.session.selected |= visible_uids
            return set(self.session.selected)

    def clear_selection(self) -> None:
        with self._lock:
            self.session.selected.clear()

    def batch_update_selected(self, mutation: Mutation) -> int:
        with self._lock:
            if not self.session.selected:
                raise ValidationError("Select at least one entry first.")
            changed = self.batch_mutate(self.session.selected, mutation)
            self.session.selected.clear()
            return changed


__all__ = ["DEBOUNCE_SECONDS", "EditorSession", "EntryDraft", "EntryStore"]
