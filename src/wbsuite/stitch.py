from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Literal

from .book_io import read_book_entries, write_book_entries
from .entries import WorldEntry, matches_search, max_uid
from .errors import NotFoundError, ValidationError, WorldbookError
from .storage import BookStorage

logger = logging.getLogger(__name__)

Side = Literal["left", "right"]
SIDES: tuple[Side, Side] = ("left", "right")


def parse_side(value: object) -> Side:
    if value not in SIDES:
        raise ValidationError(f"Unknown panel {value!r}; expected 'left' or 'right'.")
    return value  # type: ignore[return-value]


@dataclass
class StitchPanel:
    side: Side
    book: str | None = None
    entries: list[WorldEntry] = field(default_factory=list)
    selected: set[int] = field(default_factory=set)
    search: str = ""
    error: str | None = None

    def visible(self) -> list[WorldEntry]:
        return [entry for entry in self.entries if matches_search(entry, self.search)]

    def as_payload(self) -> dict[str, object]:
        return {
            "side": self.side,
            "book": self.book,
            "search": self.search,
            "error": self.error,
            "selected": sorted(self.selected),
            "entries": [
                {
                    "uid": entry.uid,
                    "comment": entry.comment,
                    "order": entry.order,
                    "disable": entry.disable,
                    "visible": matches_search(entry, self.search),
                }
                for entry in self.entries
            ],
        }


@dataclass
class TransferResult:
    from_book: str
    to_book: str
    move: bool
    uid_map: dict[int, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class StitchEngine:
    """
    Two independent panels for copying or moving entries between books.

    Panels hold their own snapshots loaded straight from storage; they never
    share entry objects with the editor's EntryStore.
    """

    def __init__(self, storage: BookStorage) -> None:
        self.storage = storage
        self.panels: dict[Side, StitchPanel] = {side: StitchPanel(side=side) for side in SIDES}

    def panel(self, side: Side | str) -> StitchPanel:
        return self.panels[parse_side(side)]

    def bind(self, side: Side | str, book: str | None) -> StitchPanel:
        panel = self.panel(side)
        panel.book = book or None
        panel.selected.clear()
        panel.entries = []
        panel.error = None
        if panel.book is None:
            return panel
        try:
            panel.entries = read_book_entries(self.storage, panel.book)
        except WorldbookError as exc:
            panel.error = str(exc)
            logger.warning("Failed to load %r into the %s panel: %s", panel.book, panel.side, exc)
            raise
        return panel

    def refresh(self, side: Side | str) -> StitchPanel:
        """Reload the bound book, keeping the selection for uids that still exist."""
        panel = self.panel(side)
        if panel.book is None:
            return panel
        keep = set(panel.selected)
        self.bind(panel.side, panel.book)
        panel.selected = {entry.uid for entry in panel.entries if entry.uid in keep}
        return panel

    def refresh_book(self, book: str) -> list[Side]:
        refreshed: list[Side] = []
        for side, panel in self.panels.items():
            if panel.book != book:
                continue
            try:
                self.refresh(side)
            except WorldbookError:
                continue
            refreshed.append(side)
        return refreshed

    def follow_rename(self, old_name: str, new_name: str) -> list[Side]:
        """Point panels bound to ``old_name`` at ``new_name`` and reload them."""
        renamed: list[Side] = []
        for side, panel in self.panels.items():
            if panel.book != old_name:
                continue
            panel.book = new_name
            renamed.append(side)
        self.refresh_book(new_name)
        return renamed

    def set_search(self, side: Side | str, query: str) -> None:
        self.panel(side).search = query or ""

    def visible(self, side: Side | str) -> list[WorldEntry]:
        return self.panel(side).visible()

    def toggle_select(self, side: Side | str, uid: int) -> bool:
        panel = self.panel(side)
        if uid not in {entry.uid for entry in panel.visible()}:
            raise NotFoundError(f"Entry {uid} is not visible in the {panel.side} panel.")
        if uid in panel.selected:
            panel.selected.discard(uid)
            return False
        panel.selected.add(uid)
        return True

    def select_all_visible(self, side: Side | str) -> set[int]:
        panel = self.panel(side)
        panel.selected |= {entry.uid for entry in panel.visible()}
        return set(panel.selected)

    def invert_visible(self, side: Side | str) -> set[int]:
        panel = self.panel(side)
        visible = {entry.uid for entry in panel.visible()}
        panel.selected = (panel.selected - visible) | (visible - panel.selected)
        return set(panel.selected)

    def toggle_all_visible(self, side: Side | str) -> set[int]:
        """Select every visible entry, or deselect them all if they already are."""
        panel = self.panel(side)
        visible = {entry.uid for entry in panel.visible()}
        if visible and visible <= panel.selected:
            panel.selected -= visible
            return set(panel.selected)
        return self.select_all_visible(side)

    def clear_selection(self, side: Side | str) -> None:
        self.panel(side).selected.clear()

    def _require_bound(self, panel: StitchPanel) -> str:
        if panel.book is None:
            raise ValidationError(f"Choose a book for the {panel.side} panel first.")
        return panel.book

    def _require_selection(self, panel: StitchPanel) -> None:
        if not panel.selected:
            raise ValidationError(f"Select at least one entry in the {panel.side} panel.")

    def delete_selected(self, side: Side | str) -> int:
        panel = self.panel(side)
        book = self._require_bound(panel)
        self._require_selection(panel)
        before = len(panel.entries)
        panel.entries = [entry for entry in panel.entries if entry.uid not in panel.selected]
        panel.selected.clear()
        write_book_entries(self.storage, book, panel.entries)
        self._mirror_same_book(panel)
        return before - len(panel.entries)

    def _mirror_same_book(self, source: StitchPanel) -> None:
        for panel in self.panels.values():
            if panel is source or panel.book != source.book:
                continue
            panel.entries = [entry.clone() for entry in source.entries]
            present = {entry.uid for entry in panel.entries}
            panel.selected &= present

    def transfer(self, from_side: Side | str, to_side: Side | str, *, move: bool = False) -> TransferResult:
        """
        Copy (or move) the selected entries of ``from_side`` into ``to_side``.

        Each copy gets the next free uid in the destination and an order just
        past the destination's current maximum. Both books are then written
        concurrently; a failed write on one side does not undo the other.
        """
        source = self.panel(from_side)
        target = self.panel(to_side)
        if source is target:
            raise ValidationError("Source and destination panels must differ.")
        source_book = self._require_bound(source)
        target_book = self._require_bound(target)
        self._require_selection(source)
        if move and source_book == target_book:
            raise ValidationError("Moving entries into the same book does nothing.")

        result = TransferResult(from_book=source_book, to_book=target_book, move=move)
        for entry in source.entries:
            if entry.uid not in source.selected:
                continue
            copy = entry.clone()
            copy.uid = max_uid(target.entries) + 1
            copy.order = max((item.order for item in target.entries), default=-1) + 1
            target.entries.append(copy)
            result.uid_map[entry.uid] = copy.uid

        if move:
            moved = set(result.uid_map)
            source.entries = [entry for entry in source.entries if entry.uid not in moved]
        source.selected.clear()

        if source_book == target_book:
            self._persist_side(target, result)
            self._mirror_same_book(target)
            return result

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="wbsuite-stitch") as executor:
            futures = [
                executor.submit(self._persist_side, panel, result) for panel in (source, target)
            ]
            for future in futures:
                future.result()
        return result

    def _persist_side(self, panel: StitchPanel, result: TransferResult) -> None:
        try:
            write_book_entries(self.storage, panel.book or "", panel.entries)
        except WorldbookError as exc:
            logger.warning("Failed to save %r from the %s panel: %s", panel.book, panel.side, exc)
            result.errors[panel.side] = str(exc)


__all__ = [
    "SIDES",
    "Side",
    "StitchEngine",
    "StitchPanel",
    "TransferResult",
    "parse_side",
]
