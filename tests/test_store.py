from __future__ import annotations

from copy import deepcopy

import pytest

from wbsuite.errors import NotFoundError, StorageError, ValidationError
from wbsuite.patches import AdjustNumber, EntryPatch, ToggleFlag
from wbsuite.scheduler import DebounceScheduler
from wbsuite.store import EntryStore


class _MemoryStorage:
    def __init__(self, books: dict[str, dict] | None = None) -> None:
        self.books = deepcopy(books or {})
        self.saves: list[str] = []
        self.fail_saves = False

    def load_book(self, name):
        book = self.books.get(name)
        return deepcopy(book) if book is not None else None

    def save_book(self, name, data, create_if_missing=False):
        if self.fail_saves:
            raise StorageError("disk full")
        if name not in self.books and not create_if_missing:
            raise NotFoundError(f"Book not found: {name}")
        self.books[name] = deepcopy(data)
        self.saves.append(name)

    def delete_book(self, name):
        if self.books.pop(name, None) is None:
            raise NotFoundError(f"Book not found: {name}")

    def list_book_names(self):
        return list(self.books)


class _FakeTimer:
    def __init__(self, delay, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def start(self) -> None:
        pass

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


def _store(books: dict[str, dict]) -> tuple[EntryStore, _MemoryStorage, list[_FakeTimer]]:
    storage = _MemoryStorage(books)
    timers: list[_FakeTimer] = []

    def _factory(delay, callback):
        timer = _FakeTimer(delay, callback)
        timers.append(timer)
        return timer

    store = EntryStore(storage, scheduler=DebounceScheduler(timer_factory=_factory))
    return store, storage, timers


def _book(*records: dict, **extra) -> dict:
    return {"entries": {str(record["uid"]): record for record in records}, **extra}


def test_single_entry_edits_are_coalesced_into_one_write() -> None:
    store, storage, timers = _store(
        {"A": _book({"uid": 0, "comment": "a"}, {"uid": 1, "comment": "b"})}
    )
    store.load("A")

    store.mutate(0, EntryPatch.of(comment="x"))
    store.mutate(0, EntryPatch.of(comment="xy"))
    store.mutate(1, ToggleFlag("disable"))

    assert storage.saves == []
    assert store.has_pending_flush()
    assert [timer.cancelled for timer in timers] == [True, True, False]
    assert timers[-1].delay == store.debounce_seconds

    timers[-1].fire()

    assert storage.saves == ["A"]
    saved = storage.books["A"]["entries"]
    assert saved["0"]["comment"] == "xy"
    assert saved["1"]["disable"] is True
    assert not store.has_pending_flush()


def test_structural_edits_write_immediately() -> None:
    store, storage, timers = _store({"A": _book({"uid": 4, "comment": "old"})})
    store.load("A")

    store.mutate(4, AdjustNumber("order", 5))
    created = store.create([{"comment": "new one"}, EntryPatch.of(content="body")])

    assert [entry.uid for entry in created] == [5, 6]
    assert [entry.uid for entry in store.entries()][:2] == [5, 6]
    assert storage.saves == ["A"]
    assert timers[0].cancelled
    saved = storage.books["A"]["entries"]
    assert saved["4"]["order"] == 5
    assert saved["5"]["comment"] == "new one"
    assert saved["6"]["content"] == "body"

    assert store.delete([5, 99]) == 1
    assert storage.saves == ["A", "A"]
    assert "5" not in storage.books["A"]["entries"]


def test_create_in_empty_book_starts_at_zero() -> None:
    store, _, _ = _store({"Empty": {"entries": {}}})
    store.load("Empty")

    created = store.create([{"comment": "first"}])

    assert created[0].uid == 0


def test_unknown_fields_survive_a_round_trip() -> None:
    store, storage, timers = _store(
        {
            "A": _book(
                {"uid": 0, "comment": "a", "probability": 50, "extensions": {"tag": 1}},
                name="Alpha",
            )
        }
    )
    store.load("A")

    store.mutate(0, EntryPatch.of(comment="b"))
    timers[-1].fire()

    saved = storage.books["A"]
    assert saved["name"] == "Alpha"
    record = saved["entries"]["0"]
    assert record["comment"] == "b"
    assert record["probability"] == 50
    assert record["extensions"] == {"tag": 1}
    assert record["selective"] is True


def test_switching_books_flushes_pending_edits_first() -> None:
    store, storage, timers = _store(
        {"A": _book({"uid": 0, "comment": "a"}), "B": _book({"uid": 0, "comment": "b"})}
    )
    store.load("A")
    store.mutate(0, EntryPatch.of(comment="edited"))

    store.load("B")

    assert storage.saves == ["A"]
    assert storage.books["A"]["entries"]["0"]["comment"] == "edited"
    timers[0].callback()
    assert storage.saves == ["A"]
    assert store.current_book == "B"
    assert store.get(0).comment == "b"


def test_failed_debounced_write_is_retried_on_flush() -> None:
    store, storage, timers = _store({"A": _book({"uid": 0, "comment": "a"})})
    store.load("A")
    store.mutate(0, EntryPatch.of(comment="edited"))
    storage.fail_saves = True

    timers[-1].fire()
    assert storage.saves == []
    assert store.session.dirty

    with pytest.raises(StorageError):
        store.flush()

    storage.fail_saves = False
    assert store.flush() is True
    assert storage.books["A"]["entries"]["0"]["comment"] == "edited"
    assert store.flush() is False


def test_book_removed_under_the_editor_does_not_block_switching() -> None:
    store, storage, timers = _store(
        {"A": _book({"uid": 0, "comment": "a"}), "B": _book({"uid": 0, "comment": "b"})}
    )
    store.load("A")
    store.mutate(0, EntryPatch.of(comment="edited"))
    storage.delete_book("A")

    timers[-1].fire()
    assert store.session.dirty

    store.load("B")

    assert store.current_book == "B"
    assert store.get(0).comment == "b"
    assert "A" not in storage.books
    assert storage.saves == []


def test_flush_after_book_removed_closes_the_session() -> None:
    store, storage, _ = _store({"A": _book({"uid": 0})})
    store.load("A")
    store.mutate(0, ToggleFlag("constant"))
    storage.delete_book("A")

    assert store.flush() is False
    assert store.current_book is None
    assert store.entries() == []


def test_mutate_unknown_uid_returns_false() -> None:
    store, storage, timers = _store({"A": _book({"uid": 0})})
    store.load("A")

    assert store.mutate(42, ToggleFlag("constant")) is False
    assert timers == []


def test_load_missing_book_raises() -> None:
    store, _, _ = _store({})

    with pytest.raises(NotFoundError):
        store.load("Nope")


def test_edits_without_open_book_are_rejected() -> None:
    store, _, _ = _store({})

    with pytest.raises(ValidationError):
        store.create([{"comment": "x"}])


def test_selection_follows_search_and_batch_update() -> None:
    store, storage, _ = _store(
        {
            "A": _book(
                {"uid": 0, "comment": "Castle"},
                {"uid": 1, "comment": "Dragon"},
                {"uid": 2, "comment": "Castle gate"},
            )
        }
    )
    store.load("A")

    with pytest.raises(ValidationError):
        store.batch_update_selected(ToggleFlag("disable"))
    with pytest.raises(NotFoundError):
        store.toggle_selection(9)

    store.set_search("castle")
    assert store.select_all() == {0, 2}
    assert store.select_all(invert=True) == set()
    store.toggle_selection(2)

    assert store.batch_update_selected(EntryPatch.of(disable=True)) == 1
    assert store.selected == set()
    assert storage.books["A"]["entries"]["2"]["disable"] is True
    assert storage.books["A"]["entries"]["0"]["disable"] is False


def test_close_book_without_flush_drops_pending_write() -> None:
    store, storage, timers = _store({"A": _book({"uid": 0})})
    store.load("A")
    store.mutate(0, EntryPatch.of(comment="lost"))

    store.close_book(flush=False)

    assert timers[0].cancelled
    assert store.current_book is None
    assert storage.saves == []
