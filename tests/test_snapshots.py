from __future__ import annotations

import pytest

from wbsuite.errors import NotFoundError, ValidationError
from wbsuite.host import JsonHostState
from wbsuite.patches import EntryPatch
from wbsuite.snapshots import SnapshotRegistry
from wbsuite.storage import JsonBookStorage
from wbsuite.store import EntryStore


def _setup(tmp_path):
    storage = JsonBookStorage(tmp_path)
    storage.save_book(
        "Lore",
        {
            "entries": {
                "0": {"uid": 0, "disable": False},
                "1": {"uid": 1, "disable": True},
                "2": {"uid": 2, "disable": False},
            }
        },
        create_if_missing=True,
    )
    host = JsonHostState(tmp_path / ".wbsuite-settings.json")
    store = EntryStore(storage)
    store.load("Lore")
    return SnapshotRegistry(host), store, storage


def test_save_and_apply_restore_enabled_set(tmp_path) -> None:
    registry, store, storage = _setup(tmp_path)

    assert registry.save(store, "scene one") == [0, 2]
    store.batch_mutate([0, 1, 2], EntryPatch.of(disable=False))
    registry.apply(store, "scene one")

    assert [entry.disable for entry in store.entries()] == [False, True, False]
    assert storage.load_book("Lore")["entries"]["1"]["disable"] is True
    assert registry.names("Lore") == ["scene one"]
    store.close()


def test_delete_and_missing_snapshots(tmp_path) -> None:
    registry, store, _ = _setup(tmp_path)
    registry.save(store, "a")

    registry.delete("Lore", "a")

    assert registry.names("Lore") == []
    with pytest.raises(NotFoundError):
        registry.get("Lore", "a")
    with pytest.raises(NotFoundError):
        registry.delete("Lore", "a")
    with pytest.raises(ValidationError):
        registry.save(store, "  ")
    store.close()


def test_rename_book_moves_snapshots(tmp_path) -> None:
    registry, store, _ = _setup(tmp_path)
    registry.save(store, "a")

    assert registry.rename_book("Lore", "Legends") is True
    assert registry.rename_book("Lore", "Other") is False
    assert registry.get("Legends", "a") == [0, 2]
    store.close()
