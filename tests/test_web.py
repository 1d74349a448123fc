from __future__ import annotations

import json

import pytest
from fastapi import HTTPException

from wbsuite.config import SETTINGS_FILENAME, SuiteConfig
from wbsuite.web import create_app


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


def _write_book(root, name: str, records: list[dict]) -> None:
    payload = {"entries": {str(record["uid"]): record for record in records}}
    (root / f"{name}.json").write_text(json.dumps(payload), encoding="utf-8")


def _app(tmp_path):
    (tmp_path / SETTINGS_FILENAME).write_text(
        json.dumps({"author_note_depth": 4}), encoding="utf-8"
    )
    _write_book(
        tmp_path,
        "Lore",
        [
            {"uid": 0, "comment": "Depth", "position": 4, "depth": 2, "content": "abcdef"},
            {"uid": 1, "comment": "Top", "position": 0},
            {"uid": 2, "comment": "Note", "position": 2},
        ],
    )
    return create_app(
        SuiteConfig(root=tmp_path, character="alice", chat="c1", debounce_seconds=60)
    )


def _body(response) -> dict:
    return json.loads(response.body)


def test_entries_are_listed_in_prompt_order_with_tokens(tmp_path) -> None:
    app = _app(tmp_path)
    entries_route = _find_route(app, "/api/books/{book}/entries", "GET")

    payload = _body(entries_route("Lore", search=None))

    assert [entry["uid"] for entry in payload["entries"]] == [1, 2, 0]
    assert payload["entries"][2]["tokens"] == 2
    assert payload["entries"][1]["score"] == pytest.approx(4.6)

    filtered = _body(entries_route("Lore", search="top"))
    assert [entry["uid"] for entry in filtered["entries"]] == [1]


def test_patch_is_debounced_until_flush(tmp_path) -> None:
    app = _app(tmp_path)
    patch_route = _find_route(app, "/api/books/{book}/entries/{uid}", "PATCH")
    flush_route = _find_route(app, "/api/books/{book}/flush", "POST")

    response = patch_route("Lore", 1, {"set": {"comment": "Renamed"}})
    assert _body(response)["comment"] == "Renamed"
    on_disk = json.loads((tmp_path / "Lore.json").read_text(encoding="utf-8"))
    assert on_disk["entries"]["1"]["comment"] == "Top"

    assert _body(flush_route("Lore")) == {"flushed": True}
    on_disk = json.loads((tmp_path / "Lore.json").read_text(encoding="utf-8"))
    assert on_disk["entries"]["1"]["comment"] == "Renamed"


def test_errors_map_to_http_statuses(tmp_path) -> None:
    app = _app(tmp_path)
    entries_route = _find_route(app, "/api/books/{book}/entries", "GET")
    patch_route = _find_route(app, "/api/books/{book}/entries/{uid}", "PATCH")
    create_route = _find_route(app, "/api/books", "POST")

    with pytest.raises(HTTPException) as missing:
        entries_route("Nope", search=None)
    assert missing.value.status_code == 404

    with pytest.raises(HTTPException) as bad_patch:
        patch_route("Lore", 0, {"set": {"order": "high"}})
    assert bad_patch.value.status_code == 400

    with pytest.raises(HTTPException) as duplicate:
        create_route({"name": "Lore"})
    assert duplicate.value.status_code == 400


def test_create_rename_and_delete_books(tmp_path) -> None:
    app = _app(tmp_path)
    create_route = _find_route(app, "/api/books", "POST")
    rename_route = _find_route(app, "/api/books/{book}/rename", "POST")
    delete_route = _find_route(app, "/api/books/{book}", "DELETE")
    books_route = _find_route(app, "/api/books", "GET")
    bind_route = _find_route(app, "/api/bindings/{scope}", "POST")

    assert _body(create_route({"name": "Draft"}))["book"] == "Draft"
    bind_route("chat", {"book": "Draft", "enabled": True})
    renamed = _body(rename_route("Draft", {"new_name": "Final"}))
    assert renamed["new_name"] == "Final"
    assert renamed["warning"] is None

    books = _body(books_route())["books"]
    assert {book["name"]: book["bound"] for book in books} == {"Final": ["chat"], "Lore": []}

    response = delete_route("Final", clear_bindings=True)
    assert _body(response) == {"deleted": True, "book": "Final"}
    assert not (tmp_path / "Final.json").exists()
    assert _body(_find_route(app, "/api/bindings", "GET")())["chat"] is None


def test_delete_closes_the_open_book(tmp_path) -> None:
    app = _app(tmp_path)
    patch_route = _find_route(app, "/api/books/{book}/entries/{uid}", "PATCH")
    delete_route = _find_route(app, "/api/books/{book}", "DELETE")

    patch_route("Lore", 0, {"toggle": "disable"})
    delete_route("Lore", clear_bindings=False)

    assert not (tmp_path / "Lore.json").exists()
    assert app.state.suite.store.current_book is None


def test_selection_and_batch_update(tmp_path) -> None:
    app = _app(tmp_path)
    select_route = _find_route(app, "/api/books/{book}/selection", "POST")
    batch_route = _find_route(app, "/api/books/{book}/entries/batch", "POST")

    assert _body(select_route("Lore", {"action": "all"}))["selected"] == [0, 1, 2]
    assert _body(select_route("Lore", {"action": "toggle", "uid": 1}))["selected"] == [0, 2]
    assert _body(batch_route("Lore", {"adjust": {"field": "order", "delta": 10}})) == {"changed": 2}

    on_disk = json.loads((tmp_path / "Lore.json").read_text(encoding="utf-8"))
    assert on_disk["entries"]["0"]["order"] == 10
    assert on_disk["entries"]["1"]["order"] == 0


def test_snapshot_endpoints(tmp_path) -> None:
    app = _app(tmp_path)
    save_route = _find_route(app, "/api/books/{book}/snapshots", "POST")
    apply_route = _find_route(app, "/api/books/{book}/snapshots/{name}/apply", "POST")
    list_route = _find_route(app, "/api/books/{book}/snapshots", "GET")
    batch_route = _find_route(app, "/api/books/{book}/entries/batch", "POST")

    assert _body(save_route("Lore", {"name": "all"}))["enabled"] == [0, 1, 2]
    batch_route("Lore", {"uids": [0, 1, 2], "set": {"disable": True}})
    payload = _body(apply_route("Lore", "all"))

    assert all(not entry["disable"] for entry in payload["entries"])
    assert _body(list_route("Lore")) == {"book": "Lore", "snapshots": ["all"]}


def test_stitch_transfer_endpoint(tmp_path) -> None:
    app = _app(tmp_path)
    _write_book(tmp_path, "Other", [{"uid": 0, "comment": "o"}])
    bind_route = _find_route(app, "/api/stitch/{side}/bind", "POST")
    select_route = _find_route(app, "/api/stitch/{side}/select", "POST")
    transfer_route = _find_route(app, "/api/stitch/transfer", "POST")

    bind_route("left", {"book": "Lore"})
    bind_route("right", {"book": "Other"})
    select_route("left", {"action": "toggle", "uid": 2})
    response = transfer_route({"from": "left", "to": "right", "move": True})

    assert response.status_code == 200
    assert _body(response)["uids"] == {"2": 1}
    lore = json.loads((tmp_path / "Lore.json").read_text(encoding="utf-8"))
    other = json.loads((tmp_path / "Other.json").read_text(encoding="utf-8"))
    assert sorted(lore["entries"]) == ["0", "1"]
    assert other["entries"]["1"]["comment"] == "Note"

    with pytest.raises(HTTPException) as bad_side:
        transfer_route({"from": "left", "to": "up"})
    assert bad_side.value.status_code == 400


def test_import_and_export_round_trip(tmp_path) -> None:
    app = _app(tmp_path)
    import_route = _find_route(app, "/api/books/import", "POST")
    export_route = _find_route(app, "/api/books/{book}/export", "GET")

    document = {"entries": {"3": {"comment": "imported", "extensions": {"a": 1}}}}
    assert _body(import_route({"name": "Copy", "document": document}))["entries"] == 1

    exported = _body(export_route("Copy"))
    assert exported["entries"]["3"]["comment"] == "imported"
    assert exported["entries"]["3"]["extensions"] == {"a": 1}


def test_missing_root_is_rejected(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        create_app(SuiteConfig(root=tmp_path / "missing"))


def test_patching_an_unknown_entry_is_not_found(tmp_path) -> None:
    app = _app(tmp_path)
    patch_route = _find_route(app, "/api/books/{book}/entries/{uid}", "PATCH")

    with pytest.raises(HTTPException) as missing:
        patch_route("Lore", 99, {"toggle": "disable"})
    assert missing.value.status_code == 404


def test_stitch_panels_follow_a_renamed_book(tmp_path) -> None:
    app = _app(tmp_path)
    _write_book(tmp_path, "Other", [{"uid": 0, "comment": "o"}])
    bind_route = _find_route(app, "/api/stitch/{side}/bind", "POST")
    select_route = _find_route(app, "/api/stitch/{side}/select", "POST")
    transfer_route = _find_route(app, "/api/stitch/transfer", "POST")
    rename_route = _find_route(app, "/api/books/{book}/rename", "POST")

    bind_route("left", {"book": "Lore"})
    bind_route("right", {"book": "Other"})
    rename_route("Lore", {"new_name": "Saga"})

    panels = _body(_find_route(app, "/api/stitch", "GET")())
    assert panels["left"]["book"] == "Saga"
    assert panels["left"]["error"] is None

    select_route("left", {"action": "toggle", "uid": 0})
    response = transfer_route({"from": "left", "to": "right", "move": True})

    assert response.status_code == 200
    saga = json.loads((tmp_path / "Saga.json").read_text(encoding="utf-8"))
    other = json.loads((tmp_path / "Other.json").read_text(encoding="utf-8"))
    assert sorted(saga["entries"]) == ["1", "2"]
    assert other["entries"]["1"]["comment"] == "Depth"


def test_stitch_transfer_keeps_pending_editor_edits(tmp_path) -> None:
    app = _app(tmp_path)
    _write_book(tmp_path, "Other", [{"uid": 0, "comment": "o"}])
    bind_route = _find_route(app, "/api/stitch/{side}/bind", "POST")
    select_route = _find_route(app, "/api/stitch/{side}/select", "POST")
    transfer_route = _find_route(app, "/api/stitch/transfer", "POST")
    patch_route = _find_route(app, "/api/books/{book}/entries/{uid}", "PATCH")
    flush_route = _find_route(app, "/api/books/{book}/flush", "POST")

    bind_route("left", {"book": "Other"})
    bind_route("right", {"book": "Lore"})
    patch_route("Lore", 1, {"set": {"comment": "Edited"}})
    select_route("left", {"action": "toggle", "uid": 0})
    response = transfer_route({"from": "left", "to": "right"})

    assert _body(response)["uids"] == {"0": 3}
    lore = json.loads((tmp_path / "Lore.json").read_text(encoding="utf-8"))
    assert lore["entries"]["1"]["comment"] == "Edited"
    assert lore["entries"]["3"]["comment"] == "o"

    store = app.state.suite.store
    assert store.get(3).comment == "o"
    assert _body(flush_route("Lore")) == {"flushed": False}
    lore = json.loads((tmp_path / "Lore.json").read_text(encoding="utf-8"))
    assert sorted(lore["entries"]) == ["0", "1", "2", "3"]
