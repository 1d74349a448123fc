from __future__ import annotations

import threading
from contextlib import asynccontextmanager, contextmanager
from typing import Iterator

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from .book_io import export_book_document, import_book_document
from .bindings import parse_scope
from .config import Suite, SuiteConfig
from .entries import WorldEntry
from .errors import NotFoundError, StorageError, ValidationError
from .library import create_book, delete_book, describe_books
from .patches import mutation_from_payload
from .sorting import score
from .stitch import parse_side
from .watch import BookDirectoryWatcher


@contextmanager
def _api_errors() -> Iterator[None]:
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def _entry_payload(
    entry: WorldEntry,
    suite: Suite,
    note_depth: int | float,
    selected: set[int],
) -> dict[str, object]:
    return {
        "uid": entry.uid,
        "comment": entry.comment,
        "content": entry.content,
        "key": list(entry.key),
        "disable": entry.disable,
        "constant": entry.constant,
        "selective": entry.selective,
        "order": entry.order,
        "depth": entry.depth,
        "position": entry.position,
        "score": score(entry, note_depth),
        "tokens": suite.tokens.count(entry.content),
        "selected": entry.uid in selected,
    }


def _require_str(payload: dict[str, object], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise HTTPException(status_code=400, detail=f"{name} is required.")
    return value.strip()


def _require_uids(payload: dict[str, object]) -> list[int]:
    uids = payload.get("uids")
    if not isinstance(uids, list) or not all(
        isinstance(uid, int) and not isinstance(uid, bool) for uid in uids
    ):
        raise HTTPException(status_code=400, detail="uids must be a list of integers.")
    return uids


def create_app(config: SuiteConfig, *, watch: bool = False) -> FastAPI:
    root = config.root.expanduser().resolve()
    if not root.exists():
        raise FileNotFoundError(f"Worldbook root not found: {root}")
    config.root = root
    suite = config.build()
    suite_lock = threading.Lock()

    def _on_book_changed(book: str) -> None:
        with suite_lock:
            suite.stitch.refresh_book(book)

    watcher = BookDirectoryWatcher(root, _on_book_changed) if watch else None

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if watcher is not None:
            watcher.start()
        try:
            yield
        finally:
            if watcher is not None:
                watcher.stop()
            with suite_lock:
                suite.close()

    app = FastAPI(title="wbsuite", lifespan=lifespan)
    app.state.config = config
    app.state.suite = suite

    def _open(book: str) -> None:
        if suite.store.current_book != book:
            suite.store.load(book)

    @contextmanager
    def _editor_synced(*books: str | None) -> Iterator[None]:
        # Stitch writes bypass the editor; keep the open book consistent with them.
        current = suite.store.current_book
        touched = current is not None and current in books
        if touched:
            suite.store.flush()
            suite.stitch.refresh_book(current)
        yield
        if touched and suite.store.current_book == current:
            suite.store.load(current)

    def _entries_response(book: str) -> JSONResponse:
        note_depth = suite.author_note_depth()
        selected = suite.store.selected
        visible = {entry.uid for entry in suite.store.visible()}
        entries = [
            _entry_payload(entry, suite, note_depth, selected)
            for entry in suite.store.presentation_order(note_depth)
            if entry.uid in visible
        ]
        return JSONResponse(
            {
                "book": book,
                "author_note_depth": note_depth,
                "search": suite.store.session.search,
                "pending_flush": suite.store.has_pending_flush(),
                "entries": entries,
            }
        )

    @app.get("/api/books")
    def api_books() -> JSONResponse:
        with suite_lock, _api_errors():
            listings = describe_books(suite.storage)
            bindings = suite.bindings.get_bindings()
        return JSONResponse(
            {
                "books": [
                    {
                        "name": listing.name,
                        "entries": listing.entry_count,
                        "enabled": listing.enabled_count,
                        "bound": [scope.value for scope in bindings.scopes_for(listing.name)],
                    }
                    for listing in listings
                ],
                "current": suite.store.current_book,
            }
        )

    @app.post("/api/books")
    def api_create_book(payload: dict[str, object] = Body(...)) -> JSONResponse:
        name = _require_str(payload, "name")
        with suite_lock, _api_errors():
            created = create_book(suite.storage, name)
        return JSONResponse({"created": True, "book": created})

    @app.delete("/api/books/{book}")
    def api_delete_book(book: str, clear_bindings: bool = False) -> JSONResponse:
        with suite_lock, _api_errors():
            delete_book(
                suite.storage,
                book,
                store=suite.store,
                bindings=suite.bindings,
                clear_bindings=clear_bindings,
            )
            suite.stitch.refresh_book(book)
        return JSONResponse({"deleted": True, "book": book})

    @app.post("/api/books/{book}/rename")
    def api_rename_book(book: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        new_name = _require_str(payload, "new_name")
        with suite_lock, _api_errors():
            result = suite.bindings.rename_book(book, new_name)
            suite.stitch.follow_rename(result.old_name, result.new_name)
        return JSONResponse(
            {
                "renamed": True,
                "old_name": result.old_name,
                "new_name": result.new_name,
                "warning": str(result.warning) if result.warning else None,
                "steps": [
                    {"step": outcome.step, "changed": outcome.changed, "error": outcome.error}
                    for outcome in result.outcomes
                ],
            }
        )

    @app.get("/api/books/{book}/export")
    def api_export_book(book: str) -> JSONResponse:
        with suite_lock, _api_errors():
            if suite.store.current_book == book:
                suite.store.flush()
            document = export_book_document(suite.storage, book)
        return JSONResponse(document)

    @app.post("/api/books/import")
    def api_import_book(payload: dict[str, object] = Body(...)) -> JSONResponse:
        name = _require_str(payload, "name")
        if "document" not in payload:
            raise HTTPException(status_code=400, detail="document is required.")
        overwrite = payload.get("overwrite") is True
        with suite_lock, _api_errors():
            if overwrite and suite.store.current_book == name:
                suite.store.close_book()
            entries = import_book_document(
                suite.storage, name, payload["document"], overwrite=overwrite
            )
        return JSONResponse({"imported": True, "book": name, "entries": len(entries)})

    @app.get("/api/books/{book}/entries")
    def api_entries(book: str, search: str | None = None) -> JSONResponse:
        with suite_lock, _api_errors():
            _open(book)
            if search is not None:
                suite.store.set_search(search)
            return _entries_response(book)

    @app.post("/api/books/{book}/entries")
    def api_create_entries(book: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        drafts = payload.get("entries")
        if not isinstance(drafts, list) or not all(isinstance(item, dict) for item in drafts):
            raise HTTPException(status_code=400, detail="entries must be a list of objects.")
        with suite_lock, _api_errors():
            _open(book)
            created = suite.store.create(drafts)
        return JSONResponse({"created": [entry.uid for entry in created]})

    @app.patch("/api/books/{book}/entries/{uid}")
    def api_mutate_entry(book: str, uid: int, payload: dict[str, object] = Body(...)) -> JSONResponse:
        with suite_lock, _api_errors():
            mutation = mutation_from_payload(payload)
            _open(book)
            entry = suite.store.get(uid) if suite.store.mutate(uid, mutation) else None
            if entry is None:
                raise NotFoundError(f"Entry {uid} not found in '{book}'.")
            return JSONResponse(
                _entry_payload(entry, suite, suite.author_note_depth(), suite.store.selected)
            )

    @app.post("/api/books/{book}/entries/batch")
    def api_batch_entries(book: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        with suite_lock, _api_errors():
            mutation = mutation_from_payload(payload)
            _open(book)
            if "uids" in payload:
                changed = suite.store.batch_mutate(_require_uids(payload), mutation)
            else:
                changed = suite.store.batch_update_selected(mutation)
        return JSONResponse({"changed": changed})

    @app.post("/api/books/{book}/entries/delete")
    def api_delete_entries(book: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        uids = _require_uids(payload)
        with suite_lock, _api_errors():
            _open(book)
            removed = suite.store.delete(uids)
        return JSONResponse({"deleted": removed})

    @app.post("/api/books/{book}/selection")
    def api_selection(book: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        action = payload.get("action")
        with suite_lock, _api_errors():
            _open(book)
            if action == "toggle":
                uid = payload.get("uid")
                if not isinstance(uid, int) or isinstance(uid, bool):
                    raise HTTPException(status_code=400, detail="uid must be an integer.")
                suite.store.toggle_selection(uid)
            elif action == "all":
                suite.store.select_all()
            elif action == "invert":
                suite.store.select_all(invert=True)
            elif action == "clear":
                suite.store.clear_selection()
            else:
                raise HTTPException(status_code=400, detail="Unknown selection action.")
            return JSONResponse({"selected": sorted(suite.store.selected)})

    @app.post("/api/books/{book}/flush")
    def api_flush(book: str) -> JSONResponse:
        with suite_lock, _api_errors():
            flushed = suite.store.flush() if suite.store.current_book == book else False
        return JSONResponse({"flushed": flushed})

    @app.get("/api/books/{book}/snapshots")
    def api_snapshots(book: str) -> JSONResponse:
        with suite_lock, _api_errors():
            names = suite.snapshots.names(book)
        return JSONResponse({"book": book, "snapshots": names})

    @app.post("/api/books/{book}/snapshots")
    def api_save_snapshot(book: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        name = _require_str(payload, "name")
        with suite_lock, _api_errors():
            _open(book)
            enabled = suite.snapshots.save(suite.store, name)
        return JSONResponse({"saved": True, "name": name, "enabled": enabled})

    @app.post("/api/books/{book}/snapshots/{name}/apply")
    def api_apply_snapshot(book: str, name: str) -> JSONResponse:
        with suite_lock, _api_errors():
            _open(book)
            suite.snapshots.apply(suite.store, name)
            return _entries_response(book)

    @app.delete("/api/books/{book}/snapshots/{name}")
    def api_delete_snapshot(book: str, name: str) -> JSONResponse:
        with suite_lock, _api_errors():
            suite.snapshots.delete(book, name)
        return JSONResponse({"deleted": True, "name": name})

    @app.get("/api/bindings")
    def api_bindings() -> JSONResponse:
        with suite_lock, _api_errors():
            snapshot = suite.bindings.get_bindings()
        return JSONResponse(snapshot.as_payload())

    @app.post("/api/bindings/{scope}")
    def api_set_binding(scope: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        book = _require_str(payload, "book")
        enabled = payload.get("enabled", True)
        if not isinstance(enabled, bool):
            raise HTTPException(status_code=400, detail="enabled must be a boolean.")
        with suite_lock, _api_errors():
            snapshot = suite.bindings.set_binding(parse_scope(scope), book, enabled)
        return JSONResponse(snapshot.as_payload())

    @app.get("/api/stitch")
    def api_stitch() -> JSONResponse:
        with suite_lock:
            return JSONResponse(
                {side: panel.as_payload() for side, panel in suite.stitch.panels.items()}
            )

    @app.post("/api/stitch/{side}/bind")
    def api_stitch_bind(side: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        book = payload.get("book")
        if book is not None and not isinstance(book, str):
            raise HTTPException(status_code=400, detail="book must be a string or null.")
        with suite_lock, _api_errors():
            side_value = parse_side(side)
            if book and suite.store.current_book == book:
                suite.store.flush()
            panel = suite.stitch.bind(side_value, book)
            return JSONResponse(panel.as_payload())

    @app.post("/api/stitch/{side}/search")
    def api_stitch_search(side: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        query = payload.get("query") or ""
        if not isinstance(query, str):
            raise HTTPException(status_code=400, detail="query must be a string.")
        with suite_lock, _api_errors():
            suite.stitch.set_search(parse_side(side), query)
            return JSONResponse(suite.stitch.panel(side).as_payload())

    @app.post("/api/stitch/{side}/select")
    def api_stitch_select(side: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        action = payload.get("action")
        with suite_lock, _api_errors():
            side_value = parse_side(side)
            if action == "toggle":
                uid = payload.get("uid")
                if not isinstance(uid, int) or isinstance(uid, bool):
                    raise HTTPException(status_code=400, detail="uid must be an integer.")
                suite.stitch.toggle_select(side_value, uid)
            elif action == "all":
                suite.stitch.toggle_all_visible(side_value)
            elif action == "invert":
                suite.stitch.invert_visible(side_value)
            elif action == "clear":
                suite.stitch.clear_selection(side_value)
            else:
                raise HTTPException(status_code=400, detail="Unknown selection action.")
            return JSONResponse(suite.stitch.panel(side_value).as_payload())

    @app.post("/api/stitch/{side}/delete")
    def api_stitch_delete(side: str) -> JSONResponse:
        with suite_lock, _api_errors():
            panel = suite.stitch.panel(side)
            with _editor_synced(panel.book):
                removed = suite.stitch.delete_selected(panel.side)
        return JSONResponse({"deleted": removed})

    @app.post("/api/stitch/transfer")
    def api_stitch_transfer(payload: dict[str, object] = Body(...)) -> JSONResponse:
        move = payload.get("move", False)
        if not isinstance(move, bool):
            raise HTTPException(status_code=400, detail="move must be a boolean.")
        with suite_lock, _api_errors():
            source = suite.stitch.panel(payload.get("from"))
            target = suite.stitch.panel(payload.get("to"))
            with _editor_synced(source.book, target.book):
                result = suite.stitch.transfer(source.side, target.side, move=move)
        return JSONResponse(
            {
                "ok": result.ok,
                "move": result.move,
                "from": result.from_book,
                "to": result.to_book,
                "uids": {str(old): new for old, new in result.uid_map.items()},
                "errors": result.errors,
            },
            status_code=200 if result.ok else 207,
        )

    return app


__all__ = ["create_app"]
