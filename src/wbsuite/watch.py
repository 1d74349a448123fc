from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers.polling import PollingObserver

from .storage import BOOK_SUFFIX

logger = logging.getLogger(__name__)


def _book_name(path: str | bytes) -> str | None:
    candidate = Path(path.decode() if isinstance(path, bytes) else path)
    if candidate.suffix != BOOK_SUFFIX or candidate.name.startswith("."):
        return None
    return candidate.stem


class _BookEventHandler(FileSystemEventHandler):
    def __init__(self, on_change: Callable[[str], None]) -> None:
        self.on_change = on_change

    def _notify(self, path: str | bytes) -> None:
        name = _book_name(path)
        if name is None:
            return
        try:
            self.on_change(name)
        except Exception:
            logger.exception("Book change handler failed for %r", name)

    def on_created(self, event) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._notify(event.src_path)

    def on_modified(self, event) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._notify(event.src_path)

    def on_deleted(self, event) -> None:  # type: ignore[override]
        if not event.is_directory:
            self._notify(event.src_path)

    def on_moved(self, event) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        self._notify(event.src_path)
        self._notify(event.dest_path)


class BookDirectoryWatcher:
    """Calls ``on_change(book_name)`` whenever a book file under ``root`` changes."""

    def __init__(self, root: Path, on_change: Callable[[str], None], *, interval: float = 1.0) -> None:
        self.root = Path(root)
        self.handler = _BookEventHandler(on_change)
        self.interval = interval
        self._observer: PollingObserver | None = None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = PollingObserver(timeout=self.interval)
        observer.schedule(self.handler, str(self.root), recursive=False)
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None


__all__ = ["BookDirectoryWatcher"]
