from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .errors import NotFoundError, StorageError, ValidationError

BOOK_SUFFIX = ".json"
_INVALID_BOOK_CHARS = set('<>:"/\\|?*')

RawBook = dict[str, Any]


class BookStorage(Protocol):
    """Whole-document read/write access to named books."""

    def load_book(self, name: str) -> RawBook | None: ...

    def save_book(self, name: str, data: RawBook, create_if_missing: bool = False) -> None: ...

    def delete_book(self, name: str) -> None: ...

    def list_book_names(self) -> list[str]: ...


def validate_book_name(name: object) -> str:
    if not isinstance(name, str):
        raise ValidationError("Book name must be a string.")
    cleaned = name.strip()
    if not cleaned:
        raise ValidationError("Book name must not be empty.")
    if cleaned.startswith("."):
        raise ValidationError(f"Book name must not start with a dot: {cleaned!r}")
    for ch in cleaned:
        if ch in _INVALID_BOOK_CHARS or ord(ch) < 32:
            raise ValidationError(f"Book name contains an invalid character: {cleaned!r}")
    return cleaned


class JsonBookStorage:
    """Stores each book as ``<root>/<name>.json``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def book_path(self, name: str) -> Path:
        return self.root / f"{validate_book_name(name)}{BOOK_SUFFIX}"

    def load_book(self, name: str) -> RawBook | None:
        path = self.book_path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read book '{name}': {exc}") from exc
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Book '{name}' is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise StorageError(f"Book '{name}' does not contain a JSON object.")
        return payload

    def save_book(self, name: str, data: RawBook, create_if_missing: bool = False) -> None:
        path = self.book_path(name)
        if not create_if_missing and not path.exists():
            raise NotFoundError(f"Book not found: {name}")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".wbsuite-", suffix=BOOK_SUFFIX, dir=self.root)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, ensure_ascii=False, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Failed to write book '{name}': {exc}") from exc

    def delete_book(self, name: str) -> None:
        path = self.book_path(name)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Book not found: {name}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to delete book '{name}': {exc}") from exc

    def list_book_names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        try:
            candidates = list(self.root.iterdir())
        except OSError as exc:
            raise StorageError(f"Failed to list books in {self.root}: {exc}") from exc
        return [
            path.stem
            for path in candidates
            if path.is_file() and path.suffix == BOOK_SUFFIX and not path.name.startswith(".")
        ]


__all__ = [
    "BOOK_SUFFIX",
    "BookStorage",
    "JsonBookStorage",
    "RawBook",
    "validate_book_name",
]
