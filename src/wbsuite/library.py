from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .book_io import read_book_entries
from .errors import ValidationError
from .storage import BookStorage, validate_book_name

if TYPE_CHECKING:
    from .bindings import BindingManager
    from .store import EntryStore


@dataclass(slots=True)
class BookListing:
    name: str
    entry_count: int
    enabled_count: int


def list_books_sorted(storage: BookStorage) -> list[str]:
    names = storage.list_book_names()
    return sorted(names, key=lambda name: (name.casefold(), name))


def describe_books(storage: BookStorage) -> list[BookListing]:
    listings: list[BookListing] = []
    for name in list_books_sorted(storage):
        entries = read_book_entries(storage, name)
        listings.append(
            BookListing(
                name=name,
                entry_count=len(entries),
                enabled_count=sum(1 for entry in entries if not entry.disable),
            )
        )
    return listings


def create_book(storage: BookStorage, name: str) -> str:
    name = validate_book_name(name)
    if storage.load_book(name) is not None:
        raise ValidationError(f"A book named '{name}' already exists.")
    storage.save_book(name, {"entries": {}}, create_if_missing=True)
    return name


def delete_book(
    storage: BookStorage,
    name: str,
    *,
    store: "EntryStore | None" = None,
    bindings: "BindingManager | None" = None,
    clear_bindings: bool = False,
) -> None:
    """
    Delete a book.

    Any pending debounced write is flushed first so a stale timer cannot
    recreate or overwrite the book afterwards. Bindings that reference the
    book are left alone unless ``clear_bindings`` is set.
    """
    if store is not None:
        store.flush()
    storage.delete_book(name)
    if store is not None and store.current_book == name:
        store.close_book(flush=False)
    if clear_bindings and bindings is not None:
        bindings.clear_book_bindings(name)


__all__ = ["BookListing", "create_book", "delete_book", "describe_books", "list_books_sorted"]
