from __future__ import annotations

import logging
import warnings
from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .errors import NotFoundError, PartialMigrationWarning, ValidationError
from .host import HostState
from .snapshots import SnapshotRegistry
from .storage import BookStorage, validate_book_name
from .store import EntryStore

logger = logging.getLogger(__name__)

SNAPSHOT_STEP = "snapshots"


class BindingScope(str, Enum):
    PRIMARY = "primary"
    ADDITIONAL = "additional"
    GLOBAL = "global"
    CHAT = "chat"


def parse_scope(value: object) -> BindingScope:
    try:
        return BindingScope(value)
    except ValueError as exc:
        choices = ", ".join(scope.value for scope in BindingScope)
        raise ValidationError(f"Unknown binding scope {value!r}; expected one of {choices}.") from exc


@dataclass(slots=True)
class BindingSnapshot:
    primary: str | None
    additional: list[str]
    global_books: list[str]
    chat: str | None

    def scopes_for(self, book: str) -> list[BindingScope]:
        scopes: list[BindingScope] = []
        if self.primary == book:
            scopes.append(BindingScope.PRIMARY)
        if book in self.additional:
            scopes.append(BindingScope.ADDITIONAL)
        if book in self.global_books:
            scopes.append(BindingScope.GLOBAL)
        if self.chat == book:
            scopes.append(BindingScope.CHAT)
        return scopes

    def as_payload(self) -> dict[str, object]:
        return {
            "primary": self.primary,
            "additional": list(self.additional),
            "global": list(self.global_books),
            "chat": self.chat,
        }


@dataclass(slots=True)
class MigrationOutcome:
    step: str
    changed: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RenameResult:
    old_name: str
    new_name: str
    outcomes: list[MigrationOutcome] = field(default_factory=list)
    warning: PartialMigrationWarning | None = None

    @property
    def failed(self) -> list[MigrationOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


class BindingManager:
    """
    Reads and writes the four binding scopes and keeps them pointing at the
    right book across renames.

    ``character_key`` is the active character's stable file identifier; the
    additional scope is unavailable without it.
    """

    def __init__(
        self,
        host: HostState,
        storage: BookStorage,
        *,
        character_key: str | None = None,
        store: EntryStore | None = None,
        snapshots: SnapshotRegistry | None = None,
    ) -> None:
        self.host = host
        self.storage = storage
        self.character_key = character_key
        self.store = store
        self.snapshots = snapshots

    def get_bindings(self) -> BindingSnapshot:
        additional = (
            self.host.get_character_additional_bindings(self.character_key)
            if self.character_key
            else []
        )
        return BindingSnapshot(
            primary=self.host.get_character_primary_binding(),
            additional=list(additional),
            global_books=list(self.host.get_global_bindings()),
            chat=self.host.get_chat_binding(),
        )

    def get_binding(self, scope: BindingScope | str) -> str | list[str] | None:
        snapshot = self.get_bindings()
        scope = parse_scope(scope)
        if scope is BindingScope.PRIMARY:
            return snapshot.primary
        if scope is BindingScope.ADDITIONAL:
            return snapshot.additional
        if scope is BindingScope.GLOBAL:
            return snapshot.global_books
        return snapshot.chat

    def _require_character(self) -> str:
        if not self.character_key:
            raise ValidationError("No active character selected.")
        return self.character_key

    def set_binding(self, scope: BindingScope | str, book: str, enabled: bool) -> BindingSnapshot:
        scope = parse_scope(scope)
        book = validate_book_name(book)
        if enabled and self.storage.load_book(book) is None:
            raise NotFoundError(f"Book not found: {book}")

        if scope is BindingScope.PRIMARY:
            current = self.host.get_character_primary_binding()
            if enabled and current != book:
                self.host.set_character_primary_binding(book)
            elif not enabled and current is not None:
                self.host.set_character_primary_binding(None)
        elif scope is BindingScope.ADDITIONAL:
            key = self._require_character()
            books = self.host.get_character_additional_bindings(key)
            if enabled and book not in books:
                self.host.set_character_additional_bindings(key, [*books, book])
            elif not enabled and book in books:
                self.host.set_character_additional_bindings(
                    key, [name for name in books if name != book]
                )
        elif scope is BindingScope.GLOBAL:
            active = self.host.get_global_bindings()
            if enabled and book not in active:
                self.host.activate_global_binding(book)
            elif not enabled and book in active:
                self.host.deactivate_global_binding(book)
        else:
            current = self.host.get_chat_binding()
            if enabled and current != book:
                self.host.set_chat_binding(book)
            elif not enabled and current == book:
                # Only clear our own assignment; another book may have taken the slot.
                self.host.set_chat_binding(None)
        return self.get_bindings()

    def _rewrite_primary(self, old_name: str, new_name: str | None) -> bool:
        if self.host.get_character_primary_binding() != old_name:
            return False
        self.host.set_character_primary_binding(new_name)
        return True

    def _rewrite_additional(self, old_name: str, new_name: str | None) -> bool:
        if not self.character_key:
            return False
        books = self.host.get_character_additional_bindings(self.character_key)
        if old_name not in books:
            return False
        rewritten: list[str] = []
        for name in books:
            replacement = new_name if name == old_name else name
            if replacement is not None and replacement not in rewritten:
                rewritten.append(replacement)
        self.host.set_character_additional_bindings(self.character_key, rewritten)
        return True

    def _rewrite_global(self, old_name: str, new_name: str | None) -> bool:
        if old_name not in self.host.get_global_bindings():
            return False
        if new_name is not None:
            self.host.activate_global_binding(new_name)
        self.host.deactivate_global_binding(old_name)
        return True

    def _rewrite_chat(self, old_name: str, new_name: str | None) -> bool:
        if self.host.get_chat_binding() != old_name:
            return False
        self.host.set_chat_binding(new_name)
        return True

    def _run_steps(
        self, steps: list[tuple[str, Callable[[], bool]]]
    ) -> list[MigrationOutcome]:
        outcomes: list[MigrationOutcome] = []
        for name, step in steps:
            try:
                outcomes.append(MigrationOutcome(step=name, changed=step()))
            except Exception as exc:
                logger.warning("Binding step %s failed: %s", name, exc)
                outcomes.append(MigrationOutcome(step=name, error=str(exc) or type(exc).__name__))
        return outcomes

    def _scope_steps(
        self, old_name: str, new_name: str | None
    ) -> list[tuple[str, Callable[[], bool]]]:
        return [
            (BindingScope.PRIMARY.value, lambda: self._rewrite_primary(old_name, new_name)),
            (BindingScope.ADDITIONAL.value, lambda: self._rewrite_additional(old_name, new_name)),
            (BindingScope.GLOBAL.value, lambda: self._rewrite_global(old_name, new_name)),
            (BindingScope.CHAT.value, lambda: self._rewrite_chat(old_name, new_name)),
        ]

    def rename_book(self, old_name: str, new_name: str) -> RenameResult:
        """
        Copy ``old_name`` to ``new_name``, repoint every binding, then delete
        the old book.

        Binding rewrites are attempted independently. Failures are collected
        on the result and raised as a ``PartialMigrationWarning``; the rename
        itself still completes. A failed rewrite leaves a binding that points
        at a name which no longer exists.
        """
        new_name = validate_book_name(new_name)
        if old_name == new_name:
            raise ValidationError("The new name must differ from the old one.")
        if self.storage.load_book(new_name) is not None:
            raise ValidationError(f"A book named '{new_name}' already exists.")
        if self.store is not None:
            self.store.flush()

        raw = self.storage.load_book(old_name)
        if raw is None:
            raise NotFoundError(f"Book not found: {old_name}")
        self.storage.save_book(new_name, deepcopy(raw), create_if_missing=True)

        steps = self._scope_steps(old_name, new_name)
        if self.snapshots is not None:
            snapshots = self.snapshots
            steps.append((SNAPSHOT_STEP, lambda: snapshots.rename_book(old_name, new_name)))
        result = RenameResult(old_name=old_name, new_name=new_name, outcomes=self._run_steps(steps))

        if self.store is not None:
            self.store.follow_rename(old_name, new_name)
        self.storage.delete_book(old_name)

        if result.failed:
            failed = ", ".join(outcome.step for outcome in result.failed)
            result.warning = PartialMigrationWarning(
                f"Renamed '{old_name}' to '{new_name}' but could not update: {failed}"
            )
            logger.warning("%s", result.warning)
            warnings.warn(result.warning, stacklevel=2)
        return result

    def clear_book_bindings(self, name: str) -> list[MigrationOutcome]:
        """Remove ``name`` from every scope, each attempted independently."""
        return self._run_steps(self._scope_steps(name, None))


__all__ = [
    "BindingManager",
    "BindingScope",
    "BindingSnapshot",
    "MigrationOutcome",
    "RenameResult",
    "parse_scope",
]
