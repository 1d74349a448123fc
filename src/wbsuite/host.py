from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Protocol

from .errors import StorageError, ValidationError

SUITE_METADATA_KEY = "worldbook_suite_metadata"


class HostState(Protocol):
    """Binding and settings capabilities provided by the host application."""

    def get_character_primary_binding(self) -> str | None: ...

    def set_character_primary_binding(self, name: str | None) -> None: ...

    def get_character_additional_bindings(self, character_key: str) -> list[str]: ...

    def set_character_additional_bindings(self, character_key: str, names: list[str]) -> None: ...

    def get_global_bindings(self) -> list[str]: ...

    def activate_global_binding(self, name: str) -> None: ...

    def deactivate_global_binding(self, name: str) -> None: ...

    def get_chat_binding(self) -> str | None: ...

    def set_chat_binding(self, name: str | None) -> None: ...

    def get_author_note_depth(self) -> int | float | None: ...

    def get_suite_metadata(self) -> dict[str, Any]: ...

    def save_suite_metadata(self, data: dict[str, Any]) -> None: ...


class JsonHostState:
    """
    Host state kept in a single JSON settings document.

    Layout::

        {
          "characters": {"<character key>": {"world": "<primary book>"}},
          "char_lore": [{"name": "<character key>", "extraBooks": ["..."]}],
          "global_select": ["..."],
          "chats": {"<chat id>": "<book>"},
          "author_note_depth": 4,
          "extension_settings": {"worldbook_suite_metadata": {...}}
        }

    ``character`` and ``chat`` select the active character and conversation.
    """

    def __init__(
        self,
        path: Path,
        *,
        character: str | None = None,
        chat: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.character = character
        self.chat = chat
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"Failed to read settings {self.path}: {exc}") from exc
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Settings {self.path} are not valid JSON: {exc}") from exc
        return payload if isinstance(payload, dict) else {}

    def _write(self, payload: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".wbsuite-settings-", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, ensure_ascii=False, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to write settings {self.path}: {exc}") from exc

    def _update(self, mutate: Callable[[dict[str, Any]], None]) -> None:
        with self._lock:
            payload = self._read()
            mutate(payload)
            self._write(payload)

    def _require_character(self) -> str:
        if not self.character:
            raise ValidationError("No active character selected.")
        return self.character

    def _require_chat(self) -> str:
        if not self.chat:
            raise ValidationError("No active chat selected.")
        return self.chat

    def get_character_primary_binding(self) -> str | None:
        if not self.character:
            return None
        with self._lock:
            characters = self._read().get("characters")
        if not isinstance(characters, dict):
            return None
        record = characters.get(self.character)
        if not isinstance(record, dict):
            return None
        world = record.get("world")
        return world if isinstance(world, str) and world else None

    def set_character_primary_binding(self, name: str | None) -> None:
        character = self._require_character()

        def _mutate(payload: dict[str, Any]) -> None:
            characters = payload.get("characters")
            if not isinstance(characters, dict):
                characters = payload["characters"] = {}
            record = characters.get(character)
            if not isinstance(record, dict):
                record = characters[character] = {}
            if name:
                record["world"] = name
            else:
                record.pop("world", None)

        self._update(_mutate)

    def get_character_additional_bindings(self, character_key: str) -> list[str]:
        with self._lock:
            lore = self._read().get("char_lore")
        if not isinstance(lore, list):
            return []
        for item in lore:
            if isinstance(item, dict) and item.get("name") == character_key:
                books = item.get("extraBooks")
                if isinstance(books, list):
                    return [book for book in books if isinstance(book, str)]
        return []

    def set_character_additional_bindings(self, character_key: str, names: list[str]) -> None:
        def _mutate(payload: dict[str, Any]) -> None:
            lore = payload.get("char_lore")
            if not isinstance(lore, list):
                lore = payload["char_lore"] = []
            kept = [
                item
                for item in lore
                if not (isinstance(item, dict) and item.get("name") == character_key)
            ]
            if names:
                kept.append({"name": character_key, "extraBooks": list(names)})
            payload["char_lore"] = kept

        self._update(_mutate)

    def get_global_bindings(self) -> list[str]:
        with self._lock:
            selected = self._read().get("global_select")
        if not isinstance(selected, list):
            return []
        return [name for name in selected if isinstance(name, str)]

    def activate_global_binding(self, name: str) -> None:
        def _mutate(payload: dict[str, Any]) -> None:
            selected = payload.get("global_select")
            if not isinstance(selected, list):
                selected = payload["global_select"] = []
            if name not in selected:
                selected.append(name)

        self._update(_mutate)

    def deactivate_global_binding(self, name: str) -> None:
        def _mutate(payload: dict[str, Any]) -> None:
            selected = payload.get("global_select")
            if isinstance(selected, list):
                payload["global_select"] = [item for item in selected if item != name]

        self._update(_mutate)

    def get_chat_binding(self) -> str | None:
        if not self.chat:
            return None
        with self._lock:
            chats = self._read().get("chats")
        if not isinstance(chats, dict):
            return None
        value = chats.get(self.chat)
        return value if isinstance(value, str) and value else None

    def set_chat_binding(self, name: str | None) -> None:
        chat = self._require_chat()

        def _mutate(payload: dict[str, Any]) -> None:
            chats = payload.get("chats")
            if not isinstance(chats, dict):
                chats = payload["chats"] = {}
            if name:
                chats[chat] = name
            else:
                chats.pop(chat, None)

        self._update(_mutate)

    def get_author_note_depth(self) -> int | float | None:
        with self._lock:
            value = self._read().get("author_note_depth")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    def get_suite_metadata(self) -> dict[str, Any]:
        with self._lock:
            settings = self._read().get("extension_settings")
        if not isinstance(settings, dict):
            return {}
        metadata = settings.get(SUITE_METADATA_KEY)
        return metadata if isinstance(metadata, dict) else {}

    def save_suite_metadata(self, data: dict[str, Any]) -> None:
        def _mutate(payload: dict[str, Any]) -> None:
            settings = payload.get("extension_settings")
            if not isinstance(settings, dict):
                settings = payload["extension_settings"] = {}
            settings[SUITE_METADATA_KEY] = data

        self._update(_mutate)


__all__ = ["HostState", "JsonHostState", "SUITE_METADATA_KEY"]
