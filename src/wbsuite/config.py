from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .bindings import BindingManager
from .host import JsonHostState
from .snapshots import SnapshotRegistry
from .sorting import DEFAULT_AUTHOR_NOTE_DEPTH
from .stitch import StitchEngine
from .storage import JsonBookStorage
from .store import DEBOUNCE_SECONDS, EntryStore
from .tokens import TokenCounter

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = ".wbsuite-settings.json"
_ROOT_ENV = "WBSUITE_ROOT"
_SETTINGS_ENV = "WBSUITE_SETTINGS"
_CHARACTER_ENV = "WBSUITE_CHARACTER"
_CHAT_ENV = "WBSUITE_CHAT"
_DEBOUNCE_ENV = "WBSUITE_DEBOUNCE_MS"
_TOKENIZER_ENV = "WBSUITE_TOKENIZER_URL"


@dataclass(slots=True)
class SuiteConfig:
    root: Path
    settings_path: Path | None = None
    character: str | None = None
    chat: str | None = None
    debounce_seconds: float = DEBOUNCE_SECONDS
    author_note_depth: int | float = DEFAULT_AUTHOR_NOTE_DEPTH
    tokenizer_url: str | None = None
    tokenizer_timeout: float = 5.0

    def resolved_settings_path(self) -> Path:
        return self.settings_path or self.root / SETTINGS_FILENAME

    def build(self) -> "Suite":
        storage = JsonBookStorage(self.root)
        host = JsonHostState(
            self.resolved_settings_path(),
            character=self.character,
            chat=self.chat,
        )
        store = EntryStore(storage, debounce_seconds=self.debounce_seconds)
        snapshots = SnapshotRegistry(host)
        bindings = BindingManager(
            host,
            storage,
            character_key=self.character,
            store=store,
            snapshots=snapshots,
        )
        return Suite(
            config=self,
            storage=storage,
            host=host,
            store=store,
            snapshots=snapshots,
            bindings=bindings,
            stitch=StitchEngine(storage),
            tokens=TokenCounter(self.tokenizer_url, timeout=self.tokenizer_timeout),
        )


@dataclass(slots=True)
class Suite:
    """Everything a front end needs, wired over one storage root."""

    config: SuiteConfig
    storage: JsonBookStorage
    host: JsonHostState
    store: EntryStore
    snapshots: SnapshotRegistry
    bindings: BindingManager
    stitch: StitchEngine
    tokens: TokenCounter

    def author_note_depth(self) -> int | float:
        depth = self.host.get_author_note_depth()
        return self.config.author_note_depth if depth is None else depth

    def close(self) -> None:
        try:
            self.store.close()
        finally:
            self.tokens.close()


def _env_float_ms(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r; expected milliseconds", name, raw)
        return default
    if value < 0:
        return default
    return value / 1000.0


def load_config(
    root: Path | str | None = None,
    *,
    character: str | None = None,
    chat: str | None = None,
    env: Mapping[str, str] | None = None,
) -> SuiteConfig:
    """Build a SuiteConfig from explicit arguments, falling back to WBSUITE_* variables."""
    if env is None:
        env = os.environ
    root_value = root or env.get(_ROOT_ENV) or Path.cwd()
    settings_value = env.get(_SETTINGS_ENV)
    return SuiteConfig(
        root=Path(root_value).expanduser(),
        settings_path=Path(settings_value).expanduser() if settings_value else None,
        character=character or env.get(_CHARACTER_ENV) or None,
        chat=chat or env.get(_CHAT_ENV) or None,
        debounce_seconds=_env_float_ms(env, _DEBOUNCE_ENV, DEBOUNCE_SECONDS),
        tokenizer_url=env.get(_TOKENIZER_ENV) or None,
    )


__all__ = ["SETTINGS_FILENAME", "Suite", "SuiteConfig", "load_config"]
