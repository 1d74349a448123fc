from __future__ import annotations

import json
import logging
import math

import requests

logger = logging.getLogger(__name__)


def approximate_token_count(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / 3)


class TokenCounter:
    """
    Counts tokens through a remote tokenizer endpoint when one is configured.

    The endpoint receives ``{"text": ...}`` and must answer with a JSON object
    carrying an integer ``count``. Any failure falls back to the length-based
    approximation.
    """

    def __init__(self, url: str | None = None, timeout: float = 5.0) -> None:
        self.url = url.rstrip("/") if url else None
        self.timeout = timeout
        self._session = requests.Session() if self.url else None

    def count(self, text: str) -> int:
        if not text:
            return 0
        if self._session is None or self.url is None:
            return approximate_token_count(text)
        try:
            response = self._session.post(self.url, json={"text": text}, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.debug("Tokenizer at %s unreachable: %s", self.url, exc)
            return approximate_token_count(text)
        if response.status_code != 200:
            logger.debug("Tokenizer returned status %s", response.status_code)
            return approximate_token_count(text)
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            return approximate_token_count(text)
        count = payload.get("count") if isinstance(payload, dict) else None
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            return approximate_token_count(text)
        return count

    def close(self) -> None:
        if self._session is not None:
            self._session.close()


__all__ = ["TokenCounter", "approximate_token_count"]
