"""Volatile in-memory token store for tests and demos."""

from __future__ import annotations

import threading
from typing import Optional

from pkceflow.models import TokenSet


class MemoryTokenStore:
    """Keeps token sets in a dict. Nothing survives the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, TokenSet] = {}

    async def save(self, server_id: str, tokens: TokenSet) -> None:
        with self._lock:
            self._tokens[server_id] = tokens.model_copy()

    async def load(self, server_id: str) -> Optional[TokenSet]:
        with self._lock:
            tokens = self._tokens.get(server_id)
        return tokens.model_copy() if tokens is not None else None

    async def delete(self, server_id: str) -> None:
        with self._lock:
            self._tokens.pop(server_id, None)

    async def list_server_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._tokens)
