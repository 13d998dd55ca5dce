"""Persistent token store with one JSON file per server.

Stores token sets in ``~/.local/share/pkceflow/tokens/<server>.json`` (XDG)
or the platform-equivalent directory. Files are written atomically via
:func:`~pkceflow.config.atomic_write` with ``0o600`` permissions so that
tokens are never world-readable, even momentarily.

Server identifiers are percent-encoded to build the file name, so any
identifier (including URLs) maps to exactly one file.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

from pydantic import ValidationError

from pkceflow.config import atomic_write, get_tokens_dir
from pkceflow.exceptions import StorageError
from pkceflow.models import TokenSet

logger = logging.getLogger(__name__)

_SUFFIX = ".json"
_FILE_MODE = 0o600


class FileTokenStore:
    """Read/write token sets under a directory.

    All writes are atomic: content is written to a temporary file in the
    same directory, fsynced, then renamed into place. Blocking file I/O
    runs in a worker thread so the event loop is never stalled.

    Args:
        directory: Where to keep token files. Defaults to
            :func:`~pkceflow.config.get_tokens_dir`.

    Example::

        store = FileTokenStore()
        await store.save("github", TokenSet(access_token="tok123"))
        tokens = await store.load("github")
        assert tokens.access_token == "tok123"
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = Path(directory) if directory is not None else get_tokens_dir()
        # Serialises writers within this process; rename keeps readers consistent.
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, server_id: str) -> Path:
        """The filesystem path holding *server_id*'s token set."""
        return self._directory / f"{quote(server_id, safe='')}{_SUFFIX}"

    async def save(self, server_id: str, tokens: TokenSet) -> None:
        await asyncio.to_thread(self._save_sync, server_id, tokens)

    async def load(self, server_id: str) -> Optional[TokenSet]:
        return await asyncio.to_thread(self._load_sync, server_id)

    async def delete(self, server_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, server_id)

    async def list_server_ids(self) -> list[str]:
        return await asyncio.to_thread(self._list_sync)

    # --- blocking implementations ---

    def _save_sync(self, server_id: str, tokens: TokenSet) -> None:
        text = json.dumps(tokens.model_dump(mode="json"), indent=2) + "\n"
        path = self.path_for(server_id)
        try:
            with self._lock:
                atomic_write(path, text, mode=_FILE_MODE)
        except OSError as exc:
            raise StorageError(f"cannot write {path}: {exc}") from exc
        logger.debug("Saved tokens for '%s' to %s", server_id, path)

    def _load_sync(self, server_id: str) -> Optional[TokenSet]:
        path = self.path_for(server_id)
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise StorageError(f"cannot read {path}: {exc}") from exc
        try:
            return TokenSet.model_validate(data)
        except ValidationError as exc:
            raise StorageError(f"corrupt token record at {path}: {exc}") from exc

    def _delete_sync(self, server_id: str) -> None:
        path = self.path_for(server_id)
        try:
            with self._lock:
                path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot delete {path}: {exc}") from exc

    def _list_sync(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        try:
            names = [p.name for p in self._directory.iterdir() if p.is_file()]
        except OSError as exc:
            raise StorageError(f"cannot list {self._directory}: {exc}") from exc
        return sorted(
            unquote(name[: -len(_SUFFIX)])
            for name in names
            if name.endswith(_SUFFIX) and not name.startswith(".")
        )
