"""Token store backed by the platform keychain through :mod:`keyring`.

Each server's token set is one JSON password entry under the configured
service name. The keyring API cannot enumerate entries, so an extra
index entry holds the list of server identifiers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from pydantic import ValidationError

from pkceflow.exceptions import StorageError
from pkceflow.models import TokenSet

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "pkceflow-tokens"
_INDEX_ACCOUNT = "__index__"


class KeyringTokenStore:
    """Persist token sets in the system keyring.

    Args:
        service: Keyring service name shared by all entries.
    """

    def __init__(self, service: str = DEFAULT_SERVICE) -> None:
        self._service = service
        self._lock = threading.Lock()

    @property
    def service(self) -> str:
        return self._service

    async def save(self, server_id: str, tokens: TokenSet) -> None:
        await asyncio.to_thread(self._save_sync, server_id, tokens)

    async def load(self, server_id: str) -> Optional[TokenSet]:
        return await asyncio.to_thread(self._load_sync, server_id)

    async def delete(self, server_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, server_id)

    async def list_server_ids(self) -> list[str]:
        return await asyncio.to_thread(self._read_index)

    def _check_id(self, server_id: str) -> None:
        if server_id == _INDEX_ACCOUNT:
            raise StorageError(f"'{_INDEX_ACCOUNT}' is reserved")

    def _save_sync(self, server_id: str, tokens: TokenSet) -> None:
        self._check_id(server_id)
        payload = json.dumps(tokens.model_dump(mode="json"))
        with self._lock:
            try:
                keyring.set_password(self._service, server_id, payload)
            except KeyringError as exc:
                raise StorageError(f"keyring write failed for '{server_id}': {exc}") from exc
            index = self._read_index()
            if server_id not in index:
                self._write_index(sorted([*index, server_id]))
        logger.debug("Saved tokens for '%s' to keyring service '%s'", server_id, self._service)

    def _load_sync(self, server_id: str) -> Optional[TokenSet]:
        self._check_id(server_id)
        try:
            payload = keyring.get_password(self._service, server_id)
        except KeyringError as exc:
            raise StorageError(f"keyring read failed for '{server_id}': {exc}") from exc
        if payload is None:
            return None
        try:
            return TokenSet.model_validate(json.loads(payload))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StorageError(f"corrupt keyring entry for '{server_id}': {exc}") from exc

    def _delete_sync(self, server_id: str) -> None:
        self._check_id(server_id)
        with self._lock:
            try:
                keyring.delete_password(self._service, server_id)
            except PasswordDeleteError:
                pass  # already absent
            except KeyringError as exc:
                raise StorageError(f"keyring delete failed for '{server_id}': {exc}") from exc
            index = self._read_index()
            if server_id in index:
                self._write_index([s for s in index if s != server_id])

    def _read_index(self) -> list[str]:
        try:
            payload = keyring.get_password(self._service, _INDEX_ACCOUNT)
        except KeyringError as exc:
            raise StorageError(f"keyring read failed for index: {exc}") from exc
        if not payload:
            return []
        try:
            index = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise StorageError(f"corrupt keyring index: {exc}") from exc
        if not isinstance(index, list):
            raise StorageError("corrupt keyring index: expected a list")
        return [str(s) for s in index]

    def _write_index(self, index: list[str]) -> None:
        try:
            keyring.set_password(self._service, _INDEX_ACCOUNT, json.dumps(index))
        except KeyringError as exc:
            raise StorageError(f"keyring write failed for index: {exc}") from exc
