"""Tests for the file-backed token store."""

from __future__ import annotations

import json
import os
import stat
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pkceflow.exceptions import StorageError
from pkceflow.models import TokenSet
from pkceflow.stores import FileTokenStore, TokenStore

EXPIRES = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def store(tmp_path: Path) -> FileTokenStore:
    return FileTokenStore(tmp_path / "tokens")


class TestFileTokenStore:
    def test_satisfies_protocol(self, store: FileTokenStore) -> None:
        assert isinstance(store, TokenStore)

    @pytest.mark.asyncio
    async def test_roundtrip(self, store: FileTokenStore) -> None:
        tokens = TokenSet(access_token="a", refresh_token="r", expires_at=EXPIRES, scope="read")
        await store.save("github", tokens)

        loaded = await store.load("github")
        assert loaded == tokens
        assert loaded.expires_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_file_layout(self, store: FileTokenStore) -> None:
        await store.save("github", TokenSet(access_token="a"))
        path = store.directory / "github.json"
        assert path.is_file()
        assert json.loads(path.read_text())["access_token"] == "a"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    @pytest.mark.asyncio
    async def test_file_permissions(self, store: FileTokenStore) -> None:
        await store.save("github", TokenSet(access_token="a"))
        mode = stat.S_IMODE(os.stat(store.path_for("github")).st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, store: FileTokenStore) -> None:
        await store.save("github", TokenSet(access_token="a"))
        await store.save("github", TokenSet(access_token="b"))
        assert [p.name for p in store.directory.iterdir()] == ["github.json"]

    @pytest.mark.asyncio
    async def test_url_server_id(self, store: FileTokenStore) -> None:
        server_id = "https://mcp.example.com/v1"
        await store.save(server_id, TokenSet(access_token="a"))

        assert store.path_for(server_id).parent == store.directory
        assert (await store.load(server_id)).access_token == "a"
        assert await store.list_server_ids() == [server_id]

    @pytest.mark.asyncio
    async def test_missing(self, store: FileTokenStore) -> None:
        assert await store.load("nope") is None
        assert await store.list_server_ids() == []
        await store.delete("nope")

    @pytest.mark.asyncio
    async def test_delete(self, store: FileTokenStore) -> None:
        await store.save("a", TokenSet(access_token="1"))
        await store.save("b", TokenSet(access_token="2"))
        await store.delete("a")
        assert await store.list_server_ids() == ["b"]
        assert await store.load("a") is None

    @pytest.mark.asyncio
    async def test_corrupt_json(self, store: FileTokenStore) -> None:
        store.directory.mkdir(parents=True, exist_ok=True)
        store.path_for("bad").write_text("{not json")
        with pytest.raises(StorageError):
            await store.load("bad")

    @pytest.mark.asyncio
    async def test_invalid_record(self, store: FileTokenStore) -> None:
        store.directory.mkdir(parents=True, exist_ok=True)
        store.path_for("bad").write_text(json.dumps({"token_type": "Bearer"}))
        with pytest.raises(StorageError, match="corrupt"):
            await store.load("bad")

    @pytest.mark.asyncio
    async def test_default_directory(self, isolated_config: Path) -> None:
        store = FileTokenStore()
        await store.save("srv", TokenSet(access_token="a"))
        assert store.directory == isolated_config / "data" / "pkceflow" / "tokens"
        assert store.path_for("srv").is_file()
