"""Tests for the in-memory token store."""

from __future__ import annotations

import pytest

from pkceflow.models import TokenSet
from pkceflow.stores import MemoryTokenStore, TokenStore


class TestMemoryTokenStore:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(MemoryTokenStore(), TokenStore)

    @pytest.mark.asyncio
    async def test_save_load_delete(self) -> None:
        store = MemoryTokenStore()
        await store.save("srv", TokenSet(access_token="a", refresh_token="r"))

        loaded = await store.load("srv")
        assert loaded.access_token == "a"
        assert loaded.refresh_token == "r"
        assert await store.list_server_ids() == ["srv"]

        await store.delete("srv")
        assert await store.load("srv") is None
        assert await store.list_server_ids() == []

    @pytest.mark.asyncio
    async def test_load_missing(self) -> None:
        assert await MemoryTokenStore().load("nope") is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_an_error(self) -> None:
        await MemoryTokenStore().delete("nope")

    @pytest.mark.asyncio
    async def test_save_replaces(self) -> None:
        store = MemoryTokenStore()
        await store.save("srv", TokenSet(access_token="a"))
        await store.save("srv", TokenSet(access_token="b"))
        assert (await store.load("srv")).access_token == "b"

    @pytest.mark.asyncio
    async def test_returns_copies(self) -> None:
        store = MemoryTokenStore()
        tokens = TokenSet(access_token="a")
        await store.save("srv", tokens)
        tokens.access_token = "mutated"
        assert (await store.load("srv")).access_token == "a"
