"""Tests for expiry-aware token retrieval and single-flight refresh."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from pkceflow.delegate import ProgressState
from pkceflow.exceptions import (
    AuthenticationRequired,
    ConfigError,
    NetworkError,
    ReauthenticationDeclined,
    RefreshFailed,
)
from pkceflow.models import TokenSet
from pkceflow.stores.memory import MemoryTokenStore

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
REFRESHED = (200, {"access_token": "tok2", "token_type": "Bearer", "expires_in": 3600})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _seeded_flow(make_flow, make_config, tokens: TokenSet, **config_overrides):  # noqa: ANN001, ANN202
    store = MemoryTokenStore()
    await store.save("srv", tokens)
    flow = make_flow(store=store, clock=lambda: NOW)
    flow.register_server("srv", make_config(**config_overrides))
    return flow


def _expired(refresh_token: str | None = "r1") -> TokenSet:
    return TokenSet(access_token="tok1", expires_at=NOW - timedelta(seconds=5), refresh_token=refresh_token)


class TestGetValidToken:
    @pytest.mark.asyncio
    async def test_valid_token_needs_no_request(self, make_flow, make_config, token_endpoint) -> None:
        tokens = TokenSet(access_token="tok1", expires_at=NOW + timedelta(minutes=10), refresh_token="r1")
        flow = await _seeded_flow(make_flow, make_config, tokens)

        assert await flow.get_valid_token("srv") == "tok1"
        assert token_endpoint.requests == []

    @pytest.mark.asyncio
    async def test_token_without_expiry_is_used_as_is(self, make_flow, make_config, token_endpoint) -> None:
        flow = await _seeded_flow(make_flow, make_config, TokenSet(access_token="forever"))
        assert await flow.get_valid_token("srv") == "forever"
        assert token_endpoint.requests == []

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, make_flow, make_config, token_endpoint, delegate) -> None:
        token_endpoint.responses = [REFRESHED]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        assert await flow.get_valid_token("srv") == "tok2"
        assert token_endpoint.grants() == ["refresh_token"]
        assert token_endpoint.forms[0]["refresh_token"] == "r1"

        stored = await flow.load_tokens("srv")
        assert stored.access_token == "tok2"
        assert stored.refresh_token == "r1"
        assert stored.expires_at == NOW + timedelta(seconds=3600)
        assert delegate.states == [ProgressState.REFRESHING_TOKENS, ProgressState.COMPLETE]

    @pytest.mark.asyncio
    async def test_token_inside_margin_is_refreshed(self, make_flow, make_config, token_endpoint) -> None:
        token_endpoint.responses = [REFRESHED]
        tokens = TokenSet(access_token="tok1", expires_at=NOW + timedelta(seconds=30), refresh_token="r1")
        flow = await _seeded_flow(make_flow, make_config, tokens)

        assert await flow.get_valid_token("srv") == "tok2"
        assert len(token_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, make_flow, make_config, token_endpoint) -> None:
        token_endpoint.responses = [REFRESHED]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        results = await asyncio.gather(*(flow.get_valid_token("srv") for _ in range(5)))

        assert results == ["tok2"] * 5
        assert len(token_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_servers_refresh_independently(self, make_flow, make_config, token_endpoint) -> None:
        token_endpoint.responses = [REFRESHED]
        flow = await _seeded_flow(make_flow, make_config, _expired())
        await flow.store.save("other", _expired("r-other"))
        flow.register_server("other", make_config())

        await asyncio.gather(flow.get_valid_token("srv"), flow.get_valid_token("other"))

        assert sorted(f["refresh_token"] for f in token_endpoint.forms) == ["r-other", "r1"]

    @pytest.mark.asyncio
    async def test_no_stored_tokens(self, make_flow, token_endpoint, delegate) -> None:
        flow = make_flow(clock=lambda: NOW)
        with pytest.raises(AuthenticationRequired):
            await flow.get_valid_token("srv")
        assert token_endpoint.requests == []
        assert delegate.prompts == []
        assert delegate.states == [ProgressState.FAILED]

    @pytest.mark.asyncio
    async def test_missing_config_is_a_config_error(self, make_flow, token_endpoint) -> None:
        store = MemoryTokenStore()
        await store.save("srv", _expired())
        flow = make_flow(store=store, clock=lambda: NOW)
        with pytest.raises(ConfigError):
            await flow.get_valid_token("srv")
        assert token_endpoint.requests == []


class TestRefreshFailure:
    @pytest.mark.asyncio
    async def test_invalid_grant_then_declined(self, make_flow, make_config, token_endpoint, delegate) -> None:
        token_endpoint.responses = [(400, {"error": "invalid_grant"})]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        with pytest.raises(ReauthenticationDeclined) as exc_info:
            await flow.get_valid_token("srv")

        assert exc_info.value.server_id == "srv"
        assert len(token_endpoint.requests) == 1
        assert delegate.prompts == [("srv", "invalid_grant")]
        assert delegate.opened == []
        assert delegate.states[-1] == ProgressState.FAILED

    @pytest.mark.asyncio
    async def test_invalid_grant_then_accepted(self, make_flow, make_config, token_endpoint, delegate) -> None:
        delegate.accept = True
        token_endpoint.responses = [(401, {"error": "invalid_grant", "error_description": "revoked"})]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        with pytest.raises(AuthenticationRequired):
            await flow.get_valid_token("srv")

        assert delegate.prompts == [("srv", "invalid_grant: revoked")]
        assert delegate.opened == []

    @pytest.mark.asyncio
    async def test_concurrent_failure_prompts_once(self, make_flow, make_config, token_endpoint, delegate) -> None:
        token_endpoint.responses = [(400, {"error": "invalid_grant"})]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        results = await asyncio.gather(
            *(flow.get_valid_token("srv") for _ in range(3)), return_exceptions=True
        )

        assert all(isinstance(r, ReauthenticationDeclined) for r in results)
        assert len(delegate.prompts) == 1
        assert len(token_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_prompts(
        self, make_flow, make_config, token_endpoint, delegate
    ) -> None:
        flow = await _seeded_flow(make_flow, make_config, _expired(refresh_token=None))

        with pytest.raises(ReauthenticationDeclined):
            await flow.get_valid_token("srv")

        assert token_endpoint.requests == []
        assert len(delegate.prompts) == 1

    @pytest.mark.asyncio
    async def test_no_delegate_counts_as_declined(self, make_flow, make_config, token_endpoint) -> None:
        token_endpoint.responses = [(400, {"error": "invalid_grant"})]
        store = MemoryTokenStore()
        await store.save("srv", _expired())
        flow = make_flow(store=store, delegate=None, clock=lambda: NOW)
        flow.register_server("srv", make_config())

        with pytest.raises(ReauthenticationDeclined):
            await flow.get_valid_token("srv")

    @pytest.mark.asyncio
    async def test_network_error_does_not_prompt(self, make_flow, make_config, token_endpoint, delegate) -> None:
        token_endpoint.responses = [httpx.ConnectError("unreachable")]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        with pytest.raises(NetworkError):
            await flow.get_valid_token("srv")

        assert delegate.prompts == []
        stored = await flow.load_tokens("srv")
        assert stored.access_token == "tok1"

    @pytest.mark.asyncio
    async def test_unusable_refresh_response_prompts(
        self, make_flow, make_config, token_endpoint, delegate
    ) -> None:
        token_endpoint.responses = [(200, {"token_type": "Bearer"})]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        with pytest.raises(ReauthenticationDeclined):
            await flow.get_valid_token("srv")
        assert len(delegate.prompts) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"access_token": "tok2", "expires_in": 1e12},
            {"access_token": "tok2", "token_type": 5},
        ],
    )
    async def test_malformed_refresh_response_prompts(
        self, make_flow, make_config, token_endpoint, delegate, body
    ) -> None:
        token_endpoint.responses = [(200, body)]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        with pytest.raises(ReauthenticationDeclined):
            await flow.get_valid_token("srv")
        assert len(delegate.prompts) == 1
        assert delegate.states[-1] == ProgressState.FAILED

    @pytest.mark.asyncio
    async def test_failing_prompt_is_reported(
        self, make_flow, make_config, token_endpoint, delegate, monkeypatch
    ) -> None:
        token_endpoint.responses = [(400, {"error": "invalid_grant"})]
        flow = await _seeded_flow(make_flow, make_config, _expired())

        async def broken_prompt(server_id: str, reason: str) -> bool:
            raise RuntimeError("prompt window closed")

        monkeypatch.setattr(delegate, "prompt_reauthentication", broken_prompt)

        with pytest.raises(RuntimeError, match="prompt window closed"):
            await flow.get_valid_token("srv")
        assert delegate.states[-1] == ProgressState.FAILED
        assert isinstance(delegate.progress[-1].error, RuntimeError)


class TestForceRefresh:
    @pytest.mark.asyncio
    async def test_refreshes_valid_token(self, make_flow, make_config, token_endpoint) -> None:
        token_endpoint.responses = [REFRESHED]
        tokens = TokenSet(access_token="tok1", expires_at=NOW + timedelta(hours=1), refresh_token="r1")
        flow = await _seeded_flow(make_flow, make_config, tokens)

        refreshed = await flow.refresh_tokens("srv")

        assert refreshed.access_token == "tok2"
        assert len(token_endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_already_replaced_token_is_returned(self, make_flow, make_config, token_endpoint) -> None:
        tokens = TokenSet(access_token="tok-new", expires_at=NOW + timedelta(hours=1), refresh_token="r1")
        flow = await _seeded_flow(make_flow, make_config, tokens)

        refreshed = await flow.refresh_tokens("srv", rejected_token="tok-old")

        assert refreshed.access_token == "tok-new"
        assert token_endpoint.requests == []

    @pytest.mark.asyncio
    async def test_without_refresh_token(self, make_flow, make_config, token_endpoint, delegate) -> None:
        tokens = TokenSet(access_token="tok1", expires_at=NOW + timedelta(hours=1))
        flow = await _seeded_flow(make_flow, make_config, tokens)

        with pytest.raises(RefreshFailed):
            await flow.refresh_tokens("srv")
        assert delegate.prompts == []

    @pytest.mark.asyncio
    async def test_rejected_refresh_never_prompts(self, make_flow, make_config, token_endpoint, delegate) -> None:
        token_endpoint.responses = [(400, {"error": "invalid_grant"})]
        tokens = TokenSet(access_token="tok1", expires_at=NOW + timedelta(hours=1), refresh_token="r1")
        flow = await _seeded_flow(make_flow, make_config, tokens)

        with pytest.raises(RefreshFailed) as exc_info:
            await flow.refresh_tokens("srv")
        assert exc_info.value.status == 400
        assert delegate.prompts == []
