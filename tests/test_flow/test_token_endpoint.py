"""Tests for the token endpoint client."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from pkceflow.exceptions import InvalidTokenResponse, NetworkError, TokenExchangeFailed
from pkceflow.flow.token_endpoint import TokenEndpoint

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _endpoint(token_endpoint) -> TokenEndpoint:
    return TokenEndpoint(token_endpoint.client(), clock=lambda: NOW)


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_form_and_headers(self, token_endpoint, make_config) -> None:
        tokens = await _endpoint(token_endpoint).exchange_code(make_config(), "the-code", "verifier-123")

        request = token_endpoint.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://auth.example.com/token"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert request.headers["Accept"] == "application/json"
        assert token_endpoint.forms[0] == {
            "grant_type": "authorization_code",
            "code": "the-code",
            "redirect_uri": "app://oauth/callback",
            "client_id": "abc",
            "code_verifier": "verifier-123",
        }
        assert tokens.access_token == "tok1"
        assert tokens.expires_at == NOW + timedelta(seconds=3600)

    @pytest.mark.asyncio
    async def test_confidential_client_and_resource(self, token_endpoint, make_config) -> None:
        config = make_config(client_secret="s3cret", resource="https://api.example.com")
        await _endpoint(token_endpoint).exchange_code(config, "c")
        form = token_endpoint.forms[0]
        assert form["client_secret"] == "s3cret"
        assert form["resource"] == "https://api.example.com"
        assert "code_verifier" not in form

    @pytest.mark.asyncio
    async def test_error_response(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(400, {"error": "invalid_grant", "error_description": "Code expired"})]
        with pytest.raises(TokenExchangeFailed) as exc_info:
            await _endpoint(token_endpoint).exchange_code(make_config(), "c", "v")
        assert exc_info.value.status == 400
        assert exc_info.value.error == "invalid_grant"
        assert exc_info.value.description == "Code expired"
        assert "invalid_grant" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_error_response_without_json(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(502, "Bad Gateway")]
        with pytest.raises(TokenExchangeFailed) as exc_info:
            await _endpoint(token_endpoint).exchange_code(make_config(), "c", "v")
        assert exc_info.value.status == 502
        assert exc_info.value.error is None
        assert exc_info.value.body == "Bad Gateway"

    @pytest.mark.asyncio
    async def test_success_without_access_token(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(200, {"token_type": "Bearer"})]
        with pytest.raises(InvalidTokenResponse):
            await _endpoint(token_endpoint).exchange_code(make_config(), "c", "v")

    @pytest.mark.asyncio
    async def test_success_with_non_json_body(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(200, "access_token=tok1")]
        with pytest.raises(InvalidTokenResponse):
            await _endpoint(token_endpoint).exchange_code(make_config(), "c", "v")

    @pytest.mark.asyncio
    async def test_out_of_range_expires_in(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(200, {"access_token": "tok1", "expires_in": 1e12})]
        with pytest.raises(InvalidTokenResponse, match="expires_in"):
            await _endpoint(token_endpoint).exchange_code(make_config(), "c", "v")

    @pytest.mark.asyncio
    async def test_wrongly_typed_field(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(200, {"access_token": "tok1", "token_type": 5})]
        with pytest.raises(InvalidTokenResponse):
            await _endpoint(token_endpoint).exchange_code(make_config(), "c", "v")

    @pytest.mark.asyncio
    async def test_transport_failure(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [httpx.ConnectError("connection refused")]
        with pytest.raises(NetworkError, match="connection refused"):
            await _endpoint(token_endpoint).exchange_code(make_config(), "c", "v")


class TestRefresh:
    @pytest.mark.asyncio
    async def test_form(self, token_endpoint, make_config) -> None:
        await _endpoint(token_endpoint).refresh(make_config(), "r1")
        assert token_endpoint.forms[0] == {
            "grant_type": "refresh_token",
            "refresh_token": "r1",
            "client_id": "abc",
        }

    @pytest.mark.asyncio
    async def test_scope_only_when_configured(self, token_endpoint, make_config) -> None:
        await _endpoint(token_endpoint).refresh(make_config(send_scope_on_refresh=True), "r1")
        assert token_endpoint.forms[0]["scope"] == "read write"

    @pytest.mark.asyncio
    async def test_keeps_old_refresh_token_when_omitted(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(200, {"access_token": "tok2", "expires_in": 60})]
        tokens = await _endpoint(token_endpoint).refresh(make_config(), "r1")
        assert tokens.access_token == "tok2"
        assert tokens.refresh_token == "r1"

    @pytest.mark.asyncio
    async def test_rotated_refresh_token(self, token_endpoint, make_config) -> None:
        token_endpoint.responses = [(200, {"access_token": "tok2", "refresh_token": "r2"})]
        tokens = await _endpoint(token_endpoint).refresh(make_config(), "r1")
        assert tokens.refresh_token == "r2"
