"""Tests for RFC 9728 / RFC 8414 discovery and RFC 7591 registration."""

from __future__ import annotations

import json

import httpx
import pytest

from pkceflow.discovery import (
    AuthDiscovery,
    auth_server_metadata_url,
    parse_www_authenticate,
    resource_metadata_url,
)
from pkceflow.exceptions import DiscoveryError

RESOURCE_METADATA = {
    "resource": "https://mcp.example.com",
    "authorization_servers": ["https://auth.example.com"],
    "scopes_supported": ["mcp:read", "mcp:write"],
}
AUTH_METADATA = {
    "issuer": "https://auth.example.com",
    "authorization_endpoint": "https://auth.example.com/authorize",
    "token_endpoint": "https://auth.example.com/token",
    "registration_endpoint": "https://auth.example.com/register",
    "code_challenge_methods_supported": ["S256"],
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Server:
    """Serves discovery documents from a dict keyed by URL."""

    def __init__(self, routes: dict[str, tuple[int, object]]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url not in self.routes:
            return httpx.Response(404, text="not found")
        status, body = self.routes[url]
        return httpx.Response(status, json=body)

    def discovery(self) -> AuthDiscovery:
        return AuthDiscovery(client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))


def _default_routes() -> dict[str, tuple[int, object]]:
    return {
        "https://mcp.example.com/.well-known/oauth-protected-resource": (200, RESOURCE_METADATA),
        "https://auth.example.com/.well-known/oauth-authorization-server": (200, AUTH_METADATA),
        "https://auth.example.com/register": (201, {"client_id": "dyn-123"}),
    }


class TestUrlHelpers:
    def test_parse_www_authenticate(self) -> None:
        header = 'Bearer error="invalid_token", resource_metadata="https://mcp.example.com/.well-known/oauth-protected-resource"'
        assert parse_www_authenticate(header) == "https://mcp.example.com/.well-known/oauth-protected-resource"

    @pytest.mark.parametrize("header", ["Bearer", 'Bearer resource_metadata="/relative"', ""])
    def test_parse_www_authenticate_rejects(self, header: str) -> None:
        with pytest.raises(DiscoveryError):
            parse_www_authenticate(header)

    def test_resource_metadata_url_uses_origin(self) -> None:
        assert (
            resource_metadata_url("https://mcp.example.com/v1/mcp?x=1")
            == "https://mcp.example.com/.well-known/oauth-protected-resource"
        )

    def test_auth_server_metadata_url(self) -> None:
        assert (
            auth_server_metadata_url("https://auth.example.com/")
            == "https://auth.example.com/.well-known/oauth-authorization-server"
        )
        assert (
            auth_server_metadata_url("https://auth.example.com/tenant1")
            == "https://auth.example.com/.well-known/oauth-authorization-server/tenant1"
        )


class TestDiscover:
    @pytest.mark.asyncio
    async def test_discover_via_well_known(self) -> None:
        server = _Server(_default_routes())
        async with server.discovery() as discovery:
            resource, auth = await discovery.discover("https://mcp.example.com/mcp")
        assert resource.authorization_servers == ["https://auth.example.com"]
        assert auth.token_endpoint == "https://auth.example.com/token"
        assert auth.supports_pkce is True

    @pytest.mark.asyncio
    async def test_discover_via_www_authenticate(self) -> None:
        routes = _default_routes()
        routes["https://meta.example.com/prm"] = routes.pop(
            "https://mcp.example.com/.well-known/oauth-protected-resource"
        )
        server = _Server(routes)
        async with server.discovery() as discovery:
            resource, _ = await discovery.discover(
                "https://mcp.example.com", 'Bearer resource_metadata="https://meta.example.com/prm"'
            )
        assert resource.resource == "https://mcp.example.com"
        assert str(server.requests[0].url) == "https://meta.example.com/prm"

    @pytest.mark.asyncio
    async def test_no_authorization_servers(self) -> None:
        routes = _default_routes()
        routes["https://mcp.example.com/.well-known/oauth-protected-resource"] = (200, {"resource": "x"})
        async with _Server(routes).discovery() as discovery:
            with pytest.raises(DiscoveryError, match="No authorization servers"):
                await discovery.discover("https://mcp.example.com")

    @pytest.mark.asyncio
    async def test_metadata_http_error(self) -> None:
        async with _Server({}).discovery() as discovery:
            with pytest.raises(DiscoveryError, match="HTTP 404"):
                await discovery.discover("https://mcp.example.com")

    @pytest.mark.asyncio
    async def test_invalid_metadata(self) -> None:
        routes = _default_routes()
        routes["https://auth.example.com/.well-known/oauth-authorization-server"] = (200, {"issuer": "x"})
        async with _Server(routes).discovery() as discovery:
            with pytest.raises(DiscoveryError, match="Invalid authorization server metadata"):
                await discovery.discover("https://mcp.example.com")


class TestDiscoverConfig:
    @pytest.mark.asyncio
    async def test_registers_client(self) -> None:
        server = _Server(_default_routes())
        async with server.discovery() as discovery:
            config = await discovery.discover_config(
                "https://mcp.example.com", "http://127.0.0.1:8765/callback", client_name="pkceflow"
            )

        assert config.client_id == "dyn-123"
        assert config.client_secret is None
        assert config.scopes == ["mcp:read", "mcp:write"]
        assert config.resource_url == "https://mcp.example.com"
        registration = server.requests[-1]
        assert registration.method == "POST"
        body = json.loads(registration.content)
        assert body["redirect_uris"] == ["http://127.0.0.1:8765/callback"]
        assert body["client_name"] == "pkceflow"
        assert body["token_endpoint_auth_method"] == "none"
        assert body["scope"] == "mcp:read mcp:write"
        assert "client_uri" not in body

    @pytest.mark.asyncio
    async def test_existing_client_id_skips_registration(self) -> None:
        server = _Server(_default_routes())
        async with server.discovery() as discovery:
            config = await discovery.discover_config(
                "https://mcp.example.com", "app://oauth/callback", client_id="mine", scopes=["x"]
            )
        assert config.client_id == "mine"
        assert config.scopes == ["x"]
        assert all(r.method == "GET" for r in server.requests)

    @pytest.mark.asyncio
    async def test_registration_unsupported(self) -> None:
        routes = _default_routes()
        metadata = dict(AUTH_METADATA)
        del metadata["registration_endpoint"]
        routes["https://auth.example.com/.well-known/oauth-authorization-server"] = (200, metadata)
        async with _Server(routes).discovery() as discovery:
            with pytest.raises(DiscoveryError, match="dynamic client registration"):
                await discovery.discover_config("https://mcp.example.com", "app://oauth/callback")

    @pytest.mark.asyncio
    async def test_registration_rejected(self) -> None:
        routes = _default_routes()
        routes["https://auth.example.com/register"] = (400, {"error": "invalid_redirect_uri"})
        async with _Server(routes).discovery() as discovery:
            with pytest.raises(DiscoveryError, match="HTTP 400"):
                await discovery.discover_config("https://mcp.example.com", "app://oauth/callback")
