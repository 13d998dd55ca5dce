"""Authorization discovery for protected resources.

Implements the client side of:

- :rfc:`9728` -- OAuth 2.0 Protected Resource Metadata
- :rfc:`8414` -- OAuth 2.0 Authorization Server Metadata
- :rfc:`7591` -- OAuth 2.0 Dynamic Client Registration

A server that requires authorization answers ``401`` with a
``WWW-Authenticate: Bearer resource_metadata="..."`` header. The resource
metadata names the authorization server, whose metadata in turn names the
authorization, token and (optionally) registration endpoints.
:meth:`AuthDiscovery.discover_config` runs the whole chain and returns a
:class:`~pkceflow.models.DiscoveredOAuthConfig`.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional, TypeVar
from urllib.parse import urlsplit, urlunsplit

import httpx
from pydantic import BaseModel, ValidationError

from pkceflow.exceptions import DiscoveryError
from pkceflow.models import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    DiscoveredOAuthConfig,
    ProtectedResourceMetadata,
)

logger = logging.getLogger(__name__)

RESOURCE_METADATA_PATH = "/.well-known/oauth-protected-resource"
AUTH_SERVER_METADATA_PATH = "/.well-known/oauth-authorization-server"

_RESOURCE_METADATA_RE = re.compile(r'resource_metadata\s*=\s*"([^"]+)"', re.IGNORECASE)

M = TypeVar("M", bound=BaseModel)


def parse_www_authenticate(header: str) -> str:
    """Extract the ``resource_metadata`` URL from a ``WWW-Authenticate`` header.

    Raises:
        DiscoveryError: If the parameter is absent or not an absolute URL.
    """
    match = _RESOURCE_METADATA_RE.search(header or "")
    if match is None:
        raise DiscoveryError(f"Could not parse WWW-Authenticate header: {header}")
    url = match.group(1)
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise DiscoveryError(f"Invalid resource_metadata URL in WWW-Authenticate: {url}")
    return url


def resource_metadata_url(server_url: str) -> str:
    """Well-known protected resource metadata URL at the root of *server_url*'s origin."""
    parts = urlsplit(server_url)
    return urlunsplit((parts.scheme, parts.netloc, RESOURCE_METADATA_PATH, "", ""))


def auth_server_metadata_url(issuer: str) -> str:
    """Well-known authorization server metadata URL for *issuer*.

    An issuer with a path component (``https://auth.example.com/tenant1``)
    maps to ``/.well-known/oauth-authorization-server/tenant1``.
    """
    parts = urlsplit(issuer)
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, AUTH_SERVER_METADATA_PATH + path, "", ""))


class AuthDiscovery:
    """Fetch discovery documents and register clients.

    Args:
        client: Async HTTP client. When omitted one is created and closed
            by :meth:`aclose`.
        timeout: Timeout for the client this object creates.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> AuthDiscovery:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # Module-level helpers exposed on the instance for convenience.
    parse_www_authenticate = staticmethod(parse_www_authenticate)
    resource_metadata_url = staticmethod(resource_metadata_url)
    auth_server_metadata_url = staticmethod(auth_server_metadata_url)

    async def fetch_resource_metadata(self, url: str) -> ProtectedResourceMetadata:
        return await self._get_document(url, ProtectedResourceMetadata, "protected resource metadata")

    async def fetch_auth_server_metadata(self, url: str) -> AuthorizationServerMetadata:
        return await self._get_document(
            url, AuthorizationServerMetadata, "authorization server metadata"
        )

    async def register_client(
        self, registration_endpoint: str, request: ClientRegistrationRequest
    ) -> ClientRegistrationResponse:
        """POST a dynamic client registration request.

        Raises:
            DiscoveryError: On transport failure, a status other than 200/201,
                or an unparsable response.
        """
        body = request.model_dump(mode="json", exclude_none=True)
        try:
            response = await self._client.post(
                registration_endpoint,
                json=body,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"Dynamic client registration failed: {exc}") from exc
        if response.status_code not in (200, 201):
            raise DiscoveryError(
                f"Dynamic client registration failed: HTTP {response.status_code}: "
                f"{response.text.strip()[:200] or 'No body'}"
            )
        return self._parse(response, ClientRegistrationResponse, "client registration response")

    async def register_client_if_needed(
        self,
        metadata: AuthorizationServerMetadata,
        redirect_uri: str,
        client_name: Optional[str] = None,
        scopes: Optional[list[str]] = None,
    ) -> Optional[ClientRegistrationResponse]:
        """Register a public client when the server supports registration.

        Returns ``None`` when the server has no registration endpoint.
        """
        if metadata.registration_endpoint is None:
            return None
        request = ClientRegistrationRequest(
            redirect_uris=[redirect_uri],
            client_name=client_name,
            scope=" ".join(scopes) if scopes else None,
        )
        return await self.register_client(metadata.registration_endpoint, request)

    async def discover(
        self, server_url: str, www_authenticate: Optional[str] = None
    ) -> tuple[ProtectedResourceMetadata, AuthorizationServerMetadata]:
        """Walk from a protected resource to its authorization server metadata.

        Args:
            server_url: The protected resource.
            www_authenticate: The ``WWW-Authenticate`` header of a 401 from
                the resource, if one was received. Without it the
                well-known path on the resource's origin is used.
        """
        if www_authenticate:
            metadata_url = parse_www_authenticate(www_authenticate)
        else:
            metadata_url = resource_metadata_url(server_url)
        resource = await self.fetch_resource_metadata(metadata_url)
        if not resource.authorization_servers:
            raise DiscoveryError("No authorization servers found in resource metadata")
        issuer = resource.authorization_servers[0]
        auth_server = await self.fetch_auth_server_metadata(auth_server_metadata_url(issuer))
        logger.info("Discovered authorization server %s for %s", auth_server.issuer, server_url)
        return resource, auth_server

    async def discover_config(
        self,
        server_url: str,
        redirect_uri: str,
        *,
        www_authenticate: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        client_name: Optional[str] = None,
        scopes: Optional[list[str]] = None,
    ) -> DiscoveredOAuthConfig:
        """Run discovery and, without a *client_id*, dynamic registration.

        Scopes default to those the resource (or else the authorization
        server) advertises.

        Raises:
            DiscoveryError: If any step fails, or no client ID is given and
                the server does not support dynamic registration.
        """
        resource, auth_server = await self.discover(server_url, www_authenticate)
        if scopes is None:
            scopes = resource.scopes_supported or auth_server.scopes_supported or []

        if client_id is None:
            registration = await self.register_client_if_needed(
                auth_server, redirect_uri, client_name=client_name, scopes=scopes
            )
            if registration is None:
                raise DiscoveryError(
                    "Server does not support dynamic client registration; "
                    "a client ID is required"
                )
            client_id = registration.client_id
            client_secret = registration.client_secret
            logger.info("Registered client %s with %s", client_id, auth_server.issuer)

        return DiscoveredOAuthConfig(
            resource_url=resource.resource or server_url,
            authorization_url=auth_server.authorization_endpoint,
            token_url=auth_server.token_endpoint,
            client_id=client_id,
            client_secret=client_secret,
            scopes=list(scopes),
            supports_pkce=auth_server.supports_pkce,
        )

    # --- helpers ---

    async def _get_document(self, url: str, model: type[M], what: str) -> M:
        logger.debug("Fetching %s from %s", what, url)
        try:
            response = await self._client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"Failed to fetch {what}: {exc}") from exc
        if response.status_code != 200:
            raise DiscoveryError(f"Failed to fetch {what}: HTTP {response.status_code}")
        return self._parse(response, model, what)

    @staticmethod
    def _parse(response: httpx.Response, model: type[M], what: str) -> M:
        try:
            return model.model_validate(response.json())
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
            raise DiscoveryError(f"Invalid {what}: {exc}") from exc
