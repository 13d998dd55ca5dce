"""Bearer-token injection for :mod:`httpx` clients.

:class:`OAuthBearerAuth` plugs the flow into an :class:`httpx.AsyncClient`::

    auth = OAuthBearerAuth(flow, "github")
    async with httpx.AsyncClient(auth=auth) as client:
        response = await client.get("https://api.example.com/me")

Each request carries ``Authorization: <token_type> <access_token>`` from
:meth:`~pkceflow.flow.manager.OAuthFlow.get_valid_token`. A ``401``
response forces one refresh and the request is retried once.
"""

from __future__ import annotations

import logging
from typing import AsyncGenerator, Generator

import httpx

from pkceflow.flow.manager import OAuthFlow

logger = logging.getLogger(__name__)


class OAuthBearerAuth(httpx.Auth):
    """Authorize requests for *server_id* through *flow*.

    Errors from the flow (e.g. ``AuthenticationRequired``) propagate out
    of the request call.
    """

    def __init__(self, flow: OAuthFlow, server_id: str) -> None:
        self._flow = flow
        self._server_id = server_id

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("OAuthBearerAuth requires httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        access_token = await self._flow.get_valid_token(self._server_id)
        request.headers["Authorization"] = await self._header_for(access_token)
        response = yield request

        if response.status_code != 401:
            return

        logger.info("Got 401 from %s; refreshing token for '%s'", request.url, self._server_id)
        tokens = await self._flow.refresh_tokens(self._server_id, rejected_token=access_token)
        request.headers["Authorization"] = tokens.authorization_header()
        yield request

    async def _header_for(self, access_token: str) -> str:
        tokens = await self._flow.load_tokens(self._server_id)
        if tokens is not None and tokens.access_token == access_token:
            return tokens.authorization_header()
        return f"Bearer {access_token}"
