"""Token endpoint client for the authorization-code and refresh-token grants.

Requests are ``application/x-www-form-urlencoded`` POSTs with
``Accept: application/json``. Responses are mapped onto the exception
hierarchy:

- transport failure -> :class:`~pkceflow.exceptions.NetworkError`
- non-2xx status -> :class:`~pkceflow.exceptions.TokenExchangeFailed`
- 2xx with an unusable body -> :class:`~pkceflow.exceptions.InvalidTokenResponse`
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from pkceflow.exceptions import InvalidTokenResponse, NetworkError, TokenExchangeFailed
from pkceflow.models import OAuthConfig, TokenSet, utcnow

logger = logging.getLogger(__name__)

_HEADERS = {"Accept": "application/json"}


class TokenEndpoint:
    """POST grants to an OAuth token endpoint.

    Args:
        client: Shared async HTTP client.
        clock: Returns the current UTC time; used to turn ``expires_in``
            into an absolute expiry.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._clock = clock

    async def exchange_code(
        self,
        config: OAuthConfig,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> TokenSet:
        """Redeem an authorization code for a token set."""
        form: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.redirect_uri,
            "client_id": config.client_id,
        }
        if config.client_secret:
            form["client_secret"] = config.client_secret
        if code_verifier:
            form["code_verifier"] = code_verifier
        if config.resource:
            form["resource"] = config.resource
        return await self._request(config.token_url, form)

    async def refresh(self, config: OAuthConfig, refresh_token: str) -> TokenSet:
        """Run the refresh-token grant.

        When the response omits ``refresh_token`` the returned set keeps
        the one that was sent.
        """
        form: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
        }
        if config.client_secret:
            form["client_secret"] = config.client_secret
        if config.resource:
            form["resource"] = config.resource
        if config.send_scope_on_refresh and config.scopes:
            form["scope"] = config.scope_string
        tokens = await self._request(config.token_url, form)
        if tokens.refresh_token is None:
            tokens = tokens.model_copy(update={"refresh_token": refresh_token})
        return tokens

    async def _request(self, url: str, form: dict[str, str]) -> TokenSet:
        grant = form["grant_type"]
        logger.debug("POST %s (grant_type=%s)", url, grant)
        try:
            response = await self._client.post(url, data=form, headers=_HEADERS)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{grant} request to {url} failed: {exc}") from exc

        if not response.is_success:
            error, description = _parse_error(response)
            raise TokenExchangeFailed(response.status_code, response.text, error, description)

        try:
            data: Any = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidTokenResponse(f"body is not JSON: {exc}") from exc
        return TokenSet.from_token_response(data, obtained_at=self._clock())


def _parse_error(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    """Extract ``error``/``error_description`` from a JSON error body, if any."""
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, None
    if not isinstance(data, dict):
        return None, None
    error = data.get("error")
    description = data.get("error_description")
    return (
        error if isinstance(error, str) else None,
        description if isinstance(description, str) else None,
    )
