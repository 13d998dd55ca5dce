"""Expiry-aware access-token retrieval with single-flight refresh.

:meth:`RefreshCoordinator.get_valid_token` is the access path used by
everything downstream of the flow. A stored token that is still valid
(beyond the safety margin) is returned without touching the network.
Otherwise all concurrent callers for a server share one flight that

1. re-reads the store (an earlier flight may already have refreshed),
2. refreshes with the stored refresh token, and
3. on a rejected refresh, or with no refresh token at all, asks the
   delegate once whether to sign in again.

Declining yields :class:`~pkceflow.exceptions.ReauthenticationDeclined`;
accepting yields :class:`~pkceflow.exceptions.AuthenticationRequired` so the
caller can drive the interactive flow. A browser is never launched here.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from pkceflow.delegate import AuthDelegate, ProgressState, notify
from pkceflow.exceptions import (
    AuthenticationRequired,
    ConfigError,
    InvalidTokenResponse,
    PkceflowError,
    ReauthenticationDeclined,
    RefreshFailed,
    TokenExchangeFailed,
)
from pkceflow.flow.token_endpoint import TokenEndpoint
from pkceflow.models import OAuthConfig, TokenSet, utcnow
from pkceflow.singleflight import SingleFlight
from pkceflow.stores.base import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_MARGIN = 60.0


class RefreshCoordinator:
    """Hand out valid access tokens, refreshing at most once at a time per server.

    Args:
        store: Where token sets live.
        endpoint: Token endpoint client used for the refresh grant.
        config_lookup: Returns the :class:`OAuthConfig` registered for a
            server, or ``None``.
        delegate: Receives progress and reauthentication prompts.
        margin: Seconds before ``expires_at`` at which a token is already
            treated as expired.
        clock: Current UTC time.
    """

    def __init__(
        self,
        store: TokenStore,
        endpoint: TokenEndpoint,
        config_lookup: Callable[[str], Optional[OAuthConfig]],
        delegate: Optional[AuthDelegate] = None,
        margin: float = DEFAULT_REFRESH_MARGIN,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._endpoint = endpoint
        self._config_lookup = config_lookup
        self._delegate = delegate
        self._margin = margin
        self._clock = clock
        self._flights: SingleFlight[TokenSet] = SingleFlight()

    @property
    def margin(self) -> float:
        return self._margin

    def refresh_in_flight(self, server_id: str) -> bool:
        return self._flights.in_flight(server_id)

    async def get_valid_token(self, server_id: str) -> str:
        """Return a usable access token for *server_id*.

        Raises:
            AuthenticationRequired: No token is stored, or the user agreed
                to sign in again after a failed refresh.
            ReauthenticationDeclined: The user declined to sign in again.
            NetworkError: The refresh request could not be sent.
            StorageError: The token store failed.
        """
        try:
            tokens = await self._store.load(server_id)
        except PkceflowError as exc:
            self._failed(server_id, exc)
            raise
        if tokens is None:
            exc = AuthenticationRequired(server_id, "no stored tokens")
            self._failed(server_id, exc)
            raise exc
        if not tokens.is_expired(self._margin, now=self._clock()):
            return tokens.access_token

        logger.debug("Access token for '%s' is expired or about to expire", server_id)
        refreshed = await self._flights.do(server_id, lambda: self._refresh_or_prompt(server_id))
        return refreshed.access_token

    async def force_refresh(self, server_id: str, rejected_token: Optional[str] = None) -> TokenSet:
        """Refresh *server_id*'s tokens now, regardless of expiry.

        Shares the single-flight slot with :meth:`get_valid_token`. When
        *rejected_token* is given and the store already holds a different
        access token, that newer token set is returned without a request.
        Never prompts for reauthentication.

        Raises:
            AuthenticationRequired: No token is stored.
            RefreshFailed: No refresh token, or the server rejected it.
        """
        return await self._flights.do(server_id, lambda: self._forced(server_id, rejected_token))

    # --- flight bodies ---

    async def _refresh_or_prompt(self, server_id: str) -> TokenSet:
        try:
            tokens = await self._store.load(server_id)
            if tokens is None:
                raise AuthenticationRequired(server_id, "no stored tokens")
            if not tokens.is_expired(self._margin, now=self._clock()):
                return tokens
            if tokens.refresh_token is None:
                raise await self._reauthentication_outcome(
                    server_id, "access token expired and no refresh token is available"
                )
            try:
                return await self._refresh(server_id, tokens.refresh_token)
            except RefreshFailed as exc:
                logger.info("Refresh for '%s' failed: %s", server_id, exc.reason)
                raise await self._reauthentication_outcome(server_id, exc.reason) from exc
        except Exception as exc:
            self._failed(server_id, exc)
            raise

    async def _forced(self, server_id: str, rejected_token: Optional[str]) -> TokenSet:
        try:
            tokens = await self._store.load(server_id)
            if tokens is None:
                raise AuthenticationRequired(server_id, "no stored tokens")
            if rejected_token is not None and tokens.access_token != rejected_token:
                logger.debug("Tokens for '%s' were already replaced", server_id)
                return tokens
            if tokens.refresh_token is None:
                raise RefreshFailed("no refresh token available")
            return await self._refresh(server_id, tokens.refresh_token)
        except Exception as exc:
            self._failed(server_id, exc)
            raise

    async def _refresh(self, server_id: str, refresh_token: str) -> TokenSet:
        config = self._config_lookup(server_id)
        if config is None:
            raise ConfigError(f"No OAuth configuration registered for '{server_id}'")
        notify(self._delegate, ProgressState.REFRESHING_TOKENS, server_id)
        try:
            refreshed = await self._endpoint.refresh(config, refresh_token)
        except TokenExchangeFailed as exc:
            reason = exc.error or f"HTTP {exc.status}"
            if exc.description:
                reason = f"{reason}: {exc.description}"
            raise RefreshFailed(reason, status=exc.status) from exc
        except InvalidTokenResponse as exc:
            raise RefreshFailed(exc.detail) from exc

        await self._store.save(server_id, refreshed)
        logger.info("Refreshed access token for '%s'", server_id)
        notify(self._delegate, ProgressState.COMPLETE, server_id)
        return refreshed

    async def _reauthentication_outcome(self, server_id: str, reason: str) -> PkceflowError:
        """Ask the delegate once and return the error the flight ends with."""
        accepted = False
        if self._delegate is not None:
            accepted = await self._delegate.prompt_reauthentication(server_id, reason)
        if not accepted:
            logger.info("Reauthentication for '%s' declined", server_id)
            return ReauthenticationDeclined(server_id, reason)
        return AuthenticationRequired(server_id, reason)

    def _failed(self, server_id: str, error: BaseException) -> None:
        notify(self._delegate, ProgressState.FAILED, server_id, error)
