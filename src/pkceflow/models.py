"""Canonical Pydantic models shared across all pkceflow modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Flow models** -- what the OAuth flow consumes and produces:
    :class:`PKCEMethod`, :class:`OAuthConfig`, and :class:`TokenSet`.
    The short-lived :class:`~pkceflow.pkce.PKCEPair` and
    :class:`~pkceflow.pending.PendingAuthState` are plain dataclasses that
    live next to the code that owns them.

**Configuration models** -- serialised as JSON in the user's config
directory: :class:`ServerProfile` and :class:`GlobalConfig`.

**Discovery models** -- metadata documents fetched from protected
resources and authorization servers:
    :class:`ProtectedResourceMetadata`, :class:`AuthorizationServerMetadata`,
    :class:`ClientRegistrationRequest`, :class:`ClientRegistrationResponse`,
    and :class:`DiscoveredOAuthConfig`.

All models use Pydantic v2. Timestamps are timezone-aware UTC datetimes;
naive values are interpreted as UTC on validation.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from pkceflow.exceptions import InvalidTokenResponse


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Flow models ---


class PKCEMethod(str, enum.Enum):
    """PKCE code challenge methods defined by :rfc:`7636`."""

    S256 = "S256"
    PLAIN = "plain"


class OAuthConfig(BaseModel):
    """Client-side configuration for one authorization server.

    Immutable once constructed. The redirect URI is either given
    explicitly (e.g. a loopback address) or derived from a custom scheme
    and path, so ``redirect_scheme="app"`` yields ``app://oauth/callback``.

    Example::

        OAuthConfig(
            client_id="abc",
            authorization_url="https://auth.example.com/authorize",
            token_url="https://auth.example.com/token",
            scopes=["read", "write"],
            redirect_scheme="app",
        )
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: Optional[str] = Field(
        default=None, description="Only for confidential clients; never sent to the browser"
    )
    authorization_url: str
    token_url: str
    scopes: tuple[str, ...] = ()
    redirect_scheme: Optional[str] = None
    redirect_path: str = "/oauth/callback"
    redirect_uri: str = Field(default="", description="Derived from scheme and path when omitted")
    use_pkce: bool = True
    pkce_method: PKCEMethod = PKCEMethod.S256
    scope_separator: str = Field(default=" ", description="Some providers expect ','")
    additional_params: dict[str, str] = Field(
        default_factory=dict, description="Extra authorization endpoint query parameters"
    )
    resource: Optional[str] = Field(
        default=None, description="RFC 8707 resource indicator sent on authorization and token requests"
    )
    send_scope_on_refresh: bool = False

    @model_validator(mode="before")
    @classmethod
    def _derive_redirect_uri(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("redirect_uri"):
            return data
        scheme = data.get("redirect_scheme")
        if not scheme:
            raise ValueError("OAuthConfig requires either 'redirect_uri' or 'redirect_scheme'")
        path = str(data.get("redirect_path") or "/oauth/callback")
        return {**data, "redirect_uri": f"{scheme}://{path.lstrip('/')}"}

    @field_validator("scopes", mode="before")
    @classmethod
    def _dedupe_scopes(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split()
        if isinstance(value, (list, tuple)):
            return tuple(dict.fromkeys(value))
        return value

    @property
    def scope_string(self) -> str:
        """Scopes joined with :attr:`scope_separator`."""
        return self.scope_separator.join(self.scopes)


class TokenSet(BaseModel):
    """Tokens obtained from the token endpoint for one server.

    ``expires_at`` is always absolute: a relative ``expires_in`` from the
    token response is converted on construction via
    :meth:`from_token_response`.
    """

    access_token: str
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    obtained_at: datetime = Field(default_factory=utcnow)

    @field_validator("expires_at", "obtained_at")
    @classmethod
    def _normalise_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @classmethod
    def from_token_response(
        cls, data: Any, obtained_at: Optional[datetime] = None
    ) -> TokenSet:
        """Build a token set from a token endpoint JSON payload.

        Args:
            data: Decoded JSON body (``access_token``, ``token_type``,
                ``expires_in``, ``refresh_token``, ``scope``).
            obtained_at: Reference time for ``expires_in``; defaults to now.

        Raises:
            InvalidTokenResponse: If the payload is not an object, lacks
                ``access_token``, has an unusable ``expires_in``, or has
                fields of the wrong type.
        """
        if not isinstance(data, dict):
            raise InvalidTokenResponse("expected a JSON object")
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise InvalidTokenResponse("missing 'access_token'")

        obtained = _as_utc(obtained_at) or utcnow()
        expires_at: Optional[datetime] = None
        expires_in = data.get("expires_in")
        if expires_in is not None:
            try:
                expires_at = obtained + timedelta(seconds=float(expires_in))
            except (TypeError, ValueError, OverflowError):
                raise InvalidTokenResponse(f"unusable 'expires_in': {expires_in!r}") from None

        refresh_token = data.get("refresh_token")
        scope = data.get("scope")
        if isinstance(scope, list):
            scope = " ".join(str(s) for s in scope)

        try:
            return cls(
                access_token=access_token,
                token_type=data.get("token_type") or "Bearer",
                expires_at=expires_at,
                refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
                scope=scope if isinstance(scope, str) else None,
                obtained_at=obtained,
            )
        except ValidationError as exc:
            raise InvalidTokenResponse(f"malformed token response: {exc.error_count()} invalid field(s)") from exc

    def is_expired(self, margin: float = 60.0, now: Optional[datetime] = None) -> bool:
        """Return True if the token is expired or expires within *margin* seconds.

        Tokens without ``expires_at`` never expire.
        """
        if self.expires_at is None:
            return False
        current = _as_utc(now) or utcnow()
        return current + timedelta(seconds=margin) >= self.expires_at

    @property
    def can_refresh(self) -> bool:
        return self.refresh_token is not None

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []

    def authorization_header(self) -> str:
        """Value for the ``Authorization`` header, e.g. ``Bearer abc``."""
        token_type = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{token_type} {self.access_token}"


# --- Configuration models ---


class ServerProfile(BaseModel):
    """Per-server profile stored as JSON under the ``servers/`` config directory.

    A profile holds everything needed to build an :class:`OAuthConfig`
    except the client secret, which is referenced through a credential
    source (``env:VAR``, ``file:/path``, ``prompt``, or
    ``keyring:service:account``) and resolved at use time by
    :func:`~pkceflow.config.build_oauth_config`.

    See Also:
        :func:`~pkceflow.config.load_server`: Deserialise a profile by name.
        :func:`~pkceflow.config.save_server`: Persist a profile to disk.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    client_id: str
    client_secret_source: Optional[str] = Field(
        default=None, description="Credential source for the client secret"
    )
    authorization_url: str
    token_url: str
    scopes: list[str] = Field(default_factory=list)
    redirect_uri: str = Field(description="Loopback URL or custom-scheme callback URL")
    use_pkce: bool = True
    pkce_method: PKCEMethod = PKCEMethod.S256
    scope_separator: str = " "
    additional_params: dict[str, str] = Field(default_factory=dict)
    resource: Optional[str] = None
    server_url: Optional[str] = Field(
        default=None, description="Protected resource URL the profile was discovered from"
    )

    def to_oauth_config(self, client_secret: Optional[str] = None) -> OAuthConfig:
        """Build the immutable flow configuration for this profile."""
        return OAuthConfig(
            client_id=self.client_id,
            client_secret=client_secret,
            authorization_url=self.authorization_url,
            token_url=self.token_url,
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            use_pkce=self.use_pkce,
            pkce_method=self.pkce_method,
            scope_separator=self.scope_separator,
            additional_params=self.additional_params,
            resource=self.resource,
        )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/pkceflow/config.json``.

    Loaded and saved by :func:`~pkceflow.config.load_global_config` and
    :func:`~pkceflow.config.save_global_config`. Fields here have the
    lowest precedence; see :func:`~pkceflow.config.resolve_config`.
    """

    default_server: Optional[str] = None
    auto_select_single_server: bool = True
    token_store: str = Field(default="file", description="Token store: file, keyring, memory")
    keyring_service: str = "pkceflow-tokens"
    refresh_margin_seconds: int = Field(default=60, ge=0)
    pending_ttl_seconds: int = Field(default=600, ge=1)
    callback_timeout_seconds: int = Field(default=300, ge=1)
    http_timeout_seconds: int = Field(default=30, ge=1)

    @field_validator("token_store")
    @classmethod
    def _check_token_store(cls, value: str) -> str:
        if value not in ("file", "keyring", "memory"):
            raise ValueError("token_store must be one of: file, keyring, memory")
        return value


# --- Discovery models ---


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (:rfc:`9728`)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    resource: Optional[str] = None
    authorization_servers: list[str] = Field(default_factory=list)
    scopes_supported: Optional[list[str]] = None
    bearer_methods_supported: Optional[list[str]] = None
    resource_documentation: Optional[str] = None


class AuthorizationServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (:rfc:`8414`)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: Optional[str] = None
    scopes_supported: Optional[list[str]] = None
    response_types_supported: Optional[list[str]] = None
    grant_types_supported: Optional[list[str]] = None
    code_challenge_methods_supported: Optional[list[str]] = None
    token_endpoint_auth_methods_supported: Optional[list[str]] = None

    @property
    def supports_pkce(self) -> bool:
        return "S256" in (self.code_challenge_methods_supported or [])

    @property
    def supports_dynamic_registration(self) -> bool:
        return self.registration_endpoint is not None


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration request body (:rfc:`7591`)."""

    redirect_uris: list[str]
    token_endpoint_auth_method: str = "none"
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code", "refresh_token"])
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    client_name: Optional[str] = None
    client_uri: Optional[str] = None
    scope: Optional[str] = None


class ClientRegistrationResponse(BaseModel):
    """Dynamic client registration response (:rfc:`7591`)."""

    model_config = ConfigDict(extra="ignore")

    client_id: str
    client_secret: Optional[str] = None
    client_secret_expires_at: Optional[int] = None
    registration_access_token: Optional[str] = None
    registration_client_uri: Optional[str] = None


class DiscoveredOAuthConfig(BaseModel):
    """OAuth settings assembled from discovered metadata and registration."""

    resource_url: str
    authorization_url: str
    token_url: str
    client_id: str
    client_secret: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    supports_pkce: bool = True

    def to_oauth_config(
        self,
        redirect_uri: Optional[str] = None,
        redirect_scheme: Optional[str] = None,
    ) -> OAuthConfig:
        """Convert to a flow configuration bound to this resource."""
        return OAuthConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            authorization_url=self.authorization_url,
            token_url=self.token_url,
            scopes=self.scopes,
            redirect_uri=redirect_uri or "",
            redirect_scheme=redirect_scheme,
            use_pkce=self.supports_pkce,
            resource=self.resource_url,
        )

    def to_profile(
        self,
        name: str,
        redirect_uri: str,
        client_secret_source: Optional[str] = None,
    ) -> ServerProfile:
        """Convert to a persistable server profile.

        The client secret itself is never written to the profile; pass a
        credential source that points at wherever it was stored.
        """
        return ServerProfile(
            name=name,
            client_id=self.client_id,
            client_secret_source=client_secret_source,
            authorization_url=self.authorization_url,
            token_url=self.token_url,
            scopes=self.scopes,
            redirect_uri=redirect_uri,
            use_pkce=self.supports_pkce,
            resource=self.resource_url,
            server_url=self.resource_url,
        )
