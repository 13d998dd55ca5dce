"""Authorization request construction.

:func:`build_authorization_url` is a pure function of the config and the
pending authorization it belongs to. Registering the pending state is the
caller's job (see :meth:`pkceflow.flow.manager.OAuthFlow.build_authorization_url`).
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pkceflow.models import OAuthConfig
from pkceflow.pending import PendingAuthState

logger = logging.getLogger(__name__)

# Parameters the flow owns; additional_params may not replace them.
RESERVED_PARAMS = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "scope",
        "state",
        "code_challenge",
        "code_challenge_method",
        "resource",
    }
)


def build_authorization_url(config: OAuthConfig, pending: PendingAuthState) -> str:
    """Return the authorization endpoint URL for *pending*.

    Query parameters already present on ``config.authorization_url`` are
    kept. ``client_secret`` is never included.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
    }
    if config.scopes:
        params["scope"] = config.scope_string
    params["state"] = pending.state
    if pending.pkce is not None:
        params["code_challenge"] = pending.pkce.challenge
        params["code_challenge_method"] = pending.pkce.method.value
    if config.resource:
        params["resource"] = config.resource

    for key, value in config.additional_params.items():
        if key in RESERVED_PARAMS or key == "client_secret":
            logger.warning("Ignoring additional parameter '%s': reserved by the flow", key)
            continue
        params[key] = value

    parts = urlsplit(config.authorization_url)
    existing = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query = urlencode(existing + list(params.items()))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))
