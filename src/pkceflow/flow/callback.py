"""Parsing of authorization redirect URLs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from pkceflow.exceptions import InvalidCallbackURL


@dataclass(frozen=True)
class CallbackParams:
    """Query parameters of a redirect. Either ``error`` or ``code`` is meaningful."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


def parse_callback_url(url: str) -> CallbackParams:
    """Extract ``code``/``state``/``error`` from a redirect URL.

    Only the query component is consulted. Custom-scheme URLs such as
    ``app://oauth/callback?code=...`` are accepted.

    Raises:
        InvalidCallbackURL: If *url* has no parsable query.
    """
    if not isinstance(url, str) or not url:
        raise InvalidCallbackURL("empty URL")
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise InvalidCallbackURL(str(exc)) from exc
    if not parts.query:
        raise InvalidCallbackURL("no query parameters")

    query = parse_qs(parts.query, keep_blank_values=True)

    def first(name: str) -> Optional[str]:
        values = query.get(name)
        return values[0] if values and values[0] != "" else None

    return CallbackParams(
        code=first("code"),
        state=first("state"),
        error=first("error"),
        error_description=first("error_description"),
    )
