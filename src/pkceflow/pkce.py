"""PKCE (:rfc:`7636`) verifier/challenge generation and state nonces.

Randomness comes from :mod:`secrets`. If the operating system cannot
supply secure random bytes the resulting exception propagates; there is
no fallback and no retry.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

from pkceflow.models import PKCEMethod

# 64 bytes -> 86 base64url chars, inside the 43-128 range required by RFC 7636
_VERIFIER_BYTES = 64
_VERIFIER_MAX_LENGTH = 128
_STATE_BYTES = 32


@dataclass(frozen=True)
class PKCEPair:
    """A code verifier with its derived challenge.

    Lives only as long as one pending authorization.
    """

    verifier: str
    challenge: str
    method: PKCEMethod = PKCEMethod.S256


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def compute_challenge(verifier: str, method: PKCEMethod = PKCEMethod.S256) -> str:
    """Derive the code challenge for *verifier*.

    ``S256`` is ``base64url(SHA256(ascii(verifier)))`` without padding;
    ``plain`` is the verifier itself.
    """
    if method == PKCEMethod.PLAIN:
        return verifier
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_pkce_pair(method: PKCEMethod = PKCEMethod.S256) -> PKCEPair:
    """Generate a fresh PKCE verifier/challenge pair.

    Args:
        method: Challenge method, ``S256`` unless the server only
            supports ``plain``.

    Returns:
        A :class:`PKCEPair` whose verifier is 43-128 URL-safe characters.
    """
    verifier = secrets.token_urlsafe(_VERIFIER_BYTES)[:_VERIFIER_MAX_LENGTH]
    return PKCEPair(verifier=verifier, challenge=compute_challenge(verifier, method), method=method)


def generate_state() -> str:
    """Opaque single-use value for CSRF protection; echoed back in the callback."""
    return secrets.token_urlsafe(_STATE_BYTES)
