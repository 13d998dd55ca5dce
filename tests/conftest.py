"""Shared test fixtures for pkceflow.

Provides config isolation, output reset, an in-process token endpoint
built on :class:`httpx.MockTransport`, a recording delegate, and the CLI
runner. These fixtures are discovered by pytest automatically.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl

import httpx
import pytest

from pkceflow.delegate import AuthProgress, ProgressState
from pkceflow.flow.manager import OAuthFlow
from pkceflow.models import OAuthConfig
from pkceflow.output import OutputFormat, OutputManager, reset_output, set_output
from pkceflow.stores.memory import MemoryTokenStore


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches sys.stdout/sys.stderr at creation time; after
    CliRunner swaps those streams the cached references go stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point XDG_CONFIG_HOME / XDG_DATA_HOME into tmp_path and chdir there.

    Also forces the XDG code path so results do not depend on the host OS,
    and clears ``PKCEFLOW_*`` variables.
    """
    monkeypatch.setattr("pkceflow.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("PKCEFLOW_SERVER", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# OAuth fixtures
# ---------------------------------------------------------------------------


def _make_config(**overrides: Any) -> OAuthConfig:
    values: dict[str, Any] = {
        "client_id": "abc",
        "authorization_url": "https://auth.example.com/authorize",
        "token_url": "https://auth.example.com/token",
        "scopes": ["read", "write"],
        "redirect_scheme": "app",
    }
    values.update(overrides)
    return OAuthConfig(**values)


class TokenEndpointStub:
    """Scripted token endpoint that records every request it receives.

    ``responses`` is consumed in order; the last entry repeats. Each entry
    is ``(status, json_body)``, an :class:`httpx.Response`, or an exception
    to raise (e.g. :class:`httpx.ConnectError`).
    """

    def __init__(self, *responses: Any) -> None:
        self.responses: list[Any] = list(responses) or [
            (200, {"access_token": "tok1", "token_type": "Bearer", "expires_in": 3600})
        ]
        self.requests: list[httpx.Request] = []

    @property
    def forms(self) -> list[dict[str, str]]:
        return [dict(parse_qsl(r.content.decode())) for r in self.requests]

    def grants(self) -> list[str]:
        return [form["grant_type"] for form in self.forms]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        entry = self.responses[min(len(self.requests) - 1, len(self.responses) - 1)]
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, httpx.Response):
            return entry
        status, body = entry
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class RecordingDelegate:
    """AuthDelegate that records calls and answers prompts with ``accept``."""

    def __init__(self, accept: bool = False) -> None:
        self.accept = accept
        self.opened: list[str] = []
        self.prompts: list[tuple[str, str]] = []
        self.progress: list[AuthProgress] = []
        self.on_open: Optional[Callable[[str], Any]] = None

    async def open_authorization_url(self, url: str) -> None:
        self.opened.append(url)
        if self.on_open is not None:
            self.on_open(url)

    async def prompt_reauthentication(self, server_id: str, reason: str) -> bool:
        self.prompts.append((server_id, reason))
        return self.accept

    def authentication_progress(self, progress: AuthProgress) -> None:
        self.progress.append(progress)

    @property
    def states(self) -> list[ProgressState]:
        return [p.state for p in self.progress]


@pytest.fixture
def make_config() -> Callable[..., OAuthConfig]:
    """Factory for the OAuthConfig used throughout the suite (client "abc", scheme "app")."""
    return _make_config


@pytest.fixture
def token_endpoint() -> TokenEndpointStub:
    return TokenEndpointStub()


@pytest.fixture
def delegate() -> RecordingDelegate:
    return RecordingDelegate()


@pytest.fixture
def make_flow(token_endpoint: TokenEndpointStub, delegate: RecordingDelegate) -> Callable[..., OAuthFlow]:
    """Factory for an OAuthFlow wired to the stub endpoint and the recording delegate."""

    def _make(**kwargs: Any) -> OAuthFlow:
        kwargs.setdefault("store", MemoryTokenStore())
        kwargs.setdefault("delegate", delegate)
        kwargs.setdefault("http_client", token_endpoint.client())
        return OAuthFlow(**kwargs)

    return _make


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    from typer.testing import CliRunner

    return CliRunner()
