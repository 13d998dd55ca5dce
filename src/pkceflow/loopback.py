"""Loopback redirect receiver for command-line use.

Native and CLI clients without a custom URL scheme register a
``http://127.0.0.1:<port>/<path>`` redirect URI (:rfc:`8252` section 7.3).
:class:`LoopbackCallbackServer` binds that address *before* the browser is
opened, serves exactly one matching request on a daemon thread, answers
with a short HTML page, and hands the full redirect URL to the event loop.

Example::

    async with LoopbackCallbackServer(port=8765) as server:
        flow.register_server("github", config.model_copy(update={"redirect_uri": server.redirect_uri}))
        url = flow.build_authorization_url(...)
        callback_url = await server.wait(timeout=300)
"""

from __future__ import annotations

import asyncio
import html
import logging
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, urlsplit

from pkceflow.exceptions import FlowCancelled, NetworkError

logger = logging.getLogger(__name__)

_SUCCESS_BODY = "Authorization complete. You can close this window and return to the terminal."


def find_free_port(host: str = "127.0.0.1") -> int:
    """Find a free TCP port on *host*."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def _make_handler(path: str, deliver: Callable[[str], None]) -> type[BaseHTTPRequestHandler]:
    class CallbackHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            parts = urlsplit(self.path)
            if parts.path.rstrip("/") != path.rstrip("/"):
                self.send_error(404)
                return

            params = parse_qs(parts.query)
            if "error" in params:
                message = f"Authorization failed: {params['error'][0]}"
                description = params.get("error_description", [""])[0]
                if description:
                    message += f" - {description}"
            else:
                message = _SUCCESS_BODY

            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.end_headers()
            self.wfile.write(
                f"<html><body><h2>{html.escape(message)}</h2></body></html>".encode("utf-8")
            )
            host, port = self.server.server_address[:2]
            deliver(f"http://{host}:{port}{self.path}")

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("loopback: " + format, *args)

    return CallbackHandler


class LoopbackCallbackServer:
    """Receive one authorization redirect on ``127.0.0.1``.

    Args:
        port: Port to bind; ``0`` picks a free one.
        path: Redirect path; other paths get a 404 and keep the server waiting.
        host: Loopback address to bind.
    """

    def __init__(self, port: int = 0, path: str = "/callback", host: str = "127.0.0.1") -> None:
        self._host = host
        self._port = port
        self._path = path if path.startswith("/") else f"/{path}"
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._future: Optional[asyncio.Future[str]] = None
        self._stopping = threading.Event()

    @property
    def redirect_uri(self) -> str:
        if self._server is None:
            raise RuntimeError("LoopbackCallbackServer is not started")
        return f"http://{self._host}:{self._server.server_address[1]}{self._path}"

    async def __aenter__(self) -> LoopbackCallbackServer:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.stop()

    def start(self) -> None:
        """Bind the socket and start serving on a daemon thread.

        Raises:
            NetworkError: If the address cannot be bound.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        self._future = future

        def deliver(url: str) -> None:
            loop.call_soon_threadsafe(_resolve, future, url)

        try:
            self._server = HTTPServer((self._host, self._port), _make_handler(self._path, deliver))
        except OSError as exc:
            raise NetworkError(f"cannot listen on {self._host}:{self._port}: {exc}") from exc
        self._server.timeout = 0.5
        self._thread = threading.Thread(
            target=self._serve, name="pkceflow-loopback", daemon=True
        )
        self._thread.start()
        logger.debug("Listening for the redirect on %s", self.redirect_uri)

    def _serve(self) -> None:
        assert self._server is not None and self._future is not None
        while not self._stopping.is_set() and not self._future.done():
            self._server.handle_request()

    async def wait(self, timeout: Optional[float] = None) -> str:
        """Return the redirect URL once the browser arrives.

        Raises:
            FlowCancelled: On timeout.
        """
        if self._future is None:
            raise RuntimeError("LoopbackCallbackServer is not started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout)
        except asyncio.TimeoutError:
            raise FlowCancelled(
                f"Timed out after {timeout:g}s waiting for the browser redirect"
            ) from None

    def stop(self) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        if self._server is not None:
            self._server.server_close()
            self._server = None
        if self._future is not None and not self._future.done():
            self._future.cancel()


def _resolve(future: asyncio.Future[str], url: str) -> None:
    if not future.done():
        future.set_result(url)
