"""Local OAuth callback server."""

from __future__ import annotations

import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable

from wscli.auth.constants import REDIRECT_HOST, REDIRECT_PORT, SUCCESS_HTML


class _OAuthHandler(BaseHTTPRequestHandler):
    """Loopback redirect handler."""

    server_version = "wscliOAuth/1.0"
    protocol_version = "HTTP/1.1"

    def _reply(self, status: int, body: bytes, content_type: str = "text/plain; charset=utf-8") -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)
        self.close_connection = True

    def do_GET(self) -> None:  # noqa: N802
        url = urllib.parse.urlparse(self.path)
        if url.path not in ("", "/"):
            self._reply(404, b"Not found")
            return

        qs = urllib.parse.parse_qs(url.query)
        error = qs.get("error", [None])[0]
        code = qs.get("code", [None])[0]
        state = qs.get("state", [None])[0]

        if error:
            self._reply(400, f"Authorization denied: {error}".encode("utf-8"))
            self.server.notify(None, error)
            return

        if state != self.server.expected_state:
            self._reply(400, b"State mismatch")
            return

        if not code:
            self._reply(400, b"Missing code")
            return

        self._reply(200, SUCCESS_HTML.encode("utf-8"), "text/html; charset=utf-8")
        self.server.notify(code, None)

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
        return


class _OAuthServer(HTTPServer):
    """Callback server that remembers the expected state."""

    def __init__(
        self,
        server_address: tuple[str, int],
        expected_state: str,
        on_result: Callable[[str | None, str | None], None] | None = None,
    ):
        super().__init__(server_address, _OAuthHandler)
        self.expected_state = expected_state
        self.code: str | None = None
        self.on_result = on_result

    def notify(self, code: str | None, error: str | None) -> None:
        self.code = code
        if self.on_result:
            self.on_result(code, error)


def _start_local_server(
    state: str,
    on_result: Callable[[str | None, str | None], None] | None = None,
    host: str = REDIRECT_HOST,
    port: int = REDIRECT_PORT,
) -> tuple[_OAuthServer | None, str | None]:
    """Start the loopback server in a daemon thread; returns (server, error)."""
    try:
        server = _OAuthServer((host, port), state, on_result=on_result)
    except OSError as exc:
        return None, f"Failed to bind to {host}:{port}: {exc}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return server, None
