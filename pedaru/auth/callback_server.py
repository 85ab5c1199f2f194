"""Single-shot loopback HTTP listener for the OAuth2 redirect.

Binds the registered redirect address, serves requests one at a time
until one request to the callback path has been handled or the timeout
elapses, then unbinds. Verification and code exchange are delegated to a
handler callable; this module only parses the redirect and renders the
result page for the browser.

Uses only stdlib (http.server, threading, urllib.parse).
"""

# pylint: disable=logging-too-many-args

# pylint: disable=C0103,W0212

from __future__ import annotations

import html
import logging
import threading
import time

from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from ..exceptions import CallbackServerFailed
from .types import CallbackOutcome


if TYPE_CHECKING:
    from collections.abc import Callable

    CallbackHandler = Callable[[dict[str, str | None]], CallbackOutcome]


logger = logging.getLogger("pedaru.auth")

_PAGE_STYLE = """
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  h1.error { color: #cc0000; }
  p { color: #666; }
"""

_SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication Successful</title><style>{style}</style></head>
<body><div class="card">
  <h1>Authentication Successful!</h1>
  <p>{message}</p>
</div>
<script>setTimeout(() => window.close(), 2000);</script>
</body></html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication Failed</title><style>{style}</style></head>
<body><div class="card">
  <h1 class="error">Authentication Failed</h1>
  <p>{message}</p>
</div></body></html>"""

_WAITING_HTML = """<!DOCTYPE html>
<html>
<head><title>Waiting for Authentication</title><style>{style}</style></head>
<body><div class="card">
  <h1>Waiting for authentication&hellip;</h1>
  <p>Please complete the sign-in in your browser.</p>
</div></body></html>"""


def render_page(outcome: CallbackOutcome) -> str:
    """Render the result page for ``outcome`` with its message HTML-escaped."""
    template = _SUCCESS_HTML if outcome.success else _ERROR_HTML
    return template.format(style=_PAGE_STYLE, message=html.escape(outcome.message, quote=True))


class OAuthCallbackServer:
    """Terminal, single-shot localhost HTTP listener for OAuth2 redirects.

    Parameters
    ----------
    handler : callable
        Invoked synchronously with the parsed query parameters
        (``code``, ``state``, ``error``, ``error_description``) of the one
        callback request. Its :class:`CallbackOutcome` decides the page.
    host : str
        Bind address (default ``"127.0.0.1"``).
    port : int
        Port number (``0`` for an ephemeral port).
    path : str
        Callback path (default ``"/callback"``).
    redirect_host : str, optional
        Host name used in :attr:`redirect_uri` (defaults to ``host``).
    timeout : float
        Seconds to wait for the callback before giving up (default 300).
    poll_interval : float
        Granularity at which :meth:`stop` and the timeout are observed.
    """

    def __init__(
        self,
        handler: CallbackHandler,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = "/callback",
        redirect_host: str | None = None,
        timeout: float = 300.0,
        poll_interval: float = 0.25,
    ) -> None:
        """Initialize the callback server."""
        self._handler = handler
        self._host = host
        self._port = port
        self._path = path
        self._redirect_host = redirect_host or host
        self._timeout = timeout
        self._poll_interval = poll_interval

        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._done_event = threading.Event()
        self._outcome: CallbackOutcome | None = None
        self._actual_port: int = 0

    @property
    def redirect_uri(self) -> str:
        """The redirect URI served by this listener.

        Returns
        -------
        str
            The full redirect URI (e.g. ``http://localhost:8585/callback``).
        """
        return f"http://{self._redirect_host}:{self._actual_port}{self._path}"

    @property
    def port(self) -> int:
        """The bound port (0 before :meth:`bind`)."""
        return self._actual_port

    @property
    def outcome(self) -> CallbackOutcome | None:
        """Outcome of the handled callback, or None if none was handled."""
        return self._outcome

    def is_running(self) -> bool:
        """Whether the listener thread is still alive."""
        return self._thread is not None and self._thread.is_alive()

    def bind(self) -> str:
        """Bind the listening socket without serving yet.

        Returns
        -------
        str
            The redirect URI to register with the authorization request.

        Raises
        ------
        CallbackServerFailed
            If the address cannot be bound (e.g. the port is in use).
        """
        if self._server is not None:
            return self.redirect_uri
        try:
            self._server = HTTPServer((self._host, self._port), self._make_handler())
        except OSError as exc:
            msg = f"OAuth callback server failed to start on {self._host}:{self._port}: {exc}"
            raise CallbackServerFailed(msg) from exc
        self._actual_port = self._server.server_address[1]
        return self.redirect_uri

    def start(self) -> str:
        """Bind if needed and start serving on a daemon thread.

        Returns
        -------
        str
            The redirect URI.
        """
        redirect_uri = self.bind()
        self._thread = threading.Thread(
            target=self._serve, name="pedaru-oauth-callback", daemon=True
        )
        self._thread.start()
        logger.debug("OAuth callback server started on %s", redirect_uri)
        return redirect_uri

    def wait(self, timeout: float | None = None) -> CallbackOutcome | None:
        """Block until a callback has been handled or ``timeout`` expires.

        Returns
        -------
        CallbackOutcome or None
            The outcome, or None if no callback was handled in time or the
            listener exited without one.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._done_event.is_set():
            if self._thread is not None and not self._thread.is_alive():
                break
            wait_for = self._poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                wait_for = min(wait_for, remaining)
            self._done_event.wait(timeout=wait_for)
        return self._outcome if self._done_event.is_set() else None

    def stop(self, timeout: float = 5.0) -> None:
        """Ask the listener to exit and wait for it to unbind."""
        self._stop_event.set()
        self.join(timeout)
        if self._thread is None and self._server is not None:
            # Bound but never started
            self._server.server_close()
            self._server = None

    def join(self, timeout: float | None = None) -> None:
        """Wait for the listener thread to exit."""
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _serve(self) -> None:
        """Serve until one callback is handled, the timeout elapses, or stop() is called."""
        server = self._server
        if server is None:
            return
        deadline = time.monotonic() + self._timeout
        try:
            while not self._done_event.is_set() and not self._stop_event.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.info("OAuth callback server timed out after %ss", self._timeout)
                    break
                server.timeout = min(self._poll_interval, remaining)
                server.handle_request()
        finally:
            server.server_close()
            self._server = None
            logger.debug("OAuth callback server stopped")

    def _dispatch(self, params: dict[str, str | None]) -> CallbackOutcome:
        """Run the handler for the single callback request."""
        try:
            outcome = self._handler(params)
        except Exception:
            logger.exception("OAuth callback handler failed")
            outcome = CallbackOutcome(success=False, message="Please try again.")
        self._outcome = outcome
        return outcome

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        server_ref = self

        class _CallbackHandler(BaseHTTPRequestHandler):
            """HTTP request handler for OAuth2 callbacks."""

            def do_GET(self) -> None:
                """Handle GET requests."""
                parsed = urlparse(self.path)

                if parsed.path == server_ref._path:
                    if server_ref._done_event.is_set():
                        self._send_html(render_page(CallbackOutcome(False, "Already handled.")))
                        return
                    query = parse_qs(parsed.query, keep_blank_values=True)
                    params: dict[str, str | None] = {
                        key: query.get(key, [None])[0]
                        for key in ("code", "state", "error", "error_description")
                    }
                    outcome = server_ref._dispatch(params)
                    self._send_html(render_page(outcome))
                    server_ref._done_event.set()
                elif parsed.path == "/":
                    self._send_html(_WAITING_HTML.format(style=_PAGE_STYLE))
                else:
                    self.send_error(404)

            def _send_html(self, html_content: str) -> None:
                """Send an HTML response with security headers."""
                encoded = html_content.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.send_header("Cache-Control", "no-store")
                self.send_header(
                    "Content-Security-Policy",
                    "default-src 'none'; style-src 'unsafe-inline'; script-src 'unsafe-inline'",
                )
                self.send_header("X-Content-Type-Options", "nosniff")
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, *args: Any) -> None:  # noqa: ARG002
                """Redirect HTTP server logging to the pedaru logger, without the query."""
                logger.debug(
                    "OAuth callback server: %s %s",
                    getattr(self, "command", ""),
                    urlparse(getattr(self, "path", "")).path,
                )

        return _CallbackHandler
