"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import contextlib
import os
import threading

from typing import TYPE_CHECKING, Any
from urllib.error import HTTPError
from urllib.parse import parse_qs, parse_qsl, urlencode, urlparse
from urllib.request import urlopen

import httpx
import pytest

from pedaru.auth.credential_store import MemoryCredentialStore, reset_credential_store
from pedaru.auth.flow import AuthFlowManager
from pedaru.auth.provider import GoogleDriveProvider
from pedaru.auth.types import ClientCredentials
from pedaru.config import clear_settings
from tests.constants import CLIENT_ID, CLIENT_SECRET, FIXED_NOW, HTTP_TIMEOUT, LISTENER_TIMEOUT


if TYPE_CHECKING:
    from collections.abc import Generator


# =============================================================================
# Helpers
# =============================================================================


class FakeClock:
    """Settable stand-in for ``time.time``."""

    def __init__(self, now: float = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TokenEndpoint:
    """Scripted token endpoint served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._responses: list[httpx.Response | Exception] = []

    def respond(self, status_code: int = 200, json: Any = None, text: str | None = None) -> None:
        """Queue the next response."""
        if text is not None:
            self._responses.append(httpx.Response(status_code, text=text))
        else:
            self._responses.append(httpx.Response(status_code, json=json))

    def fail_with(self, exc: Exception) -> None:
        """Make the next request raise ``exc`` at the transport level."""
        self._responses.append(exc)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        if not self._responses:
            return httpx.Response(500, text="no response queued")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def form(self, index: int = -1) -> dict[str, str]:
        """Decoded form body of a recorded request."""
        return dict(parse_qsl(self.requests[index].content.decode("ascii")))


def http_get(url: str) -> tuple[int, str]:
    """GET ``url`` and return ``(status, body)`` without raising on 4xx."""
    try:
        with urlopen(url, timeout=HTTP_TIMEOUT) as resp:  # noqa: S310
            return resp.status, resp.read().decode("utf-8")
    except HTTPError as exc:
        with contextlib.closing(exc):
            return exc.code, exc.read().decode("utf-8")


def callback_url(authorize_url: str, **params: str) -> str:
    """Build a redirect to the listener named in ``authorize_url``."""
    query = parse_qs(urlparse(authorize_url).query)
    return f"{query['redirect_uri'][0]}?{urlencode(params)}"


def url_param(url: str, name: str) -> str:
    """Single query parameter of ``url``."""
    return parse_qs(urlparse(url).query)[name][0]


def send_in_background(url: str) -> threading.Thread:
    """Issue a GET to ``url`` from a daemon thread."""
    thread = threading.Thread(target=http_get, args=(url,), daemon=True)
    thread.start()
    return thread


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Keep user config files, env overrides and cached singletons out of tests."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home))
    monkeypatch.chdir(home)
    monkeypatch.delenv("PEDARU_CONFIG_FILE", raising=False)
    for var in [v for v in os.environ if v.startswith("PEDARU_")]:
        monkeypatch.delenv(var, raising=False)
    clear_settings()
    reset_credential_store()
    yield
    clear_settings()
    reset_credential_store()


@pytest.fixture()
def clock() -> FakeClock:
    """A fake clock pinned to FIXED_NOW."""
    return FakeClock()


@pytest.fixture()
def credentials() -> ClientCredentials:
    """Sample client credentials."""
    return ClientCredentials(client_id=CLIENT_ID, client_secret=CLIENT_SECRET)


@pytest.fixture()
def store(clock: FakeClock, credentials: ClientCredentials) -> MemoryCredentialStore:
    """A memory store that already holds client credentials."""
    memory = MemoryCredentialStore(clock=clock)
    memory.save_credentials(credentials)
    return memory


@pytest.fixture()
def token_endpoint() -> TokenEndpoint:
    """A scripted token endpoint."""
    return TokenEndpoint()


@pytest.fixture()
def provider(token_endpoint: TokenEndpoint) -> Generator[GoogleDriveProvider, None, None]:
    """Google provider whose HTTP client talks to ``token_endpoint``."""
    google = GoogleDriveProvider(timeout=HTTP_TIMEOUT, transport=token_endpoint.transport)
    yield google
    google.close()


@pytest.fixture()
def flow_manager(
    provider: GoogleDriveProvider, store: MemoryCredentialStore
) -> Generator[AuthFlowManager, None, None]:
    """Flow manager listening on an ephemeral loopback port."""
    manager = AuthFlowManager(
        provider,
        store,
        callback_host="127.0.0.1",
        callback_port=0,
        callback_timeout=LISTENER_TIMEOUT,
    )
    yield manager
    manager.shutdown()
