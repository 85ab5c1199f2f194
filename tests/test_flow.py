"""Tests for the authorization flow: state verification, supersession and code exchange."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import socket
import threading

from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest

from pedaru.auth.credential_store import MemoryCredentialStore
from pedaru.auth.flow import AuthFlowManager
from pedaru.auth.flow_state import FlowStateHolder
from pedaru.auth.pkce import generate_code_challenge
from pedaru.auth.types import FlowState, TokenSet
from pedaru.exceptions import (
    AuthorizationFailed,
    CallbackServerFailed,
    NotConfigured,
    TokenExchangeFailed,
)
from tests.conftest import callback_url, http_get, send_in_background, url_param
from tests.constants import FIXED_NOW, JOIN_TIMEOUT, LISTENER_TIMEOUT, SHORT_LISTENER_TIMEOUT


if TYPE_CHECKING:
    from pedaru.auth.provider import GoogleDriveProvider
    from tests.conftest import FakeClock, TokenEndpoint


@pytest.fixture()
def exchange() -> MagicMock:
    """Stand-in for the code exchange step."""
    return MagicMock(return_value=None)


@pytest.fixture()
def stubbed_manager(
    provider: GoogleDriveProvider, store: MemoryCredentialStore, exchange: MagicMock
) -> AuthFlowManager:
    """Flow manager whose exchange step is a mock and whose listener is never started."""
    return AuthFlowManager(provider, store, callback_port=0, exchange=exchange)


def _activate(manager: AuthFlowManager, state: str = "expected-state") -> FlowState:
    flow = FlowState(
        code_verifier="v" * 43, state=state, redirect_uri="http://127.0.0.1:1/callback"
    )
    manager._flows.replace(flow)  # pylint: disable=protected-access
    return flow


class TestFlowStateHolder:
    """Tests for the single-slot flow state holder."""

    def test_replace_returns_previous(self) -> None:
        """Replacing reports the superseded attempt."""
        holder = FlowStateHolder()
        first = FlowState("v1", "s1", "r")
        second = FlowState("v2", "s2", "r")
        assert holder.replace(first) is None
        assert holder.replace(second) is first
        assert holder.current() is second

    def test_match_requires_exact_state(self) -> None:
        """Only the live state matches, and the matched attempt is returned."""
        holder = FlowStateHolder()
        assert holder.match("s1") is None
        flow = FlowState("v1", "s1", "r")
        holder.replace(flow)
        assert holder.match("s1") is flow
        assert holder.match("S1") is None
        assert holder.match(None) is None
        assert holder.match("") is None

    def test_clear_expected(self) -> None:
        """Clearing with an expected attempt leaves a newer one in place."""
        holder = FlowStateHolder()
        old = FlowState("v1", "s1", "r")
        new = FlowState("v2", "s2", "r")
        holder.replace(old)
        holder.replace(new)

        assert not holder.clear(expected=old)
        assert holder.current() is new
        assert holder.clear(expected=new)
        assert holder.current() is None


class TestHandleCallback:
    """Tests for redirect verification."""

    def test_state_mismatch_never_exchanges(
        self, stubbed_manager: AuthFlowManager, exchange: MagicMock
    ) -> None:
        """A wrong state is rejected before any network call."""
        flow = _activate(stubbed_manager)

        outcome = stubbed_manager.handle_callback({"code": "c", "state": "attacker-state"})

        assert not outcome.success
        assert outcome.message == "State verification failed."
        exchange.assert_not_called()
        assert stubbed_manager.flow_state is flow

    def test_missing_state_rejected(
        self, stubbed_manager: AuthFlowManager, exchange: MagicMock
    ) -> None:
        """A callback without a state is rejected."""
        _activate(stubbed_manager)
        outcome = stubbed_manager.handle_callback({"code": "c", "state": None})
        assert not outcome.success
        exchange.assert_not_called()

    def test_no_active_flow_rejected(
        self, stubbed_manager: AuthFlowManager, exchange: MagicMock
    ) -> None:
        """Without an active attempt every state fails verification."""
        outcome = stubbed_manager.handle_callback({"code": "c", "state": "anything"})
        assert outcome.message == "State verification failed."
        exchange.assert_not_called()

    def test_provider_error(self, stubbed_manager: AuthFlowManager, exchange: MagicMock) -> None:
        """An error redirect reports the provider's description."""
        _activate(stubbed_manager)
        outcome = stubbed_manager.handle_callback(
            {"error": "access_denied", "error_description": "The user denied access"}
        )
        assert not outcome.success
        assert outcome.message == "Error: The user denied access"
        exchange.assert_not_called()

    def test_provider_error_without_description(self, stubbed_manager: AuthFlowManager) -> None:
        """The error code is shown when there is no description."""
        outcome = stubbed_manager.handle_callback({"error": "access_denied"})
        assert outcome.message == "Error: access_denied"

    def test_missing_code(self, stubbed_manager: AuthFlowManager, exchange: MagicMock) -> None:
        """A redirect with neither code nor error is rejected."""
        _activate(stubbed_manager)
        outcome = stubbed_manager.handle_callback({"state": "expected-state"})
        assert outcome.message == "No authorization code received."
        exchange.assert_not_called()

    def test_verified_callback_exchanges(
        self, stubbed_manager: AuthFlowManager, exchange: MagicMock
    ) -> None:
        """A matching state hands the code and the verified attempt to the exchange step."""
        flow = _activate(stubbed_manager)
        outcome = stubbed_manager.handle_callback({"code": "c-1", "state": "expected-state"})
        assert outcome.success
        assert "return to Pedaru" in outcome.message
        exchange.assert_called_once_with("c-1", flow)

    def test_exchange_failure_reported(
        self, stubbed_manager: AuthFlowManager, exchange: MagicMock
    ) -> None:
        """Exchange errors become a failure outcome with a retry hint."""
        exchange.side_effect = TokenExchangeFailed("Token exchange failed with HTTP 400")
        _activate(stubbed_manager)

        outcome = stubbed_manager.handle_callback({"code": "c", "state": "expected-state"})

        assert not outcome.success
        assert outcome.message == "Token exchange failed with HTTP 400. Please try again."


class TestExchangeCodeForTokens:
    """Tests for the code exchange step."""

    def test_persists_and_consumes_flow(
        self,
        provider: GoogleDriveProvider,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """Tokens are stored with an absolute expiry and the attempt is consumed."""
        manager = AuthFlowManager(provider, store, callback_port=0)
        flow = _activate(manager)
        token_endpoint.respond(
            json={"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600}
        )

        manager.exchange_code_for_tokens("code-1")

        assert store.load_token_set() == TokenSet("AT1", "RT1", int(FIXED_NOW) + 3600)
        assert manager.flow_state is None
        form = token_endpoint.form()
        assert form["code_verifier"] == flow.code_verifier
        assert form["redirect_uri"] == flow.redirect_uri

    def test_without_flow(
        self, provider: GoogleDriveProvider, store: MemoryCredentialStore
    ) -> None:
        """Exchanging with no active attempt fails."""
        manager = AuthFlowManager(provider, store, callback_port=0)
        with pytest.raises(AuthorizationFailed, match="No flow state"):
            manager.exchange_code_for_tokens("code-1")

    def test_without_credentials(
        self, provider: GoogleDriveProvider, clock: FakeClock
    ) -> None:
        """Exchanging without client credentials fails."""
        manager = AuthFlowManager(provider, MemoryCredentialStore(clock=clock), callback_port=0)
        _activate(manager)
        with pytest.raises(NotConfigured):
            manager.exchange_code_for_tokens("code-1")

    def test_rejection_keeps_flow_and_tokens(
        self,
        provider: GoogleDriveProvider,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """A rejected exchange stores nothing."""
        manager = AuthFlowManager(provider, store, callback_port=0)
        _activate(manager)
        token_endpoint.respond(400, json={"error": "invalid_grant"})

        with pytest.raises(TokenExchangeFailed):
            manager.exchange_code_for_tokens("code-1")
        assert store.load_token_set() is None

    def test_restart_between_verification_and_exchange(
        self,
        provider: GoogleDriveProvider,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """The verified attempt's verifier is used and a newer attempt survives."""
        manager = AuthFlowManager(provider, store, callback_port=0)
        first = _activate(manager, state="first-state")
        second = FlowState(
            code_verifier="w" * 43,
            state="second-state",
            redirect_uri="http://127.0.0.1:2/callback",
        )
        token_endpoint.respond(
            json={"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600}
        )
        flows = manager._flows  # pylint: disable=protected-access
        verify = flows.match

        def verify_then_restart(state: str | None) -> FlowState | None:
            matched = verify(state)
            flows.replace(second)
            return matched

        with patch.object(flows, "match", side_effect=verify_then_restart):
            outcome = manager.handle_callback({"code": "c-1", "state": "first-state"})

        form = token_endpoint.form()
        assert form["code_verifier"] == first.code_verifier
        assert form["redirect_uri"] == first.redirect_uri
        assert not outcome.success
        assert "superseded" in outcome.message
        assert store.load_token_set() is None
        assert manager.flow_state is second


class TestStartFlow:
    """Tests for starting authorization attempts."""

    def test_not_configured(self, provider: GoogleDriveProvider, clock: FakeClock) -> None:
        """Without credentials no listener is started and no state is created."""
        manager = AuthFlowManager(provider, MemoryCredentialStore(clock=clock), callback_port=0)

        with pytest.raises(NotConfigured):
            manager.start_flow()

        assert manager.flow_state is None
        assert manager.callback_server is None

    def test_authorize_url_matches_flow(self, flow_manager: AuthFlowManager) -> None:
        """The URL carries the active state, S256 challenge and listener redirect."""
        url = flow_manager.start_flow()
        flow = flow_manager.flow_state
        server = flow_manager.callback_server

        assert flow is not None
        assert server is not None
        assert server.is_running()
        assert url_param(url, "state") == flow.state
        assert url_param(url, "code_challenge") == generate_code_challenge(flow.code_verifier)
        assert url_param(url, "code_challenge_method") == "S256"
        assert url_param(url, "redirect_uri") == flow.redirect_uri == server.redirect_uri
        assert url_param(url, "access_type") == "offline"
        assert url_param(url, "prompt") == "consent"

    def test_fresh_values_per_attempt(self, flow_manager: AuthFlowManager) -> None:
        """Each attempt gets its own verifier and state."""
        first_url = flow_manager.start_flow()
        first = flow_manager.flow_state
        second_url = flow_manager.start_flow()
        second = flow_manager.flow_state

        assert first is not None
        assert second is not None
        assert first.state != second.state
        assert first.code_verifier != second.code_verifier
        assert url_param(first_url, "state") != url_param(second_url, "state")

    def test_port_in_use(
        self, provider: GoogleDriveProvider, store: MemoryCredentialStore
    ) -> None:
        """A busy callback port surfaces as CallbackServerFailed and leaves no state."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            manager = AuthFlowManager(provider, store, callback_port=sock.getsockname()[1])

            with pytest.raises(CallbackServerFailed):
                manager.start_flow()

        assert manager.flow_state is None


class TestFlowOverLoopback:
    """End-to-end attempts through the real loopback listener."""

    def test_successful_sign_in(
        self,
        flow_manager: AuthFlowManager,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """Consent, redirect, exchange and persistence in one pass."""
        token_endpoint.respond(
            json={"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600}
        )
        url = flow_manager.start_flow()
        flow = flow_manager.flow_state
        assert flow is not None

        status, body = http_get(callback_url(url, code="auth-code", state=url_param(url, "state")))

        assert status == 200
        assert "Authentication Successful" in body
        assert store.load_token_set() == TokenSet("AT1", "RT1", int(FIXED_NOW) + 3600)
        assert flow_manager.flow_state is None

        form = token_endpoint.form()
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["code_verifier"] == flow.code_verifier

        outcome = flow_manager.wait(JOIN_TIMEOUT)
        assert outcome is not None
        assert outcome.success

    def test_user_denies_consent(
        self,
        flow_manager: AuthFlowManager,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """An error redirect shows a failure page and stores nothing."""
        url = flow_manager.start_flow()

        with patch.object(store, "save_token_set", wraps=store.save_token_set) as save:
            status, body = http_get(
                callback_url(url, error="access_denied", state=url_param(url, "state"))
            )

        assert status == 200
        assert "Authentication Failed" in body
        assert "access_denied" in body
        save.assert_not_called()
        assert token_endpoint.requests == []
        assert store.load_token_set() is None

    def test_exchange_rejected(
        self,
        flow_manager: AuthFlowManager,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """A rejected code shows the failure and stores nothing."""
        token_endpoint.respond(400, json={"error": "invalid_grant"})
        url = flow_manager.start_flow()

        _, body = http_get(callback_url(url, code="stale", state=url_param(url, "state")))

        assert "Token exchange failed with HTTP 400. Please try again." in body
        assert store.load_token_set() is None

    def test_superseded_attempt_rejected(
        self,
        flow_manager: AuthFlowManager,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """A callback for an older attempt cannot complete the newer one."""
        first_url = flow_manager.start_flow()
        first_server = flow_manager.callback_server
        second_url = flow_manager.start_flow()

        assert first_server is not None
        assert not first_server.is_running()

        _, body = http_get(
            callback_url(second_url, code="old-code", state=url_param(first_url, "state"))
        )

        assert "State verification failed." in body
        assert token_endpoint.requests == []
        assert store.load_token_set() is None

    def test_restart_during_exchange_reuses_port(
        self,
        provider: GoogleDriveProvider,
        store: MemoryCredentialStore,
        token_endpoint: TokenEndpoint,
    ) -> None:
        """A restart waits for an in-flight exchange and then binds the same port."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            port = sock.getsockname()[1]
        manager = AuthFlowManager(provider, store, callback_port=port)
        token_endpoint.respond(
            json={"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600}
        )
        in_exchange = threading.Event()
        release = threading.Event()
        real_exchange = provider.exchange_code

        def slow_exchange(**kwargs: object) -> object:
            in_exchange.set()
            release.wait(JOIN_TIMEOUT)
            return real_exchange(**kwargs)  # type: ignore[arg-type]

        try:
            with patch.object(provider, "exchange_code", side_effect=slow_exchange):
                first_url = manager.start_flow()
                first_server = manager.callback_server
                assert first_server is not None
                send_in_background(
                    callback_url(first_url, code="c-1", state=url_param(first_url, "state"))
                )
                assert in_exchange.wait(JOIN_TIMEOUT)

                timer = threading.Timer(0.2, release.set)
                timer.start()
                with patch.object(first_server, "stop", wraps=first_server.stop) as stop:
                    second_url = manager.start_flow()
                timer.join()

            assert stop.call_args.args[0] > provider.timeout
            assert store.load_token_set() == TokenSet("AT1", "RT1", int(FIXED_NOW) + 3600)
            assert not first_server.is_running()
            assert url_param(second_url, "redirect_uri") == url_param(first_url, "redirect_uri")
            server = manager.callback_server
            assert server is not None
            assert server.is_running()
            flow = manager.flow_state
            assert flow is not None
            assert flow.state == url_param(second_url, "state")
        finally:
            release.set()
            manager.shutdown()

    def test_listener_timeout_keeps_flow(
        self, provider: GoogleDriveProvider, store: MemoryCredentialStore
    ) -> None:
        """A listener that gives up leaves the attempt for a later restart to replace."""
        manager = AuthFlowManager(
            provider, store, callback_port=0, callback_timeout=SHORT_LISTENER_TIMEOUT
        )
        try:
            manager.start_flow()
            assert manager.wait(JOIN_TIMEOUT) is None
            server = manager.callback_server
            assert server is not None
            server.join(JOIN_TIMEOUT)
            assert not server.is_running()
            assert manager.flow_state is not None
        finally:
            manager.shutdown()

    def test_shutdown_stops_listener(self, flow_manager: AuthFlowManager) -> None:
        """shutdown() stops the listener."""
        flow_manager.start_flow()
        server = flow_manager.callback_server
        assert server is not None

        flow_manager.shutdown()

        assert not server.is_running()
        assert flow_manager.callback_server is None
        assert flow_manager.wait(LISTENER_TIMEOUT) is None
