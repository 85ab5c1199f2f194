"""OAuth2 authorization flow orchestrator.

Provides AuthFlowManager, which starts authorization attempts (PKCE +
state + loopback listener + authorization URL), verifies the redirect
against the live attempt, and exchanges the authorization code for tokens.

Only one attempt is authoritative at a time: ``start_flow`` always
supersedes any attempt that has not finished, and a callback is accepted
only if its ``state`` equals the state of the attempt that is active when
the callback arrives.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading

from typing import TYPE_CHECKING

from ..exceptions import AuthorizationFailed, NotConfigured, PedaruException
from .callback_server import OAuthCallbackServer
from .flow_state import FlowStateHolder
from .pkce import PKCEChallenge, generate_state
from .types import CallbackOutcome, FlowState


if TYPE_CHECKING:
    from collections.abc import Callable

    from .credential_store import CredentialStore
    from .provider import OAuthProvider


logger = logging.getLogger("pedaru.auth")


class AuthFlowManager:
    """Orchestrates OAuth2 authorization-code + PKCE attempts.

    Parameters
    ----------
    provider : OAuthProvider
        The configured OAuth2 provider.
    store : CredentialStore
        Source of client credentials and sink for issued tokens.
    callback_host : str
        Address the loopback listener binds to.
    callback_port : int
        Listener port (``0`` for an ephemeral port).
    callback_path : str
        Path of the redirect URI.
    redirect_host : str, optional
        Host name used in the redirect URI (defaults to ``callback_host``).
    callback_timeout : float
        Seconds each listener waits for the redirect (default ``300``).
    exchange : callable, optional
        Replaces :meth:`exchange_code_for_tokens` as the step invoked for a
        verified callback. Signature:
        ``exchange(code: str, flow: FlowState) -> None``.
    """

    def __init__(
        self,
        provider: OAuthProvider,
        store: CredentialStore,
        callback_host: str = "127.0.0.1",
        callback_port: int = 8585,
        callback_path: str = "/callback",
        redirect_host: str | None = None,
        callback_timeout: float = 300.0,
        exchange: Callable[[str, FlowState], None] | None = None,
    ) -> None:
        """Initialize the auth flow manager."""
        self.provider = provider
        self.store = store
        self.callback_host = callback_host
        self.callback_port = callback_port
        self.callback_path = callback_path
        self.redirect_host = redirect_host
        self.callback_timeout = callback_timeout
        self._exchange = exchange or self.exchange_code_for_tokens

        self._flows = FlowStateHolder()
        self._start_lock = threading.Lock()
        self._callback_server: OAuthCallbackServer | None = None

    @property
    def flow_state(self) -> FlowState | None:
        """The active authorization attempt, if any."""
        return self._flows.current()

    @property
    def callback_server(self) -> OAuthCallbackServer | None:
        """The listener of the most recent attempt."""
        return self._callback_server

    @property
    def _stop_timeout(self) -> float:
        # A listener busy exchanging a code holds its port until the token request ends
        return self.provider.timeout + 5.0

    def start_flow(self) -> str:
        """Start a new authorization attempt.

        Supersedes any unfinished attempt: its listener is stopped and its
        state can no longer be verified. If that listener is still
        exchanging a code, this waits for the token request to finish so the
        port can be reused. Returns without waiting for the user; the
        listener runs on a background thread.

        Returns
        -------
        str
            The provider authorization URL to open in the browser.

        Raises
        ------
        NotConfigured
            If no client credentials are stored.
        CallbackServerFailed
            If the loopback listener cannot bind its port.
        """
        credentials = self.store.load_credentials()
        if credentials is None:
            raise NotConfigured(provider=self.provider.name)

        pkce = PKCEChallenge.generate()
        state = generate_state()

        with self._start_lock:
            if self._callback_server is not None:
                self._callback_server.stop(self._stop_timeout)

            server = OAuthCallbackServer(
                self.handle_callback,
                host=self.callback_host,
                port=self.callback_port,
                path=self.callback_path,
                redirect_host=self.redirect_host,
                timeout=self.callback_timeout,
            )
            redirect_uri = server.bind()

            previous = self._flows.replace(
                FlowState(code_verifier=pkce.verifier, state=state, redirect_uri=redirect_uri)
            )
            if previous is not None:
                logger.info("Superseding unfinished authorization attempt")

            self._callback_server = server
            server.start()

        logger.info("Authorization started, waiting for callback on %s", redirect_uri)
        return self.provider.build_authorize_url(
            client_id=credentials.client_id,
            redirect_uri=redirect_uri,
            state=state,
            pkce=pkce,
        )

    def handle_callback(self, params: dict[str, str | None]) -> CallbackOutcome:
        """Verify one redirect and, if it belongs to the live attempt, exchange its code.

        Parameters
        ----------
        params : dict
            Decoded query parameters: ``code``, ``state``, ``error``,
            ``error_description``.

        Returns
        -------
        CallbackOutcome
            Success only after the tokens have been persisted.
        """
        error = params.get("error")
        if error:
            detail = params.get("error_description") or error
            logger.warning("OAuth error from provider: %s", detail)
            return CallbackOutcome(success=False, message=f"Error: {detail}")

        code = params.get("code")
        if not code:
            logger.warning("OAuth callback without an authorization code")
            return CallbackOutcome(success=False, message="No authorization code received.")

        received = params.get("state")
        flow = self._flows.match(received)
        if flow is None:
            active = self._flows.current()
            logger.warning(
                "State mismatch! Expected: %r, Received: %r",
                active.state if active else None,
                received,
            )
            return CallbackOutcome(success=False, message="State verification failed.")

        try:
            self._exchange(code, flow)
        except PedaruException as exc:
            logger.error("Token exchange failed: %s", exc)
            return CallbackOutcome(success=False, message=f"{exc.message}. Please try again.")

        logger.info("Authorization completed")
        return CallbackOutcome(
            success=True,
            message="You can close this window and return to Pedaru.",
        )

    def exchange_code_for_tokens(self, code: str, flow: FlowState | None = None) -> None:
        """Exchange ``code`` for tokens, persist them, and consume the attempt.

        Parameters
        ----------
        code : str
            Authorization code from the redirect.
        flow : FlowState, optional
            The attempt the code was verified against. Defaults to the
            active attempt.

        Raises
        ------
        NotConfigured
            If the client credentials disappeared mid-flow.
        AuthorizationFailed
            If there is no active attempt (e.g. after a restart), or ``flow``
            was superseded while its code was being exchanged.
        TokenExchangeFailed, HttpRequestFailed, InvalidResponse
            If the token endpoint call fails.
        """
        credentials = self.store.load_credentials()
        if credentials is None:
            raise NotConfigured(provider=self.provider.name)

        if flow is None:
            flow = self._flows.current()
        if flow is None:
            msg = "No flow state"
            raise AuthorizationFailed(msg, provider=self.provider.name)

        token = self.provider.exchange_code(
            credentials=credentials,
            code=code,
            code_verifier=flow.code_verifier,
            redirect_uri=flow.redirect_uri,
        )
        if not self._flows.clear(expected=flow):
            msg = "Authorization attempt was superseded"
            raise AuthorizationFailed(msg, provider=self.provider.name)
        self.store.save_token_set(token.access_token, token.refresh_token, token.expires_in)

    def wait(self, timeout: float | None = None) -> CallbackOutcome | None:
        """Block until the current listener has handled a callback.

        Returns
        -------
        CallbackOutcome or None
            None if there is no listener, it timed out, or ``timeout`` expired.
        """
        server = self._callback_server
        if server is None:
            return None
        return server.wait(timeout)

    def shutdown(self) -> None:
        """Stop the current listener, if any. The active attempt is kept."""
        with self._start_lock:
            if self._callback_server is not None:
                self._callback_server.stop(self._stop_timeout)
                self._callback_server = None
