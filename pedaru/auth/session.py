"""OAuth2 token lifecycle management.

Hands out access tokens, refreshing them shortly before they expire.
Refresh is on demand rather than timer driven: the first caller that
finds the token inside the refresh buffer performs the refresh, and
concurrent callers wait for it and reuse the result.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading
import time

from typing import TYPE_CHECKING

from ..exceptions import NotAuthenticated, NotConfigured, TokenRefreshFailed
from .types import AuthStatus


if TYPE_CHECKING:
    from collections.abc import Callable

    from .credential_store import CredentialStore
    from .provider import OAuthProvider


logger = logging.getLogger("pedaru.auth")


class TokenManager:
    """Manages OAuth2 token validity and refresh.

    Parameters
    ----------
    provider : OAuthProvider
        The OAuth2 provider for token refresh.
    store : CredentialStore
        Store holding the client credentials and token set.
    refresh_buffer_seconds : int
        Seconds before expiry at which a token is refreshed (default ``300``).
    clock : callable
        Returns the current Unix time.
    """

    def __init__(
        self,
        provider: OAuthProvider,
        store: CredentialStore,
        refresh_buffer_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the token manager."""
        self.provider = provider
        self.store = store
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self._clock = clock
        self._lock = threading.Lock()

    def get_auth_status(self) -> AuthStatus:
        """Report whether credentials and an access token are stored.

        Never performs network I/O or refreshes.
        """
        tokens = self.store.load_token_set()
        return AuthStatus(
            configured=self.store.load_credentials() is not None,
            authenticated=tokens is not None and bool(tokens.access_token),
        )

    def get_valid_access_token(self) -> str:
        """Get an access token, refreshing it first if it is near expiry.

        Tokens without a known expiry are returned as-is.

        Returns
        -------
        str
            A usable access token.

        Raises
        ------
        NotConfigured
            If no client credentials are stored.
        NotAuthenticated
            If no access token is stored.
        TokenRefreshFailed
            If a needed refresh is rejected or no refresh token is stored.
        """
        if self.store.load_credentials() is None:
            raise NotConfigured(provider=self.provider.name)

        with self._lock:
            tokens = self.store.load_token_set()
            if tokens is None or not tokens.access_token:
                raise NotAuthenticated(provider=self.provider.name)

            if tokens.needs_refresh(self._clock(), self.refresh_buffer_seconds):
                logger.info("Access token expired or expiring soon, refreshing")
                return self._refresh()

            return tokens.access_token

    def refresh_access_token(self) -> str:
        """Refresh the access token unconditionally.

        Returns
        -------
        str
            The new access token.

        Raises
        ------
        NotConfigured
            If no client credentials are stored.
        TokenRefreshFailed
            If no refresh token is stored or the provider rejects it.
        HttpRequestFailed, InvalidResponse
            If the token endpoint call fails.
        """
        with self._lock:
            return self._refresh()

    def _refresh(self) -> str:
        """Refresh while holding ``self._lock``."""
        credentials = self.store.load_credentials()
        if credentials is None:
            raise NotConfigured(provider=self.provider.name)

        tokens = self.store.load_token_set()
        refresh_token = tokens.refresh_token if tokens is not None else None
        if not refresh_token:
            msg = "No refresh token"
            raise TokenRefreshFailed(msg, provider=self.provider.name)

        token = self.provider.refresh_tokens(credentials, refresh_token)
        self.store.save_token_set(token.access_token, token.refresh_token, token.expires_in)
        logger.debug("Access token refreshed")
        return token.access_token

    def logout(self) -> None:
        """Clear all stored tokens. Client credentials are kept."""
        self.store.clear_tokens()
        logger.info("Logged out")
