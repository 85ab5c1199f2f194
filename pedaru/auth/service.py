"""Application-facing entry point for Google Drive authorization.

DriveAuth wires the settings, credential store, provider, flow manager
and token manager together and exposes the operations the desktop UI
calls: configure credentials, sign in, query status, get a token, and
sign out.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time
import webbrowser

from typing import TYPE_CHECKING, Any

from ..config import get_settings
from ..exceptions import AuthorizationFailed
from .credential_store import get_credential_store
from .flow import AuthFlowManager
from .provider import GoogleDriveProvider
from .session import TokenManager
from .types import AuthStatus, ClientCredentials


if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from ..config import PedaruSettings, StorageSettings
    from .credential_store import CredentialStore
    from .provider import OAuthProvider


logger = logging.getLogger("pedaru.auth")


def create_store_from_settings(
    storage: StorageSettings, clock: Callable[[], float] = time.time
) -> CredentialStore:
    """Create (or reuse) the credential store described by ``storage``."""
    kwargs: dict[str, Any] = {"clock": clock}
    if storage.backend == "sqlite":
        kwargs["path"] = storage.database_path
    elif storage.backend == "keyring":
        kwargs["service_name"] = storage.keyring_service
    return get_credential_store(storage.backend, **kwargs)


class DriveAuth:
    """Google Drive OAuth2 facade.

    Parameters
    ----------
    settings : PedaruSettings, optional
        Configuration (defaults to :func:`pedaru.config.get_settings`).
    store : CredentialStore, optional
        Overrides the store selected by ``settings.storage``.
    provider : OAuthProvider, optional
        Overrides the Google provider built from ``settings.oauth2``.
    transport : httpx.BaseTransport, optional
        Transport for the default provider's HTTP client.
    clock : callable
        Current Unix time provider shared by the store and token manager.
    """

    def __init__(
        self,
        settings: PedaruSettings | None = None,
        store: CredentialStore | None = None,
        provider: OAuthProvider | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the facade."""
        self.settings = settings or get_settings()
        oauth = self.settings.oauth2

        self.store = store or create_store_from_settings(self.settings.storage, clock)
        self.provider = provider or GoogleDriveProvider(
            authorize_url=oauth.authorize_url,
            token_url=oauth.token_url,
            scopes=oauth.scope_list,
            timeout=oauth.http_timeout_seconds,
            transport=transport,
        )
        self.flow = AuthFlowManager(
            self.provider,
            self.store,
            callback_host=oauth.callback_host,
            callback_port=oauth.callback_port,
            callback_path=oauth.callback_path,
            redirect_host=oauth.redirect_host,
            callback_timeout=oauth.callback_timeout_seconds,
        )
        self.tokens = TokenManager(
            self.provider,
            self.store,
            refresh_buffer_seconds=oauth.refresh_buffer_seconds,
            clock=clock,
        )

    def __enter__(self) -> DriveAuth:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def save_credentials(self, client_id: str, client_secret: str) -> None:
        """Store the OAuth2 client credentials.

        Raises
        ------
        ValueError
            If either value is empty.
        """
        client_id = client_id.strip()
        client_secret = client_secret.strip()
        if not client_id or not client_secret:
            msg = "Client ID and client secret are required"
            raise ValueError(msg)
        self.store.save_credentials(ClientCredentials(client_id, client_secret))
        logger.info("OAuth client credentials saved")

    def forget_credentials(self) -> None:
        """Remove the client credentials and all tokens."""
        self.store.clear_credentials()
        logger.info("OAuth client credentials removed")

    def start_auth(self) -> str:
        """Start an authorization attempt and return the URL to open."""
        return self.flow.start_flow()

    def login(
        self,
        open_browser: bool | None = None,
        on_url: Callable[[str], None] | None = None,
        timeout: float | None = None,
    ) -> AuthStatus:
        """Run the full interactive sign-in and block until it finishes.

        Parameters
        ----------
        open_browser : bool, optional
            Open the URL in the system browser (defaults to the
            ``oauth2.open_browser`` setting).
        on_url : callable, optional
            Receives the authorization URL, e.g. to print it.
        timeout : float, optional
            Seconds to wait (defaults to the callback timeout).

        Returns
        -------
        AuthStatus
            Status after tokens were stored.

        Raises
        ------
        AuthorizationFailed
            If the callback was rejected or never arrived.
        """
        url = self.start_auth()
        if on_url is not None:
            on_url(url)
        if open_browser is None:
            open_browser = self.settings.oauth2.open_browser
        if open_browser and not webbrowser.open(url):
            logger.warning("Could not open a browser; open this URL manually: %s", url)

        wait_for = self.settings.oauth2.callback_timeout_seconds if timeout is None else timeout
        outcome = self.flow.wait(wait_for)
        if outcome is None:
            msg = "Authentication timed out. Please try again."
            raise AuthorizationFailed(msg, provider=self.provider.name)
        if not outcome.success:
            raise AuthorizationFailed(outcome.message, provider=self.provider.name)
        return self.get_auth_status()

    def get_auth_status(self) -> AuthStatus:
        """Report configured/authenticated without network I/O."""
        return self.tokens.get_auth_status()

    def get_valid_access_token(self) -> str:
        """Get an access token, refreshing it first if it is near expiry."""
        return self.tokens.get_valid_access_token()

    def refresh_access_token(self) -> str:
        """Refresh the access token now."""
        return self.tokens.refresh_access_token()

    def logout(self) -> None:
        """Clear all stored tokens."""
        self.tokens.logout()

    def close(self) -> None:
        """Stop any running callback listener and close HTTP connections."""
        self.flow.shutdown()
        self.provider.close()
