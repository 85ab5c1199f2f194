"""OAuth2 provider endpoints.

Builds authorization URLs and talks to the token endpoint for the
authorization-code and refresh-token grants. Requests are synchronous:
the code exchange runs on the callback listener thread and refreshes run
on whichever thread asks for an access token.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import json
import logging

from typing import TYPE_CHECKING
from urllib.parse import quote, urlencode

import httpx

from pydantic import ValidationError

from ..config import DRIVE_READONLY_SCOPE, GOOGLE_AUTHORIZE_URL, GOOGLE_TOKEN_URL
from ..exceptions import (
    HttpRequestFailed,
    InvalidResponse,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from ..log import redact_sensitive_data
from .types import TokenResponse


if TYPE_CHECKING:
    from .pkce import PKCEChallenge
    from .types import ClientCredentials


logger = logging.getLogger("pedaru.auth")


class OAuthProvider:
    """Authorization-code + PKCE client for a single OAuth2 provider.

    Parameters
    ----------
    authorize_url : str
        The provider's authorization endpoint.
    token_url : str
        The provider's token endpoint.
    scopes : list[str], optional
        Requested OAuth2 scopes.
    timeout : float
        Timeout in seconds for token endpoint requests.
    transport : httpx.BaseTransport, optional
        Custom transport for the HTTP client (e.g. ``httpx.MockTransport``).
    """

    name = "oauth2"

    def __init__(
        self,
        authorize_url: str,
        token_url: str,
        scopes: list[str] | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize OAuth provider."""
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.scopes = scopes or []
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.Client(timeout=self.timeout, transport=self._transport)
        return self._http_client

    def close(self) -> None:
        """Close the shared HTTP client."""
        if self._http_client is not None and not self._http_client.is_closed:
            self._http_client.close()
        self._http_client = None

    def extra_authorize_params(self) -> dict[str, str]:
        """Provider-specific query parameters appended to the authorization URL."""
        return {}

    def build_authorize_url(
        self,
        client_id: str,
        redirect_uri: str,
        state: str,
        pkce: PKCEChallenge,
    ) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        client_id : str
            The OAuth2 client ID.
        redirect_uri : str
            The loopback callback URL.
        state : str
            CSRF protection nonce.
        pkce : PKCEChallenge
            PKCE challenge for this attempt.

        Returns
        -------
        str
            The authorization URL with every value percent-encoded.
        """
        params: dict[str, str] = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
        }
        params.update(self.extra_authorize_params())
        return f"{self.authorize_url}?{urlencode(params, quote_via=quote)}"

    def exchange_code(
        self,
        credentials: ClientCredentials,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises
        ------
        TokenExchangeFailed
            If the token endpoint answers with a non-success status.
        HttpRequestFailed
            If the request could not be sent.
        InvalidResponse
            If the response is not a valid token payload.
        """
        data = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri,
        }
        return self._post_token(data, TokenExchangeFailed, "Token exchange")

    def refresh_tokens(self, credentials: ClientCredentials, refresh_token: str) -> TokenResponse:
        """Obtain a new access token with a refresh token.

        Raises
        ------
        TokenRefreshFailed
            If the token endpoint answers with a non-success status.
        HttpRequestFailed
            If the request could not be sent.
        InvalidResponse
            If the response is not a valid token payload.
        """
        data = {
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return self._post_token(data, TokenRefreshFailed, "Token refresh")

    def _post_token(
        self,
        data: dict[str, str],
        failure: type[TokenExchangeFailed] | type[TokenRefreshFailed],
        action: str,
    ) -> TokenResponse:
        try:
            resp = self._get_client().post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            msg = f"{action} request failed: {exc}"
            raise HttpRequestFailed(msg, provider=self.name) from exc

        if not resp.is_success:
            msg = f"{action} failed with HTTP {resp.status_code}"
            raise failure(msg, provider=self.name, status_code=resp.status_code, body=resp.text)

        try:
            token = TokenResponse.model_validate_json(resp.content)
        except ValidationError as exc:
            msg = f"Invalid token response: {exc}"
            raise InvalidResponse(
                msg, provider=self.name, status_code=resp.status_code, body=resp.text
            ) from exc

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s succeeded: %s",
                action,
                json.dumps(redact_sensitive_data(token.model_dump(exclude_none=True))),
            )
        return token


class GoogleDriveProvider(OAuthProvider):
    """Google OAuth2 provider preset for read-only Drive access.

    Requests offline access and forces the consent screen so Google
    issues a refresh token on every authorization.
    """

    name = "google"

    def __init__(
        self,
        authorize_url: str = GOOGLE_AUTHORIZE_URL,
        token_url: str = GOOGLE_TOKEN_URL,
        scopes: list[str] | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize Google provider."""
        super().__init__(
            authorize_url=authorize_url,
            token_url=token_url,
            scopes=scopes or [DRIVE_READONLY_SCOPE],
            timeout=timeout,
            transport=transport,
        )

    def extra_authorize_params(self) -> dict[str, str]:
        """Ask for a refresh token and force re-consent."""
        return {"access_type": "offline", "prompt": "consent"}
