"""Data types shared by the OAuth2 subsystem."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ClientCredentials:
    """Provider-issued OAuth2 client credentials.

    Attributes
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret.
    """

    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        """Hide the secret from reprs that end up in logs."""
        return f"ClientCredentials(client_id={self.client_id!r}, client_secret='***')"


@dataclass(frozen=True)
class TokenSet:
    """Persisted OAuth2 tokens.

    Attributes
    ----------
    access_token : str
        Bearer token for API requests. Empty when logged out.
    refresh_token : str or None
        Long-lived token used to obtain new access tokens.
    expires_at : int or None
        Absolute Unix time (seconds) at which the access token expires,
        or None if the provider did not report a lifetime.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None

    def needs_refresh(self, now: float, buffer_seconds: int = 300) -> bool:
        """Whether the access token is expired or within ``buffer_seconds`` of expiry.

        A token set without ``expires_at`` never needs a refresh.
        """
        if self.expires_at is None:
            return False
        return now >= self.expires_at - buffer_seconds


@dataclass(frozen=True)
class FlowState:
    """In-memory state of one authorization attempt. Never persisted."""

    code_verifier: str
    state: str
    redirect_uri: str


@dataclass(frozen=True)
class AuthStatus:
    """Derived authentication status for UI queries.

    Attributes
    ----------
    configured : bool
        Client credentials are stored.
    authenticated : bool
        A non-empty access token is stored.
    """

    configured: bool
    authenticated: bool


@dataclass(frozen=True)
class CallbackOutcome:
    """Result of handling one redirect on the callback listener."""

    success: bool
    message: str = ""


class TokenResponse(BaseModel):
    """JSON body returned by the token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
