"""Pedaru exception hierarchy.

All Pedaru-specific exceptions inherit from PedaruException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class PedaruException(Exception):
    """Base exception for all Pedaru errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize Pedaru exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, status_code, body, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items() if v is not None)
            if ctx:
                return f"{self.message} ({ctx})"
        return self.message


class CredentialStoreError(PedaruException):
    """Credential persistence failed.

    Raised when the settings database or the OS credential vault
    cannot be read or written.
    """

    def __init__(self, message: str, backend: str | None = None, **context: Any) -> None:
        """Initialize credential store error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        backend : str, optional
            The store backend that failed (e.g. "sqlite", "keyring").
        **context : Any
            Additional context.
        """
        super().__init__(message, backend=backend, **context)
        self.backend = backend


class AuthError(PedaruException):
    """Base exception for all authentication failures.

    Raised when an OAuth2 operation fails, including the authorization
    flow, the code exchange, and token refresh.
    """

    def __init__(self, message: str, provider: str | None = None, **context: Any) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The OAuth2 provider name (e.g. "google").
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class NotConfigured(AuthError):
    """Client credentials have not been set.

    Recoverable by prompting the user for a client ID and secret.
    """

    def __init__(
        self,
        message: str = "OAuth not configured: client credentials not set",
        **context: Any,
    ) -> None:
        """Initialize with a default message."""
        super().__init__(message, **context)


class NotAuthenticated(AuthError):
    """No access token is stored.

    Raised when a token is requested before the user has signed in,
    or after logout.
    """

    def __init__(self, message: str = "Not authenticated", **context: Any) -> None:
        """Initialize with a default message."""
        super().__init__(message, **context)


class CallbackServerFailed(AuthError):
    """The loopback callback listener could not be started."""


class AuthorizationFailed(AuthError):
    """The authorization step could not be completed.

    Raised when a callback arrives with no matching flow, or when
    the user never completes consent.
    """


class _UpstreamError(AuthError):
    """Upstream rejection carrying the HTTP status and response body."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize upstream error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the token endpoint.
        body : str, optional
            Raw response body returned by the token endpoint.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, body=body, **context)
        self.status_code = status_code
        self.body = body


class TokenExchangeFailed(_UpstreamError):
    """The token endpoint rejected the authorization code.

    The flow must be restarted from the authorization step.
    """


class TokenRefreshFailed(_UpstreamError):
    """The token endpoint rejected the refresh request.

    The user should be prompted to re-authenticate.
    """


class HttpRequestFailed(AuthError):
    """A network-layer failure reaching the token endpoint."""


class InvalidResponse(_UpstreamError):
    """The token endpoint returned a malformed payload."""
