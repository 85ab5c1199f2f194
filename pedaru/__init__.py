"""Pedaru - Google Drive authorization for the Pedaru PDF reader.

Implements the OAuth 2.0 Authorization Code flow with PKCE for a desktop
client: a loopback redirect listener, CSRF state verification, code
exchange, and transparent access token refresh.
"""

from __future__ import annotations

from .auth import AuthStatus, ClientCredentials, DriveAuth, TokenSet
from .config import (
    LogSettings,
    OAuth2Settings,
    PedaruSettings,
    StorageSettings,
    get_settings,
)
from .exceptions import (
    AuthError,
    AuthorizationFailed,
    CallbackServerFailed,
    CredentialStoreError,
    HttpRequestFailed,
    InvalidResponse,
    NotAuthenticated,
    NotConfigured,
    PedaruException,
    TokenExchangeFailed,
    TokenRefreshFailed,
)


__version__ = "0.1.0"

__all__ = [
    "AuthError",
    "AuthStatus",
    "AuthorizationFailed",
    "CallbackServerFailed",
    "ClientCredentials",
    "CredentialStoreError",
    "DriveAuth",
    "HttpRequestFailed",
    "InvalidResponse",
    "LogSettings",
    "NotAuthenticated",
    "NotConfigured",
    "OAuth2Settings",
    "PedaruException",
    "PedaruSettings",
    "StorageSettings",
    "TokenExchangeFailed",
    "TokenRefreshFailed",
    "TokenSet",
    "__version__",
    "get_settings",
]
