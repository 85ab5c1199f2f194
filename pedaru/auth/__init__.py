"""OAuth2 authorization for Pedaru's Google Drive integration.

Provides PKCE helpers, credential storage backends, the loopback
callback listener, the authorization flow, and token lifecycle
management for a desktop client.
"""

from __future__ import annotations

from .callback_server import OAuthCallbackServer
from .credential_store import (
    CredentialStore,
    KeyringCredentialStore,
    MemoryCredentialStore,
    SQLiteCredentialStore,
    get_credential_store,
    reset_credential_store,
)
from .flow import AuthFlowManager
from .flow_state import FlowStateHolder
from .pkce import (
    PKCEChallenge,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from .provider import GoogleDriveProvider, OAuthProvider
from .service import DriveAuth
from .session import TokenManager
from .types import (
    AuthStatus,
    CallbackOutcome,
    ClientCredentials,
    FlowState,
    TokenResponse,
    TokenSet,
)


__all__ = [
    "AuthFlowManager",
    "AuthStatus",
    "CallbackOutcome",
    "ClientCredentials",
    "CredentialStore",
    "DriveAuth",
    "FlowState",
    "FlowStateHolder",
    "GoogleDriveProvider",
    "KeyringCredentialStore",
    "MemoryCredentialStore",
    "OAuthCallbackServer",
    "OAuthProvider",
    "PKCEChallenge",
    "SQLiteCredentialStore",
    "TokenManager",
    "TokenResponse",
    "TokenSet",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state",
    "get_credential_store",
    "reset_credential_store",
]
