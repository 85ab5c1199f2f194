"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


# 64 random bytes -> 86 base64url characters, inside RFC 7636's 43..128
VERIFIER_BYTES = 64
STATE_BYTES = 32


def _b64url(data: bytes) -> str:
    """Base64url-encode without padding."""
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """Generate a high-entropy PKCE code verifier.

    Returns
    -------
    str
        An 86-character URL-safe string (512 bits of entropy).
    """
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for ``verifier``.

    Parameters
    ----------
    verifier : str
        The code verifier.

    Returns
    -------
    str
        Base64url (no padding) SHA-256 digest of the verifier's ASCII bytes.
    """
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    """Generate an opaque CSRF state value (256 bits of entropy)."""
    return _b64url(secrets.token_bytes(STATE_BYTES))


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        verifier = generate_code_verifier()
        return cls(verifier=verifier, challenge=generate_code_challenge(verifier))
