"""Pluggable credential storage backends.

Provides the CredentialStore ABC and concrete implementations for
in-memory, SQLite settings database, and OS keyring persistence of the
OAuth2 client credentials and the current token set.

All stores hold a single record (one end-user account per installation).
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
import time

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

import keyring
import keyring.errors

from ..exceptions import CredentialStoreError
from .types import ClientCredentials, TokenSet


if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


logger = logging.getLogger("pedaru.auth")


def _expiry(clock: Callable[[], float], expires_in: int | None) -> int | None:
    """Convert a relative lifetime into an absolute expiry at call time."""
    if expires_in is None:
        return None
    return int(clock()) + int(expires_in)


class CredentialStore(ABC):
    """Abstract base class for OAuth2 credential storage.

    Parameters
    ----------
    clock : callable
        Returns the current Unix time; used to turn ``expires_in`` into
        an absolute expiry when tokens are saved.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store."""
        self._clock = clock
        self._lock = threading.Lock()

    @abstractmethod
    def load_credentials(self) -> ClientCredentials | None:
        """Load the client credentials, or None if not configured."""

    @abstractmethod
    def save_credentials(self, credentials: ClientCredentials) -> None:
        """Store the client credentials, replacing any existing ones."""

    @abstractmethod
    def load_token_set(self) -> TokenSet | None:
        """Load the current token set, or None if no access token is stored."""

    @abstractmethod
    def save_token_set(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int | None = None,
    ) -> None:
        """Persist a freshly issued token set.

        Parameters
        ----------
        access_token : str
            The new access token. Replaces the stored one.
        refresh_token : str, optional
            The new refresh token. When None the stored refresh token
            is kept.
        expires_in : int, optional
            Token lifetime in seconds, converted to an absolute expiry
            using the store's clock. When None the stored expiry is cleared.
        """

    @abstractmethod
    def clear_tokens(self) -> None:
        """Remove the access token, refresh token and expiry (logout)."""

    @abstractmethod
    def clear_credentials(self) -> None:
        """Forget the client credentials and any tokens issued for them."""


class MemoryCredentialStore(CredentialStore):
    """In-memory credential store for tests and single-process use."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        """Initialize the memory store."""
        super().__init__(clock)
        self._credentials: ClientCredentials | None = None
        self._tokens: TokenSet | None = None

    def load_credentials(self) -> ClientCredentials | None:
        """Load credentials from memory."""
        with self._lock:
            return self._credentials

    def save_credentials(self, credentials: ClientCredentials) -> None:
        """Save credentials in memory."""
        with self._lock:
            self._credentials = credentials

    def load_token_set(self) -> TokenSet | None:
        """Load tokens from memory."""
        with self._lock:
            return self._tokens

    def save_token_set(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int | None = None,
    ) -> None:
        """Save tokens in memory, keeping the refresh token if none is given."""
        with self._lock:
            if refresh_token is None and self._tokens is not None:
                refresh_token = self._tokens.refresh_token
            self._tokens = TokenSet(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=_expiry(self._clock, expires_in),
            )

    def clear_tokens(self) -> None:
        """Drop tokens from memory."""
        with self._lock:
            self._tokens = None

    def clear_credentials(self) -> None:
        """Drop credentials and tokens from memory."""
        with self._lock:
            self._credentials = None
            self._tokens = None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS google_auth (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    client_id TEXT,
    client_secret TEXT,
    access_token TEXT,
    refresh_token TEXT,
    token_expiry INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
)
"""


class SQLiteCredentialStore(CredentialStore):
    """Settings-database credential store.

    Keeps everything in a single ``google_auth`` row (``id = 1``).
    A connection is opened per operation so the store can be shared
    between the UI thread and the callback listener thread.

    Parameters
    ----------
    path : str or Path
        Database file. Parent directories are created on demand.
    clock : callable
        Current Unix time provider.
    """

    def __init__(self, path: str | Path, clock: Callable[[], float] = time.time) -> None:
        """Initialize the SQLite store and create the table if needed."""
        super().__init__(clock)
        self._path = Path(path).expanduser()
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create directory '{self._path.parent}': {exc}"
            raise CredentialStoreError(msg, backend="sqlite") from exc
        with self._connect() as conn:
            conn.execute(_SCHEMA)

    @property
    def path(self) -> Path:
        """The database file path."""
        return self._path

    @contextlib.contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it."""
        try:
            conn = sqlite3.connect(self._path)
        except sqlite3.Error as exc:
            msg = f"Failed to open database: {exc}"
            raise CredentialStoreError(msg, backend="sqlite", path=str(self._path)) from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            msg = f"Database operation failed: {exc}"
            raise CredentialStoreError(msg, backend="sqlite", path=str(self._path)) from exc
        finally:
            conn.close()

    def _now(self) -> int:
        return int(self._clock())

    def load_credentials(self) -> ClientCredentials | None:
        """Load credentials from the singleton row."""
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT client_id, client_secret FROM google_auth WHERE id = 1"
            ).fetchone()
        if row is None or row[0] is None:
            return None
        return ClientCredentials(client_id=row[0], client_secret=row[1] or "")

    def save_credentials(self, credentials: ClientCredentials) -> None:
        """Upsert credentials into the singleton row."""
        now = self._now()
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO google_auth (id, client_id, client_secret, created_at, updated_at)
                VALUES (1, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    client_id = excluded.client_id,
                    client_secret = excluded.client_secret,
                    updated_at = excluded.updated_at
                """,
                (credentials.client_id, credentials.client_secret, now, now),
            )

    def load_token_set(self) -> TokenSet | None:
        """Load tokens from the singleton row."""
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT access_token, refresh_token, token_expiry FROM google_auth WHERE id = 1"
            ).fetchone()
        if row is None or not row[0]:
            return None
        return TokenSet(access_token=row[0], refresh_token=row[1], expires_at=row[2])

    def save_token_set(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int | None = None,
    ) -> None:
        """Upsert tokens; ``COALESCE`` keeps the stored refresh token when none is given."""
        now = self._now()
        expires_at = _expiry(self._clock, expires_in)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO google_auth
                    (id, access_token, refresh_token, token_expiry, created_at, updated_at)
                VALUES (1, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, google_auth.refresh_token),
                    token_expiry = excluded.token_expiry,
                    updated_at = excluded.updated_at
                """,
                (access_token, refresh_token, expires_at, now, now),
            )

    def clear_tokens(self) -> None:
        """Null out the token columns."""
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE google_auth SET
                    access_token = NULL,
                    refresh_token = NULL,
                    token_expiry = NULL,
                    updated_at = ?
                WHERE id = 1
                """,
                (self._now(),),
            )

    def clear_credentials(self) -> None:
        """Delete the singleton row."""
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM google_auth WHERE id = 1")


class KeyringCredentialStore(CredentialStore):
    """OS keyring-backed credential store.

    Each field is a separate keychain entry under ``service_name``
    (macOS Keychain, Windows Credential Manager, Secret Service on Linux).

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "pedaru").
    clock : callable
        Current Unix time provider.
    """

    CLIENT_ID = "google_client_id"
    CLIENT_SECRET = "google_client_secret"  # noqa: S105
    ACCESS_TOKEN = "google_access_token"  # noqa: S105
    REFRESH_TOKEN = "google_refresh_token"  # noqa: S105
    TOKEN_EXPIRY = "google_token_expiry"  # noqa: S105

    _TOKEN_KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, TOKEN_EXPIRY)
    _ALL_KEYS = (CLIENT_ID, CLIENT_SECRET, *_TOKEN_KEYS)

    def __init__(
        self, service_name: str = "pedaru", clock: Callable[[], float] = time.time
    ) -> None:
        """Initialize the keyring store."""
        super().__init__(clock)
        self._service_name = service_name

    def _get(self, key: str) -> str | None:
        try:
            return keyring.get_password(self._service_name, key)
        except keyring.errors.KeyringError as exc:
            msg = f"Failed to get secret '{key}': {exc}"
            raise CredentialStoreError(msg, backend="keyring") from exc

    def _set(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self._service_name, key, value)
        except keyring.errors.KeyringError as exc:
            msg = f"Failed to store secret '{key}': {exc}"
            raise CredentialStoreError(msg, backend="keyring") from exc

    def _delete(self, key: str) -> None:
        try:
            keyring.delete_password(self._service_name, key)
        except keyring.errors.PasswordDeleteError:
            return
        except keyring.errors.KeyringError as exc:
            msg = f"Failed to delete secret '{key}': {exc}"
            raise CredentialStoreError(msg, backend="keyring") from exc
        logger.debug("Deleted secret: %s", key)

    def load_credentials(self) -> ClientCredentials | None:
        """Load credentials from the OS keyring."""
        with self._lock:
            client_id = self._get(self.CLIENT_ID)
            if not client_id:
                return None
            return ClientCredentials(
                client_id=client_id,
                client_secret=self._get(self.CLIENT_SECRET) or "",
            )

    def save_credentials(self, credentials: ClientCredentials) -> None:
        """Save credentials to the OS keyring."""
        with self._lock:
            self._set(self.CLIENT_ID, credentials.client_id)
            self._set(self.CLIENT_SECRET, credentials.client_secret)

    def load_token_set(self) -> TokenSet | None:
        """Load tokens from the OS keyring."""
        with self._lock:
            access_token = self._get(self.ACCESS_TOKEN)
            if not access_token:
                return None
            expiry = self._get(self.TOKEN_EXPIRY)
            try:
                expires_at = int(expiry) if expiry else None
            except ValueError as exc:
                msg = f"Invalid token expiry in keyring: {expiry!r}"
                raise CredentialStoreError(msg, backend="keyring") from exc
            return TokenSet(
                access_token=access_token,
                refresh_token=self._get(self.REFRESH_TOKEN),
                expires_at=expires_at,
            )

    def save_token_set(
        self,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int | None = None,
    ) -> None:
        """Save tokens to the OS keyring, keeping the refresh token if none is given."""
        expires_at = _expiry(self._clock, expires_in)
        with self._lock:
            self._set(self.ACCESS_TOKEN, access_token)
            if refresh_token is not None:
                self._set(self.REFRESH_TOKEN, refresh_token)
            if expires_at is None:
                self._delete(self.TOKEN_EXPIRY)
            else:
                self._set(self.TOKEN_EXPIRY, str(expires_at))

    def clear_tokens(self) -> None:
        """Delete token entries from the OS keyring."""
        with self._lock:
            for key in self._TOKEN_KEYS:
                self._delete(key)

    def clear_credentials(self) -> None:
        """Delete every entry this store owns from the OS keyring."""
        with self._lock:
            for key in self._ALL_KEYS:
                self._delete(key)


_store_instance: CredentialStore | None = None
_store_lock = threading.Lock()


def get_credential_store(backend: str = "sqlite", **kwargs: Any) -> CredentialStore:
    """Factory function for credential stores.

    Returns a singleton instance. Call ``reset_credential_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "sqlite", "keyring", or "memory".
    **kwargs : Any
        ``path`` for sqlite, ``service_name`` for keyring, and ``clock``
        for any backend.

    Returns
    -------
    CredentialStore
        A configured credential store instance.
    """
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        if _store_instance is not None:
            return _store_instance

        clock = kwargs.get("clock", time.time)
        if backend == "memory":
            _store_instance = MemoryCredentialStore(clock=clock)
        elif backend == "sqlite":
            if "path" not in kwargs:
                msg = "The sqlite credential store requires a 'path'"
                raise ValueError(msg)
            _store_instance = SQLiteCredentialStore(kwargs["path"], clock=clock)
        elif backend == "keyring":
            _store_instance = KeyringCredentialStore(
                service_name=kwargs.get("service_name", "pedaru"),
                clock=clock,
            )
        else:
            msg = f"Unknown credential store backend: {backend}"
            raise ValueError(msg)

        logger.debug("Using %s credential store", backend)
        return _store_instance


def reset_credential_store() -> None:
    """Reset the singleton credential store instance."""
    global _store_instance  # noqa: PLW0603

    with _store_lock:
        _store_instance = None
