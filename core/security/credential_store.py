"""Credential storage backends.

One live ERP credential per deployment, keyed by user id:
- InMemoryCredentialStore: For development/testing
- SqliteCredentialStore: Default; one row per user id, tokens optionally
  encrypted with TokenEncryption
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from core.security.encryption import EncryptedToken, TokenEncryption


@dataclass
class IntegrationCredential:
    """Client configuration plus the current OAuth token pair."""
    user_id: str
    client_id: str = ""
    client_secret: str = ""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = False
    initial_order_number: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def has_tokens(self) -> bool:
        return bool(self.access_token)

    def is_access_expired(self, buffer_seconds: int = 300, now: Optional[datetime] = None) -> bool:
        """Check if the access token is expired or will expire within the buffer."""
        if not self.access_token or not self.expires_at:
            return True
        now = now or datetime.utcnow()
        return now >= self.expires_at - timedelta(seconds=buffer_seconds)

    def without_tokens(self) -> "IntegrationCredential":
        """Copy with the token pair dropped and the credential inactive."""
        return replace(
            self,
            access_token=None,
            refresh_token=None,
            scope=None,
            expires_at=None,
            is_active=False,
            updated_at=datetime.utcnow(),
        )

    def token_payload(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "scope": self.scope,
        }


class CredentialStore(ABC):
    """Abstract base class for credential storage."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[IntegrationCredential]:
        """Retrieve the credential for a user, or None."""
        pass

    @abstractmethod
    async def put(self, credential: IntegrationCredential) -> None:
        """Store a credential, replacing any existing one for the same user."""
        pass

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        """Delete a credential. Returns True if one existed."""
        pass


class InMemoryCredentialStore(CredentialStore):
    """In-memory credential storage.

    WARNING: Credentials are lost on restart. Use only for development.
    """

    def __init__(self):
        self._credentials: Dict[str, IntegrationCredential] = {}
        self._lock = threading.Lock()

    async def get(self, user_id: str) -> Optional[IntegrationCredential]:
        with self._lock:
            cred = self._credentials.get(user_id)
            return replace(cred) if cred else None

    async def put(self, credential: IntegrationCredential) -> None:
        with self._lock:
            self._credentials[credential.user_id] = replace(credential)

    async def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._credentials.pop(user_id, None) is not None


class SqliteCredentialStore(CredentialStore):
    """Sqlite-backed credential storage.

    Table `bling_credentials`, unique on user_id. When an encryption
    instance is supplied the token pair is stored as an AES-GCM blob bound
    to the user id; otherwise as plain JSON.
    """

    def __init__(self, db_path: Path, encryption: Optional[TokenEncryption] = None):
        self.db_path = Path(db_path)
        self._encryption = encryption
        self._lock = threading.Lock()
        self.init_db()

    def init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bling_credentials (
                    user_id TEXT NOT NULL UNIQUE,
                    client_id TEXT NOT NULL DEFAULT '',
                    client_secret TEXT NOT NULL DEFAULT '',
                    tokens TEXT,
                    tokens_encrypted INTEGER NOT NULL DEFAULT 0,
                    expires_at TEXT,
                    is_active INTEGER NOT NULL DEFAULT 0,
                    initial_order_number INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _encode_tokens(self, credential: IntegrationCredential) -> tuple:
        if not credential.has_tokens and not credential.refresh_token:
            return None, 0
        payload = credential.token_payload()
        if self._encryption:
            blob = self._encryption.encrypt(payload, user_id=credential.user_id)
            return blob.to_json(), 1
        return json.dumps(payload), 0

    def _decode_tokens(self, row: sqlite3.Row) -> Dict[str, Any]:
        raw = row["tokens"]
        if not raw:
            return {}
        if row["tokens_encrypted"]:
            if not self._encryption:
                raise ValueError("Stored tokens are encrypted but no encryption key is configured")
            return self._encryption.decrypt(EncryptedToken.from_json(raw), user_id=row["user_id"])
        return json.loads(raw)

    def _row_to_credential(self, row: sqlite3.Row) -> IntegrationCredential:
        tokens = self._decode_tokens(row)
        return IntegrationCredential(
            user_id=row["user_id"],
            client_id=row["client_id"],
            client_secret=row["client_secret"],
            access_token=tokens.get("access_token"),
            refresh_token=tokens.get("refresh_token"),
            token_type=tokens.get("token_type") or "Bearer",
            scope=tokens.get("scope"),
            expires_at=datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None,
            is_active=bool(row["is_active"]),
            initial_order_number=row["initial_order_number"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def get(self, user_id: str) -> Optional[IntegrationCredential]:
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            try:
                row = conn.execute(
                    "SELECT * FROM bling_credentials WHERE user_id = ?", (user_id,)
                ).fetchone()
            finally:
                conn.close()
        return self._row_to_credential(row) if row else None

    async def put(self, credential: IntegrationCredential) -> None:
        tokens, encrypted = self._encode_tokens(credential)
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                conn.execute("""
                    INSERT INTO bling_credentials (
                        user_id, client_id, client_secret, tokens, tokens_encrypted,
                        expires_at, is_active, initial_order_number, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        client_id = excluded.client_id,
                        client_secret = excluded.client_secret,
                        tokens = excluded.tokens,
                        tokens_encrypted = excluded.tokens_encrypted,
                        expires_at = excluded.expires_at,
                        is_active = excluded.is_active,
                        initial_order_number = excluded.initial_order_number,
                        updated_at = excluded.updated_at
                """, (
                    credential.user_id,
                    credential.client_id,
                    credential.client_secret,
                    tokens,
                    encrypted,
                    credential.expires_at.isoformat() if credential.expires_at else None,
                    int(credential.is_active),
                    credential.initial_order_number,
                    credential.created_at.isoformat(),
                    credential.updated_at.isoformat(),
                ))
                conn.commit()
            finally:
                conn.close()

    async def delete(self, user_id: str) -> bool:
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            try:
                cursor = conn.execute("DELETE FROM bling_credentials WHERE user_id = ?", (user_id,))
                conn.commit()
                return cursor.rowcount > 0
            finally:
                conn.close()
