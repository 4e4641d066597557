"""Token encryption using AES-GCM.

OAuth tokens are stored at rest as AES-256-GCM ciphertext. The user id the
credential belongs to is bound as additional authenticated data, so a blob
copied onto another user's row fails to decrypt.
"""

import base64
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


def generate_encryption_key() -> str:
    """Generate a new 256-bit key, base64-encoded (for TOKEN_ENCRYPTION_KEY)."""
    return base64.b64encode(secrets.token_bytes(32)).decode("utf-8")


@dataclass
class EncryptedToken:
    """Encrypted token pair with metadata."""
    ciphertext: str  # Base64, GCM tag appended
    nonce: str       # Base64 96-bit nonce
    user_id: str
    created_at: str
    key_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "user_id": self.user_id,
            "created_at": self.created_at,
            "key_version": self.key_version,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedToken":
        return cls(
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            user_id=data["user_id"],
            created_at=data["created_at"],
            key_version=data.get("key_version", 1),
        )

    @classmethod
    def from_json(cls, raw: str) -> "EncryptedToken":
        return cls.from_dict(json.loads(raw))


class TokenEncryption:
    """AES-256-GCM encryption for OAuth tokens.

    Usage:
        enc = TokenEncryption(generate_encryption_key())
        blob = enc.encrypt({"access_token": "...", "refresh_token": "..."}, user_id="default")
        tokens = enc.decrypt(blob)
    """

    def __init__(self, encryption_key: str):
        """Initialize with a base64-encoded 32-byte key.

        Raises:
            ValueError: If the key is not valid base64 or not 32 bytes long
        """
        try:
            key = base64.b64decode(encryption_key, validate=True)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid encryption key: {e}") from e
        if len(key) != 32:
            raise ValueError("Invalid encryption key: must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)

    def encrypt(self, token_data: Dict[str, Any], user_id: str, key_version: int = 1) -> EncryptedToken:
        plaintext = json.dumps(token_data).encode("utf-8")
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, user_id.encode("utf-8"))

        return EncryptedToken(
            ciphertext=base64.b64encode(ciphertext).decode("utf-8"),
            nonce=base64.b64encode(nonce).decode("utf-8"),
            user_id=user_id,
            created_at=datetime.utcnow().isoformat(),
            key_version=key_version,
        )

    def decrypt(self, encrypted: EncryptedToken, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Decrypt token data.

        `user_id` is the owner of the row the blob was read from; it defaults
        to the id recorded in the blob.

        Raises:
            ValueError: If decryption fails (wrong key, tampered data, wrong user)
        """
        owner = user_id if user_id is not None else encrypted.user_id
        try:
            plaintext = self._aesgcm.decrypt(
                base64.b64decode(encrypted.nonce),
                base64.b64decode(encrypted.ciphertext),
                owner.encode("utf-8"),
            )
        except InvalidTag as e:
            raise ValueError("Token decryption failed: authentication tag mismatch") from e

        return json.loads(plaintext.decode("utf-8"))
