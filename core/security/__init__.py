"""Security module - token encryption and credential storage."""

from core.security.encryption import (
    TokenEncryption,
    EncryptedToken,
    generate_encryption_key,
)
from core.security.credential_store import (
    CredentialStore,
    IntegrationCredential,
    InMemoryCredentialStore,
    SqliteCredentialStore,
)

__all__ = [
    "TokenEncryption",
    "EncryptedToken",
    "generate_encryption_key",
    "CredentialStore",
    "IntegrationCredential",
    "InMemoryCredentialStore",
    "SqliteCredentialStore",
]
