"""Encryption utilities for sensitive data.

Uses Fernet symmetric encryption for Bungie tokens, both in the sessions
table and in the fallback cookie.

## Key Derivation

The encryption key is derived from the application secret using PBKDF2:
- Salt: Configurable, should be unique per deployment
- Iterations: 480,000 (OWASP recommendation for PBKDF2-HMAC-SHA256)
- Key length: 32 bytes (256 bits)

## Usage

```python
from guardian_api.database.encryption import TokenCipher

cipher = TokenCipher.from_settings(get_settings())
encrypted = cipher.encrypt("my-oauth-token")
decrypted = cipher.decrypt(encrypted)
```
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

if TYPE_CHECKING:
    from guardian_api.config import Settings

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 480_000


def derive_fernet_key(secret_key: str, salt: str, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive a Fernet key from the secret key and salt using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,  # 256 bits for Fernet
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret_key.encode("utf-8")))


class TokenCipher:
    """Encrypts and decrypts token strings with a derived Fernet key."""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_secret(
        cls, secret_key: str, salt: str, iterations: int = PBKDF2_ITERATIONS
    ) -> TokenCipher:
        """Build a cipher from the application secret and salt."""
        if not secret_key:
            raise ValueError("Token encryption secret must be provided")
        return cls(derive_fernet_key(secret_key, salt, iterations))

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenCipher:
        return cls.from_secret(settings.secret_key, settings.encryption_salt)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token for storage.

        Returns:
            Base64-encoded Fernet token
        """
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str, ttl: int | None = None) -> str:
        """Decrypt a stored token.

        Args:
            ciphertext: Fernet token
            ttl: Reject tokens older than this many seconds

        Raises:
            ValueError: If decryption fails (tampered, expired or wrong key)
        """
        try:
            decrypted = self._fernet.decrypt(ciphertext.encode("utf-8"), ttl=ttl)
        except InvalidToken as e:
            logger.debug("Failed to decrypt token: invalid token or key")
            raise ValueError("Failed to decrypt token") from e
        return decrypted.decode("utf-8")

    def encrypt_optional(self, plaintext: str | None) -> str | None:
        return self.encrypt(plaintext) if plaintext else None

    def decrypt_optional(self, ciphertext: str | None) -> str | None:
        return self.decrypt(ciphertext) if ciphertext else None
