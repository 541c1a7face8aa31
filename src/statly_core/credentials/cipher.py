"""At-rest encryption of sensitive credential fields.

Each value is sealed independently with AES-256-GCM under a key derived from
``CREDENTIALS_ENCRYPTION_KEY`` (PBKDF2-SHA256, 100k iterations, random salt).
Stored form: base64(salt[16] | iv[12] | ciphertext+tag).
"""
import base64
import os
from typing import Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .masking import is_sensitive_field


SALT_BYTES = 16
IV_BYTES = 12
KEY_BYTES = 32
PBKDF2_ITERATIONS = 100_000


class CipherError(Exception):
    """Raised when a value cannot be encrypted or decrypted."""


class CredentialCipher:
    """Encrypts/decrypts the sensitive fields of a credential bundle."""

    def __init__(self, passphrase: str) -> None:
        if not passphrase:
            raise CipherError("CREDENTIALS_ENCRYPTION_KEY is not configured")
        self._passphrase = passphrase.encode("utf-8")

    @classmethod
    def from_env(cls) -> "CredentialCipher":
        return cls(os.getenv("CREDENTIALS_ENCRYPTION_KEY", ""))

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(self._passphrase)

    def encrypt(self, plaintext: str) -> str:
        salt = os.urandom(SALT_BYTES)
        iv = os.urandom(IV_BYTES)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        return base64.b64encode(salt + iv + sealed).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            blob = base64.b64decode(token, validate=True)
        except ValueError as exc:
            raise CipherError("Encrypted value is not valid base64") from exc
        if len(blob) <= SALT_BYTES + IV_BYTES:
            raise CipherError("Encrypted value is truncated")

        salt = blob[:SALT_BYTES]
        iv = blob[SALT_BYTES:SALT_BYTES + IV_BYTES]
        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(
                iv, blob[SALT_BYTES + IV_BYTES:], None
            )
        except InvalidTag as exc:
            raise CipherError("Decryption failed (wrong key or corrupted value)") from exc
        return plaintext.decode("utf-8")

    def encrypt_credentials(self, credentials: Mapping[str, str]) -> dict[str, str]:
        return {
            name: self.encrypt(str(value)) if is_sensitive_field(name) and value else str(value)
            for name, value in credentials.items()
        }

    def decrypt_credentials(self, credentials: Mapping[str, str]) -> dict[str, str]:
        return {
            name: self.decrypt(value) if is_sensitive_field(name) and value else value
            for name, value in credentials.items()
        }
