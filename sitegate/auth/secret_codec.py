"""
At-rest encryption for TOTP secrets.

Secrets are encrypted with AES-256-GCM. The 32-byte key is the SHA-256
digest of the deployment-wide key material, and every encryption draws a
fresh random nonce. The serialized form is ``ivHex:cipherHex`` (the GCM tag
is appended to the ciphertext), so decryption never needs external IV
storage.

Security Model:
- Key material comes from TWO_FACTOR_ENCRYPTION_KEY (env or Docker secret)
- Protects TOTP secrets against database theft
- Tampered or foreign ciphertext fails authentication and raises
"""
import os
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import SecretFormatError
from ..utils.secrets import get_encryption_key

logger = logging.getLogger(__name__)

NONCE_BYTES = 12
SEPARATOR = ":"


def _is_hex(value: str) -> bool:
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class EncryptedSecret:
    """
    An encrypted TOTP secret in its ``ivHex:cipherHex`` serialized form.

    Holding an ``EncryptedSecret`` rather than a bare string means the value
    has already been checked for shape; plaintext secrets stay ``str``.
    """
    iv_hex: str
    cipher_hex: str

    @classmethod
    def parse(cls, text: str) -> "EncryptedSecret":
        """
        Parse a serialized ciphertext.

        Raises:
            SecretFormatError: If the separator is missing or a part is not hex.
        """
        if not isinstance(text, str) or SEPARATOR not in text:
            raise SecretFormatError("Invalid encrypted secret format")

        iv_hex, cipher_hex = text.split(SEPARATOR, 1)
        if not iv_hex or not cipher_hex or not _is_hex(iv_hex) or not _is_hex(cipher_hex):
            raise SecretFormatError("Invalid encrypted secret format")

        return cls(iv_hex=iv_hex.lower(), cipher_hex=cipher_hex.lower())

    def __str__(self) -> str:
        return f"{self.iv_hex}{SEPARATOR}{self.cipher_hex}"


def derive_key(key_material: str) -> bytes:
    """Derive the 32-byte AES key from deployment key material."""
    return hashlib.sha256(key_material.encode('utf-8')).digest()


class SecretCodec:
    """
    Encrypts and decrypts TOTP secrets for storage.

    Example usage:
        codec = SecretCodec()
        stored = codec.encrypt("JBSWY3DPEHPK3PXP")
        codec.decrypt(stored)  # -> "JBSWY3DPEHPK3PXP"
    """

    def __init__(self, key: Optional[str] = None):
        """
        Initialize codec with key material from environment or parameter.

        Args:
            key: Key material. If None, reads TWO_FACTOR_ENCRYPTION_KEY.
        """
        if key is None:
            key = get_encryption_key()
        self._aesgcm = AESGCM(derive_key(key))

    def encrypt(self, secret: str) -> EncryptedSecret:
        """
        Encrypt a plaintext secret with a fresh random nonce.

        Args:
            secret: Plaintext (base32) TOTP secret.

        Returns:
            EncryptedSecret; str() gives the ``ivHex:cipherHex`` form.
        """
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aesgcm.encrypt(nonce, secret.encode('utf-8'), None)
        return EncryptedSecret(iv_hex=nonce.hex(), cipher_hex=ciphertext.hex())

    def decrypt(self, encrypted: Union[EncryptedSecret, str]) -> str:
        """
        Decrypt a stored secret.

        Args:
            encrypted: EncryptedSecret or its serialized string form.

        Returns:
            The plaintext secret.

        Raises:
            SecretFormatError: If the value is malformed, tampered with, or
                was encrypted under a different key.
        """
        if not isinstance(encrypted, EncryptedSecret):
            encrypted = EncryptedSecret.parse(encrypted)

        nonce = bytes.fromhex(encrypted.iv_hex)
        if len(nonce) != NONCE_BYTES:
            raise SecretFormatError("Invalid encrypted secret format")

        try:
            plaintext = self._aesgcm.decrypt(nonce, bytes.fromhex(encrypted.cipher_hex), None)
        except InvalidTag:
            logger.error("Secret decryption failed: authentication tag mismatch")
            raise SecretFormatError("Encrypted secret failed authentication")

        try:
            return plaintext.decode('utf-8')
        except UnicodeDecodeError:
            raise SecretFormatError("Encrypted secret is not valid UTF-8")


def encrypt_secret(secret: str, key: Optional[str] = None) -> EncryptedSecret:
    """Encrypt ``secret`` under ``key`` (or the configured deployment key)."""
    return SecretCodec(key).encrypt(secret)


def decrypt_secret(encrypted: Union[EncryptedSecret, str], key: Optional[str] = None) -> str:
    """Decrypt ``encrypted`` under ``key`` (or the configured deployment key)."""
    return SecretCodec(key).decrypt(encrypted)
