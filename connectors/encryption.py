"""
Token encryption: encrypt / decrypt OAuth tokens at rest.

Uses AES-256-CBC with PKCS7 padding from the ``cryptography`` library.
The 32-byte key is loaded from ``config.sharepoint_encryption_key``
(env var: ``SHAREPOINT_ENCRYPTION_KEY``).

Ciphertext format is ``<iv hex>:<ciphertext hex>`` with a fresh random
16-byte IV per call, so encrypting the same token twice never yields the
same string.

A key that is missing or not exactly 32 bytes is reported once at
construction; every later ``encrypt`` / ``decrypt`` raises
``ConfigurationError`` until the key is fixed.  The key is never padded
or truncated.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from core.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_SIZE_BYTES = 32
IV_SIZE_BYTES = 16


class CredentialVault:
    """Symmetric encryption of refresh / access tokens."""

    def __init__(self, key: Optional[str | bytes]):
        self._key: Optional[bytes] = None
        self._config_error: Optional[str] = None

        raw = key.encode("utf-8") if isinstance(key, str) else key
        if not raw:
            self._config_error = "Encryption key not configured"
        elif len(raw) != KEY_SIZE_BYTES:
            self._config_error = (
                f"Encryption key must be exactly {KEY_SIZE_BYTES} bytes for AES-256 "
                f"(got {len(raw)})"
            )
        else:
            self._key = raw

        if self._config_error:
            logger.error("Credential vault disabled: %s", self._config_error)

    @property
    def is_configured(self) -> bool:
        return self._key is not None

    def _require_key(self) -> bytes:
        if self._key is None:
            raise ConfigurationError(self._config_error or "Encryption key not configured")
        return self._key

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token string for database storage."""
        key = self._require_key()
        iv = os.urandom(IV_SIZE_BYTES)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a token string read from the database.

        Raises
        ------
        ConfigurationError
            The vault has no usable key.
        DecryptionError
            Malformed input, or the data was encrypted under a different key.
        """
        key = self._require_key()

        parts = (ciphertext or "").split(":")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise DecryptionError("Malformed ciphertext: expected '<iv>:<data>'")
        try:
            iv = bytes.fromhex(parts[0])
            data = bytes.fromhex(parts[1])
        except ValueError as exc:
            raise DecryptionError(f"Malformed ciphertext: {exc}") from exc
        if len(iv) != IV_SIZE_BYTES or not data or len(data) % IV_SIZE_BYTES:
            raise DecryptionError("Malformed ciphertext: bad IV or block length")

        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        try:
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except ValueError as exc:
            # Bad padding or non-UTF-8 output: almost always a key mismatch.
            raise DecryptionError("Unable to decrypt token with the current key") from exc
