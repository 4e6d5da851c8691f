"""Field-level AES-256-GCM encryption.

Each value is encrypted independently with a fresh 12-byte nonce. The hex
ciphertext stored for a field is ``nonce || ciphertext``; the 16-byte GCM
tag is kept apart so records keep the ciphertext/tag pair layout.
"""

from __future__ import annotations

import base64
import binascii
import os

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from inbox_synopsis.exceptions import EncryptionError
from inbox_synopsis.models import EncryptedField

logger = structlog.get_logger()

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


def resolve_key(value: str | None) -> bytes:
    """Decode a 32-byte key given as base64 (standard or url-safe), hex or utf-8.

    Raises:
        EncryptionError: If the value is missing or no encoding yields 32 bytes.
    """

    if not value:
        raise EncryptionError("Encryption key is not configured (INBOX_SYNOPSIS_ENCRYPTION_KEY).")

    trimmed = value.strip()
    candidates: list[bytes] = []

    padded = trimmed.replace("-", "+").replace("_", "/")
    padded += "=" * (-len(padded) % 4)
    try:
        candidates.append(base64.b64decode(padded, validate=True))
    except (binascii.Error, ValueError):
        pass

    if len(trimmed) % 2 == 0:
        try:
            candidates.append(bytes.fromhex(trimmed))
        except ValueError:
            pass

    candidates.append(trimmed.encode("utf-8"))

    for candidate in candidates:
        if len(candidate) == KEY_BYTES:
            return candidate
    raise EncryptionError(
        f"Encryption key must represent exactly {KEY_BYTES} bytes (supported encodings: base64, hex, utf8)."
    )


class FieldEncryptor:
    """Encrypts and decrypts single string fields."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            raise EncryptionError(f"Encryption key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_setting(cls, value: str | None) -> "FieldEncryptor":
        return cls(resolve_key(value))

    def encrypt(self, plaintext: str) -> EncryptedField:
        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return EncryptedField(ciphertext=(nonce + ciphertext).hex(), auth_tag=tag.hex())

    def encrypt_optional(self, plaintext: str | None) -> EncryptedField | None:
        return None if plaintext is None else self.encrypt(plaintext)

    def decrypt(self, field: EncryptedField) -> str:
        """Decrypt ``field``.

        Raises:
            EncryptionError: If the data is malformed or fails authentication.
        """

        try:
            blob = bytes.fromhex(field.ciphertext)
            tag = bytes.fromhex(field.auth_tag)
        except ValueError as exc:
            raise EncryptionError("Encrypted field is not valid hex") from exc
        if len(blob) < NONCE_BYTES or len(tag) != TAG_BYTES:
            raise EncryptionError("Encrypted field is truncated")

        nonce, ciphertext = blob[:NONCE_BYTES], blob[NONCE_BYTES:]
        try:
            return self._aead.decrypt(nonce, ciphertext + tag, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as exc:
            raise EncryptionError("Encrypted field failed authentication") from exc

    def decrypt_optional(self, field: EncryptedField | None) -> str | None:
        """Decrypt ``field`` if present; unreadable data yields None."""

        if field is None:
            return None
        try:
            return self.decrypt(field)
        except EncryptionError as exc:
            logger.warning("field_decrypt_failed", error=str(exc))
            return None
