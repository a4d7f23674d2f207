"""AES-256-GCM encryption for per-streamer secrets (custom bot tokens).

Blob format: ``base64(nonce[12] || tag[16] || ciphertext)``.

The key is read once at construction.  A missing or malformed key leaves the
cipher unavailable for the lifetime of the process: every ``encrypt`` /
``decrypt`` then raises ``CipherConfigError`` instead of attempting anything.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

KEY_HEX_LENGTH = 64
NONCE_LENGTH = 12
TAG_LENGTH = 16


class CipherConfigError(RuntimeError):
    """Encryption key is missing or malformed."""


class SecretIntegrityError(ValueError):
    """Ciphertext was tampered with, truncated, or encrypted under another key."""


def _parse_key(key_hex: str | None) -> bytes | None:
    if not key_hex or len(key_hex) != KEY_HEX_LENGTH:
        return None
    try:
        return bytes.fromhex(key_hex)
    except ValueError:
        return None


class SecretCipher:
    """Reversible authenticated encryption of small secrets."""

    def __init__(self, key_hex: str | None):
        key = _parse_key(key_hex)
        self._aead = AESGCM(key) if key else None
        if self._aead is None and key_hex:
            logger.warning(
                "BOT_TOKEN_ENCRYPTION_KEY is not a 64-character hex string; "
                "secret encryption disabled"
            )

    def is_available(self) -> bool:
        return self._aead is not None

    def _require_aead(self) -> AESGCM:
        if self._aead is None:
            raise CipherConfigError(
                "BOT_TOKEN_ENCRYPTION_KEY must be a 64-character hex string (32 bytes)"
            )
        return self._aead

    def encrypt(self, plaintext: str) -> str:
        aead = self._require_aead()
        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag to the ciphertext; store it before instead
        sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        aead = self._require_aead()
        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SecretIntegrityError("Encrypted secret is not valid base64") from e

        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise SecretIntegrityError("Encrypted secret is too short")

        nonce = combined[:NONCE_LENGTH]
        tag = combined[NONCE_LENGTH : NONCE_LENGTH + TAG_LENGTH]
        ciphertext = combined[NONCE_LENGTH + TAG_LENGTH :]

        try:
            plaintext = aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise SecretIntegrityError("Encrypted secret failed authentication") from e
        return plaintext.decode("utf-8")
