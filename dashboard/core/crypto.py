"""Reversible encryption for client secrets (AES-256-GCM envelopes)."""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import get_settings

NONCE_LENGTH = 12  # recommended for GCM
TAG_LENGTH = 16
ENVELOPE_SEPARATOR = "."


class CipherError(Exception):
    """Base class for cipher failures."""


class EncryptionError(CipherError):
    """Raised when the encryption key is missing or misconfigured."""


class InvalidPayloadError(CipherError):
    """Raised when an envelope cannot be parsed."""


class AuthenticationError(CipherError):
    """Raised when the authentication tag does not verify (tampering or wrong key)."""


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _b64decode(value: str) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise InvalidPayloadError("Invalid encrypted payload.") from exc


class SecretCipher:
    """
    Encrypts single string values under a key derived from a passphrase.

    The key is SHA-256 of the passphrase, computed once per instance, so the
    same passphrase always decrypts envelopes written by another process.
    Envelopes look like ``base64(nonce).base64(tag).base64(ciphertext)``.
    """

    def __init__(self, passphrase: str | None) -> None:
        if not passphrase or not passphrase.strip():
            raise EncryptionError(
                "CLIENT_ENCRYPTION_KEY is not configured. Update your environment variables."
            )
        key = hashlib.sha256(passphrase.encode("utf-8")).digest()
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return ENVELOPE_SEPARATOR.join(
            [_b64encode(nonce), _b64encode(tag), _b64encode(ciphertext)]
        )

    def decrypt(self, envelope: str) -> str:
        parts = (envelope or "").split(ENVELOPE_SEPARATOR)
        if len(parts) != 3 or not parts[0] or not parts[1]:
            raise InvalidPayloadError("Invalid encrypted payload.")
        nonce, tag, ciphertext = (_b64decode(part) for part in parts)
        if len(tag) != TAG_LENGTH or not nonce:
            raise InvalidPayloadError("Invalid encrypted payload.")
        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise AuthenticationError("Encrypted payload failed authentication.") from exc
        except ValueError as exc:
            # nonce fora do tamanho aceito pelo GCM
            raise InvalidPayloadError("Invalid encrypted payload.") from exc
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidPayloadError("Decrypted payload is not valid UTF-8.") from exc


@lru_cache
def get_cipher() -> SecretCipher:
    """Process-wide cipher built from CLIENT_ENCRYPTION_KEY."""
    return SecretCipher(get_settings().client_encryption_key)
