"""
Field-level encryption for sensitive columns (church tax id, member date of birth).

Stored form: "enc_v1_" + base64(nonce || ciphertext || tag), AES-256-GCM with a
12-byte nonce. Values written before encryption was enabled carry no prefix and
are returned unchanged, so existing rows stay readable and are encrypted the next
time they are saved.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
from datetime import date
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from flask import current_app, has_app_context
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

PREFIX = "enc_v1_"
NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32

logger = logging.getLogger(__name__)


class EncryptionKeyError(RuntimeError):
    pass


@lru_cache(maxsize=4)
def load_key(raw: str | None) -> bytes:
    """Decode a base64 ENCRYPTION_KEY value into 32 key bytes."""
    value = (raw or "").strip()
    if not value:
        raise EncryptionKeyError(
            "ENCRYPTION_KEY must be set. Generate one with: "
            "python -c \"import base64, os; print(base64.b64encode(os.urandom(32)).decode())\""
        )
    try:
        key = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionKeyError("ENCRYPTION_KEY must be base64 encoded") from e
    if len(key) != KEY_LENGTH:
        raise EncryptionKeyError(f"ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}")
    return key


def _configured_key() -> bytes:
    # Scripts and tests open sessions without an app context.
    if has_app_context():
        raw = current_app.config.get("ENCRYPTION_KEY")
    else:
        raw = os.environ.get("ENCRYPTION_KEY")
    return load_key(raw)


def is_encrypted(value: str | None) -> bool:
    return bool(value) and value.startswith(PREFIX)


def encrypt(plaintext: str | None, *, key: bytes | None = None) -> str | None:
    if plaintext is None or plaintext == "":
        return plaintext
    key = key or _configured_key()
    nonce = os.urandom(NONCE_LENGTH)
    # AESGCM appends the 16-byte tag to the ciphertext.
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return PREFIX + base64.b64encode(nonce + sealed).decode("ascii")


def decrypt(value: str | None, *, key: bytes | None = None) -> str | None:
    """
    Reverse encrypt(). Unprefixed values pass through. A value that cannot be
    decrypted (wrong key, corrupted data) is logged and read as None.
    """
    if not is_encrypted(value):
        return value
    key = key or _configured_key()
    try:
        combined = base64.b64decode(value[len(PREFIX):], validate=True)
        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise ValueError("too short")
        plain = AESGCM(key).decrypt(combined[:NONCE_LENGTH], combined[NONCE_LENGTH:], None)
        return plain.decode("utf-8")
    except (InvalidTag, binascii.Error, ValueError) as e:
        logger.warning("Could not decrypt stored value: %s", type(e).__name__)
        return None


class EncryptedString(TypeDecorator):
    """Text column encrypted at rest; Python side sees plain str."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encrypt(str(value))

    def process_result_value(self, value, dialect):
        return decrypt(value)


class EncryptedDate(TypeDecorator):
    """Date stored as an encrypted ISO string; Python side sees datetime.date."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, date):
            value = value.isoformat()
        return encrypt(str(value))

    def process_result_value(self, value, dialect):
        plain = decrypt(value)
        if not plain:
            return None
        try:
            return date.fromisoformat(plain.strip())
        except ValueError:
            logger.warning("Stored encrypted date is not ISO formatted")
            return None
