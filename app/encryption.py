"""Symmetric encryption of chat message payloads."""

from __future__ import annotations

import base64
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


SALT = b"linkup-chat-salt"
IV_LENGTH = 12
ITERATIONS = 120000

logger = logging.getLogger("linkup.encryption")


class EncryptionKeyError(RuntimeError):
    pass


def _get_secret() -> str:
    return os.getenv("MESSAGE_ENCRYPTION_KEY", "").strip()


def has_encryption_key() -> bool:
    return bool(_get_secret())


@lru_cache(maxsize=8)
def _cipher_for(secret: str) -> AESGCM:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=SALT, iterations=ITERATIONS)
    return AESGCM(kdf.derive(secret.encode("utf-8")))


def _derive_key() -> AESGCM:
    secret = _get_secret()
    if not secret:
        raise EncryptionKeyError("Missing MESSAGE_ENCRYPTION_KEY environment variable")
    return _cipher_for(secret)


def encrypt_message(plain_text: str) -> str:
    """Return ``base64(iv):base64(ciphertext)``, or the plaintext when no key is configured."""
    if not plain_text:
        return ""
    try:
        aead = _derive_key()
    except EncryptionKeyError as exc:
        logger.warning("message_encryption_skipped error=%s", exc)
        return plain_text
    iv = os.urandom(IV_LENGTH)
    encrypted = aead.encrypt(iv, plain_text.encode("utf-8"), None)
    return f"{base64.b64encode(iv).decode('ascii')}:{base64.b64encode(encrypted).decode('ascii')}"


def decrypt_message(cipher_text: str) -> str:
    if not cipher_text:
        return ""
    if ":" not in cipher_text:
        return cipher_text
    try:
        iv_b64, payload = cipher_text.split(":", 1)
        aead = _derive_key()
        decrypted = aead.decrypt(base64.b64decode(iv_b64), base64.b64decode(payload), None)
        return decrypted.decode("utf-8")
    except (EncryptionKeyError, InvalidTag, ValueError) as exc:
        logger.warning("message_decryption_failed error=%s", exc)
        return cipher_text
