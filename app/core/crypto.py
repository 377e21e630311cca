"""
At-rest encryption for request log fields.

Values are Fernet tokens prefixed with ``enc::``. Rows written before a key
was configured carry no prefix and are returned as-is.
"""
from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings
from app.core.exceptions import DecryptionError
from app.core.logging import get_logger

logger = get_logger(__name__)

_ENCRYPTION_PREFIX = "enc::"


def _derive_key(source: str) -> bytes:
    digest = hashlib.sha256(source.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def is_encrypted(value: str | None) -> bool:
    return bool(value and value.startswith(_ENCRYPTION_PREFIX))


class FieldCipher:
    """Encrypts and decrypts individual text columns."""

    def __init__(self, secret: str | None):
        self._fernet = Fernet(_derive_key(secret)) if secret else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        if self._fernet is None:
            return value
        token = self._fernet.encrypt(value.encode("utf-8")).decode("utf-8")
        return f"{_ENCRYPTION_PREFIX}{token}"

    def decrypt(self, value: str | None) -> str | None:
        if value is None:
            return None
        if not is_encrypted(value):
            return value
        if self._fernet is None:
            raise DecryptionError("Encrypted value found but ENCRYPTION_KEY is not configured")
        token = value[len(_ENCRYPTION_PREFIX):]
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise DecryptionError() from exc


_cipher: FieldCipher | None = None


def get_field_cipher() -> FieldCipher:
    """Process-wide cipher built from ENCRYPTION_KEY."""
    global _cipher
    if _cipher is None:
        _cipher = FieldCipher(settings.ENCRYPTION_KEY)
        if not _cipher.enabled:
            logger.warning("ENCRYPTION_KEY not set, request log fields are stored in clear text")
    return _cipher
