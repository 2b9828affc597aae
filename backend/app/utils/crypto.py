"""AES-GCM helpers for keeping OAuth tokens encrypted at rest.

Stored values look like ``ENC:v1:<base64(nonce || ciphertext || tag)>``. The
key is derived from ``settings.secret_key`` with HKDF-SHA256, so rotating the
secret makes previously stored tokens unreadable; :func:`decrypt_token`
returns ``None`` for those and the account has to be re-authorized.
"""

from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.config import settings
from app.utils.logger import logger


_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12  # 96-bit nonce recommended for AES-GCM
_KEY_SIZE = 32    # 256-bit AES key


def _get_key() -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"ebay-gateway-token-encryption",
    )
    return hkdf.derive(settings.secret_key.encode("utf-8"))


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(_PREFIX)


def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    if plaintext is None:
        return None

    nonce = os.urandom(_NONCE_SIZE)
    ct = AESGCM(_get_key()).encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)
    return _PREFIX + base64.b64encode(nonce + ct).decode("ascii")


def decrypt_token(value: Optional[str]) -> Optional[str]:
    """Decrypt a value produced by :func:`encrypt_token`.

    Values without the ``ENC:v1:`` prefix are rejected (``None``); the store
    only ever writes encrypted tokens.
    """
    if value is None:
        return None
    if not is_encrypted(value):
        logger.error("[crypto] refusing to read unencrypted token value")
        return None

    raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"))
    if len(raw) <= _NONCE_SIZE:
        logger.error("[crypto] malformed token ciphertext")
        return None

    nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
    try:
        return AESGCM(_get_key()).decrypt(nonce, ct, associated_data=None).decode("utf-8")
    except InvalidTag:
        logger.error("[crypto] token decryption failed (secret rotated or data corrupted)")
        return None
