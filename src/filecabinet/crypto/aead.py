"""AES-256-GCM sealing of byte payloads.

A sealed blob is ``nonce || ciphertext || tag``. Every seal draws a fresh
random nonce, so sealing the same plaintext twice yields different blobs.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from filecabinet.errors import AuthFailure

KEY_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16
SEALED_OVERHEAD = NONCE_LEN + TAG_LEN


def seal(key: bytes, plaintext: bytes, aad: bytes = b"") -> bytes:
    if len(key) != KEY_LEN:
        raise ValueError(f"Key must be {KEY_LEN} bytes long, got {len(key)}")
    nonce = os.urandom(NONCE_LEN)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, aad or None)


def open_sealed(key: bytes, blob: bytes, aad: bytes = b"") -> bytes:
    """Authenticate and decrypt a sealed blob.

    Raises :class:`AuthFailure` for a wrong key, a wrong ``aad`` or any
    modification of the blob.
    """
    if len(key) != KEY_LEN:
        raise ValueError(f"Key must be {KEY_LEN} bytes long, got {len(key)}")
    if len(blob) < SEALED_OVERHEAD:
        raise AuthFailure("Unable to open sealed data")
    nonce, ciphertext = blob[:NONCE_LEN], blob[NONCE_LEN:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, aad or None)
    except InvalidTag as exc:
        raise AuthFailure("Unable to open sealed data") from exc
