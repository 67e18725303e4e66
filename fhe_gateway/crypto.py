"""
Ciphertext sealing for the local oracle.

Scheme: chacha20poly1305-v1, blob layout ``nonce(12) || ciphertext || tag(16)``.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def new_key() -> bytes:
    return os.urandom(KEY_SIZE)

def seal_bytes(key: bytes, plaintext: bytes, aad: bytes) -> bytes:
    """
    Encrypt under a fresh random nonce.

    Equal plaintexts never produce equal blobs. The AAD names the target
    store, so a blob opened under another store's AAD fails authentication.
    """
    nonce = os.urandom(NONCE_SIZE)
    return nonce + ChaCha20Poly1305(key).encrypt(nonce, plaintext, aad)

def open_bytes(key: bytes, blob: bytes, aad: bytes) -> bytes:
    """
    Decrypt a sealed blob.

    Raises:
        ValueError: If the blob is truncated or fails authentication
    """
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise ValueError("sealed blob is truncated")
    try:
        return ChaCha20Poly1305(key).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], aad)
    except InvalidTag as e:
        raise ValueError("sealed blob failed authentication") from e
