from __future__ import annotations

import hashlib
import json
from typing import Any, Final, Sequence

from eth_utils import keccak, to_checksum_address

HANDLE_PREFIX_V1: Final[bytes] = b"ANCESTRY_HANDLE_V1"
DECRYPTION_PREFIX_V1: Final[bytes] = b"ANCESTRY_DECRYPTION_V1"
STORE_PREFIX_V1: Final[bytes] = b"ANCESTRY_STORE_V1"

def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()

def canonical(obj: Any) -> bytes:
    """Canonical JSON serialization for deterministic hashing."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")

# Domain-separated hashing (prevents structural collisions)
def h_block(block_header: dict) -> str:
    """Hash a complete block header (prev+payload+caller)."""
    return sha256(b"BLOCK\x00" + canonical(block_header))

def h_sequence(record_id: str, caller: str, description: str) -> str:
    """Default identity/dedup tag for a record."""
    return sha256(b"SEQUENCE\x00" + canonical({
        "record_id": record_id,
        "caller": caller,
        "description": description,
    }))

def to_hex32(b: bytes) -> str:
    """Convert 32-byte value to 0x-prefixed hex string."""
    if len(b) != 32:
        raise ValueError("expected 32-byte value")
    return "0x" + b.hex()

def from_hex32(h: str) -> bytes:
    """
    Convert 0x-prefixed 32-byte hex string to bytes.

    Raises:
        ValueError: If invalid format or length
    """
    if not h.startswith("0x"):
        raise ValueError("handle must be 0x-prefixed")
    b = bytes.fromhex(h[2:])
    if len(b) != 32:
        raise ValueError("handle must be 32 bytes")
    return b

def derive_store_address(name: str) -> str:
    """Checksum address for a named store (last 20 bytes of a keccak digest)."""
    digest = keccak(STORE_PREFIX_V1 + name.encode("utf-8"))
    return to_checksum_address("0x" + digest[-20:].hex())

def ciphertext_handle(ciphertext: bytes, store_address: str) -> str:
    """
    Opaque handle for a ciphertext held by one store.

        handle = Keccak256(PREFIX || store_address || ciphertext)

    Reveals nothing about the plaintext; binds the ciphertext to the store.
    """
    addr = bytes.fromhex(to_checksum_address(store_address)[2:])
    return to_hex32(keccak(HANDLE_PREFIX_V1 + addr + ciphertext))

def decryption_digest(handles: Sequence[str], cleartext: bytes) -> bytes:
    """
    Digest signed by the decryption oracle.

        digest = Keccak256(PREFIX || handle_1 || ... || handle_n || cleartext)

    Handle order is significant: it must match the order the values were
    ABI-encoded in.
    """
    blob = DECRYPTION_PREFIX_V1 + b"".join(from_hex32(h) for h in handles) + cleartext
    return keccak(blob)
