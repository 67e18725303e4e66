"""
Strict ABI codec for decrypted cleartext values.

Cleartexts travel as the Solidity ABI encoding of one ``uint32`` word per
handle. Decoding is length-checked: a width mismatch, non-zero padding or
trailing bytes is a DecodeError, never a silent truncation.
"""

from __future__ import annotations

from typing import List, Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from ancestry_ledger.errors import DecodeError

CLEAR_TYPE = "uint32"
WORD_SIZE = 32
UINT32_MAX = 0xFFFFFFFF


def check_uint32(value: int) -> int:
    """Validate a plaintext/cleartext integer against the uint32 range."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected integer, got {type(value).__name__}")
    if not (0 <= value <= UINT32_MAX):
        raise ValueError(f"value {value} out of uint32 range")
    return value


def encode_cleartexts(values: Sequence[int]) -> bytes:
    """ABI-encode cleartext values in handle order."""
    for v in values:
        check_uint32(v)
    return encode([CLEAR_TYPE] * len(values), list(values))


def decode_cleartexts(data: bytes, count: int) -> List[int]:
    """
    Decode exactly ``count`` uint32 words.

    Raises:
        DecodeError: If the byte length or padding does not match
    """
    if count < 1:
        raise ValueError("count must be positive")
    if not isinstance(data, (bytes, bytearray)):
        raise DecodeError(f"cleartext must be bytes, got {type(data).__name__}")
    expected = WORD_SIZE * count
    if len(data) != expected:
        raise DecodeError(f"cleartext is {len(data)} bytes, expected {expected}")
    try:
        values = decode([CLEAR_TYPE] * count, bytes(data))
    except DecodingError as e:
        raise DecodeError(f"cleartext is not a valid {CLEAR_TYPE} encoding: {e}") from e
    return [int(v) for v in values]


def decode_cleartext(data: bytes) -> int:
    """Decode a single uint32 cleartext."""
    return decode_cleartexts(data, 1)[0]
