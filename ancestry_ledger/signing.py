"""
Proof signatures.

Two schemes, two jobs:
- Ed25519 (cryptography): input validity proofs. The input verifier signs
  (handle, context) when it accepts a freshly encrypted value.
- secp256k1 ECDSA (ecdsa): decryption proofs. The decryption oracle signs
  Keccak256(prefix || handles || cleartext) with an RFC6979 deterministic
  nonce and low-S normalization, so a given result has exactly one valid
  signature and malleated variants are rejected.
"""

from __future__ import annotations

import base64
import hashlib

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)
from ecdsa import SECP256k1, BadDigestError, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.der import UnexpectedDER
from ecdsa.util import MalformedSignature, sigdecode_der, sigencode_der_canonize

# secp256k1 curve order (number of points on the curve)
CURVE_ORDER = SECP256k1.order


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("utf-8")

def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("utf-8"))

# --- Ed25519 (input validity proofs) ---

def gen_ed25519() -> tuple[bytes, bytes]:
    priv = Ed25519PrivateKey.generate()
    pub = priv.public_key()
    priv_pem = priv.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    pub_pem = pub.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    return priv_pem, pub_pem

def sign_message(priv_pem: bytes, message: bytes) -> bytes:
    priv = load_pem_private_key(priv_pem, password=None)
    if not isinstance(priv, Ed25519PrivateKey):
        raise TypeError("Not an Ed25519 private key")
    return priv.sign(message)

def verify_message(pub_pem: bytes, message: bytes, sig: bytes) -> bool:
    pub = load_pem_public_key(pub_pem)
    if not isinstance(pub, Ed25519PublicKey):
        raise TypeError("Not an Ed25519 public key")
    try:
        pub.verify(sig, message)
    except InvalidSignature:
        return False
    return True

# --- secp256k1 (decryption proofs) ---

def gen_secp256k1() -> tuple[bytes, bytes]:
    sk = SigningKey.generate(curve=SECP256k1)
    return sk.to_pem(), sk.get_verifying_key().to_pem()

def sign_digest(priv_pem: bytes, digest: bytes) -> bytes:
    """
    Sign a 32-byte digest with RFC6979 deterministic ECDSA.

    Returns:
        DER-encoded signature in canonical low-S form
    """
    if len(digest) != 32:
        raise ValueError("expected 32-byte digest")
    sk = SigningKey.from_pem(priv_pem)
    if sk.curve != SECP256k1:
        raise TypeError("Not a secp256k1 private key")
    return sk.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=sigencode_der_canonize
    )

def is_low_s(sig: bytes) -> bool:
    """True if the DER signature has s <= n/2 (BIP 146)."""
    _, s = sigdecode_der(sig, CURVE_ORDER)
    return s <= CURVE_ORDER // 2

def verify_digest(pub_pem: bytes, digest: bytes, sig: bytes) -> bool:
    """
    Verify a decryption-proof signature.

    Malformed DER, high-S signatures and wrong-key signatures all return False.
    """
    vk = VerifyingKey.from_pem(pub_pem)
    if vk.curve != SECP256k1:
        raise TypeError("Not a secp256k1 public key")
    try:
        if not is_low_s(sig):
            return False
        return bool(vk.verify_digest(sig, digest, sigdecode=sigdecode_der))
    except (BadSignatureError, BadDigestError, UnexpectedDER, MalformedSignature):
        return False
