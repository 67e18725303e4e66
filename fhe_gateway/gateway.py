"""
EncryptionGateway boundary.

The homomorphic-encryption service is an external collaborator. This module
fixes the contract the record store and the coordinator consume, plus the one
piece of it that is public and pure: validity-proof verification.

Validity proof (input proof):
    Ed25519 signature by the input verifier over
    canonical({"handle", "target_store", "caller"})
where handle = Keccak256(prefix || target_store || ciphertext). The proof
therefore binds the ciphertext to one store and one caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Protocol, Sequence, Tuple

from ancestry_ledger.hashing import canonical, ciphertext_handle
from ancestry_ledger.models import EncryptionContext
from ancestry_ledger.signing import verify_message

INPUT_PROOF_DOMAIN = b"ANCESTRY_INPUT_PROOF_V1\x00"


@dataclass(frozen=True)
class DecryptionResult:
    """
    Oracle answer to a public decryption request.

    Attributes:
        clear_values: Cleartext per handle
        cleartext: ABI encoding of the values, in request order
        proof: Oracle signature over (handles, cleartext)
    """

    clear_values: Dict[str, int]
    cleartext: bytes
    proof: bytes
    handles: Tuple[str, ...] = field(default_factory=tuple)


class EncryptionGateway(Protocol):
    """Encryption/decryption oracle contract."""

    def encrypt(self, plaintext: int, context: EncryptionContext) -> Tuple[bytes, bytes]:
        """Return (ciphertext, validity proof). Raises EncryptionUnavailable."""
        ...

    def validate(self, ciphertext: bytes, proof: bytes, context: EncryptionContext) -> bool:
        """Pure validity check, no side effects."""
        ...

    def request_decryption(
        self, handles: Sequence[str], context: EncryptionContext
    ) -> DecryptionResult:
        """Decrypt publicly decryptable handles. Raises OracleUnavailable."""
        ...


def input_proof_message(ciphertext: bytes, context: EncryptionContext) -> bytes:
    """Message signed by the input verifier for one ciphertext."""
    return INPUT_PROOF_DOMAIN + canonical({
        "handle": ciphertext_handle(ciphertext, context.target_store),
        "target_store": context.target_store,
        "caller": context.caller,
    })


class InputProofVerifier:
    """
    Public half of the validity check.

    Holds only the input verifier's Ed25519 public key, so a store can check
    proofs without any oracle secret.
    """

    def __init__(self, public_pem: bytes):
        self.public_pem = public_pem

    def validate(self, ciphertext: bytes, proof: bytes, context: EncryptionContext) -> bool:
        if not ciphertext or not proof:
            return False
        try:
            message = input_proof_message(ciphertext, context)
        except ValueError:
            # target_store is not an address
            return False
        return verify_message(self.public_pem, message, proof)
