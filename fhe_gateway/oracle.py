"""
In-process stand-in for the encryption coprocessor and the decryption oracle.

Three keys, three roles:
- data key (ChaCha20-Poly1305): seals plaintext values into opaque ciphertexts
- input verifier key (Ed25519): signs validity proofs for fresh ciphertexts
- decryption key (secp256k1): signs decryption proofs over (handles, cleartext)

No homomorphic math happens here; the oracle only satisfies the
EncryptionGateway contract so the protocol can run end to end. Decryption is
refused for any handle the attached registry has not granted public
decryption.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple

from ancestry_ledger.codec import check_uint32, decode_cleartext, encode_cleartexts
from ancestry_ledger.errors import (
    DecryptionNotPermitted,
    EncryptionUnavailable,
    NotFound,
    OracleUnavailable,
)
from ancestry_ledger.hashing import ciphertext_handle, decryption_digest
from ancestry_ledger.models import EncryptionContext
from ancestry_ledger.signing import (
    b64d,
    b64e,
    gen_ed25519,
    gen_secp256k1,
    sign_digest,
    sign_message,
)

from .crypto import new_key, open_bytes, seal_bytes
from .gateway import DecryptionResult, InputProofVerifier, input_proof_message

logger = logging.getLogger(__name__)

AAD_DOMAIN = b"ANCESTRY_CIPHERTEXT_V1|"


class HandleRegistry(Protocol):
    """What the oracle needs to know about handles (implemented by RecordStore)."""

    def is_publicly_decryptable(self, handle: str) -> bool:
        ...

    def ciphertext_of(self, handle: str) -> bytes:
        ...


def _aad(target_store: str) -> bytes:
    return AAD_DOMAIN + target_store.encode("utf-8")


class LocalOracle:
    """
    Local EncryptionGateway implementation.

    Usage:
        oracle = LocalOracle.generate()
        store = RecordStore(addr, oracle.verifier, oracle.decryption_public_pem)
        oracle.attach(store)
    """

    def __init__(
        self,
        data_key: bytes,
        input_signer_pem: bytes,
        input_public_pem: bytes,
        decryption_signer_pem: bytes,
        decryption_public_pem: bytes,
        *,
        registry: Optional[HandleRegistry] = None,
    ):
        self._data_key = data_key
        self._input_signer_pem = input_signer_pem
        self._decryption_signer_pem = decryption_signer_pem
        self.verifier = InputProofVerifier(input_public_pem)
        self.decryption_public_pem = decryption_public_pem
        self._registry = registry
        self._available = threading.Event()
        self._available.set()

    @classmethod
    def generate(cls, *, registry: Optional[HandleRegistry] = None) -> LocalOracle:
        input_priv, input_pub = gen_ed25519()
        dec_priv, dec_pub = gen_secp256k1()
        return cls(new_key(), input_priv, input_pub, dec_priv, dec_pub, registry=registry)

    # --- key persistence ---

    def export_keys(self) -> Dict[str, str]:
        return {
            "data_key_hex": self._data_key.hex(),
            "input_signer_pem_b64": b64e(self._input_signer_pem),
            "input_public_pem_b64": b64e(self.verifier.public_pem),
            "decryption_signer_pem_b64": b64e(self._decryption_signer_pem),
            "decryption_public_pem_b64": b64e(self.decryption_public_pem),
        }

    @classmethod
    def from_keys(cls, keys: Dict[str, Any], *, registry: Optional[HandleRegistry] = None) -> LocalOracle:
        return cls(
            bytes.fromhex(keys["data_key_hex"].strip()),
            b64d(keys["input_signer_pem_b64"]),
            b64d(keys["input_public_pem_b64"]),
            b64d(keys["decryption_signer_pem_b64"]),
            b64d(keys["decryption_public_pem_b64"]),
            registry=registry,
        )

    def save(self, path: str) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.export_keys(), f, indent=2, sort_keys=True)

    @classmethod
    def load_or_generate(cls, path: str) -> LocalOracle:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                return cls.from_keys(json.load(f))
        oracle = cls.generate()
        oracle.save(path)
        logger.info(f"Generated local oracle keys: {path}")
        return oracle

    # --- availability (simulated outages) ---

    def attach(self, registry: HandleRegistry) -> None:
        self._registry = registry

    @property
    def available(self) -> bool:
        return self._available.is_set()

    def set_available(self, available: bool) -> None:
        if available:
            self._available.set()
        else:
            self._available.clear()

    # --- EncryptionGateway ---

    def encrypt(self, plaintext: int, context: EncryptionContext) -> Tuple[bytes, bytes]:
        """
        Seal a uint32 value for (target store, caller).

        Returns:
            (ciphertext, validity proof)

        Raises:
            EncryptionUnavailable: If the oracle is offline
            ValueError: If plaintext is outside the uint32 range
        """
        if not self.available:
            logger.warning("Encryption requested while oracle offline")
            raise EncryptionUnavailable("Encryption oracle unreachable")
        check_uint32(plaintext)
        ciphertext = seal_bytes(self._data_key, encode_cleartexts([plaintext]), _aad(context.target_store))
        proof = sign_message(self._input_signer_pem, input_proof_message(ciphertext, context))
        return ciphertext, proof

    def validate(self, ciphertext: bytes, proof: bytes, context: EncryptionContext) -> bool:
        return self.verifier.validate(ciphertext, proof, context)

    def request_decryption(
        self, handles: Sequence[str], context: EncryptionContext
    ) -> DecryptionResult:
        """
        Decrypt handles and sign (handles, ABI-encoded cleartexts).

        Raises:
            OracleUnavailable: If the oracle is offline or has no registry
            DecryptionNotPermitted: If a handle lacks the public-decryption grant
        """
        if not self.available or self._registry is None:
            logger.warning("Decryption requested while oracle offline")
            raise OracleUnavailable("Decryption oracle unreachable")
        if not handles:
            raise ValueError("at least one handle is required")

        values = []
        for handle in handles:
            if not self._registry.is_publicly_decryptable(handle):
                raise DecryptionNotPermitted(f"Handle not publicly decryptable: {handle}")
            try:
                ciphertext = self._registry.ciphertext_of(handle)
            except NotFound as e:
                raise DecryptionNotPermitted(str(e)) from e
            if ciphertext_handle(ciphertext, context.target_store) != handle:
                raise DecryptionNotPermitted(f"Handle does not belong to {context.target_store}")
            try:
                plain = open_bytes(self._data_key, ciphertext, _aad(context.target_store))
            except ValueError as e:
                raise DecryptionNotPermitted(f"Ciphertext for {handle} was not sealed by this oracle") from e
            values.append(decode_cleartext(plain))

        cleartext = encode_cleartexts(values)
        proof = self.sign_cleartext(handles, cleartext)
        return DecryptionResult(
            clear_values=dict(zip(handles, values)),
            cleartext=cleartext,
            proof=proof,
            handles=tuple(handles),
        )

    def sign_cleartext(self, handles: Sequence[str], cleartext: bytes) -> bytes:
        """Decryption proof over (handles, cleartext bytes)."""
        return sign_digest(self._decryption_signer_pem, decryption_digest(handles, cleartext))
