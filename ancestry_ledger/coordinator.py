"""
Verification coordinator.

Drives the two flows between a caller, the encryption gateway and the store:

    submit:  caller -> gateway.encrypt -> store.create_record
    verify:  store.get_encrypted_handle -> gateway.request_decryption
             -> store.analyze_ancestry

The verify flow is not atomic: between the decryption request and the
submission another caller may verify the same record. The store reports that
as AlreadyAnalyzed; this coordinator is the only layer that treats it as
success, and converges by re-reading the stored value. No call is retried.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Type

from fhe_gateway.gateway import DecryptionResult, EncryptionGateway

from .codec import check_uint32, encode_cleartexts
from .errors import AlreadyAnalyzed, AncestryLedgerError, EncryptionUnavailable, OracleUnavailable
from .hashing import h_sequence
from .metrics import Metrics
from .models import EncryptionContext, new_id
from .store import RecordStore

logger = logging.getLogger(__name__)

VerificationSource = Literal["cached", "verified", "converged"]


def _start_call(fn: Callable[..., Any], *args: Any) -> Future:
    """
    Run one gateway call on its own daemon thread.

    A call abandoned at its deadline keeps only its own thread; later calls
    never queue behind it.
    """
    future: Future = Future()
    future.set_running_or_notify_cancel()

    def _run() -> None:
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=_run, name="oracle-call", daemon=True).start()
    return future


@dataclass(frozen=True)
class VerificationResult:
    """
    Outcome of request_verification.

    source:
        cached     record was already analyzed, nothing submitted
        verified   this call's proof transitioned the record
        converged  another caller won the race, value re-read from the store
    """

    record_id: str
    value: int
    source: VerificationSource

    @property
    def mutated(self) -> bool:
        return self.source == "verified"


class VerificationCoordinator:
    """
    Orchestrates record submission and proof-backed verification.

    Args:
        store: Authoritative record store
        gateway: Encryption / decryption oracle
        oracle_timeout: Deadline in seconds for each gateway call (None = wait)
        metrics: Optional metrics instance (defaults to the store's)
    """

    def __init__(
        self,
        store: RecordStore,
        gateway: EncryptionGateway,
        *,
        oracle_timeout: Optional[float] = None,
        metrics: Optional[Metrics] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.oracle_timeout = oracle_timeout
        self.metrics = metrics or store.metrics

    def submit_encrypted_record(
        self,
        caller: str,
        plaintext_value: int,
        metadata: int,
        description: str,
        *,
        record_id: Optional[str] = None,
        sequence_hash: Optional[str] = None,
    ) -> str:
        """
        Encrypt a value for this store and register it as a new record.

        Returns:
            The new record identifier

        Raises:
            EncryptionUnavailable: Oracle unreachable or past its deadline
            InvalidProof / DuplicateRecord: Propagated unchanged from the store
        """
        check_uint32(plaintext_value)
        record_id = record_id or new_id("dna")
        context = EncryptionContext(target_store=self.store.address, caller=caller)

        ciphertext, proof = self._call_gateway(
            self.gateway.encrypt, EncryptionUnavailable, plaintext_value, context
        )
        self.store.create_record(
            record_id,
            sequence_hash or h_sequence(record_id, caller, description),
            ciphertext,
            proof,
            metadata,
            description,
            caller,
        )
        return record_id

    def request_verification(self, record_id: str, caller: str) -> VerificationResult:
        """
        Obtain the verified clear value of a record.

        Raises:
            NotFound: No such record
            OracleUnavailable: Oracle unreachable or past its deadline (retryable)
            InvalidProof / DecodeError: Oracle answer rejected by the store
        """
        record = self.store.get_record(record_id)
        if record.is_analyzed:
            self.metrics.inc("verification_fast_path_total")
            return VerificationResult(record_id, record.decrypted_similarity, "cached")

        handle = self.store.get_encrypted_handle(record_id)
        context = EncryptionContext(target_store=self.store.address, caller=caller)
        result: DecryptionResult = self._call_gateway(
            self.gateway.request_decryption, OracleUnavailable, [handle], context
        )
        if handle not in result.clear_values:
            raise OracleUnavailable(f"Oracle answer is missing handle {handle}")
        value = result.clear_values[handle]
        cleartext = result.cleartext or encode_cleartexts([value])

        try:
            updated = self.store.analyze_ancestry(record_id, cleartext, result.proof, caller)
        except AlreadyAnalyzed:
            self.metrics.inc("verification_races_total")
            logger.info(f"Verification race on {record_id}: already analyzed, re-reading")
            current = self.store.get_record(record_id)
            return VerificationResult(record_id, current.decrypted_similarity, "converged")
        return VerificationResult(record_id, updated.decrypted_similarity, "verified")

    def _call_gateway(
        self,
        fn: Callable[..., Any],
        unavailable: Type[AncestryLedgerError],
        *args: Any,
    ) -> Any:
        t0 = time.time()
        try:
            if self.oracle_timeout is None:
                out = fn(*args)
            else:
                future = _start_call(fn, *args)
                try:
                    out = future.result(timeout=self.oracle_timeout)
                except FutureTimeout:
                    raise unavailable(f"Oracle call exceeded {self.oracle_timeout}s deadline")
        except (EncryptionUnavailable, OracleUnavailable) as e:
            self.metrics.inc("oracle_errors_total")
            logger.warning(f"Oracle call failed ({e.code}): {e}")
            raise
        self.metrics.observe("oracle_latency_ms", (time.time() - t0) * 1000.0)
        return out
