"""
Authoritative store of GeneticRecord entities.

State machine per record identifier:

    (absent) --create_record--> created --analyze_ancestry--> analyzed (final)

Proof checks:
- create_record: the (ciphertext, validity proof) pair must validate for the
  context (this store, the caller). A proof minted for another caller or
  another store is rejected, and each validity proof is consumed once.
- analyze_ancestry: the decryption proof must be the oracle's signature over
  (the record's handle, the submitted cleartext bytes).

Concurrency:
- Transitions on one identifier are serialized by a per-identifier lock.
- The ledger block is written and synced under the per-identifier lock only.
  Records are frozen pydantic models then replaced wholesale under the guard
  lock together with the id sequence and the event list, so a reader never
  observes a half-applied transition and never waits on a disk sync.
- Per-identifier locks are weakly held; an id nobody is operating on keeps
  no lock entry.
- Every rejection happens before any mutation.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Callable, Dict, List, Optional, Protocol, Union

from eth_utils import to_checksum_address
from pydantic import ValidationError

from .acl import HandleACL
from .codec import decode_cleartext
from .errors import (
    AlreadyAnalyzed,
    DecodeError,
    DuplicateRecord,
    InvalidProof,
    LedgerIntegrityError,
    NotFound,
)
from .hashing import ciphertext_handle, decryption_digest
from .ledger import HashChainedLedger
from .metrics import Metrics
from .models import (
    AnalysisCommit,
    AnalysisComplete,
    EncryptionContext,
    GeneticRecord,
    RecordCommit,
    RecordCreated,
)
from .signing import b64d, b64e, verify_digest

logger = logging.getLogger(__name__)

StoreEvent = Union[RecordCreated, AnalysisComplete]
EventListener = Callable[[StoreEvent], None]


class ProofValidator(Protocol):
    """Public validity check of the encryption scheme (see fhe_gateway)."""

    def validate(self, ciphertext: bytes, proof: bytes, context: EncryptionContext) -> bool:
        ...


class RecordStore:
    """
    Ledger of encrypted genetic records.

    Args:
        address: Store identity, bound into every handle and validity proof
        validator: Input proof validator (EncryptionGateway verification primitive)
        decryption_signer_pem: secp256k1 public key of the decryption oracle
        ledger: Optional durable log; every transition is appended before it is published
        metrics: Optional metrics instance
    """

    def __init__(
        self,
        address: str,
        validator: ProofValidator,
        decryption_signer_pem: bytes,
        *,
        ledger: Optional[HashChainedLedger] = None,
        metrics: Optional[Metrics] = None,
    ):
        self.address = to_checksum_address(address)
        self.acl = HandleACL()
        self.metrics = metrics or Metrics()
        self._validator = validator
        self._decryption_signer_pem = decryption_signer_pem
        self._ledger = ledger

        self._records: Dict[str, GeneticRecord] = {}
        self._record_ids: List[str] = []
        self._ciphertexts: Dict[str, bytes] = {}
        self._handle_owner: Dict[str, str] = {}
        self._events: List[StoreEvent] = []
        self._listeners: List[EventListener] = []

        self._guard = threading.Lock()
        self._id_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_record(
        self,
        record_id: str,
        sequence_hash: str,
        ciphertext: bytes,
        proof: bytes,
        public_metadata: int,
        description: str,
        caller: str,
    ) -> GeneticRecord:
        """
        Register a proof-validated ciphertext under a new identifier.

        Raises:
            DuplicateRecord: If a record already exists under record_id
            InvalidProof: If the validity proof rejects the ciphertext for
                (this store, caller), or was already consumed
        """
        if not record_id:
            raise ValueError("record_id must be a non-empty string")
        if not caller:
            raise ValueError("caller identity is required")

        with self._lock_for(record_id):
            with self._guard:
                exists = record_id in self._records
            if exists:
                self.metrics.inc("duplicate_records_total")
                logger.info(f"Rejected create: record {record_id} already exists")
                raise DuplicateRecord(f"Record already exists: {record_id}")

            context = EncryptionContext(target_store=self.address, caller=caller)
            if not self._validator.validate(bytes(ciphertext), bytes(proof), context):
                self.metrics.inc("proofs_rejected_total")
                logger.info(f"Rejected create: invalid validity proof for {record_id}")
                raise InvalidProof(f"Validity proof rejected for record {record_id}")

            handle = ciphertext_handle(bytes(ciphertext), self.address)
            record = GeneticRecord(
                record_id=record_id,
                sequence_hash=sequence_hash,
                encrypted_markers=handle,
                public_metadata=public_metadata,
                description=description,
                owner=caller,
            )
            event = RecordCreated(record_id=record_id, owner=caller, encrypted_markers=handle)

            with self._guard:
                owner = self._handle_owner.get(handle)
                if owner is None:
                    self._handle_owner[handle] = record_id
            if owner is not None:
                self.metrics.inc("proofs_rejected_total")
                raise InvalidProof(f"Ciphertext already registered under {owner}")

            def publish() -> None:
                self._register(record, bytes(ciphertext))
                self._events.append(event)

            commit = RecordCommit(record=record, ciphertext_b64=b64e(bytes(ciphertext)))
            try:
                self._commit(commit.model_dump(by_alias=True, mode="json"), caller, publish)
            except Exception:
                with self._guard:
                    self._handle_owner.pop(handle, None)
                raise

        self.metrics.inc("records_created_total")
        logger.info(f"Record created: {record_id} handle={handle[:18]}...")
        self._notify(event)
        return record

    def analyze_ancestry(
        self,
        record_id: str,
        cleartext: bytes,
        proof: bytes,
        caller: str = "",
    ) -> GeneticRecord:
        """
        Accept the oracle's decryption of a record's handle, exactly once.

        Raises:
            NotFound: If no record exists under record_id
            AlreadyAnalyzed: If the record was already verified
            InvalidProof: If proof is not the oracle's signature over
                (record handle, cleartext)
            DecodeError: If cleartext is not a single ABI uint32 word
        """
        self.get_record(record_id)
        with self._lock_for(record_id):
            record = self.get_record(record_id)
            if record.is_analyzed:
                raise AlreadyAnalyzed(f"Record already analyzed: {record_id}")

            if not isinstance(cleartext, (bytes, bytearray)):
                raise DecodeError(f"cleartext must be bytes, got {type(cleartext).__name__}")
            if not isinstance(proof, (bytes, bytearray)):
                raise InvalidProof("decryption proof must be bytes")

            handles = [record.encrypted_markers]
            digest = decryption_digest(handles, bytes(cleartext))
            if not verify_digest(self._decryption_signer_pem, digest, bytes(proof)):
                self.metrics.inc("proofs_rejected_total")
                logger.info(f"Rejected analysis: invalid decryption proof for {record_id}")
                raise InvalidProof(f"Decryption proof rejected for record {record_id}")

            value = decode_cleartext(bytes(cleartext))
            updated = record.model_copy(update={"decrypted_similarity": value, "is_analyzed": True})
            event = AnalysisComplete(record_id=record_id, decrypted_similarity=value)

            def publish() -> None:
                self._records[record_id] = updated
                self._events.append(event)

            commit = AnalysisCommit(
                record_id=record_id,
                decrypted_similarity=value,
                cleartext_hex=bytes(cleartext).hex(),
                proof_b64=b64e(bytes(proof)),
            )
            self._commit(commit.model_dump(by_alias=True, mode="json"), caller or record.owner, publish)

        self.metrics.inc("analyses_completed_total")
        logger.info(f"Record analyzed: {record_id}")
        self._notify(event)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, record_id: str) -> GeneticRecord:
        with self._guard:
            record = self._records.get(record_id)
        if record is None:
            raise NotFound(f"Record not found: {record_id}")
        return record

    def get_encrypted_handle(self, record_id: str) -> str:
        return self.get_record(record_id).encrypted_markers

    def list_record_ids(self) -> List[str]:
        with self._guard:
            return list(self._record_ids)

    def records(self) -> List[GeneticRecord]:
        """All record snapshots in creation order."""
        with self._guard:
            return [self._records[rid] for rid in self._record_ids]

    def count(self) -> int:
        with self._guard:
            return len(self._record_ids)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, record_id: object) -> bool:
        with self._guard:
            return record_id in self._records

    # Handle registry consulted by the decryption oracle

    def is_publicly_decryptable(self, handle: str) -> bool:
        return self.acl.is_publicly_decryptable(handle)

    def ciphertext_of(self, handle: str) -> bytes:
        with self._guard:
            ct = self._ciphertexts.get(handle)
        if ct is None:
            raise NotFound(f"Unknown ciphertext handle: {handle}")
        return ct

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @property
    def events(self) -> List[StoreEvent]:
        with self._guard:
            return list(self._events)

    def subscribe(self, listener: EventListener) -> None:
        with self._guard:
            self._listeners.append(listener)

    def _notify(self, event: StoreEvent) -> None:
        with self._guard:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                # Events are notifications; the transition is already committed.
                logger.error(f"Event listener failed on {event.kind}: {e}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, record_id: str) -> threading.Lock:
        # Entries live only while some caller holds a reference to the lock.
        with self._guard:
            lock = self._id_locks.get(record_id)
            if lock is None:
                lock = threading.Lock()
                self._id_locks[record_id] = lock
            return lock

    def _commit(self, payload: dict, caller: str, publish: Callable[[], None]) -> None:
        """
        Append a ledger block, then publish the in-memory change.

        publish runs under the guard lock, inside the ledger's append lock, so
        ledger order and publication order agree. The disk sync happens
        before the guard lock is taken.
        """
        def _publish(_block: dict) -> None:
            with self._guard:
                publish()

        if self._ledger is None:
            _publish({})
        else:
            self._ledger.append(payload, caller, on_commit=_publish)

    def _register(self, record: GeneticRecord, ciphertext: bytes) -> None:
        # Caller holds the guard lock.
        handle = record.encrypted_markers
        self.acl.allow(handle, self.address)
        self.acl.make_publicly_decryptable(handle)
        self._ciphertexts[handle] = ciphertext
        self._handle_owner[handle] = record.record_id
        self._records[record.record_id] = record
        self._record_ids.append(record.record_id)

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    @classmethod
    def from_ledger(
        cls,
        ledger: HashChainedLedger,
        address: str,
        validator: ProofValidator,
        decryption_signer_pem: bytes,
        *,
        strict: bool = True,
        metrics: Optional[Metrics] = None,
    ) -> RecordStore:
        """
        Rebuild a store by replaying its durable log.

        With strict=True the hash chain is verified first, every handle is
        recomputed from its ciphertext, and every decryption proof is
        re-verified.

        Raises:
            LedgerIntegrityError: If any check fails or a block is malformed
        """
        store = cls(address, validator, decryption_signer_pem, metrics=metrics)
        try:
            if strict and not ledger.verify():
                raise LedgerIntegrityError(f"Ledger hash chain verification failed: {ledger.path}")
            for block in ledger.blocks():
                payload = block["payload"]
                kind = payload.get("kind")
                if kind == "RecordCommit":
                    store._replay_commit(RecordCommit.model_validate(payload), strict)
                elif kind == "AnalysisCommit":
                    store._replay_analysis(AnalysisCommit.model_validate(payload), strict)
                else:
                    raise LedgerIntegrityError(f"Unknown ledger payload kind: {kind}")
        except (ValidationError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise LedgerIntegrityError(f"Malformed ledger block: {e}") from e

        store._ledger = ledger
        logger.info(f"Replayed {store.count()} records from {ledger.path}")
        return store

    def _replay_commit(self, commit: RecordCommit, strict: bool) -> None:
        record = commit.record
        ciphertext = b64d(commit.ciphertext_b64)
        if record.record_id in self._records:
            raise LedgerIntegrityError(f"Record committed twice: {record.record_id}")
        if strict and ciphertext_handle(ciphertext, self.address) != record.encrypted_markers:
            raise LedgerIntegrityError(f"Handle mismatch for record {record.record_id}")
        with self._guard:
            self._register(record, ciphertext)

    def _replay_analysis(self, commit: AnalysisCommit, strict: bool) -> None:
        record = self._records.get(commit.record_id)
        if record is None or record.is_analyzed:
            raise LedgerIntegrityError(f"Analysis out of order for record {commit.record_id}")
        if strict:
            cleartext = bytes.fromhex(commit.cleartext_hex)
            digest = decryption_digest([record.encrypted_markers], cleartext)
            if not verify_digest(self._decryption_signer_pem, digest, b64d(commit.proof_b64)):
                raise LedgerIntegrityError(f"Decryption proof invalid for record {commit.record_id}")
            try:
                value = decode_cleartext(cleartext)
            except DecodeError as e:
                raise LedgerIntegrityError(str(e)) from e
            if value != commit.decrypted_similarity:
                raise LedgerIntegrityError(f"Cleartext mismatch for record {commit.record_id}")
        with self._guard:
            self._records[commit.record_id] = record.model_copy(
                update={"decrypted_similarity": commit.decrypted_similarity, "is_analyzed": True}
            )
