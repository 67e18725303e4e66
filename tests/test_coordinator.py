"""
Coordinator tests with fake gateways.

Outages, deadlines and the verification race are driven by wrapping the
local oracle, so the store still checks real proofs.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from ancestry_ledger.coordinator import VerificationCoordinator
from ancestry_ledger.errors import (
    DecryptionNotPermitted,
    DuplicateRecord,
    EncryptionUnavailable,
    InvalidProof,
    NotFound,
    OracleUnavailable,
)
from ancestry_ledger.models import AnalysisComplete
from fhe_gateway.gateway import DecryptionResult


class SlowGateway:
    """Delays every call past the coordinator's deadline."""

    def __init__(self, inner, delay):
        self.inner = inner
        self.delay = delay

    def encrypt(self, plaintext, context):
        time.sleep(self.delay)
        return self.inner.encrypt(plaintext, context)

    def request_decryption(self, handles, context):
        time.sleep(self.delay)
        return self.inner.request_decryption(handles, context)


class BarrierGateway:
    """Holds decryption answers until `parties` callers have all asked."""

    def __init__(self, inner, parties):
        self.inner = inner
        self.barrier = threading.Barrier(parties, timeout=10)

    def encrypt(self, plaintext, context):
        return self.inner.encrypt(plaintext, context)

    def request_decryption(self, handles, context):
        result = self.inner.request_decryption(handles, context)
        self.barrier.wait()
        return result


class LyingGateway:
    """Answers decryption with a different value than the proof covers."""

    def __init__(self, inner):
        self.inner = inner

    def encrypt(self, plaintext, context):
        return self.inner.encrypt(plaintext, context)

    def request_decryption(self, handles, context):
        real = self.inner.request_decryption(handles, context)
        forged = {h: v + 1 for h, v in real.clear_values.items()}
        return DecryptionResult(clear_values=forged, cleartext=b"", proof=real.proof, handles=real.handles)


class EmptyGateway:
    def __init__(self, inner):
        self.inner = inner

    def encrypt(self, plaintext, context):
        return self.inner.encrypt(plaintext, context)

    def request_decryption(self, handles, context):
        return DecryptionResult(clear_values={}, cleartext=b"", proof=b"", handles=tuple(handles))


class HangingGateway:
    """Hangs the first `hangs` decryption calls until released, then answers."""

    def __init__(self, inner, hangs):
        self.inner = inner
        self.hangs = hangs
        self.calls = 0
        self.release = threading.Event()
        self._lock = threading.Lock()

    def encrypt(self, plaintext, context):
        return self.inner.encrypt(plaintext, context)

    def request_decryption(self, handles, context):
        with self._lock:
            self.calls += 1
            hang = self.calls <= self.hangs
        if hang:
            self.release.wait(timeout=30)
            raise OracleUnavailable("hung call released")
        return self.inner.request_decryption(handles, context)


class TestSubmit:

    def test_submit_creates_record(self, coordinator, store):
        rid = coordinator.submit_encrypted_record("alice", 42, 5, "DNA Ancestry Analysis")

        assert rid.startswith("dna_")
        record = store.get_record(rid)
        assert record.owner == "alice"
        assert record.public_metadata == 5
        assert record.is_analyzed is False
        assert record.sequence_hash

    def test_submit_with_explicit_id(self, coordinator, store):
        rid = coordinator.submit_encrypted_record("alice", 1, 0, "d", record_id="mine")
        assert rid == "mine"
        assert store.list_record_ids() == ["mine"]

    def test_submit_duplicate_propagates(self, coordinator):
        coordinator.submit_encrypted_record("alice", 1, 0, "d", record_id="r1")
        with pytest.raises(DuplicateRecord):
            coordinator.submit_encrypted_record("bob", 2, 0, "d", record_id="r1")

    def test_submit_out_of_range_rejected_before_oracle(self, coordinator, store):
        with pytest.raises(ValueError):
            coordinator.submit_encrypted_record("alice", 2**32, 0, "d")
        with pytest.raises(ValueError):
            coordinator.submit_encrypted_record("alice", -1, 0, "d")
        assert len(store) == 0

    def test_submit_oracle_offline(self, coordinator, oracle, store):
        oracle.set_available(False)
        with pytest.raises(EncryptionUnavailable) as exc:
            coordinator.submit_encrypted_record("alice", 42, 5, "d")
        assert exc.value.retryable is True
        assert len(store) == 0
        assert coordinator.metrics.counters["oracle_errors_total"] == 1

    def test_submit_deadline(self, store, oracle):
        coord = VerificationCoordinator(store, SlowGateway(oracle, 0.5), oracle_timeout=0.05)
        with pytest.raises(EncryptionUnavailable):
            coord.submit_encrypted_record("alice", 42, 5, "d")
        assert len(store) == 0

    def test_proof_for_other_store_rejected(self, store, oracle):
        """A gateway that binds proofs to the wrong store is caught by the store."""

        class MisroutingGateway:
            def encrypt(self, plaintext, context):
                wrong = context.model_copy(update={"caller": "mallory"})
                return oracle.encrypt(plaintext, wrong)

            def request_decryption(self, handles, context):
                return oracle.request_decryption(handles, context)

        coord = VerificationCoordinator(store, MisroutingGateway())
        with pytest.raises(InvalidProof):
            coord.submit_encrypted_record("alice", 42, 5, "d")
        assert len(store) == 0


class TestVerify:

    def test_verify_then_cached(self, coordinator, store):
        rid = coordinator.submit_encrypted_record("alice", 42, 5, "d")

        first = coordinator.request_verification(rid, "alice")
        assert (first.value, first.source) == (42, "verified")
        assert first.mutated

        second = coordinator.request_verification(rid, "bob")
        assert (second.value, second.source) == (42, "cached")
        assert not second.mutated

        assert store.get_record(rid).decrypted_similarity == 42
        assert coordinator.metrics.counters["verification_fast_path_total"] == 1

    def test_verify_boundary_values(self, coordinator):
        for value in (0, 2**32 - 1):
            rid = coordinator.submit_encrypted_record("alice", value, 0, "d")
            assert coordinator.request_verification(rid, "alice").value == value

    def test_verify_missing(self, coordinator):
        with pytest.raises(NotFound):
            coordinator.request_verification("nope", "alice")

    def test_verify_oracle_offline_no_mutation(self, coordinator, oracle, store):
        rid = coordinator.submit_encrypted_record("alice", 42, 5, "d")
        oracle.set_available(False)

        with pytest.raises(OracleUnavailable) as exc:
            coordinator.request_verification(rid, "alice")
        assert exc.value.retryable is True
        assert store.get_record(rid).is_analyzed is False

        oracle.set_available(True)
        assert coordinator.request_verification(rid, "alice").value == 42

    def test_verify_deadline(self, store, oracle, coordinator):
        rid = coordinator.submit_encrypted_record("alice", 42, 5, "d")
        slow = VerificationCoordinator(store, SlowGateway(oracle, 0.5), oracle_timeout=0.05)
        with pytest.raises(OracleUnavailable):
            slow.request_verification(rid, "alice")
        assert store.get_record(rid).is_analyzed is False

    def test_verification_recovers_after_timed_out_calls(self, store, oracle):
        """Abandoned calls past the deadline do not block later calls."""
        gateway = HangingGateway(oracle, hangs=6)
        coord = VerificationCoordinator(store, gateway, oracle_timeout=0.2)
        rid = coord.submit_encrypted_record("alice", 42, 5, "d")

        try:
            for _ in range(6):
                with pytest.raises(OracleUnavailable):
                    coord.request_verification(rid, "alice")
            assert store.get_record(rid).is_analyzed is False

            result = coord.request_verification(rid, "alice")
            assert (result.value, result.source) == (42, "verified")
            assert gateway.calls == 7
        finally:
            gateway.release.set()

    def test_lying_oracle_rejected(self, store, oracle):
        coord = VerificationCoordinator(store, LyingGateway(oracle))
        rid = coord.submit_encrypted_record("alice", 42, 5, "d")

        with pytest.raises(InvalidProof):
            coord.request_verification(rid, "alice")
        assert store.get_record(rid).is_analyzed is False

    def test_answer_missing_handle(self, store, oracle):
        coord = VerificationCoordinator(store, EmptyGateway(oracle))
        rid = coord.submit_encrypted_record("alice", 42, 5, "d")

        with pytest.raises(OracleUnavailable):
            coord.request_verification(rid, "alice")

    def test_decryption_refused_for_ungranted_handle(self, oracle, store):
        from ancestry_ledger.models import EncryptionContext

        ctx = EncryptionContext(target_store=store.address, caller="alice")
        with pytest.raises(DecryptionNotPermitted):
            oracle.request_decryption(["0x" + "00" * 32], ctx)


class TestVerificationRace:

    def test_concurrent_verifiers_converge(self, store, oracle):
        """Both callers get 42; exactly one transition and one event."""
        coord = VerificationCoordinator(store, BarrierGateway(oracle, parties=2))
        rid = coord.submit_encrypted_record("alice", 42, 5, "d")

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(coord.request_verification, rid, c) for c in ("alice", "bob")]
            results = [f.result(timeout=20) for f in futures]

        assert [r.value for r in results] == [42, 42]
        assert sorted(r.source for r in results) == ["converged", "verified"]
        assert sum(isinstance(e, AnalysisComplete) for e in store.events) == 1
        assert coord.metrics.counters["verification_races_total"] == 1

    def test_many_verifiers_one_transition(self, store, oracle):
        parties = 6
        coord = VerificationCoordinator(store, BarrierGateway(oracle, parties=parties))
        rid = coord.submit_encrypted_record("alice", 1234, 5, "d")

        with ThreadPoolExecutor(max_workers=parties) as pool:
            results = list(pool.map(lambda c: coord.request_verification(rid, c),
                                    [f"caller-{i}" for i in range(parties)]))

        assert {r.value for r in results} == {1234}
        assert [r.source for r in results].count("verified") == 1
        assert store.metrics.counters["analyses_completed_total"] == 1
