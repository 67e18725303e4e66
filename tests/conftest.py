"""Shared fixtures: a local oracle, a ledger-backed store, a coordinator."""

import pytest

from ancestry_ledger.coordinator import VerificationCoordinator
from ancestry_ledger.hashing import derive_store_address
from ancestry_ledger.ledger import HashChainedLedger
from ancestry_ledger.models import EncryptionContext
from ancestry_ledger.store import RecordStore
from fhe_gateway.oracle import LocalOracle

STORE_ADDRESS = derive_store_address("test-store")
OTHER_STORE_ADDRESS = derive_store_address("other-store")


@pytest.fixture(scope="session")
def oracle_keys():
    """Key generation is the slow part; share one key set per session."""
    return LocalOracle.generate().export_keys()


@pytest.fixture
def oracle(oracle_keys):
    return LocalOracle.from_keys(oracle_keys)


@pytest.fixture
def ledger(tmp_path):
    return HashChainedLedger(str(tmp_path / "ledger.jsonl"))


@pytest.fixture
def store(oracle, ledger):
    s = RecordStore(
        STORE_ADDRESS,
        oracle.verifier,
        oracle.decryption_public_pem,
        ledger=ledger,
    )
    oracle.attach(s)
    return s


@pytest.fixture
def coordinator(store, oracle):
    return VerificationCoordinator(store, oracle)


@pytest.fixture
def encrypt_for(oracle, store):
    """Encrypt a value for (store, caller) -> (ciphertext, validity proof)."""
    def _encrypt(value: int, caller: str = "alice", target_store: str = None):
        ctx = EncryptionContext(target_store=target_store or store.address, caller=caller)
        return oracle.encrypt(value, ctx)
    return _encrypt


@pytest.fixture
def create(store, encrypt_for):
    """Create a record holding `value`, owned by `caller`."""
    def _create(record_id: str, value: int = 42, caller: str = "alice", metadata: int = 5):
        ct, proof = encrypt_for(value, caller)
        return store.create_record(
            record_id, f"seq-{record_id}", ct, proof, metadata, "DNA Ancestry Analysis", caller
        )
    return _create
