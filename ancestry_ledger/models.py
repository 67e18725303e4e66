from __future__ import annotations

import time
import uuid
from typing import Literal, Optional

from pydantic import BaseModel, Field

from ancestry_ledger import __schema__


def now_utc() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

def new_id(prefix: str) -> str:
    """
    Generate UUIDv7-style time-ordered ID for collision resistance + audit ordering.

    Format: {prefix}_{timestamp_ms:013x}_{random:016x}
    """
    timestamp_ms = int(time.time() * 1000)
    random_bits = uuid.uuid4().hex[:16]  # 64 random bits
    return f"{prefix}_{timestamp_ms:013x}_{random_bits}"

class EncryptionContext(BaseModel):
    """Binds a ciphertext to the store it targets and the caller submitting it."""
    target_store: str
    caller: str

    model_config = {"frozen": True}

class GeneticRecord(BaseModel):
    """
    One encrypted genetic marker plus its public metadata and verification state.

    Instances are frozen: the store replaces a record wholesale on its single
    transition, so any instance handed to a reader is a consistent snapshot.
    """
    kind: Literal["GeneticRecord"] = "GeneticRecord"
    schema_version: str = Field(default=__schema__, alias="schema")
    record_id: str
    sequence_hash: str
    encrypted_markers: str  # ciphertext handle, 0x-prefixed bytes32
    public_metadata: int
    description: str
    owner: str
    created_utc: str = Field(default_factory=now_utc)
    decrypted_similarity: Optional[int] = None  # unset until analyzed
    is_analyzed: bool = False

    model_config = {"populate_by_name": True, "frozen": True}

class RecordCreated(BaseModel):
    kind: Literal["RecordCreated"] = "RecordCreated"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("ev"))
    created_utc: str = Field(default_factory=now_utc)
    record_id: str
    owner: str
    encrypted_markers: str

    model_config = {"populate_by_name": True, "frozen": True}

class AnalysisComplete(BaseModel):
    kind: Literal["AnalysisComplete"] = "AnalysisComplete"
    schema_version: str = Field(default=__schema__, alias="schema")
    event_id: str = Field(default_factory=lambda: new_id("ev"))
    created_utc: str = Field(default_factory=now_utc)
    record_id: str
    decrypted_similarity: int

    model_config = {"populate_by_name": True, "frozen": True}

class RecordCommit(BaseModel):
    """Ledger payload for a record creation (replayable)."""
    kind: Literal["RecordCommit"] = "RecordCommit"
    schema_version: str = Field(default=__schema__, alias="schema")
    record: GeneticRecord
    ciphertext_b64: str

    model_config = {"populate_by_name": True}

class AnalysisCommit(BaseModel):
    """Ledger payload for a verified analysis; keeps the proof for re-verification."""
    kind: Literal["AnalysisCommit"] = "AnalysisCommit"
    schema_version: str = Field(default=__schema__, alias="schema")
    record_id: str
    decrypted_similarity: int
    cleartext_hex: str
    proof_b64: str

    model_config = {"populate_by_name": True}
