"""
Error taxonomy for the record store, the verification coordinator and the
encryption gateway.

Every error carries a stable ``code`` and a ``retryable`` flag. Only
EncryptionUnavailable and OracleUnavailable are retryable: they are raised
before any RecordStore mutation is attempted.
"""

from __future__ import annotations


class AncestryLedgerError(Exception):
    """Base class for all ledger, gateway and coordinator failures."""

    code = "ANCESTRY_LEDGER_ERROR"
    retryable = False


class DuplicateRecord(AncestryLedgerError):
    """A record already exists under the requested identifier."""

    code = "DUPLICATE_RECORD"


class NotFound(AncestryLedgerError):
    """No record exists under the requested identifier."""

    code = "NOT_FOUND"


class InvalidProof(AncestryLedgerError):
    """A validity proof or decryption signature failed verification."""

    code = "INVALID_PROOF"


class AlreadyAnalyzed(AncestryLedgerError):
    """The record has already been transitioned to the analyzed state."""

    code = "ALREADY_ANALYZED"


class DecodeError(AncestryLedgerError):
    """Cleartext bytes do not match the expected ABI encoding."""

    code = "DECODE_ERROR"


class EncryptionUnavailable(AncestryLedgerError):
    """The encryption oracle could not be reached."""

    code = "ENCRYPTION_UNAVAILABLE"
    retryable = True


class OracleUnavailable(AncestryLedgerError):
    """The decryption oracle could not be reached or missed its deadline."""

    code = "ORACLE_UNAVAILABLE"
    retryable = True


class DecryptionNotPermitted(AncestryLedgerError):
    """The oracle refused a handle that carries no public-decryption grant."""

    code = "DECRYPTION_NOT_PERMITTED"


class LedgerIntegrityError(AncestryLedgerError):
    """The durable log failed chain, handle or proof verification."""

    code = "LEDGER_INTEGRITY"


class SchemaDowngradeError(AncestryLedgerError):
    """Raised when a payload has an unsupported or older schema."""

    code = "SCHEMA_DOWNGRADE"
