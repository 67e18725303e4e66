"""
Ancestry Ledger - Encrypted genetic marker records with proof-verified analysis.

Schema Version: ancestry-ledger/v1
Record lifecycle: created (encrypted, opaque) -> analyzed (verified cleartext, final)
"""

__version__ = "0.1.0"
__schema__ = "ancestry-ledger/v1"

# Supported schema versions (for replaying older ledgers)
SUPPORTED_SCHEMAS = [
    "ancestry-ledger/v1",
]

# Minimum required schema for new ledger blocks
MIN_SCHEMA_VERSION = "ancestry-ledger/v1"
