"""
Store and coordinator configuration with fail-closed defaults.

Environment variables control behavior:
- ANCESTRY_STATE_DIR: Directory for the ledger and local oracle keys (default: ./state)
- ANCESTRY_STORE_NAME: Name hashed into the store address
- ANCESTRY_STORE_ADDRESS: Explicit store address (overrides the derived one)
- ANCESTRY_ORACLE_TIMEOUT_S: Deadline for oracle calls, 0 disables (default: 30)
- ANCESTRY_STRICT_LEDGER: Fail if the ledger fails verification on replay (default: true)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from eth_utils import is_address, to_checksum_address

from ancestry_ledger.hashing import derive_store_address


def _opt(name: str, default: str) -> str:
    """Get optional environment variable with default."""
    return os.getenv(name, default)


def _opt_bool(name: str, default: bool) -> bool:
    """Parse boolean environment variable."""
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _opt_float(name: str, default: float) -> float:
    """Parse float environment variable."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    try:
        return float(v)
    except ValueError:
        raise RuntimeError(f"Invalid float for env var {name}: {v!r}")


@dataclass(frozen=True)
class Settings:
    """Record store configuration."""

    STATE_DIR: str = "./state"
    STORE_NAME: str = "ancestry-record-store"
    STORE_ADDRESS: str = ""

    # Coordinator deadline for gateway calls (seconds, 0 = none)
    ORACLE_TIMEOUT_S: float = 30.0

    # Fail-closed replay (default: strict)
    STRICT_LEDGER: bool = True

    @property
    def ledger_path(self) -> str:
        return os.path.join(self.STATE_DIR, "ledger.jsonl")

    @property
    def oracle_keys_path(self) -> str:
        return os.path.join(self.STATE_DIR, "oracle_keys.json")

    @property
    def store_address(self) -> str:
        if self.STORE_ADDRESS:
            if not is_address(self.STORE_ADDRESS):
                raise RuntimeError(f"Invalid store address: {self.STORE_ADDRESS}")
            return to_checksum_address(self.STORE_ADDRESS)
        return derive_store_address(self.STORE_NAME)

    @property
    def oracle_timeout(self) -> Optional[float]:
        return self.ORACLE_TIMEOUT_S if self.ORACLE_TIMEOUT_S > 0 else None

    @staticmethod
    def load() -> Settings:
        """Load settings from environment variables."""
        return Settings(
            STATE_DIR=_opt("ANCESTRY_STATE_DIR", "./state"),
            STORE_NAME=_opt("ANCESTRY_STORE_NAME", "ancestry-record-store"),
            STORE_ADDRESS=_opt("ANCESTRY_STORE_ADDRESS", ""),
            ORACLE_TIMEOUT_S=_opt_float("ANCESTRY_ORACLE_TIMEOUT_S", 30.0),
            STRICT_LEDGER=_opt_bool("ANCESTRY_STRICT_LEDGER", True),
        )
