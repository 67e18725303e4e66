from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from ancestry_ledger import MIN_SCHEMA_VERSION, SUPPORTED_SCHEMAS

from .errors import LedgerIntegrityError, SchemaDowngradeError
from .hashing import h_block

logger = logging.getLogger(__name__)

GENESIS_HASH = h_block({"genesis": True})


def _check_schema(payload: Dict[str, Any]) -> None:
    schema = payload.get("schema")
    if not schema:
        return
    if schema not in SUPPORTED_SCHEMAS:
        raise SchemaDowngradeError(f"Unsupported schema '{schema}'. Supported: {SUPPORTED_SCHEMAS}")
    if schema < MIN_SCHEMA_VERSION:
        raise SchemaDowngradeError(
            f"Schema '{schema}' older than minimum required '{MIN_SCHEMA_VERSION}'"
        )


def _header(prev_hash: str, payload: Any, caller: Any) -> Dict[str, Any]:
    return {"prev_hash": prev_hash, "payload": payload, "caller": caller}


class HashChainedLedger:
    """
    Durable, append-only backing log for the record store (JSON lines).

    Each block commits to its predecessor and names the authenticated caller
    that caused the write:
      {
        "prev_hash": "...",
        "payload": {...},
        "caller": "alice",
        "block_hash": "..."
      }
    Appends are flushed and fsynced before they return.
    """

    def __init__(self, path: str):
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        if not os.path.exists(path):
            open(path, "wb").close()
        self._lock = threading.Lock()
        self._tip = GENESIS_HASH
        self._count = 0
        self._damaged = False
        try:
            for block in self.iter_blocks():
                self._tip = block.get("block_hash", self._tip)
                self._count += 1
        except LedgerIntegrityError as e:
            # Still opened so first_invalid can locate the damage; replay refuses it.
            self._damaged = True
            logger.warning(f"Ledger has an unreadable block after {self._count} blocks: {e}")

    def __len__(self) -> int:
        return self._count

    def tip_hash(self) -> str:
        return self._tip

    def iter_blocks(self) -> Iterator[Dict[str, Any]]:
        """
        Yield blocks in append order.

        Raises:
            LedgerIntegrityError: On a line that is not a JSON object
        """
        with open(self.path, "rb") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    block = json.loads(line)
                except ValueError as e:
                    raise LedgerIntegrityError(f"{self.path}:{lineno}: unreadable block") from e
                if not isinstance(block, dict):
                    raise LedgerIntegrityError(f"{self.path}:{lineno}: block is not an object")
                yield block

    def blocks(self) -> List[Dict[str, Any]]:
        return list(self.iter_blocks())

    def append(
        self,
        payload: Dict[str, Any],
        caller: str,
        on_commit: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        """
        Append one block. on_commit runs after the sync, still under the
        append lock, so callers can publish in ledger order.
        """
        _check_schema(payload)
        if self._damaged:
            raise LedgerIntegrityError(f"Refusing to append to a damaged ledger: {self.path}")
        with self._lock:
            header = _header(self._tip, payload, caller)
            block = {**header, "block_hash": h_block(header)}
            line = json.dumps(block, sort_keys=True, separators=(",", ":")).encode("utf-8")
            with open(self.path, "ab") as f:
                f.write(line + b"\n")
                f.flush()
                os.fsync(f.fileno())
            self._tip = block["block_hash"]
            self._count += 1
            if on_commit is not None:
                on_commit(block)
        return block

    def first_invalid(self) -> Optional[int]:
        """Index of the first block that breaks the chain, or None."""
        prev = GENESIS_HASH
        index = 0
        try:
            for b in self.iter_blocks():
                if b.get("prev_hash") != prev:
                    return index
                if b.get("block_hash") != h_block(_header(prev, b.get("payload"), b.get("caller"))):
                    return index
                prev = b["block_hash"]
                index += 1
        except LedgerIntegrityError:
            return index
        return None

    def verify(self) -> bool:
        return self.first_invalid() is None

    def find_by(self, key: str, value: str) -> List[Dict[str, Any]]:
        """Blocks whose payload has ``payload[key] == value``."""
        return [
            b for b in self.iter_blocks()
            if isinstance(b.get("payload"), dict) and b["payload"].get(key) == value
        ]
