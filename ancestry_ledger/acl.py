from __future__ import annotations

import threading
from typing import Dict, Set


class HandleACL:
    """
    Capability grants keyed by ciphertext handle.

    Two grants exist:
    - compute: an account may use the handle as an operand
    - public decryption: the oracle may reveal the handle's cleartext

    Ciphertext bytes are always readable; decryption is a separate capability.
    Grants are set once and never revoked.
    """

    def __init__(self) -> None:
        self._compute: Dict[str, Set[str]] = {}
        self._public: Set[str] = set()
        self._lock = threading.Lock()

    def allow(self, handle: str, account: str) -> None:
        with self._lock:
            self._compute.setdefault(handle, set()).add(account)

    def is_allowed(self, handle: str, account: str) -> bool:
        with self._lock:
            return account in self._compute.get(handle, ())

    def make_publicly_decryptable(self, handle: str) -> None:
        with self._lock:
            self._public.add(handle)

    def is_publicly_decryptable(self, handle: str) -> bool:
        with self._lock:
            return handle in self._public
