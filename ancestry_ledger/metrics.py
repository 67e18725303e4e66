"""
Non-behavioral system metrics.

Privacy boundary:
- No record identifiers
- No plaintext or cleartext values
- System health only
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class Metrics:
    """
    Counters and gauges shared by the record store and the coordinator.

    Tracks protocol health (proof rejections, races, oracle latency), never
    what a record contains.
    """

    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, name: str, by: int = 1) -> None:
        """Increment counter by value."""
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + by

    def observe(self, name: str, value: float) -> None:
        """Record gauge value."""
        with self._lock:
            self.gauges[name] = float(value)

    def snapshot(self) -> dict:
        """Return current metrics snapshot."""
        with self._lock:
            return {
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
            }
