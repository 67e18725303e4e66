"""
Derived ancestry metrics.

Scores are computed from a record's verified similarity and its public
metadata. An unanalyzed record has no authoritative similarity: the score
falls back to the public metadata (or a neutral 50) and is flagged
``verified=False``.
"""

from __future__ import annotations

import calendar
import math
import time
from typing import Iterable, Optional

from pydantic import BaseModel

from .models import GeneticRecord

NEUTRAL_SIMILARITY = 50
NEUTRAL_ETHNICITY = 5
DECAY_WINDOW_S = 60 * 60 * 24 * 30  # 30 days


class AncestryAnalysis(BaseModel):
    record_id: str
    similarity_score: int
    ethnic_diversity: int
    genetic_markers: int
    privacy_level: float
    confidence: int
    verified: bool


class StoreSummary(BaseModel):
    total: int
    verified: int
    average_metadata: float


def _round(x: float) -> int:
    # half-up, not banker's rounding
    return int(math.floor(x + 0.5))


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _epoch(utc: str) -> int:
    return calendar.timegm(time.strptime(utc, "%Y-%m-%dT%H:%M:%SZ"))


def analyze_record(record: GeneticRecord, now: Optional[float] = None) -> AncestryAnalysis:
    now = time.time() if now is None else now
    if record.is_analyzed and record.decrypted_similarity is not None:
        similarity = record.decrypted_similarity
    else:
        similarity = record.public_metadata or NEUTRAL_SIMILARITY
    ethnicity = record.public_metadata or NEUTRAL_ETHNICITY

    base = min(100, _round((similarity * 0.8 + ethnicity * 0.2) * 1.2))
    age = now - _epoch(record.created_utc)
    time_factor = _clamp(1 - age / DECAY_WINDOW_S, 0.7, 1.3)

    return AncestryAnalysis(
        record_id=record.record_id,
        similarity_score=_round(base * time_factor),
        ethnic_diversity=_round(ethnicity * 8 + math.log(max(similarity, 0) + 1) * 2),
        genetic_markers=_round(similarity * 0.6 + ethnicity * 0.4),
        privacy_level=_clamp(100 - (similarity * 0.05 + ethnicity * 0.1), 85, 99),
        confidence=min(95, _round((similarity * 0.7 + ethnicity * 0.3) * 0.95)),
        verified=record.is_analyzed,
    )


def summarize(records: Iterable[GeneticRecord]) -> StoreSummary:
    records = list(records)
    total = len(records)
    return StoreSummary(
        total=total,
        verified=sum(1 for r in records if r.is_analyzed),
        average_metadata=(sum(r.public_metadata for r in records) / total) if total else 0.0,
    )
