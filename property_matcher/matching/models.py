"""Data models for the matching engine.

Verdicts, evaluations and match results are plain dataclasses: they are
ephemeral, computed on demand and never persisted as-is. ``to_dict`` gives a
stable JSON-friendly form used for alert storage and for comparing runs.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from property_matcher.utils.timestamps import format_timestamp, parse_iso_datetime


class VerdictStatus(str, Enum):
    """Outcome of a single criterion."""

    MATCH = "match"
    PARTIAL = "partial"
    MISS = "miss"


def _as_number(value: Decimal) -> Any:
    """Render a Decimal as int when whole, float otherwise."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class CriterionVerdict:
    """Verdict for one criterion of one (profile, listing) pair.

    Attributes:
        criterion_key: Criterion name (budget, location, property_type, ...)
        weight: Weight of the criterion in the active weight table
        status: match, partial or miss
        contribution: Points earned, always within [0, weight]
        detail: Human-readable justification
    """

    criterion_key: str
    weight: Decimal
    status: VerdictStatus
    contribution: Decimal
    detail: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion_key": self.criterion_key,
            "weight": _as_number(self.weight),
            "status": self.status.value,
            "contribution": _as_number(self.contribution),
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CriterionVerdict":
        return cls(
            criterion_key=data["criterion_key"],
            weight=Decimal(str(data["weight"])),
            status=VerdictStatus(data["status"]),
            contribution=Decimal(str(data["contribution"])),
            detail=data.get("detail", ""),
        )


@dataclass
class Evaluation:
    """All verdicts for one (profile, listing) pair.

    Only criteria the profile specified appear in ``verdicts``; they alone
    make up ``total_weight``.
    """

    profile_id: str
    listing_id: str
    verdicts: List[CriterionVerdict] = field(default_factory=list)

    @property
    def total_weight(self) -> Decimal:
        return sum((v.weight for v in self.verdicts), Decimal(0))

    @property
    def achieved(self) -> Decimal:
        return sum((v.contribution for v in self.verdicts), Decimal(0))

    def verdict_for(self, criterion_key: str) -> Optional[CriterionVerdict]:
        for verdict in self.verdicts:
            if verdict.criterion_key == criterion_key:
                return verdict
        return None


@dataclass
class MatchResult:
    """Score and justification for one (profile, listing) pair.

    Attributes:
        profile_id: Evaluated profile
        listing_id: Evaluated listing
        score: Integer compatibility score, 0-100
        verdicts: Per-criterion verdicts in evaluation order
        computed_at: Timestamp supplied by the caller (or now)
        listing_published_at: Listing publication date, used for tie-breaking
    """

    profile_id: str
    listing_id: str
    score: int
    verdicts: List[CriterionVerdict]
    computed_at: datetime
    listing_published_at: Optional[datetime] = None

    def verdict_for(self, criterion_key: str) -> Optional[CriterionVerdict]:
        for verdict in self.verdicts:
            if verdict.criterion_key == criterion_key:
                return verdict
        return None

    def verdicts_as_dicts(self) -> List[Dict[str, Any]]:
        return [v.to_dict() for v in self.verdicts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile_id": self.profile_id,
            "listing_id": self.listing_id,
            "score": self.score,
            "verdicts": self.verdicts_as_dicts(),
            "computed_at": format_timestamp(self.computed_at, include_microseconds=True),
            "listing_published_at": format_timestamp(
                self.listing_published_at, include_microseconds=True
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchResult":
        return cls(
            profile_id=data["profile_id"],
            listing_id=data["listing_id"],
            score=int(data["score"]),
            verdicts=[CriterionVerdict.from_dict(v) for v in data.get("verdicts", [])],
            computed_at=parse_iso_datetime(data["computed_at"]),
            listing_published_at=parse_iso_datetime(data.get("listing_published_at")),
        )


@dataclass
class PairOutcome:
    """Result or error for one pair of a batch; pairs never fail each other."""

    listing_id: str
    result: Optional[MatchResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }


@dataclass
class RankingResult:
    """Ranked candidates for one profile.

    Attributes:
        profile_id: Ranked profile
        min_score: Inclusive score floor applied
        limit: Maximum candidates kept
        candidates: Qualifying results, best first
        evaluated: Active listings evaluated
        below_threshold: Evaluated listings that scored under min_score
        failures: Pairs whose evaluation raised an error
        computed_at: Timestamp shared by every result of the ranking
    """

    profile_id: str
    min_score: int
    limit: int
    computed_at: datetime
    candidates: List[MatchResult] = field(default_factory=list)
    evaluated: int = 0
    below_threshold: int = 0
    failures: List[PairOutcome] = field(default_factory=list)

    @property
    def listing_ids(self) -> List[str]:
        return [c.listing_id for c in self.candidates]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile_id": self.profile_id,
            "min_score": self.min_score,
            "limit": self.limit,
            "computed_at": format_timestamp(self.computed_at, include_microseconds=True),
            "candidates": [c.to_dict() for c in self.candidates],
            "evaluated": self.evaluated,
            "below_threshold": self.below_threshold,
            "failures": [f.to_dict() for f in self.failures],
        }

    def to_json(self) -> str:
        """Canonical JSON form; identical rankings serialise to identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
