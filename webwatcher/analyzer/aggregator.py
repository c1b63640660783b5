"""Risk aggregation: weighted merge of collector results into one verdict.

Unavailable sources drop out of the denominator so an outage neither reads
as "clean" nor inflates the score. A malicious reputation vote raises the
result to at least the likely-phishing band of the active policy.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional

from ..config import Config
from ..errors import AggregationImpossible
from .reputation import MALICIOUS, SUSPICIOUS
from .signals import Available, SignalResult

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient_data"


class Verdict(str, Enum):
    """Coarse risk verdict derived from the overall score."""

    NO_STRONG_SIGNALS = "no_strong_signals"
    SUSPICIOUS = "suspicious"
    LIKELY_PHISHING = "likely_phishing"


@dataclass(frozen=True)
class VerdictPolicy:
    """Score bands; an exact boundary belongs to the more severe band."""

    name: str
    suspicious_at: int = 30
    likely_phishing_at: int = 60

    def band(self, score: int) -> Verdict:
        if score >= self.likely_phishing_at:
            return Verdict.LIKELY_PHISHING
        if score >= self.suspicious_at:
            return Verdict.SUSPICIOUS
        return Verdict.NO_STRONG_SIGNALS

    @classmethod
    def from_config(cls, config: Config, name: str) -> "VerdictPolicy":
        bands = config.verdict_policies.get(name) or {}
        return cls(
            name=name,
            suspicious_at=int(bands.get("suspicious_at", 30)),
            likely_phishing_at=int(bands.get("likely_phishing_at", 60)),
        )


@dataclass(frozen=True)
class RiskAssessment:
    """Aggregate output of one scan. Never mutated after construction."""

    overall_score: int
    verdict: Verdict
    breakdown: dict = field(default_factory=dict)
    red_flags: tuple[str, ...] = ()
    policy: str = "comprehensive"

    @property
    def insufficient_data(self) -> bool:
        return INSUFFICIENT_DATA == (self.breakdown.get("aggregate") or {}).get("status")

    def available_sources(self) -> list[str]:
        return [
            name for name, entry in self.breakdown.items()
            if name != "aggregate" and entry.get("status") == "available"
        ]

    def to_dict(self) -> dict:
        return {
            "overallScore": self.overall_score,
            "verdict": self.verdict.value,
            "breakdown": {k: dict(v) for k, v in self.breakdown.items()},
            "redFlags": list(self.red_flags),
            "policy": self.policy,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "RiskAssessment":
        return cls(
            overall_score=int(data["overallScore"]),
            verdict=Verdict(data["verdict"]),
            breakdown={k: dict(v) for k, v in (data.get("breakdown") or {}).items()},
            red_flags=tuple(data.get("redFlags") or ()),
            policy=str(data.get("policy") or "comprehensive"),
        )


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def severity_for(score: int) -> str:
    if score < 30:
        return "low"
    if score < 60:
        return "medium"
    if score < 85:
        return "high"
    return "critical"


def recommendation_for(score: int) -> str:
    if score < 30:
        return "safe"
    if score < 70:
        return "caution"
    return "danger"


class RiskAggregator:
    """Combines SignalResults using a fixed weight table and a verdict policy."""

    def __init__(self, weights: Mapping[str, int], policy: VerdictPolicy):
        self.weights = dict(weights)
        self.policy = policy

    @classmethod
    def from_config(cls, config: Config, policy_name: str = "comprehensive") -> "RiskAggregator":
        return cls(config.source_weights, VerdictPolicy.from_config(config, policy_name))

    def aggregate(self, results: Iterable[SignalResult]) -> RiskAssessment:
        breakdown: dict[str, dict] = {}
        red_flags: list[str] = []
        seen_flags: set[str] = set()
        weighted_sum = 0.0
        total_weight = 0
        floor: Optional[int] = None

        for result in results:
            weight = int(self.weights.get(result.source, 0))
            if not isinstance(result, Available):
                breakdown[result.source] = {
                    "status": "unavailable",
                    "weight": 0,
                    "configured_weight": weight,
                    "sub_score": None,
                    "contribution": 0.0,
                    "reason": result.reason,
                }
                continue

            sub_score = int(result.value.risk_score)
            breakdown[result.source] = {
                "status": "available",
                "weight": weight,
                "configured_weight": weight,
                "sub_score": sub_score,
                "confidence": round(result.confidence, 3),
                "contribution": 0.0,
            }
            weighted_sum += weight * sub_score
            total_weight += weight

            for reason in result.value.reasons:
                if reason not in seen_flags:
                    seen_flags.add(reason)
                    red_flags.append(reason)

            verdict = getattr(result.value, "verdict", None)
            if result.source == "reputation" and verdict == MALICIOUS:
                floor = max(floor or 0, self.policy.likely_phishing_at)
            elif result.source == "reputation" and verdict == SUSPICIOUS:
                floor = max(floor or 0, self.policy.suspicious_at)

        if total_weight <= 0:
            exc = AggregationImpossible("no signal source answered")
            logger.warning("%s: %s (sources: %s)", type(exc).__name__, exc, ", ".join(breakdown) or "none")
            breakdown["aggregate"] = {
                "status": INSUFFICIENT_DATA,
                "weight": 0,
                "sub_score": None,
                "contribution": 0.0,
                "reason": "insufficient data: no weighted signal source answered",
            }
            return RiskAssessment(
                overall_score=0,
                verdict=Verdict.NO_STRONG_SIGNALS,
                breakdown=breakdown,
                red_flags=tuple(red_flags),
                policy=self.policy.name,
            )

        for entry in breakdown.values():
            if entry["status"] == "available":
                entry["contribution"] = round(entry["weight"] * entry["sub_score"] / total_weight, 2)

        score = round_half_up(weighted_sum / total_weight)
        if floor is not None and floor > score:
            breakdown["reputation"]["floor_applied"] = floor
            score = floor
        score = max(0, min(100, score))

        return RiskAssessment(
            overall_score=score,
            verdict=self.policy.band(score),
            breakdown=breakdown,
            red_flags=tuple(red_flags),
            policy=self.policy.name,
        )
