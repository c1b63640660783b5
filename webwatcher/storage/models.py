"""Persisted record types: incidents, feedback and feedback statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from ..analyzer.aggregator import RiskAssessment

NO_DATA = "no data"


class Judgment(str, Enum):
    """Human verdict on an incident."""

    CORRECT = "correct"
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"

    @classmethod
    def parse(cls, value: str) -> "Judgment":
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            allowed = ", ".join(j.value for j in cls)
            raise ValueError(f"Invalid judgment {value!r}; expected one of: {allowed}") from None


@dataclass(frozen=True)
class IncidentReport:
    """One completed scan. Never mutated after creation."""

    id: str
    timestamp: str
    url: str
    risk_assessment: RiskAssessment
    metadata: dict = field(default_factory=dict)
    siem_ready: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "url": self.url,
            "riskAssessment": self.risk_assessment.to_dict(),
            "metadata": dict(self.metadata),
            "siemReady": self.siem_ready,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IncidentReport":
        return cls(
            id=str(data["id"]),
            timestamp=str(data["timestamp"]),
            url=str(data["url"]),
            risk_assessment=RiskAssessment.from_dict(data["riskAssessment"]),
            metadata=dict(data.get("metadata") or {}),
            siem_ready=bool(data.get("siemReady")),
        )


@dataclass(frozen=True)
class FeedbackRecord:
    id: int
    incident_id: str
    judgment: Judgment
    comment: Optional[str]
    created_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "incidentId": self.incident_id,
            "judgment": self.judgment.value,
            "comment": self.comment,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class FeedbackStats:
    counts: dict[str, int]
    total: int
    accuracy: Optional[float]
    rolling_accuracy: Optional[float]
    window: int

    def to_dict(self) -> dict:
        return {
            "counts": dict(self.counts),
            "total": self.total,
            "accuracy": NO_DATA if self.accuracy is None else self.accuracy,
            "rollingAccuracy": NO_DATA if self.rolling_accuracy is None else self.rolling_accuracy,
            "window": self.window,
        }
