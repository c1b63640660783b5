"""Incident report generation."""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from ..analyzer.aggregator import RiskAssessment, recommendation_for, severity_for
from ..analyzer.policy import CategoryResult, PolicyDecision
from ..storage.models import IncidentReport

# Sources whose availability makes an incident usable by a SIEM
THREAT_INTEL_SOURCES = ("reputation", "whois", "ip_risk", "breach")


def new_incident_id(now_ms: Optional[int] = None) -> str:
    """Time-ordered id: zero-padded epoch millis then 48 random bits."""
    millis = int(time.time() * 1000) if now_ms is None else int(now_ms)
    return f"INC-{millis:013d}-{secrets.token_hex(6)}"


class IncidentGenerator:
    """Builds immutable IncidentReports from a finished scan."""

    def __init__(self, heuristics_version: str = "", id_factory: Callable[[], str] = new_incident_id):
        self.heuristics_version = heuristics_version
        self._id_factory = id_factory

    def generate(
        self,
        url: str,
        assessment: RiskAssessment,
        category: CategoryResult,
        policy: Optional[PolicyDecision] = None,
        extra: Optional[dict] = None,
    ) -> IncidentReport:
        available = assessment.available_sources()
        siem_ready = any(source in available for source in THREAT_INTEL_SOURCES)

        metadata = {
            "category": category.category,
            "category_reasons": list(category.reasons),
            "severity": severity_for(assessment.overall_score),
            "recommendation": recommendation_for(assessment.overall_score),
            "source_coverage": available,
            "heuristics_version": self.heuristics_version,
        }
        if policy is not None:
            metadata["policy"] = policy.to_dict()
        if extra:
            metadata.update(extra)

        return IncidentReport(
            id=self._id_factory(),
            timestamp=datetime.now(timezone.utc).isoformat(),
            url=url,
            risk_assessment=assessment,
            metadata=metadata,
            siem_ready=siem_ready,
        )
