"""Scan orchestration: fan out collectors, join, aggregate, classify, persist."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..analyzer.aggregator import RiskAggregator, RiskAssessment
from ..analyzer.breach import BreachCheck, validate_email
from ..analyzer.features import UrlFeatures, analyze_structure, extract
from ..analyzer.ip_risk import IPRiskProfile
from ..analyzer.page import FormInspector, PageContentScanner, RedirectAnalyzer, SharedPageFetch
from ..analyzer.policy import CategoryResult, PolicyDecision, SiteCategory, check_policy, classify_category, classify_site
from ..analyzer.reputation import ReputationLookup
from ..analyzer.signals import Available, SignalResult, Unavailable, run_collector
from ..analyzer.tls import TLSAuditor
from ..analyzer.whois import WhoisCheck
from ..config import Config
from ..storage.models import IncidentReport
from .incidents import IncidentGenerator
from .sink import EventSink

logger = logging.getLogger(__name__)

STRUCTURE_SOURCE = "url_structure"
PAGE_SOURCES = ("page_content", "forms")
# Invocation order; red flags follow it.
URL_SOURCES = ("redirects", "page_content", "forms", "tls", "reputation", "whois", "ip_risk")
DEADLINE_REASON = "global deadline exceeded"


def default_collectors(config: Config) -> dict:
    return {
        "redirects": RedirectAnalyzer(config),
        "page_content": PageContentScanner(config),
        "forms": FormInspector(config),
        "tls": TLSAuditor(config),
        "reputation": ReputationLookup(config),
        "whois": WhoisCheck(config),
        "ip_risk": IPRiskProfile(config),
        "breach": BreachCheck(config),
    }


@dataclass
class ScanOutcome:
    """Everything one scan produced."""

    features: UrlFeatures
    results: list[SignalResult]
    assessment: RiskAssessment
    category: Optional[CategoryResult] = None
    site: Optional[SiteCategory] = None
    policy: Optional[PolicyDecision] = None
    incident: Optional[IncidentReport] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def result_for(self, source: str) -> Optional[SignalResult]:
        for result in self.results:
            if result.source == source:
                return result
        return None

    def _detail(self, source: str) -> Optional[dict]:
        result = self.result_for(source)
        if isinstance(result, Available):
            return result.value.to_dict()
        return None

    def to_scan_data(self) -> dict:
        """SecurityScanData shape returned by the comprehensive scan."""
        details = {}
        for key, source in (("reputation", "reputation"), ("whoisData", "whois"), ("tlsAudit", "tls")):
            detail = self._detail(source)
            if detail is not None:
                details[key] = detail
        assessment = self.assessment
        return {
            "url": self.features.full_url,
            "riskScore": {
                "overallScore": assessment.overall_score,
                "verdict": assessment.verdict.value,
                "breakdown": assessment.to_dict()["breakdown"],
            },
            "details": details,
            "timestamp": self.incident.timestamp if self.incident else self.timestamp,
            "redFlags": list(assessment.red_flags),
            "category": self.category.category if self.category else None,
            "policy": self.policy.to_dict() if self.policy else None,
            "incidentId": self.incident.id if self.incident else None,
        }


class ScanPipeline:
    """Runs the layered assessment for one URL at a time (many may run concurrently)."""

    def __init__(
        self,
        *,
        config: Config,
        database=None,
        sink: Optional[EventSink] = None,
        collectors: Optional[dict] = None,
        incident_generator: Optional[IncidentGenerator] = None,
    ):
        self.config = config
        self.database = database
        self.sink = sink
        self.collectors = collectors if collectors is not None else default_collectors(config)
        self.incidents = incident_generator or IncidentGenerator(config.heuristics_version)
        self.url_only_aggregator = RiskAggregator.from_config(config, "url_only")
        self.aggregator = RiskAggregator.from_config(config, "comprehensive")

    def features(self, url: str) -> UrlFeatures:
        return extract(url, self.config)

    def check_url(self, url: str) -> tuple[UrlFeatures, RiskAssessment]:
        """Simple URL-only path: structure rules under the url_only verdict policy."""
        features = self.features(url)
        structural = Available(STRUCTURE_SOURCE, analyze_structure(features))
        return features, self.url_only_aggregator.aggregate([structural])

    async def run_single(self, source: str, url: str) -> SignalResult:
        """Run one URL collector on its own (used by the per-signal endpoints)."""
        features = self.features(url)
        collector = self.collectors[source]
        return await run_collector(source, collector.collect(features), self.config.collector_timeout)

    async def run_breach(self, email: str) -> SignalResult:
        email = validate_email(email)
        collector = self.collectors["breach"]
        return await run_collector("breach", collector.collect(email), self.config.collector_timeout)

    async def collect(self, features: UrlFeatures, email: Optional[str] = None) -> list[SignalResult]:
        """Fan out every applicable collector and wait for all of them to settle."""
        timeout = self.config.collector_timeout
        shared = SharedPageFetch(features.full_url, self.config)

        calls = {}
        for name in URL_SOURCES:
            collector = self.collectors.get(name)
            if collector is None:
                continue
            if name in PAGE_SOURCES:
                calls[name] = collector.collect(features, shared=shared)
            else:
                calls[name] = collector.collect(features)
        if email and "breach" in self.collectors:
            calls["breach"] = self.collectors["breach"].collect(email)

        tasks = {
            name: asyncio.create_task(run_collector(name, call, timeout), name=f"collector:{name}")
            for name, call in calls.items()
        }

        try:
            pending: set = set()
            if tasks:
                _, pending = await asyncio.wait(tasks.values(), timeout=self.config.scan_deadline)
            if pending:
                logger.warning(
                    "Scan deadline of %.1fs hit for %s; cancelling %s",
                    self.config.scan_deadline,
                    features.domain,
                    ", ".join(sorted(n for n, t in tasks.items() if t in pending)),
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            raise
        finally:
            await shared.close()

        results: list[SignalResult] = [Available(STRUCTURE_SOURCE, analyze_structure(features))]
        for name, task in tasks.items():
            if task in pending or task.cancelled():
                results.append(Unavailable(name, DEADLINE_REASON))
            else:
                results.append(task.result())
        return results

    async def assess(self, url: str, email: Optional[str] = None) -> ScanOutcome:
        """Collect and aggregate without classification or persistence."""
        features = self.features(url)
        if email:
            email = validate_email(email)
        results = await self.collect(features, email=email)
        assessment = self.aggregator.aggregate(results)
        return ScanOutcome(features=features, results=results, assessment=assessment)

    async def scan(
        self,
        url: str,
        email: Optional[str] = None,
        profile: Optional[str] = None,
        persist: bool = True,
    ) -> ScanOutcome:
        """Full pipeline: assess, classify, evaluate policy, generate and store an incident."""
        if profile and profile.strip().lower() not in self.config.policy_profiles:
            raise ValueError(f"Unknown policy profile: {profile}")
        outcome = await self.assess(url, email=email)
        self.classify(outcome, profile=profile)

        if persist:
            outcome.incident = self.incidents.generate(
                outcome.features.full_url, outcome.assessment, outcome.category, outcome.policy
            )
            if self.database is not None:
                await self.database.save_incident(outcome.incident)

        self._publish(outcome)
        logger.info(
            "Scanned %s: score=%d verdict=%s category=%s",
            outcome.features.domain,
            outcome.assessment.overall_score,
            outcome.assessment.verdict.value,
            outcome.category.category,
        )
        return outcome

    def classify(self, outcome: ScanOutcome, profile: Optional[str] = None) -> ScanOutcome:
        outcome.category = classify_category(outcome.features, outcome.assessment)
        outcome.site = classify_site(outcome.features, self.config)
        outcome.policy = check_policy(
            outcome.features, outcome.assessment, self.config, profile=profile, category=outcome.category
        )
        return outcome

    def _publish(self, outcome: ScanOutcome) -> None:
        if self.sink is None:
            return
        self.sink.publish(
            "scan.completed",
            {
                "url": outcome.features.full_url,
                "score": outcome.assessment.overall_score,
                "verdict": outcome.assessment.verdict.value,
                "category": outcome.category.category if outcome.category else None,
                "incident_id": outcome.incident.id if outcome.incident else None,
                "sources": outcome.assessment.available_sources(),
            },
        )
