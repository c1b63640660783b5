"""Risk category and policy classification.

Pure functions of UrlFeatures and RiskAssessment, driven by the tables in
Config; re-running with the same inputs always yields the same decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..config import Config
from .aggregator import RiskAssessment, Verdict, severity_for
from .features import UrlFeatures

PHISHING = "phishing"
MALWARE = "malware"
BENIGN = "benign"
UNKNOWN = "unknown"

ALLOW = "allow"
WARN = "warn"
BLOCK = "block"
_OUTCOME_RANK = {ALLOW: 0, WARN: 1, BLOCK: 2}

MALWARE_EXTENSIONS = (".exe", ".scr", ".msi", ".apk", ".bat", ".dmg", ".jar", ".vbs", ".ps1")
CREDENTIAL_FLAG_MARKERS = ("password", "credential", "login form", "seed", "payment card")


@dataclass(frozen=True)
class CategoryResult:
    category: str
    reasons: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"category": self.category, "reasons": list(self.reasons)}


@dataclass(frozen=True)
class SiteCategory:
    name: str
    confidence: float
    matched_keyword: Optional[str] = None

    def to_dict(self) -> dict:
        return {"name": self.name, "confidence": self.confidence, "matched_keyword": self.matched_keyword}


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of evaluating one URL against a policy profile."""

    profile: str
    category: str
    site_category: str
    verdict: str
    decision: str
    risk_level: str
    matched_rules: tuple[str, ...] = field(default_factory=tuple)

    @property
    def compliant(self) -> bool:
        return self.decision != BLOCK

    def to_dict(self) -> dict:
        return {
            "profile": self.profile,
            "category": self.category,
            "siteCategory": self.site_category,
            "verdict": self.verdict,
            "decision": self.decision,
            "compliant": self.compliant,
            "riskLevel": self.risk_level,
            "matchedRules": list(self.matched_rules),
        }


def _has_malware_indicator(features: UrlFeatures, assessment: RiskAssessment) -> Optional[str]:
    path = features.path.lower()
    for ext in MALWARE_EXTENSIONS:
        if path.endswith(ext):
            return f"URL downloads an executable ({ext})"
    for flag in assessment.red_flags:
        if "malware" in flag.lower():
            return flag
    return None


def classify_category(features: UrlFeatures, assessment: RiskAssessment) -> CategoryResult:
    """Bucket a scan outcome into phishing, malware, benign or unknown."""
    if assessment.insufficient_data:
        return CategoryResult(UNKNOWN, ("No signal source answered.",))

    indicator = _has_malware_indicator(features, assessment)
    if indicator and assessment.verdict != Verdict.NO_STRONG_SIGNALS:
        return CategoryResult(MALWARE, (indicator,))

    if assessment.verdict == Verdict.LIKELY_PHISHING:
        return CategoryResult(PHISHING, ("Risk score is in the likely-phishing band.",))

    if assessment.verdict == Verdict.SUSPICIOUS:
        if features.brand_impersonation:
            return CategoryResult(PHISHING, (f"Impersonates {features.brand_impersonation}.",))
        for flag in assessment.red_flags:
            lowered = flag.lower()
            if any(marker in lowered for marker in CREDENTIAL_FLAG_MARKERS):
                return CategoryResult(PHISHING, (flag,))
        return CategoryResult(UNKNOWN, ("Suspicious signals without a clear lure.",))

    return CategoryResult(BENIGN)


def classify_site(features: UrlFeatures, config: Config) -> SiteCategory:
    """Keyword bucket for what kind of site the URL claims to be."""
    haystack = f"{features.domain} {features.path}".lower()
    for bucket in config.site_categories:
        for keyword in bucket["keywords"]:
            if keyword in haystack:
                return SiteCategory(bucket["name"], float(bucket["confidence"]), keyword)
    return SiteCategory(UNKNOWN, 0.3)


def _escalate(current: str, candidate: str) -> str:
    return candidate if _OUTCOME_RANK[candidate] > _OUTCOME_RANK[current] else current


def check_policy(
    features: UrlFeatures,
    assessment: RiskAssessment,
    config: Config,
    profile: Optional[str] = None,
    category: Optional[CategoryResult] = None,
) -> PolicyDecision:
    """Evaluate the (category, verdict) table plus the profile's site rules."""
    profile = (profile or config.policy_profile).strip().lower()
    rules = config.policy_profiles.get(profile)
    if rules is None:
        raise ValueError(f"Unknown policy profile: {profile}")

    category = category or classify_category(features, assessment)
    site = classify_site(features, config)
    verdict = assessment.verdict.value
    matched: list[str] = []

    row = config.policy_table.get(category.category) or config.policy_table.get(UNKNOWN) or {}
    decision = row.get(verdict, WARN)
    matched.append(f"table:{category.category}/{verdict}->{decision}")

    if site.name in rules.get("block", []):
        decision = _escalate(decision, BLOCK)
        matched.append(f"profile:{profile} blocks {site.name}")
    elif site.name in rules.get("warn", []):
        decision = _escalate(decision, WARN)
        matched.append(f"profile:{profile} warns on {site.name}")

    if profile != "permissive" and features.is_ip:
        decision = _escalate(decision, WARN)
        matched.append("IP address used instead of a domain")
    if profile == "strict" and "login" in features.keyword_hits:
        decision = _escalate(decision, WARN)
        matched.append("strict profile: login page")

    return PolicyDecision(
        profile=profile,
        category=category.category,
        site_category=site.name,
        verdict=verdict,
        decision=decision,
        risk_level=severity_for(assessment.overall_score),
        matched_rules=tuple(matched),
    )
