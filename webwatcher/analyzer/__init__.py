"""Analyzer modules for WebWatcher."""

from .aggregator import RiskAggregator, RiskAssessment, Verdict, VerdictPolicy
from .features import UrlFeatures, extract, structural_red_flags
from .signals import Available, SignalResult, Unavailable, run_collector

__all__ = [
    "Available",
    "RiskAggregator",
    "RiskAssessment",
    "SignalResult",
    "Unavailable",
    "UrlFeatures",
    "Verdict",
    "VerdictPolicy",
    "extract",
    "run_collector",
    "structural_red_flags",
]
