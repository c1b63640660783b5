"""Tests for the incident and feedback store."""

from dataclasses import replace

import pytest

from webwatcher.analyzer.aggregator import RiskAssessment, Verdict
from webwatcher.analyzer.policy import CategoryResult
from webwatcher.errors import DuplicateIncidentError, UnknownIncident
from webwatcher.pipeline.incidents import IncidentGenerator, new_incident_id
from webwatcher.storage.models import NO_DATA, Judgment


def _assessment(score: int = 72) -> RiskAssessment:
    return RiskAssessment(
        overall_score=score,
        verdict=Verdict.LIKELY_PHISHING if score >= 60 else Verdict.NO_STRONG_SIGNALS,
        breakdown={
            "url_structure": {"status": "available", "weight": 25, "sub_score": 90, "contribution": 40.91},
            "whois": {"status": "unavailable", "weight": 0, "sub_score": None, "reason": "timed out after 8s"},
        },
        red_flags=("Uses a less common top level domain (.tk).",),
    )


def _report(millis: int, url: str = "http://paypal-login.tk/verify"):
    generator = IncidentGenerator("2025.1", id_factory=lambda: new_incident_id(millis))
    return generator.generate(url, _assessment(), CategoryResult("phishing", ("Risk score is in the likely-phishing band.",)))


class TestIncidents:
    @pytest.mark.asyncio
    async def test_round_trip(self, database):
        report = _report(1_700_000_000_000)
        await database.save_incident(report)

        loaded = await database.get_incident(report.id)
        assert loaded == report
        assert await database.incident_exists(report.id) is True

    @pytest.mark.asyncio
    async def test_missing_incident(self, database):
        assert await database.get_incident("INC-0000000000000-000000000000") is None

    @pytest.mark.asyncio
    async def test_duplicate_id_is_rejected(self, database):
        first = _report(1_700_000_000_000)
        await database.save_incident(first)
        clash = _report(1_700_000_000_000, url="https://other.example.com/")
        clash = replace(clash, id=first.id)

        with pytest.raises(DuplicateIncidentError):
            await database.save_incident(clash)
        assert (await database.get_incident(first.id)).url == first.url
        assert await database.count_incidents() == 1

    @pytest.mark.asyncio
    async def test_recent_incidents_newest_first(self, database):
        for offset in range(5):
            await database.save_incident(_report(1_700_000_000_000 + offset * 1000))

        recent = await database.recent_incidents(limit=3)
        stamps = [r.id.split("-")[1] for r in recent]

        assert len(recent) == 3
        assert stamps == ["1700000004000", "1700000003000", "1700000002000"]

    @pytest.mark.asyncio
    async def test_recent_limit_is_clamped(self, database):
        await database.save_incident(_report(1_700_000_000_000))
        assert len(await database.recent_incidents(limit=0)) == 1
        assert len(await database.recent_incidents(limit=10_000)) == 1


class TestFeedback:
    @pytest.mark.asyncio
    async def test_stats_without_feedback_report_no_data(self, database):
        stats = await database.compute_stats()

        assert stats.total == 0
        assert stats.accuracy is None
        assert stats.to_dict()["accuracy"] == NO_DATA
        assert stats.to_dict()["rollingAccuracy"] == NO_DATA
        assert stats.counts == {"correct": 0, "false_positive": 0, "false_negative": 0}

    @pytest.mark.asyncio
    async def test_feedback_for_unknown_incident(self, database):
        with pytest.raises(UnknownIncident):
            await database.record_feedback("INC-0000000000000-deadbeef0000", "correct")

    @pytest.mark.asyncio
    async def test_invalid_judgment(self, database):
        report = _report(1_700_000_000_000)
        await database.save_incident(report)
        with pytest.raises(ValueError):
            await database.record_feedback(report.id, "maybe")

    @pytest.mark.asyncio
    async def test_accuracy_and_rolling_window(self, database):
        report = _report(1_700_000_000_000)
        await database.save_incident(report)

        for judgment in ("correct", "correct", "correct", "false_positive"):
            await database.record_feedback(report.id, judgment)
        record = await database.record_feedback(report.id, Judgment.FALSE_NEGATIVE, comment="missed the kit")

        stats = await database.compute_stats(window=2)

        assert record.judgment == Judgment.FALSE_NEGATIVE
        assert record.to_dict()["incidentId"] == report.id
        assert stats.total == 5
        assert stats.counts["correct"] == 3
        assert stats.accuracy == 0.6
        assert stats.rolling_accuracy == 0.0
        assert stats.window == 2

    @pytest.mark.asyncio
    async def test_feedback_history(self, database):
        report = _report(1_700_000_000_000)
        await database.save_incident(report)
        await database.record_feedback(report.id, "false_positive", comment="internal tool")

        history = await database.feedback_for_incident(report.id)
        assert [(f.judgment, f.comment) for f in history] == [(Judgment.FALSE_POSITIVE, "internal tool")]


def test_judgment_parse():
    assert Judgment.parse(" Correct ") == Judgment.CORRECT
    with pytest.raises(ValueError):
        Judgment.parse("")
