"""Tests for the security HTTP API."""

from dataclasses import dataclass, field

import pytest
from aiohttp import test_utils

from webwatcher.api.server import SecurityApiServer
from webwatcher.config import Config
from webwatcher.pipeline.incidents import IncidentGenerator
from webwatcher.pipeline.scan import URL_SOURCES, ScanPipeline


@dataclass
class _Value:
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)
    verdict: str | None = None

    def to_dict(self) -> dict:
        return {"risk_score": self.risk_score, "reasons": list(self.reasons)}


class DummyCollector:
    def __init__(self, value=None):
        self.value = value or _Value()

    async def collect(self, subject, shared=None):
        return self.value


def _server(tmp_path, database, **pipeline_kwargs) -> SecurityApiServer:
    config = Config(data_dir=tmp_path, config_dir=tmp_path, collector_timeout=1.0, scan_deadline=2.0)
    collectors = {name: DummyCollector() for name in URL_SOURCES}
    collectors["breach"] = DummyCollector(_Value(20))
    collectors["reputation"] = DummyCollector(_Value(100, ["OpenPhish reports this URL as malicious."], "malicious"))
    pipeline = ScanPipeline(config=config, database=database, collectors=collectors, **pipeline_kwargs)
    return SecurityApiServer(config=config, pipeline=pipeline, database=database)


@pytest.mark.asyncio
async def test_healthz(tmp_path, database):
    server = _server(tmp_path, database)
    async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
        resp = await client.get("/healthz")
        assert resp.status == 200
        assert await resp.json() == {"ok": True, "heuristics_version": "2025.1"}


class TestCheckUrl:
    @pytest.mark.asyncio
    async def test_lure_is_likely_phishing(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post("/api/check-url", json={"url": "http://192.168.1.1@paypal-login.tk/verify"})
            body = await resp.json()

        assert resp.status == 200
        assert body["success"] is True
        assert body["data"]["score"] == 90
        assert body["data"]["verdict"] == "likely_phishing"
        assert len(body["data"]["redFlags"]) == 4

    @pytest.mark.asyncio
    async def test_invalid_url(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post("/api/check-url", json={"url": "ftp://example.com"})
            body = await resp.json()

        assert resp.status == 400
        assert body["success"] is False
        assert body["error"]["code"] == "invalid_url"

    @pytest.mark.asyncio
    async def test_missing_url(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post("/api/check-url", json={})
            body = await resp.json()

        assert resp.status == 400
        assert body["error"] == {"code": "bad_request", "message": "url is required"}

    @pytest.mark.asyncio
    async def test_malformed_json(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post(
                "/api/check-url", data="{not json", headers={"Content-Type": "application/json"}
            )
            assert resp.status == 400


class TestSignals:
    @pytest.mark.asyncio
    async def test_single_signal_endpoint(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post("/security/lookup-reputation", json={"url": "https://example.com/"})
            body = await resp.json()

        assert resp.status == 200
        assert body["data"]["source"] == "reputation"
        assert body["data"]["status"] == "available"
        assert body["data"]["value"]["risk_score"] == 100

    @pytest.mark.asyncio
    async def test_breach_check_rejects_bad_email(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post("/security/breach-check", json={"email": "nope"})
            body = await resp.json()

        assert resp.status == 400
        assert body["error"]["code"] == "invalid_email"

    @pytest.mark.asyncio
    async def test_ip_risk_profile_validates_ip(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            bad = await client.post("/security/ip-risk-profile", json={"ip": "999.1.1.1"})
            good = await client.post("/security/ip-risk-profile", json={"ip": "203.0.113.4"})

            assert bad.status == 400
            assert good.status == 200

    @pytest.mark.asyncio
    async def test_check_policy_unknown_profile(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post("/security/check-policy", json={"url": "https://example.com/", "profile": "lenient"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_calculate_risk_score(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post("/security/calculate-risk-score", json={"url": "https://example.com/"})
            body = await resp.json()

        assert body["data"]["overallScore"] == 60
        assert body["data"]["verdict"] == "likely_phishing"
        assert body["data"]["breakdown"]["reputation"]["floor_applied"] == 60


class TestIncidentsAndFeedback:
    @pytest.mark.asyncio
    async def test_report_lookup_and_feedback(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            created = await client.post("/security/generate-incident-report", json={"url": "https://example.com/"})
            incident = (await created.json())["data"]
            assert created.status == 201
            assert incident["siemReady"] is True

            fetched = await client.get(f"/security/incidents/{incident['id']}")
            assert (await fetched.json())["data"] == incident

            recent = await client.get("/security/recent-incidents?limit=5")
            assert [i["id"] for i in (await recent.json())["data"]] == [incident["id"]]

            feedback = await client.post(
                "/security/submit-feedback", json={"incidentId": incident["id"], "judgment": "correct"}
            )
            assert feedback.status == 201

            stats = await client.get("/security/feedback-stats")
            data = (await stats.json())["data"]
            assert data["total"] == 1
            assert data["accuracy"] == 1.0

    @pytest.mark.asyncio
    async def test_stats_with_no_feedback(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.get("/security/feedback-stats")
            data = (await resp.json())["data"]

        assert data["accuracy"] == "no data"
        assert data["rollingAccuracy"] == "no data"

    @pytest.mark.asyncio
    async def test_feedback_for_unknown_incident(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.post(
                "/security/submit-feedback", json={"incidentId": "INC-0000000000000-000000000000", "judgment": "correct"}
            )
            body = await resp.json()

        assert resp.status == 404
        assert body["error"]["code"] == "unknown_incident"

    @pytest.mark.asyncio
    async def test_invalid_judgment(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            created = await client.post("/security/generate-incident-report", json={"url": "https://example.com/"})
            incident_id = (await created.json())["data"]["id"]
            resp = await client.post("/security/submit-feedback", json={"incidentId": incident_id, "judgment": "meh"})
            assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unknown_incident_lookup(self, tmp_path, database):
        server = _server(tmp_path, database)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            resp = await client.get("/security/incidents/INC-0000000000000-000000000000")
            assert resp.status == 404

    @pytest.mark.asyncio
    async def test_duplicate_incident_is_server_error(self, tmp_path, database):
        generator = IncidentGenerator("2025.1", id_factory=lambda: "INC-0000000000001-aaaaaaaaaaaa")
        server = _server(tmp_path, database, incident_generator=generator)
        async with test_utils.TestClient(test_utils.TestServer(server.app)) as client:
            first = await client.post("/security/comprehensive-scan", json={"url": "https://example.com/"})
            second = await client.post("/security/comprehensive-scan", json={"url": "https://example.com/"})
            body = await second.json()

        assert first.status == 200
        assert second.status == 500
        assert body["error"]["code"] == "duplicate_incident"
