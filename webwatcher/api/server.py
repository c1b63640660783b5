"""HTTP surface for the risk pipeline (aiohttp)."""

from __future__ import annotations

import json
import logging
from typing import Optional

from aiohttp import web

from ..config import Config
from ..errors import WebWatcherError
from ..pipeline.scan import ScanPipeline
from ..utils.domains import is_ip_literal

logger = logging.getLogger(__name__)


def _ok(data, status: int = 200) -> web.Response:
    return web.json_response({"success": True, "data": data}, status=status)


def _error(code: str, message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": {"code": code, "message": message}}, status=status)


def _coerce_int(value, default: int, min_value: Optional[int] = None, max_value: Optional[int] = None) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        result = default
    if min_value is not None:
        result = max(min_value, result)
    if max_value is not None:
        result = min(max_value, result)
    return result


class _BadRequest(Exception):
    pass


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map the error taxonomy onto JSON responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except _BadRequest as exc:
        return _error("bad_request", str(exc), 400)
    except WebWatcherError as exc:
        if exc.http_status >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.path, exc)
        return _error(exc.code, exc.message, exc.http_status)
    except ValueError as exc:
        return _error("bad_request", str(exc), 400)
    except Exception:
        logger.exception("Unhandled error on %s", request.path)
        return _error("internal_error", "Internal server error", 500)


async def _json_body(request: web.Request) -> dict:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise _BadRequest("Invalid JSON payload") from None
    if not isinstance(data, dict):
        raise _BadRequest("JSON object expected")
    return data


def _required(data: dict, key: str) -> str:
    value = str(data.get(key) or "").strip()
    if not value:
        raise _BadRequest(f"{key} is required")
    return value


class SecurityApiServer:
    """Serves the /security/* endpoints plus the URL-only check and health."""

    SINGLE_SIGNAL_ROUTES = {
        "/security/analyze-redirects": "redirects",
        "/security/scan-page-content": "page_content",
        "/security/inspect-forms": "forms",
        "/security/audit-tls": "tls",
        "/security/lookup-reputation": "reputation",
        "/security/check-whois": "whois",
    }

    def __init__(self, *, config: Config, pipeline: ScanPipeline, database, host: str = "", port: int = 0):
        self.config = config
        self.pipeline = pipeline
        self.database = database
        self.host = host or config.api_host
        self.port = int(port or config.api_port)
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

        self._app = web.Application(middlewares=[error_middleware])
        self._register_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    def _register_routes(self) -> None:
        for path, source in self.SINGLE_SIGNAL_ROUTES.items():
            self._app.router.add_post(path, self._single_signal_handler(source))
        self._app.router.add_post("/security/ip-risk-profile", self._ip_risk_profile)
        self._app.router.add_post("/security/breach-check", self._breach_check)
        self._app.router.add_post("/security/classify-category", self._classify_category)
        self._app.router.add_post("/security/check-policy", self._check_policy)
        self._app.router.add_post("/security/calculate-risk-score", self._calculate_risk_score)
        self._app.router.add_post("/security/generate-incident-report", self._generate_incident_report)
        self._app.router.add_post("/security/submit-feedback", self._submit_feedback)
        self._app.router.add_get("/security/feedback-stats", self._feedback_stats)
        self._app.router.add_get("/security/recent-incidents", self._recent_incidents)
        self._app.router.add_get("/security/incidents/{incident_id}", self._get_incident)
        self._app.router.add_post("/security/comprehensive-scan", self._comprehensive_scan)
        self._app.router.add_post("/api/check-url", self._check_url)
        self._app.router.add_get("/healthz", self._healthz)

    async def start(self) -> None:
        if self._runner:
            return
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host=self.host, port=self.port)
        await self._site.start()
        logger.info("Security API listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
        self._runner = None
        self._site = None

    # Layer A/B

    def _single_signal_handler(self, source: str):
        async def handler(request: web.Request) -> web.Response:
            data = await _json_body(request)
            result = await self.pipeline.run_single(source, _required(data, "url"))
            return _ok(result.to_dict())

        handler.__name__ = f"_signal_{source}"
        return handler

    async def _ip_risk_profile(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        ip = str(data.get("ip") or "").strip()
        if ip:
            if not is_ip_literal(ip):
                raise _BadRequest(f"Invalid IP address: {ip}")
            url = f"http://[{ip}]/" if ":" in ip else f"http://{ip}/"
        else:
            url = _required(data, "url")
        result = await self.pipeline.run_single("ip_risk", url)
        return _ok(result.to_dict())

    async def _breach_check(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        result = await self.pipeline.run_breach(_required(data, "email"))
        return _ok(result.to_dict())

    # Layer C

    def _profile_from(self, data: dict) -> Optional[str]:
        profile = str(data.get("profile") or "").strip().lower() or None
        if profile and profile not in self.config.policy_profiles:
            raise _BadRequest(f"Unknown policy profile: {profile}")
        return profile

    async def _classify_category(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        outcome = await self.pipeline.assess(_required(data, "url"))
        self.pipeline.classify(outcome)
        return _ok(
            {
                "category": outcome.category.to_dict(),
                "siteCategory": outcome.site.to_dict(),
                "riskScore": outcome.assessment.to_dict(),
            }
        )

    async def _check_policy(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        profile = self._profile_from(data)
        outcome = await self.pipeline.assess(_required(data, "url"))
        self.pipeline.classify(outcome, profile=profile)
        return _ok(outcome.policy.to_dict())

    async def _calculate_risk_score(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        outcome = await self.pipeline.assess(_required(data, "url"), email=data.get("email") or None)
        return _ok(outcome.assessment.to_dict())

    # Layer D

    async def _generate_incident_report(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        outcome = await self.pipeline.scan(
            _required(data, "url"), email=data.get("email") or None, profile=self._profile_from(data)
        )
        return _ok(outcome.incident.to_dict(), status=201)

    async def _submit_feedback(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        incident_id = str(data.get("incidentId") or data.get("incident_id") or "").strip()
        if not incident_id:
            raise _BadRequest("incidentId is required")
        comment = data.get("comment")
        if comment is not None:
            comment = str(comment)[:1000]
        record = await self.database.record_feedback(incident_id, _required(data, "judgment"), comment)
        return _ok(record.to_dict(), status=201)

    async def _feedback_stats(self, request: web.Request) -> web.Response:
        window = _coerce_int(request.query.get("window"), default=50, min_value=1, max_value=1000)
        stats = await self.database.compute_stats(window=window)
        return _ok(stats.to_dict())

    async def _recent_incidents(self, request: web.Request) -> web.Response:
        limit = _coerce_int(request.query.get("limit"), default=10, min_value=1, max_value=100)
        incidents = await self.database.recent_incidents(limit)
        return _ok([incident.to_dict() for incident in incidents])

    async def _get_incident(self, request: web.Request) -> web.Response:
        incident_id = request.match_info["incident_id"]
        incident = await self.database.get_incident(incident_id)
        if incident is None:
            return _error("unknown_incident", f"Incident {incident_id} not found", 404)
        return _ok(incident.to_dict())

    # Full pipeline

    async def _comprehensive_scan(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        outcome = await self.pipeline.scan(
            _required(data, "url"), email=data.get("email") or None, profile=self._profile_from(data)
        )
        return _ok(outcome.to_scan_data())

    async def _check_url(self, request: web.Request) -> web.Response:
        data = await _json_body(request)
        features, assessment = self.pipeline.check_url(_required(data, "url"))
        return _ok(
            {
                "url": features.full_url,
                "features": features.to_dict(),
                "verdict": assessment.verdict.value,
                "score": assessment.overall_score,
                "redFlags": list(assessment.red_flags),
            }
        )

    async def _healthz(self, request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "heuristics_version": self.config.heuristics_version})
