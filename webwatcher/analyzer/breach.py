"""Credential breach history for an email address (Have I Been Pwned v3)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

import aiohttp

from ..config import Config
from ..errors import CollectorUnavailable, InvalidEmail
from .signals import cap_score

logger = logging.getLogger(__name__)

HIBP_URL = "https://haveibeenpwned.com/api/v3/breachedaccount/{account}?truncateResponse=false"

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)+$")

# HIBP data class -> sensitivity flag
SENSITIVE_CLASSES: dict[str, str] = {
    "passwords": "passwords",
    "password hints": "passwords",
    "credit cards": "financial",
    "bank account numbers": "financial",
    "partial credit card data": "financial",
    "social security numbers": "identity",
    "passport numbers": "identity",
    "government issued ids": "identity",
}


def validate_email(value: str) -> str:
    email = (value or "").strip()
    if not email or not EMAIL_RE.match(email):
        raise InvalidEmail(f"Invalid email address: {value!r}")
    return email.lower()


@dataclass
class BreachData:
    """Summary of the breaches an account appears in."""

    email: str
    breach_count: int = 0
    total_exposed: int = 0
    breaches: list[str] = field(default_factory=list)
    sensitive: list[str] = field(default_factory=list)
    recent: bool = False
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "email": self.email,
            "breach_count": self.breach_count,
            "total_exposed": self.total_exposed,
            "breaches": list(self.breaches),
            "sensitive": list(self.sensitive),
            "recent": self.recent,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


def summarize_breaches(email: str, breaches: list[dict], now: datetime | None = None) -> BreachData:
    now = now or datetime.now(timezone.utc)
    result = BreachData(email=email, breach_count=len(breaches))
    cutoff = now - timedelta(days=365)
    for breach in breaches:
        result.breaches.append(str(breach.get("Name") or breach.get("Title") or "unknown"))
        result.total_exposed += int(breach.get("PwnCount") or 0)
        for data_class in breach.get("DataClasses") or []:
            flag = SENSITIVE_CLASSES.get(str(data_class).lower())
            if flag and flag not in result.sensitive:
                result.sensitive.append(flag)
        try:
            breach_date = datetime.strptime(str(breach.get("BreachDate") or ""), "%Y-%m-%d")
        except ValueError:
            continue
        if breach_date.replace(tzinfo=timezone.utc) >= cutoff:
            result.recent = True
    return result


class BreachCheck:
    """Queries HIBP for an email address."""

    source = "breach"

    def __init__(self, config: Config):
        self.config = config

    async def collect(self, email: str) -> BreachData:
        email = validate_email(email)
        if not self.config.hibp_api_key:
            raise CollectorUnavailable(self.source, "HIBP_API_KEY not configured")

        breaches = await self._fetch_breaches(email)
        result = summarize_breaches(email, breaches)
        self._score(result)
        return result

    async def _fetch_breaches(self, email: str) -> list[dict]:
        headers = {"hibp-api-key": self.config.hibp_api_key, "User-Agent": self.config.user_agent}
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.collector_timeout)
        ) as session:
            async with session.get(HIBP_URL.format(account=quote(email)), headers=headers) as resp:
                if resp.status == 404:
                    return []
                if resp.status == 429:
                    raise CollectorUnavailable(self.source, "HIBP rate limit exceeded")
                if resp.status != 200:
                    raise CollectorUnavailable(self.source, f"HIBP returned HTTP {resp.status}")
                data = await resp.json()
        return data if isinstance(data, list) else []

    def _score(self, result: BreachData) -> None:
        score = 0
        if result.breach_count > 10:
            score += 60
        elif result.breach_count > 5:
            score += 40
        elif result.breach_count > 0:
            score += 20
        if result.breach_count:
            result.reasons.append(
                f"Email appears in {result.breach_count} known breaches ({result.total_exposed:,} records exposed)."
            )
        if result.recent:
            score += 30
            result.reasons.append("Email was exposed in a breach within the last year.")
        if result.sensitive:
            score += 25
            result.reasons.append(f"Breaches exposed sensitive data: {', '.join(result.sensitive)}.")
        result.risk_score = cap_score(score)
