"""Domain registration age via RDAP (rdap.org bootstrap)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx

from ..config import Config
from ..errors import CollectorUnavailable
from ..utils.domains import registered_domain
from .features import UrlFeatures
from .signals import cap_score

logger = logging.getLogger(__name__)

RDAP_URL = "https://rdap.org/domain/{domain}"

PRIVACY_MARKERS = ("privacy", "redacted", "proxy", "whoisguard", "withheld", "protected")


@dataclass
class WhoisData:
    """Registration facts for a registrable domain."""

    domain: str
    registered_at: Optional[datetime] = None
    age_days: Optional[int] = None
    registrar: str = ""
    privacy_protected: bool = False
    is_new_domain: bool = False
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
            "age_days": self.age_days,
            "registrar": self.registrar,
            "privacy_protected": self.privacy_protected,
            "is_new_domain": self.is_new_domain,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


def _vcard_value(vcard_array: object, name: str) -> Optional[str]:
    """Extract first vCard value for a given field (e.g., 'fn', 'org')."""
    if not isinstance(vcard_array, list) or len(vcard_array) < 2:
        return None
    entries = vcard_array[1]
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if not isinstance(entry, list) or len(entry) < 4:
            continue
        if str(entry[0]).lower() != name:
            continue
        value = entry[3]
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _parse_rdap_date(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_rdap(domain: str, data: dict, now: Optional[datetime] = None) -> WhoisData:
    """Build WhoisData from an RDAP domain response (without scoring)."""
    now = now or datetime.now(timezone.utc)
    result = WhoisData(domain=domain)

    for event in data.get("events") or []:
        if isinstance(event, dict) and event.get("eventAction") == "registration":
            result.registered_at = _parse_rdap_date(str(event.get("eventDate") or ""))
            break
    if result.registered_at:
        result.age_days = max(0, (now - result.registered_at).days)

    for entity in data.get("entities") or []:
        if not isinstance(entity, dict):
            continue
        roles = entity.get("roles") or []
        vcard = entity.get("vcardArray")
        if "registrar" in roles:
            result.registrar = _vcard_value(vcard, "fn") or result.registrar
        if "registrant" in roles:
            blob = " ".join(filter(None, [_vcard_value(vcard, "fn"), _vcard_value(vcard, "org")])).lower()
            remarks = " ".join(
                str(r.get("title") or "") + " " + " ".join(r.get("description") or [])
                for r in entity.get("remarks") or []
                if isinstance(r, dict)
            ).lower()
            if any(marker in blob or marker in remarks for marker in PRIVACY_MARKERS):
                result.privacy_protected = True
    return result


class WhoisCheck:
    """Looks up domain age and registrant privacy."""

    source = "whois"

    def __init__(self, config: Config):
        self.config = config

    async def collect(self, features: UrlFeatures) -> WhoisData:
        if features.is_ip:
            raise CollectorUnavailable(self.source, "IP hosts have no domain registration")
        domain = registered_domain(features.domain)
        data = await self._fetch_rdap(domain)
        result = parse_rdap(domain, data)
        if result.age_days is None:
            raise CollectorUnavailable(self.source, "RDAP response has no registration date")
        self._score(result)
        return result

    async def _fetch_rdap(self, domain: str) -> dict:
        url = RDAP_URL.format(domain=domain)
        try:
            async with httpx.AsyncClient(timeout=self.config.collector_timeout, follow_redirects=True) as client:
                resp = await client.get(
                    url, headers={"User-Agent": self.config.user_agent, "Accept": "application/rdap+json"}
                )
        except httpx.HTTPError as exc:
            raise CollectorUnavailable(self.source, f"RDAP lookup failed: {exc}") from exc
        if resp.status_code != 200:
            raise CollectorUnavailable(self.source, f"RDAP lookup failed ({resp.status_code})")
        try:
            return resp.json()
        except ValueError as exc:
            raise CollectorUnavailable(self.source, "RDAP returned invalid JSON") from exc

    def _score(self, result: WhoisData) -> None:
        age = result.age_days
        score = 0
        threshold = self.config.whois_new_domain_days
        if age is not None and age < threshold:
            result.is_new_domain = True
            score += 40
            result.reasons.append(f"Domain was registered only {age} days ago.")
        elif age is not None and age < 90:
            score += 20
            result.reasons.append(f"Domain is less than 90 days old ({age} days).")
        elif age is not None and age < 365:
            score += 10
        if result.privacy_protected:
            score += 15
            result.reasons.append("Domain registrant is hidden behind a privacy service.")
        result.risk_score = cap_score(score)
