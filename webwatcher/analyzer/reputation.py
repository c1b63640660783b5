"""Third-party reputation lookups (OpenPhish, Google Safe Browsing, VirusTotal)."""

from __future__ import annotations

import asyncio
import base64
import logging
import socket
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import aiohttp

from ..config import Config
from ..errors import CollectorUnavailable
from .features import UrlFeatures
from .signals import Available

logger = logging.getLogger(__name__)

CLEAN = "clean"
SUSPICIOUS = "suspicious"
MALICIOUS = "malicious"
UNKNOWN = "unknown"

VERDICT_SCORES = {MALICIOUS: 100, SUSPICIOUS: 50, CLEAN: 0}

SAFE_BROWSING_URL = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
VIRUSTOTAL_URL = "https://www.virustotal.com/api/v3/urls/{url_id}"


def combine_votes(votes: dict[str, str]) -> str:
    """Any malicious vote dominates; otherwise any suspicious vote raises the floor."""
    values = set(votes.values())
    if MALICIOUS in values:
        return MALICIOUS
    if SUSPICIOUS in values:
        return SUSPICIOUS
    if CLEAN in values:
        return CLEAN
    return UNKNOWN


def virustotal_url_id(url: str) -> str:
    """VirusTotal v3 URL identifier: urlsafe base64 without padding."""
    return base64.urlsafe_b64encode(url.encode()).decode().rstrip("=")


@dataclass
class ReputationCheck:
    """Normalized reputation votes for a URL."""

    verdict: str
    votes: dict[str, str] = field(default_factory=dict)
    threat_types: list[str] = field(default_factory=list)
    ip: Optional[str] = None
    reasons: list[str] = field(default_factory=list)

    @property
    def risk_score(self) -> int:
        return VERDICT_SCORES.get(self.verdict, 0)

    @property
    def score(self) -> int:
        return self.risk_score

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict,
            "score": self.risk_score,
            "votes": dict(self.votes),
            "threat_types": list(self.threat_types),
            "ip": self.ip,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


class ReputationLookup:
    """Queries every configured reputation source and merges their votes."""

    source = "reputation"

    def __init__(self, config: Config):
        self.config = config
        self.feed_ttl = timedelta(seconds=config.openphish_cache_seconds)
        # (listed urls, fetched at); replaced whole, never mutated in place
        self._feed: Optional[tuple[frozenset[str], datetime]] = None

    @property
    def remote_sources(self) -> list[str]:
        sources = ["openphish"]
        if self.config.google_safe_browsing_api_key:
            sources.append("google_safe_browsing")
        if self.config.virustotal_api_key:
            sources.append("virustotal")
        return sources

    async def collect(self, features: UrlFeatures) -> Available:
        check = ReputationCheck(verdict=UNKNOWN)
        threat_types: list[str] = []

        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.collector_timeout),
            headers={"User-Agent": self.config.user_agent},
        ) as session:
            names = self.remote_sources
            queries = {
                "openphish": lambda: self._query_openphish(session, features.full_url),
                "google_safe_browsing": lambda: self._query_safe_browsing(session, features.full_url, threat_types),
                "virustotal": lambda: self._query_virustotal(session, features.full_url),
            }
            results = await asyncio.gather(*(queries[n]() for n in names), return_exceptions=True)

        for name, outcome in zip(names, results):
            if isinstance(outcome, BaseException):
                logger.debug("Reputation source %s failed: %s", name, outcome)
                outcome = UNKNOWN
            check.votes[name] = outcome

        if features.tld and features.tld in set(self.config.reputation_tlds):
            check.votes["tld_heuristic"] = SUSPICIOUS

        answered = [n for n in names if check.votes.get(n) != UNKNOWN]
        if not answered and "tld_heuristic" not in check.votes:
            raise CollectorUnavailable(self.source, "no reputation source answered")

        check.verdict = combine_votes(check.votes)
        check.threat_types = threat_types
        check.ip = await self._resolve_ip(features.domain)

        for name in names:
            vote = check.votes.get(name)
            if vote == MALICIOUS:
                check.reasons.append(f"{_label(name)} reports this URL as malicious.")
            elif vote == SUSPICIOUS:
                check.reasons.append(f"{_label(name)} reports this URL as suspicious.")
        for threat in threat_types:
            check.reasons.append(f"Google Safe Browsing lists this URL as {threat.lower().replace('_', ' ')}.")
        if "tld_heuristic" in check.votes:
            check.reasons.append(f"Top level domain .{features.tld} is frequently abused.")

        confidence = max(0.3, len(answered) / len(names)) if names else 0.3
        return Available(self.source, check, confidence)

    async def _query_openphish(self, session, url: str) -> str:
        listed = await self._openphish_feed(session)
        if listed is None:
            return UNKNOWN
        return MALICIOUS if url.rstrip("/") in listed else CLEAN

    async def _openphish_feed(self, session) -> Optional[frozenset[str]]:
        """Return the feed, downloading it again only once the cached copy is older than feed_ttl."""
        if self._feed is not None:
            listed, fetched_at = self._feed
            if datetime.now() - fetched_at < self.feed_ttl:
                return listed

        async with session.get(self.config.openphish_feed_url) as resp:
            if resp.status != 200:
                return None
            feed = await resp.text()
        listed = frozenset(line.strip().rstrip("/") for line in feed.splitlines() if line.strip())
        self._feed = (listed, datetime.now())
        logger.debug("Cached OpenPhish feed with %d entries", len(listed))
        return listed

    async def _query_safe_browsing(self, session, url: str, threat_types: list[str]) -> str:
        body = {
            "client": {"clientId": "webwatcher", "clientVersion": "1.0"},
            "threatInfo": {
                "threatTypes": ["MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE"],
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }
        endpoint = f"{SAFE_BROWSING_URL}?key={self.config.google_safe_browsing_api_key}"
        async with session.post(endpoint, json=body) as resp:
            if resp.status != 200:
                return UNKNOWN
            data = await resp.json()
        matches = (data or {}).get("matches") or []
        for match in matches:
            threat = str(match.get("threatType") or "")
            if threat and threat not in threat_types:
                threat_types.append(threat)
        return MALICIOUS if matches else CLEAN

    async def _query_virustotal(self, session, url: str) -> str:
        endpoint = VIRUSTOTAL_URL.format(url_id=virustotal_url_id(url))
        async with session.get(endpoint, headers={"x-apikey": self.config.virustotal_api_key}) as resp:
            if resp.status != 200:
                # 404: never submitted
                return UNKNOWN
            data = await resp.json()
        stats = (data or {}).get("data", {}).get("attributes", {}).get("last_analysis_stats", {})
        malicious = int(stats.get("malicious", 0) or 0)
        suspicious = int(stats.get("suspicious", 0) or 0)
        if malicious >= 2:
            return MALICIOUS
        if malicious == 1 or suspicious > 0:
            return SUSPICIOUS
        return CLEAN

    async def _resolve_ip(self, domain: str) -> Optional[str]:
        try:
            infos = await asyncio.get_running_loop().getaddrinfo(domain, None, family=socket.AF_INET)
        except (OSError, UnicodeError):
            return None
        return infos[0][4][0] if infos else None


def _label(name: str) -> str:
    return {
        "openphish": "OpenPhish",
        "google_safe_browsing": "Google Safe Browsing",
        "virustotal": "VirusTotal",
    }.get(name, name)
