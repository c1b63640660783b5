"""IP risk profile: geolocation/proxy flags from ip-api.com plus AbuseIPDB."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from typing import Optional

import aiohttp

from ..config import Config
from ..errors import CollectorUnavailable
from .features import UrlFeatures
from .signals import cap_score

logger = logging.getLogger(__name__)

IP_API_URL = "http://ip-api.com/json/{ip}?fields=status,message,country,countryCode,isp,org,as,proxy,hosting"
ABUSEIPDB_URL = "https://api.abuseipdb.com/api/v2/check"


@dataclass
class IPRiskData:
    """Risk facts for the first IP behind a host."""

    ip: str
    resolved_ips: list[str] = field(default_factory=list)
    country: str = ""
    country_code: str = ""
    isp: str = ""
    asn: str = ""
    is_proxy: bool = False
    is_hosting: bool = False
    is_cloud: bool = False
    is_bulletproof: bool = False
    abuse_confidence: Optional[int] = None
    abuse_reports: Optional[int] = None
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return dict(self.__dict__, resolved_ips=list(self.resolved_ips), reasons=list(self.reasons))


class IPRiskProfile:
    """Resolves a host and profiles its first address."""

    source = "ip_risk"

    def __init__(self, config: Config):
        self.config = config

    async def collect(self, features: UrlFeatures) -> IPRiskData:
        ips = [features.domain.strip("[]")] if features.is_ip else await self._resolve(features.domain)
        if not ips:
            raise CollectorUnavailable(self.source, f"could not resolve {features.domain}")

        profile = IPRiskData(ip=ips[0], resolved_ips=ips)
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.collector_timeout)
        ) as session:
            geo = await self._query_ip_api(session, profile.ip)
            if geo is None:
                raise CollectorUnavailable(self.source, "ip-api lookup failed")
            self._apply_geo(profile, geo)
            if self.config.abuseipdb_api_key:
                abuse = await self._query_abuseipdb(session, profile.ip)
                if abuse:
                    profile.abuse_confidence = int(abuse.get("abuseConfidenceScore") or 0)
                    profile.abuse_reports = int(abuse.get("totalReports") or 0)

        self._score(profile)
        return profile

    async def _resolve(self, host: str) -> list[str]:
        try:
            infos = await asyncio.get_running_loop().getaddrinfo(host, None, type=socket.SOCK_STREAM)
        except (OSError, UnicodeError) as exc:
            logger.debug("DNS resolution failed for %s: %s", host, exc)
            return []
        ips: list[str] = []
        for info in infos:
            ip = info[4][0]
            if ip not in ips:
                ips.append(ip)
        return ips

    async def _query_ip_api(self, session, ip: str) -> Optional[dict]:
        async with session.get(IP_API_URL.format(ip=ip)) as resp:
            if resp.status != 200:
                return None
            data = await resp.json()
        if not isinstance(data, dict) or data.get("status") != "success":
            return None
        return data

    async def _query_abuseipdb(self, session, ip: str) -> Optional[dict]:
        try:
            async with session.get(
                f"{ABUSEIPDB_URL}?ipAddress={ip}&maxAgeInDays=90",
                headers={"Key": self.config.abuseipdb_api_key, "Accept": "application/json"},
            ) as resp:
                if resp.status != 200:
                    return None
                data = await resp.json()
        except aiohttp.ClientError as exc:
            logger.debug("AbuseIPDB lookup failed for %s: %s", ip, exc)
            return None
        return (data or {}).get("data") or None

    def _apply_geo(self, profile: IPRiskData, geo: dict) -> None:
        profile.country = str(geo.get("country") or "")
        profile.country_code = str(geo.get("countryCode") or "")
        profile.isp = str(geo.get("isp") or geo.get("org") or "")
        profile.asn = str(geo.get("as") or "")
        profile.is_proxy = bool(geo.get("proxy"))
        profile.is_hosting = bool(geo.get("hosting"))
        isp_blob = f"{profile.isp} {geo.get('org') or ''} {profile.asn}".lower()
        profile.is_cloud = any(name in isp_blob for name in self.config.cloud_isps)
        profile.is_bulletproof = any(name in isp_blob for name in self.config.bulletproof_isps)

    def _score(self, profile: IPRiskData) -> None:
        score = 0
        reasons = profile.reasons
        if profile.country_code and profile.country_code.upper() in set(self.config.high_risk_countries):
            score += 25
            reasons.append(f"Server is hosted in a high-risk country ({profile.country or profile.country_code}).")
        if profile.is_proxy:
            score += 40
            reasons.append("Server IP is a known proxy or VPN exit.")
        if profile.is_hosting:
            score += 30
        if profile.is_bulletproof:
            score += 50
            reasons.append(f"Server is on bulletproof hosting ({profile.isp}).")
        elif profile.is_cloud:
            score += 15

        confidence = profile.abuse_confidence
        if confidence is not None:
            if confidence > 75:
                score += 60
            elif confidence > 50:
                score += 40
            elif confidence > 25:
                score += 20
            if confidence > 25:
                reasons.append(f"AbuseIPDB confidence of abuse is {confidence}%.")
        reports = profile.abuse_reports or 0
        if reports > 50:
            score += 30
        elif reports > 10:
            score += 15
        if reports > 10:
            reasons.append(f"Server IP has {reports} abuse reports.")
        profile.risk_score = cap_score(score)
