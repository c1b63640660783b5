"""TLS posture audit: HTTPS presence, certificate validity and security headers."""

from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlsplit

import aiohttp

from ..config import Config
from ..errors import CollectorUnavailable
from .features import UrlFeatures
from .signals import cap_score

logger = logging.getLogger(__name__)

# header -> (points when missing, reason)
SECURITY_HEADERS: dict[str, tuple[int, str]] = {
    "strict-transport-security": (20, "Missing HSTS header."),
    "content-security-policy": (15, "Missing Content-Security-Policy header."),
    "x-frame-options": (15, "Missing X-Frame-Options header (clickjacking)."),
    "x-content-type-options": (10, "Missing X-Content-Type-Options header."),
}

CERT_TIME_FORMAT = "%b %d %H:%M:%S %Y %Z"


@dataclass
class CertificateFacts:
    """Parsed peer certificate."""

    valid: bool
    issuer: str = ""
    subject: str = ""
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None
    error: str = ""

    @property
    def days_until_expiry(self) -> Optional[int]:
        if not self.not_after:
            return None
        return (self.not_after - datetime.now(timezone.utc)).days

    @property
    def age_days(self) -> Optional[int]:
        if not self.not_before:
            return None
        return (datetime.now(timezone.utc) - self.not_before).days

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "issuer": self.issuer,
            "subject": self.subject,
            "not_before": self.not_before.isoformat() if self.not_before else None,
            "not_after": self.not_after.isoformat() if self.not_after else None,
            "days_until_expiry": self.days_until_expiry,
            "age_days": self.age_days,
            "error": self.error,
        }


@dataclass
class TLSAudit:
    """TLS audit result."""

    https: bool
    certificate: Optional[CertificateFacts] = None
    missing_headers: list[str] = field(default_factory=list)
    headers_checked: bool = False
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "https": self.https,
            "certificate": self.certificate.to_dict() if self.certificate else None,
            "missing_headers": list(self.missing_headers),
            "headers_checked": self.headers_checked,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


def parse_certificate(cert: dict) -> CertificateFacts:
    """Convert ssl.getpeercert() output into CertificateFacts."""
    issuer = dict(x[0] for x in cert.get("issuer", []))
    subject = dict(x[0] for x in cert.get("subject", []))
    not_before = not_after = None
    if cert.get("notBefore"):
        not_before = datetime.strptime(cert["notBefore"], CERT_TIME_FORMAT).replace(tzinfo=timezone.utc)
    if cert.get("notAfter"):
        not_after = datetime.strptime(cert["notAfter"], CERT_TIME_FORMAT).replace(tzinfo=timezone.utc)
    return CertificateFacts(
        valid=True,
        issuer=issuer.get("organizationName", issuer.get("commonName", "Unknown")),
        subject=subject.get("commonName", ""),
        not_before=not_before,
        not_after=not_after,
    )


class TLSAuditor:
    """Checks HTTPS usage, certificate lifetime and response security headers."""

    source = "tls"

    def __init__(self, config: Config):
        self.config = config

    async def collect(self, features: UrlFeatures) -> TLSAudit:
        parts = urlsplit(features.full_url)
        if parts.scheme != "https":
            audit = TLSAudit(https=False, risk_score=50)
            audit.reasons.append("Site does not use HTTPS.")
            return audit

        certificate = await self._fetch_certificate(features.domain, parts.port or 443)
        audit = TLSAudit(https=True, certificate=certificate)

        headers = await self._fetch_headers(features.full_url)
        if headers is not None:
            audit.headers_checked = True
            lowered = {k.lower() for k in headers}
            audit.missing_headers = [h for h in SECURITY_HEADERS if h not in lowered]

        self._score(audit)
        return audit

    async def _fetch_certificate(self, host: str, port: int) -> CertificateFacts:
        """Complete a TLS handshake on the event loop and read the peer certificate.

        Stays cancellable throughout, so a collector timeout or scan deadline
        tears the connection down instead of leaving it running.
        """
        context = ssl.create_default_context()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, ssl=context, server_hostname=host),
                timeout=self.config.collector_timeout,
            )
        except ssl.SSLCertVerificationError as exc:
            return CertificateFacts(valid=False, error=exc.verify_message or str(exc))
        except ssl.SSLError as exc:
            return CertificateFacts(valid=False, error=str(exc))
        except asyncio.TimeoutError as exc:
            raise CollectorUnavailable(self.source, "TLS connect timed out") from exc
        except OSError as exc:
            raise CollectorUnavailable(self.source, f"TLS connect failed: {exc}") from exc

        try:
            return parse_certificate(writer.get_extra_info("peercert") or {})
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug("TLS close for %s:%s failed: %s", host, port, exc)

    async def _fetch_headers(self, url: str) -> Optional[dict]:
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.collector_timeout),
                headers={"User-Agent": self.config.user_agent},
            ) as session:
                async with session.get(url, allow_redirects=False) as resp:
                    return dict(resp.headers)
        except aiohttp.ClientError as exc:
            logger.debug("Header fetch failed for %s: %s", url, exc)
            return None

    def _score(self, audit: TLSAudit) -> None:
        score = 0
        cert = audit.certificate
        if cert is not None and not cert.valid:
            score += 50
            audit.reasons.append(f"TLS certificate is invalid ({cert.error or 'verification failed'}).")
        elif cert is not None:
            expiry = cert.days_until_expiry
            if expiry is not None and expiry < 0:
                score += 50
                audit.reasons.append("TLS certificate has expired.")
            elif expiry is not None and expiry < 30:
                score += 25
                audit.reasons.append(f"TLS certificate expires in {expiry} days.")
            age = cert.age_days
            if age is not None and age < 7:
                score += 20
                audit.reasons.append(f"TLS certificate was issued {age} days ago.")
        for header in audit.missing_headers:
            points, reason = SECURITY_HEADERS[header]
            score += points
            audit.reasons.append(reason)
        audit.risk_score = cap_score(score)
