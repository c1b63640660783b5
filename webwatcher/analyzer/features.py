"""Structural URL feature extraction.

Pure and synchronous: the same URL always yields the same UrlFeatures and
no network access happens here. All dictionaries come from Config so the
heuristic tables stay versioned data rather than inline literals.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import idna

from ..config import Config
from ..errors import InvalidUrl
from ..utils.domains import ensure_scheme, is_ip_literal, to_ascii_host

# Structural step score: number of matched rules -> sub-score
STRUCTURE_STEPS: tuple[int, ...] = (0, 40, 70, 90)

LONG_URL_THRESHOLD = 80
MANY_DOTS_THRESHOLD = 3

_HOST_RE = re.compile(r"^[a-z0-9._\-\[\]:]+$")


@dataclass(frozen=True)
class UrlFeatures:
    """Structural indicators derived once per scan."""

    full_url: str
    domain: str
    path: str
    is_ip: bool
    has_at: bool
    num_dots: int
    url_length: int
    keyword_hits: tuple[str, ...]
    tld: str
    tld_suspicious: bool
    brand_impersonation: Optional[str]
    heuristics_version: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["keyword_hits"] = list(self.keyword_hits)
        return data


def extract(raw_url: str, config: Config) -> UrlFeatures:
    """Parse and normalize a URL, then derive its structural indicators."""
    raw = (raw_url or "").strip()
    if not raw:
        raise InvalidUrl("URL is empty")
    if any(ch.isspace() for ch in raw):
        raise InvalidUrl(f"URL contains whitespace: {raw!r}")

    candidate = ensure_scheme(raw)
    try:
        parts = urlsplit(candidate)
        # Accessing .port validates it (raises ValueError when out of range).
        parts.port
    except ValueError as exc:
        raise InvalidUrl(f"Cannot parse URL {raw!r}: {exc}") from exc

    if parts.scheme.lower() not in {"http", "https"}:
        raise InvalidUrl(f"Unsupported scheme: {parts.scheme}")

    # hostname is the connection host: userinfo before "@" is already stripped.
    host = (parts.hostname or "").strip(".")
    try:
        domain = to_ascii_host(host)
    except (idna.IDNAError, UnicodeError) as exc:
        raise InvalidUrl(f"URL has no valid host: {raw!r} ({exc})") from exc
    if not domain or not _HOST_RE.match(domain):
        raise InvalidUrl(f"URL has no valid host: {raw!r}")

    userinfo, at, hostport = parts.netloc.lower().rpartition("@")
    if domain != host:
        hostport = hostport.replace(host, domain, 1)
    full_url = urlunsplit(
        (parts.scheme.lower(), f"{userinfo}{at}{hostport}", parts.path, parts.query, parts.fragment)
    )
    path = parts.path or "/"

    is_ip = is_ip_literal(domain)
    haystack_domain = domain.lower()
    haystack_path = f"{path}?{parts.query}".lower() if parts.query else path.lower()
    keyword_hits = tuple(
        kw for kw in config.sensitive_keywords if kw in haystack_domain or kw in haystack_path
    )

    tld = "" if is_ip else domain.rsplit(".", 1)[-1]
    tld_suspicious = bool(tld) and tld in set(config.suspicious_tlds)

    brand = None
    if not is_ip:
        for candidate_brand in config.brands:
            if candidate_brand in haystack_domain and not haystack_domain.endswith(f"{candidate_brand}.com"):
                brand = candidate_brand
                break

    return UrlFeatures(
        full_url=full_url,
        domain=domain,
        path=path,
        is_ip=is_ip,
        has_at="@" in raw,
        num_dots=domain.count("."),
        url_length=len(full_url),
        keyword_hits=keyword_hits,
        tld=tld,
        tld_suspicious=tld_suspicious,
        brand_impersonation=brand,
        heuristics_version=config.heuristics_version,
    )


def structural_red_flags(features: UrlFeatures) -> list[str]:
    """Human-readable reasons for every structural rule the URL matches."""
    flags: list[str] = []
    if features.is_ip:
        flags.append("Uses a raw IP instead of a normal domain name.")
    if features.has_at:
        flags.append("Contains @ which can hide the real destination domain.")
    if features.num_dots >= MANY_DOTS_THRESHOLD:
        flags.append("Has many dots in the domain which can hide the true site.")
    if features.url_length > LONG_URL_THRESHOLD:
        flags.append("URL is very long which is common for phishing links.")
    if features.keyword_hits:
        flags.append(f"Contains sensitive words in the link like: {', '.join(features.keyword_hits)}.")
    if features.tld_suspicious:
        flags.append(f"Uses a less common top level domain (.{features.tld}).")
    if features.brand_impersonation:
        brand = features.brand_impersonation
        flags.append(f'Domain contains brand name "{brand}" but is not the official {brand}.com domain.')
    return flags


def structure_score(flag_count: int) -> int:
    """Map a matched-rule count onto the fixed step function."""
    if flag_count <= 0:
        return 0
    return STRUCTURE_STEPS[min(flag_count, len(STRUCTURE_STEPS) - 1)]


@dataclass(frozen=True)
class StructuralAnalysis:
    """Structural collector value: matched rules and their step score."""

    features: UrlFeatures
    reasons: tuple[str, ...]

    @property
    def risk_score(self) -> int:
        return structure_score(len(self.reasons))

    def to_dict(self) -> dict:
        return {
            "features": self.features.to_dict(),
            "flag_count": len(self.reasons),
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


def analyze_structure(features: UrlFeatures) -> StructuralAnalysis:
    return StructuralAnalysis(features=features, reasons=tuple(structural_red_flags(features)))
