"""Layer A collectors that talk to the target site itself.

RedirectAnalyzer walks the redirect chain hop by hop. PageContentScanner and
FormInspector share one bounded fetch and parse the HTML with BeautifulSoup.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup

from ..config import Config
from ..errors import CollectorUnavailable
from ..utils.domains import is_ip_literal, registered_domain, same_site
from .features import UrlFeatures
from .signals import cap_score

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
GEO_HEADERS = ("cf-ipcountry", "x-country-code", "x-geo-country")

SUSPICIOUS_JS_KEYWORDS = ("eval(", "atob(", "unescape(", "fromCharCode")
CLIPBOARD_JS_PATTERNS = (
    "navigator.clipboard",
    "execcommand('copy')",
    'execcommand("copy")',
    "addeventlistener('keydown'",
    'addeventlistener("keydown"',
    "onkeypress",
    "keylogger",
)

SEED_FIELD_RE = re.compile(r"seed|mnemonic|recovery[\s_-]*phrase|secret[\s_-]*phrase|private[\s_-]*key", re.I)
CARD_FIELD_RE = re.compile(r"card[\s_-]*(number|num|no)|cc[\s_-]*num|cvv|cvc|expir", re.I)
LOGIN_TEXT_RE = re.compile(r"log\s*in|sign\s*in|password|username", re.I)

MAX_HIDDEN_INPUTS = 5
MAX_IFRAMES = 3
MAX_SAFE_HOPS = 5


def _session(config: Config) -> aiohttp.ClientSession:
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=config.collector_timeout),
        headers={"User-Agent": config.user_agent},
    )


async def _read_bounded(resp, limit: int) -> tuple[str, bool]:
    """Read at most `limit` bytes of the body; report whether it was truncated."""
    raw = await resp.content.read(limit + 1)
    truncated = len(raw) > limit
    charset = getattr(resp, "charset", None) or "utf-8"
    return raw[:limit].decode(charset, errors="replace"), truncated


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status: int
    html: str
    truncated: bool = False


async def fetch_page(url: str, config: Config) -> FetchedPage:
    """Fetch a page once, bounded by size and time; raise CollectorUnavailable on failure."""
    try:
        async with _session(config) as session:
            async with session.get(url, allow_redirects=True) as resp:
                status = resp.status
                final_url = str(getattr(resp, "url", "") or url)
                html, truncated = await _read_bounded(resp, config.max_content_bytes)
    except aiohttp.ClientError as exc:
        raise CollectorUnavailable("page", f"fetch failed: {exc}") from exc

    if status >= 400:
        raise CollectorUnavailable("page", f"HTTP {status}")
    return FetchedPage(url=url, final_url=final_url, status=status, html=html, truncated=truncated)


class SharedPageFetch:
    """One fetch per scan, awaited by both page collectors."""

    def __init__(self, url: str, config: Config):
        self.url = url
        self.config = config
        self._task: Optional[asyncio.Task] = None

    async def get(self) -> FetchedPage:
        if self._task is None:
            self._task = asyncio.ensure_future(fetch_page(self.url, self.config))
        # Shielded so one cancelled waiter does not kill the fetch for the other.
        return await asyncio.shield(self._task)

    async def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)


async def _load_page(features: UrlFeatures, config: Config, shared: Optional[SharedPageFetch]) -> FetchedPage:
    if shared is not None:
        return await shared.get()
    return await fetch_page(features.full_url, config)


@dataclass
class RedirectAnalysis:
    """Observed redirect chain for one URL."""

    chain: list[str] = field(default_factory=list)
    final_url: str = ""
    final_status: int = 0
    loop_detected: bool = False
    hop_limit_reached: bool = False
    https_downgrade: bool = False
    ip_redirect: bool = False
    cross_domain: bool = False
    meta_refresh: bool = False
    geo_targeting: bool = False
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)

    @property
    def hops(self) -> int:
        return max(0, len(self.chain) - 1)

    def to_dict(self) -> dict:
        return {
            "chain": list(self.chain),
            "hops": self.hops,
            "final_url": self.final_url,
            "final_status": self.final_status,
            "loop_detected": self.loop_detected,
            "hop_limit_reached": self.hop_limit_reached,
            "https_downgrade": self.https_downgrade,
            "ip_redirect": self.ip_redirect,
            "cross_domain": self.cross_domain,
            "meta_refresh": self.meta_refresh,
            "geo_targeting": self.geo_targeting,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


class RedirectAnalyzer:
    """Follows a redirect chain manually so every hop can be inspected."""

    source = "redirects"

    def __init__(self, config: Config):
        self.config = config

    async def collect(self, features: UrlFeatures) -> RedirectAnalysis:
        result = RedirectAnalysis(chain=[features.full_url])
        current = features.full_url
        visited = {current}
        final_headers: dict = {}
        final_body = ""

        try:
            async with _session(self.config) as session:
                while True:
                    async with session.get(current, allow_redirects=False) as resp:
                        status = resp.status
                        location = resp.headers.get("Location") or resp.headers.get("location")
                        if status not in REDIRECT_STATUSES or not location:
                            result.final_status = status
                            final_headers = {k.lower(): v for k, v in resp.headers.items()}
                            final_body, _ = await _read_bounded(resp, min(self.config.max_content_bytes, 65536))
                            break

                    nxt = urljoin(current, location)
                    if nxt in visited:
                        result.loop_detected = True
                        break
                    if current.startswith("https://") and nxt.startswith("http://"):
                        result.https_downgrade = True
                    if is_ip_literal(urlparse(nxt).hostname or ""):
                        result.ip_redirect = True
                    visited.add(nxt)
                    result.chain.append(nxt)
                    current = nxt
                    if result.hops >= self.config.max_redirect_hops:
                        result.hop_limit_reached = True
                        break
        except aiohttp.ClientError as exc:
            raise CollectorUnavailable(self.source, f"redirect fetch failed: {exc}") from exc

        result.final_url = current
        result.cross_domain = not same_site(features.full_url, current)
        result.geo_targeting = any(h in final_headers for h in GEO_HEADERS)
        result.meta_refresh = _has_meta_refresh(final_body)
        self._score(result)
        return result

    def _score(self, result: RedirectAnalysis) -> None:
        score = 0
        reasons = result.reasons
        if result.loop_detected:
            score += 30
            reasons.append("Redirect chain loops back on itself.")
        if result.https_downgrade:
            score += 40
            reasons.append("Redirect downgrades from HTTPS to plain HTTP.")
        if result.ip_redirect:
            score += 25
            reasons.append("Redirects to a raw IP address.")
        if result.cross_domain:
            final_domain = registered_domain(result.final_url)
            brand = _impersonated_brand(final_domain, self.config.brands)
            if brand:
                score += 30
                reasons.append(
                    f'Redirects to another domain ({final_domain}) that uses brand "{brand}" without being {brand}.com.'
                )
        if result.hops > MAX_SAFE_HOPS:
            score += 20
            reasons.append(f"Excessive redirects ({result.hops} hops).")
        if result.hop_limit_reached:
            reasons.append(f"Stopped following redirects after {self.config.max_redirect_hops} hops.")
        if result.meta_refresh:
            score += 15
            reasons.append("Landing page uses a meta refresh redirect.")
        if result.geo_targeting:
            score += 10
            reasons.append("Response varies by visitor country (geo-targeting headers).")
        result.risk_score = cap_score(score)


def _has_meta_refresh(html: str) -> bool:
    if not html or "refresh" not in html.lower():
        return False
    soup = BeautifulSoup(html, "html.parser")
    for meta in soup.find_all("meta"):
        if str(meta.get("http-equiv") or "").lower() == "refresh":
            return True
    return False


def _impersonated_brand(domain: str, brands: list[str]) -> Optional[str]:
    domain = (domain or "").lower()
    for brand in brands:
        if brand in domain and not domain.endswith(f"{brand}.com"):
            return brand
    return None


@dataclass
class PageContent:
    """Signals pulled from the landing page HTML."""

    final_url: str
    title: str = ""
    has_login_form: bool = False
    hidden_input_count: int = 0
    iframe_count: int = 0
    script_keywords: list[str] = field(default_factory=list)
    clipboard_hooks: bool = False
    brand_mentioned: Optional[str] = None
    truncated: bool = False
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "final_url": self.final_url,
            "title": self.title,
            "has_login_form": self.has_login_form,
            "hidden_input_count": self.hidden_input_count,
            "iframe_count": self.iframe_count,
            "script_keywords": list(self.script_keywords),
            "clipboard_hooks": self.clipboard_hooks,
            "brand_mentioned": self.brand_mentioned,
            "truncated": self.truncated,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


class PageContentScanner:
    """Looks for credential lures, obfuscated JS and brand misuse in page content."""

    source = "page_content"

    def __init__(self, config: Config):
        self.config = config

    async def collect(self, features: UrlFeatures, shared: Optional[SharedPageFetch] = None) -> PageContent:
        page = await _load_page(features, self.config, shared)
        return self.analyze(features, page)

    def analyze(self, features: UrlFeatures, page: FetchedPage) -> PageContent:
        soup = BeautifulSoup(page.html, "html.parser")
        result = PageContent(final_url=page.final_url, truncated=page.truncated)
        if soup.title and soup.title.string:
            result.title = soup.title.string.strip()[:200]

        result.has_login_form = any(
            form.find("input", attrs={"type": "password"}) is not None
            or LOGIN_TEXT_RE.search(form.get_text(" ", strip=True) or "")
            for form in soup.find_all("form")
        )
        result.hidden_input_count = len(soup.find_all("input", attrs={"type": "hidden"}))
        result.iframe_count = len(soup.find_all("iframe"))

        script_text = "\n".join(s.get_text() or "" for s in soup.find_all("script"))
        result.script_keywords = [kw for kw in SUSPICIOUS_JS_KEYWORDS if kw in script_text]
        lowered_js = script_text.lower()
        result.clipboard_hooks = any(p in lowered_js for p in CLIPBOARD_JS_PATTERNS)

        text = soup.get_text(" ", strip=True).lower()
        domain = features.domain.lower()
        for brand in self.config.brands:
            if brand in text and brand not in domain:
                result.brand_mentioned = brand
                break

        score = 0
        if result.has_login_form:
            score += 20
            result.reasons.append("Page contains a login form.")
        if result.brand_mentioned:
            score += 30
            result.reasons.append(
                f'Page mentions "{result.brand_mentioned}" but the URL does not belong to that brand.'
            )
        if result.hidden_input_count > MAX_HIDDEN_INPUTS:
            score += 15
            result.reasons.append(f"Page has many hidden inputs ({result.hidden_input_count}).")
        if result.clipboard_hooks:
            score += 35
            result.reasons.append("Page script hooks the clipboard or keystrokes.")
        if result.script_keywords:
            score += 25
            result.reasons.append(f"Page script uses obfuscation: {', '.join(result.script_keywords)}.")
        if result.iframe_count > MAX_IFRAMES:
            score += 20
            result.reasons.append(f"Page embeds many iframes ({result.iframe_count}).")
        result.risk_score = cap_score(score)
        return result


@dataclass
class FormFinding:
    action: str
    method: str
    cross_domain: bool = False
    insecure_action: bool = False
    password_field: bool = False
    seed_field: bool = False
    card_field: bool = False

    def to_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass
class FormInspection:
    """Per-form credential-harvesting indicators."""

    final_url: str
    forms: list[FormFinding] = field(default_factory=list)
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)

    @property
    def credential_harvesting(self) -> bool:
        return any(f.password_field and f.cross_domain for f in self.forms)

    def to_dict(self) -> dict:
        return {
            "final_url": self.final_url,
            "form_count": len(self.forms),
            "forms": [f.to_dict() for f in self.forms],
            "credential_harvesting": self.credential_harvesting,
            "risk_score": self.risk_score,
            "reasons": list(self.reasons),
        }


class FormInspector:
    """Inspects each form's target and sensitive inputs."""

    source = "forms"

    def __init__(self, config: Config):
        self.config = config

    async def collect(self, features: UrlFeatures, shared: Optional[SharedPageFetch] = None) -> FormInspection:
        page = await _load_page(features, self.config, shared)
        return self.analyze(page)

    def analyze(self, page: FetchedPage) -> FormInspection:
        soup = BeautifulSoup(page.html, "html.parser")
        result = FormInspection(final_url=page.final_url)

        for form in soup.find_all("form"):
            action = urljoin(page.final_url, str(form.get("action") or ""))
            finding = FormFinding(action=action, method=str(form.get("method") or "get").lower())
            if urlparse(action).scheme in {"http", "https"}:
                finding.cross_domain = not same_site(page.final_url, action)
                finding.insecure_action = action.startswith("http://")
            for field_el in form.find_all(["input", "textarea"]):
                name_blob = " ".join(
                    str(field_el.get(attr) or "") for attr in ("name", "id", "placeholder", "autocomplete")
                )
                if str(field_el.get("type") or "").lower() == "password":
                    finding.password_field = True
                if SEED_FIELD_RE.search(name_blob):
                    finding.seed_field = True
                if CARD_FIELD_RE.search(name_blob):
                    finding.card_field = True
            result.forms.append(finding)

        score = 0
        if any(f.cross_domain for f in result.forms):
            score += 40
            result.reasons.append("Form submits data to a different domain.")
        if any(f.password_field for f in result.forms):
            score += 15
            result.reasons.append("Form asks for a password.")
        if result.credential_harvesting:
            score += 20
            result.reasons.append("Password form posts to another origin (credential harvesting pattern).")
        if any(f.seed_field for f in result.forms):
            score += 50
            result.reasons.append("Form asks for a wallet seed or recovery phrase.")
        if any(f.card_field for f in result.forms):
            score += 40
            result.reasons.append("Form asks for payment card details.")
        if any(f.insecure_action for f in result.forms):
            score += 20
            result.reasons.append("Form submits over plain HTTP.")
        result.risk_score = cap_score(score)
        return result
