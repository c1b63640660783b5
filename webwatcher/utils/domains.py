"""Domain and URL normalization utilities."""

from __future__ import annotations

import ipaddress
import re
from urllib.parse import urlparse

import idna
import tldextract

# Offline extractor: the bundled suffix snapshot keeps feature extraction free of network access.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def ensure_scheme(value: str) -> str:
    """Prefix https:// when the input has no scheme."""
    raw = (value or "").strip()
    if raw and not _SCHEME_RE.match(raw):
        return f"https://{raw}"
    return raw


def canonicalize_domain(value: str) -> str:
    """
    Normalize a domain/URL to a canonical host key.

    - Lowercase
    - Strip leading "www."
    - Ignore userinfo, port, path, query and fragment
    """
    raw = (value or "").strip()
    if not raw:
        return ""

    parsed = urlparse(ensure_scheme(raw))
    host = (parsed.hostname or "").strip().lower().strip(".")
    if host.startswith("www.") and len(host) > 4:
        host = host[4:]
    return host


def registered_domain(value: str) -> str:
    """Return the registrable domain for a host or URL (best-effort)."""
    host = canonicalize_domain(value)
    if not host:
        return ""
    if is_ip_literal(host):
        return host
    extracted = _EXTRACT(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return host


def is_ip_literal(host: str) -> bool:
    """True when host is an IPv4/IPv6 literal (brackets allowed)."""
    candidate = (host or "").strip().strip("[]")
    if not candidate:
        return False
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def same_site(a: str, b: str) -> bool:
    """True when both hosts/URLs share a registrable domain."""
    left, right = registered_domain(a), registered_domain(b)
    return bool(left) and left == right


def to_ascii_host(host: str) -> str:
    """Return the A-label (punycode) form of a host; ASCII hosts pass through unchanged.

    Raises idna.IDNAError when a non-ASCII host is not a valid IDN.
    """
    if host.isascii():
        return host
    return idna.encode(host, uts46=True).decode("ascii")
