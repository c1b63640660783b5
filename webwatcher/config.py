"""Configuration management for WebWatcher."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# Bump whenever any of the default tables below change so results stay traceable.
HEURISTICS_VERSION = "2025.1"

# Default heuristics for URL feature extraction. These can be overridden
# via config/heuristics.yaml without touching code.
DEFAULT_SENSITIVE_KEYWORDS: list[str] = [
    "login",
    "signin",
    "verify",
    "update",
    "secure",
    "account",
    "wallet",
    "password",
    "support",
]

DEFAULT_SUSPICIOUS_TLDS: list[str] = ["cn", "ru", "tk", "ml", "ga", "gq", "cf"]

DEFAULT_BRANDS: list[str] = ["apple", "paypal", "google", "microsoft", "facebook", "binance"]

# Reputation keeps its own TLD list (free/abused registries)
DEFAULT_REPUTATION_TLDS: list[str] = ["tk", "ml", "ga", "cf", "gq", "xyz", "top", "work"]

DEFAULT_SOURCE_WEIGHTS: dict[str, int] = {
    "url_structure": 25,
    "redirects": 10,
    "page_content": 15,
    "forms": 15,
    "tls": 10,
    "reputation": 30,
    "whois": 15,
    "ip_risk": 10,
    "breach": 10,
}

# Verdict bands: (suspicious_at, likely_phishing_at)
DEFAULT_VERDICT_POLICIES: dict[str, dict[str, int]] = {
    "url_only": {"suspicious_at": 30, "likely_phishing_at": 60},
    "comprehensive": {"suspicious_at": 30, "likely_phishing_at": 60},
}

# (category, verdict) -> allow | warn | block
DEFAULT_POLICY_TABLE: dict[str, dict[str, str]] = {
    "phishing": {"no_strong_signals": "warn", "suspicious": "warn", "likely_phishing": "block"},
    "malware": {"no_strong_signals": "warn", "suspicious": "block", "likely_phishing": "block"},
    "benign": {"no_strong_signals": "allow", "suspicious": "warn", "likely_phishing": "block"},
    "unknown": {"no_strong_signals": "allow", "suspicious": "warn", "likely_phishing": "block"},
}

DEFAULT_SITE_CATEGORIES: list[dict] = [
    {"name": "banking", "keywords": ["bank", "credit", "loan", "finance"], "confidence": 0.8},
    {"name": "exchange", "keywords": ["exchange", "crypto", "coin", "trade"], "confidence": 0.85},
    {"name": "productivity", "keywords": ["docs", "drive", "office", "mail"], "confidence": 0.7},
    {"name": "adult", "keywords": ["adult", "xxx", "porn"], "confidence": 0.9},
    {"name": "gambling", "keywords": ["casino", "bet", "poker", "lottery"], "confidence": 0.85},
    {"name": "social", "keywords": ["facebook", "twitter", "instagram", "tiktok"], "confidence": 0.75},
    {"name": "shopping", "keywords": ["shop", "store", "buy", "cart"], "confidence": 0.7},
]

DEFAULT_POLICY_PROFILES: dict[str, dict[str, list[str]]] = {
    "enterprise": {
        "block": ["adult", "gambling"],
        "warn": ["exchange", "social"],
        "allow": ["banking", "productivity", "shopping"],
    },
    "strict": {
        "block": ["adult", "gambling", "exchange", "social"],
        "warn": ["banking", "shopping"],
        "allow": ["productivity"],
    },
    "permissive": {
        "block": ["adult"],
        "warn": ["gambling"],
        "allow": ["banking", "exchange", "productivity", "social", "shopping"],
    },
}

DEFAULT_HIGH_RISK_COUNTRIES: list[str] = ["CN", "RU", "KP", "IR", "NG"]

DEFAULT_CLOUD_ISPS: list[str] = ["amazon", "google", "microsoft", "digitalocean", "ovh", "hetzner"]

DEFAULT_BULLETPROOF_ISPS: list[str] = ["bulletproof", "offshore", "abuse-resistant"]

DEFAULT_OPENPHISH_FEED_URL = "https://openphish.com/feed.txt"


@dataclass
class Config:
    """Application configuration loaded from environment."""

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8080

    # External intelligence API keys (optional, improves coverage)
    virustotal_api_key: str = ""
    google_safe_browsing_api_key: str = ""
    hibp_api_key: str = ""
    abuseipdb_api_key: str = ""
    openphish_feed_url: str = DEFAULT_OPENPHISH_FEED_URL
    openphish_cache_seconds: int = 900

    # Operational limits
    collector_timeout: float = 8.0
    scan_deadline: float = 20.0
    max_redirect_hops: int = 10
    max_content_bytes: int = 2_000_000
    whois_new_domain_days: int = 30
    user_agent: str = "WebWatcher/1.0 (+url-risk-scanner)"

    # Background event sink
    event_sink_enabled: bool = True
    event_sink_queue_size: int = 1000

    policy_profile: str = "enterprise"

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    config_dir: Path = field(default_factory=lambda: Path("./config"))

    # Heuristics (override via config/heuristics.yaml)
    heuristics_version: str = HEURISTICS_VERSION
    sensitive_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_KEYWORDS))
    suspicious_tlds: list[str] = field(default_factory=lambda: list(DEFAULT_SUSPICIOUS_TLDS))
    brands: list[str] = field(default_factory=lambda: list(DEFAULT_BRANDS))
    reputation_tlds: list[str] = field(default_factory=lambda: list(DEFAULT_REPUTATION_TLDS))
    source_weights: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SOURCE_WEIGHTS))
    verdict_policies: dict[str, dict[str, int]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_VERDICT_POLICIES.items()}
    )
    policy_table: dict[str, dict[str, str]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_POLICY_TABLE.items()}
    )
    site_categories: list[dict] = field(default_factory=lambda: list(DEFAULT_SITE_CATEGORIES))
    policy_profiles: dict[str, dict[str, list[str]]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_POLICY_PROFILES.items()}
    )
    high_risk_countries: list[str] = field(default_factory=lambda: list(DEFAULT_HIGH_RISK_COUNTRIES))
    cloud_isps: list[str] = field(default_factory=lambda: list(DEFAULT_CLOUD_ISPS))
    bulletproof_isps: list[str] = field(default_factory=lambda: list(DEFAULT_BULLETPROOF_ISPS))

    def __post_init__(self):
        """Normalize paths."""
        self.data_dir = Path(self.data_dir)
        self.config_dir = Path(self.config_dir)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "webwatcher.db"

    def ensure_dirs(self) -> None:
        """Create the data directory (not done implicitly so tests stay side-effect free)."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


def _load_heuristics(config_dir: Path) -> dict:
    """Load heuristic overrides from config/heuristics.yaml (optional)."""
    path = Path(config_dir or ".") / "heuristics.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except Exception as exc:
        logger.warning("Failed to parse heuristics.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        return {}

    def _coerce_str_list(raw, default, lower=True):
        if not isinstance(raw, (list, tuple, set)):
            return list(default)
        items: list[str] = []
        for entry in raw:
            value = str(entry or "").strip().lstrip(".")
            if lower:
                value = value.lower()
            if value and value not in items:
                items.append(value)
        return items or list(default)

    def _coerce_weights(raw, default):
        weights = dict(default)
        if not isinstance(raw, dict):
            return weights
        for name, value in raw.items():
            try:
                weights[str(name)] = max(0, int(value))
            except (TypeError, ValueError):
                continue
        return weights

    def _coerce_verdict_policies(raw, default):
        policies = {k: dict(v) for k, v in default.items()}
        if not isinstance(raw, dict):
            return policies
        for name, bands in raw.items():
            if not isinstance(bands, dict):
                continue
            current = policies.setdefault(str(name), dict(default["comprehensive"]))
            for key in ("suspicious_at", "likely_phishing_at"):
                try:
                    current[key] = int(bands.get(key, current[key]))
                except (TypeError, ValueError):
                    continue
        return policies

    def _coerce_policy_table(raw, default):
        table = {k: dict(v) for k, v in default.items()}
        if not isinstance(raw, dict):
            return table
        for category, bands in raw.items():
            if not isinstance(bands, dict):
                continue
            row = table.setdefault(str(category), {})
            for verdict, outcome in bands.items():
                outcome = str(outcome or "").strip().lower()
                if outcome in {"allow", "warn", "block"}:
                    row[str(verdict)] = outcome
        return table

    def _coerce_site_categories(raw, default):
        categories: list[dict] = []
        for entry in raw or []:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "").strip().lower()
            keywords = [str(k).strip().lower() for k in entry.get("keywords") or [] if str(k).strip()]
            if not name or not keywords:
                continue
            try:
                confidence = float(entry.get("confidence", 0.7))
            except (TypeError, ValueError):
                confidence = 0.7
            categories.append({"name": name, "keywords": keywords, "confidence": confidence})
        return categories or list(default)

    url_cfg = data.get("url", {}) if isinstance(data.get("url"), dict) else {}
    scoring_cfg = data.get("scoring", {}) if isinstance(data.get("scoring"), dict) else {}
    policy_cfg = data.get("policy", {}) if isinstance(data.get("policy"), dict) else {}

    return {
        "heuristics_version": str(data.get("version") or HEURISTICS_VERSION),
        "sensitive_keywords": _coerce_str_list(url_cfg.get("keywords"), DEFAULT_SENSITIVE_KEYWORDS),
        "suspicious_tlds": _coerce_str_list(url_cfg.get("suspicious_tlds"), DEFAULT_SUSPICIOUS_TLDS),
        "brands": _coerce_str_list(url_cfg.get("brands"), DEFAULT_BRANDS),
        "reputation_tlds": _coerce_str_list(url_cfg.get("reputation_tlds"), DEFAULT_REPUTATION_TLDS),
        "source_weights": _coerce_weights(scoring_cfg.get("weights"), DEFAULT_SOURCE_WEIGHTS),
        "verdict_policies": _coerce_verdict_policies(
            scoring_cfg.get("verdict_policies"), DEFAULT_VERDICT_POLICIES
        ),
        "policy_table": _coerce_policy_table(policy_cfg.get("table"), DEFAULT_POLICY_TABLE),
        "site_categories": _coerce_site_categories(
            policy_cfg.get("site_categories"), DEFAULT_SITE_CATEGORIES
        ),
        "high_risk_countries": _coerce_str_list(
            data.get("high_risk_countries"), DEFAULT_HIGH_RISK_COUNTRIES, lower=False
        ),
    }


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    heuristics = _load_heuristics(Path(os.getenv("CONFIG_DIR", "./config")))

    return Config(
        api_host=os.getenv("API_HOST", "127.0.0.1"),
        api_port=int(os.getenv("API_PORT", "8080")),
        virustotal_api_key=os.getenv("VIRUSTOTAL_API_KEY", ""),
        google_safe_browsing_api_key=os.getenv("GOOGLE_SAFE_BROWSING_API_KEY", ""),
        hibp_api_key=os.getenv("HIBP_API_KEY", ""),
        abuseipdb_api_key=os.getenv("ABUSEIPDB_API_KEY", ""),
        openphish_feed_url=os.getenv("OPENPHISH_FEED_URL", DEFAULT_OPENPHISH_FEED_URL),
        openphish_cache_seconds=int(os.getenv("OPENPHISH_CACHE_SECONDS", "900")),
        collector_timeout=float(os.getenv("COLLECTOR_TIMEOUT", "8")),
        scan_deadline=float(os.getenv("SCAN_DEADLINE", "20")),
        max_redirect_hops=int(os.getenv("MAX_REDIRECT_HOPS", "10")),
        max_content_bytes=int(os.getenv("MAX_CONTENT_BYTES", "2000000")),
        whois_new_domain_days=int(os.getenv("WHOIS_NEW_DOMAIN_DAYS", "30")),
        event_sink_enabled=os.getenv("EVENT_SINK_ENABLED", "true").lower() == "true",
        policy_profile=os.getenv("POLICY_PROFILE", "enterprise").strip().lower() or "enterprise",
        data_dir=Path(os.getenv("DATA_DIR", "./data")),
        config_dir=Path(os.getenv("CONFIG_DIR", "./config")),
        **heuristics,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []
    if config.collector_timeout <= 0:
        errors.append("COLLECTOR_TIMEOUT must be positive")
    if config.scan_deadline < config.collector_timeout:
        errors.append("SCAN_DEADLINE must be at least COLLECTOR_TIMEOUT")
    if config.max_redirect_hops < 1:
        errors.append("MAX_REDIRECT_HOPS must be at least 1")
    if config.policy_profile not in config.policy_profiles:
        errors.append(f"Unknown POLICY_PROFILE: {config.policy_profile}")
    for name, bands in config.verdict_policies.items():
        if bands.get("suspicious_at", 0) > bands.get("likely_phishing_at", 0):
            errors.append(f"Verdict policy {name}: suspicious_at exceeds likely_phishing_at")
    if sum(config.source_weights.values()) <= 0:
        errors.append("At least one source weight must be positive")

    if not (config.virustotal_api_key or config.google_safe_browsing_api_key):
        # Reputation still runs against the OpenPhish feed.
        logger.info("No VIRUSTOTAL_API_KEY or GOOGLE_SAFE_BROWSING_API_KEY configured; reputation is feed-only")
    if not config.hibp_api_key:
        logger.info("No HIBP_API_KEY configured; breach checks will be unavailable")

    return errors
