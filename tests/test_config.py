"""Tests for configuration loading and heuristics overrides."""

from webwatcher.config import (
    DEFAULT_SENSITIVE_KEYWORDS,
    DEFAULT_SOURCE_WEIGHTS,
    HEURISTICS_VERSION,
    Config,
    _load_heuristics,
    load_config,
    validate_config,
)


def test_missing_heuristics_file_uses_defaults(tmp_path):
    assert _load_heuristics(tmp_path) == {}


def test_heuristics_overrides(tmp_path):
    (tmp_path / "heuristics.yaml").write_text(
        """
version: "test-2"
url:
  keywords: [Login, ".invoice", login]
  suspicious_tlds: []
scoring:
  weights:
    reputation: 50
    whois: not-a-number
  verdict_policies:
    url_only: {suspicious_at: 20, likely_phishing_at: 50}
policy:
  table:
    benign: {suspicious: block, likely_phishing: shrug}
"""
    )

    heuristics = _load_heuristics(tmp_path)

    assert heuristics["heuristics_version"] == "test-2"
    assert heuristics["sensitive_keywords"] == ["login", "invoice"]
    assert heuristics["suspicious_tlds"] == ["cn", "ru", "tk", "ml", "ga", "gq", "cf"]
    assert heuristics["source_weights"]["reputation"] == 50
    assert heuristics["source_weights"]["whois"] == DEFAULT_SOURCE_WEIGHTS["whois"]
    assert heuristics["verdict_policies"]["url_only"] == {"suspicious_at": 20, "likely_phishing_at": 50}
    assert heuristics["verdict_policies"]["comprehensive"] == {"suspicious_at": 30, "likely_phishing_at": 60}
    assert heuristics["policy_table"]["benign"]["suspicious"] == "block"
    assert heuristics["policy_table"]["benign"]["likely_phishing"] == "block"


def test_unparseable_heuristics_are_ignored(tmp_path):
    (tmp_path / "heuristics.yaml").write_text("url: [unclosed")
    assert _load_heuristics(tmp_path) == {}


def test_load_config_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("API_PORT", "9090")
    monkeypatch.setenv("COLLECTOR_TIMEOUT", "3.5")
    monkeypatch.setenv("POLICY_PROFILE", "Strict")

    config = load_config()

    assert config.api_port == 9090
    assert config.collector_timeout == 3.5
    assert config.policy_profile == "strict"
    assert config.db_path == tmp_path / "data" / "webwatcher.db"
    assert config.heuristics_version == HEURISTICS_VERSION
    assert config.sensitive_keywords == DEFAULT_SENSITIVE_KEYWORDS


def test_validate_config():
    assert validate_config(Config()) == []

    errors = validate_config(
        Config(
            collector_timeout=10,
            scan_deadline=5,
            policy_profile="lenient",
            verdict_policies={"comprehensive": {"suspicious_at": 70, "likely_phishing_at": 60}},
        )
    )
    assert "SCAN_DEADLINE must be at least COLLECTOR_TIMEOUT" in errors
    assert "Unknown POLICY_PROFILE: lenient" in errors
    assert "Verdict policy comprehensive: suspicious_at exceeds likely_phishing_at" in errors


def test_config_defaults_are_independent_copies():
    first, second = Config(), Config()
    first.brands.append("examplebank")
    assert "examplebank" not in second.brands
