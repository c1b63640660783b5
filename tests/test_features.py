"""Tests for structural URL feature extraction."""

import idna
import pytest

from webwatcher.analyzer.features import analyze_structure, extract, structural_red_flags, structure_score
from webwatcher.config import Config
from webwatcher.errors import InvalidUrl


@pytest.fixture
def config():
    return Config()


class TestExtract:
    """Parsing and normalization."""

    def test_plain_domain_has_no_indicators(self, config):
        features = extract("https://example.com", config)

        assert features.domain == "example.com"
        assert features.path == "/"
        assert features.is_ip is False
        assert features.has_at is False
        assert features.keyword_hits == ()
        assert features.tld == "com"
        assert features.tld_suspicious is False
        assert features.brand_impersonation is None
        assert structural_red_flags(features) == []

    def test_missing_scheme_defaults_to_https(self, config):
        features = extract("paypal-login.tk", config)
        assert features.full_url == "https://paypal-login.tk"
        assert features.domain == "paypal-login.tk"

    def test_host_is_lowercased(self, config):
        features = extract("HTTPS://Example.COM/Path", config)
        assert features.domain == "example.com"
        assert features.full_url == "https://example.com/Path"

    def test_userinfo_is_not_the_host(self, config):
        features = extract("http://192.168.1.1@paypal-login.tk/verify", config)

        assert features.domain == "paypal-login.tk"
        assert features.is_ip is False
        assert features.has_at is True
        assert features.keyword_hits == ("login", "verify")
        assert features.tld == "tk"
        assert features.tld_suspicious is True
        assert features.brand_impersonation == "paypal"

    def test_internationalized_host_is_encoded(self, config):
        features = extract("https://pаypal.com/login", config)

        assert features.domain.startswith("xn--")
        assert idna.decode(features.domain) == "pаypal.com"
        assert features.full_url == f"https://{features.domain}/login"
        assert features.keyword_hits == ("login",)

    def test_undecodable_internationalized_host(self, config):
        with pytest.raises(InvalidUrl):
            extract("https://☃.com/", config)

    def test_schemeless_url_with_nested_url(self, config):
        features = extract("paypal-login.tk/verify?next=https://paypal.com", config)

        assert features.domain == "paypal-login.tk"
        assert features.full_url == "https://paypal-login.tk/verify?next=https://paypal.com"

    def test_keywords_in_query_string(self, config):
        features = extract("http://evil.example/?action=verify", config)
        assert features.keyword_hits == ("verify",)
        assert features.path == "/"

    def test_official_brand_domain_is_not_impersonation(self, config):
        assert extract("https://www.paypal.com/signin", config).brand_impersonation is None

    def test_ip_host(self, config):
        features = extract("http://10.0.0.1/", config)
        assert features.is_ip is True
        assert features.tld == ""
        assert features.brand_impersonation is None

    def test_same_input_same_features(self, config):
        url = "http://secure-update.apple.example.ru/account"
        assert extract(url, config) == extract(url, config)

    def test_heuristics_version_is_recorded(self):
        config = Config(heuristics_version="test-1")
        assert extract("https://example.com", config).heuristics_version == "test-1"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "http://exa mple.com",
            "ftp://example.com/file",
            "http://",
            "http://example.com:99999/",
            "http://exa$mple.com/",
        ],
    )
    def test_invalid_urls_raise(self, config, raw):
        with pytest.raises(InvalidUrl):
            extract(raw, config)


class TestStructuralFlags:
    """Rule matching and the step score."""

    def test_paypal_lure_matches_four_rules(self, config):
        features = extract("http://192.168.1.1@paypal-login.tk/verify", config)
        flags = structural_red_flags(features)

        assert flags == [
            "Contains @ which can hide the real destination domain.",
            "Contains sensitive words in the link like: login, verify.",
            "Uses a less common top level domain (.tk).",
            'Domain contains brand name "paypal" but is not the official paypal.com domain.',
        ]
        assert analyze_structure(features).risk_score == 90

    def test_flags_follow_rule_order(self, config):
        features = extract("http://user@10.0.0.1/login", config)
        flags = structural_red_flags(features)

        assert flags[0].startswith("Uses a raw IP")
        assert flags[1].startswith("Contains @")
        assert flags[2].startswith("Has many dots")
        assert flags[3].startswith("Contains sensitive words")

    def test_long_url_flag(self, config):
        features = extract("https://example.com/" + "a" * 100, config)
        assert structural_red_flags(features) == ["URL is very long which is common for phishing links."]

    def test_custom_keyword_table(self):
        config = Config(sensitive_keywords=["invoice"])
        features = extract("https://example.com/login/invoice", config)
        assert features.keyword_hits == ("invoice",)

    @pytest.mark.parametrize("count,expected", [(0, 0), (1, 40), (2, 70), (3, 90), (4, 90), (7, 90)])
    def test_step_score(self, count, expected):
        assert structure_score(count) == expected

    def test_analysis_to_dict(self, config):
        data = analyze_structure(extract("https://example.com/login", config)).to_dict()
        assert data["flag_count"] == 1
        assert data["risk_score"] == 40
        assert data["features"]["keyword_hits"] == ["login"]
