"""Tests for core/config.py -- secret policy and env parsing.

Settings(**kwargs) overrides the environment set up in conftest.py, so each
test states exactly the fields it cares about.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

GOOD_SECRET = "ab" * 32


class TestCookieSecret:
    def test_production_requires_secret(self):
        with pytest.raises(ValidationError, match="COOKIE_SECRET is required"):
            Settings(debug=False, cookie_secret="", verify_token="t")

    def test_debug_generates_secret(self):
        settings = Settings(debug=True, cookie_secret="")
        assert len(settings.cookie_key) == 32

    def test_generated_secrets_differ(self):
        assert Settings(debug=True, cookie_secret="").cookie_secret != Settings(debug=True, cookie_secret="").cookie_secret

    def test_non_hex_rejected(self):
        with pytest.raises(ValidationError, match="hex"):
            Settings(cookie_secret="not-a-hex-secret-but-long-enough-to-pass-length")

    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError, match="at least 32 bytes"):
            Settings(cookie_secret="ab" * 16)

    def test_aead_needs_exactly_32_bytes(self):
        with pytest.raises(ValidationError, match="exactly 32 bytes"):
            Settings(cookie_secret="ab" * 48, cookie_scheme="aead")

    def test_mac_accepts_longer_secret(self):
        assert len(Settings(cookie_secret="ab" * 48, cookie_scheme="mac").cookie_key) == 48

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(cookie_secret=GOOD_SECRET, token_ttl_seconds=0)


class TestVerifierCredentials:
    def test_production_remote_requires_token(self):
        with pytest.raises(ValidationError, match="VERIFY_TOKEN"):
            Settings(debug=False, cookie_secret=GOOD_SECRET, verifier_mode="remote", verify_token="")

    def test_production_local_requires_private_key(self):
        with pytest.raises(ValidationError, match="PRIVATE_KEY"):
            Settings(debug=False, cookie_secret=GOOD_SECRET, verifier_mode="local", private_key="")

    def test_debug_only_warns(self):
        settings = Settings(debug=True, cookie_secret=GOOD_SECRET, verifier_mode="local", private_key="")
        assert settings.verifier_mode == "local"


class TestDefaultsAndEnv:
    def test_defaults(self):
        settings = Settings(cookie_secret=GOOD_SECRET)
        assert settings.cookie_name == "MCLVALID"
        assert settings.cookie_scheme == "aead"
        assert settings.cookie_samesite == "strict"
        assert settings.token_ttl_seconds == 3600
        assert settings.freshness_tolerance_seconds == 5.0
        assert settings.exempted_services == frozenset({"WARP_VPN", "ICLOUD_RELAY_PROXY"})
        assert settings.client_ip_headers == ["CF-Connecting-IP", "X-Real-IP"]

    def test_exempted_services_from_env(self, monkeypatch):
        monkeypatch.setenv("EXEMPTED_SERVICES", '["CORP_VPN"]')
        assert Settings().exempted_services == frozenset({"CORP_VPN"})

    def test_scheme_from_env(self, monkeypatch):
        monkeypatch.setenv("COOKIE_SCHEME", "mac")
        assert Settings().cookie_scheme == "mac"

    def test_unknown_scheme_rejected(self):
        with pytest.raises(ValidationError):
            Settings(cookie_secret=GOOD_SECRET, cookie_scheme="rot13")
