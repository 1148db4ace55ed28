"""Tests for configuration loading and derived URLs.

Covers environment variables, TOML files and their precedence, plus the
credential and endpoint helpers built from settings.
"""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import os

from pathlib import Path

import pytest

from wartid.config import (
    DEFAULT_PROVIDER_URL,
    ContextUrls,
    Credentials,
    OAuth2Settings,
    ProviderEndpoints,
    WartIDSettings,
    clear_settings,
    get_settings,
)
from wartid.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run in an empty directory with no WARTID_* variables set."""
    for name in list(os.environ):
        if name.upper().startswith("WARTID_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestDefaults:
    """Tests for built-in defaults."""

    def test_defaults(self) -> None:
        """Unconfigured settings use the public provider and memory backend."""
        settings = WartIDSettings()

        assert settings.oauth2.provider_url == DEFAULT_PROVIDER_URL
        assert settings.oauth2.scopes == "basic"
        assert settings.session.ttl == 86400
        assert settings.session.pending_login_ttl == 600
        assert settings.session.backend == "memory"
        assert settings.session.cookie_name == "wartid_session"
        assert settings.log.level == "WARNING"

    def test_requested_scopes(self) -> None:
        """include_email adds the email scope to the configured scopes."""
        assert OAuth2Settings().requested_scopes == frozenset({"basic"})
        assert OAuth2Settings(scopes="basic profile", include_email=True).requested_scopes == (
            frozenset({"basic", "profile", "email"})
        )

    def test_trailing_slash_stripped(self) -> None:
        """Base URLs are normalized without a trailing slash."""
        settings = OAuth2Settings(base_url="https://app.example.com/", provider_url="https://id/")
        assert settings.base_url == "https://app.example.com"
        assert settings.provider_url == "https://id"


class TestEnvironment:
    """Tests for environment variable configuration."""

    def test_credentials_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """WARTID_CLIENT_ID and WARTID_CLIENT_SECRET populate the credentials."""
        monkeypatch.setenv("WARTID_CLIENT_ID", "env-id")
        monkeypatch.setenv("WARTID_CLIENT_SECRET", "env-secret")

        settings = WartIDSettings()
        assert settings.oauth2.client_id == "env-id"
        assert settings.oauth2.client_secret == "env-secret"

    def test_section_prefixes(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Section settings use WARTID_<SECTION>__ prefixes."""
        monkeypatch.setenv("WARTID_SESSION__TTL", "3600")
        monkeypatch.setenv("WARTID_SESSION__SLIDING_EXPIRATION", "true")
        monkeypatch.setenv("WARTID_LOG__LEVEL", "DEBUG")

        settings = WartIDSettings()
        assert settings.session.ttl == 3600
        assert settings.session.sliding_expiration is True
        assert settings.log.level == "DEBUG"

    def test_invalid_value_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Out-of-range values fail validation."""
        monkeypatch.setenv("WARTID_SESSION__TTL", "5")
        with pytest.raises(ValueError):
            WartIDSettings()


class TestTomlFiles:
    """Tests for TOML configuration files."""

    def test_wartid_toml(self, clean_env: Path) -> None:
        """./wartid.toml is read section by section."""
        (clean_env / "wartid.toml").write_text(
            '[oauth2]\nscopes = "basic profile"\n\n[session]\nttl = 3600\n',
            encoding="utf-8",
        )

        settings = WartIDSettings()
        assert settings.oauth2.scopes == "basic profile"
        assert settings.session.ttl == 3600

    def test_pyproject_tool_table(self, clean_env: Path) -> None:
        """pyproject.toml contributes its [tool.wartid] table only."""
        (clean_env / "pyproject.toml").write_text(
            '[project]\nname = "app"\n\n[tool.wartid.session]\ncookie_name = "sid"\n',
            encoding="utf-8",
        )

        assert WartIDSettings().session.cookie_name == "sid"

    def test_file_precedence(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """WARTID_CONFIG_FILE beats wartid.toml, which beats pyproject.toml."""
        (clean_env / "pyproject.toml").write_text(
            "[tool.wartid.session]\nttl = 1000\npending_login_ttl = 100\nmax_pending_logins = 5\n",
            encoding="utf-8",
        )
        (clean_env / "wartid.toml").write_text(
            "[session]\nttl = 2000\npending_login_ttl = 200\n", encoding="utf-8"
        )
        extra = clean_env / "extra.toml"
        extra.write_text("[session]\nttl = 3000\n", encoding="utf-8")
        monkeypatch.setenv("WARTID_CONFIG_FILE", str(extra))

        session = WartIDSettings().session
        assert session.ttl == 3000
        assert session.pending_login_ttl == 200
        assert session.max_pending_logins == 5

    def test_env_beats_toml(self, clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables override file values."""
        (clean_env / "wartid.toml").write_text(
            "[session]\nttl = 3600\ncookie_name = \"from_file\"\n", encoding="utf-8"
        )
        monkeypatch.setenv("WARTID_SESSION__TTL", "7200")

        session = WartIDSettings().session
        assert session.ttl == 7200
        assert session.cookie_name == "from_file"

    def test_explicit_values_beat_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Keyword arguments override the environment."""
        monkeypatch.setenv("WARTID_CLIENT_ID", "env-id")

        settings = WartIDSettings(oauth2={"client_id": "explicit-id"})
        assert settings.oauth2.client_id == "explicit-id"

    def test_invalid_toml(self, clean_env: Path) -> None:
        """A malformed file is reported instead of silently ignored."""
        (clean_env / "wartid.toml").write_text("[session\nttl = ", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="wartid.toml"):
            WartIDSettings()


class TestShow:
    """Tests for the settings table."""

    def test_secrets_redacted(self) -> None:
        """The client secret and Redis URL never appear in show()."""
        settings = WartIDSettings(
            oauth2={"client_id": "visible-id", "client_secret": "hidden-secret"},
            session={"redis_url": "redis://:pw@cache:6379/0"},
        )
        output = settings.show()

        assert "visible-id" in output
        assert "hidden-secret" not in output
        assert "pw@cache" not in output
        assert "********" in output


class TestCredentials:
    """Tests for Credentials.from_settings."""

    def test_missing_client_id(self) -> None:
        """A missing client ID names the variable to set."""
        with pytest.raises(ConfigurationError, match="WARTID_CLIENT_ID"):
            Credentials.from_settings(OAuth2Settings(client_secret="s"))

    def test_missing_client_secret(self) -> None:
        """A missing client secret names the variable to set."""
        with pytest.raises(ConfigurationError, match="WARTID_CLIENT_SECRET"):
            Credentials.from_settings(OAuth2Settings(client_id="id"))

    def test_default_redirect_uri(self) -> None:
        """The redirect URI defaults to the callback route under the base URL."""
        creds = Credentials.from_settings(
            OAuth2Settings(client_id="id", client_secret="s", base_url="https://app.example.com/")
        )
        assert creds.redirect_uri == "https://app.example.com/oauth2/wartid/callback"

    def test_explicit_redirect_uri(self) -> None:
        """An explicitly registered redirect URI is used as-is."""
        creds = Credentials.from_settings(
            OAuth2Settings(client_id="id", client_secret="s", redirect_uri="https://x/cb")
        )
        assert creds.redirect_uri == "https://x/cb"

    def test_secret_hidden_from_repr(self) -> None:
        """The secret is not part of the repr."""
        creds = Credentials(client_id="id", client_secret="hidden", redirect_uri="https://x/cb")
        assert "hidden" not in repr(creds)


class TestUrls:
    """Tests for endpoint and context URL derivation."""

    def test_provider_endpoints(self) -> None:
        """Endpoints live under /oauth2/ on the provider."""
        endpoints = ProviderEndpoints.from_base_url("https://id.wp-corp.eu.org/")

        assert endpoints.authorize_url == "https://id.wp-corp.eu.org/oauth2/authorize"
        assert endpoints.token_url == "https://id.wp-corp.eu.org/oauth2/token"
        assert endpoints.userinfo_url == "https://id.wp-corp.eu.org/oauth2/userinfo"

    def test_context_urls(self) -> None:
        """Login and callback routes derive from the application base URL."""
        urls = ContextUrls.from_base_url("https://app.example.com")

        assert urls.login == "https://app.example.com/oauth2/wartid/login"
        assert urls.callback == "https://app.example.com/oauth2/wartid/callback"

    def test_context_urls_custom_prefix(self) -> None:
        """A custom route prefix is honored."""
        urls = ContextUrls.from_base_url("https://app.example.com/", prefix="/auth")
        assert urls.callback == "https://app.example.com/auth/callback"


class TestGlobalSettings:
    """Tests for the cached settings accessor."""

    def test_cached_until_cleared(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """get_settings() is cached and clear_settings() reloads it."""
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("WARTID_CLIENT_ID", "reloaded")
        clear_settings()
        assert get_settings().oauth2.client_id == "reloaded"
