"""Configuration system for wartid using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.wartid] section (project-level)
3. ./wartid.toml (project-level, explicit)
4. File named by WARTID_CONFIG_FILE
5. Environment variables (highest priority)

Credentials use the WARTID_ prefix (WARTID_CLIENT_ID, WARTID_CLIENT_SECRET);
the other sections use WARTID_<SECTION>__ prefixes.
Example: WARTID_SESSION__TTL, WARTID_LOG__LEVEL
"""

from __future__ import annotations

import os
import sys

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


DEFAULT_PROVIDER_URL = "https://id.wp-corp.eu.org"
ROUTE_PREFIX = "/oauth2/wartid"


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    wartid_toml = Path("wartid.toml")
    if wartid_toml.exists():
        files.append(wartid_toml)

    env_config = os.environ.get("WARTID_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    if tomllib is None:
        return {}

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            msg = f"Invalid configuration file {config_file}: {exc}"
            raise ConfigurationError(msg, path=str(config_file)) from exc

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("wartid", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "redis_url",
}

_REDACTED = "********"


class OAuth2Settings(BaseSettings):
    """Identity provider credentials and HTTP client behaviour.

    Environment prefix: WARTID_
    Example: WARTID_CLIENT_ID=your-client-id
    Example: WARTID_BASE_URL=https://app.example.com

    TOML section: [tool.wartid.oauth2]
    """

    model_config = SettingsConfigDict(
        env_prefix="WARTID_",
        extra="ignore",
    )

    client_id: str = Field(
        default="",
        description="OAuth2 client ID issued by the identity provider",
    )
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret issued by the identity provider",
    )
    provider_url: str = Field(
        default=DEFAULT_PROVIDER_URL,
        description="Identity provider base URL; endpoints live under /oauth2/",
    )
    base_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL of this application, without a trailing slash",
    )
    redirect_uri: str = Field(
        default="",
        description=(
            "Explicit callback URL registered at the provider. "
            "Defaults to <base_url>/oauth2/wartid/callback."
        ),
    )
    scopes: str = Field(
        default="basic",
        description="Space-separated scopes requested on every login",
    )
    include_email: bool = Field(
        default=False,
        description="Also request the 'email' scope",
    )

    http_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout for provider calls in seconds",
    )
    http_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Transport-level retries on connection failures",
    )
    http_deadline: float = Field(
        default=20.0,
        gt=0,
        description="Overall deadline for one provider call, retries included",
    )

    @field_validator("provider_url", "base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        """Base URLs are stored without a trailing slash."""
        return v.rstrip("/")

    @property
    def requested_scopes(self) -> frozenset[str]:
        """Scopes requested by default on login."""
        scopes = {s for s in self.scopes.split() if s}
        if self.include_email:
            scopes.add("email")
        return frozenset(scopes)


class SessionSettings(BaseSettings):
    """Session, pending-login and cookie settings.

    Environment prefix: WARTID_SESSION__
    Example: WARTID_SESSION__TTL=3600
    Example: WARTID_SESSION__BACKEND=redis
    """

    model_config = SettingsConfigDict(
        env_prefix="WARTID_SESSION__",
        extra="ignore",
    )

    ttl: int = Field(
        default=86400,  # 24 hours
        ge=60,
        description="Session lifetime in seconds",
    )
    sliding_expiration: bool = Field(
        default=False,
        description="Push the session expiry forward on every resolved request",
    )
    pending_login_ttl: int = Field(
        default=600,  # 10 minutes
        ge=30,
        description="Seconds a login attempt may stay pending before its state expires",
    )
    max_pending_logins: int = Field(
        default=1000,
        ge=1,
        description="Upper bound on concurrently pending login attempts (memory backend)",
    )

    cookie_name: str = Field(default="wartid_session", description="Session cookie name")
    force_https: bool = Field(
        default=False,
        description="Always mark the session cookie Secure, even for plain-HTTP requests",
    )
    csrf_header: str = Field(default="X-CSRF-Token", description="Header carrying the CSRF token")
    csrf_field: str = Field(
        default="csrf_token",
        description="Form field / query parameter carrying the CSRF token",
    )

    landing_path: str = Field(default="/", description="Where to go after a successful login")
    error_path: str = Field(
        default="/",
        description="Where to send users whose login was denied at the provider",
    )
    logout_redirect: str = Field(default="/", description="Where to go after logout")

    backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Storage backend for pending logins, sessions and tokens",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis backend",
    )
    redis_prefix: str = Field(default="wartid", description="Key prefix for all Redis keys")


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: WARTID_LOG__
    Example: WARTID_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="WARTID_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"


_SECTIONS: tuple[tuple[str, type[BaseSettings]], ...] = (
    ("oauth2", OAuth2Settings),
    ("session", SessionSettings),
    ("log", LogSettings),
)


def _without_env_overrides(section_cls: type[BaseSettings], values: dict[str, Any]) -> dict[str, Any]:
    """Drop file values for fields that are also set in the environment."""
    prefix = str(section_cls.model_config.get("env_prefix", "")).upper()
    env_names = {name.upper() for name in os.environ}
    return {k: v for k, v in values.items() if f"{prefix}{k}".upper() not in env_names}


class WartIDSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.wartid] section
    3. ./wartid.toml
    4. WARTID_CONFIG_FILE
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="WARTID__",
        extra="ignore",
    )

    oauth2: OAuth2Settings = Field(default_factory=OAuth2Settings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()

        # Explicit keyword values win over environment variables, which win
        # over TOML values.
        for name, section_cls in _SECTIONS:
            explicit = data.get(name)
            if explicit is not None and not isinstance(explicit, dict):
                continue
            values = _without_env_overrides(section_cls, toml_config.get(name, {}))
            values.update(explicit or {})
            data[name] = section_cls(**values)

        super().__init__(**data)

    def show(self) -> str:
        """Format settings as a readable table with secrets redacted."""
        lines = ["wartid configuration", "=" * 60]

        for display_name, attr_name in (
            ("OAuth2", "oauth2"),
            ("Session", "session"),
            ("Logging", "log"),
        ):
            section = getattr(self, attr_name)
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in section.model_dump().items():
                value_str = _REDACTED if field_name in _SENSITIVE_FIELDS else str(field_value)
                lines.append(f"  {field_name:20} = {value_str}")

        return "\n".join(lines)


@dataclass(frozen=True)
class Credentials:
    """Client credentials registered at the identity provider.

    Attributes
    ----------
    client_id : str
        The OAuth2 client ID.
    client_secret : str
        The OAuth2 client secret (excluded from ``repr``).
    redirect_uri : str
        The exact callback URL sent with authorize and token requests.
    """

    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str

    @classmethod
    def from_settings(cls, settings: OAuth2Settings) -> Credentials:
        """Build credentials from settings.

        Raises
        ------
        ConfigurationError
            If the client ID or secret is missing.
        """
        if not settings.client_id:
            msg = "no WARTID_CLIENT_ID set"
            raise ConfigurationError(msg)
        if not settings.client_secret:
            msg = "no WARTID_CLIENT_SECRET set"
            raise ConfigurationError(msg)
        redirect_uri = settings.redirect_uri or ContextUrls.from_base_url(settings.base_url).callback
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=redirect_uri,
        )


@dataclass(frozen=True)
class ProviderEndpoints:
    """Identity provider endpoint URLs."""

    authorize_url: str
    token_url: str
    userinfo_url: str

    @classmethod
    def from_base_url(cls, base: str) -> ProviderEndpoints:
        """Derive the endpoints from the provider base URL."""
        base = base.rstrip("/")
        return cls(
            authorize_url=f"{base}/oauth2/authorize",
            token_url=f"{base}/oauth2/token",
            userinfo_url=f"{base}/oauth2/userinfo",
        )


@dataclass(frozen=True)
class ContextUrls:
    """Local login and callback URLs of the application."""

    login: str
    callback: str

    @classmethod
    def from_base_url(cls, base: str, prefix: str = ROUTE_PREFIX) -> ContextUrls:
        """Assume the login and callback routes live under ``prefix``.

        Parameters
        ----------
        base : str
            The application base URL, without a trailing slash.
        prefix : str
            The router prefix (default ``/oauth2/wartid``).
        """
        base = base.rstrip("/")
        return cls(login=f"{base}{prefix}/login", callback=f"{base}{prefix}/callback")


@lru_cache(maxsize=1)
def get_settings() -> WartIDSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return WartIDSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()
