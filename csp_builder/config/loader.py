"""Env var config loading with pydantic-settings."""

from __future__ import annotations

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from csp_builder.core.builder import CSPBuilder
from csp_builder.core.snippet import SNIPPET_FORMATS

logger = structlog.get_logger()


class CSPSettings(BaseSettings):
    """Builder defaults, overridden by ``CSP_*`` env vars or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="CSP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Compatibility modes
    support_old_browsers: bool = True
    https_transform_on_https_connections: bool = True
    # Also send X-Content-Security-Policy / X-Webkit-CSP
    legacy_headers: bool = False

    snippet_format: str = "nginx"
    policy_file: str = ""

    log_level: str = "info"
    log_json: bool = True

    @field_validator("snippet_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in SNIPPET_FORMATS:
            raise ValueError(f"snippet_format must be one of {', '.join(SNIPPET_FORMATS)}")
        return value


_settings: CSPSettings | None = None


def get_settings() -> CSPSettings:
    """Get or create the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings() -> CSPSettings:
    """Load settings from env vars (env vars override model defaults)."""
    global _settings
    _settings = CSPSettings()
    logger.debug(
        "config_loaded",
        support_old_browsers=_settings.support_old_browsers,
        https_transform=_settings.https_transform_on_https_connections,
    )
    return _settings


def apply_settings(builder: CSPBuilder, settings: CSPSettings | None = None) -> CSPBuilder:
    """Switch a builder's compatibility modes to match *settings*."""
    settings = settings or get_settings()
    if settings.support_old_browsers:
        builder.enable_old_browser_support()
    else:
        builder.disable_old_browser_support()
    if settings.https_transform_on_https_connections:
        builder.enable_https_transform_on_https_connections()
    else:
        builder.disable_https_transform_on_https_connections()
    return builder
