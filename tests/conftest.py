"""Shared test fixtures."""

from __future__ import annotations

import logging

import pytest
import structlog

from csp_builder.core.builder import CSPBuilder
from csp_builder.logging_config import configure_library_logging


@pytest.fixture(autouse=True)
def _mock_settings(monkeypatch):
    """Provide default settings for all tests."""
    monkeypatch.setenv("CSP_SUPPORT_OLD_BROWSERS", "true")
    monkeypatch.setenv("CSP_HTTPS_TRANSFORM_ON_HTTPS_CONNECTIONS", "true")
    monkeypatch.setenv("CSP_LEGACY_HEADERS", "false")
    monkeypatch.setenv("CSP_SNIPPET_FORMAT", "nginx")
    monkeypatch.setenv("CSP_LOG_JSON", "false")
    monkeypatch.setenv("CSP_LOG_LEVEL", "debug")
    monkeypatch.delenv("CSP_POLICY_FILE", raising=False)
    # The default HTTPS detector reads the CGI variable.
    monkeypatch.delenv("HTTPS", raising=False)

    # Reset cached settings
    import csp_builder.config.loader as loader
    loader._settings = None
    yield
    loader._settings = None


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo setup_logging() calls made by the CLI and logging tests."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    configure_library_logging()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def basic_policy() -> dict:
    """A policy document exercising most rule shapes."""
    return {
        "report-only": False,
        "report-uri": "/csp_violation_reporting_endpoint",
        "base-uri": [],
        "default-src": [],
        "child-src": {
            "allow": ["https://www.youtube.com", "https://www.youtube-nocookie.com"],
            "self": False,
        },
        "connect-src": [],
        "font-src": {"self": True},
        "form-action": {"allow": ["https://example.com"], "self": True},
        "frame-ancestors": [],
        "img-src": {"blob": True, "self": True, "data": True},
        "media-src": [],
        "object-src": [],
        "plugin-types": [],
        "script-src": {
            "allow": ["https://www.google-analytics.com"],
            "self": True,
            "unsafe-inline": False,
            "unsafe-eval": False,
        },
        "style-src": {"self": True},
        "upgrade-insecure-requests": False,
    }


@pytest.fixture
def http_builder():
    """Factory for builders that see a plain-HTTP connection."""
    def _make(policy: dict | None = None) -> CSPBuilder:
        return CSPBuilder(policy, https_detector=lambda: False)
    return _make


@pytest.fixture
def https_builder():
    """Factory for builders that see an HTTPS connection."""
    def _make(policy: dict | None = None) -> CSPBuilder:
        return CSPBuilder(policy, https_detector=lambda: True)
    return _make
