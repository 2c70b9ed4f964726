"""Starlette middleware that adds the compiled policy to every response."""

from __future__ import annotations

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from csp_builder.config.loader import apply_settings, get_settings
from csp_builder.core.builder import CSPBuilder

logger = structlog.get_logger()

_HTTPS_SCHEMES = frozenset({"https", "wss"})


class CSPMiddleware(BaseHTTPMiddleware):
    """Inject Content-Security-Policy headers into every HTTP response.

    - Compiles once per scheme: HTTPS requests get the https-upgraded sources
    - Replaces any CSP/Report-To headers already set by the endpoint
    - Legacy X- header names follow ``CSP_LEGACY_HEADERS`` unless given
    - Old browser support and the HTTPS transform follow ``CSP_*`` settings
    """

    def __init__(self, app: ASGIApp, builder: CSPBuilder, legacy: bool | None = None) -> None:
        super().__init__(app)
        settings = get_settings()
        self.legacy = settings.legacy_headers if legacy is None else legacy
        # Private copies: requests never mutate the caller's builder.
        self._https_builder = apply_settings(builder.with_https_detector(lambda: True), settings)
        self._http_builder = apply_settings(builder.with_https_detector(lambda: False), settings)

    def _builder_for(self, request: Request) -> CSPBuilder:
        if request.url.scheme in _HTTPS_SCHEMES:
            return self._https_builder
        return self._http_builder

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        csp = self._builder_for(request)
        try:
            for name in csp.get_header_array(legacy=self.legacy):
                if name in response.headers:
                    del response.headers[name]
            csp.inject_csp_header(response, legacy=self.legacy)
        except Exception as exc:
            logger.error("csp_header_error", error=str(exc), path=request.url.path)
        return response
