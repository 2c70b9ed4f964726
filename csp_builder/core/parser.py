"""Parse a Content-Security-Policy header value back into a CSPBuilder."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from csp_builder.core.builder import CSPBuilder
from csp_builder.models.directive import (
    REPORT_TO,
    REPORT_URI,
    UPGRADE_INSECURE_REQUESTS,
    is_directive,
)

logger = structlog.get_logger()

# Directives whose tokens go to a dedicated setter instead of a rule.
_TOKEN_SETTERS: dict[str, Callable[[CSPBuilder, str], object]] = {
    REPORT_TO: CSPBuilder.set_report_to,
    REPORT_URI: CSPBuilder.set_report_uri,
    "require-sri-for": CSPBuilder.require_sri_for,
    "plugin-types": CSPBuilder.allow_plugin_type,
}

# Keyword token -> flag setter, called with (builder, directive, True).
_KEYWORD_SETTERS: dict[str, Callable[[CSPBuilder, str, bool], CSPBuilder]] = {
    "'self'": CSPBuilder.set_self_allowed,
    "blob:": CSPBuilder.set_blob_allowed,
    "data:": CSPBuilder.set_data_allowed,
    "filesystem:": CSPBuilder.set_filesystem_allowed,
    "https:": CSPBuilder.set_https_allowed,
    "mediastream:": CSPBuilder.set_mediastream_allowed,
    "'report-sample'": CSPBuilder.set_report_sample,
    "'strict-dynamic'": CSPBuilder.set_strict_dynamic,
    "'unsafe-eval'": CSPBuilder.set_allow_unsafe_eval,
    "'unsafe-hashes'": CSPBuilder.set_allow_unsafe_hashes,
    "'unsafe-inline'": CSPBuilder.set_allow_unsafe_inline,
}


def _apply_token(csp: CSPBuilder, name: str, token: str) -> None:
    if token == "'none'":
        csp.add_directive(name, False)
    elif token == "'unsafe-hashed-attributes'":
        # Only ever valid on script-src, whichever directive it appeared in.
        csp.set_allow_unsafe_hashed_attributes("script-src", True)
    elif token in _KEYWORD_SETTERS:
        _KEYWORD_SETTERS[token](csp, name, True)
    else:
        csp.add_source(name, token)


def parse_header(header: str = "", csp: CSPBuilder | None = None) -> CSPBuilder:
    """Populate *csp* (a new builder by default) from a header value.

    Compiling the result with old browser support and the HTTPS transform
    disabled reproduces a header made of the recognized keywords and sources.
    Directives outside the known set are skipped.
    """
    if csp is None:
        csp = CSPBuilder()

    for segment in header.split(";"):
        parts = segment.strip().split(None, 1)
        if not parts:
            continue
        name = parts[0].lower()

        if name == UPGRADE_INSECURE_REQUESTS:
            csp.add_directive(UPGRADE_INSECURE_REQUESTS)
            continue
        if len(parts) < 2:
            continue
        tokens = parts[1].split()

        setter = _TOKEN_SETTERS.get(name)
        if setter is not None:
            for token in tokens:
                setter(csp, token)
            continue

        if not is_directive(name):
            logger.debug("unknown_directive_skipped", directive=name)
            continue
        for token in tokens:
            _apply_token(csp, name, token)

    return csp
