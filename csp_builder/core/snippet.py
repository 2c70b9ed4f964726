"""Web server configuration snippets for a compiled policy."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import structlog

from csp_builder.errors import UnsupportedFormatError

logger = structlog.get_logger()

FORMAT_APACHE = "apache"
FORMAT_NGINX = "nginx"

SNIPPET_FORMATS = (FORMAT_NGINX, FORMAT_APACHE)


def render_snippet(header_name: str, compiled: str, fmt: str = FORMAT_NGINX) -> str:
    """Render one header line in nginx or apache syntax."""
    value = compiled.rstrip(" ")
    if fmt == FORMAT_NGINX:
        return f'add_header {header_name} "{value}" always;\n'
    if fmt == FORMAT_APACHE:
        return f'Header add {header_name} "{value}"\n'
    raise UnsupportedFormatError(fmt)


def write_snippet(
    output_file: str | Path,
    header_name: str,
    compiled: str,
    fmt: str = FORMAT_NGINX,
    hook_before_save: Callable[[str], str] | None = None,
) -> None:
    """Render and write a snippet.

    The format is checked before anything touches the filesystem.
    *hook_before_save* may rewrite the rendered text.
    """
    output = render_snippet(header_name, compiled, fmt)
    if hook_before_save is not None:
        output = hook_before_save(output)

    with open(output_file, "w", encoding="utf-8") as f:
        f.write(output)
    logger.info("snippet_saved", path=str(output_file), format=fmt)
