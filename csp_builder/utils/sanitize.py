"""Character-class sanitizers for untrusted CSP header fragments.

Every function here strips rather than rejects: the compiled header must
never contain an injected directive separator or line break, whatever the
input.
"""

from __future__ import annotations

import re

# report-uri values: no directive separator, no header line break.
_REPORT_URI_RE = re.compile(r"[;\r\n]")

# Hash algorithm names ("sha256", "sha384", ...).
_ALGORITHM_RE = re.compile(r"[^A-Za-z0-9]")

# Base64 alphabet used by hash and nonce values.
_BASE64_RE = re.compile(r"[^A-Za-z0-9+/=]")

# Leading run of a MIME type list.
_MIME_RE = re.compile(r"^([a-z0-9\-/]+)")

# Everything outside the URL-safe alphabet (letters, digits and
# $-_.+!*'(),{}|\^~[]`<>#%"/?:@&=). ";" is dropped too: in a source list
# it would end the directive.
_URL_RE = re.compile(r"[^A-Za-z0-9$\-_.+!*'(),{}|\\^~\[\]`<>#%\"/?:@&=]")

_DIRECTIVE_NAME_ESCAPES = {
    ";": "%3B",
    "\r": "%0D",
    "\n": "%0A",
    ":": "%3A",
}


def sanitize_report_uri(value: str) -> str:
    """Strip semicolons, CR and LF from a report-uri value."""
    return _REPORT_URI_RE.sub("", value)


def sanitize_hash_algorithm(value: str) -> str:
    return _ALGORITHM_RE.sub("", value)


def sanitize_base64(value: str) -> str:
    """Keep only base64 characters (hash values, nonces)."""
    return _BASE64_RE.sub("", value)


def sanitize_mime(value: str) -> str:
    """Return the leading ``[a-z0-9-/]`` run of *value*, or ``""``.

    Applied to the space-joined plugin type list, so everything after the
    first character outside the alphabet (including the first space) is
    dropped.
    """
    match = _MIME_RE.match(value)
    if match:
        return match.group(1)
    return ""


def sanitize_url(value: str) -> str:
    """Remove characters that are not legal in a URL, and semicolons."""
    return _URL_RE.sub("", value)


def escape_directive_name(value: str) -> str:
    """Percent-encode characters that could break out of a directive name."""
    for char, replacement in _DIRECTIVE_NAME_ESCAPES.items():
        value = value.replace(char, replacement)
    return value
