"""Directive enumeration, alias table and the per-directive rule model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

# Canonical emission order. Not configurable.
DIRECTIVES: tuple[str, ...] = (
    "base-uri",
    "default-src",
    "child-src",
    "connect-src",
    "font-src",
    "form-action",
    "frame-ancestors",
    "frame-src",
    "img-src",
    "media-src",
    "object-src",
    "plugin-types",
    "manifest-src",
    "sandbox",
    "script-src",
    "script-src-elem",
    "script-src-attr",
    "style-src",
    "style-src-elem",
    "style-src-attr",
    "worker-src",
)

_DIRECTIVE_SET = frozenset(DIRECTIVES)

# Top-level keys that are not source-list directives.
REPORT_URI = "report-uri"
REPORT_TO = "report-to"
REPORT_ONLY = "report-only"
UPGRADE_INSECURE_REQUESTS = "upgrade-insecure-requests"

PSEUDO_DIRECTIVES: tuple[str, ...] = (
    REPORT_URI,
    REPORT_TO,
    REPORT_ONLY,
    UPGRADE_INSECURE_REQUESTS,
)

# "Do not restrict": the directive is left out of the header entirely.
WILDCARD = "*"

# Aliases accepted by add_source(). child/frame are handled separately when
# legacy browser support is on (they populate both child-src and frame-src).
DIRECTIVE_ALIASES: dict[str, str] = {
    "child": "child-src",
    "frame": "frame-src",
    "connect": "connect-src",
    "socket": "connect-src",
    "websocket": "connect-src",
    "font": "font-src",
    "fonts": "font-src",
    "form": "form-action",
    "forms": "form-action",
    "ancestor": "frame-ancestors",
    "parent": "frame-ancestors",
    "img": "img-src",
    "image": "img-src",
    "image-src": "img-src",
    "media": "media-src",
    "object": "object-src",
    "js": "script-src",
    "javascript": "script-src",
    "script": "script-src",
    "scripts": "script-src",
    "style": "style-src",
    "css": "style-src",
    "css-src": "style-src",
    "worker": "worker-src",
}

FRAME_LIKE_DIRECTIVES = frozenset({"child", "child-src", "frame", "frame-src"})

# (field name, emitted token) in emission order.
FLAG_TOKENS: tuple[tuple[str, str], ...] = (
    ("unsafe_hashes", "'unsafe-hashes'"),
    ("unsafe_inline", "'unsafe-inline'"),
    ("unsafe_eval", "'unsafe-eval'"),
    ("blob", "blob:"),
    ("data", "data:"),
    ("mediastream", "mediastream:"),
    ("filesystem", "filesystem:"),
    ("https", "https:"),
    ("strict_dynamic", "'strict-dynamic'"),
    ("report_sample", "'report-sample'"),
    ("unsafe_hashed_attributes", "'unsafe-hashed-attributes'"),
)


def is_directive(name: str) -> bool:
    """True if *name* is one of the fixed source-list directives."""
    return name in _DIRECTIVE_SET


def resolve_alias(name: str) -> str:
    """Map a shorthand like ``js`` or ``img`` to its directive name."""
    return DIRECTIVE_ALIASES.get(name, name)


class DirectiveRule(BaseModel):
    """Structured value of one directive.

    JSON documents use the CSP spelling of each field (``self``,
    ``unsafe-inline``, ...); Python code uses the snake_case attribute.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    self_: bool = Field(default=False, alias="self")
    allow: list[str] = Field(default_factory=list)
    hashes: list[tuple[str, str]] = Field(default_factory=list)
    nonces: list[str] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)

    unsafe_eval: bool = Field(default=False, alias="unsafe-eval")
    unsafe_inline: bool = Field(default=False, alias="unsafe-inline")
    unsafe_hashes: bool = Field(default=False, alias="unsafe-hashes")
    unsafe_hashed_attributes: bool = Field(default=False, alias="unsafe-hashed-attributes")
    blob: bool = False
    data: bool = False
    filesystem: bool = False
    https: bool = False
    mediastream: bool = False
    strict_dynamic: bool = Field(default=False, alias="strict-dynamic")
    report_sample: bool = Field(default=False, alias="report-sample")

    @field_validator("allow")
    @classmethod
    def _unique_sources(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @field_validator("hashes", mode="before")
    @classmethod
    def _coerce_hashes(cls, value: Any) -> Any:
        """Accept ``[{"sha256": "..."}]`` as well as ``[["sha256", "..."]]``."""
        if not isinstance(value, list):
            return value
        pairs: list[Any] = []
        for item in value:
            if isinstance(item, dict):
                pairs.extend(item.items())
            else:
                pairs.append(item)
        return pairs

    @field_serializer("hashes")
    def _serialize_hashes(self, hashes: list[tuple[str, str]]) -> list[dict[str, str]]:
        return [{algorithm: value} for algorithm, value in hashes]

    def is_empty(self) -> bool:
        """True when no field is set, i.e. the rule compiles to ``'none'``."""
        if self.self_ or self.allow or self.hashes or self.nonces or self.types:
            return False
        return not any(getattr(self, name) for name, _ in FLAG_TOKENS)

    def add_allowed(self, source: str) -> None:
        if source not in self.allow:
            self.allow.append(source)

    def to_json_dict(self) -> dict[str, Any]:
        """Dump using CSP field names, omitting unset fields."""
        # The hashes serializer output never equals the default, so drop it here.
        exclude = None if self.hashes else {"hashes"}
        return self.model_dump(by_alias=True, exclude_defaults=True, exclude=exclude)
