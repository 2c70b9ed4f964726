"""Pure Policy -> header string compilation."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from csp_builder.models.directive import (
    DIRECTIVES,
    FLAG_TOKENS,
    REPORT_ONLY,
    REPORT_TO,
    REPORT_URI,
    UPGRADE_INSECURE_REQUESTS,
    WILDCARD,
    DirectiveRule,
)
from csp_builder.utils.sanitize import (
    escape_directive_name,
    sanitize_base64,
    sanitize_hash_algorithm,
    sanitize_mime,
    sanitize_report_uri,
    sanitize_url,
)

CSP_HEADER = "Content-Security-Policy"
LEGACY_HEADERS = ("X-Content-Security-Policy", "X-Webkit-CSP")
REPORT_ONLY_SUFFIX = "-Report-Only"


@dataclass(frozen=True)
class CompileOptions:
    """Compatibility switches that change the emitted sources."""

    support_old_browsers: bool = True
    # Rewrite http:// sources (and scheme-less duplicates) to https://.
    upgrade_to_https: bool = False


def is_report_only(policy: Mapping[str, Any]) -> bool:
    return bool(policy.get(REPORT_ONLY, False))


def wants_https_upgrade(policy: Mapping[str, Any], https_connection: bool, transform_enabled: bool) -> bool:
    """HTTPS upgrade applies on HTTPS connections (when enabled) or when the
    policy itself asks for upgrade-insecure-requests."""
    return (https_connection and transform_enabled) or bool(policy.get(UPGRADE_INSECURE_REQUESTS))


def header_names(report_only: bool, legacy: bool) -> list[str]:
    """Header names the compiled policy is sent under."""
    names = [CSP_HEADER]
    if legacy:
        names.extend(LEGACY_HEADERS)
    if report_only:
        return [name + REPORT_ONLY_SUFFIX for name in names]
    return names


def _compile_sources(directive: str, rule: DirectiveRule, options: CompileOptions) -> list[str]:
    tokens: list[str] = []
    for url in dict.fromkeys(rule.allow):
        url = sanitize_url(url)
        if options.support_old_browsers and directive != "sandbox" and "://" not in url:
            tokens.append(f"https://{url}")
            if not options.upgrade_to_https:
                tokens.append(f"http://{url}")
        if options.upgrade_to_https:
            tokens.append(url.replace("http://", "https://"))
        else:
            tokens.append(url)
    return tokens


def compile_subgroup(directive: str, rule: DirectiveRule | str, options: CompileOptions | None = None) -> str:
    """Serialize one directive, including its trailing ``"; "`` separator.

    Returns ``""`` when the directive contributes nothing to the header.
    """
    options = options or CompileOptions()
    if rule == WILDCARD:
        return ""
    if rule.is_empty():
        if directive == "plugin-types":
            return ""
        if directive == "sandbox":
            return escape_directive_name(directive) + "; "
        return f"{directive} 'none'; "

    name = escape_directive_name(directive)
    if directive == "plugin-types":
        # MIME types, not URLs
        types = sanitize_mime(" ".join(rule.types)).strip()
        return f"{name} {types}; " if types else ""

    tokens: list[str] = []
    if rule.self_:
        tokens.append("'self'")
    tokens.extend(_compile_sources(directive, rule, options))
    for algorithm, value in rule.hashes:
        tokens.append(f"'{sanitize_hash_algorithm(algorithm)}-{sanitize_base64(value)}'")
    for nonce in rule.nonces:
        tokens.append(f"'nonce-{sanitize_base64(nonce)}'")
    tokens.extend(rule.types)
    for field_name, token in FLAG_TOKENS:
        if getattr(rule, field_name):
            tokens.append(token)

    return " ".join([name, *tokens]).rstrip(" ") + "; "


def compile_policy(policy: Mapping[str, Any], options: CompileOptions | None = None) -> str:
    """Compile a policy mapping into a Content-Security-Policy header value.

    Directives are emitted in canonical order regardless of insertion order;
    directives absent from *policy* are skipped.
    """
    options = options or CompileOptions()
    compiled: list[str] = []
    for directive in DIRECTIVES:
        if directive in policy:
            compiled.append(compile_subgroup(directive, policy[directive], options))

    report_uri = policy.get(REPORT_URI)
    if report_uri:
        compiled.append(f"report-uri {sanitize_report_uri(report_uri)}; ")
    report_to = policy.get(REPORT_TO)
    if report_to:
        compiled.append(f"report-to {report_to}; ")
    if policy.get(UPGRADE_INSECURE_REQUESTS):
        compiled.append(UPGRADE_INSECURE_REQUESTS)

    return "".join(compiled).rstrip("; ")
