"""CSPBuilder: owns a policy, mutates it and produces header values."""

from __future__ import annotations

import base64
import copy
import hashlib
import json
import os
import secrets
import types
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol

import structlog
import yaml
from pydantic import ValidationError

from csp_builder.core.compiler import (
    CSP_HEADER,
    CompileOptions,
    compile_policy,
    header_names,
    is_report_only,
    wants_https_upgrade,
)
from csp_builder.core.report_to import REPORT_TO_HEADER, compile_report_endpoints
from csp_builder.core.snippet import FORMAT_NGINX, write_snippet
from csp_builder.errors import HeadersAlreadySentError, InvalidPolicyError, UnknownDirectiveError
from csp_builder.models.directive import (
    FRAME_LIKE_DIRECTIVES,
    REPORT_ONLY,
    REPORT_TO,
    REPORT_URI,
    UPGRADE_INSECURE_REQUESTS,
    WILDCARD,
    DirectiveRule,
    is_directive,
    resolve_alias,
)

logger = structlog.get_logger()

NONCE_BYTES = 18
DEFAULT_HASH_ALGORITHM = "sha384"
_YAML_SUFFIXES = frozenset({".yaml", ".yml"})


class HeaderEmitter(Protocol):
    """Something that writes response headers directly (CGI, WSGI start_response, ...)."""

    @property
    def headers_sent(self) -> bool: ...

    def add_header(self, name: str, value: str) -> None: ...


class SupportsHeaders(Protocol):
    """A response whose ``headers`` accept ``append(name, value)`` (Starlette)."""

    headers: Any


def https_from_environ() -> bool:
    """CGI convention: ``HTTPS`` is set to a non-empty value other than "off"."""
    value = os.environ.get("HTTPS", "")
    return bool(value) and value != "off"


def _coerce_rule(key: str, value: Any) -> DirectiveRule | str:
    if isinstance(value, DirectiveRule):
        return value
    if value == WILDCARD:
        return WILDCARD
    if value is None or isinstance(value, bool):
        return DirectiveRule()
    if isinstance(value, Mapping):
        try:
            return DirectiveRule.model_validate(value)
        except ValidationError as exc:
            raise InvalidPolicyError(f"Invalid rule for {key}: {exc}") from exc
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return DirectiveRule(allow=value)
    raise InvalidPolicyError(f"Invalid rule for {key}: {value!r}")


def _coerce_entry(key: str, value: Any) -> Any:
    """Normalize one top-level policy entry to its typed form."""
    if is_directive(key):
        return _coerce_rule(key, value)
    if key in (REPORT_URI, REPORT_TO):
        if value is None:
            return ""
        if not isinstance(value, str):
            raise InvalidPolicyError(f"{key} must be a string, got {type(value).__name__}")
        return value
    if key in (REPORT_ONLY, UPGRADE_INSECURE_REQUESTS):
        return bool(value)
    return value


def _is_empty(value: Any) -> bool:
    if isinstance(value, DirectiveRule):
        return value.is_empty()
    return not value


class CSPBuilder:
    """Mutable Content-Security-Policy with a cached compiled header.

    Mutators return the builder so calls can be chained. Compilation never
    changes the policy; a dirty flag only decides whether the cached header
    needs rebuilding.
    """

    def __init__(
        self,
        policy: Mapping[str, Any] | None = None,
        *,
        https_detector: Callable[[], bool] | None = None,
    ) -> None:
        self._policies: dict[str, Any] = {}
        for key, value in (policy or {}).items():
            self._policies[key] = _coerce_entry(key, value)

        self._require_sri_for: list[str] = []
        self._needs_compile = True
        self._compiled = ""
        self._report_only = False

        self._report_endpoints: list[Any] = []
        self._compiled_endpoints = ""
        self._needs_compile_endpoints = True

        self._support_old_browsers = True
        self._https_transform_on_https_connections = True
        self._https_detector = https_detector or https_from_environ

    # ── Factories ───────────────────────────────────────────────────────

    @classmethod
    def from_dict(cls, policy: Mapping[str, Any] | None = None) -> CSPBuilder:
        return cls(policy)

    @classmethod
    def from_data(cls, data: str = "") -> CSPBuilder:
        """Create a builder from a JSON document."""
        try:
            decoded = json.loads(data)
        except ValueError as exc:
            raise InvalidPolicyError(f"Policy is not valid JSON: {exc}") from exc
        if decoded == []:
            decoded = {}
        if not isinstance(decoded, dict):
            raise InvalidPolicyError("Policy document must be a JSON object")
        return cls(decoded)

    @classmethod
    def from_yaml(cls, data: str = "") -> CSPBuilder:
        """Create a builder from a YAML document with the same layout as the JSON one."""
        try:
            decoded = yaml.safe_load(data)
        except yaml.YAMLError as exc:
            raise InvalidPolicyError(f"Policy is not valid YAML: {exc}") from exc
        if decoded is None:
            decoded = {}
        if not isinstance(decoded, dict):
            raise InvalidPolicyError("Policy document must be a mapping")
        return cls(decoded)

    @classmethod
    def from_file(cls, filename: str | Path = "") -> CSPBuilder:
        """Create a builder from a JSON (or .yaml/.yml) policy file."""
        path = Path(filename)
        if not path.is_file():
            raise InvalidPolicyError(f"{filename} does not exist")
        try:
            with open(path, encoding="utf-8") as f:
                contents = f.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise InvalidPolicyError(f"Could not read {filename}: {exc}") from exc
        if path.suffix in _YAML_SUFFIXES:
            builder = cls.from_yaml(contents)
        else:
            builder = cls.from_data(contents)
        logger.debug("policy_loaded", path=str(path), directives=len(builder._policies))
        return builder

    @classmethod
    def from_header(cls, header: str = "") -> CSPBuilder:
        """Create a builder from an existing Content-Security-Policy value."""
        from csp_builder.core.parser import parse_header

        return parse_header(header, cls())

    def with_https_detector(self, detector: Callable[[], bool]) -> CSPBuilder:
        """Return an independent copy that asks *detector* about the connection."""
        clone = copy.deepcopy(self)
        clone._https_detector = detector
        clone._needs_compile = True
        return clone

    # ── State ───────────────────────────────────────────────────────────

    @property
    def policies(self) -> Mapping[str, Any]:
        """Read-only view of the policy mapping."""
        return types.MappingProxyType(self._policies)

    @property
    def needs_compile(self) -> bool:
        return self._needs_compile

    @property
    def report_only(self) -> bool:
        return is_report_only(self._policies)

    @property
    def supports_old_browsers(self) -> bool:
        return self._support_old_browsers

    @property
    def https_transform_on_https_connections(self) -> bool:
        return self._https_transform_on_https_connections

    @property
    def require_sri_tokens(self) -> tuple[str, ...]:
        return tuple(self._require_sri_for)

    def is_https_connection(self) -> bool:
        """Is the current client connected over HTTPS? Queried on every compile."""
        return self._https_detector()

    def _rule(self, directive: str) -> DirectiveRule:
        """Return the rule for *directive*, creating it if needed.

        A wildcard (or any non-rule value) is replaced by a fresh rule: adding
        a restriction makes the directive restricted.
        """
        if not is_directive(directive):
            raise UnknownDirectiveError(directive)
        rule = self._policies.get(directive)
        if not isinstance(rule, DirectiveRule):
            rule = DirectiveRule()
            self._policies[directive] = rule
        return rule

    # ── Mutation ────────────────────────────────────────────────────────

    def add_source(self, directive: str, path: str) -> CSPBuilder:
        """Add a source to a directive's allow list.

        *directive* may be an alias (``js``, ``img``, ``form``, ...). With old
        browser support, child/frame sources go into both child-src and
        frame-src.
        """
        self._needs_compile = True
        if directive in FRAME_LIKE_DIRECTIVES and self._support_old_browsers:
            self._rule("child-src").add_allowed(path)
            self._rule("frame-src").add_allowed(path)
            return self
        self._rule(resolve_alias(directive)).add_allowed(path)
        return self

    def add_directive(self, key: str, value: Any = None) -> CSPBuilder:
        """Set a directive only if it is not already set.

        With no value the directive is set to ``True`` when absent. With a
        value, any empty current value (missing, false, "", an empty rule) is
        replaced.
        """
        self._needs_compile = True
        if value is None:
            if self._policies.get(key) is None:
                self._policies[key] = _coerce_entry(key, True)
        elif _is_empty(self._policies.get(key)):
            self._policies[key] = _coerce_entry(key, value)
        return self

    def set_directive(self, key: str, value: Any = None) -> CSPBuilder:
        """Overwrite a directive (or a top-level key such as report-uri)."""
        self._policies[key] = _coerce_entry(key, value)
        self._needs_compile = True
        return self

    def remove_directive(self, key: str) -> CSPBuilder:
        self._policies.pop(key, None)
        self._needs_compile = True
        return self

    def allow_plugin_type(self, mime: str = "text/plain") -> CSPBuilder:
        self._rule("plugin-types").types.append(mime)
        self._needs_compile = True
        return self

    def hash(
        self,
        directive: str = "script-src",
        script: str | bytes = "",
        algorithm: str = DEFAULT_HASH_ALGORITHM,
    ) -> CSPBuilder:
        """Allow an inline script/style by its digest.

        Does nothing unless *directive* is already part of the policy.
        """
        if directive in self._policies:
            data = script.encode("utf-8") if isinstance(script, str) else script
            digest = hashlib.new(algorithm, data).digest()
            self._rule(directive).hashes.append((algorithm, base64.b64encode(digest).decode("ascii")))
            self._needs_compile = True
        return self

    def pre_hash(
        self,
        directive: str = "script-src",
        hash_value: str = "",
        algorithm: str = DEFAULT_HASH_ALGORITHM,
    ) -> CSPBuilder:
        """Like hash(), for an already base64-encoded digest."""
        if directive in self._policies:
            self._rule(directive).hashes.append((algorithm, hash_value))
            self._needs_compile = True
        return self

    def nonce(self, directive: str = "script-src", nonce: str = "") -> str:
        """Add a nonce and return it, generating one when *nonce* is empty.

        Returns ``""`` (and changes nothing) unless *directive* or default-src
        is already part of the policy.
        """
        if directive not in self._policies and "default-src" not in self._policies:
            return ""
        if not nonce:
            nonce = base64.b64encode(secrets.token_bytes(NONCE_BYTES)).decode("ascii")
        self._rule(directive).nonces.append(nonce)
        self._needs_compile = True
        return nonce

    def require_sri_for(self, directive: str) -> CSPBuilder:
        if directive not in self._require_sri_for:
            self._require_sri_for.append(directive)
        return self

    def set_report_uri(self, url: str = "") -> CSPBuilder:
        return self.set_directive(REPORT_URI, url)

    def set_report_to(self, group: str = "") -> CSPBuilder:
        return self.set_directive(REPORT_TO, group)

    def _set_flag(self, directive: str, field_name: str, allow: bool) -> CSPBuilder:
        rule = self._rule(directive)
        setattr(rule, field_name, allow)
        self._needs_compile = True
        return self

    def set_self_allowed(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "self_", allow)

    def set_blob_allowed(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        """Allow/disallow blob: URIs for a directive."""
        return self._set_flag(directive, "blob", allow)

    def set_data_allowed(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        """Allow/disallow data: URIs for a directive."""
        return self._set_flag(directive, "data", allow)

    def set_filesystem_allowed(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "filesystem", allow)

    def set_mediastream_allowed(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "mediastream", allow)

    def set_https_allowed(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        """Allow/disallow any host, as long as it is loaded over HTTPS."""
        return self._set_flag(directive, "https", allow)

    def set_allow_unsafe_eval(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "unsafe_eval", allow)

    def set_allow_unsafe_inline(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "unsafe_inline", allow)

    def set_allow_unsafe_hashes(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "unsafe_hashes", allow)

    def set_allow_unsafe_hashed_attributes(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "unsafe_hashed_attributes", allow)

    def set_strict_dynamic(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "strict_dynamic", allow)

    def set_report_sample(self, directive: str = "", allow: bool = False) -> CSPBuilder:
        return self._set_flag(directive, "report_sample", allow)

    set_unsafe_eval_allowed = set_allow_unsafe_eval
    set_unsafe_inline_allowed = set_allow_unsafe_inline

    # ── Compatibility modes ─────────────────────────────────────────────

    def _set_mode(self, attr: str, enabled: bool) -> CSPBuilder:
        if getattr(self, attr) != enabled:
            setattr(self, attr, enabled)
            self._needs_compile = True
        return self

    def enable_old_browser_support(self) -> CSPBuilder:
        """Emit https:// and http:// duplicates of scheme-less sources (default)."""
        return self._set_mode("_support_old_browsers", True)

    def disable_old_browser_support(self) -> CSPBuilder:
        return self._set_mode("_support_old_browsers", False)

    def enable_https_transform_on_https_connections(self) -> CSPBuilder:
        """Rewrite http:// sources to https:// on HTTPS connections (default)."""
        return self._set_mode("_https_transform_on_https_connections", True)

    def disable_https_transform_on_https_connections(self) -> CSPBuilder:
        return self._set_mode("_https_transform_on_https_connections", False)

    # ── Report-To endpoints ─────────────────────────────────────────────

    def add_report_endpoints(self, endpoint: Any) -> None:
        self._report_endpoints.append(endpoint)
        self._needs_compile_endpoints = True

    def set_report_endpoints(self, endpoints: Iterable[Any] | Mapping[str, Any]) -> None:
        """Replace all endpoint groups. A single mapping is wrapped in a list."""
        if isinstance(endpoints, Mapping) or isinstance(endpoints, str):
            self._report_endpoints = [endpoints]
        else:
            self._report_endpoints = list(endpoints)
        self._needs_compile_endpoints = True

    def remove_report_endpoint(self, group: str) -> None:
        """Remove the first endpoint group named *group*."""
        for idx, endpoint in enumerate(self._report_endpoints):
            if isinstance(endpoint, Mapping) and endpoint.get("group") == group:
                del self._report_endpoints[idx]
                self._needs_compile_endpoints = True
                break

    def get_report_endpoints(self) -> list[Any]:
        return list(self._report_endpoints)

    def compile_report_endpoints(self) -> str:
        if self._needs_compile_endpoints:
            self._compiled_endpoints = compile_report_endpoints(self._report_endpoints)
            self._needs_compile_endpoints = False
        return self._compiled_endpoints

    get_compiled_report_endpoints_header = compile_report_endpoints

    # ── Compilation ─────────────────────────────────────────────────────

    def compile(self) -> str:
        """Compile the policy into a header value and cache it."""
        self._report_only = is_report_only(self._policies)
        options = CompileOptions(
            support_old_browsers=self._support_old_browsers,
            upgrade_to_https=wants_https_upgrade(
                self._policies,
                self.is_https_connection(),
                self._https_transform_on_https_connections,
            ),
        )
        self._compiled = compile_policy(self._policies, options)
        self._needs_compile = False
        return self._compiled

    def get_compiled_header(self) -> str:
        if self._needs_compile:
            self.compile()
        return self._compiled

    def get_header_array(self, legacy: bool = True) -> dict[str, str]:
        """Header name -> value, including Report-To when endpoints compile."""
        compiled = self.get_compiled_header()
        endpoints = self.compile_report_endpoints()
        headers: dict[str, str] = {}
        if endpoints:
            headers[REPORT_TO_HEADER] = endpoints
        for name in header_names(self._report_only, legacy):
            headers[name] = compiled
        return headers

    def get_require_headers(self) -> list[tuple[str, str]]:
        """One ``require-sri-for`` header line per tracked token."""
        return [(CSP_HEADER, f"require-sri-for {token}") for token in self._require_sri_for]

    # ── Output adapters ─────────────────────────────────────────────────

    def _headers_in_order(self, legacy: bool) -> list[tuple[str, str]]:
        compiled = self.get_compiled_header()
        endpoints = self.compile_report_endpoints()
        headers = self.get_require_headers()
        headers.extend((name, compiled) for name in header_names(self._report_only, legacy))
        if endpoints:
            headers.append((REPORT_TO_HEADER, endpoints))
        return headers

    def inject_csp_header(self, response: SupportsHeaders, legacy: bool = False) -> SupportsHeaders:
        """Append the policy headers to *response* and return it.

        Order: require-sri-for lines, CSP header(s), then Report-To.
        """
        for name, value in self._headers_in_order(legacy):
            response.headers.append(name, value)
        return response

    def send_csp_header(self, emitter: HeaderEmitter, legacy: bool = True) -> bool:
        """Write the policy headers straight through *emitter*."""
        if emitter.headers_sent:
            raise HeadersAlreadySentError("Headers already sent!")
        for name, value in self._headers_in_order(legacy):
            emitter.add_header(name, value)
        return True

    def save_snippet(
        self,
        output_file: str | Path,
        fmt: str = FORMAT_NGINX,
        hook_before_save: Callable[[str], str] | None = None,
    ) -> None:
        """Write the compiled policy as an nginx or apache config line."""
        compiled = self.get_compiled_header()
        header_name = header_names(self._report_only, legacy=False)[0]
        write_snippet(output_file, header_name, compiled, fmt, hook_before_save)

    def export_policies(self) -> str:
        """The policy as pretty-printed JSON, loadable with from_data()."""
        exported: dict[str, Any] = {}
        for key, value in self._policies.items():
            exported[key] = value.to_json_dict() if isinstance(value, DirectiveRule) else value
        return json.dumps(exported, indent=4)

    def save_to_file(self, file_path: str | Path) -> None:
        with open(file_path, "w", encoding="utf-8") as f:
            f.write(self.export_policies())
        logger.debug("policy_saved", path=str(file_path))
