"""Tests for the pure Policy -> header compiler."""

from __future__ import annotations

import pytest

from csp_builder.core.compiler import (
    CompileOptions,
    compile_policy,
    compile_subgroup,
    header_names,
    wants_https_upgrade,
)
from csp_builder.models.directive import DirectiveRule

LEGACY = CompileOptions(support_old_browsers=True, upgrade_to_https=False)
LEGACY_UPGRADE = CompileOptions(support_old_browsers=True, upgrade_to_https=True)
MODERN = CompileOptions(support_old_browsers=False, upgrade_to_https=False)
MODERN_UPGRADE = CompileOptions(support_old_browsers=False, upgrade_to_https=True)


# ── compile_subgroup: empty and wildcard rules ──────────────────────────


class TestSubgroupDefaults:
    def test_empty_rule_is_none(self):
        assert compile_subgroup("script-src", DirectiveRule(), MODERN) == "script-src 'none'; "

    def test_empty_plugin_types_emits_nothing(self):
        assert compile_subgroup("plugin-types", DirectiveRule(), MODERN) == ""

    def test_empty_sandbox_is_bare_name(self):
        assert compile_subgroup("sandbox", DirectiveRule(), MODERN) == "sandbox; "

    def test_wildcard_emits_nothing(self):
        assert compile_subgroup("script-src", "*", MODERN) == ""

    def test_all_false_flags_count_as_empty(self):
        rule = DirectiveRule(self_=False, unsafe_inline=False)
        assert compile_subgroup("style-src", rule, MODERN) == "style-src 'none'; "

    def test_default_options_are_legacy_without_upgrade(self):
        rule = DirectiveRule(allow=["a.com"])
        assert compile_subgroup("img-src", rule) == "img-src https://a.com http://a.com a.com; "


# ── compile_subgroup: field order ───────────────────────────────────────


class TestSubgroupFields:
    def test_field_order(self):
        rule = DirectiveRule(
            self_=True,
            allow=["cdn.example.com"],
            hashes=[("sha256", "AAAA")],
            nonces=["abcd"],
            types=["legacy-token"],
            unsafe_inline=True,
        )
        assert compile_subgroup("script-src", rule, MODERN) == (
            "script-src 'self' cdn.example.com 'sha256-AAAA' 'nonce-abcd' legacy-token 'unsafe-inline'; "
        )

    def test_flag_order(self):
        rule = DirectiveRule(
            unsafe_hashed_attributes=True,
            report_sample=True,
            strict_dynamic=True,
            https=True,
            filesystem=True,
            mediastream=True,
            data=True,
            blob=True,
            unsafe_eval=True,
            unsafe_inline=True,
            unsafe_hashes=True,
        )
        assert compile_subgroup("script-src", rule, MODERN) == (
            "script-src 'unsafe-hashes' 'unsafe-inline' 'unsafe-eval' blob: data: "
            "mediastream: filesystem: https: 'strict-dynamic' 'report-sample' "
            "'unsafe-hashed-attributes'; "
        )

    def test_hashes_and_nonces_in_insertion_order(self):
        rule = DirectiveRule(hashes=[("sha384", "B"), ("sha256", "A")], nonces=["n2", "n1"])
        assert compile_subgroup("style-src", rule, MODERN) == (
            "style-src 'sha384-B' 'sha256-A' 'nonce-n2' 'nonce-n1'; "
        )

    def test_hash_breakout_stripped(self):
        rule = DirectiveRule(hashes=[("sha256'x", "abc'; script-src *")])
        assert compile_subgroup("script-src", rule, MODERN) == "script-src 'sha256x-abcscriptsrc'; "

    def test_nonce_breakout_stripped(self):
        rule = DirectiveRule(nonces=["abc' 'unsafe-inline"])
        assert compile_subgroup("script-src", rule, MODERN) == "script-src 'nonce-abcunsafeinline'; "

    def test_duplicate_sources_emitted_once(self):
        rule = DirectiveRule.model_construct(allow=["a.com", "a.com"])
        assert compile_subgroup("img-src", rule, MODERN) == "img-src a.com; "

    def test_source_sanitized(self):
        rule = DirectiveRule(allow=["https://a.com/x y\r\n"])
        assert compile_subgroup("img-src", rule, MODERN) == "img-src https://a.com/xy; "

    def test_directive_name_escaped(self):
        assert compile_subgroup("a;b:c", DirectiveRule(self_=True), MODERN) == "a%3Bb%3Ac 'self'; "


class TestPluginTypes:
    def test_types_emitted(self):
        rule = DirectiveRule(types=["application/x-java-applet"])
        assert compile_subgroup("plugin-types", rule, MODERN) == "plugin-types application/x-java-applet; "

    def test_only_leading_valid_run_survives(self):
        rule = DirectiveRule(types=["application/x-java-applet", "something/$&invalid"])
        assert compile_subgroup("plugin-types", rule, MODERN) == "plugin-types application/x-java-applet; "

    def test_invalid_first_type_drops_directive(self):
        rule = DirectiveRule(types=["$&invalid"])
        assert compile_subgroup("plugin-types", rule, MODERN) == ""

    def test_other_fields_ignored(self):
        rule = DirectiveRule(self_=True, allow=["a.com"], types=["text/plain"])
        assert compile_subgroup("plugin-types", rule, MODERN) == "plugin-types text/plain; "


# ── Legacy duplication and HTTPS upgrade ────────────────────────────────


class TestSchemeHandling:
    def test_legacy_duplicates_schemeless_source(self):
        rule = DirectiveRule(allow=["ytimg.com"])
        assert compile_subgroup("img-src", rule, LEGACY) == (
            "img-src https://ytimg.com http://ytimg.com ytimg.com; "
        )

    def test_legacy_leaves_absolute_url_alone(self):
        rule = DirectiveRule(allow=["http://example.com"])
        assert compile_subgroup("form-action", rule, LEGACY) == "form-action http://example.com; "

    def test_upgrade_rewrites_http(self):
        rule = DirectiveRule(allow=["http://example.com", "another.com"])
        compiled = compile_subgroup("form-action", rule, LEGACY_UPGRADE)
        assert compiled == "form-action https://example.com https://another.com another.com; "
        assert "http://" not in compiled

    def test_upgrade_without_legacy(self):
        rule = DirectiveRule(allow=["http://example.com", "another.com"])
        assert compile_subgroup("form-action", rule, MODERN_UPGRADE) == (
            "form-action https://example.com another.com; "
        )

    def test_modern_emits_literal_sources(self):
        rule = DirectiveRule(allow=["http://example.com", "another.com"])
        assert compile_subgroup("form-action", rule, MODERN) == (
            "form-action http://example.com another.com; "
        )

    def test_sandbox_never_duplicated(self):
        rule = DirectiveRule(allow=["allow-scripts"])
        assert compile_subgroup("sandbox", rule, LEGACY) == "sandbox allow-scripts; "


class TestWantsHttpsUpgrade:
    def test_https_connection_with_transform(self):
        assert wants_https_upgrade({}, True, True)

    def test_https_connection_without_transform(self):
        assert not wants_https_upgrade({}, True, False)

    def test_plain_connection(self):
        assert not wants_https_upgrade({}, False, True)

    def test_upgrade_insecure_requests_wins(self):
        assert wants_https_upgrade({"upgrade-insecure-requests": True}, False, False)


# ── compile_policy ──────────────────────────────────────────────────────


class TestCompilePolicy:
    def test_empty_policy(self):
        assert compile_policy({}, MODERN) == ""

    def test_canonical_order_ignores_insertion_order(self):
        policy = {
            "worker-src": DirectiveRule(self_=True),
            "base-uri": DirectiveRule(self_=True),
            "script-src": DirectiveRule(self_=True),
        }
        assert compile_policy(policy, MODERN) == (
            "base-uri 'self'; script-src 'self'; worker-src 'self'"
        )

    def test_absent_directives_not_emitted(self):
        assert compile_policy({"img-src": DirectiveRule(data=True)}, MODERN) == "img-src data:"

    def test_wildcard_directive_skipped(self):
        policy = {"default-src": DirectiveRule(self_=True), "script-src": "*"}
        assert compile_policy(policy, MODERN) == "default-src 'self'"

    def test_unknown_keys_ignored(self):
        policy = {"default-src": DirectiveRule(self_=True), "navigate-to": DirectiveRule(self_=True)}
        assert compile_policy(policy, MODERN) == "default-src 'self'"

    def test_trailing_pseudo_directives(self):
        policy = {
            "upgrade-insecure-requests": True,
            "report-to": "csp-endpoint",
            "report-uri": "https://endpoint.com",
            "base-uri": DirectiveRule(self_=True),
        }
        assert compile_policy(policy, MODERN) == (
            "base-uri 'self'; report-uri https://endpoint.com; report-to csp-endpoint; "
            "upgrade-insecure-requests"
        )

    def test_false_pseudo_directives_skipped(self):
        policy = {
            "default-src": DirectiveRule(self_=True),
            "report-uri": "",
            "report-to": "",
            "upgrade-insecure-requests": False,
        }
        assert compile_policy(policy, MODERN) == "default-src 'self'"

    def test_report_uri_semicolon_neutralized(self):
        compiled = compile_policy({"report-uri": "https://example.com/r; evil"}, MODERN)
        assert compiled == "report-uri https://example.com/r evil"
        assert ";" not in compiled

    def test_report_uri_crlf_neutralized(self):
        compiled = compile_policy(
            {"report-uri": "https://example.com/csp_report.php;\r\nContent-Type:text/plain"},
            MODERN,
        )
        assert "\r" not in compiled
        assert "\n" not in compiled
        assert ";" not in compiled

    def test_sandbox_only(self):
        assert compile_policy({"sandbox": DirectiveRule()}, MODERN) == "sandbox"

    def test_idempotent(self):
        policy = {"img-src": DirectiveRule(allow=["a.com"], self_=True)}
        assert compile_policy(policy, LEGACY) == compile_policy(policy, LEGACY)

    def test_policy_not_mutated(self):
        rule = DirectiveRule(allow=["a.com"])
        policy = {"img-src": rule}
        compile_policy(policy, LEGACY_UPGRADE)
        assert policy == {"img-src": DirectiveRule(allow=["a.com"])}


class TestHeaderNames:
    def test_enforcing(self):
        assert header_names(False, False) == ["Content-Security-Policy"]

    def test_enforcing_legacy(self):
        assert header_names(False, True) == [
            "Content-Security-Policy",
            "X-Content-Security-Policy",
            "X-Webkit-CSP",
        ]

    @pytest.mark.parametrize("legacy,expected", [
        (False, ["Content-Security-Policy-Report-Only"]),
        (True, [
            "Content-Security-Policy-Report-Only",
            "X-Content-Security-Policy-Report-Only",
            "X-Webkit-CSP-Report-Only",
        ]),
    ])
    def test_report_only(self, legacy, expected):
        assert header_names(True, legacy) == expected
