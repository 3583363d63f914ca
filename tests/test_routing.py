# Proxy Fetch Server
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for no-proxy matching and upstream proxy selection."""

import itertools

import pytest

from proxy_fetch.config import GatewayConfig
from proxy_fetch.routing import (
    RoutingDecision,
    matches_bypass_entry,
    route,
    select_proxy,
    should_bypass,
)
from proxy_fetch.validation import parse_target

HTTP_PROXY = "http://http-proxy.internal:3128"
HTTPS_PROXY = "http://https-proxy.internal:3129"


def _target(url: str):
    return parse_target(url).target


class TestBypassEntryShapes:
    """The three entry shapes: exact host, host:port, .domain."""

    def test_exact_host_matches_only_identical(self):
        assert matches_bypass_entry("example.com", None, "example.com") is True
        assert matches_bypass_entry("www.example.com", None, "example.com") is False
        assert matches_bypass_entry("example.com.evil.net", None, "example.com") is False

    def test_exact_host_ignores_port(self):
        assert matches_bypass_entry("example.com", 8080, "example.com") is True

    def test_dot_entry_matches_bare_domain(self):
        assert matches_bypass_entry("example.com", None, ".example.com") is True

    def test_dot_entry_matches_subdomains(self):
        assert matches_bypass_entry("www.example.com", None, ".example.com") is True
        assert matches_bypass_entry("a.b.example.com", 443, ".example.com") is True

    def test_dot_entry_rejects_embedded_suffix(self):
        assert matches_bypass_entry("notexample.com", None, ".example.com") is False
        assert matches_bypass_entry("example.com.evil.net", None, ".example.com") is False

    def test_host_port_requires_exact_pair(self):
        assert matches_bypass_entry("example.com", 443, "example.com:443") is True
        assert matches_bypass_entry("example.com", 8443, "example.com:443") is False
        assert matches_bypass_entry("other.com", 443, "example.com:443") is False

    def test_host_port_does_not_match_implicit_port(self):
        assert matches_bypass_entry("example.com", None, "example.com:443") is False

    def test_host_port_entry_does_not_match_subdomain(self):
        assert matches_bypass_entry("www.example.com", 443, "example.com:443") is False


class TestShouldBypass:
    """List-level behaviour, driven from parsed URLs."""

    def test_empty_list_never_bypasses(self):
        assert should_bypass("example.com", None, []) is False
        assert should_bypass("localhost", None, ()) is False

    def test_explicit_port_url_bypasses_host_port_entry(self):
        target = _target("https://example.com:443/")
        assert should_bypass(target.hostname, target.port, ["example.com:443"]) is True

    def test_implicit_port_url_does_not_bypass_host_port_entry(self):
        target = _target("https://example.com/")
        assert should_bypass(target.hostname, target.port, ["example.com:443"]) is False

    def test_any_entry_matches(self):
        entries = ["localhost", ".internal", "registry.example.com:5000"]
        assert should_bypass("localhost", None, entries) is True
        assert should_bypass("db.internal", None, entries) is True
        assert should_bypass("registry.example.com", 5000, entries) is True
        assert should_bypass("example.com", None, entries) is False

    def test_is_pure_and_order_independent(self):
        entries = ["example.com", ".corp.local", "svc.local:8080"]
        probes = [
            ("example.com", None),
            ("www.example.com", None),
            ("a.corp.local", 443),
            ("svc.local", 8080),
            ("svc.local", None),
        ]
        expected = [should_bypass(h, p, entries) for h, p in probes]
        for order in itertools.permutations(probes):
            for host, port in order:
                assert should_bypass(host, port, entries) == expected[probes.index((host, port))]
        for perm in itertools.permutations(entries):
            assert [should_bypass(h, p, perm) for h, p in probes] == expected

    def test_accepts_generator(self):
        assert should_bypass("example.com", None, (e for e in ["example.com"])) is True


class TestSelectProxy:
    """Scheme preference and fallback order."""

    def test_https_prefers_https_proxy(self):
        config = GatewayConfig(http_proxy_uri=HTTP_PROXY, https_proxy_uri=HTTPS_PROXY)
        assert select_proxy("https", config) == HTTPS_PROXY

    def test_http_prefers_http_proxy(self):
        config = GatewayConfig(http_proxy_uri=HTTP_PROXY, https_proxy_uri=HTTPS_PROXY)
        assert select_proxy("http", config) == HTTP_PROXY

    def test_https_falls_back_to_http_proxy(self):
        assert select_proxy("https", GatewayConfig(http_proxy_uri=HTTP_PROXY)) == HTTP_PROXY

    def test_http_falls_back_to_https_proxy(self):
        assert select_proxy("http", GatewayConfig(https_proxy_uri=HTTPS_PROXY)) == HTTPS_PROXY

    def test_no_proxy_configured(self):
        assert select_proxy("https", GatewayConfig()) is None


class TestRoute:
    """Full routing decisions."""

    def test_both_proxies_https_target_selects_https_proxy(self):
        config = GatewayConfig(http_proxy_uri=HTTP_PROXY, https_proxy_uri=HTTPS_PROXY)
        decision = route(_target("https://example.com/"), config)
        assert decision.use_proxy is True
        assert decision.selected_proxy_uri == HTTPS_PROXY
        assert decision.outbound_auth_header is None

    def test_http_target_selects_http_proxy(self):
        config = GatewayConfig(http_proxy_uri=HTTP_PROXY, https_proxy_uri=HTTPS_PROXY)
        assert route(_target("http://example.com/"), config).selected_proxy_uri == HTTP_PROXY

    def test_bypassed_target_goes_direct_without_credential(self):
        config = GatewayConfig(
            https_proxy_uri=HTTPS_PROXY,
            bypass_entries=(".example.com",),
            proxy_credential="proxy-token",
        )
        decision = route(_target("https://api.example.com/v1"), config)
        assert decision == RoutingDecision.direct()
        assert decision.outbound_auth_header is None

    def test_no_proxy_configured_goes_direct(self):
        decision = route(_target("https://example.com/"), GatewayConfig(proxy_credential="tok"))
        assert decision.use_proxy is False
        assert decision.selected_proxy_uri is None
        assert decision.outbound_auth_header is None

    def test_credential_uses_default_bearer_scheme(self):
        config = GatewayConfig(https_proxy_uri=HTTPS_PROXY, proxy_credential="proxy-token")
        decision = route(_target("https://example.com/"), config)
        assert decision.outbound_auth_header == "Bearer proxy-token"

    def test_credential_uses_configured_scheme(self):
        config = GatewayConfig(
            http_proxy_uri=HTTP_PROXY,
            proxy_credential="dXNlcjpwYXNz",
            credential_scheme="Basic",
        )
        decision = route(_target("http://example.com/"), config)
        assert decision.outbound_auth_header == "Basic dXNlcjpwYXNz"

    def test_bypass_checked_with_config_normalization(self):
        config = GatewayConfig(https_proxy_uri=HTTPS_PROXY, bypass_entries=["  Example.COM  "])
        assert route(_target("https://EXAMPLE.com/"), config).use_proxy is False


class TestRoutingDecision:
    """Decision invariants."""

    def test_direct(self):
        decision = RoutingDecision.direct()
        assert (decision.use_proxy, decision.selected_proxy_uri, decision.outbound_auth_header) == (
            False,
            None,
            None,
        )

    def test_proxy_uri_requires_use_proxy(self):
        with pytest.raises(ValueError):
            RoutingDecision(use_proxy=False, selected_proxy_uri=HTTP_PROXY)

    def test_use_proxy_requires_uri(self):
        with pytest.raises(ValueError):
            RoutingDecision(use_proxy=True)

    def test_credential_requires_proxy(self):
        with pytest.raises(ValueError):
            RoutingDecision(use_proxy=False, outbound_auth_header="Bearer x")
