# Proxy Fetch Server
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Proxy Fetch Server.
#
# Proxy Fetch Server is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Proxy routing decision.

Given a validated target and the gateway config, decide whether the
fetch goes direct (bypass list hit, or no proxy configured) or through
one of the upstream proxies, and which credential the proxy gets.

Bypass entries come in three shapes:

  ``example.com``       exact hostname only
  ``example.com:8443``  hostname with that exact port, compared as text
  ``.example.com``      the domain itself and every subdomain

Everything here is a pure function of its inputs; nothing is cached
between requests.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .config import GatewayConfig
from .validation import TargetURL


@dataclass(frozen=True)
class RoutingDecision:
    """How a single fetch leaves the gateway.

    ``selected_proxy_uri`` is set if and only if ``use_proxy`` is true.
    ``outbound_auth_header`` is only ever set for proxied fetches and is
    meant for the proxy, never for the destination server.
    """

    use_proxy: bool
    selected_proxy_uri: str | None = None
    outbound_auth_header: str | None = None

    def __post_init__(self) -> None:
        if self.use_proxy != (self.selected_proxy_uri is not None):
            raise ValueError("selected_proxy_uri must be set exactly when use_proxy is true")
        if self.outbound_auth_header is not None and not self.use_proxy:
            raise ValueError("outbound_auth_header requires a proxied fetch")

    @classmethod
    def direct(cls) -> RoutingDecision:
        return cls(use_proxy=False)

    @classmethod
    def via(cls, proxy_uri: str, auth_header: str | None = None) -> RoutingDecision:
        return cls(use_proxy=True, selected_proxy_uri=proxy_uri, outbound_auth_header=auth_header)


def matches_bypass_entry(hostname: str, port: int | None, entry: str) -> bool:
    """Check one no-proxy entry against a target hostname and port."""
    if ":" in entry:
        # Text comparison against "host:port"; an implicit default port
        # formats as "host:" and so never equals "host:443".
        return f"{hostname}:{'' if port is None else port}" == entry
    if entry.startswith("."):
        domain = entry[1:]
        return hostname == domain or hostname.endswith("." + domain)
    return hostname == entry


def should_bypass(hostname: str, port: int | None, bypass_entries: Iterable[str]) -> bool:
    """True when any no-proxy entry matches the target."""
    return any(matches_bypass_entry(hostname, port, entry) for entry in bypass_entries)


def select_proxy(scheme: str, config: GatewayConfig) -> str | None:
    """Pick the upstream proxy for a target scheme.

    The scheme's own proxy wins; otherwise fall back to whichever is set,
    HTTPS first. None when no proxy is configured at all.
    """
    preferred = config.https_proxy_uri if scheme == "https" else config.http_proxy_uri
    return preferred or config.https_proxy_uri or config.http_proxy_uri


def route(target: TargetURL, config: GatewayConfig) -> RoutingDecision:
    """Decide direct vs. proxied transport for a target."""
    if should_bypass(target.hostname, target.port, config.bypass_entries):
        return RoutingDecision.direct()

    proxy_uri = select_proxy(target.scheme, config)
    if proxy_uri is None:
        return RoutingDecision.direct()

    auth_header = None
    if config.proxy_credential:
        auth_header = f"{config.credential_scheme} {config.proxy_credential}"
    return RoutingDecision.via(proxy_uri, auth_header)
