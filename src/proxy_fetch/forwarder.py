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
"""Outbound fetch over httpx.

Executes a RoutingDecision: a plain transport for direct fetches, or a
proxy transport for proxied ones. For https targets httpx opens a
CONNECT tunnel through the proxy; for http targets it sends an
absolute-form request to the proxy. Either way the proxy credential
travels as ``Proxy-Authorization`` to the proxy only; the destination
never sees it.

The fetch is always a GET of the target URL. The caller's own method,
headers and body are never forwarded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from .config import DEFAULT_TIMEOUT_SECONDS, redact_proxy_uri
from .errors import ErrorKind, GatewayError
from .routing import RoutingDecision
from .validation import TargetURL

logger = logging.getLogger("proxy_fetch.forwarder")

TransportFactory = Callable[[RoutingDecision], httpx.AsyncBaseTransport]


@dataclass(frozen=True)
class UpstreamResponse:
    """A fully-read upstream response."""

    status_code: int
    content_type: str | None
    body: bytes


@dataclass(frozen=True)
class FetchResult:
    response: UpstreamResponse | None = None
    error: GatewayError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_transport(decision: RoutingDecision) -> httpx.AsyncBaseTransport:
    """Create the httpx transport a routing decision calls for."""
    if not decision.use_proxy:
        return httpx.AsyncHTTPTransport()

    headers = {}
    if decision.outbound_auth_header:
        headers["Proxy-Authorization"] = decision.outbound_auth_header
    return httpx.AsyncHTTPTransport(proxy=httpx.Proxy(decision.selected_proxy_uri, headers=headers))


class Forwarder:
    """Issues the outbound GET for a validated, routed target.

    ``transport_factory`` maps a RoutingDecision to an httpx transport;
    it defaults to ``build_transport``. A new client is used per fetch
    because the transport depends on the per-request decision.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        follow_redirects: bool = True,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._timeout = timeout
        self._follow_redirects = follow_redirects
        self._transport_factory = transport_factory or build_transport

    async def forward(self, target: TargetURL, decision: RoutingDecision) -> FetchResult:
        """GET the target. Transport failures come back as TRANSPORT_FAILED."""
        via = redact_proxy_uri(decision.selected_proxy_uri) if decision.use_proxy else "direct"
        logger.debug("Fetching %s via %s", target.url, via)

        try:
            async with httpx.AsyncClient(
                transport=self._transport_factory(decision),
                timeout=self._timeout,
                follow_redirects=self._follow_redirects,
                trust_env=False,
            ) as client:
                response = await client.get(target.url)
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
            detail = str(exc) or type(exc).__name__
            logger.warning("Upstream fetch failed: %s via %s -- %s", target.url, via, detail)
            return FetchResult(error=GatewayError(ErrorKind.TRANSPORT_FAILED, detail))

        return FetchResult(
            response=UpstreamResponse(
                status_code=response.status_code,
                content_type=response.headers.get("content-type"),
                body=response.content,
            )
        )
