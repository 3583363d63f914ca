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
"""
Proxy Fetch Server -- FastAPI application

Single endpoint, ``POST /`` with ``{"url": "..."}``:

    auth -> validate -> route -> forward -> passthrough

Each stage either hands its result to the next or ends the request
with ``{"error": "..."}``. The only shared state is the immutable
GatewayConfig passed to ``create_app``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from . import __version__
from .audit import AuditEntry, AuditLogger
from .auth import authenticate
from .config import GatewayConfig
from .errors import ConfigError, GatewayError
from .forwarder import Forwarder
from .passthrough import render, render_error
from .routing import route
from .validation import validate

logger = logging.getLogger("proxy_fetch.app")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status, and latency."""

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "%s %s -> %d (%dms)",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response


def create_app(
    config: GatewayConfig,
    forwarder: Forwarder | None = None,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    """Build the gateway app for a validated configuration.

    ``forwarder`` and ``audit_logger`` default to ones built from the
    config; tests pass their own.
    """
    if not isinstance(config, GatewayConfig):
        raise ConfigError(f"Expected GatewayConfig, got {type(config).__name__}")

    if forwarder is None:
        forwarder = Forwarder(
            timeout=config.timeout_seconds,
            follow_redirects=config.follow_redirects,
        )
    if audit_logger is None and config.audit_log_path:
        audit_logger = AuditLogger(config.audit_log_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Gateway ready: %s", config.describe())
        yield
        if audit_logger is not None:
            audit_logger.close()
            logger.info("Audit log %s closed (%d entries)", audit_logger.path, audit_logger.entry_count)

    app = FastAPI(
        title="Proxy Fetch Server",
        description="Authenticated outbound-fetch gateway",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.state.config = config
    app.state.forwarder = forwarder
    app.state.audit_logger = audit_logger

    async def _audit(entry: AuditEntry) -> None:
        if audit_logger is not None:
            # File I/O stays off the event loop
            await asyncio.to_thread(audit_logger.log, entry)

    async def _reject(error: GatewayError, client_ip: str, url: str = "") -> Response:
        await _audit(AuditEntry.rejected(error, url=url, client_ip=client_ip))
        return render_error(error)

    @app.post("/")
    async def fetch_url(request: Request) -> Response:
        """Fetch the requested URL and pass the response through."""
        client_ip = request.client.host if request.client else ""

        auth = authenticate(request.headers.get("Authorization"), config.auth_secret)
        if not auth.allowed:
            logger.warning("Unauthorized request from %s: %s", client_ip or "unknown", auth.error.kind.value)
            return await _reject(auth.error, client_ip)

        validation = validate(await request.body())
        if not validation.ok:
            logger.info("Rejected request from %s: %s", client_ip or "unknown", validation.error.kind.value)
            return await _reject(validation.error, client_ip)

        target = validation.target
        decision = route(target, config)

        start = time.monotonic()
        result = await forwarder.forward(target, decision)
        duration_ms = (time.monotonic() - start) * 1000

        if not result.ok:
            await _audit(
                AuditEntry.failed(
                    target.url,
                    target.hostname,
                    decision,
                    result.error,
                    duration_ms=duration_ms,
                    client_ip=client_ip,
                )
            )
            return render_error(result.error)

        upstream = result.response
        await _audit(
            AuditEntry.fetched(
                target.url,
                target.hostname,
                decision,
                status_code=upstream.status_code,
                duration_ms=duration_ms,
                response_size=len(upstream.body),
                client_ip=client_ip,
            )
        )
        return render(upstream)

    return app
