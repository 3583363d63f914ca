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
"""Inbound caller authentication (Bearer token).

No-op when no secret is configured. Otherwise the caller must send
``Authorization: Bearer <secret>``. Runs before the request body is
read.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from .errors import ErrorKind, GatewayError

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an authentication check."""

    allowed: bool
    error: GatewayError | None = None


_ALLOWED = AuthResult(allowed=True)


def authenticate(header_value: str | None, auth_secret: str | None) -> AuthResult:
    """Check an Authorization header value against the configured secret.

    Missing header, a scheme other than Bearer, or an empty token is
    AUTH_HEADER_INVALID (401). A well-formed token that does not match
    is AUTH_TOKEN_REJECTED (403).
    """
    if not auth_secret:
        return _ALLOWED

    if not header_value or not header_value.startswith(BEARER_PREFIX):
        return AuthResult(allowed=False, error=GatewayError(ErrorKind.AUTH_HEADER_INVALID))

    token = header_value[len(BEARER_PREFIX):]
    if not token:
        return AuthResult(allowed=False, error=GatewayError(ErrorKind.AUTH_HEADER_INVALID))

    if not hmac.compare_digest(token.encode("utf-8"), auth_secret.encode("utf-8")):
        return AuthResult(allowed=False, error=GatewayError(ErrorKind.AUTH_TOKEN_REJECTED))

    return _ALLOWED
