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
"""Gateway error taxonomy.

Every per-request failure is one of three categories:

  - AuthRejected      missing/malformed header or wrong token
  - ValidationFailed  bad body, missing url, unparseable url, bad scheme
  - TransportFailed   the upstream fetch itself failed

Per-request failures are plain values (``GatewayError``) carried in the
pipeline's result objects and turned into a JSON error response exactly
once, at the handler boundary. Only configuration problems are raised,
and only at startup (``ConfigError``).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConfigError(Exception):
    """Invalid gateway configuration. Fatal at startup, never per request."""


class ErrorCategory(str, Enum):
    AUTH = "auth_rejected"
    VALIDATION = "validation_failed"
    TRANSPORT = "transport_failed"


class ErrorKind(str, Enum):
    """Terminal outcomes of the request pipeline."""

    AUTH_HEADER_INVALID = "auth_header_invalid"
    AUTH_TOKEN_REJECTED = "auth_token_rejected"
    MALFORMED_BODY = "malformed_body"
    MISSING_URL = "missing_url"
    INVALID_URL = "invalid_url"
    DISALLOWED_SCHEME = "disallowed_scheme"
    TRANSPORT_FAILED = "transport_failed"

    @property
    def category(self) -> ErrorCategory:
        return _KIND_TABLE[self][0]

    @property
    def status_code(self) -> int:
        return _KIND_TABLE[self][1]

    @property
    def message(self) -> str:
        return _KIND_TABLE[self][2]


# kind -> (category, HTTP status, client-facing message)
_KIND_TABLE: dict[ErrorKind, tuple[ErrorCategory, int, str]] = {
    ErrorKind.AUTH_HEADER_INVALID: (
        ErrorCategory.AUTH,
        401,
        "Missing or invalid Authorization header",
    ),
    ErrorKind.AUTH_TOKEN_REJECTED: (
        ErrorCategory.AUTH,
        403,
        "Invalid authorization token",
    ),
    ErrorKind.MALFORMED_BODY: (ErrorCategory.VALIDATION, 400, "Invalid JSON body"),
    ErrorKind.MISSING_URL: (
        ErrorCategory.VALIDATION,
        400,
        "Missing url property in request body",
    ),
    ErrorKind.INVALID_URL: (ErrorCategory.VALIDATION, 400, "Invalid URL format"),
    ErrorKind.DISALLOWED_SCHEME: (
        ErrorCategory.VALIDATION,
        400,
        "Only HTTP and HTTPS URLs are allowed",
    ),
    ErrorKind.TRANSPORT_FAILED: (ErrorCategory.TRANSPORT, 500, "Failed to fetch URL"),
}


@dataclass(frozen=True)
class GatewayError:
    """A terminal pipeline error, rendered as ``{"error": message}``."""

    kind: ErrorKind
    detail: str = ""  # Underlying error text (transport failures only)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def message(self) -> str:
        if self.detail:
            return f"{self.kind.message}: {self.detail}"
        return self.kind.message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}
