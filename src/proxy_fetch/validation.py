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
"""Request body and target URL validation.

The body must be a JSON object with an absolute http(s) ``url``.
Only http and https reach the forwarder; ``file:``, ``ftp:`` and
``data:`` URLs are rejected. No host or IP denylist is applied here.
"""

from __future__ import annotations

import ipaddress
import json
from dataclasses import dataclass
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, StrictStr
from pydantic import ValidationError as PydanticValidationError

from .errors import ErrorKind, GatewayError

ALLOWED_SCHEMES = frozenset({"http", "https"})
_FORBIDDEN_HOST_CHARS = frozenset(" #%/:<>?@[\\]^|")


class FetchRequest(BaseModel):
    """Body of ``POST /``. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    url: StrictStr


@dataclass(frozen=True)
class TargetURL:
    """A validated fetch target."""

    url: str
    scheme: str  # "http" or "https", lowercase
    hostname: str  # lowercase, IPv6 without brackets
    port: int | None = None  # explicit port only; None = scheme default


@dataclass(frozen=True)
class ValidationResult:
    target: TargetURL | None = None
    error: GatewayError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _fail(kind: ErrorKind) -> ValidationResult:
    return ValidationResult(error=GatewayError(kind))


def validate(raw_body: bytes | str) -> ValidationResult:
    """Parse the request body and validate the target URL."""
    try:
        payload = json.loads(raw_body)
    except (ValueError, TypeError):
        # ValueError covers JSONDecodeError and undecodable bytes
        return _fail(ErrorKind.MALFORMED_BODY)

    if not isinstance(payload, dict) or not payload.get("url"):
        return _fail(ErrorKind.MISSING_URL)

    try:
        request = FetchRequest.model_validate(payload)
    except PydanticValidationError:
        return _fail(ErrorKind.INVALID_URL)

    return parse_target(request.url)


def parse_target(url: str) -> ValidationResult:
    """Parse an absolute URL and apply the scheme guard."""
    url = url.strip()
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return _fail(ErrorKind.INVALID_URL)

    if not parts.scheme:
        return _fail(ErrorKind.INVALID_URL)

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return _fail(ErrorKind.DISALLOWED_SCHEME)

    hostname = parts.hostname
    bracketed = "[" in parts.netloc.rpartition("@")[2]
    if not hostname or not _valid_host(hostname, bracketed):
        return _fail(ErrorKind.INVALID_URL)

    return ValidationResult(target=TargetURL(url=url, scheme=scheme, hostname=hostname, port=port))


def _valid_host(hostname: str, bracketed: bool) -> bool:
    """Reject hosts no resolver could accept.

    Bracketed hosts must be IPv6 literals. Domain hosts may not contain
    forbidden host code points (percent signs included, so no
    percent-encoded hosts), and non-ASCII names must encode to IDNA.
    """
    if bracketed:
        try:
            ipaddress.IPv6Address(hostname)
        except ValueError:
            return False
        return True

    if any(ch in _FORBIDDEN_HOST_CHARS or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in hostname):
        return False

    if not hostname.isascii():
        try:
            hostname.encode("idna")
        except UnicodeError:
            return False
    return True
