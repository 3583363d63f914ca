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
"""Turn upstream responses and pipeline errors into gateway responses."""

from __future__ import annotations

from fastapi import Response
from fastapi.responses import JSONResponse

from .errors import GatewayError
from .forwarder import UpstreamResponse

DEFAULT_CONTENT_TYPE = "application/octet-stream"
PROVENANCE_HEADER = "X-Proxied-By"
PROVENANCE_VALUE = "proxy-fetch-server"


def render(upstream: UpstreamResponse) -> Response:
    """Copy status, Content-Type and body bytes; add the provenance header.

    Content-Type goes in as a raw header rather than ``media_type`` so
    Starlette does not append a charset to ``text/*`` types.
    """
    return Response(
        content=upstream.body,
        status_code=upstream.status_code,
        headers={
            "Content-Type": upstream.content_type or DEFAULT_CONTENT_TYPE,
            PROVENANCE_HEADER: PROVENANCE_VALUE,
        },
    )


def render_error(error: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())
