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
"""Gateway CLI entry point.

Loads the configuration once, refuses to start on a configuration
error, and serves the app with uvicorn. With --audit-stats it prints
request counts from the audit log instead of serving.

Usage:
    python -m proxy_fetch.server [--config PATH] [--host HOST] [--port PORT] [--log-level LEVEL] [--audit-stats]
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys

from .app import create_app
from .audit import AuditLogger
from .config import load_config
from .errors import ConfigError

logger = logging.getLogger("proxy_fetch.server")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxy-fetch-server",
        description="Proxy Fetch Server -- authenticated outbound-fetch gateway",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: ~/.proxy-fetch/config.yaml)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Listen address (overrides config, default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listen port (overrides config, default: 8080)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--audit-stats",
        action="store_true",
        help="Print request counts from the audit log and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the gateway server."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = load_config(args.config)
        overrides = {}
        if args.host is not None:
            overrides["host"] = args.host
        if args.port is not None:
            overrides["port"] = args.port
        if overrides:
            # replace() re-runs validation on the new values
            config = dataclasses.replace(config, **overrides)
        if args.audit_stats:
            return _print_audit_stats(config.audit_log_path)
        app = create_app(config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    logger.info("=" * 60)
    logger.info("Proxy Fetch Server")
    logger.info("=" * 60)
    logger.info("  Listen: %s:%d", config.host, config.port)
    logger.info("  Auth: %s", "enabled" if config.auth_enabled else "DISABLED")
    for key, value in config.describe().items():
        if key != "auth_enabled":
            logger.info("  %s: %s", key, value)
    logger.info("=" * 60)

    import uvicorn

    uvicorn.run(app, host=config.host, port=config.port, log_level=args.log_level.lower())
    return 0


def _print_audit_stats(audit_log_path: str | None) -> int:
    if not audit_log_path:
        logger.error("No audit log configured (set audit_log_path or PROXY_FETCH_AUDIT_LOG)")
        return 1
    audit = AuditLogger(audit_log_path)
    stats = audit.get_stats()
    print(json.dumps({"audit_log": str(audit.path), **stats}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
