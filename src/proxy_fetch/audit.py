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
"""Fetch audit trail.

One JSON object per line for every request the gateway answers:
fetched (upstream responded), rejected (auth or validation), or
failed (transport error). Secrets never reach the log: the proxy is
recorded without userinfo and the caller's token is not recorded.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TextIO

from .config import redact_proxy_uri
from .errors import GatewayError
from .routing import RoutingDecision

logger = logging.getLogger("proxy_fetch.audit")

# Rejected requests may never have parsed a URL
_NO_URL = ""


@dataclass
class AuditEntry:
    """A single audited gateway request."""

    timestamp: float
    event_type: str  # "fetched", "rejected", "failed"
    url: str = _NO_URL
    hostname: str = ""
    status_code: int = 0  # Status returned to the caller
    routed_via: str = ""  # "direct", the redacted proxy URI, or "" if never routed
    error_kind: str = ""
    duration_ms: float = 0.0
    response_size: int = 0
    client_ip: str = ""

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def fetched(
        cls,
        url: str,
        hostname: str,
        decision: RoutingDecision,
        status_code: int,
        duration_ms: float = 0.0,
        response_size: int = 0,
        client_ip: str = "",
    ) -> AuditEntry:
        """Create an entry for a completed upstream fetch."""
        return cls(
            timestamp=time.time(),
            event_type="fetched",
            url=url,
            hostname=hostname,
            status_code=status_code,
            routed_via=_routed_via(decision),
            duration_ms=duration_ms,
            response_size=response_size,
            client_ip=client_ip,
        )

    @classmethod
    def rejected(cls, error: GatewayError, url: str = _NO_URL, client_ip: str = "") -> AuditEntry:
        """Create an entry for an auth or validation rejection."""
        return cls(
            timestamp=time.time(),
            event_type="rejected",
            url=url,
            status_code=error.status_code,
            error_kind=error.kind.value,
            client_ip=client_ip,
        )

    @classmethod
    def failed(
        cls,
        url: str,
        hostname: str,
        decision: RoutingDecision,
        error: GatewayError,
        duration_ms: float = 0.0,
        client_ip: str = "",
    ) -> AuditEntry:
        """Create an entry for a transport failure."""
        return cls(
            timestamp=time.time(),
            event_type="failed",
            url=url,
            hostname=hostname,
            status_code=error.status_code,
            routed_via=_routed_via(decision),
            error_kind=error.kind.value,
            duration_ms=duration_ms,
            client_ip=client_ip,
        )


def _routed_via(decision: RoutingDecision) -> str:
    if not decision.use_proxy:
        return "direct"
    return redact_proxy_uri(decision.selected_proxy_uri) or ""


class AuditLogger:
    """Append-only JSON Lines file of gateway requests.

    Written from worker threads (the handler offloads each write), so
    appends are serialized with a lock. The file is opened on first
    write and reopened after ``close``.
    """

    def __init__(self, log_path: str | Path) -> None:
        self.path = Path(log_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.entry_count = 0  # entries written by this process
        self._lock = threading.Lock()
        self._file: TextIO | None = None

    def _ensure_open(self) -> TextIO:
        if self._file is None or self._file.closed:
            self._file = open(self.path, "a", encoding="utf-8")
        return self._file

    def log(self, entry: AuditEntry) -> None:
        """Append one entry. A failed write is logged; the request still succeeds."""
        line = entry.to_json() + "\n"
        with self._lock:
            try:
                f = self._ensure_open()
                f.write(line)
                f.flush()
            except OSError as exc:
                logger.error("Failed to write audit entry for %s: %s", entry.url or entry.event_type, exc)
                return
            self.entry_count += 1

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def read_recent(self, n: int = 50) -> list[AuditEntry]:
        """The last ``n`` readable entries, oldest first."""
        if not self.path.exists():
            return []

        entries: deque[AuditEntry] = deque(maxlen=n)
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                try:
                    entries.append(AuditEntry(**json.loads(line)))
                except (json.JSONDecodeError, TypeError):
                    logger.debug("Skipping unreadable audit line in %s", self.path)
        return list(entries)

    def get_stats(self, window: int = 1000) -> dict[str, int]:
        """Outcome counts over the last ``window`` entries."""
        entries = self.read_recent(window)
        outcomes = Counter(e.event_type for e in entries)
        return {
            "total_requests": len(entries),
            "fetched": outcomes["fetched"],
            "rejected": outcomes["rejected"],
            "failed": outcomes["failed"],
            "proxied": sum(1 for e in entries if e.routed_via not in ("", "direct")),
            "unique_hosts": len({e.hostname for e in entries if e.hostname}),
        }
