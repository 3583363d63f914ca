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
"""Gateway configuration schema and loader.

The configuration is built once at process start and handed to the
handler. Request-handling code never looks at the environment or the
config file; it only reads the immutable ``GatewayConfig`` it was given.

Sources, lowest to highest precedence:
  1. Built-in defaults
  2. YAML file (default: ~/.proxy-fetch/config.yaml)
  3. PROXY_FETCH_* environment variables

The conventional HTTP_PROXY / HTTPS_PROXY / NO_PROXY variables only fill
fields that neither the file nor a PROXY_FETCH_* variable set.

Example config.yaml::

    auth:
      secret: change-me
    proxy:
      http: http://proxy.internal:3128
      https: http://proxy.internal:3128
      no_proxy: [localhost, .internal, "registry.internal:5000"]
      credential: proxy-token
      credential_scheme: Bearer
      required: true
    upstream:
      timeout_seconds: 30
      follow_redirects: true
    server:
      host: 0.0.0.0
      port: 8080
    audit_log_path: /var/log/proxy-fetch/audit.log
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from .errors import ConfigError

logger = logging.getLogger("proxy_fetch.config")

# ---------------------------------------------------------------------------
# Default paths
# ---------------------------------------------------------------------------
_PROXY_FETCH_HOME = Path(os.environ.get("PROXY_FETCH_HOME", Path.home() / ".proxy-fetch"))
DEFAULT_CONFIG_PATH = _PROXY_FETCH_HOME / "config.yaml"

DEFAULT_CREDENTIAL_SCHEME = "Bearer"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_HOST = "0.0.0.0"  # nosec B104 - the gateway is meant to be reachable
DEFAULT_PORT = 8080

_PROXY_SCHEMES = frozenset({"http", "https"})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


@dataclass(frozen=True)
class GatewayConfig:
    """Immutable gateway configuration.

    Validated once in ``__post_init__``; an instance that exists is a
    valid configuration, so request handling never re-checks it.
    """

    # Inbound auth. None or "" disables authentication.
    auth_secret: str | None = None

    # Upstream proxies, split by target scheme
    http_proxy_uri: str | None = None
    https_proxy_uri: str | None = None

    # No-proxy list: "host", "host:port" or ".domain" (domain + subdomains)
    bypass_entries: tuple[str, ...] = ()

    # Credential presented to the upstream proxy
    proxy_credential: str | None = None
    credential_scheme: str = DEFAULT_CREDENTIAL_SCHEME

    # Deployments that must never fetch directly set this; a config
    # without any proxy URI is then rejected at startup.
    require_proxy: bool = False

    # Transport settings (handed to the HTTP client, not used by routing)
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    follow_redirects: bool = True

    # Listener
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    # JSON Lines audit trail; None disables it
    audit_log_path: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "auth_secret", self.auth_secret or None)
        object.__setattr__(self, "http_proxy_uri", _clean_optional(self.http_proxy_uri))
        object.__setattr__(self, "https_proxy_uri", _clean_optional(self.https_proxy_uri))
        object.__setattr__(self, "proxy_credential", self.proxy_credential or None)
        object.__setattr__(self, "bypass_entries", normalize_bypass_entries(self.bypass_entries))
        object.__setattr__(self, "credential_scheme", (self.credential_scheme or "").strip())
        self._validate()

    def _validate(self) -> None:
        for name in ("http_proxy_uri", "https_proxy_uri"):
            uri = getattr(self, name)
            if uri is not None:
                _check_proxy_uri(name, uri)

        if self.require_proxy and not self.has_proxy:
            raise ConfigError(
                "A proxy URI is required: set http_proxy_uri and/or https_proxy_uri"
            )
        if not self.credential_scheme:
            raise ConfigError("credential_scheme cannot be empty")
        if any(ch.isspace() for ch in self.credential_scheme):
            raise ConfigError(f"credential_scheme must be a single token: {self.credential_scheme!r}")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
        if not 1 <= self.port <= 65535:
            raise ConfigError(f"port must be between 1 and 65535, got {self.port}")

    @property
    def auth_enabled(self) -> bool:
        return self.auth_secret is not None

    @property
    def has_proxy(self) -> bool:
        return self.http_proxy_uri is not None or self.https_proxy_uri is not None

    def describe(self) -> dict[str, Any]:
        """Summary safe for logs: no secrets, no proxy userinfo."""
        return {
            "auth_enabled": self.auth_enabled,
            "http_proxy": redact_proxy_uri(self.http_proxy_uri),
            "https_proxy": redact_proxy_uri(self.https_proxy_uri),
            "bypass_entries": list(self.bypass_entries),
            "proxy_credential": self.proxy_credential is not None,
            "credential_scheme": self.credential_scheme,
            "require_proxy": self.require_proxy,
            "timeout_seconds": self.timeout_seconds,
            "follow_redirects": self.follow_redirects,
            "audit_log": self.audit_log_path,
        }


def normalize_bypass_entries(entries: Iterable[str] | str | None) -> tuple[str, ...]:
    """Split, strip and lowercase no-proxy entries, dropping empties.

    Accepts either an iterable of entries or a single comma-separated
    string (the NO_PROXY convention). Order is preserved.
    """
    if entries is None:
        return ()
    if isinstance(entries, str):
        entries = entries.split(",")
    return tuple(e.strip().lower() for e in entries if isinstance(e, str) and e.strip())


def redact_proxy_uri(uri: str | None) -> str | None:
    """Drop userinfo from a proxy URI so it can be logged."""
    if not uri:
        return uri
    parts = urlsplit(uri)
    if "@" not in parts.netloc:
        return uri
    return parts._replace(netloc="***@" + parts.netloc.rsplit("@", 1)[1]).geturl()


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _check_proxy_uri(name: str, uri: str) -> None:
    try:
        parts = urlsplit(uri)
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError as exc:
        raise ConfigError(f"{name} is not a valid URL: {exc}") from exc
    if parts.scheme.lower() not in _PROXY_SCHEMES:
        raise ConfigError(f"{name} must be an http:// or https:// URL, got {redact_proxy_uri(uri)!r}")
    if not parts.hostname:
        raise ConfigError(f"{name} has no host: {redact_proxy_uri(uri)!r}")


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> GatewayConfig:
    """Load configuration from YAML (if present) and the environment.

    A missing file means "defaults + environment". A file that exists
    but cannot be parsed is a ConfigError: the gateway must not start
    with a configuration other than the one the operator wrote.
    """
    env = os.environ if environ is None else environ
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Failed to load config {config_path}: {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Invalid config {config_path}: top level must be a mapping")
        raw = loaded or {}
        logger.info("Loaded gateway config from %s", config_path)
    else:
        logger.info("No gateway config at %s -- using defaults and environment", config_path)

    settings = _parse_config(raw)
    settings.update(_env_overrides(env))
    for key, value in _conventional_proxy_env(env).items():
        settings.setdefault(key, value)
    return GatewayConfig(**settings)


def save_config(config: GatewayConfig, path: Path | str | None = None) -> None:
    """Write configuration to YAML in the layout ``load_config`` reads."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "auth": {"secret": config.auth_secret},
        "proxy": {
            "http": config.http_proxy_uri,
            "https": config.https_proxy_uri,
            "no_proxy": list(config.bypass_entries),
            "credential": config.proxy_credential,
            "credential_scheme": config.credential_scheme,
            "required": config.require_proxy,
        },
        "upstream": {
            "timeout_seconds": config.timeout_seconds,
            "follow_redirects": config.follow_redirects,
        },
        "server": {
            "host": config.host,
            "port": config.port,
        },
        "audit_log_path": config.audit_log_path,
    }
    config_path.write_text(
        yaml.dump(data, default_flow_style=False, sort_keys=False), encoding="utf-8"
    )
    logger.info("Saved gateway config to %s", config_path)


def _parse_config(raw: dict) -> dict[str, Any]:
    """Map the YAML layout onto GatewayConfig keyword arguments."""
    auth = _section(raw, "auth")
    proxy = _section(raw, "proxy")
    upstream = _section(raw, "upstream")
    server = _section(raw, "server")

    settings: dict[str, Any] = {}
    if "secret" in auth:
        settings["auth_secret"] = _as_optional_str(auth["secret"], "auth.secret")
    if "http" in proxy:
        settings["http_proxy_uri"] = _as_optional_str(proxy["http"], "proxy.http")
    if "https" in proxy:
        settings["https_proxy_uri"] = _as_optional_str(proxy["https"], "proxy.https")
    if "no_proxy" in proxy:
        no_proxy = proxy["no_proxy"]
        if no_proxy is not None and not isinstance(no_proxy, (str, list)):
            raise ConfigError("proxy.no_proxy must be a list or a comma-separated string")
        settings["bypass_entries"] = normalize_bypass_entries(no_proxy)
    if "credential" in proxy:
        settings["proxy_credential"] = _as_optional_str(proxy["credential"], "proxy.credential")
    if "credential_scheme" in proxy:
        settings["credential_scheme"] = str(proxy["credential_scheme"] or "")
    if "required" in proxy:
        settings["require_proxy"] = _as_bool(proxy["required"], "proxy.required")
    if "timeout_seconds" in upstream:
        settings["timeout_seconds"] = _as_float(upstream["timeout_seconds"], "upstream.timeout_seconds")
    if "follow_redirects" in upstream:
        settings["follow_redirects"] = _as_bool(upstream["follow_redirects"], "upstream.follow_redirects")
    if "host" in server:
        settings["host"] = str(server["host"])
    if "port" in server:
        settings["port"] = _as_int(server["port"], "server.port")
    if "audit_log_path" in raw:
        settings["audit_log_path"] = _as_optional_str(raw["audit_log_path"], "audit_log_path")
    return settings


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Read PROXY_FETCH_* environment variables."""
    settings: dict[str, Any] = {}

    if "PROXY_FETCH_KEY" in env:
        settings["auth_secret"] = env["PROXY_FETCH_KEY"]
    if "PROXY_FETCH_HOST" in env:
        settings["host"] = env["PROXY_FETCH_HOST"]
    if "PROXY_FETCH_PORT" in env:
        settings["port"] = _as_int(env["PROXY_FETCH_PORT"], "PROXY_FETCH_PORT")

    # A single PROXY_FETCH_URI serves both schemes; scheme-specific
    # settings take precedence over it.
    single = env.get("PROXY_FETCH_URI")
    if single:
        settings["http_proxy_uri"] = single
        settings["https_proxy_uri"] = single
    if env.get("PROXY_FETCH_HTTP_PROXY"):
        settings["http_proxy_uri"] = env["PROXY_FETCH_HTTP_PROXY"]
    if env.get("PROXY_FETCH_HTTPS_PROXY"):
        settings["https_proxy_uri"] = env["PROXY_FETCH_HTTPS_PROXY"]
    if "PROXY_FETCH_NO_PROXY" in env:
        settings["bypass_entries"] = normalize_bypass_entries(env["PROXY_FETCH_NO_PROXY"])

    if "PROXY_FETCH_TOKEN" in env:
        settings["proxy_credential"] = env["PROXY_FETCH_TOKEN"]
    if env.get("PROXY_FETCH_TOKEN_TYPE"):
        settings["credential_scheme"] = env["PROXY_FETCH_TOKEN_TYPE"]
    if "PROXY_FETCH_REQUIRE_PROXY" in env:
        settings["require_proxy"] = _as_bool(env["PROXY_FETCH_REQUIRE_PROXY"], "PROXY_FETCH_REQUIRE_PROXY")
    if "PROXY_FETCH_TIMEOUT" in env:
        settings["timeout_seconds"] = _as_float(env["PROXY_FETCH_TIMEOUT"], "PROXY_FETCH_TIMEOUT")
    if env.get("PROXY_FETCH_AUDIT_LOG"):
        settings["audit_log_path"] = env["PROXY_FETCH_AUDIT_LOG"]

    return settings


def _conventional_proxy_env(env: Mapping[str, str]) -> dict[str, Any]:
    """HTTP_PROXY / HTTPS_PROXY / NO_PROXY (either case), non-empty values only."""
    settings: dict[str, Any] = {}
    http_proxy = _first_env(env, "HTTP_PROXY", "http_proxy")
    if http_proxy:
        settings["http_proxy_uri"] = http_proxy
    https_proxy = _first_env(env, "HTTPS_PROXY", "https_proxy")
    if https_proxy:
        settings["https_proxy_uri"] = https_proxy
    no_proxy = _first_env(env, "NO_PROXY", "no_proxy")
    if no_proxy:
        settings["bypass_entries"] = normalize_bypass_entries(no_proxy)
    return settings


def _first_env(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        if name in env:
            return env[name]
    return None


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return section


def _as_optional_str(value: Any, name: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        raise ConfigError(f"{name} must be a string")
    return str(value)


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
