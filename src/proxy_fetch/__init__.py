"""
Proxy Fetch Server -- authenticated outbound-fetch gateway.

Accepts ``POST /`` with a target URL, checks the caller's Bearer token,
guards the URL scheme, routes the fetch through the configured upstream
HTTP/HTTPS proxy (or direct, for no-proxy hosts) and passes the upstream
response back byte for byte.
"""

__version__ = "1.0.0"
__author__ = "Phoenix Link (Pty) Ltd"

from .app import create_app  # noqa: E402
from .config import GatewayConfig, load_config  # noqa: E402

__all__ = ["GatewayConfig", "create_app", "load_config", "__version__"]
