"""
greasebox/cdp/connection.py

Helpers for reaching a Chrome instance that runs with --remote-debugging-port.

Contains:
- get_browser_websocket_url(): Resolve the browser-level CDP websocket via /json/version
- normalize_remote_debugging_address(): Accept "host:port" or "http://host:port"
"""

from urllib.parse import urlparse

import requests

from greasebox.utils.exceptions import StartupError
from greasebox.utils.logger import get_logger

logger = get_logger(name=__name__)


def normalize_remote_debugging_address(address: str) -> str:
    """
    Normalize a remote debugging address to an http:// base URL without trailing slash.

    Args:
        address: e.g. "127.0.0.1:9222" or "http://127.0.0.1:9222/".

    Returns:
        Base URL such as "http://127.0.0.1:9222".
    """
    address = address.strip().rstrip("/")
    if "://" not in address:
        address = f"http://{address}"
    return address


def get_browser_websocket_url(remote_debugging_address: str, timeout: float = 5.0) -> str:
    """
    Fetch the browser websocket URL from Chrome's /json/version endpoint.

    The host in the returned URL is rewritten to the address we reached, since Chrome
    reports its own bind address (which may be unreachable from here).

    Args:
        remote_debugging_address: Chrome debugging address.
        timeout: HTTP timeout in seconds.

    Returns:
        Browser-level websocket URL.

    Raises:
        StartupError: Chrome is not reachable or the reply has no websocket URL.
    """
    base_url = normalize_remote_debugging_address(remote_debugging_address)
    try:
        resp = requests.get(f"{base_url}/json/version", timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise StartupError(f"Cannot reach Chrome at {base_url}: {e}") from e

    ws_url = data.get("webSocketDebuggerUrl")
    if not ws_url:
        raise StartupError(f"Chrome at {base_url} did not report a webSocketDebuggerUrl")

    parsed = urlparse(ws_url)
    reachable = urlparse(base_url)
    fixed = parsed._replace(netloc=reachable.netloc).geturl()
    logger.debug("Resolved browser websocket %s (reported %s)", fixed, ws_url)
    return fixed
