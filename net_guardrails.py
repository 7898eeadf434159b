from __future__ import annotations

import ipaddress
import socket
from typing import Any
from urllib.parse import urlparse

import config

DEFAULT_HEADERS = {"User-Agent": config.BOT_USER_AGENT}
DEFAULT_TIMEOUT = 15
MAX_HTML_BYTES = 2 * 1024 * 1024
MAX_REDIRECTS = 10

PRIVATE_IP_RANGES = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def _is_private(ip_str: str) -> bool:
    ip_obj = ipaddress.ip_address(ip_str)
    return any(ip_obj in private_range for private_range in PRIVATE_IP_RANGES)


def validate_url(url: str) -> str:
    """
    Rejects non-HTTP(S) URLs and hosts resolving to private addresses.
    Returns the hostname. Raises ValueError if unsafe.
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Unsafe scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ValueError("Missing hostname")

    try:
        addresses = socket.getaddrinfo(parsed.hostname, None)
    except socket.gaierror:
        # Unresolvable hosts cannot be proven public.
        raise ValueError(f"DNS resolution failed for {parsed.hostname}")

    for _, _, _, _, sockaddr in addresses:
        if _is_private(sockaddr[0]):
            raise ValueError(f"Target resolves to private IP: {sockaddr[0]}")
    return parsed.hostname


def read_limited_text(resp: Any, max_bytes: int | None = MAX_HTML_BYTES) -> tuple[str, bool]:
    """Reads a streamed response body. Returns (text, too_large)."""
    declared = resp.headers.get("Content-Length")
    if max_bytes is not None and declared and str(declared).isdigit() and int(declared) > max_bytes:
        return "", True

    chunks: list[bytes] = []
    size = 0
    for chunk in resp.iter_content(chunk_size=16384):
        if not chunk:
            continue
        size += len(chunk)
        if max_bytes is not None and size > max_bytes:
            return "", True
        chunks.append(chunk)
    data = b"".join(chunks)
    try:
        return data.decode(resp.encoding or "utf-8", errors="replace"), False
    except LookupError:
        return data.decode("utf-8", errors="replace"), False
