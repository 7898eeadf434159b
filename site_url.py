"""
site_url.py - Canonical site URL resolution.

Usage:
    url = resolve_canonical_url("example.com")
    domain = hostname(url)
"""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

from net_guardrails import DEFAULT_HEADERS, DEFAULT_TIMEOUT, MAX_REDIRECTS, read_limited_text, validate_url

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class SiteUrlError(Exception):
    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


def _with_scheme(url: str) -> str:
    url = (url or "").strip()
    if url and "://" not in url:
        return f"https://{url}"
    return url


def _host_key(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def _strip_fragment(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse((parsed.scheme, parsed.netloc.lower(), parsed.path or "/", "", parsed.query, ""))


def hostname(url: str) -> str:
    return (urlparse(_with_scheme(url)).hostname or "").lower()


def _canonical_link(html: str, base_url: str) -> str:
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup.find_all("link"):
        rel = tag.get("rel") or []
        rel_vals = [r.lower() for r in rel] if isinstance(rel, list) else [str(rel).lower()]
        if "canonical" not in rel_vals:
            continue
        href = str(tag.get("href") or "").strip()
        if href:
            return urljoin(base_url, href)
    return ""


def resolve_canonical_url(url: str, session: Any = None) -> str:
    """
    Follows redirects from `url` and returns the canonical site URL.
    A <link rel="canonical"> on the landing page wins when it stays on the same host.
    Raises SiteUrlError when the site cannot be reached.
    """
    start = _with_scheme(url)
    if not start:
        raise SiteUrlError(url, "empty URL")

    session = session or requests.Session()
    current = start
    visited = {current}

    for _ in range(MAX_REDIRECTS + 1):
        try:
            validate_url(current)
            resp = session.get(
                current,
                headers=DEFAULT_HEADERS,
                timeout=DEFAULT_TIMEOUT,
                stream=True,
                allow_redirects=False,
            )
        except ValueError as e:
            raise SiteUrlError(current, str(e))
        except requests.RequestException as e:
            raise SiteUrlError(current, f"request failed: {e}")

        status = resp.status_code
        location = resp.headers.get("Location", "")
        if status in REDIRECT_STATUSES and location:
            next_url = urljoin(current, location)
            if next_url in visited:
                raise SiteUrlError(start, "redirect loop")
            visited.add(next_url)
            current = next_url
            continue

        if status >= 400:
            raise SiteUrlError(current, f"HTTP {status}")

        html, _ = read_limited_text(resp)
        canonical = _canonical_link(html, current)
        if canonical and _host_key(canonical) == _host_key(current):
            logger.debug(f"Canonical link for {start}: {canonical}")
            return _strip_fragment(canonical)
        return _strip_fragment(current)

    raise SiteUrlError(start, "too many redirects")
