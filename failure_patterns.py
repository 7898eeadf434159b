# failure_patterns.py
from __future__ import annotations

from typing import Iterable

from dependency_map import (
    BEHAVIORAL_ANALYTICS,
    CONTENT_SCRAPE,
    SEARCH_CONSOLE_LINK,
    TOP_PAGES_IMPORT,
)

# Checked in order; first hit wins.
FAILURE_CATEGORIES = [
    ("ad_blocker", ("net::err_blocked_by_client",)),
    ("timeout", ("timeout", "timed out")),
    ("forbidden", ("403", "forbidden")),
    ("cloudflare", ("cloudflare",)),
    ("rate_limit", ("rate limit", "429")),
    ("auth_error", ("unauthorized", "401")),
    ("no_data", ("no data", "empty")),
]

FAILURE_RECOMMENDATIONS = {
    "ad_blocker": [
        "Site appears to be blocking automated requests",
        "Check if site has anti-bot measures or requires custom headers",
    ],
    "timeout": [
        "Requests are timing out - site may be slow or overloaded",
        "Consider increasing timeout settings or retry logic",
    ],
    "forbidden": [
        "Site returning 403 Forbidden - may be blocking bots",
        "Check robots.txt, review site access policies",
    ],
    "cloudflare": [
        "Cloudflare protection is blocking requests",
        "May need to allowlist IPs or use a different scraping approach",
    ],
    "rate_limit": [
        "API rate limits exceeded",
        "Implement backoff strategy or reduce request frequency",
    ],
    "auth_error": [
        "Authentication/authorization issues",
        "Check API credentials and permissions",
    ],
    "no_data": [
        "No data available from source",
        "Verify data source configuration and data availability",
    ],
    "connection_refused": [
        "Connection refused by target server",
        "Check if service is down or network issues",
    ],
    "unknown": [
        "Unknown error pattern - manual investigation needed",
    ],
}

DEPENDENCY_RECOMMENDATIONS = {
    BEHAVIORAL_ANALYTICS: "Verify RUM is configured for the domain and a domain key exists",
    SEARCH_CONSOLE_LINK: "Connect the site's Google Search Console property",
    TOP_PAGES_IMPORT: "Run the top pages import for the site",
    CONTENT_SCRAPE: "Trigger a scrape of the site's top pages",
}


def categorize_failure(reason: str | None) -> str:
    message = (reason or "").lower()
    if not message:
        return "unknown"
    for category, keywords in FAILURE_CATEGORIES:
        if any(k in message for k in keywords):
            return category
    if "connection" in message and "refused" in message:
        return "connection_refused"
    return "unknown"


def failure_recommendations(reason: str | None) -> list[str]:
    return list(FAILURE_RECOMMENDATIONS[categorize_failure(reason)])


def dependency_recommendations(kinds: Iterable[str]) -> list[str]:
    return [
        DEPENDENCY_RECOMMENDATIONS.get(kind, f"Check the {kind} dependency")
        for kind in sorted(set(kinds or []))
    ]
