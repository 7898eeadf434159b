"""
notifications.py - Operator notification text and best-effort delivery.

Delivery goes through an injected channel; a failed post is logged and
reported in the returned NotificationOutcome, never raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import config
from dependency_map import DEPENDENCY_LABELS, opportunity_title

logger = logging.getLogger(__name__)

OK_MARK = ":white_check_mark:"
FAIL_MARK = ":cross-x:"
SAMPLE_URL_LIMIT = 3

HTTP_STATUS_LABELS = {
    "401": "Unauthorized",
    "403": "Forbidden",
    "404": "Not Found",
    "429": "Too Many Requests",
    "500": "Internal Server Error",
    "502": "Bad Gateway",
    "503": "Service Unavailable",
    "504": "Gateway Timeout",
}

BLOCKER_LABELS = {
    "cloudflare": "Cloudflare",
    "imperva": "Imperva",
    "akamai": "Akamai",
    "datadome": "DataDome",
    "perimeterx": "PerimeterX",
    "fastly": "Fastly",
    "aws-waf": "AWS WAF",
    "recaptcha": "reCAPTCHA",
    "hcaptcha": "hCaptcha",
}

CAUSE_LABELS = {
    "AUDIT_NOT_EXECUTED": "audit not executed",
    "DEPENDENCY_UNMET": "dependency unmet",
    "AUDIT_FAILED": "audit failed",
    "NO_ISSUES_FOUND": "audit ran, no issues found",
}


class NotificationChannel(Protocol):
    def post(self, channel_context: Any, text: str) -> None: ...


@dataclass(frozen=True)
class NotificationOutcome:
    attempted: bool
    sent: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"attempted": self.attempted, "sent": self.sent, "error": self.error}


NOT_ATTEMPTED = NotificationOutcome(attempted=False)


class LogChannel:
    """Channel that writes messages to the log instead of a chat service."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def post(self, channel_context: Any, text: str) -> None:
        self.log.info(f"[NOTIFY {channel_context or '-'}]\n{text}")


def notify(channel: NotificationChannel | None, channel_context: Any, text: str) -> NotificationOutcome:
    if channel is None or not text:
        return NOT_ATTEMPTED
    try:
        channel.post(channel_context, text)
    except Exception as e:
        logger.error(f"Error sending notification: {e}")
        return NotificationOutcome(attempted=True, sent=False, error=str(e))
    return NotificationOutcome(attempted=True, sent=True)


def format_http_status(status: Any) -> str:
    code = str(status or "").strip()
    if not code:
        return "Unknown status"
    label = HTTP_STATUS_LABELS.get(code)
    return f"{code} {label}" if label else code


def format_blocker_type(blocker_type: Any) -> str:
    key = str(blocker_type or "").strip().lower()
    if not key:
        return "Unknown blocker"
    if key in BLOCKER_LABELS:
        return BLOCKER_LABELS[key]
    return " ".join(part.capitalize() for part in key.replace("_", "-").split("-") if part)


def parse_allowlist_ips(raw: str | None) -> list[str]:
    return [ip.strip() for ip in (raw or "").split(",") if ip.strip()]


def url_confidence(url: Mapping[str, Any]) -> float:
    """Blocked-URL confidence as a float; missing or non-numeric values count as 0."""
    try:
        return float(url.get("confidence") or 0)
    except (TypeError, ValueError):
        return 0.0


def _plural(count: int) -> str:
    return "URL" if count == 1 else "URLs"


def _breakdown(counts: Mapping[str, int], label_fn) -> str:
    lines = [
        f"  • {label_fn(key)}: {count} {_plural(count)}"
        for key, count in sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0])))
    ]
    return "\n".join(lines)


def format_bot_protection_message(
    site_url: str,
    report: Any,
    allowlist_ips: list[str] | None = None,
    allowlist_user_agent: str | None = None,
) -> str:
    """Alert text for an AggregatedBotProtectionReport."""
    total = int(report.total_blocked)
    total_urls = int(report.total_urls_in_job)
    percentage = f"{(total / total_urls) * 100:.0f}%" if total_urls else "n/a"
    allowlist_ips = allowlist_ips if allowlist_ips is not None else parse_allowlist_ips(config.BOT_IPS)
    allowlist_user_agent = allowlist_user_agent or config.BOT_USER_AGENT

    samples = sorted(report.sample_urls, key=lambda u: -url_confidence(u))[:SAMPLE_URL_LIMIT]
    sample_lines = []
    for u in samples:
        confidence_label = " (high confidence)" if url_confidence(u) >= config.HIGH_CONFIDENCE_THRESHOLD else ""
        sample_lines.append(
            f"  • {u.get('url')}\n"
            f"    {format_http_status(u.get('httpStatus'))} · {format_blocker_type(u.get('blockerType'))}{confidence_label}"
        )

    lines = [":warning: *Bot Protection Detected*", ""]
    summary = f"*Summary:* {total} of {total_urls} URLs ({percentage}) are blocked"
    if report.is_partial:
        summary += " _(partial: scraping still in progress)_"
    lines += [summary, ""]
    lines += [
        "*Detection Statistics*",
        f"• *Total Blocked:* {total} URLs",
        f"• *High Confidence:* {report.high_confidence_count} URLs",
        f"• *Jobs:* {len(report.job_details)}",
        "",
        "*By HTTP Status:*",
        _breakdown(report.by_http_status, format_http_status) or "  • No status data available",
        "",
        "*By Blocker Type:*",
        _breakdown(report.by_blocker_type, format_blocker_type) or "  • No blocker data available",
        "",
        "*Sample Blocked URLs*",
        "\n".join(sample_lines) or "  • No URL details available",
    ]
    if total > SAMPLE_URL_LIMIT:
        lines.append(f"  ... and {total - SAMPLE_URL_LIMIT} more URLs")

    lines += [
        "",
        "*How to Resolve*",
        "Allowlist the audit bot in your CDN/WAF:",
        "",
        "*User-Agent:*",
        f"  • `{allowlist_user_agent}`",
        "",
        "*IP Addresses:*",
        "\n".join(f"  • `{ip}`" for ip in allowlist_ips) or "  • No IPs configured",
        "",
        f"*Site:* {site_url}",
        "",
        ":bulb: _After allowlisting, re-run onboarding or trigger a new scrape._",
    ]
    return "\n".join(lines)


def format_status_message(report: Mapping[str, Any]) -> str:
    """Status text for a run_opportunity_status() report."""
    lines = [f"{OK_MARK} *Data Sources & Opportunities status for site {report.get('site_url') or report.get('site_id')}*:"]

    services = report.get("services") or {}
    for kind in sorted(services):
        mark = OK_MARK if services[kind].get("available") else FAIL_MARK
        lines.append(f"{DEPENDENCY_LABELS.get(kind, kind)} {mark}")

    for item in report.get("opportunities") or []:
        mark = OK_MARK if item.get("has_suggestions") else FAIL_MARK
        lines.append(f"{item.get('title') or opportunity_title(item.get('type', ''))} {mark}")

    issues = [
        f"{DEPENDENCY_LABELS.get(kind, kind)} not available"
        for kind in sorted(services)
        if not services[kind].get("available")
    ]
    if issues:
        lines.append(f":warning: *Data Source Issues:* {', '.join(issues)}")

    diagnoses = report.get("diagnoses") or []
    if diagnoses:
        lines.append("*Missing opportunities:*")
    for d in diagnoses:
        line = f"• {opportunity_title(d['opportunity'])} ({d['audit']}): {CAUSE_LABELS.get(d['cause'], d['cause'])}"
        evidence = d.get("evidence")
        if isinstance(evidence, list) and evidence:
            line += f" [{', '.join(DEPENDENCY_LABELS.get(e, e) for e in evidence)}]"
        elif evidence:
            line += f": {evidence}"
        lines.append(line)

    return "\n".join(lines)
