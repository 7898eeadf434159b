"""
bot_protection.py - Scrape jobs aborted by automated-traffic blocking.

Usage:
    check = check_bot_protection(["job-1", "job-2"], scrape_store, channel, ctx, site_url)
    check.report        # AggregatedBotProtectionReport or None ("no evidence")
    check.notification  # NotificationOutcome, kept apart from the report
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import config
from fanout import run_concurrently
from notifications import (
    NOT_ATTEMPTED,
    NotificationChannel,
    NotificationOutcome,
    format_bot_protection_message,
    notify,
    url_confidence,
)
from service_probes import ScrapeJobStore

logger = logging.getLogger(__name__)

BOT_PROTECTION_REASON = "bot-protection"
TERMINAL_STATUSES = frozenset({"COMPLETE", "FAILED", "STOPPED"})


@dataclass(frozen=True)
class BotProtectionRecord:
    job_id: str
    total_blocked: int
    total_urls_in_job: int
    by_http_status: dict[str, int] = field(default_factory=dict)
    by_blocker_type: dict[str, int] = field(default_factory=dict)
    sample_urls: list[dict[str, Any]] = field(default_factory=list)
    high_confidence_count: int = 0
    is_partial: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "total_blocked": self.total_blocked,
            "total_urls_in_job": self.total_urls_in_job,
            "by_http_status": dict(self.by_http_status),
            "by_blocker_type": dict(self.by_blocker_type),
            "sample_urls": list(self.sample_urls),
            "high_confidence_count": self.high_confidence_count,
            "is_partial": self.is_partial,
        }


@dataclass(frozen=True)
class AggregatedBotProtectionReport:
    total_blocked: int
    total_urls_in_job: int
    by_http_status: dict[str, int]
    by_blocker_type: dict[str, int]
    sample_urls: list[dict[str, Any]]
    high_confidence_count: int
    is_partial: bool
    job_details: list[BotProtectionRecord]

    @property
    def blocked_percentage(self) -> float:
        if not self.total_urls_in_job:
            return 0.0
        return round(self.total_blocked / self.total_urls_in_job * 100, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_blocked": self.total_blocked,
            "total_urls_in_job": self.total_urls_in_job,
            "blocked_percentage": self.blocked_percentage,
            "by_http_status": dict(self.by_http_status),
            "by_blocker_type": dict(self.by_blocker_type),
            "sample_urls": list(self.sample_urls),
            "high_confidence_count": self.high_confidence_count,
            "is_partial": self.is_partial,
            "job_details": [r.to_dict() for r in self.job_details],
        }


@dataclass(frozen=True)
class BotProtectionCheck:
    report: AggregatedBotProtectionReport | None
    notification: NotificationOutcome = NOT_ATTEMPTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "report": self.report.to_dict() if self.report else None,
            "notification": self.notification.to_dict(),
        }


NO_JOBS = BotProtectionCheck(report=None)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _counts(raw: Any) -> dict[str, int]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): _as_int(v) for k, v in raw.items()}


def convert_abort_info(job_id: str, abort_info: Any, status: str | None) -> BotProtectionRecord | None:
    """
    BotProtectionRecord for a bot-protection abortInfo, else None.

    A record needs at least one blocked URL; partial iff `status` is not terminal.
    """
    if not isinstance(abort_info, Mapping) or abort_info.get("reason") != BOT_PROTECTION_REASON:
        return None
    details = abort_info.get("details")
    if not isinstance(details, Mapping):
        return None

    total_blocked = _as_int(details.get("blockedUrlsCount"))
    if total_blocked <= 0:
        return None

    urls = [u for u in details.get("blockedUrls") or [] if isinstance(u, Mapping)]
    high_confidence = sum(
        1 for u in urls if url_confidence(u) >= config.HIGH_CONFIDENCE_THRESHOLD
    )
    return BotProtectionRecord(
        job_id=job_id,
        total_blocked=total_blocked,
        total_urls_in_job=_as_int(details.get("totalUrlsCount")),
        by_http_status=_counts(details.get("byHttpStatus")),
        by_blocker_type=_counts(details.get("byBlockerType")),
        sample_urls=[dict(u) for u in urls],
        high_confidence_count=high_confidence,
        is_partial=(status or "").upper() not in TERMINAL_STATUSES,
    )


def check_job(store: ScrapeJobStore, job_id: str) -> BotProtectionRecord | None:
    try:
        job = store.job_status(job_id)
    except Exception as e:
        logger.error(f"Failed to get bot protection stats from scrape job: jobId={job_id}, error={e}")
        return None

    if not job:
        logger.debug(f"Job not found: jobId={job_id}")
        return None

    abort_info = job.get("abortInfo") or job.get("abort_info")
    details = abort_info.get("details") if isinstance(abort_info, Mapping) else None
    logger.info(
        f"[BOT-CHECK] AbortInfo for jobId={job_id}: "
        f"hasAbortInfo={bool(abort_info)}, "
        f"reason={abort_info.get('reason') if isinstance(abort_info, Mapping) else 'none'}, "
        f"blockedUrlsCount={_as_int(details.get('blockedUrlsCount')) if isinstance(details, Mapping) else 0}"
    )

    record = convert_abort_info(job_id, abort_info, job.get("status"))
    if record is None:
        logger.debug(f"No bot protection found: jobId={job_id}")
        return None

    logger.info(
        f"[BOT-BLOCKED] Bot protection detected: jobId={job_id}, "
        f"blockedUrls={record.total_blocked}, totalUrlsInJob={record.total_urls_in_job}, "
        f"isPartial={record.is_partial}"
    )
    return record


def _merge_counts(target: dict[str, int], counts: Mapping[str, int]) -> None:
    for key, count in counts.items():
        target[key] = target.get(key, 0) + count


def aggregate_records(records: Iterable[BotProtectionRecord | None]) -> AggregatedBotProtectionReport | None:
    """Sums counts, merges breakdowns and concatenates URLs; None when there is nothing to sum."""
    kept = [r for r in records or [] if r is not None]
    if not kept:
        return None

    by_http_status: dict[str, int] = {}
    by_blocker_type: dict[str, int] = {}
    sample_urls: list[dict[str, Any]] = []
    for r in kept:
        _merge_counts(by_http_status, r.by_http_status)
        _merge_counts(by_blocker_type, r.by_blocker_type)
        sample_urls.extend(r.sample_urls)

    return AggregatedBotProtectionReport(
        total_blocked=sum(r.total_blocked for r in kept),
        total_urls_in_job=sum(r.total_urls_in_job for r in kept),
        by_http_status=by_http_status,
        by_blocker_type=by_blocker_type,
        sample_urls=sample_urls,
        high_confidence_count=sum(r.high_confidence_count for r in kept),
        is_partial=any(r.is_partial for r in kept),
        job_details=kept,
    )


def unique_job_ids(job_ids: Iterable[Any]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for job_id in job_ids or []:
        if not job_id or str(job_id) in seen:
            continue
        seen.add(str(job_id))
        ordered.append(str(job_id))
    return ordered


def check_bot_protection(
    job_ids: Iterable[Any],
    store: ScrapeJobStore,
    channel: NotificationChannel | None = None,
    channel_context: Any = None,
    site_url: str | None = None,
    timeout: float | None = config.PROBE_TIMEOUT_SECONDS,
) -> BotProtectionCheck:
    """
    Checks every job concurrently and aggregates the ones that were blocked.

    Jobs whose lookup fails or times out contribute no record. A notification is
    attempted only when blocking was found.
    """
    ids = unique_job_ids(job_ids)
    if not ids:
        logger.warning("No jobId(s) provided for bot protection check")
        return NO_JOBS

    tasks = {job_id: (lambda job_id=job_id: check_job(store, job_id)) for job_id in ids}

    def _no_record(job_id: str, reason: str) -> None:
        logger.warning(f"Bot protection check for jobId={job_id} did not complete: {reason}")
        return None

    results = run_concurrently(tasks, timeout, _no_record)
    report = aggregate_records(results.get(job_id) for job_id in ids)
    if report is None:
        logger.debug(f"No bot protection found across {len(ids)} jobId(s)")
        return BotProtectionCheck(report=None)

    logger.info(
        f"[BOT-BLOCKED] Bot protection detected across {len(report.job_details)}/{len(ids)} jobId(s): "
        f"blockedUrls={report.total_blocked}, totalUrlsInJob={report.total_urls_in_job}, "
        f"isPartial={report.is_partial}"
    )

    outcome = NOT_ATTEMPTED
    if channel is not None:
        text = format_bot_protection_message(site_url or "", report)
        outcome = notify(channel, channel_context, text)
        if outcome.sent:
            logger.info(f"[BOT-BLOCKED] Alert sent for {site_url}")
    return BotProtectionCheck(report=report, notification=outcome)
