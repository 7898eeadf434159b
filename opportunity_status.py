"""
opportunity_status.py - Opportunity readiness report for one site.

Flow:
  1) expected opportunity types from the declared audits
  2) probe only the services those types require (site URL resolved first if needed)
  3) reconcile expected against recorded opportunities
  4) root-cause diagnosis of the missing subset (only when a run start is known)
  5) bot-protection aggregation over the supplied scrape jobs (independent of 3-4)
  6) best-effort status notification

Nothing here raises in normal operation; the result dict carries a `status`
field of "ok", "not_found" or "error".
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Protocol

import config
from bot_protection import NO_JOBS, check_bot_protection
from dependency_map import DEFAULT_GRAPH, DependencyGraph, expected_opportunities, opportunity_title, required_dependencies
from fanout import run_concurrently
from log_evidence import EventLogQueryService
from notifications import NOT_ATTEMPTED, NotificationChannel, format_status_message, notify
from reconcile import dedupe_by_type, reconcile
from root_cause import analyze_missing
from service_probes import (
    URL_DEPENDENT_KINDS,
    BehavioralAnalyticsClient,
    ScrapeJobStore,
    SearchConsoleClient,
    TopPagesStore,
    default_probes,
    probe_services,
    resolve_target,
)
from site_url import resolve_canonical_url

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"


class OpportunityStore(Protocol):
    def find_site(self, site_id: str) -> Any: ...

    def find_opportunities(self, site_id: str) -> list[Any]: ...

    def find_suggestions(self, opportunity_id: str) -> list[Any]: ...


@dataclass
class Collaborators:
    opportunities: OpportunityStore
    event_log: EventLogQueryService | None = None
    analytics: BehavioralAnalyticsClient | None = None
    search_console: SearchConsoleClient | None = None
    top_pages: TopPagesStore | None = None
    scrape_jobs: ScrapeJobStore | None = None
    channel: NotificationChannel | None = None


class _Deadline:
    def __init__(self, seconds: float | None):
        self.expires = None if seconds is None else time.monotonic() + seconds

    def remaining(self, cap: float | None) -> float | None:
        if self.expires is None:
            return cap
        left = max(0.0, self.expires - time.monotonic())
        return left if cap is None else min(cap, left)

    @property
    def exceeded(self) -> bool:
        return self.expires is not None and time.monotonic() >= self.expires


@dataclass(frozen=True)
class _LookupFailed:
    reason: str


def _bounded_lookup(name: str, fn: Callable[[], Any], timeout: float | None) -> Any:
    """fn() under `timeout`; a raise or a timeout comes back as _LookupFailed."""
    return run_concurrently({name: fn}, timeout, lambda key, reason: _LookupFailed(reason))[name]


def _field(record: Any, *names: str) -> Any:
    for name in names:
        value = record.get(name) if isinstance(record, Mapping) else getattr(record, name, None)
        if value not in (None, ""):
            return value
    return None


def _suggestion_status(
    store: OpportunityStore,
    records: Mapping[str, Any],
    timeout: float | None,
) -> dict[str, bool | None]:
    tasks: dict[str, Callable[[], bool | None]] = {}
    for opportunity_type, record in records.items():
        opportunity_id = _field(record, "id", "opportunity_id", "opportunityId")
        if opportunity_id is None:
            continue
        tasks[opportunity_type] = lambda opportunity_id=opportunity_id: bool(store.find_suggestions(str(opportunity_id)))

    def _unknown(opportunity_type: str, reason: str) -> None:
        logger.warning(f"Suggestion lookup for {opportunity_type} failed: {reason}")
        return None

    status: dict[str, bool | None] = {t: None for t in records}
    status.update(run_concurrently(tasks, timeout, _unknown))
    return status


def _listing(
    records: Mapping[str, Any],
    suggestions: Mapping[str, bool | None],
    expected: frozenset[str],
    restrict: bool,
) -> tuple[list[dict[str, Any]], list[str]]:
    listed, unexpected = [], []
    for opportunity_type in sorted(records):
        if restrict and opportunity_type not in expected:
            unexpected.append(opportunity_type)
            continue
        listed.append({
            "type": opportunity_type,
            "id": _field(records[opportunity_type], "id", "opportunity_id", "opportunityId"),
            "title": opportunity_title(opportunity_type),
            "has_suggestions": suggestions.get(opportunity_type),
        })
    return listed, unexpected


def run_opportunity_status(
    site_id: str,
    audit_types: Iterable[str],
    collaborators: Collaborators,
    *,
    site_url: str | None = None,
    run_start_ms: int | None = None,
    scrape_job_ids: Iterable[str] | None = None,
    channel_context: Any = None,
    graph: DependencyGraph = DEFAULT_GRAPH,
    deadline_s: float | None = config.DIAGNOSIS_DEADLINE_SECONDS,
    probe_timeout: float | None = config.PROBE_TIMEOUT_SECONDS,
    url_resolver: Callable[[str], str] = resolve_canonical_url,
    **correlator_options: Any,
) -> dict[str, Any]:
    """
    Readiness report for `site_id`.

    `correlator_options` are passed through to log_evidence.execution_status
    (log_group, execution_buffer_ms, failure_buffer_ms, clock).
    """
    deadline = _Deadline(deadline_s)
    store = collaborators.opportunities

    site = _bounded_lookup("find_site", lambda: store.find_site(site_id), deadline.remaining(probe_timeout))
    if isinstance(site, _LookupFailed):
        logger.error(f"Site lookup failed for {site_id}: {site.reason}")
        return {"status": STATUS_ERROR, "site_id": site_id, "error": site.reason}
    if not site:
        logger.warning(f"Site not found: {site_id}")
        return {"status": STATUS_NOT_FOUND, "site_id": site_id}

    base_url = site_url or _field(site, "baseUrl", "base_url")
    declared = sorted({a for a in audit_types or [] if a})
    expected = expected_opportunities(declared, graph)
    required = required_dependencies(expected.opportunity_types, graph)
    logger.info(
        f"Site {site_id}: {len(declared)} audit(s), {len(expected.opportunity_types)} expected "
        f"opportunity type(s), required dependencies {sorted(required)}"
    )

    # 1) services
    target = resolve_target(
        site_id,
        base_url,
        needs_resolution=bool(required & URL_DEPENDENT_KINDS),
        resolver=url_resolver,
        timeout=deadline.remaining(probe_timeout),
    )
    probes = default_probes(
        collaborators.analytics,
        collaborators.search_console,
        collaborators.top_pages,
        collaborators.scrape_jobs,
    )
    status = probe_services(required, target, probes, timeout=deadline.remaining(probe_timeout))

    # 2) reconciliation
    actual_records = _bounded_lookup(
        "find_opportunities", lambda: store.find_opportunities(site_id), deadline.remaining(probe_timeout)
    )
    lookup_failed = isinstance(actual_records, _LookupFailed)
    if lookup_failed:
        logger.error(f"Opportunity lookup failed for {site_id}: {actual_records.reason}")

    records = dedupe_by_type([] if lookup_failed else actual_records or [])
    result = reconcile(expected.opportunity_types, records.keys())
    suggestions = _suggestion_status(store, records, deadline.remaining(probe_timeout))
    listed, unexpected = _listing(
        records,
        suggestions,
        expected.opportunity_types,
        restrict=not expected.has_unknown_audit_types,
    )
    logger.info(f"Site {site_id}: {len(result.present)} present, {len(result.missing)} missing opportunity type(s)")

    # 3) root cause
    diagnoses = None
    if run_start_ms and result.missing:
        if collaborators.event_log is None:
            logger.warning("No event log service configured; skipping root-cause analysis")
        else:
            diagnoses = analyze_missing(
                result.missing,
                declared,
                site_id,
                run_start_ms,
                status,
                collaborators.event_log,
                graph,
                timeout=deadline.remaining(probe_timeout),
                **correlator_options,
            )
    elif result.missing:
        logger.info("No run start timestamp; skipping root-cause analysis")

    # 4) bot protection
    job_ids = list(scrape_job_ids or [])
    if status.scrape_job_id:
        job_ids.append(status.scrape_job_id)
    bot = NO_JOBS
    if job_ids and collaborators.scrape_jobs is not None:
        bot = check_bot_protection(
            job_ids,
            collaborators.scrape_jobs,
            collaborators.channel,
            channel_context,
            site_url=target.resolved_url or base_url,
            timeout=deadline.remaining(probe_timeout),
        )

    report: dict[str, Any] = {
        "status": STATUS_OK,
        "site_id": site_id,
        "site_url": target.resolved_url or base_url,
        "audit_types": declared,
        "unknown_audit_types": sorted(expected.unknown_audit_types),
        "expected": sorted(expected.opportunity_types),
        "present": sorted(result.present),
        "missing": sorted(result.missing),
        "opportunities": listed,
        "unexpected": unexpected,
        "services": status.to_dict(),
        "diagnoses": [d.to_dict() for d in diagnoses] if diagnoses is not None else None,
        "bot_protection": bot.to_dict(),
        "deadline_exceeded": deadline.exceeded,
    }
    if lookup_failed:
        report["opportunity_lookup_failed"] = True

    # 5) notify
    notification = NOT_ATTEMPTED
    if collaborators.channel is not None:
        notification = notify(collaborators.channel, channel_context, format_status_message(report))
    report["notification"] = notification.to_dict()
    return report
