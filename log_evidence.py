"""
log_evidence.py - Audit execution evidence from the audit worker log stream.

Usage:
    evidence = execution_status(event_log, "cwv", site_id, run_start_ms)
    evidence.executed, evidence.failure_reason
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import config

logger = logging.getLogger(__name__)

# Lazy match up to the first " at " (stack frame) or the end of the message.
REASON_PATTERN = re.compile(r"Reason:\s*(.+?)(?:\s+at\s|\Z)", re.DOTALL)


class EventLogQueryService(Protocol):
    def search(self, log_group: str, pattern: str, start_time_ms: int, end_time_ms: int) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class LogEvidence:
    executed: bool
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"executed": self.executed, "failure_reason": self.failure_reason}


NO_EVIDENCE = LogEvidence(executed=False, failure_reason=None)


def _now_ms() -> int:
    return int(time.time() * 1000)


def search_window_start(
    run_start_ms: int | None,
    buffer_ms: int,
    now_ms: int | None = None,
) -> int:
    """run_start - buffer, or the last FALLBACK_WINDOW_MS when no run start is known."""
    if run_start_ms:
        return int(run_start_ms) - buffer_ms
    return (now_ms if now_ms is not None else _now_ms()) - config.FALLBACK_WINDOW_MS


def execution_pattern(audit_type: str, site_id: str) -> str:
    return f'"Received {audit_type} audit request for: {site_id}"'


def failure_pattern(audit_type: str, site_id: str) -> str:
    return f'"{audit_type} audit for {site_id} failed"'


def extract_failure_reason(message: str) -> str:
    """Text after "Reason:" up to the next " at ", else the raw message."""
    message = message or ""
    match = REASON_PATTERN.search(message)
    if match and match.group(1):
        return match.group(1).strip()
    return message.strip()


def execution_status(
    event_log: EventLogQueryService,
    audit_type: str,
    site_id: str,
    run_start_ms: int | None,
    log_group: str = config.AUDIT_WORKER_LOG_GROUP,
    execution_buffer_ms: int = config.EXECUTION_BUFFER_MS,
    failure_buffer_ms: int = config.FAILURE_BUFFER_MS,
    clock: Callable[[], int] = _now_ms,
) -> LogEvidence:
    """
    Looks for the "audit received" marker and, only if found, the "audit failed" marker.
    Any search failure degrades to no evidence.
    """
    try:
        now = clock()
        started = event_log.search(
            log_group,
            execution_pattern(audit_type, site_id),
            search_window_start(run_start_ms, execution_buffer_ms, now),
            now,
        ) or []
        if not started:
            logger.info(f"No execution marker for {audit_type} audit on site {site_id}")
            return NO_EVIDENCE

        failed = event_log.search(
            log_group,
            failure_pattern(audit_type, site_id),
            search_window_start(run_start_ms, failure_buffer_ms, now),
            clock(),
        ) or []
    except Exception as e:
        logger.error(f"Error getting audit status for {audit_type}: {e}")
        return NO_EVIDENCE

    if not failed:
        return LogEvidence(executed=True)

    event = failed[0]
    message = event.get("message") if isinstance(event, dict) else event
    reason = extract_failure_reason(str(message or ""))
    logger.info(f"{audit_type} audit for {site_id} failed: {reason}")
    return LogEvidence(executed=True, failure_reason=reason)
