"""
root_cause.py - Ordered root-cause attribution for missing opportunities.

Rules are evaluated in this order; the first match wins:
    1. AUDIT_NOT_EXECUTED  no "audit received" marker in the run window
    2. DEPENDENCY_UNMET    a required upstream was unavailable (evidence: unmet kinds)
    3. AUDIT_FAILED        a failure marker was logged (evidence: the reason)
    4. NO_ISSUES_FOUND     the audit ran cleanly and simply found nothing

NO_ISSUES_FOUND is not a fault and is reported separately from the others.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import config
from dependency_map import DEFAULT_GRAPH, DependencyGraph, audits_for_opportunity, dependencies_for_opportunity
from failure_patterns import categorize_failure, dependency_recommendations, failure_recommendations
from fanout import run_concurrently
from log_evidence import NO_EVIDENCE, EventLogQueryService, LogEvidence, execution_status
from service_probes import ServiceStatus

logger = logging.getLogger(__name__)

AUDIT_NOT_EXECUTED = "AUDIT_NOT_EXECUTED"
DEPENDENCY_UNMET = "DEPENDENCY_UNMET"
AUDIT_FAILED = "AUDIT_FAILED"
NO_ISSUES_FOUND = "NO_ISSUES_FOUND"

CAUSES = (AUDIT_NOT_EXECUTED, DEPENDENCY_UNMET, AUDIT_FAILED, NO_ISSUES_FOUND)


@dataclass(frozen=True)
class Diagnosis:
    opportunity_type: str
    related_audit: str
    cause: str
    evidence: Any = None
    category: str | None = None
    recommendations: tuple[str, ...] = ()

    @property
    def is_fault(self) -> bool:
        return self.cause != NO_ISSUES_FOUND

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "opportunity": self.opportunity_type,
            "audit": self.related_audit,
            "cause": self.cause,
        }
        if self.evidence is not None:
            out["evidence"] = list(self.evidence) if isinstance(self.evidence, tuple) else self.evidence
        if self.category:
            out["category"] = self.category
        if self.recommendations:
            out["recommendations"] = list(self.recommendations)
        return out


def diagnose(
    opportunity_type: str,
    related_audit: str,
    evidence: LogEvidence,
    status: ServiceStatus,
    graph: DependencyGraph = DEFAULT_GRAPH,
) -> Diagnosis:
    if not evidence.executed:
        return Diagnosis(opportunity_type, related_audit, AUDIT_NOT_EXECUTED)

    unmet = status.unmet(dependencies_for_opportunity(opportunity_type, graph))
    if unmet:
        return Diagnosis(
            opportunity_type,
            related_audit,
            DEPENDENCY_UNMET,
            evidence=tuple(unmet),
            recommendations=tuple(dependency_recommendations(unmet)),
        )

    if evidence.failure_reason is not None:
        return Diagnosis(
            opportunity_type,
            related_audit,
            AUDIT_FAILED,
            evidence=evidence.failure_reason,
            category=categorize_failure(evidence.failure_reason),
            recommendations=tuple(failure_recommendations(evidence.failure_reason)),
        )

    return Diagnosis(opportunity_type, related_audit, NO_ISSUES_FOUND)


def diagnosis_pairs(
    missing: Iterable[str],
    declared_audits: Iterable[str],
    graph: DependencyGraph = DEFAULT_GRAPH,
) -> list[tuple[str, str]]:
    """(opportunity, audit) for every declared audit able to produce a missing opportunity."""
    declared = set(declared_audits or [])
    pairs: list[tuple[str, str]] = []
    for opportunity_type in sorted(set(missing or [])):
        related = [a for a in audits_for_opportunity(opportunity_type, graph) if a in declared]
        if not related:
            logger.debug(f"No declared audit produces {opportunity_type}; skipping diagnosis")
            continue
        pairs.extend((opportunity_type, audit) for audit in related)
    return pairs


def analyze_missing(
    missing: Iterable[str],
    declared_audits: Iterable[str],
    site_id: str,
    run_start_ms: int | None,
    status: ServiceStatus,
    event_log: EventLogQueryService,
    graph: DependencyGraph = DEFAULT_GRAPH,
    timeout: float | None = config.PROBE_TIMEOUT_SECONDS,
    evidence_lookup: Callable[..., LogEvidence] = execution_status,
    **correlator_options: Any,
) -> list[Diagnosis]:
    """
    One Diagnosis per (missing opportunity, related declared audit).

    Evidence is gathered concurrently, once per audit type. Lookups that do not
    finish within `timeout` count as no evidence.
    """
    pairs = diagnosis_pairs(missing, declared_audits, graph)
    if not pairs:
        return []

    tasks = {
        audit: (lambda audit=audit: evidence_lookup(event_log, audit, site_id, run_start_ms, **correlator_options))
        for audit in sorted({audit for _, audit in pairs})
    }

    def _no_evidence(audit: str, reason: str) -> LogEvidence:
        logger.warning(f"Execution evidence for {audit} unavailable: {reason}")
        return NO_EVIDENCE

    evidence = run_concurrently(tasks, timeout, _no_evidence)

    diagnoses = [
        diagnose(opportunity_type, audit, evidence.get(audit, NO_EVIDENCE), status, graph)
        for opportunity_type, audit in pairs
    ]
    for d in diagnoses:
        logger.info(f"Diagnosis for {d.opportunity_type} ({d.related_audit}): {d.cause}")
    return diagnoses
