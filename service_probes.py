"""
service_probes.py - Upstream availability checks.

One probe per dependency kind. Every probe returns Available or Unavailable
and never raises; transport and auth failures are logged as signals.

Usage:
    probes = default_probes(rum_client, gsc_client, top_pages_store, scrape_store)
    status = probe_services(required, ProbeTarget(site_id, base_url), probes)
    status.is_available("BehavioralAnalytics")
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Protocol, Union

import config
from dependency_map import (
    BEHAVIORAL_ANALYTICS,
    CONTENT_SCRAPE,
    SEARCH_CONSOLE_LINK,
    TOP_PAGES_IMPORT,
)
from fanout import run_concurrently
from site_url import SiteUrlError, hostname, resolve_canonical_url

logger = logging.getLogger(__name__)

COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class Available:
    detail: str = ""
    job_id: str | None = None

    available = True

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"available": True, "detail": self.detail}
        if self.job_id:
            out["job_id"] = self.job_id
        return out


@dataclass(frozen=True)
class Unavailable:
    reason: str
    job_id: str | None = None

    available = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"available": False, "reason": self.reason}
        if self.job_id:
            out["job_id"] = self.job_id
        return out


ProbeResult = Union[Available, Unavailable]


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------
class BehavioralAnalyticsClient(Protocol):
    def domain_key(self, domain: str) -> str: ...


class SearchConsoleClient(Protocol):
    def list_linked_sites(self, url: str) -> list[Any]: ...


class TopPagesStore(Protocol):
    def top_pages(self, site_id: str, source: str, geo: str) -> list[Any]: ...


class ScrapeJobStore(Protocol):
    def jobs_for_base_url(self, url: str) -> list[dict[str, Any]]: ...

    def url_results(self, job_id: str) -> list[dict[str, Any]]: ...

    def job_status(self, job_id: str) -> dict[str, Any] | None: ...


@dataclass(frozen=True)
class ProbeTarget:
    site_id: str
    base_url: str | None = None
    resolved_url: str | None = None
    url_error: str | None = None


class Probe(Protocol):
    kind: str

    def check(self, target: ProbeTarget) -> ProbeResult: ...


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------
def _url_problem(target: ProbeTarget) -> Unavailable | None:
    if target.url_error:
        return Unavailable(f"site URL could not be resolved: {target.url_error}")
    if not (target.resolved_url or target.base_url):
        return Unavailable("no site URL")
    return None


class BehavioralAnalyticsProbe:
    kind = BEHAVIORAL_ANALYTICS

    def __init__(self, client: BehavioralAnalyticsClient):
        self.client = client

    def check(self, target: ProbeTarget) -> ProbeResult:
        problem = _url_problem(target)
        if problem:
            return problem
        domain = hostname(target.resolved_url or target.base_url or "")
        try:
            self.client.domain_key(domain)
        except Exception as e:
            logger.info(f"RUM is not available for domain: {domain}. Reason: {e}")
            return Unavailable(f"no domain key for {domain}: {e}")
        logger.info(f"RUM is available for domain: {domain}")
        return Available(f"domain key found for {domain}")


class SearchConsoleProbe:
    kind = SEARCH_CONSOLE_LINK

    def __init__(self, client: SearchConsoleClient):
        self.client = client

    def check(self, target: ProbeTarget) -> ProbeResult:
        problem = _url_problem(target)
        if problem:
            return problem
        url = target.resolved_url or target.base_url or ""
        try:
            sites = self.client.list_linked_sites(url) or []
        except Exception as e:
            logger.info(f"GSC is not configured for site {url}. Reason: {e}")
            return Unavailable(f"search console not configured: {e}")
        if not sites:
            logger.info(f"GSC configuration for site {url}: Not configured or not connected")
            return Unavailable("no linked search console properties")
        logger.info(f"GSC configuration for site {url}: Configured and connected")
        return Available(f"{len(sites)} linked search console properties")


class TopPagesProbe:
    kind = TOP_PAGES_IMPORT

    def __init__(self, store: TopPagesStore, source: str = config.TOP_PAGES_SOURCE, geo: str = config.TOP_PAGES_GEO):
        self.store = store
        self.source = source
        self.geo = geo

    def check(self, target: ProbeTarget) -> ProbeResult:
        try:
            pages = self.store.top_pages(target.site_id, self.source, self.geo) or []
        except Exception as e:
            logger.info(f"Top pages lookup failed for site {target.site_id}: {e}")
            return Unavailable(f"top pages lookup failed: {e}")
        logger.info(f"Top pages for site {target.site_id} ({self.source}/{self.geo}): {len(pages)}")
        if not pages:
            return Unavailable(f"no {self.source} top pages imported")
        return Available(f"{len(pages)} top pages")


def _first(record: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = record.get(name)
        if value not in (None, ""):
            return value
    return None


def job_timestamp_ms(job: Mapping[str, Any]) -> float:
    """startedAt (else createdAt) as epoch milliseconds; 0 when unparseable."""
    value = _first(job, "startedAt", "started_at", "createdAt", "created_at")
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if text.isdigit():
        return float(text)
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000
    except ValueError:
        return 0.0


def latest_job(jobs: Iterable[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    candidates = [j for j in jobs or [] if isinstance(j, Mapping) and j.get("id")]
    if not candidates:
        return None
    return max(candidates, key=job_timestamp_ms)


class ContentScrapeProbe:
    kind = CONTENT_SCRAPE

    def __init__(self, store: ScrapeJobStore):
        self.store = store

    def check(self, target: ProbeTarget) -> ProbeResult:
        if not target.base_url:
            return Unavailable("no site URL")
        try:
            job = latest_job(self.store.jobs_for_base_url(target.base_url))
            if job is None:
                logger.info(f"No scrape jobs found for {target.base_url}")
                return Unavailable("no scrape jobs")
            job_id = str(job["id"])
            results = self.store.url_results(job_id) or []
        except Exception as e:
            logger.info(f"Scrape job lookup failed for {target.base_url}: {e}")
            return Unavailable(f"scrape job lookup failed: {e}")

        completed = sum(1 for r in results if isinstance(r, Mapping) and r.get("status") == COMPLETE)
        logger.info(f"Scrape job {job_id} for {target.base_url}: {completed}/{len(results)} URLs complete")
        if completed == 0:
            return Unavailable(f"no completed URLs in scrape job {job_id}", job_id=job_id)
        return Available(f"{completed}/{len(results)} URLs scraped", job_id=job_id)


def default_probes(
    analytics: BehavioralAnalyticsClient | None = None,
    search_console: SearchConsoleClient | None = None,
    top_pages: TopPagesStore | None = None,
    scrape_jobs: ScrapeJobStore | None = None,
) -> dict[str, Probe]:
    probes: dict[str, Probe] = {}
    if analytics is not None:
        probes[BEHAVIORAL_ANALYTICS] = BehavioralAnalyticsProbe(analytics)
    if search_console is not None:
        probes[SEARCH_CONSOLE_LINK] = SearchConsoleProbe(search_console)
    if top_pages is not None:
        probes[TOP_PAGES_IMPORT] = TopPagesProbe(top_pages)
    if scrape_jobs is not None:
        probes[CONTENT_SCRAPE] = ContentScrapeProbe(scrape_jobs)
    return probes


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ServiceStatus:
    results: Mapping[str, ProbeResult]

    def is_available(self, kind: str) -> bool:
        result = self.results.get(kind)
        return bool(result is not None and result.available)

    def availability(self) -> dict[str, bool]:
        return {kind: self.is_available(kind) for kind in self.results}

    def unmet(self, kinds: Iterable[str]) -> list[str]:
        return sorted(kind for kind in kinds if not self.is_available(kind))

    @property
    def scrape_job_id(self) -> str | None:
        result = self.results.get(CONTENT_SCRAPE)
        return result.job_id if result is not None else None

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {kind: self.results[kind].to_dict() for kind in sorted(self.results)}


URL_DEPENDENT_KINDS = frozenset({BEHAVIORAL_ANALYTICS, SEARCH_CONSOLE_LINK})


def resolve_target(
    site_id: str,
    base_url: str | None,
    needs_resolution: bool,
    resolver: Callable[[str], str] = resolve_canonical_url,
    timeout: float | None = config.PROBE_TIMEOUT_SECONDS,
) -> ProbeTarget:
    if not base_url or not needs_resolution:
        return ProbeTarget(site_id, base_url)

    def _fallback(_key: str, reason: str) -> Any:
        return SiteUrlError(base_url, reason)

    def _resolve() -> Any:
        try:
            return resolver(base_url)
        except SiteUrlError as e:
            return e

    resolved = run_concurrently({"site-url": _resolve}, timeout, _fallback)["site-url"]
    if isinstance(resolved, SiteUrlError):
        logger.warning(f"Could not resolve canonical URL for {base_url}: {resolved.reason}")
        return ProbeTarget(site_id, base_url, url_error=resolved.reason)
    logger.info(f"Resolved URL: {resolved}")
    return ProbeTarget(site_id, base_url, resolved_url=resolved)


def probe_services(
    required: Iterable[str],
    target: ProbeTarget,
    probes: Mapping[str, Probe],
    timeout: float | None = config.PROBE_TIMEOUT_SECONDS,
) -> ServiceStatus:
    """
    Runs the probes for the required kinds concurrently, each bounded by `timeout`.
    Kinds that are not required are never probed.
    """
    results: dict[str, ProbeResult] = {}
    tasks: dict[str, Callable[[], ProbeResult]] = {}
    for kind in sorted(set(required or [])):
        probe = probes.get(kind)
        if probe is None:
            logger.warning(f"No probe configured for dependency {kind}; treating as unavailable")
            results[kind] = Unavailable("no probe configured")
            continue
        tasks[kind] = lambda probe=probe: probe.check(target)

    def _fallback(kind: str, reason: str) -> ProbeResult:
        logger.info(f"{kind} check did not complete: {reason}")
        return Unavailable(reason)

    results.update(run_concurrently(tasks, timeout, _fallback))
    return ServiceStatus(results)
