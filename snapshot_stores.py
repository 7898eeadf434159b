"""
snapshot_stores.py - In-memory collaborators backed by a JSON snapshot.

Snapshot layout (every key optional):
{
  "site": {"id": "...", "baseUrl": "https://example.com"},
  "opportunities": [{"id": "o1", "type": "cwv"}],
  "suggestions": {"o1": [{...}]},
  "top_pages": [{"url": "..."}],
  "analytics_domains": {"example.com": "domain-key"},
  "linked_sites": {"https://example.com": ["sc-domain:example.com"]},
  "scrape_jobs": [{"id": "j1", "baseUrl": "...", "startedAt": "...", "status": "COMPLETE", "abortInfo": {...}}],
  "url_results": {"j1": [{"url": "...", "status": "COMPLETE"}]},
  "log_events": [{"message": "...", "timestamp": 1700000000000}]
}
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from site_url import hostname


class SnapshotError(ValueError):
    pass


def load_snapshot(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise SnapshotError(f"Cannot read snapshot {p}: {e}") from e
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot {p} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SnapshotError(f"Snapshot {p} must contain a JSON object")
    return data


def _same_site(a: str, b: str) -> bool:
    return a.rstrip("/") == b.rstrip("/") or hostname(a) == hostname(b)


class SnapshotOpportunityStore:
    def __init__(self, data: dict[str, Any]):
        self.data = data

    def find_site(self, site_id: str) -> dict[str, Any] | None:
        site = self.data.get("site")
        if not isinstance(site, dict):
            return None
        if site.get("id") not in (None, site_id):
            return None
        return site

    def find_opportunities(self, site_id: str) -> list[dict[str, Any]]:
        return list(self.data.get("opportunities") or [])

    def find_suggestions(self, opportunity_id: str) -> list[Any]:
        return list((self.data.get("suggestions") or {}).get(opportunity_id) or [])


class SnapshotAnalyticsClient:
    def __init__(self, data: dict[str, Any]):
        self.domains = data.get("analytics_domains") or {}

    def domain_key(self, domain: str) -> str:
        key = self.domains.get(domain) or self.domains.get(domain.removeprefix("www."))
        if not key:
            raise LookupError(f"no domain key for {domain}")
        return key


class SnapshotSearchConsoleClient:
    def __init__(self, data: dict[str, Any]):
        self.linked = data.get("linked_sites") or {}

    def list_linked_sites(self, url: str) -> list[Any]:
        for site_url, sites in self.linked.items():
            if _same_site(site_url, url):
                return list(sites or [])
        return []


class SnapshotTopPagesStore:
    def __init__(self, data: dict[str, Any]):
        self.pages = data.get("top_pages") or []

    def top_pages(self, site_id: str, source: str, geo: str) -> list[Any]:
        return [
            p for p in self.pages
            if not isinstance(p, dict) or (p.get("source", source) == source and p.get("geo", geo) == geo)
        ]


class SnapshotScrapeJobStore:
    def __init__(self, data: dict[str, Any]):
        self.jobs = [j for j in data.get("scrape_jobs") or [] if isinstance(j, dict)]
        self.results = data.get("url_results") or {}

    def jobs_for_base_url(self, url: str) -> list[dict[str, Any]]:
        return [j for j in self.jobs if _same_site(str(j.get("baseUrl") or j.get("base_url") or ""), url)]

    def url_results(self, job_id: str) -> list[dict[str, Any]]:
        return list(self.results.get(job_id) or [])

    def job_status(self, job_id: str) -> dict[str, Any] | None:
        for job in self.jobs:
            if str(job.get("id")) == job_id:
                return job
        return None


class SnapshotEventLog:
    """Filter patterns are quoted phrases matched as substrings of the message."""

    def __init__(self, data: dict[str, Any]):
        self.events = [e for e in data.get("log_events") or [] if isinstance(e, dict)]

    def search(self, log_group: str, pattern: str, start_time_ms: int, end_time_ms: int) -> list[dict[str, Any]]:
        phrase = pattern.strip().strip('"')
        hits = []
        for event in self.events:
            ts = event.get("timestamp")
            if ts is not None and not (start_time_ms <= int(ts) <= end_time_ms):
                continue
            if event.get("logGroup", log_group) != log_group:
                continue
            if phrase in str(event.get("message") or ""):
                hits.append(event)
        return hits
