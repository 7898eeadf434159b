import threading
import time

from dependency_map import BEHAVIORAL_ANALYTICS, CONTENT_SCRAPE, SEARCH_CONSOLE_LINK, DependencyGraph
from opportunity_status import Collaborators, run_opportunity_status
from site_url import SiteUrlError
from snapshot_stores import (
    SnapshotAnalyticsClient,
    SnapshotEventLog,
    SnapshotOpportunityStore,
    SnapshotScrapeJobStore,
    SnapshotSearchConsoleClient,
    SnapshotTopPagesStore,
)

RUN_START = 1_700_000_000_000
NOW = RUN_START + 10 * 60 * 1000

EXTENDED_GRAPH = DependencyGraph.from_mappings(
    {"cwv": ["cwv"], "structured-data": ["structured-data"], "accessibility": ["accessibility"]},
    {
        "cwv": [BEHAVIORAL_ANALYTICS],
        "structured-data": [SEARCH_CONSOLE_LINK],
        "accessibility": [CONTENT_SCRAPE],
    },
)


def _identity(url):
    return url


def _snapshot(**overrides):
    data = {
        "site": {"id": "site-1", "baseUrl": "https://example.com"},
        "opportunities": [],
        "suggestions": {},
        "top_pages": [],
        "analytics_domains": {},
        "linked_sites": {},
        "scrape_jobs": [],
        "url_results": {},
        "log_events": [],
    }
    data.update(overrides)
    return data


class _Channel:
    def __init__(self):
        self.posts = []

    def post(self, channel_context, text):
        self.posts.append((channel_context, text))


def _collaborators(data, channel=None):
    return Collaborators(
        opportunities=SnapshotOpportunityStore(data),
        event_log=SnapshotEventLog(data),
        analytics=SnapshotAnalyticsClient(data),
        search_console=SnapshotSearchConsoleClient(data),
        top_pages=SnapshotTopPagesStore(data),
        scrape_jobs=SnapshotScrapeJobStore(data),
        channel=channel,
    )


def _run(data, audits, channel=None, **kwargs):
    kwargs.setdefault("url_resolver", _identity)
    kwargs.setdefault("clock", lambda: NOW)
    return run_opportunity_status("site-1", audits, _collaborators(data, channel), **kwargs)


def test_cwv_not_executed():
    report = _run(_snapshot(), ["cwv"], run_start_ms=RUN_START)
    assert report["status"] == "ok"
    assert report["missing"] == ["cwv"]
    assert report["diagnoses"] == [{"opportunity": "cwv", "audit": "cwv", "cause": "AUDIT_NOT_EXECUTED"}]


def test_cwv_dependency_unmet():
    data = _snapshot(log_events=[{"message": "Received cwv audit request for: site-1", "timestamp": RUN_START + 1000}])
    report = _run(data, ["cwv"], run_start_ms=RUN_START)
    [diagnosis] = report["diagnoses"]
    assert diagnosis["cause"] == "DEPENDENCY_UNMET"
    assert diagnosis["evidence"] == ["BehavioralAnalytics"]
    assert report["services"]["BehavioralAnalytics"]["available"] is False


def test_cwv_failed_with_reason():
    data = _snapshot(
        analytics_domains={"example.com": "key"},
        log_events=[
            {"message": "Received cwv audit request for: site-1", "timestamp": RUN_START + 1000},
            {"message": "cwv audit for site-1 failed. Reason: 403 Forbidden at run (x.js:1)", "timestamp": RUN_START + 2000},
        ],
    )
    [diagnosis] = _run(data, ["cwv"], run_start_ms=RUN_START)["diagnoses"]
    assert diagnosis["cause"] == "AUDIT_FAILED"
    assert diagnosis["evidence"] == "403 Forbidden"
    assert diagnosis["category"] == "forbidden"


def test_only_required_services_are_probed():
    report = _run(_snapshot(top_pages=[{"url": "https://example.com/"}]), ["meta-tags"])
    assert set(report["services"]) == {"TopPagesImport"}
    assert report["services"]["TopPagesImport"]["available"] is True


def test_no_run_start_skips_diagnosis():
    report = _run(_snapshot(), ["cwv"])
    assert report["missing"] == ["cwv"]
    assert report["diagnoses"] is None


def test_present_opportunities_and_suggestions():
    data = _snapshot(
        opportunities=[{"id": "o1", "type": "cwv"}, {"id": "o2", "type": "legacy"}, {"id": "o3", "type": "cwv"}],
        suggestions={"o1": [{"id": "s1"}]},
    )
    report = _run(data, ["cwv"], run_start_ms=RUN_START)
    assert report["missing"] == []
    assert report["present"] == ["cwv", "legacy"]
    assert report["opportunities"] == [{"type": "cwv", "id": "o1", "title": "Core Web Vitals", "has_suggestions": True}]
    assert report["unexpected"] == ["legacy"]
    assert report["diagnoses"] is None


def test_unknown_audit_types_list_every_present_opportunity():
    data = _snapshot(opportunities=[{"id": "o2", "type": "legacy"}])
    report = _run(data, ["cwv", "mystery"])
    assert report["unknown_audit_types"] == ["mystery"]
    assert [o["type"] for o in report["opportunities"]] == ["legacy"]
    assert report["unexpected"] == []


def test_site_not_found():
    report = run_opportunity_status("other", ["cwv"], _collaborators(_snapshot()))
    assert report == {"status": "not_found", "site_id": "other"}


def test_site_lookup_error():
    class _Broken(SnapshotOpportunityStore):
        def find_site(self, site_id):
            raise RuntimeError("db down")

    collaborators = _collaborators(_snapshot())
    collaborators.opportunities = _Broken({})
    report = run_opportunity_status("site-1", ["cwv"], collaborators)
    assert report["status"] == "error"


def test_opportunity_lookup_failure_is_flagged():
    class _Flaky(SnapshotOpportunityStore):
        def find_opportunities(self, site_id):
            raise RuntimeError("timeout")

    data = _snapshot()
    collaborators = _collaborators(data)
    collaborators.opportunities = _Flaky(data)
    report = run_opportunity_status("site-1", ["sitemap"], collaborators, url_resolver=_identity)
    assert report["status"] == "ok"
    assert report["opportunity_lookup_failed"] is True
    assert report["missing"] == ["sitemap"]


def test_url_resolution_failure_marks_url_services_unavailable():
    def _resolver(url):
        raise SiteUrlError(url, "HTTP 500")

    data = _snapshot(analytics_domains={"example.com": "k"}, linked_sites={"https://example.com": ["x"]})
    report = _run(data, ["structured-data", "cwv"], url_resolver=_resolver, graph=EXTENDED_GRAPH)
    for kind in ("BehavioralAnalytics", "SearchConsoleLink"):
        assert report["services"][kind] == {"available": False, "reason": "site URL could not be resolved: HTTP 500"}


def test_scrape_job_feeds_bot_protection_and_notifications():
    abort = {
        "reason": "bot-protection",
        "details": {"blockedUrlsCount": 3, "totalUrlsCount": 10, "byHttpStatus": {"403": 3}, "blockedUrls": []},
    }
    data = _snapshot(
        scrape_jobs=[
            {"id": "j-latest", "baseUrl": "https://example.com", "startedAt": "2024-02-01T00:00:00Z", "status": "RUNNING", "abortInfo": abort},
            {"id": "j-old", "baseUrl": "https://example.com", "startedAt": "2024-01-01T00:00:00Z", "status": "COMPLETE"},
        ],
        url_results={"j-latest": [{"url": "https://example.com/", "status": "COMPLETE"}]},
    )
    channel = _Channel()
    report = _run(data, ["accessibility"], channel=channel, channel_context="thread-1", graph=EXTENDED_GRAPH)
    assert report["services"]["ContentScrape"] == {"available": True, "detail": "1/1 URLs scraped", "job_id": "j-latest"}
    bot = report["bot_protection"]["report"]
    assert bot["total_blocked"] == 3
    assert bot["is_partial"] is True
    assert report["bot_protection"]["notification"]["sent"] is True
    assert report["notification"]["sent"] is True
    assert [ctx for ctx, _ in channel.posts] == ["thread-1", "thread-1"]


def test_exhausted_deadline_degrades_instead_of_raising():
    release = threading.Event()

    class _SlowTopPages(SnapshotTopPagesStore):
        def top_pages(self, site_id, source, geo):
            release.wait(5)
            return super().top_pages(site_id, source, geo)

    data = _snapshot(top_pages=[{"url": "x"}])
    collaborators = _collaborators(data)
    collaborators.top_pages = _SlowTopPages(data)
    try:
        report = run_opportunity_status(
            "site-1", ["meta-tags"], collaborators, url_resolver=_identity, deadline_s=0.3, probe_timeout=5,
        )
    finally:
        release.set()
    assert report["status"] == "ok"
    assert report["deadline_exceeded"] is True
    assert report["services"]["TopPagesImport"]["available"] is False
    assert report["opportunity_lookup_failed"] is True
    assert report["missing"] == ["meta-tags"]


def test_no_budget_left_for_site_lookup_is_an_error():
    report = _run(_snapshot(), ["meta-tags"], deadline_s=0)
    assert report["status"] == "error"
    assert report["error"] == "deadline exceeded before start"


def test_hung_site_lookup_is_bounded_by_deadline():
    release = threading.Event()

    class _Hung(SnapshotOpportunityStore):
        def find_site(self, site_id):
            release.wait(5)
            return super().find_site(site_id)

    data = _snapshot()
    collaborators = _collaborators(data)
    collaborators.opportunities = _Hung(data)
    started = time.monotonic()
    try:
        report = run_opportunity_status("site-1", ["cwv"], collaborators, deadline_s=0.2)
    finally:
        release.set()
    assert time.monotonic() - started < 2
    assert report["status"] == "error"
    assert report["error"].startswith("timed out")


def test_hung_opportunity_lookup_is_flagged_not_awaited():
    release = threading.Event()

    class _Hung(SnapshotOpportunityStore):
        def find_opportunities(self, site_id):
            release.wait(5)
            return super().find_opportunities(site_id)

    data = _snapshot(opportunities=[{"id": "o1", "type": "sitemap"}])
    collaborators = _collaborators(data)
    collaborators.opportunities = _Hung(data)
    started = time.monotonic()
    try:
        report = run_opportunity_status(
            "site-1", ["sitemap"], collaborators, url_resolver=_identity, deadline_s=5, probe_timeout=0.2,
        )
    finally:
        release.set()
    assert time.monotonic() - started < 2
    assert report["status"] == "ok"
    assert report["opportunity_lookup_failed"] is True
    assert report["missing"] == ["sitemap"]


def test_clean_alt_text_miss_is_no_issues_found():
    data = _snapshot(log_events=[{"message": "Received alt-text audit request for: site-1", "timestamp": RUN_START + 1000}])
    report = _run(data, ["alt-text"], run_start_ms=RUN_START)
    assert report["services"] == {}
    assert report["diagnoses"] == [{"opportunity": "alt-text", "audit": "alt-text", "cause": "NO_ISSUES_FOUND"}]
