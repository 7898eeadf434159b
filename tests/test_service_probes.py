import threading

import service_probes
from dependency_map import BEHAVIORAL_ANALYTICS, CONTENT_SCRAPE, SEARCH_CONSOLE_LINK, TOP_PAGES_IMPORT
from service_probes import (
    Available,
    BehavioralAnalyticsProbe,
    ContentScrapeProbe,
    ProbeTarget,
    SearchConsoleProbe,
    TopPagesProbe,
    Unavailable,
    default_probes,
    job_timestamp_ms,
    probe_services,
    resolve_target,
)
from site_url import SiteUrlError

TARGET = ProbeTarget("site-1", "https://www.example.com", resolved_url="https://www.example.com/")


class _Analytics:
    def __init__(self, keys=None):
        self.keys = keys or {}
        self.calls = []

    def domain_key(self, domain):
        self.calls.append(domain)
        if domain not in self.keys:
            raise LookupError("not found")
        return self.keys[domain]


class _SearchConsole:
    def __init__(self, sites=None, error=None):
        self.sites = sites or []
        self.error = error

    def list_linked_sites(self, url):
        if self.error:
            raise self.error
        return self.sites


class _TopPages:
    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    def top_pages(self, site_id, source, geo):
        self.calls.append((site_id, source, geo))
        return self.pages


class _ScrapeJobs:
    def __init__(self, jobs, results):
        self.jobs = jobs
        self.results = results

    def jobs_for_base_url(self, url):
        return self.jobs

    def url_results(self, job_id):
        return self.results.get(job_id, [])

    def job_status(self, job_id):
        return None


def test_analytics_probe_uses_resolved_hostname():
    client = _Analytics({"www.example.com": "key"})
    result = BehavioralAnalyticsProbe(client).check(TARGET)
    assert isinstance(result, Available)
    assert client.calls == ["www.example.com"]


def test_analytics_probe_failure_is_unavailable_not_raised():
    result = BehavioralAnalyticsProbe(_Analytics()).check(TARGET)
    assert isinstance(result, Unavailable)
    assert result.available is False


def test_url_resolution_error_short_circuits_url_probes():
    target = ProbeTarget("site-1", "https://example.com", url_error="HTTP 500")
    client = _Analytics({"example.com": "key"})
    result = BehavioralAnalyticsProbe(client).check(target)
    assert result == Unavailable("site URL could not be resolved: HTTP 500")
    assert client.calls == []
    assert SearchConsoleProbe(_SearchConsole(["x"])).check(target).available is False


def test_search_console_probe():
    assert SearchConsoleProbe(_SearchConsole(["sc-domain:example.com"])).check(TARGET).available
    assert not SearchConsoleProbe(_SearchConsole([])).check(TARGET).available
    assert not SearchConsoleProbe(_SearchConsole(error=PermissionError("401"))).check(TARGET).available


def test_top_pages_probe_queries_configured_source():
    store = _TopPages([{"url": "https://example.com/a"}])
    assert TopPagesProbe(store).check(TARGET).available
    assert store.calls == [("site-1", "ahrefs", "global")]
    assert not TopPagesProbe(_TopPages([])).check(TARGET).available


def test_scrape_probe_picks_latest_job_and_needs_a_complete_url():
    jobs = [
        {"id": "old", "startedAt": "2024-01-01T00:00:00Z"},
        {"id": "new", "startedAt": "2024-03-01T00:00:00Z"},
        {"id": "mid", "createdAt": 1706745600000},
    ]
    results = {
        "old": [{"url": "a", "status": "COMPLETE"}],
        "new": [{"url": "a", "status": "FAILED"}, {"url": "b", "status": "COMPLETE"}],
    }
    result = ContentScrapeProbe(_ScrapeJobs(jobs, results)).check(TARGET)
    assert result.available
    assert result.job_id == "new"

    failed = ContentScrapeProbe(_ScrapeJobs(jobs, {"new": [{"url": "a", "status": "FAILED"}]})).check(TARGET)
    assert not failed.available
    assert failed.job_id == "new"


def test_scrape_probe_without_jobs():
    assert ContentScrapeProbe(_ScrapeJobs([], {})).check(TARGET) == Unavailable("no scrape jobs")


def test_job_timestamp_formats():
    assert job_timestamp_ms({"startedAt": 5}) == 5
    assert job_timestamp_ms({"createdAt": "1000"}) == 1000
    assert job_timestamp_ms({"startedAt": "1970-01-01T00:00:01Z"}) == 1000
    assert job_timestamp_ms({"startedAt": "garbage"}) == 0
    assert job_timestamp_ms({}) == 0


def test_only_required_kinds_are_probed():
    analytics = _Analytics({"www.example.com": "key"})
    probes = default_probes(analytics, _SearchConsole(["x"]), _TopPages([1]), _ScrapeJobs([], {}))
    status = probe_services({TOP_PAGES_IMPORT}, TARGET, probes, timeout=5)
    assert set(status.results) == {TOP_PAGES_IMPORT}
    assert analytics.calls == []
    assert status.is_available(TOP_PAGES_IMPORT)
    assert not status.is_available(BEHAVIORAL_ANALYTICS)


def test_missing_probe_is_unavailable():
    status = probe_services({SEARCH_CONSOLE_LINK}, TARGET, {}, timeout=5)
    assert status.results[SEARCH_CONSOLE_LINK] == Unavailable("no probe configured")


def test_slow_probe_times_out_as_unavailable():
    release = threading.Event()

    class _SlowProbe:
        kind = CONTENT_SCRAPE

        def check(self, target):
            release.wait(5)
            return Available("late")

    try:
        status = probe_services({CONTENT_SCRAPE}, TARGET, {CONTENT_SCRAPE: _SlowProbe()}, timeout=0.1)
    finally:
        release.set()
    assert not status.is_available(CONTENT_SCRAPE)
    assert "timed out" in status.results[CONTENT_SCRAPE].reason


def test_status_snapshot_helpers():
    status = service_probes.ServiceStatus({
        BEHAVIORAL_ANALYTICS: Available("ok"),
        CONTENT_SCRAPE: Unavailable("none", job_id="j1"),
    })
    assert status.unmet({BEHAVIORAL_ANALYTICS, CONTENT_SCRAPE, TOP_PAGES_IMPORT}) == [CONTENT_SCRAPE, TOP_PAGES_IMPORT]
    assert status.scrape_job_id == "j1"
    assert status.to_dict()[CONTENT_SCRAPE] == {"available": False, "reason": "none", "job_id": "j1"}


def test_resolve_target_skips_resolution_when_not_needed():
    calls = []
    target = resolve_target("s", "https://example.com", needs_resolution=False, resolver=calls.append)
    assert target == ProbeTarget("s", "https://example.com")
    assert calls == []


def test_resolve_target_records_resolution_error():
    def _resolver(url):
        raise SiteUrlError(url, "HTTP 503")

    target = resolve_target("s", "https://example.com", needs_resolution=True, resolver=_resolver, timeout=5)
    assert target.url_error == "HTTP 503"
    assert target.resolved_url is None


def test_resolve_target_uses_resolved_url():
    target = resolve_target("s", "example.com", True, resolver=lambda u: "https://www.example.com/", timeout=5)
    assert target.resolved_url == "https://www.example.com/"
