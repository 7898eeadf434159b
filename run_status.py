from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import config
from notifications import LogChannel
from opportunity_status import STATUS_NOT_FOUND, STATUS_OK, Collaborators, run_opportunity_status
from snapshot_stores import (
    SnapshotAnalyticsClient,
    SnapshotError,
    SnapshotEventLog,
    SnapshotOpportunityStore,
    SnapshotScrapeJobStore,
    SnapshotSearchConsoleClient,
    SnapshotTopPagesStore,
    load_snapshot,
)

logger = logging.getLogger(__name__)


def _fail(code: int, message: str) -> int:
    print(message)
    return code


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def collaborators_from_snapshot(data: dict) -> Collaborators:
    return Collaborators(
        opportunities=SnapshotOpportunityStore(data),
        event_log=SnapshotEventLog(data),
        analytics=SnapshotAnalyticsClient(data),
        search_console=SnapshotSearchConsoleClient(data),
        top_pages=SnapshotTopPagesStore(data),
        scrape_jobs=SnapshotScrapeJobStore(data),
        channel=LogChannel(),
    )


def _identity(url: str) -> str:
    return url


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Report opportunity readiness for a site from a JSON snapshot.")
    parser.add_argument("--snapshot", required=True)
    parser.add_argument("--site-id")
    parser.add_argument("--audits", default="", help="Comma-separated audit types (default: snapshot 'audits')")
    parser.add_argument("--run-start", type=int, default=None, help="Run start, epoch milliseconds")
    parser.add_argument("--job-id", action="append", default=[], help="Scrape job id (repeatable)")
    parser.add_argument("--resolve-url", action="store_true", help="Resolve the canonical site URL over HTTP")
    parser.add_argument("--out")
    args = parser.parse_args(argv)

    _setup_logging()

    try:
        data = load_snapshot(args.snapshot)
    except SnapshotError as e:
        return _fail(2, f"FATAL: {e}")

    site = data.get("site") if isinstance(data.get("site"), dict) else {}
    site_id = (args.site_id or site.get("id") or "").strip()
    if not site_id:
        return _fail(2, "FATAL: missing site id")

    audits = [a.strip() for a in (args.audits or "").split(",") if a.strip()]
    if not audits:
        audits = [str(a) for a in data.get("audits") or [] if a]
    if not audits:
        return _fail(2, "FATAL: no audit types given")

    run_start = args.run_start if args.run_start is not None else data.get("run_start")

    options = {}
    if not args.resolve_url:
        options["url_resolver"] = _identity

    report = run_opportunity_status(
        site_id,
        audits,
        collaborators_from_snapshot(data),
        run_start_ms=run_start,
        scrape_job_ids=args.job_id,
        channel_context={"site_id": site_id},
        **options,
    )

    text = json.dumps(report, indent=2, ensure_ascii=False) + "\n"
    if args.out:
        out = Path(args.out).expanduser()
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
        logger.info(f"Report written to {out}")
    else:
        sys.stdout.write(text)

    if report["status"] == STATUS_NOT_FOUND:
        return 3
    if report["status"] != STATUS_OK:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
