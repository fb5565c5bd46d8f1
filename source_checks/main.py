from __future__ import annotations

import argparse
import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import httpx

from source_checks.alerts import send_critical_alert
from source_checks.classify import EndpointStats, Status, build_endpoint_stats
from source_checks.config import (
    ConfigurationError,
    MonitorSettings,
    endpoint_aliases,
    load_endpoints,
    load_settings,
)
from source_checks.history import DailyRecord, History, append_record
from source_checks.probe import make_probe
from source_checks.report import (
    extract_history,
    format_timestamp,
    inject_section,
    load_timezone,
    render_report,
    render_status_section,
)
from source_checks.scheduler import run_all


LOGGER = logging.getLogger("source-monitoring")

DEFAULT_CONFIG_PATH = "KVideo-config.json"
DEFAULT_REPORT_PATH = "report.md"
DEFAULT_README_PATH = "README.md"


@dataclass(frozen=True)
class RunResult:
    history: History
    stats: list[EndpointStats]
    report: str


def _write_text_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def _read_previous_report(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        LOGGER.info("No previous report; starting with empty history path=%s", path)
        return None
    except (OSError, UnicodeDecodeError) as exc:
        LOGGER.warning("Failed to read previous report path=%s error=%s", path, exc)
        return None


def _update_readme(path: Path, section: str, settings: MonitorSettings) -> bool:
    try:
        document = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        LOGGER.info("README not found; skipping status section path=%s", path)
        return False
    except (OSError, UnicodeDecodeError) as exc:
        LOGGER.warning("README not readable; skipping status section path=%s error=%s", path, exc)
        return False

    updated = inject_section(
        document,
        section,
        start_marker=settings.readme_start_marker,
        end_marker=settings.readme_end_marker,
    )
    if updated is None:
        LOGGER.warning(
            "README has no status markers; skipping path=%s start=%s end=%s",
            path,
            settings.readme_start_marker,
            settings.readme_end_marker,
        )
        return False
    try:
        _write_text_atomic(path, updated)
    except OSError as exc:
        LOGGER.warning("README not writable; skipping status section path=%s error=%s", path, exc)
        return False
    return True


async def run_once(
    *,
    config_path: Path,
    report_path: Path,
    readme_path: Path | None,
    settings: MonitorSettings,
    http_client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> RunResult:
    """
    One monitoring run: probe every endpoint, append today's record to the
    history recovered from the previous report, then write the new report.

    Raises ConfigurationError before any probing when the endpoint list is
    unusable. Nothing is written unless every probe has finished.
    """
    endpoints = load_endpoints(config_path)
    tz = load_timezone(settings.timezone)
    now = now or datetime.now(timezone.utc)
    timestamp = format_timestamp(now, tz)

    history = extract_history(
        _read_previous_report(report_path),
        aliases=endpoint_aliases(endpoints),
        max_days=settings.max_days,
    )
    LOGGER.info(
        "Starting run endpoints=%s history_days=%s keyword=%s",
        len(endpoints),
        len(history),
        settings.search_keyword,
    )

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(headers={"User-Agent": "source-checks/0.1"})
    try:
        started = time.perf_counter()
        outcomes = await run_all(
            [(e.id, make_probe(e, client, settings)) for e in endpoints],
            settings.concurrency_limit,
        )
        LOGGER.info("Probing complete elapsed_seconds=%s", round(time.perf_counter() - started, 3))

        record = DailyRecord(date=now.astimezone(tz).date().isoformat(), results=outcomes)
        history = append_record(history, record, max_days=settings.max_days)
        stats = build_endpoint_stats(
            endpoints,
            history,
            outcomes,
            warn_streak=settings.warn_streak,
            trend_days=settings.trend_days,
        )

        report = render_report(stats, history, timestamp, title=settings.report_title)
        _write_text_atomic(report_path, report)
        LOGGER.info("Report written path=%s", report_path)

        if readme_path is not None:
            if _update_readme(readme_path, render_status_section(stats, timestamp), settings):
                LOGGER.info("README status section updated path=%s", readme_path)

        await send_critical_alert(client, stats, timestamp=timestamp, warn_streak=settings.warn_streak)
    finally:
        if owns_client:
            await client.aclose()

    counts = {status.value: sum(1 for s in stats if s.status is status) for status in Status}
    LOGGER.info("Run complete counts=%s", counts)
    return RunResult(history=history, stats=stats, report=report)


async def run_loop(
    *,
    config_path: Path,
    report_path: Path,
    readme_path: Path | None,
    settings: MonitorSettings,
    once: bool,
) -> int:
    async with httpx.AsyncClient(headers={"User-Agent": "source-checks/0.1"}) as http_client:
        while True:
            cycle_started = time.time()
            await run_once(
                config_path=config_path,
                report_path=report_path,
                readme_path=readme_path,
                settings=settings,
                http_client=http_client,
            )
            if once:
                return 0
            elapsed = time.time() - cycle_started
            sleep_for = max(0.0, settings.interval_seconds - elapsed)
            LOGGER.info("Cycle complete elapsed_seconds=%s sleep_seconds=%s", round(elapsed, 3), round(sleep_for, 3))
            await asyncio.sleep(sleep_for)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Video-catalog API source monitor")
    parser.add_argument("keyword", nargs="?", default=None, help="Search keyword (overrides settings)")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Endpoint list (JSON array or YAML)")
    parser.add_argument("--report", default=DEFAULT_REPORT_PATH, help="Markdown report path (also the history store)")
    parser.add_argument(
        "--readme",
        default=DEFAULT_README_PATH,
        help="Document whose status section is replaced between markers",
    )
    parser.add_argument("--no-readme", action="store_true", help="Do not touch the README")
    parser.add_argument("--settings", default=None, help="Path to YAML monitor settings")
    parser.add_argument("--loop", action="store_true", help="Keep running every interval_seconds")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Avoid leaking secrets (Telegram token is embedded in the Telegram API URL).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    try:
        settings = load_settings(args.settings, search_keyword=args.keyword)
        return asyncio.run(
            run_loop(
                config_path=Path(args.config),
                report_path=Path(args.report),
                readme_path=None if args.no_readme else Path(args.readme),
                settings=settings,
                once=not args.loop,
            )
        )
    except ConfigurationError as exc:
        LOGGER.error("Configuration error; aborting before probing error=%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
