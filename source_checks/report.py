from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from source_checks.classify import EndpointStats, Status
from source_checks.history import History, coerce_history, encode_history


LOGGER = logging.getLogger("source-monitoring")

STATUS_GLYPHS = {
    Status.CRITICAL: "🚨",
    Status.DOWN: "❌",
    Status.HEALTHY: "✅",
    Status.DISABLED: "🚫",
}
TREND_GLYPHS = {"pass": "✅", "fail": "❌", "unknown": "⬜"}

_HISTORY_BLOCK_RE = re.compile(r"```json\r?\n(.*?)\r?\n```", re.DOTALL)

_TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class ReportSummary:
    counts: dict[str, int]
    total: int
    average_rate: float | None
    buckets: dict[str, int]
    days: int


def _format_rate(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value:.1f}%"


def _format_cell(value: Any) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ")


def _format_trend(items: list[str]) -> str:
    return "".join(TREND_GLYPHS.get(t, TREND_GLYPHS["unknown"]) for t in items) or "-"


def _build_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=False,
        trim_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["rate"] = _format_rate
    env.filters["cell"] = _format_cell
    env.filters["trend"] = _format_trend
    env.filters["glyph"] = lambda status: STATUS_GLYPHS[status]
    return env


_ENV = _build_env()


def summarize(stats: list[EndpointStats], *, days: int = 0) -> ReportSummary:
    counts = {status.value: 0 for status in Status}
    buckets = {"full": 0, "high": 0, "mid": 0, "low": 0}
    rates: list[float] = []

    for s in stats:
        counts[s.status.value] += 1
        if s.success_rate is None:
            continue
        rate = float(s.success_rate)
        rates.append(rate)
        if rate >= 100.0:
            buckets["full"] += 1
        elif rate >= 80.0:
            buckets["high"] += 1
        elif rate >= 50.0:
            buckets["mid"] += 1
        else:
            buckets["low"] += 1

    average = (sum(rates) / len(rates)) if rates else None
    return ReportSummary(counts=counts, total=len(stats), average_rate=average, buckets=buckets, days=days)


def dump_history(history: History) -> str:
    return json.dumps(encode_history(history), ensure_ascii=False, indent=2)


def render_report(
    stats: list[EndpointStats],
    history: History,
    timestamp: str,
    *,
    title: str = "API Health Report",
) -> str:
    """Full markdown report, including the history block the next run parses back."""
    return _ENV.get_template("report.md.j2").render(
        title=title,
        timestamp=timestamp,
        stats=stats,
        summary=summarize(stats, days=len(history)),
        history_json=dump_history(history),
    )


def render_status_section(stats: list[EndpointStats], timestamp: str) -> str:
    return _ENV.get_template("status_section.md.j2").render(stats=stats, timestamp=timestamp)


def extract_history(
    text: str | None,
    *,
    aliases: dict[str, str] | None = None,
    max_days: int | None = None,
) -> History:
    """
    Recover the history embedded in a previous report. A missing or corrupt
    block yields an empty history.
    """
    if not text:
        return ()
    match = _HISTORY_BLOCK_RE.search(text)
    if not match:
        LOGGER.warning("No history block found in previous report; starting empty")
        return ()
    try:
        raw = json.loads(match.group(1))
    except ValueError as exc:
        LOGGER.warning("History block is not valid JSON; starting empty error=%s", exc)
        return ()
    if not isinstance(raw, list):
        LOGGER.warning("History block has unexpected type=%s; starting empty", type(raw).__name__)
        return ()
    return coerce_history(raw, aliases=aliases, max_days=max_days)


def inject_section(document: str, section: str, *, start_marker: str, end_marker: str) -> str | None:
    """
    Replace everything between the markers (kept) with ``section``.
    Returns None when the document has no marker pair.
    """
    start = document.find(start_marker)
    if start < 0:
        return None
    end = document.find(end_marker, start + len(start_marker))
    if end < 0:
        return None
    body = section.strip("\n")
    return f"{document[: start + len(start_marker)]}\n\n{body}\n\n{document[end:]}"


def load_timezone(name: str):
    cleaned = (name or "").strip()
    if not cleaned or cleaned.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.warning("Timezone not found; falling back to UTC tz=%s", cleaned)
        return timezone.utc


def format_timestamp(now: datetime, tz) -> str:
    local = now.astimezone(tz)
    return f"{local:%Y-%m-%d %H:%M} {local.tzname() or ''}".rstrip()
