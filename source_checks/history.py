from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from source_checks.probe import ProbeOutcome, SearchStatus


MAX_DAYS = 30
TREND_DAYS = 7

Trend = Literal["pass", "fail", "unknown"]


@dataclass(frozen=True)
class DailyRecord:
    date: str
    results: dict[str, ProbeOutcome] = field(default_factory=dict)


# Oldest first. Treated as an immutable value; append_record returns a new one.
History = tuple[DailyRecord, ...]


# On-disk encoding (embedded as JSON in the report):
# [{"date": "YYYY-MM-DD", "results": {endpoint_id: {"ok": bool, "search": str, "reason": str|None}}}]
#
# - ok: reachable
# - search: SearchStatus name
# - reason: failure reason, null on success


def append_record(history: History, record: DailyRecord, *, max_days: int = MAX_DAYS) -> History:
    max_days = max(1, int(max_days))
    items = tuple(history) + (record,)
    if len(items) > max_days:
        items = items[len(items) - max_days :]
    return items


def _is_attempt(outcome: ProbeOutcome | None) -> bool:
    return outcome is not None and outcome.search_status is not SearchStatus.DISABLED


def streak(history: History, endpoint_id: str) -> int:
    """
    Consecutive most-recent records in which the endpoint failed or has no
    outcome at all. 0 when the newest record is a success.
    """
    count = 0
    for record in reversed(history):
        outcome = record.results.get(endpoint_id)
        if outcome is not None and outcome.reachable:
            break
        count += 1
    return count


def trend(history: History, endpoint_id: str, n: int = TREND_DAYS) -> list[Trend]:
    if n <= 0:
        return []
    out: list[Trend] = []
    for record in history[-n:]:
        outcome = record.results.get(endpoint_id)
        if not _is_attempt(outcome):
            out.append("unknown")
        elif outcome.reachable:
            out.append("pass")
        else:
            out.append("fail")
    return out


def count_outcomes(history: History, endpoint_id: str) -> tuple[int, int]:
    """Returns (ok_count, fail_count) over the whole window."""
    ok_count = 0
    fail_count = 0
    for record in history:
        outcome = record.results.get(endpoint_id)
        if not _is_attempt(outcome):
            continue
        if outcome.reachable:
            ok_count += 1
        else:
            fail_count += 1
    return ok_count, fail_count


def success_rate(history: History, endpoint_id: str) -> float | None:
    """Percent of successful attempts, or None when there were no attempts."""
    ok_count, fail_count = count_outcomes(history, endpoint_id)
    total = ok_count + fail_count
    if total <= 0:
        return None
    return (ok_count / float(total)) * 100.0


def encode_outcome(outcome: ProbeOutcome) -> dict[str, Any]:
    return {
        "ok": bool(outcome.reachable),
        "search": outcome.search_status.value,
        "reason": outcome.failure_reason,
    }


def encode_history(history: History) -> list[dict[str, Any]]:
    return [
        {
            "date": record.date,
            "results": {endpoint_id: encode_outcome(o) for endpoint_id, o in record.results.items()},
        }
        for record in history
    ]


# Search-status strings written by the original checker script.
_LEGACY_SEARCH_STATUS = {
    "✅": SearchStatus.OK,
    "无结果": SearchStatus.NO_RESULT,
    "❌": SearchStatus.MALFORMED,
    "禁用": SearchStatus.DISABLED,
}


def _coerce_search_status(value: Any, *, ok: bool) -> SearchStatus:
    s = str(value or "").strip()
    try:
        return SearchStatus(s.upper())
    except ValueError:
        pass
    legacy = _LEGACY_SEARCH_STATUS.get(s)
    if legacy is not None:
        return legacy
    return SearchStatus.OK if ok else SearchStatus.UNREACHABLE


def _coerce_outcome(endpoint_id: str, raw: Any) -> ProbeOutcome | None:
    if not isinstance(raw, dict):
        return None
    if "ok" in raw:
        ok = bool(raw.get("ok"))
        status = _coerce_search_status(raw.get("search"), ok=ok)
        reason = raw.get("reason")
    elif "success" in raw:
        # Legacy rows: success only meant "connected"; a failed search is not a clean pass.
        status = _coerce_search_status(raw.get("searchStatus"), ok=bool(raw.get("success")))
        ok = bool(raw.get("success")) and status is SearchStatus.OK
        reason = None
    else:
        return None
    return ProbeOutcome(
        endpoint_id=endpoint_id,
        reachable=ok,
        search_status=status,
        failure_reason=(str(reason) if reason is not None else None),
    )


def _coerce_results(raw: Any, aliases: dict[str, str]) -> dict[str, ProbeOutcome]:
    results: dict[str, ProbeOutcome] = {}

    if isinstance(raw, dict):
        for endpoint_id, item in raw.items():
            if not isinstance(endpoint_id, str) or not endpoint_id:
                continue
            outcome = _coerce_outcome(endpoint_id, item)
            if outcome is not None:
                results[endpoint_id] = outcome
        return results

    # Legacy layout: a list of {"api": url, "success": bool, "searchStatus": str}.
    if isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                continue
            key = str(item.get("id") or item.get("api") or "").strip()
            if not key:
                continue
            endpoint_id = aliases.get(key, key)
            outcome = _coerce_outcome(endpoint_id, item)
            if outcome is not None:
                results[endpoint_id] = outcome

    return results


def coerce_history(raw: Any, *, aliases: dict[str, str] | None = None, max_days: int | None = None) -> History:
    """
    Best-effort decode of the history block embedded in a previous report.
    Invalid records are skipped; anything that is not a list decodes to an
    empty history.
    """
    if not isinstance(raw, list):
        return ()

    aliases = aliases or {}
    records: list[DailyRecord] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        date = str(item.get("date") or "").strip()
        if not date:
            continue
        records.append(DailyRecord(date=date, results=_coerce_results(item.get("results"), aliases)))

    history: History = tuple(records)
    if max_days is not None and len(history) > max_days:
        history = history[len(history) - max(1, int(max_days)) :]
    return history
