from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from source_checks.classify import Status
from source_checks.config import MonitorSettings
from source_checks.history import DailyRecord, append_record
from source_checks.main import _update_readme, main, run_once
from source_checks.probe import ProbeOutcome, SearchStatus
from source_checks.report import extract_history, render_report


def _write_config(tmp_path: Path) -> Path:
    p = tmp_path / "KVideo-config.json"
    p.write_text(
        json.dumps(
            [
                {"id": "good", "name": "Good", "baseUrl": "https://good.example/api"},
                {"id": "dead", "name": "Dead", "baseUrl": "https://dead.example/api"},
                {"id": "spam", "name": "Spam", "baseUrl": "https://spam.example/api"},
                {"id": "off", "name": "Off", "baseUrl": "https://off.example/api", "enabled": False},
            ]
        ),
        encoding="utf-8",
    )
    return p


def _handler(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "off.example":
        raise AssertionError("disabled endpoint must not be probed")
    if host == "dead.example":
        raise httpx.ConnectError("refused", request=request)
    if "wd" not in request.url.params:
        return httpx.Response(200, text="ok")
    if host == "spam.example":
        return httpx.Response(200, json={"list": [{"vod_name": "casino bonus"}]})
    return httpx.Response(200, json={"list": [{"vod_name": "Douluo"}]})


def _settings() -> MonitorSettings:
    return MonitorSettings(
        retry_delay_seconds=0,
        max_retry=2,
        pollution_markers=["casino"],
        timezone="UTC",
        warn_streak=3,
    )


@pytest.mark.asyncio
async def test_run_once_writes_report_and_readme(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    report_path = tmp_path / "report.md"
    readme_path = tmp_path / "README.md"
    readme_path.write_text("# Sources\n\n<!-- API_STATUS_START -->\n<!-- API_STATUS_END -->\n", encoding="utf-8")
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
        result = await run_once(
            config_path=config_path,
            report_path=report_path,
            readme_path=readme_path,
            settings=_settings(),
            http_client=client,
            now=now,
        )

    by_id = {s.endpoint_id: s for s in result.stats}
    assert by_id["good"].status is Status.HEALTHY
    assert by_id["dead"].status is Status.DOWN
    assert by_id["spam"].status is Status.DOWN
    assert by_id["spam"].outcome.search_status is SearchStatus.POLLUTED
    assert by_id["off"].status is Status.DISABLED
    assert [s.endpoint_id for s in result.stats][-1] == "off"

    report = report_path.read_text(encoding="utf-8")
    history = extract_history(report)
    assert len(history) == 1
    assert history[0].date == "2026-03-01"
    assert set(history[0].results) == {"good", "dead", "spam", "off"}

    readme = readme_path.read_text(encoding="utf-8")
    assert "### 📡 API Status" in readme
    assert "Updated: 2026-03-01 12:00 UTC" in readme


@pytest.mark.asyncio
async def test_run_once_accumulates_history_and_flags_critical(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    report_path = tmp_path / "report.md"

    history = ()
    for day in range(1, 3):
        history = append_record(
            history,
            DailyRecord(
                date=f"2026-02-0{day}",
                results={"dead": ProbeOutcome(endpoint_id="dead", reachable=False, search_status=SearchStatus.UNREACHABLE)},
            ),
        )
    report_path.write_text(render_report([], history, "earlier"), encoding="utf-8")

    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
        result = await run_once(
            config_path=config_path,
            report_path=report_path,
            readme_path=None,
            settings=_settings(),
            http_client=client,
            now=datetime(2026, 2, 3, tzinfo=timezone.utc),
        )

    assert len(result.history) == 3
    dead = next(s for s in result.stats if s.endpoint_id == "dead")
    assert dead.streak == 3
    assert dead.status is Status.CRITICAL
    assert result.stats[0].endpoint_id == "dead"
    # Endpoints absent from earlier records count as failing for the streak.
    good = next(s for s in result.stats if s.endpoint_id == "good")
    assert good.streak == 0
    assert good.success_rate == 100.0


@pytest.mark.asyncio
async def test_run_once_keeps_window_at_max_days(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    report_path = tmp_path / "report.md"
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    history = tuple(DailyRecord(date=(start + timedelta(days=i)).date().isoformat()) for i in range(30))
    report_path.write_text(render_report([], history, "earlier"), encoding="utf-8")

    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
        result = await run_once(
            config_path=config_path,
            report_path=report_path,
            readme_path=None,
            settings=_settings(),
            http_client=client,
            now=start + timedelta(days=30),
        )

    assert len(result.history) == 30
    assert result.history[0].date == "2026-01-02"
    assert result.history[-1].date == "2026-01-31"


@pytest.mark.asyncio
async def test_corrupt_previous_report_starts_empty(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    report_path = tmp_path / "report.md"
    report_path.write_text("# old\n\n```json\n[{{{ broken\n```\n", encoding="utf-8")

    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
        result = await run_once(
            config_path=config_path,
            report_path=report_path,
            readme_path=None,
            settings=_settings(),
            http_client=client,
        )

    assert len(result.history) == 1


def test_main_returns_nonzero_on_missing_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SOURCE_MONITOR_SETTINGS", raising=False)
    report_path = tmp_path / "report.md"
    code = main(["--config", str(tmp_path / "missing.json"), "--report", str(report_path), "--no-readme"])
    assert code == 1
    assert not report_path.exists()


def test_unreadable_readme_is_skipped(tmp_path: Path) -> None:
    as_directory = tmp_path / "README.md"
    as_directory.mkdir()
    assert _update_readme(as_directory, "section", MonitorSettings()) is False

    not_utf8 = tmp_path / "README-latin1.md"
    not_utf8.write_bytes(b"caf\xe9 <!-- API_STATUS_START --><!-- API_STATUS_END -->")
    assert _update_readme(not_utf8, "section", MonitorSettings()) is False
    assert not_utf8.read_bytes().startswith(b"caf\xe9")


@pytest.mark.asyncio
async def test_run_once_survives_bad_readme(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    report_path = tmp_path / "report.md"
    readme_path = tmp_path / "README.md"
    readme_path.mkdir()

    async with httpx.AsyncClient(transport=httpx.MockTransport(_handler)) as client:
        result = await run_once(
            config_path=config_path,
            report_path=report_path,
            readme_path=readme_path,
            settings=_settings(),
            http_client=client,
        )

    assert report_path.exists()
    assert len(result.stats) == 4
