from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from source_checks.config import EndpointConfig, MonitorSettings


LOGGER = logging.getLogger("source-monitoring")


class SearchStatus(str, Enum):
    OK = "OK"
    NO_RESULT = "NO_RESULT"
    MISMATCH = "MISMATCH"
    POLLUTED = "POLLUTED"
    MALFORMED = "MALFORMED"
    UNREACHABLE = "UNREACHABLE"
    DISABLED = "DISABLED"


@dataclass(frozen=True)
class ProbeOutcome:
    endpoint_id: str
    reachable: bool
    search_status: SearchStatus
    failure_reason: str | None = None
    # Not persisted in history.
    attempts: int = field(default=0, compare=False)


class ProbeFailure(Exception):
    status = SearchStatus.UNREACHABLE


class NetworkUnreachable(ProbeFailure):
    status = SearchStatus.UNREACHABLE


class MalformedResponse(ProbeFailure):
    status = SearchStatus.MALFORMED


class EmptyResult(ProbeFailure):
    status = SearchStatus.NO_RESULT


class ContentMismatch(ProbeFailure):
    status = SearchStatus.MISMATCH


class PollutionDetected(ProbeFailure):
    status = SearchStatus.POLLUTED


async def _get(client: httpx.AsyncClient, url: str, *, timeout: float, params: dict[str, str] | None = None) -> httpx.Response:
    try:
        return await client.get(url, params=params, timeout=timeout, follow_redirects=True)
    except httpx.InvalidURL as exc:
        raise NetworkUnreachable(f"invalid_url: {exc}") from exc
    except httpx.HTTPError as exc:
        raise NetworkUnreachable(f"http_error: {type(exc).__name__}: {exc}") from exc


async def check_connectivity(endpoint: EndpointConfig, client: httpx.AsyncClient, *, timeout: float) -> None:
    resp = await _get(client, endpoint.base_url, timeout=timeout)
    if resp.status_code != 200:
        raise NetworkUnreachable(f"http_status: {resp.status_code}")


def search_params(settings: MonitorSettings) -> dict[str, str]:
    params = {"wd": settings.search_keyword}
    if settings.detail_search:
        params = {"ac": "detail", **params}
    return params


async def run_search(endpoint: EndpointConfig, client: httpx.AsyncClient, settings: MonitorSettings) -> list[Any]:
    resp = await _get(client, endpoint.base_url, timeout=settings.timeout_seconds, params=search_params(settings))
    if resp.status_code != 200:
        raise MalformedResponse(f"search_http_status: {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise MalformedResponse(f"json_parse_error: {type(exc).__name__}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("list"), list):
        raise MalformedResponse("missing_list_field")

    items = data["list"]
    if not items:
        raise EmptyResult("empty_list")

    if settings.keyword_match:
        serialized = json.dumps(items, ensure_ascii=False)
        if settings.search_keyword not in serialized:
            raise ContentMismatch(f"keyword_not_found: {settings.search_keyword}")

    return items


def find_pollution(items: list[Any], *, markers: list[str], name_field: str) -> str | None:
    """Return the first marker found in the display name of the first result."""
    if not items or not markers:
        return None
    first = items[0]
    if not isinstance(first, dict):
        return None
    name = str(first.get(name_field) or "")
    for marker in markers:
        if marker and marker in name:
            return marker
    return None


async def _attempt(endpoint: EndpointConfig, client: httpx.AsyncClient, settings: MonitorSettings) -> None:
    await check_connectivity(endpoint, client, timeout=settings.timeout_seconds)
    if not settings.search_enabled:
        return

    items = await run_search(endpoint, client, settings)
    marker = find_pollution(items, markers=settings.pollution_markers, name_field=settings.name_field)
    if marker is not None:
        raise PollutionDetected(f"pollution_marker: {marker}")


async def probe_endpoint(
    endpoint: EndpointConfig,
    client: httpx.AsyncClient,
    settings: MonitorSettings,
) -> ProbeOutcome:
    """
    Connectivity, search and content-quality test of one endpoint.

    Never raises for endpoint-side problems: every failure ends up in the
    returned outcome.
    """
    if not endpoint.enabled:
        return ProbeOutcome(
            endpoint_id=endpoint.id,
            reachable=False,
            search_status=SearchStatus.DISABLED,
            failure_reason="disabled in configuration",
        )

    max_retry = max(1, int(settings.max_retry))
    last_status = SearchStatus.UNREACHABLE
    last_reason: str | None = None

    for attempt in range(1, max_retry + 1):
        try:
            await _attempt(endpoint, client, settings)
        except ProbeFailure as failure:
            last_status = failure.status
            last_reason = str(failure) or None
            if attempt < max_retry and settings.retry_delay_seconds > 0:
                await asyncio.sleep(settings.retry_delay_seconds)
            continue

        return ProbeOutcome(
            endpoint_id=endpoint.id,
            reachable=True,
            search_status=SearchStatus.OK,
            attempts=attempt,
        )

    return ProbeOutcome(
        endpoint_id=endpoint.id,
        reachable=False,
        search_status=last_status,
        failure_reason=last_reason,
        attempts=max_retry,
    )


def make_probe(endpoint: EndpointConfig, client: httpx.AsyncClient, settings: MonitorSettings):
    async def _run() -> ProbeOutcome:
        started = time.perf_counter()
        outcome = await probe_endpoint(endpoint, client, settings)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        LOGGER.log(
            logging.INFO if outcome.reachable or outcome.search_status is SearchStatus.DISABLED else logging.WARNING,
            "Probe finished endpoint=%s status=%s attempts=%s elapsed_ms=%s reason=%s",
            endpoint.id,
            outcome.search_status.value,
            outcome.attempts,
            round(elapsed_ms, 3),
            outcome.failure_reason,
        )
        return outcome

    return _run
