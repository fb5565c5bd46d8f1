from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from source_checks.probe import ProbeOutcome, SearchStatus


LOGGER = logging.getLogger("source-monitoring")

ProbeTask = Callable[[], Awaitable[ProbeOutcome]]


async def run_all(
    probes: Sequence[tuple[str, ProbeTask]],
    concurrency_limit: int,
) -> dict[str, ProbeOutcome]:
    """
    Run every probe with at most ``concurrency_limit`` in flight.

    Returns one outcome per input, keyed by endpoint id in input order. A probe
    that raises is recorded as unreachable; its siblings keep running.
    """
    semaphore = asyncio.Semaphore(max(1, int(concurrency_limit)))

    async def _safe_run(endpoint_id: str, task: ProbeTask) -> ProbeOutcome:
        async with semaphore:
            try:
                return await task()
            except Exception as exc:
                err = f"{type(exc).__name__}: {exc}"
                LOGGER.exception("Probe crashed endpoint=%s error=%s", endpoint_id, err)
                return ProbeOutcome(
                    endpoint_id=endpoint_id,
                    reachable=False,
                    search_status=SearchStatus.UNREACHABLE,
                    failure_reason=f"probe_crashed: {err}",
                )

    outcomes = await asyncio.gather(*(_safe_run(endpoint_id, task) for endpoint_id, task in probes))
    return {endpoint_id: outcome for (endpoint_id, _task), outcome in zip(probes, outcomes)}
