from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from source_checks.config import EndpointConfig
from source_checks.history import History, Trend, TREND_DAYS, count_outcomes, streak, success_rate, trend
from source_checks.probe import ProbeOutcome, SearchStatus


WARN_STREAK = 3


class Status(str, Enum):
    CRITICAL = "CRITICAL"
    DOWN = "DOWN"
    HEALTHY = "HEALTHY"
    DISABLED = "DISABLED"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


# Worst first.
_SEVERITY = {
    Status.CRITICAL: 1,
    Status.DOWN: 2,
    Status.HEALTHY: 3,
    Status.DISABLED: 4,
}


@dataclass(frozen=True)
class EndpointStats:
    endpoint: EndpointConfig
    outcome: ProbeOutcome
    ok_count: int
    fail_count: int
    streak: int
    trend: list[Trend]
    success_rate: float | None
    status: Status

    @property
    def endpoint_id(self) -> str:
        return self.endpoint.id


def classify(
    endpoint: EndpointConfig,
    outcome: ProbeOutcome,
    streak_count: int,
    *,
    warn_streak: int = WARN_STREAK,
) -> Status:
    if not endpoint.enabled:
        return Status.DISABLED
    # A sustained failure pattern outranks today's single result.
    if streak_count >= max(1, int(warn_streak)):
        return Status.CRITICAL
    if outcome.reachable:
        return Status.HEALTHY
    return Status.DOWN


def build_endpoint_stats(
    endpoints: list[EndpointConfig],
    history: History,
    outcomes: dict[str, ProbeOutcome],
    *,
    warn_streak: int = WARN_STREAK,
    trend_days: int = TREND_DAYS,
) -> list[EndpointStats]:
    """
    Per-endpoint stats from a history that already contains today's record,
    sorted worst-first. Ties keep configuration order.
    """
    stats: list[EndpointStats] = []
    for endpoint in endpoints:
        outcome = outcomes.get(endpoint.id) or ProbeOutcome(
            endpoint_id=endpoint.id,
            reachable=False,
            search_status=SearchStatus.UNREACHABLE,
            failure_reason="missing_result",
        )
        fail_streak = streak(history, endpoint.id)
        ok_count, fail_count = count_outcomes(history, endpoint.id)
        stats.append(
            EndpointStats(
                endpoint=endpoint,
                outcome=outcome,
                ok_count=ok_count,
                fail_count=fail_count,
                streak=fail_streak,
                trend=trend(history, endpoint.id, trend_days),
                success_rate=success_rate(history, endpoint.id),
                status=classify(endpoint, outcome, fail_streak, warn_streak=warn_streak),
            )
        )

    stats.sort(key=lambda s: s.status.severity)
    return stats
