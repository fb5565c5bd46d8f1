"""Telegram notice for endpoints that have been failing for warn_streak+ runs."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import httpx

from source_checks.classify import EndpointStats, Status


LOGGER = logging.getLogger("source-monitoring")

TELEGRAM_API_URL = "https://api.telegram.org"
# Telegram rejects messages over 4096 characters.
MESSAGE_LIMIT = 3900


@dataclass(frozen=True)
class AlertTarget:
    bot_token: str
    chat_id: str

    @classmethod
    def from_env(cls) -> AlertTarget | None:
        bot_token = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
        chat_id = (os.getenv("TELEGRAM_CHAT_ID") or "").strip()
        if not bot_token or not chat_id:
            return None
        return cls(bot_token=bot_token, chat_id=chat_id)

    def redact(self, text: str) -> str:
        return text.replace(self.bot_token, "<redacted>")


def _endpoint_line(s: EndpointStats) -> str:
    reason = s.outcome.failure_reason or s.outcome.search_status.value
    return f"- {s.endpoint.name} ({s.endpoint.id}) streak={s.streak} last={reason}"


def critical_alert_messages(
    stats: list[EndpointStats],
    *,
    timestamp: str,
    warn_streak: int,
    limit: int = MESSAGE_LIMIT,
) -> list[str]:
    """
    Messages listing every CRITICAL endpoint, or [] when there is none.

    Endpoint lines are never split across messages; each message after the
    first starts with a short continuation header. A single line longer than
    the limit is truncated.
    """
    critical = [s for s in stats if s.status is Status.CRITICAL]
    if not critical:
        return []

    header = f"🚨 {len(critical)} API source(s) failing for {warn_streak}+ consecutive runs\nChecked: {timestamp}\n"
    continued = f"🚨 (continued) {timestamp}\n"
    limit = max(len(header) + 2, int(limit))

    messages: list[str] = []
    current = header
    for s in critical:
        line = _endpoint_line(s)
        if len(current) + 1 + len(line) > limit and current not in (header, continued):
            messages.append(current.rstrip())
            current = continued
        room = limit - len(current) - 1
        if len(line) > room:
            line = line[: max(1, room - 1)] + "…"
        current = f"{current}\n{line}"
    messages.append(current.rstrip())
    return messages


async def send_critical_alert(
    client: httpx.AsyncClient,
    stats: list[EndpointStats],
    *,
    timestamp: str,
    warn_streak: int,
    target: AlertTarget | None = None,
    limit: int = MESSAGE_LIMIT,
) -> int:
    """
    Send the critical-endpoint notice to Telegram.

    Returns the number of messages Telegram accepted. Delivery problems are
    logged (with the bot token redacted) and never raised.
    """
    target = target or AlertTarget.from_env()
    if target is None:
        return 0
    messages = critical_alert_messages(stats, timestamp=timestamp, warn_streak=warn_streak, limit=limit)
    if not messages:
        return 0

    url = f"{TELEGRAM_API_URL}/bot{target.bot_token}/sendMessage"
    delivered = 0
    for part, text in enumerate(messages, start=1):
        try:
            resp = await client.post(url, json={"chat_id": target.chat_id, "text": text}, timeout=15.0)
            data = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            LOGGER.warning(
                "Critical alert delivery failed part=%s/%s error=%s",
                part,
                len(messages),
                target.redact(f"{type(exc).__name__}: {exc}"),
            )
            continue
        if isinstance(data, dict) and data.get("ok") is True:
            delivered += 1
        else:
            description = data.get("description") if isinstance(data, dict) else None
            LOGGER.warning(
                "Critical alert rejected part=%s/%s http_status=%s description=%s",
                part,
                len(messages),
                resp.status_code,
                target.redact(str(description)),
            )

    LOGGER.warning("Critical alert sent delivered=%s parts=%s", delivered, len(messages))
    return delivered
