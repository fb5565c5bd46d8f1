"""Endpoint list and monitor settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError


DEFAULT_SEARCH_KEYWORD = "斗罗大陆"
README_START_MARKER = "<!-- API_STATUS_START -->"
README_END_MARKER = "<!-- API_STATUS_END -->"


class ConfigurationError(ValueError):
    """Endpoint list or settings could not be loaded. Fatal for a run."""


@dataclass(frozen=True)
class EndpointConfig:
    id: str
    name: str
    base_url: str
    group: str = "normal"
    enabled: bool = True


class MonitorSettings(BaseModel):
    """Knobs for one monitoring run."""

    # History / classification
    max_days: int = Field(default=30, ge=1, description="Daily records kept in the rolling window")
    warn_streak: int = Field(default=3, ge=1, description="Consecutive failures before an endpoint is critical")
    trend_days: int = Field(default=7, ge=1, description="Records shown in the trend column")

    # Search stage
    search_enabled: bool = Field(default=True, description="Run the search stage after connectivity")
    search_keyword: str = Field(default=DEFAULT_SEARCH_KEYWORD, description="Keyword sent as wd=")
    detail_search: bool = Field(default=False, description="Send ac=detail along with wd=")
    keyword_match: bool = Field(default=False, description="Require the keyword in the returned list")
    pollution_markers: list[str] = Field(default_factory=list, description="Substrings marking spam results")
    name_field: str = Field(default="vod_name", description="Display-name field of a search result")

    # Transport / scheduling
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    concurrency_limit: int = Field(default=10, ge=1, description="Probes in flight at once")
    max_retry: int = Field(default=3, ge=1, description="Attempts per endpoint")
    retry_delay_seconds: float = Field(default=0.5, ge=0, description="Sleep between attempts")
    interval_seconds: int = Field(default=86400, ge=1, description="Sleep between runs in --loop mode")

    # Output
    timezone: str = Field(default="Asia/Shanghai", description="Timezone for report timestamps and record dates")
    report_title: str = Field(default="API Health Report", description="Heading of the report")
    readme_start_marker: str = Field(default=README_START_MARKER)
    readme_end_marker: str = Field(default=README_END_MARKER)


_ENV_OVERRIDES = {
    "search_keyword": "SEARCH_KEYWORD",
    "concurrency_limit": "CHECK_CONCURRENCY",
    "max_retry": "MAX_RETRY",
    "timeout_seconds": "CHECK_TIMEOUT_SECONDS",
    "max_days": "HISTORY_MAX_DAYS",
    "warn_streak": "WARN_STREAK",
    "timezone": "REPORT_TIMEZONE",
}


def load_settings(path: str | Path | None = None, **overrides: Any) -> MonitorSettings:
    """Load settings from an optional YAML file, then env vars, then explicit overrides."""
    if path is None:
        path = os.getenv("SOURCE_MONITOR_SETTINGS")

    data: dict[str, Any] = {}
    if path:
        p = Path(path)
        try:
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Cannot read settings file {p}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError("Settings YAML must be a mapping")
        data.update(raw)

    for key, env_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value is not None and value.strip():
            data[key] = value.strip()

    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return MonitorSettings(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid monitor settings: {exc}") from exc


def _coerce_enabled(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "off")
    return bool(value)


def normalize_endpoint_entries(entries_cfg: list[Any]) -> list[EndpointConfig]:
    endpoints: list[EndpointConfig] = []
    seen: set[str] = set()

    for idx, entry in enumerate(entries_cfg):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"sources[{idx}] must be a mapping, got {type(entry).__name__}")

        base_url = str(entry.get("baseUrl") or entry.get("base_url") or entry.get("api") or "").strip()
        if not base_url:
            raise ConfigurationError(f"sources[{idx}].baseUrl is required")

        endpoint_id = str(entry.get("id") or "").strip() or base_url
        if endpoint_id in seen:
            raise ConfigurationError(f"sources[{idx}] duplicates id {endpoint_id!r}")
        seen.add(endpoint_id)

        endpoints.append(
            EndpointConfig(
                id=endpoint_id,
                name=str(entry.get("name") or endpoint_id).strip(),
                base_url=base_url,
                group=str(entry.get("group") or "normal").strip() or "normal",
                enabled=_coerce_enabled(entry.get("enabled")),
            )
        )

    return endpoints


def load_endpoints(path: str | Path) -> list[EndpointConfig]:
    """
    Read the endpoint list.

    Accepts a JSON array (KVideo-config.json layout) or YAML: either a list or
    a mapping with a ``sources`` list.
    """
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigurationError(f"Endpoint config not readable path={p}: {exc}") from exc

    try:
        if p.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Endpoint config not parseable path={p}: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("sources")
    if not isinstance(data, list) or not data:
        raise ConfigurationError("Endpoint config must contain a non-empty list of sources")

    return normalize_endpoint_entries(data)


def endpoint_aliases(endpoints: list[EndpointConfig]) -> dict[str, str]:
    """Map base URL -> endpoint id, for decoding history keyed by URL."""
    return {e.base_url: e.id for e in endpoints}
