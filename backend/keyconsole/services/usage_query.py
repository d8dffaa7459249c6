"""
Usage query helpers — symbolic time ranges, window sizes, model rollups.

All computation is deterministic and side-effect free; the metering
client does the I/O.
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Fallback windows when the time range token is not understood
DEFAULT_USAGE_RANGE = "24h"
DEFAULT_MODEL_USAGE_RANGE = "30d"

_RANGE_TOKEN = re.compile(r"(\d+)([hd])")


class WindowSize(str, Enum):
    """Metering aggregation granularity."""

    MINUTE = "MINUTE"
    HOUR = "HOUR"
    DAY = "DAY"
    MONTH = "MONTH"


_WINDOW_ALIASES = {
    "1h": WindowSize.HOUR,
    "1d": WindowSize.DAY,
}


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Absolute [start, end] bounds resolved from a time range token."""

    start: datetime.datetime
    end: datetime.datetime

    @property
    def start_iso(self) -> str:
        return _iso(self.start)

    @property
    def end_iso(self) -> str:
        return _iso(self.end)


def parse_time_range(
    token: str | None,
    default: str = DEFAULT_USAGE_RANGE,
    now: datetime.datetime | None = None,
) -> TimeWindow:
    """
    Resolve a token like "24h" or "30d" into absolute UTC bounds ending now.

    Anything that is not digits followed by h/d, or that reaches past the
    earliest representable date, falls back to `default`.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)

    window = _window_for(token, now)
    if window is None:
        window = _window_for(default, now)
        if window is None:
            raise ValueError(f"Invalid default time range {default!r}")
    return window


def coerce_window_size(raw: str | None) -> WindowSize:
    """Map free-form input onto WindowSize; unknown values become HOUR."""
    if not raw:
        return WindowSize.HOUR
    text = raw.strip()
    if text.lower() in _WINDOW_ALIASES:
        return _WINDOW_ALIASES[text.lower()]
    try:
        return WindowSize(text.upper())
    except ValueError:
        return WindowSize.HOUR


def aggregate_by_model(rows: Iterable[Mapping[str, Any]]) -> dict[str, float]:
    """
    Sum `value` per groupBy.model across a usage series.

    Rows without a model are counted under "unknown".
    """
    totals: dict[str, float] = {}
    for row in rows:
        group = row.get("groupBy") or {}
        model = group.get("model") or "unknown"
        totals[model] = totals.get(model, 0) + (row.get("value") or 0)
    return totals


def series_rows(payload: Any) -> list[dict[str, Any]]:
    """
    Extract the row list from a meter query response.

    The metering API wraps rows as {"data": [...], "from", "to",
    "windowSize"}; anything else yields no rows.
    """
    if isinstance(payload, Mapping) and isinstance(payload.get("data"), list):
        return [dict(row) for row in payload["data"] if isinstance(row, Mapping)]
    return []


def _window_for(token: str | None, now: datetime.datetime) -> TimeWindow | None:
    match = _RANGE_TOKEN.fullmatch((token or "").strip())
    if match is None:
        return None

    try:
        amount, unit = int(match.group(1)), match.group(2)
        offset = datetime.timedelta(hours=amount) if unit == "h" else datetime.timedelta(days=amount)
        return TimeWindow(start=now - offset, end=now)
    except (OverflowError, ValueError):
        logger.warning("Time range %.40r is out of range", token)
        return None


def _iso(value: datetime.datetime) -> str:
    return value.astimezone(datetime.timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )
