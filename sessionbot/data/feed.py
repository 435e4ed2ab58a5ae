"""JSON-lines tick feed exported by the trading platform.

One record per line::

    {"symbol": "EURUSD", "time": "2026-03-02T10:00:05Z", "bid": 1.1001, "ask": 1.1002,
     "bar_time": "2026-03-02T10:00:00Z",
     "indicators": {"ma_fast:0": [1.1003, 1.1001, 1.0998], "atr:0": [0.0011, 0.0012]}}

``indicators`` values are indexed by bar offset (0 = forming bar).
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from sessionbot.data.indicators import IndicatorUnavailable
from sessionbot.strategy.contracts import Tick

LOGGER = logging.getLogger(__name__)


def parse_timestamp(value: str) -> datetime:
    normalized = str(value).strip().replace(" ", "T")
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    dt = datetime.fromisoformat(normalized)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _series_key(raw: str) -> str:
    handle, _, buffer = str(raw).partition(":")
    return f"{handle.strip().lower()}:{int(buffer or 0)}"


@dataclass(slots=True)
class FeedRecord:
    symbol: str
    tick: Tick
    indicators: dict[str, list[float | None]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, item: dict[str, Any]) -> "FeedRecord":
        bar_raw = item.get("bar_time")
        tick = Tick(
            time=parse_timestamp(item["time"]),
            bid=float(item["bid"]),
            ask=float(item["ask"]),
            bar_time=parse_timestamp(bar_raw) if bar_raw else None,
        )
        indicators = {
            _series_key(key): [None if v is None else float(v) for v in values]
            for key, values in (item.get("indicators") or {}).items()
        }
        return cls(symbol=str(item["symbol"]).strip().upper(), tick=tick, indicators=indicators)


def read_feed(path: str | Path) -> dict[str, list[FeedRecord]]:
    """Load a feed file grouped by symbol, keeping file order per symbol."""
    grouped: dict[str, list[FeedRecord]] = defaultdict(list)
    with Path(path).open("r", encoding="utf-8") as file:
        for line_no, line in enumerate(file, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                record = FeedRecord.from_dict(json.loads(text))
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed feed line %d: %s", line_no, exc)
                continue
            grouped[record.symbol].append(record)
    return dict(grouped)


class FeedIndicatorSource:
    """Serves indicator values from the most recently replayed record."""

    def __init__(self, records: Iterable[FeedRecord]):
        self._handles: set[str] = set()
        for record in records:
            self._handles.update(record.indicators.keys())
        self._current: dict[str, list[float | None]] = {}

    def advance(self, record: FeedRecord) -> None:
        self._current = record.indicators

    def has_indicator(self, handle: str, buffer: int) -> bool:
        return f"{handle}:{buffer}" in self._handles

    def get_value(self, handle: str, buffer: int, offset: int) -> float:
        series = self._current.get(f"{handle}:{buffer}")
        if series is None or offset < 0 or offset >= len(series) or series[offset] is None:
            raise IndicatorUnavailable(f"{handle}:{buffer}[{offset}] not in current feed record")
        return float(series[offset])
