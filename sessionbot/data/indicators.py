from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Mapping, Protocol

from sessionbot.strategy.contracts import IndicatorRef, IndicatorSnapshot


class IndicatorUnavailable(LookupError):
    """Indicator value could not be read for the requested bar."""


class IndicatorSource(Protocol):
    def get_value(self, handle: str, buffer: int, offset: int) -> float:
        ...

    def has_indicator(self, handle: str, buffer: int) -> bool:
        ...


def read_value(source: IndicatorSource, ref: IndicatorRef, offset: int) -> float:
    value = source.get_value(ref.handle, ref.buffer, offset)
    if value is None:
        raise IndicatorUnavailable(f"{ref}[{offset}] returned no value")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise IndicatorUnavailable(f"{ref}[{offset}] is not a finite number")
    return value


def read_snapshot(
    source: IndicatorSource,
    refs: Mapping[str, IndicatorRef],
    requirements: Iterable[tuple[str, int]],
    *,
    bar_time: datetime | None = None,
) -> IndicatorSnapshot:
    """Fetch closed-bar values; any missing value aborts the whole snapshot."""
    values: dict[tuple[str, int], float] = {}
    for name, offset in requirements:
        if offset < 1:
            raise ValueError(f"closed-bar snapshot cannot read {name}[{offset}]")
        if (name, offset) in values:
            continue
        ref = refs.get(name)
        if ref is None:
            raise IndicatorUnavailable(f"no indicator mapped for '{name}'")
        values[(name, offset)] = read_value(source, ref, offset)
    return IndicatorSnapshot(values=values, bar_time=bar_time)


def read_current(source: IndicatorSource, ref: IndicatorRef) -> float:
    """Value on the forming bar (offset 0); exits and trailing only."""
    return read_value(source, ref, 0)


class StaticIndicatorSource:
    """In-memory source: ``{"handle:buffer": [offset0, offset1, ...]}``."""

    def __init__(self, series: Mapping[str, list[float]] | None = None):
        self._series: dict[str, list[float]] = {}
        for key, values in (series or {}).items():
            self.set_series(key, values)

    def set_series(self, key: str, values: list[float]) -> None:
        handle, _, buffer = str(key).partition(":")
        self._series[f"{handle.strip().lower()}:{int(buffer or 0)}"] = [float(v) for v in values]

    def has_indicator(self, handle: str, buffer: int) -> bool:
        return f"{handle}:{buffer}" in self._series

    def get_value(self, handle: str, buffer: int, offset: int) -> float:
        series = self._series.get(f"{handle}:{buffer}")
        if series is None or offset < 0 or offset >= len(series):
            raise IndicatorUnavailable(f"{handle}:{buffer}[{offset}] not available")
        return series[offset]
