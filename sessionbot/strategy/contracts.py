from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Signal(str, Enum):
    NONE = "NONE"
    LONG = "LONG"
    SHORT = "SHORT"


class DealKind(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"


@dataclass(frozen=True, slots=True)
class InstanceIdentity:
    symbol: str
    timeframe: str
    variant: str
    magic: int

    @property
    def label(self) -> str:
        return f"{self.symbol}/{self.timeframe}/{self.variant}#{self.magic}"


@dataclass(frozen=True, slots=True)
class IndicatorRef:
    handle: str
    buffer: int = 0

    def __str__(self) -> str:
        return f"{self.handle}:{self.buffer}"


def parse_indicator_ref(raw: str) -> IndicatorRef:
    """Parse ``"handle"`` or ``"handle:buffer"``."""
    text = str(raw).strip()
    if not text:
        raise ValueError("indicator reference must not be empty")
    handle, sep, buffer_raw = text.partition(":")
    handle = handle.strip().lower()
    if not handle:
        raise ValueError(f"indicator reference '{raw}' has no handle")
    if not sep:
        return IndicatorRef(handle=handle)
    try:
        buffer = int(buffer_raw)
    except ValueError as exc:
        raise ValueError(f"indicator reference '{raw}' has a non-integer buffer") from exc
    if buffer < 0:
        raise ValueError(f"indicator reference '{raw}' has a negative buffer")
    return IndicatorRef(handle=handle, buffer=buffer)


# Logical indicator names used across signals, exits and order building.
DEFAULT_INDICATORS: dict[str, IndicatorRef] = {
    "close": IndicatorRef("close"),
    "high": IndicatorRef("high"),
    "low": IndicatorRef("low"),
    "fast_ma": IndicatorRef("ma_fast"),
    "slow_ma": IndicatorRef("ma_slow"),
    "trend_ma": IndicatorRef("ma_trend"),
    "oscillator": IndicatorRef("rsi"),
    "band_middle": IndicatorRef("bands", 0),
    "band_upper": IndicatorRef("bands", 1),
    "band_lower": IndicatorRef("bands", 2),
    "volatility": IndicatorRef("atr"),
    "regime": IndicatorRef("adx"),
}


@dataclass(frozen=True, slots=True)
class IndicatorSnapshot:
    """Closed-bar indicator values keyed by ``(name, offset)``."""

    values: Mapping[tuple[str, int], float]
    bar_time: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def value(self, name: str, offset: int = 1) -> float:
        try:
            return self.values[(name, offset)]
        except KeyError:
            raise KeyError(f"snapshot has no value for {name}[{offset}]") from None

    def has(self, name: str, offset: int = 1) -> bool:
        return (name, offset) in self.values


@dataclass(slots=True)
class Tick:
    time: datetime
    bid: float
    ask: float
    bar_time: datetime | None = None

    @property
    def spread(self) -> float:
        return max(0.0, self.ask - self.bid)


@dataclass(slots=True)
class Position:
    side: Signal
    open_time: datetime
    open_price: float
    stop_loss: float
    take_profit: float
    volume: float
    initial_stop: float
    deal_id: str = ""


@dataclass(slots=True)
class DealEvent:
    deal_id: str
    kind: DealKind
    side: Signal
    volume: float
    price: float
    profit: float = 0.0
    commission: float = 0.0
    swap: float = 0.0
    time: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def net_profit(self) -> float:
        return self.profit + self.commission + self.swap
