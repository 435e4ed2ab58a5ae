"""Closed-bar entry signals.

Three variants share one interface and differ only in which snapshot values
they read:

* **crossover** : fast MA crosses slow MA between offset 2 and offset 1,
  optionally filtered by close vs. a trend MA.
* **pullback** : trend bias from fast vs. slow MA, entry on an oscillator
  pullback (optionally only once it crosses back over the threshold).
* **band_reentry** : price closes back inside a volatility band after being
  outside it on the previous bar, confirmed by the oscillator.

An evaluator that finds both directions on one bar returns ``Signal.NONE``.
"""

from __future__ import annotations

from typing import Protocol

from sessionbot.config import SignalConfig
from sessionbot.strategy.contracts import IndicatorSnapshot, Signal


class SignalEvaluator(Protocol):
    name: str

    def requirements(self) -> list[tuple[str, int]]:
        ...

    def evaluate(self, snapshot: IndicatorSnapshot, *, spread: float = 0.0) -> Signal:
        ...


def _resolve(long_ok: bool, short_ok: bool) -> Signal:
    if long_ok and short_ok:
        return Signal.NONE
    if long_ok:
        return Signal.LONG
    if short_ok:
        return Signal.SHORT
    return Signal.NONE


class CrossoverSignal:
    name = "crossover"

    def __init__(self, *, trend_filter: bool = False):
        self.trend_filter = trend_filter

    def requirements(self) -> list[tuple[str, int]]:
        needed = [("fast_ma", 1), ("fast_ma", 2), ("slow_ma", 1), ("slow_ma", 2)]
        if self.trend_filter:
            needed += [("close", 1), ("trend_ma", 1)]
        return needed

    def evaluate(self, snapshot: IndicatorSnapshot, *, spread: float = 0.0) -> Signal:
        fast_1 = snapshot.value("fast_ma", 1)
        fast_2 = snapshot.value("fast_ma", 2)
        slow_1 = snapshot.value("slow_ma", 1)
        slow_2 = snapshot.value("slow_ma", 2)

        long_ok = fast_2 <= slow_2 and fast_1 > slow_1
        short_ok = fast_2 >= slow_2 and fast_1 < slow_1

        if self.trend_filter:
            close_1 = snapshot.value("close", 1)
            trend_1 = snapshot.value("trend_ma", 1)
            long_ok = long_ok and close_1 > trend_1
            short_ok = short_ok and close_1 < trend_1
        return _resolve(long_ok, short_ok)


class PullbackSignal:
    name = "pullback"

    def __init__(self, *, buy_level: float, sell_level: float, cross_back: bool = False):
        self.buy_level = buy_level
        self.sell_level = sell_level
        self.cross_back = cross_back

    def requirements(self) -> list[tuple[str, int]]:
        needed = [("fast_ma", 1), ("slow_ma", 1), ("oscillator", 1)]
        if self.cross_back:
            needed.append(("oscillator", 2))
        return needed

    def evaluate(self, snapshot: IndicatorSnapshot, *, spread: float = 0.0) -> Signal:
        fast_1 = snapshot.value("fast_ma", 1)
        slow_1 = snapshot.value("slow_ma", 1)
        osc_1 = snapshot.value("oscillator", 1)
        bias_up = fast_1 > slow_1
        bias_down = fast_1 < slow_1

        if self.cross_back:
            # beyond the level on the previous bar, back across it on the last one
            osc_2 = snapshot.value("oscillator", 2)
            long_trigger = osc_2 <= self.buy_level < osc_1
            short_trigger = osc_2 >= self.sell_level > osc_1
        else:
            long_trigger = osc_1 <= self.buy_level
            short_trigger = osc_1 >= self.sell_level
        return _resolve(bias_up and long_trigger, bias_down and short_trigger)


class BandReentrySignal:
    name = "band_reentry"

    def __init__(
        self,
        *,
        buy_level: float,
        sell_level: float,
        min_reentry_distance: float = 0.0,
        edge_spread_multiple: float = 0.0,
        use_high_low: bool = False,
    ):
        self.buy_level = buy_level
        self.sell_level = sell_level
        self.min_reentry_distance = max(0.0, min_reentry_distance)
        self.edge_spread_multiple = max(0.0, edge_spread_multiple)
        self.use_high_low = use_high_low

    def requirements(self) -> list[tuple[str, int]]:
        needed = [
            ("close", 1),
            ("band_upper", 1),
            ("band_upper", 2),
            ("band_lower", 1),
            ("band_lower", 2),
            ("oscillator", 1),
        ]
        if self.use_high_low:
            needed += [("high", 2), ("low", 2)]
        else:
            needed.append(("close", 2))
        if self.edge_spread_multiple > 0:
            needed.append(("band_middle", 1))
        return needed

    def evaluate(self, snapshot: IndicatorSnapshot, *, spread: float = 0.0) -> Signal:
        close_1 = snapshot.value("close", 1)
        upper_1 = snapshot.value("band_upper", 1)
        upper_2 = snapshot.value("band_upper", 2)
        lower_1 = snapshot.value("band_lower", 1)
        lower_2 = snapshot.value("band_lower", 2)
        osc_1 = snapshot.value("oscillator", 1)
        if self.use_high_low:
            probe_low_2 = snapshot.value("low", 2)
            probe_high_2 = snapshot.value("high", 2)
        else:
            probe_low_2 = probe_high_2 = snapshot.value("close", 2)

        long_ok = (
            probe_low_2 < lower_2
            and close_1 > lower_1 + self.min_reentry_distance
            and osc_1 <= self.buy_level
        )
        short_ok = (
            probe_high_2 > upper_2
            and close_1 < upper_1 - self.min_reentry_distance
            and osc_1 >= self.sell_level
        )

        if self.edge_spread_multiple > 0 and (long_ok or short_ok):
            middle_1 = snapshot.value("band_middle", 1)
            required = self.edge_spread_multiple * max(0.0, spread)
            long_ok = long_ok and (middle_1 - close_1) >= required
            short_ok = short_ok and (close_1 - middle_1) >= required
        return _resolve(long_ok, short_ok)


def build_evaluator(cfg: SignalConfig, *, point_size: float) -> SignalEvaluator:
    if cfg.variant == "crossover":
        return CrossoverSignal(trend_filter=cfg.trend_filter)
    if cfg.variant == "pullback":
        return PullbackSignal(
            buy_level=cfg.buy_level,
            sell_level=cfg.sell_level,
            cross_back=cfg.cross_back,
        )
    if cfg.variant == "band_reentry":
        return BandReentrySignal(
            buy_level=cfg.buy_level,
            sell_level=cfg.sell_level,
            min_reentry_distance=cfg.min_reentry_points * point_size,
            edge_spread_multiple=cfg.edge_spread_multiple,
            use_high_low=cfg.use_high_low,
        )
    raise ValueError(f"Unknown signal variant: {cfg.variant}")
