from __future__ import annotations

import logging
from dataclasses import dataclass

from sessionbot.config import InstrumentConfig, OrdersConfig
from sessionbot.execution.position_sizer import SizingMode, SizingRequest, compute_position_size
from sessionbot.strategy.contracts import Signal

LOGGER = logging.getLogger(__name__)


class StopsInvalidError(ValueError):
    """Stop/take-profit levels violate the venue's minimum distance."""


@dataclass(slots=True)
class OrderIntent:
    side: Signal
    entry_price: float
    stop_loss: float
    take_profit: float
    volume: float
    stop_distance: float
    take_distance: float
    risk_cash: float = 0.0


class OrderIntentBuilder:
    def __init__(self, *, orders: OrdersConfig, instrument: InstrumentConfig):
        self.orders = orders
        self.instrument = instrument

    @property
    def needs_volatility(self) -> bool:
        return self.orders.stop_mode == "atr" or self.orders.take_mode == "atr"

    def stop_distance(self, volatility: float | None) -> float:
        if self.orders.stop_mode == "atr":
            if volatility is None or volatility <= 0:
                raise StopsInvalidError("ATR stop requested without a positive volatility value")
            return volatility * self.orders.stop_atr_multiple
        return self.orders.stop_points * self.instrument.point_size

    def take_distance(self, stop_distance: float, volatility: float | None) -> float:
        mode = self.orders.take_mode
        if mode == "rr":
            return stop_distance * self.orders.reward_risk
        if mode == "atr":
            if volatility is None or volatility <= 0:
                raise StopsInvalidError("ATR take-profit requested without a positive volatility value")
            return volatility * self.orders.take_atr_multiple
        return self.orders.take_points * self.instrument.point_size

    def _round(self, price: float) -> float:
        return round(price, self.instrument.digits)

    def build(
        self,
        signal: Signal,
        *,
        bid: float,
        ask: float,
        equity: float,
        min_stop_distance: float = 0.0,
        volatility: float | None = None,
    ) -> OrderIntent:
        """Turn *signal* into concrete levels and a volume.

        Distances to the venue minimum are measured from the quote the
        position closes at (bid for a long, ask for a short), so the spread
        counts against the stop and in favour of the take-profit. With
        ``stops_policy == "reject"`` a level closer than
        ``min_stop_distance`` raises :class:`StopsInvalidError`; with
        ``"widen"`` it is pushed out to the minimum.
        """
        if signal is Signal.NONE:
            raise ValueError("cannot build an order for Signal.NONE")

        stop_dist = self.stop_distance(volatility)
        take_dist = self.take_distance(stop_dist, volatility)
        min_dist = max(0.0, float(min_stop_distance))
        spread = max(0.0, ask - bid)
        stop_gap = stop_dist - spread
        take_gap = take_dist + spread
        if stop_gap < min_dist or take_gap < min_dist:
            if self.orders.stops_policy == "reject":
                raise StopsInvalidError(
                    f"stop={stop_gap:.6f} take={take_gap:.6f} from close quote below venue minimum {min_dist:.6f}"
                )
            LOGGER.debug("Widening stops to venue minimum %.6f (spread %.6f)", min_dist, spread)
            stop_dist = max(stop_dist, min_dist + spread)
            take_dist = max(take_dist, min_dist - spread)

        if signal is Signal.LONG:
            entry = ask
            stop_loss = self._round(entry - stop_dist)
            take_profit = self._round(entry + take_dist)
        else:
            entry = bid
            stop_loss = self._round(entry + stop_dist)
            take_profit = self._round(entry - take_dist)
        if stop_loss <= 0 or take_profit <= 0:
            raise StopsInvalidError("computed levels are not positive prices")

        sizing = compute_position_size(
            SizingRequest(
                mode=SizingMode(self.orders.sizing_mode),
                equity=equity,
                stop_distance=stop_dist,
                fixed_volume=self.orders.fixed_volume,
                risk_pct=self.orders.risk_per_trade,
                value_per_point=self.instrument.value_per_point / self.instrument.point_size,
                min_volume=self.instrument.min_volume,
                max_volume=self.instrument.max_volume,
                volume_step=self.instrument.volume_step,
                hard_cap=self.orders.max_volume_cap,
            )
        )
        return OrderIntent(
            side=signal,
            entry_price=entry,
            stop_loss=stop_loss,
            take_profit=take_profit,
            volume=sizing.volume,
            stop_distance=stop_dist,
            take_distance=take_dist,
            risk_cash=sizing.risk_cash,
        )
