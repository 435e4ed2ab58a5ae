from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from sessionbot.strategy.contracts import DealEvent, DealKind, Position, Signal

LOGGER = logging.getLogger(__name__)


class ExecutionError(RuntimeError):
    """Venue call failed or timed out."""


@dataclass(slots=True)
class OrderResult:
    ok: bool
    reason_code: str = ""
    deal_id: str | None = None

    @classmethod
    def accepted(cls, deal_id: str | None = None) -> "OrderResult":
        return cls(ok=True, deal_id=deal_id)

    @classmethod
    def rejected(cls, reason_code: str) -> "OrderResult":
        return cls(ok=False, reason_code=reason_code)


class ExecutionVenue(Protocol):
    def submit_market_order(
        self,
        side: Signal,
        volume: float,
        stop_loss: float,
        take_profit: float,
        tag: str,
    ) -> OrderResult:
        ...

    def modify_stop(self, new_stop: float, take_profit: float) -> OrderResult:
        ...

    def close_position(self) -> OrderResult:
        ...

    def get_position(self) -> Position | None:
        ...

    def min_stop_distance(self) -> float:
        ...

    def equity(self) -> float:
        ...


DealListener = Callable[[DealEvent], None]


class PaperVenue:
    """In-memory venue for dry-run: one position, market fills at bid/ask.

    Feed it quotes with :meth:`on_quote`; stop-loss and take-profit are
    enforced there. Every fill is reported to the registered listener as a
    :class:`DealEvent`.
    """

    def __init__(
        self,
        *,
        symbol: str,
        magic: int,
        equity: float = 10000.0,
        min_stop_distance: float = 0.0,
        value_per_price_unit: float = 1.0,
        digits: int = 5,
    ):
        self.symbol = symbol
        self.magic = magic
        self._equity = float(equity)
        self._min_stop_distance = max(0.0, float(min_stop_distance))
        self.value_per_price_unit = float(value_per_price_unit)
        self.digits = digits
        self._position: Position | None = None
        self._bid: float | None = None
        self._ask: float | None = None
        self._now: datetime | None = None
        self._listeners: list[DealListener] = []
        self._last_event: DealEvent | None = None
        self.modify_calls: list[float] = []

    def subscribe(self, listener: DealListener) -> None:
        self._listeners.append(listener)

    def equity(self) -> float:
        return self._equity

    def min_stop_distance(self) -> float:
        return self._min_stop_distance

    def get_position(self) -> Position | None:
        return self._position

    def on_quote(self, *, now: datetime, bid: float, ask: float) -> None:
        self._now = now
        self._bid = float(bid)
        self._ask = float(ask)
        position = self._position
        if position is None:
            return
        if position.side is Signal.LONG:
            if position.stop_loss > 0 and bid <= position.stop_loss:
                self._close(position.stop_loss, reason="SL")
            elif position.take_profit > 0 and bid >= position.take_profit:
                self._close(position.take_profit, reason="TP")
        else:
            if position.stop_loss > 0 and ask >= position.stop_loss:
                self._close(position.stop_loss, reason="SL")
            elif position.take_profit > 0 and ask <= position.take_profit:
                self._close(position.take_profit, reason="TP")

    def submit_market_order(
        self,
        side: Signal,
        volume: float,
        stop_loss: float,
        take_profit: float,
        tag: str,
    ) -> OrderResult:
        if self._bid is None or self._ask is None or self._now is None:
            return OrderResult.rejected("NO_QUOTE")
        if self._position is not None:
            return OrderResult.rejected("POSITION_EXISTS")
        if side is Signal.NONE or volume <= 0:
            return OrderResult.rejected("INVALID_REQUEST")
        price = self._ask if side is Signal.LONG else self._bid
        deal_id = f"DRY-{uuid.uuid4().hex[:12]}"
        self._position = Position(
            side=side,
            open_time=self._now,
            open_price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            volume=volume,
            initial_stop=stop_loss,
            deal_id=deal_id,
        )
        LOGGER.info(
            "DRY-RUN: %s %s %.2f @ %.*f sl=%.*f tp=%.*f tag=%s",
            self.symbol,
            side.value,
            volume,
            self.digits,
            price,
            self.digits,
            stop_loss,
            self.digits,
            take_profit,
            tag,
        )
        self._emit(
            DealEvent(
                deal_id=deal_id,
                kind=DealKind.OPEN,
                side=side,
                volume=volume,
                price=price,
                time=self._now,
            )
        )
        return OrderResult.accepted(deal_id)

    def modify_stop(self, new_stop: float, take_profit: float) -> OrderResult:
        position = self._position
        if position is None:
            return OrderResult.rejected("NO_POSITION")
        if self._bid is not None and self._ask is not None:
            if position.side is Signal.LONG and new_stop >= self._bid - self._min_stop_distance:
                return OrderResult.rejected("INVALID_STOPS")
            if position.side is Signal.SHORT and new_stop <= self._ask + self._min_stop_distance:
                return OrderResult.rejected("INVALID_STOPS")
        position.stop_loss = new_stop
        position.take_profit = take_profit
        self.modify_calls.append(new_stop)
        return OrderResult.accepted(position.deal_id)

    def close_position(self) -> OrderResult:
        position = self._position
        if position is None:
            return OrderResult.rejected("NO_POSITION")
        if self._bid is None or self._ask is None:
            return OrderResult.rejected("NO_QUOTE")
        price = self._bid if position.side is Signal.LONG else self._ask
        self._close(price, reason="MANUAL")
        return OrderResult.accepted(position.deal_id)

    def redeliver_last(self) -> None:
        """Send the most recent deal notification again."""
        if self._last_event is not None:
            self._notify(self._last_event)

    def _close(self, price: float, *, reason: str) -> None:
        position = self._position
        if position is None:
            return
        if position.side is Signal.LONG:
            profit = (price - position.open_price) * position.volume * self.value_per_price_unit
        else:
            profit = (position.open_price - price) * position.volume * self.value_per_price_unit
        self._position = None
        self._equity += profit
        LOGGER.info("DRY-RUN: %s closed %s @ %.*f reason=%s pnl=%.2f", self.symbol, position.deal_id, self.digits, price, reason, profit)
        self._emit(
            DealEvent(
                deal_id=f"{position.deal_id}-C",
                kind=DealKind.CLOSE,
                side=position.side,
                volume=position.volume,
                price=price,
                profit=round(profit, 2),
                time=self._now,
                metadata={"reason": reason, "position_id": position.deal_id},
            )
        )

    def _emit(self, event: DealEvent) -> None:
        self._last_event = event
        self._notify(event)

    def _notify(self, event: DealEvent) -> None:
        for listener in list(self._listeners):
            listener(event)
