from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RiskState:
    """Per-instance counters behind the circuit-breaker gates.

    There is no explicit halt/cooldown mode: the gate chain derives it from
    these fields on every bar.
    """

    trades_today: int = 0
    consec_losses: int = 0
    last_close_time: datetime | None = None
    last_trade_time: datetime | None = None
    current_day_key: date | None = None

    def roll_day(self, day: date, *, reset_loss_streak: bool = False) -> bool:
        """Reset daily counters when *day* differs from the stored key."""
        if self.current_day_key == day:
            return False
        previous = self.current_day_key
        self.current_day_key = day
        self.trades_today = 0
        if reset_loss_streak:
            self.consec_losses = 0
        if previous is not None:
            LOGGER.debug("Risk state rolled %s -> %s (loss streak=%d)", previous, day, self.consec_losses)
        return previous is not None

    def record_trade(self, now: datetime) -> None:
        self.trades_today += 1
        self.last_trade_time = now

    def apply_close(self, net_profit: float, now: datetime) -> None:
        if net_profit < 0:
            self.consec_losses += 1
        else:
            self.consec_losses = 0
        self.last_close_time = now

    def minutes_since_close(self, now: datetime) -> float | None:
        if self.last_close_time is None:
            return None
        return (now - self.last_close_time).total_seconds() / 60.0

    def minutes_since_trade(self, now: datetime) -> float | None:
        if self.last_trade_time is None:
            return None
        return (now - self.last_trade_time).total_seconds() / 60.0
