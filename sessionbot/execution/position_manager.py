from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sessionbot.clock import is_past_weekly_cutoff, parse_hhmm
from sessionbot.config import ExitsConfig, SessionConfig
from sessionbot.data.indicators import IndicatorSource, IndicatorUnavailable, read_current
from sessionbot.execution.venue import ExecutionError, ExecutionVenue
from sessionbot.strategy.contracts import IndicatorRef, Position, Signal

LOGGER = logging.getLogger(__name__)

REJECTED_SUFFIX = "_REJECTED"


def favorable_move(position: Position, *, bid: float, ask: float) -> float:
    if position.side is Signal.LONG:
        return bid - position.open_price
    return position.open_price - ask


class PositionLifecycleManager:
    """Exit handling for an open position; runs on every tick.

    Checked in order, first one that fires wins: weekly flatten, time stop,
    mean-reversion exit, trailing stop. A venue refusal is reported as the
    action name plus ``_REJECTED``; the venue code is kept in
    ``last_reject_code``.
    """

    def __init__(
        self,
        *,
        venue: ExecutionVenue,
        exits: ExitsConfig,
        session: SessionConfig,
        indicators: IndicatorSource,
        middle_ref: IndicatorRef,
        volatility_ref: IndicatorRef,
        digits: int = 5,
        label: str = "",
    ):
        self.venue = venue
        self.exits = exits
        self.session = session
        self.indicators = indicators
        self.middle_ref = middle_ref
        self.volatility_ref = volatility_ref
        self.digits = digits
        self.label = label
        self._flatten_cutoff = parse_hhmm(exits.flatten_time)
        self.last_reject_code: str | None = None

    def manage(self, *, now: datetime, bid: float, ask: float) -> str | None:
        position = self.venue.get_position()
        if position is None:
            return None

        if self._should_flatten(now):
            return self._close(position, "FLATTEN")
        if self._time_stop_hit(position, now):
            return self._close(position, "TIME_STOP")
        if self.exits.mean_reversion_exit and self._reached_middle(position, bid=bid, ask=ask):
            return self._close(position, "MEAN_REVERSION")
        if self.exits.trailing_enabled:
            return self._trail(position, bid=bid, ask=ask)
        return None

    def _should_flatten(self, now: datetime) -> bool:
        if self.exits.flatten_weekday is None:
            return False
        return is_past_weekly_cutoff(
            now,
            weekday=self.exits.flatten_weekday,
            cutoff=self._flatten_cutoff,
            offset_hours=self.session.offset_hours,
            timezone_name=self.session.timezone,
        )

    def _time_stop_hit(self, position: Position, now: datetime) -> bool:
        if self.exits.max_hold_minutes <= 0:
            return False
        return now - position.open_time >= timedelta(minutes=self.exits.max_hold_minutes)

    def _reached_middle(self, position: Position, *, bid: float, ask: float) -> bool:
        try:
            middle = read_current(self.indicators, self.middle_ref)
        except IndicatorUnavailable as exc:
            LOGGER.debug("%s mean-reversion exit skipped: %s", self.label, exc)
            return False
        if position.side is Signal.LONG:
            return bid >= middle
        return ask <= middle

    def trail_candidate(self, position: Position, *, bid: float, ask: float) -> float | None:
        """New stop if the trailing rule wants to tighten, else ``None``."""
        initial_risk = abs(position.open_price - position.initial_stop)
        if initial_risk <= 0:
            return None
        if favorable_move(position, bid=bid, ask=ask) < self.exits.trail_start_multiple * initial_risk:
            return None
        try:
            volatility = read_current(self.indicators, self.volatility_ref)
        except IndicatorUnavailable as exc:
            LOGGER.debug("%s trailing skipped: %s", self.label, exc)
            return None
        if volatility <= 0:
            return None
        step = self.exits.trail_step_multiple * volatility
        if position.side is Signal.LONG:
            candidate = round(bid - step, self.digits)
            improves = position.stop_loss <= 0 or candidate > position.stop_loss
        else:
            candidate = round(ask + step, self.digits)
            improves = position.stop_loss <= 0 or candidate < position.stop_loss
        return candidate if improves else None

    def _trail(self, position: Position, *, bid: float, ask: float) -> str | None:
        candidate = self.trail_candidate(position, bid=bid, ask=ask)
        if candidate is None:
            return None
        try:
            result = self.venue.modify_stop(candidate, position.take_profit)
        except ExecutionError as exc:
            LOGGER.warning("%s trailing modify failed: %s", self.label, exc)
            return self._rejected("TRAIL", "EXECUTION_ERROR")
        if not result.ok:
            LOGGER.warning("%s trailing modify rejected (%s) stop=%.*f", self.label, result.reason_code, self.digits, candidate)
            return self._rejected("TRAIL", result.reason_code)
        LOGGER.info("%s trailing stop -> %.*f", self.label, self.digits, candidate)
        return "TRAIL"

    def _rejected(self, action: str, code: str) -> str:
        self.last_reject_code = code or "UNKNOWN"
        return action + REJECTED_SUFFIX

    def _close(self, position: Position, reason: str) -> str:
        try:
            result = self.venue.close_position()
        except ExecutionError as exc:
            LOGGER.warning("%s %s close failed: %s", self.label, reason, exc)
            return self._rejected(reason, "EXECUTION_ERROR")
        if not result.ok:
            LOGGER.warning("%s %s close rejected: %s", self.label, reason, result.reason_code)
            return self._rejected(reason, result.reason_code)
        LOGGER.info("%s closed position %s (%s)", self.label, position.deal_id, reason)
        return reason
