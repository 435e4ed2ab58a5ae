from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sessionbot.clock import day_key, has_new_bar, timeframe_to_minutes, utc_now
from sessionbot.config import InstanceConfig
from sessionbot.data.indicators import (
    IndicatorSource,
    IndicatorUnavailable,
    read_snapshot,
    read_value,
)
from sessionbot.execution.orders import OrderIntentBuilder, StopsInvalidError
from sessionbot.execution.position_manager import REJECTED_SUFFIX, PositionLifecycleManager
from sessionbot.execution.venue import ExecutionError, ExecutionVenue
from sessionbot.gating.chain import GateChain, GateContext, GateReason, GateResult
from sessionbot.gating.regime import RegimeFilter
from sessionbot.gating.spread_guard import SpreadGuard
from sessionbot.monitoring.telemetry import TelemetryDedup, TelemetrySink
from sessionbot.reporting.daily_summary import DailySummary
from sessionbot.strategy.contracts import DealEvent, InstanceIdentity, Signal, Tick
from sessionbot.strategy.risk import RiskState
from sessionbot.strategy.signals import build_evaluator

LOGGER = logging.getLogger(__name__)


class InstanceStartupError(RuntimeError):
    """Instance is misconfigured and must not start."""


class TradingInstance:
    """One instrument/timeframe/strategy engine.

    ``on_tick`` and ``on_deal_event`` must be called from a single thread per
    instance; instances share no state with each other.
    """

    def __init__(
        self,
        cfg: InstanceConfig,
        *,
        venue: ExecutionVenue,
        indicators: IndicatorSource,
        telemetry: TelemetrySink | None = None,
        currency: str = "USD",
    ):
        try:
            timeframe_to_minutes(cfg.timeframe)
            self.evaluator = build_evaluator(cfg.signal, point_size=cfg.instrument.point_size)
        except ValueError as exc:
            raise InstanceStartupError(f"{cfg.symbol} magic={cfg.magic}: {exc}") from exc

        self.cfg = cfg
        self.identity = InstanceIdentity(
            symbol=cfg.symbol,
            timeframe=cfg.timeframe,
            variant=cfg.signal.variant,
            magic=cfg.magic,
        )
        self.label = self.identity.label
        self.venue = venue
        self.indicators = indicators
        self.refs = cfg.indicator_map()
        self.risk_state = RiskState()
        self.regime = RegimeFilter(cfg.regime)
        self.gates = GateChain(
            session=cfg.session,
            spread_guard=SpreadGuard(max_points=cfg.spread.max_points, point_size=cfg.instrument.point_size),
            risk=cfg.risk,
            risk_state=self.risk_state,
            regime=self.regime,
            exits=cfg.exits,
        )
        self.order_builder = OrderIntentBuilder(orders=cfg.orders, instrument=cfg.instrument)
        self.lifecycle = PositionLifecycleManager(
            venue=venue,
            exits=cfg.exits,
            session=cfg.session,
            indicators=indicators,
            middle_ref=self.refs["band_middle"],
            volatility_ref=self.refs["volatility"],
            digits=cfg.instrument.digits,
            label=self.label,
        )
        self.tracker = TelemetryDedup(
            sink=telemetry,
            risk_state=self.risk_state,
            ea_id=cfg.ea_id or self.label,
            currency=currency,
            enabled=cfg.tracking_enabled,
        )
        self.requirements = sorted(
            set(self.evaluator.requirements()) | set(self.regime.requirements())
        )
        self._check_required_indicators()

        self.last_bar_time: datetime | None = None
        self.last_result: GateResult | None = None
        self.last_exit: str | None = None
        self.summary: DailySummary | None = None
        self.history: list[DailySummary] = []

    def _check_required_indicators(self) -> None:
        needed = {name for name, _ in self.requirements}
        if self.cfg.exits.mean_reversion_exit:
            needed.add("band_middle")
        if self.cfg.exits.trailing_enabled or self.order_builder.needs_volatility:
            needed.add("volatility")
        missing = sorted(
            f"{name}={self.refs[name]}"
            for name in needed
            if not self.indicators.has_indicator(self.refs[name].handle, self.refs[name].buffer)
        )
        if missing:
            raise InstanceStartupError(f"{self.label}: indicator source lacks {', '.join(missing)}")

    def _day(self, now: datetime) -> date:
        return day_key(now, offset_hours=self.cfg.session.offset_hours, timezone_name=self.cfg.session.timezone)

    def check_day_rollover(self, now: datetime) -> bool:
        today = self._day(now)
        rolled = self.risk_state.roll_day(today, reset_loss_streak=self.cfg.risk.reset_loss_streak_daily)
        if self.summary is None or self.summary.trading_day != today.isoformat():
            if self.summary is not None:
                self.summary.log(self.label)
                self.history.append(self.summary)
            self.summary = DailySummary(trading_day=today.isoformat())
        return rolled

    @staticmethod
    def _reject_reason(code: str | None) -> GateReason:
        if code == "INVALID_STOPS":
            return GateReason.STOPS_INVALID
        return GateReason.ORDER_REJECTED

    def on_tick(self, tick: Tick) -> GateResult | None:
        """Process one price update; returns the bar's result on a new bar."""
        self.check_day_rollover(tick.time)

        if self.venue.get_position() is not None:
            exit_reason = self.lifecycle.manage(now=tick.time, bid=tick.bid, ask=tick.ask)
            if exit_reason is not None and exit_reason.endswith(REJECTED_SUFFIX):
                self.summary.record_execution_reject(self._reject_reason(self.lifecycle.last_reject_code))
            elif exit_reason is not None:
                self.last_exit = exit_reason

        if not has_new_bar(self.last_bar_time, tick.bar_time):
            return None
        self.last_bar_time = tick.bar_time
        result = self.evaluate_bar(tick)
        if result is not None:
            self.last_result = result
            self.summary.record(result)
            if result.passed:
                LOGGER.debug("%s bar %s -> %s", self.label, tick.bar_time, result)
            else:
                LOGGER.debug("%s bar %s blocked by %s", self.label, tick.bar_time, result.reason.value)
        return result

    def evaluate_bar(self, tick: Tick) -> GateResult | None:
        """Run gates, signal and order placement for a new closed bar.

        Returns ``None`` when indicator data is unavailable; the bar is then
        skipped without touching any counter.
        """
        ctx = GateContext(
            now=tick.time,
            bid=tick.bid,
            ask=tick.ask,
            has_position=self.venue.get_position() is not None,
        )
        result = self.gates.admit(ctx)
        if not result.passed:
            return result

        try:
            snapshot = read_snapshot(self.indicators, self.refs, self.requirements, bar_time=tick.bar_time)
            volatility = None
            if self.order_builder.needs_volatility:
                volatility = read_value(self.indicators, self.refs["volatility"], 1)
        except IndicatorUnavailable as exc:
            LOGGER.debug("%s indicator data unavailable, skipping bar: %s", self.label, exc)
            return None

        result = self.gates.admit_regime(snapshot)
        if not result.passed:
            return result

        signal = self.evaluator.evaluate(snapshot, spread=tick.spread)
        if signal is Signal.NONE:
            return GateResult.blocked(GateReason.NO_SIGNAL)
        self.summary.record_signal()
        return self._place(signal, tick, volatility)

    def _place(self, signal: Signal, tick: Tick, volatility: float | None) -> GateResult:
        try:
            intent = self.order_builder.build(
                signal,
                bid=tick.bid,
                ask=tick.ask,
                equity=self.venue.equity(),
                min_stop_distance=self.venue.min_stop_distance(),
                volatility=volatility,
            )
        except StopsInvalidError as exc:
            LOGGER.warning("%s %s signal dropped, invalid stops: %s", self.label, signal.value, exc)
            return GateResult.blocked(GateReason.STOPS_INVALID)

        try:
            order = self.venue.submit_market_order(
                intent.side,
                intent.volume,
                intent.stop_loss,
                intent.take_profit,
                self.cfg.orders.comment,
            )
        except ExecutionError as exc:
            LOGGER.warning("%s order submission failed: %s", self.label, exc)
            return GateResult.blocked(GateReason.ORDER_REJECTED)
        if not order.ok:
            LOGGER.warning("%s order rejected: %s", self.label, order.reason_code)
            return GateResult.blocked(GateReason.ORDER_REJECTED)

        self.risk_state.record_trade(tick.time)
        LOGGER.info(
            "%s %s sent vol=%.2f sl=%.*f tp=%.*f trades_today=%d",
            self.label,
            intent.side.value,
            intent.volume,
            self.cfg.instrument.digits,
            intent.stop_loss,
            self.cfg.instrument.digits,
            intent.take_profit,
            self.risk_state.trades_today,
        )
        return GateResult.ok()

    def on_deal_event(self, event: DealEvent, *, now: datetime | None = None) -> bool:
        return self.tracker.handle(event, now=now or event.time or utc_now())

    def finish_day(self) -> None:
        if self.summary is not None:
            self.summary.log(self.label)

    def status(self) -> dict[str, Any]:
        position = self.venue.get_position()
        return {
            "ea_id": self.tracker.ea_id,
            "symbol": self.identity.symbol,
            "timeframe": self.identity.timeframe,
            "variant": self.identity.variant,
            "magic": self.identity.magic,
            "trades_today": self.risk_state.trades_today,
            "consec_losses": self.risk_state.consec_losses,
            "last_result": str(self.last_result) if self.last_result else None,
            "last_exit": self.last_exit,
            "position": None
            if position is None
            else {
                "side": position.side.value,
                "open_price": position.open_price,
                "stop_loss": position.stop_loss,
                "take_profit": position.take_profit,
                "volume": position.volume,
            },
            "summary": self.summary.to_dict() if self.summary else None,
        }
