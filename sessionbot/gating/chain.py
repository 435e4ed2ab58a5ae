from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from sessionbot.clock import is_past_weekly_cutoff, is_within_session, parse_hhmm
from sessionbot.config import ExitsConfig, RiskConfig, SessionConfig
from sessionbot.gating.regime import RegimeFilter
from sessionbot.gating.spread_guard import SpreadGuard
from sessionbot.strategy.contracts import IndicatorSnapshot
from sessionbot.strategy.risk import RiskState


class GateReason(str, Enum):
    SESSION = "SESSION"
    SPREAD = "SPREAD"
    COOLDOWN = "COOLDOWN"
    HAS_POSITION = "HAS_POSITION"
    LOSS_STREAK = "LOSS_STREAK"
    DAILY_CAP = "DAILY_CAP"
    REGIME = "REGIME"
    NO_SIGNAL = "NO_SIGNAL"
    STOPS_INVALID = "STOPS_INVALID"
    ORDER_REJECTED = "ORDER_REJECTED"


@dataclass(frozen=True, slots=True)
class GateResult:
    passed: bool
    reason: GateReason | None = None

    @classmethod
    def ok(cls) -> "GateResult":
        return cls(passed=True)

    @classmethod
    def blocked(cls, reason: GateReason) -> "GateResult":
        return cls(passed=False, reason=reason)

    def __str__(self) -> str:
        return "PASS" if self.passed else f"BLOCKED_BY_{self.reason.value}"


@dataclass(slots=True)
class GateContext:
    now: datetime
    bid: float
    ask: float
    has_position: bool


class GateChain:
    """Admission gates for one instance, evaluated once per closed bar.

    Order is fixed and the first failure wins::

        SESSION -> SPREAD -> DAILY_CAP -> LOSS_STREAK -> COOLDOWN -> HAS_POSITION -> REGIME

    The regime gate needs the closed-bar snapshot, so it runs separately via
    :meth:`admit_regime` once the cheap gates have passed. The session stage
    also refuses entries once the weekly flatten cutoff has passed.
    """

    def __init__(
        self,
        *,
        session: SessionConfig,
        spread_guard: SpreadGuard,
        risk: RiskConfig,
        risk_state: RiskState,
        regime: RegimeFilter,
        exits: ExitsConfig | None = None,
    ):
        self.session = session
        self.exits = exits
        self._flatten_cutoff = parse_hhmm(exits.flatten_time) if exits is not None else None
        self.spread_guard = spread_guard
        self.risk = risk
        self.risk_state = risk_state
        self.regime = regime
        self._gates: list[tuple[GateReason, Callable[[GateContext], bool]]] = [
            (GateReason.SESSION, self._session_ok),
            (GateReason.SPREAD, self._spread_ok),
            (GateReason.DAILY_CAP, self._daily_cap_ok),
            (GateReason.LOSS_STREAK, self._loss_streak_ok),
            (GateReason.COOLDOWN, self._cooldown_ok),
            (GateReason.HAS_POSITION, self._no_position),
        ]

    @property
    def order(self) -> list[GateReason]:
        return [reason for reason, _ in self._gates] + [GateReason.REGIME]

    def admit(self, ctx: GateContext) -> GateResult:
        for reason, check in self._gates:
            if not check(ctx):
                return GateResult.blocked(reason)
        return GateResult.ok()

    def admit_regime(self, snapshot: IndicatorSnapshot) -> GateResult:
        if self.regime.allows(snapshot):
            return GateResult.ok()
        return GateResult.blocked(GateReason.REGIME)

    def _session_ok(self, ctx: GateContext) -> bool:
        if self._past_flatten_cutoff(ctx.now):
            return False
        if not self.session.enabled:
            return True
        return is_within_session(
            ctx.now,
            self.session.start_hour,
            self.session.end_hour,
            offset_hours=self.session.offset_hours,
            timezone_name=self.session.timezone,
        )

    def _past_flatten_cutoff(self, now: datetime) -> bool:
        if self.exits is None or self.exits.flatten_weekday is None:
            return False
        return is_past_weekly_cutoff(
            now,
            weekday=self.exits.flatten_weekday,
            cutoff=self._flatten_cutoff,
            offset_hours=self.session.offset_hours,
            timezone_name=self.session.timezone,
        )

    def _spread_ok(self, ctx: GateContext) -> bool:
        return not self.spread_guard.check(ctx.bid, ctx.ask).blocked

    def _daily_cap_ok(self, ctx: GateContext) -> bool:
        return self.risk_state.trades_today < self.risk.max_trades_per_day

    def _loss_streak_ok(self, ctx: GateContext) -> bool:
        if self.risk.max_consec_losses <= 0:
            return True
        return self.risk_state.consec_losses < self.risk.max_consec_losses

    def _cooldown_ok(self, ctx: GateContext) -> bool:
        if self.risk.cooldown_minutes > 0:
            since_close = self.risk_state.minutes_since_close(ctx.now)
            if since_close is not None and since_close < self.risk.cooldown_minutes:
                return False
        if self.risk.min_minutes_between_trades > 0:
            since_trade = self.risk_state.minutes_since_trade(ctx.now)
            if since_trade is not None and since_trade < self.risk.min_minutes_between_trades:
                return False
        return True

    def _no_position(self, ctx: GateContext) -> bool:
        return not ctx.has_position
