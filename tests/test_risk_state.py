from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from sessionbot.config import RegimeConfig, RiskConfig, SessionConfig
from sessionbot.gating.chain import GateChain, GateContext, GateReason
from sessionbot.gating.regime import RegimeFilter
from sessionbot.gating.spread_guard import SpreadGuard
from sessionbot.strategy.risk import RiskState

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def test_loss_streak_increments_on_loss_and_resets_on_non_negative() -> None:
    state = RiskState()
    state.apply_close(-12.5, NOW)
    state.apply_close(-1.0, NOW)
    assert state.consec_losses == 2
    state.apply_close(0.0, NOW)
    assert state.consec_losses == 0
    state.apply_close(-3.0, NOW)
    state.apply_close(40.0, NOW)
    assert state.consec_losses == 0


def test_close_sets_cooldown_anchor() -> None:
    state = RiskState()
    state.apply_close(5.0, NOW)
    assert state.last_close_time == NOW
    assert state.minutes_since_close(NOW + timedelta(minutes=15)) == 15.0


def test_roll_day_resets_trades_once() -> None:
    state = RiskState()
    assert state.roll_day(date(2026, 3, 10)) is False  # first key, nothing to roll
    state.record_trade(NOW)
    state.record_trade(NOW)
    assert state.roll_day(date(2026, 3, 10)) is False
    assert state.trades_today == 2
    assert state.roll_day(date(2026, 3, 11)) is True
    assert state.trades_today == 0
    assert state.roll_day(date(2026, 3, 11)) is False


def test_loss_streak_survives_rollover_by_default() -> None:
    state = RiskState(current_day_key=date(2026, 3, 10), consec_losses=2)
    state.roll_day(date(2026, 3, 11))
    assert state.consec_losses == 2


def test_loss_streak_reset_policy_on_rollover() -> None:
    state = RiskState(current_day_key=date(2026, 3, 10), consec_losses=2)
    state.roll_day(date(2026, 3, 11), reset_loss_streak=True)
    assert state.consec_losses == 0


def test_trades_today_never_exceeds_cap_within_a_day() -> None:
    risk = RiskConfig(max_trades_per_day=2, max_consec_losses=0)
    state = RiskState(current_day_key=NOW.date())
    chain = GateChain(
        session=SessionConfig(),
        spread_guard=SpreadGuard(max_points=0, point_size=0.0001),
        risk=risk,
        risk_state=state,
        regime=RegimeFilter(RegimeConfig()),
    )
    blocked = 0
    for bar in range(10):
        now = NOW + timedelta(minutes=15 * bar)
        result = chain.admit(GateContext(now=now, bid=1.0, ask=1.0001, has_position=False))
        if result.passed:
            state.record_trade(now)
        else:
            assert result.reason is GateReason.DAILY_CAP
            blocked += 1
        assert state.trades_today <= risk.max_trades_per_day
    assert state.trades_today == 2
    assert blocked == 8
