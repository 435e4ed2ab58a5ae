from __future__ import annotations

import pytest

from sessionbot.config import InstrumentConfig, OrdersConfig
from sessionbot.execution.orders import OrderIntentBuilder, StopsInvalidError
from sessionbot.execution.position_sizer import SizingMode, SizingRequest, compute_position_size
from sessionbot.strategy.contracts import Signal

BID = 1.10000
ASK = 1.10010


def _builder(**orders: object) -> OrderIntentBuilder:
    return OrderIntentBuilder(orders=OrdersConfig(**orders), instrument=InstrumentConfig())


def test_fixed_points_long_uses_ask_and_rounds_to_digits() -> None:
    intent = _builder().build(Signal.LONG, bid=BID, ask=ASK, equity=10000)
    assert intent.entry_price == ASK
    assert intent.stop_loss == pytest.approx(1.0981)
    assert intent.take_profit == pytest.approx(1.1041)
    assert intent.volume == pytest.approx(0.1)


def test_fixed_points_short_uses_bid() -> None:
    intent = _builder().build(Signal.SHORT, bid=BID, ask=ASK, equity=10000)
    assert intent.entry_price == BID
    assert intent.stop_loss == pytest.approx(1.1020)
    assert intent.take_profit == pytest.approx(1.0960)


def test_atr_stop_with_reward_risk_take() -> None:
    builder = _builder(stop_mode="atr", stop_atr_multiple=1.5, take_mode="rr", reward_risk=2.0)
    assert builder.needs_volatility is True
    intent = builder.build(Signal.LONG, bid=BID, ask=ASK, equity=10000, volatility=0.0015)
    assert intent.stop_distance == pytest.approx(0.00225)
    assert intent.take_distance == pytest.approx(0.0045)


def test_atr_stop_without_volatility_is_invalid() -> None:
    with pytest.raises(StopsInvalidError):
        _builder(stop_mode="atr").build(Signal.LONG, bid=BID, ask=ASK, equity=10000, volatility=None)


def test_risk_percent_sizing() -> None:
    # 1% of 10000 over a 200 point stop at 1.0 per point per lot
    builder = _builder(sizing_mode="risk_percent", risk_per_trade=0.01)
    intent = builder.build(Signal.LONG, bid=BID, ask=ASK, equity=10000)
    assert intent.volume == pytest.approx(0.5)
    assert intent.risk_cash == pytest.approx(100.0)


def test_risk_percent_respects_hard_cap() -> None:
    builder = _builder(sizing_mode="risk_percent", risk_per_trade=0.01, max_volume_cap=5.0)
    intent = builder.build(Signal.LONG, bid=BID, ask=ASK, equity=1_000_000)
    assert intent.volume == pytest.approx(5.0)


def test_sizer_clamps_to_minimum_volume() -> None:
    result = compute_position_size(
        SizingRequest(mode=SizingMode.RISK_PERCENT, equity=10, stop_distance=0.002, value_per_point=100000)
    )
    assert result.volume == pytest.approx(0.01)
    assert result.clamped is True


def test_sizer_rejects_zero_stop_for_risk_percent() -> None:
    with pytest.raises(ValueError):
        compute_position_size(SizingRequest(mode=SizingMode.RISK_PERCENT, equity=1000, stop_distance=0.0))


def test_min_stop_distance_reject_policy() -> None:
    with pytest.raises(StopsInvalidError):
        _builder().build(Signal.LONG, bid=BID, ask=ASK, equity=10000, min_stop_distance=0.003)


def test_min_stop_distance_widen_policy() -> None:
    intent = _builder(stops_policy="widen").build(
        Signal.LONG, bid=BID, ask=ASK, equity=10000, min_stop_distance=0.003
    )
    # stop widened to the minimum plus the 1 pip spread
    assert intent.stop_distance == pytest.approx(0.0031)
    assert intent.take_distance == pytest.approx(0.004)
    assert intent.stop_loss == pytest.approx(1.0970)


def test_none_signal_cannot_be_built() -> None:
    with pytest.raises(ValueError):
        _builder().build(Signal.NONE, bid=BID, ask=ASK, equity=10000)


@pytest.mark.parametrize("signal", [Signal.LONG, Signal.SHORT])
def test_min_stop_distance_is_measured_from_close_quote(signal: Signal) -> None:
    # 200 point stop equals the minimum from entry, but is one spread short
    # from the quote the position would close at
    with pytest.raises(StopsInvalidError):
        _builder().build(signal, bid=BID, ask=ASK, equity=10000, min_stop_distance=0.0020)
    intent = _builder().build(signal, bid=BID, ask=BID, equity=10000, min_stop_distance=0.0020)
    assert intent.stop_distance == pytest.approx(0.0020)


def test_widened_long_stop_clears_venue_minimum_from_bid() -> None:
    intent = _builder(stops_policy="widen").build(
        Signal.LONG, bid=BID, ask=ASK, equity=10000, min_stop_distance=0.0020
    )
    assert BID - intent.stop_loss == pytest.approx(0.0020)
