from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sessionbot.config import ExitsConfig, SessionConfig
from sessionbot.data.indicators import StaticIndicatorSource
from sessionbot.execution.position_manager import PositionLifecycleManager
from sessionbot.execution.venue import OrderResult, PaperVenue
from sessionbot.strategy.contracts import DealKind, IndicatorRef, Signal

OPEN_AT = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)  # Tuesday


def _setup(
    exits: ExitsConfig,
    *,
    side: Signal = Signal.LONG,
    atr: float = 0.0010,
    middle: float = 1.1050,
    min_stop_distance: float = 0.0,
    venue_cls: type[PaperVenue] = PaperVenue,
) -> tuple[PaperVenue, PositionLifecycleManager, StaticIndicatorSource, list]:
    venue = venue_cls(symbol="EURUSD", magic=7, min_stop_distance=min_stop_distance, value_per_price_unit=100000)
    events: list = []
    venue.subscribe(events.append)
    venue.on_quote(now=OPEN_AT, bid=1.1000, ask=1.1000)
    if side is Signal.LONG:
        venue.submit_market_order(Signal.LONG, 0.1, 1.0980, 1.1100, "t")
    else:
        venue.submit_market_order(Signal.SHORT, 0.1, 1.1020, 1.0900, "t")
    source = StaticIndicatorSource({"atr:0": [atr, atr], "bands:0": [middle, middle]})
    manager = PositionLifecycleManager(
        venue=venue,
        exits=exits,
        session=SessionConfig(),
        indicators=source,
        middle_ref=IndicatorRef("bands", 0),
        volatility_ref=IndicatorRef("atr", 0),
        digits=5,
    )
    return venue, manager, source, events


def _tick(venue: PaperVenue, manager: PositionLifecycleManager, now: datetime, bid: float, ask: float) -> str | None:
    venue.on_quote(now=now, bid=bid, ask=ask)
    return manager.manage(now=now, bid=bid, ask=ask)


def test_trailing_waits_for_start_multiple_of_initial_risk() -> None:
    exits = ExitsConfig(trailing_enabled=True, trail_start_multiple=1.0, trail_step_multiple=1.0)
    venue, manager, _, _ = _setup(exits)
    # initial risk 0.0020; +0.0015 is not enough
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=1), 1.1015, 1.1016) is None
    assert venue.get_position().stop_loss == 1.0980
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=2), 1.1021, 1.1022) == "TRAIL"
    assert venue.get_position().stop_loss == 1.1011


def test_trailing_stop_is_monotonic_for_long() -> None:
    exits = ExitsConfig(trailing_enabled=True, trail_start_multiple=0.5, trail_step_multiple=1.0)
    venue, manager, _, _ = _setup(exits)
    path = [1.1012, 1.1030, 1.1025, 1.1022, 1.1040, 1.1035, 1.1050]
    applied: list[float] = []
    for i, bid in enumerate(path, start=1):
        _tick(venue, manager, OPEN_AT + timedelta(minutes=i), bid, bid + 0.0001)
        position = venue.get_position()
        assert position is not None
        applied.append(position.stop_loss)
    assert applied == sorted(applied)
    assert venue.modify_calls == sorted(set(venue.modify_calls))
    assert applied[-1] == 1.1040


def test_trailing_stop_is_monotonic_for_short() -> None:
    exits = ExitsConfig(trailing_enabled=True, trail_start_multiple=0.5, trail_step_multiple=1.0)
    venue, manager, _, _ = _setup(exits, side=Signal.SHORT)
    path = [1.0988, 1.0970, 1.0976, 1.0960, 1.0965]
    applied: list[float] = []
    for i, ask in enumerate(path, start=1):
        _tick(venue, manager, OPEN_AT + timedelta(minutes=i), ask - 0.0001, ask)
        applied.append(venue.get_position().stop_loss)
    assert applied == sorted(applied, reverse=True)
    assert applied[-1] == 1.0970


def test_time_stop_closes_after_max_hold() -> None:
    venue, manager, _, events = _setup(ExitsConfig(max_hold_minutes=60))
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=59), 1.1001, 1.1002) is None
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=60), 1.1001, 1.1002) == "TIME_STOP"
    assert venue.get_position() is None
    assert events[-1].kind is DealKind.CLOSE


def test_mean_reversion_exit_uses_forming_middle_band() -> None:
    venue, manager, source, _ = _setup(ExitsConfig(mean_reversion_exit=True), middle=1.1050)
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=5), 1.1040, 1.1041) is None
    source.set_series("bands:0", [1.1035, 1.1050])
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=6), 1.1040, 1.1041) == "MEAN_REVERSION"


def test_mean_reversion_exit_short_uses_ask() -> None:
    venue, manager, _, _ = _setup(ExitsConfig(mean_reversion_exit=True), side=Signal.SHORT, middle=1.0960)
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=5), 1.0959, 1.0961) is None
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=6), 1.0958, 1.0960) == "MEAN_REVERSION"


def test_missing_indicator_only_skips_that_exit() -> None:
    exits = ExitsConfig(mean_reversion_exit=True, max_hold_minutes=30)
    venue, manager, source, _ = _setup(exits)
    source.set_series("bands:0", [])
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=10), 1.1060, 1.1061) is None
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=30), 1.1060, 1.1061) == "TIME_STOP"


def test_weekly_flatten_before_weekend() -> None:
    exits = ExitsConfig(flatten_weekday=1, flatten_time="20:30")
    venue, manager, _, _ = _setup(exits)
    assert _tick(venue, manager, OPEN_AT.replace(hour=20, minute=29), 1.0995, 1.0996) is None
    assert _tick(venue, manager, OPEN_AT.replace(hour=20, minute=30), 1.0995, 1.0996) == "FLATTEN"


def test_no_position_is_a_noop() -> None:
    venue, manager, _, _ = _setup(ExitsConfig(max_hold_minutes=1))
    venue.close_position()
    assert manager.manage(now=OPEN_AT + timedelta(hours=5), bid=1.1, ask=1.1001) is None


class _MarketClosedVenue(PaperVenue):
    def close_position(self) -> OrderResult:
        return OrderResult.rejected("MARKET_CLOSED")


def test_rejected_trailing_modify_is_reported() -> None:
    exits = ExitsConfig(trailing_enabled=True, trail_start_multiple=1.0, trail_step_multiple=1.0)
    venue, manager, _, _ = _setup(exits, atr=0.0005, min_stop_distance=0.0010)
    # candidate 1.1016 sits inside the 10 pip minimum below bid 1.1021
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=2), 1.1021, 1.1022) == "TRAIL_REJECTED"
    assert manager.last_reject_code == "INVALID_STOPS"
    assert venue.get_position().stop_loss == 1.0980
    assert venue.modify_calls == []


def test_rejected_close_is_reported_and_position_kept() -> None:
    venue, manager, _, events = _setup(ExitsConfig(max_hold_minutes=60), venue_cls=_MarketClosedVenue)
    assert _tick(venue, manager, OPEN_AT + timedelta(minutes=60), 1.1001, 1.1002) == "TIME_STOP_REJECTED"
    assert manager.last_reject_code == "MARKET_CLOSED"
    assert venue.get_position() is not None
    assert [e.kind for e in events] == [DealKind.OPEN]
