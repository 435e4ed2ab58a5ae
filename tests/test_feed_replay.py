from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

import main
from sessionbot.data.feed import FeedIndicatorSource, parse_timestamp, read_feed
from sessionbot.data.indicators import IndicatorUnavailable


def _line(time: str, bid: float, indicators: dict, symbol: str = "EURUSD") -> str:
    return json.dumps(
        {
            "symbol": symbol,
            "time": time,
            "bid": bid,
            "ask": round(bid + 0.0001, 5),
            "bar_time": time[:14] + "00:00Z",
            "indicators": indicators,
        }
    )


CROSS = {"MA_FAST:0": [1.1011, 1.1010, 1.1000], "ma_slow:0": [1.1005, 1.1005, 1.1005]}
FLAT = {"ma_fast:0": [1.1, 1.1, 1.1], "ma_slow:0": [1.2, 1.2, None]}


def test_parse_timestamp_normalizes_to_utc() -> None:
    assert parse_timestamp("2026-03-10 12:00:00") == datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-10T14:00:00+02:00") == datetime(2026, 3, 10, 12, tzinfo=timezone.utc)


def test_read_feed_groups_by_symbol_and_skips_bad_lines(tmp_path: Path) -> None:
    path = tmp_path / "feed.jsonl"
    path.write_text(
        "\n".join(
            [
                _line("2026-03-10T10:00:05Z", 1.1, CROSS),
                "{not json",
                json.dumps({"symbol": "EURUSD", "time": "2026-03-10T10:01:00Z"}),
                _line("2026-03-10T10:00:07Z", 1.3, {}, symbol="gbpusd"),
                "",
                _line("2026-03-10T11:00:05Z", 1.1, FLAT),
            ]
        ),
        encoding="utf-8",
    )
    feed = read_feed(path)
    assert sorted(feed) == ["EURUSD", "GBPUSD"]
    assert len(feed["EURUSD"]) == 2
    assert feed["EURUSD"][0].tick.bar_time == datetime(2026, 3, 10, 10, tzinfo=timezone.utc)


def test_feed_source_serves_current_record(tmp_path: Path) -> None:
    path = tmp_path / "feed.jsonl"
    path.write_text(_line("2026-03-10T10:00:05Z", 1.1, CROSS) + "\n" + _line("2026-03-10T11:00:05Z", 1.1, FLAT))
    records = read_feed(path)["EURUSD"]
    source = FeedIndicatorSource(records)
    assert source.has_indicator("ma_fast", 0) is True
    assert source.has_indicator("atr", 0) is False
    source.advance(records[0])
    assert source.get_value("ma_fast", 0, 2) == pytest.approx(1.1000)
    source.advance(records[1])
    with pytest.raises(IndicatorUnavailable):
        source.get_value("ma_slow", 0, 2)


def test_run_replays_feed_and_writes_dashboard(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
instances:
  - symbol: EURUSD
    magic: 11
  - symbol: USDJPY
    magic: 12
""",
        encoding="utf-8",
    )
    feed_path = tmp_path / "feed.jsonl"
    feed_path.write_text(
        "\n".join(
            [
                _line("2026-03-10T10:00:05Z", 1.1000, CROSS),
                _line("2026-03-10T10:30:00Z", 1.1005, CROSS),
                _line("2026-03-10T11:00:05Z", 1.1006, CROSS),
            ]
        ),
        encoding="utf-8",
    )
    dashboard_path = tmp_path / "out" / "dashboard.json"
    monkeypatch.delenv("TELEMETRY_URL", raising=False)
    monkeypatch.setenv("DASHBOARD_PATH", str(dashboard_path))

    code = main.run(["--config", str(config_path), "--feed", str(feed_path), "--workers", "2"])

    assert code == 0
    snapshot = json.loads(dashboard_path.read_text(encoding="utf-8"))
    assert snapshot["mode"] == "dry-run"
    [status] = snapshot["instances"]
    assert status["symbol"] == "EURUSD"
    assert status["trades_today"] == 1
    assert status["summary"]["blocked"] == {"HAS_POSITION": 1}


def test_run_without_instances_returns_error(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("instances: []\n", encoding="utf-8")
    feed_path = tmp_path / "feed.jsonl"
    feed_path.write_text("", encoding="utf-8")
    assert main.run(["--config", str(config_path), "--feed", str(feed_path)]) == 2
