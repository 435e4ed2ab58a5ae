from __future__ import annotations

import argparse
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from sessionbot.config import AppConfig, InstanceConfig, load_config
from sessionbot.data.feed import FeedIndicatorSource, FeedRecord, read_feed
from sessionbot.execution.venue import PaperVenue
from sessionbot.instance import InstanceStartupError, TradingInstance
from sessionbot.monitoring.dashboard import DashboardWriter
from sessionbot.monitoring.telemetry import TelemetryClient, TelemetryClientConfig

LOGGER = logging.getLogger("sessionbot")


@dataclass(slots=True)
class InstanceRuntime:
    instance: TradingInstance
    venue: PaperVenue
    source: FeedIndicatorSource
    records: list[FeedRecord]
    ticks_processed: int = 0
    tick_errors: int = 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Session-bound trading instances (dry-run over a tick feed)")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--feed", required=True, help="JSON-lines tick feed with indicator buffers")
    parser.add_argument("--workers", type=int, default=4, help="Max instances processed in parallel")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_telemetry(config: AppConfig) -> TelemetryClient:
    return TelemetryClient(
        TelemetryClientConfig(
            url=os.getenv("TELEMETRY_URL", config.telemetry.url or ""),
            api_key=os.getenv("TELEMETRY_API_KEY", config.telemetry.api_key or ""),
            api_key_header=config.telemetry.api_key_header,
            timeout_seconds=float(os.getenv("TELEMETRY_TIMEOUT_SECONDS", str(config.telemetry.timeout_seconds))),
        )
    )


def build_runtime(
    cfg: InstanceConfig,
    *,
    config: AppConfig,
    records: list[FeedRecord],
    telemetry: TelemetryClient,
) -> InstanceRuntime:
    venue = PaperVenue(
        symbol=cfg.symbol,
        magic=cfg.magic,
        equity=config.paper.equity,
        min_stop_distance=config.paper.min_stop_points * cfg.instrument.point_size,
        value_per_price_unit=cfg.instrument.value_per_point / cfg.instrument.point_size,
        digits=cfg.instrument.digits,
    )
    source = FeedIndicatorSource(records)
    instance = TradingInstance(
        cfg,
        venue=venue,
        indicators=source,
        telemetry=telemetry if telemetry.enabled else None,
        currency=config.telemetry.currency,
    )
    venue.subscribe(lambda event: instance.on_deal_event(event))
    return InstanceRuntime(instance=instance, venue=venue, source=source, records=records)


def run_instance(runtime: InstanceRuntime) -> InstanceRuntime:
    instance = runtime.instance
    for record in runtime.records:
        tick = record.tick
        try:
            runtime.source.advance(record)
            runtime.venue.on_quote(now=tick.time, bid=tick.bid, ask=tick.ask)
            instance.on_tick(tick)
        except Exception:
            runtime.tick_errors += 1
            LOGGER.exception("Unhandled tick error for %s at %s", instance.label, tick.time)
        runtime.ticks_processed += 1
    instance.finish_day()
    return runtime


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = Path.cwd() / config_path
    config = load_config(config_path)
    if not config.instances:
        LOGGER.error("No instances configured in %s", config_path)
        return 2

    feed = read_feed(args.feed)
    telemetry = build_telemetry(config)
    LOGGER.info(
        "Starting %d instance(s) | feed symbols=%s | telemetry=%s",
        len(config.instances),
        ",".join(sorted(feed)) or "-",
        "on" if telemetry.enabled else "off",
    )

    runtimes: list[InstanceRuntime] = []
    for cfg in config.instances:
        records = feed.get(cfg.symbol, [])
        if not records:
            LOGGER.warning("No feed records for %s (magic=%d); instance not started", cfg.symbol, cfg.magic)
            continue
        try:
            runtimes.append(build_runtime(cfg, config=config, records=records, telemetry=telemetry))
        except InstanceStartupError as exc:
            LOGGER.error("Instance refused to start: %s", exc)

    if not runtimes:
        LOGGER.error("No instance could be started.")
        return 1

    workers = max(1, min(int(args.workers), len(runtimes)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="instance") as pool:
        finished = list(pool.map(run_instance, runtimes))

    dashboard = DashboardWriter(os.getenv("DASHBOARD_PATH", config.monitoring.dashboard_path))
    dashboard.write([rt.instance for rt in finished], mode="dry-run")
    for rt in finished:
        LOGGER.info(
            "%s done ticks=%d errors=%d equity=%.2f",
            rt.instance.label,
            rt.ticks_processed,
            rt.tick_errors,
            rt.venue.equity(),
        )
    LOGGER.info("All instances stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(run())
