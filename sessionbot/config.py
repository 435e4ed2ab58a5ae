from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from sessionbot.clock import parse_hhmm, timeframe_to_minutes
from sessionbot.strategy.contracts import DEFAULT_INDICATORS, IndicatorRef, parse_indicator_ref

SIGNAL_VARIANTS = {"crossover", "pullback", "band_reentry"}


class InstrumentConfig(BaseModel):
    point_size: float = 0.00001
    digits: int = 5
    value_per_point: float = 1.0
    min_volume: float = 0.01
    max_volume: float = 100.0
    volume_step: float = 0.01

    @model_validator(mode="after")
    def validate_values(self) -> "InstrumentConfig":
        if self.point_size <= 0:
            raise ValueError("instrument.point_size must be > 0")
        if self.digits < 0:
            raise ValueError("instrument.digits must be >= 0")
        if self.value_per_point <= 0:
            raise ValueError("instrument.value_per_point must be > 0")
        if self.volume_step <= 0:
            raise ValueError("instrument.volume_step must be > 0")
        if self.min_volume <= 0 or self.max_volume < self.min_volume:
            raise ValueError("instrument.min_volume must be > 0 and <= max_volume")
        return self


class SessionConfig(BaseModel):
    enabled: bool = True
    start_hour: int = 0
    end_hour: int = 24
    offset_hours: float = 0.0
    timezone: str | None = None

    @model_validator(mode="after")
    def validate_hours(self) -> "SessionConfig":
        if not (0 <= self.start_hour <= 23):
            raise ValueError("session.start_hour must be in [0,23]")
        if not (0 <= self.end_hour <= 24):
            raise ValueError("session.end_hour must be in [0,24]")
        if not (-14.0 <= self.offset_hours <= 14.0):
            raise ValueError("session.offset_hours must be in [-14,14]")
        tz = str(self.timezone or "").strip()
        self.timezone = tz or None
        return self


class SpreadConfig(BaseModel):
    max_points: float = 0.0


class RiskConfig(BaseModel):
    max_trades_per_day: int = 3
    max_consec_losses: int = 3
    cooldown_minutes: int = 0
    min_minutes_between_trades: int = 0
    reset_loss_streak_daily: bool = False

    @model_validator(mode="after")
    def validate_risk(self) -> "RiskConfig":
        if self.max_trades_per_day <= 0:
            raise ValueError("risk.max_trades_per_day must be > 0")
        if self.max_consec_losses < 0:
            raise ValueError("risk.max_consec_losses must be >= 0")
        if self.cooldown_minutes < 0:
            raise ValueError("risk.cooldown_minutes must be >= 0")
        if self.min_minutes_between_trades < 0:
            raise ValueError("risk.min_minutes_between_trades must be >= 0")
        return self


class RegimeConfig(BaseModel):
    mode: str = "off"
    threshold: float = 25.0

    @model_validator(mode="after")
    def validate_mode(self) -> "RegimeConfig":
        mode = str(self.mode).strip().lower()
        if mode in {"false", "none", ""}:
            mode = "off"
        if mode not in {"off", "max_strength", "min_strength"}:
            raise ValueError("regime.mode must be one of: off, max_strength, min_strength")
        self.mode = mode
        if self.threshold < 0:
            raise ValueError("regime.threshold must be >= 0")
        return self


class SignalConfig(BaseModel):
    variant: str = "crossover"
    trend_filter: bool = False
    buy_level: float = 30.0
    sell_level: float = 70.0
    cross_back: bool = False
    min_reentry_points: float = 0.0
    edge_spread_multiple: float = 0.0
    use_high_low: bool = False

    @model_validator(mode="after")
    def validate_variant(self) -> "SignalConfig":
        variant = str(self.variant).strip().lower()
        if variant not in SIGNAL_VARIANTS:
            raise ValueError(f"signal.variant must be one of: {', '.join(sorted(SIGNAL_VARIANTS))}")
        self.variant = variant
        if self.min_reentry_points < 0:
            raise ValueError("signal.min_reentry_points must be >= 0")
        if self.edge_spread_multiple < 0:
            raise ValueError("signal.edge_spread_multiple must be >= 0")
        return self


class OrdersConfig(BaseModel):
    stop_mode: str = "fixed"
    stop_points: float = 200.0
    stop_atr_multiple: float = 1.5
    take_mode: str = "points"
    take_points: float = 400.0
    take_atr_multiple: float = 3.0
    reward_risk: float = 2.0
    sizing_mode: str = "fixed"
    fixed_volume: float = 0.1
    risk_per_trade: float = 0.01
    max_volume_cap: float | None = None
    stops_policy: str = "reject"
    comment: str = "sessionbot"

    @model_validator(mode="after")
    def validate_orders(self) -> "OrdersConfig":
        self.stop_mode = self.stop_mode.strip().lower()
        if self.stop_mode not in {"fixed", "atr"}:
            raise ValueError("orders.stop_mode must be fixed or atr")
        self.take_mode = self.take_mode.strip().lower()
        if self.take_mode not in {"points", "atr", "rr"}:
            raise ValueError("orders.take_mode must be points, atr or rr")
        self.sizing_mode = self.sizing_mode.strip().lower()
        if self.sizing_mode not in {"fixed", "risk_percent"}:
            raise ValueError("orders.sizing_mode must be fixed or risk_percent")
        self.stops_policy = self.stops_policy.strip().lower()
        if self.stops_policy not in {"reject", "widen"}:
            raise ValueError("orders.stops_policy must be reject or widen")
        if self.stop_points <= 0 or self.stop_atr_multiple <= 0:
            raise ValueError("orders stop distance settings must be > 0")
        if self.take_points <= 0 or self.take_atr_multiple <= 0 or self.reward_risk <= 0:
            raise ValueError("orders take-profit settings must be > 0")
        if self.fixed_volume <= 0:
            raise ValueError("orders.fixed_volume must be > 0")
        if not (0 < self.risk_per_trade <= 1.0):
            raise ValueError("orders.risk_per_trade must be in (0,1]")
        if self.max_volume_cap is not None and self.max_volume_cap <= 0:
            raise ValueError("orders.max_volume_cap must be > 0 when provided")
        return self


class ExitsConfig(BaseModel):
    max_hold_minutes: int = 0
    mean_reversion_exit: bool = False
    trailing_enabled: bool = False
    trail_start_multiple: float = 1.0
    trail_step_multiple: float = 1.0
    flatten_weekday: int | None = None
    flatten_time: str = "21:00"

    @model_validator(mode="after")
    def validate_exits(self) -> "ExitsConfig":
        if self.max_hold_minutes < 0:
            raise ValueError("exits.max_hold_minutes must be >= 0")
        if self.trail_start_multiple < 0:
            raise ValueError("exits.trail_start_multiple must be >= 0")
        if self.trail_step_multiple <= 0:
            raise ValueError("exits.trail_step_multiple must be > 0")
        if self.flatten_weekday is not None and not (0 <= self.flatten_weekday <= 6):
            raise ValueError("exits.flatten_weekday must be in [0,6]")
        self.flatten_time = parse_hhmm(self.flatten_time).strftime("%H:%M")
        return self


class InstanceConfig(BaseModel):
    symbol: str
    timeframe: str = "H1"
    magic: int
    ea_id: str | None = None
    tracking_enabled: bool = True
    instrument: InstrumentConfig = Field(default_factory=InstrumentConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    spread: SpreadConfig = Field(default_factory=SpreadConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    signal: SignalConfig = Field(default_factory=SignalConfig)
    orders: OrdersConfig = Field(default_factory=OrdersConfig)
    exits: ExitsConfig = Field(default_factory=ExitsConfig)
    indicators: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def normalize(self) -> "InstanceConfig":
        self.symbol = self.symbol.strip().upper()
        if not self.symbol:
            raise ValueError("symbol must not be empty")
        self.timeframe = self.timeframe.strip().upper()
        timeframe_to_minutes(self.timeframe)
        if self.magic <= 0:
            raise ValueError("magic must be > 0")
        normalized: dict[str, str] = {}
        for name, raw in self.indicators.items():
            key = str(name).strip().lower()
            if key not in DEFAULT_INDICATORS:
                raise ValueError(f"unknown indicator name '{name}'")
            normalized[key] = str(parse_indicator_ref(raw))
        self.indicators = normalized
        if not str(self.ea_id or "").strip():
            self.ea_id = f"{self.symbol}-{self.timeframe}-{self.signal.variant}-{self.magic}"
        return self

    def indicator_map(self) -> dict[str, IndicatorRef]:
        refs = dict(DEFAULT_INDICATORS)
        for name, raw in self.indicators.items():
            refs[name] = parse_indicator_ref(raw)
        return refs


class TelemetryConfig(BaseModel):
    url: str | None = None
    api_key: str | None = None
    api_key_header: str = "X-API-Key"
    timeout_seconds: float = 5.0
    currency: str = "USD"

    @model_validator(mode="after")
    def validate_values(self) -> "TelemetryConfig":
        if self.timeout_seconds <= 0:
            raise ValueError("telemetry.timeout_seconds must be > 0")
        self.currency = str(self.currency or "USD").strip().upper() or "USD"
        return self


class MonitoringConfig(BaseModel):
    dashboard_path: str = "runtime_dashboard.json"


class PaperConfig(BaseModel):
    equity: float = 10000.0
    min_stop_points: float = 0.0

    @model_validator(mode="after")
    def validate_values(self) -> "PaperConfig":
        if self.equity <= 0:
            raise ValueError("paper.equity must be > 0")
        if self.min_stop_points < 0:
            raise ValueError("paper.min_stop_points must be >= 0")
        return self


class AppConfig(BaseModel):
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    instances: list[InstanceConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_instances(self) -> "AppConfig":
        seen: set[int] = set()
        for instance in self.instances:
            if instance.magic in seen:
                raise ValueError(f"duplicate magic {instance.magic}")
            seen.add(instance.magic)
        return self


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)
