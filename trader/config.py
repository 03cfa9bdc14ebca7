from __future__ import annotations

from datetime import time
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from trader.execution.exit_plan import BreakevenMode, ProfitType, StopType
from trader.strategy.contracts import BotGroup, MarketRegime
from trader.strategy.presets import apply_preset


def _parse_hhmm(raw: str, field_name: str) -> time:
    parts = str(raw).strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"{field_name} must use HH:MM format")
    try:
        hh = int(parts[0])
        mm = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"{field_name} must use HH:MM format") from exc
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"{field_name} must be a valid time of day")
    return time(hour=hh, minute=mm)


class InstrumentConfig(BaseModel):
    symbol: str = "MNQ"
    tick_size: float = 0.25
    tick_value: float = 0.5
    commission_per_contract: float = 0.0

    @model_validator(mode="after")
    def validate_values(self) -> "InstrumentConfig":
        self.symbol = str(self.symbol).strip().upper() or "MNQ"
        if self.tick_size <= 0:
            raise ValueError("instrument.tick_size must be > 0")
        if self.tick_value <= 0:
            raise ValueError("instrument.tick_value must be > 0")
        if self.commission_per_contract < 0:
            raise ValueError("instrument.commission_per_contract must be >= 0")
        return self


class BotConfig(BaseModel):
    enabled: bool = True
    weight: float = 1.0
    group: BotGroup = BotGroup.UNIVERSAL
    params: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_weight(self) -> "BotConfig":
        if self.weight <= 0:
            raise ValueError("bot weight must be > 0")
        return self


class SessionWindowConfig(BaseModel):
    name: str
    start: str
    end: str
    enabled: bool = True

    @model_validator(mode="after")
    def validate_window(self) -> "SessionWindowConfig":
        self.name = str(self.name).strip()
        if not self.name:
            raise ValueError("session window name must not be empty")
        start = _parse_hhmm(self.start, f"sessions.windows[{self.name}].start")
        end = _parse_hhmm(self.end, f"sessions.windows[{self.name}].end")
        self.start = start.strftime("%H:%M")
        self.end = end.strftime("%H:%M")
        return self


class SessionConfig(BaseModel):
    timezone: str = "America/New_York"
    weekdays: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    windows: list[SessionWindowConfig] = Field(
        default_factory=lambda: [
            SessionWindowConfig(name="Time1", start="09:30", end="11:30"),
            SessionWindowConfig(name="Time2", start="11:30", end="12:30", enabled=False),
            SessionWindowConfig(name="Time3", start="14:30", end="16:00", enabled=False),
            SessionWindowConfig(name="Time4", start="04:00", end="07:00", enabled=False),
            SessionWindowConfig(name="Time5", start="00:00", end="02:00", enabled=False),
            SessionWindowConfig(name="Time6", start="00:00", end="23:59", enabled=False),
        ]
    )
    flatten_outside_session: bool = False

    @model_validator(mode="after")
    def validate_sessions(self) -> "SessionConfig":
        days: list[int] = []
        for day in self.weekdays:
            value = int(day)
            if not (0 <= value <= 6):
                raise ValueError("sessions.weekdays values must be in [0,6]")
            if value not in days:
                days.append(value)
        self.weekdays = days
        names = [window.name for window in self.windows]
        if len(names) != len(set(names)):
            raise ValueError("sessions.windows names must be unique")
        return self


class ConfluenceConfig(BaseModel):
    min_confluence_score: float = 0.0

    @model_validator(mode="after")
    def validate_threshold(self) -> "ConfluenceConfig":
        if not (0 <= self.min_confluence_score <= 100):
            raise ValueError("confluence.min_confluence_score must be in [0,100]")
        return self


class RegimeConfig(BaseModel):
    auto_detection: bool = True
    manual_override: MarketRegime = MarketRegime.UNDEFINED
    enable_trend_bots: bool = True
    enable_range_bots: bool = True
    enable_breakout_bots: bool = True
    adx_trend_threshold: float = 25.0
    adx_range_threshold: float = 25.0
    squeeze_ratio: float = 1.1
    ranging_stop_type: StopType | None = StopType.FIXED_STOP

    @model_validator(mode="after")
    def validate_thresholds(self) -> "RegimeConfig":
        if self.adx_range_threshold > self.adx_trend_threshold:
            raise ValueError("regime.adx_range_threshold must be <= adx_trend_threshold")
        if self.squeeze_ratio <= 1.0:
            raise ValueError("regime.squeeze_ratio must be > 1.0")
        return self


class ChopConfig(BaseModel):
    enabled: bool = True
    adx_threshold: float = 25.0
    flat_slope_threshold: float = 0.1
    volume_threshold: float = 1000.0

    @model_validator(mode="after")
    def validate_values(self) -> "ChopConfig":
        if self.flat_slope_threshold < 0:
            raise ValueError("chop.flat_slope_threshold must be >= 0")
        return self


class BreakevenConfig(BaseModel):
    enabled: bool = True
    mode: BreakevenMode = BreakevenMode.PROFIT_TARGET_PERCENTAGE
    trigger_ticks: float = 20.0
    offset_ticks: float = 4.0

    @model_validator(mode="after")
    def validate_values(self) -> "BreakevenConfig":
        if self.trigger_ticks < 0:
            raise ValueError("breakeven.trigger_ticks must be >= 0")
        if self.offset_ticks < 0:
            raise ValueError("breakeven.offset_ticks must be >= 0")
        if self.mode == BreakevenMode.PROFIT_TARGET_PERCENTAGE and self.trigger_ticks > 100:
            raise ValueError("breakeven.trigger_ticks is a percentage in PROFIT_TARGET_PERCENTAGE mode")
        return self


class DynamicConfig(BaseModel):
    method: str = "PERCENTILE"
    percentile: float = 80.0
    lookback: int = 20
    burn_in_trades: int = 30
    sl_padding_ticks: float = 4.0

    @model_validator(mode="after")
    def validate_values(self) -> "DynamicConfig":
        self.method = str(self.method).strip().upper()
        if self.method not in {"AVERAGE", "MEDIAN", "PERCENTILE"}:
            raise ValueError("exits.dynamic.method must be AVERAGE, MEDIAN or PERCENTILE")
        if not (0 <= self.percentile <= 100):
            raise ValueError("exits.dynamic.percentile must be in [0,100]")
        if self.lookback <= 0:
            raise ValueError("exits.dynamic.lookback must be > 0")
        if self.burn_in_trades < 0:
            raise ValueError("exits.dynamic.burn_in_trades must be >= 0")
        return self


class ExitConfig(BaseModel):
    management_mode: str = "STATIC"
    stop_type: StopType = StopType.FIXED_STOP
    profit_type: ProfitType = ProfitType.FIXED
    initial_stop_ticks: float = 73.0
    profit_target_ticks: float = 120.0
    atr_multiplier: float = 2.5
    atr_final_multiplier: float | None = 0.5
    atr_trail_trigger_percent: float = 70.0
    trail_offset_ticks: float | None = None
    risk_reward_ratio: float = 1.3
    breakeven: BreakevenConfig = Field(default_factory=BreakevenConfig)
    dynamic: DynamicConfig = Field(default_factory=DynamicConfig)

    @model_validator(mode="after")
    def validate_values(self) -> "ExitConfig":
        self.management_mode = str(self.management_mode).strip().upper()
        if self.management_mode not in {"STATIC", "DYNAMIC"}:
            raise ValueError("exits.management_mode must be STATIC or DYNAMIC")
        if self.atr_multiplier <= 0:
            raise ValueError("exits.atr_multiplier must be > 0")
        if self.atr_final_multiplier is not None and self.atr_final_multiplier <= 0:
            raise ValueError("exits.atr_final_multiplier must be > 0 when provided")
        if not (0 < self.atr_trail_trigger_percent <= 100):
            raise ValueError("exits.atr_trail_trigger_percent must be in (0,100]")
        if self.trail_offset_ticks is not None and self.trail_offset_ticks <= 0:
            raise ValueError("exits.trail_offset_ticks must be > 0 when provided")
        if self.risk_reward_ratio <= 0:
            raise ValueError("exits.risk_reward_ratio must be > 0")
        return self


class PnlLimitsConfig(BaseModel):
    daily_enabled: bool = True
    daily_loss_limit: float = 1000.0
    daily_profit_limit: float = 10000.0
    trailing_drawdown_enabled: bool = True
    trailing_drawdown: float = 1000.0

    @model_validator(mode="after")
    def validate_limits(self) -> "PnlLimitsConfig":
        for name in ("daily_loss_limit", "daily_profit_limit", "trailing_drawdown"):
            if getattr(self, name) <= 0:
                raise ValueError(f"pnl_limits.{name} must be > 0")
        return self


class RecorderConfig(BaseModel):
    csv_enabled: bool = True
    csv_path: str = "trade_logs/trades.csv"
    jsonl_enabled: bool = True
    jsonl_path: str = "trade_logs/trades.jsonl"


class IndicatorsConfig(BaseModel):
    atr_period: int = 20
    adx_period: int = 14
    momentum_period: int = 9
    bb_period: int = 20
    bb_std_dev: float = 2.0
    squeeze_lookback: int = 50
    linreg_period: int = 20
    volume_ma_period: int = 20

    @model_validator(mode="after")
    def validate_periods(self) -> "IndicatorsConfig":
        for name in (
            "atr_period",
            "adx_period",
            "momentum_period",
            "bb_period",
            "squeeze_lookback",
            "linreg_period",
            "volume_ma_period",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"indicators.{name} must be > 0")
        return self


class StrategyConfig(BaseModel):
    name: str = "KCAlgo"
    account: str = "Sim101"
    preset: str | None = None
    contracts: int = 1
    instrument: InstrumentConfig = Field(default_factory=InstrumentConfig)
    bots: dict[str, BotConfig] = Field(default_factory=dict)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    confluence: ConfluenceConfig = Field(default_factory=ConfluenceConfig)
    regime: RegimeConfig = Field(default_factory=RegimeConfig)
    chop: ChopConfig = Field(default_factory=ChopConfig)
    pnl_limits: PnlLimitsConfig = Field(default_factory=PnlLimitsConfig)
    exits: ExitConfig = Field(default_factory=ExitConfig)
    indicators: IndicatorsConfig = Field(default_factory=IndicatorsConfig)
    recorder: RecorderConfig = Field(default_factory=RecorderConfig)

    @model_validator(mode="after")
    def normalize(self) -> "StrategyConfig":
        self.name = str(self.name).strip() or "KCAlgo"
        if self.contracts <= 0:
            raise ValueError("contracts must be > 0")
        normalized: dict[str, BotConfig] = {}
        for key, value in self.bots.items():
            bot_id = str(key).strip()
            if not bot_id:
                continue
            normalized[bot_id] = value
        self.bots = normalized
        return self

    def enabled_bots(self) -> dict[str, BotConfig]:
        return {name: bot for name, bot in self.bots.items() if bot.enabled}


def load_config(path: str | Path, preset: str | None = None) -> StrategyConfig:
    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    if preset:
        raw["preset"] = preset
    preset = raw.get("preset")
    if preset:
        raw = apply_preset(raw, str(preset))
    return StrategyConfig.model_validate(raw)
