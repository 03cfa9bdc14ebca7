from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

from trader.config import StrategyConfig
from trader.data.candles import Candle
from trader.execution.dynamic import DynamicExitTuner
from trader.execution.exit_plan import ExitPlan, StopType, build_exit_plan
from trader.execution.position_manager import CloseResult, ExitStateMachine
from trader.gating.filter_gate import FilterGate, GateDecision, MarketState
from trader.storage.journal import TradeRecorder
from trader.storage.models import TradeRecord
from trader.strategy.aggregator import AggregationResult, SignalAggregator
from trader.strategy.contracts import (
    BotGroup,
    BotSignal,
    ChopDetector,
    Direction,
    MarketRegime,
    MarketSnapshot,
    RegimeClassifier,
    SignalBot,
)
from trader.strategy.regime import AdxChopDetector, AdxRegimeClassifier

LOGGER = logging.getLogger(__name__)

EXIT_SESSION_CLOSE = "Session Close"
EXIT_MANUAL = "Manual Flatten"

_REGIME_GROUPS = {
    MarketRegime.TRENDING: BotGroup.TRENDING,
    MarketRegime.RANGING: BotGroup.RANGING,
    MarketRegime.BREAKOUT: BotGroup.BREAKOUT,
}


@dataclass(slots=True)
class BarOutcome:
    timestamp: datetime
    action: str = "NONE"
    state: MarketState | None = None
    aggregation: AggregationResult | None = None
    gate: GateDecision | None = None
    closed: TradeRecord | None = None
    reasons: list[str] = field(default_factory=list)


class TradingEngine:
    """One strategy instance: bots -> aggregator -> gate -> exit state machine -> recorder.

    Single-threaded; each ``on_bar`` call runs to completion.
    """

    def __init__(
        self,
        config: StrategyConfig,
        bots: Mapping[str, SignalBot],
        *,
        recorder: TradeRecorder | None = None,
        regime_classifier: RegimeClassifier | None = None,
        chop_detector: ChopDetector | None = None,
    ):
        self.config = config
        self.bots = dict(bots)
        self.aggregator = SignalAggregator(min_confluence_score=config.confluence.min_confluence_score)
        self.gate = FilterGate(
            config,
            regime_classifier=regime_classifier or AdxRegimeClassifier(config.regime),
            chop_detector=chop_detector or AdxChopDetector(config.chop),
        )
        self.tuner: DynamicExitTuner | None = None
        if config.exits.management_mode == "DYNAMIC":
            self.tuner = DynamicExitTuner(config.exits.dynamic)
        self.exits = ExitStateMachine(
            instrument=config.instrument,
            strategy=config.name,
            account=config.account,
            recorder=recorder,
            on_close=self._on_trade_closed,
        )
        self.bar_index = 0

    def _on_trade_closed(self, record: TradeRecord) -> None:
        self.gate.pnl_limits.record_close(record.profit_currency, record.exit.time)
        if self.tuner is not None:
            self.tuner.observe(record.mfe_ticks, record.mae_ticks)

    def eligible_sources(self, regime: MarketRegime) -> dict[str, float]:
        regime_cfg = self.config.regime
        group_enabled = {
            BotGroup.UNIVERSAL: True,
            BotGroup.TRENDING: regime_cfg.enable_trend_bots,
            BotGroup.RANGING: regime_cfg.enable_range_bots,
            BotGroup.BREAKOUT: regime_cfg.enable_breakout_bots,
        }
        regime_driven = regime_cfg.auto_detection or regime_cfg.manual_override != MarketRegime.UNDEFINED
        active_group = _REGIME_GROUPS.get(regime)
        weights: dict[str, float] = {}
        for bot_id, bot_cfg in self.config.enabled_bots().items():
            if bot_id not in self.bots or not group_enabled[bot_cfg.group]:
                continue
            if regime_driven and bot_cfg.group != BotGroup.UNIVERSAL and bot_cfg.group != active_group:
                continue
            weights[bot_id] = bot_cfg.weight
        return weights

    def _poll_bots(self, snapshot: MarketSnapshot) -> dict[str, BotSignal | None]:
        signals: dict[str, BotSignal | None] = {}
        for bot_id, bot in self.bots.items():
            try:
                signal = bot.check(snapshot)
            except Exception:
                LOGGER.exception("Bot %s failed on bar %s", bot_id, snapshot.bar.timestamp.isoformat())
                signal = None
            if signal is not None and not isinstance(signal, BotSignal):
                LOGGER.warning("Bot %s returned %r, treated as no signal", bot_id, signal)
                signal = None
            signals[bot_id] = signal
        return signals

    def exit_plan_for(self, regime: MarketRegime) -> ExitPlan:
        exits = self.config.exits
        stop_type: StopType | None = None
        if regime == MarketRegime.RANGING and self.config.regime.ranging_stop_type is not None:
            stop_type = self.config.regime.ranging_stop_type
        stop_ticks: float | None = None
        target_ticks: float | None = None
        if self.tuner is not None:
            stop_ticks = self.tuner.next_stop_ticks(exits.initial_stop_ticks)
            target_ticks = self.tuner.next_target_ticks(exits.profit_target_ticks)
        return build_exit_plan(
            exits,
            tick_size=self.config.instrument.tick_size,
            stop_type=stop_type,
            initial_stop_ticks=stop_ticks,
            initial_target_ticks=target_ticks,
        )

    def on_bar(self, bar: Candle, indicators: Mapping[str, float | None] | None = None) -> BarOutcome:
        snapshot = MarketSnapshot(bar=bar, indicators=dict(indicators or {}), bar_index=self.bar_index)
        self.bar_index += 1
        outcome = BarOutcome(timestamp=bar.timestamp)
        outcome.state = self.gate.market_state(snapshot)

        # Bots see every bar so their own state stays warm.
        signals = self._poll_bots(snapshot)

        closed: CloseResult | None = None
        if not self.exits.is_flat:
            closed = self.exits.update(bar, snapshot.indicators)
            if (
                closed is None
                and self.config.sessions.flatten_outside_session
                and not self.gate.schedule.is_open(bar.timestamp)
            ):
                closed = self.exits.force_exit(bar.close, bar.timestamp, EXIT_SESSION_CLOSE)
            if closed is not None:
                outcome.action = "CLOSE"
                outcome.closed = closed.record
                outcome.reasons.extend(closed.reasons)
                return outcome
            outcome.action = "HOLD"
            return outcome

        outcome.aggregation = self.aggregator.aggregate(signals, self.eligible_sources(outcome.state.regime))
        if outcome.aggregation.signal is None:
            outcome.reasons.extend(outcome.aggregation.reasons)
            return outcome
        signal = outcome.aggregation.signal

        outcome.gate = self.gate.evaluate(signal, snapshot, outcome.state)
        if not outcome.gate.accepted:
            outcome.reasons.extend(outcome.gate.reasons)
            return outcome

        plan = self.exit_plan_for(outcome.state.regime)
        fill = bar.close
        if signal.direction == Direction.LONG and bar.ask is not None:
            fill = bar.ask
        elif signal.direction == Direction.SHORT and bar.bid is not None:
            fill = bar.bid
        opened = self.exits.open(
            signal.direction,
            price=fill,
            time=bar.timestamp,
            plan=plan,
            quantity=self.config.contracts,
            expected_price=bar.close,
            atr=snapshot.indicator("atr"),
            regime=outcome.state.regime,
            signal_source=signal.source_label,
            confluence_score=signal.confluence_score,
        )
        if opened is None:
            outcome.gate.accepted = False
            outcome.gate.reasons.append("INVALID_EXIT_PLAN")
            outcome.reasons.append("INVALID_EXIT_PLAN")
            outcome.reasons.extend(self.exits.last_rejection)
            return outcome
        outcome.action = "OPEN_LONG" if signal.direction == Direction.LONG else "OPEN_SHORT"
        return outcome

    def flatten(self, price: float, time: datetime, reason: str = EXIT_MANUAL) -> TradeRecord | None:
        closed = self.exits.force_exit(price, time, reason)
        return closed.record if closed is not None else None
