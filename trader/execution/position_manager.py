from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from trader.config import InstrumentConfig
from trader.data.candles import Candle
from trader.execution.exit_plan import ExitPlan, ProfitType, StopType
from trader.execution.trade_closer import build_trade_record
from trader.storage.journal import RecordResult, TradeRecorder
from trader.storage.models import Fill, TradeRecord
from trader.strategy.contracts import Direction, MarketRegime

LOGGER = logging.getLogger(__name__)

EXIT_STOP_LOSS = "Stop Loss"
EXIT_BREAKEVEN = "Breakeven Stop"
EXIT_TRAIL_STOP = "Trail Stop"
EXIT_PROFIT_TARGET = "Profit Target"


class PositionPhase(str, Enum):
    FLAT = "Flat"
    OPEN = "Open"
    BREAKEVEN_ARMED = "BreakevenArmed"
    CLOSED = "Closed"


def round_to_tick(price: float, tick_size: float) -> float:
    return round(round(price / tick_size) * tick_size, 10)


@dataclass(slots=True)
class PositionState:
    direction: Direction
    entry_price: float
    entry_time: datetime
    quantity: int
    current_stop_price: float
    current_target_price: float
    initial_stop_ticks: float
    initial_target_ticks: float
    initial_stop_price: float
    expected_entry_price: float
    highest_price: float
    lowest_price: float
    breakeven_armed: bool = False
    breakeven_price: float | None = None
    mfe_ticks: float = 0.0
    mae_ticks: float = 0.0
    bars_in_trade: int = 0
    trade_number: int = 0
    regime: MarketRegime = MarketRegime.UNDEFINED
    signal_source: str = "---"
    confluence_score: float = 0.0
    slippage_ticks: float = 0.0
    entry_name: str = "Entry"


@dataclass(slots=True)
class CloseResult:
    record: TradeRecord
    recorded: RecordResult | None = None
    reasons: list[str] = field(default_factory=list)


class ExitStateMachine:
    """Owns the single open position of one engine and walks it to exit.

    Flat -> Open -> BreakevenArmed -> Closed -> Flat. Stops only ratchet in the
    trade's favour and breakeven promotion happens at most once.
    """

    def __init__(
        self,
        *,
        instrument: InstrumentConfig,
        strategy: str,
        account: str,
        recorder: TradeRecorder | None = None,
        on_close: Callable[[TradeRecord], None] | None = None,
    ):
        self.instrument = instrument
        self.strategy = strategy
        self.account = account
        self.recorder = recorder
        self.on_close = on_close
        self.phase = PositionPhase.FLAT
        self.state: PositionState | None = None
        self.plan: ExitPlan | None = None
        self.trade_count = 0
        self.last_rejection: list[str] = []
        self._last_indicators: dict[str, float | None] = {}

    @property
    def is_flat(self) -> bool:
        return self.phase == PositionPhase.FLAT

    def open(
        self,
        direction: Direction,
        *,
        price: float,
        time: datetime,
        plan: ExitPlan,
        quantity: int = 1,
        expected_price: float | None = None,
        atr: float | None = None,
        regime: MarketRegime = MarketRegime.UNDEFINED,
        signal_source: str = "---",
        confluence_score: float = 0.0,
    ) -> PositionState | None:
        if self.phase != PositionPhase.FLAT:
            self.last_rejection = ["POSITION_NOT_FLAT"]
            LOGGER.warning("Open refused: position already %s", self.phase.value)
            return None
        errors = plan.validation_errors()
        if direction == Direction.NONE:
            errors.append("DIRECTION_MISSING")
        if quantity <= 0:
            errors.append("QUANTITY_NOT_POSITIVE")
        if errors:
            self.last_rejection = errors
            LOGGER.warning("Open refused, invalid exit plan: %s", ",".join(errors))
            return None

        tick = plan.tick_size
        sign = direction.sign
        stop_ticks = plan.initial_stop_ticks
        if plan.stop_type == StopType.ATR_TRAIL and atr is not None and atr > 0:
            stop_ticks = atr * plan.atr_multiplier / tick
        if plan.profit_type == ProfitType.FIXED:
            target_ticks = plan.initial_target_ticks
        elif plan.profit_type == ProfitType.RISK_REWARD_RATIO:
            target_ticks = float(max(1, round(stop_ticks * plan.risk_reward_ratio)))
        else:
            raise ValueError(f"Unsupported profit type {plan.profit_type}")

        expected = price if expected_price is None else expected_price
        stop_price = round_to_tick(price - sign * stop_ticks * tick, tick)
        self.trade_count += 1
        self.plan = plan
        self.state = PositionState(
            direction=direction,
            entry_price=price,
            entry_time=time,
            quantity=quantity,
            current_stop_price=stop_price,
            current_target_price=round_to_tick(price + sign * target_ticks * tick, tick),
            initial_stop_ticks=stop_ticks,
            initial_target_ticks=target_ticks,
            initial_stop_price=stop_price,
            expected_entry_price=expected,
            highest_price=price,
            lowest_price=price,
            trade_number=self.trade_count,
            regime=regime,
            signal_source=signal_source,
            confluence_score=confluence_score,
            slippage_ticks=(price - expected) * sign / tick,
            entry_name=f"{direction.value} {signal_source}".strip(),
        )
        self.phase = PositionPhase.OPEN
        self.last_rejection = []
        LOGGER.info(
            "Opened %s #%s @ %.2f stop=%.2f target=%.2f (%s/%s)",
            direction.value,
            self.trade_count,
            price,
            self.state.current_stop_price,
            self.state.current_target_price,
            plan.stop_type.value,
            plan.profit_type.value,
        )
        return self.state

    def update(self, bar: Candle, indicators: Mapping[str, float | None] | None = None) -> CloseResult | None:
        """Advance the live position by one bar. Returns the close when an exit fills."""
        if self.state is None or self.plan is None:
            return None
        state = self.state
        plan = self.plan
        self._last_indicators = dict(indicators or {})
        tick = plan.tick_size
        sign = state.direction.sign

        state.bars_in_trade += 1
        state.highest_price = max(state.highest_price, bar.high)
        state.lowest_price = min(state.lowest_price, bar.low)
        if state.direction == Direction.LONG:
            favorable = (state.highest_price - state.entry_price) / tick
            adverse = (state.entry_price - state.lowest_price) / tick
        else:
            favorable = (state.entry_price - state.lowest_price) / tick
            adverse = (state.highest_price - state.entry_price) / tick
        state.mfe_ticks = max(state.mfe_ticks, favorable, 0.0)
        state.mae_ticks = max(state.mae_ticks, adverse, 0.0)

        if state.direction == Direction.LONG:
            stop_hit = bar.low <= state.current_stop_price
            target_hit = bar.high >= state.current_target_price
        else:
            stop_hit = bar.high >= state.current_stop_price
            target_hit = bar.low <= state.current_target_price
        # Both touched in one bar: assume the stop filled first.
        if stop_hit:
            return self._close(state.current_stop_price, bar.timestamp, self._stop_exit_name())
        if target_hit:
            return self._close(state.current_target_price, bar.timestamp, EXIT_PROFIT_TARGET)

        profit_ticks = (bar.close - state.entry_price) * sign / tick
        self._check_breakeven(bar.close, profit_ticks)
        self._trail(bar, profit_ticks, self._last_indicators.get("atr"))
        return None

    def _check_breakeven(self, close: float, profit_ticks: float) -> None:
        state = self.state
        plan = self.plan
        if state.breakeven_armed:
            return
        trigger = plan.breakeven.trigger_in_ticks(state.initial_target_ticks)
        if trigger <= 0 or profit_ticks < trigger:
            return
        tick = plan.tick_size
        sign = state.direction.sign
        be_price = round_to_tick(state.entry_price + sign * plan.breakeven.offset_ticks * tick, tick)
        if (close - be_price) * sign <= 0:
            # Offset at or past the close; stays pending until price moves further.
            LOGGER.debug(
                "Breakeven for #%s pending: stop %.2f is not behind close %.2f",
                state.trade_number,
                be_price,
                close,
            )
            return
        state.current_stop_price = self._ratchet(state.current_stop_price, be_price)
        state.breakeven_armed = True
        state.breakeven_price = be_price
        self.phase = PositionPhase.BREAKEVEN_ARMED
        LOGGER.info(
            "Breakeven armed for #%s at %.1f ticks profit: stop -> %.2f",
            state.trade_number,
            profit_ticks,
            state.current_stop_price,
        )

    def _trail(self, bar: Candle, profit_ticks: float, atr: float | None) -> None:
        state = self.state
        plan = self.plan
        tick = plan.tick_size
        sign = state.direction.sign
        if plan.stop_type == StopType.FIXED_STOP:
            return
        if plan.stop_type == StopType.ATR_TRAIL:
            if atr is None or atr <= 0:
                return
            multiplier = plan.atr_multiplier
            trigger = state.initial_target_ticks * plan.atr_trail_trigger_percent / 100.0
            if plan.atr_final_multiplier is not None and profit_ticks >= trigger > 0:
                multiplier = plan.atr_final_multiplier
            candidate = bar.close - sign * atr * multiplier
        elif plan.stop_type == StopType.HIGH_LOW_TRAIL:
            offset = plan.high_low_offset_ticks * tick
            if state.direction == Direction.LONG:
                candidate = state.highest_price - offset
            else:
                candidate = state.lowest_price + offset
        else:
            raise ValueError(f"Unsupported stop type {plan.stop_type}")
        new_stop = self._ratchet(state.current_stop_price, round_to_tick(candidate, tick))
        if new_stop != state.current_stop_price:
            LOGGER.debug("Trail #%s stop %.2f -> %.2f", state.trade_number, state.current_stop_price, new_stop)
            state.current_stop_price = new_stop

    def _ratchet(self, current: float, candidate: float) -> float:
        if self.state.direction == Direction.LONG:
            return max(current, candidate)
        return min(current, candidate)

    def _stop_exit_name(self) -> str:
        state = self.state
        if state.current_stop_price == state.initial_stop_price:
            return EXIT_STOP_LOSS
        if state.breakeven_armed and state.current_stop_price == state.breakeven_price:
            return EXIT_BREAKEVEN
        return EXIT_TRAIL_STOP

    def force_exit(self, price: float, time: datetime, reason: str) -> CloseResult | None:
        if self.state is None:
            return None
        return self._close(price, time, reason)

    def _close(self, price: float, time: datetime, name: str) -> CloseResult:
        state = self.state
        plan = self.plan
        self.phase = PositionPhase.CLOSED
        record = build_trade_record(
            state,
            plan,
            Fill(time=time, price=price, name=name),
            instrument=self.instrument,
            strategy=self.strategy,
            account=self.account,
            indicators=self._last_indicators,
        )
        result = CloseResult(record=record)
        LOGGER.info(
            "Closed %s #%s @ %.2f (%s): %.1f ticks, %.2f",
            state.direction.value,
            state.trade_number,
            price,
            name,
            record.profit_ticks,
            record.profit_currency,
        )
        if self.recorder is not None:
            try:
                result.recorded = self.recorder.record(record)
            except Exception:
                LOGGER.exception("Trade recorder failed for #%s", state.trade_number)
                result.reasons.append("RECORDER_FAILED")
            else:
                if not result.recorded.ok:
                    result.reasons.append("RECORD_NOT_WRITTEN")
        if self.on_close is not None:
            try:
                self.on_close(record)
            except Exception:
                LOGGER.exception("Close callback failed for #%s", state.trade_number)
                result.reasons.append("CLOSE_CALLBACK_FAILED")
        self.state = None
        self.plan = None
        self.phase = PositionPhase.FLAT
        return result
