from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

from trader.config import InstrumentConfig
from trader.execution.exit_plan import ExitPlan
from trader.storage.models import Fill, TradeRecord

if TYPE_CHECKING:
    from trader.execution.position_manager import PositionState


def round_turn_commission(instrument: InstrumentConfig, quantity: int) -> float:
    return instrument.commission_per_contract * quantity * 2


def build_trade_record(
    state: "PositionState",
    plan: ExitPlan,
    exit_fill: Fill,
    *,
    instrument: InstrumentConfig,
    strategy: str,
    account: str,
    indicators: Mapping[str, float | None] | None = None,
) -> TradeRecord:
    """Assemble the closed-trade record from the position and its exit fill."""
    indicators = indicators or {}
    tick = plan.tick_size
    sign = state.direction.sign
    profit_ticks = (exit_fill.price - state.entry_price) * sign / tick
    commission = round_turn_commission(instrument, state.quantity)
    profit_currency = profit_ticks * instrument.tick_value * state.quantity - commission

    def _value(name: str) -> float:
        raw = indicators.get(name)
        return float(raw) if raw is not None else 0.0

    return TradeRecord(
        strategy=strategy,
        instrument=instrument.symbol,
        account=account,
        trade_number=state.trade_number,
        entry=Fill(time=state.entry_time, price=state.entry_price, name=state.entry_name),
        exit=exit_fill,
        direction=state.direction.value,
        quantity=state.quantity,
        profit_ticks=profit_ticks,
        profit_currency=profit_currency,
        commission=commission,
        mfe_ticks=state.mfe_ticks,
        mae_ticks=state.mae_ticks,
        market_regime=state.regime.value,
        signal_source=state.signal_source,
        stop_type=plan.stop_type.value,
        profit_type=plan.profit_type.value,
        confluence_score=state.confluence_score,
        adx_at_exit=_value("adx"),
        atr_at_exit=_value("atr"),
        momentum_at_exit=_value("momentum"),
        bars_in_trade=state.bars_in_trade,
        initial_sl_ticks=state.initial_stop_ticks,
        initial_tp_ticks=state.initial_target_ticks,
        be_trigger_ticks=plan.breakeven.trigger_in_ticks(state.initial_target_ticks),
        slippage_ticks=state.slippage_ticks,
    )
