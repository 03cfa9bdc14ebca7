from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True, frozen=True)
class Fill:
    time: datetime
    price: float
    name: str


@dataclass(slots=True, frozen=True)
class TradeRecord:
    strategy: str
    instrument: str
    account: str
    trade_number: int
    entry: Fill | None
    exit: Fill | None
    direction: str
    quantity: int
    profit_ticks: float
    profit_currency: float
    commission: float
    mfe_ticks: float
    mae_ticks: float
    market_regime: str
    signal_source: str
    stop_type: str
    profit_type: str
    confluence_score: float
    adx_at_exit: float
    atr_at_exit: float
    momentum_at_exit: float
    bars_in_trade: int
    initial_sl_ticks: float
    initial_tp_ticks: float
    be_trigger_ticks: float
    slippage_ticks: float


class TradeRecordError(ValueError):
    pass


def validate_record(record: TradeRecord | None) -> TradeRecord:
    if record is None:
        raise TradeRecordError("Trade record is missing.")
    if record.entry is None or record.exit is None:
        raise TradeRecordError("Trade record entry or exit is missing.")
    if record.entry.time is None or record.exit.time is None:
        raise TradeRecordError("Trade record entry or exit time is missing.")
    if record.entry.price is None or record.exit.price is None:
        raise TradeRecordError("Trade record entry or exit price is missing.")
    return record
