from __future__ import annotations

import csv
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from trader.config import StrategyConfig
from trader.data.candles import Candle, load_candles_csv
from trader.storage.journal import TradeRecorder
from trader.storage.models import TradeRecord
from trader.strategy.contracts import SignalBot
from trader.strategy.engine import TradingEngine
from trader.strategy.indicators import IndicatorFeed

EXIT_END_OF_DATA = "End Of Data"


@dataclass(slots=True)
class ReplayReport:
    instrument: str
    bars: int
    trades: int
    wins: int
    losses: int
    win_rate: float
    total_pnl: float
    expectancy: float
    max_drawdown: float
    time_in_market_bars: int
    rejections: dict[str, int]
    trade_log: list[TradeRecord]

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "bars": self.bars,
            "trades": self.trades,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": self.win_rate,
            "total_pnl": self.total_pnl,
            "expectancy": self.expectancy,
            "max_drawdown": self.max_drawdown,
            "time_in_market_bars": self.time_in_market_bars,
            "rejections": dict(self.rejections),
        }


def run_replay(
    config: StrategyConfig,
    candles: list[Candle],
    bots: Mapping[str, SignalBot],
    recorder: TradeRecorder | None = None,
    *,
    feed: IndicatorFeed | None = None,
) -> ReplayReport:
    """Feed bars through one engine and flatten whatever is open at the last bar."""
    engine = TradingEngine(config, bots, recorder=recorder)
    feed = feed or IndicatorFeed(config.indicators)
    trades: list[TradeRecord] = []
    rejections: dict[str, int] = {}
    time_in_market_bars = 0

    for candle in candles:
        outcome = engine.on_bar(candle, feed.push(candle))
        if outcome.closed is not None:
            trades.append(outcome.closed)
        for reason in outcome.reasons:
            rejections[reason] = rejections.get(reason, 0) + 1
        if not engine.exits.is_flat:
            time_in_market_bars += 1

    if candles and not engine.exits.is_flat:
        last = candles[-1]
        record = engine.flatten(last.close, last.timestamp, EXIT_END_OF_DATA)
        if record is not None:
            trades.append(record)

    equity = 0.0
    peak = 0.0
    max_drawdown = 0.0
    for trade in trades:
        equity += trade.profit_currency
        peak = max(peak, equity)
        max_drawdown = max(max_drawdown, peak - equity)

    wins = sum(1 for trade in trades if trade.profit_currency > 0)
    losses = sum(1 for trade in trades if trade.profit_currency <= 0)
    total_pnl = sum(trade.profit_currency for trade in trades)
    trade_count = len(trades)
    return ReplayReport(
        instrument=config.instrument.symbol,
        bars=len(candles),
        trades=trade_count,
        wins=wins,
        losses=losses,
        win_rate=(wins / trade_count) if trade_count else 0.0,
        total_pnl=total_pnl,
        expectancy=(total_pnl / trade_count) if trade_count else 0.0,
        max_drawdown=max_drawdown,
        time_in_market_bars=time_in_market_bars,
        rejections=rejections,
        trade_log=trades,
    )


def run_replay_from_csv(
    config: StrategyConfig,
    csv_path: str | Path,
    bots: Mapping[str, SignalBot],
    recorder: TradeRecorder | None = None,
) -> ReplayReport:
    return run_replay(config, load_candles_csv(csv_path), bots, recorder)


def export_trade_log(path: str | Path, report: ReplayReport) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    fields = ["trade_number", "direction", "entry_time", "exit_time", "entry_price", "exit_price", "exit_name", "profit_ticks", "pnl"]
    with out.open("w", encoding="utf-8", newline="") as file:
        writer = csv.DictWriter(file, fieldnames=fields)
        writer.writeheader()
        for trade in report.trade_log:
            writer.writerow(
                {
                    "trade_number": trade.trade_number,
                    "direction": trade.direction,
                    "entry_time": trade.entry.time.isoformat(),
                    "exit_time": trade.exit.time.isoformat(),
                    "entry_price": trade.entry.price,
                    "exit_price": trade.exit.price,
                    "exit_name": trade.exit.name,
                    "profit_ticks": round(trade.profit_ticks, 2),
                    "pnl": round(trade.profit_currency, 2),
                }
            )
    return out
