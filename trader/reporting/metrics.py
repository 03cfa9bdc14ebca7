from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pandas as pd

from trader.storage.journal import CSV_COLUMNS, JSON_KEYS, parse_json_line

LOGGER = logging.getLogger(__name__)

# CSV header -> JSON key, so both sink formats load into the same columns.
_CSV_TO_KEY = dict(zip(CSV_COLUMNS, JSON_KEYS))
_NUMERIC = [
    "TradeNumber",
    "EntryPrice",
    "Quantity",
    "ExitPrice",
    "ProfitTicks",
    "ProfitCurrency",
    "Commission",
    "MfeTicks",
    "MaeTicks",
    "ConfluenceScore",
    "AdxAtExit",
    "AtrAtExit",
    "MomentumAtExit",
    "BarsInTrade",
    "InitialSLTicks",
    "InitialTPTicks",
    "BeTriggerTicks",
    "SlippageTicks",
]


def load_trade_log(path: str | Path) -> pd.DataFrame:
    """Load a CSV or JSONL trade log written by the recorder."""
    log_path = Path(path)
    if log_path.suffix.lower() in {".jsonl", ".json"}:
        rows: list[dict[str, Any]] = []
        with log_path.open("r", encoding="utf-8") as file:
            for line_no, line in enumerate(file, start=1):
                if not line.strip():
                    continue
                try:
                    rows.append(parse_json_line(line))
                except (ValueError, KeyError) as exc:
                    LOGGER.warning("Skipping unreadable trade log line %s:%d: %s", log_path, line_no, exc)
                    continue
        frame = pd.DataFrame(rows, columns=JSON_KEYS)
    else:
        frame = pd.read_csv(log_path, dtype=str, keep_default_na=False)
        frame = frame.rename(columns=_CSV_TO_KEY)
        frame = frame.reindex(columns=JSON_KEYS)

    for column in _NUMERIC:
        frame[column] = pd.to_numeric(frame[column], errors="coerce")
    for column in ("EntryTime", "ExitTime"):
        frame[column] = pd.to_datetime(frame[column], utc=True, errors="coerce")
    return frame


def _max_drawdown(pnl: pd.Series) -> float:
    if pnl.empty:
        return 0.0
    equity = pnl.cumsum()
    peak = equity.cummax().clip(lower=0.0)
    return float((peak - equity).max())


def summarize_trades(frame: pd.DataFrame) -> dict[str, Any]:
    pnl = frame["ProfitCurrency"].fillna(0.0) if "ProfitCurrency" in frame else pd.Series(dtype=float)
    trades_count = int(len(pnl))
    wins = int((pnl > 0).sum())
    losses = int((pnl < 0).sum())
    gross_profit = float(pnl[pnl > 0].sum())
    gross_loss = float(pnl[pnl < 0].sum())
    summary: dict[str, Any] = {
        "trades_count": trades_count,
        "wins": wins,
        "losses": losses,
        "win_rate_pct": (wins / trades_count * 100.0) if trades_count else 0.0,
        "total_pnl": float(pnl.sum()),
        "avg_pnl": float(pnl.mean()) if trades_count else 0.0,
        "profit_factor": (gross_profit / abs(gross_loss)) if gross_loss < 0 else 0.0,
        "max_drawdown": _max_drawdown(pnl),
        "avg_mfe_ticks": float(frame["MfeTicks"].mean()) if trades_count else 0.0,
        "avg_mae_ticks": float(frame["MaeTicks"].mean()) if trades_count else 0.0,
    }
    for key, column in (
        ("by_signal_source", "SignalSource"),
        ("by_regime", "MarketRegime"),
        ("by_exit", "ExitName"),
    ):
        summary[key] = group_summary(frame, column)
    return summary


def group_summary(frame: pd.DataFrame, column: str) -> dict[str, dict[str, float]]:
    if frame.empty or column not in frame:
        return {}
    grouped = frame.groupby(column)["ProfitCurrency"]
    out: dict[str, dict[str, float]] = {}
    for name, series in grouped:
        count = int(series.count())
        out[str(name)] = {
            "trades": count,
            "total_pnl": float(series.sum()),
            "win_rate_pct": float((series > 0).sum() / count * 100.0) if count else 0.0,
        }
    return out
