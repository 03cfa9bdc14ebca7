from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from trader.backtest.engine import run_replay
from trader.config import StrategyConfig, load_config
from trader.data.candles import load_candles_csv
from trader.reporting.metrics import load_trade_log, summarize_trades
from trader.storage.journal import SinkRegistry, build_recorder
from trader.strategy.bots import build_bots

LOGGER = logging.getLogger("main")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Confluence trading engine: bar replay and trade-log analysis")
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config")
    parser.add_argument("--data", default=None, help="Bar CSV to replay (timestamp,open,high,low,close[,volume,bid,ask])")
    parser.add_argument("--preset", default=None, help="Named preset applied over the config")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    parser.add_argument("--summary", default=None, help="Summarize an existing CSV/JSONL trade log and exit")
    return parser.parse_args()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def run_summary_mode(path: str) -> None:
    frame = load_trade_log(path)
    LOGGER.info("Trade log summary (%s): %s", path, json.dumps(summarize_trades(frame), indent=2, ensure_ascii=True))


def run_replay_mode(args: argparse.Namespace, config: StrategyConfig) -> None:
    if not args.data:
        raise RuntimeError("--data is required to replay bars")
    candles = load_candles_csv(args.data)
    bots = build_bots(config.bots)
    if not bots:
        LOGGER.warning("No enabled bots configured; replay will not open trades")
    recorder = build_recorder(config.recorder, SinkRegistry())
    report = run_replay(config, candles, bots, recorder)
    LOGGER.info("Replay report: %s", json.dumps(report.to_dict(), indent=2, ensure_ascii=True))


def run() -> None:
    args = parse_args()
    load_dotenv()
    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    if args.summary:
        run_summary_mode(args.summary)
        return

    root = Path(__file__).resolve().parent
    config_path = Path(args.config)
    if not config_path.is_absolute() and not config_path.exists():
        config_path = root / config_path
    config = load_config(config_path, preset=args.preset)
    LOGGER.info(
        "Strategy %s on %s (preset=%s, bots=%s)",
        config.name,
        config.instrument.symbol,
        config.preset or "-",
        ",".join(config.enabled_bots()) or "-",
    )
    run_replay_mode(args, config)


if __name__ == "__main__":
    run()
