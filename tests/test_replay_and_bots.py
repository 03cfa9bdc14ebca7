from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from trader.backtest.engine import EXIT_END_OF_DATA, export_trade_log, run_replay, run_replay_from_csv
from trader.config import (
    BotConfig,
    ChopConfig,
    ExitConfig,
    InstrumentConfig,
    RecorderConfig,
    RegimeConfig,
    SessionConfig,
    SessionWindowConfig,
    StrategyConfig,
)
from trader.data.candles import Candle, load_candles_csv
from trader.storage.journal import SinkRegistry, build_recorder
from trader.strategy.bots import BollingerBreakoutBot, EmaCrossBot, MomentumBot, build_bots
from trader.strategy.contracts import BotSignal, Direction, MarketSnapshot
from trader.strategy.indicators import IndicatorFeed, linreg_slope, true_range

T0 = datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc)


def _candle(idx: int, close: float, *, spread: float = 0.25, volume: float = 10.0) -> Candle:
    return Candle(
        timestamp=T0 + timedelta(minutes=idx),
        open=close,
        high=close + spread,
        low=close - spread,
        close=close,
        volume=volume,
    )


def _snapshot(idx: int, close: float, **indicators: float) -> MarketSnapshot:
    return MarketSnapshot(bar=_candle(idx, close), indicators=dict(indicators), bar_index=idx)


class LongOnceBot:
    name = "once"

    def __init__(self, bar_index: int):
        self.bar_index = bar_index

    def check(self, snapshot: MarketSnapshot) -> BotSignal | None:
        if snapshot.bar_index == self.bar_index:
            return BotSignal(self.name, Direction.LONG)
        return None


def _config(tmp_path) -> StrategyConfig:
    return StrategyConfig(
        instrument=InstrumentConfig(symbol="MNQ", tick_size=0.25, tick_value=0.5),
        bots={"once": BotConfig()},
        sessions=SessionConfig(timezone="UTC", windows=[SessionWindowConfig(name="Day", start="00:00", end="23:59")]),
        regime=RegimeConfig(auto_detection=False),
        chop=ChopConfig(enabled=False),
        exits=ExitConfig(initial_stop_ticks=100, profit_target_ticks=200, breakeven={"enabled": False}),
        recorder=RecorderConfig(
            csv_path=str(tmp_path / "trades.csv"),
            jsonl_path=str(tmp_path / "trades.jsonl"),
        ),
    )


def test_replay_flattens_open_position_at_end_of_data(tmp_path) -> None:
    config = _config(tmp_path)
    candles = [_candle(i, 100.0 + 0.25 * i) for i in range(10)]
    recorder = build_recorder(config.recorder, SinkRegistry())

    report = run_replay(config, candles, {"once": LongOnceBot(2)}, recorder)

    assert report.bars == 10
    assert report.trades == 1
    assert report.wins == 1
    trade = report.trade_log[0]
    assert trade.exit.name == EXIT_END_OF_DATA
    assert trade.entry.price == pytest.approx(100.5)
    assert trade.exit.price == pytest.approx(102.25)
    assert trade.profit_ticks == pytest.approx(7.0)
    assert report.total_pnl == pytest.approx(3.5)
    assert report.time_in_market_bars == 8
    assert len((tmp_path / "trades.csv").read_text(encoding="utf-8").splitlines()) == 2
    assert len((tmp_path / "trades.jsonl").read_text(encoding="utf-8").splitlines()) == 1

    out = export_trade_log(tmp_path / "out" / "log.csv", report)
    assert out.read_text(encoding="utf-8").splitlines()[1].startswith("1,Long,")


def test_replay_from_csv(tmp_path) -> None:
    data = tmp_path / "bars.csv"
    rows = ["\ufefftimestamp,open,high,low,close,volume"]
    for i in range(6):
        ts = (T0 + timedelta(minutes=i)).isoformat()
        rows.append(f"{ts},100,100.5,99.5,100,5")
    data.write_text("\n".join(rows) + "\n", encoding="utf-8")

    candles = load_candles_csv(data)
    assert len(candles) == 6
    assert candles[0].bid is None

    report = run_replay_from_csv(_config(tmp_path), data, {"once": LongOnceBot(1)})
    assert report.trades == 1
    assert report.trade_log[0].profit_ticks == pytest.approx(0.0)


def test_indicator_feed_warms_up() -> None:
    feed = IndicatorFeed()
    first = feed.push(_candle(0, 100.0, spread=0.5))
    assert all(value is None for value in first.values())

    values = first
    for i in range(1, 30):
        values = feed.push(_candle(i, 100.0, spread=0.5))

    assert values["atr"] == pytest.approx(1.0)
    assert values["adx"] == pytest.approx(0.0)
    assert values["momentum"] == pytest.approx(0.0)
    assert values["bb_width"] == pytest.approx(0.0)
    assert values["bb_width_min"] == pytest.approx(0.0)
    assert values["linreg_slope"] == pytest.approx(0.0)
    assert values["volume_ma"] == pytest.approx(10.0)


def test_indicator_helpers() -> None:
    gap_up = Candle(timestamp=T0, open=103.0, high=104.0, low=102.5, close=103.5)
    assert true_range(gap_up, None) == pytest.approx(1.5)
    assert true_range(gap_up, 100.0) == pytest.approx(4.0)
    assert linreg_slope([1.0, 2.0, 3.0, 4.0]) == pytest.approx(1.0)
    assert linreg_slope([1.0]) is None


def test_ema_cross_bot_signals_on_cross() -> None:
    bot = EmaCrossBot("ema", fast=2, slow=3)
    closes = [10.0, 10.0, 10.0, 10.0, 12.0]
    signals = [bot.check(_snapshot(i, close)) for i, close in enumerate(closes)]

    assert signals[:4] == [None, None, None, None]
    assert signals[4] == BotSignal("ema", Direction.LONG)


def test_momentum_bot_strength() -> None:
    bot = MomentumBot("mom", threshold=1.0, full_strength=10.0)

    assert bot.check(_snapshot(0, 100.0)) is None
    assert bot.check(_snapshot(1, 100.0, momentum=0.5)) is None
    signal = bot.check(_snapshot(2, 100.0, momentum=-5.0))
    assert signal.direction == Direction.SHORT
    assert signal.strength == pytest.approx(0.5)


def test_bollinger_breakout_bot() -> None:
    bot = BollingerBreakoutBot("bb", period=3, std_dev=2.0)
    closes = [10.0, 11.0, 10.0, 20.0]
    signals = [bot.check(_snapshot(i, close)) for i, close in enumerate(closes)]

    assert signals[:3] == [None, None, None]
    assert signals[3].direction == Direction.LONG


def test_build_bots_from_config() -> None:
    bots = build_bots(
        {
            "fast_cross": BotConfig(params={"type": "ema_cross", "fast": 3, "slow": 5}),
            "momentum": BotConfig(),
            "off": BotConfig(enabled=False, params={"type": "nope"}),
        }
    )
    assert set(bots) == {"fast_cross", "momentum"}
    assert isinstance(bots["fast_cross"], EmaCrossBot)
    assert bots["fast_cross"].name == "fast_cross"

    with pytest.raises(ValueError, match="Unknown bot type"):
        build_bots({"mystery": BotConfig()})
