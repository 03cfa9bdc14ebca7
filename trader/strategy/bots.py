from __future__ import annotations

import logging
import math
from collections import deque
from typing import Any, Callable

from trader.config import BotConfig
from trader.strategy.contracts import BotSignal, Direction, MarketSnapshot, SignalBot

LOGGER = logging.getLogger(__name__)


class EmaCrossBot:
    """Signals on the bar where the fast EMA crosses the slow EMA."""

    def __init__(self, name: str, *, fast: int = 9, slow: int = 21):
        if fast <= 0 or slow <= fast:
            raise ValueError("ema_cross requires 0 < fast < slow")
        self.name = name
        self.fast = fast
        self.slow = slow
        self._closes: list[float] = []
        self._fast_value: float | None = None
        self._slow_value: float | None = None
        self._last_bar: int | None = None

    @staticmethod
    def _step(prev: float | None, closes: list[float], period: int) -> float | None:
        if prev is None:
            if len(closes) < period:
                return None
            return sum(closes[-period:]) / period
        alpha = 2 / (period + 1)
        return (closes[-1] - prev) * alpha + prev

    def check(self, snapshot: MarketSnapshot) -> BotSignal | None:
        if self._last_bar == snapshot.bar_index:
            return None
        self._last_bar = snapshot.bar_index
        self._closes.append(snapshot.bar.close)
        if len(self._closes) > self.slow:
            del self._closes[0]
        prev_fast, prev_slow = self._fast_value, self._slow_value
        self._fast_value = self._step(prev_fast, self._closes, self.fast)
        self._slow_value = self._step(prev_slow, self._closes, self.slow)
        if None in (prev_fast, prev_slow, self._fast_value, self._slow_value):
            return None
        if prev_fast <= prev_slow and self._fast_value > self._slow_value:
            return BotSignal(self.name, Direction.LONG)
        if prev_fast >= prev_slow and self._fast_value < self._slow_value:
            return BotSignal(self.name, Direction.SHORT)
        return None


class MomentumBot:
    def __init__(self, name: str, *, threshold: float = 0.0, full_strength: float = 0.0):
        self.name = name
        self.threshold = threshold
        self.full_strength = full_strength

    def check(self, snapshot: MarketSnapshot) -> BotSignal | None:
        momentum = snapshot.indicator("momentum")
        if momentum is None or abs(momentum) <= self.threshold:
            return None
        strength = 1.0
        if self.full_strength > 0:
            strength = min(1.0, abs(momentum) / self.full_strength)
        direction = Direction.LONG if momentum > 0 else Direction.SHORT
        return BotSignal(self.name, direction, strength)


class BollingerBreakoutBot:
    """Close outside the bands of the previous ``period`` closes."""

    def __init__(self, name: str, *, period: int = 20, std_dev: float = 2.0):
        if period < 2:
            raise ValueError("bb_breakout period must be >= 2")
        self.name = name
        self.period = period
        self.std_dev = std_dev
        self._closes: deque[float] = deque(maxlen=period)
        self._last_bar: int | None = None

    def check(self, snapshot: MarketSnapshot) -> BotSignal | None:
        if self._last_bar == snapshot.bar_index:
            return None
        self._last_bar = snapshot.bar_index
        close = snapshot.bar.close
        signal: BotSignal | None = None
        if len(self._closes) == self.period:
            mean = sum(self._closes) / self.period
            std = math.sqrt(sum((x - mean) ** 2 for x in self._closes) / self.period)
            upper = mean + self.std_dev * std
            lower = mean - self.std_dev * std
            if std > 0 and close > upper:
                signal = BotSignal(self.name, Direction.LONG)
            elif std > 0 and close < lower:
                signal = BotSignal(self.name, Direction.SHORT)
        self._closes.append(close)
        return signal


BOT_FACTORIES: dict[str, Callable[..., SignalBot]] = {
    "ema_cross": EmaCrossBot,
    "momentum": MomentumBot,
    "bb_breakout": BollingerBreakoutBot,
}


def build_bots(bots: dict[str, BotConfig]) -> dict[str, SignalBot]:
    """Instantiate the enabled bots. ``params.type`` picks the implementation, else the id does."""
    built: dict[str, SignalBot] = {}
    for bot_id, bot_cfg in bots.items():
        if not bot_cfg.enabled:
            continue
        params: dict[str, Any] = dict(bot_cfg.params)
        kind = str(params.pop("type", bot_id)).strip().lower()
        factory = BOT_FACTORIES.get(kind)
        if factory is None:
            raise ValueError(f"Unknown bot type '{kind}' for bot '{bot_id}'")
        built[bot_id] = factory(bot_id, **params)
        LOGGER.debug("Bot %s built as %s with %s", bot_id, kind, params)
    return built
