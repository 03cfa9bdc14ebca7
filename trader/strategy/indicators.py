from __future__ import annotations

import math
from collections import deque

from trader.config import IndicatorsConfig
from trader.data.candles import Candle


def true_range(candle: Candle, prev_close: float | None) -> float:
    if prev_close is None:
        return candle.high - candle.low
    return max(
        candle.high - candle.low,
        abs(candle.high - prev_close),
        abs(candle.low - prev_close),
    )


def linreg_slope(values: list[float]) -> float | None:
    """Least-squares slope per bar over ``values`` (oldest first)."""
    count = len(values)
    if count < 2:
        return None
    mean_x = (count - 1) / 2
    mean_y = sum(values) / count
    num = 0.0
    den = 0.0
    for idx, value in enumerate(values):
        dx = idx - mean_x
        num += dx * (value - mean_y)
        den += dx * dx
    return num / den if den else 0.0


class _Ema:
    def __init__(self, period: int):
        self.period = period
        self.alpha = 2 / (period + 1)
        self.seed: list[float] = []
        self.value: float | None = None

    def push(self, x: float) -> float | None:
        if self.value is None:
            self.seed.append(x)
            if len(self.seed) == self.period:
                self.value = sum(self.seed) / self.period
            return self.value
        self.value = (x - self.value) * self.alpha + self.value
        return self.value


class _WilderAdx:
    def __init__(self, period: int):
        self.period = period
        self.prev: Candle | None = None
        self.count = 0
        self.tr_sum = 0.0
        self.plus_sum = 0.0
        self.minus_sum = 0.0
        self.dx_seed: list[float] = []
        self.value: float | None = None

    def push(self, candle: Candle) -> float | None:
        prev = self.prev
        self.prev = candle
        if prev is None:
            return None
        up = candle.high - prev.high
        down = prev.low - candle.low
        plus_dm = up if up > down and up > 0 else 0.0
        minus_dm = down if down > up and down > 0 else 0.0
        tr = true_range(candle, prev.close)

        self.count += 1
        if self.count <= self.period:
            self.tr_sum += tr
            self.plus_sum += plus_dm
            self.minus_sum += minus_dm
            if self.count < self.period:
                return None
        else:
            self.tr_sum = self.tr_sum - self.tr_sum / self.period + tr
            self.plus_sum = self.plus_sum - self.plus_sum / self.period + plus_dm
            self.minus_sum = self.minus_sum - self.minus_sum / self.period + minus_dm

        if self.tr_sum <= 0:
            dx = 0.0
        else:
            plus_di = 100 * self.plus_sum / self.tr_sum
            minus_di = 100 * self.minus_sum / self.tr_sum
            total = plus_di + minus_di
            dx = 100 * abs(plus_di - minus_di) / total if total > 0 else 0.0

        if self.value is None:
            self.dx_seed.append(dx)
            if len(self.dx_seed) == self.period:
                self.value = sum(self.dx_seed) / self.period
            return self.value
        self.value = (self.value * (self.period - 1) + dx) / self.period
        return self.value


class IndicatorFeed:
    """Incremental per-bar indicator values for bar replay.

    Every key is ``None`` until its lookback is filled.
    """

    def __init__(self, config: IndicatorsConfig | None = None):
        cfg = config or IndicatorsConfig()
        self.config = cfg
        self._prev_close: float | None = None
        self._atr = _Ema(cfg.atr_period)
        self._adx = _WilderAdx(cfg.adx_period)
        self._closes: deque[float] = deque(maxlen=max(cfg.momentum_period + 1, cfg.bb_period, cfg.linreg_period))
        self._widths: deque[float] = deque(maxlen=cfg.squeeze_lookback)
        self._volumes: deque[float] = deque(maxlen=cfg.volume_ma_period)

    def _tail(self, size: int) -> list[float]:
        if len(self._closes) < size:
            return []
        return list(self._closes)[-size:]

    def push(self, candle: Candle) -> dict[str, float | None]:
        cfg = self.config
        atr_value = self._atr.push(true_range(candle, self._prev_close))
        self._prev_close = candle.close
        adx_value = self._adx.push(candle)
        self._closes.append(candle.close)
        self._volumes.append(float(candle.volume or 0.0))

        momentum: float | None = None
        window = self._tail(cfg.momentum_period + 1)
        if window:
            momentum = window[-1] - window[0]

        bb_width: float | None = None
        bb_width_min: float | None = None
        window = self._tail(cfg.bb_period)
        if window:
            mean = sum(window) / len(window)
            std = math.sqrt(sum((x - mean) ** 2 for x in window) / len(window))
            bb_width = 2 * cfg.bb_std_dev * std
            self._widths.append(bb_width)
            bb_width_min = min(self._widths)

        slope: float | None = None
        window = self._tail(cfg.linreg_period)
        if window:
            slope = linreg_slope(window)

        volume_ma: float | None = None
        if len(self._volumes) == cfg.volume_ma_period:
            volume_ma = sum(self._volumes) / len(self._volumes)

        return {
            "atr": atr_value,
            "adx": adx_value,
            "momentum": momentum,
            "bb_width": bb_width,
            "bb_width_min": bb_width_min,
            "linreg_slope": slope,
            "volume_ma": volume_ma,
        }
