from __future__ import annotations

import logging
import math
import statistics
from collections import deque

from trader.config import DynamicConfig

LOGGER = logging.getLogger(__name__)


def percentile(values: list[float], pct: float) -> float:
    """Linear-interpolated percentile of ``values`` (pct in [0,100])."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = (pct / 100.0) * (len(ordered) - 1)
    if index <= 0:
        return ordered[0]
    if index >= len(ordered) - 1:
        return ordered[-1]
    lower = int(math.floor(index))
    fraction = index - lower
    return ordered[lower] + fraction * (ordered[lower + 1] - ordered[lower])


class DynamicExitTuner:
    """Learns the next trade's stop/target from recent excursions."""

    def __init__(self, config: DynamicConfig):
        self.config = config
        self.trades_seen = 0
        self.mfe_history: deque[float] = deque(maxlen=config.lookback)
        self.mae_history: deque[float] = deque(maxlen=config.lookback)
        self.stop_ticks: float | None = None
        self.target_ticks: float | None = None

    def _stat(self, values: list[float], padding: float) -> float:
        if not values:
            return 0.0
        method = self.config.method
        if method == "AVERAGE":
            return statistics.fmean(values) + padding
        if method == "MEDIAN":
            return statistics.median(values) + padding
        if method == "PERCENTILE":
            return percentile(values, self.config.percentile) + padding
        raise ValueError(f"Unsupported dynamic method {method}")

    def observe(self, mfe_ticks: float, mae_ticks: float) -> None:
        self.trades_seen += 1
        if mfe_ticks > 0:
            self.mfe_history.append(float(mfe_ticks))
        self.mae_history.append(float(mae_ticks))
        if self.trades_seen < self.config.burn_in_trades:
            LOGGER.info(
                "Dynamic burn-in: %s/%s trades completed, using initial SL/TP",
                self.trades_seen,
                self.config.burn_in_trades,
            )
            return
        self.target_ticks = self._stat(list(self.mfe_history), 0.0)
        self.stop_ticks = self._stat(list(self.mae_history), self.config.sl_padding_ticks)
        LOGGER.info(
            "Dynamic learning (%s): next TP %.0f ticks, next SL %.0f ticks",
            self.config.method,
            self.target_ticks,
            self.stop_ticks,
        )

    @property
    def active(self) -> bool:
        return self.trades_seen >= self.config.burn_in_trades and self.trades_seen > 0

    def next_stop_ticks(self, default: float) -> float:
        if not self.active or not self.stop_ticks or self.stop_ticks <= 0:
            return default
        return self.stop_ticks

    def next_target_ticks(self, default: float) -> float:
        if not self.active or not self.target_ticks or self.target_ticks <= 0:
            return default
        return self.target_ticks
