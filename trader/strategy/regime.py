from __future__ import annotations

from trader.config import ChopConfig, RegimeConfig
from trader.strategy.contracts import MarketRegime, MarketSnapshot


class AdxRegimeClassifier:
    """ADX / Bollinger-width regime labels.

    Strong ADX is trending, a band width close to its recent minimum is a
    squeeze (breakout setup), weak ADX is ranging.
    """

    def __init__(self, config: RegimeConfig):
        self.config = config

    def classify(self, snapshot: MarketSnapshot) -> MarketRegime:
        adx = snapshot.indicator("adx")
        if adx is None:
            return MarketRegime.UNDEFINED
        bb_width = snapshot.indicator("bb_width")
        bb_width_min = snapshot.indicator("bb_width_min")
        if adx > self.config.adx_trend_threshold:
            return MarketRegime.TRENDING
        if (
            bb_width is not None
            and bb_width_min is not None
            and bb_width > 0
            and bb_width_min > 0
            and (bb_width / bb_width_min) < self.config.squeeze_ratio
        ):
            return MarketRegime.BREAKOUT
        if adx < self.config.adx_range_threshold:
            return MarketRegime.RANGING
        return MarketRegime.UNDEFINED


class AdxChopDetector:
    """Chop = weak ADX, flat regression slope and thin volume, all at once."""

    def __init__(self, config: ChopConfig):
        self.config = config

    def is_choppy(self, snapshot: MarketSnapshot) -> bool:
        adx = snapshot.indicator("adx")
        slope = snapshot.indicator("linreg_slope")
        volume_ma = snapshot.indicator("volume_ma")
        if adx is None or slope is None or volume_ma is None:
            return False
        adx_is_low = adx < self.config.adx_threshold
        slope_is_flat = abs(slope) < self.config.flat_slope_threshold
        volume_is_low = volume_ma < self.config.volume_threshold
        return adx_is_low and slope_is_flat and volume_is_low
