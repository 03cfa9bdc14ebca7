from __future__ import annotations

import logging
from dataclasses import dataclass, field

from trader.config import StrategyConfig
from trader.strategy.contracts import (
    AggregatedSignal,
    ChopDetector,
    Direction,
    MarketRegime,
    MarketSnapshot,
    RegimeClassifier,
)
from trader.gating.pnl_limits import PnlLimits
from trader.strategy.schedule import SessionSchedule

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MarketState:
    regime: MarketRegime
    choppy: bool


@dataclass(slots=True)
class GateDecision:
    accepted: bool
    direction: Direction
    regime: MarketRegime
    window: str | None = None
    reasons: list[str] = field(default_factory=list)


class FilterGate:
    def __init__(
        self,
        config: StrategyConfig,
        *,
        regime_classifier: RegimeClassifier | None = None,
        chop_detector: ChopDetector | None = None,
        schedule: SessionSchedule | None = None,
        pnl_limits: PnlLimits | None = None,
    ):
        self.config = config
        self.regime_classifier = regime_classifier
        self.chop_detector = chop_detector
        self.schedule = schedule or SessionSchedule(config.sessions)
        self.pnl_limits = pnl_limits or PnlLimits(config.pnl_limits, self.schedule)

    def market_state(self, snapshot: MarketSnapshot) -> MarketState:
        """Regime label and chop flag for the bar, independent of any signal.

        A failing detector or classifier leaves the bar unchopped and UNDEFINED.
        """
        choppy = False
        if self.config.chop.enabled and self.chop_detector is not None:
            try:
                choppy = bool(self.chop_detector.is_choppy(snapshot))
            except Exception:
                LOGGER.exception("Chop detector failed on bar %s", snapshot.bar.timestamp.isoformat())
        if choppy:
            return MarketState(regime=MarketRegime.UNDEFINED, choppy=True)
        return MarketState(regime=self._regime(snapshot), choppy=False)

    def _regime(self, snapshot: MarketSnapshot) -> MarketRegime:
        regime_cfg = self.config.regime
        if regime_cfg.manual_override != MarketRegime.UNDEFINED:
            return regime_cfg.manual_override
        if not regime_cfg.auto_detection or self.regime_classifier is None:
            return MarketRegime.UNDEFINED
        try:
            regime = self.regime_classifier.classify(snapshot)
        except Exception:
            LOGGER.exception("Regime classifier failed on bar %s", snapshot.bar.timestamp.isoformat())
            return MarketRegime.UNDEFINED
        if not isinstance(regime, MarketRegime):
            LOGGER.warning("Regime classifier returned %r, treated as Undefined", regime)
            return MarketRegime.UNDEFINED
        return regime

    def evaluate(
        self,
        signal: AggregatedSignal | None,
        snapshot: MarketSnapshot,
        state: MarketState | None = None,
    ) -> GateDecision:
        state = state or self.market_state(snapshot)
        if signal is None or signal.direction == Direction.NONE:
            return GateDecision(
                accepted=False,
                direction=Direction.NONE,
                regime=state.regime,
                reasons=["NO_SIGNAL"],
            )

        window = self.schedule.active_window(snapshot.bar.timestamp)
        reasons: list[str] = []
        if not self.schedule.has_enabled_window:
            reasons.append("NO_SESSION_ENABLED")
        elif window is None:
            reasons.append("OUTSIDE_SESSION")
        if state.choppy:
            reasons.append("CHOP_ZONE")
        reasons.extend(self.pnl_limits.check(snapshot.bar.timestamp))

        if reasons:
            LOGGER.debug(
                "%s signal from %s rejected at %s: %s",
                signal.direction.value,
                signal.source_label,
                snapshot.bar.timestamp.isoformat(),
                ",".join(reasons),
            )
            return GateDecision(
                accepted=False,
                direction=signal.direction,
                regime=state.regime,
                window=window.name if window else None,
                reasons=reasons,
            )
        return GateDecision(
            accepted=True,
            direction=signal.direction,
            regime=state.regime,
            window=window.name if window else None,
        )
