from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from trader.strategy.contracts import AggregatedSignal, BotSignal, Direction


@dataclass(slots=True)
class AggregationResult:
    signal: AggregatedSignal | None
    long_sources: tuple[str, ...] = ()
    short_sources: tuple[str, ...] = ()
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _usable(signal: object) -> tuple[BotSignal, float] | None:
    """Signal plus its clamped strength, or None when the output cannot vote."""
    if not isinstance(signal, BotSignal):
        return None
    if not isinstance(signal.direction, Direction) or signal.direction == Direction.NONE:
        return None
    try:
        strength = float(signal.strength)
    except (TypeError, ValueError):
        return None
    if math.isnan(strength):
        return None
    return signal, _clamp(strength, 0.0, 1.0)


class SignalAggregator:
    """Folds one bar's bot outputs into at most one directional candidate.

    The score is the weighted share of enabled sources that agree on the
    direction, scaled to [0, 100]. Abstaining sources count in the denominator,
    so turning an abstaining source into an agreeing one can only raise it.
    """

    def __init__(self, *, min_confluence_score: float = 0.0):
        self.min_confluence_score = min_confluence_score

    def aggregate(
        self,
        signals: Mapping[str, BotSignal | None],
        enabled_sources: Mapping[str, float] | Sequence[str],
    ) -> AggregationResult:
        weights = _normalize_weights(enabled_sources)
        if not weights:
            return AggregationResult(signal=None, reasons=["NO_ENABLED_SOURCES"])

        long_sources: list[str] = []
        short_sources: list[str] = []
        long_strength = 0.0
        short_strength = 0.0
        for source, weight in weights.items():
            usable = _usable(signals.get(source))
            if usable is None:
                continue
            signal, strength = usable
            if signal.direction == Direction.LONG:
                long_sources.append(source)
                long_strength += weight * strength
            else:
                short_sources.append(source)
                short_strength += weight * strength

        result = AggregationResult(
            signal=None,
            long_sources=tuple(long_sources),
            short_sources=tuple(short_sources),
        )
        if long_sources and short_sources:
            result.reasons.append("CONFLICT")
            return result
        if not long_sources and not short_sources:
            result.reasons.append("NO_SIGNAL")
            return result

        direction = Direction.LONG if long_sources else Direction.SHORT
        agreeing = long_sources if long_sources else short_sources
        agreeing_strength = long_strength if long_sources else short_strength
        total_weight = sum(weights.values())
        score = _clamp(100.0 * agreeing_strength / total_weight, 0.0, 100.0)
        result.score = score
        if score < self.min_confluence_score:
            result.reasons.append("CONFLUENCE_BELOW_MIN")
            return result

        result.signal = AggregatedSignal(
            direction=direction,
            confluence_score=score,
            contributing_sources=tuple(agreeing),
        )
        return result


def _normalize_weights(enabled_sources: Mapping[str, float] | Sequence[str]) -> dict[str, float]:
    if isinstance(enabled_sources, Mapping):
        return {str(name): float(weight) for name, weight in enabled_sources.items() if float(weight) > 0}
    return {str(name): 1.0 for name in enabled_sources}
