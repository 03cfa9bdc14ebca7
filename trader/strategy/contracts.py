from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from trader.data.candles import Candle


class Direction(str, Enum):
    LONG = "Long"
    SHORT = "Short"
    NONE = "None"

    @property
    def sign(self) -> int:
        if self is Direction.LONG:
            return 1
        if self is Direction.SHORT:
            return -1
        return 0


class MarketRegime(str, Enum):
    UNDEFINED = "Undefined"
    TRENDING = "Trending"
    RANGING = "Ranging"
    BREAKOUT = "Breakout"


class BotGroup(str, Enum):
    UNIVERSAL = "UNIVERSAL"
    TRENDING = "TRENDING"
    RANGING = "RANGING"
    BREAKOUT = "BREAKOUT"


@dataclass(slots=True)
class MarketSnapshot:
    """One bar plus whatever indicator values the feed computed for it."""

    bar: Candle
    indicators: dict[str, float | None] = field(default_factory=dict)
    bar_index: int = 0

    def indicator(self, name: str) -> float | None:
        return self.indicators.get(name)


@dataclass(slots=True, frozen=True)
class BotSignal:
    source_name: str
    direction: Direction
    strength: float = 1.0


@dataclass(slots=True, frozen=True)
class AggregatedSignal:
    direction: Direction
    confluence_score: float
    contributing_sources: tuple[str, ...]

    @property
    def source_label(self) -> str:
        return "+".join(self.contributing_sources) or "---"


class SignalBot(Protocol):
    name: str

    def check(self, snapshot: MarketSnapshot) -> BotSignal | None:
        ...


class RegimeClassifier(Protocol):
    def classify(self, snapshot: MarketSnapshot) -> MarketRegime:
        ...


class ChopDetector(Protocol):
    def is_choppy(self, snapshot: MarketSnapshot) -> bool:
        ...
