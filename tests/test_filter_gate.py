from __future__ import annotations

from datetime import datetime, timezone

import pytest

from trader.config import ChopConfig, RegimeConfig, SessionConfig, SessionWindowConfig, StrategyConfig
from trader.data.candles import Candle
from trader.gating.filter_gate import FilterGate
from trader.strategy.contracts import AggregatedSignal, Direction, MarketRegime, MarketSnapshot
from trader.strategy.regime import AdxChopDetector, AdxRegimeClassifier
from trader.strategy.schedule import SessionSchedule


def _snapshot(ts: datetime, **indicators: float) -> MarketSnapshot:
    candle = Candle(timestamp=ts, open=100.0, high=100.5, low=99.5, close=100.0, volume=500.0)
    return MarketSnapshot(bar=candle, indicators=dict(indicators))


def _signal(direction: Direction = Direction.LONG) -> AggregatedSignal:
    return AggregatedSignal(direction=direction, confluence_score=100.0, contributing_sources=("a",))


def _config(windows: list[SessionWindowConfig] | None = None, **overrides) -> StrategyConfig:
    sessions = SessionConfig(
        timezone="UTC",
        windows=windows or [SessionWindowConfig(name="Morning", start="09:30", end="11:30")],
    )
    return StrategyConfig(sessions=sessions, **overrides)


class _Chop:
    def __init__(self, choppy: bool):
        self.choppy = choppy

    def is_choppy(self, snapshot: MarketSnapshot) -> bool:
        return self.choppy


class _Regime:
    def __init__(self, regime: MarketRegime):
        self.regime = regime

    def classify(self, snapshot: MarketSnapshot) -> MarketRegime:
        return self.regime


# 2024-01-02 is a Tuesday.
def test_inside_window_is_accepted() -> None:
    gate = FilterGate(_config())
    decision = gate.evaluate(_signal(), _snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))

    assert decision.accepted is True
    assert decision.direction == Direction.LONG
    assert decision.window == "Morning"
    assert decision.reasons == []


def test_outside_window_is_rejected() -> None:
    gate = FilterGate(_config())
    decision = gate.evaluate(_signal(), _snapshot(datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)))

    assert decision.accepted is False
    assert decision.reasons == ["OUTSIDE_SESSION"]


def test_no_enabled_window_rejects_everything() -> None:
    config = _config([SessionWindowConfig(name="Off", start="00:00", end="23:59", enabled=False)])
    decision = FilterGate(config).evaluate(_signal(), _snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))
    assert decision.reasons == ["NO_SESSION_ENABLED"]


def test_missing_signal_is_rejected() -> None:
    decision = FilterGate(_config()).evaluate(None, _snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))
    assert decision.accepted is False
    assert decision.reasons == ["NO_SIGNAL"]


@pytest.mark.parametrize(
    ("hour", "minute", "is_open"),
    [(23, 0, True), (1, 59, True), (2, 0, True), (3, 0, False), (21, 59, False)],
)
def test_window_wrapping_midnight(hour: int, minute: int, is_open: bool) -> None:
    config = SessionConfig(
        timezone="UTC",
        weekdays=[0, 1, 2, 3, 4, 5, 6],
        windows=[SessionWindowConfig(name="Overnight", start="22:00", end="02:00")],
    )
    schedule = SessionSchedule(config)
    assert schedule.is_open(datetime(2024, 1, 2, hour, minute, tzinfo=timezone.utc)) is is_open


def test_weekday_filter() -> None:
    schedule = SessionSchedule(
        SessionConfig(timezone="UTC", windows=[SessionWindowConfig(name="All", start="00:00", end="23:59")])
    )
    assert schedule.is_open(datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)) is True
    assert schedule.is_open(datetime(2024, 1, 6, 12, 0, tzinfo=timezone.utc)) is False


def test_windows_evaluated_in_configured_timezone() -> None:
    schedule = SessionSchedule(
        SessionConfig(
            timezone="America/New_York",
            windows=[SessionWindowConfig(name="Time1", start="09:30", end="11:30")],
        )
    )
    # 14:35 UTC is 09:35 in New York in January.
    assert schedule.active_window(datetime(2024, 1, 2, 14, 35, tzinfo=timezone.utc)).name == "Time1"
    assert schedule.active_window(datetime(2024, 1, 2, 9, 35, tzinfo=timezone.utc)) is None


def test_first_enabled_window_is_reported() -> None:
    schedule = SessionSchedule(
        SessionConfig(
            timezone="UTC",
            windows=[
                SessionWindowConfig(name="Off", start="09:00", end="12:00", enabled=False),
                SessionWindowConfig(name="A", start="09:00", end="10:30"),
                SessionWindowConfig(name="B", start="10:00", end="11:00"),
            ],
        )
    )
    assert schedule.active_window(datetime(2024, 1, 2, 10, 15, tzinfo=timezone.utc)).name == "A"
    assert schedule.active_window(datetime(2024, 1, 2, 10, 45, tzinfo=timezone.utc)).name == "B"


def test_unknown_timezone_raises_with_hint() -> None:
    with pytest.raises(RuntimeError, match="tzdata"):
        SessionSchedule(SessionConfig(timezone="Mars/Olympus_Mons"))


def test_chop_zone_vetoes_and_reports_undefined_regime() -> None:
    gate = FilterGate(_config(), regime_classifier=_Regime(MarketRegime.TRENDING), chop_detector=_Chop(True))
    decision = gate.evaluate(_signal(), _snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))

    assert decision.accepted is False
    assert decision.reasons == ["CHOP_ZONE"]
    assert decision.regime == MarketRegime.UNDEFINED


def test_chop_filter_disabled_in_config() -> None:
    gate = FilterGate(_config(chop=ChopConfig(enabled=False)), chop_detector=_Chop(True))
    decision = gate.evaluate(_signal(), _snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))
    assert decision.accepted is True


def test_auto_regime_tags_without_rejecting() -> None:
    gate = FilterGate(_config(), regime_classifier=_Regime(MarketRegime.RANGING), chop_detector=_Chop(False))
    decision = gate.evaluate(_signal(Direction.SHORT), _snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))

    assert decision.accepted is True
    assert decision.regime == MarketRegime.RANGING


def test_manual_regime_override_wins() -> None:
    config = _config(regime=RegimeConfig(manual_override=MarketRegime.BREAKOUT))
    gate = FilterGate(config, regime_classifier=_Regime(MarketRegime.TRENDING))
    state = gate.market_state(_snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))
    assert state.regime == MarketRegime.BREAKOUT


def test_auto_detection_off_is_undefined() -> None:
    config = _config(regime=RegimeConfig(auto_detection=False))
    gate = FilterGate(config, regime_classifier=_Regime(MarketRegime.TRENDING))
    state = gate.market_state(_snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))
    assert state.regime == MarketRegime.UNDEFINED


def test_adx_regime_classifier() -> None:
    classifier = AdxRegimeClassifier(RegimeConfig())
    ts = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)

    assert classifier.classify(_snapshot(ts, adx=30.0)) == MarketRegime.TRENDING
    assert classifier.classify(_snapshot(ts, adx=20.0, bb_width=1.05, bb_width_min=1.0)) == MarketRegime.BREAKOUT
    assert classifier.classify(_snapshot(ts, adx=20.0, bb_width=2.0, bb_width_min=1.0)) == MarketRegime.RANGING
    assert classifier.classify(_snapshot(ts)) == MarketRegime.UNDEFINED


def test_adx_chop_detector_needs_all_three_conditions() -> None:
    detector = AdxChopDetector(ChopConfig())
    ts = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)

    assert detector.is_choppy(_snapshot(ts, adx=15.0, linreg_slope=0.01, volume_ma=500.0)) is True
    assert detector.is_choppy(_snapshot(ts, adx=15.0, linreg_slope=0.5, volume_ma=500.0)) is False
    assert detector.is_choppy(_snapshot(ts, adx=15.0, linreg_slope=0.01, volume_ma=5000.0)) is False
    assert detector.is_choppy(_snapshot(ts, adx=15.0)) is False


@pytest.mark.parametrize(
    ("second", "is_open"),
    [(0, True), (5, False), (59, False)],
)
def test_window_end_includes_seconds(second: int, is_open: bool) -> None:
    schedule = SessionSchedule(
        SessionConfig(timezone="UTC", windows=[SessionWindowConfig(name="Time1", start="09:30", end="11:30")])
    )
    assert schedule.is_open(datetime(2024, 1, 2, 11, 30, second, tzinfo=timezone.utc)) is is_open


class _Broken:
    def classify(self, snapshot: MarketSnapshot) -> MarketRegime:
        raise RuntimeError("classifier down")

    def is_choppy(self, snapshot: MarketSnapshot) -> bool:
        raise RuntimeError("detector down")


def test_failing_detectors_fall_back_to_undefined_and_not_choppy() -> None:
    broken = _Broken()
    gate = FilterGate(_config(), regime_classifier=broken, chop_detector=broken)
    snapshot = _snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc))

    state = gate.market_state(snapshot)
    assert state.regime == MarketRegime.UNDEFINED
    assert state.choppy is False
    assert gate.evaluate(_signal(), snapshot).accepted is True


def test_non_regime_label_is_undefined() -> None:
    gate = FilterGate(_config(), regime_classifier=_Regime("Sideways"))
    state = gate.market_state(_snapshot(datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)))
    assert state.regime == MarketRegime.UNDEFINED


def test_daily_loss_limit_blocks_entries() -> None:
    gate = FilterGate(_config(pnl_limits={"daily_loss_limit": 100.0}))
    ts = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
    gate.pnl_limits.record_close(-100.0, ts)

    decision = gate.evaluate(_signal(), _snapshot(ts))

    assert decision.accepted is False
    assert "DAILY_LOSS_LIMIT" in decision.reasons
