from __future__ import annotations

import pytest

from trader.config import DynamicConfig
from trader.execution.dynamic import DynamicExitTuner, percentile


def test_percentile_interpolates() -> None:
    assert percentile([5, 1, 3, 2, 4], 80) == pytest.approx(4.2)
    assert percentile([1, 2, 3], 0) == 1
    assert percentile([1, 2, 3], 100) == 3
    assert percentile([], 50) == 0.0


def test_initial_values_until_burn_in_completes() -> None:
    tuner = DynamicExitTuner(DynamicConfig(method="MEDIAN", burn_in_trades=3, lookback=5, sl_padding_ticks=4))
    tuner.observe(10, 5)
    tuner.observe(20, 7)

    assert tuner.active is False
    assert tuner.next_stop_ticks(73) == 73
    assert tuner.next_target_ticks(120) == 120

    tuner.observe(30, 9)

    assert tuner.active is True
    assert tuner.next_target_ticks(120) == pytest.approx(20.0)
    assert tuner.next_stop_ticks(73) == pytest.approx(11.0)


def test_zero_mfe_is_not_learned() -> None:
    tuner = DynamicExitTuner(DynamicConfig(method="AVERAGE", burn_in_trades=1, sl_padding_ticks=0))
    tuner.observe(0, 12)
    assert list(tuner.mfe_history) == []
    assert tuner.next_target_ticks(120) == 120
    assert tuner.next_stop_ticks(73) == pytest.approx(12.0)


def test_lookback_window_drops_old_trades() -> None:
    tuner = DynamicExitTuner(DynamicConfig(method="AVERAGE", burn_in_trades=1, lookback=2, sl_padding_ticks=0))
    for mfe in (100, 10, 20):
        tuner.observe(mfe, 5)
    assert list(tuner.mfe_history) == [10, 20]
    assert tuner.next_target_ticks(120) == pytest.approx(15.0)


def test_percentile_method() -> None:
    tuner = DynamicExitTuner(DynamicConfig(method="percentile", percentile=80, burn_in_trades=5, sl_padding_ticks=4))
    for value in (1, 2, 3, 4, 5):
        tuner.observe(value * 10, value)
    assert tuner.next_target_ticks(120) == pytest.approx(42.0)
    assert tuner.next_stop_ticks(73) == pytest.approx(8.2)
