from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from trader.config import PnlLimitsConfig, SessionConfig
from trader.gating.pnl_limits import PnlLimits
from trader.strategy.schedule import SessionSchedule


def _limits(timezone_name: str = "UTC", **overrides) -> PnlLimits:
    schedule = SessionSchedule(SessionConfig(timezone=timezone_name))
    return PnlLimits(PnlLimitsConfig(**overrides), schedule)


def _ts(day: int, hour: int) -> datetime:
    return datetime(2024, 1, day, hour, 0, tzinfo=timezone.utc)


def test_no_trades_no_block() -> None:
    assert _limits().check(_ts(2, 10)) == []


def test_daily_loss_limit_reached_exactly() -> None:
    limits = _limits(daily_loss_limit=200.0)
    limits.record_close(-150.0, _ts(2, 10))
    assert limits.check(_ts(2, 11)) == []

    limits.record_close(-50.0, _ts(2, 11))
    assert limits.daily_pnl == pytest.approx(-200.0)
    assert limits.check(_ts(2, 12)) == ["DAILY_LOSS_LIMIT"]


def test_daily_profit_limit() -> None:
    limits = _limits(daily_profit_limit=200.0)
    limits.record_close(250.0, _ts(2, 10))
    assert limits.check(_ts(2, 11)) == ["DAILY_PROFIT_LIMIT"]


def test_daily_figures_reset_on_new_session_day() -> None:
    limits = _limits("America/New_York", daily_loss_limit=100.0, trailing_drawdown_enabled=False)
    limits.record_close(-120.0, _ts(2, 20))

    # 04:00 UTC on Jan 3 is still Jan 2 in New York.
    assert limits.check(_ts(3, 4)) == ["DAILY_LOSS_LIMIT"]
    assert limits.check(_ts(3, 6)) == []
    assert limits.total_pnl == pytest.approx(-120.0)
    assert limits.daily_pnl == pytest.approx(0.0)


def test_trailing_drawdown_locks_from_the_peak() -> None:
    limits = _limits(daily_enabled=False, trailing_drawdown=50.0)
    limits.record_close(40.0, _ts(2, 10))
    limits.record_close(-45.0, _ts(2, 11))
    assert limits.check(_ts(2, 12)) == []

    limits.record_close(-15.0, _ts(2, 12))
    assert limits.peak_pnl == pytest.approx(40.0)
    assert limits.drawdown == pytest.approx(60.0)
    assert limits.check(_ts(2, 13)) == ["TRAILING_DRAWDOWN"]

    # Lock and peak restart with the next trading day.
    assert limits.check(_ts(3, 10)) == []
    assert limits.peak_pnl == pytest.approx(-20.0)


def test_disabled_limits_never_block() -> None:
    limits = _limits(daily_enabled=False, trailing_drawdown_enabled=False)
    limits.record_close(-50000.0, _ts(2, 10))
    limits.record_close(90000.0, _ts(2, 11))
    assert limits.check(_ts(2, 12)) == []


def test_limits_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        PnlLimitsConfig(daily_loss_limit=0)
    with pytest.raises(ValidationError):
        PnlLimitsConfig(trailing_drawdown=-5)
