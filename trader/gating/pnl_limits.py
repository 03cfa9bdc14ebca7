from __future__ import annotations

import logging
from datetime import date, datetime

from trader.config import PnlLimitsConfig
from trader.strategy.schedule import SessionSchedule

LOGGER = logging.getLogger(__name__)


class PnlLimits:
    """Realized P&L entry locks: daily loss, daily profit and trailing drawdown.

    Fed with each closed trade's net currency result. Daily figures and the
    drawdown lock reset on the first bar of a new trading day in the session
    timezone; the drawdown peak restarts from the running total at that point.
    """

    def __init__(self, config: PnlLimitsConfig, schedule: SessionSchedule) -> None:
        self.config = config
        self.schedule = schedule
        self.total_pnl = 0.0
        self.day_start_pnl = 0.0
        self.peak_pnl = 0.0
        self.drawdown_locked = False
        self.trading_day: date | None = None

    @property
    def daily_pnl(self) -> float:
        return self.total_pnl - self.day_start_pnl

    @property
    def drawdown(self) -> float:
        return max(0.0, self.peak_pnl - self.total_pnl)

    def roll_day(self, ts: datetime) -> None:
        day = self.schedule.local_time(ts).date()
        if self.trading_day == day:
            return
        if self.trading_day is not None:
            LOGGER.info(
                "New trading day %s: previous day pnl=%.2f total=%.2f",
                day.isoformat(),
                self.daily_pnl,
                self.total_pnl,
            )
        self.trading_day = day
        self.day_start_pnl = self.total_pnl
        self.peak_pnl = self.total_pnl
        self.drawdown_locked = False

    def record_close(self, pnl: float, ts: datetime) -> None:
        self.roll_day(ts)
        self.total_pnl += float(pnl)
        self.peak_pnl = max(self.peak_pnl, self.total_pnl)
        cfg = self.config
        if cfg.trailing_drawdown_enabled and not self.drawdown_locked and self.drawdown >= cfg.trailing_drawdown:
            self.drawdown_locked = True
            LOGGER.warning(
                "Trailing drawdown limit hit: peak=%.2f total=%.2f limit=%.2f",
                self.peak_pnl,
                self.total_pnl,
                cfg.trailing_drawdown,
            )
        if cfg.daily_enabled and self.daily_pnl <= -cfg.daily_loss_limit:
            LOGGER.warning("Daily loss limit %.2f hit (daily pnl=%.2f)", cfg.daily_loss_limit, self.daily_pnl)
        elif cfg.daily_enabled and self.daily_pnl >= cfg.daily_profit_limit:
            LOGGER.info("Daily profit limit %.2f hit (daily pnl=%.2f)", cfg.daily_profit_limit, self.daily_pnl)

    def check(self, ts: datetime) -> list[str]:
        """Reason codes blocking a new entry at ``ts``; empty when trading is allowed."""
        self.roll_day(ts)
        cfg = self.config
        reasons: list[str] = []
        if cfg.daily_enabled:
            if self.daily_pnl <= -cfg.daily_loss_limit:
                reasons.append("DAILY_LOSS_LIMIT")
            if self.daily_pnl >= cfg.daily_profit_limit:
                reasons.append("DAILY_PROFIT_LIMIT")
        if cfg.trailing_drawdown_enabled and self.drawdown_locked:
            reasons.append("TRAILING_DRAWDOWN")
        return reasons
