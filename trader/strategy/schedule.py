from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from trader.config import SessionConfig


@dataclass(slots=True)
class TradingWindow:
    name: str
    start: time
    end: time
    enabled: bool = True

    def contains(self, current: time) -> bool:
        if self.start <= self.end:
            return self.start <= current <= self.end
        # Window wraps midnight.
        return current >= self.start or current <= self.end


def _parse_hhmm(raw: str) -> time:
    hour_raw, minute_raw = raw.split(":", 1)
    return time(hour=int(hour_raw), minute=int(minute_raw))


def parse_windows(config: SessionConfig) -> list[TradingWindow]:
    return [
        TradingWindow(
            name=window.name,
            start=_parse_hhmm(window.start),
            end=_parse_hhmm(window.end),
            enabled=window.enabled,
        )
        for window in config.windows
    ]


class SessionSchedule:
    def __init__(self, config: SessionConfig):
        self.windows = parse_windows(config)
        self.weekdays = set(config.weekdays)
        try:
            self.zone = ZoneInfo(config.timezone)
        except ZoneInfoNotFoundError as exc:
            raise RuntimeError(
                f"Timezone '{config.timezone}' is not available. "
                "Install tzdata in your environment: pip install tzdata"
            ) from exc

    def local_time(self, ts: datetime) -> datetime:
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(self.zone)

    def active_window(self, ts: datetime) -> TradingWindow | None:
        """First enabled window containing ``ts``; None when trading is closed."""
        local = self.local_time(ts)
        if local.weekday() not in self.weekdays:
            return None
        current = local.timetz().replace(tzinfo=None, microsecond=0)
        for window in self.windows:
            if window.enabled and window.contains(current):
                return window
        return None

    def is_open(self, ts: datetime) -> bool:
        return self.active_window(ts) is not None

    @property
    def has_enabled_window(self) -> bool:
        return any(window.enabled for window in self.windows)
