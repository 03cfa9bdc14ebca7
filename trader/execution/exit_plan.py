from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from trader.config import ExitConfig


class StopType(str, Enum):
    FIXED_STOP = "FixedStop"
    ATR_TRAIL = "ATRTrail"
    HIGH_LOW_TRAIL = "HighLowTrail"


class ProfitType(str, Enum):
    FIXED = "Fixed"
    RISK_REWARD_RATIO = "RiskRewardRatio"


class BreakevenMode(str, Enum):
    FIXED_TICKS = "FixedTicks"
    PROFIT_TARGET_PERCENTAGE = "ProfitTargetPercentage"


@dataclass(slots=True, frozen=True)
class BreakevenPlan:
    mode: BreakevenMode
    trigger_ticks: float
    offset_ticks: float
    enabled: bool = True

    def trigger_in_ticks(self, initial_target_ticks: float) -> float:
        """Profit (in ticks) at which the stop is promoted; 0 disables promotion."""
        if not self.enabled or self.trigger_ticks <= 0:
            return 0.0
        if self.mode == BreakevenMode.FIXED_TICKS:
            return self.trigger_ticks
        if self.mode == BreakevenMode.PROFIT_TARGET_PERCENTAGE:
            if initial_target_ticks <= 0:
                return 0.0
            return initial_target_ticks * (self.trigger_ticks / 100.0)
        raise ValueError(f"Unsupported breakeven mode {self.mode}")


@dataclass(slots=True, frozen=True)
class ExitPlan:
    stop_type: StopType
    profit_type: ProfitType
    initial_stop_ticks: float
    initial_target_ticks: float
    atr_multiplier: float
    risk_reward_ratio: float
    breakeven: BreakevenPlan
    tick_size: float
    trail_offset_ticks: float | None = None
    atr_final_multiplier: float | None = None
    atr_trail_trigger_percent: float = 70.0

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if self.tick_size <= 0:
            errors.append("TICK_SIZE_NOT_POSITIVE")
        if self.initial_stop_ticks <= 0:
            errors.append("STOP_DISTANCE_NOT_POSITIVE")
        if self.profit_type == ProfitType.FIXED and self.initial_target_ticks <= 0:
            errors.append("TARGET_DISTANCE_NOT_POSITIVE")
        if self.profit_type == ProfitType.RISK_REWARD_RATIO and self.risk_reward_ratio <= 0:
            errors.append("RISK_REWARD_NOT_POSITIVE")
        if self.stop_type == StopType.ATR_TRAIL and self.atr_multiplier <= 0:
            errors.append("ATR_MULTIPLIER_NOT_POSITIVE")
        if self.trail_offset_ticks is not None and self.trail_offset_ticks <= 0:
            errors.append("TRAIL_OFFSET_NOT_POSITIVE")
        return errors

    @property
    def high_low_offset_ticks(self) -> float:
        if self.trail_offset_ticks is not None:
            return self.trail_offset_ticks
        return self.initial_stop_ticks


def build_exit_plan(
    exits: "ExitConfig",
    *,
    tick_size: float,
    stop_type: StopType | None = None,
    initial_stop_ticks: float | None = None,
    initial_target_ticks: float | None = None,
) -> ExitPlan:
    """Snapshot the configured exit parameters into an immutable plan.

    ``stop_type`` overrides the configured stop mode (regime variants) and the
    tick overrides come from dynamic trade management.
    """
    breakeven = BreakevenPlan(
        mode=exits.breakeven.mode,
        trigger_ticks=exits.breakeven.trigger_ticks,
        offset_ticks=exits.breakeven.offset_ticks,
        enabled=exits.breakeven.enabled,
    )
    return ExitPlan(
        stop_type=stop_type or exits.stop_type,
        profit_type=exits.profit_type,
        initial_stop_ticks=exits.initial_stop_ticks if initial_stop_ticks is None else initial_stop_ticks,
        initial_target_ticks=exits.profit_target_ticks if initial_target_ticks is None else initial_target_ticks,
        atr_multiplier=exits.atr_multiplier,
        risk_reward_ratio=exits.risk_reward_ratio,
        breakeven=breakeven,
        tick_size=tick_size,
        trail_offset_ticks=exits.trail_offset_ticks,
        atr_final_multiplier=exits.atr_final_multiplier,
        atr_trail_trigger_percent=exits.atr_trail_trigger_percent,
    )
