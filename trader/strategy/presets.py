from __future__ import annotations

import copy
import re
from typing import Any

PRESETS: dict[str, dict[str, Any]] = {
    "GRAND_MASTER": {
        "name": "GrandMaster",
        "sessions": {
            "windows": [
                {"name": "Time1", "start": "09:30", "end": "11:30", "enabled": True},
            ],
        },
        "regime": {"auto_detection": False},
        "chop": {"enabled": True},
        "exits": {
            "stop_type": "FixedStop",
            "profit_type": "Fixed",
            "initial_stop_ticks": 45,
            "profit_target_ticks": 90,
            "breakeven": {"enabled": True, "mode": "FixedTicks", "trigger_ticks": 30, "offset_ticks": 4},
        },
    },
    "DA_MASTER": {
        "name": "DaMaster",
        "sessions": {
            "windows": [
                {"name": "Time6", "start": "00:00", "end": "23:59", "enabled": True},
            ],
        },
        "regime": {"auto_detection": True},
        "exits": {
            "stop_type": "HighLowTrail",
            "profit_type": "Fixed",
            "initial_stop_ticks": 73,
            "profit_target_ticks": 120,
            "breakeven": {
                "enabled": True,
                "mode": "ProfitTargetPercentage",
                "trigger_ticks": 20,
                "offset_ticks": 4,
            },
        },
    },
    "PIVOT_IMPULSE": {
        "name": "PivotImpulse",
        "sessions": {
            "windows": [
                {"name": "Time1", "start": "09:30", "end": "11:00", "enabled": True},
            ],
        },
        "exits": {
            "stop_type": "ATRTrail",
            "atr_multiplier": 2.5,
            "profit_type": "RiskRewardRatio",
            "risk_reward_ratio": 2.0,
            "breakeven": {
                "enabled": True,
                "mode": "ProfitTargetPercentage",
                "trigger_ticks": 20,
                "offset_ticks": 4,
            },
        },
    },
}


def _key(name: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", str(name).upper())


def resolve_preset_name(name: str) -> str:
    wanted = _key(name)
    for preset_name in PRESETS:
        if _key(preset_name) == wanted:
            return preset_name
    raise ValueError(f"Unknown preset '{name}'. Available: {', '.join(sorted(PRESETS))}")


def deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Nested dicts merge key by key; every other value (lists included) replaces."""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_preset(raw: dict[str, Any], name: str) -> dict[str, Any]:
    preset_name = resolve_preset_name(name)
    merged = deep_merge(raw, PRESETS[preset_name])
    merged["preset"] = preset_name
    return merged
