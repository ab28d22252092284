"""Risk configuration presets."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RiskPreset:
    # fraction of the last closed candle's high-low range
    stop_loss_pct: float
    min_stop_loss_points: float
    max_stop_loss_points: float
    reward_ratio: float
    min_target_points: float
    max_target_points: float


PRESETS = {
    "safe": RiskPreset(0.40, 3.0, 15.0, 1.5, 4.5, 22.5),
    "balanced": RiskPreset(0.50, 5.0, 25.0, 2.0, 10.0, 50.0),
    "aggressive": RiskPreset(0.60, 8.0, 40.0, 2.5, 20.0, 100.0),
}
