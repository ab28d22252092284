"""Volatility-driven stop-loss and target sizing from the last closed candle."""

from __future__ import annotations

import logging
import math
import os
import threading
from typing import Dict, Optional, Sequence

from core.config import RiskConfig
from core.interfaces import RiskSizer
from services.risk.presets import PRESETS, RiskPreset
from services.strategy.candles import candle_height
from services.strategy.types import Bar

log = logging.getLogger("scalper.sizing")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def resolve_preset(config: Optional[RiskConfig] = None) -> RiskPreset:
    """Merge the named preset with config overrides and then env overrides."""

    config = config or RiskConfig()
    name = os.getenv("RISK_PROFILE", config.preset).strip().lower()
    preset = PRESETS.get(name)
    if preset is None:
        log.warning("sizing.unknown_preset", extra={"preset": name})
        preset = PRESETS["balanced"]
    stop_pct = config.stop_loss_pct if config.stop_loss_pct is not None else preset.stop_loss_pct
    reward = config.reward_ratio if config.reward_ratio is not None else preset.reward_ratio
    return RiskPreset(
        stop_loss_pct=_env_float("STOP_LOSS_PCT", stop_pct),
        min_stop_loss_points=_env_float("MIN_STOP_LOSS_POINTS", preset.min_stop_loss_points),
        max_stop_loss_points=_env_float("MAX_STOP_LOSS_POINTS", preset.max_stop_loss_points),
        reward_ratio=_env_float("REWARD_RATIO", reward),
        min_target_points=_env_float("MIN_TARGET_POINTS", preset.min_target_points),
        max_target_points=_env_float("MAX_TARGET_POINTS", preset.max_target_points),
    )


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


class CandleRangeRiskSizer(RiskSizer):
    """Stop as a share of the last closed candle's range; target as a reward multiple.

    Both distances are clamped to the preset's bounds. Without a closed candle
    for the instrument the stop falls back to the preset minimum.
    """

    def __init__(self, preset: RiskPreset, *, min_bars: int = 2) -> None:
        self.cfg = preset
        self.min_bars = max(2, int(min_bars))
        self._lock = threading.Lock()
        self._last_closed: Dict[int, Bar] = {}

    @classmethod
    def from_config(cls, config: Optional[RiskConfig] = None) -> "CandleRangeRiskSizer":
        config = config or RiskConfig()
        return cls(resolve_preset(config), min_bars=config.min_bars)

    def observe_bars(self, instrument_token: int, bars: Sequence[Bar]) -> None:
        # the last bar is still forming
        with self._lock:
            if len(bars) < self.min_bars:
                self._last_closed.pop(instrument_token, None)
                return
            self._last_closed[instrument_token] = bars[-2]

    def last_closed_candle(self, instrument_token: int) -> Optional[Bar]:
        with self._lock:
            return self._last_closed.get(instrument_token)

    def dynamic_stop_loss_points(self, instrument_token: int, reference_index_price: float) -> float:
        candle = self.last_closed_candle(instrument_token)
        if candle is None:
            log.warning(
                "sizing.no_closed_candle",
                extra={"instrument_token": instrument_token, "fallback": self.cfg.min_stop_loss_points},
            )
            return self.cfg.min_stop_loss_points
        candle_range = candle_height(candle)
        points = _clamp(
            candle_range * self.cfg.stop_loss_pct,
            self.cfg.min_stop_loss_points,
            self.cfg.max_stop_loss_points,
        )
        log.info(
            "sizing.stop_loss",
            extra={
                "instrument_token": instrument_token,
                "candle_range": round(candle_range, 2),
                "stop_points": round(points, 2),
                "index_price": reference_index_price,
            },
        )
        return points

    def dynamic_target_points(self, stop_loss_points: float) -> float:
        if stop_loss_points is None or not math.isfinite(stop_loss_points):
            return self.cfg.min_target_points
        return _clamp(
            max(0.0, stop_loss_points) * self.cfg.reward_ratio,
            self.cfg.min_target_points,
            self.cfg.max_target_points,
        )


__all__ = ["CandleRangeRiskSizer", "resolve_preset"]
