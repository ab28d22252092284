"""Candle shape metrics used by the regime classifier and the entry filter."""

from __future__ import annotations

import math
from typing import Optional, Sequence

from services.strategy.types import Bar, CandleAnalysis

DOJI_MAX_BODY_RATIO = 0.1
SMALL_BODY_MAX_RATIO = 0.2
SPINNING_TOP_MAX_RATIO = 0.3
LONG_BODY_MIN_RATIO = 0.6


def _clean(value: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def candle_height(bar: Bar) -> float:
    return max(0.0, _clean(bar.high) - _clean(bar.low))


def body_ratio(bar: Bar) -> float:
    """Body size as a fraction of the full high-low range; 0 for a zero-height bar."""

    height = candle_height(bar)
    if height <= 0:
        return 0.0
    return min(1.0, abs(_clean(bar.close) - _clean(bar.open)) / height)


def _trailing_streak(ratios: Sequence[float], predicate) -> int:
    streak = 0
    for ratio in ratios:
        streak = streak + 1 if predicate(ratio) else 0
    return streak


def analyze_candles(
    bars: Sequence[Bar], lookback: int = 10, min_bars: int = 10
) -> Optional[CandleAnalysis]:
    """Return metrics for the latest bar and streaks over the last ``lookback`` bars.

    Returns ``None`` when fewer than ``min_bars`` bars are available.
    """

    if len(bars) < max(1, min_bars):
        return None
    window = list(bars[-max(1, lookback):])
    ratios = [body_ratio(bar) for bar in window]
    heights = [candle_height(bar) for bar in window]
    latest = window[-1]
    ratio = ratios[-1]
    return CandleAnalysis(
        candle_height=candle_height(latest),
        body_ratio=ratio,
        is_doji=ratio <= DOJI_MAX_BODY_RATIO,
        is_spinning_top=ratio <= SPINNING_TOP_MAX_RATIO,
        is_small_body=ratio <= SMALL_BODY_MAX_RATIO,
        is_long_body=ratio >= LONG_BODY_MIN_RATIO,
        consecutive_doji=_trailing_streak(ratios, lambda r: r <= DOJI_MAX_BODY_RATIO),
        consecutive_spinning_top=_trailing_streak(ratios, lambda r: r <= SPINNING_TOP_MAX_RATIO),
        consecutive_small_candles=_trailing_streak(ratios, lambda r: r <= SMALL_BODY_MAX_RATIO),
        average_candle_height=sum(heights) / len(heights),
        average_body_ratio=sum(ratios) / len(ratios),
    )


__all__ = [
    "DOJI_MAX_BODY_RATIO",
    "LONG_BODY_MIN_RATIO",
    "SMALL_BODY_MAX_RATIO",
    "SPINNING_TOP_MAX_RATIO",
    "analyze_candles",
    "body_ratio",
    "candle_height",
]
