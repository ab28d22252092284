"""Shared data structures for the strategy layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


class Direction(str, Enum):
    CALL = "CALL"
    PUT = "PUT"


@dataclass(slots=True)
class Bar:
    """Lightweight OHLCV container passed into strategies."""

    ts: float
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(slots=True, frozen=True)
class Tick:
    """Latest index price observation."""

    instrument_token: int
    last_price: float
    timestamp: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class TimeframeSignals:
    """Boolean indicator flags for one timeframe, produced upstream."""

    ema_fast_above_slow: bool = False
    ema_fast_below_slow: bool = False
    rsi_above_bull: bool = False
    rsi_below_bear: bool = False
    price_above_vwap: bool = False
    price_below_vwap: bool = False
    volume_surge: bool = False
    long_body: bool = False
    bullish_engulfing: bool = False
    bearish_engulfing: bool = False
    price_above_resistance: bool = False
    price_below_support: bool = False


@dataclass(slots=True, frozen=True)
class FutureSignal:
    all_timeframes_bullish: bool = False
    all_timeframes_bearish: bool = False


@dataclass(slots=True, frozen=True)
class IndicatorSnapshot:
    """Indicator flags across the 1/5/15 minute timeframes plus volume/ATR readings."""

    one_min: TimeframeSignals = field(default_factory=TimeframeSignals)
    five_min: TimeframeSignals = field(default_factory=TimeframeSignals)
    fifteen_min: TimeframeSignals = field(default_factory=TimeframeSignals)
    volume_surge_multiplier: Optional[float] = None
    future_signal: Optional[FutureSignal] = None
    atr: Optional[float] = None

    def timeframes(self) -> Tuple[TimeframeSignals, TimeframeSignals, TimeframeSignals]:
        return (self.one_min, self.five_min, self.fifteen_min)


@dataclass(slots=True, frozen=True)
class CandleAnalysis:
    """Shape metrics for the latest candle and streaks over the lookback window."""

    candle_height: float
    body_ratio: float
    is_doji: bool
    is_spinning_top: bool
    is_small_body: bool
    is_long_body: bool
    consecutive_doji: int
    consecutive_spinning_top: int
    consecutive_small_candles: int
    average_candle_height: float
    average_body_ratio: float


@dataclass(slots=True, frozen=True)
class ComprehensiveCheck:
    ema_alignment: float
    volume_consistency: float
    price_action: float
    overall: float
    passed: bool
    failures: Tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class MarketRegime:
    """Classification of the current market for entry admission."""

    directional_strength: float
    volatility_score: float
    candle_size_score: float
    overall_score: float
    is_flat_market: bool
    is_suitable_for_trading: bool
    reason: str
    flat_reasons: Tuple[str, ...] = ()
    candle_analysis: Optional[CandleAnalysis] = None
    comprehensive: Optional[ComprehensiveCheck] = None

    @classmethod
    def unsuitable(cls, reason: str) -> "MarketRegime":
        return cls(
            directional_strength=0.0,
            volatility_score=0.0,
            candle_size_score=0.0,
            overall_score=0.0,
            is_flat_market=True,
            is_suitable_for_trading=False,
            reason=reason,
            flat_reasons=(reason,),
        )


@dataclass(slots=True, frozen=True)
class EntryFilterResult:
    """Outcome of the hard per-candle entry gate."""

    conditions_met: bool
    candle_height: float
    volume_multiplier: float
    body_ratio: float
    reason: str


@dataclass(slots=True, frozen=True)
class ScenarioEvaluation:
    name: str
    passed: bool
    score: float
    reason: str


@dataclass(slots=True, frozen=True)
class EntryDecision:
    """Result of scoring the configured entry scenarios."""

    should_entry: bool
    scenario_name: Optional[str]
    confidence: float
    quality_score: float
    category_scores: Mapping[str, float]
    market_direction: Optional[Direction]
    reason: str
    evaluations: Tuple[ScenarioEvaluation, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "category_scores", MappingProxyType(dict(self.category_scores)))

    @property
    def should_call(self) -> bool:
        return self.should_entry and self.market_direction is Direction.CALL

    @property
    def should_put(self) -> bool:
        return self.should_entry and self.market_direction is Direction.PUT


__all__ = [
    "Bar",
    "CandleAnalysis",
    "ComprehensiveCheck",
    "Direction",
    "EntryDecision",
    "EntryFilterResult",
    "FutureSignal",
    "IndicatorSnapshot",
    "MarketRegime",
    "ScenarioEvaluation",
    "Tick",
    "TimeframeSignals",
]
