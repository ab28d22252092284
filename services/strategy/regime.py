"""Market regime classification: directional strength, volatility, candle quality, flatness."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple

from core.config import ConfigStore, EntryFilterConfig, FlatMarketConfig, StrategyConfig
from services.strategy.candles import analyze_candles, body_ratio, candle_height
from services.strategy.types import (
    Bar,
    CandleAnalysis,
    ComprehensiveCheck,
    EntryFilterResult,
    IndicatorSnapshot,
    MarketRegime,
    Tick,
)

log = logging.getLogger("scalper.regime")

_DIRECTIONAL_SLOTS = 18
_DENOMINATOR_FLOOR = 0.1


def _finite(value: Optional[float], default: float = 0.0) -> float:
    """Return ``value`` if it is a finite non-negative number, else ``default``."""

    if value is None:
        return default
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value) or value < 0:
        return default
    return value


def _denominator(value: Optional[float]) -> float:
    value = _finite(value, _DENOMINATOR_FLOOR)
    return value if value > 0 else _DENOMINATOR_FLOOR


def _signal_counts(snapshot: IndicatorSnapshot) -> Tuple[int, int]:
    bullish = bearish = 0
    for tf in snapshot.timeframes():
        bullish += tf.ema_fast_above_slow + tf.rsi_above_bull + tf.price_above_vwap
        bearish += tf.ema_fast_below_slow + tf.rsi_below_bear + tf.price_below_vwap
    return bullish, bearish


def directional_strength(snapshot: IndicatorSnapshot) -> float:
    """Dominant-side share of the 18 EMA/RSI/VWAP signal slots."""

    bullish, bearish = _signal_counts(snapshot)
    return min(max(bullish, bearish) / _DIRECTIONAL_SLOTS, 1.0)


def average_true_range(bars: Sequence[Bar], period: int) -> float:
    """Simple mean of the last ``period`` true ranges; 0 when history is too short."""

    if period <= 0 or len(bars) < period + 1:
        return 0.0
    recent = list(bars[-(period + 1):])
    total = 0.0
    for prev, curr in zip(recent, recent[1:]):
        high = _finite(curr.high)
        low = _finite(curr.low)
        prev_close = _finite(prev.close)
        total += max(high - low, abs(high - prev_close), abs(low - prev_close))
    return total / period


def volatility_score(
    snapshot: IndicatorSnapshot, bars: Sequence[Bar], config: FlatMarketConfig
) -> float:
    """Average of ATR-over-minimum and range-over-minimum, each clamped to 1."""

    period = config.atr_settings.period
    if len(bars) < period:
        return 0.0
    atr = snapshot.atr if snapshot.atr is not None else average_true_range(bars, period)
    atr_ratio = min(_finite(atr) / _denominator(config.atr_settings.min_atr), 1.0)

    window = list(bars[-config.lookback_settings.volatility_analysis:])
    highs = [_finite(bar.high) for bar in window]
    lows = [_finite(bar.low) for bar in window]
    price_range = max(highs) - min(lows) if window else 0.0
    range_ratio = min(
        _finite(price_range) / _denominator(config.requirements.min_price_range), 1.0
    )
    return _finite((atr_ratio + range_ratio) / 2.0)


def candle_size_score(candles: Optional[CandleAnalysis], config: FlatMarketConfig) -> float:
    if candles is None:
        return 0.0
    score = min(
        candles.body_ratio / _denominator(config.requirements.min_candle_body_ratio), 1.0
    )
    if candles.is_small_body:
        score -= 0.3
    if candles.is_doji:
        score -= 0.2
    if candles.is_spinning_top:
        score -= 0.1
    return max(0.0, score)


def overall_score(directional: float, volatility: float, candle_size: float) -> float:
    return min(0.4 * directional + 0.3 * volatility + 0.3 * candle_size, 1.0)


def flat_market_reasons(
    candles: Optional[CandleAnalysis],
    directional: float,
    volatility: float,
    config: FlatMarketConfig,
) -> List[str]:
    """Return every red flag raised; an empty list means the market is not flat."""

    req = config.requirements
    thresholds = config.thresholds
    reasons: List[str] = []
    if directional < req.min_directional_strength:
        reasons.append(
            f"Low directional strength: {directional:.2f} < {req.min_directional_strength:.2f}"
        )
    if volatility < thresholds.volatility_score.low_threshold:
        reasons.append(
            f"Low volatility: {volatility:.2f} < {thresholds.volatility_score.low_threshold:.2f}"
        )
    if candles is None:
        reasons.append("Insufficient candle history")
    else:
        if candles.consecutive_doji > req.max_consecutive_doji:
            reasons.append(
                f"Too many consecutive doji: {candles.consecutive_doji} > {req.max_consecutive_doji}"
            )
        if candles.consecutive_spinning_top > req.max_consecutive_spinning_top:
            reasons.append(
                "Too many consecutive spinning tops: "
                f"{candles.consecutive_spinning_top} > {req.max_consecutive_spinning_top}"
            )
        if candles.consecutive_small_candles > req.max_consecutive_small_candles:
            reasons.append(
                "Too many consecutive small candles: "
                f"{candles.consecutive_small_candles} > {req.max_consecutive_small_candles}"
            )
    if directional < thresholds.directional_strength.very_low_threshold:
        reasons.append(
            "Very low directional strength: "
            f"{directional:.2f} < {thresholds.directional_strength.very_low_threshold:.2f}"
        )
    if volatility < thresholds.volatility_score.very_low_threshold:
        reasons.append(
            "Very low volatility: "
            f"{volatility:.2f} < {thresholds.volatility_score.very_low_threshold:.2f}"
        )
    return reasons


def comprehensive_check(
    snapshot: IndicatorSnapshot, overall: float, config: FlatMarketConfig
) -> ComprehensiveCheck:
    """Second gate scoring EMA alignment, volume consistency, and price action.

    Each sub-score follows the dominant side of the snapshot so a clean bearish
    alignment scores the same as a clean bullish one.
    """

    checks = config.thresholds.comprehensive_checks
    min_multiplier = config.thresholds.volume_consistency.min_volume_multiplier
    frames = snapshot.timeframes()

    bull_ema = sum(tf.ema_fast_above_slow for tf in frames)
    bear_ema = sum(tf.ema_fast_below_slow for tf in frames)
    ema_alignment = max(bull_ema, bear_ema) / 3.0

    surges = sum(tf.volume_surge for tf in frames)
    multiplier = _finite(snapshot.volume_surge_multiplier)
    volume_consistency = (surges + (multiplier >= min_multiplier)) / 4.0

    # VWAP on all three frames, long body and engulfing on the 1m and 5m frames.
    action_frames = (snapshot.one_min, snapshot.five_min)
    long_bodies = sum(tf.long_body for tf in action_frames)
    bull_action = (
        sum(tf.price_above_vwap for tf in frames)
        + long_bodies
        + sum(tf.bullish_engulfing for tf in action_frames)
    )
    bear_action = (
        sum(tf.price_below_vwap for tf in frames)
        + long_bodies
        + sum(tf.bearish_engulfing for tf in action_frames)
    )
    price_action = max(bull_action, bear_action) / 7.0

    failures: List[str] = []
    if ema_alignment < checks.ema_alignment_score:
        failures.append(f"EMA:{ema_alignment:.2f}<{checks.ema_alignment_score:.2f}")
    if volume_consistency < checks.volume_consistency_score:
        failures.append(f"VolCons:{volume_consistency:.2f}<{checks.volume_consistency_score:.2f}")
    if price_action < checks.price_action_score:
        failures.append(f"Price:{price_action:.2f}<{checks.price_action_score:.2f}")
    if overall < checks.overall_score:
        failures.append(f"Overall:{overall:.2f}<{checks.overall_score:.2f}")
    return ComprehensiveCheck(
        ema_alignment=ema_alignment,
        volume_consistency=volume_consistency,
        price_action=price_action,
        overall=overall,
        passed=not failures,
        failures=tuple(failures),
    )


def check_entry_filter(
    snapshot: IndicatorSnapshot, bars: Sequence[Bar], config: EntryFilterConfig
) -> EntryFilterResult:
    """Hard gate on the current candle: height, volume surge, and body ratio."""

    if not config.enabled:
        return EntryFilterResult(True, 0.0, 0.0, 0.0, "Entry filtering disabled")
    if not bars:
        return EntryFilterResult(False, 0.0, 0.0, 0.0, "Entry filtering failed: no candle data")
    current = bars[-1]
    height = candle_height(current)
    ratio = body_ratio(current)
    multiplier = _finite(snapshot.volume_surge_multiplier)

    failures: List[str] = []
    if height < config.min_candle_height:
        failures.append(f"Candle height {height:.2f} < {config.min_candle_height:.2f}")
    if not multiplier > config.min_volume_multiplier:
        failures.append(f"Volume surge {multiplier:.2f}x <= {config.min_volume_multiplier:.2f}x")
    if ratio < config.min_body_ratio:
        failures.append(f"Body ratio {ratio:.2f} < {config.min_body_ratio:.2f}")
    if failures:
        reason = "Entry filtering failed: " + ", ".join(failures)
        return EntryFilterResult(False, height, multiplier, ratio, reason)
    return EntryFilterResult(True, height, multiplier, ratio, "All entry filtering conditions met")


class MarketRegimeClassifier:
    """Classify each tick's market regime from indicator flags and recent bars."""

    def __init__(self, config_store: ConfigStore) -> None:
        self.config_store = config_store

    def _config(self, config: Optional[StrategyConfig]) -> StrategyConfig:
        return config if config is not None else self.config_store.current()

    def classify(
        self,
        tick: Tick,
        snapshot: IndicatorSnapshot,
        bars: Sequence[Bar],
        volatility_bars: Optional[Sequence[Bar]] = None,
        *,
        config: Optional[StrategyConfig] = None,
    ) -> MarketRegime:
        """Return the regime for ``tick``; never raises."""

        try:
            return self._classify(tick, snapshot, bars, volatility_bars, self._config(config))
        except Exception as exc:  # noqa: BLE001 - must not halt the tick loop
            log.error(
                "regime.error",
                extra={"instrument_token": tick.instrument_token, "error": str(exc)},
            )
            return MarketRegime.unsuitable(f"Error during analysis: {exc}")

    def _classify(
        self,
        tick: Tick,
        snapshot: IndicatorSnapshot,
        bars: Sequence[Bar],
        volatility_bars: Optional[Sequence[Bar]],
        config: StrategyConfig,
    ) -> MarketRegime:
        flat_cfg = config.flat_market
        lookback = flat_cfg.lookback_settings
        vol_bars = volatility_bars if volatility_bars is not None else bars

        candles = self._guard(
            "candles",
            lambda: analyze_candles(bars, lookback.candle_analysis, lookback.min_bars),
            None,
        )
        directional = self._guard("directional", lambda: directional_strength(snapshot), 0.0)
        volatility = self._guard(
            "volatility", lambda: volatility_score(snapshot, vol_bars, flat_cfg), 0.0
        )
        candle_score = self._guard("candle_size", lambda: candle_size_score(candles, flat_cfg), 0.0)
        overall = overall_score(directional, volatility, candle_score)

        flat_reasons = self._guard(
            "flat",
            lambda: flat_market_reasons(candles, directional, volatility, flat_cfg),
            ["Error evaluating flat market"],
        )
        is_flat = bool(flat_reasons)
        comprehensive = self._guard(
            "comprehensive", lambda: comprehensive_check(snapshot, overall, flat_cfg), None
        )
        multiplier = _finite(snapshot.volume_surge_multiplier)
        suitable = (
            not is_flat
            and directional >= flat_cfg.requirements.min_directional_strength
            and multiplier >= flat_cfg.requirements.min_volume_multiplier
            and comprehensive is not None
            and comprehensive.passed
        )
        if is_flat:
            reason = "Flat market detected: " + "; ".join(flat_reasons)
        elif not suitable:
            reason = "Market conditions unsuitable for trading"
        else:
            reason = "Market conditions suitable for trading"
        return MarketRegime(
            directional_strength=directional,
            volatility_score=volatility,
            candle_size_score=candle_score,
            overall_score=overall,
            is_flat_market=is_flat,
            is_suitable_for_trading=suitable,
            reason=reason,
            flat_reasons=tuple(flat_reasons),
            candle_analysis=candles,
            comprehensive=comprehensive,
        )

    @staticmethod
    def _guard(name, compute, fallback):
        try:
            return compute()
        except Exception as exc:  # noqa: BLE001 - degrade to a conservative value
            log.warning("regime.component_failed", extra={"component": name, "error": str(exc)})
            return fallback

    def is_market_suitable(
        self,
        tick: Tick,
        snapshot: IndicatorSnapshot,
        bars: Sequence[Bar],
        volatility_bars: Optional[Sequence[Bar]] = None,
        *,
        config: Optional[StrategyConfig] = None,
    ) -> bool:
        """Suitability honouring the flat-market filtering toggle."""

        cfg = self._config(config)
        if not cfg.flat_market.enabled:
            return True
        regime = self.classify(tick, snapshot, bars, volatility_bars, config=cfg)
        return regime.is_suitable_for_trading

    def entry_filter(
        self,
        snapshot: IndicatorSnapshot,
        bars: Sequence[Bar],
        *,
        config: Optional[StrategyConfig] = None,
    ) -> EntryFilterResult:
        cfg = self._config(config)
        try:
            return check_entry_filter(snapshot, bars, cfg.entry_filter)
        except Exception as exc:  # noqa: BLE001 - treat as a failed gate
            log.error("entry_filter.error", extra={"error": str(exc)})
            return EntryFilterResult(False, 0.0, 0.0, 0.0, f"Entry filtering error: {exc}")

    def detailed_flat_reason(self, regime: MarketRegime, *, config: Optional[StrategyConfig] = None) -> str:
        """Compact comma-separated codes for each failed threshold."""

        cfg = self._config(config).flat_market
        req = cfg.requirements
        parts: List[str] = []
        if regime.directional_strength < req.min_directional_strength:
            parts.append(f"Dir:{regime.directional_strength:.2f}<{req.min_directional_strength:.2f}")
        low_vol = cfg.thresholds.volatility_score.low_threshold
        if regime.volatility_score < low_vol:
            parts.append(f"Vol:{regime.volatility_score:.2f}<{low_vol:.2f}")
        candles = regime.candle_analysis
        if candles is None:
            parts.append("Candles:insufficient")
        else:
            if candles.consecutive_doji > req.max_consecutive_doji:
                parts.append(f"Doji:{candles.consecutive_doji}>{req.max_consecutive_doji}")
            if candles.consecutive_spinning_top > req.max_consecutive_spinning_top:
                parts.append(
                    f"Spin:{candles.consecutive_spinning_top}>{req.max_consecutive_spinning_top}"
                )
            if candles.consecutive_small_candles > req.max_consecutive_small_candles:
                parts.append(
                    f"Small:{candles.consecutive_small_candles}>{req.max_consecutive_small_candles}"
                )
        if regime.comprehensive is not None:
            parts.extend(regime.comprehensive.failures)
        return ",".join(parts) if parts else "Market conditions normal"


__all__ = [
    "MarketRegimeClassifier",
    "average_true_range",
    "candle_size_score",
    "check_entry_filter",
    "comprehensive_check",
    "directional_strength",
    "flat_market_reasons",
    "overall_score",
    "volatility_score",
]
