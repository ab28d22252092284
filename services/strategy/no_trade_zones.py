"""Flexible no-trade-zone filtering: mandatory filters must pass, optional ones may be waived."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from core.config import NoTradeFilter, NoTradeZonesConfig
from services.strategy.candles import body_ratio, candle_height
from services.strategy.regime import directional_strength
from services.strategy.types import Bar, IndicatorSnapshot

log = logging.getLogger("scalper.no_trade_zones")


@dataclass(slots=True, frozen=True)
class FilterResult:
    key: str
    name: str
    priority: int
    mandatory: bool
    passed: bool
    details: str


@dataclass(slots=True, frozen=True)
class FlexibleFilteringResult:
    conditions_met: bool
    results: Tuple[FilterResult, ...]
    reason: str

    @property
    def mandatory_failed(self) -> Tuple[FilterResult, ...]:
        return tuple(r for r in self.results if r.mandatory and not r.passed)

    @property
    def optional_failed(self) -> Tuple[FilterResult, ...]:
        return tuple(r for r in self.results if not r.mandatory and not r.passed)


def _color(bar: Bar) -> int:
    if bar.close > bar.open:
        return 1
    if bar.close < bar.open:
        return -1
    return 0


def same_color_streak(bars: Sequence[Bar], window: int) -> int:
    """Run length of the newest candle's colour inside the last ``window`` bars.

    Returns 0 when fewer than ``window`` bars exist. Flat candles form their own colour.
    """

    if window <= 0 or len(bars) < window:
        return 0
    recent = list(bars[-window:])
    colour = _color(recent[-1])
    streak = 0
    for bar in reversed(recent):
        if _color(bar) != colour:
            break
        streak += 1
    return streak


def check_filter(
    key: str, flt: NoTradeFilter, snapshot: IndicatorSnapshot, bars: Sequence[Bar]
) -> FilterResult:
    latest: Optional[Bar] = bars[-1] if bars else None
    if key == "candleHeight":
        height = candle_height(latest) if latest is not None else 0.0
        passed = height >= flt.threshold
        details = f"Candle height: {height:.2f} (threshold: {flt.threshold:.2f})"
    elif key == "volumeSurge":
        multiplier = snapshot.volume_surge_multiplier
        value = multiplier if multiplier is not None and math.isfinite(multiplier) else 0.0
        passed = value > flt.threshold
        details = f"Volume surge: {value:.2f}x (threshold: {flt.threshold:.2f}x)"
    elif key == "bodyRatio":
        ratio = body_ratio(latest) if latest is not None else 0.0
        passed = ratio >= flt.threshold
        details = f"Body ratio: {ratio:.2f} (threshold: {flt.threshold:.2f})"
    elif key == "directionalStrength":
        strength = directional_strength(snapshot)
        passed = strength >= flt.threshold
        details = f"Directional strength: {strength:.2f} (threshold: {flt.threshold:.2f})"
    elif key == "consecutiveSameColorCandles":
        streak = same_color_streak(bars, flt.analysis_window)
        passed = streak < flt.max_consecutive_count
        details = (
            f"Consecutive same color candles: {streak} "
            f"(max allowed: {flt.max_consecutive_count}, window: {flt.analysis_window})"
        )
    else:
        raise ValueError(f"unknown no-trade filter: {key}")
    return FilterResult(
        key=key,
        name=flt.name or key,
        priority=flt.priority,
        mandatory=flt.mandatory,
        passed=passed,
        details=details,
    )


def _names(results: Sequence[FilterResult]) -> str:
    return ", ".join(r.name for r in results)


def evaluate_no_trade_zones(
    snapshot: IndicatorSnapshot, bars: Sequence[Bar], config: NoTradeZonesConfig
) -> FlexibleFilteringResult:
    """Run every enabled filter in priority order and apply the waiver budget."""

    if not config.enabled:
        return FlexibleFilteringResult(True, (), "No-trade-zone filtering disabled")
    try:
        results: List[FilterResult] = [
            check_filter(key, flt, snapshot, bars)
            for key, flt in config.filters.items()
            if flt.enabled
        ]
    except Exception as exc:  # noqa: BLE001 - a broken filter blocks entry
        log.error("no_trade_zones.error", extra={"error": str(exc)})
        return FlexibleFilteringResult(False, (), f"Error during flexible filtering check: {exc}")
    results.sort(key=lambda r: r.priority)

    mandatory_failed = [r for r in results if r.mandatory and not r.passed]
    optional_failed = [r for r in results if not r.mandatory and not r.passed]
    allowed = config.max_optional_filters_to_ignore
    met = not mandatory_failed and len(optional_failed) <= allowed

    if mandatory_failed:
        reason = f"Mandatory filters failed: {_names(mandatory_failed)}"
    elif not optional_failed:
        reason = "All no-trade-zone filters passed"
    elif met:
        reason = (
            f"Flexible filtering: {len(optional_failed)} optional filters failed "
            f"but {allowed} allowed to ignore. Failed: {_names(optional_failed)}"
        )
    else:
        reason = (
            f"Optional filtering failed: {len(optional_failed)} optional filters failed, "
            f"only {allowed} allowed to ignore. Failed: {_names(optional_failed)}"
        )
    log.debug(
        "no_trade_zones.result",
        extra={
            "conditions_met": met,
            "mandatory_failed": len(mandatory_failed),
            "optional_failed": len(optional_failed),
            "allowed": allowed,
        },
    )
    return FlexibleFilteringResult(met, tuple(results), reason)


__all__ = [
    "FilterResult",
    "FlexibleFilteringResult",
    "check_filter",
    "evaluate_no_trade_zones",
    "same_color_streak",
]
