"""Strategy configuration models, loader, and hot-reload store."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

log = logging.getLogger("scalper.config")

DEFAULT_TIMEFRAME_MINUTES = 5


class ConfigError(ValueError):
    """Raised when a strategy configuration cannot be loaded or validated."""


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    @model_validator(mode="after")
    def _non_negative(self) -> "_Model":
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value < 0:
                raise ValueError(f"{name} must not be negative (got {value})")
        return self


class FlatMarketRequirements(_Model):
    min_candle_body_ratio: float = Field(default=0.30, alias="minCandleBodyRatio")
    min_price_range: float = Field(default=20.0, alias="minPriceRange")
    min_volume_multiplier: float = Field(default=1.5, alias="minVolumeMultiplier")
    min_directional_strength: float = Field(default=0.30, alias="minDirectionalStrength")
    max_consecutive_doji: int = Field(default=2, alias="maxConsecutiveDoji")
    max_consecutive_spinning_top: int = Field(default=3, alias="maxConsecutiveSpinningTop")
    max_consecutive_small_candles: int = Field(default=3, alias="maxConsecutiveSmallCandles")


class VolatilityThresholds(_Model):
    low_threshold: float = Field(default=0.30, alias="lowThreshold")
    very_low_threshold: float = Field(default=0.15, alias="veryLowThreshold")


class DirectionalThresholds(_Model):
    very_low_threshold: float = Field(default=0.20, alias="veryLowThreshold")


class ComprehensiveChecks(_Model):
    ema_alignment_score: float = Field(default=0.33, alias="emaAlignmentScore")
    volume_consistency_score: float = Field(default=0.25, alias="volumeConsistencyScore")
    price_action_score: float = Field(default=0.25, alias="priceActionScore")
    overall_score: float = Field(default=0.50, alias="overallScore")


class VolumeConsistency(_Model):
    min_volume_multiplier: float = Field(default=1.5, alias="minVolumeMultiplier")


class FlatMarketThresholds(_Model):
    volatility_score: VolatilityThresholds = Field(
        default_factory=VolatilityThresholds, alias="volatilityScore"
    )
    directional_strength: DirectionalThresholds = Field(
        default_factory=DirectionalThresholds, alias="directionalStrength"
    )
    comprehensive_checks: ComprehensiveChecks = Field(
        default_factory=ComprehensiveChecks, alias="comprehensiveChecks"
    )
    volume_consistency: VolumeConsistency = Field(
        default_factory=VolumeConsistency, alias="volumeConsistency"
    )


class AtrSettings(_Model):
    period: int = Field(default=14, ge=1)
    min_atr: float = Field(default=10.0, alias="minATR")


class LookbackSettings(_Model):
    candle_analysis: int = Field(default=10, ge=1, alias="candleAnalysis")
    volatility_analysis: int = Field(default=20, ge=1, alias="volatilityAnalysis")
    min_bars: int = Field(default=10, ge=1, alias="minBars")


class FlatMarketConfig(_Model):
    enabled: bool = True
    requirements: FlatMarketRequirements = Field(default_factory=FlatMarketRequirements)
    thresholds: FlatMarketThresholds = Field(default_factory=FlatMarketThresholds)
    atr_settings: AtrSettings = Field(default_factory=AtrSettings, alias="atrSettings")
    lookback_settings: LookbackSettings = Field(
        default_factory=LookbackSettings, alias="lookbackSettings"
    )


class EntryFilterConfig(_Model):
    enabled: bool = True
    min_candle_height: float = Field(default=8.0, alias="minCandleHeight")
    min_volume_multiplier: float = Field(default=10.0, alias="minVolumeMultiplier")
    min_body_ratio: float = Field(default=0.60, alias="minBodyRatio")


NO_TRADE_FILTER_KEYS = frozenset(
    {
        "candleHeight",
        "volumeSurge",
        "bodyRatio",
        "directionalStrength",
        "consecutiveSameColorCandles",
    }
)


class NoTradeFilter(_Model):
    enabled: bool = True
    name: str = ""
    description: str = ""
    priority: int = 100
    mandatory: bool = False
    threshold: float = 0.0
    max_consecutive_count: int = Field(default=5, ge=1, alias="maxConsecutiveCount")
    analysis_window: int = Field(default=10, ge=1, alias="analysisWindow")


class NoTradeZonesConfig(_Model):
    """Mandatory and optional entry filters; replaces the flat-market veto when enabled."""

    enabled: bool = False
    max_optional_filters_to_ignore: int = Field(default=0, alias="maxOptionalFiltersToIgnore")
    filters: Dict[str, NoTradeFilter] = Field(default_factory=dict)

    @field_validator("filters")
    @classmethod
    def _known_filters(cls, value: Dict[str, NoTradeFilter]) -> Dict[str, NoTradeFilter]:
        unknown = sorted(set(value) - NO_TRADE_FILTER_KEYS)
        if unknown:
            raise ValueError(f"unknown no-trade filter(s): {', '.join(unknown)}")
        return value


class ScenarioRequirements(_Model):
    min_quality_score: Optional[float] = Field(default=None, alias="minQualityScore")
    ema_min_score: Optional[float] = None
    future_and_volume_min_score: Optional[float] = Field(
        default=None, alias="futureAndVolume_min_score"
    )
    candlestick_min_score: Optional[float] = None
    momentum_min_score: Optional[float] = None

    def category_minimums(self) -> Dict[str, float]:
        """Return the declared per-category minimums keyed by category name."""

        pairs = {
            "ema": self.ema_min_score,
            "futureAndVolume": self.future_and_volume_min_score,
            "candlestick": self.candlestick_min_score,
            "momentum": self.momentum_min_score,
        }
        return {key: value for key, value in pairs.items() if value is not None}


class Scenario(_Model):
    name: str = Field(min_length=1)
    description: str = ""
    active: bool = True
    requirements: ScenarioRequirements = Field(default_factory=ScenarioRequirements)


class ScoringConfig(_Model):
    min_quality_score: float = Field(default=6.0, alias="minQualityScore")


class MilestoneConfig(_Model):
    step_points: float = Field(default=5.0, gt=0, alias="stepPoints")


class ExitSettings(_Model):
    milestone_based_exit_enabled: bool = Field(default=True, alias="milestoneBasedExit")
    stop_loss_target_exit_enabled: bool = Field(default=True, alias="stopLossTargetExit")
    strategy_based_exit_enabled: bool = Field(default=True, alias="strategyBasedExit")
    price_movement_exit_enabled: bool = Field(default=False, alias="priceMovementExit")
    time_based_exit_enabled: bool = Field(default=True, alias="timeBasedExit")
    max_holding_time_sec: int = Field(default=300, gt=0, alias="maxHoldingTimeSec")


class CooldownConfig(_Model):
    enabled: bool = True
    blocking_reasons: FrozenSet[str] = Field(
        default=frozenset({"STOPLOSS_HIT", "FORCE_EXIT"}), alias="blockingReasons"
    )
    timeframe: str = "5min"

    def timeframe_minutes(self) -> int:
        """Return the gating candle size in minutes, falling back on bad input."""

        from core.market_hours import parse_timeframe

        return parse_timeframe(self.timeframe, default=DEFAULT_TIMEFRAME_MINUTES)


class RiskConfig(_Model):
    preset: str = "balanced"
    quantity: int = Field(default=75, gt=0)
    stop_loss_pct: Optional[float] = Field(default=None, gt=0, alias="stopLossPct")
    reward_ratio: Optional[float] = Field(default=None, gt=0, alias="rewardRatio")
    min_bars: int = Field(default=2, ge=2, alias="minBars")


class DailyLimitsConfig(_Model):
    """Realised plus open P&L bounds for one trading day; ``None`` means unbounded."""

    enabled: bool = True
    max_profit_per_day: Optional[float] = Field(default=None, gt=0, alias="maxProfitPerDay")
    max_loss_per_day: Optional[float] = Field(default=None, gt=0, alias="maxLossPerDay")


class StrategyConfig(_Model):
    flat_market: FlatMarketConfig = Field(default_factory=FlatMarketConfig, alias="flatMarket")
    entry_filter: EntryFilterConfig = Field(default_factory=EntryFilterConfig, alias="entryFilter")
    no_trade_zones: NoTradeZonesConfig = Field(
        default_factory=NoTradeZonesConfig, alias="noTradeZones"
    )
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    scenarios: List[Scenario] = Field(
        default_factory=lambda: [
            Scenario(
                name="SAFE_ENTRY_SIGNAL",
                requirements=ScenarioRequirements(min_quality_score=7.0),
            )
        ]
    )
    milestones: MilestoneConfig = Field(default_factory=MilestoneConfig)
    exit_settings: ExitSettings = Field(default_factory=ExitSettings, alias="exitSettings")
    cooldown: CooldownConfig = Field(default_factory=CooldownConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    daily_limits: DailyLimitsConfig = Field(default_factory=DailyLimitsConfig, alias="dailyLimits")

    @field_validator("scenarios")
    @classmethod
    def _unique_names(cls, value: List[Scenario]) -> List[Scenario]:
        if not value:
            raise ValueError("at least one scenario must be configured")
        seen: set[str] = set()
        for scenario in value:
            if scenario.name in seen:
                raise ValueError(f"duplicate scenario name: {scenario.name}")
            seen.add(scenario.name)
        return value

    def active_scenarios(self) -> List[Scenario]:
        return [scenario for scenario in self.scenarios if scenario.active]


def _read_config_payload(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle)
    return payload or {}


def parse_config(payload: Dict[str, Any]) -> StrategyConfig:
    """Validate a raw mapping into a :class:`StrategyConfig`."""

    if not isinstance(payload, dict):
        raise ConfigError("configuration root must be a mapping")
    try:
        return StrategyConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


def load_config(path: Path) -> StrategyConfig:
    """Load configuration from ``path``."""

    path = Path(path)
    try:
        payload = _read_config_payload(path)
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse {path}: {exc}") from exc
    return parse_config(payload)


class ConfigStore:
    """Holds the active configuration and swaps it atomically on reload."""

    def __init__(self, config: Optional[StrategyConfig] = None) -> None:
        self._lock = threading.Lock()
        self._config = config or StrategyConfig()
        self._version = 1

    def current(self) -> StrategyConfig:
        with self._lock:
            return self._config

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def replace(self, config: StrategyConfig) -> None:
        with self._lock:
            self._config = config
            self._version += 1
        log.info("config.replaced", extra={"version": self._version})

    def reload(self, path: Path) -> bool:
        """Reload from ``path``; keep the previous config if validation fails."""

        try:
            config = load_config(path)
        except ConfigError as exc:
            log.error("config.reload_failed", extra={"path": str(path), "error": str(exc)})
            return False
        self.replace(config)
        return True


__all__ = [
    "AtrSettings",
    "ComprehensiveChecks",
    "ConfigError",
    "ConfigStore",
    "CooldownConfig",
    "DailyLimitsConfig",
    "EntryFilterConfig",
    "ExitSettings",
    "FlatMarketConfig",
    "FlatMarketRequirements",
    "FlatMarketThresholds",
    "LookbackSettings",
    "MilestoneConfig",
    "NO_TRADE_FILTER_KEYS",
    "NoTradeFilter",
    "NoTradeZonesConfig",
    "RiskConfig",
    "Scenario",
    "ScenarioRequirements",
    "ScoringConfig",
    "StrategyConfig",
    "load_config",
    "parse_config",
]
