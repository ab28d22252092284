"""Per-tick decision pipeline, the worker thread that drives it, and its composition root."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from core.cache import TTLCache
from core.clock import Clock, SystemClock
from core.config import ConfigStore, StrategyConfig, load_config
from core.interfaces import (
    ExitNotifier,
    ExitSignalTracker,
    OrderRepository,
    PriceMovementTracker,
    PricingOracle,
)
from core.logging import configure_logging
from core.settings import RuntimeSettings, get_settings
from services.execution.exit_policy import ExitPolicy
from services.execution.lifecycle import LoggingExitNotifier, OrderLifecycleManager
from services.execution.store import InMemoryOrderRepository, JsonlOrderRepository
from services.execution.types import ExitEvent, Order
from services.risk.cooldown import EntryCooldown
from services.risk.daily_limits import DailyPnLTracker
from services.risk.sizing import CandleRangeRiskSizer
from services.strategy.no_trade_zones import evaluate_no_trade_zones
from services.strategy.regime import MarketRegimeClassifier
from services.strategy.scenarios import ScenarioEvaluator
from services.strategy.types import (
    Bar,
    Direction,
    EntryDecision,
    EntryFilterResult,
    IndicatorSnapshot,
    MarketRegime,
    Tick,
)
from services.telemetry.metrics import PipelineMetrics


@dataclass(slots=True)
class TickInput:
    """Everything the pipeline needs for one tick, pre-computed upstream."""

    tick: Tick
    snapshot: IndicatorSnapshot
    bars: Sequence[Bar]
    quality_score: float = 0.0
    category_scores: Mapping[Direction, Mapping[str, float]] = field(default_factory=dict)
    dominant_trend: Optional[Direction] = None
    volatility_bars: Optional[Sequence[Bar]] = None


@dataclass(slots=True)
class TickOutcome:
    regime: Optional[MarketRegime] = None
    admission: Optional[EntryFilterResult] = None
    decision: Optional[EntryDecision] = None
    opened: Optional[Order] = None
    exit_event: Optional[ExitEvent] = None
    error: Optional[str] = None


def _rejected(entry: EntryFilterResult, reason: str) -> EntryFilterResult:
    return EntryFilterResult(
        False, entry.candle_height, entry.volume_multiplier, entry.body_ratio, reason
    )


class TickPipeline:
    """Run exit processing, regime classification, scenario scoring, and entry for a tick."""

    def __init__(
        self,
        *,
        config_store: ConfigStore,
        classifier: MarketRegimeClassifier,
        evaluator: ScenarioEvaluator,
        lifecycle: OrderLifecycleManager,
        metrics: Optional[PipelineMetrics] = None,
        regime_cache_ttl: float = 60.0,
    ) -> None:
        self.config_store = config_store
        self.classifier = classifier
        self.evaluator = evaluator
        self.lifecycle = lifecycle
        self.metrics = metrics or PipelineMetrics()
        self.regimes: TTLCache[MarketRegime] = TTLCache(
            regime_cache_ttl, maxsize=32, timer=lifecycle.clock.monotonic
        )
        self.log = logging.getLogger("scalper.pipeline")

    def last_regime(self, instrument_token: int) -> Optional[MarketRegime]:
        return self.regimes.get(instrument_token)

    def admission(
        self, regime: MarketRegime, item: TickInput, config: StrategyConfig
    ) -> EntryFilterResult:
        """Combine the per-candle entry filter with the market veto.

        When no-trade zones are enabled they replace the flat-market veto.
        """

        entry = self.classifier.entry_filter(item.snapshot, item.bars, config=config)
        if config.no_trade_zones.enabled:
            zones = evaluate_no_trade_zones(item.snapshot, item.bars, config.no_trade_zones)
            if not zones.conditions_met:
                return _rejected(entry, f"No-trade zone: {zones.reason}")
            return entry
        if config.flat_market.enabled and not regime.is_suitable_for_trading:
            detail = self.classifier.detailed_flat_reason(regime, config=config)
            return _rejected(entry, f"Market not suitable: {detail}")
        return entry

    def process(self, item: TickInput) -> TickOutcome:
        """Handle one tick; errors are logged and reported on the outcome."""

        outcome = TickOutcome()
        config = self.config_store.current()
        self.metrics.inc("ticks_processed")
        with self.metrics.time_tick():
            try:
                self.lifecycle.sizer.observe_bars(item.tick.instrument_token, item.bars)
                outcome.exit_event = self.lifecycle.on_tick(item.tick, item.snapshot, config=config)
                regime = self.classifier.classify(
                    item.tick, item.snapshot, item.bars, item.volatility_bars, config=config
                )
                outcome.regime = regime
                self.regimes.set(item.tick.instrument_token, regime)
                if regime.is_flat_market:
                    self.metrics.inc("flat_market_ticks")

                outcome.admission = self.admission(regime, item, config)
                outcome.decision = self.evaluator.evaluate(
                    item.quality_score,
                    outcome.admission,
                    item.dominant_trend,
                    item.category_scores,
                    config=config,
                )
                if outcome.decision.should_entry:
                    outcome.opened = self.lifecycle.on_entry_decision(
                        outcome.decision, item.tick, config=config
                    )
            except Exception as exc:  # noqa: BLE001 - one bad tick must not stop the loop
                self.metrics.inc("tick_errors")
                self.log.exception(
                    "pipeline.tick_failed",
                    extra={"instrument_token": item.tick.instrument_token, "error": str(exc)},
                )
                outcome.error = str(exc)
        return outcome


class TickWorker:
    """Single consumer thread so all order mutations happen in tick order."""

    _STOP = object()

    def __init__(
        self,
        pipeline: TickPipeline,
        *,
        on_outcome: Optional[Callable[[TickOutcome], None]] = None,
        max_queue: int = 1024,
    ) -> None:
        self.pipeline = pipeline
        self.on_outcome = on_outcome
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=max_queue)
        self._thread: Optional[threading.Thread] = None
        self.log = logging.getLogger("scalper.worker")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="tick-worker", daemon=True)
        self._thread.start()
        self.log.info("worker.started")

    def submit(self, item: TickInput, timeout: Optional[float] = None) -> bool:
        """Queue a tick; returns False if the queue stays full past ``timeout``."""

        try:
            self._queue.put(item, timeout=timeout)
        except queue.Full:
            self.pipeline.metrics.inc("ticks_dropped")
            self.log.warning(
                "worker.queue_full", extra={"instrument_token": item.tick.instrument_token}
            )
            return False
        return True

    def join(self) -> None:
        """Block until every queued tick has been processed."""

        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._queue.put(self._STOP)
        self._thread.join(timeout)
        self._thread = None
        self.log.info("worker.stopped")

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is self._STOP:
                    return
                outcome = self.pipeline.process(item)  # type: ignore[arg-type]
                if self.on_outcome is not None:
                    try:
                        self.on_outcome(outcome)
                    except Exception as exc:  # noqa: BLE001 - callback errors stay local
                        self.log.error("worker.callback_failed", extra={"error": str(exc)})
            finally:
                self._queue.task_done()


def build_pipeline(
    settings: Optional[RuntimeSettings] = None,
    *,
    pricing: PricingOracle,
    repository: Optional[OrderRepository] = None,
    notifiers: Optional[Iterable[ExitNotifier]] = None,
    exit_signals: Optional[ExitSignalTracker] = None,
    price_movement: Optional[PriceMovementTracker] = None,
    clock: Optional[Clock] = None,
    metrics: Optional[PipelineMetrics] = None,
    config: Optional[StrategyConfig] = None,
) -> TickPipeline:
    """Wire a pipeline from runtime settings and restore any persisted active order.

    Configures logging, loads the strategy config from ``settings`` unless one
    is passed, and applies the trading timezone and cache TTLs.
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_path)
    tz = ZoneInfo(settings.trading_timezone)
    if config is None:
        config = load_config(settings.strategy_config_path)
    config_store = ConfigStore(config)
    if repository is None:
        if settings.order_store_path is not None:
            repository = JsonlOrderRepository(settings.order_store_path)
        else:
            repository = InMemoryOrderRepository()
    metrics = metrics or PipelineMetrics()
    lifecycle = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=CandleRangeRiskSizer.from_config(config_store.current().risk),
        repository=repository,
        cooldown=EntryCooldown(tz=tz),
        daily_limits=DailyPnLTracker(tz=tz),
        exit_policy=ExitPolicy(exit_signals=exit_signals, price_movement=price_movement),
        notifiers=[LoggingExitNotifier()] if notifiers is None else notifiers,
        clock=clock or SystemClock(),
        metrics=metrics,
        price_cache_ttl=settings.price_cache_ttl_sec,
    )
    lifecycle.restore()
    logging.getLogger("scalper.pipeline").info(
        "pipeline.built",
        extra={
            "timezone": settings.trading_timezone,
            "config_path": str(settings.strategy_config_path),
            "order_store": str(settings.order_store_path) if settings.order_store_path else None,
        },
    )
    return TickPipeline(
        config_store=config_store,
        classifier=MarketRegimeClassifier(config_store),
        evaluator=ScenarioEvaluator(config_store),
        lifecycle=lifecycle,
        metrics=metrics,
        regime_cache_ttl=settings.regime_cache_ttl_sec,
    )


__all__ = ["TickInput", "TickOutcome", "TickPipeline", "TickWorker", "build_pipeline"]
