from __future__ import annotations

import logging

import orjson
import pytest

from core.clock import ManualClock
from core.settings import RuntimeSettings
from services.execution.lifecycle import OrderLifecycleManager
from services.execution.store import JsonlOrderRepository
from services.risk.presets import PRESETS
from services.risk.sizing import CandleRangeRiskSizer
from services.runtime.pipeline import TickInput, TickPipeline, TickWorker, build_pipeline
from services.strategy.regime import MarketRegimeClassifier
from services.strategy.scenarios import ScenarioEvaluator
from services.strategy.types import Direction
from tests.fakes.collaborators import CALL_TOKEN, FakePricingOracle
from tests.fakes.configs import make_config
from tests.fakes.market import INDEX_TOKEN, bullish_snapshot, doji_bars, tick, trending_bars
from tests.fakes.orders import make_order


@pytest.fixture
def pipeline(config_store, lifecycle, metrics) -> TickPipeline:
    return TickPipeline(
        config_store=config_store,
        classifier=MarketRegimeClassifier(config_store),
        evaluator=ScenarioEvaluator(config_store),
        lifecycle=lifecycle,
        metrics=metrics,
    )


def strong_tick(quality: float = 8.0) -> TickInput:
    return TickInput(
        tick=tick(),
        snapshot=bullish_snapshot(),
        bars=trending_bars(30),
        quality_score=quality,
        dominant_trend=Direction.CALL,
    )


def test_trending_tick_opens_order(pipeline, metrics) -> None:
    outcome = pipeline.process(strong_tick())
    assert outcome.error is None
    assert outcome.regime.is_suitable_for_trading
    assert outcome.admission.conditions_met
    assert outcome.decision.scenario_name == "SAFE_ENTRY_SIGNAL"
    assert outcome.opened is not None and outcome.opened.instrument_token == CALL_TOKEN
    assert pipeline.last_regime(INDEX_TOKEN) is outcome.regime
    assert metrics.counter("ticks_processed") == 1
    assert metrics.snapshot()["tick_latency_ms"]["count"] == 1


def test_second_signal_does_not_stack_orders(pipeline, lifecycle) -> None:
    pipeline.process(strong_tick())
    outcome = pipeline.process(strong_tick())
    assert outcome.decision.should_entry
    assert outcome.opened is None
    assert len(lifecycle.active_orders()) == 1


def test_low_quality_does_not_enter(pipeline) -> None:
    outcome = pipeline.process(strong_tick(quality=6.5))
    assert not outcome.decision.should_entry
    assert outcome.opened is None


def test_flat_market_vetoes_entry(pipeline, metrics) -> None:
    item = TickInput(
        tick=tick(),
        snapshot=bullish_snapshot(),
        bars=doji_bars(30),
        quality_score=9.0,
        dominant_trend=Direction.CALL,
    )
    outcome = pipeline.process(item)
    assert outcome.regime.is_flat_market
    assert outcome.admission.reason.startswith("Market not suitable: ")
    assert not outcome.decision.should_entry
    assert outcome.decision.reason == outcome.admission.reason
    assert metrics.counter("flat_market_ticks") == 1


def test_exit_runs_before_new_entry(pipeline, pricing) -> None:
    first = pipeline.process(strong_tick())
    pricing.set_price(CALL_TOKEN, 125.0)
    outcome = pipeline.process(strong_tick())
    assert outcome.exit_event is not None and outcome.exit_event.order_id == first.opened.id
    assert outcome.opened is not None and outcome.opened.id != first.opened.id


def test_errors_are_reported_on_outcome(pipeline, metrics) -> None:
    class Exploding:
        def evaluate(self, *args, **kwargs):
            raise RuntimeError("boom")

    pipeline.evaluator = Exploding()
    outcome = pipeline.process(strong_tick())
    assert outcome.error == "boom"
    assert metrics.counter("tick_errors") == 1


def test_worker_processes_in_order(pipeline) -> None:
    outcomes = []
    worker = TickWorker(pipeline, on_outcome=outcomes.append)
    worker.start()
    try:
        for _ in range(3):
            assert worker.submit(strong_tick(), timeout=1.0)
        worker.join()
    finally:
        worker.stop()
    assert len(outcomes) == 3
    assert outcomes[0].opened is not None
    assert all(o.opened is None for o in outcomes[1:])


def test_worker_drops_when_queue_full(pipeline, metrics) -> None:
    worker = TickWorker(pipeline, max_queue=1)
    assert worker.submit(strong_tick())
    assert not worker.submit(strong_tick(), timeout=0.01)
    assert metrics.counter("ticks_dropped") == 1


def test_no_trade_zone_failure_blocks_entry(pipeline) -> None:
    pipeline.config_store.replace(
        make_config(
            noTradeZones={
                "enabled": True,
                "filters": {"consecutiveSameColorCandles": {"mandatory": True, "name": "Same color run"}},
            }
        )
    )
    outcome = pipeline.process(strong_tick())
    assert outcome.admission.reason == "No-trade zone: Mandatory filters failed: Same color run"
    assert not outcome.decision.should_entry
    assert outcome.opened is None


def test_optional_zone_failure_can_be_waived(pipeline) -> None:
    pipeline.config_store.replace(
        make_config(
            noTradeZones={
                "enabled": True,
                "maxOptionalFiltersToIgnore": 1,
                "filters": {"consecutiveSameColorCandles": {"maxConsecutiveCount": 5}},
            }
        )
    )
    outcome = pipeline.process(strong_tick())
    assert outcome.admission.conditions_met
    assert outcome.opened is not None


def test_no_trade_zones_replace_flat_market_veto(pipeline) -> None:
    pipeline.config_store.replace(
        make_config(entryFilter={"enabled": False}, noTradeZones={"enabled": True})
    )
    item = TickInput(
        tick=tick(),
        snapshot=bullish_snapshot(),
        bars=doji_bars(30),
        quality_score=9.0,
        dominant_trend=Direction.CALL,
    )
    outcome = pipeline.process(item)
    assert outcome.regime.is_flat_market
    assert outcome.admission.conditions_met
    assert outcome.opened is not None


def test_pipeline_feeds_bars_to_sizer(config_store, pricing, repository, clock) -> None:
    sizer = CandleRangeRiskSizer(PRESETS["balanced"])
    lifecycle = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=sizer,
        repository=repository,
        clock=clock,
    )
    pipeline = TickPipeline(
        config_store=config_store,
        classifier=MarketRegimeClassifier(config_store),
        evaluator=ScenarioEvaluator(config_store),
        lifecycle=lifecycle,
    )
    outcome = pipeline.process(strong_tick())
    # trending bars span 12 points; balanced takes half
    assert outcome.opened.stop_loss_price == pytest.approx(94.0)
    assert outcome.opened.target_price == pytest.approx(112.0)


def test_build_pipeline_applies_settings(tmp_path, sample_config_path) -> None:
    journal = tmp_path / "orders.ndjson"
    JsonlOrderRepository(journal).save(make_order())
    log_path = tmp_path / "logs" / "scalper.log"
    settings = RuntimeSettings(
        log_level="info",
        log_path=log_path,
        strategy_config_path=sample_config_path,
        order_store_path=journal,
        trading_timezone="America/New_York",
        regime_cache_ttl_sec=30.0,
        price_cache_ttl_sec=0.5,
    )
    pipeline = build_pipeline(settings, pricing=FakePricingOracle(), clock=ManualClock())

    assert pipeline.regimes.ttl == 30.0
    assert pipeline.lifecycle._price_cache.ttl == 0.5
    assert pipeline.lifecycle.cooldown.tz.key == "America/New_York"
    assert pipeline.lifecycle.daily_limits.tz.key == "America/New_York"
    assert isinstance(pipeline.lifecycle.sizer, CandleRangeRiskSizer)
    assert pipeline.config_store.current().risk.quantity == 75
    assert pipeline.lifecycle.active_orders()[0].id == "o-1"

    logger = logging.getLogger("scalper")
    assert logger.level == logging.INFO
    for handler in logger.handlers:
        handler.flush()
    events = [orjson.loads(line)["message"] for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert "pipeline.built" in events
