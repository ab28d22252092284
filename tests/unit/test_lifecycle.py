from __future__ import annotations

import dataclasses
from datetime import timedelta

import pytest

from services.execution.exit_policy import ExitPolicy
from services.execution.lifecycle import OrderLifecycleManager
from services.execution.store import InMemoryOrderRepository
from services.execution.types import ExitReason, OrderType
from services.strategy.types import Direction
from tests.fakes.collaborators import (
    CALL_TOKEN,
    PUT_TOKEN,
    FailingRepository,
    FakePricingOracle,
    FixedRiskSizer,
    RecordingNotifier,
    StatusReadingSignals,
)
from tests.fakes.configs import make_config
from tests.fakes.market import INDEX_TOKEN, tick
from tests.fakes.orders import NOW, decision, make_order


def test_entry_builds_levels_and_ladder(lifecycle, repository, metrics) -> None:
    order = lifecycle.on_entry_decision(decision(), tick())
    assert order is not None
    assert order.order_type is OrderType.CALL_BUY
    assert order.instrument_token == CALL_TOKEN
    assert order.stop_loss_price == 90.0
    assert order.target_price == 120.0
    assert [m.target_price for m in order.milestones] == [105.0, 110.0, 115.0, 120.0]
    assert order.quantity == 50
    assert order.entry_scenario == "SAFE_ENTRY_SIGNAL"
    assert order.entry_category_scores == {"ema": 7.0}
    assert repository.get(order.id) is not None
    assert metrics.counter("orders_opened") == 1


def test_put_decision_opens_put(lifecycle) -> None:
    order = lifecycle.on_entry_decision(decision(Direction.PUT), tick())
    assert order.order_type is OrderType.PUT_BUY
    assert order.instrument_token == PUT_TOKEN


def test_negative_decision_is_ignored(lifecycle) -> None:
    assert lifecycle.on_entry_decision(decision(should_entry=False), tick()) is None
    assert lifecycle.active_orders() == []


def test_only_one_active_order(lifecycle, metrics) -> None:
    assert lifecycle.on_entry_decision(decision(), tick()) is not None
    assert lifecycle.on_entry_decision(decision(Direction.PUT), tick()) is None
    assert len(lifecycle.active_orders()) == 1
    assert metrics.labeled("entries_blocked") == {"active_order": 1}


def test_returned_order_is_a_copy(lifecycle) -> None:
    order = lifecycle.on_entry_decision(decision(), tick())
    order.stop_loss_price = 1.0
    assert lifecycle.active_orders()[0].stop_loss_price == 90.0


def test_milestones_then_trailing_exit(lifecycle, pricing, repository, metrics) -> None:
    order = lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 111.0)
    assert lifecycle.on_tick(tick(22_010.0)) is None

    live = lifecycle.active_orders()[0]
    assert live.stop_loss_price == 105.0
    assert sum(m.target_hit for m in live.milestones) == 2
    assert live.max_index_price == 22_010.0
    assert metrics.counter("milestones_hit") == 2
    assert repository.get(order.id).stop_loss_price == 105.0

    pricing.set_price(CALL_TOKEN, 105.0)
    event = lifecycle.on_tick(tick(22_004.0))
    assert event.reason is ExitReason.TRAILING_STOPLOSS_HIT
    assert event.total_points == pytest.approx(5.0)
    assert event.total_profit == pytest.approx(250.0)
    assert lifecycle.active_orders() == []
    stored = repository.get(order.id)
    assert stored.exit_reason is ExitReason.TRAILING_STOPLOSS_HIT
    assert metrics.labeled("exits") == {"trailing_stoploss_hit": 1}


def test_stop_loss_exit_starts_cooldown(lifecycle, pricing, metrics) -> None:
    lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 89.0)
    event = lifecycle.on_tick(tick())
    assert event.reason is ExitReason.STOPLOSS_HIT
    assert event.total_points == pytest.approx(-11.0)
    assert event.total_profit == pytest.approx(-550.0)

    assert lifecycle.on_entry_decision(decision(), tick()) is None
    assert lifecycle.on_entry_decision(decision(), tick(when=NOW + timedelta(seconds=299))) is None
    assert metrics.labeled("entries_blocked") == {"cooldown": 2}
    assert lifecycle.on_entry_decision(decision(), tick(when=NOW + timedelta(seconds=300))) is not None


def test_target_exit_allows_immediate_reentry(lifecycle, pricing) -> None:
    lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 120.0)
    event = lifecycle.on_tick(tick())
    assert event.reason is ExitReason.TARGET_HIT
    assert event.total_profit == pytest.approx(1_000.0)
    assert lifecycle.on_entry_decision(decision(), tick()) is not None


def test_time_based_exit_without_milestones(lifecycle, pricing) -> None:
    lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 101.0)
    assert lifecycle.on_tick(tick(when=NOW + timedelta(seconds=299))) is None
    event = lifecycle.on_tick(tick(when=NOW + timedelta(seconds=300)))
    assert event.reason is ExitReason.TIME_BASED_EXIT
    assert "300s" in event.detail


def test_pricing_failures_block_entry(lifecycle, pricing, metrics) -> None:
    pricing.fail_entry = True
    assert lifecycle.on_entry_decision(decision(), tick()) is None
    pricing.fail_entry = False
    pricing.entry_price = 0.0
    assert lifecycle.on_entry_decision(decision(), tick()) is None
    assert metrics.labeled("entries_blocked") == {"pricing_error": 1, "no_pricing": 1}


def test_invalid_sizing_blocks_entry(config_store, pricing, repository, clock, metrics) -> None:
    manager = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=FixedRiskSizer(stop_points=0.0),
        repository=repository,
        clock=clock,
        metrics=metrics,
    )
    assert manager.on_entry_decision(decision(), tick()) is None
    assert metrics.labeled("entries_blocked") == {"invalid_sizing": 1}


def test_missing_quote_keeps_order_open(lifecycle, pricing) -> None:
    lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, None)
    assert lifecycle.on_tick(tick()) is None
    pricing.fail_current = True
    assert lifecycle.on_tick(tick()) is None
    assert len(lifecycle.active_orders()) == 1


def test_storage_failure_does_not_block_trading(config_store, pricing, clock) -> None:
    manager = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=FixedRiskSizer(),
        repository=FailingRepository(),
        clock=clock,
    )
    assert manager.on_entry_decision(decision(), tick()) is not None
    pricing.set_price(CALL_TOKEN, 120.0)
    assert manager.on_tick(tick()).reason is ExitReason.TARGET_HIT
    assert manager.restore() is None


def test_notifier_failure_is_isolated(config_store, pricing, repository, clock) -> None:
    broken, healthy = RecordingNotifier(fail=True), RecordingNotifier()
    manager = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=FixedRiskSizer(),
        repository=repository,
        clock=clock,
        notifiers=[broken, healthy],
    )
    manager.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 80.0)
    event = manager.on_tick(tick())
    assert broken.events == [event]
    assert healthy.events == [event]


def test_restore_keeps_most_recent_active_order(config_store, clock) -> None:
    repository = InMemoryOrderRepository()
    older = make_order()
    newer = dataclasses.replace(make_order(), id="o-2", entry_time=older.entry_time + timedelta(minutes=1))
    repository.save(older)
    repository.save(newer)
    pricing = FakePricingOracle()
    manager = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=FixedRiskSizer(),
        repository=repository,
        clock=clock,
    )
    restored = manager.restore()
    assert restored.id == "o-2"
    assert manager.on_entry_decision(decision(), tick()) is None

    pricing.set_price(CALL_TOKEN, 121.0)
    manager.on_tick(tick())
    assert manager.active_orders()[0].stop_loss_price == 100.0


def test_order_status_view(lifecycle, pricing, clock) -> None:
    order = lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 111.0)
    lifecycle.on_tick(tick())
    clock.advance(90)

    view = lifecycle.order_status()
    assert view.order_id == order.id
    assert view.current_price == 111.0
    assert view.price_stale
    assert view.unrealized_points == pytest.approx(11.0)
    assert view.unrealized_profit == pytest.approx(550.0)
    assert view.milestones_hit == 2
    assert view.duration_minutes == pytest.approx(1.5)
    assert len(view.milestone_history) == 4
    assert lifecycle.order_status("someone-else") is None


def test_order_status_uses_cached_quote(lifecycle, pricing) -> None:
    lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 102.0)
    lifecycle.on_tick(tick())
    calls = pricing.current_calls
    lifecycle.order_status()
    assert pricing.current_calls == calls


def test_force_exit(lifecycle, pricing, metrics) -> None:
    assert lifecycle.force_exit() is None
    lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 104.0)
    event = lifecycle.force_exit("Session end")
    assert event.reason is ExitReason.FORCE_EXIT
    assert event.detail == "Session end"
    assert event.total_points == pytest.approx(4.0)
    assert lifecycle.active_orders() == []
    assert lifecycle.on_entry_decision(decision(), tick()) is None
    assert metrics.labeled("entries_blocked") == {"cooldown": 1}


def test_sizer_gets_index_token_and_reference_price(lifecycle, sizer) -> None:
    lifecycle.on_entry_decision(decision(), tick(22_015.0))
    assert sizer.calls == [(INDEX_TOKEN, 22_000.0)]


def test_milestone_exit_toggle_skips_ladder(lifecycle, pricing) -> None:
    cfg = make_config(exitSettings={"maxHoldingTimeSec": 300, "milestoneBasedExit": False})
    order = lifecycle.on_entry_decision(decision(), tick(), config=cfg)
    assert order.milestones == []
    pricing.set_price(CALL_TOKEN, 111.0)
    assert lifecycle.on_tick(tick(), config=cfg) is None
    assert lifecycle.active_orders()[0].stop_loss_price == 90.0
    pricing.set_price(CALL_TOKEN, 120.0)
    assert lifecycle.on_tick(tick(), config=cfg).reason is ExitReason.TARGET_HIT


def test_daily_loss_limit_blocks_entries_until_next_day(lifecycle, pricing, metrics) -> None:
    cfg = make_config(dailyLimits={"maxLossPerDay": 500.0})
    lifecycle.on_entry_decision(decision(), tick(), config=cfg)
    pricing.set_price(CALL_TOKEN, 89.0)
    assert lifecycle.on_tick(tick(), config=cfg).reason is ExitReason.STOPLOSS_HIT

    after_cooldown = NOW + timedelta(minutes=10)
    assert lifecycle.on_entry_decision(decision(), tick(when=after_cooldown), config=cfg) is None
    assert metrics.labeled("entries_blocked") == {"daily_limit": 1}
    assert lifecycle.on_entry_decision(decision(), tick(when=NOW + timedelta(days=1)), config=cfg) is not None


def test_daily_profit_limit_closes_open_order(lifecycle, pricing, metrics) -> None:
    cfg = make_config(dailyLimits={"maxProfitPerDay": 500.0})
    lifecycle.on_entry_decision(decision(), tick(), config=cfg)
    pricing.set_price(CALL_TOKEN, 111.0)
    event = lifecycle.on_tick(tick(), config=cfg)
    assert event.reason is ExitReason.MAX_DAY_PROFIT_REACHED
    assert event.detail == "Day P&L 550.00 >= max profit 500.00"
    assert event.total_profit == pytest.approx(550.0)
    assert lifecycle.on_entry_decision(decision(), tick(), config=cfg) is None
    assert metrics.labeled("entries_blocked") == {"daily_limit": 1}


def test_order_status_never_calls_pricing(config_store, pricing, repository, clock) -> None:
    manager = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=FixedRiskSizer(),
        repository=repository,
        clock=clock,
        price_cache_ttl=0.0,
    )
    manager.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 102.0)
    manager.on_tick(tick())
    clock.advance(1)
    calls = pricing.current_calls

    view = manager.order_status()
    assert pricing.current_calls == calls
    assert view.current_price == 102.0
    assert view.price_stale
    assert view.unrealized_points == pytest.approx(2.0)


def test_holding_time_follows_tick_timestamp(lifecycle, pricing, clock) -> None:
    lifecycle.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 101.0)
    later = NOW + timedelta(seconds=300)
    event = lifecycle.on_tick(tick(when=later))
    assert clock.now() == NOW
    assert event.reason is ExitReason.TIME_BASED_EXIT
    assert event.exit_time == later


def test_force_exit_records_last_index_price(lifecycle, pricing) -> None:
    lifecycle.on_entry_decision(decision(), tick(22_000.0))
    pricing.set_price(CALL_TOKEN, 101.0)
    lifecycle.on_tick(tick(22_050.0))
    pricing.set_price(CALL_TOKEN, 102.0)
    lifecycle.on_tick(tick(22_020.0))

    event = lifecycle.force_exit()
    assert event.exit_index_price == 22_020.0
    assert event.exit_price == 102.0


def test_status_readable_while_exit_checks_run(config_store, pricing, repository, clock) -> None:
    signals = StatusReadingSignals(lambda: manager.order_status())
    manager = OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=FixedRiskSizer(),
        repository=repository,
        clock=clock,
        exit_policy=ExitPolicy(exit_signals=signals),
    )
    manager.on_entry_decision(decision(), tick())
    pricing.set_price(CALL_TOKEN, 111.0)
    assert manager.on_tick(tick()) is None

    assert signals.reader_finished
    assert signals.views[0].milestones_hit == 2
    assert signals.views[0].stop_loss_price == 105.0
