from __future__ import annotations

import random

import pytest

from core.clock import ManualClock
from core.config import ConfigStore
from services.execution.lifecycle import OrderLifecycleManager
from services.execution.store import InMemoryOrderRepository
from services.execution.types import ExitReason
from services.strategy.types import Direction
from tests.fakes.collaborators import CALL_TOKEN, FakePricingOracle, FixedRiskSizer
from tests.fakes.configs import make_config
from tests.fakes.market import tick
from tests.fakes.orders import decision


@pytest.mark.parametrize("seed", range(25))
def test_random_price_paths(seed: int) -> None:
    rng = random.Random(seed)
    clock = ManualClock()
    pricing = FakePricingOracle(entry_price=100.0)
    repository = InMemoryOrderRepository()
    manager = OrderLifecycleManager(
        config_store=ConfigStore(make_config()),
        pricing=pricing,
        sizer=FixedRiskSizer(stop_points=rng.uniform(3.0, 15.0), target_points=rng.uniform(8.0, 40.0)),
        repository=repository,
        clock=clock,
        price_cache_ttl=0.0,
    )

    price = 100.0
    last_stop = None
    current_id = None
    exits = 0
    for _ in range(400):
        if not manager.active_orders():
            opened = manager.on_entry_decision(decision(Direction.CALL), tick(when=clock.now()))
            if opened is not None:
                price = opened.entry_price
                pricing.set_price(CALL_TOKEN, price)
                current_id, last_stop = opened.id, opened.stop_loss_price

        price = max(0.05, price + rng.gauss(0.0, 2.5))
        pricing.set_price(CALL_TOKEN, price)
        clock.advance(rng.choice([1, 2, 5, 15]))
        event = manager.on_tick(tick(when=clock.now()))

        active = manager.active_orders()
        assert len(active) <= 1
        if event is not None:
            exits += 1
            assert event.order_id == current_id
            stored = repository.get(event.order_id)
            assert stored.exit_reason is event.reason
            assert event.total_points == pytest.approx(event.exit_price - stored.entry_price)
            assert event.total_profit == pytest.approx(event.total_points * stored.quantity)
            if event.reason is ExitReason.TRAILING_STOPLOSS_HIT:
                assert stored.any_milestone_hit()
            assert not active
            current_id, last_stop = None, None
        elif active:
            order = active[0]
            assert order.stop_loss_price >= last_stop
            last_stop = order.stop_loss_price
            hit_lines = [line for line in order.milestone_history if line.startswith("Target milestone")]
            assert len(hit_lines) == sum(m.target_hit for m in order.milestones)
            hit_flags = [m.target_hit for m in order.milestones]
            assert hit_flags == sorted(hit_flags, reverse=True)

    assert exits > 0
