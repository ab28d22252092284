from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.config import DailyLimitsConfig
from services.risk.daily_limits import LOSS_LIMIT, PROFIT_LIMIT, DailyPnLTracker

MORNING = datetime(2024, 1, 1, 4, 0, tzinfo=timezone.utc)  # 09:30 IST


def test_realised_profit_hits_profit_limit() -> None:
    tracker = DailyPnLTracker()
    cfg = DailyLimitsConfig(max_profit_per_day=1_000.0, max_loss_per_day=500.0)
    tracker.record_exit(600.0, MORNING)
    assert tracker.check(MORNING, cfg) is None
    tracker.record_exit(400.0, MORNING + timedelta(minutes=20))
    breach = tracker.check(MORNING + timedelta(minutes=21), cfg)
    assert breach.reason == PROFIT_LIMIT
    assert breach.detail == "Day P&L 1000.00 >= max profit 1000.00"
    assert tracker.trades(MORNING) == 2


def test_unrealised_pnl_counts_towards_loss_limit() -> None:
    tracker = DailyPnLTracker()
    cfg = DailyLimitsConfig(max_loss_per_day=500.0)
    tracker.record_exit(-300.0, MORNING)
    assert tracker.check(MORNING, cfg, unrealized=-150.0) is None
    breach = tracker.check(MORNING, cfg, unrealized=-250.0)
    assert breach.reason == LOSS_LIMIT
    assert breach.day_pnl == pytest.approx(-550.0)
    assert breach.detail == "Day P&L -550.00 <= max loss -500.00"


def test_totals_reset_on_a_new_trading_day() -> None:
    tracker = DailyPnLTracker()
    cfg = DailyLimitsConfig(max_loss_per_day=100.0)
    tracker.record_exit(-200.0, MORNING)
    assert tracker.check(MORNING, cfg) is not None
    # 18:40 UTC is already 00:10 IST the next day
    next_day = datetime(2024, 1, 1, 18, 40, tzinfo=timezone.utc)
    assert tracker.realized(next_day) == 0.0
    assert tracker.check(next_day, cfg) is None


def test_disabled_or_unbounded_limits_never_breach() -> None:
    tracker = DailyPnLTracker()
    tracker.record_exit(-10_000.0, MORNING)
    assert tracker.check(MORNING, DailyLimitsConfig(enabled=False, max_loss_per_day=1.0)) is None
    assert tracker.check(MORNING, DailyLimitsConfig()) is None
