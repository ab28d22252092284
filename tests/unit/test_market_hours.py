from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.market_hours import TRADING_TZ, candle_closed_since, candle_start, parse_timeframe, to_market_time


@pytest.mark.parametrize(
    "raw, expected",
    [("1min", 1), ("5min", 5), ("15m", 15), ("1h", 60), (" 3 minutes ", 3), (10, 10)],
)
def test_parse_timeframe(raw, expected) -> None:
    assert parse_timeframe(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "0min", "-5min", None, 0])
def test_parse_timeframe_fallback(raw) -> None:
    assert parse_timeframe(raw, default=5) == 5


def test_naive_datetimes_are_treated_as_utc() -> None:
    local = to_market_time(datetime(2024, 1, 1, 4, 0))
    assert local.tzinfo == TRADING_TZ
    assert (local.hour, local.minute) == (9, 30)


def test_candle_start_aligns_to_trading_zone() -> None:
    # 09:33:20 IST
    when = datetime(2024, 1, 1, 4, 3, 20, tzinfo=timezone.utc)
    start = candle_start(when, 5)
    assert (start.hour, start.minute, start.second) == (9, 30, 0)
    assert candle_start(when, 15).minute == 30
    assert candle_start(when, 1).minute == 33


def test_candle_closed_since() -> None:
    exit_time = datetime(2024, 1, 1, 4, 3, tzinfo=timezone.utc)  # 09:33 IST
    assert not candle_closed_since(exit_time, datetime(2024, 1, 1, 4, 4, 59, tzinfo=timezone.utc), 5)
    assert candle_closed_since(exit_time, datetime(2024, 1, 1, 4, 5, tzinfo=timezone.utc), 5)
