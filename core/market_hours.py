"""Helpers for trading-zone time and candle boundaries."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

TRADING_TZ = ZoneInfo("Asia/Kolkata")

_TIMEFRAME_RE = re.compile(r"^\s*(\d+)\s*(min|m|minute|minutes|h|hr|hour|hours)?\s*$", re.IGNORECASE)

log = logging.getLogger("scalper.market_hours")


def to_market_time(when: datetime | None = None, tz: ZoneInfo = TRADING_TZ) -> datetime:
    """Return ``when`` expressed in the trading zone; naive values are treated as UTC."""

    if when is None:
        when = datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(tz)


def parse_timeframe(value: str | int | None, default: int = 5) -> int:
    """Parse ``"5min"``, ``"15m"``, ``"1h"`` or a bare integer into minutes.

    Unrecognised values log a warning and return ``default``.
    """

    if isinstance(value, int) and not isinstance(value, bool):
        if value > 0:
            return value
    elif isinstance(value, str):
        match = _TIMEFRAME_RE.match(value)
        if match:
            amount = int(match.group(1))
            unit = (match.group(2) or "min").lower()
            minutes = amount * 60 if unit.startswith("h") else amount
            if minutes > 0:
                return minutes
    log.warning("timeframe.unrecognised", extra={"value": value, "fallback_minutes": default})
    return default


def candle_start(when: datetime, minutes: int, tz: ZoneInfo = TRADING_TZ) -> datetime:
    """Return the open time of the ``minutes`` candle containing ``when``."""

    local = to_market_time(when, tz)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = int((local - midnight).total_seconds() // 60)
    return midnight + timedelta(minutes=elapsed - elapsed % minutes)


def candle_closed_since(
    reference: datetime, now: datetime, minutes: int, tz: ZoneInfo = TRADING_TZ
) -> bool:
    """True once the candle that was open at ``reference`` has closed by ``now``."""

    close = candle_start(reference, minutes, tz) + timedelta(minutes=minutes)
    return to_market_time(now, tz) >= close


__all__ = [
    "TRADING_TZ",
    "candle_closed_since",
    "candle_start",
    "parse_timeframe",
    "to_market_time",
]
