"""Per-trading-day profit and loss limits."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from core.config import DailyLimitsConfig
from core.market_hours import TRADING_TZ, to_market_time

log = logging.getLogger("scalper.daily_limits")

PROFIT_LIMIT = "MAX_DAY_PROFIT_REACHED"
LOSS_LIMIT = "MAX_DAY_LOSS_REACHED"


@dataclass(slots=True, frozen=True)
class DailyLimitBreach:
    reason: str
    day_pnl: float
    limit: float

    @property
    def detail(self) -> str:
        if self.reason == PROFIT_LIMIT:
            return f"Day P&L {self.day_pnl:.2f} >= max profit {self.limit:.2f}"
        return f"Day P&L {self.day_pnl:.2f} <= max loss -{self.limit:.2f}"


class DailyPnLTracker:
    """Accumulates realised profit per trading day and checks it against the limits.

    The day rolls over at midnight in the trading zone; the running total
    resets on the first call that lands on a new day.
    """

    def __init__(self, *, tz: ZoneInfo = TRADING_TZ) -> None:
        self.tz = tz
        self._lock = threading.Lock()
        self._day: Optional[date] = None
        self._realized = 0.0
        self._trades = 0

    def _roll(self, when: datetime) -> None:
        day = to_market_time(when, self.tz).date()
        if day != self._day:
            if self._day is not None:
                log.info(
                    "daily_limits.reset",
                    extra={"day": day.isoformat(), "previous_pnl": round(self._realized, 2)},
                )
            self._day = day
            self._realized = 0.0
            self._trades = 0

    def record_exit(self, profit: float, when: datetime) -> None:
        with self._lock:
            self._roll(when)
            self._realized += profit
            self._trades += 1

    def realized(self, when: datetime) -> float:
        with self._lock:
            self._roll(when)
            return self._realized

    def trades(self, when: datetime) -> int:
        with self._lock:
            self._roll(when)
            return self._trades

    def check(
        self, when: datetime, config: DailyLimitsConfig, unrealized: float = 0.0
    ) -> Optional[DailyLimitBreach]:
        """Return the breached limit for realised plus ``unrealized`` P&L, if any."""

        if not config.enabled:
            return None
        total = self.realized(when) + unrealized
        if config.max_profit_per_day is not None and total >= config.max_profit_per_day:
            return DailyLimitBreach(PROFIT_LIMIT, total, config.max_profit_per_day)
        if config.max_loss_per_day is not None and total <= -config.max_loss_per_day:
            return DailyLimitBreach(LOSS_LIMIT, total, config.max_loss_per_day)
        return None


__all__ = ["DailyLimitBreach", "DailyPnLTracker", "LOSS_LIMIT", "PROFIT_LIMIT"]
