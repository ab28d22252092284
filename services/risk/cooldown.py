"""Post-exit entry cooldown gated on candle boundaries."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from core.config import CooldownConfig
from core.market_hours import TRADING_TZ, candle_closed_since

log = logging.getLogger("scalper.cooldown")


@dataclass(slots=True, frozen=True)
class LastExit:
    reason: str
    time: datetime


class EntryCooldown:
    """Blocks new entries after certain exits until the exit's candle has closed."""

    def __init__(self, *, tz: ZoneInfo = TRADING_TZ) -> None:
        self.tz = tz
        self._lock = threading.Lock()
        self._last: Optional[LastExit] = None

    def record_exit(self, reason: str, when: datetime) -> None:
        reason = getattr(reason, "value", reason)
        with self._lock:
            self._last = LastExit(str(reason), when)

    def last_exit(self) -> Optional[LastExit]:
        with self._lock:
            return self._last

    def clear(self) -> None:
        with self._lock:
            self._last = None

    def blocks_entry(self, now: datetime, config: CooldownConfig) -> bool:
        """True while the last exit's reason is blocking and its candle is still open.

        Clears the remembered exit once that candle has closed.
        """

        if not config.enabled:
            return False
        with self._lock:
            last = self._last
            if last is None or last.reason not in config.blocking_reasons:
                return False
            minutes = config.timeframe_minutes()
            if candle_closed_since(last.time, now, minutes, self.tz):
                self._last = None
                log.info("cooldown.cleared", extra={"reason": last.reason, "timeframe_min": minutes})
                return False
        log.info(
            "cooldown.active",
            extra={"reason": last.reason, "exit_time": last.time.isoformat(), "timeframe_min": minutes},
        )
        return True


__all__ = ["EntryCooldown", "LastExit"]
