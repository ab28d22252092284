"""Ordered exit checks for an active order."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from core.config import ExitSettings
from core.interfaces import ExitSignalTracker, PriceMovementTracker
from services.execution.milestones import is_trailing_stop
from services.execution.types import ExitReason, Order
from services.strategy.types import IndicatorSnapshot, Tick

log = logging.getLogger("scalper.exit_policy")


@dataclass(slots=True, frozen=True)
class ExitDecision:
    reason: ExitReason
    detail: Optional[str] = None


class ExitPolicy:
    """Evaluate exit rules in priority order and return the first that fires.

    1. stop-loss / target (missing levels force an exit)
    2. strategy exit signal
    3. adverse price movement
    4. holding-time limit, only while no milestone has been reached
    """

    def __init__(
        self,
        *,
        exit_signals: Optional[ExitSignalTracker] = None,
        price_movement: Optional[PriceMovementTracker] = None,
    ) -> None:
        self.exit_signals = exit_signals
        self.price_movement = price_movement

    def evaluate(
        self,
        order: Order,
        current_price: float,
        tick: Tick,
        now: datetime,
        settings: ExitSettings,
        snapshot: Optional[IndicatorSnapshot] = None,
    ) -> Optional[ExitDecision]:
        if settings.stop_loss_target_exit_enabled:
            decision = self._stop_or_target(order, current_price)
            if decision is not None:
                return decision

        if settings.strategy_based_exit_enabled and self.exit_signals is not None:
            try:
                if self.exit_signals.should_exit(order, tick, snapshot):
                    return ExitDecision(ExitReason.EXIT_SIGNAL)
            except Exception as exc:  # noqa: BLE001 - a broken tracker is not an exit
                log.warning("exit.signal_failed", extra={"order_id": order.id, "error": str(exc)})

        if settings.price_movement_exit_enabled and self.price_movement is not None:
            try:
                detail = self.price_movement.check(order, current_price)
            except Exception as exc:  # noqa: BLE001 - a broken tracker is not an exit
                log.warning(
                    "exit.price_movement_failed", extra={"order_id": order.id, "error": str(exc)}
                )
                detail = None
            if detail:
                return ExitDecision(ExitReason.PRICE_MOVEMENT_EXIT, detail)

        if settings.time_based_exit_enabled and not order.any_milestone_hit():
            held = (now - order.entry_time).total_seconds()
            if held >= settings.max_holding_time_sec:
                return ExitDecision(
                    ExitReason.TIME_BASED_EXIT,
                    f"Held {held:.0f}s >= {settings.max_holding_time_sec}s without a milestone",
                )
        return None

    @staticmethod
    def _stop_or_target(order: Order, current_price: float) -> Optional[ExitDecision]:
        if order.stop_loss_price is None or order.target_price is None:
            return ExitDecision(ExitReason.FORCE_EXIT, "Missing stop-loss or target price")
        if current_price <= order.stop_loss_price:
            if is_trailing_stop(order):
                return ExitDecision(ExitReason.TRAILING_STOPLOSS_HIT)
            return ExitDecision(ExitReason.STOPLOSS_HIT)
        if current_price >= order.target_price:
            return ExitDecision(ExitReason.TARGET_HIT)
        return None


__all__ = ["ExitDecision", "ExitPolicy"]
