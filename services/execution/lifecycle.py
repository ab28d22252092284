"""Order lifecycle: entry, per-tick milestone/exit processing, and exit recording."""

from __future__ import annotations

import copy
import logging
import math
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from core.cache import TTLCache
from core.clock import Clock, SystemClock
from core.config import ConfigStore, StrategyConfig
from core.interfaces import ExitNotifier, OrderRepository, PricingOracle, RiskSizer
from services.execution.exit_policy import ExitDecision, ExitPolicy
from services.execution.milestones import advance_milestones, build_ladder
from services.execution.positions import PositionManager
from services.execution.types import (
    ExitEvent,
    ExitReason,
    Milestone,
    Order,
    OrderStatusView,
    OrderType,
)
from services.risk.cooldown import EntryCooldown
from services.risk.daily_limits import DailyPnLTracker
from services.strategy.types import EntryDecision, IndicatorSnapshot, Tick
from services.telemetry.metrics import PipelineMetrics


class LoggingExitNotifier(ExitNotifier):
    """Default notifier that writes each exit to the log."""

    def __init__(self) -> None:
        self.log = logging.getLogger("scalper.notify")

    def on_exit(self, event: ExitEvent) -> None:
        self.log.info(
            "notify.exit",
            extra={
                "order_id": event.order_id,
                "reason": event.reason.value,
                "points": round(event.total_points, 2),
                "profit": round(event.total_profit, 2),
            },
        )


class OrderLifecycleManager:
    """Owns the active order from entry through milestones to exit.

    Tick-driven work runs on the tick's own timestamp so replays age orders
    and cooldowns the same way live sessions do; calls without a tick use
    the injected clock.
    """

    def __init__(
        self,
        *,
        config_store: ConfigStore,
        pricing: PricingOracle,
        sizer: RiskSizer,
        repository: OrderRepository,
        positions: Optional[PositionManager] = None,
        cooldown: Optional[EntryCooldown] = None,
        daily_limits: Optional[DailyPnLTracker] = None,
        exit_policy: Optional[ExitPolicy] = None,
        notifiers: Iterable[ExitNotifier] = (),
        clock: Optional[Clock] = None,
        metrics: Optional[PipelineMetrics] = None,
        price_cache_ttl: float = 1.0,
    ) -> None:
        self.config_store = config_store
        self.pricing = pricing
        self.sizer = sizer
        self.repository = repository
        self.positions = positions or PositionManager()
        self.cooldown = cooldown or EntryCooldown()
        self.daily_limits = daily_limits or DailyPnLTracker(tz=self.cooldown.tz)
        self.exit_policy = exit_policy or ExitPolicy()
        self.notifiers: List[ExitNotifier] = list(notifiers)
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.log = logging.getLogger("scalper.lifecycle")
        self._price_cache: TTLCache[float] = TTLCache(
            price_cache_ttl, maxsize=64, timer=self.clock.monotonic
        )

    def _tick_time(self, tick: Tick) -> datetime:
        return tick.timestamp if tick.timestamp is not None else self.clock.now()

    # ------------------------------------------------------------------
    # Entry
    def on_entry_decision(
        self,
        decision: EntryDecision,
        tick: Tick,
        *,
        config: Optional[StrategyConfig] = None,
    ) -> Optional[Order]:
        """Open an order for a positive decision unless an order, cooldown, or day limit blocks it."""

        if not decision.should_entry or decision.market_direction is None:
            return None
        cfg = config if config is not None else self.config_store.current()
        try:
            return self._open(decision, tick, cfg)
        except Exception as exc:  # noqa: BLE001 - a failed entry leaves the slot empty
            self.log.exception("entry.failed", extra={"error": str(exc)})
            self._blocked("error")
            return None

    def _open(self, decision: EntryDecision, tick: Tick, cfg: StrategyConfig) -> Optional[Order]:
        now = self._tick_time(tick)

        if self.cooldown.blocks_entry(now, cfg.cooldown):
            self._blocked("cooldown")
            return None
        if self.positions.has_active_order():
            self._blocked("active_order")
            return None
        breach = self.daily_limits.check(now, cfg.daily_limits)
        if breach is not None:
            self.log.info(
                "entry.daily_limit",
                extra={"reason": breach.reason, "day_pnl": round(breach.day_pnl, 2)},
            )
            self._blocked("daily_limit")
            return None

        direction = decision.market_direction
        try:
            pricing = self.pricing.get_entry_pricing(direction)
        except Exception as exc:  # noqa: BLE001 - pricing outages skip the entry
            self.log.error("entry.pricing_failed", extra={"direction": direction.value, "error": str(exc)})
            self._blocked("pricing_error")
            return None
        if pricing is None or not (math.isfinite(pricing.entry_price) and pricing.entry_price > 0):
            self.log.warning("entry.no_pricing", extra={"direction": direction.value})
            self._blocked("no_pricing")
            return None

        stop_points = self.sizer.dynamic_stop_loss_points(
            tick.instrument_token, pricing.reference_index_price
        )
        target_points = self.sizer.dynamic_target_points(stop_points)
        if not (_positive(stop_points) and _positive(target_points)):
            self.log.warning(
                "entry.invalid_sizing",
                extra={"stop_points": stop_points, "target_points": target_points},
            )
            self._blocked("invalid_sizing")
            return None

        def build() -> Order:
            entry = pricing.entry_price
            ladder: List[Milestone] = []
            if cfg.exit_settings.milestone_based_exit_enabled:
                ladder = build_ladder(entry, target_points, cfg.milestones.step_points)
            return Order(
                id=uuid.uuid4().hex,
                order_type=OrderType.for_direction(direction),
                trading_symbol=pricing.instrument_symbol,
                instrument_token=pricing.instrument_token,
                entry_price=entry,
                entry_index_price=pricing.reference_index_price,
                quantity=cfg.risk.quantity,
                entry_time=now,
                stop_loss_price=max(0.0, entry - stop_points),
                target_price=entry + target_points,
                milestones=ladder,
                min_index_price=tick.last_price,
                max_index_price=tick.last_price,
                last_price=entry,
                last_index_price=tick.last_price,
                entry_scenario=decision.scenario_name,
                entry_confidence=decision.confidence,
                entry_quality_score=decision.quality_score,
                entry_category_scores=dict(decision.category_scores),
            )

        opened = self.positions.try_open(build)
        if opened is None:
            self._blocked("active_order")
            return None
        self._persist(opened)
        if self.metrics is not None:
            self.metrics.inc("orders_opened")
        self.log.info(
            "order.opened",
            extra={
                "order_id": opened.id,
                "order_type": opened.order_type.value,
                "symbol": opened.trading_symbol,
                "entry_price": opened.entry_price,
                "stop_loss": opened.stop_loss_price,
                "target": opened.target_price,
                "milestones": len(opened.milestones),
                "scenario": opened.entry_scenario,
            },
        )
        return opened

    # ------------------------------------------------------------------
    # Per-tick processing
    def on_tick(
        self,
        tick: Tick,
        snapshot: Optional[IndicatorSnapshot] = None,
        *,
        config: Optional[StrategyConfig] = None,
    ) -> Optional[ExitEvent]:
        """Advance milestones and run the exit checks for the active order."""

        cfg = config if config is not None else self.config_store.current()
        try:
            return self._process_tick(tick, snapshot, cfg)
        except Exception as exc:  # noqa: BLE001 - the order stays active for the next tick
            self.log.exception("order.tick_failed", extra={"error": str(exc)})
            if self.metrics is not None:
                self.metrics.inc("tick_errors")
            return None

    def _process_tick(
        self, tick: Tick, snapshot: Optional[IndicatorSnapshot], cfg: StrategyConfig
    ) -> Optional[ExitEvent]:
        active = self.positions.active_order()
        if active is None:
            return None
        now = self._tick_time(tick)
        price = self._fetch_price(active.instrument_token)
        if price is None:
            self.log.warning("order.price_unavailable", extra={"order_id": active.id})
            return None

        def step(order: Order) -> Tuple[List[Milestone], Order]:
            order.track_index_price(tick.last_price)
            order.last_price = price
            hit = advance_milestones(order, price, now)
            return hit, copy.deepcopy(order)

        # Milestones ratchet under the lock; the exit checks call out to
        # collaborators and run on the copy.
        result = self.positions.mutate(step)
        if result is None:
            return None
        hit, order = result
        if hit:
            for milestone in hit:
                self.log.info(
                    "milestone.hit",
                    extra={
                        "order_id": order.id,
                        "milestone": milestone.milestone_number,
                        "price": price,
                        "stop_loss": order.stop_loss_price,
                    },
                )
            if self.metrics is not None:
                self.metrics.inc("milestones_hit", len(hit))

        decision = self.exit_policy.evaluate(order, price, tick, now, cfg.exit_settings, snapshot)
        if decision is None:
            decision = self._daily_limit_exit(order, price, now, cfg)
        if decision is None:
            if hit:
                self._persist(order)
            return None
        return self._close(order.id, decision, price, tick.last_price, now)

    def _daily_limit_exit(
        self, order: Order, price: float, now: datetime, cfg: StrategyConfig
    ) -> Optional[ExitDecision]:
        unrealized = (price - order.entry_price) * order.quantity
        breach = self.daily_limits.check(now, cfg.daily_limits, unrealized)
        if breach is None:
            return None
        return ExitDecision(ExitReason(breach.reason), breach.detail)

    def force_exit(self, detail: str = "Manual exit") -> Optional[ExitEvent]:
        """Close the active order immediately at the best known price."""

        active = self.positions.active_order()
        if active is None:
            return None
        price = self._fetch_price(active.instrument_token)
        if price is None:
            price = active.last_price if active.last_price is not None else active.entry_price
            self.log.warning("order.force_exit_no_price", extra={"order_id": active.id})
        decision = ExitDecision(ExitReason.FORCE_EXIT, detail)
        return self._close(active.id, decision, price, active.last_index_price, self.clock.now())

    def _close(
        self,
        order_id: str,
        decision: ExitDecision,
        price: float,
        index_price: Optional[float],
        now: datetime,
    ) -> Optional[ExitEvent]:
        closed = self.positions.try_close(
            order_id, lambda o: o.mark_exited(decision.reason, price, index_price, now)
        )
        if closed is None:
            return None
        self._persist(closed)
        self.cooldown.record_exit(decision.reason.value, now)
        self.daily_limits.record_exit(closed.total_profit or 0.0, now)
        self._price_cache.invalidate(closed.instrument_token)
        event = ExitEvent(
            order_id=closed.id,
            reason=decision.reason,
            exit_price=price,
            exit_index_price=index_price,
            exit_time=now,
            total_points=closed.total_points or 0.0,
            total_profit=closed.total_profit or 0.0,
            detail=decision.detail,
        )
        if self.metrics is not None:
            self.metrics.inc_labeled("exits", decision.reason.value)
        self.log.info(
            "order.exit",
            extra={
                "order_id": closed.id,
                "reason": decision.reason.value,
                "detail": decision.detail,
                "exit_price": price,
                "points": event.total_points,
                "profit": event.total_profit,
            },
        )
        for notifier in self.notifiers:
            try:
                notifier.on_exit(event)
            except Exception as exc:  # noqa: BLE001 - a notifier must not undo an exit
                self.log.error("notify.failed", extra={"order_id": closed.id, "error": str(exc)})
        return event

    # ------------------------------------------------------------------
    # Recovery and monitoring
    def restore(self) -> Optional[Order]:
        """Reinstate the most recent persisted active order after a restart."""

        try:
            candidates = self.repository.find_active()
        except Exception as exc:  # noqa: BLE001 - start flat if storage is unreadable
            self.log.error("order.restore_failed", extra={"error": str(exc)})
            return None
        if not candidates:
            return None
        candidates.sort(key=lambda o: o.entry_time)
        order = candidates[-1]
        if len(candidates) > 1:
            self.log.warning(
                "order.restore_multiple",
                extra={"count": len(candidates), "kept": order.id},
            )
        if not self.positions.restore(order):
            return None
        self.log.info("order.restored", extra={"order_id": order.id, "symbol": order.trading_symbol})
        return self.positions.active_order()

    def active_orders(self) -> List[Order]:
        return self.positions.snapshot()

    def order_status(self, order_id: Optional[str] = None) -> Optional[OrderStatusView]:
        """Live view of the active order, optionally only if it is ``order_id``.

        Never calls the pricing oracle: the price is the cached quote while it
        is fresh, else the last quote seen on a tick (flagged stale).
        """

        order = self.positions.active_order()
        if order is None or (order_id is not None and order.id != order_id):
            return None
        price = self._price_cache.get(order.instrument_token)
        stale = False
        if price is None and order.last_price is not None:
            price, stale = order.last_price, True
        points = price - order.entry_price if price is not None else None
        return OrderStatusView(
            order_id=order.id,
            trading_symbol=order.trading_symbol,
            order_type=order.order_type,
            entry_price=order.entry_price,
            current_price=price,
            stop_loss_price=order.stop_loss_price,
            target_price=order.target_price,
            unrealized_points=points,
            unrealized_profit=points * order.quantity if points is not None else None,
            milestones=tuple(order.milestones),
            milestone_history=tuple(order.milestone_history),
            holding_seconds=max(0.0, (self.clock.now() - order.entry_time).total_seconds()),
            price_stale=stale,
        )

    # ------------------------------------------------------------------
    def _fetch_price(self, token: int) -> Optional[float]:
        try:
            price = self.pricing.get_current_price(token)
        except Exception as exc:  # noqa: BLE001 - treated as a missing quote
            self.log.error("pricing.current_failed", extra={"token": token, "error": str(exc)})
            return None
        if price is None or not math.isfinite(price) or price < 0:
            return None
        self._price_cache.set(token, price)
        return price

    def _persist(self, order: Order) -> None:
        try:
            self.repository.save(order)
        except Exception as exc:  # noqa: BLE001 - state stays authoritative in memory
            self.log.error("order.persist_failed", extra={"order_id": order.id, "error": str(exc)})

    def _blocked(self, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.inc_labeled("entries_blocked", reason)
        self.log.debug("entry.blocked", extra={"reason": reason})


def _positive(value: float) -> bool:
    return value is not None and math.isfinite(value) and value > 0


__all__ = ["LoggingExitNotifier", "OrderLifecycleManager"]
