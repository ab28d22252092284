"""Milestone ladder construction and trailing stop-loss ratcheting."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import List

from services.execution.types import Milestone, Order

log = logging.getLogger("scalper.milestones")

MAX_MILESTONES = 100
_EPSILON = 1e-9


def build_ladder(entry_price: float, total_target_points: float, step_points: float) -> List[Milestone]:
    """Split the target distance into ``step_points`` rungs, clipping the last to the target.

    >>> [m.points for m in build_ladder(100.0, 50.0, 20.0)]
    [20.0, 40.0, 50.0]
    """

    if not (total_target_points > 0 and step_points > 0):
        log.warning(
            "milestones.invalid_ladder",
            extra={"target_points": total_target_points, "step_points": step_points},
        )
        return []
    ladder: List[Milestone] = []
    number = 1
    while number <= MAX_MILESTONES:
        points = number * step_points
        if points >= total_target_points - _EPSILON:
            points = total_target_points
        ladder.append(
            Milestone(milestone_number=number, points=points, target_price=entry_price + points)
        )
        if points >= total_target_points:
            break
        number += 1
    return ladder


def trailing_stop_for(order: Order, milestone: Milestone) -> float:
    """Stop-loss that applies once ``milestone`` is hit: one rung behind it."""

    if milestone.milestone_number <= 1:
        return order.entry_price
    return order.milestones[milestone.milestone_number - 2].target_price


def advance_milestones(order: Order, price: float, when: datetime) -> List[Milestone]:
    """Mark every newly reached rung and ratchet the stop-loss; returns the rungs hit now.

    Idempotent for a repeated price; the stop-loss never moves down.
    """

    hit: List[Milestone] = []
    for milestone in order.milestones:
        if milestone.target_hit or price < milestone.target_price:
            continue
        milestone.target_hit = True
        milestone.profit_at_milestone = milestone.points
        order.milestone_history.append(
            f"Target milestone {milestone.milestone_number} hit at price {price:.2f}, "
            f"profit {milestone.points:.2f} ({when.isoformat()})"
        )
        new_stop = trailing_stop_for(order, milestone)
        current = order.stop_loss_price
        if current is None or new_stop > current:
            order.stop_loss_price = new_stop
            order.milestone_history.append(
                f"Stop loss moved to {new_stop:.2f} after milestone {milestone.milestone_number}"
            )
        hit.append(milestone)
    return hit


def is_trailing_stop(order: Order, tolerance: float = 1e-6) -> bool:
    """True when the stop-loss sits at the entry price or at a milestone price."""

    stop = order.stop_loss_price
    if stop is None:
        return False
    if math.isclose(stop, order.entry_price, abs_tol=tolerance):
        return True
    return any(math.isclose(stop, m.target_price, abs_tol=tolerance) for m in order.milestones)


__all__ = ["MAX_MILESTONES", "advance_milestones", "build_ladder", "is_trailing_stop", "trailing_stop_for"]
