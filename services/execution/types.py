"""Order, milestone, and exit dataclasses for the lifecycle manager."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from services.strategy.types import Direction


class OrderType(str, Enum):
    CALL_BUY = "CALL_BUY"
    PUT_BUY = "PUT_BUY"

    @classmethod
    def for_direction(cls, direction: Direction) -> "OrderType":
        return cls.CALL_BUY if direction is Direction.CALL else cls.PUT_BUY


class OrderStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXITED = "EXITED"


class ExitReason(str, Enum):
    STOPLOSS_HIT = "STOPLOSS_HIT"
    TRAILING_STOPLOSS_HIT = "TRAILING_STOPLOSS_HIT"
    TARGET_HIT = "TARGET_HIT"
    EXIT_SIGNAL = "EXIT_SIGNAL"
    PRICE_MOVEMENT_EXIT = "PRICE_MOVEMENT_EXIT"
    TIME_BASED_EXIT = "TIME_BASED_EXIT"
    FORCE_EXIT = "FORCE_EXIT"
    MAX_DAY_PROFIT_REACHED = "MAX_DAY_PROFIT_REACHED"
    MAX_DAY_LOSS_REACHED = "MAX_DAY_LOSS_REACHED"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(slots=True)
class Milestone:
    """One rung of the trailing-stop ladder."""

    milestone_number: int
    points: float
    target_price: float
    target_hit: bool = False
    profit_at_milestone: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "milestone_number": self.milestone_number,
            "points": self.points,
            "target_price": self.target_price,
            "target_hit": self.target_hit,
            "profit_at_milestone": self.profit_at_milestone,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Milestone":
        return cls(
            milestone_number=int(payload["milestone_number"]),
            points=float(payload["points"]),
            target_price=float(payload["target_price"]),
            target_hit=bool(payload.get("target_hit", False)),
            profit_at_milestone=float(payload.get("profit_at_milestone", 0.0)),
        )


@dataclass(slots=True)
class Order:
    """A single option position from entry to exit."""

    id: str
    order_type: OrderType
    trading_symbol: str
    instrument_token: int
    entry_price: float
    entry_index_price: float
    quantity: int
    entry_time: datetime
    stop_loss_price: Optional[float]
    target_price: Optional[float]
    status: OrderStatus = OrderStatus.ACTIVE
    milestones: List[Milestone] = field(default_factory=list)
    milestone_history: List[str] = field(default_factory=list)
    min_index_price: Optional[float] = None
    max_index_price: Optional[float] = None
    last_price: Optional[float] = None
    last_index_price: Optional[float] = None
    entry_scenario: Optional[str] = None
    entry_confidence: float = 0.0
    entry_quality_score: float = 0.0
    entry_category_scores: Dict[str, float] = field(default_factory=dict)
    exit_price: Optional[float] = None
    exit_index_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_reason: Optional[ExitReason] = None
    total_points: Optional[float] = None
    total_profit: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.status is OrderStatus.ACTIVE

    def any_milestone_hit(self) -> bool:
        return any(m.target_hit for m in self.milestones)

    def track_index_price(self, index_price: float) -> None:
        self.last_index_price = index_price
        if self.min_index_price is None or index_price < self.min_index_price:
            self.min_index_price = index_price
        if self.max_index_price is None or index_price > self.max_index_price:
            self.max_index_price = index_price

    def mark_exited(
        self,
        reason: ExitReason,
        exit_price: float,
        exit_index_price: Optional[float],
        exit_time: datetime,
    ) -> None:
        """Transition to EXITED and compute realised points and profit."""

        if not self.is_active:
            raise ValueError(f"order {self.id} is already {self.status.value}")
        self.status = OrderStatus.EXITED
        self.exit_reason = reason
        self.exit_price = exit_price
        self.exit_index_price = exit_index_price
        self.exit_time = exit_time
        self.total_points = exit_price - self.entry_price
        self.total_profit = self.total_points * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_type": self.order_type.value,
            "trading_symbol": self.trading_symbol,
            "instrument_token": self.instrument_token,
            "entry_price": self.entry_price,
            "entry_index_price": self.entry_index_price,
            "quantity": self.quantity,
            "entry_time": _iso(self.entry_time),
            "stop_loss_price": self.stop_loss_price,
            "target_price": self.target_price,
            "status": self.status.value,
            "milestones": [m.to_dict() for m in self.milestones],
            "milestone_history": list(self.milestone_history),
            "min_index_price": self.min_index_price,
            "max_index_price": self.max_index_price,
            "last_price": self.last_price,
            "last_index_price": self.last_index_price,
            "entry_scenario": self.entry_scenario,
            "entry_confidence": self.entry_confidence,
            "entry_quality_score": self.entry_quality_score,
            "entry_category_scores": dict(self.entry_category_scores),
            "exit_price": self.exit_price,
            "exit_index_price": self.exit_index_price,
            "exit_time": _iso(self.exit_time),
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "total_points": self.total_points,
            "total_profit": self.total_profit,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Order":
        exit_reason = payload.get("exit_reason")
        return cls(
            id=str(payload["id"]),
            order_type=OrderType(payload["order_type"]),
            trading_symbol=str(payload["trading_symbol"]),
            instrument_token=int(payload["instrument_token"]),
            entry_price=float(payload["entry_price"]),
            entry_index_price=float(payload.get("entry_index_price") or 0.0),
            quantity=int(payload["quantity"]),
            entry_time=_parse_dt(payload["entry_time"]),
            stop_loss_price=payload.get("stop_loss_price"),
            target_price=payload.get("target_price"),
            status=OrderStatus(payload.get("status", OrderStatus.ACTIVE.value)),
            milestones=[Milestone.from_dict(m) for m in payload.get("milestones", [])],
            milestone_history=list(payload.get("milestone_history", [])),
            min_index_price=payload.get("min_index_price"),
            max_index_price=payload.get("max_index_price"),
            last_price=payload.get("last_price"),
            last_index_price=payload.get("last_index_price"),
            entry_scenario=payload.get("entry_scenario"),
            entry_confidence=float(payload.get("entry_confidence") or 0.0),
            entry_quality_score=float(payload.get("entry_quality_score") or 0.0),
            entry_category_scores={
                str(k): float(v) for k, v in (payload.get("entry_category_scores") or {}).items()
            },
            exit_price=payload.get("exit_price"),
            exit_index_price=payload.get("exit_index_price"),
            exit_time=_parse_dt(payload.get("exit_time")),
            exit_reason=ExitReason(exit_reason) if exit_reason else None,
            total_points=payload.get("total_points"),
            total_profit=payload.get("total_profit"),
        )


@dataclass(slots=True, frozen=True)
class ExitEvent:
    """Emitted once per closed order."""

    order_id: str
    reason: ExitReason
    exit_price: float
    exit_index_price: Optional[float]
    exit_time: datetime
    total_points: float
    total_profit: float
    detail: Optional[str] = None


@dataclass(slots=True, frozen=True)
class OrderStatusView:
    """Read-only summary of an active order for monitoring."""

    order_id: str
    trading_symbol: str
    order_type: OrderType
    entry_price: float
    current_price: Optional[float]
    stop_loss_price: Optional[float]
    target_price: Optional[float]
    unrealized_points: Optional[float]
    unrealized_profit: Optional[float]
    milestones: Tuple[Milestone, ...]
    milestone_history: Tuple[str, ...]
    holding_seconds: float
    # the quote is older than the price cache TTL
    price_stale: bool = False

    @property
    def milestones_hit(self) -> int:
        return sum(1 for m in self.milestones if m.target_hit)

    @property
    def duration_minutes(self) -> float:
        return self.holding_seconds / 60.0


__all__ = [
    "ExitEvent",
    "ExitReason",
    "Milestone",
    "Order",
    "OrderStatus",
    "OrderStatusView",
    "OrderType",
]
