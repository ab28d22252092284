"""Order lifecycle, milestone trailing stops, and order stores."""

from .lifecycle import LoggingExitNotifier, OrderLifecycleManager
from .store import InMemoryOrderRepository, JsonlOrderRepository
from .types import ExitEvent, ExitReason, Order, OrderStatusView

__all__ = [
    "OrderLifecycleManager",
    "LoggingExitNotifier",
    "InMemoryOrderRepository",
    "JsonlOrderRepository",
    "ExitEvent",
    "ExitReason",
    "Order",
    "OrderStatusView",
]
