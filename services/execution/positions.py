"""Registry of the single active order."""

from __future__ import annotations

import copy
import threading
from typing import Callable, List, Optional, TypeVar

from services.execution.types import Order

T = TypeVar("T")


class PositionManager:
    """Holds at most one active order; every read and write goes through one lock.

    Readers get deep copies so they never observe a half-applied tick.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._active: Optional[Order] = None

    def has_active_order(self) -> bool:
        with self._lock:
            return self._active is not None

    def try_open(self, factory: Callable[[], Optional[Order]]) -> Optional[Order]:
        """Install the order built by ``factory`` unless one is already active.

        The check and the install happen under the same lock acquisition.
        """

        with self._lock:
            if self._active is not None:
                return None
            order = factory()
            if order is None:
                return None
            self._active = order
            return copy.deepcopy(order)

    def mutate(self, fn: Callable[[Order], T]) -> Optional[T]:
        """Apply ``fn`` to the live active order under the lock."""

        with self._lock:
            if self._active is None:
                return None
            return fn(self._active)

    def try_close(self, order_id: str, fn: Callable[[Order], None]) -> Optional[Order]:
        """Apply the exit transition ``fn`` and clear the slot in one step."""

        with self._lock:
            if self._active is None or self._active.id != order_id:
                return None
            order = self._active
            fn(order)
            self._active = None
            return copy.deepcopy(order)

    def restore(self, order: Order) -> bool:
        with self._lock:
            if self._active is not None or not order.is_active:
                return False
            self._active = order
            return True

    def active_order(self) -> Optional[Order]:
        with self._lock:
            return copy.deepcopy(self._active) if self._active is not None else None

    def snapshot(self) -> List[Order]:
        with self._lock:
            return [copy.deepcopy(self._active)] if self._active is not None else []


__all__ = ["PositionManager"]
