"""Order persistence backends."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

import orjson

from core.interfaces import OrderRepository
from services.execution.types import Order

log = logging.getLogger("scalper.store")


class InMemoryOrderRepository(OrderRepository):
    """Simple in-memory implementation for tests and local dry-runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: Dict[str, Dict] = {}

    def save(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = order.to_dict()

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            payload = self._orders.get(order_id)
        return Order.from_dict(payload) if payload is not None else None

    def find_active(self) -> List[Order]:
        with self._lock:
            payloads = list(self._orders.values())
        return [Order.from_dict(p) for p in payloads if p.get("status") == "ACTIVE"]

    def all(self) -> List[Order]:
        with self._lock:
            payloads = list(self._orders.values())
        return [Order.from_dict(p) for p in payloads]


class JsonlOrderRepository(OrderRepository):
    """Append-only NDJSON journal; the latest record for an id wins on read."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def save(self, order: Order) -> None:
        line = orjson.dumps(order.to_dict()) + b"\n"
        with self._lock:
            with self.path.open("ab") as handle:
                handle.write(line)

    def _latest(self) -> Dict[str, Dict]:
        latest: Dict[str, Dict] = {}
        if not self.path.exists():
            return latest
        with self._lock:
            raw = self.path.read_bytes()
        for lineno, line in enumerate(raw.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                payload = orjson.loads(line)
            except orjson.JSONDecodeError:
                log.warning("store.corrupt_line", extra={"path": str(self.path), "line": lineno})
                continue
            if isinstance(payload, dict) and "id" in payload:
                latest[str(payload["id"])] = payload
        return latest

    def get(self, order_id: str) -> Optional[Order]:
        payload = self._latest().get(order_id)
        return Order.from_dict(payload) if payload is not None else None

    def find_active(self) -> List[Order]:
        return [Order.from_dict(p) for p in self._latest().values() if p.get("status") == "ACTIVE"]

    def all(self) -> List[Order]:
        return [Order.from_dict(p) for p in self._latest().values()]


__all__ = ["InMemoryOrderRepository", "JsonlOrderRepository"]
