"""In-process counters and tick latency for the decision pipeline."""

from __future__ import annotations

import math
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Iterator, Optional


def _percentile(sorted_values: Deque[float] | list[float], quantile: float) -> Optional[float]:
    """Return the ``quantile`` (0-1) for ``sorted_values`` using linear interpolation."""

    if not sorted_values:
        return None
    values = list(sorted_values)
    if len(values) == 1:
        return float(values[0])
    q = min(max(quantile, 0.0), 1.0)
    pos = (len(values) - 1) * q
    lower = math.floor(pos)
    upper = math.ceil(pos)
    if lower == upper:
        return float(values[int(pos)])
    weight = pos - lower
    return float(values[lower]) + (float(values[upper]) - float(values[lower])) * weight


def _normalize_label(label: Any) -> str:
    text = str(label).strip().lower() if label is not None else ""
    return text.replace(" ", "_") or "unknown"


class PipelineMetrics:
    """Thread-safe aggregator shared by the pipeline and the lifecycle manager."""

    def __init__(self, *, max_latency_samples: int = 512) -> None:
        self._lock = threading.Lock()
        self._latency_samples: Deque[float] = deque(maxlen=max_latency_samples)
        self._counters: Dict[str, int] = defaultdict(int)
        self._labeled: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def inc(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] += amount

    def inc_labeled(self, name: str, label: Any) -> None:
        key = _normalize_label(label)
        with self._lock:
            self._labeled[name][key] += 1

    def observe_tick_latency(self, latency_ms: float) -> None:
        with self._lock:
            self._latency_samples.append(max(float(latency_ms), 0.0))

    @contextmanager
    def time_tick(self) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe_tick_latency((time.perf_counter() - start) * 1000.0)

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def labeled(self, name: str) -> Dict[str, int]:
        with self._lock:
            return dict(self._labeled.get(name, {}))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            latencies = sorted(self._latency_samples)
            counters = dict(self._counters)
            labeled = {name: dict(values) for name, values in self._labeled.items()}
        return {
            "tick_latency_ms": {
                "p50": _percentile(latencies, 0.5),
                "p95": _percentile(latencies, 0.95),
                "count": len(latencies),
            },
            "counters": counters,
            "labeled": labeled,
        }


__all__ = ["PipelineMetrics"]
