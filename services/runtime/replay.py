"""Offline replay of recorded ticks through the full decision pipeline.

Each line of the replay file is one JSON object::

    {"ts": "2024-01-01T04:00:00+00:00", "token": 256265, "index": 22000.0,
     "bars": [[open, high, low, close, volume], ...],
     "snapshot": {"one_min": {"ema_fast_above_slow": true}, "volume_surge_multiplier": 12.0},
     "quality": 8.0, "trend": "CALL", "scores": {"CALL": {"ema": 7.0}},
     "options": {"CALL": {"symbol": "NIFTY24JAN22000CE", "token": 1001, "price": 100.0}}}
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

import orjson

from core.clock import ManualClock
from core.config import StrategyConfig
from core.interfaces import EntryPricing, OrderRepository, PricingOracle
from core.settings import RuntimeSettings
from services.execution.store import InMemoryOrderRepository
from services.execution.types import ExitEvent, Order
from services.runtime.pipeline import TickInput, build_pipeline
from services.strategy.types import (
    Bar,
    Direction,
    FutureSignal,
    IndicatorSnapshot,
    Tick,
    TimeframeSignals,
)

log = logging.getLogger("scalper.replay")


class ReplayError(ValueError):
    """Raised when a replay file cannot be parsed."""


@dataclass(slots=True, frozen=True)
class OptionQuote:
    symbol: str
    token: int
    price: float


@dataclass(slots=True)
class ReplayFrame:
    item: TickInput
    options: Dict[Direction, OptionQuote] = field(default_factory=dict)


@dataclass(slots=True)
class ReplaySummary:
    frames: int = 0
    opened: List[Order] = field(default_factory=list)
    exits: List[ExitEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def total_profit(self) -> float:
        return sum(event.total_profit for event in self.exits)


class ReplayPricingOracle(PricingOracle):
    """Serves the option quotes recorded alongside each replayed tick."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._options: Dict[Direction, OptionQuote] = {}
        self._prices: Dict[int, float] = {}
        self._index_price = 0.0

    def update(self, options: Mapping[Direction, OptionQuote], index_price: float) -> None:
        with self._lock:
            self._index_price = index_price
            for direction, quote in options.items():
                self._options[direction] = quote
                self._prices[quote.token] = quote.price

    def get_entry_pricing(self, direction: Direction) -> Optional[EntryPricing]:
        with self._lock:
            quote = self._options.get(direction)
            if quote is None:
                return None
            return EntryPricing(quote.symbol, quote.token, quote.price, self._index_price)

    def get_current_price(self, instrument_token: int) -> Optional[float]:
        with self._lock:
            return self._prices.get(instrument_token)


def _snapshot(payload: Mapping[str, Any]) -> IndicatorSnapshot:
    frames = {
        name: TimeframeSignals(**payload.get(name, {}))
        for name in ("one_min", "five_min", "fifteen_min")
    }
    future = payload.get("future_signal")
    return IndicatorSnapshot(
        **frames,
        volume_surge_multiplier=payload.get("volume_surge_multiplier"),
        future_signal=FutureSignal(**future) if future is not None else None,
        atr=payload.get("atr"),
    )


def parse_frame(payload: Mapping[str, Any]) -> ReplayFrame:
    """Build a pipeline input and its option quotes from one decoded line."""

    timestamp = datetime.fromisoformat(payload["ts"])
    tick = Tick(int(payload["token"]), float(payload["index"]), timestamp)
    bars = [
        Bar(ts=float(i), open=o, high=h, low=lo, close=c, volume=v)
        for i, (o, h, lo, c, v) in enumerate(payload.get("bars", []))
    ]
    trend = payload.get("trend")
    scores = {
        Direction(direction): dict(values)
        for direction, values in (payload.get("scores") or {}).items()
    }
    options = {
        Direction(direction): OptionQuote(str(q["symbol"]), int(q["token"]), float(q["price"]))
        for direction, q in (payload.get("options") or {}).items()
    }
    item = TickInput(
        tick=tick,
        snapshot=_snapshot(payload.get("snapshot") or {}),
        bars=bars,
        quality_score=float(payload.get("quality", 0.0)),
        category_scores=scores,
        dominant_trend=Direction(trend) if trend else None,
    )
    return ReplayFrame(item=item, options=options)


def load_frames(path: Path) -> Iterator[ReplayFrame]:
    with Path(path).open("rb") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                yield parse_frame(orjson.loads(line))
            except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                raise ReplayError(f"{path}:{number}: {exc}") from exc


def run_replay(
    path: Path,
    settings: Optional[RuntimeSettings] = None,
    *,
    config: Optional[StrategyConfig] = None,
    repository: Optional[OrderRepository] = None,
    close_open: bool = True,
) -> ReplaySummary:
    """Replay ``path`` through a freshly built pipeline and collect opens and exits.

    Orders go to an in-memory store unless ``repository`` is given. An order
    still open after the last frame is force-closed when ``close_open`` is set.
    """

    frames = list(load_frames(path))
    oracle = ReplayPricingOracle()
    start = frames[0].item.tick.timestamp if frames else None
    clock = ManualClock(start)
    pipeline = build_pipeline(
        settings,
        pricing=oracle,
        repository=repository or InMemoryOrderRepository(),
        clock=clock,
        config=config,
    )
    summary = ReplaySummary()
    for frame in frames:
        if frame.item.tick.timestamp is not None:
            clock.set(frame.item.tick.timestamp)
        oracle.update(frame.options, frame.item.tick.last_price)
        outcome = pipeline.process(frame.item)
        summary.frames += 1
        if outcome.opened is not None:
            summary.opened.append(outcome.opened)
        if outcome.exit_event is not None:
            summary.exits.append(outcome.exit_event)
        if outcome.error is not None:
            summary.errors.append(outcome.error)
    if close_open:
        event = pipeline.lifecycle.force_exit("Replay finished")
        if event is not None:
            summary.exits.append(event)
    log.info(
        "replay.finished",
        extra={
            "frames": summary.frames,
            "opened": len(summary.opened),
            "exits": len(summary.exits),
            "profit": round(summary.total_profit, 2),
        },
    )
    return summary


__all__ = [
    "OptionQuote",
    "ReplayError",
    "ReplayFrame",
    "ReplayPricingOracle",
    "ReplaySummary",
    "load_frames",
    "parse_frame",
    "run_replay",
]
