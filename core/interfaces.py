"""Core interfaces defining contracts for the scalping engine's collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing only
    from services.execution.types import ExitEvent, Order
    from services.strategy.types import Bar, Direction, IndicatorSnapshot, Tick


@dataclass(slots=True, frozen=True)
class EntryPricing:
    """Option contract chosen for an entry and the prices it was chosen at."""

    instrument_symbol: str
    instrument_token: int
    entry_price: float
    reference_index_price: float


class PricingOracle(ABC):
    """Interface for option selection and live premium lookup."""

    @abstractmethod
    def get_entry_pricing(self, direction: "Direction") -> Optional[EntryPricing]:
        """Return the contract and premium to enter at for ``direction``."""

    @abstractmethod
    def get_current_price(self, instrument_token: int) -> Optional[float]:
        """Return the latest premium of ``instrument_token`` if known."""


class RiskSizer(ABC):
    """Interface for stop-loss and target sizing in points."""

    def observe_bars(self, instrument_token: int, bars: Sequence["Bar"]) -> None:
        """Receive the latest candle history for ``instrument_token``; optional."""

    @abstractmethod
    def dynamic_stop_loss_points(self, instrument_token: int, reference_index_price: float) -> float:
        """Return the stop-loss distance for an entry taken at ``reference_index_price``."""

    @abstractmethod
    def dynamic_target_points(self, stop_loss_points: float) -> float:
        """Return the target distance given ``stop_loss_points``."""


class OrderRepository(ABC):
    """Interface for persisting orders."""

    @abstractmethod
    def save(self, order: "Order") -> None:
        """Persist the current state of ``order``."""

    @abstractmethod
    def find_active(self) -> List["Order"]:
        """Return orders whose latest persisted status is active."""


class ExitNotifier(ABC):
    """Receives exit events after an order is closed."""

    @abstractmethod
    def on_exit(self, event: "ExitEvent") -> None:
        """Handle a completed exit."""


class ExitSignalTracker(ABC):
    """Strategy-driven exit signal source."""

    @abstractmethod
    def should_exit(
        self, order: "Order", tick: "Tick", snapshot: Optional["IndicatorSnapshot"]
    ) -> bool:
        """Return True when the strategy wants ``order`` closed."""


class PriceMovementTracker(ABC):
    """Adverse price-movement exit source."""

    @abstractmethod
    def check(self, order: "Order", current_price: float) -> Optional[str]:
        """Return an explanation when ``order`` should be closed, else ``None``."""


__all__ = [
    "EntryPricing",
    "ExitNotifier",
    "ExitSignalTracker",
    "OrderRepository",
    "PriceMovementTracker",
    "PricingOracle",
    "RiskSizer",
]
