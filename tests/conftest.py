import logging
import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from core.clock import ManualClock
from core.config import ConfigStore, StrategyConfig
from services.execution.lifecycle import OrderLifecycleManager
from services.execution.store import InMemoryOrderRepository
from services.telemetry.metrics import PipelineMetrics
from tests.fakes.collaborators import FakePricingOracle, FixedRiskSizer
from tests.fakes.configs import make_config

REPO_ROOT = Path(__file__).resolve().parents[1]
SAMPLE_CONFIG = REPO_ROOT / "config" / "strategy.yaml"


@pytest.fixture(scope="session", autouse=True)
def env_defaults():
    for key in (
        "RISK_PROFILE",
        "STOP_LOSS_PCT",
        "REWARD_RATIO",
        "MIN_STOP_LOSS_POINTS",
        "MAX_STOP_LOSS_POINTS",
        "MIN_TARGET_POINTS",
        "MAX_TARGET_POINTS",
    ):
        os.environ.pop(key, None)
    os.environ.setdefault("LOG_LEVEL", "DEBUG")
    return os.environ["LOG_LEVEL"]


@pytest.fixture(autouse=True)
def scalper_logger():
    """Undo handler changes made by code that configures logging."""

    logger = logging.getLogger("scalper")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)
    logger.setLevel(level)


@pytest.fixture
def sample_config_path() -> Path:
    return SAMPLE_CONFIG


@pytest.fixture
def clock() -> ManualClock:
    # 09:30 IST on a Monday
    return ManualClock(datetime(2024, 1, 1, 4, 0, tzinfo=timezone.utc))


@pytest.fixture
def config() -> StrategyConfig:
    return make_config()


@pytest.fixture
def config_store(config: StrategyConfig) -> ConfigStore:
    return ConfigStore(config)


@pytest.fixture
def pricing() -> FakePricingOracle:
    return FakePricingOracle(entry_price=100.0)


@pytest.fixture
def sizer() -> FixedRiskSizer:
    return FixedRiskSizer(stop_points=10.0, target_points=20.0)


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def metrics() -> PipelineMetrics:
    return PipelineMetrics()


@pytest.fixture
def lifecycle(config_store, pricing, sizer, repository, clock, metrics) -> OrderLifecycleManager:
    return OrderLifecycleManager(
        config_store=config_store,
        pricing=pricing,
        sizer=sizer,
        repository=repository,
        clock=clock,
        metrics=metrics,
        price_cache_ttl=5.0,
    )
