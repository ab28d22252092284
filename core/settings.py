"""Runtime settings read from the process environment."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeSettings(BaseSettings):
    """Process-level knobs that do not belong in the strategy config file."""

    model_config = SettingsConfigDict(env_file=None, extra="ignore", case_sensitive=False)

    log_level: str = Field(default="INFO")
    log_path: Optional[Path] = Field(default=None)
    strategy_config_path: Path = Field(default=Path("config/strategy.yaml"))
    order_store_path: Optional[Path] = Field(default=None)
    trading_timezone: str = Field(default="Asia/Kolkata")
    regime_cache_ttl_sec: float = Field(default=60.0, gt=0)
    price_cache_ttl_sec: float = Field(default=1.0, ge=0)

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @field_validator("trading_timezone")
    @classmethod
    def _known_zone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value


@lru_cache(maxsize=1)
def get_settings() -> RuntimeSettings:
    """Return cached settings instance loaded from environment variables."""

    return RuntimeSettings()


__all__ = ["RuntimeSettings", "get_settings"]
