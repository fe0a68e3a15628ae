"""
Configuration — environment variables and .env via pydantic-settings.

Durations accept Go-style strings ("24h", "1h30m", "90s", "500ms") or plain
seconds ("3600").
"""

from __future__ import annotations

import math
import re
from datetime import timedelta
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from idempay.idempotency import Policy
from idempay.payments import Currency

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str | float | int | timedelta) -> timedelta:
    """
    Parse "1h30m" / "500ms" / "90" into a timedelta.

    Raises ValueError on anything else.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = value.strip()
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            raise ValueError(f"invalid duration: {value!r}")
        return timedelta(seconds=seconds)

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if not text or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=total)


def parse_currencies(raw: str) -> frozenset[Currency]:
    codes = [c.strip().upper() for c in raw.split(",") if c.strip()]
    if not codes:
        raise ValueError("at least one currency must be supported")
    try:
        return frozenset(Currency(code) for code in codes)
    except ValueError as e:
        raise ValueError(f"unknown currency in {raw!r}") from e


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8080, alias="APP_PORT")

    database_url: str = Field(default="sqlite+aiosqlite:///./idempay.db", alias="DATABASE_URL")

    idempotency_key_ttl: timedelta = Field(default=timedelta(hours=24), alias="IDEMPOTENCY_KEY_TTL")
    cleanup_interval: timedelta = Field(default=timedelta(hours=1), alias="CLEANUP_INTERVAL")
    # 0 waits forever
    lock_timeout: timedelta = Field(default=timedelta(seconds=10), alias="LOCK_TIMEOUT")
    graceful_timeout: timedelta = Field(default=timedelta(seconds=5), alias="GRACEFUL_TIMEOUT")

    processor_min_delay_ms: int = Field(default=50, alias="PROCESSOR_MIN_DELAY_MS")
    processor_max_delay_ms: int = Field(default=200, alias="PROCESSOR_MAX_DELAY_MS")

    supported_currencies_raw: str = Field(default="IDR,THB,VND,PHP", alias="SUPPORTED_CURRENCIES")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator(
        "idempotency_key_ttl",
        "cleanup_interval",
        "lock_timeout",
        "graceful_timeout",
        mode="before",
    )
    @classmethod
    def _duration(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @field_validator("idempotency_key_ttl", "cleanup_interval")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("must be positive")
        return value

    @field_validator("supported_currencies_raw")
    @classmethod
    def _known_currencies(cls, value: str) -> str:
        parse_currencies(value)
        return value

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @property
    def supported_currencies(self) -> frozenset[Currency]:
        return parse_currencies(self.supported_currencies_raw)

    def policy(self) -> Policy:
        """Creation policy built from TTL, lock timeout and currencies."""
        policy = (
            Policy()
            .with_ttl(delta=self.idempotency_key_ttl)
            .with_currencies(self.supported_currencies)
        )
        if self.lock_timeout > timedelta(0):
            return policy.with_lock_timeout(delta=self.lock_timeout)
        return policy.with_lock_timeout()


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = (
    "parse_duration",
    "parse_currencies",
    "Settings",
    "get_settings",
)
