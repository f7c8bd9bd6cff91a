"""Rate schemas and source health monitoring.

This module implements:
- Pydantic schemas for the rate value object and its stored projections
- SourceHealthMonitor (Watchdog) reporting sources that keep failing

A stored rate is only ever replaced by a fully validated one, so every value
that reaches the store passes through ``Rate`` first.
"""

import re
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config.settings import GlobalConfig, get_config
from dollar_rates.logger import get_logger

log = get_logger(__name__)

_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_GROUPED_NUMBER_RE = re.compile(r"\d{1,3}(?:,\d{3})+(?:\.\d+)?")


def parse_rate_value(value: Any) -> Decimal:
    """Convert a captured rate value into a positive Decimal.

    Handles:
    - "58.50" -> Decimal("58.50")
    - " 59.00 " -> Decimal("59.00")
    - "1,234.50" -> Decimal("1234.50") (comma thousands separator)
    - 58.7 / 58 (JSON numbers)

    Args:
        value: Raw value from a regex capture or a JSON field.

    Returns:
        The parsed positive Decimal.

    Raises:
        ValueError: If the value is not a positive number.
    """
    if isinstance(value, bool):
        raise ValueError("Rate must be a number, got bool")

    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.strip()
        if _GROUPED_NUMBER_RE.fullmatch(cleaned):
            cleaned = cleaned.replace(",", "")
        if not _NUMBER_RE.fullmatch(cleaned):
            raise ValueError(f"Cannot parse rate from '{value}'")
        try:
            parsed = Decimal(cleaned)
        except InvalidOperation as exc:
            raise ValueError(f"Cannot parse rate from '{value}'") from exc
    else:
        raise ValueError(f"Rate must be string or number, got {type(value).__name__}")

    if not parsed.is_finite() or parsed <= 0:
        raise ValueError(f"Rate must be positive, got '{value}'")
    return parsed


def as_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC; naive values (SQLite reads) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Rate(BaseModel):
    """USD buy/sell quote published by one bank.

    Attributes:
        bank_name: Display name.
        bank_class: Stable lowercase identifier, unique key in the store.
        buy_rate: Price at which the bank buys dollars.
        sell_rate: Price at which the bank sells dollars.
    """

    model_config = ConfigDict(frozen=True)

    bank_name: str = Field(..., min_length=1, max_length=100)
    bank_class: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")
    buy_rate: Decimal = Field(..., gt=0)
    sell_rate: Decimal = Field(..., gt=0)

    @field_validator("buy_rate", "sell_rate", mode="before")
    @classmethod
    def parse_value(cls, value: Any) -> Decimal:
        return parse_rate_value(value)

    @model_validator(mode="after")
    def check_spread(self) -> "Rate":
        """Sell is expected to be at or above buy; a reversed spread is only noted."""
        if self.sell_rate < self.buy_rate:
            log.debug(
                "Sell rate below buy rate",
                bank_class=self.bank_class,
                buy=str(self.buy_rate),
                sell=str(self.sell_rate),
            )
        return self


class StoredRateRecord(Rate):
    """Latest persisted rate of a bank."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    updated_at: datetime
    created_at: datetime

    @field_validator("updated_at", "created_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class RateHistoryEntry(Rate):
    """Append-only audit record of an observed rate."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    observed_at: datetime

    @field_validator("observed_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class SourceHealthMonitor:
    """Watchdog for sources that silently stay stale.

    A failing source keeps serving its last stored value, so nothing but the
    logs reveals that it stopped updating. The monitor counts consecutive
    failed cycles per bankClass, warns once the configured threshold is
    reached and notes the recovery.

    Example:
        monitor = SourceHealthMonitor()
        monitor.record_failure("popular", "HTTP 403")
        monitor.record_success("bhd")
    """

    def __init__(self, config: GlobalConfig | None = None) -> None:
        self.config = config or get_config()
        self._consecutive_failures: dict[str, int] = {}
        self._last_success: dict[str, datetime] = {}
        self._total_successes: int = 0
        self._total_failures: int = 0

    def record_success(self, bank_class: str, at: datetime | None = None) -> None:
        previous = self._consecutive_failures.get(bank_class, 0)
        if previous >= self.config.stale_alert_cycles:
            log.info(
                "Source recovered",
                bank_class=bank_class,
                failed_cycles=previous,
            )
        self._consecutive_failures[bank_class] = 0
        if at is not None:
            self._last_success[bank_class] = at
        self._total_successes += 1

    def record_failure(self, bank_class: str, reason: str) -> None:
        count = self._consecutive_failures.get(bank_class, 0) + 1
        self._consecutive_failures[bank_class] = count
        self._total_failures += 1

        if count == self.config.stale_alert_cycles:
            log.warning(
                "WATCHDOG ALERT: Source is stale",
                bank_class=bank_class,
                failed_cycles=count,
                last_success=self._last_success.get(bank_class),
                reason=reason,
            )

    def failures(self, bank_class: str) -> int:
        return self._consecutive_failures.get(bank_class, 0)

    def stale_sources(self) -> list[str]:
        """Return bankClasses at or over the stale threshold."""
        threshold = self.config.stale_alert_cycles
        return sorted(
            bank_class
            for bank_class, count in self._consecutive_failures.items()
            if count >= threshold
        )

    def get_summary(self) -> dict[str, Any]:
        total = self._total_successes + self._total_failures
        return {
            "total_source_runs": total,
            "total_successes": self._total_successes,
            "total_failures": self._total_failures,
            "stale_sources": self.stale_sources(),
        }
