"""Payload extraction implementing the Strategy Pattern.

An extractor turns the text of one response (HTML, OData XML or JSON) into a
``Rate``. Each source declares an ordered list of patterns; they are tried in
that order and the first one resolving BOTH the buy and the sell value wins.
A capture that is not a positive number counts as a miss for that pattern.

``extract`` never raises for bad payloads: it returns an ``ExtractionFailure``
describing why each pattern failed, which the caller only logs.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Sequence

from config.sources import JsonRateLookup, RatePattern, SourceConfig
from dollar_rates.exceptions import ExtractionError, ParseError, PatternMissError, ShapeError
from dollar_rates.logger import get_logger
from dollar_rates.validator import Rate, parse_rate_value

log = get_logger(__name__)


@dataclass(frozen=True)
class ExtractionFailure:
    """Why a payload could not be turned into a rate.

    Attributes:
        source_id: bankClass of the source.
        reason: Human-readable summary for logs.
        pattern_errors: ``(pattern name, reason)`` per pattern tried.
    """

    source_id: str
    reason: str
    pattern_errors: tuple[tuple[str, str], ...] = field(default_factory=tuple)


def _as_text(payload: bytes | str) -> str:
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    return payload


class BaseRateExtractor(ABC):
    """Abstract base class for per-source extraction strategies.

    Subclasses implement ``_apply`` for a single pattern; the base class owns
    the priority loop and the failure bookkeeping.
    """

    def __init__(self, bank_name: str, bank_class: str) -> None:
        self.bank_name = bank_name
        self.bank_class = bank_class

    @property
    @abstractmethod
    def pattern_names(self) -> list[str]:
        """Names of the configured patterns, in priority order."""
        ...

    @abstractmethod
    def _prepare(self, text: str) -> Any:
        """Turn raw text into the structure patterns are applied to.

        Raises:
            ExtractionError: If the payload as a whole is unusable.
        """
        ...

    @abstractmethod
    def _apply(self, index: int, document: Any) -> tuple[Any, Any]:
        """Resolve raw ``(buy, sell)`` values with the pattern at ``index``.

        Raises:
            ExtractionError: If the pattern does not resolve both values.
        """
        ...

    def extract(self, payload: bytes | str, source_id: str | None = None) -> Rate | ExtractionFailure:
        """Extract a rate from ``payload``.

        Args:
            payload: Response body.
            source_id: Identifier used in diagnostics. Defaults to the bankClass.

        Returns:
            A validated Rate, or an ExtractionFailure when no pattern matched.
        """
        source_id = source_id or self.bank_class
        text = _as_text(payload)

        try:
            document = self._prepare(text)
        except ExtractionError as exc:
            return ExtractionFailure(
                source_id=source_id,
                reason=exc.reason,
                pattern_errors=((exc.pattern, exc.reason),),
            )

        errors: list[tuple[str, str]] = []
        for index, name in enumerate(self.pattern_names):
            try:
                raw_buy, raw_sell = self._apply(index, document)
                buy = self._parse(source_id, name, "buy", raw_buy)
                sell = self._parse(source_id, name, "sell", raw_sell)
            except ExtractionError as exc:
                log.debug(
                    "Extraction pattern failed",
                    source_id=source_id,
                    pattern=name,
                    error_type=type(exc).__name__,
                    reason=exc.reason,
                )
                errors.append((name, exc.reason))
                continue

            log.debug("Extraction pattern matched", source_id=source_id, pattern=name)
            return Rate(
                bank_name=self.bank_name,
                bank_class=self.bank_class,
                buy_rate=buy,
                sell_rate=sell,
            )

        summary = "; ".join(f"{name}: {reason}" for name, reason in errors)
        return ExtractionFailure(
            source_id=source_id,
            reason=f"No extraction pattern matched ({summary or 'no patterns configured'})",
            pattern_errors=tuple(errors),
        )

    @staticmethod
    def _parse(source_id: str, pattern: str, label: str, value: Any) -> Decimal:
        try:
            return parse_rate_value(value)
        except ValueError as exc:
            raise ParseError(source_id, pattern, f"{label} value: {exc}") from exc


class RegexRateExtractor(BaseRateExtractor):
    """Regular expressions over HTML or XML text."""

    def __init__(self, bank_name: str, bank_class: str, patterns: Sequence[RatePattern]) -> None:
        super().__init__(bank_name, bank_class)
        self.patterns = list(patterns)
        self._compiled = [self._compile(pattern) for pattern in self.patterns]

    @staticmethod
    def _compile(pattern: RatePattern) -> tuple[re.Pattern[str], re.Pattern[str] | None]:
        flags = 0
        if pattern.dotall:
            flags |= re.DOTALL
        if pattern.ignore_case:
            flags |= re.IGNORECASE
        buy = re.compile(pattern.buy, flags)
        sell = re.compile(pattern.sell, flags) if pattern.sell is not None else None
        if sell is None and not {"buy", "sell"} <= set(buy.groupindex):
            raise ValueError(
                f"Pattern '{pattern.name}' needs named groups 'buy' and 'sell' or a separate sell expression"
            )
        return buy, sell

    @property
    def pattern_names(self) -> list[str]:
        return [pattern.name for pattern in self.patterns]

    def _prepare(self, text: str) -> str:
        return text

    def _apply(self, index: int, document: str) -> tuple[str, str]:
        name = self.patterns[index].name
        buy_re, sell_re = self._compiled[index]

        if sell_re is None:
            match = buy_re.search(document)
            if match is None:
                raise PatternMissError(self.bank_class, name, "buy/sell labels not found")
            return match.group("buy"), match.group("sell")

        buy_match = buy_re.search(document)
        if buy_match is None:
            raise PatternMissError(self.bank_class, name, "buy value not found")
        sell_match = sell_re.search(document)
        if sell_match is None:
            raise PatternMissError(self.bank_class, name, "sell value not found")
        return buy_match.group(1), sell_match.group(1)


class JsonRateExtractor(BaseRateExtractor):
    """Field lookup over a parsed JSON document."""

    def __init__(self, bank_name: str, bank_class: str, lookups: Sequence[JsonRateLookup]) -> None:
        super().__init__(bank_name, bank_class)
        self.lookups = list(lookups)

    @property
    def pattern_names(self) -> list[str]:
        return [lookup.name for lookup in self.lookups]

    def _prepare(self, text: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ShapeError(self.bank_class, "json", f"invalid JSON: {exc.msg}") from exc

    def _apply(self, index: int, document: Any) -> tuple[Any, Any]:
        lookup = self.lookups[index]

        current = document
        for step in lookup.path:
            if not isinstance(current, dict) or step not in current:
                raise ShapeError(self.bank_class, lookup.name, f"missing field '{step}'")
            current = current[step]

        if not isinstance(current, list):
            raise ShapeError(
                self.bank_class, lookup.name, f"expected a list at '{'.'.join(lookup.path)}'"
            )

        for entry in current:
            if not isinstance(entry, dict):
                continue
            if entry.get(lookup.currency_field) != lookup.currency_code:
                continue
            if lookup.buy_field not in entry or lookup.sell_field not in entry:
                raise ShapeError(
                    self.bank_class,
                    lookup.name,
                    f"{lookup.currency_code} entry lacks '{lookup.buy_field}' or '{lookup.sell_field}'",
                )
            return entry[lookup.buy_field], entry[lookup.sell_field]

        raise ShapeError(self.bank_class, lookup.name, f"{lookup.currency_code} rate not found")


def build_extractor(source: SourceConfig) -> BaseRateExtractor:
    """Create the extractor described by a source configuration."""
    if source.json_lookups:
        return JsonRateExtractor(source.bank_name, source.bank_class, source.json_lookups)
    return RegexRateExtractor(source.bank_name, source.bank_class, source.patterns)
