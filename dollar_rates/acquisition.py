"""Ordered acquisition attempts with a "first success wins" combinator.

A source is acquired through a list of attempts (direct request, operator
proxy, cookie replay, headless browser). Each attempt produces a payload or
raises one of the known errors; the payload is handed to the source's
extractor. The first attempt whose payload yields a Rate wins. When none does,
an ``AcquisitionError`` listing every attempt's reason is raised.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from dollar_rates.exceptions import AcquisitionError, DollarRatesError
from dollar_rates.extractor import BaseRateExtractor, ExtractionFailure
from dollar_rates.logger import get_logger
from dollar_rates.validator import Rate

log = get_logger(__name__)


@dataclass(frozen=True)
class AcquisitionAttempt:
    """One way of obtaining a payload for a source.

    Attributes:
        name: Label used in logs and failure summaries.
        fetch: Coroutine factory returning the payload text.
    """

    name: str
    fetch: Callable[[], Awaitable[str]]


async def first_success(
    source_id: str,
    attempts: Sequence[AcquisitionAttempt],
    extractor: BaseRateExtractor,
) -> Rate:
    """Run ``attempts`` in order and return the first extracted Rate.

    Args:
        source_id: bankClass used in diagnostics.
        attempts: Attempts in priority order.
        extractor: Extractor applied to every payload.

    Returns:
        The Rate extracted from the first usable payload.

    Raises:
        AcquisitionError: If no attempt produced a parseable payload.
    """
    failures: list[tuple[str, str]] = []

    for attempt in attempts:
        log.debug("Acquisition attempt started", source_id=source_id, attempt=attempt.name)
        try:
            payload = await attempt.fetch()
        except DollarRatesError as exc:
            log.warning(
                "Acquisition attempt failed",
                source_id=source_id,
                attempt=attempt.name,
                error_type=type(exc).__name__,
                error=exc.message,
            )
            failures.append((attempt.name, exc.message))
            continue
        except Exception as exc:
            log.exception(
                "Unexpected error in acquisition attempt",
                source_id=source_id,
                attempt=attempt.name,
                error_type=type(exc).__name__,
            )
            failures.append((attempt.name, f"{type(exc).__name__}: {exc}"))
            continue

        outcome = extractor.extract(payload, source_id)
        if isinstance(outcome, ExtractionFailure):
            log.warning(
                "Payload could not be parsed",
                source_id=source_id,
                attempt=attempt.name,
                reason=outcome.reason,
            )
            failures.append((attempt.name, outcome.reason))
            continue

        log.info(
            "Rate acquired",
            source_id=source_id,
            attempt=attempt.name,
            buy=str(outcome.buy_rate),
            sell=str(outcome.sell_rate),
        )
        return outcome

    raise AcquisitionError(source_id, failures)
