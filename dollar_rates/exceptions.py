"""Custom exception hierarchy for dollar-rates.

Every failure the acquisition subsystem knows about has its own type. All of
them carry a message plus a context dictionary so that the boundary that
contains them (a source strategy or the store writer) can log a precise
diagnostic before turning the failure into "no result this cycle".
"""

from datetime import UTC, datetime
from typing import Any


class DollarRatesError(Exception):
    """Base exception for all dollar-rates errors.

    Attributes:
        message: Human-readable error description.
        context: Optional dictionary with additional debugging information.
        timestamp: UTC timestamp when the exception was raised.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now(UTC)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format exception message with context for logging."""
        base = f"[{self.timestamp.isoformat()}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} | Context: {context_str}"
        return base


class TransportError(DollarRatesError):
    """Raised when a request cannot complete: DNS, TLS, connection reset or timeout."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(
            message=f"Request to '{url}' failed: {reason}",
            context={"url": url, "reason": reason},
        )
        self.url = url
        self.reason = reason


class ResponseStatusError(DollarRatesError):
    """Raised when a source answers with a non-success HTTP status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(
            message=f"'{url}' returned HTTP {status_code}",
            context={"url": url, "status_code": status_code},
        )
        self.url = url
        self.status_code = status_code


class ExtractionError(DollarRatesError):
    """Base class for failures turning a payload into a rate.

    Attributes:
        source_id: bankClass of the source whose payload was being parsed.
        pattern: Name of the pattern or lookup that failed.
    """

    def __init__(self, source_id: str, pattern: str, reason: str) -> None:
        super().__init__(
            message=f"{source_id}: pattern '{pattern}' failed: {reason}",
            context={"source_id": source_id, "pattern": pattern, "reason": reason},
        )
        self.source_id = source_id
        self.pattern = pattern
        self.reason = reason


class PatternMissError(ExtractionError):
    """Raised when a regular expression does not match the payload."""


class ParseError(ExtractionError):
    """Raised when a captured value is not a positive number."""


class ShapeError(ExtractionError):
    """Raised when a JSON document lacks the expected structure or currency."""


class AcquisitionError(DollarRatesError):
    """Raised when every acquisition attempt of a source failed this cycle.

    Attributes:
        source_id: bankClass of the failed source.
        failures: Ordered ``(attempt name, reason)`` pairs.
    """

    def __init__(self, source_id: str, failures: list[tuple[str, str]]) -> None:
        summary = "; ".join(f"{name}: {reason}" for name, reason in failures) or "no attempts"
        super().__init__(
            message=f"All acquisition attempts failed for '{source_id}'",
            context={"source_id": source_id, "attempts": summary},
        )
        self.source_id = source_id
        self.failures = failures


class PersistenceError(DollarRatesError):
    """Raised when the rate store rejects a write or is unreachable."""

    def __init__(self, operation: str, bank_class: str, reason: str) -> None:
        super().__init__(
            message=f"Store {operation} failed for '{bank_class}': {reason}",
            context={"operation": operation, "bank_class": bank_class, "reason": reason},
        )
        self.operation = operation
        self.bank_class = bank_class


class BrowserInitializationError(DollarRatesError):
    """Raised when the fallback browser fails to start.

    Common causes include a wrong executable path or missing system libraries.
    """

    def __init__(self, reason: str, browser_type: str = "chromium") -> None:
        super().__init__(
            message=f"Failed to initialize {browser_type} browser: {reason}",
            context={"browser_type": browser_type, "reason": reason},
        )


class LoggingInitializationError(DollarRatesError):
    """Raised when the logging system fails to initialize.

    This is a startup-blocking error.
    """

    def __init__(self, log_dir: str, reason: str) -> None:
        super().__init__(
            message=f"Failed to initialize logging at '{log_dir}': {reason}",
            context={"log_dir": log_dir, "reason": reason},
        )
