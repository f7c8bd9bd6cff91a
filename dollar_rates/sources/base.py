"""Base interface for per-bank source strategies."""

from abc import ABC, abstractmethod

from config.settings import GlobalConfig, get_config
from config.sources import SourceConfig
from dollar_rates.acquisition import AcquisitionAttempt, first_success
from dollar_rates.extractor import BaseRateExtractor, build_extractor
from dollar_rates.http_client import HttpClient
from dollar_rates.validator import Rate


class SourceStrategy(ABC):
    """Owns the network plan needed to get one bank's rate.

    Subclasses only describe their ordered attempts; ``fetch`` runs them
    through the shared "first success wins" combinator.

    Attributes:
        source: Static description of the bank source.
        client: Shared cookie-less HTTP client.
        config: Runtime configuration.
        extractor: Payload extractor built from ``source``.
    """

    def __init__(
        self,
        source: SourceConfig,
        client: HttpClient,
        config: GlobalConfig | None = None,
    ) -> None:
        self.source = source
        self.client = client
        self.config = config or get_config()
        self.extractor: BaseRateExtractor = build_extractor(source)

    @property
    def bank_class(self) -> str:
        return self.source.bank_class

    @property
    def bank_name(self) -> str:
        return self.source.bank_name

    @abstractmethod
    def attempts(self) -> list[AcquisitionAttempt]:
        """Acquisition attempts in priority order."""
        ...

    async def fetch(self) -> Rate:
        """Acquire and extract this cycle's rate.

        Raises:
            AcquisitionError: If every attempt failed.
        """
        return await first_success(self.bank_class, self.attempts(), self.extractor)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(bank_class={self.bank_class!r})"
