"""Source strategies for the supported banks."""

from typing import Sequence

from config.settings import GlobalConfig
from config.sources import SourceConfig, SourceKind
from dollar_rates.http_client import HttpClient
from dollar_rates.sources.base import SourceStrategy
from dollar_rates.sources.popular import PopularSource
from dollar_rates.sources.simple import SimpleSource

__all__ = [
    "PopularSource",
    "SimpleSource",
    "SourceStrategy",
    "build_strategies",
]

STRATEGY_BY_KIND: dict[SourceKind, type[SourceStrategy]] = {
    SourceKind.SIMPLE: SimpleSource,
    SourceKind.PROTECTED: PopularSource,
}


def build_strategies(
    sources: Sequence[SourceConfig],
    client: HttpClient,
    config: GlobalConfig,
) -> list[SourceStrategy]:
    """Instantiate one strategy per configured source."""
    return [STRATEGY_BY_KIND[source.kind](source, client, config) for source in sources]
