"""Static per-source descriptions.

Each bank is described once by a frozen ``SourceConfig``: where its rates
live, which headers to present, how to find the buy/sell values in the
payload and, for the WAF-protected source, how to warm up a session.
``load_source_configs`` merges these defaults with runtime settings (the
proxy override) and is called once at startup.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from config.settings import GlobalConfig

# Plain "58.50" or comma-grouped "1,234.50"; a trailing list comma is not captured.
_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
# Whitespace, markup or a colon between a label and its value.
_LABEL_GAP = r"(?:\s|<[^>]+>|:)*"


class SourceKind(str, Enum):
    """Acquisition plan used for a source."""

    SIMPLE = "simple"
    PROTECTED = "protected"


class HeaderProfile(str, Enum):
    """Header set presented for a request."""

    DOCUMENT = "document"
    API_JSON = "api_json"
    API_XML = "api_xml"
    RESOURCE = "resource"


class RatePattern(BaseModel):
    """Regular-expression extraction pattern.

    When ``sell`` is omitted, ``buy`` must define the named groups ``buy`` and
    ``sell``. Otherwise each expression captures its value in group 1.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    buy: str
    sell: str | None = None
    dotall: bool = True
    ignore_case: bool = False


class JsonRateLookup(BaseModel):
    """Structured lookup of a currency entry inside a JSON document."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: tuple[str, ...]
    currency_field: str = "currency"
    currency_code: str = "USD"
    buy_field: str
    sell_field: str


class SourceConfig(BaseModel):
    """Immutable description of one bank rate source."""

    model_config = ConfigDict(frozen=True)

    bank_name: str = Field(..., min_length=1)
    bank_class: str = Field(..., pattern=r"^[a-z0-9_-]+$")
    kind: SourceKind = SourceKind.SIMPLE
    endpoint: str
    profile: HeaderProfile = HeaderProfile.DOCUMENT
    landing_url: str | None = None
    challenge_pattern: str | None = None
    proxy_url: str | None = None
    patterns: tuple[RatePattern, ...] = ()
    json_lookups: tuple[JsonRateLookup, ...] = ()


BANRESERVAS = SourceConfig(
    bank_name="Banreservas",
    bank_class="banreservas",
    endpoint="https://www.banreservas.com/calculadoras/",
    profile=HeaderProfile.DOCUMENT,
    patterns=(
        RatePattern(
            name="compra-venta-labels",
            buy=(
                rf"Compra{_LABEL_GAP}(?P<buy>\d+\.\d+)"
                rf".*?Venta{_LABEL_GAP}(?P<sell>\d+\.\d+)"
            ),
        ),
    ),
)

BHD = SourceConfig(
    bank_name="BHD",
    bank_class="bhd",
    endpoint="https://backend.bhd.com.do/api/modal-cambio-rate?populate=deep",
    profile=HeaderProfile.API_JSON,
    json_lookups=(
        JsonRateLookup(
            name="exchange-rates",
            path=("data", "attributes", "exchangeRates"),
            currency_field="currency",
            currency_code="USD",
            buy_field="buyingRate",
            sell_field="sellingRate",
        ),
    ),
)

POPULAR = SourceConfig(
    bank_name="Banco Popular",
    bank_class="popular",
    kind=SourceKind.PROTECTED,
    endpoint=(
        "https://popularenlinea.com/_api/web/lists/getbytitle('Rates')/items"
        "?$filter=ItemID%20eq%20%271%27"
    ),
    profile=HeaderProfile.API_XML,
    landing_url="https://popularenlinea.com/personas/Paginas/Home.aspx",
    challenge_pattern=r'src="(/_Incapsula_Resource\?SWJIYLWA=[^"]+)"',
    patterns=(
        RatePattern(
            name="odata-d-namespace",
            buy=r"<d:DollarBuyRate[^>]*>(\d+\.?\d*)</d:DollarBuyRate>",
            sell=r"<d:DollarSellRate[^>]*>(\d+\.?\d*)</d:DollarSellRate>",
        ),
        RatePattern(
            name="odata-any-namespace",
            buy=rf"<(?:[\w-]+:)?DollarBuyRate\b[^>]*>\s*{_NUMBER}\s*</(?:[\w-]+:)?DollarBuyRate>",
            sell=rf"<(?:[\w-]+:)?DollarSellRate\b[^>]*>\s*{_NUMBER}\s*</(?:[\w-]+:)?DollarSellRate>",
        ),
        RatePattern(
            name="odata-json",
            buy=rf'"DollarBuyRate"\s*:\s*"?{_NUMBER}',
            sell=rf'"DollarSellRate"\s*:\s*"?{_NUMBER}',
        ),
    ),
)

DEFAULT_SOURCES: tuple[SourceConfig, ...] = (BANRESERVAS, BHD, POPULAR)


def load_source_configs(
    config: GlobalConfig,
    defaults: tuple[SourceConfig, ...] = DEFAULT_SOURCES,
) -> tuple[SourceConfig, ...]:
    """Build the immutable source list for this process.

    Args:
        config: Validated runtime configuration.
        defaults: Source descriptions to select from.

    Returns:
        The enabled sources, in configuration order, with runtime overrides
        applied.

    Raises:
        ValueError: If ``enabled_sources`` names an unknown bankClass.
    """
    by_class = {source.bank_class: source for source in defaults}
    unknown = [name for name in config.enabled_sources if name not in by_class]
    if unknown:
        raise ValueError(
            f"Unknown sources {unknown}. Available sources: {sorted(by_class)}"
        )

    selected = []
    for bank_class in config.enabled_sources:
        source = by_class[bank_class]
        if source.kind is SourceKind.PROTECTED and config.popular_proxy_url:
            source = source.model_copy(update={"proxy_url": config.popular_proxy_url})
        selected.append(source)
    return tuple(selected)
