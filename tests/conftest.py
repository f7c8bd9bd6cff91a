"""Pytest configuration and shared fixtures for the dollar-rates test suite.

This module provides hermetic test infrastructure with the following guarantees:
- No external network requests (bank sites are replaced by local aiohttp apps)
- Deterministic timestamps (injected store clock)
- Isolated state (fresh config, temporary database and log directory per test)
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

from config.settings import GlobalConfig
from dollar_rates.store import RateStore
from dollar_rates.validator import Rate


@pytest.fixture
def mock_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[GlobalConfig]:
    """Provide isolated GlobalConfig with safe test defaults.

    Overrides the lru_cache singleton to prevent state leakage between tests.
    Uses tmp_path for the database, logs and browser state.
    """
    from config.settings import get_config

    get_config.cache_clear()

    log_dir = tmp_path / "logs"
    log_dir.mkdir()

    test_env = {
        "APP_NAME": "dollar-rates-test",
        "ENVIRONMENT": "test",
        "DEBUG": "false",
        "LOG_LEVEL": "DEBUG",
        "LOG_DIR": str(log_dir),
        "LOG_ROTATION": "1 day",
        "LOG_RETENTION": "1 day",
        "DATABASE_URL": f"sqlite:///{tmp_path / 'rates.db'}",
        "UPDATE_INTERVAL_MINUTES": "30",
        "REQUEST_TIMEOUT_MS": "1000",
        "SOURCE_TIMEOUT_MS": "10000",
        "CHALLENGE_DELAY_MS": "0",
        "REVISIT_DELAY_MS": "0",
        "POPULAR_PROXY_URL": "",
        "BROWSER_EXECUTABLE_PATH": "",
        "BROWSER_STATE_PATH": str(tmp_path / "browser_state.json"),
        "ENABLED_SOURCES": '["banreservas", "bhd", "popular"]',
        "STALE_ALERT_CYCLES": "3",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    config = get_config()

    yield config

    get_config.cache_clear()


@pytest.fixture
def banreservas_html_factory() -> Callable[..., str]:
    """Factory for Banreservas calculator pages.

    Example:
        html = banreservas_html_factory(buy="58.50", sell="59.00")
        html = banreservas_html_factory(buy="58.50", sell=None)  # sell label missing
    """

    def _generate(buy: str | None = "58.50", sell: str | None = "59.00") -> str:
        buy_html = (
            f'<div class="rate"><span>Compra</span>\n<strong>{buy}</strong></div>'
            if buy is not None
            else ""
        )
        sell_html = (
            f'<div class="rate"><span>Venta</span>\n<strong>{sell}</strong></div>'
            if sell is not None
            else ""
        )
        return f"""
        <!DOCTYPE html>
        <html>
        <head><title>Calculadoras | Banreservas</title></head>
        <body>
            <section class="tasas">
                <h3>Tasa del dólar</h3>
                {buy_html}
                {sell_html}
            </section>
        </body>
        </html>
        """

    return _generate


@pytest.fixture
def bhd_json_factory() -> Callable[..., str]:
    """Factory for BHD exchange-rate API documents."""
    import json

    def _generate(
        buy: object = 58.10,
        sell: object = 59.45,
        currency: str = "USD",
        extra_entries: list[dict] | None = None,
    ) -> str:
        entries = list(extra_entries or [])
        entries.append({"currency": currency, "buyingRate": buy, "sellingRate": sell})
        return json.dumps({"data": {"id": 1, "attributes": {"exchangeRates": entries}}})

    return _generate


@pytest.fixture
def popular_xml_factory() -> Callable[..., str]:
    """Factory for Banco Popular OData (Atom XML) documents.

    ``prefix`` controls the namespace prefix of the rate elements, so that
    the fallback patterns can be exercised.
    """

    def _generate(buy: str = "58.70", sell: str = "59.20", prefix: str = "d:") -> str:
        return f"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"
      xmlns:d="http://schemas.microsoft.com/ado/2007/08/dataservices"
      xmlns:m="http://schemas.microsoft.com/ado/2007/08/dataservices/metadata">
  <entry>
    <content type="application/xml">
      <m:properties>
        <{prefix}ItemID>1</{prefix}ItemID>
        <{prefix}DollarBuyRate m:type="Edm.Double">{buy}</{prefix}DollarBuyRate>
        <{prefix}DollarSellRate m:type="Edm.Double">{sell}</{prefix}DollarSellRate>
      </m:properties>
    </content>
  </entry>
</feed>"""

    return _generate


@pytest.fixture
def rate_factory() -> Callable[..., Rate]:
    """Factory for validated Rate values."""

    def _generate(
        bank_class: str = "banreservas",
        buy: str = "58.50",
        sell: str = "59.00",
        bank_name: str | None = None,
    ) -> Rate:
        return Rate(
            bank_name=bank_name or bank_class.capitalize(),
            bank_class=bank_class,
            buy_rate=Decimal(buy),
            sell_rate=Decimal(sell),
        )

    return _generate


@pytest.fixture
def ticking_clock() -> Callable[[], datetime]:
    """Clock advancing one minute on every call."""
    state = {"now": datetime(2026, 1, 15, 12, 0, tzinfo=UTC)}

    def _tick() -> datetime:
        state["now"] += timedelta(minutes=1)
        return state["now"]

    return _tick


@pytest.fixture
def rate_store(tmp_path: Path, ticking_clock: Callable[[], datetime]) -> Iterator[RateStore]:
    """SQLite-backed RateStore with the schema created."""
    store = RateStore(f"sqlite:///{tmp_path / 'store.db'}", clock=ticking_clock)
    store.ensure_schema()
    yield store
    store.close()
