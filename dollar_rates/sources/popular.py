"""Banco Popular: SharePoint OData endpoint behind an Incapsula WAF.

Fallback chain, first success wins:

1. ``proxy``: operator-supplied URL that already returns the OData XML.
2. ``cookie-replay``: emulate a browser visit to collect the WAF cookies,
   then call the data endpoint with them.
3. ``headless-browser``: only when a local Chromium binary is configured.

Every request in the chain has its own timeout. A failed optional step
(challenge resource, landing revisit) is logged and the chain continues.
"""

import asyncio
import re
from typing import Any, Callable
from urllib.parse import urljoin

from config.settings import GlobalConfig
from config.sources import HeaderProfile, SourceConfig
from dollar_rates.acquisition import AcquisitionAttempt
from dollar_rates.browser import BrowserManager
from dollar_rates.exceptions import DollarRatesError, TransportError
from dollar_rates.http_client import HttpClient
from dollar_rates.logger import get_logger
from dollar_rates.sources.base import SourceStrategy

log = get_logger(__name__)


class PopularSource(SourceStrategy):
    """Protected source with proxy, cookie replay and headless browser attempts."""

    def __init__(
        self,
        source: SourceConfig,
        client: HttpClient,
        config: GlobalConfig | None = None,
        *,
        session_factory: Callable[..., Any] = HttpClient.create,
        browser_factory: Callable[..., Any] = BrowserManager.create,
    ) -> None:
        super().__init__(source, client, config)
        self._session_factory = session_factory
        self._browser_factory = browser_factory
        self._challenge_re = (
            re.compile(source.challenge_pattern) if source.challenge_pattern else None
        )

    @property
    def landing_url(self) -> str:
        return self.source.landing_url or self.source.endpoint

    def attempts(self) -> list[AcquisitionAttempt]:
        attempts = []
        if self.source.proxy_url:
            attempts.append(AcquisitionAttempt(name="proxy", fetch=self._fetch_via_proxy))
        attempts.append(AcquisitionAttempt(name="cookie-replay", fetch=self._fetch_with_cookie_replay))
        if self.config.browser_executable_path is not None:
            attempts.append(AcquisitionAttempt(name="headless-browser", fetch=self._fetch_with_browser))
        return attempts

    async def _fetch_via_proxy(self) -> str:
        log.info("Fetching through proxy", source_id=self.bank_class)
        response = await self.client.get(self.source.proxy_url, profile=HeaderProfile.API_XML)
        return response.text

    def find_challenge_url(self, html: str, base_url: str) -> str | None:
        """Return the absolute URL of the challenge resource linked in ``html``."""
        if self._challenge_re is None:
            return None
        match = self._challenge_re.search(html)
        if match is None:
            return None
        return urljoin(base_url, match.group(1))

    async def _fetch_with_cookie_replay(self) -> str:
        landing = self.landing_url

        async with self._session_factory(self.config, keep_cookies=True) as session:
            log.info("Cookie replay: warm-up visit", source_id=self.bank_class, url=landing)
            page = await session.get(landing, profile=HeaderProfile.DOCUMENT, expect_success=False)

            challenge_url = self.find_challenge_url(page.text, landing)
            if challenge_url is None:
                log.info("Cookie replay: no challenge resource linked, skipping", source_id=self.bank_class)
            else:
                log.info("Cookie replay: fetching challenge resource", source_id=self.bank_class)
                try:
                    await session.get(
                        challenge_url,
                        profile=HeaderProfile.RESOURCE,
                        headers={"Referer": landing},
                        expect_success=False,
                    )
                except TransportError as exc:
                    log.warning(
                        "Cookie replay: challenge resource failed",
                        source_id=self.bank_class,
                        error=exc.message,
                    )

            await asyncio.sleep(self.config.challenge_delay_ms / 1000)

            log.info("Cookie replay: revisiting landing page", source_id=self.bank_class)
            try:
                await session.get(landing, profile=HeaderProfile.DOCUMENT, expect_success=False)
            except TransportError as exc:
                log.warning(
                    "Cookie replay: landing revisit failed",
                    source_id=self.bank_class,
                    error=exc.message,
                )

            await asyncio.sleep(self.config.revisit_delay_ms / 1000)

            log.info(
                "Cookie replay: requesting data endpoint",
                source_id=self.bank_class,
                cookies=session.cookie_names,
            )
            response = await session.get(
                self.source.endpoint,
                profile=HeaderProfile.API_XML,
                headers={"Referer": landing},
            )
            return response.text

    async def _fetch_with_browser(self) -> str:
        try:
            async with self._browser_factory(self.config) as browser:
                return await browser.fetch_text(self.landing_url, self.source.endpoint)
        except DollarRatesError:
            raise
        except Exception as exc:
            raise TransportError(url=self.source.endpoint, reason=f"browser: {exc}") from exc
