"""Headless browser fallback with stealth settings.

Used only by the WAF-protected source when a local Chromium binary is
configured. A real browser runs the challenge JavaScript that cookie replay
cannot, after which the data endpoint is requested through the context's
request API so the bot-mitigation cookies travel with it.

Anti-Bot Measures:
    - Disables navigator.webdriver flag
    - Randomizes viewport dimensions within realistic bounds
    - Applies human-like timing jitter before navigation
    - Persists cookies between cycles so a solved challenge is reused
"""

import asyncio
import json
import random
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Self

from playwright.async_api import (
    Browser,
    BrowserContext,
    Playwright,
    async_playwright,
)

from config.settings import GlobalConfig, get_config
from dollar_rates.exceptions import (
    BrowserInitializationError,
    ResponseStatusError,
    TransportError,
)
from dollar_rates.logger import get_logger

log = get_logger(__name__)

STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined,
});
Object.defineProperty(navigator, 'plugins', {
    get: () => [1, 2, 3, 4, 5],
});
Object.defineProperty(navigator, 'languages', {
    get: () => ['en-US', 'en', 'es'],
});
window.chrome = {
    runtime: {},
};
"""


class BrowserManager:
    """Manages the Playwright lifecycle for one protected-source attempt.

    Attributes:
        config: GlobalConfig instance for runtime configuration.
        _playwright: Playwright instance (initialized on context entry).
        _browser: Chromium instance launched from the configured binary.
        _context: BrowserContext with stealth settings applied.

    Example:
        async with BrowserManager.create(config) as browser:
            xml = await browser.fetch_text(landing_url, data_url)
    """

    def __init__(self, config: GlobalConfig) -> None:
        """Do not instantiate directly; use ``create()``."""
        self.config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    @classmethod
    @asynccontextmanager
    async def create(
        cls, config: GlobalConfig | None = None
    ) -> AsyncGenerator[Self, None]:
        """Launch the browser for the duration of the ``async with`` block.

        Raises:
            BrowserInitializationError: If browser launch fails.
        """
        if config is None:
            config = get_config()

        instance = cls(config)
        try:
            await instance._initialize()
            yield instance
        finally:
            await instance._cleanup()

    async def _initialize(self) -> None:
        """Initialize Playwright, browser, and context with stealth settings.

        Raises:
            BrowserInitializationError: If any initialization step fails.
        """
        executable = self.config.browser_executable_path
        log.info("Launching fallback browser", executable=str(executable))

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                executable_path=str(executable) if executable else None,
                headless=self.config.browser_headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                    "--disable-infobars",
                ],
            )
            await self._create_stealth_context()

        except Exception as exc:
            await self._cleanup()
            raise BrowserInitializationError(reason=str(exc), browser_type="chromium") from exc

    async def _create_stealth_context(self) -> None:
        if self._browser is None:
            raise BrowserInitializationError(reason="Browser not initialized")

        context_options = {
            "viewport": {
                "width": random.randint(1280, 1920),
                "height": random.randint(720, 1080),
            },
            "user_agent": self.config.user_agent,
            "locale": "es-DO",
            "timezone_id": "America/Santo_Domingo",
            "java_script_enabled": True,
        }

        storage_state = self._load_state()
        if storage_state is not None:
            context_options["storage_state"] = storage_state
            log.info("Loaded existing browser session state")

        self._context = await self._browser.new_context(**context_options)
        await self._context.add_init_script(STEALTH_JS)

    def _load_state(self) -> dict | None:
        """Load saved cookies, or None when absent or unreadable."""
        state_path = self.config.browser_state_path

        if not state_path.exists():
            return None

        try:
            state_data = json.loads(state_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            log.warning(
                "Unreadable browser state, starting fresh",
                path=str(state_path),
                error=str(exc),
            )
            return None

        if "cookies" not in state_data or "origins" not in state_data:
            log.warning("Invalid browser state structure, starting fresh", path=str(state_path))
            return None
        return state_data

    async def save_state(self) -> Path | None:
        """Persist cookies so the next cycle starts with a solved challenge."""
        if self._context is None:
            return None

        state_path = self.config.browser_state_path
        try:
            storage_state = await self._context.storage_state()
            state_path.write_text(json.dumps(storage_state, indent=2), encoding="utf-8")
        except OSError as exc:
            log.warning("Failed to save browser state", path=str(state_path), error=str(exc))
            return None

        log.debug("Browser state saved", path=str(state_path))
        return state_path

    async def fetch_text(
        self,
        landing_url: str,
        data_url: str,
        accept: str = "application/xml",
    ) -> str:
        """Visit ``landing_url`` like a user, then request ``data_url``.

        Raises:
            TransportError: If navigation or the data request fails.
            ResponseStatusError: If the data endpoint answers non-2xx.
        """
        if self._context is None:
            raise BrowserInitializationError(reason="Browser context not initialized")

        timeout_ms = self.config.request_timeout_ms
        page = await self._context.new_page()
        try:
            await asyncio.sleep(random.randint(100, 500) / 1000)
            try:
                await page.goto(landing_url, wait_until="domcontentloaded", timeout=timeout_ms)
            except Exception as exc:
                raise TransportError(url=landing_url, reason=f"navigation failed: {exc}") from exc

            await asyncio.sleep(self.config.challenge_delay_ms / 1000)

            try:
                response = await self._context.request.get(
                    data_url,
                    headers={"Accept": accept, "Referer": landing_url},
                    timeout=timeout_ms,
                )
            except Exception as exc:
                raise TransportError(url=data_url, reason=str(exc)) from exc

            if not response.ok:
                raise ResponseStatusError(url=data_url, status_code=response.status)

            body = await response.text()
        finally:
            await page.close()

        await self.save_state()
        return body

    async def _cleanup(self) -> None:
        """Clean up browser resources in reverse initialization order."""
        if self._context is not None:
            try:
                await self._context.close()
            except Exception as exc:
                log.warning("Error closing context", error=str(exc))
            self._context = None

        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:
                log.warning("Error closing browser", error=str(exc))
            self._browser = None

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.warning("Error stopping playwright", error=str(exc))
            self._playwright = None

    @property
    def is_initialized(self) -> bool:
        return all([
            self._playwright is not None,
            self._browser is not None,
            self._context is not None,
        ])
