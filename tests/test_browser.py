"""Tests for the headless browser fallback.

Validates BrowserManager including:
- Playwright API integration (mocked)
- Stealth configuration and executable selection
- Session state persistence
- fetch_text success and failure mapping
- Resource cleanup

Testing Philosophy:
    Browser operations are I/O heavy. All Playwright calls are mocked
    to ensure hermetic, fast tests that verify behavior, not implementation.
"""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from pytest_mock import MockerFixture

from config.settings import GlobalConfig
from dollar_rates.browser import BrowserManager
from dollar_rates.exceptions import (
    BrowserInitializationError,
    ResponseStatusError,
    TransportError,
)


def create_playwright_mock(mocker: MockerFixture) -> tuple[MagicMock, MagicMock, MagicMock, MagicMock]:
    """Create properly configured Playwright mock chain for async_playwright().start() pattern.

    Returns:
        Tuple of (async_playwright_instance, playwright_mock, browser_mock, context_mock)
    """
    page_mock = MagicMock()
    page_mock.goto = AsyncMock(return_value=MagicMock(status=200))
    page_mock.close = AsyncMock()

    data_response = MagicMock()
    data_response.ok = True
    data_response.status = 200
    data_response.text = AsyncMock(return_value="<d:DollarBuyRate>58.70</d:DollarBuyRate>")

    context_mock = MagicMock()
    context_mock.add_init_script = AsyncMock()
    context_mock.storage_state = AsyncMock(return_value={"cookies": [], "origins": []})
    context_mock.new_page = AsyncMock(return_value=page_mock)
    context_mock.request.get = AsyncMock(return_value=data_response)
    context_mock.close = AsyncMock()

    browser_mock = MagicMock()
    browser_mock.new_context = AsyncMock(return_value=context_mock)
    browser_mock.close = AsyncMock()

    playwright_mock = MagicMock()
    playwright_mock.chromium.launch = AsyncMock(return_value=browser_mock)
    playwright_mock.stop = AsyncMock()

    async_playwright_instance = MagicMock()
    async_playwright_instance.start = AsyncMock(return_value=playwright_mock)

    return async_playwright_instance, playwright_mock, browser_mock, context_mock


@pytest.fixture
def browser_config(mock_config: GlobalConfig, tmp_path: Path) -> GlobalConfig:
    return mock_config.model_copy(update={"browser_executable_path": tmp_path / "chromium"})


class TestBrowserManagerInitialization:
    """Test suite for browser initialization."""

    @pytest.mark.asyncio
    async def test_browser_launches_configured_executable(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        """Verify the configured binary and anti-detection flags are used."""
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config) as manager:
            assert manager.is_initialized

            call_kwargs = pw_mock.chromium.launch.call_args.kwargs
            assert call_kwargs["executable_path"] == str(browser_config.browser_executable_path)
            assert call_kwargs["headless"] is True
            assert "--disable-blink-features=AutomationControlled" in call_kwargs["args"]

    @pytest.mark.asyncio
    async def test_stealth_context(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        """Verify stealth script, locale and user agent of the context."""
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config):
            script_arg = context_mock.add_init_script.call_args[0][0]
            assert "webdriver" in script_arg

            context_kwargs = browser_mock.new_context.call_args.kwargs
            assert context_kwargs["user_agent"] == browser_config.user_agent
            assert context_kwargs["locale"] == "es-DO"
            assert 1280 <= context_kwargs["viewport"]["width"] <= 1920

    @pytest.mark.asyncio
    async def test_initialization_failure_raises_custom_error(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        """Verify Playwright exceptions are wrapped in BrowserInitializationError."""
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        pw_mock.chromium.launch = AsyncMock(side_effect=RuntimeError("Executable doesn't exist"))
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        with pytest.raises(BrowserInitializationError) as exc_info:
            async with BrowserManager.create(browser_config):
                pass

        assert "doesn't exist" in str(exc_info.value)
        pw_mock.stop.assert_awaited_once()


class TestBrowserStateManagement:
    """Test suite for session state persistence."""

    @pytest.mark.asyncio
    async def test_save_state_writes_json_file(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        test_state = {"cookies": [{"name": "incap_ses_1", "value": "123"}], "origins": []}
        context_mock.storage_state = AsyncMock(return_value=test_state)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config) as manager:
            saved_path = await manager.save_state()

        assert saved_path is not None
        assert json.loads(saved_path.read_text()) == test_state

    @pytest.mark.asyncio
    async def test_existing_state_loaded(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        state_data = {"cookies": [{"name": "visid_incap_1", "value": "abc"}], "origins": []}
        browser_config.browser_state_path.write_text(json.dumps(state_data))

        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config):
            assert browser_mock.new_context.call_args.kwargs["storage_state"] == state_data

    @pytest.mark.asyncio
    async def test_invalid_state_file_ignored(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        """Verify a corrupted state file doesn't crash initialization."""
        browser_config.browser_state_path.write_text("{ invalid json }")

        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config) as manager:
            assert manager.is_initialized
            assert "storage_state" not in browser_mock.new_context.call_args.kwargs


class TestFetchText:
    """Landing visit followed by the data request."""

    @pytest.mark.asyncio
    async def test_returns_body_and_saves_state(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config) as manager:
            body = await manager.fetch_text("https://bank.example.com/home", "https://bank.example.com/api")

        assert "DollarBuyRate" in body
        page = context_mock.new_page.return_value
        assert page.goto.call_args[0][0] == "https://bank.example.com/home"
        page.close.assert_awaited_once()
        request_kwargs = context_mock.request.get.call_args.kwargs
        assert request_kwargs["headers"]["Accept"] == "application/xml"
        assert browser_config.browser_state_path.exists()

    @pytest.mark.asyncio
    async def test_navigation_failure_is_transport_error(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        context_mock.new_page.return_value.goto = AsyncMock(side_effect=TimeoutError("Timeout 5000ms exceeded"))
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config) as manager:
            with pytest.raises(TransportError, match="navigation failed"):
                await manager.fetch_text("https://bank.example.com/home", "https://bank.example.com/api")

        context_mock.new_page.return_value.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_blocked_data_request_is_status_error(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        blocked = MagicMock(ok=False, status=403)
        context_mock.request.get = AsyncMock(return_value=blocked)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config) as manager:
            with pytest.raises(ResponseStatusError) as exc_info:
                await manager.fetch_text("https://bank.example.com/home", "https://bank.example.com/api")

        assert exc_info.value.status_code == 403


class TestBrowserCleanup:
    """Test suite for resource cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_closes_resources(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config) as manager:
            pass

        context_mock.close.assert_called_once()
        browser_mock.close.assert_called_once()
        pw_mock.stop.assert_called_once()
        assert not manager.is_initialized

    @pytest.mark.asyncio
    async def test_cleanup_handles_exceptions_gracefully(
        self,
        browser_config: GlobalConfig,
        mocker: MockerFixture,
    ) -> None:
        """Verify cleanup continues even if close() raises exceptions."""
        async_pw, pw_mock, browser_mock, context_mock = create_playwright_mock(mocker)
        context_mock.close = AsyncMock(side_effect=RuntimeError("Close failed"))
        mocker.patch("dollar_rates.browser.async_playwright", return_value=async_pw)

        async with BrowserManager.create(browser_config):
            pass

        pw_mock.stop.assert_called_once()
