"""Outbound HTTP with a consistent browser identity.

``HttpClient`` wraps one ``aiohttp.ClientSession``. Every request carries the
same browser profile (User-Agent and client hints) plus the Accept/Sec-Fetch
headers appropriate to what is being fetched: a page navigation, a script
resource or an API call. Each request has its own timeout, so a hung
connection only fails that step.

The shared client used by simple sources keeps no cookies. The protected
source opens a private client with a real cookie jar for each attempt.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Self

import aiohttp

from config.settings import GlobalConfig, get_config
from config.sources import HeaderProfile
from dollar_rates.exceptions import ResponseStatusError, TransportError
from dollar_rates.logger import get_logger

log = get_logger(__name__)

MAX_REDIRECTS = 10


@dataclass(frozen=True)
class HttpResponse:
    """Fully read response."""

    url: str
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def browser_identity(user_agent: str) -> dict[str, str]:
    """Headers shared by every request: user agent and matching client hints."""
    return {
        "User-Agent": user_agent,
        "Accept-Language": "en-US,en;q=0.9,es-US;q=0.8,es;q=0.7",
        "Sec-Ch-Ua": '"Not:A-Brand";v="99", "Google Chrome";v="145", "Chromium";v="145"',
        "Sec-Ch-Ua-Mobile": "?0",
        "Sec-Ch-Ua-Platform": '"macOS"',
    }


PROFILE_HEADERS: dict[HeaderProfile, dict[str, str]] = {
    HeaderProfile.DOCUMENT: {
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,"
            "image/avif,image/webp,*/*;q=0.8"
        ),
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Upgrade-Insecure-Requests": "1",
    },
    HeaderProfile.RESOURCE: {
        "Accept": "*/*",
        "Sec-Fetch-Dest": "script",
        "Sec-Fetch-Mode": "no-cors",
        "Sec-Fetch-Site": "same-origin",
    },
    HeaderProfile.API_JSON: {
        "Accept": "application/json",
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
    },
    HeaderProfile.API_XML: {
        "Accept": "application/xml",
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
    },
}


def build_headers(
    user_agent: str,
    profile: HeaderProfile,
    extra: dict[str, str] | None = None,
) -> dict[str, str]:
    """Combine the browser identity, the profile headers and per-request extras."""
    headers = browser_identity(user_agent)
    headers.update(PROFILE_HEADERS[profile])
    if extra:
        headers.update(extra)
    return headers


class HttpClient:
    """Async HTTP client with per-request timeouts and typed failures.

    Example:
        async with HttpClient.create(config) as client:
            response = await client.get(url, profile=HeaderProfile.API_JSON)
    """

    def __init__(self, config: GlobalConfig, *, keep_cookies: bool = False) -> None:
        """Do not instantiate directly; use ``create()``."""
        self.config = config
        self.keep_cookies = keep_cookies
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    @asynccontextmanager
    async def create(
        cls,
        config: GlobalConfig | None = None,
        *,
        keep_cookies: bool = False,
    ) -> AsyncGenerator[Self, None]:
        """Open a client for the duration of the ``async with`` block.

        Args:
            config: Optional GlobalConfig. Uses singleton if not provided.
            keep_cookies: Accumulate cookies across requests (session replay).
        """
        instance = cls(config or get_config(), keep_cookies=keep_cookies)
        try:
            await instance._open()
            yield instance
        finally:
            await instance.close()

    async def _open(self) -> None:
        if self.keep_cookies:
            # unsafe: also accept cookies from IP-addressed hosts (local proxies)
            jar: aiohttp.CookieJar | aiohttp.DummyCookieJar = aiohttp.CookieJar(unsafe=True)
        else:
            jar = aiohttp.DummyCookieJar()
        self._session = aiohttp.ClientSession(
            cookie_jar=jar,
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_ms / 1000),
        )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def cookie_names(self) -> list[str]:
        """Names of the cookies collected so far."""
        if self._session is None:
            return []
        return sorted({cookie.key for cookie in self._session.cookie_jar})

    async def get(
        self,
        url: str,
        *,
        profile: HeaderProfile = HeaderProfile.DOCUMENT,
        headers: dict[str, str] | None = None,
        timeout_ms: int | None = None,
        expect_success: bool = True,
    ) -> HttpResponse:
        """Send a GET request and read the whole body.

        Args:
            url: Absolute URL.
            profile: Header profile for the kind of resource requested.
            headers: Extra headers overriding the profile.
            timeout_ms: Timeout override for this request.
            expect_success: Raise on non-2xx status.

        Returns:
            The response status and decoded body.

        Raises:
            TransportError: On connection failures and timeouts.
            ResponseStatusError: On non-2xx status when ``expect_success``.
        """
        if self._session is None:
            raise TransportError(url=url, reason="HTTP client is not open")

        timeout = aiohttp.ClientTimeout(
            total=(timeout_ms or self.config.request_timeout_ms) / 1000
        )
        request_headers = build_headers(self.config.user_agent, profile, headers)

        log.debug("HTTP GET", url=url, profile=profile.value)

        try:
            async with self._session.get(
                url,
                headers=request_headers,
                timeout=timeout,
                max_redirects=MAX_REDIRECTS,
            ) as response:
                body = await response.text(errors="replace")
                result = HttpResponse(url=str(response.url), status=response.status, text=body)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                url=url,
                reason=f"timeout after {timeout.total:.1f}s",
            ) from exc
        except aiohttp.ClientError as exc:
            raise TransportError(url=url, reason=f"{type(exc).__name__}: {exc}") from exc

        log.debug("HTTP response", url=url, status_code=result.status, size=len(result.text))

        if expect_success and not result.ok:
            raise ResponseStatusError(url=url, status_code=result.status)
        return result
