"""Page fetchers scoped to one batch of work.

Two implementations share one small async interface:

- ``HttpPageFetcher``: aiohttp session with a cookie jar, for server-rendered
  pages and Web-Forms postbacks (cookies persist across calls).
- ``BrowserPageFetcher``: a headless Chromium via Playwright for pages that
  render client-side; ``get`` returns the DOM after rendering.

Each is an async context manager. A worker opens one per batch and closes it
afterwards, so at most one external connection pool exists per worker.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Mapping, Optional, Protocol

import aiohttp
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from lots_ingest.config import HTTP_SETTINGS
from lots_ingest.utils import get_logger

logger = get_logger(__name__)


class FetchError(Exception):
    """A page could not be loaded (network error, timeout or non-2xx status)."""

    def __init__(self, url: str, message: str, status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(f"{message} ({url})")


class PageFetcher(Protocol):
    async def get(self, url: str) -> str: ...
    async def post(self, url: str, form: Mapping[str, str]) -> str: ...
    async def __aenter__(self) -> "PageFetcher": ...
    async def __aexit__(self, exc_type, exc, tb) -> None: ...


FetcherFactory = Callable[[], PageFetcher]


class HttpPageFetcher:
    def __init__(self, *, timeout_seconds: float | None = None, user_agent: str | None = None):
        self._timeout = aiohttp.ClientTimeout(total=float(timeout_seconds or HTTP_SETTINGS["timeout_seconds"]))
        self._headers = {
            "User-Agent": str(user_agent or HTTP_SETTINGS["user_agent"]),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "ru-RU,ru;q=0.9,en;q=0.8",
        }
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpPageFetcher":
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            headers=self._headers,
            cookie_jar=aiohttp.CookieJar(unsafe=True),
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("HTTP session not initialized. Use 'async with'")
        return self._session

    async def get(self, url: str) -> str:
        return await self._request("GET", url)

    async def post(self, url: str, form: Mapping[str, str]) -> str:
        return await self._request("POST", url, data=dict(form))

    async def _request(self, method: str, url: str, **kwargs) -> str:
        session = self._require_session()
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    logger.warning("Page request failed", method=method, url=url, status_code=response.status)
                    raise FetchError(url, f"HTTP {response.status}", status=response.status)
                return await response.text()
        except asyncio.TimeoutError:
            logger.warning("Page request timed out", method=method, url=url)
            raise FetchError(url, "timeout") from None
        except aiohttp.ClientError as e:
            logger.warning("Page request client error", method=method, url=url, error=str(e))
            raise FetchError(url, f"client error: {e}") from e


class BrowserPageFetcher:
    def __init__(self, *, headless: bool = True, render_wait_ms: float | None = None, user_agent: str | None = None):
        self.headless = headless
        self.render_wait_ms = float(render_wait_ms if render_wait_ms is not None else HTTP_SETTINGS["render_wait_ms"])
        self.user_agent = str(user_agent or HTTP_SETTINGS["user_agent"])
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def __aenter__(self) -> "BrowserPageFetcher":
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._context = await self._browser.new_context(user_agent=self.user_agent)
        logger.info("Browser started")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = self._browser = self._playwright = None
        logger.info("Browser closed")

    async def get(self, url: str) -> str:
        if self._context is None:
            raise RuntimeError("Browser not initialized. Use 'async with'")
        page = await self._context.new_page()
        try:
            response = await page.goto(url, wait_until="networkidle", timeout=float(HTTP_SETTINGS["timeout_seconds"]) * 1000)
            if response is not None and response.status >= 400:
                raise FetchError(url, f"HTTP {response.status}", status=response.status)
            if self.render_wait_ms > 0:
                await page.wait_for_timeout(self.render_wait_ms)
            return await page.content()
        except FetchError:
            raise
        except Exception as e:
            logger.warning("Browser navigation failed", url=url, error=str(e))
            raise FetchError(url, f"navigation failed: {e}") from e
        finally:
            await page.close()

    async def post(self, url: str, form: Mapping[str, str]) -> str:
        raise FetchError(url, "form posts are not supported by the browser fetcher")


__all__ = [
    "FetchError",
    "PageFetcher",
    "FetcherFactory",
    "HttpPageFetcher",
    "BrowserPageFetcher",
]
