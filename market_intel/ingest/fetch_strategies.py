"""Lightweight and headless fetch strategies for competitor inventory pages.

A competitor is fetched with plain HTTP + selectolax first. A 403/challenge
page or an empty parse means the page needs a real browser: the caller flips
the competitor to headless mode and the headless strategy runs once. Network
failures are surfaced without flipping the mode.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
from playwright.async_api import Page, async_playwright, TimeoutError as PlaywrightTimeoutError

from market_intel.config import settings
from market_intel.errors import (
    BlockedError,
    ErrorKind,
    NoDataFoundError,
    ScrapeConnectionError,
    ScrapeError,
)
from market_intel.ingest.base import ScrapedVehicle
from market_intel.ingest.content_analyzer import content_analyzer
from market_intel.ingest.parsers import detect_platform, get_parser
from market_intel import metrics

logger = logging.getLogger(__name__)


class FetchStrategy(str, Enum):
    """Fetch strategies, cheapest first."""
    LIGHT = "light"
    HEADLESS = "headless"


@dataclass
class FetchOutcome:
    """Result of fetching one competitor page."""
    vehicles: list[ScrapedVehicle]
    strategy: FetchStrategy
    platform: str
    duration_ms: float
    escalated: bool = False
    escalation_kind: Optional[ErrorKind] = None
    escalation_reason: Optional[str] = None


BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",  # /dev/shm is tiny on small containers
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]


@asynccontextmanager
async def headless_session() -> AsyncIterator[Page]:
    """Launch Chromium for one scrape and always tear it down.

    Page and browser are closed on every exit path, including navigation
    timeouts, parser exceptions and task cancellation.
    """
    playwright = await async_playwright().start()
    browser = None
    page = None
    try:
        browser = await playwright.chromium.launch(headless=True, args=CHROMIUM_ARGS)
        page = await browser.new_page(
            viewport={"width": 1920, "height": 1080},
            user_agent=settings.scraper_user_agent,
        )
        yield page
    finally:
        if page is not None:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Error closing page: {e}")
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.debug(f"Error closing browser: {e}")
        await playwright.stop()


class CompetitorFetcher:
    """Fetches and parses competitor inventory pages."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the lightweight HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.scrape_static_timeout,
                follow_redirects=True,
                headers={**BROWSER_HEADERS, "User-Agent": settings.scraper_user_agent},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        url: str,
        platform_type: Optional[str] = None,
        use_headless: bool = False,
        on_escalate: Optional[Callable[[ScrapeError], Awaitable[None]]] = None,
    ) -> FetchOutcome:
        """Fetch a competitor page, escalating to headless once if needed.

        Args:
            url: Competitor inventory page
            platform_type: Explicit parser tag; detected from markup when omitted
            use_headless: Competitor is already flagged as needing a browser
            on_escalate: Awaited before the headless retry so the mode flip is
                persisted even if the retry fails

        Returns:
            FetchOutcome; ``escalated`` tells the caller to persist headless mode

        Raises:
            ScrapeError: BLOCKED/NO_DATA_FOUND after the headless retry, or CONNECTION_ERROR
        """
        start = time.monotonic()

        if not use_headless:
            try:
                vehicles, platform = await self.fetch_light(url, platform_type)
            except (BlockedError, NoDataFoundError) as e:
                logger.warning(f"Lightweight fetch failed for {url} ({e.kind.value}), escalating to headless")
                metrics.record_escalation(e.kind.value)
                if on_escalate is not None:
                    await on_escalate(e)
                vehicles, platform = await self.fetch_headless(url, platform_type)
                return FetchOutcome(
                    vehicles=vehicles,
                    strategy=FetchStrategy.HEADLESS,
                    platform=platform,
                    duration_ms=(time.monotonic() - start) * 1000,
                    escalated=True,
                    escalation_kind=e.kind,
                    escalation_reason=e.message,
                )
            return FetchOutcome(
                vehicles=vehicles,
                strategy=FetchStrategy.LIGHT,
                platform=platform,
                duration_ms=(time.monotonic() - start) * 1000,
            )

        vehicles, platform = await self.fetch_headless(url, platform_type)
        return FetchOutcome(
            vehicles=vehicles,
            strategy=FetchStrategy.HEADLESS,
            platform=platform,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    async def fetch_light(
        self, url: str, platform_type: Optional[str] = None
    ) -> tuple[list[ScrapedVehicle], str]:
        """Plain HTTP GET + selectolax parse."""
        client = await self._get_client()
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise ScrapeConnectionError(f"Connection timed out: {e}") from e
        except httpx.TransportError as e:
            raise ScrapeConnectionError(f"Connection failed: {e}") from e

        if response.status_code == 403:
            raise BlockedError("Website blocking automated requests (403 Forbidden)")
        if response.status_code >= 400:
            raise ScrapeError(f"HTTP {response.status_code} fetching inventory page")

        html = response.text
        platform = platform_type or detect_platform(html)
        vehicles = get_parser(platform).parse(html)

        if not vehicles:
            analysis = content_analyzer.analyze(html)
            if analysis.is_blocked:
                raise BlockedError(f"Bot challenge detected ({analysis.block_type})")
            raise NoDataFoundError("No vehicles found - may require JavaScript rendering")

        logger.info(f"Lightweight fetch parsed {len(vehicles)} vehicles from {url} ({platform})")
        return vehicles, platform

    async def fetch_headless(
        self, url: str, platform_type: Optional[str] = None
    ) -> tuple[list[ScrapedVehicle], str]:
        """Render the page in Chromium, exhaust pagination, then parse."""
        logger.info(f"Launching headless browser for {url}")
        try:
            async with headless_session() as page:
                await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=settings.scrape_navigation_timeout_ms,
                )
                await asyncio.sleep(settings.scrape_settle_ms / 1000)

                platform = platform_type or detect_platform(await page.content())
                logger.info(f"Detected platform: {platform}")
                vehicles = await get_parser(platform).collect(page)
        except PlaywrightTimeoutError as e:
            raise ScrapeConnectionError(f"Page navigation timed out: {e}") from e

        if not vehicles:
            raise NoDataFoundError("No vehicles found after headless render")

        logger.info(f"Headless fetch parsed {len(vehicles)} vehicles from {url} ({platform})")
        return vehicles, platform
