"""Headless-browser fetching for ev.or.kr subsidy pages.

The subsidy tables are rendered client-side, so each region page is loaded
in Playwright (async API) and its markup captured once the table appears.

Resources:
  BrowserHost    one Chromium + context for the whole run (async context
                 manager; torn down on every exit path)
  SessionRunner  one region at a time; each attempt owns a fresh page that
                 is closed in `finally`, never shared between attempts

Per region the runner is a small state machine:

    ATTEMPTING(n) -> SUCCESS
                  -> ATTEMPTING(n+1)   after base_delay * n seconds
                  -> FAILED            once n == max_retries

Navigation errors, navigation timeouts and table-selector timeouts are all
retried. `fetch_region` always returns a RawFetchOutcome and never raises.
"""

import asyncio
import datetime
import enum
import logging
from typing import Awaitable, Callable
from urllib.parse import urlencode

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
)

from evsubsidy.config import Settings
from evsubsidy.errors import BrowserHostError
from evsubsidy.models import RawFetchOutcome, Region
from evsubsidy.scraper.table_parser import TableParser

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

TABLE_SELECTOR = "table"

UrlBuilder = Callable[[Region], str]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# ---------------------------------------------------------------------------
# URL builders
# ---------------------------------------------------------------------------

def quota_url_builder(base_url: str) -> UrlBuilder:
    def build(region: Region) -> str:
        return f"{base_url}?{urlencode({'local_cd': region.code})}"
    return build


def price_url_builder(base_url: str, year: int, car_type: str) -> UrlBuilder:
    def build(region: Region) -> str:
        query = urlencode({
            "year": year,
            "local_cd": region.code,
            "local_nm": region.local_area_name,
            "car_type": car_type,
            "pnph": "",
        })
        return f"{base_url}?{query}"
    return build


# ---------------------------------------------------------------------------
# Browser host
# ---------------------------------------------------------------------------

class BrowserHost:
    """The one Chromium instance shared by every fetch in a run."""

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._pw: Playwright | None = None
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None

    async def __aenter__(self) -> "BrowserHost":
        logger.info("Starting headless browser...")
        try:
            self._pw = await async_playwright().start()
            self.browser = await self._pw.chromium.launch(
                headless=self.headless,
                args=CHROMIUM_ARGS,
            )
            self.context = await self.browser.new_context(
                user_agent=USER_AGENT,
                viewport={"width": 1920, "height": 1080},
                java_script_enabled=True,
            )
        except Exception as e:
            await self.close()
            raise BrowserHostError(f"Could not start browser: {e}") from e
        logger.info("Browser ready")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def new_page(self) -> Page:
        if self.context is None:
            raise BrowserHostError("Browser host is not running")
        return await self.context.new_page()

    async def close(self):
        for name, closer in (
            ("context", self.context.close if self.context else None),
            ("browser", self.browser.close if self.browser else None),
            ("playwright", self._pw.stop if self._pw else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.debug(f"Closing {name} failed: {e}")
        self.context = None
        self.browser = None
        self._pw = None
        logger.info("Browser closed")


# ---------------------------------------------------------------------------
# Session runner
# ---------------------------------------------------------------------------

class FetchState(str, enum.Enum):
    ATTEMPTING = "ATTEMPTING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class SessionRunner:
    """Fetches and parses one region page with retry and backoff."""

    def __init__(
        self,
        host,
        parser: TableParser,
        url_builder: UrlBuilder,
        max_retries: int = 3,
        attempt_timeout: float = 45.0,
        nav_timeout_ms: int = 30_000,
        table_timeout_ms: int = 10_000,
        retry_base_delay: float = 2.0,
        table_selector: str = TABLE_SELECTOR,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            host: Anything with an async `new_page()`; normally a BrowserHost.
            parser: Turns captured markup into records.
            url_builder: Region -> target page URL.
            attempt_timeout: Ceiling in seconds for navigation plus table wait
                of one attempt.
        """
        self.host = host
        self.parser = parser
        self.url_builder = url_builder
        self.max_retries = max(1, max_retries)
        self.attempt_timeout = attempt_timeout
        self.nav_timeout_ms = nav_timeout_ms
        self.table_timeout_ms = table_timeout_ms
        self.retry_base_delay = retry_base_delay
        self.table_selector = table_selector
        self._sleep = sleep

    @classmethod
    def from_settings(cls, host, parser: TableParser, url_builder: UrlBuilder, settings: Settings) -> "SessionRunner":
        return cls(
            host,
            parser,
            url_builder,
            max_retries=settings.MAX_RETRIES,
            attempt_timeout=settings.ATTEMPT_TIMEOUT,
            nav_timeout_ms=settings.NAV_TIMEOUT_MS,
            table_timeout_ms=settings.TABLE_TIMEOUT_MS,
            retry_base_delay=settings.RETRY_BASE_DELAY,
        )

    async def _capture(self, page: Page, url: str) -> str:
        await page.goto(url, wait_until="networkidle", timeout=self.nav_timeout_ms)
        await page.wait_for_selector(self.table_selector, timeout=self.table_timeout_ms)
        return await page.content()

    async def _attempt(self, url: str) -> str:
        """One attempt: fresh page -> navigate -> wait for table -> markup.

        The page is opened before the attempt timer starts so a timeout can
        never cancel `new_page()` half way and leave an unclosed page behind.
        """
        page = await self.host.new_page()
        try:
            return await asyncio.wait_for(self._capture(page, url), timeout=self.attempt_timeout)
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Page close failed for {url}: {e}")

    async def fetch_region(self, region: Region) -> RawFetchOutcome:
        url = self.url_builder(region)
        label = region.display_name

        state = FetchState.ATTEMPTING
        attempt = 1
        markup = None
        last_error = None

        while state is FetchState.ATTEMPTING:
            try:
                markup = await self._attempt(url)
                state = FetchState.SUCCESS
            except asyncio.TimeoutError:
                last_error = f"attempt timed out after {self.attempt_timeout:.0f}s"
            except Exception as e:
                last_error = str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__

            if state is FetchState.SUCCESS:
                break
            if attempt >= self.max_retries:
                state = FetchState.FAILED
                break

            wait = self.retry_base_delay * attempt
            logger.warning(f"{label}: attempt {attempt}/{self.max_retries} failed ({last_error}), retrying in {wait:.1f}s")
            await self._sleep(wait)
            attempt += 1

        if state is FetchState.FAILED:
            logger.error(f"{label}: all {self.max_retries} attempts failed: {last_error}")
            return RawFetchOutcome(
                region=region,
                success=False,
                attempts=attempt,
                error_message=last_error or "unknown error",
                fetched_at=utcnow(),
            )

        if attempt > 1:
            logger.info(f"{label}: succeeded on attempt {attempt}")
        # BeautifulSoup parsing is CPU bound; keep it off the event loop.
        records = await asyncio.to_thread(self.parser.parse, markup)
        return RawFetchOutcome(
            region=region,
            success=True,
            attempts=attempt,
            raw_markup=markup,
            fetched_at=utcnow(),
            records=tuple(records),
        )
