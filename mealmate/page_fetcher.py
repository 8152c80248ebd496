"""
Page retrieval for the recipe parser.

`BrowserPageFetcher` renders pages in headless Chromium through Playwright so
that recipe cards injected by JavaScript are present in the HTML.
`HttpPageFetcher` is the lightweight alternative used when
USE_HEADLESS_BROWSER is off: a single `requests.get` with no script execution.
"""

import logging
from dataclasses import dataclass

import requests
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from mealmate import config
from mealmate.user_agents import UserAgentRotator, user_agent_rotator

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]


class PageFetchError(Exception):
    """Raised when a page cannot be retrieved."""
    pass


@dataclass
class FetchedPage:
    url: str
    final_url: str
    html: str


class BrowserPageFetcher:
    """Fetch fully rendered HTML with headless Chromium.

    Playwright's sync API binds its objects to the thread that created them,
    and Flask serves requests from a thread pool, so every fetch runs its own
    short-lived browser.
    """

    def __init__(self, timeout_ms: int | None = None, rotator: UserAgentRotator | None = None):
        self.timeout_ms = timeout_ms or config.BROWSER_TIMEOUT_MS
        self.rotator = rotator or user_agent_rotator
        self.is_ready = False

    def initialize(self) -> None:
        """Verify that Chromium can be launched."""
        logger.info("Checking headless browser launch")
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True, args=BROWSER_ARGS)
                browser.close()
        except PlaywrightError as e:
            self.is_ready = False
            raise PageFetchError(f"Failed to launch browser: {e}") from e
        self.is_ready = True
        logger.info("Headless browser ready")

    def close(self) -> None:
        self.is_ready = False

    def fetch(self, url: str) -> FetchedPage:
        user_agent = self.rotator.get_random_user_agent()
        viewport = self.rotator.get_random_viewport()

        logger.info("Navigating to URL", extra={"url": url})
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(headless=True, args=BROWSER_ARGS)
                try:
                    context = browser.new_context(user_agent=user_agent, viewport=viewport)
                    page = context.new_page()
                    page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
                    html = page.content()
                    final_url = page.url
                    context.close()
                finally:
                    browser.close()
        except PlaywrightError as e:
            raise PageFetchError(f"Failed to load page: {e}") from e

        self.is_ready = True
        return FetchedPage(url=url, final_url=final_url, html=html)


class HttpPageFetcher:
    """Fetch raw HTML over HTTP without rendering."""

    def __init__(self, timeout_ms: int | None = None, rotator: UserAgentRotator | None = None,
                 session: requests.Session | None = None):
        self.timeout_ms = timeout_ms or config.BROWSER_TIMEOUT_MS
        self.rotator = rotator or user_agent_rotator
        self.session = session or requests.Session()
        self.is_ready = True

    def initialize(self) -> None:
        self.is_ready = True

    def close(self) -> None:
        self.session.close()

    def fetch(self, url: str) -> FetchedPage:
        headers = {
            "User-Agent": self.rotator.get_random_user_agent(),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        logger.info("Fetching URL", extra={"url": url})
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout_ms / 1000)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PageFetchError(f"Failed to fetch URL: {e}") from e

        return FetchedPage(url=url, final_url=response.url or url, html=response.text)


def create_page_fetcher():
    """Build the fetcher selected by configuration."""
    if config.USE_HEADLESS_BROWSER:
        return BrowserPageFetcher()
    return HttpPageFetcher()
