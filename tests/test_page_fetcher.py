from unittest.mock import MagicMock, Mock, patch

import pytest
import requests
from playwright.sync_api import Error as PlaywrightError

from mealmate.page_fetcher import BROWSER_ARGS, BrowserPageFetcher, HttpPageFetcher, PageFetchError
from mealmate.user_agents import UserAgentRotator


@pytest.fixture
def rotator():
    rotator = Mock(spec=UserAgentRotator)
    rotator.get_random_user_agent.return_value = "test-agent"
    rotator.get_random_viewport.return_value = {"width": 1280, "height": 720}
    return rotator


@pytest.fixture
def playwright():
    """Patch sync_playwright and return (patched factory, browser, page)."""
    with patch("mealmate.page_fetcher.sync_playwright") as mock_sync_playwright:
        p = MagicMock()
        mock_sync_playwright.return_value.__enter__.return_value = p
        browser = p.chromium.launch.return_value
        page = browser.new_context.return_value.new_page.return_value
        page.content.return_value = "<html>rendered</html>"
        page.url = "https://example.com/final"
        yield mock_sync_playwright, browser, page


class TestBrowserPageFetcher:
    def test_fetch_renders_page(self, playwright, rotator):
        _, browser, page = playwright
        fetcher = BrowserPageFetcher(timeout_ms=5000, rotator=rotator)

        result = fetcher.fetch("https://example.com/recipe")

        assert result.html == "<html>rendered</html>"
        assert result.final_url == "https://example.com/final"
        browser.new_context.assert_called_once_with(user_agent="test-agent", viewport={"width": 1280, "height": 720})
        page.goto.assert_called_once_with("https://example.com/recipe", wait_until="networkidle", timeout=5000)
        browser.close.assert_called_once()

    def test_launches_headless_with_browser_args(self, playwright, rotator):
        mock_sync_playwright, browser, _ = playwright
        fetcher = BrowserPageFetcher(rotator=rotator)

        fetcher.fetch("https://example.com/recipe")

        p = mock_sync_playwright.return_value.__enter__.return_value
        p.chromium.launch.assert_called_once_with(headless=True, args=BROWSER_ARGS)

    def test_navigation_error_closes_browser(self, playwright, rotator):
        _, browser, page = playwright
        page.goto.side_effect = PlaywrightError("Timeout 30000ms exceeded")
        fetcher = BrowserPageFetcher(rotator=rotator)

        with pytest.raises(PageFetchError, match="Timeout"):
            fetcher.fetch("https://example.com/slow")

        browser.close.assert_called_once()

    def test_initialize_sets_ready(self, playwright, rotator):
        fetcher = BrowserPageFetcher(rotator=rotator)
        assert fetcher.is_ready is False

        fetcher.initialize()

        assert fetcher.is_ready is True
        fetcher.close()
        assert fetcher.is_ready is False

    def test_initialize_failure(self, playwright, rotator):
        mock_sync_playwright, _, _ = playwright
        p = mock_sync_playwright.return_value.__enter__.return_value
        p.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")
        fetcher = BrowserPageFetcher(rotator=rotator)

        with pytest.raises(PageFetchError, match="launch browser"):
            fetcher.initialize()
        assert fetcher.is_ready is False


class TestHttpPageFetcher:
    def test_fetch(self, rotator):
        session = Mock()
        session.get.return_value = Mock(url="https://example.com/final", text="<html>raw</html>")
        fetcher = HttpPageFetcher(timeout_ms=10000, rotator=rotator, session=session)

        result = fetcher.fetch("https://example.com/recipe")

        assert result.html == "<html>raw</html>"
        assert result.final_url == "https://example.com/final"
        args, kwargs = session.get.call_args
        assert args == ("https://example.com/recipe",)
        assert kwargs["headers"]["User-Agent"] == "test-agent"
        assert kwargs["timeout"] == 10

    def test_http_error(self, rotator):
        session = Mock()
        session.get.return_value.raise_for_status.side_effect = requests.HTTPError("403 Forbidden")
        fetcher = HttpPageFetcher(rotator=rotator, session=session)

        with pytest.raises(PageFetchError, match="403"):
            fetcher.fetch("https://example.com/blocked")

    def test_connection_error(self, rotator):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("Name or service not known")
        fetcher = HttpPageFetcher(rotator=rotator, session=session)

        with pytest.raises(PageFetchError):
            fetcher.fetch("https://nowhere.invalid")
