import logging
import random

logger = logging.getLogger(__name__)

USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36",
    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    # Firefox on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0",
    # Firefox on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    # Safari on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    # Chrome on Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36 Edg/119.0.0.0",
]

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1440, "height": 900},
    {"width": 1536, "height": 864},
    {"width": 1280, "height": 720},
    {"width": 1600, "height": 900},
    {"width": 2560, "height": 1440},
]


class UserAgentRotator:
    """Hands out desktop browser identities for page fetches."""

    def __init__(self, user_agents: list[str] | None = None, viewports: list[dict] | None = None,
                 rng: random.Random | None = None):
        self.user_agents = list(user_agents or USER_AGENTS)
        self.viewports = list(viewports or VIEWPORTS)
        self._rng = rng or random.Random()
        self._last_used_index = -1

    def get_random_user_agent(self) -> str:
        """Pick a user agent, never the same one twice in a row."""
        if len(self.user_agents) > 1:
            candidates = [i for i in range(len(self.user_agents)) if i != self._last_used_index]
            index = self._rng.choice(candidates)
        else:
            index = 0

        self._last_used_index = index
        user_agent = self.user_agents[index]
        logger.debug("Selected user agent", extra={"index": index, "user_agent": user_agent[:50]})
        return user_agent

    def get_random_viewport(self) -> dict:
        viewport = dict(self._rng.choice(self.viewports))
        logger.debug("Selected viewport", extra=viewport)
        return viewport

    @staticmethod
    def get_browser_type(user_agent: str) -> str:
        if "Edg" in user_agent:
            return "edge"
        if "Chrome" in user_agent:
            return "chrome"
        if "Firefox" in user_agent:
            return "firefox"
        if "Safari" in user_agent:
            return "safari"
        return "unknown"

    @staticmethod
    def get_os_type(user_agent: str) -> str:
        if "Windows" in user_agent:
            return "windows"
        if "Macintosh" in user_agent:
            return "macos"
        if "Linux" in user_agent:
            return "linux"
        return "unknown"

    def get_stats(self) -> dict:
        browsers: dict[str, int] = {}
        operating_systems: dict[str, int] = {}

        for ua in self.user_agents:
            browser = self.get_browser_type(ua)
            os_type = self.get_os_type(ua)
            browsers[browser] = browsers.get(browser, 0) + 1
            operating_systems[os_type] = operating_systems.get(os_type, 0) + 1

        return {
            "total_user_agents": len(self.user_agents),
            "browsers": browsers,
            "operating_systems": operating_systems,
        }


user_agent_rotator = UserAgentRotator()
