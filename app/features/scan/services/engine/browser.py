import time
from typing import Any, Dict

from selenium import webdriver
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.chrome.webdriver import WebDriver

from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

WINDOW_SIZE = (1280, 720)

# Fonts and media cannot change accessibility results; skip the bandwidth
BLOCKED_URL_PATTERNS = [
    "*.woff", "*.woff2", "*.ttf", "*.otf", "*.eot",
    "*.mp4", "*.webm", "*.ogg", "*.ogv", "*.mp3", "*.wav", "*.m4a", "*.mov",
]


class BrowserFactory:
    """Creates headless Chrome sessions configured for scanning."""

    @staticmethod
    def _options() -> Options:
        chrome_options = Options()
        chrome_options.add_argument("--headless=new")
        chrome_options.add_argument("--no-sandbox")
        chrome_options.add_argument("--disable-dev-shm-usage")
        chrome_options.add_argument("--disable-gpu")
        chrome_options.add_argument("--disable-extensions")
        chrome_options.add_argument(f"--window-size={WINDOW_SIZE[0]},{WINDOW_SIZE[1]}")
        chrome_options.add_argument(f"--user-agent={settings.SCANNER_USER_AGENT}")
        chrome_options.add_experimental_option(
            "prefs", {"profile.managed_default_content_settings.images": 2}
        )
        # DOMContentLoaded is enough; the stability wait covers the rest
        chrome_options.page_load_strategy = "eager"
        if settings.CHROME_BINARY_PATH:
            chrome_options.binary_location = settings.CHROME_BINARY_PATH
        return chrome_options

    @staticmethod
    def create_driver() -> WebDriver:
        """
        Launch a Chrome WebDriver.

        IMPORTANT: Caller MUST call driver.quit() when done!
        """
        service = Service(executable_path=settings.CHROMEDRIVER_PATH or None)
        driver = webdriver.Chrome(service=service, options=BrowserFactory._options())
        try:
            driver.set_page_load_timeout(settings.NAV_TIMEOUT_SECONDS)
            driver.set_script_timeout(settings.SCAN_TIMEOUT_SECONDS)
            driver.execute_cdp_cmd("Network.enable", {})
            driver.execute_cdp_cmd("Network.setBlockedURLs", {"urls": BLOCKED_URL_PATTERNS})
        except Exception:
            driver.quit()
            raise
        return driver

    @staticmethod
    def probe() -> Dict[str, Any]:
        """Launch and close a browser; used by the scanner health check."""
        started = time.monotonic()
        driver = BrowserFactory.create_driver()
        try:
            version = driver.capabilities.get("browserVersion", "unknown")
        finally:
            driver.quit()
        return {
            "browser_version": version,
            "launch_ms": int((time.monotonic() - started) * 1000),
        }
