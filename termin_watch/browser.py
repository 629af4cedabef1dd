"""
Termin Watch - Browser Session

One Chromium process, context and page per check, with the anti-detection
setup the booking site needs. Everything opened here is released by
close(), which is safe to call more than once.
"""

import logging
from typing import Optional

from playwright.sync_api import Browser, BrowserContext, Page, Playwright, sync_playwright

from .config import SessionConfig, proxy_for_playwright
from .errors import ResourceCleanupError

logger = logging.getLogger("TerminWatch.Browser")


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1280, "height": 720}

BROWSER_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]

STEALTH_SCRIPT = """
    // Hide webdriver
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });

    // Override plugins
    Object.defineProperty(navigator, 'plugins', {
        get: () => [1, 2, 3, 4, 5]
    });

    // Override languages
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
"""


class BrowserSession:
    """
    Owns the Playwright driver, browser, context and page of one check.

    Usage:
        with BrowserSession(config) as page:
            page.goto(...)
    """

    def __init__(self, config: SessionConfig):
        self.config = config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._closed = False

    def open(self) -> Page:
        if self._closed:
            raise RuntimeError("BrowserSession cannot be reopened after close()")
        if self.page is not None:
            return self.page

        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(
            headless=self.config.headless,
            args=BROWSER_ARGS,
            timeout=90000,
        )
        logger.info(f"[BROWSER] Launched (headless={self.config.headless})")

        context_options = {
            "user_agent": USER_AGENT,
            "viewport": VIEWPORT,
            "locale": "en-US",
        }

        proxy = proxy_for_playwright(self.config.proxy)
        if proxy:
            # Residential proxies re-sign TLS; relax validation only on this context
            context_options["proxy"] = proxy
            context_options["ignore_https_errors"] = True
            logger.info(f"[PROXY] Using proxy: {proxy['server'][:40]}")

        self._context = self._browser.new_context(**context_options)
        self._context.set_default_timeout(self.config.timeouts.navigation_ms)
        self._context.set_default_navigation_timeout(self.config.timeouts.navigation_ms)

        self.page = self._context.new_page()
        self.page.add_init_script(STEALTH_SCRIPT)
        return self.page

    def close(self) -> None:
        """Release everything in reverse order; second call is a no-op"""
        if self._closed:
            return
        self._closed = True

        for name, resource in (
            ("page", self.page),
            ("context", self._context),
            ("browser", self._browser),
        ):
            if resource is None:
                continue
            try:
                resource.close()
            except Exception as e:
                logger.warning(f"[CLEANUP] {ResourceCleanupError(f'{name} close failed: {e}')}")

        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception as e:
                logger.warning(f"[CLEANUP] {ResourceCleanupError(f'playwright stop failed: {e}')}")

        self.page = None
        self._context = None
        self._browser = None
        self._playwright = None
        logger.debug("[CLEANUP] Browser session released")

    def __enter__(self) -> Page:
        try:
            return self.open()
        except BaseException:
            self.close()
            raise

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
