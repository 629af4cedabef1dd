"""
Termin Watch - Appointment Checker

One check = open browser -> load calendar -> solve captcha -> read current
month -> read next month -> close browser. The browser is always released,
whichever step fails.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page

from .browser import BrowserSession
from .captcha import CaptchaChallengeLoop, make_extractor
from .config import SessionConfig
from .diagnostic import ForensicMonitor
from .errors import NavigationError
from .navigator import AvailabilityNavigator
from .solvers import CaptchaResolver

logger = logging.getLogger("TerminWatch.Checker")


CURRENT_MONTH_MESSAGE = "Appointments available in current month!"
NEXT_MONTH_MESSAGE = "Appointments available in next month!"
NO_APPOINTMENTS_MESSAGE = "No appointments available in current or next month"


@dataclass(frozen=True)
class CheckResult:
    available: bool
    message: str
    screenshot: Optional[bytes] = None


def fallback_wait(wait_until: str) -> str:
    """More permissive load state for the second navigation attempt"""
    return "load" if wait_until == "domcontentloaded" else "domcontentloaded"


def navigate(page: Page, config: SessionConfig) -> None:
    """Load the target, retrying once with a more permissive wait strategy"""
    timeout = config.timeouts.navigation_ms
    logger.debug(f"[NAV] Navigating to: {config.target_url}")
    try:
        page.goto(config.target_url, wait_until=config.wait_until, timeout=timeout)
        return
    except PlaywrightError as e:
        retry_wait = fallback_wait(config.wait_until)
        logger.warning(f"⚠️ Nav failed with '{config.wait_until}' ({e}); retrying with '{retry_wait}'")

    try:
        page.goto(config.target_url, wait_until=retry_wait, timeout=timeout)
    except PlaywrightError as e:
        raise NavigationError(f"Target unreachable: {config.target_url} ({e})") from e


class AppointmentChecker:
    """Runs single availability checks against the booking calendar"""

    def __init__(
        self,
        resolver: CaptchaResolver,
        session_factory: Callable[[SessionConfig], BrowserSession] = BrowserSession,
        forensics: Optional[ForensicMonitor] = None,
    ):
        self.resolver = resolver
        self.session_factory = session_factory
        self.forensics = forensics

    def run_check(self, config: SessionConfig) -> CheckResult:
        """
        Perform one complete check.

        Raises:
            NavigationError, CaptchaExtractionError, CaptchaSolveError,
            CaptchaVerificationExhaustedError, UnexpectedPageStateError
            (after the browser has been released)
        """
        session = self.session_factory(config)
        page: Optional[Page] = None
        try:
            page = session.open()
            navigate(page, config)

            # Let client-side rendering finish
            page.wait_for_timeout(config.timeouts.page_settle_ms)

            challenge = CaptchaChallengeLoop(
                self.resolver,
                extractor=make_extractor(config.extraction),
                timeouts=config.timeouts,
                module_hint=config.captcha_module_hint,
                wait_until=config.wait_until,
            )
            challenge.run(page)

            navigator = AvailabilityNavigator(config.timeouts, wait_until=config.wait_until)

            if navigator.check_current_page(page):
                logger.info("🎯 [CHECK] Appointments available in current month!")
                return self._found(page, config, CURRENT_MONTH_MESSAGE)

            logger.info("[CHECK] No appointments in current month, checking next month...")
            if navigator.advance_and_check_next_page(page):
                logger.info("🎯 [CHECK] Appointments available in next month!")
                return self._found(page, config, NEXT_MONTH_MESSAGE)

            logger.info("[CHECK] No appointments available")
            return CheckResult(available=False, message=NO_APPOINTMENTS_MESSAGE)

        except Exception as e:
            if page is not None and config.debug_verbose and self.forensics is not None:
                self.forensics.error_capture(page, f"{type(e).__name__}: {e}")
            raise
        finally:
            session.close()

    def _found(self, page: Page, config: SessionConfig, message: str) -> CheckResult:
        screenshot = None
        if config.debug_verbose:
            try:
                screenshot = page.screenshot(full_page=True)
            except PlaywrightError as e:
                logger.warning(f"⚠️ Result screenshot failed: {e}")
            if screenshot and self.forensics is not None:
                self.forensics.save_image(screenshot, category="available")
        return CheckResult(available=True, message=message, screenshot=screenshot)
