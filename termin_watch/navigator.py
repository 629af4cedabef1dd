"""
Termin Watch - Availability Navigator

Reads the month calendar. A month is "available" when the site's
"no appointments" heading is missing; nothing else on the page counts.
Every inspection first proves we really are on the calendar, so an error
page or a lingering captcha can never read as availability.
"""

import logging
from typing import Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .captcha import CHALLENGE_INPUT
from .config import Timeouts
from .errors import NavigationError, UnexpectedPageStateError

logger = logging.getLogger("TerminWatch.Navigator")


NO_SLOTS_MARKER = 'h2:has-text("Unfortunately, there are no appointments available")'
# Month arrows: images/go-next.gif and images/go-previous.gif
MONTH_NAV_ICON = 'a img[src^="images/go-"]'
NEXT_MONTH_CONTROL = 'a:has(img[src="images/go-next.gif"])'


class AvailabilityNavigator:

    def __init__(self, timeouts: Optional[Timeouts] = None, wait_until: str = "networkidle"):
        self.timeouts = timeouts or Timeouts()
        self.wait_until = wait_until

    def check_current_page(self, page: Page) -> bool:
        """
        True if the calendar on screen shows no "no appointments" marker.

        Raises:
            UnexpectedPageStateError: still on the captcha, or not on the calendar
        """
        if page.locator(CHALLENGE_INPUT).count() > 0:
            raise UnexpectedPageStateError("Captcha input still present; calendar not reached")

        if page.locator(MONTH_NAV_ICON).count() == 0:
            raise UnexpectedPageStateError("Month navigation missing; not on the appointment calendar")

        marker_count = page.locator(NO_SLOTS_MARKER).count()
        available = marker_count == 0
        logger.info(
            f"[CALENDAR] {'AVAILABLE' if available else 'NOT AVAILABLE'} "
            f"(no-appointments marker count: {marker_count})"
        )
        return available

    def advance_and_check_next_page(self, page: Page) -> bool:
        """Move one month forward and inspect it; False when there is no next month"""
        next_link = page.locator(NEXT_MONTH_CONTROL)
        if next_link.count() == 0:
            logger.info("[CALENDAR] No next month button found")
            return False

        logger.info("→ Clicking NEXT month button")
        try:
            next_link.first.click(timeout=self.timeouts.navigation_ms)
        except PlaywrightError as e:
            raise NavigationError(f"Next month click failed: {e}") from e

        try:
            page.wait_for_load_state(self.wait_until, timeout=self.timeouts.navigation_ms)
        except PlaywrightTimeoutError:
            logger.warning("[CALENDAR] Next month did not settle in time; inspecting anyway")
        page.wait_for_timeout(self.timeouts.post_submit_settle_ms)

        return self.check_current_page(page)
