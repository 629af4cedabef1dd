"""
Termin Watch - Captcha Challenge Loop

The month calendar is gated by a distorted-text captcha rendered as a CSS
background image. The loop below is an explicit state machine:

    NO_CHALLENGE                              (nothing to do)
    DETECTED -> EXTRACTING -> SOLVING -> SUBMITTED -> VERIFIED
        ^                                    |
        +----------- wrong answer -----------+--> FAILED (after 3)

Each non-terminal state has one handler that returns the next state, so
every transition can be exercised against a fake page.
"""

import base64
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .config import Timeouts
from .errors import CaptchaExtractionError, CaptchaSolveError, CaptchaVerificationExhaustedError
from .solvers import CaptchaResolver

logger = logging.getLogger("TerminWatch.Captcha")


# Page selectors (month captcha form)
CHALLENGE_CONTAINER = 'div[style*="background"][style*="data:image"]'
CHALLENGE_INPUT = "input[name='captchaText']"
CONTINUE_BUTTON = "#appointment_captcha_month_appointment_showMonth"

MAX_CAPTCHA_ATTEMPTS = 3

# The site first paints a ~931 byte loading placeholder; real captchas are 5000+
PLACEHOLDER_MAX_BYTES = 2000

# background:white url('data:image/jpg;base64,XXXXX')
_DATA_URL = re.compile(
    r"url\(['\"]?data:(?P<mime>image/[^;]+);base64,(?P<data>[A-Za-z0-9+/=]+)['\"]?\)"
)


class ChallengeState(Enum):
    NO_CHALLENGE = "no_challenge"
    DETECTED = "detected"
    EXTRACTING = "extracting"
    SOLVING = "solving"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ChallengeState.NO_CHALLENGE, ChallengeState.VERIFIED, ChallengeState.FAILED})


@dataclass
class ChallengeAttempt:
    """Wrong answers so far in one loop run"""
    attempt_number: int = 0
    max_attempts: int = MAX_CAPTCHA_ATTEMPTS

    @property
    def exhausted(self) -> bool:
        return self.attempt_number >= self.max_attempts

    @property
    def label(self) -> str:
        return f"{min(self.attempt_number + 1, self.max_attempts)}/{self.max_attempts}"


@dataclass(frozen=True)
class CaptchaImage:
    data: bytes
    media_type: str = "image/png"


# ==================== Image Extraction ====================

class ImageExtractor:
    """Strategy for pulling the challenge image out of its container"""

    name = "extractor"

    def extract(self, page: Page, container: Locator) -> Optional[CaptchaImage]:
        raise NotImplementedError


class InlineImageExtractor(ImageExtractor):
    """
    Decode the base64 data URL from the container's style attribute.

    Polls briefly because the real image replaces a small loading
    placeholder shortly after the page renders.
    """

    name = "inline"

    def __init__(self, poll_attempts: int = 10, poll_interval_ms: int = 100):
        self.poll_attempts = poll_attempts
        self.poll_interval_ms = poll_interval_ms

    @staticmethod
    def decode_style(style: Optional[str]) -> Optional[CaptchaImage]:
        if not style:
            return None
        match = _DATA_URL.search(style)
        if not match:
            return None

        data = match.group("data")
        padding_needed = len(data) % 4
        if padding_needed:
            data += "=" * (4 - padding_needed)

        try:
            image_bytes = base64.b64decode(data)
        except ValueError:
            return None
        return CaptchaImage(data=image_bytes, media_type=match.group("mime"))

    def extract(self, page: Page, container: Locator) -> Optional[CaptchaImage]:
        for attempt in range(self.poll_attempts):
            try:
                image = self.decode_style(container.get_attribute("style"))
            except PlaywrightError as e:
                logger.debug(f"[EXTRACT] Style read failed: {e}")
                image = None

            if image and len(image.data) >= PLACEHOLDER_MAX_BYTES:
                logger.info(f"[EXTRACT] Captcha from base64 ({len(image.data)} bytes) after {attempt + 1} polls")
                return image

            page.wait_for_timeout(self.poll_interval_ms)

        logger.warning(f"[EXTRACT] No full-size inline image after {self.poll_attempts} polls")
        return None


class ElementScreenshotExtractor(ImageExtractor):
    """Render the container element itself to PNG"""

    name = "screenshot"

    def __init__(self, timeout_ms: int = 5000):
        self.timeout_ms = timeout_ms

    def extract(self, page: Page, container: Locator) -> Optional[CaptchaImage]:
        try:
            image_bytes = container.screenshot(timeout=self.timeout_ms)
        except PlaywrightError as e:
            logger.warning(f"[EXTRACT] Element screenshot failed: {e}")
            return None
        if not image_bytes:
            return None
        logger.info(f"[EXTRACT] Captcha via element screenshot ({len(image_bytes)} bytes)")
        return CaptchaImage(data=image_bytes, media_type="image/png")


class FallbackExtractor(ImageExtractor):
    """First strategy that yields an image wins"""

    name = "auto"

    def __init__(self, *extractors: ImageExtractor):
        self.extractors = extractors or (InlineImageExtractor(), ElementScreenshotExtractor())

    def extract(self, page: Page, container: Locator) -> Optional[CaptchaImage]:
        for extractor in self.extractors:
            image = extractor.extract(page, container)
            if image is not None:
                return image
        return None


def make_extractor(mode: str = "auto") -> ImageExtractor:
    if mode == "inline":
        return InlineImageExtractor()
    if mode == "screenshot":
        return ElementScreenshotExtractor()
    return FallbackExtractor()


# ==================== Challenge Loop ====================

@dataclass
class _ChallengeRun:
    page: Page
    attempt: ChallengeAttempt
    image: Optional[CaptchaImage] = None
    answer: Optional[str] = None
    submissions: int = 0


class CaptchaChallengeLoop:
    """
    Solve the month captcha on the current page, if there is one.

    Resolver failures abort at once; only answers the site rejects count
    against the attempt budget.
    """

    def __init__(
        self,
        resolver: CaptchaResolver,
        extractor: Optional[ImageExtractor] = None,
        timeouts: Optional[Timeouts] = None,
        module_hint: Optional[str] = None,
        wait_until: str = "networkidle",
        max_attempts: int = MAX_CAPTCHA_ATTEMPTS,
    ):
        self.resolver = resolver
        self.extractor = extractor or FallbackExtractor()
        self.timeouts = timeouts or Timeouts()
        self.module_hint = module_hint
        self.wait_until = wait_until
        self.max_attempts = max_attempts
        self.submissions = 0

        self._handlers = {
            ChallengeState.DETECTED: self._on_detected,
            ChallengeState.EXTRACTING: self._on_extracting,
            ChallengeState.SOLVING: self._on_solving,
            ChallengeState.SUBMITTED: self._on_submitted,
        }

    @staticmethod
    def detect(page: Page) -> bool:
        return page.locator(CHALLENGE_CONTAINER).count() > 0

    def run(self, page: Page) -> ChallengeState:
        """
        Drive the state machine to a terminal state.

        Returns:
            NO_CHALLENGE or VERIFIED

        Raises:
            CaptchaExtractionError, CaptchaSolveError,
            CaptchaVerificationExhaustedError
        """
        if not self.detect(page):
            logger.info("[CAPTCHA] No captcha detected")
            return ChallengeState.NO_CHALLENGE

        logger.info("[CAPTCHA] Captcha detected, solving...")
        run = _ChallengeRun(page=page, attempt=ChallengeAttempt(max_attempts=self.max_attempts))
        state = ChallengeState.DETECTED

        try:
            while state not in TERMINAL_STATES:
                state = self.step(state, run)
        finally:
            self.submissions = run.submissions

        if state is ChallengeState.FAILED:
            raise CaptchaVerificationExhaustedError(run.attempt.max_attempts)

        logger.info(f"✅ [CAPTCHA] Accepted after {run.submissions} submission(s)")
        return state

    def step(self, state: ChallengeState, run: _ChallengeRun) -> ChallengeState:
        return self._handlers[state](run)

    def _container(self, page: Page) -> Locator:
        return page.locator(CHALLENGE_CONTAINER).first

    def _on_detected(self, run: _ChallengeRun) -> ChallengeState:
        try:
            self._container(run.page).wait_for(state="visible", timeout=self.timeouts.challenge_visible_ms)
        except PlaywrightTimeoutError:
            return self._reject(run, "challenge image did not become visible")
        return ChallengeState.EXTRACTING

    def _on_extracting(self, run: _ChallengeRun) -> ChallengeState:
        image = self.extractor.extract(run.page, self._container(run.page))
        if image is None:
            raise CaptchaExtractionError(f"Captcha image could not be extracted ({self.extractor.name})")
        run.image = image
        return ChallengeState.SOLVING

    def _on_solving(self, run: _ChallengeRun) -> ChallengeState:
        hint = self.module_hint or run.image.media_type
        logger.info(f"[CAPTCHA] Sending {len(run.image.data)} bytes to {self.resolver.name} (attempt {run.attempt.label})")
        try:
            answer = self.resolver.solve(run.image.data, hint)
        except CaptchaSolveError:
            raise
        except Exception as e:
            raise CaptchaSolveError(f"{self.resolver.name} failed: {e}") from e

        run.answer = answer
        logger.info(f"[CAPTCHA] Solved: '{answer}'")

        run.page.locator(CHALLENGE_INPUT).first.fill(answer)
        run.page.wait_for_timeout(self.timeouts.field_settle_ms)
        run.page.locator(CONTINUE_BUTTON).first.click()
        run.submissions += 1
        logger.debug("[CAPTCHA] Continue clicked, waiting for navigation...")
        return ChallengeState.SUBMITTED

    def _on_submitted(self, run: _ChallengeRun) -> ChallengeState:
        try:
            run.page.wait_for_load_state(self.wait_until, timeout=self.timeouts.navigation_ms)
        except PlaywrightTimeoutError:
            logger.warning("[CAPTCHA] Navigation did not settle in time; verifying anyway")
        run.page.wait_for_timeout(self.timeouts.post_submit_settle_ms)

        if run.page.locator(CHALLENGE_INPUT).count() > 0:
            return self._reject(run, f"answer '{run.answer}' rejected")
        return ChallengeState.VERIFIED

    def _reject(self, run: _ChallengeRun, reason: str) -> ChallengeState:
        run.attempt.attempt_number += 1
        if run.attempt.exhausted:
            logger.error(f"❌ [CAPTCHA] {reason} - no attempts left ({run.attempt.max_attempts})")
            return ChallengeState.FAILED
        logger.warning(f"❌ [CAPTCHA] {reason} - retrying ({run.attempt.label})")
        return ChallengeState.DETECTED
