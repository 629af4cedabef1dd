"""
In-memory doubles for the Playwright page, the browser session and the
captcha resolver. The fake page is a dict of selector -> attributes; a
selector is "present" when it is a key of the current DOM.
"""

import base64
from typing import Callable, Dict, List, Optional

import pytest
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from termin_watch.captcha import CHALLENGE_CONTAINER, CHALLENGE_INPUT, CONTINUE_BUTTON
from termin_watch.config import SessionConfig, Timeouts
from termin_watch.errors import CaptchaSolveError
from termin_watch.navigator import MONTH_NAV_ICON, NEXT_MONTH_CONTROL, NO_SLOTS_MARKER
from termin_watch.solvers import CaptchaResolver


CAPTCHA_BYTES = b"\x89PNG\r\n\x1a\n" + b"c" * 3000
CAPTCHA_STYLE = "background:white url('data:image/jpg;base64,%s')" % base64.b64encode(CAPTCHA_BYTES).decode()
RENDERED_BYTES = b"rendered-element-png"


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def _node(self) -> dict:
        node = self.page.dom.get(self.selector)
        if node is None:
            raise PlaywrightTimeoutError(f"Timeout exceeded waiting for locator('{self.selector}')")
        return node

    def count(self) -> int:
        return 1 if self.selector in self.page.dom else 0

    def is_visible(self, timeout: Optional[float] = None) -> bool:
        return self.count() > 0

    def wait_for(self, state: str = "visible", timeout: Optional[float] = None) -> None:
        self.page.waited_for.append((self.selector, timeout))
        self._node()

    def get_attribute(self, name: str, timeout: Optional[float] = None) -> Optional[str]:
        return self._node().get(name)

    def screenshot(self, timeout: Optional[float] = None) -> bytes:
        node = self._node()
        if node.get("unrenderable"):
            raise PlaywrightTimeoutError("element screenshot timed out")
        return node.get("png", RENDERED_BYTES)

    def fill(self, value: str, timeout: Optional[float] = None) -> None:
        self._node()
        self.page.values[self.selector] = value

    def click(self, timeout: Optional[float] = None) -> None:
        self._node()
        self.page.clicks.append(self.selector)
        handler = self.page.on_click.get(self.selector)
        if handler:
            handler(self.page)


class FakePage:
    def __init__(self, dom: Optional[Dict[str, dict]] = None):
        self.dom: Dict[str, dict] = dict(dom or {})
        self.values: Dict[str, str] = {}
        self.clicks: List[str] = []
        self.on_click: Dict[str, Callable[["FakePage"], None]] = {}
        self.gotos: List[tuple] = []
        self.goto_errors: List[Exception] = []
        self.on_goto: Optional[Callable[["FakePage"], None]] = None
        self.waits: List[int] = []
        self.waited_for: List[tuple] = []
        self.load_states: List[str] = []

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        self.gotos.append((url, wait_until))
        if self.goto_errors:
            raise self.goto_errors.pop(0)
        if self.on_goto:
            self.on_goto(self)

    def wait_for_load_state(self, state: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.load_states.append(state)

    def wait_for_timeout(self, timeout: float) -> None:
        self.waits.append(timeout)

    def screenshot(self, full_page: bool = False, path: Optional[str] = None) -> bytes:
        data = b"full-page-png"
        if path:
            with open(path, "wb") as f:
                f.write(data)
        return data

    def content(self) -> str:
        return "<html><body>" + "".join(self.dom) + "</body></html>"

    @property
    def submissions(self) -> int:
        return self.clicks.count(CONTINUE_BUTTON)

    @property
    def next_clicks(self) -> int:
        return self.clicks.count(NEXT_MONTH_CONTROL)


def challenge_dom(style: str = CAPTCHA_STYLE) -> Dict[str, dict]:
    return {
        CHALLENGE_CONTAINER: {"style": style},
        CHALLENGE_INPUT: {},
        CONTINUE_BUTTON: {},
    }


def calendar_dom(no_slots: bool = True, has_next: bool = True, has_nav: bool = True) -> Dict[str, dict]:
    dom: Dict[str, dict] = {}
    if has_nav:
        dom[MONTH_NAV_ICON] = {"src": "images/go-previous.gif"}
    if has_next:
        dom[NEXT_MONTH_CONTROL] = {}
    if no_slots:
        dom[NO_SLOTS_MARKER] = {}
    return dom


def booking_site(
    months: List[Dict[str, dict]],
    captcha: bool = True,
    correct_answer: Optional[str] = "abc123",
) -> FakePage:
    """
    Fake calendar flow: optional captcha gate, then months[0]; each click on
    the next-month arrow moves one month forward. A wrong answer re-renders
    the captcha.
    """
    page = FakePage(challenge_dom() if captcha else months[0])
    state = {"month": 0}

    def submit(p: FakePage) -> None:
        if p.values.get(CHALLENGE_INPUT) == correct_answer:
            p.dom = dict(months[0])
        else:
            p.dom = challenge_dom()

    def next_month(p: FakePage) -> None:
        state["month"] += 1
        p.dom = dict(months[state["month"]])

    page.on_click[CONTINUE_BUTTON] = submit
    page.on_click[NEXT_MONTH_CONTROL] = next_month
    return page


class StubResolver(CaptchaResolver):
    """Returns scripted answers; an Exception entry is raised instead"""

    name = "stub"

    def __init__(self, answers):
        self.answers = list(answers)
        self.calls: List[tuple] = []

    def solve(self, image_bytes: bytes, hint: Optional[str] = None) -> str:
        self.calls.append((image_bytes, hint))
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeSession:
    """Records the open/close lifecycle of one check"""

    def __init__(self, page: FakePage, open_error: Optional[Exception] = None):
        self.page = page
        self.open_error = open_error
        self.opened = 0
        self.closed = 0

    def __call__(self, config: SessionConfig) -> "FakeSession":
        self.config = config
        return self

    def open(self) -> FakePage:
        self.opened += 1
        if self.open_error:
            raise self.open_error
        return self.page

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        target_url="https://service2.diplo.de/rktermin/extern/appointment_showMonth.do?locationCode=newy",
        headless=True,
        timeouts=Timeouts(),
    )


@pytest.fixture
def solve_error() -> CaptchaSolveError:
    return CaptchaSolveError("provider down")


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data=None, text: str = ""):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeHttp:
    """Stands in for requests.Session; replies are consumed in order, the last repeats"""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.posts: List[tuple] = []

    def post(self, url: str, **kwargs):
        self.posts.append((url, kwargs))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply
