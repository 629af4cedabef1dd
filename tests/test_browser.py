import pytest

from termin_watch import browser as browser_module
from termin_watch.browser import BROWSER_ARGS, STEALTH_SCRIPT, BrowserSession
from termin_watch.config import SessionConfig, parse_proxy


class Closable:
    def __init__(self, log, name, fail=False):
        self.log = log
        self.name = name
        self.fail = fail

    def close(self):
        self.log.append(f"{self.name}.close")
        if self.fail:
            raise RuntimeError(f"{self.name} already gone")


class FakePwPage(Closable):
    def __init__(self, log, fail=False):
        super().__init__(log, "page", fail)
        self.init_scripts = []

    def add_init_script(self, script):
        self.init_scripts.append(script)


class FakeContext(Closable):
    def __init__(self, log, page, options):
        super().__init__(log, "context")
        self.page = page
        self.options = options
        self.timeouts = []

    def set_default_timeout(self, ms):
        self.timeouts.append(ms)

    def set_default_navigation_timeout(self, ms):
        self.timeouts.append(ms)

    def new_page(self):
        return self.page


class FakeBrowser(Closable):
    def __init__(self, log, page):
        super().__init__(log, "browser")
        self.page = page
        self.contexts = []

    def new_context(self, **options):
        context = FakeContext(self.log, self.page, options)
        self.contexts.append(context)
        return context


class FakeDriver:
    def __init__(self, page_fails=False, launch_error=None):
        self.log = []
        self.launch_error = launch_error
        self.page = FakePwPage(self.log, fail=page_fails)
        self.browser = FakeBrowser(self.log, self.page)
        self.launches = []
        self.chromium = self

    # sync_playwright() -> .start() -> driver
    def __call__(self):
        return self

    def start(self):
        self.log.append("start")
        return self

    def launch(self, **kwargs):
        self.launches.append(kwargs)
        if self.launch_error:
            raise self.launch_error
        return self.browser

    def stop(self):
        self.log.append("stop")


@pytest.fixture
def driver(monkeypatch):
    fake = FakeDriver()
    monkeypatch.setattr(browser_module, "sync_playwright", fake)
    return fake


def test_open_configures_stealth_context(driver):
    session = BrowserSession(SessionConfig(target_url="https://example.test", headless=False))

    page = session.open()

    assert page is driver.page
    assert driver.launches[0]["headless"] is False
    assert driver.launches[0]["args"] == BROWSER_ARGS
    options = driver.browser.contexts[0].options
    assert "proxy" not in options
    assert "ignore_https_errors" not in options
    assert page.init_scripts == [STEALTH_SCRIPT]


def test_proxy_relaxes_tls_on_that_context_only(driver):
    config = SessionConfig(target_url="https://example.test", proxy=parse_proxy("http://gw.example:7000:u:p"))

    BrowserSession(config).open()

    options = driver.browser.contexts[0].options
    assert options["proxy"] == {"server": "http://gw.example:7000", "username": "u", "password": "p"}
    assert options["ignore_https_errors"] is True


def test_close_releases_in_reverse_order_once(driver):
    session = BrowserSession(SessionConfig(target_url="https://example.test"))
    session.open()

    session.close()
    session.close()

    assert driver.log == ["start", "page.close", "context.close", "browser.close", "stop"]


def test_close_failure_does_not_stop_cleanup(monkeypatch):
    fake = FakeDriver(page_fails=True)
    monkeypatch.setattr(browser_module, "sync_playwright", fake)
    session = BrowserSession(SessionConfig(target_url="https://example.test"))
    session.open()

    session.close()

    assert fake.log[-3:] == ["context.close", "browser.close", "stop"]


def test_close_without_open_is_noop(driver):
    BrowserSession(SessionConfig(target_url="https://example.test")).close()
    assert driver.log == []


def test_context_manager_and_no_reopen(driver):
    session = BrowserSession(SessionConfig(target_url="https://example.test"))
    with session as page:
        assert page is driver.page
    assert driver.log[-1] == "stop"

    with pytest.raises(RuntimeError):
        session.open()


def test_failed_launch_inside_with_still_stops_driver(monkeypatch):
    fake = FakeDriver(launch_error=RuntimeError("chromium missing"))
    monkeypatch.setattr(browser_module, "sync_playwright", fake)
    session = BrowserSession(SessionConfig(target_url="https://example.test"))

    with pytest.raises(RuntimeError, match="chromium missing"):
        with session:
            pytest.fail("body must not run when open() fails")

    assert fake.log == ["start", "stop"]
    assert session._closed is True
