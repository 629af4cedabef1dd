import datetime
import signal
import threading

import pytz

from termin_watch.checker import CheckResult
from termin_watch.config import SessionConfig, Settings
from termin_watch.errors import CaptchaVerificationExhaustedError
from termin_watch.monitor import AppointmentMonitor
from termin_watch.scheduler import IntervalScheduler


NOON = pytz.UTC.localize(datetime.datetime(2025, 1, 15, 12, 0))


class ScriptedChecker:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.configs = []

    def run_check(self, config):
        self.configs.append(config)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.availability = []
        self.errors = []

    def availability_found(self, result=None):
        self.availability.append(result)
        if self.fail:
            raise RuntimeError("notifier down")
        return True

    def error_occurred(self, message):
        self.errors.append(message)
        if self.fail:
            raise RuntimeError("notifier down")
        return True


class FixedScheduler(IntervalScheduler):
    def __init__(self, interval_ms=1):
        super().__init__()
        self.interval_ms = interval_ms
        self.asked = []

    def next_interval(self, now):
        self.asked.append(now)
        return self.interval_ms


class StopAfter(threading.Event):
    """Sets itself after `waits` calls to wait()"""

    def __init__(self, waits):
        super().__init__()
        self.remaining = waits
        self.timeouts = []

    def wait(self, timeout=None):
        self.timeouts.append(timeout)
        self.remaining -= 1
        if self.remaining <= 0:
            self.set()
        return self.is_set()


def settings():
    return Settings(session=SessionConfig(target_url="https://example.test"))


def monitor(checker, notifier=None, scheduler=None, stop_event=None):
    return AppointmentMonitor(
        settings(),
        checker,
        notifier or RecordingNotifier(),
        scheduler or FixedScheduler(),
        stop_event=stop_event,
        clock=lambda: NOON,
    )


NO_SLOTS = CheckResult(available=False, message="No appointments available in current or next month")
SLOTS = CheckResult(available=True, message="Appointments available in current month!")


class TestRunCycle:

    def test_failed_check_is_reported_not_raised(self):
        notifier = RecordingNotifier()
        m = monitor(ScriptedChecker(CaptchaVerificationExhaustedError(3)), notifier)

        assert m.run_cycle() is False
        assert notifier.errors and "CaptchaVerificationExhaustedError" in notifier.errors[0]
        assert notifier.availability == []

    def test_notifier_failure_is_swallowed(self):
        m = monitor(ScriptedChecker(RuntimeError("browser crashed")), RecordingNotifier(fail=True))
        assert m.run_cycle() is False

        m = monitor(ScriptedChecker(SLOTS), RecordingNotifier(fail=True))
        assert m.run_cycle() is True

    def test_availability_notifies_with_result(self):
        notifier = RecordingNotifier()
        assert monitor(ScriptedChecker(SLOTS), notifier).run_cycle() is True
        assert notifier.availability == [SLOTS]

    def test_no_availability_is_silent(self):
        notifier = RecordingNotifier()
        assert monitor(ScriptedChecker(NO_SLOTS), notifier).run_cycle() is True
        assert notifier.availability == [] and notifier.errors == []


class TestRunForever:

    def test_keeps_checking_after_failures_until_stopped(self):
        checker = ScriptedChecker(RuntimeError("net down"), NO_SLOTS, SLOTS)
        scheduler = FixedScheduler(interval_ms=90_000)
        stop = StopAfter(waits=3)
        m = monitor(checker, scheduler=scheduler, stop_event=stop)

        m.run_forever()

        assert len(checker.configs) == 3
        assert m.cycles == 3
        assert stop.timeouts == [90.0, 90.0, 90.0]
        assert scheduler.asked == [NOON] * 3

    def test_stop_before_start_runs_nothing(self):
        checker = ScriptedChecker(NO_SLOTS)
        m = monitor(checker)
        m.stop()

        m.run_forever()

        assert checker.configs == []

    def test_stop_during_check_skips_the_wait(self):
        stop = StopAfter(waits=10)
        m = monitor(None, stop_event=stop)

        class StoppingChecker:
            def run_check(self, config):
                m.stop()
                return NO_SLOTS

        m.checker = StoppingChecker()
        m.run_forever()

        assert m.cycles == 1
        assert stop.timeouts == []


def test_termination_signal_sets_stop_event():
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    m = monitor(ScriptedChecker(NO_SLOTS))
    try:
        m.install_signal_handlers()

        signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)

        assert m.stop_event.is_set()
        assert signal.getsignal(signal.SIGINT) == m.stop
    finally:
        for sig, handler in saved.items():
            signal.signal(sig, handler)

    m.run_forever()
    assert m.cycles == 0
