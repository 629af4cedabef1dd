"""
Termin Watch - Monitor Loop

Runs checks back to back at adaptive intervals until told to stop. A
failed check is logged and reported, never fatal. Shutdown signals are
honoured between checks only, so a running browser is always closed by
its own check.
"""

import datetime
import logging
import signal
import threading
from typing import Callable, Optional

import pytz

from .checker import AppointmentChecker
from .config import Settings
from .notifier import Notifier
from .scheduler import IntervalScheduler, format_duration

logger = logging.getLogger("TerminWatch.Monitor")


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(pytz.UTC)


class AppointmentMonitor:

    def __init__(
        self,
        settings: Settings,
        checker: AppointmentChecker,
        notifier: Notifier,
        scheduler: IntervalScheduler,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime.datetime] = utc_now,
    ):
        self.settings = settings
        self.checker = checker
        self.notifier = notifier
        self.scheduler = scheduler
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.cycles = 0

    def run_cycle(self) -> bool:
        """
        One check plus notifications.

        Returns:
            True if the check completed (with or without availability)
        """
        self.cycles += 1
        logger.info(f"[CHECK #{self.cycles}] Starting appointment check...")

        try:
            result = self.checker.run_check(self.settings.session)
        except Exception as e:
            logger.error(f"❌ [CHECK #{self.cycles}] Check failed: {type(e).__name__}: {e}",
                         exc_info=self.settings.debug)
            try:
                if self.notifier.error_occurred(f"{type(e).__name__}: {e}"):
                    logger.info("Error notification sent")
            except Exception as notify_error:
                logger.error(f"Failed to send error notification: {notify_error}")
            return False

        if result.available:
            logger.critical(f"🎉 [CHECK #{self.cycles}] AVAILABILITY DETECTED! {result.message}")
            try:
                if self.notifier.availability_found(result):
                    logger.info("✅ Availability notification sent!")
            except Exception as notify_error:
                logger.error(f"Failed to send availability notification: {notify_error}")
        else:
            logger.info(f"ℹ️  [CHECK #{self.cycles}] No availability: {result.message}")

        return True

    def run_forever(self) -> None:
        """Check immediately, then keep checking until stop() or a signal"""
        session = self.settings.session
        logger.info("=" * 60)
        logger.info("🚀 German Consulate Appointment Checker")
        logger.info(f"[URL] Target: {session.target_url}")
        logger.info(f"[MODE] Headless: {session.headless} | Debug: {session.debug_verbose}")
        logger.info(f"[TZ] Schedule timezone: {self.scheduler.timezone}")
        logger.info("=" * 60)

        while not self.stop_event.is_set():
            self.run_cycle()
            if self.stop_event.is_set():
                break

            now = self.clock()
            interval_ms = self.scheduler.next_interval(now)
            next_check = self.scheduler.local_time(now + datetime.timedelta(milliseconds=interval_ms))
            logger.info(f"⏰ Next check in {format_duration(interval_ms)} (at {next_check.strftime('%H:%M:%S')})")

            if self.stop_event.wait(interval_ms / 1000.0):
                break

        logger.info("👋 Monitor stopped")

    def stop(self, *_args) -> None:
        if not self.stop_event.is_set():
            logger.info("[STOP] Shutdown requested; finishing current cycle")
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.stop)
        signal.signal(signal.SIGTERM, self.stop)
