"""
Command line entry point.

    termin-watch              run the monitor loop (same as `run`)
    termin-watch check        single check, exit 0 = available, 1 = none, 3 = error
    termin-watch solve IMG    run the configured captcha resolver on an image file
    termin-watch capture      save the live captcha image for resolver testing
    termin-watch notify-test  send a test alert through every channel
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .browser import BrowserSession
from .captcha import CaptchaChallengeLoop, CHALLENGE_CONTAINER, make_extractor
from .checker import AppointmentChecker, navigate
from .config import Settings, load_settings
from .diagnostic import ForensicMonitor
from .errors import CaptchaExtractionError, ConfigurationError, TerminWatchError
from .monitor import AppointmentMonitor
from .notifier import build_notifier
from .scheduler import IntervalScheduler
from .solvers import build_resolver

logger = logging.getLogger("TerminWatch")

LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] [%(name)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(debug: bool = False, log_file: Optional[str] = "termin_watch.log") -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )
    # Playwright's driver and urllib3 are noisy at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def build_checker(settings: Settings) -> AppointmentChecker:
    forensics = ForensicMonitor(settings.evidence_dir, enabled=settings.debug)
    return AppointmentChecker(build_resolver(settings), forensics=forensics)


def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    monitor = AppointmentMonitor(
        settings,
        build_checker(settings),
        build_notifier(settings),
        IntervalScheduler(timezone=settings.timezone),
    )
    monitor.install_signal_handlers()
    monitor.run_forever()
    return 0


def cmd_check(settings: Settings, args: argparse.Namespace) -> int:
    checker = build_checker(settings)
    try:
        result = checker.run_check(settings.session)
    except Exception as e:
        logger.error(f"❌ Check failed: {type(e).__name__}: {e}")
        return 3

    print(f"available: {result.available}")
    print(f"message:   {result.message}")
    if result.screenshot and args.screenshot:
        Path(args.screenshot).write_bytes(result.screenshot)
        print(f"screenshot saved to {args.screenshot}")
    return 0 if result.available else 1


def cmd_solve(settings: Settings, args: argparse.Namespace) -> int:
    image_path = Path(args.image)
    if not image_path.is_file():
        logger.error(f"Image not found: {image_path}")
        return 2

    resolver = build_resolver(settings)
    try:
        answer = resolver.solve(image_path.read_bytes(), settings.session.captcha_module_hint)
    except TerminWatchError as e:
        logger.error(f"❌ {resolver.name} failed: {type(e).__name__}: {e}")
        return 3
    print(answer)
    return 0


def cmd_capture(settings: Settings, args: argparse.Namespace) -> int:
    output = Path(args.output)
    config = settings.session

    try:
        with BrowserSession(config) as page:
            navigate(page, config)
            page.wait_for_timeout(config.timeouts.page_settle_ms)

            if not CaptchaChallengeLoop.detect(page):
                logger.error("No captcha found on the page")
                return 1

            image = make_extractor(config.extraction).extract(page, page.locator(CHALLENGE_CONTAINER).first)
            if image is None:
                raise CaptchaExtractionError("Captcha image could not be extracted")
    except TerminWatchError as e:
        logger.error(f"❌ Capture failed: {type(e).__name__}: {e}")
        return 3

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(image.data)
    print(f"Captcha ({image.media_type}, {len(image.data)} bytes) saved to {output}")
    print(f"Test the resolver with: termin-watch solve {output}")
    return 0


def cmd_notify_test(settings: Settings, args: argparse.Namespace) -> int:
    notifier = build_notifier(settings)
    availability_ok = notifier.availability_found()
    error_ok = notifier.error_occurred("Test error notification")
    print(f"availability alert delivered: {availability_ok}")
    print(f"error alert delivered:        {error_ok}")
    return 0 if availability_ok or error_ok else 1


COMMANDS = {
    "run": cmd_run,
    "check": cmd_check,
    "solve": cmd_solve,
    "capture": cmd_capture,
    "notify-test": cmd_notify_test,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="termin-watch", description="Consulate appointment availability monitor")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="monitor continuously (default)")

    check = sub.add_parser("check", help="run a single check")
    check.add_argument("--screenshot", help="where to save the screenshot (DEBUG mode only)")

    solve = sub.add_parser("solve", help="solve a captcha image file")
    solve.add_argument("image")

    capture = sub.add_parser("capture", help="save the live captcha image")
    capture.add_argument("output", nargs="?", default="screenshots/captcha.png")

    sub.add_parser("notify-test", help="send test notifications")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging(log_file=None)
        logger.critical(f"💥 Configuration error: {e}")
        return 2

    configure_logging(settings.debug, settings.log_file)

    try:
        return COMMANDS[command](settings, args)
    except ConfigurationError as e:
        logger.critical(f"💥 Configuration error: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("[STOP] Manual stop requested")
        return 130


if __name__ == "__main__":
    sys.exit(main())
