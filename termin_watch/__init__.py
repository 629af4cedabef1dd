"""
Termin Watch - consulate appointment availability monitor

Drives a browser through the booking calendar's captcha, reads the current
and next month, and alerts when slots show up.
"""

__version__ = "1.0.0"

from .checker import AppointmentChecker, CheckResult
from .config import ProxyConfig, SessionConfig, Settings, load_settings, parse_proxy
from .monitor import AppointmentMonitor
from .scheduler import IntervalScheduler, TimeWindow

__all__ = [
    "AppointmentChecker",
    "AppointmentMonitor",
    "CheckResult",
    "IntervalScheduler",
    "ProxyConfig",
    "SessionConfig",
    "Settings",
    "TimeWindow",
    "load_settings",
    "parse_proxy",
]
