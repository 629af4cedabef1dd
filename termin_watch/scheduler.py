"""
Termin Watch - Adaptive Interval Scheduler

Slots on the booking calendar tend to be released around local midnight,
so checks run every couple of minutes in that window and back off to a
relaxed cadence for the rest of the day.

Time windows (Europe/Berlin):
- 23:00-02:00: 1-2 min  (peak release window)
- 02:00-23:00: 5-15 min (off-peak)
"""

import datetime
import random
from dataclasses import dataclass
from typing import Optional, Sequence

import pytz


@dataclass(frozen=True)
class TimeWindow:
    """Hour range [start_hour, end_hour) in local time; may wrap midnight"""
    start_hour: int
    end_hour: int
    min_interval_ms: int
    max_interval_ms: int

    def contains(self, hour: int) -> bool:
        if self.start_hour <= self.end_hour:
            return self.start_hour <= hour < self.end_hour
        return hour >= self.start_hour or hour < self.end_hour


PEAK_WINDOW = TimeWindow(start_hour=23, end_hour=2, min_interval_ms=60_000, max_interval_ms=120_000)
OFF_PEAK_WINDOW = TimeWindow(start_hour=0, end_hour=24, min_interval_ms=300_000, max_interval_ms=900_000)


class IntervalScheduler:
    """Maps the current time to a randomized wait before the next check"""

    def __init__(
        self,
        windows: Sequence[TimeWindow] = (PEAK_WINDOW,),
        default_window: TimeWindow = OFF_PEAK_WINDOW,
        timezone: str = "Europe/Berlin",
        rng: Optional[random.Random] = None,
    ):
        self.windows = tuple(windows)
        self.default_window = default_window
        self.timezone = pytz.timezone(timezone)
        self.rng = rng or random.Random()

    def local_time(self, now: datetime.datetime) -> datetime.datetime:
        if now.tzinfo is None:
            now = pytz.UTC.localize(now)
        return now.astimezone(self.timezone)

    def window_for(self, now: datetime.datetime) -> TimeWindow:
        hour = self.local_time(now).hour
        for window in self.windows:
            if window.contains(hour):
                return window
        return self.default_window

    def next_interval(self, now: datetime.datetime) -> int:
        """Wait in milliseconds, uniform over the window bounds (inclusive)"""
        window = self.window_for(now)
        return self.rng.randint(window.min_interval_ms, window.max_interval_ms)


def format_duration(ms: int) -> str:
    """3m 24s / 45s"""
    total_seconds = int(ms) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
