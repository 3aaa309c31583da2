# periods.py
from __future__ import annotations

from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Tuple

from domain import DayRecord, ScheduleConfig, monday_of
from services import DailyMinutesCalculator
from utils import format_duration


class Window(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


def window_bounds(anchor: date, window: Window) -> Tuple[date, date]:
    """[first, last) dates of the window containing anchor."""
    if window == Window.DAY:
        return anchor, anchor + timedelta(days=1)
    if window == Window.WEEK:
        first = monday_of(anchor)
        return first, first + timedelta(days=7)
    if window == Window.MONTH:
        first = anchor.replace(day=1)
        nxt = date(anchor.year + 1, 1, 1) if anchor.month == 12 else date(anchor.year, anchor.month + 1, 1)
        return first, nxt
    return date(anchor.year, 1, 1), date(anchor.year + 1, 1, 1)


class PeriodAggregator:
    """Read-only dashboard figures over day / week / month / year windows."""

    def __init__(self, entries: Iterable[DayRecord], config: ScheduleConfig, calc: DailyMinutesCalculator | None = None):
        self.entries = list(entries)
        self.config = config
        self.calc = calc or DailyMinutesCalculator()

    def _in_window(self, anchor: date, window: Window) -> List[DayRecord]:
        first, stop = window_bounds(anchor, window)
        return [e for e in self.entries if first <= e.date < stop]

    def worked_minutes(self, anchor: date, window: Window) -> int:
        return self.calc.total(self._in_window(anchor, window))

    def logged_work_days(self, anchor: date, window: Window) -> int:
        return len({e.date for e in self._in_window(anchor, window) if e.is_work})

    def adjusted_target(self, anchor: date, window: Window) -> float:
        """Target in minutes, scaled to the days actually logged as work."""
        return self.logged_work_days(anchor, window) * self.config.daily_target_minutes

    def delta(self, anchor: date, window: Window) -> int:
        return int(round(self.worked_minutes(anchor, window) - self.adjusted_target(anchor, window)))

    def delta_label(self, anchor: date, window: Window) -> str:
        d = self.delta(anchor, window)
        return f"{'+' if d > 0 else ''}{format_duration(d)} vs target"

    def absence_adjusted_target(self, anchor: date, window: Window) -> float:
        """
        Legacy cumulative target in minutes: every ISO week touching the
        window contributes its full weekly target less one daily target per
        absence day recorded in that week.
        """
        first, stop = window_bounds(anchor, window)
        weekly = self.config.weekly_target_hours
        daily = self.config.daily_target_hours
        total = 0.0
        week = monday_of(first)
        while week < stop:
            week_end = week + timedelta(days=7)
            absences = sum(1 for e in self.entries if week <= e.date < week_end and e.is_absence)
            total += max(0.0, weekly - absences * daily) * 60
            week = week_end
        return total

    def summary(self, anchor: date) -> dict:
        return {
            w.value: {
                "worked": self.worked_minutes(anchor, w),
                "target": int(round(self.adjusted_target(anchor, w))),
                "delta": self.delta(anchor, w),
                "label": self.delta_label(anchor, w),
            }
            for w in Window
        }
