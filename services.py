# services.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time
from decimal import Decimal
from typing import Iterable, Optional

from domain import DayRecord, DayTemplate, OvertimeEvent, ScheduleConfig, ScheduleMode, Weekday, format_hhmm, to_minutes

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440


def interval_minutes(
    start: time | None,
    lunch_start: time | None,
    lunch_end: time | None,
    end: time | None,
) -> int:
    """
    Lunch-aware duration of a day in minutes.
    Each half is clamped to zero on its own; no cross-midnight spans.
    """
    if start is None or end is None:
        return 0
    if lunch_start is None or lunch_end is None:
        return max(0, to_minutes(end) - to_minutes(start))
    morning = max(0, to_minutes(lunch_start) - to_minutes(start))
    afternoon = max(0, to_minutes(end) - to_minutes(lunch_end))
    return morning + afternoon


class DailyMinutesCalculator:
    """Worked minutes for a single day record."""

    def minutes(self, entry: DayRecord | None) -> int:
        if entry is None or not entry.is_work:
            return 0
        return interval_minutes(entry.start, entry.lunch_start, entry.lunch_end, entry.end)

    def total(self, entries: Iterable[DayRecord]) -> int:
        return sum(self.minutes(e) for e in entries)


@dataclass(frozen=True)
class OverlapCheck:
    blocked: bool
    reason: Optional[str] = None


class IntervalOverlapGuard:
    """Refuses a [start, end) range that collides with a recovery range on the same date."""

    def check(self, day: date, start: time | None, end: time | None, events: Iterable[OvertimeEvent]) -> OverlapCheck:
        if start is None or end is None:
            return OverlapCheck(blocked=False)
        lo, hi = to_minutes(start), to_minutes(end)
        for ev in events:
            if ev.date != day or not ev.has_range:
                continue
            # strict overlap, touching endpoints are fine
            if lo < to_minutes(ev.end) and hi > to_minutes(ev.start):
                reason = f"Conflicts with recovery ({format_hhmm(ev.start)} - {format_hhmm(ev.end)})"
                logger.info("Overlap on %s: %s-%s vs event %s", day, format_hhmm(start), format_hhmm(end), ev.id)
                return OverlapCheck(blocked=True, reason=reason)
        return OverlapCheck(blocked=False)


@dataclass(frozen=True)
class ScheduleValidation:
    valid: bool
    error: Optional[str] = None
    total_minutes: int = 0
    target_minutes: Decimal = Decimal(0)


class ScheduleTargetValidator:
    """
    A configured weekly schedule must add up exactly to the weekly target.
    All sums are integer minutes; the target is converted through Decimal so
    fractional hours like 37.5 compare exactly.
    """

    def day_minutes(self, template: DayTemplate) -> int:
        return interval_minutes(template.start, template.lunch_start, template.lunch_end, template.end)

    def validate(self, config: ScheduleConfig) -> ScheduleValidation:
        target = Decimal(str(config.weekly_target_hours)) * 60

        if config.mode == ScheduleMode.UNIFORM:
            daily = self.day_minutes(config.uniform)
            if daily > MINUTES_PER_DAY:
                return self._fail("Daily schedule exceeds 24 hours", daily, target)
            total = daily * config.work_days_per_week
        else:
            total = 0
            for day in Weekday:
                template = config.days[day]
                if not template.enabled:
                    continue
                daily = self.day_minutes(template)
                if daily > MINUTES_PER_DAY:
                    return self._fail(f"{day.name.capitalize()} schedule exceeds 24 hours", daily, target)
                total += daily

        if Decimal(total) != target:
            hours, mins = divmod(total, 60)
            msg = (
                f"Weekly schedule totals {hours}h{mins:02d} but the target is "
                f"{config.weekly_target_hours:g}h per week"
            )
            return self._fail(msg, total, target)
        return ScheduleValidation(valid=True, total_minutes=total, target_minutes=target)

    @staticmethod
    def _fail(msg: str, total: int, target: Decimal) -> ScheduleValidation:
        logger.warning("Schedule rejected: %s", msg)
        return ScheduleValidation(valid=False, error=msg, total_minutes=total, target_minutes=target)
