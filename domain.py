# domain.py
from __future__ import annotations

import time as _time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, time, timedelta
from enum import Enum, IntEnum
from typing import Iterable, List, Optional


class DayStatus(str, Enum):
    WORK = "work"
    SCHOOL = "school"
    VACATION = "vacation"
    SICK = "sick"
    HOLIDAY = "holiday"
    OFF = "off"
    RECOVERY = "recovery"


# Statuses that shrink the weekly target by one daily target each.
ABSENCE_STATUSES = frozenset({DayStatus.SCHOOL, DayStatus.VACATION, DayStatus.SICK, DayStatus.HOLIDAY})


class Weekday(IntEnum):
    """Same numbering as date.weekday()."""
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class ScheduleMode(str, Enum):
    UNIFORM = "uniform"
    PER_DAY = "per-day"


def parse_hhmm(s: str | None) -> time | None:
    """'09:30' -> time(9, 30). Anything unparsable gives None."""
    if not s:
        return None
    try:
        hh, mm = s.strip().split(":")
        return time(int(hh), int(mm))
    except (ValueError, AttributeError):
        return None


def format_hhmm(t: time | None) -> str:
    return t.strftime("%H:%M") if t else ""


def to_minutes(t: time) -> int:
    """Minutes since midnight."""
    return t.hour * 60 + t.minute


def monday_of(d: date) -> date:
    return d - timedelta(days=d.weekday())


def now_ms() -> int:
    return _time.time_ns() // 1_000_000


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class DayRecord:
    """One calendar day. At most one record per date."""
    date: date
    status: Optional[DayStatus] = DayStatus.WORK
    start: Optional[time] = None
    lunch_start: Optional[time] = None
    lunch_end: Optional[time] = None
    end: Optional[time] = None
    notes: str = ""
    id: str = field(default_factory=new_id)
    updated_at: int = 0

    @property
    def is_work(self) -> bool:
        # an unset status counts as a work day
        return self.status is None or self.status == DayStatus.WORK

    @property
    def is_absence(self) -> bool:
        return self.status in ABSENCE_STATUSES

    @property
    def week_start(self) -> date:
        """Monday of the ISO week this record belongs to."""
        return monday_of(self.date)


@dataclass
class OvertimeEvent:
    """Manual ledger adjustment. Negative minutes = recovery/consumption."""
    date: date
    minutes: int
    note: str = ""
    start: Optional[time] = None
    end: Optional[time] = None
    id: str = field(default_factory=new_id)

    @property
    def is_consumption(self) -> bool:
        return self.minutes < 0

    @property
    def has_range(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass
class OvertimeLedger:
    earned_minutes: int = 0
    used_minutes: int = 0
    events: List[OvertimeEvent] = field(default_factory=list)

    @property
    def balance_minutes(self) -> int:
        return self.earned_minutes - self.used_minutes


@dataclass
class DayTemplate:
    start: Optional[time] = None
    lunch_start: Optional[time] = None
    lunch_end: Optional[time] = None
    end: Optional[time] = None
    enabled: bool = True


def _default_week() -> tuple:
    return tuple(DayTemplate(enabled=day < Weekday.SATURDAY) for day in Weekday)


@dataclass
class ScheduleConfig:
    weekly_target_hours: float = 35.0
    work_days_per_week: int = 5
    mode: ScheduleMode = ScheduleMode.UNIFORM
    uniform: DayTemplate = field(default_factory=DayTemplate)
    # indexed by Weekday, always 7 entries
    days: tuple = field(default_factory=_default_week)

    def __post_init__(self):
        if len(self.days) != len(Weekday):
            raise ValueError(f"days must hold {len(Weekday)} templates, got {len(self.days)}")

    @property
    def daily_target_hours(self) -> float:
        if not self.work_days_per_week:
            return 0.0
        return self.weekly_target_hours / self.work_days_per_week

    @property
    def daily_target_minutes(self) -> float:
        return self.daily_target_hours * 60

    def template_for(self, day: Weekday) -> DayTemplate:
        if self.mode == ScheduleMode.UNIFORM:
            return self.uniform
        return self.days[day]


# ---------------------------------------------------------------------------
# DayRecord list operations. Lists are never mutated in place.
# ---------------------------------------------------------------------------

def create_record(**fields) -> DayRecord:
    """New record with a fresh id and write timestamp."""
    fields.pop("id", None)
    fields["updated_at"] = now_ms()
    return DayRecord(**fields)


def touch(record: DayRecord) -> DayRecord:
    """Copy of the record with a strictly newer updated_at."""
    return replace(record, updated_at=max(now_ms(), record.updated_at + 1))


def sort_by_date(records: Iterable[DayRecord]) -> List[DayRecord]:
    return sorted(records, key=lambda r: r.date)


def upsert_record(records: Iterable[DayRecord], record: DayRecord) -> List[DayRecord]:
    """Replace whatever record exists for record.date."""
    kept = [r for r in records if r.date != record.date]
    return sort_by_date(kept + [record])


def remove_record(records: Iterable[DayRecord], record_id: str) -> List[DayRecord]:
    return [r for r in records if r.id != record_id]


def merge_records(existing: Iterable[DayRecord], incoming: Iterable[DayRecord]) -> List[DayRecord]:
    """
    Reconciles two record sets by date (import / sync).
    The newer updated_at wins; a replaced record keeps the existing id.
    """
    by_date = {r.date: r for r in existing}
    for rec in incoming:
        current = by_date.get(rec.date)
        if current is None:
            by_date[rec.date] = rec
        elif rec.updated_at >= current.updated_at:
            by_date[rec.date] = replace(rec, id=current.id)
    return sort_by_date(by_date.values())


__all__ = [
    "ABSENCE_STATUSES", "DayRecord", "DayStatus", "DayTemplate", "OvertimeEvent",
    "OvertimeLedger", "ScheduleConfig", "ScheduleMode", "Weekday",
    "create_record", "format_hhmm", "merge_records", "monday_of", "new_id", "now_ms",
    "parse_hhmm", "remove_record", "sort_by_date", "to_minutes", "touch", "upsert_record",
]
