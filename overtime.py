# overtime.py
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, time
from typing import Dict, Iterable, List, Optional, Set, Tuple

from domain import (
    DayRecord, DayStatus, OvertimeEvent, OvertimeLedger, ScheduleConfig, Weekday,
    create_record, monday_of, remove_record, to_minutes, upsert_record,
)
from services import DailyMinutesCalculator, IntervalOverlapGuard

logger = logging.getLogger(__name__)

calculator = DailyMinutesCalculator()
guard = IntervalOverlapGuard()


# =========================
# Ledger mutations
# =========================
def add_event(ledger: OvertimeLedger, event: OvertimeEvent) -> OvertimeLedger:
    """Appends an event. Only negative minutes count as used."""
    used = ledger.used_minutes + (abs(event.minutes) if event.is_consumption else 0)
    return replace(ledger, used_minutes=used, events=ledger.events + [event])


def remove_event(ledger: OvertimeLedger, event_id: str) -> OvertimeLedger:
    event = next((e for e in ledger.events if e.id == event_id), None)
    if event is None:
        logger.warning("No overtime event with id %s", event_id)
        return ledger
    used = ledger.used_minutes
    if event.is_consumption:
        used = max(0, used - abs(event.minutes))
    return replace(ledger, used_minutes=used, events=[e for e in ledger.events if e.id != event_id])


# =========================
# Weekly accounting
# =========================
@dataclass
class WeekTally:
    minutes: int = 0
    absence_days: int = 0
    work_dates: Set[date] = field(default_factory=set)


class OvertimeAccountingEngine:
    """
    Earned minutes = sum over ISO weeks of (worked - adjusted target).

    The week containing today is judged only on the days accounted for so far
    (logged work days plus declared absences, capped at the nominal week).
    Every other week is judged on the full weekly target minus one daily
    target per absence day; unlogged days there count as shortfall.
    """

    def __init__(self, calc: DailyMinutesCalculator | None = None):
        self.calc = calc or calculator

    def tally_weeks(self, entries: Iterable[DayRecord]) -> Dict[date, WeekTally]:
        weeks: Dict[date, WeekTally] = defaultdict(WeekTally)
        for e in entries:
            week = weeks[e.week_start]
            week.minutes += self.calc.minutes(e)
            if e.is_absence:
                week.absence_days += 1
            if e.is_work:
                week.work_dates.add(e.date)
        return dict(weeks)

    def adjusted_target_minutes(
        self,
        tally: WeekTally,
        is_current_week: bool,
        weekly_target_hours: float,
        work_days_per_week: int,
    ) -> float:
        daily_target = weekly_target_hours / work_days_per_week if work_days_per_week else 0.0
        if is_current_week:
            slots = min(len(tally.work_dates) + tally.absence_days, work_days_per_week)
            return slots * daily_target * 60
        return max(0.0, weekly_target_hours - tally.absence_days * daily_target) * 60

    def compute_earned_minutes(
        self,
        entries: Iterable[DayRecord],
        weekly_target_hours: float,
        work_days_per_week: int,
        today: date | None = None,
    ) -> int:
        current_week_key = monday_of(today or date.today())
        total = 0.0
        for week_key, tally in self.tally_weeks(entries).items():
            target = self.adjusted_target_minutes(
                tally, week_key == current_week_key, weekly_target_hours, work_days_per_week
            )
            total += tally.minutes - target
        return int(round(total))

    def week_deltas(
        self,
        entries: Iterable[DayRecord],
        config: ScheduleConfig,
        today: date | None = None,
    ) -> Dict[date, int]:
        """Per-week delta keyed by Monday, for display."""
        current_week_key = monday_of(today or date.today())
        out = {}
        for week_key, tally in sorted(self.tally_weeks(entries).items()):
            target = self.adjusted_target_minutes(
                tally, week_key == current_week_key, config.weekly_target_hours, config.work_days_per_week
            )
            out[week_key] = int(round(tally.minutes - target))
        return out

    def recalculate(
        self,
        ledger: OvertimeLedger,
        entries: Iterable[DayRecord],
        config: ScheduleConfig,
        today: date | None = None,
    ) -> OvertimeLedger:
        """
        Full recomputation of earned minutes.
        Returns the very same ledger object when nothing changed, so callers
        can skip persisting with an identity check.
        """
        earned = self.compute_earned_minutes(entries, config.weekly_target_hours, config.work_days_per_week, today)
        updated = replace(ledger, earned_minutes=earned)
        if not self.has_changed(ledger, updated):
            return ledger
        logger.debug("Earned minutes %s -> %s", ledger.earned_minutes, earned)
        return updated

    @staticmethod
    def has_changed(old: OvertimeLedger, new: OvertimeLedger) -> bool:
        return old.earned_minutes != new.earned_minutes or old.balance_minutes != new.balance_minutes


# =========================
# Guarded writes
# =========================
@dataclass
class SaveOutcome:
    entries: List[DayRecord]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RecoveryOutcome:
    ledger: OvertimeLedger
    entries: List[DayRecord]
    error: Optional[str] = None
    minutes: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def worked_halves(record: DayRecord) -> List[Tuple[time, time]]:
    """Morning [start, lunch_start or end) and afternoon [lunch_end, end); the lunch gap is not worked."""
    halves = []
    morning_end = record.lunch_start or record.end
    if record.start is not None and morning_end is not None:
        halves.append((record.start, morning_end))
    if record.lunch_end is not None and record.end is not None:
        halves.append((record.lunch_end, record.end))
    return halves


def save_day_record(entries: List[DayRecord], record: DayRecord, ledger: OvertimeLedger) -> SaveOutcome:
    """Upserts a record unless one of its worked halves collides with a recovery."""
    if record.is_work:
        for start, end in worked_halves(record):
            check = guard.check(record.date, start, end, ledger.events)
            if check.blocked:
                return SaveOutcome(entries=entries, error=check.reason)
    return SaveOutcome(entries=upsert_record(entries, record))


def delete_day(entries: List[DayRecord], ledger: OvertimeLedger, record_id: str) -> Tuple[List[DayRecord], OvertimeLedger]:
    """Removes a day record together with the overtime events of its date."""
    record = next((e for e in entries if e.id == record_id), None)
    if record is None:
        return entries, ledger
    for ev in [e for e in ledger.events if e.date == record.date]:
        ledger = remove_event(ledger, ev.id)
    return remove_record(entries, record_id), ledger


def submit_recovery(
    ledger: OvertimeLedger,
    entries: List[DayRecord],
    config: ScheduleConfig,
    day: date,
    start: time | None = None,
    end: time | None = None,
    note: str = "",
    full_day: bool = False,
) -> RecoveryOutcome:
    """
    Consumes overtime for a time range or a whole day.

    A full day always costs exactly one daily target, whatever the configured
    hours for that weekday; the template only provides the blocked range.
    """
    def refuse(msg: str) -> RecoveryOutcome:
        logger.info("Recovery on %s refused: %s", day, msg)
        return RecoveryOutcome(ledger=ledger, entries=entries, error=msg)

    if full_day:
        template = config.template_for(Weekday(day.weekday()))
        if not template.enabled:
            return refuse("This day is not a configured work day")
        if template.start is None or template.end is None:
            return refuse("Usual working hours are not configured")
        start, end = template.start, template.end
        minutes = int(round(config.daily_target_minutes))
    else:
        if start is None or end is None:
            return refuse("Start and end times are required")
        if to_minutes(end) <= to_minutes(start):
            return refuse("End time must be after start time")
        minutes = to_minutes(end) - to_minutes(start)

    check = guard.check(day, start, end, ledger.events)
    if check.blocked:
        return refuse(check.reason)

    default_note = "Full day recovery" if full_day else ""
    event = OvertimeEvent(date=day, minutes=-minutes, note=note or default_note, start=start, end=end)
    # a day already logged keeps its record, only empty days get a recovery marker
    if not any(e.date == day for e in entries):
        marker = create_record(date=day, status=DayStatus.RECOVERY, start=start, end=end, notes=note or "Recovery")
        entries = upsert_record(entries, marker)
    return RecoveryOutcome(ledger=add_event(ledger, event), entries=entries, minutes=minutes)


def record_manual_credit(ledger: OvertimeLedger, day: date, minutes: int, note: str = "") -> OvertimeLedger:
    """Positive manual event. Kept in the log, does not touch used minutes."""
    return add_event(ledger, OvertimeEvent(date=day, minutes=abs(minutes), note=note))


# =========================
# Read models
# =========================
@dataclass(frozen=True)
class HistoryItem:
    id: str
    date: date
    kind: str  # "earned" | "recovered"
    minutes: int
    note: str = ""
    is_manual: bool = False
    start: Optional[time] = None
    end: Optional[time] = None


def overtime_history(ledger: OvertimeLedger, entries: Iterable[DayRecord], daily_target_minutes: float) -> List[HistoryItem]:
    items = [
        HistoryItem(
            id=ev.id, date=ev.date, kind="recovered" if ev.is_consumption else "earned",
            minutes=ev.minutes, note=ev.note, is_manual=True, start=ev.start, end=ev.end,
        )
        for ev in ledger.events
    ]
    for e in entries:
        if not e.is_work:
            continue
        delta = int(round(calculator.minutes(e) - daily_target_minutes))
        if delta > 0:
            items.append(HistoryItem(id=f"earned-{e.id}", date=e.date, kind="earned", minutes=delta, note="Overtime"))
    return sorted(items, key=lambda i: i.date, reverse=True)


@dataclass
class SlotLock:
    value: Optional[time] = None
    locked: bool = False


def recovery_locks(day: date, events: Iterable[OvertimeEvent]) -> Dict[str, SlotLock]:
    """
    Day fields pinned by recoveries on that date. A recovery starting before
    noon pins the morning (start, lunch_start), otherwise the afternoon.
    """
    locks = {name: SlotLock() for name in ("start", "lunch_start", "lunch_end", "end")}
    for ev in events:
        if ev.date != day or not ev.has_range:
            continue
        if ev.start.hour < 12:
            locks["start"] = SlotLock(ev.start, True)
            locks["lunch_start"] = SlotLock(ev.end, True)
        else:
            locks["lunch_end"] = SlotLock(ev.start, True)
            locks["end"] = SlotLock(ev.end, True)
    return locks


def unlocked_times(
    locks: Dict[str, SlotLock],
    start: time | None,
    lunch_start: time | None,
    lunch_end: time | None,
    end: time | None,
) -> Dict[str, Optional[time]]:
    """
    Worked fields with the recovered half left out. With the afternoon
    recovered the day runs start..lunch_start, with the morning recovered
    it runs lunch_end..end; neither keeps a lunch break.
    """
    morning, afternoon = locks["start"].locked, locks["end"].locked
    if morning and afternoon:
        return dict(start=None, lunch_start=None, lunch_end=None, end=None)
    if afternoon:
        return dict(start=start, lunch_start=None, lunch_end=None, end=lunch_start)
    if morning:
        return dict(start=lunch_end, lunch_start=None, lunch_end=None, end=end)
    return dict(start=start, lunch_start=lunch_start, lunch_end=lunch_end, end=end)
