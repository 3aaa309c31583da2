"""Tests for the weekly overtime engine and ledger operations."""

from datetime import date, time, timedelta

import pytest

from domain import DayStatus, DayTemplate, OvertimeEvent, OvertimeLedger, ScheduleConfig, ScheduleMode, Weekday
from overtime import (
    OvertimeAccountingEngine, add_event, delete_day, overtime_history, record_manual_credit, recovery_locks,
    remove_event, save_day_record, submit_recovery, unlocked_times,
)

MONDAY = date(2024, 1, 8)
LATER = date(2024, 3, 1)  # "today" well after the weeks under test


def week(offset):
    return MONDAY + timedelta(days=offset)


@pytest.fixture
def engine():
    return OvertimeAccountingEngine()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TestCompletedWeeks:
    def test_exact_target_earns_nothing(self, engine, make_day):
        entries = [make_day(week(i), "09:00", "16:30") for i in range(5)]
        assert engine.compute_earned_minutes(entries, 37.5, 5, today=LATER) == 0

    def test_sick_day_reduces_target(self, engine, make_day):
        entries = [make_day(week(i), "09:00", "17:00") for i in range(4)]
        entries.append(make_day(week(4), status=DayStatus.SICK))
        tally = engine.tally_weeks(entries)[MONDAY]
        assert engine.adjusted_target_minutes(tally, False, 35, 5) == 1680
        assert engine.compute_earned_minutes(entries, 35, 5, today=LATER) == 240

    def test_unlogged_days_count_as_shortfall(self, engine, make_day):
        entries = [make_day(week(i), "09:00", "16:00") for i in range(3)]
        assert engine.compute_earned_minutes(entries, 35, 5, today=LATER) == 3 * 420 - 2100

    def test_target_never_below_zero(self, engine, make_day):
        entries = [make_day(week(i), status=DayStatus.VACATION) for i in range(7)]
        entries[6] = make_day(week(6), "10:00", "12:00")
        assert engine.compute_earned_minutes(entries, 35, 5, today=LATER) == 120

    def test_weeks_are_summed(self, engine, make_day):
        entries = [make_day(week(i), "09:00", "17:00") for i in range(5)]          # +5h
        entries += [make_day(week(7 + i), "09:00", "15:00") for i in range(5)]     # -5h
        entries.append(make_day(week(14), "09:00", "17:00"))                       # 8h vs 35h
        assert engine.compute_earned_minutes(entries, 35, 5, today=LATER) == 300 - 300 + 480 - 2100

    def test_recovery_and_off_days_are_not_absences(self, engine, make_day):
        entries = [make_day(week(i), "09:00", "16:00") for i in range(4)]
        entries.append(make_day(week(4), "09:00", "16:00", status=DayStatus.RECOVERY))
        assert engine.compute_earned_minutes(entries, 35, 5, today=LATER) == -420


class TestCurrentWeek:
    def test_partial_week_at_target_is_zero(self, engine, make_day):
        entries = [make_day(week(0), "09:00", "16:00"), make_day(week(1), "09:00", "16:00")]
        assert engine.compute_earned_minutes(entries, 35, 5, today=week(3)) == 0

    def test_partial_week_surplus(self, engine, make_day):
        entries = [make_day(week(0), "08:00", "17:00")]
        assert engine.compute_earned_minutes(entries, 35, 5, today=week(0)) == 540 - 420

    def test_slots_capped_at_week_length(self, engine, make_day):
        entries = [make_day(week(i), "09:00", "16:00") for i in range(6)]
        tally = engine.tally_weeks(entries)[MONDAY]
        assert engine.adjusted_target_minutes(tally, True, 35, 5) == 5 * 420
        assert engine.compute_earned_minutes(entries, 35, 5, today=week(6)) == 420

    def test_sunday_belongs_to_the_same_week(self, engine, make_day):
        entries = [make_day(week(0), "09:00", "16:00")]
        assert engine.compute_earned_minutes(entries, 35, 5, today=week(6)) == 0
        assert engine.compute_earned_minutes(entries, 35, 5, today=week(7)) == 420 - 2100

    def test_mixed_current_and_past(self, engine, make_day):
        past = [make_day(week(i - 7), "09:00", "17:00") for i in range(5)]
        current = [make_day(week(0), "09:00", "16:00")]
        assert engine.compute_earned_minutes(past + current, 35, 5, today=week(2)) == 300


class TestEngineGuards:
    def test_zero_work_days_does_not_divide(self, engine, make_day):
        entries = [make_day(week(0), "09:00", "16:00")]
        assert engine.compute_earned_minutes(entries, 35, 0, today=week(0)) == 420

    def test_empty_entries(self, engine):
        assert engine.compute_earned_minutes([], 35, 5, today=LATER) == 0

    def test_deterministic(self, engine, make_day):
        entries = [make_day(week(i), "08:47", "17:13", "12:01", "12:59") for i in range(5)]
        first = engine.compute_earned_minutes(entries, 35, 5, today=LATER)
        assert engine.compute_earned_minutes(entries, 35, 5, today=LATER) == first

    def test_fractional_daily_target_rounds_to_int(self, engine, make_day):
        entries = [make_day(week(0), "09:00", "17:00")]
        result = engine.compute_earned_minutes(entries, 35, 3, today=week(0))
        assert isinstance(result, int)
        assert result == 480 - 700


class TestRecalculate:
    def test_balance_follows_earned(self, engine, make_day, uniform_schedule):
        ledger = OvertimeLedger(used_minutes=60)
        entries = [make_day(week(i), "09:00", "17:00") for i in range(5)]
        updated = engine.recalculate(ledger, entries, uniform_schedule(), today=LATER)
        assert updated.earned_minutes == 300
        assert updated.balance_minutes == 240
        assert ledger.earned_minutes == 0

    def test_unchanged_returns_same_object(self, engine, make_day, uniform_schedule):
        entries = [make_day(week(i), "09:00", "17:00") for i in range(5)]
        ledger = engine.recalculate(OvertimeLedger(), entries, uniform_schedule(), today=LATER)
        assert engine.recalculate(ledger, entries, uniform_schedule(), today=LATER) is ledger

    def test_has_changed(self):
        assert OvertimeAccountingEngine.has_changed(OvertimeLedger(), OvertimeLedger(earned_minutes=1))
        assert not OvertimeAccountingEngine.has_changed(OvertimeLedger(), OvertimeLedger())

    def test_week_deltas(self, engine, make_day, uniform_schedule):
        entries = [make_day(week(i), "09:00", "17:00") for i in range(5)]
        entries.append(make_day(week(7), "09:00", "16:00"))
        deltas = engine.week_deltas(entries, uniform_schedule(), today=week(8))
        assert deltas == {MONDAY: 300, week(7): 0}


# ---------------------------------------------------------------------------
# Ledger mutations
# ---------------------------------------------------------------------------

class TestLedger:
    def test_add_then_remove_restores(self):
        ledger = OvertimeLedger(earned_minutes=500, used_minutes=30)
        ev = OvertimeEvent(date=MONDAY, minutes=-120)
        added = add_event(ledger, ev)
        assert added.used_minutes == 150
        assert added.balance_minutes == 350
        restored = remove_event(added, ev.id)
        assert restored.used_minutes == ledger.used_minutes
        assert restored.balance_minutes == ledger.balance_minutes
        assert restored.events == []

    def test_positive_event_is_not_consumption(self):
        ledger = record_manual_credit(OvertimeLedger(earned_minutes=100), MONDAY, 90, "Saturday call-out")
        assert ledger.used_minutes == 0
        assert ledger.earned_minutes == 100
        assert ledger.events[0].minutes == 90

    def test_remove_unknown_id_is_noop(self):
        ledger = OvertimeLedger(used_minutes=10)
        assert remove_event(ledger, "missing") is ledger

    def test_remove_clamps_used_at_zero(self):
        ev = OvertimeEvent(date=MONDAY, minutes=-120)
        ledger = OvertimeLedger(used_minutes=50, events=[ev])
        assert remove_event(ledger, ev.id).used_minutes == 0

    def test_balance_is_always_derived(self):
        ledger = OvertimeLedger(earned_minutes=10, used_minutes=25)
        assert ledger.balance_minutes == -15


# ---------------------------------------------------------------------------
# Guarded writes
# ---------------------------------------------------------------------------

class TestRecovery:
    def test_partial_recovery(self, uniform_schedule):
        outcome = submit_recovery(OvertimeLedger(earned_minutes=300), [], uniform_schedule(), MONDAY,
                                  time(14), time(16), "dentist")
        assert outcome.ok
        assert outcome.minutes == 120
        assert outcome.ledger.used_minutes == 120
        assert outcome.ledger.events[0].minutes == -120
        assert outcome.entries[0].status == DayStatus.RECOVERY

    def test_double_booking_refused(self, uniform_schedule):
        first = submit_recovery(OvertimeLedger(), [], uniform_schedule(), MONDAY, time(14), time(16))
        second = submit_recovery(first.ledger, first.entries, uniform_schedule(), MONDAY, time(15), time(17))
        assert not second.ok
        assert second.ledger is first.ledger
        assert "14:00 - 16:00" in second.error

    def test_end_must_follow_start(self, uniform_schedule):
        outcome = submit_recovery(OvertimeLedger(), [], uniform_schedule(), MONDAY, time(16), time(14))
        assert not outcome.ok

    def test_full_day_costs_one_daily_target(self, uniform_schedule):
        # template is 8h long but a day of recovery is worth 35h / 5
        config = uniform_schedule(weekly=35, start="08:00", lunch_start="12:00", lunch_end="13:00", end="17:00")
        outcome = submit_recovery(OvertimeLedger(), [], config, MONDAY, full_day=True)
        assert outcome.ok
        assert outcome.minutes == 420
        ev = outcome.ledger.events[0]
        assert (ev.start, ev.end) == (time(8), time(17))
        assert ev.note == "Full day recovery"

    def test_full_day_on_disabled_day_refused(self):
        config = ScheduleConfig(mode=ScheduleMode.PER_DAY)
        saturday = MONDAY + timedelta(days=Weekday.SATURDAY)
        assert not submit_recovery(OvertimeLedger(), [], config, saturday, full_day=True).ok

    def test_full_day_without_hours_refused(self):
        outcome = submit_recovery(OvertimeLedger(), [], ScheduleConfig(), MONDAY, full_day=True)
        assert outcome.error == "Usual working hours are not configured"

    def test_existing_day_record_kept(self, make_day, uniform_schedule):
        logged = make_day(MONDAY, "09:00", "12:00")
        outcome = submit_recovery(OvertimeLedger(), [logged], uniform_schedule(), MONDAY, time(14), time(16))
        assert outcome.entries == [logged]


class TestSaveDayRecord:
    def test_work_over_recovery_blocked(self, make_day):
        ev = OvertimeEvent(date=MONDAY, minutes=-120, start=time(14), end=time(16))
        outcome = save_day_record([], make_day(MONDAY, "09:00", "17:00"), OvertimeLedger(events=[ev]))
        assert not outcome.ok
        assert outcome.entries == []

    def test_work_around_recovery_allowed(self, make_day):
        ev = OvertimeEvent(date=MONDAY, minutes=-180, start=time(14), end=time(17))
        outcome = save_day_record([], make_day(MONDAY, "08:00", "14:00"), OvertimeLedger(events=[ev]))
        assert outcome.ok
        assert len(outcome.entries) == 1

    def test_absence_not_checked(self, make_day):
        ev = OvertimeEvent(date=MONDAY, minutes=-120, start=time(9), end=time(11))
        record = make_day(MONDAY, "09:00", "17:00", status=DayStatus.SICK)
        assert save_day_record([], record, OvertimeLedger(events=[ev])).ok

    def test_replaces_same_date(self, make_day):
        first = save_day_record([], make_day(MONDAY, "09:00", "17:00"), OvertimeLedger()).entries
        second = save_day_record(first, make_day(MONDAY, "10:00", "18:00"), OvertimeLedger()).entries
        assert len(second) == 1
        assert second[0].start == time(10)

    def test_recovery_during_lunch_break_allowed(self, make_day):
        ev = OvertimeEvent(date=MONDAY, minutes=-240, start=time(10), end=time(14))
        record = make_day(MONDAY, "08:00", "18:00", lunch_start="10:00", lunch_end="14:00")
        outcome = save_day_record([], record, OvertimeLedger(events=[ev]))
        assert outcome.ok
        assert outcome.entries == [record]

    def test_morning_half_over_recovery_blocked(self, make_day):
        ev = OvertimeEvent(date=MONDAY, minutes=-60, start=time(11), end=time(12))
        record = make_day(MONDAY, "09:00", "17:00", lunch_start="12:00", lunch_end="13:00")
        outcome = save_day_record([], record, OvertimeLedger(events=[ev]))
        assert not outcome.ok
        assert "11:00 - 12:00" in outcome.error

    def test_afternoon_half_over_recovery_blocked(self, make_day):
        ev = OvertimeEvent(date=MONDAY, minutes=-60, start=time(15), end=time(16))
        record = make_day(MONDAY, "09:00", "17:00", lunch_start="12:00", lunch_end="13:00")
        assert not save_day_record([], record, OvertimeLedger(events=[ev])).ok

    def test_day_saved_next_to_locked_afternoon(self, make_day):
        # what the day form sends once the recovered afternoon is left out
        ev = OvertimeEvent(date=MONDAY, minutes=-180, start=time(14), end=time(17))
        locks = recovery_locks(MONDAY, [ev])
        worked = unlocked_times(locks, time(9), time(12), locks["lunch_end"].value, locks["end"].value)
        assert worked == dict(start=time(9), lunch_start=None, lunch_end=None, end=time(12))
        record = make_day(MONDAY, "09:00", "12:00")
        outcome = save_day_record([], record, OvertimeLedger(events=[ev]))
        assert outcome.ok

    def test_day_saved_next_to_locked_morning(self, make_day):
        ev = OvertimeEvent(date=MONDAY, minutes=-180, start=time(9), end=time(12))
        locks = recovery_locks(MONDAY, [ev])
        worked = unlocked_times(locks, locks["start"].value, locks["lunch_start"].value, time(13), time(17))
        assert worked == dict(start=time(13), lunch_start=None, lunch_end=None, end=time(17))
        assert save_day_record([], make_day(MONDAY, "13:00", "17:00"), OvertimeLedger(events=[ev])).ok


class TestDeleteDay:
    def test_restores_used_minutes(self, make_day, uniform_schedule):
        logged = make_day(MONDAY, "09:00", "12:00")
        outcome = submit_recovery(OvertimeLedger(earned_minutes=300), [logged], uniform_schedule(),
                                  MONDAY, time(14), time(16))
        assert outcome.ledger.used_minutes == 120
        entries, ledger = delete_day(outcome.entries, outcome.ledger, logged.id)
        assert entries == []
        assert ledger.events == []
        assert ledger.used_minutes == 0
        assert ledger.balance_minutes == 300

    def test_deleting_recovery_marker_day(self, uniform_schedule):
        outcome = submit_recovery(OvertimeLedger(), [], uniform_schedule(), MONDAY, time(9), time(11))
        [marker] = outcome.entries
        entries, ledger = delete_day(outcome.entries, outcome.ledger, marker.id)
        assert entries == [] and ledger.used_minutes == 0

    def test_other_dates_untouched(self, make_day):
        keep = OvertimeEvent(date=week(1), minutes=-60, start=time(9), end=time(10))
        gone = OvertimeEvent(date=MONDAY, minutes=-60, start=time(16), end=time(17))
        ledger = add_event(add_event(OvertimeLedger(), keep), gone)
        day, other = make_day(MONDAY, "09:00", "16:00"), make_day(week(1), "10:00", "17:00")
        entries, ledger = delete_day([day, other], ledger, day.id)
        assert entries == [other]
        assert ledger.events == [keep]
        assert ledger.used_minutes == 60

    def test_unknown_id_is_a_no_op(self, make_day):
        entries = [make_day(MONDAY, "09:00", "17:00")]
        ledger = OvertimeLedger()
        assert delete_day(entries, ledger, "missing") == (entries, ledger)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

def test_history_combines_events_and_surplus_days(make_day):
    ev = OvertimeEvent(date=week(2), minutes=-60, note="early leave")
    entries = [make_day(week(0), "09:00", "17:00"), make_day(week(1), "09:00", "16:00")]
    items = overtime_history(OvertimeLedger(events=[ev]), entries, 420)
    assert [(i.date, i.kind, i.minutes) for i in items] == [
        (week(2), "recovered", -60),
        (week(0), "earned", 60),
    ]
    assert items[0].is_manual and not items[1].is_manual


def test_recovery_locks_morning_and_afternoon():
    events = [
        OvertimeEvent(date=MONDAY, minutes=-180, start=time(9), end=time(12)),
        OvertimeEvent(date=MONDAY, minutes=-120, start=time(15), end=time(17)),
    ]
    locks = recovery_locks(MONDAY, events)
    assert locks["start"].locked and locks["start"].value == time(9)
    assert locks["lunch_start"].value == time(12)
    assert locks["lunch_end"].value == time(15)
    assert locks["end"].value == time(17)


def test_recovery_locks_empty_day():
    locks = recovery_locks(MONDAY, [OvertimeEvent(date=week(1), minutes=-60, start=time(9), end=time(10))])
    assert not any(lock.locked for lock in locks.values())


def test_full_day_on_enabled_per_day_template():
    days = [DayTemplate(start=time(8), end=time(15))] * 5 + [DayTemplate(enabled=False)] * 2
    config = ScheduleConfig(weekly_target_hours=35, work_days_per_week=5, mode=ScheduleMode.PER_DAY, days=tuple(days))
    outcome = submit_recovery(OvertimeLedger(), [], config, MONDAY, full_day=True)
    assert outcome.minutes == 420
    assert outcome.ledger.events[0].start == time(8)


def test_unlocked_times_without_locks():
    locks = recovery_locks(MONDAY, [])
    assert unlocked_times(locks, time(9), time(12), time(13), time(17)) == dict(
        start=time(9), lunch_start=time(12), lunch_end=time(13), end=time(17)
    )
