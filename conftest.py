import pytest

from domain import DayRecord, DayStatus, DayTemplate, ScheduleConfig, parse_hhmm


def _day(d, start=None, end=None, lunch_start=None, lunch_end=None, status=DayStatus.WORK, notes=""):
    return DayRecord(
        date=d,
        status=status,
        start=parse_hhmm(start),
        lunch_start=parse_hhmm(lunch_start),
        lunch_end=parse_hhmm(lunch_end),
        end=parse_hhmm(end),
        notes=notes,
    )


@pytest.fixture
def make_day():
    """Factory: make_day(date, "09:00", "17:00", lunch_start=..., status=...)."""
    return _day


@pytest.fixture
def uniform_schedule():
    def build(weekly=35.0, days=5, start="09:00", lunch_start="12:00", lunch_end="13:00", end="17:00"):
        return ScheduleConfig(
            weekly_target_hours=weekly,
            work_days_per_week=days,
            uniform=DayTemplate(
                start=parse_hhmm(start),
                lunch_start=parse_hhmm(lunch_start),
                lunch_end=parse_hhmm(lunch_end),
                end=parse_hhmm(end),
            ),
        )
    return build
