# utils.py
from __future__ import annotations

import io
import logging
from datetime import date
from typing import Iterable, List

import pandas as pd

from domain import DayRecord, DayStatus, ScheduleConfig, format_hhmm, now_ms, parse_hhmm, sort_by_date
from services import DailyMinutesCalculator

logger = logging.getLogger(__name__)

calculator = DailyMinutesCalculator()

CSV_COLUMNS = ["date", "start", "lunchStart", "lunchEnd", "end", "status", "notes"]
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# =========================
# Minute formatting
# =========================
def min_to_hm(minutes: int) -> str:
    """150 -> '2h30', -90 -> '-1h30'."""
    minutes = int(round(minutes))
    sign = "-" if minutes < 0 else ""
    h, m = divmod(abs(minutes), 60)
    return f"{sign}{h}h{m:02d}"


def format_duration(minutes: int) -> str:
    """150 -> '2h 30min', 60 -> '1h', 30 -> '30 min'."""
    minutes = int(round(minutes))
    sign = "-" if minutes < 0 else ""
    h, m = divmod(abs(minutes), 60)
    if h == 0:
        return f"{sign}{m} min"
    if m == 0:
        return f"{sign}{h}h"
    return f"{sign}{h}h {m:02d}min"


def format_minutes_signed(minutes: int) -> str:
    if minutes == 0:
        return "0 min"
    return ("+" if minutes > 0 else "") + format_duration(minutes)


def minutes_to_days(minutes: int, config: ScheduleConfig) -> float:
    """How many daily targets a minute amount is worth. 0 when no target."""
    daily = config.daily_target_minutes
    if not daily:
        return 0.0
    return round(minutes / daily, 1)


# =========================
# DataFrames
# =========================
def records_to_dataframe(records: Iterable[DayRecord], config: ScheduleConfig | None = None) -> pd.DataFrame:
    rows = []
    for r in records:
        year, week, _ = r.date.isocalendar()
        worked = calculator.minutes(r)
        row = {
            "Date": r.date.isoformat(),
            "Day": WEEKDAYS[r.date.weekday()],
            "ISO Week": f"{year}-W{week:02d}",
            "Status": (r.status or DayStatus.WORK).value,
            "Start": format_hhmm(r.start),
            "Lunch start": format_hhmm(r.lunch_start),
            "Lunch end": format_hhmm(r.lunch_end),
            "End": format_hhmm(r.end),
            "Worked (min)": worked,
            "Worked": min_to_hm(worked),
            "Notes": r.notes or "",
        }
        if config is not None:
            delta = int(round(worked - config.daily_target_minutes)) if r.is_work else 0
            row["Delta (min)"] = delta
            row["Delta"] = format_minutes_signed(delta)
        rows.append(row)
    df = pd.DataFrame(rows)
    if not df.empty:
        df = df.sort_values(["Date"], ascending=False).reset_index(drop=True)
    return df


def filter_period(records: Iterable[DayRecord], first: date | None = None, stop: date | None = None) -> List[DayRecord]:
    return [
        r for r in records
        if (first is None or r.date >= first) and (stop is None or r.date < stop)
    ]


# =========================
# CSV export / import
# =========================
def export_csv(records: Iterable[DayRecord], config: ScheduleConfig, with_target: bool = False) -> str:
    """
    Work days only, oldest first. With with_target, adds the daily target,
    the day's delta and the running cumulative delta.
    """
    work = [r for r in sort_by_date(records) if r.is_work]
    daily = config.daily_target_minutes
    rows = []
    cumulative = 0
    for r in work:
        worked = calculator.minutes(r)
        row = {
            "date": r.date.isoformat(),
            "start": format_hhmm(r.start),
            "lunchStart": format_hhmm(r.lunch_start),
            "lunchEnd": format_hhmm(r.lunch_end),
            "end": format_hhmm(r.end),
            "hours": min_to_hm(worked),
        }
        if with_target:
            delta = int(round(worked - daily))
            cumulative += delta
            row.update(target=min_to_hm(daily), delta=min_to_hm(delta), cumulative=min_to_hm(cumulative))
        rows.append(row)
    columns = ["date", "start", "lunchStart", "lunchEnd", "end", "hours"]
    if with_target:
        columns += ["target", "delta", "cumulative"]
    return pd.DataFrame(rows, columns=columns).to_csv(index=False)


def export_records_csv(records: Iterable[DayRecord]) -> str:
    """Every record in the import layout, for backups."""
    rows = [
        {
            "date": r.date.isoformat(),
            "start": format_hhmm(r.start),
            "lunchStart": format_hhmm(r.lunch_start),
            "lunchEnd": format_hhmm(r.lunch_end),
            "end": format_hhmm(r.end),
            "status": (r.status or DayStatus.WORK).value,
            "notes": r.notes or "",
        }
        for r in sort_by_date(records)
    ]
    return pd.DataFrame(rows, columns=CSV_COLUMNS).to_csv(index=False)


def _status(value) -> DayStatus:
    try:
        return DayStatus(str(value).strip().lower())
    except ValueError:
        return DayStatus.WORK


def import_csv(text: str) -> List[DayRecord]:
    """
    Parses DayRecord rows. Rows without a valid date are skipped; imported
    records are stamped now so they win a merge against older data.
    """
    df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    missing = {"date"} - set(df.columns)
    if missing:
        raise ValueError(f"CSV is missing required columns: {sorted(missing)}")
    stamp = now_ms()
    out: List[DayRecord] = []
    for idx, row in df.iterrows():
        try:
            day = date.fromisoformat(row["date"].strip())
        except ValueError:
            logger.warning("Row %s skipped: bad date %r", idx + 1, row["date"])
            continue
        out.append(DayRecord(
            date=day,
            status=_status(row.get("status") or "work"),
            start=parse_hhmm(row.get("start")),
            lunch_start=parse_hhmm(row.get("lunchStart")),
            lunch_end=parse_hhmm(row.get("lunchEnd")),
            end=parse_hhmm(row.get("end")),
            notes=row.get("notes", "") or "",
            updated_at=stamp,
        ))
    return out
