# repository.py
from __future__ import annotations

import json
import logging
from datetime import date, time
from typing import List, Optional

from sqlalchemy import BigInteger, Column, text
from sqlalchemy.pool import NullPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from domain import (
    DayRecord, DayStatus, DayTemplate, OvertimeEvent, OvertimeLedger, ScheduleConfig, ScheduleMode,
    format_hhmm, parse_hhmm,
)

logger = logging.getLogger(__name__)

SINGLETON_ID = 1


class DayRecordDB(SQLModel, table=True):
    __tablename__ = "day_records"

    id: str = Field(primary_key=True)
    work_date: date = Field(index=True, unique=True)
    status: str = DayStatus.WORK.value
    start: Optional[time] = None
    lunch_start: Optional[time] = None
    lunch_end: Optional[time] = None
    end: Optional[time] = None
    notes: str = ""
    updated_at: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))


class OvertimeEventDB(SQLModel, table=True):
    __tablename__ = "overtime_events"

    id: str = Field(primary_key=True)
    event_date: date = Field(index=True)
    minutes: int
    start: Optional[time] = None
    end: Optional[time] = None
    note: str = ""


class LedgerDB(SQLModel, table=True):
    """Balance is derived, only its inputs are stored."""
    __tablename__ = "overtime_ledger"

    id: int = Field(default=SINGLETON_ID, primary_key=True)
    earned_minutes: int = 0
    used_minutes: int = 0


class ScheduleDB(SQLModel, table=True):
    __tablename__ = "schedule_config"

    id: int = Field(default=SINGLETON_ID, primary_key=True)
    weekly_target_hours: float
    work_days_per_week: int
    mode: str
    templates: str  # JSON: {"uniform": {...}, "days": [{...} x7]}


def build_engine(db_url: str, echo: bool = False):
    is_sqlite = db_url.startswith("sqlite")
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # serverless Postgres: no local pool, bounded connect time
        kwargs["poolclass"] = NullPool
        kwargs["connect_args"] = {"connect_timeout": 10}
        if "sslmode=" not in db_url:
            db_url += ("&" if "?" in db_url else "?") + "sslmode=require"
    return create_engine(db_url, **kwargs)


# =========================
# Row <-> domain mapping
# =========================
def _record_from_row(r: DayRecordDB) -> DayRecord:
    try:
        status = DayStatus(r.status)
    except ValueError:
        status = DayStatus.WORK
    return DayRecord(
        id=r.id, date=r.work_date, status=status,
        start=r.start, lunch_start=r.lunch_start, lunch_end=r.lunch_end, end=r.end,
        notes=r.notes or "", updated_at=r.updated_at or 0,
    )


def _record_to_row(rec: DayRecord) -> DayRecordDB:
    return DayRecordDB(
        id=rec.id, work_date=rec.date, status=(rec.status or DayStatus.WORK).value,
        start=rec.start, lunch_start=rec.lunch_start, lunch_end=rec.lunch_end, end=rec.end,
        notes=rec.notes or "", updated_at=rec.updated_at,
    )


def _event_from_row(r: OvertimeEventDB) -> OvertimeEvent:
    return OvertimeEvent(id=r.id, date=r.event_date, minutes=r.minutes, start=r.start, end=r.end, note=r.note or "")


def _event_to_row(ev: OvertimeEvent) -> OvertimeEventDB:
    return OvertimeEventDB(id=ev.id, event_date=ev.date, minutes=ev.minutes, start=ev.start, end=ev.end, note=ev.note)


def _template_to_dict(t: DayTemplate) -> dict:
    return {
        "start": format_hhmm(t.start), "lunchStart": format_hhmm(t.lunch_start),
        "lunchEnd": format_hhmm(t.lunch_end), "end": format_hhmm(t.end), "enabled": t.enabled,
    }


def _template_from_dict(d: dict) -> DayTemplate:
    return DayTemplate(
        start=parse_hhmm(d.get("start")), lunch_start=parse_hhmm(d.get("lunchStart")),
        lunch_end=parse_hhmm(d.get("lunchEnd")), end=parse_hhmm(d.get("end")),
        enabled=bool(d.get("enabled", True)),
    )


class TimeTrackerRepository:
    """Storage for day records, overtime ledger and schedule. No fallback to SQLite in production."""

    def __init__(self, url: str = "sqlite:///timetracker.db", echo: bool = False):
        self.url = url
        self.engine = build_engine(url, echo=echo)

        if not url.startswith("sqlite"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("select 1"))
            except Exception as e:
                raise RuntimeError(f"Could not connect to Postgres: {e}") from e

        SQLModel.metadata.create_all(self.engine)

    # ---- day records ----
    def list_records(self) -> List[DayRecord]:
        with Session(self.engine) as session:
            rows = session.exec(select(DayRecordDB).order_by(DayRecordDB.work_date)).all()
            return [_record_from_row(r) for r in rows]

    def save_record(self, rec: DayRecord) -> None:
        """Upsert by date: whatever was stored for that day is replaced."""
        with Session(self.engine) as session:
            clash = session.exec(
                select(DayRecordDB).where(DayRecordDB.work_date == rec.date, DayRecordDB.id != rec.id)
            ).first()
            if clash is not None:
                session.delete(clash)
                session.flush()
            session.merge(_record_to_row(rec))
            session.commit()

    def delete_record(self, record_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(DayRecordDB, record_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def replace_records(self, records: List[DayRecord]) -> None:
        """Stores exactly the given list (after an import merge)."""
        keep = {rec.id for rec in records}
        with Session(self.engine) as session:
            for row in session.exec(select(DayRecordDB)).all():
                if row.id not in keep:
                    session.delete(row)
            session.flush()
            for rec in records:
                session.merge(_record_to_row(rec))
            session.commit()
        logger.info("Stored %d day records", len(records))

    # ---- ledger ----
    def load_ledger(self) -> OvertimeLedger:
        with Session(self.engine) as session:
            row = session.get(LedgerDB, SINGLETON_ID)
            events = session.exec(select(OvertimeEventDB).order_by(OvertimeEventDB.event_date)).all()
            return OvertimeLedger(
                earned_minutes=row.earned_minutes if row else 0,
                used_minutes=row.used_minutes if row else 0,
                events=[_event_from_row(e) for e in events],
            )

    def save_ledger(self, ledger: OvertimeLedger) -> None:
        with Session(self.engine) as session:
            row = session.get(LedgerDB, SINGLETON_ID) or LedgerDB(id=SINGLETON_ID)
            row.earned_minutes = ledger.earned_minutes
            row.used_minutes = ledger.used_minutes
            session.add(row)

            keep = {ev.id for ev in ledger.events}
            for stored in session.exec(select(OvertimeEventDB)).all():
                if stored.id not in keep:
                    session.delete(stored)
            for ev in ledger.events:
                session.merge(_event_to_row(ev))
            session.commit()

    # ---- schedule ----
    def load_schedule(self, default: ScheduleConfig | None = None) -> ScheduleConfig:
        with Session(self.engine) as session:
            row = session.get(ScheduleDB, SINGLETON_ID)
            if row is None:
                return default or ScheduleConfig()
            blob = json.loads(row.templates)
            return ScheduleConfig(
                weekly_target_hours=row.weekly_target_hours,
                work_days_per_week=row.work_days_per_week,
                mode=ScheduleMode(row.mode),
                uniform=_template_from_dict(blob.get("uniform", {})),
                days=tuple(_template_from_dict(d) for d in blob["days"]),
            )

    def save_schedule(self, config: ScheduleConfig) -> None:
        blob = {
            "uniform": _template_to_dict(config.uniform),
            "days": [_template_to_dict(t) for t in config.days],
        }
        with Session(self.engine) as session:
            row = session.get(ScheduleDB, SINGLETON_ID) or ScheduleDB(
                id=SINGLETON_ID, weekly_target_hours=0.0, work_days_per_week=0, mode="", templates="",
            )
            row.weekly_target_hours = config.weekly_target_hours
            row.work_days_per_week = config.work_days_per_week
            row.mode = config.mode.value
            row.templates = json.dumps(blob)
            session.add(row)
            session.commit()


__all__ = ["DayRecordDB", "LedgerDB", "OvertimeEventDB", "ScheduleDB", "TimeTrackerRepository", "build_engine"]
