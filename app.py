# app.py
# -----------------------------------------------
# ⏱️ Time & overtime tracker (Streamlit)
# -----------------------------------------------
# Requires: streamlit, sqlmodel, pandas, reportlab, psycopg2-binary (for Postgres)
# Log arrivals, lunch and departures per day, declare absences, and keep
# an overtime bank that recovery days draw from.

import logging
import os
from datetime import date

import streamlit as st

from config import configure_logging, load_settings
from domain import (
    DayRecord, DayStatus, DayTemplate, ScheduleConfig, ScheduleMode, Weekday,
    create_record, format_hhmm, merge_records, parse_hhmm,
)
from overtime import (
    OvertimeAccountingEngine, delete_day, overtime_history, record_manual_credit, recovery_locks,
    remove_event, save_day_record, submit_recovery, unlocked_times,
)
from periods import PeriodAggregator, Window
from reports import monthly_report
from repository import TimeTrackerRepository
from services import DailyMinutesCalculator, ScheduleTargetValidator
from utils import (
    export_csv, export_records_csv, filter_period, format_duration, import_csv,
    min_to_hm, minutes_to_days, records_to_dataframe,
)

settings = load_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("app")

APP_TITLE = "Time tracker"
TIME_OPTIONS = [""] + [f"{h:02d}:{m:02d}" for h in range(5, 24) for m in range(0, 60, 5)]
STATUS_OPTIONS = [s.value for s in DayStatus if s != DayStatus.RECOVERY]

st.set_page_config(page_title=APP_TITLE, page_icon="⏱️", layout="centered")

if ("RENDER" in os.environ or "SPACE_ID" in os.environ) and settings.database_url.startswith("sqlite"):
    st.error("DATABASE_URL (Postgres) is missing. Set it in the hosting environment.")


@st.cache_resource
def get_repo(url: str) -> TimeTrackerRepository:
    return TimeTrackerRepository(url, echo=False)


repo = get_repo(settings.database_url)
engine = OvertimeAccountingEngine()
calculator = DailyMinutesCalculator()
validator = ScheduleTargetValidator()

# =========================
# Load state + recompute ledger
# =========================
today = date.today()
entries = repo.list_records()
schedule = repo.load_schedule(settings.default_schedule())
ledger = repo.load_ledger()

recalculated = engine.recalculate(ledger, entries, schedule, today)
if recalculated is not ledger:
    repo.save_ledger(recalculated)
    ledger = recalculated


def commit(new_entries=None, new_ledger=None, message: str | None = None, saved=None, deleted_id=None):
    """
    Persists what changed, recomputes earned minutes and reruns the page.
    A single saved or deleted day is written as one row, a whole list replaces the table.
    """
    global entries, ledger
    if new_entries is not None:
        if saved is not None:
            repo.save_record(saved)
        elif deleted_id is not None:
            repo.delete_record(deleted_id)
        else:
            repo.replace_records(new_entries)
        entries = new_entries
    if new_ledger is not None:
        ledger = new_ledger
    repo.save_ledger(engine.recalculate(ledger, entries, schedule, today))
    if message:
        st.session_state["_flash"] = message
    st.rerun()


def time_select(label: str, key: str, default: str = "", disabled: bool = False):
    options = TIME_OPTIONS if default in TIME_OPTIONS else TIME_OPTIONS + [default]
    value = st.selectbox(label, options, index=options.index(default), key=key, disabled=disabled)
    return parse_hhmm(value)


st.title(f"⏱️ {APP_TITLE}")
flash = st.session_state.pop("_flash", None)
if flash:
    st.success(flash)

tab_day, tab_dash, tab_ot, tab_profile, tab_export = st.tabs(
    ["Day", "Dashboard", "Overtime", "Profile", "Import / export"]
)

# =========================
# ➕ Day entry
# =========================
with tab_day:
    day = st.date_input("Date", value=today, max_value=today, key="day_date")
    existing = next((e for e in entries if e.date == day), None)
    template = schedule.template_for(Weekday(day.weekday()))
    locks = recovery_locks(day, ledger.events)

    def _default(field: str) -> str:
        if locks[field].locked:
            return format_hhmm(locks[field].value)
        source = existing if existing is not None else template
        return format_hhmm(getattr(source, field))

    status = st.selectbox(
        "Status", STATUS_OPTIONS,
        index=STATUS_OPTIONS.index(existing.status.value) if existing and existing.status and existing.status.value in STATUS_OPTIONS else 0,
    )
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        start = time_select("Start", f"start_{day}", _default("start"), locks["start"].locked)
    with c2:
        lunch_start = time_select("Lunch start", f"ls_{day}", _default("lunch_start"), locks["lunch_start"].locked)
    with c3:
        lunch_end = time_select("Lunch end", f"le_{day}", _default("lunch_end"), locks["lunch_end"].locked)
    with c4:
        end = time_select("End", f"end_{day}", _default("end"), locks["end"].locked)
    notes = st.text_input("Notes", value=existing.notes if existing else "")

    worked = unlocked_times(locks, start, lunch_start, lunch_end, end)
    if any(lock.locked for lock in locks.values()):
        st.caption("Recovered time on this day is locked and not counted as worked.")
    draft = DayRecord(date=day, status=DayStatus(status), notes=notes, **worked)
    st.caption(f"Worked: {min_to_hm(calculator.minutes(draft))}")

    b1, b2 = st.columns(2)
    if b1.button("Save day", use_container_width=True):
        if draft.is_work and (draft.start is None or draft.end is None):
            st.warning("Pick a start and an end time.")
        else:
            rec = create_record(date=day, status=draft.status, notes=notes.strip(), **worked)
            outcome = save_day_record(entries, rec, ledger)
            if not outcome.ok:
                st.error(outcome.error)
            else:
                commit(new_entries=outcome.entries, saved=rec,
                       message=f"Saved {day:%d/%m/%Y}: {min_to_hm(calculator.minutes(rec))}")
    if existing is not None and b2.button("Delete day", use_container_width=True):
        kept, cleared = delete_day(entries, ledger, existing.id)
        commit(new_entries=kept, new_ledger=cleared, deleted_id=existing.id, message=f"Deleted {day:%d/%m/%Y}")

# =========================
# 📊 Dashboard
# =========================
with tab_dash:
    stats = PeriodAggregator(entries, schedule)
    anchor = st.date_input("Period containing", value=today, key="dash_anchor")
    cols = st.columns(4)
    summary = stats.summary(anchor)
    for col, window in zip(cols, Window):
        figures = summary[window.value]
        col.metric(window.value.capitalize(), min_to_hm(figures["worked"]),
                   figures["label"] if window != Window.DAY else None)

    st.subheader("📅 Weekly deltas")
    deltas = engine.week_deltas(entries, schedule, today)
    for monday in sorted(deltas, reverse=True)[:8]:
        st.markdown(f"- Week of **{monday:%d/%m/%Y}**: {format_duration(deltas[monday])}")

    df = records_to_dataframe(entries, schedule)
    if df.empty:
        st.info("No records yet.")
    else:
        st.dataframe(df.drop(columns=["Worked (min)", "Delta (min)"]), use_container_width=True, hide_index=True)

# =========================
# ⏳ Overtime bank
# =========================
with tab_ot:
    m1, m2, m3 = st.columns(3)
    m1.metric("Balance", min_to_hm(ledger.balance_minutes),
              f"≈ {minutes_to_days(ledger.balance_minutes, schedule)} days")
    m2.metric("Earned", min_to_hm(ledger.earned_minutes))
    m3.metric("Used", min_to_hm(ledger.used_minutes))

    st.subheader("Take recovery time")
    rec_day = st.date_input("Recovery date", value=today, key="rec_date")
    full_day = st.checkbox("Full day")
    r1, r2 = st.columns(2)
    with r1:
        rec_start = time_select("From", "rec_start", disabled=full_day)
    with r2:
        rec_end = time_select("To", "rec_end", disabled=full_day)
    rec_note = st.text_input("Comment", key="rec_note")
    if st.button("Record recovery", use_container_width=True):
        outcome = submit_recovery(ledger, entries, schedule, rec_day, rec_start, rec_end, rec_note.strip(), full_day)
        if not outcome.ok:
            st.error(outcome.error)
        else:
            commit(new_entries=outcome.entries, new_ledger=outcome.ledger,
                   message=f"{format_duration(outcome.minutes)} taken from your balance.")

    with st.expander("Manual credit"):
        credit_day = st.date_input("Date", value=today, key="credit_date")
        credit_min = st.number_input("Minutes", min_value=1, step=15, value=60)
        credit_note = st.text_input("Comment", key="credit_note")
        if st.button("Add credit"):
            commit(new_ledger=record_manual_credit(ledger, credit_day, int(credit_min), credit_note.strip()),
                   message="Credit recorded.")

    st.subheader("History")
    for item in overtime_history(ledger, entries, schedule.daily_target_minutes)[:50]:
        h1, h2 = st.columns([5, 1])
        span = f" ({format_hhmm(item.start)}-{format_hhmm(item.end)})" if item.start else ""
        h1.markdown(f"**{item.date:%d/%m/%Y}** · {item.kind} · {format_duration(item.minutes)}{span} {item.note}")
        if item.is_manual and h2.button("🗑️", key=f"del_{item.id}"):
            commit(new_ledger=remove_event(ledger, item.id), message="Adjustment removed.")

# =========================
# 👤 Work profile
# =========================
with tab_profile:
    weekly = st.number_input("Hours per week", min_value=0.0, step=0.5, value=float(schedule.weekly_target_hours))
    ndays = st.number_input("Work days per week", min_value=1, max_value=7, value=int(schedule.work_days_per_week))
    per_day = st.radio("Schedule", ["Same every day", "Per day"], horizontal=True,
                       index=1 if schedule.mode == ScheduleMode.PER_DAY else 0) == "Per day"

    def template_inputs(prefix: str, base: DayTemplate, enabled: bool = True) -> DayTemplate:
        cols = st.columns(4)
        fields = ("start", "lunch_start", "lunch_end", "end")
        labels = ("Start", "Lunch start", "Lunch end", "End")
        values = {}
        for col, field, label in zip(cols, fields, labels):
            with col:
                values[field] = time_select(label, f"{prefix}_{field}", format_hhmm(getattr(base, field)))
        return DayTemplate(enabled=enabled, **values)

    if per_day:
        days = []
        for wd in Weekday:
            base = schedule.days[wd]
            on = st.checkbox(wd.name.capitalize(), value=base.enabled, key=f"on_{wd.name}")
            days.append(template_inputs(wd.name, base, on) if on else DayTemplate(enabled=False))
        candidate = ScheduleConfig(weekly, int(ndays), ScheduleMode.PER_DAY, schedule.uniform, tuple(days))
    else:
        uniform = template_inputs("uniform", schedule.uniform)
        candidate = ScheduleConfig(weekly, int(ndays), ScheduleMode.UNIFORM, uniform, schedule.days)

    if st.button("Save profile", use_container_width=True):
        result = validator.validate(candidate)
        if not result.valid:
            st.error(result.error)
        else:
            repo.save_schedule(candidate)
            schedule = candidate
            commit(message=f"Profile saved · {weekly:g}h/week over {int(ndays)} days")

# =========================
# ⬇️ Import / export
# =========================
with tab_export:
    period = st.radio("Period", ["Month", "Year", "All"], horizontal=True)
    first = stop = None
    if period == "Month":
        first = today.replace(day=1)
        stop = date(today.year + (today.month == 12), today.month % 12 + 1, 1)
    elif period == "Year":
        first, stop = date(today.year, 1, 1), date(today.year + 1, 1, 1)
    scoped = filter_period(entries, first, stop)
    with_target = st.checkbox("Include target, delta and cumulative")
    st.download_button("Download CSV", data=export_csv(scoped, schedule, with_target),
                       file_name=f"hours_{period.lower()}_{today:%Y%m%d}.csv", mime="text/csv",
                       use_container_width=True)
    st.download_button("Download monthly PDF", data=monthly_report(entries, schedule, today),
                       file_name=f"report_{today:%Y-%m}.pdf", mime="application/pdf", use_container_width=True)
    st.download_button("Backup all records", data=export_records_csv(entries),
                       file_name="records_backup.csv", mime="text/csv", use_container_width=True)

    upload = st.file_uploader("Import records (CSV)", type=["csv"])
    if upload is not None and st.button("Import", use_container_width=True):
        try:
            incoming = import_csv(upload.getvalue().decode("utf-8"))
        except ValueError as e:
            logger.warning("Import of %s rejected: %s", upload.name, e)
            st.error(str(e))
        else:
            commit(new_entries=merge_records(entries, incoming), message=f"Imported {len(incoming)} records.")
