# reports.py
from __future__ import annotations

import io
from datetime import date
from typing import Iterable

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from domain import DayRecord, ScheduleConfig
from periods import PeriodAggregator, Window
from utils import format_minutes_signed, min_to_hm, records_to_dataframe

BORDER = colors.HexColor("#C7CCD6")
PDF_COLUMNS = ["Date", "Day", "Status", "Start", "Lunch start", "Lunch end", "End", "Worked", "Delta", "Notes"]
MONTHS = ["January", "February", "March", "April", "May", "June", "July",
          "August", "September", "October", "November", "December"]


def month_label(anchor: date) -> str:
    return f"{MONTHS[anchor.month - 1]} {anchor.year}"


def dataframe_to_pdf(df: pd.DataFrame, title: str, summary_lines: Iterable[str] = ()) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=landscape(A4), topMargin=24, bottomMargin=24, leftMargin=24, rightMargin=24)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(name="TitleCentered", parent=styles["Title"], alignment=TA_CENTER)
    summary_style = ParagraphStyle(name="Summary", parent=styles["Normal"], alignment=TA_CENTER, fontSize=11, leading=13)

    story = [Paragraph(title, title_style), Spacer(1, 8)]
    if df.empty:
        story.append(Paragraph("No records for this period.", styles["Normal"]))
    else:
        table = Table([list(df.columns)] + df.values.tolist(), repeatRows=1, hAlign="CENTER")
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F5F5F7")),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#E0E0E0")),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.white]),
        ]))
        story.append(table)

    cells = [[Paragraph(line, summary_style)] for line in summary_lines]
    if cells:
        box = Table(cells, colWidths=[min(520, 0.65 * doc.width)], hAlign="CENTER")
        box.setStyle(TableStyle([
            ("BOX", (0, 0), (-1, -1), 0.6, BORDER),
            ("TOPPADDING", (0, 0), (-1, -1), 8),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
        ]))
        story += [Spacer(1, 12), box]

    def draw_border(canvas, doc_obj):
        canvas.saveState()
        w, h = doc_obj.pagesize
        canvas.setStrokeColor(BORDER)
        canvas.setLineWidth(0.8)
        canvas.rect(12, 12, w - 24, h - 24)
        canvas.restoreState()

    doc.build(story, onFirstPage=draw_border, onLaterPages=draw_border)
    return buf.getvalue()


def monthly_report(records: Iterable[DayRecord], config: ScheduleConfig, anchor: date, title: str = "Time report") -> bytes:
    """PDF of the month containing anchor, with worked total and delta vs target."""
    records = list(records)
    stats = PeriodAggregator(records, config)
    month = [r for r in records if (r.date.year, r.date.month) == (anchor.year, anchor.month)]
    df = records_to_dataframe(month, config)
    if not df.empty:
        df = df[PDF_COLUMNS]
    lines = [
        f"Worked this month: {min_to_hm(stats.worked_minutes(anchor, Window.MONTH))}",
        f"Delta vs target: {format_minutes_signed(stats.delta(anchor, Window.MONTH))}",
    ]
    return dataframe_to_pdf(df, f"{title} - {month_label(anchor)}", lines)
