from __future__ import annotations

import csv
import datetime as dt
import hashlib
import logging
import re
from pathlib import Path
from typing import Iterable, List

from openpyxl import Workbook
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.units import cm
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from .config import settings
from .errors import ChronoFlowError
from .models import ExportRecord
from .records import TimerSession
from .state import WorkspaceState
from .utils import day_bounds, now

logger = logging.getLogger(__name__)

TIMESHEET_HEADERS = ["Ticket #", "Client", "Date", "Start", "End", "Description"]
EXPORT_FORMATS = {"csv", "xlsx", "pdf"}

_HTML_TAG = re.compile(r"<[^>]*>")


def _strip_html(value: str) -> str:
    return _HTML_TAG.sub("", value).strip()


def _clock(value: dt.datetime) -> str:
    return f"{value.hour}:{value.minute:02d}"


def timesheet_rows(state: WorkspaceState, sessions: Iterable[TimerSession]) -> List[List[str]]:
    rows: List[List[str]] = []
    for session in sessions:
        task = state.tasks.get(session.task_id) if session.task_id else None
        subtask = state.subtasks.get(session.subtask_id) if session.subtask_id else None
        client_id = (task.client_id if task else None) or session.client_id
        client = state.clients.get(client_id) if client_id else None

        description = (
            (subtask.title if subtask else "")
            or _strip_html(session.notes)
            or (session.custom_title or "")
            or (task.title if task else "")
            or "No Desc"
        )
        rows.append(
            [
                (task.ticket_number if task else None) or "",
                client.name if client else "Quick Entry",
                session.start_time.date().isoformat(),
                _clock(session.start_time),
                _clock(session.end_time) if session.end_time else "",
                description,
            ]
        )
    return rows


def _write_csv(path: Path, rows: List[List[str]]) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(TIMESHEET_HEADERS)
        writer.writerows(rows)


def _write_xlsx(path: Path, rows: List[List[str]]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Timesheet"
    ws.append(TIMESHEET_HEADERS)
    for row in rows:
        ws.append(row)
    wb.save(path)


def _fit_text(text: str, font: str, size: float, max_width: float) -> str:
    """Cut ``text`` so it renders within ``max_width`` points, marking the cut with an ellipsis."""
    if stringWidth(text, font, size) <= max_width:
        return text
    while text and stringWidth(text + "...", font, size) > max_width:
        text = text[:-1]
    return text + "..."


def _write_pdf(path: Path, title: str, rows: List[List[str]]) -> None:
    pagesize = landscape(A4)
    pdf = canvas.Canvas(str(path), pagesize=pagesize)
    width, height = pagesize
    columns = [2 * cm, 5 * cm, 10 * cm, 13 * cm, 15 * cm, 17 * cm]
    limits = [right - left - 0.3 * cm for left, right in zip(columns, columns[1:] + [width - 1.7 * cm])]
    y = height - 2 * cm
    pdf.setTitle(title)
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(2 * cm, y, title)
    y -= 1 * cm

    def draw_row(values: List[str], font: str) -> None:
        pdf.setFont(font, 10)
        for x, limit, value in zip(columns, limits, values):
            pdf.drawString(x, y, _fit_text(str(value), font, 10, limit))

    draw_row(TIMESHEET_HEADERS, "Helvetica-Bold")
    y -= 0.8 * cm
    for row in rows:
        draw_row(row, "Helvetica")
        y -= 0.7 * cm
        if y < 2 * cm:
            pdf.showPage()
            y = height - 2 * cm
    pdf.save()


def export_timesheet(
    db: Session,
    state: WorkspaceState,
    export_format: str,
    start_date: dt.date,
    end_date: dt.date,
) -> ExportRecord:
    if export_format not in EXPORT_FORMATS:
        raise ChronoFlowError("Unsupported export format")
    if end_date < start_date:
        raise ChronoFlowError("Export range ends before it starts")

    start, _ = day_bounds(start_date)
    _, end = day_bounds(end_date)
    with state.lock:
        sessions = sorted(
            (
                session
                for session in state.sessions.values()
                if session.end_time is not None and start <= session.start_time < end
            ),
            key=lambda session: session.start_time,
        )
        rows = timesheet_rows(state, sessions)

    filename = f"timesheet_{start_date}_{end_date}_{int(now().timestamp())}.{export_format}"
    path = settings.export_dir / filename
    if export_format == "csv":
        _write_csv(path, rows)
    elif export_format == "xlsx":
        _write_xlsx(path, rows)
    else:
        _write_pdf(path, f"{settings.app_name} Timesheet {start_date} - {end_date}", rows)

    export = ExportRecord(
        type="timesheet",
        format=export_format,
        range_start=start_date,
        range_end=end_date,
        path=str(path),
        checksum=_checksum_file(path),
    )
    db.add(export)
    db.commit()
    db.refresh(export)
    logger.info("Exported %d sessions to %s", len(rows), path)
    return export


def _checksum_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()
