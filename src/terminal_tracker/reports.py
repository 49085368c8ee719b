"""Spreadsheet reports of terminal listings."""

from __future__ import annotations

from datetime import UTC, date, datetime
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .constants import ReportType
from .model import Terminal


REPORT_SHEET = "Terminals"

# (header, column width) in report order.
REPORT_COLUMNS: Sequence[Tuple[str, int]] = (
    ("Merchant Name", 20),
    ("Terminal ID", 10),
    ("Serial Number", 15),
    ("Line Serial Number", 20),
    ("Type", 10),
    ("Branch", 20),
    ("Dispatch Date", 12),
    ("Status", 8),
    ("Return Date", 12),
    ("Return Reason", 30),
    ("FedEx Tracking", 20),
)


def format_report_date(moment: Optional[datetime]) -> str:
    """Render a timestamp as ``Mar 5, 2025``; empty when absent."""

    if moment is None:
        return ""
    return f"{moment:%b} {moment.day}, {moment:%Y}"


def report_row(terminal: Terminal) -> list[object]:
    return [
        terminal.name,
        terminal.terminal_id,
        terminal.serial_number,
        terminal.line_serial_number,
        terminal.type.value,
        terminal.branch.value,
        format_report_date(terminal.dispatch_date),
        terminal.state.value,
        format_report_date(terminal.return_date),
        terminal.return_reason or "",
        terminal.fedex_tracking_number or "",
    ]


def report_file_name(report_type: ReportType, today: date) -> str:
    """Return e.g. ``Active_Terminals_Report_2025-03-05.xlsx``."""

    return f"{report_type.value.capitalize()}_Terminals_Report_{today.isoformat()}.xlsx"


def export_terminals_report(
    terminals: Iterable[Terminal],
    report_type: ReportType,
    destination_dir: Path,
    *,
    today: Optional[date] = None,
) -> Path:
    """Write ``terminals`` to a new report workbook inside ``destination_dir``.

    The sheet gets a bold header row and fixed column widths. An existing file
    with the same name is overwritten.

    Returns:
        Path: Location of the written workbook.
    """

    today = today or datetime.now(UTC).date()
    destination_dir = Path(destination_dir).expanduser().resolve()
    destination_dir.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = REPORT_SHEET

    bold_font = Font(bold=True)
    for column_index, (header, width) in enumerate(REPORT_COLUMNS, start=1):
        cell = sheet.cell(row=1, column=column_index, value=header)
        cell.font = bold_font
        sheet.column_dimensions[get_column_letter(column_index)].width = width

    for terminal in terminals:
        sheet.append(report_row(terminal))

    destination = destination_dir / report_file_name(report_type, today)
    workbook.save(destination)
    return destination


__all__ = [
    "REPORT_SHEET",
    "REPORT_COLUMNS",
    "format_report_date",
    "report_row",
    "report_file_name",
    "export_terminals_report",
]
