"""Tests for mapping spreadsheet rows into dispatch commands."""

from __future__ import annotations

import logging
import zipfile
from datetime import UTC, datetime

import openpyxl
import pytest

from terminal_tracker import import_mapper
from terminal_tracker.constants import Branch, TerminalType
from terminal_tracker.exceptions import ValidationError
from terminal_tracker.import_mapper import DateOutcome

from conftest import FIXED_NOW


def _row(**overrides):
    row = {
        "name": "Acme Stores",
        "terminal_id": "NBS00123",
        "serial_number": "SN12345",
        "line_serial_number": "1234567890123456",
        "type": "PAX S20",
        "branch": "Gweru Branch",
    }
    row.update(overrides)
    return row


def test_rows_map_in_input_order():
    rows = [_row(terminal_id=f"NBS0000{index}") for index in range(3)]

    mapped = import_mapper.map_import_rows(rows, now=FIXED_NOW)

    assert [item.command.terminal_id for item in mapped] == ["NBS00000", "NBS00001", "NBS00002"]
    assert [item.row_number for item in mapped] == [1, 2, 3]
    assert mapped[0].command.type is TerminalType.PAX_S20
    assert mapped[0].command.branch is Branch.GWERU


def test_missing_required_field_rejects_whole_batch():
    rows = [_row(), _row(serial_number=None), _row(terminal_id="  ")]

    with pytest.raises(ValidationError) as excinfo:
        import_mapper.map_import_rows(rows, now=FIXED_NOW)

    problems = [(violation.row, violation.field) for violation in excinfo.value.violations]
    assert problems == [(2, "serial_number"), (3, "terminal_id")]


def test_unknown_type_rejects_whole_batch():
    with pytest.raises(ValidationError) as excinfo:
        import_mapper.map_import_rows([_row(), _row(type="Ingenico Move")], now=FIXED_NOW)

    assert excinfo.value.fields == ["type"]
    assert excinfo.value.violations[0].row == 2


def test_unknown_branch_rejects_whole_batch():
    with pytest.raises(ValidationError):
        import_mapper.map_import_rows([_row(branch="Harare")], now=FIXED_NOW)


def test_aisini_spelling_is_normalized():
    mapped = import_mapper.map_import_rows([_row(type="Aisini A75")], now=FIXED_NOW)
    assert mapped[0].command.type is TerminalType.AISINO_A75


def test_long_values_are_truncated_not_rejected():
    row = _row(
        name="N" * 40,
        terminal_id="NBS0012345",
        serial_number="S" * 15,
        line_serial_number="1" * 20,
    )

    command = import_mapper.map_import_rows([row], now=FIXED_NOW)[0].command

    assert command.name == "N" * 25
    assert command.terminal_id == "NBS00123"
    assert command.serial_number == "S" * 11
    assert command.line_serial_number == "1" * 18


def test_numeric_cells_become_text():
    row = _row(serial_number=12345678, line_serial_number=1234567890123456.0, fedex_tracking_number=7712)

    command = import_mapper.map_import_rows([row], now=FIXED_NOW)[0].command

    assert command.serial_number == "12345678"
    assert command.line_serial_number == "1234567890123456"
    assert command.fedex_tracking_number == "7712"


def test_dispatch_date_outcomes(caplog):
    rows = [
        _row(dispatch_date=datetime(2025, 3, 1, 8, 30)),
        _row(dispatch_date="not a date"),
        _row(),
        _row(dispatch_date="2025-04-02"),
    ]

    with caplog.at_level(logging.WARNING, logger="terminal_tracker"):
        mapped = import_mapper.map_import_rows(rows, now=FIXED_NOW)

    assert [item.dispatch_date_outcome for item in mapped] == [
        DateOutcome.PARSED,
        DateOutcome.DEFAULTED,
        DateOutcome.MISSING,
        DateOutcome.PARSED,
    ]
    assert mapped[0].command.dispatch_date == datetime(2025, 3, 1, 8, 30, tzinfo=UTC)
    assert mapped[1].command.dispatch_date == FIXED_NOW
    assert mapped[2].command.dispatch_date == FIXED_NOW
    assert "invalid dispatch date" in caplog.text


def test_tracking_number_passes_through_or_stays_absent():
    mapped = import_mapper.map_import_rows(
        [_row(fedex_tracking_number="7712 3456 9000"), _row(fedex_tracking_number="")],
        now=FIXED_NOW,
    )

    assert mapped[0].command.fedex_tracking_number == "7712 3456 9000"
    assert mapped[1].command.fedex_tracking_number is None


def test_normalize_header_accepts_report_headers():
    assert import_mapper.normalize_header("Merchant Name") == "name"
    assert import_mapper.normalize_header(" terminal_id ") == "terminal_id"
    assert import_mapper.normalize_header("Line Serial Number") == "line_serial_number"
    assert import_mapper.normalize_header(None) is None


# ---------------------------------------------------------------------------
# Reading workbooks
# ---------------------------------------------------------------------------


def _write_sheet(path, rows):
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    workbook.save(path)
    return path


def test_read_import_rows_uses_header_row(tmp_path):
    path = _write_sheet(
        tmp_path / "upload.xlsx",
        [
            ["name", "terminal_id", "serial_number", "line_serial_number", "type", "branch"],
            ["Acme", "NBS00001", "SN12345", "1234567890123456", "iPOS", "CIB"],
            [None, None, None, None, None, None],
            ["Beta", "NBS00002", "SN12346", "1234567890123457", "PAX S20", "Mutare Branch"],
        ],
    )

    rows = import_mapper.read_import_rows(path)

    assert [row["name"] for row in rows] == ["Acme", "Beta"]
    assert rows[0]["branch"] == "CIB"


def test_read_import_rows_rejects_header_only_sheet(tmp_path):
    path = _write_sheet(tmp_path / "empty.xlsx", [["name", "terminal_id"]])

    with pytest.raises(ValidationError, match="does not contain any data"):
        import_mapper.read_import_rows(path)


def test_read_import_rows_rejects_non_workbook(tmp_path):
    path = tmp_path / "notes.xlsx"
    path.write_text("plain text")

    with pytest.raises(ValidationError):
        import_mapper.read_import_rows(path)


def test_read_import_rows_rejects_zip_that_is_not_a_workbook(tmp_path):
    path = tmp_path / "archive.xlsx"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("notes.txt", "not a workbook")

    with pytest.raises(ValidationError) as excinfo:
        import_mapper.read_import_rows(path)
    assert excinfo.value.violations[0].field == "file"


def test_read_import_rows_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        import_mapper.read_import_rows(tmp_path / "missing.xlsx")
