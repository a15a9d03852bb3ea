"""
Excel bulk attendance import.
"""
from datetime import date, timedelta, time
from decimal import Decimal
from io import BytesIO

import openpyxl
import pytest
from sqlalchemy import select

from app.models.audit_log import AuditLog
from app.models.hr import AttendanceStatus
from app.services.attendance_import_service import (
    AttendanceImportService, find_column_index, normalise_header, parse_cell_date, parse_cell_time,
)
from app.services.attendance_service import AttendanceService

HEADERS = ["Employee ID", "Date", "Status", "In Time", "Out Time"]
FIRST_DAY = date(2026, 3, 2)


def workbook_bytes(rows, headers=HEADERS) -> bytes:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class TestCellParsing:

    @pytest.mark.parametrize("header,expected", [
        ("Employee ID", "employeeid"),
        ("emp_id", "empid"),
        (" Check-In ", "checkin"),
        (None, ""),
    ])
    def test_normalise_header(self, header, expected):
        assert normalise_header(header) == expected

    def test_column_lookup_by_equality_then_containment(self):
        headers = ["", "attendancedate", "employeeid"]
        assert find_column_index(headers, equals=("date",), contains=("attendancedate",)) == 1
        assert find_column_index(headers, equals=("code",), contains=("empid",)) == -1

    @pytest.mark.parametrize("raw", ["2026-03-02", "02-03-2026", "02/03/2026", "02 Mar 2026"])
    def test_date_formats(self, raw):
        assert parse_cell_date(raw) == FIRST_DAY

    def test_unparseable_date(self):
        assert parse_cell_date("yesterday") is None

    @pytest.mark.parametrize("raw,expected", [
        ("09:30", time(9, 30)),
        ("9:30 AM", time(9, 30)),
        ("06:15 pm", time(18, 15)),
        (0.375, time(9, 0)),
        (time(8, 45, 30), time(8, 45)),
    ])
    def test_time_formats(self, raw, expected):
        assert parse_cell_time(raw) == expected


class TestImport:
    """Row-by-row import with per-row errors"""

    async def test_one_bad_row_does_not_sink_the_batch(self, db, employee, hr):
        rows = []
        for offset in range(10):
            code = "EMP999" if offset == 3 else "EMP001"
            rows.append([code, FIRST_DAY + timedelta(days=offset), "Present", "09:10", "18:00"])

        result = await AttendanceImportService(db).import_excel(workbook_bytes(rows), hr, "march.xlsx")

        assert result["success"] == 9
        assert result["failed"] == 1
        assert result["errors"] == [{"row": 5, "error": "Employee not found with ID: EMP999"}]

        records = await AttendanceService(db).employee_month(employee.id, 3, 2026)
        assert len(records) == 9
        first = records[0]
        assert first.is_manual_override is True
        assert first.approved_by == hr.id
        assert first.working_hours == Decimal("8.83")
        assert first.is_late is False
        assert [entry["location"] for entry in first.logs] == ["Excel Upload", "Excel Upload"]

    async def test_import_is_audited(self, db, employee, hr):
        rows = [["EMP001", FIRST_DAY, "Absent", None, None]]
        await AttendanceImportService(db).import_excel(workbook_bytes(rows), hr, "one.xlsx")

        audit = (await db.execute(
            select(AuditLog).where(AuditLog.action == "BULK_UPLOAD_EXCEL")
        )).scalar_one()
        assert audit.meta == {"file": "one.xlsx", "success_count": 1, "fail_count": 0}

    async def test_import_replaces_existing_punches(self, db, employee, hr):
        service = AttendanceService(db)
        await service.get_or_create_record(employee.id, FIRST_DAY, AttendanceStatus.ABSENT.value)
        await db.flush()

        rows = [["emp001", FIRST_DAY.strftime("%d/%m/%Y"), "half day", "09:00", "13:00"]]
        result = await AttendanceImportService(db).import_excel(workbook_bytes(rows), hr)

        assert result["success"] == 1
        record = await service.get_record(employee.id, FIRST_DAY)
        assert record.status == AttendanceStatus.HALF_DAY.value
        assert record.working_hours == Decimal("4.00")

    @pytest.mark.parametrize("row,error", [
        (["EMP001", FIRST_DAY, "Sick", None, None], "Invalid status: Sick"),
        (["EMP001", "not a date", None, None, None], "Invalid date format"),
        (["EMP001", FIRST_DAY, None, "quarter past", None], "Invalid time format"),
        ([None, FIRST_DAY, None, None, None], "Employee ID is missing"),
        (["EMP001", None, "Present", None, None], "Date is missing"),
    ])
    async def test_row_errors(self, db, employee, hr, row, error):
        result = await AttendanceImportService(db).import_excel(workbook_bytes([row]), hr)

        assert result["success"] == 0
        assert result["errors"] == [{"row": 2, "error": error}]

    async def test_blank_rows_are_skipped(self, db, employee, hr):
        rows = [
            ["EMP001", FIRST_DAY, None, None, None],
            [None, None, None, None, None],
            ["EMP001", FIRST_DAY + timedelta(days=1), None, None, None],
        ]
        result = await AttendanceImportService(db).import_excel(workbook_bytes(rows), hr)

        assert result == {"success": 2, "failed": 0, "errors": []}


class TestUnusableWorkbook:

    async def test_missing_required_columns(self, db, hr):
        content = workbook_bytes([["EMP001", "Present"]], headers=["Employee ID", "Status"])
        result = await AttendanceImportService(db).import_excel(content, hr)

        assert result.code == "MISSING_COLUMNS"
        assert result.message == "Missing required columns: Date"

    async def test_header_only(self, db, hr):
        result = await AttendanceImportService(db).import_excel(workbook_bytes([]), hr)
        assert result.code == "EMPTY_FILE"

    async def test_not_a_workbook(self, db, hr):
        result = await AttendanceImportService(db).import_excel(b"id,date\nEMP001,2026-03-02\n", hr)
        assert result.code == "INVALID_FILE"
