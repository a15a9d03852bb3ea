"""
Attendance Excel Import Service

Bulk-loads attendance days from the first sheet of an .xlsx workbook.

Header names are matched loosely (lowercased, punctuation stripped), so
"Employee ID", "emp_id" and "EmpID" all map to the employee code column.
Each row is written inside its own savepoint: a bad row is reported and
skipped, the rest of the batch still lands.
"""
import logging
import re
from datetime import datetime, date, time
from io import BytesIO
from typing import Optional, Dict, Any, List

import openpyxl
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.hr import AttendanceStatus, Employee
from app.services.attendance_policy import (
    build_manual_logs, calculate_working_hours, is_early_out_punch,
    is_late_with_grace, tenant_timezone,
)
from app.services.attendance_service import AttendanceService
from app.services.audit_service import AuditService
from app.services.results import Failure, Result

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d/%m/%y",
    "%d %b %Y",
    "%d-%b-%Y",
]

TIME_FORMATS = ["%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M%p", "%I:%M:%S %p"]

UPLOAD_LOCATION = "Excel Upload"
UPLOAD_DEVICE = "System"
UPLOAD_REASON = "Bulk Excel Upload"


class AttendanceImportError(Exception):
    """A row (or the whole file) that cannot be imported."""
    def __init__(self, message: str, row_number: int = None):
        self.message = message
        self.row_number = row_number
        super().__init__(self.message)


def normalise_header(value: Any) -> str:
    """Lowercase and strip everything but letters and digits."""
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


def find_column_index(
    headers: List[str],
    equals: tuple = (),
    contains: tuple = (),
) -> int:
    """Index of the first normalised header equal to or containing a candidate."""
    for index, header in enumerate(headers):
        if not header:
            continue
        if header in equals or any(fragment in header for fragment in contains):
            return index
    return -1


def parse_cell_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_cell_time(value: Any) -> Optional[time]:
    if isinstance(value, datetime):
        return value.time().replace(second=0, microsecond=0)
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if isinstance(value, (int, float)) and 0 <= value < 1:
        # Excel stores times as a fraction of a day
        minutes = round(value * 24 * 60)
        return time(minutes // 60, minutes % 60)
    text = str(value).strip().upper()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


class AttendanceImportService:
    """Imports attendance days from an Excel workbook."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attendance = AttendanceService(db)

    def _map_columns(self, header_row: tuple) -> Dict[str, int]:
        headers = [normalise_header(h) for h in header_row]
        columns = {
            "employee_code": find_column_index(
                headers,
                equals=("id", "code", "employeecode"),
                contains=("employeeid", "empid"),
            ),
            "date": find_column_index(
                headers,
                equals=("date",),
                contains=("attendancedate", "punchdate"),
            ),
            "status": find_column_index(headers, equals=("status",)),
            "check_in": find_column_index(
                headers,
                equals=("in", "intime"),
                contains=("checkin", "punchin"),
            ),
            "check_out": find_column_index(
                headers,
                equals=("out", "outtime"),
                contains=("checkout", "punchout"),
            ),
        }

        missing = []
        if columns["employee_code"] < 0:
            missing.append("Employee ID")
        if columns["date"] < 0:
            missing.append("Date")
        if missing:
            raise AttendanceImportError(f"Missing required columns: {', '.join(missing)}")
        return columns

    async def import_excel(
        self,
        file_bytes: bytes,
        actor: Employee,
        filename: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Result[Dict[str, Any]]:
        """
        Import attendance rows.

        Returns:
            {"success": int, "failed": int, "errors": [{"row": int, "error": str}]}
            or a Failure when the workbook itself cannot be used.
        """
        try:
            workbook = openpyxl.load_workbook(BytesIO(file_bytes), data_only=True, read_only=True)
        except Exception as e:
            logger.warning(f"Unreadable attendance workbook {filename}: {e}")
            return Failure("INVALID_FILE", f"Failed to read Excel file: {str(e)}")

        try:
            rows = list(workbook.worksheets[0].iter_rows(values_only=True))
        finally:
            workbook.close()

        if len(rows) < 2:
            return Failure("EMPTY_FILE", "Excel file is empty")

        try:
            columns = self._map_columns(rows[0])
        except AttendanceImportError as e:
            return Failure("MISSING_COLUMNS", e.message)

        settings_row = await self.attendance.get_settings()
        result = await self.db.execute(select(Employee))
        employees = {e.employee_code.strip().upper(): e for e in result.scalars().all()}

        success = 0
        errors: List[Dict[str, Any]] = []

        for index, row in enumerate(rows[1:]):
            row_number = index + 2
            if all(_is_blank(cell) for cell in row):
                continue
            try:
                async with self.db.begin_nested():
                    await self._import_row(row, columns, employees, settings_row, actor)
                success += 1
            except AttendanceImportError as e:
                errors.append({"row": row_number, "error": e.message})
            except SQLAlchemyError as e:
                logger.exception(f"Attendance import row {row_number} failed")
                errors.append({"row": row_number, "error": str(getattr(e, "orig", None) or e)})

        await AuditService(self.db).log(
            action="BULK_UPLOAD_EXCEL",
            entity_type="ATTENDANCE",
            user_id=actor.id,
            description=f"Bulk attendance upload: {success} imported, {len(errors)} failed",
            ip_address=ip_address,
            meta={"file": filename, "success_count": success, "fail_count": len(errors)},
        )
        logger.info(f"Attendance upload {filename}: {success} rows imported, {len(errors)} failed")

        return {"success": success, "failed": len(errors), "errors": errors}

    async def _import_row(
        self,
        row: tuple,
        columns: Dict[str, int],
        employees: Dict[str, Employee],
        settings_row,
        actor: Employee,
    ) -> None:
        def cell(name: str) -> Any:
            position = columns.get(name, -1)
            if position < 0 or position >= len(row):
                return None
            return row[position]

        raw_code = cell("employee_code")
        raw_date = cell("date")

        if _is_blank(raw_code):
            raise AttendanceImportError("Employee ID is missing")
        if _is_blank(raw_date):
            raise AttendanceImportError("Date is missing")

        code = str(raw_code).strip()
        employee = employees.get(code.upper())
        if employee is None:
            raise AttendanceImportError(f"Employee not found with ID: {code}")

        day = parse_cell_date(raw_date)
        if day is None:
            raise AttendanceImportError("Invalid date format")

        raw_status = cell("status")
        status_value = AttendanceStatus.PRESENT.value
        if not _is_blank(raw_status):
            status_value = str(raw_status).strip().upper().replace(" ", "_")
            if status_value not in AttendanceStatus.__members__:
                raise AttendanceImportError(f"Invalid status: {raw_status}")

        check_in = check_out = None
        if not _is_blank(cell("check_in")):
            check_in = parse_cell_time(cell("check_in"))
            if check_in is None:
                raise AttendanceImportError("Invalid time format")
        if not _is_blank(cell("check_out")):
            check_out = parse_cell_time(cell("check_out"))
            if check_out is None:
                raise AttendanceImportError("Invalid time format")

        tz = tenant_timezone(settings_row)
        logs, check_in_at, check_out_at = build_manual_logs(
            day, check_in, check_out, tz, location=UPLOAD_LOCATION, device=UPLOAD_DEVICE
        )

        record = await self.attendance.get_or_create_record(employee.id, day, status_value)
        record.status = status_value
        record.check_in = check_in_at
        record.check_out = check_out_at
        record.logs = logs
        record.working_hours = calculate_working_hours(logs)
        record.is_late = bool(check_in_at and is_late_with_grace(check_in_at, day, settings_row, tz))
        record.is_early_out = bool(check_out_at and is_early_out_punch(check_out_at, day, settings_row, tz))
        record.is_manual_override = True
        record.override_reason = UPLOAD_REASON
        record.approved_by = actor.id
        await self.db.flush()
