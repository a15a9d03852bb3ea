"""
Attendance policy evaluation.

Pure functions over punch logs and AttendanceSettings: geofencing,
IP restriction, working hours, overtime, lateness and day status.
Nothing here touches the database.
"""
import calendar
import ipaddress
import logging
import math
from datetime import datetime, date, time, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings as app_settings
from app.models.hr import (
    AttendanceSettings, AttendanceStatus, LocationRestrictionMode, PunchType,
    STICKY_ATTENDANCE_STATUSES,
)

logger = logging.getLogger(__name__)

# Earth radius in meters
EARTH_RADIUS_M = 6371000

# Baseline day length when overtime is not measured against the shift
STANDARD_WORKING_HOURS = 8


# ==================== Time helpers ====================

def tenant_timezone(attendance_settings: Optional[AttendanceSettings]) -> tzinfo:
    """Zone used to turn instants into local shift times."""
    name = (attendance_settings.timezone if attendance_settings else None) or app_settings.DEFAULT_TIMEZONE
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return timezone.utc


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from stores without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_hhmm(value: str) -> time:
    """Parse a "HH:MM" time-of-day string."""
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def local_instant(day: date, at: time, tz: tzinfo) -> datetime:
    """The instant at which local wall-clock `at` occurs on `day`."""
    return datetime.combine(day, at, tzinfo=tz)


def parse_date_str(value: str) -> date:
    """Parse a client supplied YYYY-MM-DD date. Raises ValueError."""
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()


def log_time(entry: Dict[str, Any]) -> datetime:
    raw = entry["time"]
    if isinstance(raw, datetime):
        return as_utc(raw)
    return as_utc(datetime.fromisoformat(raw))


def make_log(
    at: datetime,
    punch_type: PunchType,
    device: Optional[str] = None,
    location: Optional[str] = None,
    ip: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Dict[str, Any]:
    """Punch log entry as stored in Attendance.logs."""
    return {
        "time": as_utc(at).isoformat(),
        "type": punch_type.value,
        "device": device or "Unknown",
        "location": location or "Remote",
        "ip": ip,
        "latitude": latitude,
        "longitude": longitude,
    }


# ==================== Location restrictions ====================

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def geo_check_applies(attendance_settings: AttendanceSettings) -> bool:
    return attendance_settings.location_restriction_mode in (
        LocationRestrictionMode.GEO.value, LocationRestrictionMode.BOTH.value
    )


def ip_check_applies(attendance_settings: AttendanceSettings) -> bool:
    return attendance_settings.location_restriction_mode in (
        LocationRestrictionMode.IP.value, LocationRestrictionMode.BOTH.value
    )


def validate_geofence(
    latitude: Optional[float],
    longitude: Optional[float],
    attendance_settings: AttendanceSettings,
) -> Tuple[bool, Optional[str], Optional[float]]:
    """
    Check a punch location against the office geofence.

    Returns:
        (is_valid, error_message, distance_m)
    """
    if (
        not attendance_settings.geo_fencing_enabled
        or attendance_settings.office_latitude is None
        or attendance_settings.office_longitude is None
    ):
        return True, None, None

    if latitude is None or longitude is None:
        return False, "Location data required for geo-fencing", None

    distance = haversine_distance(
        attendance_settings.office_latitude,
        attendance_settings.office_longitude,
        latitude,
        longitude,
    )
    allowed = attendance_settings.allowed_radius_meters or 100
    if distance > allowed:
        return (
            False,
            f"Punch outside allowed radius. Distance: {round(distance)}m, Allowed: {allowed:g}m",
            distance,
        )
    return True, None, distance


def ip_in_cidr(ip: str, cidr: str) -> bool:
    """IPv4 CIDR membership; malformed input never matches."""
    try:
        address = ipaddress.IPv4Address(ip.strip())
        network = ipaddress.IPv4Network(cidr.strip(), strict=False)
    except ValueError:
        return False
    return address in network


def is_ip_allowed(ip: str, allowed_ips: List[str], allowed_ip_ranges: List[str]) -> bool:
    """
    Exact IPs or CIDR blocks in allowed_ips; CIDR blocks or plain
    prefixes (e.g. "10.0.") in allowed_ip_ranges.
    """
    for allowed in allowed_ips:
        if "/" in allowed:
            if ip_in_cidr(ip, allowed):
                return True
        elif ip == allowed.strip():
            return True

    for ip_range in allowed_ip_ranges:
        if "/" in ip_range:
            if ip_in_cidr(ip, ip_range):
                return True
        elif ip.startswith(ip_range.strip()):
            return True

    return False


def validate_ip(client_ip: Optional[str], attendance_settings: AttendanceSettings) -> Tuple[bool, Optional[str]]:
    """Check the client IP against the allow-lists. Returns (is_valid, error_message)."""
    allowed_ips = [ip for ip in (attendance_settings.allowed_ips or []) if ip and ip.strip()]
    allowed_ranges = [r for r in (attendance_settings.allowed_ip_ranges or []) if r and r.strip()]

    if not attendance_settings.ip_restriction_enabled or not (allowed_ips or allowed_ranges):
        return True, None

    if not client_ip:
        return False, "IP address required for IP restriction"

    if not is_ip_allowed(client_ip, allowed_ips, allowed_ranges):
        return False, f"IP address {client_ip} not in allowed list"

    return True, None


# ==================== Hours & status ====================

def next_punch_type(logs: List[Dict[str, Any]]) -> PunchType:
    """OUT after an IN, otherwise IN."""
    if logs and logs[-1].get("type") == PunchType.IN.value:
        return PunchType.OUT
    return PunchType.IN


def calculate_working_hours(logs: List[Dict[str, Any]]) -> Decimal:
    """Sum of every complete IN->OUT pair, in hours, rounded to 2 places."""
    total_seconds = 0.0
    in_time = None

    for entry in logs:
        if entry.get("type") == PunchType.IN.value:
            in_time = log_time(entry)
        elif entry.get("type") == PunchType.OUT.value and in_time is not None:
            total_seconds += (log_time(entry) - in_time).total_seconds()
            in_time = None

    return Decimal(str(round(total_seconds / 3600, 2)))


def shift_duration_hours(attendance_settings: AttendanceSettings) -> float:
    start = parse_hhmm(attendance_settings.shift_start_time)
    end = parse_hhmm(attendance_settings.shift_end_time)
    return ((end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)) / 60


def calculate_overtime_hours(working_hours: Decimal, attendance_settings: AttendanceSettings) -> Decimal:
    if attendance_settings.overtime_after_shift_hours:
        baseline = shift_duration_hours(attendance_settings)
    else:
        baseline = STANDARD_WORKING_HOURS
    overtime = max(0.0, float(working_hours) - baseline)
    return Decimal(str(round(overtime, 2)))


def is_late_punch(at: datetime, day: date, attendance_settings: AttendanceSettings, tz: tzinfo) -> bool:
    """Late once past shift start plus the larger of late-mark threshold and grace."""
    shift_start = local_instant(day, parse_hhmm(attendance_settings.shift_start_time), tz)
    allowance = max(
        attendance_settings.late_mark_threshold_minutes or 0,
        attendance_settings.grace_time_minutes or 0,
    )
    return as_utc(at) > as_utc(shift_start) + timedelta(minutes=allowance)


def is_late_with_grace(at: datetime, day: date, attendance_settings: AttendanceSettings, tz: tzinfo) -> bool:
    """Late once past shift start plus grace only (imported punches)."""
    shift_start = local_instant(day, parse_hhmm(attendance_settings.shift_start_time), tz)
    return as_utc(at) > as_utc(shift_start) + timedelta(minutes=attendance_settings.grace_time_minutes or 0)


def is_early_out_punch(at: datetime, day: date, attendance_settings: AttendanceSettings, tz: tzinfo) -> bool:
    shift_end = local_instant(day, parse_hhmm(attendance_settings.shift_end_time), tz)
    return as_utc(at) < as_utc(shift_end)


def evaluate_status(
    current_status: Optional[str],
    working_hours: Decimal,
    punch_type: PunchType,
    attendance_settings: AttendanceSettings,
) -> str:
    """
    Day status after a punch.

    LEAVE, HOLIDAY and WEEKLY_OFF are kept. Below the half-day threshold the
    day is ABSENT only on an OUT punch; an IN punch leaves it provisional.
    """
    if current_status in STICKY_ATTENDANCE_STATUSES:
        return current_status

    hours = float(working_hours)
    if hours >= attendance_settings.full_day_threshold_hours:
        return AttendanceStatus.PRESENT.value
    if hours >= attendance_settings.half_day_threshold_hours:
        return AttendanceStatus.HALF_DAY.value
    if punch_type == PunchType.OUT:
        return AttendanceStatus.ABSENT.value
    return AttendanceStatus.HALF_DAY.value if hours > 0 else AttendanceStatus.PRESENT.value


def leave_year_for(day: date, cycle_start_month: Optional[int]) -> int:
    """Accounting year of a date for a leave cycle starting in cycle_start_month (1 = January)."""
    start_month = cycle_start_month or 1
    if day.month < start_month:
        return day.year - 1
    return day.year


def is_weekly_off(day: date, attendance_settings: Optional[AttendanceSettings]) -> bool:
    off_days = attendance_settings.weekly_off_days if attendance_settings else None
    if off_days is None:
        off_days = [6]
    return day.weekday() in off_days


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last date of a calendar month. Raises ValueError on a bad month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def build_manual_logs(
    day: date,
    check_in: Optional[time],
    check_out: Optional[time],
    tz: tzinfo,
    location: str,
    device: str,
) -> Tuple[List[Dict[str, Any]], Optional[datetime], Optional[datetime]]:
    """
    Replace a day's punches with a single IN/OUT pair taken from wall-clock times.

    Returns:
        (logs, check_in_at, check_out_at) with instants in UTC
    """
    logs = []
    check_in_at = as_utc(local_instant(day, check_in, tz)) if check_in else None
    check_out_at = as_utc(local_instant(day, check_out, tz)) if check_out else None

    if check_in_at:
        logs.append(make_log(check_in_at, PunchType.IN, device=device, location=location))
    if check_out_at:
        logs.append(make_log(check_out_at, PunchType.OUT, device=device, location=location))
    return logs, check_in_at, check_out_at
