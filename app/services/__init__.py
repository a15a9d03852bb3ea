# Services module
from app.services.audit_service import AuditService
from app.services.auth_service import AuthService
from app.services.notification_service import NotificationService
from app.services.tenant_admin_service import TenantAdminService

# Attendance
from app.services.attendance_service import AttendanceService
from app.services.attendance_import_service import AttendanceImportService

# Leave & Regularization
from app.services.leave_ledger import LeaveLedger
from app.services.leave_service import LeaveService
from app.services.leave_policy_service import LeavePolicyService
from app.services.regularization_service import RegularizationService
from app.services.hierarchy import HierarchyService

__all__ = [
    "AuditService",
    "AuthService",
    "NotificationService",
    "TenantAdminService",
    # Attendance
    "AttendanceService",
    "AttendanceImportService",
    # Leave & Regularization
    "LeaveLedger",
    "LeaveService",
    "LeavePolicyService",
    "RegularizationService",
    "HierarchyService",
]
