from breaktracker.models.employee import Employee
from breaktracker.models.break_log import BreakLog
from breaktracker.models.attendance import AttendanceRecord
from breaktracker.models.audit import AuditLog
from breaktracker.models.setting import Setting

__all__ = [
    "Employee",
    "BreakLog",
    "AttendanceRecord",
    "AuditLog",
    "Setting",
]
