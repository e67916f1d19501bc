from breaktracker.schemas.breaks import BreakStartOut, BreakEndOut, BreakStatusOut
from breaktracker.schemas.attendance import (
    AttendanceOut, CheckInOut, AttendanceDayOut, AttendanceListItem, AttendanceOverride,
)
from breaktracker.schemas.policy import PolicyUpdate, PolicyOut
from breaktracker.schemas.scheduler import TriggerOut, SweepResultOut

__all__ = [
    "BreakStartOut", "BreakEndOut", "BreakStatusOut",
    "AttendanceOut", "CheckInOut", "AttendanceDayOut", "AttendanceListItem", "AttendanceOverride",
    "PolicyUpdate", "PolicyOut",
    "TriggerOut", "SweepResultOut",
]
