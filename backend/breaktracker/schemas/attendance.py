from pydantic import BaseModel
import uuid
from datetime import date, datetime


class AttendanceOut(BaseModel):
    id: int
    employee_id: uuid.UUID
    date: date
    status: str  # present | late | half_day | absent | leave
    check_in_time: datetime | None
    remarks: str | None
    updated_by: str | None
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class CheckInOut(AttendanceOut):
    created: bool  # False: the day was already marked, record returned unchanged


class AttendanceDayOut(BaseModel):
    """Own attendance for a day; status is None until marked."""
    employee_id: uuid.UUID
    date: date
    status: str | None = None
    check_in_time: datetime | None = None
    remarks: str | None = None


class AttendanceListItem(AttendanceOut):
    employee_name: str
    emp_code: str
    team: str | None


class AttendanceOverride(BaseModel):
    status: str
    remarks: str
