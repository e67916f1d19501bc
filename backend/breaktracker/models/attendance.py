import uuid
import datetime as dt

from sqlalchemy import String, DateTime, Date, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from breaktracker.core.database import Base

ATTENDANCE_PRESENT  = "present"
ATTENDANCE_LATE     = "late"
ATTENDANCE_HALF_DAY = "half_day"
ATTENDANCE_ABSENT   = "absent"
ATTENDANCE_LEAVE    = "leave"

ATTENDANCE_STATUSES = (
    ATTENDANCE_PRESENT,
    ATTENDANCE_LATE,
    ATTENDANCE_HALF_DAY,
    ATTENDANCE_ABSENT,
    ATTENDANCE_LEAVE,
)

SYSTEM_ACTOR = "SYSTEM"


class AttendanceRecord(Base):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("employee_id", "date", name="uq_attendance_employee_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("employees.id"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)  # present | late | half_day | absent | leave
    check_in_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)  # emp_code or SYSTEM
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: dt.datetime.now(dt.timezone.utc),
        onupdate=lambda: dt.datetime.now(dt.timezone.utc),
    )
