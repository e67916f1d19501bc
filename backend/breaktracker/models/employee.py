import uuid
from datetime import datetime, timezone

from sqlalchemy import String, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from breaktracker.core.database import Base

ROLE_EMPLOYEE = "EMPLOYEE"
ROLE_ADMIN    = "ADMIN"

STATUS_WORKING       = "WORKING"
STATUS_ON_BREAK      = "ON_BREAK"
STATUS_BREAK_OVERDUE = "BREAK_OVERDUE"
STATUS_LUNCH         = "LUNCH"

EMPLOYEE_STATUSES = (STATUS_WORKING, STATUS_ON_BREAK, STATUS_BREAK_OVERDUE, STATUS_LUNCH)


class Employee(Base):
    """
    Directory row plus the live workday status.

    Accounts are provisioned by the user-management service; ``current_status``
    is only written by BreakService and the attendance scheduler.
    """
    __tablename__ = "employees"
    __table_args__ = (
        Index("ix_employees_team_status", "team", "current_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    emp_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    role: Mapped[str] = mapped_column(String(50), default=ROLE_EMPLOYEE)  # EMPLOYEE | ADMIN
    team: Mapped[str | None] = mapped_column(String(50), nullable=True)   # cohort, e.g. CALLER | DEVELOPMENT
    current_status: Mapped[str] = mapped_column(String(50), default=STATUS_WORKING)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    break_logs: Mapped[list["BreakLog"]] = relationship(back_populates="employee")
