import uuid
import datetime as dt

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from breaktracker.core.database import Base

TYPE_BREAK = "BREAK"
TYPE_LUNCH = "LUNCH"

LOG_ACTIVE     = "ACTIVE"
LOG_COMPLETED  = "COMPLETED"
LOG_FORCED_END = "FORCED_END"


class BreakLog(Base):
    __tablename__ = "break_logs"
    __table_args__ = (
        # At most one ACTIVE entry per employee, enforced by the store itself
        Index(
            "uq_break_logs_one_active",
            "employee_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_break_logs_employee_date", "employee_id", "date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    employee_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("employees.id"), nullable=False)

    type: Mapped[str] = mapped_column(String(20), nullable=False)             # BREAK | LUNCH
    status: Mapped[str] = mapped_column(String(20), default=LOG_ACTIVE)      # ACTIVE | COMPLETED | FORCED_END
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)                 # office-timezone day
    start_time: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)    # whole minutes

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: dt.datetime.now(dt.timezone.utc)
    )

    employee: Mapped["Employee"] = relationship(back_populates="break_logs")
