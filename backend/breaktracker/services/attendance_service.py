"""
Anwesenheit: Einstufung beim Check-in plus die Admin-Pfade, die Einträge schreiben.

Ein Eintrag pro (Mitarbeiter, Tag). Ein Check-in stuft einen vorhandenen
Eintrag nie neu ein; Korrekturen und Urlaubsmarkierung ersetzen Status und
Bemerkung und hinterlassen einen Audit-Eintrag.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from breaktracker.core.database import dialect_insert, with_store_timeout
from breaktracker.core.exceptions import (
    EmployeeNotFound,
    InvalidOverride,
    RecordNotFound,
    TooEarly,
)
from breaktracker.models.attendance import (
    AttendanceRecord,
    ATTENDANCE_HALF_DAY,
    ATTENDANCE_LATE,
    ATTENDANCE_LEAVE,
    ATTENDANCE_PRESENT,
    ATTENDANCE_STATUSES,
)
from breaktracker.models.employee import Employee
from breaktracker.services.audit_service import AuditService
from breaktracker.services.policy import PolicyConfig, PolicyStore
from breaktracker.utils.office_time import now_in_policy_timezone

logger = logging.getLogger(__name__)

HALF_DAY_REMARK = "Late check-in (post half-day threshold)"
LEAVE_REMARK    = "Approved leave"

HISTORY_DEFAULT_LIMIT = 20
HISTORY_MAX_LIMIT     = 100


def classify(check_in_minutes: int, policy: PolicyConfig) -> str:
    """
    present | late | half_day for a check-in at the given office minute.

    Thresholds compare with a strict ">", so a check-in exactly on a threshold
    lands in the better bucket.
    """
    if check_in_minutes < policy.start_minutes:
        raise TooEarly(f"Attendance marking opens at {policy.start_time}")
    if check_in_minutes > policy.half_day_threshold_minutes:
        return ATTENDANCE_HALF_DAY
    if check_in_minutes > policy.late_threshold_minutes:
        return ATTENDANCE_LATE
    return ATTENDANCE_PRESENT


@dataclass
class CheckInResult:
    record: AttendanceRecord
    created: bool


class AttendanceService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check_in(
        self,
        employee_id: uuid.UUID,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> CheckInResult:
        return await with_store_timeout(self._check_in(employee_id, now), timeout)

    async def get_for_day(
        self, employee_id: uuid.UUID, day: date, timeout: float | None = None
    ) -> AttendanceRecord | None:
        return await with_store_timeout(self._find(employee_id, day), timeout)

    async def history(
        self, employee_id: uuid.UUID, limit: int | None = None, timeout: float | None = None
    ) -> list[AttendanceRecord]:
        limit = HISTORY_DEFAULT_LIMIT if limit is None else min(max(limit, 1), HISTORY_MAX_LIMIT)

        async def _load():
            result = await self.db.execute(
                select(AttendanceRecord)
                .where(AttendanceRecord.employee_id == employee_id)
                .order_by(AttendanceRecord.date.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

        return await with_store_timeout(_load(), timeout)

    async def list_for_day(
        self, day: date, timeout: float | None = None
    ) -> list[tuple[AttendanceRecord, Employee]]:
        async def _load():
            result = await self.db.execute(
                select(AttendanceRecord, Employee)
                .join(Employee, Employee.id == AttendanceRecord.employee_id)
                .where(AttendanceRecord.date == day)
                .order_by(Employee.emp_code)
            )
            return [(row[0], row[1]) for row in result.all()]

        return await with_store_timeout(_load(), timeout)

    async def override(
        self,
        record_id: int,
        status: str,
        remarks: str,
        actor: str,
        timeout: float | None = None,
    ) -> AttendanceRecord:
        if status not in ATTENDANCE_STATUSES:
            raise InvalidOverride(f"Invalid attendance status: {status}")
        if not remarks or not remarks.strip():
            raise InvalidOverride("remarks is required for overrides")
        return await with_store_timeout(
            self._override(record_id, status, remarks.strip(), actor), timeout
        )

    async def mark_leave(
        self,
        employee_id: uuid.UUID,
        day: date,
        actor: str,
        timeout: float | None = None,
    ) -> AttendanceRecord:
        """Called by the leave workflow once a request for ``day`` is approved."""
        return await with_store_timeout(self._mark_leave(employee_id, day, actor), timeout)

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _check_in(self, employee_id: uuid.UUID, now: datetime | None) -> CheckInResult:
        employee = await self.db.get(Employee, employee_id)
        if employee is None:
            raise EmployeeNotFound(f"Employee {employee_id} not found")

        clock = now_in_policy_timezone(now)
        existing = await self._find(employee_id, clock.date)
        if existing is not None:
            return CheckInResult(record=existing, created=False)

        policy = await PolicyStore(self.db).get_policy()
        status = classify(clock.minutes, policy)

        insert = dialect_insert(self.db)
        stmt = (
            insert(AttendanceRecord.__table__)
            .values(
                employee_id=employee_id,
                date=clock.date,
                status=status,
                check_in_time=clock.instant,
                remarks=HALF_DAY_REMARK if status == ATTENDANCE_HALF_DAY else None,
                updated_by=employee.emp_code,
                updated_at=clock.instant,
            )
            .on_conflict_do_nothing(index_elements=["employee_id", "date"])
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        record = await self._find(employee_id, clock.date)
        # rowcount 0: a parallel check-in won the insert
        created = result.rowcount == 1
        if created:
            logger.info("Employee %s checked in as %s", employee.emp_code, status)
        return CheckInResult(record=record, created=created)

    async def _find(self, employee_id: uuid.UUID, day: date) -> AttendanceRecord | None:
        result = await self.db.execute(
            select(AttendanceRecord)
            .where(AttendanceRecord.employee_id == employee_id, AttendanceRecord.date == day)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _override(
        self, record_id: int, status: str, remarks: str, actor: str
    ) -> AttendanceRecord:
        record = await self.db.get(AttendanceRecord, record_id)
        if record is None:
            raise RecordNotFound(f"Attendance record {record_id} not found")

        old = {"status": record.status, "remarks": record.remarks}
        record.status = status
        record.remarks = remarks
        record.updated_by = actor

        AuditService(self.db).record(
            entity_type="attendance",
            entity_id=record.id,
            action="manual_override",
            old_value=old,
            new_value={"status": status, "remarks": remarks},
            actor=actor,
        )
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def _mark_leave(self, employee_id: uuid.UUID, day: date, actor: str) -> AttendanceRecord:
        if await self.db.get(Employee, employee_id) is None:
            raise EmployeeNotFound(f"Employee {employee_id} not found")

        record = await self._find(employee_id, day)
        old = None
        if record is None:
            record = AttendanceRecord(employee_id=employee_id, date=day, status=ATTENDANCE_LEAVE)
            self.db.add(record)
        else:
            old = {"status": record.status, "remarks": record.remarks}
        record.status = ATTENDANCE_LEAVE
        record.remarks = LEAVE_REMARK
        record.updated_by = actor
        await self.db.flush()

        AuditService(self.db).record(
            entity_type="attendance",
            entity_id=record.id,
            action="leave_approved",
            old_value=old,
            new_value={"status": ATTENDANCE_LEAVE, "remarks": LEAVE_REMARK},
            actor=actor,
        )
        await self.db.commit()
        await self.db.refresh(record)
        return record
