"""
Break state machine for a single employee.

    WORKING ──start_break──▶ ON_BREAK ──end_break──▶ WORKING
    WORKING ──(scheduler)──▶ LUNCH    ──(scheduler)─▶ WORKING

Every transition is one transaction. The status flip is a compare-and-set
UPDATE, and break_logs has a partial unique index on ACTIVE rows, so a break
start racing the lunch sweep either waits for it or fails cleanly; it never
leaves two ACTIVE entries behind.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from breaktracker.core.config import settings
from breaktracker.core.database import with_store_timeout
from breaktracker.core.exceptions import (
    ConcurrencyLimitExceeded,
    EmployeeNotFound,
    InvalidStateTransition,
    NotOnBreak,
)
from breaktracker.models.break_log import (
    BreakLog,
    LOG_ACTIVE,
    LOG_COMPLETED,
    TYPE_BREAK,
    TYPE_LUNCH,
)
from breaktracker.models.employee import (
    Employee,
    STATUS_BREAK_OVERDUE,
    STATUS_ON_BREAK,
    STATUS_WORKING,
)
from breaktracker.services.events import EVENT_STATUS_UPDATE, EventSink, NullEventSink
from breaktracker.utils.office_time import OfficeNow, elapsed_minutes, now_in_policy_timezone

logger = logging.getLogger(__name__)

BREAK_STATUSES = (STATUS_ON_BREAK, STATUS_BREAK_OVERDUE)


@dataclass
class BreakStartResult:
    status: str
    log_id: uuid.UUID
    started_at: datetime
    warning: str | None = None


@dataclass
class BreakEndResult:
    status: str
    duration: int


@dataclass
class BreakStatus:
    status: str
    total_break_used: int


class BreakService:

    def __init__(
        self,
        db: AsyncSession,
        events: EventSink | None = None,
        *,
        capped_cohort: str | None = None,
        max_concurrent_breaks: int | None = None,
        soft_limit_cohort: str | None = None,
        daily_limit_minutes: int | None = None,
    ):
        self.db = db
        self.events = events or NullEventSink()
        self.capped_cohort = capped_cohort or settings.CAPPED_BREAK_COHORT
        self.max_concurrent_breaks = (
            max_concurrent_breaks
            if max_concurrent_breaks is not None
            else settings.MAX_CONCURRENT_COHORT_BREAKS
        )
        self.soft_limit_cohort = soft_limit_cohort or settings.SOFT_LIMIT_COHORT
        self.daily_limit_minutes = (
            daily_limit_minutes
            if daily_limit_minutes is not None
            else settings.DAILY_BREAK_LIMIT_MINUTES
        )

    # ── Public operations ─────────────────────────────────────────────────────

    async def start_break(
        self,
        employee_id: uuid.UUID,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> BreakStartResult:
        clock = now_in_policy_timezone(now)
        result = await with_store_timeout(self._start_break(employee_id, clock), timeout)
        await self.events.publish(
            EVENT_STATUS_UPDATE, {"userId": str(employee_id), "status": STATUS_ON_BREAK}
        )
        return result

    async def end_break(
        self,
        employee_id: uuid.UUID,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> BreakEndResult:
        clock = now_in_policy_timezone(now)
        result = await with_store_timeout(self._end_break(employee_id, clock), timeout)
        await self.events.publish(
            EVENT_STATUS_UPDATE, {"userId": str(employee_id), "status": STATUS_WORKING}
        )
        return result

    async def daily_break_usage(
        self,
        employee_id: uuid.UUID,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> int:
        clock = now_in_policy_timezone(now)
        return await with_store_timeout(self._usage(employee_id, clock), timeout)

    async def get_status(
        self,
        employee_id: uuid.UUID,
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> BreakStatus:
        clock = now_in_policy_timezone(now)

        async def _load() -> BreakStatus:
            employee = await self._get_employee(employee_id)
            used = await self._usage(employee_id, clock)
            return BreakStatus(status=employee.current_status, total_break_used=used)

        return await with_store_timeout(_load(), timeout)

    # ── Transactions ──────────────────────────────────────────────────────────

    async def _start_break(self, employee_id: uuid.UUID, clock: OfficeNow) -> BreakStartResult:
        employee = await self._get_employee(employee_id)
        if not employee.is_active:
            raise InvalidStateTransition("Inactive employees cannot start a break")

        capped = employee.team is not None and employee.team == self.capped_cohort
        try:
            if capped:
                # Serialisiert Pausenstarts im Team (unter SQLite wirkungslos,
                # dort nimmt das UPDATE unten ohnehin den Datenbank-Lock).
                await self.db.execute(
                    select(Employee.id).where(Employee.team == employee.team).with_for_update()
                )

            claimed = await self.db.execute(
                update(Employee)
                .where(Employee.id == employee_id, Employee.current_status == STATUS_WORKING)
                .values(current_status=STATUS_ON_BREAK)
            )
            if claimed.rowcount == 0:
                raise InvalidStateTransition(
                    f"Cannot start break unless status is WORKING (current: {employee.current_status})"
                )

            if capped:
                on_break = await self.db.scalar(
                    select(func.count())
                    .select_from(Employee)
                    .where(
                        Employee.team == employee.team,
                        Employee.current_status.in_(BREAK_STATUSES),
                        Employee.id != employee_id,
                    )
                )
                if on_break >= self.max_concurrent_breaks:
                    raise ConcurrencyLimitExceeded(
                        f"Maximum concurrent breaks ({self.max_concurrent_breaks}) reached "
                        f"for team {employee.team}. Please wait."
                    )

            warning = None
            if employee.team is not None and employee.team == self.soft_limit_cohort:
                used = await self._usage(employee_id, clock)
                if used >= self.daily_limit_minutes:
                    warning = (
                        f"You have exceeded your daily break limit of "
                        f"{self.daily_limit_minutes} minutes."
                    )

            log = BreakLog(
                employee_id=employee_id,
                type=TYPE_BREAK,
                status=LOG_ACTIVE,
                date=clock.date,
                start_time=clock.instant,
            )
            self.db.add(log)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise InvalidStateTransition("Another break or lunch is already active") from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Employee %s started a break", employee_id)
        return BreakStartResult(
            status=STATUS_ON_BREAK,
            log_id=log.id,
            started_at=clock.instant,
            warning=warning,
        )

    async def _end_break(self, employee_id: uuid.UUID, clock: OfficeNow) -> BreakEndResult:
        await self._get_employee(employee_id)
        try:
            released = await self.db.execute(
                update(Employee)
                .where(Employee.id == employee_id, Employee.current_status.in_(BREAK_STATUSES))
                .values(current_status=STATUS_WORKING)
            )
            if released.rowcount == 0:
                await self.db.rollback()
                current = await self.db.scalar(
                    select(Employee.current_status).where(Employee.id == employee_id)
                )
                if current == STATUS_WORKING:
                    raise NotOnBreak()
                raise InvalidStateTransition(f"Cannot end a break while status is {current}")

            active = await self.db.execute(
                select(BreakLog)
                .where(
                    BreakLog.employee_id == employee_id,
                    BreakLog.status == LOG_ACTIVE,
                    BreakLog.type != TYPE_LUNCH,
                )
                .order_by(BreakLog.start_time.desc())
                .limit(1)
            )
            log = active.scalar_one_or_none()

            duration = 0
            if log is None:
                # Status trotzdem zurücksetzen, damit niemand in ON_BREAK hängen bleibt.
                logger.warning("Employee %s was on break without an active log", employee_id)
            else:
                duration = elapsed_minutes(log.start_time, clock.instant)
                log.status = LOG_COMPLETED
                log.end_time = clock.instant
                log.duration = duration

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Employee %s ended a break after %d min", employee_id, duration)
        return BreakEndResult(status=STATUS_WORKING, duration=duration)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _get_employee(self, employee_id: uuid.UUID) -> Employee:
        result = await self.db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .execution_options(populate_existing=True)
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise EmployeeNotFound(f"Employee {employee_id} not found")
        return employee

    async def _usage(self, employee_id: uuid.UUID, clock: OfficeNow) -> int:
        return await break_minutes_for_day(self.db, employee_id, clock.date, clock.instant)


async def break_minutes_for_day(
    db: AsyncSession, employee_id: uuid.UUID, day: date, now: datetime
) -> int:
    """Closed BREAK entries count their duration, an open one its elapsed minutes."""
    result = await db.execute(
        select(BreakLog).where(
            BreakLog.employee_id == employee_id,
            BreakLog.date == day,
            BreakLog.type == TYPE_BREAK,
        )
    )
    total = 0
    for log in result.scalars().all():
        if log.duration is not None:
            total += log.duration
        elif log.status == LOG_ACTIVE:
            total += elapsed_minutes(log.start_time, now)
    return total
