"""
Tägliche Anwesenheits-Jobs.

Drei Trigger werden aus der Office-Policy abgeleitet:

    lunch-start  um BREAK_WINDOW.START   alle aktiven Mitarbeiter → LUNCH
    lunch-end    um BREAK_WINDOW.END     LUNCH → WORKING
    auto-absent  um AUTO_ABSENT_TIME     fehlende Anwesenheit → absent

Jeder Sweep läuft in genau einer Transaktion. Ein fehlgeschlagener oder
abgelaufener Lauf wird geloggt und erst am nächsten Tag wiederholt; der
Scheduler selbst läuft weiter.

Lunch-Start schließt jeden offenen Log-Eintrag systemweit (FORCED_END), setzt
aber nur aktive Mitarbeiter mit Rolle EMPLOYEE auf LUNCH. Admins und
inaktive Mitarbeiter, die gerade in einer Pause sind, bleiben ON_BREAK ohne
offenen Eintrag; ihr späteres end_break setzt sie mit Dauer 0 auf WORKING.

Nur ein Prozess darf den Scheduler ausführen (sonst SCHEDULER_ENABLED=false).
Es gibt keinen prozessübergreifenden Lock: der Auto-Absent-Insert ist
konfliktsicher, die Lunch-Sweeps würden auf zwei Instanzen doppelt laufen.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from breaktracker.core.config import settings
from breaktracker.core.database import AsyncSessionLocal, dialect_insert, with_store_timeout
from breaktracker.core.exceptions import RecordNotFound
from breaktracker.models.attendance import AttendanceRecord, ATTENDANCE_ABSENT, SYSTEM_ACTOR
from breaktracker.models.break_log import (
    BreakLog,
    LOG_ACTIVE,
    LOG_COMPLETED,
    LOG_FORCED_END,
    TYPE_LUNCH,
)
from breaktracker.models.employee import Employee, ROLE_EMPLOYEE, STATUS_LUNCH, STATUS_WORKING
from breaktracker.services.audit_service import AuditService
from breaktracker.services.events import EVENT_GLOBAL_STATUS_UPDATE, EventSink, NullEventSink
from breaktracker.services.policy import PolicyConfig, PolicyStore
from breaktracker.utils.office_time import (
    DailyTrigger,
    OfficeNow,
    elapsed_minutes,
    now_in_policy_timezone,
    time_to_daily_trigger,
)

logger = logging.getLogger(__name__)

JOB_LUNCH_START = "lunch-start"
JOB_LUNCH_END   = "lunch-end"
JOB_AUTO_ABSENT = "auto-absent"

JOB_NAMES = (JOB_LUNCH_START, JOB_LUNCH_END, JOB_AUTO_ABSENT)

AUTO_ABSENT_REMARK = "Auto-marked absent by scheduler"


# ── Tägliche Trigger ──────────────────────────────────────────────────────────

@dataclass
class TriggerHandle:
    name: str
    trigger: DailyTrigger
    job: Job = field(repr=False)

    def cancel(self) -> None:
        """Entfernt den wartenden Trigger. Ein bereits laufender Lauf wird nicht abgebrochen."""
        try:
            self.job.remove()
        except JobLookupError:
            pass


class DailyTriggerScheduler:
    """register_daily(name, trigger, handler) -> TriggerHandle, on APScheduler."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._scheduler = scheduler or AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": settings.JOB_MISFIRE_GRACE_SECONDS,
            }
        )

    def register_daily(
        self,
        name: str,
        trigger: DailyTrigger,
        handler: Callable[[], Awaitable[None]],
    ) -> TriggerHandle:
        job = self._scheduler.add_job(
            handler,
            CronTrigger(hour=trigger.hour, minute=trigger.minute, timezone=trigger.timezone),
            id=name,
            name=name,
            replace_existing=True,
        )
        return TriggerHandle(name=name, trigger=trigger, job=job)

    def jobs(self) -> list[Job]:
        return self._scheduler.get_jobs()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)


# ── Attendance scheduler ──────────────────────────────────────────────────────

@dataclass
class SweepResult:
    job: str
    affected: int = 0
    forced_closed: int = 0


class AttendanceScheduler:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        events: EventSink | None = None,
        triggers: DailyTriggerScheduler | None = None,
        *,
        job_timeout: float | None = None,
        store_timeout: float | None = None,
    ):
        self._session_factory = session_factory or AsyncSessionLocal
        self.events = events or NullEventSink()
        self.triggers = triggers or DailyTriggerScheduler()
        self.job_timeout = job_timeout if job_timeout is not None else settings.JOB_TIMEOUT_SECONDS
        self.store_timeout = store_timeout
        self._handles: dict[str, TriggerHandle] = {}
        self._reschedule_lock = asyncio.Lock()
        self._jobs: dict[str, Callable[[], Awaitable[SweepResult]]] = {
            JOB_LUNCH_START: self.run_lunch_start,
            JOB_LUNCH_END: self.run_lunch_end,
            JOB_AUTO_ABSENT: self.run_auto_absent,
        }

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        self.triggers.start()

    def shutdown(self) -> None:
        self.triggers.shutdown()

    @staticmethod
    def derive_triggers(policy: PolicyConfig) -> dict[str, DailyTrigger]:
        return {
            JOB_LUNCH_START: time_to_daily_trigger(policy.break_window.start),
            JOB_LUNCH_END: time_to_daily_trigger(policy.break_window.end),
            JOB_AUTO_ABSENT: time_to_daily_trigger(policy.auto_absent_time),
        }

    async def reschedule(self) -> dict[str, DailyTrigger]:
        """
        Ersetzt alle Trigger durch neue aus der zuletzt gespeicherten Policy.

        Die Policy wird geladen und geprüft, bevor irgendetwas entfernt wird:
        eine ungültige Policy wirft und der bisherige Zeitplan bleibt aktiv.
        Nach der Rückkehr sind die alten Trigger entfernt; ein bereits
        laufender Job läuft zu Ende.
        """
        async with self._session_factory() as db:
            policy = await PolicyStore(db).get_policy(timeout=self.store_timeout)
        triggers = self.derive_triggers(policy)

        async with self._reschedule_lock:
            previous = {name: handle.trigger for name, handle in self._handles.items()}
            self._cancel_all()
            try:
                self._register(triggers)
            except Exception:
                logger.exception("Registering new triggers failed, restoring previous schedule")
                self._cancel_all()
                self._register(previous)
                raise
        return triggers

    def list_triggers(self) -> list[dict]:
        out = []
        for name, handle in self._handles.items():
            next_run = getattr(handle.job, "next_run_time", None)
            out.append({
                "name": name,
                "cron": handle.trigger.cron_expression,
                "timezone": handle.trigger.timezone,
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return out

    def _register(self, triggers: dict[str, DailyTrigger]) -> None:
        for name, trigger in triggers.items():
            self._handles[name] = self.triggers.register_daily(
                name, trigger, functools.partial(self._fire, name)
            )
            logger.info("Registered %s: %s (%s)", name, trigger.cron_expression, trigger.timezone)

    def _cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    # ── Firing ────────────────────────────────────────────────────────────────

    async def _fire(self, name: str) -> None:
        logger.info("Running %s job", name)
        try:
            result = await asyncio.wait_for(self._jobs[name](), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            logger.error("%s job timed out after %ss, skipped until next firing", name, self.job_timeout)
        except Exception:
            logger.exception("%s job failed", name)
        else:
            logger.info("%s job done: %s", name, result)

    async def run_now(self, name: str) -> SweepResult:
        """Führt einen Job sofort aus (manueller Lauf); Fehler gehen an den Aufrufer."""
        job = self._jobs.get(name)
        if job is None:
            raise RecordNotFound(f"Unknown job: {name}")
        logger.info("Manual run of %s job", name)
        return await asyncio.wait_for(job(), timeout=self.job_timeout)

    # ── Jobs ──────────────────────────────────────────────────────────────────

    async def run_lunch_start(self, now: datetime | None = None) -> SweepResult:
        clock = now_in_policy_timezone(now)
        async with self._session_factory() as db:
            result = await with_store_timeout(self._lunch_start(db, clock), self.store_timeout)
        await self.events.publish(
            EVENT_GLOBAL_STATUS_UPDATE, {"status": STATUS_LUNCH, "message": "Lunch Break Started"}
        )
        return result

    async def run_lunch_end(self, now: datetime | None = None) -> SweepResult:
        clock = now_in_policy_timezone(now)
        async with self._session_factory() as db:
            result = await with_store_timeout(self._lunch_end(db, clock), self.store_timeout)
        await self.events.publish(
            EVENT_GLOBAL_STATUS_UPDATE, {"status": STATUS_WORKING, "message": "Lunch Break Ended"}
        )
        return result

    async def run_auto_absent(self, now: datetime | None = None) -> SweepResult:
        clock = now_in_policy_timezone(now)
        async with self._session_factory() as db:
            return await with_store_timeout(self._auto_absent(db, clock), self.store_timeout)

    async def _lunch_start(self, db: AsyncSession, clock: OfficeNow) -> SweepResult:
        try:
            # Zuerst die Mitarbeiter-Zeilen beanspruchen: ein parallel gestartetes
            # start_break wartet auf unseren Commit und scheitert dann an WORKING.
            await db.execute(
                update(Employee)
                .where(Employee.role == ROLE_EMPLOYEE, Employee.is_active.is_(True))
                .values(current_status=STATUS_LUNCH)
            )
            employee_ids = (await db.execute(
                select(Employee.id).where(
                    Employee.role == ROLE_EMPLOYEE, Employee.is_active.is_(True)
                )
            )).scalars().all()

            active_logs = (await db.execute(
                select(BreakLog).where(BreakLog.status == LOG_ACTIVE)
            )).scalars().all()
            for log in active_logs:
                log.status = LOG_FORCED_END
                log.end_time = clock.instant
                log.duration = elapsed_minutes(log.start_time, clock.instant)
            # alte Einträge schließen, bevor die neuen ACTIVE-Zeilen den Unique-Index treffen
            await db.flush()

            db.add_all([
                BreakLog(
                    employee_id=employee_id,
                    type=TYPE_LUNCH,
                    status=LOG_ACTIVE,
                    date=clock.date,
                    start_time=clock.instant,
                )
                for employee_id in employee_ids
            ])

            if active_logs:
                AuditService(db).record(
                    entity_type="break_log",
                    entity_id=None,
                    action="lunch_forced_end",
                    old_value={"status": LOG_ACTIVE},
                    new_value={
                        "status": LOG_FORCED_END,
                        "break_log_ids": [str(log.id) for log in active_logs],
                    },
                    actor=SYSTEM_ACTOR,
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return SweepResult(
            job=JOB_LUNCH_START, affected=len(employee_ids), forced_closed=len(active_logs)
        )

    async def _lunch_end(self, db: AsyncSession, clock: OfficeNow) -> SweepResult:
        try:
            released = await db.execute(
                update(Employee)
                .where(Employee.role == ROLE_EMPLOYEE, Employee.current_status == STATUS_LUNCH)
                .values(current_status=STATUS_WORKING)
            )
            affected = released.rowcount
            lunch_logs = (await db.execute(
                select(BreakLog).where(BreakLog.type == TYPE_LUNCH, BreakLog.status == LOG_ACTIVE)
            )).scalars().all()
            for log in lunch_logs:
                log.status = LOG_COMPLETED
                log.end_time = clock.instant
                log.duration = elapsed_minutes(log.start_time, clock.instant)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return SweepResult(job=JOB_LUNCH_END, affected=affected)

    async def _auto_absent(self, db: AsyncSession, clock: OfficeNow) -> SweepResult:
        try:
            employee_ids = (await db.execute(
                select(Employee.id).where(
                    Employee.role == ROLE_EMPLOYEE, Employee.is_active.is_(True)
                )
            )).scalars().all()
            marked = set((await db.execute(
                select(AttendanceRecord.employee_id).where(AttendanceRecord.date == clock.date)
            )).scalars().all())

            missing = [employee_id for employee_id in employee_ids if employee_id not in marked]
            if not missing:
                return SweepResult(job=JOB_AUTO_ABSENT)

            insert = dialect_insert(db)
            # DO NOTHING behält Einträge, die seit dem Lesen oben entstanden sind;
            # auditiert werden nur die tatsächlich eingefügten IDs
            stmt = (
                insert(AttendanceRecord.__table__)
                .values([
                    {
                        "employee_id": employee_id,
                        "date": clock.date,
                        "status": ATTENDANCE_ABSENT,
                        "remarks": AUTO_ABSENT_REMARK,
                        "updated_by": SYSTEM_ACTOR,
                        "updated_at": clock.instant,
                    }
                    for employee_id in missing
                ])
                .on_conflict_do_nothing(index_elements=["employee_id", "date"])
                .returning(AttendanceRecord.__table__.c.employee_id)
            )
            inserted = list((await db.execute(stmt)).scalars().all())
            if not inserted:
                await db.commit()
                return SweepResult(job=JOB_AUTO_ABSENT)

            AuditService(db).record(
                entity_type="attendance",
                entity_id=None,
                action="auto_absent",
                old_value=None,
                new_value={
                    "date": clock.date.isoformat(),
                    "employee_ids": [str(employee_id) for employee_id in inserted],
                },
                actor=SYSTEM_ACTOR,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return SweepResult(job=JOB_AUTO_ABSENT, affected=len(inserted))
