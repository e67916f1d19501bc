"""
Tests for the daily attendance jobs (lunch start/end, auto-absent) and for
rescheduling the triggers when the office policy changes.
"""
import asyncio
import logging

import pytest
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from breaktracker.core.exceptions import InvalidPolicy, RecordNotFound
from breaktracker.models.attendance import (
    AttendanceRecord,
    ATTENDANCE_ABSENT,
    ATTENDANCE_LATE,
    SYSTEM_ACTOR,
)
from breaktracker.models.audit import AuditLog
from breaktracker.models.break_log import (
    BreakLog,
    LOG_ACTIVE,
    LOG_COMPLETED,
    LOG_FORCED_END,
    TYPE_BREAK,
    TYPE_LUNCH,
)
from breaktracker.models.employee import (
    Employee,
    ROLE_ADMIN,
    STATUS_LUNCH,
    STATUS_ON_BREAK,
    STATUS_WORKING,
)
from breaktracker.models.setting import Setting
from breaktracker.services.attendance_service import AttendanceService
from breaktracker.services.break_service import BreakService
from breaktracker.services.events import EVENT_GLOBAL_STATUS_UPDATE
from breaktracker.services.policy import OFFICE_CONFIG_KEY, PolicyStore
from breaktracker.services.scheduler import (
    AUTO_ABSENT_REMARK,
    JOB_AUTO_ABSENT,
    JOB_LUNCH_END,
    JOB_LUNCH_START,
    AttendanceScheduler,
)
from tests.conftest import TEST_DAY, create_employee, office_time


async def load(session_factory, model, **filters):
    async with session_factory() as s:
        result = await s.execute(select(model).filter_by(**filters))
        return list(result.scalars().all())


async def status_of(session_factory, employee_id) -> str:
    async with session_factory() as s:
        return (await s.get(Employee, employee_id)).current_status


# ── Lunch start ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lunch_start_force_ends_open_break(session_factory, scheduler, employee, events):
    emp_id = employee.id
    async with session_factory() as s:
        await BreakService(s).start_break(emp_id, now=office_time(14, 25))

    result = await scheduler.run_lunch_start(now=office_time(14, 30))
    assert result.job == JOB_LUNCH_START
    assert result.affected == 1
    assert result.forced_closed == 1

    assert await status_of(session_factory, emp_id) == STATUS_LUNCH

    [forced] = await load(session_factory, BreakLog, employee_id=emp_id, type=TYPE_BREAK)
    assert forced.status == LOG_FORCED_END
    assert forced.duration == 5

    [lunch] = await load(session_factory, BreakLog, employee_id=emp_id, type=TYPE_LUNCH)
    assert lunch.status == LOG_ACTIVE
    assert lunch.date == TEST_DAY

    [audit] = await load(session_factory, AuditLog, action="lunch_forced_end")
    assert audit.performed_by == SYSTEM_ACTOR
    assert audit.new_values["break_log_ids"] == [str(forced.id)]

    assert events.events[-1] == (
        EVENT_GLOBAL_STATUS_UPDATE, {"status": STATUS_LUNCH, "message": "Lunch Break Started"}
    )


@pytest.mark.asyncio
async def test_lunch_start_moves_every_active_employee(db, session_factory, scheduler):
    working = await create_employee(db)
    on_break = await create_employee(db, status=STATUS_ON_BREAK)  # no log: stale status
    inactive = await create_employee(db, is_active=False)
    admin = await create_employee(db, role=ROLE_ADMIN)

    result = await scheduler.run_lunch_start(now=office_time(14, 30))
    assert result.affected == 2
    assert result.forced_closed == 0

    assert await status_of(session_factory, working.id) == STATUS_LUNCH
    assert await status_of(session_factory, on_break.id) == STATUS_LUNCH
    assert await status_of(session_factory, inactive.id) == STATUS_WORKING
    assert await status_of(session_factory, admin.id) == STATUS_WORKING

    lunches = await load(session_factory, BreakLog, type=TYPE_LUNCH, status=LOG_ACTIVE)
    assert {log.employee_id for log in lunches} == {working.id, on_break.id}
    assert await load(session_factory, AuditLog, action="lunch_forced_end") == []


@pytest.mark.asyncio
async def test_break_start_after_lunch_start_is_rejected(session_factory, scheduler, employee):
    from breaktracker.core.exceptions import InvalidStateTransition

    emp_id = employee.id
    await scheduler.run_lunch_start(now=office_time(14, 30))

    async with session_factory() as s:
        with pytest.raises(InvalidStateTransition):
            await BreakService(s).start_break(emp_id, now=office_time(14, 31))

    assert len(await load(session_factory, BreakLog, employee_id=emp_id, status=LOG_ACTIVE)) == 1


@pytest.mark.asyncio
async def test_lunch_start_closes_breaks_outside_the_sweep(db, session_factory, scheduler):
    # admins and inactive employees lose their open entry but keep ON_BREAK
    inactive = await create_employee(db, status=STATUS_ON_BREAK, is_active=False)
    admin = await create_employee(db, role=ROLE_ADMIN, status=STATUS_ON_BREAK)
    for emp in (inactive, admin):
        db.add(BreakLog(
            employee_id=emp.id,
            type=TYPE_BREAK,
            status=LOG_ACTIVE,
            date=TEST_DAY,
            start_time=office_time(14, 20),
        ))
    await db.commit()

    result = await scheduler.run_lunch_start(now=office_time(14, 30))
    assert result.affected == 0
    assert result.forced_closed == 2

    for emp in (inactive, admin):
        assert await status_of(session_factory, emp.id) == STATUS_ON_BREAK
        [log] = await load(session_factory, BreakLog, employee_id=emp.id)
        assert log.status == LOG_FORCED_END
        assert log.duration == 10

        async with session_factory() as s:
            ended = await BreakService(s).end_break(emp.id, now=office_time(14, 45))
        assert ended.status == STATUS_WORKING
        assert ended.duration == 0
        assert await status_of(session_factory, emp.id) == STATUS_WORKING


# ── Lunch end ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_lunch_end_returns_everyone_to_work(session_factory, scheduler, employee, events):
    emp_id = employee.id
    await scheduler.run_lunch_start(now=office_time(14, 30))

    result = await scheduler.run_lunch_end(now=office_time(15, 30))
    assert result.job == JOB_LUNCH_END
    assert result.affected == 1

    assert await status_of(session_factory, emp_id) == STATUS_WORKING
    [lunch] = await load(session_factory, BreakLog, employee_id=emp_id, type=TYPE_LUNCH)
    assert lunch.status == LOG_COMPLETED
    assert lunch.duration == 60

    assert events.events[-1] == (
        EVENT_GLOBAL_STATUS_UPDATE, {"status": STATUS_WORKING, "message": "Lunch Break Ended"}
    )


@pytest.mark.asyncio
async def test_lunch_end_leaves_other_statuses(db, session_factory, scheduler):
    on_break = await create_employee(db, status=STATUS_ON_BREAK)

    result = await scheduler.run_lunch_end(now=office_time(15, 30))
    assert result.affected == 0
    assert await status_of(session_factory, on_break.id) == STATUS_ON_BREAK


# ── Auto-absent ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_auto_absent_marks_only_missing(db, session_factory, scheduler):
    present = await create_employee(db)
    missing = await create_employee(db)
    await create_employee(db, role=ROLE_ADMIN)
    await create_employee(db, is_active=False)

    async with session_factory() as s:
        await AttendanceService(s).check_in(present.id, now=office_time(10, 20))

    result = await scheduler.run_auto_absent(now=office_time(11, 0))
    assert result.job == JOB_AUTO_ABSENT
    assert result.affected == 1

    records = {r.employee_id: r for r in await load(session_factory, AttendanceRecord, date=TEST_DAY)}
    assert set(records) == {present.id, missing.id}
    assert records[present.id].status == ATTENDANCE_LATE
    assert records[missing.id].status == ATTENDANCE_ABSENT
    assert records[missing.id].remarks == AUTO_ABSENT_REMARK
    assert records[missing.id].updated_by == SYSTEM_ACTOR

    [audit] = await load(session_factory, AuditLog, action="auto_absent")
    assert audit.new_values["employee_ids"] == [str(missing.id)]


@pytest.mark.asyncio
async def test_auto_absent_twice_is_idempotent(db, session_factory, scheduler):
    await create_employee(db)
    await create_employee(db)

    first = await scheduler.run_auto_absent(now=office_time(11, 0))
    second = await scheduler.run_auto_absent(now=office_time(11, 0))

    assert first.affected == 2
    assert second.affected == 0
    assert len(await load(session_factory, AttendanceRecord, date=TEST_DAY)) == 2
    assert len(await load(session_factory, AuditLog, action="auto_absent")) == 1


def check_in_after_read(employee_id):
    """Session class that lands a check-in right after the sweep read the marked ids."""

    class CheckInAfterRead(AsyncSession):
        executed = 0

        async def execute(self, statement, *args, **kwargs):
            result = await super().execute(statement, *args, **kwargs)
            self.executed += 1
            if self.executed == 2:
                await super().execute(
                    insert(AttendanceRecord.__table__).values(
                        employee_id=employee_id,
                        date=TEST_DAY,
                        status=ATTENDANCE_LATE,
                        check_in_time=office_time(10, 59),
                        updated_by="EMP-LATE",
                    )
                )
            return result

    return CheckInAfterRead


@pytest.mark.asyncio
async def test_auto_absent_audits_only_inserted_rows(db, engine, session_factory):
    latecomer = await create_employee(db)
    missing = await create_employee(db)

    racing = async_sessionmaker(
        engine, class_=check_in_after_read(latecomer.id), expire_on_commit=False
    )
    result = await AttendanceScheduler(session_factory=racing).run_auto_absent(
        now=office_time(11, 0)
    )
    assert result.affected == 1

    records = {r.employee_id: r for r in await load(session_factory, AttendanceRecord, date=TEST_DAY)}
    assert records[latecomer.id].status == ATTENDANCE_LATE
    assert records[latecomer.id].updated_by == "EMP-LATE"
    assert records[missing.id].status == ATTENDANCE_ABSENT

    [audit] = await load(session_factory, AuditLog, action="auto_absent")
    assert audit.new_values["employee_ids"] == [str(missing.id)]


@pytest.mark.asyncio
async def test_check_in_after_auto_absent_keeps_absent(session_factory, scheduler, employee):
    emp_id = employee.id
    await scheduler.run_auto_absent(now=office_time(11, 0))

    async with session_factory() as s:
        result = await AttendanceService(s).check_in(emp_id, now=office_time(11, 5))
    assert result.created is False
    assert result.record.status == ATTENDANCE_ABSENT


# ── Triggers and reschedule ───────────────────────────────────────────────────

def crons(scheduler: AttendanceScheduler) -> dict[str, str]:
    return {t["name"]: t["cron"] for t in scheduler.list_triggers()}


@pytest.mark.asyncio
async def test_reschedule_registers_three_jobs(scheduler):
    await scheduler.reschedule()

    assert crons(scheduler) == {
        JOB_LUNCH_START: "30 14 * * *",
        JOB_LUNCH_END: "30 15 * * *",
        JOB_AUTO_ABSENT: "0 11 * * *",
    }
    assert {t["timezone"] for t in scheduler.list_triggers()} == {"Asia/Kolkata"}
    assert len(scheduler.triggers.jobs()) == 3


@pytest.mark.asyncio
async def test_reschedule_twice_does_not_duplicate(scheduler):
    await scheduler.reschedule()
    await scheduler.reschedule()
    assert len(scheduler.triggers.jobs()) == 3


@pytest.mark.asyncio
async def test_concurrent_reschedules_leave_one_set(scheduler):
    await scheduler.reschedule()
    await asyncio.gather(scheduler.reschedule(), scheduler.reschedule(), scheduler.reschedule())
    assert len(scheduler.triggers.jobs()) == 3


@pytest.mark.asyncio
async def test_reschedule_follows_saved_policy(session_factory, scheduler):
    await scheduler.reschedule()
    async with session_factory() as s:
        await PolicyStore(s).save_policy({
            "AUTO_ABSENT_TIME": "11:30 AM",
            "BREAK_WINDOW": {"START": "1:45 PM", "END": "2:45 PM"},
        })

    await scheduler.reschedule()
    assert crons(scheduler) == {
        JOB_LUNCH_START: "45 13 * * *",
        JOB_LUNCH_END: "45 14 * * *",
        JOB_AUTO_ABSENT: "30 11 * * *",
    }
    assert len(scheduler.triggers.jobs()) == 3


@pytest.mark.asyncio
async def test_invalid_stored_policy_keeps_current_schedule(db, scheduler):
    await scheduler.reschedule()
    before = crons(scheduler)

    row = (await db.execute(select(Setting).where(Setting.key == OFFICE_CONFIG_KEY))).scalar_one()
    row.value = {**row.value, "AUTO_ABSENT_TIME": "25:00"}
    await db.commit()

    with pytest.raises(InvalidPolicy):
        await scheduler.reschedule()
    assert crons(scheduler) == before
    assert len(scheduler.triggers.jobs()) == 3


@pytest.mark.asyncio
async def test_failed_registration_restores_previous_schedule(session_factory, scheduler, monkeypatch):
    await scheduler.reschedule()
    before = crons(scheduler)
    async with session_factory() as s:
        await PolicyStore(s).save_policy({"BREAK_WINDOW": {"START": "1:00 PM", "END": "2:00 PM"}})

    register = scheduler.triggers.register_daily
    calls = []

    def second_call_fails(name, trigger, handler):
        calls.append(name)
        if len(calls) == 2:
            raise RuntimeError("job store rejected the trigger")
        return register(name, trigger, handler)

    monkeypatch.setattr(scheduler.triggers, "register_daily", second_call_fails)

    with pytest.raises(RuntimeError, match="rejected"):
        await scheduler.reschedule()
    assert crons(scheduler) == before
    assert len(scheduler.triggers.jobs()) == 3


@pytest.mark.asyncio
async def test_reschedule_lets_running_job_finish(scheduler):
    await scheduler.reschedule()
    started = asyncio.Event()
    release = asyncio.Event()
    finished = []

    async def long_sweep():
        started.set()
        await release.wait()
        finished.append(JOB_LUNCH_END)

    scheduler._jobs[JOB_LUNCH_END] = long_sweep
    firing = asyncio.create_task(scheduler._fire(JOB_LUNCH_END))
    await started.wait()

    await scheduler.reschedule()
    assert not firing.done()

    release.set()
    await firing
    assert finished == [JOB_LUNCH_END]
    assert len(scheduler.triggers.jobs()) == 3


@pytest.mark.asyncio
async def test_running_scheduler_has_next_run_times(scheduler):
    scheduler.start()
    await scheduler.reschedule()
    await scheduler.reschedule()

    assert scheduler.triggers.running
    assert len(scheduler.triggers.jobs()) == 3
    assert all(t["next_run_time"] for t in scheduler.list_triggers())


# ── Firing ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_failed_job_is_logged_not_raised(scheduler, caplog):
    async def broken():
        raise RuntimeError("store exploded")

    scheduler._jobs[JOB_LUNCH_END] = broken
    with caplog.at_level(logging.ERROR):
        await scheduler._fire(JOB_LUNCH_END)
    assert "lunch-end job failed" in caplog.text


@pytest.mark.asyncio
async def test_slow_job_times_out(session_factory):
    sched = AttendanceScheduler(session_factory=session_factory, job_timeout=0.01)

    async def slow():
        await asyncio.sleep(1)

    sched._jobs[JOB_AUTO_ABSENT] = slow
    await sched._fire(JOB_AUTO_ABSENT)  # returns instead of hanging or raising


@pytest.mark.asyncio
async def test_fired_job_runs_the_sweep(db, session_factory, scheduler):
    emp = await create_employee(db)
    await scheduler._fire(JOB_LUNCH_START)
    assert await status_of(session_factory, emp.id) == STATUS_LUNCH


@pytest.mark.asyncio
async def test_run_now_unknown_job(scheduler):
    with pytest.raises(RecordNotFound):
        await scheduler.run_now("coffee-break")


@pytest.mark.asyncio
async def test_run_now_propagates_errors(scheduler):
    async def broken():
        raise RuntimeError("boom")

    scheduler._jobs[JOB_AUTO_ABSENT] = broken
    with pytest.raises(RuntimeError):
        await scheduler.run_now(JOB_AUTO_ABSENT)
