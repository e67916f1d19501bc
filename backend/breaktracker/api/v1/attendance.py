from datetime import date

from fastapi import APIRouter, Query

from breaktracker.api.deps import DB, AdminEmployee, CurrentEmployee
from breaktracker.schemas.attendance import (
    AttendanceOut, CheckInOut, AttendanceDayOut, AttendanceListItem, AttendanceOverride,
)
from breaktracker.services.attendance_service import AttendanceService
from breaktracker.utils.office_time import now_in_policy_timezone

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.post("/check-in", response_model=CheckInOut)
async def check_in(current_employee: CurrentEmployee, db: DB):
    """Mark today's attendance. A second call returns the existing record."""
    result = await AttendanceService(db).check_in(current_employee.id)
    out = AttendanceOut.model_validate(result.record)
    return CheckInOut(**out.model_dump(), created=result.created)


@router.get("/me", response_model=AttendanceDayOut)
async def get_my_attendance(current_employee: CurrentEmployee, db: DB, day: date | None = Query(None, alias="date")):
    day = day or now_in_policy_timezone().date
    record = await AttendanceService(db).get_for_day(current_employee.id, day)
    if record is None:
        return AttendanceDayOut(employee_id=current_employee.id, date=day)
    return AttendanceDayOut(
        employee_id=record.employee_id,
        date=record.date,
        status=record.status,
        check_in_time=record.check_in_time,
        remarks=record.remarks,
    )


@router.get("/me/history", response_model=list[AttendanceOut])
async def get_my_history(current_employee: CurrentEmployee, db: DB, limit: int = 20):
    return await AttendanceService(db).history(current_employee.id, limit)


@router.get("", response_model=list[AttendanceListItem])
async def list_attendance(current_user: AdminEmployee, db: DB, day: date | None = Query(None, alias="date")):
    day = day or now_in_policy_timezone().date
    rows = await AttendanceService(db).list_for_day(day)
    return [
        AttendanceListItem(
            **AttendanceOut.model_validate(record).model_dump(),
            employee_name=employee.name,
            emp_code=employee.emp_code,
            team=employee.team,
        )
        for record, employee in rows
    ]


@router.patch("/{record_id}/override", response_model=AttendanceOut)
async def override_attendance(record_id: int, payload: AttendanceOverride, current_user: AdminEmployee, db: DB):
    """Admin correction; remarks are mandatory and the change is audited."""
    return await AttendanceService(db).override(
        record_id, payload.status, payload.remarks, actor=current_user.emp_code
    )
