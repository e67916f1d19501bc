from fastapi import APIRouter

from breaktracker.api.deps import DB, CurrentEmployee, Events
from breaktracker.schemas.breaks import BreakStartOut, BreakEndOut, BreakStatusOut
from breaktracker.services.break_service import BreakService

router = APIRouter(prefix="/breaks", tags=["breaks"])


@router.post("/start", response_model=BreakStartOut)
async def start_break(current_employee: CurrentEmployee, db: DB, events: Events):
    """Start a tea/technical break. Lunch is started by the scheduler only."""
    result = await BreakService(db, events).start_break(current_employee.id)
    return BreakStartOut(status=result.status, warning=result.warning)


@router.post("/end", response_model=BreakEndOut)
async def end_break(current_employee: CurrentEmployee, db: DB, events: Events):
    result = await BreakService(db, events).end_break(current_employee.id)
    return BreakEndOut(status=result.status, duration=result.duration)


@router.get("/status", response_model=BreakStatusOut)
async def get_my_status(current_employee: CurrentEmployee, db: DB):
    """Current status and today's break minutes."""
    result = await BreakService(db).get_status(current_employee.id)
    return BreakStatusOut(status=result.status, total_break_used=result.total_break_used)
