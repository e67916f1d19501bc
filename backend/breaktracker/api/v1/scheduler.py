from fastapi import APIRouter, HTTPException

from breaktracker.api.deps import AdminEmployee, Scheduler
from breaktracker.schemas.scheduler import TriggerOut, SweepResultOut

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.get("/triggers", response_model=list[TriggerOut])
async def list_triggers(current_user: AdminEmployee, scheduler: Scheduler):
    if scheduler is None:
        return []
    return scheduler.list_triggers()


@router.post("/run/{job_name}", response_model=SweepResultOut)
async def run_job(job_name: str, current_user: AdminEmployee, scheduler: Scheduler):
    """Run a daily job now, e.g. after a missed firing."""
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler disabled on this instance")
    result = await scheduler.run_now(job_name)
    return SweepResultOut(job=result.job, affected=result.affected, forced_closed=result.forced_closed)
