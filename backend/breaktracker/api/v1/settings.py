"""
Office policy settings.

Saving a policy reschedules the daily jobs right away. An invalid policy is
rejected with 422 before anything is stored, so the running schedule stays.
"""
from fastapi import APIRouter

from breaktracker.api.deps import DB, AdminEmployee, CurrentEmployee, Scheduler
from breaktracker.schemas.policy import PolicyUpdate, PolicyOut
from breaktracker.services.policy import PolicyStore

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/policy", response_model=PolicyOut)
async def get_policy(current_employee: CurrentEmployee, db: DB):
    policy = await PolicyStore(db).get_policy()
    return policy.to_dict()


@router.put("/policy", response_model=PolicyOut)
async def update_policy(payload: PolicyUpdate, current_user: AdminEmployee, db: DB, scheduler: Scheduler):
    policy = await PolicyStore(db).save_policy(payload.model_dump(exclude_none=True))
    if scheduler is not None:
        await scheduler.reschedule()
    return policy.to_dict()
