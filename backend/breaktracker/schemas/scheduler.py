from pydantic import BaseModel


class TriggerOut(BaseModel):
    name: str
    cron: str
    timezone: str
    next_run_time: str | None = None


class SweepResultOut(BaseModel):
    job: str
    affected: int
    forced_closed: int = 0
