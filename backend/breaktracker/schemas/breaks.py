from pydantic import BaseModel


class BreakStartOut(BaseModel):
    message: str = "Break started"
    status: str
    warning: str | None = None   # soft daily limit reached, break still started


class BreakEndOut(BaseModel):
    message: str = "Break ended"
    status: str
    duration: int                # minutes


class BreakStatusOut(BaseModel):
    status: str
    total_break_used: int        # minutes today
