from pydantic import BaseModel


class BreakWindowIn(BaseModel):
    START: str | None = None
    END: str | None = None


class PolicyUpdate(BaseModel):
    """Partial update; omitted keys fall back to the defaults."""
    START_TIME: str | None = None
    LATE_GRACE_MINUTES: int | None = None
    LATE_THRESHOLD: str | None = None
    HALF_DAY_THRESHOLD: str | None = None
    AUTO_ABSENT_TIME: str | None = None
    WORK_END_TIME: str | None = None
    BREAK_WINDOW: BreakWindowIn | None = None


class BreakWindowOut(BaseModel):
    START: str
    END: str


class PolicyOut(BaseModel):
    START_TIME: str
    LATE_GRACE_MINUTES: int
    LATE_THRESHOLD: str
    HALF_DAY_THRESHOLD: str
    AUTO_ABSENT_TIME: str
    WORK_END_TIME: str
    BREAK_WINDOW: BreakWindowOut
