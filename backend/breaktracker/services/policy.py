"""
Office policy: the time thresholds that drive attendance and the daily jobs.

Stored as a single JSON record under settings["OFFICE_CONFIG"] using the
UPPER_CASE keys the admin UI sends. Partial updates are merged over the
defaults before validation, so a stored record is always complete.
"""
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from breaktracker.core.database import dialect_insert, with_store_timeout
from breaktracker.core.exceptions import InvalidPolicy
from breaktracker.utils.office_time import parse_time_to_minutes

OFFICE_CONFIG_KEY = "OFFICE_CONFIG"

DEFAULT_OFFICE_CONFIG: dict[str, Any] = {
    "START_TIME": "10:00 AM",
    "LATE_GRACE_MINUTES": 15,
    "LATE_THRESHOLD": "10:15 AM",
    "HALF_DAY_THRESHOLD": "1:00 PM",
    "AUTO_ABSENT_TIME": "11:00 AM",
    "WORK_END_TIME": "7:00 PM",
    "BREAK_WINDOW": {
        "START": "2:30 PM",
        "END": "3:30 PM",
    },
}


@dataclass(frozen=True)
class BreakWindow:
    start: str
    end: str


@dataclass(frozen=True)
class PolicyConfig:
    start_time: str
    late_grace_minutes: int
    late_threshold: str
    half_day_threshold: str
    auto_absent_time: str
    work_end_time: str
    break_window: BreakWindow

    @property
    def start_minutes(self) -> int:
        return parse_time_to_minutes(self.start_time)

    @property
    def late_threshold_minutes(self) -> int:
        return parse_time_to_minutes(self.late_threshold)

    @property
    def half_day_threshold_minutes(self) -> int:
        return parse_time_to_minutes(self.half_day_threshold)

    def to_dict(self) -> dict[str, Any]:
        return {
            "START_TIME": self.start_time,
            "LATE_GRACE_MINUTES": self.late_grace_minutes,
            "LATE_THRESHOLD": self.late_threshold,
            "HALF_DAY_THRESHOLD": self.half_day_threshold,
            "AUTO_ABSENT_TIME": self.auto_absent_time,
            "WORK_END_TIME": self.work_end_time,
            "BREAK_WINDOW": {
                "START": self.break_window.start,
                "END": self.break_window.end,
            },
        }


def default_policy() -> PolicyConfig:
    return normalize_policy({})


def merge_with_defaults(raw: dict[str, Any] | None) -> dict[str, Any]:
    raw = raw or {}
    window = raw.get("BREAK_WINDOW") or {}
    if not isinstance(window, dict):
        raise InvalidPolicy("BREAK_WINDOW must be an object with START and END")
    return {
        **DEFAULT_OFFICE_CONFIG,
        **raw,
        "BREAK_WINDOW": {**DEFAULT_OFFICE_CONFIG["BREAK_WINDOW"], **window},
    }


def normalize_policy(raw: dict[str, Any] | None) -> PolicyConfig:
    """Merges a partial override over the defaults and validates the result."""
    merged = merge_with_defaults(raw)

    grace = merged["LATE_GRACE_MINUTES"]
    if isinstance(grace, bool) or not isinstance(grace, int) or grace < 0:
        raise InvalidPolicy("LATE_GRACE_MINUTES must be a non-negative integer")

    policy = PolicyConfig(
        start_time=str(merged["START_TIME"]).strip(),
        late_grace_minutes=grace,
        late_threshold=str(merged["LATE_THRESHOLD"]).strip(),
        half_day_threshold=str(merged["HALF_DAY_THRESHOLD"]).strip(),
        auto_absent_time=str(merged["AUTO_ABSENT_TIME"]).strip(),
        work_end_time=str(merged["WORK_END_TIME"]).strip(),
        break_window=BreakWindow(
            start=str(merged["BREAK_WINDOW"]["START"]).strip(),
            end=str(merged["BREAK_WINDOW"]["END"]).strip(),
        ),
    )
    _validate(policy)
    return policy


def _validate(policy: PolicyConfig) -> None:
    # parse everything first so a bad string reports InvalidTimeFormat
    start = parse_time_to_minutes(policy.start_time)
    late = parse_time_to_minutes(policy.late_threshold)
    half_day = parse_time_to_minutes(policy.half_day_threshold)
    parse_time_to_minutes(policy.auto_absent_time)
    parse_time_to_minutes(policy.work_end_time)
    window_start = parse_time_to_minutes(policy.break_window.start)
    window_end = parse_time_to_minutes(policy.break_window.end)

    if not start <= late <= half_day:
        raise InvalidPolicy(
            "Thresholds must satisfy START_TIME <= LATE_THRESHOLD <= HALF_DAY_THRESHOLD"
        )
    if window_start >= window_end:
        raise InvalidPolicy("BREAK_WINDOW.START must be before BREAK_WINDOW.END")


# ── Persistence ──────────────────────────────────────────────────────────────

class PolicyStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_policy(self, timeout: float | None = None) -> PolicyConfig:
        """Latest stored policy; seeds the defaults when nothing is stored yet."""
        return await with_store_timeout(self._load(), timeout)

    async def save_policy(self, raw: dict[str, Any], timeout: float | None = None) -> PolicyConfig:
        """Validates before writing; an invalid policy leaves the stored one untouched."""
        policy = normalize_policy(raw)
        await with_store_timeout(self._write(policy), timeout)
        return policy

    async def _load(self) -> PolicyConfig:
        from breaktracker.models.setting import Setting

        result = await self.db.execute(select(Setting).where(Setting.key == OFFICE_CONFIG_KEY))
        row = result.scalar_one_or_none()
        if row is None:
            # first read seeds the defaults; a concurrent seed wins quietly
            insert = dialect_insert(self.db)
            await self.db.execute(
                insert(Setting.__table__)
                .values(key=OFFICE_CONFIG_KEY, value=default_policy().to_dict())
                .on_conflict_do_nothing(index_elements=["key"])
            )
            await self.db.commit()
            result = await self.db.execute(
                select(Setting)
                .where(Setting.key == OFFICE_CONFIG_KEY)
                .execution_options(populate_existing=True)
            )
            row = result.scalar_one()

        policy = normalize_policy(row.value)
        if row.value != policy.to_dict():
            row.value = policy.to_dict()
            await self.db.commit()
        return policy

    async def _write(self, policy: PolicyConfig) -> None:
        from breaktracker.models.setting import Setting

        result = await self.db.execute(select(Setting).where(Setting.key == OFFICE_CONFIG_KEY))
        row = result.scalar_one_or_none()
        if row is None:
            self.db.add(Setting(key=OFFICE_CONFIG_KEY, value=policy.to_dict()))
        else:
            row.value = policy.to_dict()
        await self.db.commit()
