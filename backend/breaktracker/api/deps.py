from typing import Annotated
import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from breaktracker.core.database import get_db
from breaktracker.core.security import decode_token
from breaktracker.models.employee import Employee, ROLE_ADMIN
from breaktracker.services.events import EventSink, NullEventSink
from breaktracker.services.scheduler import AttendanceScheduler

security = HTTPBearer()


async def get_current_employee(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Employee:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(credentials.credentials)
        if payload.get("type") != "access":
            raise credentials_exception
        employee_id = uuid.UUID(payload["sub"])
    except (ValueError, KeyError):
        raise credentials_exception

    result = await db.execute(select(Employee).where(Employee.id == employee_id))
    employee = result.scalar_one_or_none()

    if employee is None or not employee.is_active:
        raise credentials_exception

    return employee


async def get_current_admin(
    current_employee: Annotated[Employee, Depends(get_current_employee)],
) -> Employee:
    if current_employee.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return current_employee


def get_event_sink(request: Request) -> EventSink:
    return getattr(request.app.state, "events", None) or NullEventSink()


def get_scheduler(request: Request) -> AttendanceScheduler | None:
    return getattr(request.app.state, "scheduler", None)


CurrentEmployee = Annotated[Employee, Depends(get_current_employee)]
AdminEmployee = Annotated[Employee, Depends(get_current_admin)]
DB = Annotated[AsyncSession, Depends(get_db)]
Events = Annotated[EventSink, Depends(get_event_sink)]
Scheduler = Annotated[AttendanceScheduler | None, Depends(get_scheduler)]
