"""
Shared pytest fixtures for the break tracker tests.

Uses SQLite in-memory with StaticPool so all sessions share one connection,
meaning data written in one session is visible to others (important for HTTP
client tests and for the scheduler, which opens its own sessions).
Concurrency tests use a file database instead, see ``file_engine``.
"""
import uuid
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, StaticPool

import breaktracker.models  # noqa – registers all SQLAlchemy models with Base.metadata
from breaktracker.core.database import Base, get_db
from breaktracker.core.security import create_access_token
from breaktracker.main import app
from breaktracker.models.employee import Employee, ROLE_ADMIN, ROLE_EMPLOYEE, STATUS_WORKING
from breaktracker.services.scheduler import AttendanceScheduler

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

OFFICE_TZ = ZoneInfo("Asia/Kolkata")
TEST_DAY = date(2026, 3, 2)


def office_time(hour: int, minute: int = 0, day: date = TEST_DAY) -> datetime:
    """Office wall-clock time as a UTC instant."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=OFFICE_TZ).astimezone(timezone.utc)


class RecordingEventSink:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def publish(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


# ── Shared engine (function-scoped: fresh DB per test) ───────────────────────

@pytest_asyncio.fixture
async def engine():
    """Creates a fresh in-memory SQLite engine per test with a shared connection pool."""
    eng = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,          # single shared connection → all sessions see same data
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield eng

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await eng.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed SQLite, one connection per session: writers really contend for the lock."""
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'breaktracker.db'}",
        connect_args={"check_same_thread": False, "timeout": 15},
        poolclass=NullPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield eng

    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    """Async DB session for direct data inspection inside tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest_asyncio.fixture
async def scheduler(session_factory, events) -> AttendanceScheduler:
    sched = AttendanceScheduler(session_factory=session_factory, events=events)
    yield sched
    sched.shutdown()


# ── HTTP client fixture ───────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_factory, events, scheduler) -> AsyncClient:
    """
    FastAPI test client with get_db overridden to use the test engine.
    Lifespan does not run under ASGITransport, so the event sink and the
    scheduler are put on app.state here.
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.events = events
    app.state.scheduler = scheduler

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    app.state.events = None
    app.state.scheduler = None


# ── Employee fixtures ─────────────────────────────────────────────────────────

async def create_employee(
    db,
    team: str | None = None,
    role: str = ROLE_EMPLOYEE,
    status: str = STATUS_WORKING,
    is_active: bool = True,
) -> Employee:
    emp = Employee(
        id=uuid.uuid4(),
        emp_code=f"EMP-{uuid.uuid4().hex[:6]}",
        name="Test Employee",
        role=role,
        team=team,
        current_status=status,
        is_active=is_active,
    )
    db.add(emp)
    await db.commit()
    await db.refresh(emp)
    return emp


@pytest_asyncio.fixture
async def employee(db) -> Employee:
    return await create_employee(db, team="SUPPORT")


@pytest_asyncio.fixture
async def admin(db) -> Employee:
    return await create_employee(db, role=ROLE_ADMIN)


@pytest.fixture
def employee_token(employee) -> str:
    return create_access_token(employee.id, employee.role)


@pytest.fixture
def admin_token(admin) -> str:
    return create_access_token(admin.id, admin.role)


# ── Helper ────────────────────────────────────────────────────────────────────

def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
