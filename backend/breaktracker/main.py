import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from breaktracker.core.config import settings
from breaktracker.core.database import create_tables
from breaktracker.core.exceptions import DomainError
from breaktracker.core.redis import close_redis
from breaktracker.api.v1.attendance import router as attendance_router
from breaktracker.api.v1.breaks import router as breaks_router
from breaktracker.api.v1.scheduler import router as scheduler_router
from breaktracker.api.v1.settings import router as settings_router
from breaktracker.services.events import default_event_sink
from breaktracker.services.scheduler import AttendanceScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    # Tabellen beim Start anlegen (SQLite / lokale Entwicklung)
    await create_tables()

    app.state.events = default_event_sink()
    app.state.scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = AttendanceScheduler(events=app.state.events)
        try:
            await scheduler.reschedule()
        except Exception:
            logger.exception("Initial scheduling failed; fix the office policy and save it again")
        scheduler.start()
        app.state.scheduler = scheduler

    yield

    if app.state.scheduler is not None:
        app.state.scheduler.shutdown()
    await close_redis()


app = FastAPI(
    title="Break Tracker API",
    description="Attendance and break state engine",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


API_PREFIX = "/api/v1"

app.include_router(breaks_router, prefix=API_PREFIX)
app.include_router(attendance_router, prefix=API_PREFIX)
app.include_router(settings_router, prefix=API_PREFIX)
app.include_router(scheduler_router, prefix=API_PREFIX)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "Break Tracker API", "version": "1.0.0"}
