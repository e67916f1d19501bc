from celery import Celery

from breaktracker.core.config import settings

celery_app = Celery(
    "breaktracker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["breaktracker.tasks.attendance_tasks"],
)

# Kein beat_schedule: die täglichen Trigger folgen der Office-Policy und
# werden zur Laufzeit vom AttendanceScheduler im API-Prozess neu geplant.
# Worker übernehmen nur manuelle Wiederholungen eines Jobs.
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.POLICY_TIMEZONE,
    enable_utc=True,
)
