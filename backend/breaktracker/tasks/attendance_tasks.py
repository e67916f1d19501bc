"""
Celery-Tasks zum manuellen Nachholen eines täglichen Jobs, z.B. nach einem
verpassten Lauf.
"""
from breaktracker.tasks.celery_app import celery_app


@celery_app.task(name="breaktracker.tasks.attendance_tasks.run_lunch_start")
def run_lunch_start():
    """Schickt alle aktiven Mitarbeiter jetzt in die Mittagspause."""
    import asyncio
    return asyncio.run(_run_job("lunch-start"))


@celery_app.task(name="breaktracker.tasks.attendance_tasks.run_lunch_end")
def run_lunch_end():
    """Beendet die Mittagspause für alle, die gerade in LUNCH sind."""
    import asyncio
    return asyncio.run(_run_job("lunch-end"))


@celery_app.task(name="breaktracker.tasks.attendance_tasks.run_auto_absent")
def run_auto_absent():
    """Markiert Mitarbeiter ohne heutigen Anwesenheitseintrag als absent."""
    import asyncio
    return asyncio.run(_run_job("auto-absent"))


async def _run_job(name: str) -> dict:
    from dataclasses import asdict
    from breaktracker.core.database import engine
    from breaktracker.core.redis import close_redis
    from breaktracker.services.events import default_event_sink
    from breaktracker.services.scheduler import AttendanceScheduler

    scheduler = AttendanceScheduler(events=default_event_sink())
    try:
        result = await scheduler.run_now(name)
        return asdict(result)
    finally:
        # jeder Task bekommt eine eigene Event-Loop; Pool-Verbindungen dürfen sie nicht überleben
        await close_redis()
        await engine.dispose()
