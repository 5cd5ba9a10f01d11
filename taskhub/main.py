from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI

from .config import get_settings
from .db import Base, SessionLocal, engine
from .logging_setup import purge_old_logs, setup_logging
from .migrations import ensure_db_schema
from .routers import api_notifications, api_staff, api_tasks
from .sweep import sweep
from .version import APP_VERSION


settings = get_settings()

setup_logging(level=settings.logging.level, log_dir=settings.logging.dir, levels=settings.logging.levels)
logger = logging.getLogger("taskhub")


app = FastAPI(title=settings.app.name, version=APP_VERSION)

app.include_router(api_tasks.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(api_staff.router, prefix="/api/staff", tags=["staff"])
app.include_router(api_notifications.router, prefix="/api/notifications", tags=["notifications"])


scheduler: BackgroundScheduler | None = None


def _recurring_sweep_job() -> None:
    db = SessionLocal()
    try:
        report = sweep(db)
        if report.created or report.failed:
            logger.info("Recurring sweep: %s (%s failed)", report.message, report.failed)
    except Exception:
        logger.exception("Error while sweeping recurring tasks")
    finally:
        db.close()


def _log_retention_job() -> None:
    try:
        purged = purge_old_logs(retention_days=int(settings.logging.retention_days), log_dir=settings.logging.dir)
        if purged:
            logger.info("Purged %s old log files", purged)
    except Exception:
        logger.exception("Error while purging old log files")


def _configure_jobs(sched: BackgroundScheduler) -> None:
    if settings.sweep.enabled:
        sched.add_job(
            _recurring_sweep_job,
            "cron",
            hour=int(settings.sweep.cron_hour),
            minute=int(settings.sweep.cron_minute),
            timezone=settings.app.timezone,
            id="recurring_task_sweep",
            replace_existing=True,
        )
        logger.info(
            "Recurring sweep scheduled daily at %02d:%02d (%s)",
            int(settings.sweep.cron_hour),
            int(settings.sweep.cron_minute),
            settings.app.timezone,
        )
    else:
        logger.info("Recurring sweep disabled")

    sched.add_job(
        _log_retention_job,
        "cron",
        hour=0,
        minute=15,
        id="log_retention",
        replace_existing=True,
        timezone=settings.app.timezone,
    )


@app.on_event("startup")
def on_startup() -> None:
    global scheduler

    Base.metadata.create_all(bind=engine)

    report = ensure_db_schema(engine)
    app.state.db_migration_report = report
    if report.applied_steps:
        logger.warning("Database schema upgraded to %s (%s)", report.current_db_version, ", ".join(report.applied_steps))

    scheduler = BackgroundScheduler(timezone="UTC")
    try:
        _configure_jobs(scheduler)
    except Exception:
        logger.exception("Failed to configure scheduled jobs")

    app.state.scheduler = scheduler
    scheduler.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"status": "ok", "version": APP_VERSION}
