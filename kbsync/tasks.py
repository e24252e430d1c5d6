"""Celery tasks for scheduled and background website sync runs.

Tasks:
- kbsync.scheduler_tick : Celery Beat, every scheduler_tick_minutes; starts
                          every due tenant (bounded concurrency, see
                          kbsync.sync.scheduler)
- kbsync.run_sync       : one tenant, for callers that enqueue a run instead of
                          waiting for it (run_sync_task.delay(company_id))

**Design:**
- Broker and result backend are both Redis
- Serialization is JSON, so task results are plain dicts
- Celery workers are synchronous; each task runs its coroutine with
  asyncio.run() and disposes the async engine inside that same loop, because
  pooled asyncpg connections are bound to the loop that opened them
- Overlapping ticks are harmless: the per-tenant lock row rejects a second run
"""

from __future__ import annotations

import logging

from celery import Celery

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Celery application
# ---------------------------------------------------------------------------

celery_app = Celery("kbsync")


def configure_celery(redis_url: str, tick_minutes: int | None = None) -> None:
    """Configure Celery broker, result backend and the beat schedule.

    Call this during server lifespan startup and at worker import time.

    Args:
        redis_url:    Redis connection URL (e.g. "redis://localhost:6379/0").
        tick_minutes: Scheduler tick period; defaults to settings.scheduler_tick_minutes.
    """
    from celery.schedules import crontab  # noqa: PLC0415

    from kbsync.config import settings  # noqa: PLC0415

    tick_minutes = tick_minutes or settings.scheduler_tick_minutes

    celery_app.conf.broker_url = redis_url
    celery_app.conf.result_backend = redis_url
    celery_app.conf.task_serializer = "json"
    celery_app.conf.accept_content = ["json"]
    celery_app.conf.result_serializer = "json"

    celery_app.conf.beat_schedule = {
        "website-sync-scheduler": {
            "task": "kbsync.scheduler_tick",
            "schedule": crontab(minute=f"*/{tick_minutes}"),
        },
    }


def job_summary(job) -> dict:
    return {
        "job_id": str(job.id),
        "company_id": job.company_id,
        "status": job.status.value,
        "candidates_found": job.candidates_found,
        "new_faqs_found": job.new_faqs_found,
        "conflicts_found": job.conflicts_found,
        "faqs_marked_outdated": job.faqs_marked_outdated,
        "error": job.error,
    }


# ---------------------------------------------------------------------------
# Scheduler tick task
# ---------------------------------------------------------------------------


@celery_app.task(name="kbsync.scheduler_tick")
def scheduler_tick_task() -> dict:
    """Run one scheduler tick - called by Celery Beat.

    Returns:
        Dict with the tenants that completed, failed, were skipped because a
        run was in progress, or were not yet due.
    """
    from kbsync.db.session import run_blocking  # noqa: PLC0415
    from kbsync.services import get_orchestrator  # noqa: PLC0415
    from kbsync.sync.scheduler import run_scheduler_tick  # noqa: PLC0415

    result = run_blocking(lambda: run_scheduler_tick(get_orchestrator()))
    return {
        "completed": {company_id: str(job_id) for company_id, job_id in result.completed.items()},
        "failed": result.failed,
        "skipped_running": result.skipped_running,
        "not_due": result.not_due,
    }


# ---------------------------------------------------------------------------
# Single-tenant sync task
# ---------------------------------------------------------------------------


@celery_app.task(name="kbsync.run_sync")
def run_sync_task(company_id: str) -> dict:
    """Run one website sync for a tenant in the worker.

    NotConfigured / AlreadyRunning are reported in the result instead of
    raised, so Celery does not log them as task crashes.
    """
    from kbsync.db.session import run_blocking  # noqa: PLC0415
    from kbsync.errors import AlreadyRunning, NotConfigured  # noqa: PLC0415
    from kbsync.services import get_orchestrator  # noqa: PLC0415

    try:
        job = run_blocking(lambda: get_orchestrator().run_sync(company_id))
    except (AlreadyRunning, NotConfigured) as exc:
        logger.info("Background sync not started for company=%s: %s", company_id, exc)
        return {"company_id": company_id, "status": "not_started", "error": str(exc)}
    return job_summary(job)


def _configure_from_settings() -> None:
    from kbsync.config import settings  # noqa: PLC0415

    configure_celery(settings.redis_url)


# Workers and beat import this module directly:
#   celery -A kbsync.tasks worker   /   celery -A kbsync.tasks beat
_configure_from_settings()
