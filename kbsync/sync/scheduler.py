"""Periodic scheduling of website sync runs.

run_scheduler_tick() is invoked every few minutes by Celery beat (see
kbsync.tasks).  Each tick:
  1. lists the enabled tenants
  2. skips those holding a live sync lock
  3. runs every tenant whose interval has elapsed, at most
     scheduler_max_concurrency at a time

A failure for one tenant is logged and reported in the tick result; it never
stops the other tenants.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import func, select

from kbsync.db.models import SyncConfiguration, WebsiteSyncJob, as_utc, utcnow
from kbsync.db.session import get_session
from kbsync.errors import AlreadyRunning, NotConfigured
from kbsync.sync.config_service import list_enabled_configs
from kbsync.sync.locks import live_locked_companies
from kbsync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class SchedulerTickResult:
    started: list[str] = field(default_factory=list)
    completed: dict[str, uuid.UUID] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    skipped_running: list[str] = field(default_factory=list)
    not_due: list[str] = field(default_factory=list)


def is_due(
    config: SyncConfiguration,
    last_started_at: datetime.datetime | None,
    now: datetime.datetime,
) -> bool:
    """True when the tenant is enabled, has a URL, and its interval elapsed."""
    if not config.enabled or not config.website_url:
        return False
    if last_started_at is None:
        return True
    interval = datetime.timedelta(hours=max(1, config.sync_interval_hours or 1))
    return as_utc(now) - as_utc(last_started_at) >= interval


async def _last_started(company_ids: list[str]) -> dict[str, datetime.datetime]:
    if not company_ids:
        return {}
    async with get_session() as session:
        rows = (
            await session.execute(
                select(WebsiteSyncJob.company_id, func.max(WebsiteSyncJob.started_at))
                .where(WebsiteSyncJob.company_id.in_(company_ids))
                .group_by(WebsiteSyncJob.company_id)
            )
        ).all()
    return {company_id: as_utc(started_at) for company_id, started_at in rows}


async def run_scheduler_tick(
    orchestrator: SyncOrchestrator,
    now: datetime.datetime | None = None,
    max_concurrency: int | None = None,
) -> SchedulerTickResult:
    """Start every due sync and wait for them to finish."""
    from kbsync.config import settings  # lazy import - avoid circular deps

    now = now or utcnow()
    semaphore = asyncio.Semaphore(max_concurrency or settings.scheduler_max_concurrency)
    result = SchedulerTickResult()

    configs = await list_enabled_configs()
    locked = await live_locked_companies(now)
    last_started = await _last_started([c.company_id for c in configs])

    due: list[str] = []
    for config in configs:
        if config.company_id in locked:
            result.skipped_running.append(config.company_id)
        elif is_due(config, last_started.get(config.company_id), now):
            due.append(config.company_id)
        else:
            result.not_due.append(config.company_id)

    async def _run_one(company_id: str) -> None:
        async with semaphore:
            result.started.append(company_id)
            try:
                job = await orchestrator.run_sync(company_id)
            except AlreadyRunning:
                result.skipped_running.append(company_id)
                result.started.remove(company_id)
                logger.info("Scheduled sync skipped, already running: company=%s", company_id)
                return
            except NotConfigured as exc:
                result.failed[company_id] = str(exc)
                logger.warning("Scheduled sync not configured: company=%s - %s", company_id, exc)
                return
            except Exception as exc:
                result.failed[company_id] = f"{exc.__class__.__name__}: {exc}"
                logger.error("Scheduled sync crashed: company=%s", company_id, exc_info=True)
                return

            if job.error:
                result.failed[company_id] = job.error
            else:
                result.completed[company_id] = job.id

    await asyncio.gather(*(_run_one(company_id) for company_id in due))

    logger.info(
        "Scheduler tick: due=%d completed=%d failed=%d running=%d not_due=%d",
        len(due),
        len(result.completed),
        len(result.failed),
        len(result.skipped_running),
        len(result.not_due),
    )
    return result


async def trigger_manual(orchestrator: SyncOrchestrator, company_id: str) -> WebsiteSyncJob:
    """Run a sync now, ignoring the interval.

    Raises:
        NotConfigured, AlreadyRunning: as SyncOrchestrator.run_sync.
    """
    logger.info("Manual sync triggered: company=%s", company_id)
    return await orchestrator.run_sync(company_id)
