"""Website sync REST endpoints.

Endpoints (all under /companies/{company_id}/sync):
- GET  /config           - current configuration (disabled defaults if never set)
- PUT  /config           - partial update; 422 when enabled without a valid URL
- POST /run              - run a sync now and wait for the result
- GET  /jobs             - recent jobs, newest first
- GET  /jobs/{job_id}    - one job
- GET  /status           - dashboard summary: config, recent jobs, pending conflicts
- POST /cancel           - ask the running job to stop at its next checkpoint

A run that fails after it started (fetch/extraction/persistence error) is not
an HTTP error: it returns 200 with success=false and the job error in
``errors``.  Only the two precondition failures map to error statuses.
"""

from __future__ import annotations

import datetime
import logging
import uuid as _uuid
from typing import Annotated

import sqlalchemy as sa
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from kbsync.conflict.resolver import count_pending_conflicts
from kbsync.db.models import JobStatus, SyncConfiguration, WebsiteSyncJob
from kbsync.db.session import get_session
from kbsync.errors import AlreadyRunning, InvalidSyncConfiguration, JobNotFound, NotConfigured
from kbsync.services import get_orchestrator
from kbsync.sync.config_service import SyncConfigUpdate, get_sync_config, update_sync_config
from kbsync.sync.locks import is_locked, request_cancel
from kbsync.sync.orchestrator import SyncOrchestrator, get_job
from kbsync.sync.scheduler import trigger_manual

logger = logging.getLogger(__name__)

sync_router = APIRouter(prefix="/companies/{company_id}/sync", tags=["sync"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SyncConfigResponse(BaseModel):
    company_id: str
    enabled: bool
    website_url: str | None
    sync_interval_hours: int
    auto_approve_website_faqs: bool
    notify_on_conflicts: bool
    notify_on_new_faqs: bool
    additional_urls: list[str]
    last_sync_at: datetime.datetime | None = None
    last_sync_job_id: _uuid.UUID | None = None

    model_config = {"from_attributes": True}


class SyncJobResponse(BaseModel):
    id: _uuid.UUID
    company_id: str
    website_url: str | None
    status: JobStatus
    started_at: datetime.datetime
    completed_at: datetime.datetime | None
    candidates_found: int
    new_faqs_found: int
    conflicts_found: int
    faqs_marked_outdated: int
    content_changed: bool | None
    error: str | None

    model_config = {"from_attributes": True}


class SyncResultSummary(BaseModel):
    """Response body for POST /sync/run."""

    success: bool
    job_id: _uuid.UUID
    total_faqs_on_website: int
    new_faqs_created: int
    conflicts_created: int
    faqs_marked_outdated: int
    content_changed: bool
    errors: list[str]

    @classmethod
    def from_job(cls, job: WebsiteSyncJob) -> "SyncResultSummary":
        succeeded = job.status == JobStatus.COMPLETED
        return cls(
            success=succeeded,
            job_id=job.id,
            total_faqs_on_website=job.candidates_found,
            new_faqs_created=job.new_faqs_found,
            conflicts_created=job.conflicts_found,
            faqs_marked_outdated=job.faqs_marked_outdated,
            content_changed=bool(job.content_changed),
            errors=[] if succeeded else [job.error or "sync failed"],
        )


class SyncStatusResponse(BaseModel):
    config: SyncConfigResponse
    running: bool
    last_sync_at: datetime.datetime | None
    pending_conflicts: int
    recent_jobs: list[SyncJobResponse]


class CancelResponse(BaseModel):
    company_id: str
    cancel_requested: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _recent_jobs(company_id: str, limit: int) -> list[WebsiteSyncJob]:
    async with get_session() as session:
        result = await session.execute(
            sa.select(WebsiteSyncJob)
            .where(WebsiteSyncJob.company_id == company_id)
            .order_by(WebsiteSyncJob.started_at.desc(), WebsiteSyncJob.id)
            .limit(limit)
        )
        return list(result.scalars().all())


def _config_response(config: SyncConfiguration) -> SyncConfigResponse:
    return SyncConfigResponse.model_validate(config)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@sync_router.get(
    "/config",
    response_model=SyncConfigResponse,
    operation_id="get_sync_config",
    summary="Get the website sync configuration",
)
async def get_sync_config_endpoint(company_id: str) -> SyncConfigResponse:
    return _config_response(await get_sync_config(company_id))


@sync_router.put(
    "/config",
    response_model=SyncConfigResponse,
    operation_id="update_sync_config",
    summary="Update the website sync configuration",
    description=(
        "Partial update: omitted fields keep their stored value. "
        "Returns 422 when sync would be enabled without a valid absolute http(s) URL. "
        "Disabling sync asks a running job for this company to stop."
    ),
)
async def update_sync_config_endpoint(company_id: str, body: SyncConfigUpdate) -> SyncConfigResponse:
    try:
        config = await update_sync_config(company_id, body)
    except InvalidSyncConfiguration as exc:
        raise HTTPException(status_code=422, detail={"errors": exc.errors})
    return _config_response(config)


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@sync_router.post(
    "/run",
    response_model=SyncResultSummary,
    operation_id="run_sync",
    summary="Run a website sync now",
    description=(
        "Fetches the configured website, extracts Q/A pairs and diffs them against the "
        "knowledge base. Waits for the run to finish. "
        "409 if a sync is already running for the company, 400 if sync is not configured."
    ),
)
async def run_sync_endpoint(
    company_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    try:
        job = await trigger_manual(orchestrator, company_id)
    except AlreadyRunning as exc:
        return JSONResponse(status_code=409, content={"success": False, "errors": [str(exc)]})
    except NotConfigured as exc:
        return JSONResponse(status_code=400, content={"success": False, "errors": [str(exc)]})
    return SyncResultSummary.from_job(job)


@sync_router.post(
    "/cancel",
    response_model=CancelResponse,
    operation_id="cancel_sync",
    summary="Cancel the running sync",
)
async def cancel_sync_endpoint(company_id: str) -> CancelResponse:
    requested = await request_cancel(company_id)
    return CancelResponse(company_id=company_id, cancel_requested=requested)


# ---------------------------------------------------------------------------
# Job history
# ---------------------------------------------------------------------------


@sync_router.get(
    "/jobs",
    response_model=list[SyncJobResponse],
    operation_id="list_sync_jobs",
    summary="List recent sync jobs, newest first",
)
async def list_sync_jobs_endpoint(
    company_id: str,
    limit: Annotated[int, Query(ge=1, le=100, description="Max jobs to return")] = 10,
) -> list[SyncJobResponse]:
    jobs = await _recent_jobs(company_id, limit)
    return [SyncJobResponse.model_validate(job) for job in jobs]


@sync_router.get(
    "/jobs/{job_id}",
    response_model=SyncJobResponse,
    operation_id="get_sync_job",
    summary="Get one sync job",
)
async def get_sync_job_endpoint(company_id: str, job_id: _uuid.UUID) -> SyncJobResponse:
    try:
        job = await get_job(company_id, job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return SyncJobResponse.model_validate(job)


@sync_router.get(
    "/status",
    response_model=SyncStatusResponse,
    operation_id="get_sync_status",
    summary="Website sync dashboard summary",
)
async def get_sync_status_endpoint(company_id: str) -> SyncStatusResponse:
    config = await get_sync_config(company_id)
    jobs = await _recent_jobs(company_id, 5)
    return SyncStatusResponse(
        config=_config_response(config),
        running=await is_locked(company_id),
        last_sync_at=config.last_sync_at,
        pending_conflicts=await count_pending_conflicts(company_id),
        recent_jobs=[SyncJobResponse.model_validate(job) for job in jobs],
    )
