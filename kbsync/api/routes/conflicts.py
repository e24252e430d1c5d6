"""Knowledge conflict REST endpoints.

Endpoints (all under /companies/{company_id}/conflicts):
- GET  ""                      - list conflicts (default: pending; status=all for every status)
- GET  /{conflict_id}          - one conflict with both snapshots
- POST /{conflict_id}/resolve  - apply a resolution

Resolve error mapping:
- 404  unknown conflict (or another company's)
- 409  conflict already resolved/dismissed, or entry modified concurrently
- 410  the knowledge entry the conflict refers to was deleted
"""

from __future__ import annotations

import datetime
import logging
import uuid as _uuid
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from kbsync.conflict.resolver import ConflictResolver, Resolution, get_conflict, list_conflicts
from kbsync.db.models import ConflictStatus, EntrySource, EntryStatus
from kbsync.errors import ConflictNotFound, ConflictNotPending, EntryChanged, EntryMissing
from kbsync.services import get_resolver

logger = logging.getLogger(__name__)

conflicts_router = APIRouter(prefix="/companies/{company_id}/conflicts", tags=["conflicts"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class ConflictResponse(BaseModel):
    id: _uuid.UUID
    company_id: str
    job_id: _uuid.UUID
    entry_id: _uuid.UUID
    current_source: EntrySource
    current_question: str
    current_answer: str
    website_question: str
    website_answer: str
    website_url: str | None
    similarity_score: float
    status: ConflictStatus
    resolution: str | None
    resolved_entry_id: _uuid.UUID | None
    resolved_by: str | None
    resolved_at: datetime.datetime | None
    resolution_note: str | None
    created_at: datetime.datetime

    model_config = {"from_attributes": True}


class KnowledgeEntryResponse(BaseModel):
    id: _uuid.UUID
    question: str
    answer: str
    source: EntrySource
    status: EntryStatus
    confirmed: bool
    website_url: str | None

    model_config = {"from_attributes": True}


class ResolveRequest(BaseModel):
    resolution: Resolution
    resolved_by: str | None = Field(default=None, max_length=255)
    note: str | None = None


class ResolveResponse(BaseModel):
    conflict_id: _uuid.UUID
    resolution: Resolution
    entry: KnowledgeEntryResponse | None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@conflicts_router.get(
    "",
    response_model=list[ConflictResponse],
    operation_id="list_conflicts",
    summary="List knowledge conflicts",
)
async def list_conflicts_endpoint(
    company_id: str,
    status: Annotated[
        Literal["pending", "resolved", "dismissed", "all"],
        Query(description="Conflict status filter; 'all' lists every status"),
    ] = "pending",
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[ConflictResponse]:
    status_filter = None if status == "all" else ConflictStatus(status)
    conflicts = await list_conflicts(company_id, status_filter, limit)
    return [ConflictResponse.model_validate(c) for c in conflicts]


@conflicts_router.get(
    "/{conflict_id}",
    response_model=ConflictResponse,
    operation_id="get_conflict",
    summary="Get one knowledge conflict",
)
async def get_conflict_endpoint(company_id: str, conflict_id: _uuid.UUID) -> ConflictResponse:
    try:
        conflict = await get_conflict(company_id, conflict_id)
    except ConflictNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return ConflictResponse.model_validate(conflict)


@conflicts_router.post(
    "/{conflict_id}/resolve",
    response_model=ResolveResponse,
    operation_id="resolve_conflict",
    summary="Resolve a pending knowledge conflict",
    description=(
        "keep_current, use_website, keep_both and merge resolve the conflict; dismiss "
        "closes it without touching the knowledge base. A conflict can be resolved once."
    ),
)
async def resolve_conflict_endpoint(
    company_id: str,
    conflict_id: _uuid.UUID,
    body: ResolveRequest,
    resolver: ConflictResolver = Depends(get_resolver),
) -> ResolveResponse:
    try:
        entry = await resolver.resolve(
            company_id,
            conflict_id,
            body.resolution,
            resolved_by=body.resolved_by,
            note=body.note,
        )
    except ConflictNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (ConflictNotPending, EntryChanged) as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except EntryMissing as exc:
        raise HTTPException(status_code=410, detail=str(exc))

    return ResolveResponse(
        conflict_id=conflict_id,
        resolution=body.resolution,
        entry=KnowledgeEntryResponse.model_validate(entry) if entry is not None else None,
    )
