"""Top-level FastAPI APIRouter for the kbsync REST API (v1).

Prefix:  /api/v1
Tags:    ["rest-api"]

Sub-routers included:
- sync_router       - /api/v1/companies/{company_id}/sync/...
- conflicts_router  - /api/v1/companies/{company_id}/conflicts/...
"""

from __future__ import annotations

from fastapi import APIRouter

from kbsync.api.routes.conflicts import conflicts_router
from kbsync.api.routes.sync import sync_router

api_router = APIRouter(prefix="/api/v1", tags=["rest-api"])

api_router.include_router(sync_router)
api_router.include_router(conflicts_router)
