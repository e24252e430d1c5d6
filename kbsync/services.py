"""Process-wide default collaborators.

The server, the Celery worker and the CLI all build their orchestrator and
resolver here, so they share one configuration path.  Tests replace them via
FastAPI dependency overrides or by constructing SyncOrchestrator directly.
"""

from __future__ import annotations

from functools import lru_cache

from kbsync.collaborators.extractor import LLMExtractor
from kbsync.collaborators.fetcher import HttpFetcher
from kbsync.conflict.resolver import ConflictResolver
from kbsync.sync.orchestrator import SyncOrchestrator


@lru_cache(maxsize=1)
def get_extractor() -> LLMExtractor:
    return LLMExtractor()


@lru_cache(maxsize=1)
def get_orchestrator() -> SyncOrchestrator:
    """Return the SyncOrchestrator singleton (HttpFetcher + LLMExtractor)."""
    return SyncOrchestrator(HttpFetcher(), get_extractor())


@lru_cache(maxsize=1)
def get_resolver() -> ConflictResolver:
    return ConflictResolver(get_extractor())
