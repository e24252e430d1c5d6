"""Shared fixtures for kbsync tests.

Database tests run against a throwaway SQLite file (aiosqlite, NullPool)
created from Base.metadata.  kbsync.db.session.AsyncSessionFactory is patched
so every get_session() call in the code under test uses it.  The website
fetcher and the extractor are replaced by in-memory fakes.
"""

from __future__ import annotations

import asyncio
import datetime
import uuid

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import kbsync.db.session as session_module
from kbsync.collaborators.extractor import concatenate_answers
from kbsync.db.models import (
    Base,
    ConflictStatus,
    EntrySource,
    EntryStatus,
    JobStatus,
    KnowledgeConflict,
    KnowledgeEntry,
    SyncConfiguration,
    SyncLock,
    WebsiteSyncJob,
    utcnow,
)
from kbsync.sync.orchestrator import SyncOrchestrator

WEBSITE = "https://example.no"


# ── Fakes ───────────────────────────────────────────────────────────


class FakeFetcher:
    """Returns canned page text; can block on a gate or sleep to simulate slow sites."""

    def __init__(self, pages=None, error=None, gate=None, delay=0.0):
        self.pages = pages or {}
        self.error = error
        self.gate = gate
        self.delay = delay
        self.calls: list[str] = []
        self.started = asyncio.Event()

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.pages.get(url, f"Welcome to {url}")


class FakeExtractor:
    """Returns a fixed list of raw candidate dicts; merge defaults to concatenation."""

    def __init__(self, candidates=None, error=None, merged=None):
        self.candidates = list(candidates or [])
        self.error = error
        self.merged = merged
        self.extract_calls = 0
        self.merge_calls: list[tuple[str, str]] = []

    async def extract(self, raw_content: str):
        self.extract_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.candidates)

    async def merge_answers(self, current_answer: str, website_answer: str) -> str:
        self.merge_calls.append((current_answer, website_answer))
        if self.merged is not None:
            return self.merged
        return concatenate_answers(current_answer, website_answer)


def faq(question: str, answer: str, **extra) -> dict:
    return {"question": question, "answer": answer, **extra}


def make_orchestrator(fetcher, extractor, **overrides) -> SyncOrchestrator:
    options = {
        "max_run_seconds": 30,
        "fetch_timeout_seconds": 5,
        "extract_timeout_seconds": 5,
        "lock_grace_seconds": 5,
    }
    options.update(overrides)
    return SyncOrchestrator(fetcher, extractor, **options)


# ── Database ────────────────────────────────────────────────────────


@pytest.fixture
async def db(tmp_path, monkeypatch):
    """Fresh SQLite database with the kbsync schema; yields the session factory."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'kbsync.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(session_module, "AsyncSessionFactory", factory)
    yield factory
    await engine.dispose()


class Seeder:
    """Insert and read back rows for assertions."""

    def __init__(self, factory):
        self.factory = factory

    async def add(self, obj):
        async with self.factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def config(self, company_id="acme", **overrides) -> SyncConfiguration:
        values = {
            "enabled": True,
            "website_url": WEBSITE,
            "sync_interval_hours": 1,
            "auto_approve_website_faqs": False,
            "notify_on_conflicts": True,
            "notify_on_new_faqs": True,
            "additional_urls": [],
        }
        values.update(overrides)
        return await self.add(SyncConfiguration(company_id=company_id, **values))

    async def entry(
        self,
        question: str,
        answer: str,
        company_id="acme",
        source=EntrySource.MANUAL,
        status=EntryStatus.ACTIVE,
        **overrides,
    ) -> KnowledgeEntry:
        return await self.add(KnowledgeEntry(
            company_id=company_id,
            question=question,
            answer=answer,
            source=source,
            status=status,
            confirmed=overrides.pop("confirmed", True),
            **overrides,
        ))

    async def conflict(self, entry: KnowledgeEntry, website_question: str, website_answer: str,
                       score: float = 0.8, **overrides) -> KnowledgeConflict:
        return await self.add(KnowledgeConflict(
            company_id=entry.company_id,
            job_id=overrides.pop("job_id", uuid.uuid4()),
            entry_id=entry.id,
            current_source=entry.source,
            current_question=entry.question,
            current_answer=entry.answer,
            website_question=website_question,
            website_answer=website_answer,
            website_url=overrides.pop("website_url", WEBSITE),
            similarity_score=score,
            status=overrides.pop("status", ConflictStatus.PENDING),
            **overrides,
        ))

    async def job(self, company_id="acme", status=JobStatus.COMPLETED, started_at=None, **overrides):
        return await self.add(WebsiteSyncJob(
            company_id=company_id,
            website_url=WEBSITE,
            status=status,
            started_at=started_at or utcnow(),
            **overrides,
        ))

    async def lock(self, company_id="acme", expires_in: float = 300, **overrides) -> SyncLock:
        now = utcnow()
        return await self.add(SyncLock(
            company_id=company_id,
            holder=overrides.pop("holder", "other-worker"),
            acquired_at=now - datetime.timedelta(seconds=10),
            expires_at=now + datetime.timedelta(seconds=expires_in),
            cancel_requested=overrides.pop("cancel_requested", False),
            **overrides,
        ))

    async def _all(self, model, company_id, order_by):
        async with self.factory() as session:
            result = await session.execute(
                select(model).where(model.company_id == company_id).order_by(order_by)
            )
            return list(result.scalars().all())

    async def entries(self, company_id="acme") -> list[KnowledgeEntry]:
        return await self._all(KnowledgeEntry, company_id, KnowledgeEntry.created_at)

    async def conflicts(self, company_id="acme") -> list[KnowledgeConflict]:
        return await self._all(KnowledgeConflict, company_id, KnowledgeConflict.created_at)

    async def jobs(self, company_id="acme") -> list[WebsiteSyncJob]:
        return await self._all(WebsiteSyncJob, company_id, WebsiteSyncJob.started_at)

    async def get(self, model, ident):
        async with self.factory() as session:
            return await session.get(model, ident)


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder(db)


# ── Collaborators & API client ──────────────────────────────────────


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def orchestrator(fetcher, extractor) -> SyncOrchestrator:
    return make_orchestrator(fetcher, extractor)


@pytest.fixture
async def client(db, orchestrator, extractor):
    """httpx client against the ASGI app, with fake collaborators injected."""
    from kbsync.conflict.resolver import ConflictResolver
    from kbsync.server.main import app
    from kbsync.services import get_orchestrator, get_resolver

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_resolver] = lambda: ConflictResolver(extractor)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()
