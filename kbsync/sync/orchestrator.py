"""Sync job orchestrator: one website sync run for one tenant, end to end.

Run lifecycle:
  1. Precondition check     - NotConfigured if disabled / no URL (no job is created)
  2. Tenant lock            - AlreadyRunning if another live run holds it
  3. Job record             - created 'pending', then 'running'
  4. Fetch                  - website (+ additional URLs), hard timeout per page
  5. Extract                - external extractor, own timeout, validated candidates
  6. Diff                   - match + classify every candidate in extraction order
  7. Outdated pass          - only after all candidates were classified
  8. Commit                 - new entries, conflicts, outdated markings, job counts
                              and 'completed' status in ONE transaction
  9. Lock release           - on every exit path

Failure policy: any error after the job exists (fetch, extraction, persistence,
cancellation, duration limit) rolls back the batch and writes the job as
'failed' with a readable error in a separate transaction.  The caller always
gets a terminal job back; only the two precondition errors are raised.  If the
calling task itself is cancelled, the job is closed as 'failed' ('cancelled')
before the cancellation propagates.
"""

from __future__ import annotations

import asyncio
import datetime
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from kbsync.collaborators.candidates import Candidate, coerce_candidates
from kbsync.collaborators.extractor import Extractor
from kbsync.collaborators.fetcher import Fetcher
from kbsync.db.models import (
    ACTIVE_JOB_STATUSES,
    ConflictStatus,
    EntrySource,
    EntryStatus,
    JobStatus,
    KnowledgeConflict,
    KnowledgeEntry,
    SyncConfiguration,
    WebsiteSyncJob,
    utcnow,
)
from kbsync.db.session import get_session
from kbsync.errors import (
    ExtractionError,
    FetchError,
    KBSyncError,
    JobNotFound,
    NotConfigured,
    SyncCancelled,
)
from kbsync.matching.classifier import Classification, classify
from kbsync.matching.similarity import MatchResult, match
from kbsync.sync import locks
from kbsync.sync.config_service import get_sync_config

logger = logging.getLogger(__name__)

ABANDONED_ERROR = "abandoned: worker lease expired"


# ---------------------------------------------------------------------------
# Diff plan
# ---------------------------------------------------------------------------


@dataclass
class PlannedConflict:
    candidate: Candidate
    entry: KnowledgeEntry
    score: float


@dataclass
class SyncPlan:
    """Everything one run will write, accumulated before anything is persisted."""

    new_candidates: list[Candidate] = field(default_factory=list)
    conflicts: list[PlannedConflict] = field(default_factory=list)
    reconfirmed_ids: set[uuid.UUID] = field(default_factory=set)
    # Entries still present on the website (reconfirmed or under conflict)
    present_ids: set[uuid.UUID] = field(default_factory=set)
    outdated: list[KnowledgeEntry] = field(default_factory=list)
    # Outdated website entries whose FAQ is back on the site unchanged
    reactivated: list[KnowledgeEntry] = field(default_factory=list)
    skipped_duplicate_conflicts: int = 0


def _conflict_key(entry_id: uuid.UUID, question: str, answer: str) -> tuple[str, str, str]:
    return (str(entry_id), question, answer)


def _build_entry(
    company_id: str,
    candidate: Candidate,
    auto_approve: bool,
    now: datetime.datetime,
) -> KnowledgeEntry:
    """New website-sourced entry; unconfirmed entries wait for dashboard review."""
    return KnowledgeEntry(
        company_id=company_id,
        question=candidate.question,
        answer=candidate.answer,
        source=EntrySource.WEBSITE,
        status=EntryStatus.ACTIVE,
        confirmed=auto_approve,
        website_url=candidate.source_url,
        website_last_seen_at=now,
        created_at=now,
        updated_at=now,
    )


def _build_conflict(
    company_id: str,
    job_id: uuid.UUID,
    planned: PlannedConflict,
    now: datetime.datetime,
) -> KnowledgeConflict:
    entry = planned.entry
    return KnowledgeConflict(
        company_id=company_id,
        job_id=job_id,
        entry_id=entry.id,
        current_source=entry.source,
        current_question=entry.question,
        current_answer=entry.answer,
        website_question=planned.candidate.question,
        website_answer=planned.candidate.answer,
        website_url=planned.candidate.source_url,
        similarity_score=round(planned.score, 4),
        status=ConflictStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


def _describe_error(exc: BaseException) -> str:
    """Human-readable job error text."""
    if isinstance(exc, FetchError):
        return str(exc)
    if isinstance(exc, ExtractionError):
        return f"Extraction failed: {exc}"
    if isinstance(exc, SQLAlchemyError):
        return f"Persistence failed: {exc.__class__.__name__}: {exc}".strip()
    if isinstance(exc, KBSyncError):
        return str(exc)
    return f"{exc.__class__.__name__}: {exc}"


# ---------------------------------------------------------------------------
# Job bookkeeping (each in its own short transaction)
# ---------------------------------------------------------------------------


async def _create_job(company_id: str, website_url: str | None) -> WebsiteSyncJob:
    async with get_session() as session:
        job = WebsiteSyncJob(
            company_id=company_id,
            website_url=website_url,
            status=JobStatus.PENDING,
            started_at=utcnow(),
            candidates_found=0,
            new_faqs_found=0,
            conflicts_found=0,
            faqs_marked_outdated=0,
        )
        session.add(job)
        await session.commit()
        return job


async def _mark_running(job_id: uuid.UUID) -> None:
    async with get_session() as session:
        await session.execute(
            update(WebsiteSyncJob)
            .where(WebsiteSyncJob.id == job_id)
            .where(WebsiteSyncJob.status == JobStatus.PENDING)
            .values(status=JobStatus.RUNNING)
        )
        await session.commit()


async def _finish_failed(job_id: uuid.UUID, error: str) -> WebsiteSyncJob:
    """Write the failed terminal state; a job that is already terminal is left as is."""
    async with get_session() as session:
        await session.execute(
            update(WebsiteSyncJob)
            .where(WebsiteSyncJob.id == job_id)
            .where(WebsiteSyncJob.status.in_(ACTIVE_JOB_STATUSES))
            .values(
                status=JobStatus.FAILED,
                error=error[:2000],
                completed_at=utcnow(),
                new_faqs_found=0,
                conflicts_found=0,
                faqs_marked_outdated=0,
            )
        )
        await session.commit()
        job = await session.get(WebsiteSyncJob, job_id, populate_existing=True)
    return job


async def fail_abandoned_jobs(company_id: str) -> int:
    """Close jobs a dead worker left pending/running.  Returns how many."""
    async with get_session() as session:
        result = await session.execute(
            update(WebsiteSyncJob)
            .where(WebsiteSyncJob.company_id == company_id)
            .where(WebsiteSyncJob.status.in_(ACTIVE_JOB_STATUSES))
            .values(status=JobStatus.FAILED, error=ABANDONED_ERROR, completed_at=utcnow())
        )
        await session.commit()
    if result.rowcount:
        logger.warning("Closed %d abandoned sync job(s) for company=%s", result.rowcount, company_id)
    return result.rowcount or 0


async def get_job(company_id: str, job_id: uuid.UUID | str) -> WebsiteSyncJob:
    """Return one of the tenant's jobs.  Other tenants' jobs are reported as missing."""
    try:
        ident = job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))
    except ValueError:
        raise JobNotFound(str(job_id))
    async with get_session() as session:
        job = await session.get(WebsiteSyncJob, ident)
    if job is None or job.company_id != company_id:
        raise JobNotFound(str(job_id))
    return job


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    """Drives website sync runs.

    Args:
        fetcher:                 Website fetcher collaborator.
        extractor:               Q/A extractor collaborator.
        max_run_seconds:         Safety timeout for one run (default settings).
        fetch_timeout_seconds:   Hard timeout per fetched page.
        extract_timeout_seconds: Hard timeout for the extraction call.
        lock_grace_seconds:      Added to max_run_seconds to form the lock lease.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        extractor: Extractor,
        *,
        max_run_seconds: float | None = None,
        fetch_timeout_seconds: float | None = None,
        extract_timeout_seconds: float | None = None,
        lock_grace_seconds: float | None = None,
    ) -> None:
        from kbsync.config import settings  # lazy import - avoid circular deps

        self.fetcher = fetcher
        self.extractor = extractor
        self.max_run_seconds = max_run_seconds or settings.max_run_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds or settings.fetch_timeout_seconds
        self.extract_timeout_seconds = extract_timeout_seconds or settings.extract_timeout_seconds
        self.lock_grace_seconds = (
            settings.lock_grace_seconds if lock_grace_seconds is None else lock_grace_seconds
        )

    @property
    def lease_seconds(self) -> float:
        return self.max_run_seconds + self.lock_grace_seconds

    async def request_cancel(self, company_id: str) -> bool:
        """Ask a running sync for this tenant to stop at its next checkpoint."""
        return await locks.request_cancel(company_id)

    async def run_sync(self, company_id: str) -> WebsiteSyncJob:
        """Run one website sync for a tenant.

        Returns:
            The job in a terminal status ('completed' or 'failed').

        Raises:
            NotConfigured:  Sync disabled or no website URL.  No job is created.
            AlreadyRunning: Another run holds the tenant lock.  No job is created.
        """
        config = await get_sync_config(company_id)
        if not config.enabled:
            raise NotConfigured(company_id, "website sync is disabled")
        if not config.website_url:
            raise NotConfigured(company_id, "no website URL configured")

        handle = await locks.acquire_lock(company_id, self.lease_seconds)
        try:
            if handle.took_over:
                await fail_abandoned_jobs(company_id)

            job = await _create_job(company_id, config.website_url)
            try:
                await locks.attach_job(handle, job.id)
                await _mark_running(job.id)
                logger.info("Sync started: company=%s job=%s url=%s", company_id, job.id, config.website_url)

                deadline = time.monotonic() + self.max_run_seconds
                return await self._execute(job.id, config, handle, deadline)
            except SyncCancelled as exc:
                logger.info("Sync cancelled: company=%s job=%s reason=%s", company_id, job.id, exc.reason)
                return await _finish_failed(job.id, exc.reason)
            except Exception as exc:
                logger.error("Sync failed: company=%s job=%s - %s", company_id, job.id, exc, exc_info=True)
                return await _finish_failed(job.id, _describe_error(exc))
            except BaseException:
                # Caller task cancelled or process shutting down: close the job before unwinding
                logger.warning("Sync interrupted: company=%s job=%s", company_id, job.id)
                await asyncio.shield(_finish_failed(job.id, "cancelled"))
                raise
        finally:
            await asyncio.shield(locks.release_lock(handle))

    # ------------------------------------------------------------------
    # Run steps
    # ------------------------------------------------------------------

    async def _checkpoint(self, handle: locks.LockHandle, deadline: float) -> None:
        if time.monotonic() >= deadline:
            raise SyncCancelled(self._duration_reason())
        if await locks.cancel_requested(handle):
            raise SyncCancelled("cancelled")

    def _duration_reason(self) -> str:
        return f"cancelled: exceeded maximum run duration of {self.max_run_seconds:g}s"

    async def _bounded(
        self,
        make_call: Callable[[], Awaitable[Any]],
        own_timeout: float,
        deadline: float,
        on_timeout: Callable[[], Exception],
    ) -> Any:
        """Await an external call under min(own timeout, time left in the run)."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise SyncCancelled(self._duration_reason())
        limit = min(own_timeout, remaining)
        try:
            return await asyncio.wait_for(make_call(), timeout=limit)
        except asyncio.TimeoutError:
            if remaining < own_timeout:
                raise SyncCancelled(self._duration_reason()) from None
            raise on_timeout() from None

    async def _fetch_content(self, config: SyncConfiguration, deadline: float) -> str:
        urls = [config.website_url] + [u for u in (config.additional_urls or []) if u]
        pages: list[str] = []
        for url in urls:
            text = await self._bounded(
                lambda url=url: self.fetcher.fetch(url),
                self.fetch_timeout_seconds,
                deadline,
                lambda url=url: FetchError(
                    "timeout", url, f"no response within {self.fetch_timeout_seconds:g}s"
                ),
            )
            if len(urls) > 1:
                pages.append(f"--- PAGE: {url} ---\n{text}")
            else:
                pages.append(text)
        return "\n\n".join(pages)

    async def _extract(self, content: str, website_url: str, deadline: float) -> list[Candidate]:
        raw = await self._bounded(
            lambda: self.extractor.extract(content),
            self.extract_timeout_seconds,
            deadline,
            lambda: ExtractionError(f"extraction timed out after {self.extract_timeout_seconds:g}s"),
        )
        if raw is None:
            raw = []
        if not isinstance(raw, (list, tuple)):
            raise ExtractionError(f"extractor returned {type(raw).__name__}, expected a list")
        return coerce_candidates(raw, default_source_url=website_url)

    async def _plan(
        self,
        candidates: list[Candidate],
        entries: list[KnowledgeEntry],
        open_conflict_keys: set[tuple[str, str, str]],
        handle: locks.LockHandle,
        deadline: float,
        outdated_entries: list[KnowledgeEntry] | None = None,
    ) -> SyncPlan:
        """Classify every candidate, then compute the outdated set.

        Candidates are matched against active entries.  A candidate that is NEW
        there but identical to an outdated website entry reactivates that entry
        instead of creating a duplicate.
        """
        plan = SyncPlan()
        dormant = list(outdated_entries or [])

        for candidate in candidates:
            await self._checkpoint(handle, deadline)

            result: MatchResult = match(candidate, entries)
            classification = classify(result, candidate)

            if classification is Classification.NEW:
                revived = self._revive(candidate, dormant)
                if revived is not None:
                    dormant.remove(revived)
                    plan.reactivated.append(revived)
                else:
                    plan.new_candidates.append(candidate)
                continue

            entry = result.best_entry
            plan.present_ids.add(entry.id)

            if classification is Classification.UNCHANGED:
                plan.reconfirmed_ids.add(entry.id)
                continue

            key = _conflict_key(entry.id, candidate.question, candidate.answer)
            if key in open_conflict_keys:
                plan.skipped_duplicate_conflicts += 1
                continue
            open_conflict_keys.add(key)
            plan.conflicts.append(PlannedConflict(candidate=candidate, entry=entry, score=result.score))

        # Only after every candidate was seen
        plan.outdated = [
            e for e in entries
            if e.source == EntrySource.WEBSITE and e.id not in plan.present_ids
        ]
        return plan

    @staticmethod
    def _revive(candidate: Candidate, dormant: list[KnowledgeEntry]) -> KnowledgeEntry | None:
        if not dormant:
            return None
        result = match(candidate, dormant)
        if classify(result, candidate) is Classification.UNCHANGED:
            return result.best_entry
        return None

    async def _execute(
        self,
        job_id: uuid.UUID,
        config: SyncConfiguration,
        handle: locks.LockHandle,
        deadline: float,
    ) -> WebsiteSyncJob:
        company_id = config.company_id

        await self._checkpoint(handle, deadline)
        content = await self._fetch_content(config, deadline)
        content_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()

        await self._checkpoint(handle, deadline)
        candidates = await self._extract(content, config.website_url, deadline)
        logger.info("Sync extracted %d candidate(s): company=%s job=%s", len(candidates), company_id, job_id)

        async with get_session() as session:
            entries = list((
                await session.execute(
                    select(KnowledgeEntry)
                    .where(KnowledgeEntry.company_id == company_id)
                    .where(KnowledgeEntry.status == EntryStatus.ACTIVE)
                    .order_by(KnowledgeEntry.created_at, KnowledgeEntry.id)
                )
            ).scalars().all())
            outdated_entries = list((
                await session.execute(
                    select(KnowledgeEntry)
                    .where(KnowledgeEntry.company_id == company_id)
                    .where(KnowledgeEntry.status == EntryStatus.OUTDATED)
                    .where(KnowledgeEntry.source == EntrySource.WEBSITE)
                    .order_by(KnowledgeEntry.created_at, KnowledgeEntry.id)
                )
            ).scalars().all())

            open_conflicts = (
                await session.execute(
                    select(
                        KnowledgeConflict.entry_id,
                        KnowledgeConflict.website_question,
                        KnowledgeConflict.website_answer,
                    )
                    .where(KnowledgeConflict.company_id == company_id)
                    .where(KnowledgeConflict.status == ConflictStatus.PENDING)
                )
            ).all()
            open_conflict_keys = {_conflict_key(*row) for row in open_conflicts}

            previous_hash = (
                await session.execute(
                    select(WebsiteSyncJob.content_hash)
                    .where(WebsiteSyncJob.company_id == company_id)
                    .where(WebsiteSyncJob.status == JobStatus.COMPLETED)
                    .order_by(WebsiteSyncJob.started_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()

            plan = await self._plan(
                candidates, entries, open_conflict_keys, handle, deadline, outdated_entries
            )
            await self._checkpoint(handle, deadline)

            # --- all-or-nothing batch: nothing below is visible until commit ---
            now = utcnow()
            for candidate in plan.new_candidates:
                session.add(_build_entry(company_id, candidate, config.auto_approve_website_faqs, now))
            for planned in plan.conflicts:
                session.add(_build_conflict(company_id, job_id, planned, now))
            for entry in plan.outdated:
                entry.status = EntryStatus.OUTDATED
                entry.updated_at = now
            for entry in entries:
                if entry.id in plan.reconfirmed_ids and entry.source == EntrySource.WEBSITE:
                    entry.website_last_seen_at = now
            for entry in plan.reactivated:
                entry.status = EntryStatus.ACTIVE
                entry.website_last_seen_at = now
                entry.updated_at = now

            job = (
                await session.execute(
                    select(WebsiteSyncJob).where(WebsiteSyncJob.id == job_id).with_for_update()
                )
            ).scalar_one()
            if job.status != JobStatus.RUNNING:
                # Lease was taken over and the job closed by another worker
                raise SyncCancelled(f"job is already {job.status.value}")

            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.candidates_found = len(candidates)
            job.new_faqs_found = len(plan.new_candidates)
            job.conflicts_found = len(plan.conflicts)
            job.faqs_marked_outdated = len(plan.outdated)
            job.content_hash = content_hash
            job.content_changed = previous_hash != content_hash

            stored_config = await session.get(SyncConfiguration, company_id)
            if stored_config is not None:
                stored_config.last_sync_at = now
                stored_config.last_sync_job_id = job_id

            await session.commit()

        logger.info(
            "Sync completed: company=%s job=%s candidates=%d new=%d conflicts=%d "
            "outdated=%d unchanged=%d reactivated=%d duplicate_conflicts_skipped=%d",
            company_id,
            job_id,
            job.candidates_found,
            job.new_faqs_found,
            job.conflicts_found,
            job.faqs_marked_outdated,
            len(plan.reconfirmed_ids),
            len(plan.reactivated),
            plan.skipped_duplicate_conflicts,
        )
        return job
