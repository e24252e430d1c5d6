"""Conflict resolution state machine.

A conflict starts 'pending' and moves exactly once:

    pending --keep_current|use_website|keep_both|merge--> resolved
    pending --dismiss------------------------------------> dismissed

The status change is a guarded UPDATE (WHERE status = 'pending') committed in
the same transaction as the entry mutation, so two concurrent resolutions of
the same conflict cannot both mutate the knowledge base: the loser sees
ConflictNotPending and its transaction rolls back.

The knowledge entry is re-read inside the resolving transaction right before
it is mutated.  Writes go through the ORM version counter, so an entry edited
by someone else in between raises EntryChanged instead of being overwritten.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import Awaitable, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from kbsync.collaborators.extractor import Extractor
from kbsync.db.models import (
    ConflictStatus,
    EntrySource,
    EntryStatus,
    KnowledgeConflict,
    KnowledgeEntry,
    utcnow,
)
from kbsync.db.session import get_session
from kbsync.errors import ConflictNotFound, ConflictNotPending, EntryChanged, EntryMissing

logger = logging.getLogger(__name__)


class Resolution(str, enum.Enum):
    KEEP_CURRENT = "keep_current"
    USE_WEBSITE = "use_website"
    KEEP_BOTH = "keep_both"
    MERGE = "merge"
    DISMISS = "dismiss"


RESOLUTION_DESCRIPTIONS: dict[Resolution, str] = {
    Resolution.KEEP_CURRENT: "Keep the current answer",
    Resolution.USE_WEBSITE: "Replace it with the website answer",
    Resolution.KEEP_BOTH: "Keep both as separate entries",
    Resolution.MERGE: "Merge the two answers",
    Resolution.DISMISS: "Dismiss (change nothing)",
}


# ---------------------------------------------------------------------------
# Read helpers
# ---------------------------------------------------------------------------


def _parse_uuid(value: uuid.UUID | str) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def get_conflict(company_id: str, conflict_id: uuid.UUID | str) -> KnowledgeConflict:
    """Return one conflict of the tenant.

    Raises:
        ConflictNotFound: Unknown id, malformed id, or a conflict of another tenant.
    """
    parsed = _parse_uuid(conflict_id)
    if parsed is None:
        raise ConflictNotFound(str(conflict_id))
    async with get_session() as session:
        conflict = await session.get(KnowledgeConflict, parsed)
    if conflict is None or conflict.company_id != company_id:
        raise ConflictNotFound(str(conflict_id))
    return conflict


async def list_conflicts(
    company_id: str,
    status: ConflictStatus | None = ConflictStatus.PENDING,
    limit: int = 100,
) -> list[KnowledgeConflict]:
    """List a tenant's conflicts, newest first.  status=None lists every status."""
    query = select(KnowledgeConflict).where(KnowledgeConflict.company_id == company_id)
    if status is not None:
        query = query.where(KnowledgeConflict.status == status)
    query = query.order_by(KnowledgeConflict.created_at.desc(), KnowledgeConflict.id).limit(limit)
    async with get_session() as session:
        result = await session.execute(query)
        return list(result.scalars().all())


async def count_pending_conflicts(company_id: str) -> int:
    async with get_session() as session:
        result = await session.execute(
            select(func.count())
            .select_from(KnowledgeConflict)
            .where(KnowledgeConflict.company_id == company_id)
            .where(KnowledgeConflict.status == ConflictStatus.PENDING)
        )
        return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

_Handler = Callable[
    [AsyncSession, KnowledgeConflict, "KnowledgeEntry | None", "str | None"],
    Awaitable["KnowledgeEntry | None"],
]


class ConflictResolver:
    """Applies a Resolution to a pending conflict.

    Args:
        extractor: Used by the merge strategy to synthesise one answer.
    """

    def __init__(self, extractor: Extractor) -> None:
        self.extractor = extractor
        self._handlers: dict[Resolution, _Handler] = {
            Resolution.KEEP_CURRENT: self._keep_current,
            Resolution.USE_WEBSITE: self._use_website,
            Resolution.KEEP_BOTH: self._keep_both,
            Resolution.MERGE: self._merge,
            Resolution.DISMISS: self._dismiss,
        }

    async def resolve(
        self,
        company_id: str,
        conflict_id: uuid.UUID | str,
        resolution: Resolution | str,
        *,
        resolved_by: str | None = None,
        note: str | None = None,
    ) -> KnowledgeEntry | None:
        """Resolve a pending conflict.

        Returns:
            The entry that now carries the answer (existing, updated or new),
            or None for dismiss.

        Raises:
            ValueError:         Unknown resolution value.
            ConflictNotFound:   Unknown conflict for this tenant.
            ConflictNotPending: The conflict already reached a terminal status.
            EntryMissing:       The referenced entry was deleted (all but dismiss).
            EntryChanged:       The entry was modified concurrently.
        """
        resolution = Resolution(resolution)
        conflict = await get_conflict(company_id, conflict_id)
        if conflict.status != ConflictStatus.PENDING:
            raise ConflictNotPending(str(conflict.id), conflict.status.value)

        merged_answer: str | None = None
        expected_version: int | None = None
        if resolution is Resolution.MERGE:
            # The LLM call happens outside the transaction; the version read
            # here pins which entry state the merged answer was built from.
            async with get_session() as session:
                entry = await session.get(KnowledgeEntry, conflict.entry_id)
            if entry is None:
                raise EntryMissing(str(conflict.id), str(conflict.entry_id))
            expected_version = entry.version
            merged_answer = await self.extractor.merge_answers(entry.answer, conflict.website_answer)

        async with get_session() as session:
            entry: KnowledgeEntry | None = None
            if resolution is not Resolution.DISMISS:
                entry = await session.get(KnowledgeEntry, conflict.entry_id, populate_existing=True)
                if entry is None or entry.company_id != company_id:
                    raise EntryMissing(str(conflict.id), str(conflict.entry_id))
                if expected_version is not None and entry.version != expected_version:
                    raise EntryChanged(str(conflict.id), str(entry.id))

            handler = self._handlers[resolution]
            try:
                result_entry = await handler(session, conflict, entry, merged_answer)
                await session.flush()
            except StaleDataError as exc:
                await session.rollback()
                raise EntryChanged(str(conflict.id), str(conflict.entry_id)) from exc

            now = utcnow()
            terminal = ConflictStatus.DISMISSED if resolution is Resolution.DISMISS else ConflictStatus.RESOLVED
            guarded = await session.execute(
                update(KnowledgeConflict)
                .where(KnowledgeConflict.id == conflict.id)
                .where(KnowledgeConflict.status == ConflictStatus.PENDING)
                .values(
                    status=terminal,
                    resolution=resolution.value,
                    resolved_entry_id=result_entry.id if result_entry is not None else None,
                    resolved_by=resolved_by,
                    resolved_at=now,
                    resolution_note=note,
                    updated_at=now,
                )
            )
            if guarded.rowcount != 1:
                await session.rollback()
                current = await session.get(KnowledgeConflict, conflict.id, populate_existing=True)
                raise ConflictNotPending(
                    str(conflict.id), current.status.value if current is not None else "deleted"
                )

            try:
                await session.commit()
            except StaleDataError as exc:
                await session.rollback()
                raise EntryChanged(str(conflict.id), str(conflict.entry_id)) from exc

        logger.info(
            "Conflict resolved: company=%s conflict=%s resolution=%s entry=%s by=%s",
            company_id,
            conflict.id,
            resolution.value,
            result_entry.id if result_entry is not None else None,
            resolved_by or "-",
        )
        return result_entry

    # ------------------------------------------------------------------
    # Strategy handlers
    # ------------------------------------------------------------------

    async def _keep_current(self, session, conflict, entry, merged_answer):
        return entry

    async def _use_website(self, session, conflict, entry, merged_answer):
        if conflict.website_question and conflict.website_question != entry.question:
            entry.question = conflict.website_question
        entry.answer = conflict.website_answer
        entry.source = EntrySource.WEBSITE
        entry.status = EntryStatus.ACTIVE
        entry.confirmed = True
        if conflict.website_url:
            entry.website_url = conflict.website_url
        entry.website_last_seen_at = utcnow()
        entry.updated_at = utcnow()
        return entry

    async def _keep_both(self, session, conflict, entry, merged_answer):
        now = utcnow()
        new_entry = KnowledgeEntry(
            company_id=conflict.company_id,
            question=conflict.website_question,
            answer=conflict.website_answer,
            source=EntrySource.WEBSITE,
            status=EntryStatus.ACTIVE,
            confirmed=True,
            website_url=conflict.website_url,
            website_last_seen_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(new_entry)
        return new_entry

    async def _merge(self, session, conflict, entry, merged_answer):
        entry.answer = merged_answer
        entry.status = EntryStatus.ACTIVE
        entry.updated_at = utcnow()
        return entry

    async def _dismiss(self, session, conflict, entry, merged_answer):
        return None
