"""Per-tenant sync lock backed by the sync_locks table.

The lock is a row keyed by company_id, so it holds across worker processes
and hosts, not just inside one event loop:

- acquire: INSERT the row.  A primary-key violation means someone else holds
  it.  If the holder's lease (expires_at) has run out, the row is taken over
  with a conditional UPDATE, which only one contender can win.
- release: DELETE the row, matched on the holder token so a worker whose lease
  was taken over cannot release the new holder's lock.
- cancel: set cancel_requested on the row; the running sync polls it between
  steps.

The lease is max_run_seconds + lock_grace_seconds.  A live run never outlives
max_run_seconds, so an expired lease means the holder died mid-run.
"""

from __future__ import annotations

import datetime
import logging
import secrets
import uuid
from dataclasses import dataclass

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from kbsync.db.models import SyncLock, as_utc, utcnow
from kbsync.db.session import get_session
from kbsync.errors import AlreadyRunning

logger = logging.getLogger(__name__)


@dataclass
class LockHandle:
    """Proof of lock ownership returned by acquire_lock()."""

    company_id: str
    holder: str
    expires_at: datetime.datetime
    took_over: bool = False


async def acquire_lock(company_id: str, lease_seconds: float) -> LockHandle:
    """Acquire the exclusive sync lock for a tenant.

    Args:
        company_id:    Tenant to lock.
        lease_seconds: How long the lock stays valid without being released.

    Returns:
        LockHandle identifying this holder.  ``took_over`` is True when a stale
        lock from a dead worker was replaced.

    Raises:
        AlreadyRunning: If another live holder owns the lock.
    """
    holder = secrets.token_hex(16)
    now = utcnow()
    expires_at = now + datetime.timedelta(seconds=lease_seconds)

    async with get_session() as session:
        session.add(SyncLock(
            company_id=company_id,
            holder=holder,
            acquired_at=now,
            expires_at=expires_at,
            cancel_requested=False,
        ))
        try:
            await session.commit()
            logger.debug("Sync lock acquired: company=%s holder=%s", company_id, holder[:8])
            return LockHandle(company_id=company_id, holder=holder, expires_at=expires_at)
        except IntegrityError:
            await session.rollback()

    # Row exists - take it over only if the lease has expired
    async with get_session() as session:
        result = await session.execute(
            update(SyncLock)
            .where(SyncLock.company_id == company_id)
            .where(SyncLock.expires_at < now)
            .values(
                holder=holder,
                job_id=None,
                acquired_at=now,
                expires_at=expires_at,
                cancel_requested=False,
            )
        )
        await session.commit()

    if result.rowcount != 1:
        raise AlreadyRunning(company_id)

    logger.warning("Sync lock for company=%s had an expired lease - taken over", company_id)
    return LockHandle(company_id=company_id, holder=holder, expires_at=expires_at, took_over=True)


async def attach_job(handle: LockHandle, job_id: uuid.UUID) -> None:
    """Record which job the lock protects (informational, for status views)."""
    async with get_session() as session:
        await session.execute(
            update(SyncLock)
            .where(SyncLock.company_id == handle.company_id)
            .where(SyncLock.holder == handle.holder)
            .values(job_id=job_id)
        )
        await session.commit()


async def release_lock(handle: LockHandle) -> bool:
    """Release the lock if this handle still owns it.

    Returns:
        True if the row was deleted, False if the lock had been taken over.
    """
    async with get_session() as session:
        result = await session.execute(
            delete(SyncLock)
            .where(SyncLock.company_id == handle.company_id)
            .where(SyncLock.holder == handle.holder)
        )
        await session.commit()

    released = result.rowcount == 1
    if not released:
        logger.warning(
            "Sync lock for company=%s was no longer held by %s at release",
            handle.company_id,
            handle.holder[:8],
        )
    return released


async def cancel_requested(handle: LockHandle) -> bool:
    """Return True if cancellation was requested (or the lock was lost)."""
    async with get_session() as session:
        row = await session.execute(
            select(SyncLock.holder, SyncLock.cancel_requested)
            .where(SyncLock.company_id == handle.company_id)
        )
        current = row.one_or_none()

    if current is None or current.holder != handle.holder:
        return True
    return bool(current.cancel_requested)


async def request_cancel(company_id: str) -> bool:
    """Ask the running sync for a tenant to stop at its next checkpoint.

    Returns:
        True if a lock row existed (a run was in progress), False otherwise.
    """
    async with get_session() as session:
        result = await session.execute(
            update(SyncLock)
            .where(SyncLock.company_id == company_id)
            .values(cancel_requested=True)
        )
        await session.commit()

    requested = result.rowcount == 1
    if requested:
        logger.info("Cancellation requested for running sync: company=%s", company_id)
    return requested


async def is_locked(company_id: str, now: datetime.datetime | None = None) -> bool:
    """True if a live (unexpired) lock exists for the tenant."""
    now = now or utcnow()
    async with get_session() as session:
        expires_at = (
            await session.execute(
                select(SyncLock.expires_at).where(SyncLock.company_id == company_id)
            )
        ).scalar_one_or_none()
    return expires_at is not None and as_utc(expires_at) > now


async def live_locked_companies(now: datetime.datetime | None = None) -> set[str]:
    """Return the tenants that currently hold a live lock."""
    now = now or utcnow()
    async with get_session() as session:
        rows = (
            await session.execute(select(SyncLock.company_id, SyncLock.expires_at))
        ).all()
    return {company_id for company_id, expires_at in rows if as_utc(expires_at) > now}
