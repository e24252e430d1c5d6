"""SQLAlchemy ORM models for kbsync.

Tables:
- sync_configurations : one row per tenant, website sync settings
- website_sync_jobs   : append-only log of sync runs (immutable once terminal)
- knowledge_entries   : the tenant's Q/A knowledge base (shared with the dashboard)
- knowledge_conflicts : mismatches between an entry and extracted website content
- sync_locks          : explicit per-tenant lock record with a lease

Column types are the generic SQLAlchemy ones (Uuid, JSON, DateTime(timezone=True))
so the schema runs on PostgreSQL in production and on SQLite in tests.
"""

from __future__ import annotations

import datetime
import enum
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Normalise a datetime read back from the database to aware UTC.

    SQLite drops tzinfo on the way out; PostgreSQL timestamptz keeps it.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _enum(enum_cls: type[enum.Enum], name: str) -> sa.Enum:
    # Persist the lowercase .value strings, not the member names
    return sa.Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class EntrySource(str, enum.Enum):
    MANUAL = "manual"
    WEBSITE = "website"
    DOCUMENT = "document"


class EntryStatus(str, enum.Enum):
    ACTIVE = "active"
    OUTDATED = "outdated"


class ConflictStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class SyncConfiguration(Base):
    """Per-tenant website sync settings.

    Invariant (enforced by kbsync.sync.config_service): when enabled is true,
    website_url is a non-empty absolute http(s) URL.
    """

    __tablename__ = "sync_configurations"

    company_id: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    enabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    website_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    sync_interval_hours: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    auto_approve_website_faqs: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    notify_on_conflicts: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    notify_on_new_faqs: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    additional_urls: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    last_sync_at: Mapped[datetime.datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    last_sync_job_id: Mapped[uuid.UUID | None] = mapped_column(sa.Uuid, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class WebsiteSyncJob(Base):
    """One execution record of the sync pipeline for one tenant."""

    __tablename__ = "website_sync_jobs"
    __table_args__ = (
        sa.Index("ix_website_sync_jobs_company_started", "company_id", "started_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    website_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    status: Mapped[JobStatus] = mapped_column(
        _enum(JobStatus, "syncjobstatus"), nullable=False, default=JobStatus.PENDING
    )
    started_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime.datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    candidates_found: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    new_faqs_found: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    conflicts_found: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    faqs_marked_outdated: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    content_hash: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    content_changed: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)
    error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status not in ACTIVE_JOB_STATUSES


class KnowledgeEntry(Base):
    """A question/answer pair served to the customer-service agent.

    ``version`` is SQLAlchemy's optimistic-concurrency counter: an UPDATE
    issued through the ORM only matches the row version that was loaded, so a
    concurrent edit surfaces as StaleDataError instead of being overwritten.
    """

    __tablename__ = "knowledge_entries"
    __table_args__ = (
        sa.Index("ix_knowledge_entries_company_status", "company_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    question: Mapped[str] = mapped_column(sa.Text, nullable=False)
    answer: Mapped[str] = mapped_column(sa.Text, nullable=False)
    source: Mapped[EntrySource] = mapped_column(
        _enum(EntrySource, "entrysource"), nullable=False, default=EntrySource.MANUAL
    )
    status: Mapped[EntryStatus] = mapped_column(
        _enum(EntryStatus, "entrystatus"), nullable=False, default=EntryStatus.ACTIVE
    )
    confirmed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    website_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    website_last_seen_at: Mapped[datetime.datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}


class KnowledgeConflict(Base):
    """A detected mismatch awaiting a human (or rule) decision.

    The current_* and website_* columns are a snapshot taken at detection time
    and are never updated afterwards.
    """

    __tablename__ = "knowledge_conflicts"
    __table_args__ = (
        sa.Index("ix_knowledge_conflicts_company_status", "company_id", "status"),
        sa.Index("ix_knowledge_conflicts_entry", "entry_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    job_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False)
    entry_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False)
    current_source: Mapped[EntrySource] = mapped_column(_enum(EntrySource, "entrysource"), nullable=False)
    current_question: Mapped[str] = mapped_column(sa.Text, nullable=False)
    current_answer: Mapped[str] = mapped_column(sa.Text, nullable=False)
    website_question: Mapped[str] = mapped_column(sa.Text, nullable=False)
    website_answer: Mapped[str] = mapped_column(sa.Text, nullable=False)
    website_url: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    similarity_score: Mapped[float] = mapped_column(sa.Float, nullable=False)
    status: Mapped[ConflictStatus] = mapped_column(
        _enum(ConflictStatus, "conflictstatus"), nullable=False, default=ConflictStatus.PENDING
    )
    resolution: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    resolved_entry_id: Mapped[uuid.UUID | None] = mapped_column(sa.Uuid, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    resolved_at: Mapped[datetime.datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class SyncLock(Base):
    """Exclusive per-tenant lock; the primary key makes a second INSERT fail."""

    __tablename__ = "sync_locks"

    company_id: Mapped[str] = mapped_column(sa.String(255), primary_key=True)
    holder: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    job_id: Mapped[uuid.UUID | None] = mapped_column(sa.Uuid, nullable=True)
    acquired_at: Mapped[datetime.datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime.datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    cancel_requested: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
