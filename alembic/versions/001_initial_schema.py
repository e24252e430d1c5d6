"""Initial schema - sync configuration, jobs, knowledge entries, conflicts, locks.

Revision ID: 001
Revises:
Create Date: 2026-10-17

Creates:
- sync_configurations : per-company website sync settings (PK company_id)
- website_sync_jobs   : one row per sync run, immutable once completed/failed
- knowledge_entries   : Q/A knowledge base with an optimistic version counter
- knowledge_conflicts : detected mismatches with current/website snapshots
- sync_locks          : per-company lock row with a lease (PK company_id)
- syncjobstatus, entrysource, entrystatus, conflictstatus : PostgreSQL enums

Indexes:
- ix_website_sync_jobs_company_started  : job history, newest first
- ix_knowledge_entries_company_status   : active entries of a company
- ix_knowledge_conflicts_company_status : pending conflict list / count
- ix_knowledge_conflicts_entry          : conflicts of one entry
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. Enum types (created once, referenced with create_type=False below)
    syncjobstatus = postgresql.ENUM("pending", "running", "completed", "failed", name="syncjobstatus")
    entrysource = postgresql.ENUM("manual", "website", "document", name="entrysource")
    entrystatus = postgresql.ENUM("active", "outdated", name="entrystatus")
    conflictstatus = postgresql.ENUM("pending", "resolved", "dismissed", name="conflictstatus")
    for enum_type in (syncjobstatus, entrysource, entrystatus, conflictstatus):
        enum_type.create(op.get_bind(), checkfirst=True)

    # 2. sync_configurations
    op.create_table(
        "sync_configurations",
        sa.Column("company_id", sa.String(255), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column("sync_interval_hours", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("auto_approve_website_faqs", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notify_on_conflicts", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_on_new_faqs", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("additional_urls", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_job_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("sync_interval_hours >= 1", name="ck_sync_configurations_interval"),
    )

    # 3. website_sync_jobs
    op.create_table(
        "website_sync_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.String(255), nullable=False),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM(name="syncjobstatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("candidates_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("new_faqs_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("conflicts_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("faqs_marked_outdated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("content_changed", sa.Boolean(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_website_sync_jobs_company_started",
        "website_sync_jobs",
        ["company_id", "started_at"],
    )

    # 4. knowledge_entries
    op.create_table(
        "knowledge_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.String(255), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column(
            "source",
            postgresql.ENUM(name="entrysource", create_type=False),
            nullable=False,
            server_default="manual",
        ),
        sa.Column(
            "status",
            postgresql.ENUM(name="entrystatus", create_type=False),
            nullable=False,
            server_default="active",
        ),
        sa.Column("confirmed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column("website_last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_knowledge_entries_company_status",
        "knowledge_entries",
        ["company_id", "status"],
    )

    # 5. knowledge_conflicts
    op.create_table(
        "knowledge_conflicts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("company_id", sa.String(255), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("current_source", postgresql.ENUM(name="entrysource", create_type=False), nullable=False),
        sa.Column("current_question", sa.Text(), nullable=False),
        sa.Column("current_answer", sa.Text(), nullable=False),
        sa.Column("website_question", sa.Text(), nullable=False),
        sa.Column("website_answer", sa.Text(), nullable=False),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column("similarity_score", sa.Float(), nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(name="conflictstatus", create_type=False),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("resolution", sa.String(32), nullable=True),
        sa.Column("resolved_entry_id", sa.Uuid(), nullable=True),
        sa.Column("resolved_by", sa.String(255), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_knowledge_conflicts_company_status",
        "knowledge_conflicts",
        ["company_id", "status"],
    )
    op.create_index(
        "ix_knowledge_conflicts_entry",
        "knowledge_conflicts",
        ["entry_id"],
    )

    # 6. sync_locks
    op.create_table(
        "sync_locks",
        sa.Column("company_id", sa.String(255), primary_key=True),
        sa.Column("holder", sa.String(64), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
    )


def downgrade() -> None:
    op.drop_table("sync_locks")
    op.drop_index("ix_knowledge_conflicts_entry", table_name="knowledge_conflicts")
    op.drop_index("ix_knowledge_conflicts_company_status", table_name="knowledge_conflicts")
    op.drop_table("knowledge_conflicts")
    op.drop_index("ix_knowledge_entries_company_status", table_name="knowledge_entries")
    op.drop_table("knowledge_entries")
    op.drop_index("ix_website_sync_jobs_company_started", table_name="website_sync_jobs")
    op.drop_table("website_sync_jobs")
    op.drop_table("sync_configurations")
    for name in ("conflictstatus", "entrystatus", "entrysource", "syncjobstatus"):
        op.execute(f"DROP TYPE IF EXISTS {name}")
