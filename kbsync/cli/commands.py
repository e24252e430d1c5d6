"""Operator commands: manual sync, job history, scheduler tick."""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import select

from kbsync.db.models import JobStatus, WebsiteSyncJob
from kbsync.db.session import get_session, run_blocking as run
from kbsync.errors import AlreadyRunning, NotConfigured

console = Console()

_STATUS_STYLE = {
    JobStatus.PENDING: "dim",
    JobStatus.RUNNING: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def sync(
    company_id: str = typer.Option(..., "--company-id", envvar="KBSYNC_COMPANY_ID", help="Company to sync."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Run a website sync for one company now and print the result."""
    from kbsync.services import get_orchestrator  # noqa: PLC0415
    from kbsync.sync.scheduler import trigger_manual  # noqa: PLC0415

    _configure_logging(verbose)
    try:
        job = run(lambda: trigger_manual(get_orchestrator(), company_id))
    except (AlreadyRunning, NotConfigured) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    if job.status == JobStatus.COMPLETED:
        console.print(
            f"[green]Sync completed[/green] (job {job.id})\n"
            f"  FAQs on website: {job.candidates_found}\n"
            f"  New FAQs:        {job.new_faqs_found}\n"
            f"  Conflicts:       {job.conflicts_found}\n"
            f"  Marked outdated: {job.faqs_marked_outdated}"
        )
    else:
        console.print(f"[red]Sync failed[/red] (job {job.id}): {job.error}")
        raise typer.Exit(code=1)


def jobs(
    company_id: str = typer.Option(..., "--company-id", envvar="KBSYNC_COMPANY_ID", help="Company to list jobs for."),
    limit: int = typer.Option(10, "--limit", help="Number of jobs to show."),
) -> None:
    """Show the most recent sync jobs of a company."""

    async def _load() -> list[WebsiteSyncJob]:
        async with get_session() as session:
            result = await session.execute(
                select(WebsiteSyncJob)
                .where(WebsiteSyncJob.company_id == company_id)
                .order_by(WebsiteSyncJob.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    rows = run(_load)
    if not rows:
        console.print("[dim]No sync jobs yet.[/dim]")
        return

    table = Table(title=f"Sync jobs - {company_id}")
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("FAQs", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Conflicts", justify="right")
    table.add_column("Outdated", justify="right")
    table.add_column("Error")
    for job in rows:
        style = _STATUS_STYLE.get(job.status, "")
        table.add_row(
            job.started_at.strftime("%Y-%m-%d %H:%M"),
            f"[{style}]{job.status.value}[/{style}]" if style else job.status.value,
            str(job.candidates_found),
            str(job.new_faqs_found),
            str(job.conflicts_found),
            str(job.faqs_marked_outdated),
            (job.error or "")[:60],
        )
    console.print(table)


def tick(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Run one scheduler tick: sync every company whose interval has elapsed."""
    from kbsync.services import get_orchestrator  # noqa: PLC0415
    from kbsync.sync.scheduler import run_scheduler_tick  # noqa: PLC0415

    _configure_logging(verbose)
    result = run(lambda: run_scheduler_tick(get_orchestrator()))

    console.print(
        f"Completed: {len(result.completed)} · Failed: {len(result.failed)} · "
        f"Running: {len(result.skipped_running)} · Not due: {len(result.not_due)}"
    )
    for company_id, error in result.failed.items():
        console.print(f"  [red]{company_id}[/red]: {error}")
