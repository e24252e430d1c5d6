"""CLI review command for pending knowledge conflicts.

Provides the `kbsync review` command that walks an operator through the
pending conflicts of one company.  Each conflict is shown as a side-by-side
panel (current answer vs. website answer) and resolved with one of the five
resolutions, or skipped for later.

Usage:
    kbsync review --company-id <company_id> [--limit <n>] [--reviewer <name>]

    # Or set KBSYNC_COMPANY_ID in the environment:
    export KBSYNC_COMPANY_ID=acme
    kbsync review
"""

from __future__ import annotations

import questionary
import typer
from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel

from kbsync.conflict.resolver import RESOLUTION_DESCRIPTIONS, Resolution, list_conflicts
from kbsync.db.models import ConflictStatus
from kbsync.db.session import run_blocking as run
from kbsync.errors import ConflictNotPending, EntryChanged, EntryMissing

# Module-level console used by the review command
console = Console()

_SKIP = "Skip (review later)"


def _score_label(score: float) -> str:
    pct = round(score * 100)
    if pct >= 80:
        return f"[yellow]{pct}% similar[/yellow]"
    return f"[dim]{pct}% similar[/dim]"


def review(
    company_id: str = typer.Option(
        ...,
        "--company-id",
        envvar="KBSYNC_COMPANY_ID",
        help="Company to review pending conflicts for.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        help="Maximum number of conflicts to review in this session.",
    ),
    reviewer: str = typer.Option(
        "cli",
        "--reviewer",
        help="Name recorded as resolved_by.",
    ),
) -> None:
    """Review pending knowledge conflicts and resolve them.

    For each conflict you can keep the current answer, replace it with the
    website answer, keep both, merge them, dismiss the conflict, or skip it.
    """
    from kbsync.services import get_resolver  # noqa: PLC0415

    pending = run(lambda: list_conflicts(company_id, ConflictStatus.PENDING, limit))

    if not pending:
        console.print(Panel(
            "[green]All caught up! No pending conflicts.[/green]",
            title="kbsync",
            border_style="green",
        ))
        return

    console.print(f"\n[bold]You have {len(pending)} conflict(s) to review[/bold]\n")

    resolver = get_resolver()
    choice_map = {RESOLUTION_DESCRIPTIONS[r]: r for r in Resolution}
    counts = {r: 0 for r in Resolution}
    skipped = 0
    failed = 0

    for idx, conflict in enumerate(pending):
        current = Panel(
            f"[bold]{conflict.current_question}[/bold]\n\n{conflict.current_answer}",
            title=f"Current ({conflict.current_source.value})",
            border_style="blue",
        )
        website = Panel(
            f"[bold]{conflict.website_question}[/bold]\n\n{conflict.website_answer}",
            title="Website",
            border_style="magenta",
        )
        console.print(
            f"[bold]Conflict {idx + 1}/{len(pending)}[/bold] · {_score_label(conflict.similarity_score)}"
            + (f" · [dim]{conflict.website_url}[/dim]" if conflict.website_url else "")
        )
        console.print(Columns([current, website], equal=True, expand=True))

        action = questionary.select(
            "How should this conflict be resolved?",
            choices=list(choice_map) + [_SKIP],
        ).ask()

        # Ctrl+C or EOF
        if action is None:
            console.print("\n[yellow]Review interrupted.[/yellow]")
            break

        if action == _SKIP:
            skipped += 1
            continue

        resolution = choice_map[action]
        try:
            run(lambda: resolver.resolve(
                company_id, conflict.id, resolution, resolved_by=reviewer
            ))
        except (ConflictNotPending, EntryChanged, EntryMissing) as exc:
            failed += 1
            console.print(f"[red]{exc}[/red]\n")
            continue

        counts[resolution] += 1
        console.print(f"[green]{RESOLUTION_DESCRIPTIONS[resolution]} - done.[/green]\n")

    summary = "\n".join(
        f"{RESOLUTION_DESCRIPTIONS[r]}: {n}" for r, n in counts.items()
    )
    console.print(Panel(
        f"[bold green]Review session complete![/bold green]\n\n"
        f"{summary}\n"
        f"Skipped: {skipped}\n"
        f"Failed:  {failed}",
        title="Session Summary",
        border_style="green",
    ))
