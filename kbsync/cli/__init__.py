"""kbsync CLI - operate website knowledge sync.

Entry point registered in pyproject.toml:
    kbsync = "kbsync.cli:app"

Commands:
    kbsync sync     - run a sync for one company now
    kbsync jobs     - recent sync jobs of a company
    kbsync tick     - run one scheduler tick
    kbsync review   - resolve pending conflicts interactively

Usage:
    kbsync --help
    kbsync review --company-id <company_id>
    KBSYNC_COMPANY_ID=acme kbsync sync
"""

import typer

from kbsync.cli.commands import jobs, sync, tick
from kbsync.cli.review import review

app = typer.Typer(
    name="kbsync",
    help="kbsync CLI - website knowledge sync and conflict review",
    no_args_is_help=True,
)

app.command()(sync)
app.command()(jobs)
app.command()(tick)
app.command()(review)
