"""Exception taxonomy for kbsync.

Configuration errors are raised before a job exists and are never recorded as
run failures.  Transient I/O errors (fetch/extract) and persistence errors are
caught at the run boundary and written to the job.  Concurrency errors are
caller-facing and recoverable; the engine needs no cleanup after them.
"""

from __future__ import annotations


class KBSyncError(Exception):
    """Base class for all kbsync errors."""


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class NotConfigured(KBSyncError):
    """Sync is disabled for the tenant or no website URL is configured."""

    def __init__(self, company_id: str, reason: str) -> None:
        super().__init__(f"Website sync not configured for company '{company_id}': {reason}")
        self.company_id = company_id
        self.reason = reason


class InvalidSyncConfiguration(KBSyncError):
    """A configuration update violated the enabled/URL invariant."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


# ---------------------------------------------------------------------------
# Transient I/O errors (recorded on the job)
# ---------------------------------------------------------------------------


class FetchError(KBSyncError):
    """The website could not be fetched.

    kind is one of "timeout", "blocked", "not_found" or "upstream".
    """

    def __init__(self, kind: str, url: str, detail: str = "") -> None:
        message = f"Fetch failed ({kind}) for {url}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.kind = kind
        self.url = url


class ExtractionError(KBSyncError):
    """The extractor failed to turn page content into candidates."""


# ---------------------------------------------------------------------------
# Run control
# ---------------------------------------------------------------------------


class SyncCancelled(KBSyncError):
    """Raised inside a run when cancellation or the duration limit is hit."""

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


# ---------------------------------------------------------------------------
# Concurrency errors (caller-facing, recoverable)
# ---------------------------------------------------------------------------


class AlreadyRunning(KBSyncError):
    """Another sync run holds the tenant lock."""

    def __init__(self, company_id: str) -> None:
        super().__init__(f"A website sync is already running for company '{company_id}'")
        self.company_id = company_id


class ConflictNotPending(KBSyncError):
    """The conflict already reached a terminal status."""

    def __init__(self, conflict_id: str, status: str) -> None:
        super().__init__(f"Conflict '{conflict_id}' is already {status}")
        self.conflict_id = conflict_id
        self.status = status


class EntryMissing(KBSyncError):
    """The knowledge entry a conflict refers to was deleted."""

    def __init__(self, conflict_id: str, entry_id: str) -> None:
        super().__init__(
            f"Knowledge entry '{entry_id}' referenced by conflict '{conflict_id}' no longer exists"
        )
        self.conflict_id = conflict_id
        self.entry_id = entry_id


class EntryChanged(KBSyncError):
    """The knowledge entry was modified concurrently while resolving."""

    def __init__(self, conflict_id: str, entry_id: str) -> None:
        super().__init__(
            f"Knowledge entry '{entry_id}' was modified while resolving conflict '{conflict_id}'"
        )
        self.conflict_id = conflict_id
        self.entry_id = entry_id


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------


class ConflictNotFound(KBSyncError):
    def __init__(self, conflict_id: str) -> None:
        super().__init__(f"Conflict '{conflict_id}' not found")
        self.conflict_id = conflict_id


class JobNotFound(KBSyncError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Sync job '{job_id}' not found")
        self.job_id = job_id
