"""Candidate classifier: turns a match result into a sync action.

  NEW       - no existing entry reaches the match threshold
  UNCHANGED - score at or above the identity threshold and the answers are
              equivalent after normalisation; reconfirms the matched entry
  CONFLICT  - anything else that matched; a human decides what happens

Manual entries follow the same rules: a differing website answer always opens
a conflict and never overwrites the curated answer.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from kbsync.matching.similarity import MatchResult, QAPair, normalize_text

if TYPE_CHECKING:
    from kbsync.db.models import KnowledgeEntry


class Classification(str, enum.Enum):
    UNCHANGED = "unchanged"
    NEW = "new"
    CONFLICT = "conflict"


def answers_equivalent(a: str | None, b: str | None) -> bool:
    """Near-identical answers: equal after whitespace/punctuation normalisation."""
    return normalize_text(a) == normalize_text(b)


def classify(
    match_result: MatchResult,
    candidate: QAPair,
    matched_entry: KnowledgeEntry | None = None,
    *,
    identity_threshold: float | None = None,
) -> Classification:
    """Classify a candidate given its match against the knowledge base.

    ``matched_entry`` defaults to ``match_result.best_entry``.
    """
    from kbsync.config import settings  # lazy import - avoid circular deps

    if identity_threshold is None:
        identity_threshold = settings.identity_threshold

    if match_result.best_entry is None:
        return Classification.NEW
    entry = matched_entry if matched_entry is not None else match_result.best_entry

    if match_result.score >= identity_threshold and answers_equivalent(candidate.answer, entry.answer):
        return Classification.UNCHANGED

    return Classification.CONFLICT
