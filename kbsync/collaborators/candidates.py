"""Validation boundary for extracted question/answer candidates.

The extractor returns loosely-typed JSON.  Everything that reaches the matcher
goes through coerce_candidates() first: items that are not objects, lack a
question or answer, or carry non-string values are skipped with a warning
instead of propagating into the diff.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kbsync.matching.similarity import normalize_text

logger = logging.getLogger(__name__)


class Candidate(BaseModel):
    """A question/answer pair extracted from the website."""

    question: str = Field(min_length=1, max_length=2000)
    answer: str = Field(min_length=1, max_length=10000)
    source_url: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    @field_validator("question", "answer", mode="before")
    @classmethod
    def _require_string(cls, value: Any) -> Any:
        # Refuse numbers/lists instead of letting pydantic stringify them
        if not isinstance(value, str):
            raise ValueError("must be a string")
        return value


def coerce_candidates(raw: Iterable[Any], default_source_url: str | None = None) -> list[Candidate]:
    """Validate raw extractor output into Candidates.

    Malformed items are skipped.  Duplicate questions (after normalisation)
    keep their first occurrence, so extraction order is preserved.

    Args:
        raw:                Iterable of items as returned by the extractor.
        default_source_url: Used when an item does not carry its own source_url.

    Returns:
        List of valid, de-duplicated candidates in extraction order.
    """
    candidates: list[Candidate] = []
    seen_questions: set[str] = set()
    skipped = 0

    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            logger.warning("Skipping extracted candidate #%d: not an object (%s)", index, type(item).__name__)
            skipped += 1
            continue
        data = dict(item)
        if default_source_url and not data.get("source_url"):
            data["source_url"] = default_source_url
        try:
            candidate = Candidate.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "Skipping extracted candidate #%d: %d validation error(s): %s",
                index,
                exc.error_count(),
                "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()),
            )
            skipped += 1
            continue

        key = normalize_text(candidate.question)
        if not key:
            skipped += 1
            continue
        if key in seen_questions:
            logger.debug("Dropping duplicate extracted question: %.80s", candidate.question)
            continue
        seen_questions.add(key)
        candidates.append(candidate)

    if skipped:
        logger.info("Candidate validation: %d kept, %d malformed skipped", len(candidates), skipped)
    return candidates
