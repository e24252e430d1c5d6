"""Similarity matcher: scores a website candidate against existing entries.

The score is a weighted blend of question similarity and answer similarity.
Question similarity dominates: two entries answering the same question with
different answers are exactly what the sync engine needs to surface, while two
entries with similar answers to different questions are not a conflict.

Text similarity is the maximum of two lexical measures over normalised text:
  - word overlap: |A ∩ B| / max(|A|, |B|) over words longer than two characters
  - Sørensen-Dice over character trigrams, which tolerates inflected forms
    ("åpningstider" / "åpningstidene") and short numeric answers

Everything here is pure and deterministic: the same inputs always produce the
same best entry and score.
"""

from __future__ import annotations

import datetime
import re
import unicodedata
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Sequence

from kbsync.db.models import as_utc

if TYPE_CHECKING:
    from kbsync.db.models import KnowledgeEntry

_PUNCT_RE = re.compile(r"[^\w\s]|_")
_WS_RE = re.compile(r"\s+")

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)


class QAPair(Protocol):
    question: str
    answer: str


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one candidate against the knowledge base.

    best_entry is None when no entry reaches the match threshold; score is
    still the best score seen so callers can log near misses.
    """

    best_entry: KnowledgeEntry | None
    score: float
    question_score: float = 0.0
    answer_score: float = 0.0


def normalize_text(text: str | None) -> str:
    """NFKC-normalise, casefold, drop punctuation and collapse whitespace."""
    text = unicodedata.normalize("NFKC", text or "").casefold()
    text = _PUNCT_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def _words(normalized: str) -> set[str]:
    return {w for w in normalized.split(" ") if len(w) > 2}


def _trigrams(normalized: str) -> set[str]:
    if len(normalized) < 3:
        return {normalized} if normalized else set()
    return {normalized[i:i + 3] for i in range(len(normalized) - 2)}


def word_overlap(a: str, b: str) -> float:
    words_a, words_b = _words(a), _words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


def trigram_dice(a: str, b: str) -> float:
    grams_a, grams_b = _trigrams(a), _trigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    return 2.0 * len(grams_a & grams_b) / (len(grams_a) + len(grams_b))


def text_similarity(a: str | None, b: str | None) -> float:
    """Return a similarity in [0, 1] between two free-text strings."""
    norm_a, norm_b = normalize_text(a), normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    return max(word_overlap(norm_a, norm_b), trigram_dice(norm_a, norm_b))


def score_pair(
    candidate: QAPair,
    entry: QAPair,
    question_weight: float,
    answer_weight: float,
) -> tuple[float, float, float]:
    """Return (combined, question, answer) similarity for one pair."""
    q_sim = text_similarity(candidate.question, entry.question)
    a_sim = text_similarity(candidate.answer, entry.answer)
    combined = question_weight * q_sim + answer_weight * a_sim
    return max(0.0, min(1.0, combined)), q_sim, a_sim


def match(
    candidate: QAPair,
    existing_entries: Sequence[KnowledgeEntry],
    *,
    match_threshold: float | None = None,
    question_weight: float | None = None,
    answer_weight: float | None = None,
) -> MatchResult:
    """Find the single best-matching entry for a candidate.

    Args:
        candidate:        Object with ``question`` and ``answer`` attributes.
        existing_entries: Entries to compare against (typically the tenant's
                          active entries).
        match_threshold:  Minimum combined score for a match. Defaults to
                          settings.match_threshold.
        question_weight:  Weight of question similarity (default settings).
        answer_weight:    Weight of answer similarity (default settings).

    Returns:
        MatchResult with the highest-scoring entry, or best_entry=None when
        nothing reaches the threshold.  Ties on score go to the most recently
        updated entry, then to the highest id.
    """
    from kbsync.config import settings  # lazy import - avoid circular deps

    if match_threshold is None:
        match_threshold = settings.match_threshold
    if question_weight is None:
        question_weight = settings.question_weight
    if answer_weight is None:
        answer_weight = settings.answer_weight

    best_key = None
    best: MatchResult = MatchResult(best_entry=None, score=0.0)

    for entry in existing_entries:
        combined, q_sim, a_sim = score_pair(candidate, entry, question_weight, answer_weight)
        key = (combined, as_utc(entry.updated_at) or _EPOCH, str(entry.id))
        if best_key is None or key > best_key:
            best_key = key
            best = MatchResult(best_entry=entry, score=combined, question_score=q_sim, answer_score=a_sim)

    if best.best_entry is not None and best.score < match_threshold:
        return MatchResult(
            best_entry=None,
            score=best.score,
            question_score=best.question_score,
            answer_score=best.answer_score,
        )
    return best
