"""Tests for the similarity matcher (pure, no database)."""

import datetime
import uuid
from types import SimpleNamespace

import pytest

from kbsync.matching.similarity import (
    match,
    normalize_text,
    text_similarity,
    trigram_dice,
    word_overlap,
)


def _entry(question, answer, updated_at=None, entry_id=None):
    return SimpleNamespace(
        id=entry_id or uuid.uuid4(),
        question=question,
        answer=answer,
        updated_at=updated_at or datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc),
    )


def _candidate(question, answer):
    return SimpleNamespace(question=question, answer=answer)


class TestNormalizeText:
    def test_casefold_and_punctuation(self):
        assert normalize_text("  Hva er ÅPNINGSTIDENE?! ") == "hva er åpningstidene"

    def test_dashes_and_colons_become_spaces(self):
        assert normalize_text("09:00–16:00") == "09 00 16 00"

    def test_none_is_empty(self):
        assert normalize_text(None) == ""


class TestTextSimilarity:
    def test_identical_after_normalisation(self):
        assert text_similarity("Har dere parkering?", "har dere parkering") == 1.0

    def test_empty_side_scores_zero(self):
        assert text_similarity("", "noe") == 0.0

    def test_word_overlap_ignores_short_words(self):
        # "er" and "vi" are too short to count
        assert word_overlap("vi er stengt", "er vi stengt") == 1.0

    def test_trigram_dice_tolerates_inflection(self):
        score = trigram_dice("åpningstider", "hva er åpningstidene")
        assert 0.6 < score < 0.7

    def test_unrelated_questions_score_low(self):
        assert text_similarity("Hva koster frakt?", "Har dere parkering?") < 0.1


class TestMatch:
    def test_no_entries(self):
        result = match(_candidate("Hva koster frakt?", "99 kr"), [])
        assert result.best_entry is None
        assert result.score == 0.0

    def test_identical_pair_scores_one(self):
        entry = _entry("Hvor ligger butikken?", "Storgata 1, Oslo.")
        result = match(_candidate("Hvor ligger butikken?", "Storgata 1, Oslo."), [entry])
        assert result.best_entry is entry
        assert result.score == pytest.approx(1.0)

    def test_below_threshold_keeps_score_but_no_entry(self):
        entry = _entry("Hva koster frakt?", "Frakt koster 99 kr.")
        result = match(_candidate("Har dere parkering?", "Ja, gratis parkering bak bygget."), [entry])
        assert result.best_entry is None
        assert 0.0 <= result.score < 0.55

    def test_question_weight_dominates(self):
        same_question = _entry("Hva er åpningstidene?", "Vi har åpent 08:00–16:00.")
        same_answer = _entry("Når kan jeg ringe kundeservice?", "Vi har åpent 09:00–17:00.")
        result = match(
            _candidate("Hva er åpningstidene?", "Vi har åpent 09:00–17:00."),
            [same_answer, same_question],
        )
        assert result.best_entry is same_question

    def test_opening_hours_scenario_is_between_thresholds(self):
        entry = _entry("Åpningstider?", "09:00–16:00")
        result = match(_candidate("Hva er åpningstidene?", "09:00–17:00"), [entry])
        assert result.best_entry is entry
        assert 0.55 <= result.score < 0.92

    def test_explicit_threshold_overrides_settings(self):
        entry = _entry("Åpningstider?", "09:00–16:00")
        result = match(_candidate("Hva er åpningstidene?", "09:00–17:00"), [entry], match_threshold=0.9)
        assert result.best_entry is None

    def test_tie_goes_to_most_recently_updated(self):
        old = _entry("Har dere parkering?", "Ja.", updated_at=datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc))
        new = _entry("Har dere parkering?", "Ja.", updated_at=datetime.datetime(2026, 6, 1, tzinfo=datetime.timezone.utc))
        candidate = _candidate("Har dere parkering?", "Ja.")
        assert match(candidate, [old, new]).best_entry is new
        assert match(candidate, [new, old]).best_entry is new

    def test_full_tie_goes_to_highest_id(self):
        low = _entry("Har dere parkering?", "Ja.", entry_id=uuid.UUID(int=1))
        high = _entry("Har dere parkering?", "Ja.", entry_id=uuid.UUID(int=2))
        candidate = _candidate("Har dere parkering?", "Ja.")
        assert match(candidate, [high, low]).best_entry is high
        assert match(candidate, [low, high]).best_entry is high

    def test_naive_timestamps_compare_with_aware(self):
        naive = _entry("Har dere parkering?", "Ja.", updated_at=datetime.datetime(2026, 6, 1))
        aware = _entry("Har dere parkering?", "Ja.", updated_at=datetime.datetime(2025, 6, 1, tzinfo=datetime.timezone.utc))
        assert match(_candidate("Har dere parkering?", "Ja."), [aware, naive]).best_entry is naive
