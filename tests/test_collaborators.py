"""Tests for the collaborator boundary: candidate validation, HTML text, fetcher, extractor."""

from unittest.mock import AsyncMock

import httpx
import pytest

from kbsync.collaborators.candidates import Candidate, coerce_candidates
from kbsync.collaborators.extractor import LLMExtractor, concatenate_answers, parse_faq_response
from kbsync.collaborators.fetcher import HttpFetcher, html_to_text
from kbsync.errors import ExtractionError, FetchError

EXT = "kbsync.collaborators.extractor"


# ── Candidate validation ────────────────────────────────────────────


class TestCoerceCandidates:
    def test_valid_items_keep_extraction_order(self):
        result = coerce_candidates([
            {"question": "Har dere parkering?", "answer": "Ja."},
            {"question": "Tar dere Vipps?", "answer": "Ja, og kort."},
        ])
        assert [c.question for c in result] == ["Har dere parkering?", "Tar dere Vipps?"]
        assert all(isinstance(c, Candidate) for c in result)

    @pytest.mark.parametrize("item", [
        "just a string",
        None,
        {"question": "Mangler svar"},
        {"answer": "Mangler spørsmål"},
        {"question": "", "answer": "Tomt spørsmål"},
        {"question": "   ", "answer": "Bare mellomrom"},
        {"question": 42, "answer": "Tall"},
        {"question": "Liste?", "answer": ["a", "b"]},
        {"question": "Tillit?", "answer": "Ja", "confidence": 7},
    ])
    def test_malformed_items_are_skipped(self, item):
        good = {"question": "Har dere parkering?", "answer": "Ja."}
        result = coerce_candidates([item, good])
        assert [c.question for c in result] == ["Har dere parkering?"]

    def test_whitespace_is_stripped(self):
        [candidate] = coerce_candidates([{"question": "  Tar dere Vipps? ", "answer": "\nJa.\n"}])
        assert candidate.question == "Tar dere Vipps?"
        assert candidate.answer == "Ja."

    def test_duplicate_questions_keep_first(self):
        result = coerce_candidates([
            {"question": "Tar dere Vipps?", "answer": "Ja."},
            {"question": "tar dere vipps", "answer": "Nei."},
        ])
        assert len(result) == 1
        assert result[0].answer == "Ja."

    def test_default_source_url_fills_missing(self):
        result = coerce_candidates(
            [
                {"question": "A?", "answer": "a"},
                {"question": "B?", "answer": "b", "source_url": "https://example.no/faq"},
            ],
            default_source_url="https://example.no",
        )
        assert [c.source_url for c in result] == ["https://example.no", "https://example.no/faq"]

    def test_unknown_keys_are_ignored(self):
        [candidate] = coerce_candidates([{"question": "A?", "answer": "a", "category": "misc"}])
        assert candidate.question == "A?"


class TestParseFaqResponse:
    def test_object_with_faqs(self):
        raw = '{"faqs": [{"question": "A?", "answer": "a", "confidence": 0.9}]}'
        assert parse_faq_response(raw) == [{"question": "A?", "answer": "a", "confidence": 0.9}]

    def test_markdown_fences_and_chatter(self):
        raw = 'Here you go:\n```json\n{"faqs": [{"question": "A?", "answer": "a"}]}\n```'
        assert parse_faq_response(raw) == [{"question": "A?", "answer": "a"}]

    def test_bare_list(self):
        assert parse_faq_response('[{"question": "A?", "answer": "a"}]') == [{"question": "A?", "answer": "a"}]

    def test_missing_faqs_key_is_empty(self):
        assert parse_faq_response('{"items": []}') == []

    @pytest.mark.parametrize("raw", ["no json here", "{not valid json}", '{"faqs": "nope"}'])
    def test_unusable_reply_raises(self, raw):
        with pytest.raises(ExtractionError):
            parse_faq_response(raw)


# ── HTML to text ────────────────────────────────────────────────────

PAGE = """
<html>
  <head><title>Bakeriet</title><script>var tracking = 1;</script></head>
  <body>
    <nav>Hjem | Meny | Kontakt</nav>
    <h1>Velkommen til Bakeriet</h1>
    <p>Ferske brød hver dag.</p>
    <dl>
      <dt>Har dere parkering?</dt><dd>Ja, bak bygget.</dd>
    </dl>
    <details><summary>Tar dere Vipps?</summary><p>Ja.</p></details>
    <style>.x { color: red }</style>
  </body>
</html>
"""


class TestHtmlToText:
    def test_visible_text_only(self):
        text = html_to_text(PAGE)
        assert "Velkommen til Bakeriet" in text
        assert "Ferske brød hver dag." in text
        assert "tracking" not in text
        assert "color: red" not in text
        assert "Hjem | Meny" not in text

    def test_title_is_included(self):
        assert html_to_text(PAGE).startswith("Bakeriet")

    def test_faq_markup_is_collected(self):
        text = html_to_text(PAGE)
        assert "--- FAQ ---" in text
        assert "Q: Har dere parkering?\nA: Ja, bak bygget." in text
        assert "Q: Tar dere Vipps?\nA: Ja." in text


# ── HttpFetcher ─────────────────────────────────────────────────────


def _fetcher(handler) -> HttpFetcher:
    return HttpFetcher(timeout_seconds=5, user_agent="kbsync-test", transport=httpx.MockTransport(handler))


class TestHttpFetcher:
    async def test_html_page_is_converted(self):
        seen = {}

        def handler(request):
            seen["ua"] = request.headers["user-agent"]
            return httpx.Response(200, html=PAGE)

        text = await _fetcher(handler).fetch("https://example.no")
        assert "Velkommen til Bakeriet" in text
        assert seen["ua"] == "kbsync-test"

    async def test_plain_text_is_returned_as_is(self):
        text = await _fetcher(lambda r: httpx.Response(200, text="Åpent 9–17")).fetch("https://example.no/info.txt")
        assert text == "Åpent 9–17"

    @pytest.mark.parametrize("status, kind", [
        (404, "not_found"),
        (410, "not_found"),
        (403, "blocked"),
        (429, "blocked"),
        (500, "upstream"),
        (502, "upstream"),
    ])
    async def test_http_errors_map_to_kinds(self, status, kind):
        with pytest.raises(FetchError) as exc_info:
            await _fetcher(lambda r: httpx.Response(status)).fetch("https://example.no")
        assert exc_info.value.kind == kind
        assert exc_info.value.url == "https://example.no"

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(FetchError) as exc_info:
            await _fetcher(handler).fetch("https://example.no")
        assert exc_info.value.kind == "timeout"

    async def test_connection_error_is_upstream(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(FetchError) as exc_info:
            await _fetcher(handler).fetch("https://example.no")
        assert exc_info.value.kind == "upstream"


# ── LLMExtractor ────────────────────────────────────────────────────


class TestLLMExtractor:
    async def test_empty_content_needs_no_call(self, monkeypatch):
        call = AsyncMock()
        monkeypatch.setattr(f"{EXT}._call_llm", call)
        assert await LLMExtractor(api_key="key").extract("   \n") == []
        call.assert_not_called()

    async def test_missing_key_fails_extraction(self):
        with pytest.raises(ExtractionError):
            await LLMExtractor(api_key="").extract("Åpent 9–17")

    async def test_extract_parses_reply_and_caps_count(self, monkeypatch):
        reply = '```json\n{"faqs": [' + ",".join(
            f'{{"question": "Q{i}?", "answer": "a{i}"}}' for i in range(5)
        ) + "]}\n```"
        call = AsyncMock(return_value=reply)
        monkeypatch.setattr(f"{EXT}._call_llm", call)

        faqs = await LLMExtractor(api_key="key", max_faqs=3, max_content_chars=10).extract("x" * 50)

        assert [f["question"] for f in faqs] == ["Q0?", "Q1?", "Q2?"]
        prompt = call.call_args.args[0]
        assert "x" * 10 in prompt
        assert "x" * 11 not in prompt

    async def test_http_error_becomes_extraction_error(self, monkeypatch):
        monkeypatch.setattr(f"{EXT}._call_llm", AsyncMock(side_effect=httpx.ConnectError("down")))
        with pytest.raises(ExtractionError):
            await LLMExtractor(api_key="key").extract("Åpent 9–17")

    async def test_merge_without_key_concatenates(self):
        merged = await LLMExtractor(api_key="").merge_answers("09:00–16:00", "09:00–17:00")
        assert merged == "09:00–16:00\n\n---\n\n09:00–17:00"
        assert merged == concatenate_answers("09:00–16:00", "09:00–17:00")

    async def test_merge_falls_back_on_llm_failure(self, monkeypatch):
        monkeypatch.setattr(f"{EXT}._call_llm", AsyncMock(side_effect=httpx.ConnectError("down")))
        merged = await LLMExtractor(api_key="key").merge_answers("a", "b")
        assert merged == "a\n\n---\n\nb"

    async def test_merge_uses_llm_answer(self, monkeypatch):
        monkeypatch.setattr(f"{EXT}._call_llm", AsyncMock(return_value="  Åpent 09:00–17:00.  "))
        assert await LLMExtractor(api_key="key").merge_answers("a", "b") == "Åpent 09:00–17:00."
