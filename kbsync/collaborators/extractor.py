"""LLM-backed extractor collaborator.

The orchestrator and the conflict resolver depend on the Extractor protocol:

    async extract(raw_content) -> list[dict]          # loosely-typed Q/A items
    async merge_answers(current, website) -> str      # one synthesized answer

LLMExtractor calls the Anthropic messages API with httpx.  Extraction is a
mandatory step of a sync run, so its failures raise ExtractionError and fail
the run.  Merging is an optional nicety: with no API key, or when the call
fails, it degrades to the plain concatenation "current\\n\\n---\\n\\nwebsite".
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

import httpx

from kbsync.errors import ExtractionError

logger = logging.getLogger(__name__)

_MERGE_SEPARATOR = "\n\n---\n\n"

_EXTRACT_PROMPT = """\
You analyse website content and extract information that customers would ask \
about as question/answer pairs (FAQs). Respond with JSON only - no explanation \
outside the JSON:

{{"faqs": [{{"question": string, "answer": string, "confidence": number}}]}}

Rules:
- Extract ONLY information that is actually present in the content. Never invent anything.
- Phrase questions the way customers naturally ask them, in the language of the content.
- Answers must be concise but complete.
- Ignore navigation, menus and generic boilerplate.
- Focus on opening hours, prices, services, contact details, policies and similar facts.
- Return at most {max_faqs} FAQs.

CONTENT:
{content}"""

_MERGE_PROMPT = """\
Two answers to the same customer question disagree. Write ONE answer that \
combines the correct information from both, preferring the website answer \
where they contradict each other. Output only the answer text.

CURRENT ANSWER:
{current}

WEBSITE ANSWER:
{website}"""


class Extractor(Protocol):
    async def extract(self, raw_content: str) -> list[Any]:
        ...

    async def merge_answers(self, current_answer: str, website_answer: str) -> str:
        ...


def concatenate_answers(current_answer: str, website_answer: str) -> str:
    return f"{current_answer}{_MERGE_SEPARATOR}{website_answer}"


async def _call_llm(prompt: str, api_key: str, model: str, timeout: float, max_tokens: int) -> str:
    """Call the Anthropic messages API and return the text of the first block.

    Raises:
        httpx.HTTPError: On network or API errors (including timeouts).
    """
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(
            "https://api.anthropic.com/v1/messages",
            headers={
                "x-api-key": api_key,
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            json={
                "model": model,
                "max_tokens": max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        response.raise_for_status()
        data = response.json()
        return data["content"][0]["text"]


def parse_faq_response(raw: str) -> list[Any]:
    """Parse the extractor's JSON reply into a list of raw FAQ items.

    Accepts markdown-fenced JSON and leading/trailing chatter around the
    outermost object.  A bare JSON list is accepted too.

    Raises:
        ExtractionError: If no JSON object can be recovered.
    """
    cleaned = re.sub(r"^```(?:json)?\s*|\s*```$", "", raw.strip(), flags=re.MULTILINE)
    match = re.search(r"[\[{][\s\S]*[\]}]", cleaned)
    if match is None:
        raise ExtractionError(f"Extractor returned no JSON. Raw: {raw[:200]}")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Extractor returned invalid JSON: {exc}") from exc

    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        faqs = parsed.get("faqs", [])
        if isinstance(faqs, list):
            return faqs
    raise ExtractionError("Extractor JSON has no 'faqs' list")


class LLMExtractor:
    """Extract FAQs and merge answers with an LLM."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        max_content_chars: int | None = None,
        max_faqs: int | None = None,
    ) -> None:
        from kbsync.config import settings  # lazy import - avoid circular deps

        self.api_key = settings.anthropic_api_key if api_key is None else api_key
        self.model = model or settings.llm_model
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds
        self.max_content_chars = max_content_chars or settings.max_content_chars
        self.max_faqs = max_faqs or settings.max_extracted_faqs

    async def extract(self, raw_content: str) -> list[Any]:
        if not raw_content.strip():
            return []
        if not self.api_key:
            raise ExtractionError("No LLM API key configured (KBSYNC_ANTHROPIC_API_KEY)")

        prompt = _EXTRACT_PROMPT.format(
            max_faqs=self.max_faqs,
            content=raw_content[: self.max_content_chars],
        )
        try:
            raw = await _call_llm(prompt, self.api_key, self.model, self.timeout_seconds, max_tokens=2000)
        except httpx.TimeoutException as exc:
            raise ExtractionError(f"LLM extraction timed out after {self.timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"LLM extraction failed: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExtractionError(f"Unexpected LLM response shape: {exc}") from exc

        faqs = parse_faq_response(raw)
        logger.debug("Extractor returned %d raw FAQ item(s)", len(faqs))
        return faqs[: self.max_faqs]

    async def merge_answers(self, current_answer: str, website_answer: str) -> str:
        if not self.api_key:
            logger.debug("Merge: no API key configured - concatenating answers")
            return concatenate_answers(current_answer, website_answer)

        prompt = _MERGE_PROMPT.format(current=current_answer, website=website_answer)
        try:
            merged = await _call_llm(prompt, self.api_key, self.model, self.timeout_seconds, max_tokens=1024)
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("Merge: LLM call failed - %s - concatenating answers", exc)
            return concatenate_answers(current_answer, website_answer)

        merged = merged.strip()
        if not merged:
            logger.warning("Merge: LLM returned an empty answer - concatenating answers")
            return concatenate_answers(current_answer, website_answer)
        return merged
