"""Website fetcher collaborator.

The orchestrator only depends on the Fetcher protocol:

    async fetch(url) -> str        # visible page text
    raises FetchError(kind=timeout|blocked|not_found|upstream)

HttpFetcher is the default implementation: a plain httpx GET (no JavaScript
rendering) followed by BeautifulSoup text extraction.  Explicit FAQ markup -
<dt>/<dd> definition lists and <details>/<summary> accordions - is appended as
"Q:/A:" lines so the extractor sees those pairs verbatim.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from bs4 import BeautifulSoup

from kbsync.errors import FetchError

logger = logging.getLogger(__name__)

# Tags whose text is never customer-facing content
_STRIP_TAGS = ["script", "style", "noscript", "template", "svg", "nav", "footer", "iframe"]


class Fetcher(Protocol):
    async def fetch(self, url: str) -> str:
        ...


def html_to_text(html: str) -> str:
    """Return the visible text of an HTML document plus any explicit FAQ pairs."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIP_TAGS):
        tag.decompose()

    faq_lines: list[str] = []
    for dt in soup.find_all("dt"):
        dd = dt.find_next_sibling("dd")
        if dd is not None:
            faq_lines.append(f"Q: {dt.get_text(' ', strip=True)}\nA: {dd.get_text(' ', strip=True)}")
    for details in soup.find_all("details"):
        summary = details.find("summary")
        if summary is None:
            continue
        question = summary.get_text(" ", strip=True)
        summary.extract()
        answer = details.get_text(" ", strip=True)
        if question and answer:
            faq_lines.append(f"Q: {question}\nA: {answer}")
        # Put the question back so it also appears in the main text
        details.insert(0, summary)

    title = soup.title.get_text(strip=True) if soup.title else ""
    body = soup.body or soup
    lines = [line.strip() for line in body.get_text("\n").splitlines()]
    text = "\n".join(line for line in lines if line)

    parts = [p for p in (title, text) if p]
    if faq_lines:
        parts.append("--- FAQ ---\n" + "\n\n".join(faq_lines))
    return "\n\n".join(parts)


class HttpFetcher:
    """Fetch a page over HTTP(S) and return its visible text."""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        user_agent: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        from kbsync.config import settings  # lazy import - avoid circular deps

        self.timeout_seconds = timeout_seconds or settings.fetch_timeout_seconds
        self.user_agent = user_agent or settings.fetch_user_agent
        self._transport = transport

    async def fetch(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent, "Accept": "text/html,*/*;q=0.8"},
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchError("timeout", url, f"no response within {self.timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise FetchError("upstream", url, str(exc)) from exc

        if response.status_code == 404 or response.status_code == 410:
            raise FetchError("not_found", url, f"HTTP {response.status_code}")
        if response.status_code in (401, 403, 429, 451):
            raise FetchError("blocked", url, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise FetchError("upstream", url, f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type", "")
        if "html" in content_type or not content_type:
            text = html_to_text(response.text)
        else:
            text = response.text

        logger.debug("Fetched %s (%d chars of text)", url, len(text))
        return text
