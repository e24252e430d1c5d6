"""
External collaborators consumed by the sync engine.

Provides:
- fetcher: Fetcher protocol + HttpFetcher (httpx + BeautifulSoup)
- extractor: Extractor protocol + LLMExtractor (Anthropic messages API)
- candidates: strict validation of extracted Q/A pairs
"""
