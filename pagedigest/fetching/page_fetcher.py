from __future__ import annotations

import logging
from typing import Optional

import httpx
import lxml.html as LH
from lxml.etree import ParserError
from readability import Document

from pagedigest.config import FetchSettings
from pagedigest.errors import FetchError
from pagedigest.models import FetchResult

logger = logging.getLogger(__name__)


def _clean_text(text: str) -> str:
    return " ".join(text.split())


def _document_title(tree) -> Optional[str]:
    title = tree.findtext(".//title")
    if title and title.strip():
        return _clean_text(title)
    return None


def _whole_page_text(tree) -> str:
    for bad in tree.xpath("//script|//style|//noscript|//template"):
        bad.drop_tree()
    body = tree.find(".//body")
    return _clean_text((body if body is not None else tree).text_content())


def extract_page_text(html: str, url: str) -> tuple[str, str]:
    """Return ``(title, text)`` for an HTML page.

    The article body found by readability is preferred; pages it can't
    make sense of fall back to all visible text. The title is the page's
    ``<title>``, or ``url`` when there is none.
    """
    if not html or not html.strip():
        return url, ""

    try:
        tree = LH.fromstring(html)
    except (ParserError, ValueError):
        return url, _clean_text(html)

    title = _document_title(tree) or url

    text = ""
    try:
        article_html = Document(html).summary(html_partial=True)
        text = _clean_text(LH.fromstring(article_html).text_content())
    except Exception as exc:
        logger.debug(f"Readability extraction failed for {url}: {exc}", extra={"url": url})

    if not text:
        text = _whole_page_text(tree)
    return title, text


class PageFetcher:
    """Download a page and reduce it to plain text.

    Usage:
        fetcher = PageFetcher.from_settings(settings.fetch)
        page = await fetcher.fetch("https://example.com/post")
    """

    def __init__(
        self,
        *,
        user_agent: str = "Mozilla/5.0 (compatible; SummarizerBot/1.0)",
        timeout: float = 30.0,
        max_content_words: int = 8000,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_content_words = max_content_words
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: FetchSettings, *, client: Optional[httpx.AsyncClient] = None
    ) -> "PageFetcher":
        return cls(
            user_agent=settings.user_agent,
            timeout=settings.timeout,
            max_content_words=settings.max_content_words,
            client=client,
        )

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        headers = {"User-Agent": self.user_agent}
        if self._client is not None:
            return await self._client.get(url, headers=headers, timeout=timeout)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await client.get(url, headers=headers, timeout=timeout)

    async def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResult:
        """Fetch ``url`` and extract its title and text.

        Raises:
            FetchError: network failure or a non-success HTTP status
        """
        effective_timeout = timeout if timeout is not None else self.timeout
        logger.info(f"Fetching {url}", extra={"url": url})

        try:
            response = await self._get(url, effective_timeout)
        except httpx.HTTPError as exc:
            raise FetchError(url, f"Failed to fetch {url}: {exc}") from exc

        if not response.is_success:
            raise FetchError(
                url,
                f"Failed to fetch {url}: {response.status_code}",
                status_code=response.status_code,
            )

        title, text = extract_page_text(response.text, url)
        words = text.split()
        content = " ".join(words[: self.max_content_words])

        logger.debug(
            f"Fetched {url}: {len(words)} words",
            extra={"url": url, "word_count": len(words)},
        )
        return FetchResult(content=content, title=title, word_count=len(words), url=url)
