"""
Full-article content fetcher.

Retrieves readable article content through a reader proxy (Jina Reader by
default) with a bounded retry loop, then falls back to direct HTML text
extraction with BeautifulSoup.
"""
import asyncio
from typing import Awaitable, Callable, Optional, Tuple

import aiohttp
from bs4 import BeautifulSoup
from loguru import logger

from crawler.interfaces import ContentFetchError, IContentFetcher
from utils.url_utils import is_http_url, strip_scheme

MAX_CONTENT_SIZE = 1_000_000
FALLBACK_TIMEOUT_SECONDS = 15
FALLBACK_MAX_CHARS = 10_000

READER_SOURCE_TYPES = {"article", "blog", "news", "newsletter", "wechat"}
NON_CONTENT_TAGS = ["script", "style", "nav", "header", "footer", "aside", "noscript"]


def should_use_reader(source_type: str, need_crawl: bool) -> bool:
    """Whether a message's item should be fetched through the reader."""
    if not need_crawl:
        return False
    return (source_type or "").lower() in READER_SOURCE_TYPES


def extract_text_from_html(html: str, limit: int = FALLBACK_MAX_CHARS) -> str:
    """Plain-text extraction from an HTML page, whitespace collapsed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()
    text = " ".join(soup.get_text(separator=" ").split())
    return text[:limit]


class ContentFetcher(IContentFetcher):
    """Reader-proxy content fetcher with retry and HTML fallback."""

    def __init__(
        self,
        reader_prefix: str = "https://r.jina.ai/http://",
        timeout_ms: int = 30000,
        max_retries: int = 3,
        api_key: Optional[str] = None,
        user_agent: str = "FeedQueue-Crawler/1.0",
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        use_fallback: bool = True,
    ):
        self.reader_prefix = reader_prefix
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries
        self.api_key = api_key
        self.user_agent = user_agent
        self.use_fallback = use_fallback
        self._session = session
        self._sleep = sleep

    def reader_url(self, url: str) -> str:
        return f"{self.reader_prefix}{strip_scheme(url)}"

    async def fetch(self, url: str) -> Tuple[str, str]:
        """
        Fetch cleaned content for ``url``.

        Tries the reader up to ``max_retries + 1`` times for retryable errors,
        then the direct HTML fallback.

        Returns:
            (content, format): ``markdown`` from the reader, ``text`` from the fallback

        Raises:
            ContentFetchError: When the reader and the fallback both fail
        """
        if not is_http_url(url):
            raise ContentFetchError(f"Invalid URL: {url}", status_code=400, url=url)

        last_error: Optional[ContentFetchError] = None
        for attempt in range(self.max_retries + 1):
            try:
                return await self._fetch_from_reader(url), "markdown"
            except ContentFetchError as e:
                last_error = e
                if not e.is_retryable or attempt >= self.max_retries:
                    break
                delay = e.retry_delay(attempt)
                logger.warning(
                    f"⚠️ Reader fetch failed for {url} (status {e.status_code}), "
                    f"attempt {attempt + 1}/{self.max_retries + 1}, retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        if self.use_fallback:
            fallback = await self._fallback_extract(url)
            if fallback:
                logger.info(f"✅ Fallback HTML extraction succeeded for {url}")
                return fallback, "text"

        logger.error(f"❌ Content fetch failed for {url}: {last_error}")
        raise last_error

    async def _fetch_from_reader(self, url: str) -> str:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/plain, text/markdown, text/html",
            "X-Return-Format": "markdown",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
        target = self.reader_url(url)
        try:
            if self._session is not None:
                content = await self._read(self._session, target, url, headers, timeout)
            else:
                async with aiohttp.ClientSession() as session:
                    content = await self._read(session, target, url, headers, timeout)
        except ContentFetchError:
            raise
        except asyncio.TimeoutError as e:
            raise ContentFetchError(
                f"Reader fetch timeout after {self.timeout_ms}ms", status_code=408, url=url, cause=e
            )
        except aiohttp.ClientError as e:
            raise ContentFetchError(f"Reader fetch failed: {e}", status_code=0, url=url, cause=e)

        content = content.strip()
        if not content:
            raise ContentFetchError("Reader returned empty content", status_code=200, url=url)
        if len(content) > MAX_CONTENT_SIZE:
            logger.warning(f"Content for {url} truncated from {len(content)} chars")
            content = content[:MAX_CONTENT_SIZE]
        return content

    @staticmethod
    async def _read(session: aiohttp.ClientSession, target: str, url: str, headers, timeout) -> str:
        async with session.get(target, headers=headers, timeout=timeout) as response:
            if response.status >= 400:
                body = await response.text()
                raise ContentFetchError(
                    f"Reader fetch failed: {response.status} {body[:200]}",
                    status_code=response.status,
                    url=url,
                )
            return await response.text()

    async def _fallback_extract(self, url: str) -> str:
        """Direct page fetch with text extraction. Returns '' on any failure."""
        headers = {"User-Agent": self.user_agent, "Accept": "text/html"}
        timeout = aiohttp.ClientTimeout(total=FALLBACK_TIMEOUT_SECONDS)
        try:
            if self._session is not None:
                html = await self._read_html(self._session, url, headers, timeout)
            else:
                async with aiohttp.ClientSession() as session:
                    html = await self._read_html(session, url, headers, timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ Fallback extraction failed for {url}: {e}")
            return ""
        if not html:
            return ""
        return extract_text_from_html(html)

    @staticmethod
    async def _read_html(session: aiohttp.ClientSession, url: str, headers, timeout) -> str:
        async with session.get(url, headers=headers, timeout=timeout) as response:
            if response.status != 200:
                return ""
            return await response.text()
