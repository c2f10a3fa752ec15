"""
Feed parser for RSS and Atom sources.

Fetches a feed document with aiohttp, parses it with feedparser and
normalizes entries into FeedItem objects. Filtering and ordering of candidate
items for the producer also lives here.
"""
import asyncio
import calendar
import re
from typing import Awaitable, Callable, Iterable, List, Optional

import aiohttp
import feedparser
from loguru import logger

from crawler.interfaces import FeedParseError, IFeedParser
from crawler.models import FeedItem, ParsedFeed
from utils.time_utils import now_ms
from utils.url_utils import is_http_url

DAY_MS = 24 * 60 * 60 * 1000

_HTML_TAG_RE = re.compile(r"<[a-z][\s\S]*>", re.IGNORECASE)
_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s", re.MULTILINE)

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"
FEED_FETCH_ATTEMPTS = 3


def guess_content_format(content: str) -> str:
    """Classify inline content as ``html``, ``markdown`` or ``text``."""
    if not content:
        return "text"
    if _HTML_TAG_RE.search(content):
        return "html"
    if "\n" in content and _MARKDOWN_HEADING_RE.search(content):
        return "markdown"
    return "text"


def item_url(item: FeedItem) -> Optional[str]:
    """Link, else guid, if it is an absolute http(s) URL."""
    candidate = item.link or item.guid
    return candidate.strip() if is_http_url(candidate) else None


def is_valid_item(item: FeedItem) -> bool:
    return bool(item_url(item)) and bool(item.title.strip())


def filter_and_sort_items(
    items: Iterable[FeedItem],
    max_items: int,
    max_age_days: int = 30,
    now: Optional[int] = None,
) -> List[FeedItem]:
    """
    Keep valid items newer than the retention window, newest first.

    Args:
        items: Parsed feed items
        max_items: Per-source cap
        max_age_days: Retention window in days
        now: Reference time in epoch ms (defaults to current time)

    Returns:
        At most ``max_items`` items sorted by publish date descending
    """
    cutoff = (now if now is not None else now_ms()) - max_age_days * DAY_MS
    kept = [item for item in items if is_valid_item(item) and item.published_at > cutoff]
    kept.sort(key=lambda item: item.published_at, reverse=True)
    return kept[:max_items]


class FeedParser(IFeedParser):
    """Fetches and parses syndication feeds."""

    def __init__(self, timeout: float = 30, user_agent: str = "FeedQueue-Crawler/1.0",
                 session: Optional[aiohttp.ClientSession] = None,
                 max_attempts: int = FEED_FETCH_ATTEMPTS, retry_base_delay: float = 1.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        """Initialize the feed parser.

        Args:
            timeout: Total request timeout in seconds
            user_agent: User-Agent header for feed requests
            session: Shared client session; a short-lived one is opened per
                request when omitted
            max_attempts: Fetch attempts for transient failures
            retry_base_delay: Seconds before the first retry, doubled after each
            sleep: Awaitable used between attempts
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay
        self._session = session
        self._sleep = sleep

    async def parse(self, feed_url: str) -> ParsedFeed:
        logger.info(f"📡 Parsing feed: {feed_url}")
        document = await self._fetch(feed_url)
        feed = self.parse_document(document, feed_url)
        logger.info(f"📄 Found {len(feed.items)} entries in feed {feed_url}")
        return feed

    async def _fetch(self, feed_url: str) -> str:
        """GET the feed, retrying transport errors, timeouts, 429 and 5xx with backoff."""
        for attempt in range(self.max_attempts):
            try:
                return await self._fetch_once(feed_url)
            except FeedParseError as e:
                if not e.is_retryable or attempt >= self.max_attempts - 1:
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    f"⚠️ Feed fetch failed for {feed_url}, "
                    f"attempt {attempt + 1}/{self.max_attempts}, retrying in {delay:.1f}s: {e}"
                )
                await self._sleep(delay)

    async def _fetch_once(self, feed_url: str) -> str:
        headers = {"User-Agent": self.user_agent, "Accept": FEED_ACCEPT}
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self._session is not None:
                return await self._get_text(self._session, feed_url, headers, timeout)
            async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
                return await self._get_text(session, feed_url, headers, timeout)
        except FeedParseError:
            raise
        except Exception as e:
            raise FeedParseError(f"Failed to fetch feed {feed_url}: {e}", source_name=feed_url, cause=e,
                                 status_code=408 if isinstance(e, asyncio.TimeoutError) else 0)

    @staticmethod
    async def _get_text(session: aiohttp.ClientSession, url: str, headers, timeout) -> str:
        async with session.get(url, headers=headers, timeout=timeout) as response:
            if response.status != 200:
                raise FeedParseError(f"HTTP {response.status} for feed {url}", source_name=url,
                                     status_code=response.status)
            return await response.text()

    def parse_document(self, document: str, feed_url: str = "") -> ParsedFeed:
        """
        Parse a feed document that has already been fetched.

        Raises:
            FeedParseError: When the document is not a usable RSS/Atom feed
        """
        parsed = feedparser.parse(document)
        warnings = []

        if getattr(parsed, "bozo", False):
            message = f"Feed has parsing issues: {getattr(parsed, 'bozo_exception', 'Unknown error')}"
            if not parsed.entries:
                raise FeedParseError(message, source_name=feed_url)
            logger.warning(f"⚠️ {message}")
            warnings.append(message)

        if not parsed.version and not parsed.entries:
            raise FeedParseError(f"Unknown feed format for {feed_url}", source_name=feed_url)

        items = []
        for entry in parsed.entries:
            item = self._process_entry(entry)
            if item:
                items.append(item)

        feed_meta = parsed.feed
        return ParsedFeed(
            url=feed_url,
            title=(feed_meta.get("title") or "").strip(),
            link=(feed_meta.get("link") or "").strip(),
            items=items,
            warnings=warnings,
        )

    def _process_entry(self, entry) -> Optional[FeedItem]:
        """Normalize a feedparser entry. Returns None for unusable entries."""
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or "").strip()
        guid = (entry.get("id") or "").strip() or None

        if not link and not guid:
            return None

        # content:encoded / atom content, then description / summary
        content = ""
        if entry.get("content"):
            content = entry.content[0].get("value", "")
        if not content:
            content = entry.get("summary") or entry.get("description") or ""

        published_at = None
        for key in ("published_parsed", "updated_parsed"):
            value = entry.get(key)
            if value:
                published_at = calendar.timegm(value) * 1000
                break
        if published_at is None:
            published_at = now_ms()

        author = (entry.get("author") or "").strip() or None

        return FeedItem(
            title=title,
            link=link,
            published_at=published_at,
            content=content.strip(),
            guid=guid,
            author=author,
        )
