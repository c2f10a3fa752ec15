"""
Crawl producer: turns due sources into queue messages.

One feed failure never aborts a run; it is logged, counted and the remaining
sources are still enqueued.
"""
import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from crawler.core.feed_parser import filter_and_sort_items, item_url
from crawler.interfaces import (
    IContentStore,
    IFeedParser,
    IMessageQueue,
    MessageValidationError,
)
from crawler.models import (
    CrawlMessage,
    FeedItem,
    PriorityTier,
    ProducerResult,
    Source,
    TIER_SOURCE_TYPES,
)
from monitoring.metrics import PipelineMetrics, Timer
from utils.time_utils import iso_from_ms, now_ms

ALL_SOURCE_TYPES = tuple(t for types in TIER_SOURCE_TYPES.values() for t in types)


def build_message(source: Source, item: FeedItem, need_crawl: bool = True,
                  timestamp: Optional[int] = None) -> CrawlMessage:
    """Snapshot ``source`` and ``item`` into a queue message."""
    return CrawlMessage(
        source_id=source.id,
        source_url=source.url,
        source_name=source.name,
        source_type=source.type,
        source_category=source.category,
        source_language=source.language,
        item_url=item_url(item) or "",
        item_title=item.title.strip(),
        item_pub_date=iso_from_ms(item.published_at),
        item_content=item.content,
        need_crawl=need_crawl,
        timestamp=timestamp if timestamp is not None else now_ms(),
    )


class CrawlProducer:
    """Discovers feed items and enqueues one message per item."""

    def __init__(self, store: IContentStore, queue: IMessageQueue, feed_parser: IFeedParser,
                 metrics: Optional[PipelineMetrics] = None, sources_per_batch: int = 50,
                 items_per_source: int = 20, max_age_days: int = 30, concurrency: int = 5):
        self.store = store
        self.queue = queue
        self.feed_parser = feed_parser
        self.metrics = metrics or PipelineMetrics()
        self.sources_per_batch = sources_per_batch
        self.items_per_source = items_per_source
        self.max_age_days = max_age_days
        self.concurrency = concurrency

    async def run_for_tier(self, tier: PriorityTier) -> ProducerResult:
        """
        Sweep the due sources of one priority tier.

        Returns:
            Sources processed, items enqueued and the number of failed sources
        """
        timer = Timer()
        logger.info(f"🔄 Starting {tier.value}-priority crawl run")
        sources = await self.store.fetch_due_sources(
            TIER_SOURCE_TYPES[tier], self.sources_per_batch, now_ms()
        )
        result = await self.enqueue_sources(sources, tier=tier.value)
        self.metrics.record_producer_run(tier.value, result, timer.elapsed_ms)
        logger.info(
            f"✅ {tier.value}-priority run: {result.sources_processed} sources, "
            f"{result.items_enqueued} items enqueued, {result.errors} errors in {timer.elapsed_ms}ms"
        )
        return result

    async def enqueue_due_sources(self, limit: Optional[int] = None,
                                  types: Optional[Sequence[str]] = None) -> ProducerResult:
        """Sweep due sources of ``types`` (every known type when omitted)."""
        wanted = list(types) if types else list(ALL_SOURCE_TYPES)
        sources = await self.store.fetch_due_sources(wanted, limit or self.sources_per_batch, now_ms())
        logger.info(f"📡 Found {len(sources)} due sources for types {wanted}")
        return await self.enqueue_sources(sources)

    async def enqueue_from_source_url(self, url: str) -> ProducerResult:
        """
        Enqueue the items of an ad-hoc feed URL.

        The feed's own title identifies the source.
        """
        result = ProducerResult()
        feed = await self.feed_parser.parse(url)
        name = feed.title or url
        source = Source(id=name, url=url, name=name, type="article")
        result.sources_processed = 1
        result.items_enqueued = await self._enqueue_items(source, feed.items)
        return result

    async def enqueue_batch(self, sources: Iterable[Dict[str, Any]]) -> ProducerResult:
        """Enqueue a caller-supplied list of ``{id, url, name, ...}`` sources."""
        resolved = []
        result = ProducerResult()
        for data in sources:
            try:
                resolved.append(Source(
                    id=str(data.get("id") or data.get("url") or ""),
                    url=data.get("url") or "",
                    name=data.get("name") or data.get("url") or "",
                    type=data.get("type") or "article",
                    category=data.get("category") or "",
                    language=data.get("language") or "en",
                ))
            except ValueError as e:
                logger.warning(f"⚠️ Skipping invalid source {data}: {e}")
                result.errors += 1
                result.error_details.append(str(e))
        return result.merge(await self.enqueue_sources(resolved))

    async def submit_article(self, data: Dict[str, Any]) -> CrawlMessage:
        """
        Enqueue one manually submitted article, bypassing source lookup.

        Raises:
            MessageValidationError: When url or title is missing
        """
        url = (data.get("url") or "").strip()
        title = (data.get("title") or "").strip()
        if not url or not title:
            raise MessageValidationError("Missing required fields: url, title")

        message = CrawlMessage(
            source_id=data.get("sourceId") or "manual",
            source_url=data.get("sourceUrl") or url,
            source_name=data.get("sourceName") or "Manual Submission",
            source_type=data.get("sourceType") or "article",
            source_category=data.get("sourceCategory") or "",
            source_language=data.get("sourceLanguage") or "en",
            item_url=url,
            item_title=title,
            item_pub_date=data.get("pubDate") or iso_from_ms(now_ms()),
            item_content=data.get("content") or "",
            need_crawl=data.get("needCrawl") is not False,
        )
        await self.queue.send(message)
        self.metrics.record_enqueue(1, "manual")
        logger.info(f"📨 Manual submission enqueued: {url}")
        return message

    async def enqueue_sources(self, sources: List[Source], tier: Optional[str] = None) -> ProducerResult:
        """Parse and enqueue each source with bounded concurrency."""
        result = ProducerResult()
        if not sources:
            return result

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(source: Source):
            async with semaphore:
                return await self._enqueue_one(source, tier)

        for outcome in await asyncio.gather(*(run_one(s) for s in sources)):
            result.merge(outcome)
        return result

    async def _enqueue_one(self, source: Source, tier: Optional[str]) -> ProducerResult:
        result = ProducerResult(sources_processed=1)
        try:
            feed = await self.feed_parser.parse(source.url)
            result.items_enqueued = await self._enqueue_items(source, feed.items, tier)
        except Exception as e:
            logger.error(f"❌ Failed to enqueue source {source.name} ({source.url}): {e}")
            result.errors = 1
            result.error_details.append(f"{source.id}: {e}")
            self.metrics.record_error("source_failed", str(e), "warning", source=source.id)
            try:
                await self.store.record_source_error(source.id)
            except Exception as store_err:
                logger.warning(f"Error recording failure for source {source.id}: {store_err}")
        return result

    async def _enqueue_items(self, source: Source, items: List[FeedItem],
                             tier: Optional[str] = None) -> int:
        selected = filter_and_sort_items(items, self.items_per_source, self.max_age_days)
        timestamp = now_ms()
        messages = [build_message(source, item, timestamp=timestamp) for item in selected]
        if messages:
            await self.queue.send_batch(messages)
            self.metrics.record_enqueue(len(messages), tier)
        logger.info(f"📨 {source.name}: enqueued {len(messages)}/{len(items)} items")
        return len(messages)
