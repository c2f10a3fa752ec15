"""
Single-message processing: validate, dedup, fetch, analyze, ingest.

The processor never touches the queue. It returns an outcome value and the
consumer's batch loop performs the matching ack / retry / dead-letter call.
"""
from typing import Optional, Tuple

from loguru import logger

from crawler.core.content_fetcher import should_use_reader
from crawler.core.feed_parser import guess_content_format
from crawler.core.retry_policy import RetryPolicy
from crawler.interfaces import (
    ContentFetchError,
    IContentAnalyzer,
    IContentFetcher,
    IContentStore,
    IIngestGateway,
    IngestError,
    QueueDelivery,
)
from crawler.models import (
    Ack,
    AnalysisInput,
    CrawlMessage,
    IngestPayload,
    ProcessingOutcome,
    Reject,
)
from monitoring.metrics import PipelineMetrics
from utils.time_utils import now_ms, parse_pub_date

INVALID_MESSAGE_ERROR = "Invalid message: missing URL or title"


class MessageProcessor:
    """Runs the fetch/analyze/ingest pipeline for one message."""

    def __init__(self, store: IContentStore, fetcher: IContentFetcher,
                 analyzer: IContentAnalyzer, gateway: IIngestGateway,
                 retry_policy: Optional[RetryPolicy] = None,
                 metrics: Optional[PipelineMetrics] = None):
        self.store = store
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.gateway = gateway
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = metrics or PipelineMetrics()

    async def process(self, delivery: QueueDelivery) -> ProcessingOutcome:
        """
        Process one delivery and classify the result.

        Returns:
            Ack on success or duplicate, Reject for invalid messages, otherwise
            the retry policy's Retry or DeadLetter decision
        """
        message = delivery.message
        if not message.is_valid:
            logger.error(f"❌ Rejecting message {delivery.id}: {INVALID_MESSAGE_ERROR}")
            return Reject(error=INVALID_MESSAGE_ERROR)

        try:
            reason = await self.handle(message)
            return Ack(reason=reason)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            outcome = self.retry_policy.on_failure(delivery.retry_count, error)
            logger.warning(
                f"⚠️ Processing failed for {message.item_url} "
                f"(retry {delivery.retry_count}/{self.retry_policy.max_retries}): {error}"
            )
            self.metrics.record_error(
                "message_failed", error, "warning",
                url=message.item_url, retry_count=delivery.retry_count,
            )
            return outcome

    async def handle(self, message: CrawlMessage) -> str:
        """
        Dedup, fetch, analyze and ingest a valid message.

        Returns:
            "duplicate" or "ingested"

        Raises:
            ContentFetchError: Fetch failed and no inline content exists
            AnalysisError: Enrichment failed
            IngestError: Gateway rejected the payload
        """
        if await self.store.exists_by_url(message.item_url):
            logger.debug(f"Article already exists, skipping: {message.item_url}")
            self.metrics.increment("queue_articles_duplicate")
            await self._update_source(message.source_id)
            return "duplicate"

        logger.info(f"🔄 Processing article: {message.item_title}")
        content, content_format = await self._resolve_content(message)

        analysis = await self.analyzer.analyze(AnalysisInput(
            title=message.item_title,
            content=content,
            source_name=message.source_name,
            source_category=message.source_category,
        ))

        payload = IngestPayload(
            url=message.item_url,
            title=message.item_title,
            source_id=message.source_id,
            source_name=message.source_name,
            source_url=message.source_url,
            source_type=message.source_type,
            source_category=message.source_category,
            source_language=message.source_language,
            published_at=parse_pub_date(message.item_pub_date) or now_ms(),
            crawled_at=message.timestamp,
            summary=analysis.summary,
            one_line=analysis.one_line,
            content=content,
            content_format=content_format,
            category=analysis.category,
            tags=analysis.tags,
            importance=analysis.importance,
            sentiment=analysis.sentiment,
            language=analysis.language,
        )

        result = await self.gateway.ingest(payload)
        if not result.ok:
            raise IngestError(f"Ingest failed: {result.error}", source_name=message.source_name)

        logger.info(f"✅ Ingested {message.item_url} (inserted={result.inserted})")
        self.metrics.increment("queue_articles_ingested", 1, {"sourceType": message.source_type})
        await self._remember_ingested(message.item_url)
        await self._update_source(message.source_id)
        return "ingested"

    async def _resolve_content(self, message: CrawlMessage) -> Tuple[str, str]:
        """Reader content when applicable, else (or on fetch failure) the inline content."""
        content = message.item_content or ""
        content_format = guess_content_format(content)

        if not should_use_reader(message.source_type, message.need_crawl):
            return content, content_format

        try:
            return await self.fetcher.fetch(message.item_url)
        except ContentFetchError as e:
            if not content.strip():
                raise
            logger.warning(f"⚠️ Using feed content for {message.item_url} after fetch failure: {e}")
            self.metrics.increment("content_fetch_fallbacks")
            return content, content_format

    async def _remember_ingested(self, url: str):
        # the remote gateway writes elsewhere; dedup reads this store
        try:
            await self.store.record_ingested(url, at=now_ms())
        except Exception as e:
            logger.warning(f"Error recording ingested URL {url}: {e}")

    async def _update_source(self, source_id: str):
        if not source_id:
            return
        try:
            await self.store.mark_source_crawled(source_id, success=True, at=now_ms())
        except Exception as e:
            logger.warning(f"Error updating crawl status for source {source_id}: {e}")
