"""
Unit tests for crawler.core.processor module.

Covers the validate / dedup / fetch / analyze / ingest flow and the outcome
each failure maps to.
"""
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from clients.content_store import SqliteContentStore
from crawler.core.content_fetcher import ContentFetcher
from crawler.core.ingest_gateway import HttpIngestGateway, StoreIngestGateway
from crawler.core.processor import INVALID_MESSAGE_ERROR, MessageProcessor
from crawler.interfaces import AnalysisError, ContentFetchError
from crawler.models import Ack, DeadLetter, IngestResult, Reject, Retry


class TestMessageProcessor:
    """Test cases for MessageProcessor."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_successful_message_is_ingested(self, processor, sample_message, make_delivery,
                                                  mock_fetcher, mock_gateway, memory_store, metrics):
        outcome = await processor.process(make_delivery(sample_message))

        assert outcome == Ack(reason="ingested")
        mock_fetcher.fetch.assert_awaited_once_with("https://example.com/gpt-launch")

        payload = mock_gateway.ingest.await_args.args[0]
        assert payload.content == "# Launch\n\nFetched article body."
        assert payload.content_format == "markdown"
        assert payload.published_at == 1_705_320_000_000
        assert payload.crawled_at == sample_message.timestamp
        assert payload.one_line == "OpenAI ships a new GPT model"
        assert payload.importance == 80

        assert memory_store.sources["example-news"].last_crawled_at is not None
        assert metrics.get_counter("queue_articles_ingested", {"sourceType": "news"}) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_url_is_acked_without_fetching(self, processor, sample_message, make_delivery,
                                                           memory_store, mock_fetcher, mock_gateway):
        memory_store.articles[sample_message.item_url] = {"id": "existing"}

        outcome = await processor.process(make_delivery(sample_message))

        assert outcome == Ack(reason="duplicate")
        mock_fetcher.fetch.assert_not_awaited()
        mock_gateway.ingest.assert_not_awaited()
        assert memory_store.sources["example-news"].last_crawled_at is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [{"item_url": ""}, {"item_title": "   "}])
    async def test_invalid_message_is_rejected_before_any_io(self, processor, sample_message, make_delivery,
                                                             mock_fetcher, mock_analyzer, mock_gateway,
                                                             changes):
        message = sample_message.model_copy(update=changes)

        outcome = await processor.process(make_delivery(message))

        assert outcome == Reject(error=INVALID_MESSAGE_ERROR)
        mock_fetcher.fetch.assert_not_awaited()
        mock_analyzer.analyze.assert_not_awaited()
        mock_gateway.ingest.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_failure_falls_back_to_inline_content(self, processor, sample_message, make_delivery,
                                                              mock_fetcher, mock_gateway, metrics):
        mock_fetcher.fetch.side_effect = ContentFetchError("reader down", status_code=503)

        outcome = await processor.process(make_delivery(sample_message))

        assert outcome == Ack(reason="ingested")
        payload = mock_gateway.ingest.await_args.args[0]
        assert payload.content == "<p>Inline feed content.</p>"
        assert payload.content_format == "html"
        assert metrics.get_counter("content_fetch_fallbacks") == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_failure_without_inline_content_is_retried(self, processor, sample_message,
                                                                   make_delivery, mock_fetcher,
                                                                   mock_gateway):
        mock_fetcher.fetch.side_effect = ContentFetchError("reader down", status_code=503)
        message = sample_message.model_copy(update={"item_content": "  "})

        outcome = await processor.process(make_delivery(message))

        assert isinstance(outcome, Retry)
        assert outcome.delay_ms == 60_000
        assert "ContentFetchError" in outcome.error
        mock_gateway.ingest.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [{"need_crawl": False}, {"source_type": "podcast"}])
    async def test_inline_content_used_when_reader_not_applicable(self, processor, sample_message,
                                                                  make_delivery, mock_fetcher,
                                                                  mock_gateway, changes):
        message = sample_message.model_copy(update=changes)

        outcome = await processor.process(make_delivery(message))

        assert outcome == Ack(reason="ingested")
        mock_fetcher.fetch.assert_not_awaited()
        assert mock_gateway.ingest.await_args.args[0].content == "<p>Inline feed content.</p>"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_analysis_failure_uses_retry_budget(self, processor, sample_message, make_delivery,
                                                      mock_analyzer, metrics):
        mock_analyzer.analyze.side_effect = AnalysisError("model timed out")

        first = await processor.process(make_delivery(sample_message, retry_count=0))
        last = await processor.process(make_delivery(sample_message, retry_count=5))

        assert first == Retry(delay_ms=60_000, error="AnalysisError: model timed out")
        assert last == DeadLetter(error="AnalysisError: model timed out")
        assert len(metrics.errors) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ingest_rejection_is_retried(self, processor, sample_message, make_delivery,
                                               mock_gateway, memory_store):
        mock_gateway.ingest.return_value = IngestResult(ok=False, error="500 upstream")

        outcome = await processor.process(make_delivery(sample_message, retry_count=2))

        assert isinstance(outcome, Retry)
        assert outcome.delay_ms == 240_000
        assert "IngestError" in outcome.error
        assert memory_store.sources["example-news"].last_crawled_at is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_pub_date_defaults_to_now(self, processor, sample_message, make_delivery,
                                                    mock_gateway):
        message = sample_message.model_copy(update={"item_pub_date": None})

        await processor.process(make_delivery(message))

        payload = mock_gateway.ingest.await_args.args[0]
        assert payload.published_at > sample_message.timestamp

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_update_failure_does_not_fail_message(self, processor, sample_message,
                                                              make_delivery, memory_store):
        async def broken(*args, **kwargs):
            raise RuntimeError("store offline")
        memory_store.mark_source_crawled = broken

        outcome = await processor.process(make_delivery(sample_message))

        assert outcome == Ack(reason="ingested")


class TestProcessorIdempotence:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_message_twice_stores_one_article(self, memory_store, mock_fetcher, mock_analyzer,
                                                         sample_message, make_delivery, metrics):
        processor = MessageProcessor(
            store=memory_store,
            fetcher=mock_fetcher,
            analyzer=mock_analyzer,
            gateway=StoreIngestGateway(memory_store),
            metrics=metrics,
        )

        first = await processor.process(make_delivery(sample_message))
        second = await processor.process(make_delivery(sample_message))

        assert first == Ack(reason="ingested")
        assert second == Ack(reason="duplicate")
        assert len(memory_store.articles) == 1
        mock_fetcher.fetch.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_record_failure_does_not_fail_message(self, processor, sample_message, make_delivery,
                                                        memory_store):
        async def broken(*args, **kwargs):
            raise RuntimeError("store offline")
        memory_store.record_ingested = broken

        outcome = await processor.process(make_delivery(sample_message))

        assert outcome == Ack(reason="ingested")


class RemoteSite:
    """Reader proxy, article page and ingest endpoint on one test server."""

    def __init__(self, reader_status=200, reader_body="# Launch\n\nReader body.",
                 page_html="<p>Hello plain text</p>"):
        self.reader_status = reader_status
        self.reader_body = reader_body
        self.page_html = page_html
        self.ingested = []

    async def page(self, request):
        if request.path.startswith("/127.0.0.1"):
            return web.Response(status=self.reader_status, text=self.reader_body)
        return web.Response(text=self.page_html, content_type="text/html")

    async def ingest(self, request):
        self.ingested.append(await request.json())
        return web.json_response({"ok": True, "id": f"art-{len(self.ingested)}", "inserted": True})

    def app(self):
        app = web.Application()
        app.router.add_post("/api/ingest", self.ingest)
        app.router.add_get("/{tail:.*}", self.page)
        return app


async def no_sleep(delay):
    pass


class TestProcessorWithRemoteClients:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_http_ingest_dedups_redelivery(self, tmp_path, mock_fetcher, mock_analyzer,
                                                 sample_message, make_delivery):
        site = RemoteSite()
        store = SqliteContentStore(str(tmp_path / "pipeline.db"))
        message = sample_message.model_copy(update={"need_crawl": False})
        try:
            async with TestServer(site.app()) as server:
                processor = MessageProcessor(
                    store=store,
                    fetcher=mock_fetcher,
                    analyzer=mock_analyzer,
                    gateway=HttpIngestGateway(str(server.make_url("/api/ingest")), "ingest-secret"),
                )

                first = await processor.process(make_delivery(message))
                second = await processor.process(make_delivery(message))
        finally:
            store.close()

        assert first == Ack(reason="ingested")
        assert second == Ack(reason="duplicate")
        assert len(site.ingested) == 1
        mock_analyzer.analyze.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fallback_page_text_is_ingested_as_text(self, memory_store, mock_analyzer, mock_gateway,
                                                          sample_message, make_delivery):
        site = RemoteSite(reader_status=404, reader_body="not found")
        async with TestServer(site.app()) as server:
            fetcher = ContentFetcher(reader_prefix=str(server.make_url("/")), timeout_ms=5000,
                                     sleep=no_sleep)
            processor = MessageProcessor(memory_store, fetcher, mock_analyzer, mock_gateway)
            message = sample_message.model_copy(update={"item_url": str(server.make_url("/article"))})

            outcome = await processor.process(make_delivery(message))

        assert outcome == Ack(reason="ingested")
        payload = mock_gateway.ingest.await_args.args[0]
        assert payload.content == "Hello plain text"
        assert payload.content_format == "text"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reader_content_is_ingested_as_markdown(self, memory_store, mock_analyzer, mock_gateway,
                                                          sample_message, make_delivery):
        site = RemoteSite()
        async with TestServer(site.app()) as server:
            fetcher = ContentFetcher(reader_prefix=str(server.make_url("/")), timeout_ms=5000,
                                     sleep=no_sleep)
            processor = MessageProcessor(memory_store, fetcher, mock_analyzer, mock_gateway)
            message = sample_message.model_copy(update={"item_url": str(server.make_url("/article"))})

            await processor.process(make_delivery(message))

        payload = mock_gateway.ingest.await_args.args[0]
        assert payload.content == "# Launch\n\nReader body."
        assert payload.content_format == "markdown"
