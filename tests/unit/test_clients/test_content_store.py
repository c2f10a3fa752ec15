"""
Unit tests for clients.content_store, clients.dead_letter and clients.secrets.
"""
import json

import pytest

from clients.content_store import InMemoryContentStore, SqliteContentStore
from clients.dead_letter import JsonlDeadLetterSink
from clients.secrets import StaticSecretProvider
from crawler.core.ingest_gateway import StoreIngestGateway
from crawler.interfaces import DeadLetterWriteError
from crawler.models import DeadLetterRecord, IngestPayload, Source

HOUR_MS = 60 * 60 * 1000
NOW = 1_705_320_000_000


def make_payload(url="https://example.com/a", title="Title"):
    return IngestPayload(
        url=url, title=title, source_id="s1", source_name="S1", source_url="https://example.com/rss",
        source_type="news", source_category="", source_language="en", published_at=NOW, crawled_at=NOW,
        summary="sum", one_line="one", content="body", content_format="text", category="news",
        tags=["a"], importance=50, sentiment="neutral", language="en",
    )


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteContentStore(str(tmp_path / "db" / "pipeline.db"))
    yield store
    store.close()


class TestSqliteContentStore:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_due_sources_orders_and_filters(self, sqlite_store):
        sources = [
            Source(id="fresh", url="https://a.example/rss", name="A", type="news"),
            Source(id="flaky", url="https://b.example/rss", name="B", type="blog"),
            Source(id="podcast", url="https://c.example/rss", name="C", type="podcast"),
            Source(id="off", url="https://d.example/rss", name="D", type="news", is_active=False),
            Source(id="recent", url="https://e.example/rss", name="E", type="news"),
        ]
        for source in sources:
            await sqlite_store.upsert_source(source)
        await sqlite_store.record_source_error("flaky")
        await sqlite_store.mark_source_crawled("recent", success=True, at=NOW - 10 * 60 * 1000)

        due = await sqlite_store.fetch_due_sources(["news", "blog", "article"], limit=10, now=NOW)

        assert [s.id for s in due] == ["fresh", "flaky"]
        assert due[1].error_count == 1

        limited = await sqlite_store.fetch_due_sources(["news", "blog"], limit=1, now=NOW)
        assert [s.id for s in limited] == ["fresh"]
        assert await sqlite_store.fetch_due_sources([], limit=10, now=NOW) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_mark_source_crawled_resets_errors(self, sqlite_store):
        await sqlite_store.upsert_source(Source(id="s1", url="https://a.example/rss", name="A"))
        await sqlite_store.record_source_error("s1")
        await sqlite_store.record_source_error("s1")

        errored = await sqlite_store.get_source("s1")
        assert errored.error_count == 2
        assert errored.last_crawled_at is None

        await sqlite_store.mark_source_crawled("s1", success=True, at=NOW)
        source = await sqlite_store.get_source("s1")
        assert source.error_count == 0
        assert source.last_crawled_at == NOW
        assert not source.is_due(NOW + HOUR_MS - 1)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_upsert_article_by_url(self, sqlite_store):
        article_id, inserted = await sqlite_store.upsert_article(make_payload(title="First"))
        same_id, inserted_again = await sqlite_store.upsert_article(make_payload(title="Second"))

        assert inserted is True
        assert inserted_again is False
        assert same_id == article_id
        assert await sqlite_store.exists_by_url("https://example.com/a")
        assert not await sqlite_store.exists_by_url("https://example.com/missing")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_recorded_urls_count_as_existing(self, sqlite_store):
        url = "https://example.com/remote-only"
        assert not await sqlite_store.exists_by_url(url)

        await sqlite_store.record_ingested(url, at=NOW)
        await sqlite_store.record_ingested(url, at=NOW + 1)

        assert await sqlite_store.exists_by_url(url)

        reopened = SqliteContentStore(sqlite_store.db_path)
        try:
            assert await reopened.exists_by_url(url)
        finally:
            reopened.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_probe(self, sqlite_store):
        assert await sqlite_store.probe() is True
        sqlite_store.close()
        assert await sqlite_store.probe() is False


class TestStoreIngestGateway:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ingest_into_memory_store(self):
        store = InMemoryContentStore()
        gateway = StoreIngestGateway(store)

        first = await gateway.ingest(make_payload())
        second = await gateway.ingest(make_payload())

        assert first.ok and first.inserted
        assert second.ok and second.inserted is False
        assert second.id == first.id
        assert store.articles["https://example.com/a"]["oneLine"] == "one"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_error_becomes_failed_result(self, sqlite_store):
        gateway = StoreIngestGateway(sqlite_store)
        sqlite_store.close()

        result = await gateway.ingest(make_payload())

        assert result.ok is False
        assert result.error


class TestJsonlDeadLetterSink:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_records_are_appended(self, tmp_path, sample_message):
        path = tmp_path / "dlq" / "dead_letters.jsonl"
        sink = JsonlDeadLetterSink(str(path))

        await sink.write(DeadLetterRecord.from_message(sample_message, "first", 5))
        await sink.write(DeadLetterRecord.from_message(sample_message, "second", 0))

        lines = path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["error"] for line in lines] == ["first", "second"]
        records = sink.read_records()
        assert records[0].retry_count == 5
        assert records[1].original_message["itemUrl"] == sample_message.item_url

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_write_failure_raises_pipeline_error(self, tmp_path, sample_message):
        # a directory where the file should be
        path = tmp_path / "dead_letters.jsonl"
        path.mkdir()
        sink = JsonlDeadLetterSink(str(path))

        with pytest.raises(DeadLetterWriteError):
            await sink.write(DeadLetterRecord.from_message(sample_message, "err", 5))


class TestSecretProviders:

    @pytest.mark.unit
    def test_static_provider(self):
        provider = StaticSecretProvider({"INGEST_SECRET": "xyz", "CRON_SECRET": None})
        assert provider.get_secret("INGEST_SECRET") == "xyz"
        assert provider.get_secret("CRON_SECRET") is None
