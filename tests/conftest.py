"""
Shared test configuration and fixtures for the crawl pipeline tests.

Provides sample feeds and messages, in-memory fakes for every external
dependency, and a FakeDelivery that records the queue action taken on it.
"""
import os
import sys
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Optional
from unittest.mock import AsyncMock

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from clients.content_store import InMemoryContentStore
from clients.dead_letter import InMemoryDeadLetterSink
from clients.memory_queue import InMemoryQueue
from clients.secrets import StaticSecretProvider
from crawler.core.processor import MessageProcessor
from crawler.core.retry_policy import RetryPolicy
from crawler.interfaces import IContentAnalyzer, IContentFetcher, IIngestGateway, QueueDelivery
from crawler.models import AnalysisResult, CrawlMessage, IngestResult, Source
from monitoring.metrics import PipelineMetrics


class FakeDelivery(QueueDelivery):
    """Queue delivery that records ack / retry calls."""

    def __init__(self, message: CrawlMessage, retry_count: int = 0, delivery_id: Optional[str] = None,
                 fail_ack: bool = False):
        self._message = message
        self._retry_count = retry_count
        self._id = delivery_id or f"msg-{message.item_url}"
        self.fail_ack = fail_ack
        self.acked = False
        self.retry_delays = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def message(self) -> CrawlMessage:
        return self._message

    @property
    def retry_count(self) -> int:
        return self._retry_count

    async def ack(self) -> None:
        if self.fail_ack:
            raise RuntimeError("queue unavailable")
        self.acked = True

    async def retry(self, delay_ms: int) -> None:
        self.retry_delays.append(delay_ms)


def rss_date(days_ago: float = 0) -> str:
    """RFC 822 date ``days_ago`` days in the past."""
    return format_datetime(datetime.now(timezone.utc) - timedelta(days=days_ago))


@pytest.fixture
def sample_rss_feed():
    """RSS 2.0 document with two recent items, one stale item and one without a link."""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
    <rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
        <channel>
            <title>Example AI News</title>
            <link>https://example.com</link>
            <description>Test feed</description>
            <item>
                <title>OpenAI announces new GPT model</title>
                <link>https://example.com/gpt-launch</link>
                <description>Short summary of the launch.</description>
                <content:encoded><![CDATA[<p>Full launch article body.</p>]]></content:encoded>
                <pubDate>{rss_date(1)}</pubDate>
                <guid>gpt-launch-1</guid>
            </item>
            <item>
                <title>Benchmark study of open models</title>
                <link>https://example.com/benchmark-study</link>
                <description>Researchers compare open models.</description>
                <pubDate>{rss_date(0.5)}</pubDate>
            </item>
            <item>
                <title>Old news from last year</title>
                <link>https://example.com/old-news</link>
                <description>Stale item.</description>
                <pubDate>{rss_date(90)}</pubDate>
            </item>
            <item>
                <title>Item without any link</title>
                <description>Should be skipped.</description>
                <pubDate>{rss_date(1)}</pubDate>
            </item>
        </channel>
    </rss>"""


@pytest.fixture
def sample_atom_feed():
    updated = (datetime.now(timezone.utc) - timedelta(hours=3)).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"""<?xml version="1.0" encoding="utf-8"?>
    <feed xmlns="http://www.w3.org/2005/Atom">
        <title>Example Atom Blog</title>
        <link href="https://blog.example.com/"/>
        <updated>{updated}</updated>
        <id>urn:example:blog</id>
        <entry>
            <title>Release notes for Llama tooling</title>
            <link href="https://blog.example.com/llama-tooling"/>
            <id>urn:example:blog:1</id>
            <updated>{updated}</updated>
            <summary>Tooling release.</summary>
        </entry>
    </feed>"""


@pytest.fixture
def sample_source():
    return Source(
        id="example-news",
        url="https://example.com/feed.xml",
        name="Example News",
        type="news",
        category="ai_company",
    )


@pytest.fixture
def sample_message():
    return CrawlMessage(
        source_id="example-news",
        source_url="https://example.com/feed.xml",
        source_name="Example News",
        source_type="news",
        source_category="ai_company",
        item_url="https://example.com/gpt-launch",
        item_title="OpenAI announces new GPT model",
        item_pub_date="2024-01-15T12:00:00Z",
        item_content="<p>Inline feed content.</p>",
        need_crawl=True,
        timestamp=1_705_320_000_000,
    )


@pytest.fixture
def metrics(tmp_path):
    """PipelineMetrics persisting into a temporary directory."""
    return PipelineMetrics(metrics_dir=str(tmp_path / "metrics"))


@pytest.fixture
def memory_store(sample_source):
    return InMemoryContentStore([sample_source])


@pytest.fixture
def memory_queue():
    return InMemoryQueue()


@pytest.fixture
def dead_letter_sink():
    return InMemoryDeadLetterSink()


@pytest.fixture
def secrets():
    return StaticSecretProvider({"CRON_SECRET": "cron-secret", "INGEST_SECRET": "ingest-secret"})


@pytest.fixture
def mock_fetcher():
    fetcher = AsyncMock(spec=IContentFetcher)
    fetcher.fetch.return_value = ("# Launch\n\nFetched article body.", "markdown")
    return fetcher


@pytest.fixture
def sample_analysis():
    return AnalysisResult(
        summary="OpenAI released a model.",
        one_line="OpenAI ships a new GPT model",
        category="release",
        tags=["openai", "gpt"],
        importance=80,
        sentiment="positive",
        language="en",
    )


@pytest.fixture
def mock_analyzer(sample_analysis):
    analyzer = AsyncMock(spec=IContentAnalyzer)
    analyzer.analyze.return_value = sample_analysis
    return analyzer


@pytest.fixture
def mock_gateway():
    gateway = AsyncMock(spec=IIngestGateway)
    gateway.ingest.return_value = IngestResult(ok=True, id="article-1", inserted=True)
    return gateway


@pytest.fixture
def processor(memory_store, mock_fetcher, mock_analyzer, mock_gateway, metrics):
    return MessageProcessor(
        store=memory_store,
        fetcher=mock_fetcher,
        analyzer=mock_analyzer,
        gateway=mock_gateway,
        retry_policy=RetryPolicy(),
        metrics=metrics,
    )


@pytest.fixture
def make_delivery():
    """Factory for FakeDelivery handles."""
    return FakeDelivery
