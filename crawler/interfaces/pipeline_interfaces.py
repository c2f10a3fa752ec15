# crawler/interfaces/pipeline_interfaces.py
"""
Interfaces for every external dependency of the crawl pipeline.

Each collaborator (queue, store, secrets, dead-letter sink, fetcher, analyzer,
ingest gateway) is injected at construction so in-memory fakes can stand in
for the real services in tests.
"""
import random
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from crawler.models import (
    AnalysisInput,
    AnalysisResult,
    CrawlMessage,
    DeadLetterRecord,
    IngestPayload,
    IngestResult,
    ParsedFeed,
    Source,
)


# Queue

class QueueDelivery(ABC):
    """A delivered message plus its acknowledgement handle."""

    @property
    @abstractmethod
    def id(self) -> str:
        pass

    @property
    @abstractmethod
    def message(self) -> CrawlMessage:
        pass

    @property
    @abstractmethod
    def retry_count(self) -> int:
        """Number of previous deliveries of this message."""
        pass

    @property
    def raw_body(self) -> Optional[str]:
        """Undecodable body as stored, or None when ``message`` decoded cleanly."""
        return None

    @abstractmethod
    async def ack(self) -> None:
        """Remove the message from the live queue."""
        pass

    @abstractmethod
    async def retry(self, delay_ms: int) -> None:
        """Schedule redelivery after ``delay_ms``."""
        pass


class IMessageQueue(ABC):
    """At-least-once message queue."""

    @abstractmethod
    async def send(self, message: CrawlMessage) -> None:
        pass

    async def send_batch(self, messages: Sequence[CrawlMessage]) -> None:
        for message in messages:
            await self.send(message)

    @abstractmethod
    async def receive_batch(self, max_messages: int) -> List[QueueDelivery]:
        """
        Receive up to ``max_messages`` deliverable messages.

        Returns:
            Possibly empty list of deliveries
        """
        pass


class IDeadLetterSink(ABC):
    """Durable, append-only store of terminal failures."""

    @abstractmethod
    async def write(self, record: DeadLetterRecord) -> None:
        """
        Persist a dead-letter record.

        Raises:
            DeadLetterWriteError: When the record cannot be stored
        """
        pass


# Storage and secrets

class IContentStore(ABC):
    """Relational content store as seen by the pipeline."""

    @abstractmethod
    async def exists_by_url(self, url: str) -> bool:
        """Exact-URL existence check used for dedup."""
        pass

    @abstractmethod
    async def record_ingested(self, url: str, at: int) -> None:
        """Remember a URL accepted by the ingest gateway so later deliveries dedup."""
        pass

    @abstractmethod
    async def probe(self) -> bool:
        """Connectivity probe for health checks."""
        pass

    @abstractmethod
    async def fetch_due_sources(self, types: Sequence[str], limit: int, now: int) -> List[Source]:
        """
        Active sources of ``types`` due at ``now``.

        Ordered by error count ascending, then last crawl time ascending with
        never-crawled sources first.
        """
        pass

    @abstractmethod
    async def mark_source_crawled(self, source_id: str, success: bool, at: int) -> None:
        """Set ``last_crawled_at``; success resets the error count, failure increments it."""
        pass

    @abstractmethod
    async def record_source_error(self, source_id: str) -> None:
        """Increment the error count without touching ``last_crawled_at``."""
        pass


class ISecretProvider(ABC):

    @abstractmethod
    def get_secret(self, name: str) -> Optional[str]:
        pass


# Pipeline stages

class IFeedParser(ABC):

    @abstractmethod
    async def parse(self, feed_url: str) -> ParsedFeed:
        """
        Fetch and parse a feed.

        Raises:
            FeedParseError: When the feed cannot be fetched or parsed
        """
        pass


class IContentFetcher(ABC):

    @abstractmethod
    async def fetch(self, url: str) -> Tuple[str, str]:
        """
        Retrieve cleaned article content as ``(content, content_format)``.

        Raises:
            ContentFetchError: When every attempt failed
        """
        pass


class IContentAnalyzer(ABC):

    @abstractmethod
    async def analyze(self, data: AnalysisInput) -> AnalysisResult:
        """
        Enrich an article.

        Raises:
            AnalysisError: When enrichment failed
        """
        pass


class IIngestGateway(ABC):

    @abstractmethod
    async def ingest(self, payload: IngestPayload) -> IngestResult:
        pass


# Exceptions

class PipelineError(Exception):
    """Base exception for pipeline operations."""

    def __init__(self, message: str, source_name: str = "", cause: Optional[Exception] = None):
        super().__init__(message)
        self.source_name = source_name
        self.cause = cause


class MessageValidationError(PipelineError):
    """Message is missing required item fields. Terminal."""
    pass


class FeedParseError(PipelineError):
    """Feed could not be fetched or parsed."""

    def __init__(self, message: str, source_name: str = "", cause: Optional[Exception] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, source_name=source_name, cause=cause)
        # None for document errors, 0 for transport failures
        self.status_code = status_code

    @property
    def is_retryable(self) -> bool:
        if self.status_code is None:
            return False
        return self.status_code in (0, 408, 429) or 500 <= self.status_code < 600


class ContentFetchError(PipelineError):
    """Article content could not be retrieved."""

    def __init__(self, message: str, status_code: int = 0, url: str = "",
                 cause: Optional[Exception] = None):
        super().__init__(message, cause=cause)
        self.status_code = status_code
        self.url = url

    @property
    def is_retryable(self) -> bool:
        return (
            self.status_code in (0, 408, 429)
            or 500 <= self.status_code < 600
        )

    def retry_delay(self, attempt: int) -> float:
        """Seconds to wait before attempt ``attempt + 1``."""
        if self.status_code == 429:
            base = 60.0
        elif self.status_code == 408 or 500 <= self.status_code < 600:
            base = random.uniform(5.0, 30.0)
        else:
            base = 10.0
        return base * (attempt + 1)


class AnalysisError(PipelineError):
    """Enrichment call failed."""
    pass


class IngestError(PipelineError):
    """Ingest gateway rejected the payload or was unreachable."""
    pass


class DeadLetterWriteError(PipelineError):
    """Dead-letter record could not be stored."""
    pass


class ConfigurationError(PipelineError):
    """Invalid or missing configuration."""
    pass
