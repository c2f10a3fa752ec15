# crawler/models/__init__.py
"""
Data models for the crawl-to-ingest pipeline.
"""

from .source_models import (
    PriorityTier,
    Source,
    TIER_CRONS,
    TIER_INTERVALS,
    TIER_SOURCE_TYPES,
    tier_for_cron,
    tier_for_source_type,
    tier_interval_ms
)

from .message_models import (
    CrawlMessage,
    DeadLetterRecord,
    FeedItem,
    ParsedFeed
)

from .analysis_models import (
    AnalysisInput,
    AnalysisResult,
    IngestPayload,
    IngestResult
)

from .outcome_models import (
    Ack,
    Retry,
    DeadLetter,
    Reject,
    ProcessingOutcome,
    BatchResult,
    ProducerResult
)

__all__ = [
    # Source models
    'PriorityTier',
    'Source',
    'TIER_CRONS',
    'TIER_INTERVALS',
    'TIER_SOURCE_TYPES',
    'tier_for_cron',
    'tier_for_source_type',
    'tier_interval_ms',

    # Message models
    'CrawlMessage',
    'DeadLetterRecord',
    'FeedItem',
    'ParsedFeed',

    # Analysis models
    'AnalysisInput',
    'AnalysisResult',
    'IngestPayload',
    'IngestResult',

    # Outcomes
    'Ack',
    'Retry',
    'DeadLetter',
    'Reject',
    'ProcessingOutcome',
    'BatchResult',
    'ProducerResult'
]
