# crawler/interfaces/__init__.py
"""
Interfaces package for the crawl pipeline.
"""

from .pipeline_interfaces import (
    # Queue interfaces
    QueueDelivery,
    IMessageQueue,
    IDeadLetterSink,

    # Storage and secrets
    IContentStore,
    ISecretProvider,

    # Pipeline stages
    IFeedParser,
    IContentFetcher,
    IContentAnalyzer,
    IIngestGateway,

    # Exceptions
    PipelineError,
    MessageValidationError,
    FeedParseError,
    ContentFetchError,
    AnalysisError,
    IngestError,
    DeadLetterWriteError,
    ConfigurationError
)

__all__ = [
    # Queue interfaces
    'QueueDelivery',
    'IMessageQueue',
    'IDeadLetterSink',

    # Storage and secrets
    'IContentStore',
    'ISecretProvider',

    # Pipeline stages
    'IFeedParser',
    'IContentFetcher',
    'IContentAnalyzer',
    'IIngestGateway',

    # Exceptions
    'PipelineError',
    'MessageValidationError',
    'FeedParseError',
    'ContentFetchError',
    'AnalysisError',
    'IngestError',
    'DeadLetterWriteError',
    'ConfigurationError'
]
