# crawler/models/outcome_models.py
"""
Per-message processing outcomes and run summaries.

The processor returns one outcome per message; the batch loop turns it into the
matching queue call.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union


@dataclass(frozen=True)
class Ack:
    """Terminal success (ingested or already present)."""
    reason: str = "ingested"


@dataclass(frozen=True)
class Retry:
    """Redeliver after ``delay_ms``."""
    delay_ms: int
    error: str


@dataclass(frozen=True)
class DeadLetter:
    """Retry budget exhausted."""
    error: str


@dataclass(frozen=True)
class Reject:
    """Message failed validation. Never retried."""
    error: str


ProcessingOutcome = Union[Ack, Retry, DeadLetter, Reject]


@dataclass
class BatchResult:
    """Aggregate counters for one consumer batch."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    rejected: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
            "rejected": self.rejected,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ProducerResult:
    """Summary of one producer run."""
    sources_processed: int = 0
    items_enqueued: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)

    def merge(self, other: "ProducerResult") -> "ProducerResult":
        self.sources_processed += other.sources_processed
        self.items_enqueued += other.items_enqueued
        self.errors += other.errors
        self.error_details.extend(other.error_details)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourcesProcessed": self.sources_processed,
            "itemsEnqueued": self.items_enqueued,
            "errors": self.errors,
            "errorDetails": list(self.error_details),
        }
