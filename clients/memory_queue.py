"""
In-process implementation of the crawl queue.

Delivery is at-least-once: a message handed out but neither acked nor retried
within the visibility timeout becomes deliverable again with its retry count
incremented.
"""
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from loguru import logger

from crawler.interfaces import IMessageQueue, QueueDelivery
from crawler.models import CrawlMessage


@dataclass
class _QueueEntry:
    id: str
    message: CrawlMessage
    retry_count: int = 0
    available_at: float = 0.0
    lease_expires_at: Optional[float] = None


class InMemoryDelivery(QueueDelivery):
    """Handle for one delivered entry."""

    def __init__(self, queue: "InMemoryQueue", entry: _QueueEntry):
        self._queue = queue
        self._entry = entry
        self._retry_count = entry.retry_count

    @property
    def id(self) -> str:
        return self._entry.id

    @property
    def message(self) -> CrawlMessage:
        return self._entry.message

    @property
    def retry_count(self) -> int:
        return self._retry_count

    async def ack(self) -> None:
        self._queue._ack(self._entry.id)

    async def retry(self, delay_ms: int) -> None:
        self._queue._retry(self._entry.id, delay_ms)


class InMemoryQueue(IMessageQueue):
    """Delayed-redelivery queue kept in process memory."""

    def __init__(self, visibility_timeout: float = 900,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            visibility_timeout: Seconds a delivery stays leased before implicit redelivery
            clock: Monotonic time source in seconds
        """
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._entries: Dict[str, _QueueEntry] = {}

    async def send(self, message: CrawlMessage) -> None:
        entry_id = uuid.uuid4().hex
        self._entries[entry_id] = _QueueEntry(id=entry_id, message=message, available_at=self._clock())

    async def receive_batch(self, max_messages: int) -> List[QueueDelivery]:
        now = self._clock()
        deliveries = []
        for entry in list(self._entries.values()):
            if len(deliveries) >= max_messages:
                break
            if entry.lease_expires_at is not None:
                if entry.lease_expires_at > now:
                    continue
                # lease expired without ack or retry
                logger.warning(f"Queue message {entry.id} lease expired, redelivering")
                entry.retry_count += 1
                entry.lease_expires_at = None
            if entry.available_at > now:
                continue
            entry.lease_expires_at = now + self.visibility_timeout
            deliveries.append(InMemoryDelivery(self, entry))
        return deliveries

    def _ack(self, entry_id: str):
        self._entries.pop(entry_id, None)

    def _retry(self, entry_id: str, delay_ms: int):
        entry = self._entries.get(entry_id)
        if entry is None:
            return
        entry.retry_count += 1
        entry.available_at = self._clock() + delay_ms / 1000
        entry.lease_expires_at = None

    @property
    def pending_count(self) -> int:
        return len(self._entries)

    def next_available_in(self) -> Optional[float]:
        """Seconds until the earliest non-leased entry becomes deliverable."""
        now = self._clock()
        waiting = [e.available_at - now for e in self._entries.values() if e.lease_expires_at is None]
        return max(0.0, min(waiting)) if waiting else None
