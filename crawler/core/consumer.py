"""
Queue consumer: processes delivered batches with bounded concurrency and
applies each message's outcome to the queue.
"""
import asyncio
from typing import List, Optional, Sequence

from loguru import logger

from crawler.core.processor import MessageProcessor
from crawler.interfaces import IDeadLetterSink, IMessageQueue, QueueDelivery
from crawler.models import (
    Ack,
    BatchResult,
    DeadLetter,
    DeadLetterRecord,
    ProcessingOutcome,
    Reject,
    Retry,
)
from monitoring.metrics import PipelineMetrics, Timer


class QueueConsumer:
    """Batch-oriented worker for the crawl queue."""

    def __init__(self, queue: IMessageQueue, processor: MessageProcessor,
                 dead_letter_sink: Optional[IDeadLetterSink],
                 metrics: Optional[PipelineMetrics] = None,
                 max_concurrency: int = 5, batch_size: int = 10):
        self.queue = queue
        self.processor = processor
        self.dead_letter_sink = dead_letter_sink
        self.metrics = metrics or processor.metrics
        self.max_concurrency = max_concurrency
        self.batch_size = batch_size

    async def handle_batch(self, deliveries: Sequence[QueueDelivery]) -> BatchResult:
        """
        Process a delivered batch.

        Every delivery reaches a terminal queue action (ack, retry, or
        dead-letter then ack) independently of the others.

        Returns:
            Aggregate counters and duration for the batch
        """
        timer = Timer()
        result = BatchResult()
        if not deliveries:
            return result

        logger.info(f"📥 Queue batch received: {len(deliveries)} messages")
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(delivery: QueueDelivery) -> ProcessingOutcome:
            async with semaphore:
                outcome = await self._process_one(delivery)
                await self._settle(delivery, outcome)
                return outcome

        outcomes: List[ProcessingOutcome] = await asyncio.gather(
            *(run_one(delivery) for delivery in deliveries)
        )

        for outcome in outcomes:
            result.processed += 1
            if isinstance(outcome, Ack):
                result.succeeded += 1
                continue
            result.failed += 1
            if isinstance(outcome, Retry):
                result.retried += 1
            elif isinstance(outcome, DeadLetter):
                result.dead_lettered += 1
            elif isinstance(outcome, Reject):
                result.rejected += 1

        result.duration_ms = timer.elapsed_ms
        self.metrics.record_batch(result)
        logger.info(
            f"✅ Queue batch completed: {result.processed} processed, {result.succeeded} succeeded, "
            f"{result.failed} failed, {result.retried} retried in {result.duration_ms}ms"
        )
        return result

    async def _process_one(self, delivery: QueueDelivery) -> ProcessingOutcome:
        try:
            return await self.processor.process(delivery)
        except Exception as e:
            # processor bugs still go through the retry policy
            logger.exception(f"Unexpected error processing message {delivery.id}: {e}")
            return self.processor.retry_policy.on_failure(delivery.retry_count, f"{type(e).__name__}: {e}")

    async def _settle(self, delivery: QueueDelivery, outcome: ProcessingOutcome):
        """Perform the queue action for ``outcome``."""
        try:
            if isinstance(outcome, Ack):
                await delivery.ack()
            elif isinstance(outcome, Retry):
                logger.warning(
                    f"Queue message retry: {delivery.id} (retry {delivery.retry_count}, "
                    f"delay {outcome.delay_ms}ms): {outcome.error}"
                )
                await delivery.retry(outcome.delay_ms)
            else:
                logger.error(f"❌ Queue message failed, sending to DLQ: {delivery.id}: {outcome.error}")
                await self._dead_letter(delivery, outcome.error)
                await delivery.ack()
        except Exception as e:
            logger.error(f"Queue operation failed for message {delivery.id}: {e}")
            self.metrics.increment("queue_settle_failures")

    async def _dead_letter(self, delivery: QueueDelivery, error: str):
        """Write a dead-letter record. Failures are logged only."""
        if self.dead_letter_sink is None:
            logger.error(f"Dead letter queue not available for message {delivery.id}")
            return
        record = DeadLetterRecord.from_message(delivery.message, error, delivery.retry_count,
                                               raw_body=delivery.raw_body)
        try:
            await self.dead_letter_sink.write(record)
        except Exception as e:
            logger.error(f"Failed to write dead-letter record for {delivery.id}: {e}")
            self.metrics.increment("dead_letter_write_failures")

    async def poll_once(self) -> BatchResult:
        """Receive and process one batch, then persist stats."""
        deliveries = await self.queue.receive_batch(self.batch_size)
        result = await self.handle_batch(deliveries)
        if deliveries:
            self.metrics.persist_stats()
        return result

    async def run(self, stop_event: asyncio.Event, poll_interval: float = 5.0):
        """Poll the queue until ``stop_event`` is set."""
        logger.info(f"🚀 Queue consumer started (batch size {self.batch_size}, concurrency {self.max_concurrency})")
        while not stop_event.is_set():
            try:
                result = await self.poll_once()
            except Exception as e:
                logger.error(f"❌ Queue poll failed: {e}")
                result = BatchResult()
            if result.processed == 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass
        logger.info("Queue consumer stopped")
