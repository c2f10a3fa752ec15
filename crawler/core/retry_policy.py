"""
Message retry and dead-letter policy.
"""
from dataclasses import dataclass

from crawler.models import DeadLetter, ProcessingOutcome, Retry


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``2**retry_count * base_delay_ms`` until the budget runs out."""
    max_retries: int = 5
    base_delay_ms: int = 60_000

    def delay_for(self, retry_count: int) -> int:
        return (2 ** retry_count) * self.base_delay_ms

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries

    def on_failure(self, retry_count: int, error: str) -> ProcessingOutcome:
        """Outcome for a failed attempt whose delivery had ``retry_count`` prior retries."""
        if self.should_retry(retry_count):
            return Retry(delay_ms=self.delay_for(retry_count), error=error)
        return DeadLetter(error=error)
