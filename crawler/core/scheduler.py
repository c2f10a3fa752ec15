"""
Per-tier crawl scheduler.

Each priority tier runs its own loop with its own interval. A tier run never
overlaps a previous run of the same tier, and tiers share no run state.
"""
import asyncio
import time
from typing import Dict, Iterable, Optional

from loguru import logger

from crawler.core.producer import CrawlProducer
from crawler.models import PriorityTier, ProducerResult, TIER_INTERVALS, tier_for_cron


class TierScheduler:
    """Drives CrawlProducer.run_for_tier on independent per-tier timers."""

    def __init__(self, producer: CrawlProducer, tiers: Optional[Iterable[PriorityTier]] = None,
                 intervals: Optional[Dict[PriorityTier, float]] = None):
        """
        Args:
            producer: Producer to run
            tiers: Tiers to schedule (all by default)
            intervals: Seconds between run starts per tier (tier crawl interval by default)
        """
        self.producer = producer
        self.tiers = list(tiers) if tiers else list(PriorityTier)
        self.intervals = {
            tier: (intervals or {}).get(tier, TIER_INTERVALS[tier].total_seconds())
            for tier in self.tiers
        }
        self._locks = {tier: asyncio.Lock() for tier in PriorityTier}
        self.last_results: Dict[PriorityTier, ProducerResult] = {}

    async def run_tier_once(self, tier: PriorityTier) -> Optional[ProducerResult]:
        """Run one tier unless a run of that tier is already in progress."""
        lock = self._locks[tier]
        if lock.locked():
            logger.warning(f"⚠️ {tier.value}-priority run still in progress, skipping trigger")
            return None
        async with lock:
            result = await self.producer.run_for_tier(tier)
            self.last_results[tier] = result
            return result

    async def trigger_cron(self, cron: str) -> Optional[ProducerResult]:
        """Run the tier a cron expression schedules."""
        tier = tier_for_cron(cron)
        logger.info(f"⏰ Cron trigger '{cron}' -> {tier.value} priority")
        return await self.run_tier_once(tier)

    async def _tier_loop(self, tier: PriorityTier, stop_event: asyncio.Event):
        interval = self.intervals[tier]
        while not stop_event.is_set():
            start_time = time.monotonic()
            try:
                await self.run_tier_once(tier)
            except Exception as e:
                logger.error(f"❌ {tier.value}-priority run failed: {e}")

            elapsed_time = time.monotonic() - start_time
            sleep_duration = max(0, interval - elapsed_time)
            logger.info(f"😴 {tier.value}-priority sleeping for {sleep_duration:.2f} seconds...")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=sleep_duration)
            except asyncio.TimeoutError:
                pass

    async def run(self, stop_event: asyncio.Event):
        """Run every configured tier loop until ``stop_event`` is set."""
        logger.info(f"🚀 Scheduler started for tiers: {[t.value for t in self.tiers]}")
        await asyncio.gather(*(self._tier_loop(tier, stop_event) for tier in self.tiers))
        logger.info("Scheduler stopped")
