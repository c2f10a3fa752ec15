"""
Entry point for the crawl-to-ingest pipeline.

Modes:
    producer   per-tier scheduler loops that enqueue due feed items
    consumer   queue polling loop that fetches, analyzes and ingests
    serve      producer and consumer in one process plus both HTTP apps
    run-tier   a single producer run for one tier
"""
import argparse
import asyncio
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
from loguru import logger

from clients.content_store import SqliteContentStore
from clients.dead_letter import JsonlDeadLetterSink
from clients.memory_queue import InMemoryQueue
from clients.secrets import StaticSecretProvider
from clients.sqlite_queue import SqliteMessageQueue
from crawler.core.consumer import QueueConsumer
from crawler.core.content_analyzer import create_content_analyzer
from crawler.core.content_fetcher import ContentFetcher
from crawler.core.feed_parser import FeedParser
from crawler.core.ingest_gateway import HttpIngestGateway, StoreIngestGateway
from crawler.core.processor import MessageProcessor
from crawler.core.producer import CrawlProducer
from crawler.core.retry_policy import RetryPolicy
from crawler.core.scheduler import TierScheduler
from crawler.interfaces import ConfigurationError, IMessageQueue
from crawler.models import PriorityTier
from monitoring.api import ConsumerAPI, ProducerAPI, start_app
from monitoring.health_check import HealthCheck
from monitoring.metrics import PipelineMetrics
from utils.config import EnvironmentValidator, PipelineSettings, load_sources_from_yaml

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logging(log_file: Optional[str] = None, level: str = "INFO"):
    """Colored stdout sink plus an optional daily-rotated file sink."""
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level)
    if log_file:
        logger.add(log_file, rotation="1 day", retention="7 days", level=level)


@dataclass
class Pipeline:
    """Wired pipeline components for one process."""
    settings: PipelineSettings
    session: aiohttp.ClientSession
    store: SqliteContentStore
    queue: IMessageQueue
    metrics: PipelineMetrics
    producer: CrawlProducer
    consumer: QueueConsumer
    scheduler: TierScheduler
    health_check: HealthCheck
    secrets: StaticSecretProvider

    async def close(self):
        await self.session.close()
        if isinstance(self.queue, SqliteMessageQueue):
            self.queue.close()
        self.store.close()


def create_queue(settings: PipelineSettings) -> IMessageQueue:
    if settings.queue_backend == "memory":
        logger.info("Using in-memory queue (producer and consumer must share this process)")
        return InMemoryQueue(visibility_timeout=settings.queue_visibility_timeout_s)
    return SqliteMessageQueue(settings.database_path, visibility_timeout=settings.queue_visibility_timeout_s)


async def seed_sources(store: SqliteContentStore, sources_file: str) -> int:
    """Upsert the YAML seed sources into the store."""
    sources = load_sources_from_yaml(sources_file)
    for source in sources:
        await store.upsert_source(source)
    if sources:
        logger.info(f"🌱 Seeded {len(sources)} sources from {sources_file}")
    return len(sources)


async def build_pipeline(settings: PipelineSettings) -> Pipeline:
    """Create every component for ``settings``. Must run inside the event loop."""
    metrics = PipelineMetrics(metrics_dir=settings.metrics_dir)
    session = aiohttp.ClientSession()
    store = SqliteContentStore(settings.database_path)
    await seed_sources(store, settings.sources_file)
    queue = create_queue(settings)

    secrets = StaticSecretProvider({
        "CRON_SECRET": settings.cron_secret,
        "INGEST_SECRET": settings.ingest_secret,
    })

    feed_parser = FeedParser(timeout=settings.feed_timeout_s, user_agent=settings.user_agent, session=session)
    producer = CrawlProducer(
        store=store,
        queue=queue,
        feed_parser=feed_parser,
        metrics=metrics,
        sources_per_batch=settings.sources_per_batch,
        items_per_source=settings.items_per_source,
        max_age_days=settings.max_age_days,
        concurrency=settings.concurrency,
    )

    fetcher = ContentFetcher(
        reader_prefix=settings.reader_prefix,
        timeout_ms=settings.reader_timeout_ms,
        max_retries=settings.crawler_max_retries,
        api_key=settings.reader_api_key,
        user_agent=settings.user_agent,
        session=session,
    )
    if settings.local_ingest:
        logger.info("Local ingest enabled, articles are written to the local store")
        gateway = StoreIngestGateway(store)
    else:
        gateway = HttpIngestGateway(
            ingest_url=settings.resolved_ingest_url,
            ingest_secret=settings.ingest_secret or "",
            user_agent=settings.user_agent,
            session=session,
        )

    processor = MessageProcessor(
        store=store,
        fetcher=fetcher,
        analyzer=create_content_analyzer(settings, metrics),
        gateway=gateway,
        retry_policy=RetryPolicy(max_retries=settings.queue_max_retries,
                                 base_delay_ms=settings.queue_retry_delay_ms),
        metrics=metrics,
    )
    consumer = QueueConsumer(
        queue=queue,
        processor=processor,
        dead_letter_sink=JsonlDeadLetterSink(settings.dead_letter_path),
        metrics=metrics,
        max_concurrency=settings.concurrency,
        batch_size=settings.queue_batch_size,
    )

    return Pipeline(
        settings=settings,
        session=session,
        store=store,
        queue=queue,
        metrics=metrics,
        producer=producer,
        consumer=consumer,
        scheduler=TierScheduler(producer),
        health_check=HealthCheck(queue, store, secrets, metrics,
                                 require_ingest_secret=not settings.local_ingest),
        secrets=secrets,
    )


def install_signal_handlers(stop_event: asyncio.Event):
    loop = asyncio.get_running_loop()

    def request_stop(signame: str):
        logger.info(f"⚠️ Received {signame}. Shutting down...")
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, request_stop, signum.name)
        except NotImplementedError:
            # Windows event loops
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def run(args: argparse.Namespace, settings: PipelineSettings) -> int:
    pipeline = await build_pipeline(settings)
    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)
    runners = []

    try:
        if args.mode == "run-tier":
            result = await pipeline.scheduler.run_tier_once(PriorityTier(args.tier))
            logger.info(f"📊 Run result: {result.to_dict() if result else 'skipped'}")
            return 0

        if args.mode == "producer":
            if args.cron:
                result = await pipeline.scheduler.trigger_cron(args.cron)
                logger.info(f"📊 Run result: {result.to_dict() if result else 'skipped'}")
            elif args.once:
                for tier in PriorityTier:
                    await pipeline.scheduler.run_tier_once(tier)
            else:
                await pipeline.scheduler.run(stop_event)
            return 0

        if args.mode == "consumer":
            if args.once:
                result = await pipeline.consumer.poll_once()
                logger.info(f"📊 Batch result: {result.to_dict()}")
            else:
                await pipeline.consumer.run(stop_event, poll_interval=settings.poll_interval_s)
            return 0

        # serve
        producer_app = ProducerAPI(pipeline.producer, pipeline.secrets).create_app()
        consumer_app = ConsumerAPI(pipeline.health_check, pipeline.metrics).create_app()
        runners.append(await start_app(producer_app, settings.api_host, settings.producer_port))
        runners.append(await start_app(consumer_app, settings.api_host, settings.consumer_port))
        await asyncio.gather(
            pipeline.scheduler.run(stop_event),
            pipeline.consumer.run(stop_event, poll_interval=settings.poll_interval_s),
        )
        return 0
    finally:
        for runner in runners:
            await runner.cleanup()
        pipeline.metrics.persist_stats()
        pipeline.metrics.save_daily_metrics()
        await pipeline.close()
        logger.info("✅ Pipeline shut down")


def required_modes(args: argparse.Namespace, settings: PipelineSettings) -> List[str]:
    modes = []
    if args.mode in ("consumer", "serve") and not settings.local_ingest:
        modes.append("consumer")
    if args.mode == "serve":
        modes.append("api")
    return modes


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Feed crawl-to-ingest pipeline")
    parser.add_argument("mode", choices=["producer", "consumer", "serve", "run-tier"],
                        help="Process role to run")
    parser.add_argument("tier", nargs="?", choices=[t.value for t in PriorityTier],
                        help="Tier for run-tier mode")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--cron", help="Run the tier scheduled by this cron expression and exit (producer)")
    parser.add_argument("--log-file", help="Also log to this file, rotated daily")
    parser.add_argument("--log-level", default="INFO", help="Log level (default INFO)")
    args = parser.parse_args(argv)
    if args.mode == "run-tier" and not args.tier:
        parser.error("run-tier requires a tier: high, medium or low")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file, args.log_level)

    try:
        settings = PipelineSettings.from_env()
    except ConfigurationError as e:
        logger.critical(f"💥 {e}")
        return 2

    for mode in required_modes(args, settings):
        if not EnvironmentValidator.validate_mode(mode):
            return 2
    EnvironmentValidator.validate_llm_config()

    logger.info(f"🚀 Starting pipeline in {args.mode} mode")
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
