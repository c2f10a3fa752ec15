"""
Pipeline settings loaded from environment variables.

Values come from the process environment (and a local ``.env`` file via
python-dotenv) and are range-checked by pydantic.
"""
import os
from typing import Dict, Literal, Mapping, Optional

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from crawler.interfaces import ConfigurationError

# Environment variable -> settings field
ENV_FIELD_MAP: Dict[str, str] = {
    "SITE_URL": "site_url",
    "INGEST_API_URL": "ingest_url",
    "INGEST_SECRET": "ingest_secret",
    "LOCAL_INGEST": "local_ingest",
    "CRON_SECRET": "cron_secret",
    "CRAWLER_SOURCES_PER_BATCH": "sources_per_batch",
    "CRAWLER_ITEMS_PER_SOURCE": "items_per_source",
    "CRAWLER_CONCURRENCY": "concurrency",
    "CRAWLER_MAX_RETRIES": "crawler_max_retries",
    "CRAWLER_MAX_AGE_DAYS": "max_age_days",
    "FEED_TIMEOUT_SECONDS": "feed_timeout_s",
    "JINA_READER_PREFIX": "reader_prefix",
    "JINA_API_KEY": "reader_api_key",
    "JINA_TIMEOUT": "reader_timeout_ms",
    "QUEUE_BATCH_SIZE": "queue_batch_size",
    "QUEUE_MAX_RETRIES": "queue_max_retries",
    "QUEUE_RETRY_DELAY": "queue_retry_delay_ms",
    "QUEUE_POLL_INTERVAL_SECONDS": "poll_interval_s",
    "QUEUE_BACKEND": "queue_backend",
    "QUEUE_VISIBILITY_TIMEOUT_SECONDS": "queue_visibility_timeout_s",
    "OPENAI_API_KEY": "llm_api_key",
    "OPENAI_BASE_URL": "llm_base_url",
    "AZURE_OPENAI_API_VERSION": "llm_api_version",
    "AZURE_OPENAI_DEPLOYMENT": "llm_model",
    "ANALYZE_TIMEOUT_SECONDS": "analyze_timeout_s",
    "DATABASE_PATH": "database_path",
    "DEAD_LETTER_PATH": "dead_letter_path",
    "METRICS_DIR": "metrics_dir",
    "SOURCES_FILE": "sources_file",
    "API_HOST": "api_host",
    "PRODUCER_PORT": "producer_port",
    "CONSUMER_PORT": "consumer_port",
}


class PipelineSettings(BaseModel):
    """Runtime settings for producer and consumer."""

    site_url: str = "http://localhost:3000"
    ingest_url: Optional[str] = None
    ingest_secret: Optional[str] = None
    local_ingest: bool = False
    cron_secret: Optional[str] = None

    # Producer
    sources_per_batch: int = Field(50, ge=1, le=500)
    items_per_source: int = Field(20, ge=1, le=100)
    max_age_days: int = Field(30, ge=1, le=365)
    feed_timeout_s: float = Field(30, gt=0, le=300)

    # Content fetcher
    reader_prefix: str = "https://r.jina.ai/http://"
    reader_api_key: Optional[str] = None
    reader_timeout_ms: int = Field(30000, ge=1000, le=120000)
    crawler_max_retries: int = Field(3, ge=0, le=10)

    # Consumer
    concurrency: int = Field(5, ge=1, le=50)
    queue_batch_size: int = Field(10, ge=1, le=100)
    queue_max_retries: int = Field(5, ge=0, le=20)
    queue_retry_delay_ms: int = Field(60000, ge=1000)
    poll_interval_s: float = Field(5.0, gt=0)
    queue_backend: Literal["sqlite", "memory"] = "sqlite"
    queue_visibility_timeout_s: float = Field(900, gt=0)

    # Analyzer
    llm_api_key: Optional[str] = None
    llm_base_url: Optional[str] = None
    llm_api_version: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    analyze_timeout_s: float = Field(60, gt=0, le=600)

    # Local storage
    database_path: str = "data/pipeline.db"
    dead_letter_path: str = "data/dead_letter/dead_letters.jsonl"
    metrics_dir: str = "data/metrics"
    sources_file: str = "config/sources.yaml"

    # HTTP surfaces
    api_host: str = "0.0.0.0"
    producer_port: int = Field(8080, ge=1, le=65535)
    consumer_port: int = Field(8081, ge=1, le=65535)

    user_agent: str = "FeedQueue-Crawler/1.0"

    @property
    def resolved_ingest_url(self) -> str:
        """Explicit ingest URL, else ``{site_url}/api/ingest``."""
        if self.ingest_url:
            return self.ingest_url
        return self.site_url.rstrip("/") + "/api/ingest"

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_api_key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ`` (no .env loading)

        Raises:
            ConfigurationError: When a value is out of range or malformed
        """
        if env is None:
            load_dotenv()
            env = os.environ

        values = {
            field_name: env[var]
            for var, field_name in ENV_FIELD_MAP.items()
            if env.get(var) not in (None, "")
        }

        try:
            settings = cls(**values)
        except ValidationError as e:
            logger.error(f"❌ Invalid pipeline configuration: {e}")
            raise ConfigurationError(f"Invalid config: {e}", cause=e)

        logger.debug(f"Loaded pipeline settings ({len(values)} values from environment)")
        return settings
