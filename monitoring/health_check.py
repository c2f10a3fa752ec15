"""
Health checks for the queue consumer.
"""
import os
from datetime import datetime
from typing import Any, Dict, Optional

import psutil
from loguru import logger

from crawler.interfaces import IContentStore, IMessageQueue, ISecretProvider
from monitoring.metrics import PipelineMetrics

HIGH_MEMORY_MB = 800


class HealthCheck:
    """Checks queue binding, store connectivity and required secrets."""

    def __init__(self, queue: Optional[IMessageQueue], store: Optional[IContentStore],
                 secrets: ISecretProvider, metrics: Optional[PipelineMetrics] = None,
                 require_ingest_secret: bool = True):
        self.queue = queue
        self.store = store
        self.secrets = secrets
        # local ingest writes straight to the store and needs no secret
        self.require_ingest_secret = require_ingest_secret
        self.metrics = metrics
        self.start_time = datetime.now()
        logger.info("Health check system initialized")

    def get_uptime(self) -> str:
        """Get the application uptime as a formatted string.

        Returns:
            Formatted uptime string (e.g., "3d 4h 12m 30s")
        """
        delta = datetime.now() - self.start_time
        days = delta.days
        hours, remainder = divmod(delta.seconds, 3600)
        minutes, seconds = divmod(remainder, 60)

        if days > 0:
            return f"{days}d {hours}h {minutes}m {seconds}s"
        elif hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        elif minutes > 0:
            return f"{minutes}m {seconds}s"
        else:
            return f"{seconds}s"

    def check_memory_usage(self) -> Dict[str, Any]:
        """Check current process memory usage."""
        try:
            memory_mb = psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logger.error(f"Failed to check memory usage: {e}")
            return {"memory_mb": 0, "high_memory": False, "error": str(e)}

        if self.metrics is not None:
            self.metrics.update_memory_usage(memory_mb)
        return {"memory_mb": round(memory_mb, 2), "high_memory": memory_mb > HIGH_MEMORY_MB}

    async def get_health_status(self) -> Dict[str, Any]:
        """Run all checks.

        Returns:
            Dictionary with ``status`` ("healthy" or "degraded") and per-check results
        """
        checks = {
            "queue": self.queue is not None,
            "store": False,
        }
        if self.require_ingest_secret:
            checks["ingest_secret"] = bool(self.secrets.get_secret("INGEST_SECRET"))

        if self.store is not None:
            try:
                checks["store"] = await self.store.probe()
            except Exception as e:
                logger.error(f"Store health probe failed: {e}")

        healthy = all(checks.values())
        if not healthy:
            failing = [name for name, ok in checks.items() if not ok]
            logger.warning(f"⚠️ Health check degraded: {', '.join(failing)}")

        return {
            "status": "healthy" if healthy else "degraded",
            "checks": checks,
            "uptime": self.get_uptime(),
            "memory": self.check_memory_usage(),
            "timestamp": datetime.now().isoformat(),
        }
