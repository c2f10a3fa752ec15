"""
Metrics collection for the crawl pipeline.

A PipelineMetrics instance is created once by the entry point and passed to
each component that records counters or timings.
"""
import json
import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger

from crawler.models import BatchResult, ProducerResult

STATS_FILENAME = "stats.json"


def _metric_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{key}={labels[key]}" for key in sorted(labels))
    return f"{name}{{{rendered}}}"


class PipelineMetrics:
    """Counters, histograms and persisted aggregate stats."""

    def __init__(self, metrics_dir: Optional[str] = None):
        """Initialize the metrics collector.

        Args:
            metrics_dir: Directory for persisted stats; in-memory only when None
        """
        self.metrics_dir = metrics_dir
        if self.metrics_dir:
            self._ensure_metrics_dir()

        self.counters: Dict[str, float] = {}
        # running aggregates per histogram, constant size however long the process runs
        self.histograms: Dict[str, Dict[str, float]] = {}
        self.errors: List[Dict[str, Any]] = []
        self._last_snapshot: Optional[Dict[str, Any]] = None

        # Running metrics (reset on application restart)
        self.running_metrics = {
            "app_start_time": datetime.now().isoformat(),
            "batches_completed": 0,
            "producer_runs": 0,
            "last_batch": None,
            "last_producer_run": None,
            "memory_usage_mb": 0,
        }

        logger.info(f"Metrics collection initialized. Storing in: {self.metrics_dir or 'memory'}")

    def _ensure_metrics_dir(self):
        """Ensure metrics directory exists."""
        os.makedirs(self.metrics_dir, exist_ok=True)
        os.makedirs(os.path.join(self.metrics_dir, 'daily'), exist_ok=True)

    def increment(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None):
        key = _metric_key(name, labels)
        self.counters[key] = self.counters.get(key, 0) + value

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self.counters.get(_metric_key(name, labels), 0)

    def observe(self, name: str, value: float):
        """Record one histogram observation."""
        stats = self.histograms.get(name)
        if stats is None:
            self.histograms[name] = {"count": 1, "sum": value, "min": value, "max": value}
            return
        stats["count"] += 1
        stats["sum"] += value
        stats["min"] = min(stats["min"], value)
        stats["max"] = max(stats["max"], value)

    def get_histogram_stats(self, name: str) -> Dict[str, float]:
        stats = self.histograms.get(name)
        if not stats:
            return {"count": 0, "sum": 0, "min": 0, "max": 0, "avg": 0}
        return {**stats, "avg": round(stats["sum"] / stats["count"], 2)}

    def record_error(self, error_type: str, message: str, severity: str = "error", **context):
        """Append an error entry to the in-memory error log.

        Args:
            error_type: Short error classification
            message: Error message
            severity: "info", "warning", "error" or "critical"
        """
        entry = {
            "type": error_type,
            "severity": severity,
            "message": message,
            "timestamp": datetime.now().isoformat(),
        }
        entry.update(context)
        self.errors.append(entry)
        # keep the log bounded
        if len(self.errors) > 500:
            self.errors = self.errors[-500:]

    def record_enqueue(self, count: int, tier: Optional[str] = None):
        self.increment("producer_items_enqueued", count, {"tier": tier} if tier else None)

    def record_producer_run(self, tier: str, result: ProducerResult, duration_ms: int):
        self.running_metrics["producer_runs"] += 1
        self.running_metrics["last_producer_run"] = {
            "tier": tier,
            "timestamp": datetime.now().isoformat(),
            "duration_ms": duration_ms,
            **result.to_dict(),
        }
        self.increment("producer_runs_total", 1, {"tier": tier})
        self.increment("producer_sources_processed", result.sources_processed, {"tier": tier})
        self.increment("producer_source_errors", result.errors, {"tier": tier})
        self.observe("producer_run_duration_ms", duration_ms)

    def record_batch(self, result: BatchResult):
        """Fold one consumer batch into the aggregate counters."""
        self.increment("queue_batches_total")
        self.increment("queue_messages_processed", result.processed)
        self.increment("queue_messages_succeeded", result.succeeded)
        self.increment("queue_messages_failed", result.failed)
        self.increment("queue_messages_retried", result.retried)
        self.increment("queue_messages_dead_lettered", result.dead_lettered)
        self.increment("queue_messages_rejected", result.rejected)
        self.observe("queue_batch_duration_ms", result.duration_ms)

        self.running_metrics["batches_completed"] += 1
        self.running_metrics["last_batch"] = {
            "timestamp": datetime.now().isoformat(),
            **result.to_dict(),
        }

    def update_memory_usage(self, memory_mb: float):
        self.running_metrics["memory_usage_mb"] = round(memory_mb, 2)

    def get_current_metrics(self) -> Dict[str, Any]:
        """Get current running metrics.

        Returns:
            Dictionary of running metrics, counters and histogram summaries
        """
        metrics = self.running_metrics.copy()
        metrics["counters"] = dict(self.counters)
        metrics["histograms"] = {name: self.get_histogram_stats(name) for name in self.histograms}
        metrics["recent_errors"] = self.errors[-20:]
        return metrics

    def persist_stats(self) -> Dict[str, Any]:
        """Snapshot current metrics and write them to ``stats.json``."""
        snapshot = self.get_current_metrics()
        snapshot["persisted_at"] = datetime.now().isoformat()
        self._last_snapshot = snapshot

        if self.metrics_dir:
            filepath = os.path.join(self.metrics_dir, STATS_FILENAME)
            try:
                with open(filepath, 'w') as f:
                    json.dump(snapshot, f, indent=2)
            except OSError as e:
                logger.error(f"Failed to save stats: {e}")
        return snapshot

    def load_stats(self) -> Optional[Dict[str, Any]]:
        """Last persisted stats, or None when nothing was persisted yet."""
        if self.metrics_dir:
            filepath = os.path.join(self.metrics_dir, STATS_FILENAME)
            if os.path.exists(filepath):
                try:
                    with open(filepath, 'r') as f:
                        return json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    logger.error(f"Failed to load stats: {e}")
                    return None
        return self._last_snapshot

    def save_daily_metrics(self):
        """Save daily aggregated metrics."""
        if not self.metrics_dir:
            return
        today = datetime.now().strftime('%Y%m%d')
        filepath = os.path.join(self.metrics_dir, 'daily', f"daily_{today}.json")

        daily_metrics = self.get_current_metrics()
        daily_metrics["timestamp"] = datetime.now().isoformat()

        try:
            with open(filepath, 'w') as f:
                json.dump(daily_metrics, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save daily metrics: {e}")


class Timer:
    """Monotonic millisecond stopwatch."""

    def __init__(self):
        self.start = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start) * 1000)
