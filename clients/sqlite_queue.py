"""
SQLite-backed crawl queue.

Lets a producer process and a consumer process on the same host share work
through one database file. Leases use wall-clock time so every process sees
the same deadlines.
"""
import asyncio
import json
import os
import sqlite3
import threading
import time
import uuid
from typing import Callable, List, Optional, Sequence

from loguru import logger

from crawler.interfaces import IMessageQueue, PipelineError, QueueDelivery
from crawler.models import CrawlMessage

QUEUE_SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_messages (
    id TEXT PRIMARY KEY,
    body TEXT NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    available_at REAL NOT NULL,
    lease_expires_at REAL,
    enqueued_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_queue_available ON queue_messages (available_at);
"""


class SqliteDelivery(QueueDelivery):

    def __init__(self, queue: "SqliteMessageQueue", entry_id: str, message: CrawlMessage, retry_count: int,
                 raw_body: Optional[str] = None):
        self._queue = queue
        self._id = entry_id
        self._message = message
        self._retry_count = retry_count
        self._raw_body = raw_body

    @property
    def id(self) -> str:
        return self._id

    @property
    def message(self) -> CrawlMessage:
        return self._message

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def raw_body(self) -> Optional[str]:
        return self._raw_body

    async def ack(self) -> None:
        await self._queue._ack(self._id)

    async def retry(self, delay_ms: int) -> None:
        await self._queue._retry(self._id, delay_ms)


class SqliteMessageQueue(IMessageQueue):
    """Durable at-least-once queue stored in a ``queue_messages`` table."""

    def __init__(self, db_path: str, visibility_timeout: float = 900,
                 clock: Callable[[], float] = time.time):
        self.db_path = db_path
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        # autocommit mode, transactions are opened explicitly
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None, timeout=30)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(QUEUE_SCHEMA)
        logger.info(f"SQLite queue initialized at {db_path}")

    async def _run(self, fn, *args):
        def locked():
            with self._lock:
                return fn(*args)
        try:
            return await asyncio.to_thread(locked)
        except sqlite3.Error as e:
            raise PipelineError(f"Queue storage error: {e}", cause=e)

    def close(self):
        with self._lock:
            self._conn.close()

    async def send(self, message: CrawlMessage) -> None:
        await self.send_batch([message])

    async def send_batch(self, messages: Sequence[CrawlMessage]) -> None:
        if not messages:
            return
        now = self._clock()
        rows = [
            (uuid.uuid4().hex, json.dumps(m.to_payload(), ensure_ascii=False), now, now)
            for m in messages
        ]

        def insert():
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._conn.executemany(
                    "INSERT INTO queue_messages (id, body, available_at, enqueued_at) VALUES (?, ?, ?, ?)",
                    rows,
                )
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise

        await self._run(insert)

    async def receive_batch(self, max_messages: int) -> List[QueueDelivery]:
        now = self._clock()

        def claim():
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                rows = self._conn.execute(
                    """
                    SELECT id, body, retry_count, lease_expires_at FROM queue_messages
                    WHERE (lease_expires_at IS NULL AND available_at <= ?)
                       OR (lease_expires_at IS NOT NULL AND lease_expires_at <= ?)
                    ORDER BY available_at ASC
                    LIMIT ?
                    """,
                    (now, now, max_messages),
                ).fetchall()

                claimed = []
                for row in rows:
                    retry_count = row["retry_count"]
                    if row["lease_expires_at"] is not None:
                        # lease expired without ack or retry
                        logger.warning(f"Queue message {row['id']} lease expired, redelivering")
                        retry_count += 1
                    self._conn.execute(
                        "UPDATE queue_messages SET retry_count = ?, lease_expires_at = ? WHERE id = ?",
                        (retry_count, now + self.visibility_timeout, row["id"]),
                    )
                    claimed.append((row["id"], row["body"], retry_count))
                self._conn.execute("COMMIT")
                return claimed
            except sqlite3.Error:
                self._conn.execute("ROLLBACK")
                raise

        deliveries = []
        for entry_id, body, retry_count in await self._run(claim):
            raw_body = None
            try:
                message = CrawlMessage.from_payload(json.loads(body))
            except ValueError as e:
                # an empty message is rejected by the processor; the body rides along to the DLQ
                logger.error(f"❌ Corrupt queue message {entry_id}: {e}")
                message = CrawlMessage()
                raw_body = body
            deliveries.append(SqliteDelivery(self, entry_id, message, retry_count, raw_body))
        return deliveries

    async def _ack(self, entry_id: str):
        await self._run(lambda: self._conn.execute("DELETE FROM queue_messages WHERE id = ?", (entry_id,)))

    async def _retry(self, entry_id: str, delay_ms: int):
        available_at = self._clock() + delay_ms / 1000
        await self._run(lambda: self._conn.execute(
            """
            UPDATE queue_messages
            SET retry_count = retry_count + 1, available_at = ?, lease_expires_at = NULL
            WHERE id = ?
            """,
            (available_at, entry_id),
        ))

    async def pending_count(self) -> int:
        row = await self._run(lambda: self._conn.execute("SELECT COUNT(*) FROM queue_messages").fetchone())
        return row[0]
