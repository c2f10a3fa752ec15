"""
Content store clients.

SqliteContentStore keeps sources and ingested articles in a local SQLite
database; blocking calls run in a worker thread. InMemoryContentStore offers
the same surface for tests.
"""
import asyncio
import json
import os
import sqlite3
import threading
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from crawler.interfaces import IContentStore, PipelineError
from crawler.models import IngestPayload, Source

SCHEMA = """
CREATE TABLE IF NOT EXISTS sources (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'article',
    category TEXT NOT NULL DEFAULT '',
    language TEXT NOT NULL DEFAULT 'en',
    is_active INTEGER NOT NULL DEFAULT 1,
    last_crawled_at INTEGER,
    last_success_at INTEGER,
    error_count INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS news (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    source_id TEXT,
    published_at INTEGER,
    crawled_at INTEGER,
    payload TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS ingested_urls (
    url TEXT PRIMARY KEY,
    ingested_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sources_due ON sources (is_active, type, error_count, last_crawled_at);
"""


def _sort_due(sources: List[Source]) -> List[Source]:
    return sorted(sources, key=lambda s: (s.error_count, s.last_crawled_at or 0))


class SqliteContentStore(IContentStore):
    """SQLite-backed store for local and single-node runs."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        logger.info(f"Content store initialized at {db_path}")

    async def _run(self, fn, *args):
        def locked():
            with self._lock:
                return fn(*args)
        try:
            return await asyncio.to_thread(locked)
        except sqlite3.Error as e:
            raise PipelineError(f"Content store error: {e}", cause=e)

    def close(self):
        with self._lock:
            self._conn.close()

    # Dedup and health

    async def exists_by_url(self, url: str) -> bool:
        def query():
            row = self._conn.execute(
                """
                SELECT 1 FROM news WHERE url = ?
                UNION ALL
                SELECT 1 FROM ingested_urls WHERE url = ?
                LIMIT 1
                """,
                (url, url),
            ).fetchone()
            return row is not None
        return await self._run(query)

    async def record_ingested(self, url: str, at: int) -> None:
        def insert():
            self._conn.execute(
                "INSERT OR REPLACE INTO ingested_urls (url, ingested_at) VALUES (?, ?)", (url, at)
            )
            self._conn.commit()
        await self._run(insert)

    async def probe(self) -> bool:
        try:
            await self._run(lambda: self._conn.execute("SELECT 1").fetchone())
            return True
        except PipelineError as e:
            logger.error(f"Content store probe failed: {e}")
            return False

    # Sources

    async def fetch_due_sources(self, types: Sequence[str], limit: int, now: int) -> List[Source]:
        types = list(types)
        if not types:
            return []

        def query():
            placeholders = ",".join("?" for _ in types)
            rows = self._conn.execute(
                f"""
                SELECT * FROM sources
                WHERE is_active = 1 AND type IN ({placeholders})
                ORDER BY error_count ASC, COALESCE(last_crawled_at, 0) ASC
                """,
                types,
            ).fetchall()
            return [self._row_to_source(row) for row in rows]

        sources = await self._run(query)
        return [s for s in sources if s.is_due(now)][:limit]

    async def mark_source_crawled(self, source_id: str, success: bool, at: int) -> None:
        def update():
            self._conn.execute(
                """
                UPDATE sources SET
                    last_crawled_at = ?,
                    last_success_at = CASE WHEN ? THEN ? ELSE last_success_at END,
                    error_count = CASE WHEN ? THEN 0 ELSE error_count + 1 END
                WHERE id = ?
                """,
                (at, int(success), at, int(success), source_id),
            )
            self._conn.commit()
        await self._run(update)

    async def record_source_error(self, source_id: str) -> None:
        def update():
            self._conn.execute("UPDATE sources SET error_count = error_count + 1 WHERE id = ?", (source_id,))
            self._conn.commit()
        await self._run(update)

    async def upsert_source(self, source: Source) -> None:
        def upsert():
            self._conn.execute(
                """
                INSERT INTO sources (id, url, name, type, category, language, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    url = excluded.url, name = excluded.name, type = excluded.type,
                    category = excluded.category, language = excluded.language,
                    is_active = excluded.is_active
                """,
                (source.id, source.url, source.name, source.type, source.category,
                 source.language, int(source.is_active)),
            )
            self._conn.commit()
        await self._run(upsert)

    async def get_source(self, source_id: str) -> Optional[Source]:
        def query():
            row = self._conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
            return self._row_to_source(row) if row else None
        return await self._run(query)

    @staticmethod
    def _row_to_source(row: sqlite3.Row) -> Source:
        return Source(
            id=row["id"],
            url=row["url"],
            name=row["name"],
            type=row["type"],
            category=row["category"],
            language=row["language"],
            is_active=bool(row["is_active"]),
            last_crawled_at=row["last_crawled_at"],
            error_count=row["error_count"] or 0,
        )

    # Articles

    async def upsert_article(self, payload: IngestPayload) -> Tuple[str, bool]:
        """Insert or update by URL. Returns (id, inserted)."""
        data = payload.to_payload()

        def upsert():
            row = self._conn.execute("SELECT id FROM news WHERE url = ?", (payload.url,)).fetchone()
            if row:
                self._conn.execute(
                    "UPDATE news SET title = ?, payload = ?, crawled_at = ? WHERE id = ?",
                    (payload.title, json.dumps(data), payload.crawled_at, row["id"]),
                )
                self._conn.commit()
                return row["id"], False
            article_id = uuid.uuid4().hex
            self._conn.execute(
                """
                INSERT INTO news (id, url, title, source_id, published_at, crawled_at, payload)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (article_id, payload.url, payload.title, payload.source_id,
                 payload.published_at, payload.crawled_at, json.dumps(data)),
            )
            self._conn.commit()
            return article_id, True

        return await self._run(upsert)


class InMemoryContentStore(IContentStore):
    """Dictionary-backed store."""

    def __init__(self, sources: Optional[List[Source]] = None):
        self.sources: Dict[str, Source] = {s.id: s for s in (sources or [])}
        self.articles: Dict[str, Dict[str, Any]] = {}
        self.ingested: Dict[str, int] = {}
        self.healthy = True

    async def exists_by_url(self, url: str) -> bool:
        return url in self.articles or url in self.ingested

    async def record_ingested(self, url: str, at: int) -> None:
        self.ingested[url] = at

    async def probe(self) -> bool:
        return self.healthy

    async def fetch_due_sources(self, types: Sequence[str], limit: int, now: int) -> List[Source]:
        wanted = set(types)
        due = [s for s in self.sources.values() if s.type in wanted and s.is_due(now)]
        return _sort_due(due)[:limit]

    async def mark_source_crawled(self, source_id: str, success: bool, at: int) -> None:
        source = self.sources.get(source_id)
        if source is None:
            return
        source.last_crawled_at = at
        source.error_count = 0 if success else source.error_count + 1

    async def record_source_error(self, source_id: str) -> None:
        source = self.sources.get(source_id)
        if source is not None:
            source.error_count += 1

    async def upsert_source(self, source: Source) -> None:
        self.sources[source.id] = source

    async def upsert_article(self, payload: IngestPayload) -> Tuple[str, bool]:
        existing = self.articles.get(payload.url)
        if existing:
            existing.update(payload.to_payload())
            return existing["id"], False
        article_id = uuid.uuid4().hex
        self.articles[payload.url] = {"id": article_id, **payload.to_payload()}
        return article_id, True
