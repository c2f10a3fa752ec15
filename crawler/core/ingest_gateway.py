"""
HTTP client for the ingest endpoint (upsert-by-URL into the content store).
"""
import asyncio
from typing import Optional

import aiohttp
from loguru import logger
from pydantic import ValidationError

from crawler.interfaces import IIngestGateway, PipelineError
from crawler.models import IngestPayload, IngestResult


class HttpIngestGateway(IIngestGateway):
    """POSTs ingest payloads with the shared ingest secret."""

    def __init__(self, ingest_url: str, ingest_secret: str = "",
                 user_agent: str = "FeedQueue-Crawler/1.0", timeout: float = 30,
                 session: Optional[aiohttp.ClientSession] = None):
        self.ingest_url = ingest_url
        self.ingest_secret = ingest_secret
        self.user_agent = user_agent
        self.timeout = timeout
        self._session = session

    async def ingest(self, payload: IngestPayload) -> IngestResult:
        """
        Submit one payload.

        Transport errors and non-2xx responses come back as ``ok=False``
        results; the caller decides how to treat them.
        """
        headers = {
            "content-type": "application/json",
            "x-ingest-secret": self.ingest_secret or "",
            "user-agent": self.user_agent,
        }
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            if self._session is not None:
                return await self._post(self._session, payload, headers, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, payload, headers, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ Ingest timed out after {self.timeout}s for {payload.url}")
            return IngestResult(ok=False, error=f"timeout after {self.timeout}s")
        except aiohttp.ClientError as e:
            logger.warning(f"⚠️ Ingest request failed for {payload.url}: {e}")
            return IngestResult(ok=False, error=str(e))

    async def _post(self, session: aiohttp.ClientSession, payload: IngestPayload,
                    headers, timeout) -> IngestResult:
        async with session.post(self.ingest_url, json=payload.to_payload(),
                                headers=headers, timeout=timeout) as response:
            if response.status >= 400:
                body = await response.text()
                return IngestResult(ok=False, error=f"{response.status} {body[:200]}")
            try:
                data = await response.json(content_type=None)
                return IngestResult.model_validate(data)
            except (ValueError, ValidationError) as e:
                return IngestResult(ok=False, error=f"Invalid ingest response: {e}")


class StoreIngestGateway(IIngestGateway):
    """Writes payloads straight into a local content store (``upsert_article``)."""

    def __init__(self, store):
        self.store = store

    async def ingest(self, payload: IngestPayload) -> IngestResult:
        try:
            article_id, inserted = await self.store.upsert_article(payload)
        except PipelineError as e:
            logger.warning(f"⚠️ Local ingest failed for {payload.url}: {e}")
            return IngestResult(ok=False, error=str(e))
        return IngestResult(ok=True, id=article_id, inserted=inserted)
