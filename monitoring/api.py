"""
HTTP control surfaces.

The producer app exposes authenticated enqueue endpoints; the consumer app
exposes health and stats.
"""
import hmac
import json
from typing import Any, Dict, Optional

from aiohttp import web
from loguru import logger

from crawler.core.producer import CrawlProducer
from crawler.interfaces import FeedParseError, ISecretProvider, MessageValidationError
from monitoring.health_check import HealthCheck
from monitoring.metrics import PipelineMetrics

AUTH_SECRET_NAMES = ("CRON_SECRET", "INGEST_SECRET")


def _json_error(status: int, message: str) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


def is_authorized(request: web.Request, secrets: ISecretProvider) -> bool:
    """Bearer token or X-Cron-Secret must match CRON_SECRET or INGEST_SECRET."""
    provided = request.headers.get("X-Cron-Secret", "")
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        provided = auth_header[len("Bearer "):].strip()
    if not provided:
        return False

    for name in AUTH_SECRET_NAMES:
        expected = secrets.get_secret(name)
        if expected and hmac.compare_digest(provided.encode(), expected.encode()):
            return True
    return False


class ProducerAPI:
    """Enqueue endpoints for cron triggers, operators and webhooks."""

    def __init__(self, producer: Optional[CrawlProducer], secrets: ISecretProvider):
        self.producer = producer
        self.secrets = secrets
        self.routes = {
            '/enqueue': self.handle_enqueue,
            '/enqueue-due': self.handle_enqueue_due,
            '/enqueue-batch': self.handle_enqueue_batch,
            '/submit': self.handle_submit,
        }

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[self._auth_middleware])
        app.router.add_get('/', self.handle_root)
        for path, handler in self.routes.items():
            app.router.add_post(path, handler)
        return app

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler):
        if request.path in self.routes and not is_authorized(request, self.secrets):
            logger.warning(f"Unauthorized request to {request.path}")
            return _json_error(401, "Unauthorized")
        return await handler(request)

    def _producer_or_503(self) -> Optional[web.Response]:
        if self.producer is None or self.producer.queue is None:
            return _json_error(503, "Queue not available")
        return None

    async def handle_root(self, request: web.Request) -> web.Response:
        return web.Response(text="Crawl producer API")

    async def handle_enqueue(self, request: web.Request) -> web.Response:
        unavailable = self._producer_or_503()
        if unavailable:
            return unavailable
        url = request.query.get("url", "").strip()
        if not url:
            return _json_error(400, "Missing url parameter")
        try:
            result = await self.producer.enqueue_from_source_url(url)
        except FeedParseError as e:
            logger.error(f"❌ Enqueue failed for {url}: {e}")
            return _json_error(502, str(e))
        return web.json_response({"ok": True, **result.to_dict()})

    async def handle_enqueue_due(self, request: web.Request) -> web.Response:
        unavailable = self._producer_or_503()
        if unavailable:
            return unavailable
        try:
            limit = int(request.query.get("limit", "50"))
        except ValueError:
            return _json_error(400, "limit must be an integer")
        if limit < 1:
            return _json_error(400, "limit must be positive")
        types_param = request.query.get("types", "")
        types = [t.strip() for t in types_param.split(",") if t.strip()] or None

        result = await self.producer.enqueue_due_sources(limit=limit, types=types)
        return web.json_response({"ok": True, **result.to_dict()})

    async def handle_enqueue_batch(self, request: web.Request) -> web.Response:
        unavailable = self._producer_or_503()
        if unavailable:
            return unavailable
        body = await self._read_json(request)
        if body is None:
            return _json_error(400, "Invalid JSON body")
        sources = body.get("sources") if isinstance(body, dict) else None
        if not isinstance(sources, list) or not sources:
            return _json_error(400, "No sources provided")

        result = await self.producer.enqueue_batch(s for s in sources if isinstance(s, dict))
        return web.json_response({"ok": True, **result.to_dict()})

    async def handle_submit(self, request: web.Request) -> web.Response:
        unavailable = self._producer_or_503()
        if unavailable:
            return unavailable
        body = await self._read_json(request)
        if not isinstance(body, dict):
            return _json_error(400, "Invalid JSON body")
        try:
            message = await self.producer.submit_article(body)
        except MessageValidationError as e:
            return _json_error(400, str(e))
        return web.json_response(
            {"ok": True, "message": "Article queued for processing", "url": message.item_url},
            status=202,
        )

    @staticmethod
    async def _read_json(request: web.Request) -> Optional[Any]:
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None


class ConsumerAPI:
    """Health and stats endpoints for the queue consumer."""

    def __init__(self, health_check: HealthCheck, metrics: PipelineMetrics):
        self.health_check = health_check
        self.metrics = metrics

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/', self.handle_health)
        app.router.add_get('/health', self.handle_health)
        app.router.add_get('/stats', self.handle_stats)
        return app

    async def handle_health(self, request: web.Request) -> web.Response:
        status = await self.health_check.get_health_status()
        http_status = 200 if status["status"] == "healthy" else 503
        return web.json_response(status, status=http_status)

    async def handle_stats(self, request: web.Request) -> web.Response:
        stats: Optional[Dict[str, Any]] = self.metrics.load_stats()
        if stats is None:
            return _json_error(503, "Stats not available")
        return web.json_response({"ok": True, "stats": stats})


async def start_app(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Start ``app`` on ``host:port``; the caller cleans up the returned runner."""
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"🌐 HTTP server listening on {host}:{port}")
    return runner
