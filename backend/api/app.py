"""FastAPI application factory"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from core.config import Settings, get_settings
from core.errors import setup_exception_handlers
from core.logging import setup_logging
from routers import auth_router, streamer_router, webhooks_router
from services import AnnouncementService, AuthGate, MemeLabAPIClient, TelegramSink, WebhookGate
from shared.cache import MemoryTTLStore, ProfileCache
from shared.crypto import SecretCipher
from shared.database import DatabaseManager
from shared.migrations.runner import MigrationRunner
from shared.queue import (
    EventQueue,
    EventWorker,
    MemoryQueueTransport,
    PostgresQueueTransport,
    exponential_backoff,
)
from shared.repositories.announcement_log import AnnouncementLogRepository, MemorySentLog
from shared.repositories.streamer import MemoryStreamerStore, StreamerRepository

logger = logging.getLogger(__name__)

SERVICE_NAME = "stream-notify-api"
VERSION = "1.0.0"

# Track server start time
_start_time: float = 0.0


async def _connect_database(url: str, stack: AsyncExitStack, label: str) -> DatabaseManager:
    db_manager = DatabaseManager(url)
    await db_manager.connect()
    stack.push_async_callback(db_manager.disconnect)
    logger.info(f"{label} connected")
    return db_manager


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build shared clients on startup and close them, in reverse order, on shutdown"""
    global _start_time
    _start_time = time.time()

    settings: Settings = app.state.settings

    # Startup
    logger.info("Starting Stream Notify API server")
    logger.info(f"Environment: {settings.environment}")

    async with AsyncExitStack() as stack:
        db_manager = None
        if settings.database_url:
            db_manager = await _connect_database(settings.database_url, stack, "Database")
            if settings.run_migrations:
                await MigrationRunner(db_manager.pool).run_pending()
            store = StreamerRepository(db_manager.pool)
            sent_log = AnnouncementLogRepository(db_manager.pool)
        else:
            logger.warning("DATABASE_URL not set, streamers are kept in memory")
            store = MemoryStreamerStore()
            sent_log = MemorySentLog()

        queue_url = settings.effective_queue_url
        if not queue_url:
            logger.warning("No queue database configured, jobs are kept in memory")
            transport = MemoryQueueTransport()
        elif db_manager is not None and queue_url == settings.database_url:
            transport = PostgresQueueTransport(db_manager.pool)
        else:
            queue_db = await _connect_database(queue_url, stack, "Queue database")
            transport = PostgresQueueTransport(queue_db.pool)

        event_queue = EventQueue(
            transport,
            max_attempts=settings.queue_max_attempts,
            backoff=exponential_backoff(settings.queue_backoff_seconds),
        )
        stack.push_async_callback(event_queue.close)

        profile_store = MemoryTTLStore(maxsize=settings.auth_cache_maxsize)
        stack.push_async_callback(profile_store.close)
        profile_cache = ProfileCache(
            profile_store,
            ttl=settings.auth_cache_ttl,
            prefix=settings.auth_cache_prefix,
            digest_key=settings.session_secret,
        )

        memelab_api = MemeLabAPIClient(settings.memelab_api_url, timeout=settings.identity_timeout)
        stack.push_async_callback(memelab_api.close)

        cipher = SecretCipher(settings.bot_token_encryption_key)
        sink = TelegramSink(settings.telegram_bot_token, cipher, timeout=settings.telegram_timeout)
        stack.push_async_callback(sink.close)

        announcements = AnnouncementService(
            store, sink, sent_log, site_url=settings.memelab_site_url
        )
        worker = EventWorker(
            event_queue,
            announcements.process,
            concurrency=settings.queue_concurrency,
            poll_interval=settings.queue_poll_interval,
            job_timeout=settings.job_timeout,
            lease_margin=settings.job_lease_margin,
            sweep_interval=settings.queue_sweep_interval,
        )

        app.state.db_manager = db_manager
        app.state.streamer_store = store
        app.state.event_queue = event_queue
        app.state.cipher = cipher
        app.state.webhook_gate = WebhookGate(settings.webhook_secret)
        app.state.auth_gate = AuthGate(
            profile_cache, memelab_api, store, cookie_name=settings.jwt_cookie_name
        )
        app.state.worker = worker

        if settings.run_worker:
            await worker.start()
            # Registered last so in-flight jobs finish before clients close
            stack.push_async_callback(worker.stop)

        if not settings.webhook_secret:
            logger.warning("WEBHOOK_SECRET not set, webhooks will be rejected")
        if not settings.telegram_bot_token:
            logger.warning("TELEGRAM_BOT_TOKEN not set, announcements cannot be delivered")

        yield

        # Shutdown
        logger.info("Shutting down Stream Notify API server")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()

    # Setup logging first
    setup_logging(settings)

    # Create FastAPI app with lifespan
    app = FastAPI(
        title="Stream Notify API",
        description="Stream announcements for MemeLab streamers",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)

    # Register routers
    app.include_router(auth_router.router)
    app.include_router(streamer_router.router)
    app.include_router(webhooks_router.router)

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": SERVICE_NAME, "status": "running"}

    # Liveness probe: always 200, no external dependency
    @app.get("/health")
    async def health():
        """Liveness check (no DB dependency)"""
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - _start_time),
        }

    # Detailed status endpoint (includes DB health and queue counts)
    @app.get("/status")
    async def status():
        """Readiness / status endpoint"""
        db_manager = getattr(app.state, "db_manager", None)
        db_ok = db_manager is not None and await db_manager.check_health()
        event_queue = getattr(app.state, "event_queue", None)
        worker = getattr(app.state, "worker", None)
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "uptime_seconds": int(time.time() - _start_time),
            "db_connected": db_ok,
            "queue": await event_queue.counts() if event_queue is not None else {},
            "worker_running": worker is not None and worker.running,
            "environment": settings.environment,
        }

    # Ping endpoint
    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        """Ping endpoint"""
        return "pong"

    logger.info("FastAPI application configured")

    return app
