from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response

from orderview.api.v1.routes_orders import router as orders_router
from orderview.core.config import Settings, settings as default_settings
from orderview.core.logging import configure_logging, get_logger
from orderview.db.base import build_engine, build_sessionmaker, ensure_schema
from orderview.db.repositories.orders import OrderRepository
from orderview.domain.orders.cache import OrderCache
from orderview.domain.orders.ingest import OrderIngestor
from orderview.domain.orders.service import warm_load_cache
from orderview.messaging.base import DeadLetterSink, MessageSource
from orderview.messaging.jetstream import JetStreamSource

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    source: Optional[MessageSource] = None,
    dead_letters: Optional[DeadLetterSink] = None,
) -> FastAPI:
    """Build the service.

    The lifespan warm-loads the cache before the server accepts requests;
    a failed warm-load aborts startup. Ingestion starts afterwards and a
    broker outage only disables ingestion, reads keep being served.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        engine = build_engine(settings.DB_URL)
        messages = source
        try:
            if settings.DB_AUTO_CREATE:
                await ensure_schema(engine)

            repository = OrderRepository(build_sessionmaker(engine), batch_size=settings.WARM_LOAD_BATCH_SIZE)
            app.state.warm_load = await warm_load_cache(repository, app.state.order_cache)

            if messages is None:
                messages = JetStreamSource.from_settings(settings)
            sink = dead_letters
            if sink is None and isinstance(messages, JetStreamSource):
                sink = messages

            app.state.ingestor = OrderIngestor(
                repository,
                app.state.order_cache,
                persist_timeout=settings.PERSIST_TIMEOUT,
                ack_timeout=settings.ACK_TIMEOUT,
                dead_letters=sink,
                poison_max_deliver=settings.POISON_MAX_DELIVER,
            )
            app.state.message_source = messages
            try:
                await messages.start(app.state.ingestor.handle)
            except Exception as e:
                logger.error("ingestion_start_failed", error=str(e))

            app.state.ready = True
            logger.info("application_ready", cached_orders=len(app.state.order_cache))
            yield
        finally:
            app.state.ready = False
            if messages is not None:
                await messages.stop(grace=settings.SHUTDOWN_GRACE)
            await engine.dispose()
            logger.info("application_stopped")

    app = FastAPI(title="order-view", lifespan=lifespan)
    app.state.order_cache = OrderCache()
    app.state.ready = False
    app.state.ingestor = None
    app.state.message_source = None

    app.include_router(orders_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/health/ready")
    async def ready(request: Request, response: Response):
        state = request.app.state
        if not state.ready:
            response.status_code = 503
            return {"status": "starting"}
        return {
            "status": "ok",
            "cached_orders": len(state.order_cache),
            "warm_load": {"loaded": state.warm_load.loaded, "skipped": state.warm_load.skipped},
            "ingestion": state.message_source.status(),
            "ingest_stats": state.ingestor.stats.to_dict(),
        }

    return app


app = create_app()
