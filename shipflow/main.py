"""
Shipflow
FastAPI application entry point

Process-wide components are built once in the lifespan and kept on
app.state:
- carrier registry (clients built from settings)
- per-shipment lock manager
- rate-shop engine
- background dispatcher with the label webhook subscribed
- bulk operations service
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text

from shipflow import __version__
from shipflow.api.routes import shipping
from shipflow.core.config import settings
from shipflow.core.database import AsyncSessionLocal, get_db_session
from shipflow.core.dispatcher import BackgroundDispatcher
from shipflow.core.error_handler import ErrorSanitizationMiddleware, shipflow_error_handler
from shipflow.core.exceptions import ShipflowError
from shipflow.core.locks import KeyedLockManager
from shipflow.modules.shipping.carriers import build_registry
from shipflow.services.bulk_operations import BulkOperationsService
from shipflow.services.fulfillment import LABEL_CREATED_EVENT, FulfillmentOrchestrator
from shipflow.services.notifications import LabelWebhookNotifier
from shipflow.services.rate_shop import RateShopEngine, RateShopPreferences

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def init_components(app: FastAPI, session_factory=AsyncSessionLocal, transport=None):
    """Build the process-wide components onto app.state."""
    state = app.state
    state.registry = build_registry(settings, transport=transport)
    state.locks = KeyedLockManager()
    state.rate_shop = RateShopEngine(
        session_factory,
        RateShopPreferences.from_settings(settings),
        enabled=settings.RATE_SHOP_ENABLED,
    )
    state.dispatcher = BackgroundDispatcher(max_queue=settings.DISPATCHER_MAX_QUEUE)
    state.dispatcher.subscribe(
        LABEL_CREATED_EVENT,
        LabelWebhookNotifier(settings.LABEL_WEBHOOK_URL, timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS),
    )

    def orchestrator_factory(db):
        return FulfillmentOrchestrator(
            db,
            state.registry,
            locks=state.locks,
            rate_shop=state.rate_shop,
            dispatcher=state.dispatcher,
            carrier_timeout=settings.CARRIER_CALL_DEADLINE_SECONDS,
        )

    state.bulk = BulkOperationsService(
        session_factory,
        orchestrator_factory,
        batch_size=settings.BULK_BATCH_SIZE,
        max_labels=settings.BULK_LABEL_MAX_ITEMS,
        max_pickups=settings.BULK_PICKUP_MAX_ITEMS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not getattr(app.state, "registry", None):
        init_components(app)

    await app.state.dispatcher.start()
    logger.info(f"{settings.APP_NAME} {__version__} started ({settings.ENVIRONMENT})")

    yield

    await app.state.dispatcher.stop()
    await app.state.registry.close()
    logger.info("Carrier clients closed")


def create_app() -> FastAPI:
    app = FastAPI(
        lifespan=lifespan,
        title=f"{settings.APP_NAME} API",
        description="Carrier fulfillment: labels, tracking, rate shopping and bulk operations.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(ErrorSanitizationMiddleware)
    app.add_exception_handler(ShipflowError, shipflow_error_handler)
    app.include_router(shipping.router, prefix="/api", tags=["Shipping"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check with a database ping. 503 if unreachable."""
        health_status = {
            "status": "healthy",
            "database": "unknown",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            async with get_db_session() as db:
                await db.execute(text("SELECT 1"))
            health_status["database"] = "connected"
        except Exception as e:
            health_status["database"] = f"error: {type(e).__name__}"
            health_status["status"] = "unhealthy"
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "shipflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
