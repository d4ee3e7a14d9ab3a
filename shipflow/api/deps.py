"""
API dependencies

Process-wide components (carrier registry, shipment locks, rate-shop
engine, dispatcher, bulk service) live on app.state, built in the
application lifespan.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shipflow.core.config import settings
from shipflow.core.database import get_db
from shipflow.services.bulk_operations import BulkOperationsService
from shipflow.services.fulfillment import FulfillmentOrchestrator
from shipflow.services.rate_shop import RateShopEngine
from shipflow.services.tracking import TrackingIngestionPipeline


def get_orchestrator(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> FulfillmentOrchestrator:
    state = request.app.state
    return FulfillmentOrchestrator(
        db,
        state.registry,
        locks=state.locks,
        rate_shop=state.rate_shop,
        dispatcher=state.dispatcher,
        carrier_timeout=settings.CARRIER_CALL_DEADLINE_SECONDS,
    )


def get_tracking_pipeline(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> TrackingIngestionPipeline:
    return TrackingIngestionPipeline(
        db,
        request.app.state.registry,
        carrier_timeout=settings.CARRIER_CALL_DEADLINE_SECONDS,
    )


def get_rate_shop(request: Request) -> RateShopEngine:
    return request.app.state.rate_shop


def get_bulk_service(request: Request) -> BulkOperationsService:
    return request.app.state.bulk
