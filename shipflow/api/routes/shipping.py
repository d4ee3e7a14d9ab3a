"""
Shipping API Routes

Provides endpoints for:
- Labels (create idempotently, void)
- Shipments (get, list, admin update/delete, cancel)
- Tracking (carrier webhook ingestion, carrier sync)
- Rate shopping (carrier recommendation)
- Bulk label generation and pickup scheduling

Domain errors are mapped to HTTP statuses by the app-level
ShipflowError handler.
"""
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shipflow.api.deps import (
    get_bulk_service,
    get_orchestrator,
    get_rate_shop,
    get_tracking_pipeline,
)
from shipflow.core.database import get_db
from shipflow.core.exceptions import NotFoundError
from shipflow.models.shipment import ShipmentStatus
from shipflow.schemas.shipping import (
    BulkLabelRequest,
    BulkOperationResponse,
    BulkPickupRequest,
    CancelShipmentRequest,
    LabelCreateRequest,
    LabelResponse,
    OperationResponse,
    RateShopRequest,
    RateShopResponse,
    ShipmentResponse,
    ShipmentUpdate,
    TrackingEventCreate,
    TrackingEventResponse,
    VoidLabelRequest,
)
from shipflow.services.bulk_operations import BulkOperationsService
from shipflow.services.fulfillment import FulfillmentOrchestrator
from shipflow.services.rate_shop import RateShopCriteria, RateShopEngine
from shipflow.services.shipment_service import ShipmentService
from shipflow.services.tracking import TrackingIngestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])


# ==================== Label Endpoints ====================


@router.post("/shipments/{shipment_id}/label", response_model=LabelResponse)
async def create_label(
    shipment_id: int,
    body: Optional[LabelCreateRequest] = None,
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    """
    Create the shipment's label, or return the one it already has.

    Repeated calls never create a second label or call the carrier again.
    """
    label_format = body.format if body else None
    return await orchestrator.create_label(shipment_id, label_format)


@router.post("/labels/void", response_model=OperationResponse)
async def void_label(
    body: VoidLabelRequest,
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    voided = await orchestrator.void_label(body.label_number)
    return OperationResponse(
        success=voided,
        message=None if voided else "Carrier refused to void the label",
    )


# ==================== Shipment Endpoints ====================


@router.get("/shipments", response_model=List[ShipmentResponse])
async def list_shipments(
    status_filter: Optional[ShipmentStatus] = Query(None, alias="status"),
    order_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    return await ShipmentService(db).list_shipments(
        status=status_filter,
        order_id=order_id,
        limit=limit,
        offset=offset,
    )


@router.get("/shipments/stats", response_model=Dict[str, int])
async def shipment_stats(db: AsyncSession = Depends(get_db)):
    return await ShipmentService(db).count_by_status()


@router.get("/shipments/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(shipment_id: int, db: AsyncSession = Depends(get_db)):
    return await ShipmentService(db).get_shipment(shipment_id)


@router.patch("/shipments/{shipment_id}", response_model=ShipmentResponse)
async def update_shipment(
    shipment_id: int,
    body: ShipmentUpdate,
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    return await ShipmentService(db).update_shipment(shipment_id, **changes)


@router.delete("/shipments/{shipment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_shipment(shipment_id: int, db: AsyncSession = Depends(get_db)):
    await ShipmentService(db).delete_shipment(shipment_id)


@router.post("/shipments/cancel", response_model=OperationResponse)
async def cancel_shipment(
    body: CancelShipmentRequest,
    orchestrator: FulfillmentOrchestrator = Depends(get_orchestrator),
):
    cancelled = await orchestrator.cancel_shipment(body.tracking_number, body.reason)
    return OperationResponse(
        success=cancelled,
        message=None if cancelled else "Shipment could not be cancelled",
    )


# ==================== Tracking Endpoints ====================


@router.post(
    "/shipments/{shipment_id}/tracking",
    response_model=TrackingEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def ingest_tracking(
    shipment_id: int,
    body: TrackingEventCreate,
    pipeline: TrackingIngestionPipeline = Depends(get_tracking_pipeline),
):
    """Carrier webhook: record a tracking event and advance the shipment."""
    return await pipeline.ingest_tracking(
        shipment_id=shipment_id,
        tracking_number=body.tracking_number,
        status=body.status,
        occurred_at=body.occurred_at,
        sub_status=body.sub_status,
        description=body.description,
        event_code=body.event_code,
        location=body.location,
        raw_payload=body.raw_payload,
    )


@router.post("/shipments/{shipment_id}/tracking/sync", response_model=List[TrackingEventResponse])
async def sync_tracking(
    shipment_id: int,
    pipeline: TrackingIngestionPipeline = Depends(get_tracking_pipeline),
):
    return await pipeline.sync_from_carrier(shipment_id)


# ==================== Rate Shop Endpoints ====================


@router.post("/rates/shop", response_model=RateShopResponse)
async def shop_rates(
    body: RateShopRequest,
    engine: RateShopEngine = Depends(get_rate_shop),
):
    decision = await engine.shop(RateShopCriteria(**body.model_dump()))
    if decision is None:
        raise NotFoundError(
            f"No serviceable rate from {body.origin_postal_code} to {body.destination_postal_code}",
            resource="rate",
        )
    return RateShopResponse(**decision.__dict__)


# ==================== Bulk Endpoints ====================


@router.post("/bulk/labels", response_model=BulkOperationResponse)
async def bulk_labels(
    body: BulkLabelRequest,
    bulk: BulkOperationsService = Depends(get_bulk_service),
):
    result = await bulk.generate_bulk_labels(body.shipment_ids, body.format)
    return BulkOperationResponse(**result.to_dict())


@router.post("/bulk/pickups", response_model=BulkOperationResponse)
async def bulk_pickups(
    body: BulkPickupRequest,
    bulk: BulkOperationsService = Depends(get_bulk_service),
):
    result = await bulk.schedule_bulk_pickups(body.shipment_ids, body.scheduled_at)
    return BulkOperationResponse(**result.to_dict())
