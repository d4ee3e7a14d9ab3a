"""
Pickup scheduling

One carrier pickup per shipment.
"""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shipflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from shipflow.models.pickup import Pickup
from shipflow.models.shipment import Shipment, ShipmentStatus

logger = logging.getLogger(__name__)


class PickupService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def schedule_pickup(self, shipment_id: int, scheduled_at: datetime) -> Pickup:
        """
        Raises:
            NotFoundError: Shipment missing
            ValidationError: No time given, or shipment cancelled
            ConflictError: Pickup already scheduled for this shipment
        """
        if scheduled_at is None:
            raise ValidationError("Pickup time is required", field="scheduled_at", details={"shipment_id": shipment_id})

        shipment = await self.db.get(Shipment, shipment_id)
        if not shipment:
            raise NotFoundError(
                f"Shipment {shipment_id} not found",
                resource="shipment",
                resource_id=shipment_id,
            )
        if shipment.status == ShipmentStatus.CANCELLED:
            raise ValidationError(
                f"Shipment {shipment_id} is cancelled",
                field="status",
                details={"shipment_id": shipment_id},
            )

        existing = await self.db.execute(select(Pickup.id).where(Pickup.shipment_id == shipment_id))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(
                "Pickup already scheduled for this shipment",
                details={"shipment_id": shipment_id},
            )

        pickup = Pickup(shipment_id=shipment_id, scheduled_at=scheduled_at)
        self.db.add(pickup)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(
                "Pickup already scheduled for this shipment",
                details={"shipment_id": shipment_id},
            ) from e
        await self.db.refresh(pickup)
        logger.info(f"Scheduled pickup for shipment {shipment_id} at {scheduled_at.isoformat()}")
        return pickup
