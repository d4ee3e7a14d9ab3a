"""
Shipment administration

CRUD for shipments outside the automated flows. Manual status changes go
through the same lifecycle rules as the automated ones:
- PENDING is refused once shipped_at is set
- a non-DELIVERED status is refused once delivered_at is set
- terminal statuses cannot be left
- SHIPPED / DELIVERED stamp shipped_at / delivered_at when absent
- a DELIVERED shipment is never deleted
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shipflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from shipflow.models.carrier import Carrier
from shipflow.models.order import Order
from shipflow.models.shipment import Shipment, ShipmentStatus
from shipflow.modules.shipping.state_machine import validate_manual_transition

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "tracking_number",
    "status",
    "carrier_id",
    "warehouse_id",
    "weight_grams",
    "length_cm",
    "width_cm",
    "height_cm",
    "origin_postal_code",
    "destination_postal_code",
    "shipped_at",
    "delivered_at",
)


class ShipmentService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_shipment(self, shipment_id: int) -> Shipment:
        shipment = await self.db.get(Shipment, shipment_id, populate_existing=True)
        if not shipment:
            raise NotFoundError(
                f"Shipment {shipment_id} not found",
                resource="shipment",
                resource_id=shipment_id,
            )
        return shipment

    async def list_shipments(
        self,
        status: Optional[ShipmentStatus] = None,
        order_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Shipment]:
        query = select(Shipment)
        if status is not None:
            query = query.where(Shipment.status == status)
        if order_id is not None:
            query = query.where(Shipment.order_id == order_id)
        query = query.order_by(Shipment.created_at.desc(), Shipment.id.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ShipmentStatus}
        result = await self.db.execute(
            select(Shipment.status, func.count(Shipment.id)).group_by(Shipment.status)
        )
        for status, count in result.all():
            counts[ShipmentStatus(status).value] = count
        return counts

    async def create_shipment(
        self,
        order_id: int,
        carrier_id: int,
        status: ShipmentStatus = ShipmentStatus.PENDING,
        **fields,
    ) -> Shipment:
        """
        Raises:
            ValidationError: Order/carrier missing, or timestamps contradict status
            ConflictError: Tracking number already used
        """
        if not await self.db.get(Order, order_id):
            raise ValidationError(f"Order {order_id} not found", field="order_id")
        if not await self.db.get(Carrier, carrier_id):
            raise ValidationError(f"Carrier {carrier_id} not found", field="carrier_id")

        status = ShipmentStatus(status)
        if fields.get("shipped_at") and status == ShipmentStatus.PENDING:
            raise ValidationError("Status must be SHIPPED or later if shipped_at is provided", field="status")
        if fields.get("delivered_at") and status != ShipmentStatus.DELIVERED:
            raise ValidationError("Status must be DELIVERED if delivered_at is provided", field="status")

        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown shipment fields: {', '.join(sorted(unknown))}")

        shipment = Shipment(order_id=order_id, carrier_id=carrier_id, status=status, **fields)
        self.db.add(shipment)
        await self._commit(fields.get("tracking_number"))
        await self.db.refresh(shipment)
        logger.info(f"Created shipment {shipment.id} for order {order_id}")
        return shipment

    async def update_shipment(self, shipment_id: int, **changes) -> Shipment:
        """
        Apply an administrative update.

        Raises:
            NotFoundError: Shipment missing
            ValidationError: Change breaks a lifecycle invariant
            ConflictError: Tracking number already used by another shipment
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown shipment fields: {', '.join(sorted(unknown))}")

        shipment = await self.get_shipment(shipment_id)
        shipped_at = changes.get("shipped_at") or shipment.shipped_at
        delivered_at = changes.get("delivered_at") or shipment.delivered_at

        target = changes.get("status")
        if target is not None:
            target = ShipmentStatus(target)
            changes["status"] = target
            validate_manual_transition(shipment.status, target, shipped_at, delivered_at)

            now = datetime.now(timezone.utc)
            if target == ShipmentStatus.DELIVERED and not delivered_at:
                changes["delivered_at"] = now
            if target in (ShipmentStatus.SHIPPED, ShipmentStatus.DELIVERED) and not shipped_at:
                changes["shipped_at"] = now
        elif changes.get("delivered_at") and shipment.status != ShipmentStatus.DELIVERED:
            raise ValidationError(
                "Status must be DELIVERED if delivered_at is set",
                field="delivered_at",
                details={"shipment_id": shipment_id},
            )
        elif changes.get("shipped_at") and shipment.status == ShipmentStatus.PENDING:
            raise ValidationError(
                "Status cannot be PENDING if shipped_at is set",
                field="shipped_at",
                details={"shipment_id": shipment_id},
            )

        for key, value in changes.items():
            setattr(shipment, key, value)

        await self._commit(changes.get("tracking_number"))
        await self.db.refresh(shipment)
        logger.info(f"Updated shipment {shipment_id}: {', '.join(sorted(changes))}")
        return shipment

    async def delete_shipment(self, shipment_id: int) -> None:
        shipment = await self.get_shipment(shipment_id)
        if shipment.status == ShipmentStatus.DELIVERED:
            raise ValidationError(
                "Cannot delete a delivered shipment",
                field="status",
                details={"shipment_id": shipment_id},
            )
        await self.db.delete(shipment)
        await self.db.commit()
        logger.info(f"Deleted shipment {shipment_id}")

    async def _commit(self, tracking_number: Optional[str]):
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if tracking_number:
                raise ConflictError(
                    f"Shipment with tracking number {tracking_number} already exists",
                    details={"tracking_number": tracking_number},
                ) from e
            raise
