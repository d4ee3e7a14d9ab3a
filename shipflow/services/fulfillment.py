"""
Fulfillment Orchestrator

Idempotent label creation:
1. Resolve shipment, carrier, order and warehouse; validate the mandatory
   physical/geographic inputs (origin, destination, weight)
2. Return the existing live label if there is one (no carrier call)
3. Consult the rate-shop engine; a carrier reassignment is committed before
   the label call so a retry uses the corrected carrier
4. Resolve the carrier client (sandbox if none registered)
5. generate_label under retry; carrier failure yields a fallback label
6. Persist the label and move the shipment PENDING -> SHIPPED with a
   compare-and-set update

Concurrent calls for one shipment are serialized by a per-shipment lock;
the partial unique index on labels rejects a second live label from any
other process.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shipflow.core.dispatcher import BackgroundDispatcher
from shipflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from shipflow.core.locks import KeyedLockManager
from shipflow.models.carrier import Carrier
from shipflow.models.order import Order, Warehouse
from shipflow.models.shipment import (
    Label,
    LabelFormat,
    LabelStatus,
    Shipment,
    ShipmentStatus,
)
from shipflow.modules.shipping.carriers import CarrierRegistry
from shipflow.modules.shipping.carriers.base import Address, LabelRequest, PackageDetails
from shipflow.modules.shipping.state_machine import TERMINAL_STATUSES, can_transition
from shipflow.services.rate_shop import RateShopCriteria, RateShopEngine

logger = logging.getLogger(__name__)

LABEL_CREATED_EVENT = "label.created"


def label_payload(label: Label, shipment: Shipment) -> Dict[str, Any]:
    """Serializable summary of a freshly created label."""
    return {
        "shipment_id": shipment.id,
        "order_id": shipment.order_id,
        "label_id": label.id,
        "label_number": label.label_number,
        "carrier_code": label.carrier_code,
        "tracking_number": shipment.tracking_number,
        "tracking_url": label.tracking_url,
        "label_url": label.label_url,
        "is_fallback": label.is_fallback,
    }


class FulfillmentOrchestrator:
    """
    Label lifecycle for shipments: create, cancel, void.

    One instance per database session. Registry, locks, rate-shop engine
    and dispatcher are process-wide and injected.
    """

    def __init__(
        self,
        db: AsyncSession,
        registry: CarrierRegistry,
        locks: Optional[KeyedLockManager] = None,
        rate_shop: Optional[RateShopEngine] = None,
        dispatcher: Optional[BackgroundDispatcher] = None,
        carrier_timeout: Optional[float] = None,
    ):
        self.db = db
        self.registry = registry
        self.locks = locks or KeyedLockManager()
        self.rate_shop = rate_shop
        self.dispatcher = dispatcher
        self.carrier_timeout = carrier_timeout

    # ==================== Lookups ====================

    async def _get_shipment(self, shipment_id: int) -> Shipment:
        shipment = await self.db.get(Shipment, shipment_id, populate_existing=True)
        if not shipment:
            raise NotFoundError(
                f"Shipment {shipment_id} not found",
                resource="shipment",
                resource_id=shipment_id,
            )
        return shipment

    async def _get_carrier(self, carrier_id: int, shipment_id: int) -> Carrier:
        carrier = await self.db.get(Carrier, carrier_id)
        if not carrier:
            raise NotFoundError(
                f"Carrier {carrier_id} for shipment {shipment_id} not found",
                resource="carrier",
                resource_id=carrier_id,
                details={"shipment_id": shipment_id},
            )
        return carrier

    async def _get_order(self, order_id: int, shipment_id: int) -> Order:
        order = await self.db.get(Order, order_id)
        if not order:
            raise NotFoundError(
                f"Order {order_id} for shipment {shipment_id} not found",
                resource="order",
                resource_id=order_id,
                details={"shipment_id": shipment_id},
            )
        return order

    async def _get_warehouse(self, warehouse_id: Optional[int]) -> Optional[Warehouse]:
        if not warehouse_id:
            return None
        warehouse = await self.db.get(Warehouse, warehouse_id)
        if not warehouse:
            logger.warning(f"Warehouse {warehouse_id} not found, shipping without pickup address")
        return warehouse

    async def get_active_label(self, shipment_id: int) -> Optional[Label]:
        """The shipment's live (non-voided) label, if any."""
        result = await self.db.execute(
            select(Label)
            .where(and_(Label.shipment_id == shipment_id, Label.status != LabelStatus.VOIDED))
            .order_by(Label.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ==================== Request assembly ====================

    @staticmethod
    def _require(value, field: str, shipment_id: int, message: str):
        if value in (None, "", 0):
            raise ValidationError(message, field=field, details={"shipment_id": shipment_id})
        return value

    def build_label_request(
        self,
        shipment: Shipment,
        order: Order,
        warehouse: Optional[Warehouse],
        label_format: LabelFormat,
    ) -> LabelRequest:
        """
        Assemble carrier input from shipment, order and warehouse.

        Raises:
            ValidationError: destination/origin postal code or weight missing
        """
        destination_pin = self._require(
            shipment.destination_postal_code or order.shipping_postal_code,
            "destination_postal_code",
            shipment.id,
            f"Shipment {shipment.id} has no destination postal code",
        )
        origin_pin = self._require(
            shipment.origin_postal_code or (warehouse.postal_code if warehouse else None),
            "origin_postal_code",
            shipment.id,
            f"Shipment {shipment.id} has no origin postal code",
        )
        weight = self._require(
            shipment.weight_grams or order.weight_grams,
            "weight_grams",
            shipment.id,
            f"Shipment {shipment.id} has no package weight",
        )

        delivery = Address(
            name=order.customer_name,
            phone=order.customer_phone,
            address_line1=order.shipping_address_line1,
            address_line2=order.shipping_address_line2,
            city=order.shipping_city,
            state=order.shipping_state,
            pincode=destination_pin,
            country=order.shipping_country or "India",
        )
        pickup = None
        if warehouse:
            pickup = Address(
                name=warehouse.contact_name or warehouse.name,
                phone=warehouse.phone,
                address_line1=warehouse.address_line1,
                address_line2=warehouse.address_line2,
                city=warehouse.city,
                state=warehouse.state,
                pincode=origin_pin,
                country=warehouse.country or "India",
            )

        package = PackageDetails(
            weight_grams=weight,
            length_cm=shipment.length_cm or order.length_cm,
            width_cm=shipment.width_cm or order.width_cm,
            height_cm=shipment.height_cm or order.height_cm,
            cod_amount=order.cod_amount,
            declared_value=order.total_value,
        )

        return LabelRequest(
            shipment_id=shipment.id,
            tracking_number=shipment.tracking_number,
            delivery_address=delivery,
            package=package,
            pickup_address=pickup,
            order_number=order.order_number,
            format=label_format,
        )

    # ==================== Create ====================

    async def create_label(
        self,
        shipment_id: int,
        label_format: Optional[LabelFormat] = None,
    ) -> Label:
        """
        Create (or return the existing) label for a shipment.

        Raises:
            NotFoundError: Shipment, carrier or order missing
            ValidationError: Mandatory input missing, or shipment is terminal with no label
            ConflictError: The carrier's tracking number belongs to another shipment
        """
        async with self.locks.hold(shipment_id):
            return await self._create_label(shipment_id, LabelFormat(label_format or LabelFormat.PDF))

    async def _create_label(self, shipment_id: int, label_format: LabelFormat) -> Label:
        shipment = await self._get_shipment(shipment_id)
        carrier = await self._get_carrier(shipment.carrier_id, shipment_id)
        order = await self._get_order(shipment.order_id, shipment_id)
        warehouse = await self._get_warehouse(shipment.warehouse_id or order.warehouse_id)
        request = self.build_label_request(shipment, order, warehouse, label_format)

        existing = await self.get_active_label(shipment_id)
        if existing:
            logger.info(f"Shipment {shipment_id} already has label {existing.label_number}, returning it")
            return existing

        if shipment.status in TERMINAL_STATUSES:
            raise ValidationError(
                f"Shipment {shipment_id} is {shipment.status.value}; cannot create a label",
                field="status",
                details={"shipment_id": shipment_id, "status": shipment.status.value},
            )

        carrier = await self._apply_rate_shop(shipment, carrier, request, warehouse)

        client = self.registry.resolve(carrier.code, use_sandbox=carrier.use_sandbox)
        requested_at = datetime.now(timezone.utc)
        outcome = await client.generate_label(request, timeout=self.carrier_timeout)
        result = outcome.label

        now = datetime.now(timezone.utc)
        label = Label(
            shipment_id=shipment_id,
            label_number=result.label_number,
            awb_number=result.awb_number,
            carrier_code=result.carrier_code,
            service_name=result.service_name,
            format=result.format,
            label_url=result.label_url,
            tracking_url=result.tracking_url,
            estimated_delivery=result.estimated_delivery,
            status=LabelStatus.GENERATED,
            is_fallback=result.is_fallback,
            error_message=outcome.error.message if outcome.error else None,
            requested_at=requested_at,
            generated_at=now,
        )
        self.db.add(label)

        values = {"shipped_at": shipment.shipped_at or now}
        if not shipment.tracking_number:
            values["tracking_number"] = result.awb_number or result.label_number

        try:
            await self.db.flush()
            transitioned = False
            if can_transition(shipment.status, ShipmentStatus.SHIPPED):
                cas = await self.db.execute(
                    update(Shipment)
                    .where(and_(Shipment.id == shipment_id, Shipment.status == ShipmentStatus.PENDING))
                    .values(status=ShipmentStatus.SHIPPED, **values)
                    .execution_options(synchronize_session=False)
                )
                transitioned = cas.rowcount == 1
            elif "tracking_number" in values:
                await self.db.execute(
                    update(Shipment)
                    .where(Shipment.id == shipment_id)
                    .values(tracking_number=values["tracking_number"])
                    .execution_options(synchronize_session=False)
                )
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            winner = await self.get_active_label(shipment_id)
            if winner:
                logger.info(f"Concurrent label for shipment {shipment_id} won the insert, returning {winner.label_number}")
                return winner
            raise ConflictError(
                f"Tracking number {values.get('tracking_number')} is already used by another shipment",
                details={"shipment_id": shipment_id, "label_number": result.label_number},
            ) from e

        await self.db.refresh(label)
        await self.db.refresh(shipment)

        if transitioned:
            logger.info(f"Shipment {shipment_id} PENDING -> SHIPPED with label {label.label_number}")
        else:
            logger.info(f"Label {label.label_number} created for shipment {shipment_id} (status {shipment.status.value})")
        if outcome.fell_back:
            logger.warning(f"Shipment {shipment_id} shipped on fallback label {label.label_number}: {label.error_message}")

        if self.dispatcher:
            self.dispatcher.dispatch(LABEL_CREATED_EVENT, label_payload(label, shipment))

        return label

    async def _apply_rate_shop(
        self,
        shipment: Shipment,
        carrier: Carrier,
        request: LabelRequest,
        warehouse: Optional[Warehouse],
    ) -> Carrier:
        """Reassign the shipment's carrier if the rate shop picks another one."""
        if not self.rate_shop:
            return carrier

        criteria = RateShopCriteria(
            origin_postal_code=request.pickup_address.pincode if request.pickup_address else shipment.origin_postal_code,
            destination_postal_code=request.delivery_address.pincode,
            weight_grams=request.package.weight_grams,
            length_cm=request.package.length_cm,
            width_cm=request.package.width_cm,
            height_cm=request.package.height_cm,
            warehouse_id=warehouse.id if warehouse else None,
        )
        decision = await self.rate_shop.shop(criteria)
        if not decision or decision.carrier_id == carrier.id:
            return carrier

        chosen = await self.db.get(Carrier, decision.carrier_id)
        if not chosen:
            logger.warning(f"Rate shop chose unknown carrier {decision.carrier_id}, keeping {carrier.code}")
            return carrier

        logger.info(f"Shipment {shipment.id}: carrier {carrier.code} -> {chosen.code} (rate shop)")
        shipment.carrier_id = chosen.id
        await self.db.commit()
        return chosen

    # ==================== Cancel / void ====================

    async def _find_by_tracking_number(self, tracking_number: str) -> Shipment:
        result = await self.db.execute(
            select(Shipment).where(Shipment.tracking_number == tracking_number)
        )
        shipment = result.scalar_one_or_none()
        if shipment is None:
            label_result = await self.db.execute(
                select(Label.shipment_id).where(
                    (Label.label_number == tracking_number) | (Label.awb_number == tracking_number)
                ).limit(1)
            )
            shipment_id = label_result.scalar_one_or_none()
            if shipment_id is not None:
                shipment = await self.db.get(Shipment, shipment_id)
        if shipment is None:
            raise NotFoundError(
                f"No shipment with tracking number {tracking_number}",
                resource="shipment",
                resource_id=tracking_number,
            )
        return shipment

    async def cancel_shipment(self, tracking_number: str, reason: Optional[str] = None) -> bool:
        """
        Cancel with the carrier, then move the shipment to CANCELLED.

        Returns False if the carrier refuses or the shipment is already
        delivered. Labels issued locally as fallback skip the carrier call.
        """
        if not tracking_number:
            raise ValidationError("Tracking number is required", field="tracking_number")

        shipment = await self._find_by_tracking_number(tracking_number)
        if shipment.status == ShipmentStatus.CANCELLED:
            return True
        if shipment.status == ShipmentStatus.DELIVERED:
            logger.warning(f"Shipment {shipment.id} is delivered, cannot cancel")
            return False

        carrier = await self._get_carrier(shipment.carrier_id, shipment.id)
        label = await self.get_active_label(shipment.id)
        if label is None or not label.is_fallback:
            client = self.registry.resolve(
                label.carrier_code if label else carrier.code,
                use_sandbox=carrier.use_sandbox,
            )
            if not await client.cancel_shipment(tracking_number, reason, timeout=self.carrier_timeout):
                return False

        cas = await self.db.execute(
            update(Shipment)
            .where(and_(Shipment.id == shipment.id, Shipment.status.notin_(list(TERMINAL_STATUSES))))
            .values(status=ShipmentStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(shipment)

        if cas.rowcount != 1:
            logger.warning(f"Shipment {shipment.id} reached {shipment.status.value} before cancellation applied")
            return shipment.status == ShipmentStatus.CANCELLED

        logger.info(f"Shipment {shipment.id} cancelled ({reason or 'no reason given'})")
        return True

    async def void_label(self, label_number: str) -> bool:
        """
        Void a label with its carrier and mark it VOIDED.

        A voided label no longer blocks create_label for its shipment.
        """
        if not label_number:
            raise ValidationError("Label number is required", field="label_number")

        result = await self.db.execute(
            select(Label).where(Label.label_number == label_number).order_by(Label.id.desc()).limit(1)
        )
        label = result.scalar_one_or_none()
        if label is None:
            raise NotFoundError(
                f"Label {label_number} not found",
                resource="label",
                resource_id=label_number,
            )
        if label.status == LabelStatus.VOIDED:
            return True

        if not label.is_fallback:
            client = self.registry.resolve(label.carrier_code)
            if not await client.void_label(label_number, timeout=self.carrier_timeout):
                return False

        label.status = LabelStatus.VOIDED
        label.voided_at = datetime.now(timezone.utc)
        await self.db.commit()
        logger.info(f"Label {label_number} voided (shipment {label.shipment_id})")
        return True
