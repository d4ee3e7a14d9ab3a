"""
Tracking Ingestion Pipeline

Accepts carrier tracking events (webhook push or carrier sync pull):
1. Validate the event and that the tracking number belongs to the shipment
2. Normalize the raw status with the shipment carrier's vocabulary
3. Append an immutable TrackingEvent (raw payload kept verbatim)
4. Drive the state machine: forward-only, compare-and-set on the current
   status, retried when a concurrent writer changed it first

delivered_at is the carrier-reported occurred_at of the DELIVERED event,
not the ingestion time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from shipflow.core.exceptions import NotFoundError, ValidationError
from shipflow.models.carrier import Carrier
from shipflow.models.shipment import (
    Label,
    Shipment,
    ShipmentStatus,
    TrackingEvent,
    TrackingStatus,
)
from shipflow.modules.shipping.carriers import CarrierRegistry
from shipflow.modules.shipping.carriers.base import parse_datetime
from shipflow.modules.shipping.state_machine import next_status

logger = logging.getLogger(__name__)

# Compare-and-set retries before giving up on a status update
MAX_STATUS_UPDATE_ATTEMPTS = 5


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC datetime; naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TrackingIngestionPipeline:
    """
    Ingests tracking events for shipments.

    Usage:
        pipeline = TrackingIngestionPipeline(db, registry)
        event = await pipeline.ingest_tracking(42, "AWB123", "Delivered", occurred_at=ts)
    """

    def __init__(
        self,
        db: AsyncSession,
        registry: CarrierRegistry,
        carrier_timeout: Optional[float] = None,
    ):
        self.db = db
        self.registry = registry
        self.carrier_timeout = carrier_timeout

    async def _get_shipment(self, shipment_id: int) -> Shipment:
        shipment = await self.db.get(Shipment, shipment_id, populate_existing=True)
        if not shipment:
            raise NotFoundError(
                f"Shipment {shipment_id} not found",
                resource="shipment",
                resource_id=shipment_id,
            )
        return shipment

    async def _get_carrier(self, shipment: Shipment) -> Carrier:
        carrier = await self.db.get(Carrier, shipment.carrier_id)
        if not carrier:
            raise NotFoundError(
                f"Carrier {shipment.carrier_id} for shipment {shipment.id} not found",
                resource="carrier",
                resource_id=shipment.carrier_id,
                details={"shipment_id": shipment.id},
            )
        return carrier

    async def _known_tracking_numbers(self, shipment: Shipment) -> Set[str]:
        numbers = {shipment.tracking_number} if shipment.tracking_number else set()
        result = await self.db.execute(
            select(Label.label_number, Label.awb_number).where(Label.shipment_id == shipment.id)
        )
        for label_number, awb_number in result.all():
            numbers.update(n for n in (label_number, awb_number) if n)
        return numbers

    async def _check_tracking_number(self, shipment: Shipment, tracking_number: str):
        known = await self._known_tracking_numbers(shipment)
        # A shipment with no tracking number yet accepts the first carrier's
        if known and tracking_number not in known:
            raise ValidationError(
                f"Tracking number {tracking_number} does not belong to shipment {shipment.id}",
                field="tracking_number",
                details={"shipment_id": shipment.id, "tracking_number": tracking_number},
            )

    # ==================== Ingest ====================

    async def ingest_tracking(
        self,
        shipment_id: int,
        tracking_number: str,
        status: str,
        occurred_at: Any,
        sub_status: Optional[str] = None,
        description: Optional[str] = None,
        event_code: Optional[str] = None,
        location: Optional[str] = None,
        raw_payload: Optional[Dict[str, Any]] = None,
    ) -> TrackingEvent:
        """
        Record one tracking event and advance the shipment if it is progress.

        Raises:
            ValidationError: Missing tracking number / status / occurred_at,
                             or tracking number not on this shipment
            NotFoundError: Shipment or its carrier missing
        """
        if not tracking_number:
            raise ValidationError("Tracking number is required", field="tracking_number", details={"shipment_id": shipment_id})
        if not status:
            raise ValidationError("Status is required", field="status", details={"shipment_id": shipment_id})
        occurred = as_utc(parse_datetime(occurred_at))
        if occurred is None:
            raise ValidationError(
                f"occurred_at is missing or not a valid timestamp: {occurred_at!r}",
                field="occurred_at",
                details={"shipment_id": shipment_id},
            )

        shipment = await self._get_shipment(shipment_id)
        carrier = await self._get_carrier(shipment)
        await self._check_tracking_number(shipment, tracking_number)

        normalizer = self.registry.resolve(carrier.code, use_sandbox=carrier.use_sandbox).normalizer
        canonical = normalizer.normalize(status)

        if raw_payload is None:
            raw_payload = {
                "shipment_id": shipment_id,
                "tracking_number": tracking_number,
                "status": status,
                "sub_status": sub_status,
                "description": description,
                "event_code": event_code,
                "location": location,
                "occurred_at": occurred.isoformat(),
            }

        event = TrackingEvent(
            shipment_id=shipment_id,
            tracking_number=tracking_number,
            status=canonical,
            raw_status=status,
            sub_status=sub_status,
            description=description,
            event_code=event_code,
            location=location,
            occurred_at=occurred,
            received_at=datetime.now(timezone.utc),
            raw_payload=raw_payload,
        )
        self.db.add(event)
        await self.db.flush()

        moved_to = await self.apply_status(shipment_id, canonical, occurred)
        await self.db.commit()
        await self.db.refresh(event)

        if moved_to:
            logger.info(f"Shipment {shipment_id} -> {moved_to.value} ({carrier.code} '{status}')")
        elif canonical == TrackingStatus.UNKNOWN:
            logger.warning(f"Unrecognized {carrier.code} status '{status}' for shipment {shipment_id}, recorded as UNKNOWN")
        else:
            logger.debug(f"Shipment {shipment_id}: '{status}' ({canonical.value}) is not progress, status kept")

        return event

    async def apply_status(
        self,
        shipment_id: int,
        observed: TrackingStatus,
        occurred_at: datetime,
    ) -> Optional[ShipmentStatus]:
        """
        Compare-and-set the shipment status forward. Caller commits.

        Returns the new status, or None if the observation changed nothing.
        """
        for _ in range(MAX_STATUS_UPDATE_ATTEMPTS):
            row = (
                await self.db.execute(
                    select(Shipment.status, Shipment.shipped_at, Shipment.delivered_at)
                    .where(Shipment.id == shipment_id)
                )
            ).one()
            current, shipped_at, delivered_at = row

            target = next_status(current, observed)
            if target is None:
                return None

            values: Dict[str, Any] = {"status": target}
            if target != ShipmentStatus.CANCELLED and shipped_at is None:
                values["shipped_at"] = occurred_at
            if target == ShipmentStatus.DELIVERED and delivered_at is None:
                values["delivered_at"] = occurred_at

            result = await self.db.execute(
                update(Shipment)
                .where(and_(Shipment.id == shipment_id, Shipment.status == current))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return target

            logger.debug(f"Shipment {shipment_id} status changed concurrently, re-reading")

        logger.error(f"Shipment {shipment_id}: gave up applying {observed.value} after {MAX_STATUS_UPDATE_ATTEMPTS} attempts")
        return None

    # ==================== Carrier sync ====================

    async def _event_keys(self, shipment_id: int) -> Set[Tuple[datetime, Optional[str], str]]:
        result = await self.db.execute(
            select(TrackingEvent.occurred_at, TrackingEvent.event_code, TrackingEvent.raw_status)
            .where(TrackingEvent.shipment_id == shipment_id)
        )
        return {(as_utc(occurred), code, raw) for occurred, code, raw in result.all()}

    async def _tracking_number_for(self, shipment: Shipment) -> str:
        if shipment.tracking_number:
            return shipment.tracking_number
        result = await self.db.execute(
            select(Label.awb_number, Label.label_number)
            .where(Label.shipment_id == shipment.id)
            .order_by(Label.id.desc())
            .limit(1)
        )
        row = result.first()
        if row and (row[0] or row[1]):
            return row[0] or row[1]
        raise ValidationError(
            f"Shipment {shipment.id} has no tracking number to sync",
            field="tracking_number",
            details={"shipment_id": shipment.id},
        )

    async def sync_from_carrier(self, shipment_id: int) -> List[TrackingEvent]:
        """
        Pull the carrier's scan history and ingest scans not yet recorded.

        Returns the newly ingested events (possibly empty). Carrier failure
        yields an UNKNOWN result with no scans, so nothing is ingested.
        """
        shipment = await self._get_shipment(shipment_id)
        carrier = await self._get_carrier(shipment)
        tracking_number = await self._tracking_number_for(shipment)

        client = self.registry.resolve(carrier.code, use_sandbox=carrier.use_sandbox)
        result = await client.track_shipment(tracking_number, timeout=self.carrier_timeout)

        seen = await self._event_keys(shipment_id)
        ingested: List[TrackingEvent] = []
        for update_ in sorted(result.events, key=lambda e: as_utc(e.occurred_at)):
            key = (as_utc(update_.occurred_at), update_.event_code, update_.raw_status)
            if key in seen:
                continue
            seen.add(key)
            event = await self.ingest_tracking(
                shipment_id=shipment_id,
                tracking_number=tracking_number,
                status=update_.raw_status,
                occurred_at=update_.occurred_at,
                sub_status=update_.sub_status,
                description=update_.description,
                event_code=update_.event_code,
                location=update_.location,
                raw_payload=update_.raw,
            )
            ingested.append(event)

        logger.info(f"Synced shipment {shipment_id} from {client.code}: {len(ingested)} new event(s)")
        return ingested
