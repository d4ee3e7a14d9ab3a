"""
Tests for TrackingIngestionPipeline.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from shipflow.core.exceptions import NotFoundError, ValidationError
from shipflow.models import Shipment, ShipmentStatus, TrackingEvent, TrackingStatus
from shipflow.modules.shipping.carriers import CarrierRegistry, SandboxCarrier
from shipflow.services.tracking import TrackingIngestionPipeline, as_utc

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class ScriptedSandbox(SandboxCarrier):
    """Sandbox carrier whose tracking lookup returns fixed scans."""

    def __init__(self, scans):
        super().__init__()
        self.scans = scans

    async def _track(self, tracking_number):
        events = [self.build_update(raw, when, event_code=code) for raw, when, code in self.scans]
        return self.build_tracking_result(tracking_number, events)


async def load_shipment(session_factory, shipment_id) -> Shipment:
    async with session_factory() as db:
        return await db.get(Shipment, shipment_id)


async def load_events(session_factory, shipment_id):
    async with session_factory() as db:
        result = await db.execute(
            select(TrackingEvent).where(TrackingEvent.shipment_id == shipment_id).order_by(TrackingEvent.id)
        )
        return list(result.scalars().all())


@pytest.fixture
def registry():
    return CarrierRegistry()


class TestIngestTracking:
    @pytest.mark.asyncio
    async def test_delivered_sets_delivered_at_to_carrier_time(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, status=ShipmentStatus.SHIPPED, tracking_number="AWB42", shipped_at=T0)
        delivered_time = T0 + timedelta(days=2)

        async with session_factory() as db:
            event = await TrackingIngestionPipeline(db, registry).ingest_tracking(
                42, "AWB42", "Delivered", delivered_time, location="Bengaluru"
            )

        assert event.status == TrackingStatus.DELIVERED
        assert event.raw_status == "Delivered"
        assert event.raw_payload["status"] == "Delivered"

        shipment = await load_shipment(session_factory, 42)
        assert shipment.status == ShipmentStatus.DELIVERED
        assert as_utc(shipment.delivered_at) == delivered_time
        assert as_utc(shipment.shipped_at) == T0

    @pytest.mark.asyncio
    async def test_late_in_transit_does_not_regress(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, status=ShipmentStatus.SHIPPED, tracking_number="AWB42", shipped_at=T0)

        async with session_factory() as db:
            pipeline = TrackingIngestionPipeline(db, registry)
            await pipeline.ingest_tracking(42, "AWB42", "Delivered", T0 + timedelta(days=2))
            await pipeline.ingest_tracking(42, "AWB42", "In Transit", T0 + timedelta(days=1))

        shipment = await load_shipment(session_factory, 42)
        assert shipment.status == ShipmentStatus.DELIVERED
        events = await load_events(session_factory, 42)
        assert [e.status for e in events] == [TrackingStatus.DELIVERED, TrackingStatus.IN_TRANSIT]

    @pytest.mark.asyncio
    async def test_unknown_status_recorded_without_moving(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, status=ShipmentStatus.SHIPPED, tracking_number="AWB42", shipped_at=T0)

        async with session_factory() as db:
            event = await TrackingIngestionPipeline(db, registry).ingest_tracking(
                42, "AWB42", "Weather hold", T0 + timedelta(hours=3)
            )

        assert event.status == TrackingStatus.UNKNOWN
        assert (await load_shipment(session_factory, 42)).status == ShipmentStatus.SHIPPED

    @pytest.mark.asyncio
    async def test_first_scan_ships_pending_shipment(self, session_factory, seed_shipment, registry):
        await seed_shipment(42)

        async with session_factory() as db:
            await TrackingIngestionPipeline(db, registry).ingest_tracking(42, "AWB42", "Picked up", T0)

        shipment = await load_shipment(session_factory, 42)
        assert shipment.status == ShipmentStatus.SHIPPED
        assert as_utc(shipment.shipped_at) == T0

    @pytest.mark.asyncio
    async def test_cancelled_after_delivery_ignored(self, session_factory, seed_shipment, registry):
        await seed_shipment(
            42,
            status=ShipmentStatus.DELIVERED,
            tracking_number="AWB42",
            shipped_at=T0,
            delivered_at=T0 + timedelta(days=1),
        )

        async with session_factory() as db:
            await TrackingIngestionPipeline(db, registry).ingest_tracking(
                42, "AWB42", "Cancelled", T0 + timedelta(days=3)
            )

        assert (await load_shipment(session_factory, 42)).status == ShipmentStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_foreign_tracking_number_rejected(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, status=ShipmentStatus.SHIPPED, tracking_number="AWB42", shipped_at=T0)

        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc_info:
                await TrackingIngestionPipeline(db, registry).ingest_tracking(42, "AWB99", "Delivered", T0)

        assert exc_info.value.details["field"] == "tracking_number"
        assert await load_events(session_factory, 42) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tracking_number,status,occurred_at,field", [
        ("", "Delivered", T0, "tracking_number"),
        ("AWB42", "", T0, "status"),
        ("AWB42", "Delivered", None, "occurred_at"),
        ("AWB42", "Delivered", "yesterday", "occurred_at"),
    ])
    async def test_missing_fields(self, session_factory, seed_shipment, registry, tracking_number, status, occurred_at, field):
        await seed_shipment(42, tracking_number="AWB42")

        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc_info:
                await TrackingIngestionPipeline(db, registry).ingest_tracking(42, tracking_number, status, occurred_at)

        assert exc_info.value.details["field"] == field

    @pytest.mark.asyncio
    async def test_unknown_shipment(self, session_factory, registry):
        async with session_factory() as db:
            with pytest.raises(NotFoundError):
                await TrackingIngestionPipeline(db, registry).ingest_tracking(404, "AWB", "Delivered", T0)

    @pytest.mark.asyncio
    async def test_iso_string_timestamp_accepted(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, tracking_number="AWB42")

        async with session_factory() as db:
            event = await TrackingIngestionPipeline(db, registry).ingest_tracking(
                42, "AWB42", "In Transit", "2024-03-01T09:00:00Z"
            )

        assert as_utc(event.occurred_at) == T0
        assert (await load_shipment(session_factory, 42)).status == ShipmentStatus.IN_TRANSIT


class TestSyncFromCarrier:
    @pytest.mark.asyncio
    async def test_sync_ingests_new_scans_once(self, session_factory, seed_shipment):
        await seed_shipment(42, status=ShipmentStatus.SHIPPED, tracking_number="AWB42", shipped_at=T0)
        registry = CarrierRegistry(sandbox=ScriptedSandbox([
            ("Picked up", T0, "PU"),
            ("In Transit", T0 + timedelta(hours=6), "IT"),
        ]))

        async with session_factory() as db:
            first = await TrackingIngestionPipeline(db, registry).sync_from_carrier(42)
        async with session_factory() as db:
            second = await TrackingIngestionPipeline(db, registry).sync_from_carrier(42)

        assert len(first) == 2
        assert second == []
        assert (await load_shipment(session_factory, 42)).status == ShipmentStatus.IN_TRANSIT
        assert len(await load_events(session_factory, 42)) == 2

    @pytest.mark.asyncio
    async def test_sync_without_tracking_number(self, session_factory, seed_shipment, registry):
        await seed_shipment(42)

        async with session_factory() as db:
            with pytest.raises(ValidationError):
                await TrackingIngestionPipeline(db, registry).sync_from_carrier(42)
