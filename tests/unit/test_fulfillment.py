"""
Tests for FulfillmentOrchestrator: idempotent labels, fallback, rate shop,
cancel and void.
"""
import asyncio

import httpx
import pytest
from sqlalchemy import func, select

from shipflow.core.dispatcher import BackgroundDispatcher
from shipflow.core.exceptions import NotFoundError, ValidationError
from shipflow.core.locks import KeyedLockManager
from shipflow.core.retry import RetryConfig, RetryExecutor
from shipflow.models import Label, LabelFormat, LabelStatus, Shipment, ShipmentStatus
from shipflow.modules.shipping.carriers import CarrierRegistry, DelhiveryCarrier, SandboxCarrier
from shipflow.services.fulfillment import LABEL_CREATED_EVENT, FulfillmentOrchestrator
from shipflow.services.rate_shop import RateShopDecision


class CountingSandbox(SandboxCarrier):
    """Sandbox carrier that counts label calls."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.label_calls = 0
        self.cancel_calls = 0

    async def _create_label(self, request):
        self.label_calls += 1
        await asyncio.sleep(0)
        return await super()._create_label(request)

    async def _cancel(self, tracking_number, reason):
        self.cancel_calls += 1


class StaticRateShop:
    def __init__(self, decision):
        self.decision = decision
        self.criteria = []

    async def shop(self, criteria):
        self.criteria.append(criteria)
        return self.decision


@pytest.fixture
def sandbox():
    return CountingSandbox()


@pytest.fixture
def registry(sandbox):
    return CarrierRegistry(sandbox=sandbox)


async def count_labels(session_factory, shipment_id):
    async with session_factory() as db:
        result = await db.execute(select(func.count(Label.id)).where(Label.shipment_id == shipment_id))
        return result.scalar_one()


async def load_shipment(session_factory, shipment_id) -> Shipment:
    async with session_factory() as db:
        return await db.get(Shipment, shipment_id)


class TestCreateLabel:
    @pytest.mark.asyncio
    async def test_sandbox_label_ships_pending_shipment(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, carrier_code="SANDBOX", destination="560001", weight_grams=500)

        async with session_factory() as db:
            label = await FulfillmentOrchestrator(db, registry).create_label(42)

        assert label.label_number.startswith("SANDBOX-42-")
        assert label.label_url is None
        assert label.status == LabelStatus.GENERATED
        assert label.is_fallback is False
        assert label.format == LabelFormat.PDF

        shipment = await load_shipment(session_factory, 42)
        assert shipment.status == ShipmentStatus.SHIPPED
        assert shipment.shipped_at is not None
        assert shipment.tracking_number == label.label_number

    @pytest.mark.asyncio
    async def test_repeat_call_returns_existing_label(self, session_factory, seed_shipment, registry, sandbox):
        await seed_shipment(42)

        async with session_factory() as db:
            first = await FulfillmentOrchestrator(db, registry).create_label(42)
        async with session_factory() as db:
            second = await FulfillmentOrchestrator(db, registry).create_label(42, LabelFormat.ZPL)

        assert second.id == first.id
        assert second.label_number == first.label_number
        assert sandbox.label_calls == 1
        assert await count_labels(session_factory, 42) == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_label(self, session_factory, seed_shipment, registry, sandbox):
        await seed_shipment(42)
        locks = KeyedLockManager()

        async def create():
            async with session_factory() as db:
                return await FulfillmentOrchestrator(db, registry, locks=locks).create_label(42)

        first, second = await asyncio.gather(create(), create())

        assert first.label_number == second.label_number
        assert sandbox.label_calls == 1
        assert await count_labels(session_factory, 42) == 1

    @pytest.mark.asyncio
    async def test_missing_destination_rejected_before_carrier(self, session_factory, seed_shipment, registry, sandbox):
        await seed_shipment(42, destination=None)

        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc_info:
                await FulfillmentOrchestrator(db, registry).create_label(42)

        assert exc_info.value.details["field"] == "destination_postal_code"
        assert sandbox.label_calls == 0
        assert await count_labels(session_factory, 42) == 0

    @pytest.mark.asyncio
    async def test_missing_weight_rejected(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, weight_grams=None)

        async with session_factory() as db:
            with pytest.raises(ValidationError) as exc_info:
                await FulfillmentOrchestrator(db, registry).create_label(42)

        assert exc_info.value.details["field"] == "weight_grams"

    @pytest.mark.asyncio
    async def test_unknown_shipment(self, session_factory, registry):
        async with session_factory() as db:
            with pytest.raises(NotFoundError):
                await FulfillmentOrchestrator(db, registry).create_label(999)

    @pytest.mark.asyncio
    async def test_cancelled_shipment_without_label_rejected(self, session_factory, seed_shipment, registry):
        await seed_shipment(42, status=ShipmentStatus.CANCELLED)

        async with session_factory() as db:
            with pytest.raises(ValidationError):
                await FulfillmentOrchestrator(db, registry).create_label(42)

    @pytest.mark.asyncio
    async def test_carrier_outage_yields_fallback_label(self, session_factory, seed_shipment, fake_sleep):
        await seed_shipment(42, carrier_code="DELHIVERY")
        registry = CarrierRegistry()
        registry.register(DelhiveryCarrier(
            "tok",
            base_url="https://delhivery.test",
            retry=RetryExecutor(RetryConfig(max_retries=3, base_delay=1.0), sleep=fake_sleep),
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        ))

        async with session_factory() as db:
            label = await FulfillmentOrchestrator(db, registry).create_label(42)
        await registry.close()

        assert label.is_fallback is True
        assert label.label_number.startswith("DLV-42-")
        assert label.label_url is None
        assert "503" in label.error_message
        assert fake_sleep.delays == [1.0, 2.0]

        shipment = await load_shipment(session_factory, 42)
        assert shipment.status == ShipmentStatus.SHIPPED
        assert shipment.tracking_number == label.label_number

    @pytest.mark.asyncio
    async def test_rate_shop_reassigns_carrier(self, session_factory, seed_shipment, add_carrier, registry):
        await seed_shipment(42, carrier_code="SANDBOX")
        bluedart_id = await add_carrier("BLUEDART")
        rate_shop = StaticRateShop(RateShopDecision(
            carrier_id=bluedart_id,
            carrier_code="BLUEDART",
            carrier_name="BlueDart",
            rate_id=1,
            service_name="Express",
            estimated_cost=45.0,
            estimated_days=2,
            score=27.8,
        ))

        async with session_factory() as db:
            label = await FulfillmentOrchestrator(db, registry, rate_shop=rate_shop).create_label(42)

        shipment = await load_shipment(session_factory, 42)
        assert shipment.carrier_id == bluedart_id
        # BlueDart has no configured client, so the sandbox issues the label
        assert label.carrier_code == "SANDBOX"
        criteria = rate_shop.criteria[0]
        assert criteria.destination_postal_code == "560001"
        assert criteria.origin_postal_code == "110001"
        assert criteria.weight_grams == 500

    @pytest.mark.asyncio
    async def test_rate_shop_none_keeps_carrier(self, session_factory, seed_shipment, registry):
        await seed_shipment(42)
        before = (await load_shipment(session_factory, 42)).carrier_id

        async with session_factory() as db:
            await FulfillmentOrchestrator(db, registry, rate_shop=StaticRateShop(None)).create_label(42)

        assert (await load_shipment(session_factory, 42)).carrier_id == before

    @pytest.mark.asyncio
    async def test_label_created_event_dispatched(self, session_factory, seed_shipment, registry):
        await seed_shipment(42)
        received = []

        async def handler(payload):
            received.append(payload)

        dispatcher = BackgroundDispatcher()
        dispatcher.subscribe(LABEL_CREATED_EVENT, handler)
        await dispatcher.start()

        async with session_factory() as db:
            label = await FulfillmentOrchestrator(db, registry, dispatcher=dispatcher).create_label(42)
        await dispatcher.stop()

        assert len(received) == 1
        assert received[0]["shipment_id"] == 42
        assert received[0]["label_number"] == label.label_number


class TestCancelAndVoid:
    @pytest.mark.asyncio
    async def test_cancel_shipped_shipment(self, session_factory, seed_shipment, registry, sandbox):
        await seed_shipment(42)
        async with session_factory() as db:
            orchestrator = FulfillmentOrchestrator(db, registry)
            label = await orchestrator.create_label(42)
            assert await orchestrator.cancel_shipment(label.label_number, "Customer request")

        shipment = await load_shipment(session_factory, 42)
        assert shipment.status == ShipmentStatus.CANCELLED
        assert sandbox.cancel_calls == 1

    @pytest.mark.asyncio
    async def test_cancel_delivered_refused(self, session_factory, seed_shipment, registry, sandbox):
        await seed_shipment(42, status=ShipmentStatus.DELIVERED, tracking_number="AWB42")

        async with session_factory() as db:
            assert await FulfillmentOrchestrator(db, registry).cancel_shipment("AWB42") is False

        assert (await load_shipment(session_factory, 42)).status == ShipmentStatus.DELIVERED
        assert sandbox.cancel_calls == 0

    @pytest.mark.asyncio
    async def test_cancel_unknown_tracking_number(self, session_factory, registry):
        async with session_factory() as db:
            with pytest.raises(NotFoundError):
                await FulfillmentOrchestrator(db, registry).cancel_shipment("NOPE")

    @pytest.mark.asyncio
    async def test_void_frees_shipment_for_new_label(self, session_factory, seed_shipment, registry, sandbox):
        await seed_shipment(42)

        async with session_factory() as db:
            orchestrator = FulfillmentOrchestrator(db, registry)
            first = await orchestrator.create_label(42)
            assert await orchestrator.void_label(first.label_number)
            second = await orchestrator.create_label(42)

        assert second.id != first.id
        assert sandbox.label_calls == 2
        async with session_factory() as db:
            voided = await db.get(Label, first.id)
            assert voided.status == LabelStatus.VOIDED
            assert voided.voided_at is not None

    @pytest.mark.asyncio
    async def test_void_unknown_label(self, session_factory, registry):
        async with session_factory() as db:
            with pytest.raises(NotFoundError):
                await FulfillmentOrchestrator(db, registry).void_label("NOPE")
