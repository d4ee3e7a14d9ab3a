"""
Tests for rate-shop scoring and the rate-shop engine.
"""
import pytest
import pytest_asyncio

from shipflow.models import Carrier, PincodeZone, RateSurcharge, ShippingRate, WarehouseCoverage, Warehouse
from shipflow.services.rate_shop import (
    RateQuote,
    RateShopCriteria,
    RateShopEngine,
    RateShopPreferences,
    Surcharge,
    chargeable_weight_kg,
    choose_rate,
    quote_price,
    volumetric_weight_kg,
)
from shipflow.services.serviceability import CoverageInfo, ServiceabilityResult, ZoneInfo


def quote(rate_id, code, per_kg, days, surcharges=None, **kwargs):
    return RateQuote(
        rate_id=rate_id,
        carrier_id=rate_id,
        carrier_code=code,
        carrier_name=code.title(),
        service_name=f"{code} Surface",
        per_kg_rate=per_kg,
        estimated_days=days,
        surcharges=surcharges or [],
        **kwargs,
    )


SERVICEABLE = ServiceabilityResult(
    serviceable=True,
    origin_zone=ZoneInfo("110001", "NORTH"),
    destination_zone=ZoneInfo("560001", "SOUTH"),
)

CRITERIA = RateShopCriteria(origin_postal_code="110001", destination_postal_code="560001", weight_grams=500)


class TestWeights:
    def test_volumetric_weight(self):
        assert volumetric_weight_kg(50, 40, 30) == pytest.approx(12.0)
        assert volumetric_weight_kg(None, 40, 30) == 0.0

    def test_chargeable_weight_takes_larger(self):
        criteria = RateShopCriteria("110001", "560001", weight_grams=1500)
        assert chargeable_weight_kg(criteria) == pytest.approx(1.5)

    def test_bulky_light_box_charged_by_volume(self):
        criteria = RateShopCriteria(
            "110001", "560001", weight_grams=500, length_cm=50, width_cm=50, height_cm=50,
        )
        assert chargeable_weight_kg(criteria) == pytest.approx(25.0)


class TestQuotePrice:
    def test_rounds_up_to_whole_kg_and_applies_surcharges(self):
        q = quote(1, "DELHIVERY", 40.0, 4, surcharges=[
            Surcharge("Fuel", percent=10),
            Surcharge("Docket", flat=5),
            Surcharge("ODA charge", flat=100),
        ])
        # ceil(1.5) = 2 kg -> 80, +10% -> 88, +5 -> 93, ODA skipped
        assert quote_price(q, 1.5) == pytest.approx(93.0)

    def test_minimum_one_kg(self):
        assert quote_price(quote(1, "DELHIVERY", 40.0, 4), 0.2) == pytest.approx(40.0)

    def test_oda_surcharge_applies_to_oda_destination(self):
        q = quote(1, "DELHIVERY", 40.0, 4, surcharges=[Surcharge("ODA charge", flat=100)])
        assert quote_price(q, 1.0, is_oda_destination=True, oda_fee=30) == pytest.approx(140.0)

    def test_warehouse_oda_fee_when_no_oda_surcharge(self):
        q = quote(1, "DELHIVERY", 40.0, 4)
        assert quote_price(q, 1.0, is_oda_destination=True, oda_fee=30) == pytest.approx(70.0)


class TestChooseRate:
    def test_lowest_score_wins(self):
        cheap_slow = quote(1, "DELHIVERY", 40.0, 5)   # 0.6*40 + 0.4*5 = 26.0
        pricey_fast = quote(2, "BLUEDART", 45.0, 2)   # 0.6*45 + 0.4*2 = 27.8

        decision = choose_rate([cheap_slow, pricey_fast], CRITERIA, SERVICEABLE)

        assert decision.carrier_code == "DELHIVERY"
        assert decision.estimated_cost == 40.0
        assert decision.score == pytest.approx(26.0)

    def test_preferred_carrier_discount(self):
        cheap_slow = quote(1, "DELHIVERY", 40.0, 5)
        pricey_fast = quote(2, "BLUEDART", 45.0, 2)   # 27.8 * 0.9 = 25.02
        prefs = RateShopPreferences(preferred_carriers=("BLUEDART",))

        decision = choose_rate([cheap_slow, pricey_fast], CRITERIA, SERVICEABLE, prefs)

        assert decision.carrier_code == "BLUEDART"
        assert decision.score == pytest.approx(25.02)

    def test_max_sla_excludes_slow_rates(self):
        prefs = RateShopPreferences(max_sla_days=3)
        decision = choose_rate(
            [quote(1, "DELHIVERY", 40.0, 5), quote(2, "BLUEDART", 45.0, 2)],
            CRITERIA,
            SERVICEABLE,
            prefs,
        )
        assert decision.carrier_code == "BLUEDART"

    def test_warehouse_tat_overrides_rate_days(self):
        serviceability = ServiceabilityResult(
            serviceable=True,
            origin_zone=ZoneInfo("110001", "NORTH"),
            destination_zone=ZoneInfo("560001", "SOUTH"),
            warehouse_coverage=CoverageInfo(warehouse_id=1, pincode="560001", tat_days=1),
        )
        decision = choose_rate([quote(1, "DELHIVERY", 40.0, 5)], CRITERIA, serviceability)
        assert decision.estimated_days == 1

    def test_weight_band_and_zone_filters(self):
        heavy_only = quote(1, "DELHIVERY", 10.0, 2, min_weight_grams=5000)
        wrong_zone = quote(2, "BLUEDART", 10.0, 2, zone="EAST")
        fallback = quote(3, "ECOM_EXPRESS", 60.0, 6)

        decision = choose_rate([heavy_only, wrong_zone, fallback], CRITERIA, SERVICEABLE)
        assert decision.carrier_code == "ECOM_EXPRESS"

    def test_unserviceable_route(self):
        assert choose_rate([quote(1, "DELHIVERY", 40.0, 5)], CRITERIA, ServiceabilityResult(False)) is None

    def test_no_quotes(self):
        assert choose_rate([], CRITERIA, SERVICEABLE) is None


class TestRateShopEngine:
    @pytest_asyncio.fixture
    async def seeded(self, session_factory):
        async with session_factory() as db:
            delhivery = Carrier(code="DELHIVERY", name="Delhivery")
            bluedart = Carrier(code="BLUEDART", name="BlueDart")
            retired = Carrier(code="ECOM_EXPRESS", name="Ecom Express", is_active=False)
            warehouse = Warehouse(name="Okhla", postal_code="110001")
            db.add_all([delhivery, bluedart, retired, warehouse])
            await db.flush()
            db.add_all([
                PincodeZone(pincode="110001", zone="NORTH"),
                PincodeZone(pincode="560001", zone="SOUTH", oda=True),
                ShippingRate(carrier_id=delhivery.id, service_name="Surface", rate=40.0, estimated_delivery_days=5),
                ShippingRate(carrier_id=bluedart.id, service_name="Express", rate=45.0, estimated_delivery_days=2),
                ShippingRate(carrier_id=retired.id, service_name="Economy", rate=1.0, estimated_delivery_days=1),
                RateSurcharge(carrier_id=delhivery.id, name="ODA charge", flat=20.0),
                WarehouseCoverage(warehouse_id=warehouse.id, pincode="560001", is_oda=True),
            ])
            await db.commit()
            return {"delhivery": delhivery.id, "bluedart": bluedart.id, "warehouse": warehouse.id}

    @pytest.mark.asyncio
    async def test_shop_picks_best_active_carrier(self, session_factory, seeded):
        engine = RateShopEngine(session_factory)

        decision = await engine.shop(CRITERIA)

        # Delhivery: 40 + 20 ODA = 60 -> 38.0; BlueDart: 45 -> 27.8
        assert decision.carrier_id == seeded["bluedart"]
        assert decision.service_name == "Express"

    @pytest.mark.asyncio
    async def test_unknown_pincode_yields_none(self, session_factory, seeded):
        engine = RateShopEngine(session_factory)
        criteria = RateShopCriteria("110001", "999999", weight_grams=500)
        assert await engine.shop(criteria) is None

    @pytest.mark.asyncio
    async def test_disabled_engine(self, session_factory, seeded):
        assert await RateShopEngine(session_factory, enabled=False).shop(CRITERIA) is None

    @pytest.mark.asyncio
    async def test_failure_degrades_to_none(self):
        def broken_factory():
            raise RuntimeError("database unavailable")

        assert await RateShopEngine(broken_factory).shop(CRITERIA) is None
