"""
Rate Shopping Engine

Picks a carrier for a shipment by scoring every applicable rate card:

    chargeable kg = max(physical kg, L x W x H / 5000)
    price         = per-kg rate x max(1, ceil(chargeable kg))
                    + surcharges (percent, then flat; ODA surcharges only
                      for ODA destinations; warehouse ODA fee if no ODA
                      surcharge applied)
    sla days      = warehouse TAT for the destination, else the rate's days
    score         = weight_cost x price + weight_sla x sla days
                    (x 0.9 for preferred carriers)

Lowest score wins. The engine only reads: it opens its own session and
any failure degrades to "no decision" so fulfillment keeps the carrier it
already has.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import select, and_

from shipflow.models.carrier import Carrier
from shipflow.models.rates import RateSurcharge, ShippingRate
from shipflow.services.serviceability import ServiceabilityResult, ServiceabilityService

logger = logging.getLogger(__name__)

VOLUMETRIC_DIVISOR = 5000
PREFERRED_CARRIER_DISCOUNT = 0.9


@dataclass
class RateShopCriteria:
    origin_postal_code: str
    destination_postal_code: str
    weight_grams: int
    length_cm: Optional[float] = None
    width_cm: Optional[float] = None
    height_cm: Optional[float] = None
    warehouse_id: Optional[int] = None


@dataclass
class RateShopPreferences:
    weight_cost: float = 0.6
    weight_sla: float = 0.4
    preferred_carriers: Tuple[str, ...] = ()
    max_sla_days: Optional[int] = None

    @classmethod
    def from_settings(cls, settings) -> "RateShopPreferences":
        return cls(
            weight_cost=settings.RATE_SHOP_WEIGHT_COST,
            weight_sla=settings.RATE_SHOP_WEIGHT_SLA,
            preferred_carriers=tuple(settings.RATE_SHOP_PREFERRED_CARRIERS or ()),
            max_sla_days=settings.RATE_SHOP_MAX_SLA_DAYS,
        )


@dataclass
class Surcharge:
    name: str
    percent: Optional[float] = None
    flat: Optional[float] = None

    @property
    def is_oda(self) -> bool:
        return "oda" in (self.name or "").lower()


@dataclass
class RateQuote:
    """One rate card row with its carrier's active surcharges."""
    rate_id: int
    carrier_id: int
    carrier_code: str
    carrier_name: str
    service_name: str
    per_kg_rate: float
    estimated_days: int
    surcharges: List[Surcharge] = field(default_factory=list)
    min_weight_grams: Optional[int] = None
    max_weight_grams: Optional[int] = None
    zone: Optional[str] = None


@dataclass
class RateShopDecision:
    """Chosen carrier/rate. Ephemeral, never persisted."""
    carrier_id: int
    carrier_code: str
    carrier_name: str
    rate_id: int
    service_name: str
    estimated_cost: float
    estimated_days: int
    score: float


# =============================================================================
# Pure scoring
# =============================================================================

def volumetric_weight_kg(
    length_cm: Optional[float],
    width_cm: Optional[float],
    height_cm: Optional[float],
) -> float:
    if not length_cm or not width_cm or not height_cm:
        return 0.0
    return length_cm * width_cm * height_cm / VOLUMETRIC_DIVISOR


def chargeable_weight_kg(criteria: RateShopCriteria) -> float:
    physical = (criteria.weight_grams or 0) / 1000
    return max(physical, volumetric_weight_kg(criteria.length_cm, criteria.width_cm, criteria.height_cm))


def quote_price(
    quote: RateQuote,
    chargeable_kg: float,
    is_oda_destination: bool = False,
    oda_fee: Optional[float] = None,
) -> float:
    price = quote.per_kg_rate * max(1, math.ceil(chargeable_kg))
    oda_handled = False

    for surcharge in quote.surcharges:
        if surcharge.is_oda:
            if not is_oda_destination:
                continue
            oda_handled = True
        if surcharge.percent:
            price += price * (surcharge.percent / 100)
        if surcharge.flat:
            price += surcharge.flat

    if is_oda_destination and not oda_handled and oda_fee:
        price += oda_fee

    return price


def quote_applies(
    quote: RateQuote,
    chargeable_kg: float,
    destination_zone: Optional[str],
) -> bool:
    grams = chargeable_kg * 1000
    if quote.min_weight_grams is not None and grams < quote.min_weight_grams:
        return False
    if quote.max_weight_grams is not None and grams > quote.max_weight_grams:
        return False
    if quote.zone and quote.zone != destination_zone:
        return False
    return True


def choose_rate(
    quotes: Sequence[RateQuote],
    criteria: RateShopCriteria,
    serviceability: ServiceabilityResult,
    preferences: Optional[RateShopPreferences] = None,
) -> Optional[RateShopDecision]:
    """Score applicable quotes and return the lowest-scoring one, or None."""
    pref = preferences or RateShopPreferences()
    if not serviceability.serviceable:
        return None

    chargeable_kg = chargeable_weight_kg(criteria)
    is_oda = serviceability.is_oda_destination
    coverage = serviceability.warehouse_coverage
    oda_fee = coverage.oda_fee if coverage else None
    coverage_tat = coverage.tat_days if coverage else None
    destination_zone = serviceability.destination_zone.zone if serviceability.destination_zone else None

    best: Optional[RateShopDecision] = None
    for quote in quotes:
        if not quote_applies(quote, chargeable_kg, destination_zone):
            continue

        sla_days = coverage_tat if coverage_tat is not None else quote.estimated_days
        if pref.max_sla_days is not None and sla_days > pref.max_sla_days:
            continue

        price = quote_price(quote, chargeable_kg, is_oda, oda_fee)
        score = pref.weight_cost * price + pref.weight_sla * sla_days
        if quote.carrier_name in pref.preferred_carriers or quote.carrier_code in pref.preferred_carriers:
            score *= PREFERRED_CARRIER_DISCOUNT

        if best is None or score < best.score:
            best = RateShopDecision(
                carrier_id=quote.carrier_id,
                carrier_code=quote.carrier_code,
                carrier_name=quote.carrier_name,
                rate_id=quote.rate_id,
                service_name=quote.service_name,
                estimated_cost=round(price, 2),
                estimated_days=sla_days,
                score=score,
            )

    return best


# =============================================================================
# Engine
# =============================================================================

class RateShopEngine:
    """
    Loads rate data and runs choose_rate().

    Usage:
        engine = RateShopEngine(AsyncSessionLocal, RateShopPreferences.from_settings(settings))
        decision = await engine.shop(criteria)  # None = keep current carrier
    """

    def __init__(
        self,
        session_factory: Callable,
        preferences: Optional[RateShopPreferences] = None,
        enabled: bool = True,
    ):
        self.session_factory = session_factory
        self.preferences = preferences or RateShopPreferences()
        self.enabled = enabled

    async def load_quotes(self, db) -> List[RateQuote]:
        result = await db.execute(
            select(ShippingRate, Carrier)
            .join(Carrier, ShippingRate.carrier_id == Carrier.id)
            .where(and_(ShippingRate.is_active == True, Carrier.is_active == True))  # noqa: E712
        )
        rows = result.all()
        if not rows:
            return []

        carrier_ids = {carrier.id for _, carrier in rows}
        surcharge_result = await db.execute(
            select(RateSurcharge).where(
                and_(
                    RateSurcharge.carrier_id.in_(carrier_ids),
                    RateSurcharge.active == True,  # noqa: E712
                )
            ).order_by(RateSurcharge.id)
        )
        surcharges_by_carrier = {}
        for row in surcharge_result.scalars().all():
            surcharges_by_carrier.setdefault(row.carrier_id, []).append(
                Surcharge(name=row.name, percent=row.percent, flat=row.flat)
            )

        return [
            RateQuote(
                rate_id=rate.id,
                carrier_id=carrier.id,
                carrier_code=carrier.code,
                carrier_name=carrier.name,
                service_name=rate.service_name,
                per_kg_rate=rate.rate,
                estimated_days=rate.estimated_delivery_days,
                surcharges=surcharges_by_carrier.get(carrier.id, []),
                min_weight_grams=rate.min_weight_grams,
                max_weight_grams=rate.max_weight_grams,
                zone=rate.zone,
            )
            for rate, carrier in rows
        ]

    async def shop(self, criteria: RateShopCriteria) -> Optional[RateShopDecision]:
        """Best carrier for the criteria, or None to keep the caller's carrier."""
        if not self.enabled:
            return None

        try:
            async with self.session_factory() as db:
                serviceability = await ServiceabilityService(db).check(
                    criteria.origin_postal_code,
                    criteria.destination_postal_code,
                    criteria.warehouse_id,
                )
                if not serviceability.serviceable:
                    return None
                quotes = await self.load_quotes(db)
            if not quotes:
                return None
            decision = choose_rate(quotes, criteria, serviceability, self.preferences)
        except Exception as e:
            logger.error(f"Rate shop failed, keeping assigned carrier: {e}")
            return None

        if decision:
            logger.info(
                f"Rate shop {criteria.origin_postal_code}->{criteria.destination_postal_code}: "
                f"{decision.carrier_code} {decision.service_name} "
                f"cost={decision.estimated_cost} days={decision.estimated_days} score={decision.score:.2f}"
            )
        return decision
