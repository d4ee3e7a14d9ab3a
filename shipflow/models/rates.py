"""
Rate card and serviceability models

Read-only inputs to the rate-shop engine:
- ShippingRate: per-kg price and SLA for a carrier service
- RateSurcharge: percent/flat add-ons per carrier (ODA surcharges by name)
- PincodeZone: serviceable pincodes and their zone / ODA flag
- WarehouseCoverage: per-warehouse TAT and ODA fee for a destination pincode
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Float, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship

from shipflow.core.database import Base


class ShippingRate(Base):
    __tablename__ = "shipping_rates"

    id = Column(Integer, primary_key=True, index=True)
    carrier_id = Column(Integer, ForeignKey("carriers.id"), nullable=False, index=True)
    service_name = Column(String(100), nullable=False)

    rate = Column(Float, nullable=False)  # Price per chargeable kg
    estimated_delivery_days = Column(Integer, nullable=False)

    # Optional restrictions (None = any)
    min_weight_grams = Column(Integer, nullable=True)
    max_weight_grams = Column(Integer, nullable=True)
    zone = Column(String(20), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    carrier = relationship("Carrier", back_populates="rates")

    def __repr__(self):
        return f"<ShippingRate(id={self.id}, carrier={self.carrier_id}, rate={self.rate})>"


class RateSurcharge(Base):
    __tablename__ = "rate_surcharges"

    id = Column(Integer, primary_key=True, index=True)
    carrier_id = Column(Integer, ForeignKey("carriers.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)  # Names containing "oda" apply to ODA only
    percent = Column(Float, nullable=True)
    flat = Column(Float, nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    carrier = relationship("Carrier", back_populates="surcharges")

    @property
    def is_oda(self) -> bool:
        return "oda" in (self.name or "").lower()


class PincodeZone(Base):
    __tablename__ = "pincode_zones"

    id = Column(Integer, primary_key=True, index=True)
    pincode = Column(String(10), unique=True, nullable=False, index=True)
    zone = Column(String(20), nullable=True)
    oda = Column(Boolean, default=False, nullable=False)  # Out-of-delivery-area
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)


class WarehouseCoverage(Base):
    __tablename__ = "warehouse_coverage"
    __table_args__ = (
        UniqueConstraint("warehouse_id", "pincode", name="uq_warehouse_coverage_pincode"),
    )

    id = Column(Integer, primary_key=True, index=True)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=False)
    pincode = Column(String(10), nullable=False)
    tat_days = Column(Integer, nullable=True)
    is_oda = Column(Boolean, default=False, nullable=False)
    oda_fee = Column(Float, nullable=True)

    warehouse = relationship("Warehouse", back_populates="coverage")
