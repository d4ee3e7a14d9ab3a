"""
Carrier descriptor model

Read-only to the fulfillment subsystem (owned by carrier administration).
`code` is the key the CarrierRegistry resolves a client by.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Index
from sqlalchemy.orm import relationship
import enum

from shipflow.core.database import Base


class CarrierCode(str, enum.Enum):
    """Carrier codes with a built-in client."""
    SANDBOX = "SANDBOX"
    DELHIVERY = "DELHIVERY"
    BLUEDART = "BLUEDART"
    FEDEX_INDIA = "FEDEX_INDIA"
    ECOM_EXPRESS = "ECOM_EXPRESS"
    GATI = "GATI"
    SHADOWFAX = "SHADOWFAX"


class Carrier(Base):
    """
    Carrier descriptor.

    Credentials live in settings, not in this table; a carrier without
    configured credentials resolves to the sandbox client.
    """
    __tablename__ = "carriers"
    __table_args__ = (
        Index("ix_carriers_active", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Identification (free-form so new carriers don't need a code release)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    display_name = Column(String(100), nullable=True)  # User-facing name

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    use_sandbox = Column(Boolean, default=False, nullable=False)

    api_base_url = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    shipments = relationship("Shipment", back_populates="carrier")
    rates = relationship("ShippingRate", back_populates="carrier")
    surcharges = relationship("RateSurcharge", back_populates="carrier")

    def __repr__(self):
        return f"<Carrier(id={self.id}, code={self.code})>"
