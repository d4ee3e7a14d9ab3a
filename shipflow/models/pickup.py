"""
Pickup model

One scheduled carrier pickup per shipment.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, DateTime, ForeignKey

from shipflow.core.database import Base


class Pickup(Base):
    __tablename__ = "pickups"

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), unique=True, nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Pickup(id={self.id}, shipment={self.shipment_id}, at={self.scheduled_at})>"
