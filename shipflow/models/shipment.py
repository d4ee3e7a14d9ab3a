"""
Shipment, Label and TrackingEvent models

Tracks a shipment from creation through delivery:
- Shipment carries the canonical lifecycle status
- Label is the idempotency key for label generation (one non-voided per shipment)
- TrackingEvent is an append-only audit log of carrier scans
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime,
    Float, Text, JSON, ForeignKey, Index, Enum as SQLEnum, text
)
from sqlalchemy.orm import relationship
import enum

from shipflow.core.database import Base


class ShipmentStatus(str, enum.Enum):
    """Shipment lifecycle status"""
    PENDING = "PENDING"
    SHIPPED = "SHIPPED"  # Label generated, handed to carrier
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"  # Terminal
    CANCELLED = "CANCELLED"  # Terminal


class TrackingStatus(str, enum.Enum):
    """Canonical status every carrier vocabulary is normalized into."""
    PENDING = "PENDING"
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"  # Never mutates shipment status


class LabelStatus(str, enum.Enum):
    PENDING = "PENDING"
    GENERATED = "GENERATED"
    FAILED = "FAILED"
    VOIDED = "VOIDED"


class LabelFormat(str, enum.Enum):
    PDF = "PDF"
    ZPL = "ZPL"


class Shipment(Base):
    """
    A parcel moving from a warehouse to an order's destination.

    Invariants:
    - shipped_at set => status in (SHIPPED, IN_TRANSIT, DELIVERED), or CANCELLED after shipping
    - delivered_at set => status == DELIVERED
    - DELIVERED and CANCELLED are terminal
    """
    __tablename__ = "shipments"
    __table_args__ = (
        Index("ix_shipments_order_id", "order_id"),
        Index("ix_shipments_status", "status"),
        Index("ix_shipments_carrier_id", "carrier_id"),
    )

    id = Column(Integer, primary_key=True, index=True)

    tracking_number = Column(String(100), unique=True, nullable=True)
    status = Column(SQLEnum(ShipmentStatus), default=ShipmentStatus.PENDING, nullable=False)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("carriers.id"), nullable=False)
    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=True)

    # Package (falls back to the order's values when unset)
    weight_grams = Column(Integer, nullable=True)
    length_cm = Column(Float, nullable=True)
    width_cm = Column(Float, nullable=True)
    height_cm = Column(Float, nullable=True)

    origin_postal_code = Column(String(20), nullable=True)
    destination_postal_code = Column(String(20), nullable=True)

    # Lifecycle timestamps
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    carrier = relationship("Carrier", back_populates="shipments")
    order = relationship("Order", back_populates="shipments")
    warehouse = relationship("Warehouse")
    labels = relationship("Label", back_populates="shipment", cascade="all, delete-orphan")
    tracking_events = relationship(
        "TrackingEvent",
        back_populates="shipment",
        order_by="TrackingEvent.occurred_at",
        cascade="all, delete-orphan",
    )
    pickup = relationship("Pickup", uselist=False, cascade="all, delete-orphan")

    @property
    def is_terminal(self) -> bool:
        return self.status in (ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED)

    def __repr__(self):
        return f"<Shipment(id={self.id}, tracking={self.tracking_number}, status={self.status})>"


class Label(Base):
    """
    Shipping label issued for a shipment.

    The partial unique index allows any number of VOIDED labels but at most
    one live label per shipment; the loser of a concurrent insert gets an
    IntegrityError and returns the winner's row.
    """
    __tablename__ = "labels"
    __table_args__ = (
        Index(
            "uq_labels_shipment_active",
            "shipment_id",
            unique=True,
            postgresql_where=text("status != 'VOIDED'"),
            sqlite_where=text("status != 'VOIDED'"),
        ),
        Index("ix_labels_label_number", "label_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False)

    label_number = Column(String(100), nullable=False)
    awb_number = Column(String(100), nullable=True)
    carrier_code = Column(String(50), nullable=False)
    service_name = Column(String(100), nullable=True)
    format = Column(SQLEnum(LabelFormat), default=LabelFormat.PDF, nullable=False)

    label_url = Column(String(500), nullable=True)  # None under fallback
    tracking_url = Column(String(500), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)

    status = Column(SQLEnum(LabelStatus), default=LabelStatus.PENDING, nullable=False)
    is_fallback = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)  # Carrier error behind a fallback

    requested_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    generated_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)

    shipment = relationship("Shipment", back_populates="labels")

    def __repr__(self):
        return f"<Label(id={self.id}, number={self.label_number}, status={self.status})>"


class TrackingEvent(Base):
    """
    One carrier scan. Append-only: never updated or deleted.

    Ordered by occurred_at (carrier time) for display; status monotonicity
    is enforced on the shipment, not by event order.
    """
    __tablename__ = "tracking_events"
    __table_args__ = (
        Index("ix_tracking_events_shipment_id", "shipment_id"),
        Index("ix_tracking_events_occurred_at", "occurred_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False)
    tracking_number = Column(String(100), nullable=False)

    status = Column(SQLEnum(TrackingStatus), nullable=False)
    raw_status = Column(String(255), nullable=False)  # Carrier's own wording
    sub_status = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    event_code = Column(String(50), nullable=True)
    location = Column(String(255), nullable=True)

    occurred_at = Column(DateTime(timezone=True), nullable=False)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    raw_payload = Column(JSON, nullable=True)  # Verbatim, for audit

    shipment = relationship("Shipment", back_populates="tracking_events")

    def __repr__(self):
        return f"<TrackingEvent(id={self.id}, shipment={self.shipment_id}, status={self.status})>"
