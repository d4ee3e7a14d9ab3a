"""
Order and Warehouse models

External collaborators: fulfillment only reads destination address,
package data and the assigned warehouse from an order, and the pickup
address from a warehouse.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Float, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from shipflow.core.database import Base


class Warehouse(Base):
    __tablename__ = "warehouses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    contact_name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)

    # Pickup address
    address_line1 = Column(String(255), nullable=True)
    address_line2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(50), default="India")

    is_active = Column(Boolean, default=True, nullable=False)

    coverage = relationship("WarehouseCoverage", back_populates="warehouse")

    def __repr__(self):
        return f"<Warehouse(id={self.id}, name={self.name}, postal_code={self.postal_code})>"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, index=True, nullable=False)

    # Customer / destination
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    shipping_address_line1 = Column(String(255), nullable=True)
    shipping_address_line2 = Column(String(255), nullable=True)
    shipping_city = Column(String(100), nullable=True)
    shipping_state = Column(String(100), nullable=True)
    shipping_postal_code = Column(String(20), nullable=True)
    shipping_country = Column(String(50), default="India")

    # Package
    weight_grams = Column(Integer, nullable=True)
    length_cm = Column(Float, nullable=True)
    width_cm = Column(Float, nullable=True)
    height_cm = Column(Float, nullable=True)

    # Value
    total_value = Column(Float, default=0.0)
    cod_amount = Column(Float, nullable=True)  # Set for cash-on-delivery orders

    warehouse_id = Column(Integer, ForeignKey("warehouses.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    warehouse = relationship("Warehouse")
    shipments = relationship("Shipment", back_populates="order")

    def __repr__(self):
        return f"<Order(id={self.id}, order_number={self.order_number})>"
