"""
Shipping Schemas

Pydantic models for fulfillment API requests and responses.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator

from shipflow.models.shipment import LabelFormat, LabelStatus, ShipmentStatus, TrackingStatus


# ==================== Label Schemas ====================


class LabelCreateRequest(BaseModel):
    """Create (or fetch the existing) label for a shipment."""
    format: LabelFormat = LabelFormat.PDF


class LabelResponse(BaseModel):
    id: int
    shipment_id: int
    label_number: str
    awb_number: Optional[str] = None
    carrier_code: str
    service_name: Optional[str] = None
    format: LabelFormat
    label_url: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    status: LabelStatus
    is_fallback: bool = False
    error_message: Optional[str] = None
    generated_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CancelShipmentRequest(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    reason: Optional[str] = Field(None, max_length=500)


class VoidLabelRequest(BaseModel):
    label_number: str = Field(..., min_length=1, max_length=100)


class OperationResponse(BaseModel):
    success: bool
    message: Optional[str] = None


# ==================== Tracking Schemas ====================


class TrackingEventCreate(BaseModel):
    """Inbound carrier tracking event (webhook push)."""
    tracking_number: str = Field(..., min_length=1, max_length=100)
    status: str = Field(..., min_length=1, max_length=100)
    occurred_at: datetime
    sub_status: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    event_code: Optional[str] = Field(None, max_length=50)
    location: Optional[str] = Field(None, max_length=255)
    raw_payload: Optional[Dict[str, Any]] = None


class TrackingEventResponse(BaseModel):
    id: int
    shipment_id: int
    tracking_number: str
    status: TrackingStatus
    raw_status: str
    sub_status: Optional[str] = None
    description: Optional[str] = None
    event_code: Optional[str] = None
    location: Optional[str] = None
    occurred_at: datetime
    received_at: datetime

    class Config:
        from_attributes = True


# ==================== Shipment Schemas ====================


class ShipmentUpdate(BaseModel):
    """Administrative shipment update. Only set fields are applied."""
    tracking_number: Optional[str] = Field(None, max_length=100)
    status: Optional[ShipmentStatus] = None
    carrier_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    weight_grams: Optional[int] = Field(None, gt=0)
    length_cm: Optional[float] = Field(None, gt=0)
    width_cm: Optional[float] = Field(None, gt=0)
    height_cm: Optional[float] = Field(None, gt=0)
    origin_postal_code: Optional[str] = Field(None, max_length=20)
    destination_postal_code: Optional[str] = Field(None, max_length=20)
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class ShipmentResponse(BaseModel):
    id: int
    order_id: int
    carrier_id: int
    warehouse_id: Optional[int] = None
    tracking_number: Optional[str] = None
    status: ShipmentStatus
    weight_grams: Optional[int] = None
    origin_postal_code: Optional[str] = None
    destination_postal_code: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ==================== Rate Shop Schemas ====================


class RateShopRequest(BaseModel):
    origin_postal_code: str = Field(..., min_length=3, max_length=20)
    destination_postal_code: str = Field(..., min_length=3, max_length=20)
    weight_grams: int = Field(..., gt=0)
    length_cm: Optional[float] = Field(None, gt=0)
    width_cm: Optional[float] = Field(None, gt=0)
    height_cm: Optional[float] = Field(None, gt=0)
    warehouse_id: Optional[int] = None


class RateShopResponse(BaseModel):
    carrier_id: int
    carrier_code: str
    carrier_name: str
    rate_id: int
    service_name: str
    estimated_cost: float
    estimated_days: int
    score: float


# ==================== Bulk Schemas ====================


class BulkLabelRequest(BaseModel):
    shipment_ids: List[int]
    format: LabelFormat = LabelFormat.PDF

    @field_validator("shipment_ids")
    @classmethod
    def dedupe_ids(cls, v):
        # Keep first occurrence order
        return list(dict.fromkeys(v))


class BulkPickupRequest(BaseModel):
    shipment_ids: List[int]
    scheduled_at: datetime

    @field_validator("shipment_ids")
    @classmethod
    def dedupe_ids(cls, v):
        return list(dict.fromkeys(v))


class BulkOperationResponse(BaseModel):
    total: int
    successful: int
    failed: int
    successful_ids: List[int] = []
    failed_ids: List[int] = []
    errors: List[str] = []
