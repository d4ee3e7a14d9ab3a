from shipflow.models.carrier import Carrier, CarrierCode
from shipflow.models.order import Order, Warehouse
from shipflow.models.shipment import (
    Shipment,
    ShipmentStatus,
    Label,
    LabelStatus,
    LabelFormat,
    TrackingEvent,
    TrackingStatus,
)
from shipflow.models.rates import (
    ShippingRate,
    RateSurcharge,
    PincodeZone,
    WarehouseCoverage,
)
from shipflow.models.pickup import Pickup

__all__ = [
    "Carrier",
    "CarrierCode",
    "Order",
    "Warehouse",
    "Shipment",
    "ShipmentStatus",
    "Label",
    "LabelStatus",
    "LabelFormat",
    "TrackingEvent",
    "TrackingStatus",
    "ShippingRate",
    "RateSurcharge",
    "PincodeZone",
    "WarehouseCoverage",
    "Pickup",
]
