"""
Ecom Express Carrier Implementation

API: https://www.ecomexpress.in
- Auth: username + password in every request body
"""
from typing import Dict, Optional

from shipflow.models.carrier import CarrierCode
from shipflow.models.shipment import TrackingStatus
from shipflow.modules.shipping.carriers.consignment import ConsignmentCarrier
from shipflow.modules.shipping.status import OUT_FOR_DELIVERY_RULE

ECOM_EXPRESS_STATUS_RULES = (
    OUT_FOR_DELIVERY_RULE,
    (("delivered", "dl"), TrackingStatus.DELIVERED),
    (("transit", "it"), TrackingStatus.IN_TRANSIT),
    (("shipped", "pickup", "picked", "pu"), TrackingStatus.SHIPPED),
    (("pending", "created"), TrackingStatus.PENDING),
    (("cancel", "void"), TrackingStatus.CANCELLED),
)


class EcomExpressCarrier(ConsignmentCarrier):
    """Ecom Express shipping carrier."""

    code = CarrierCode.ECOM_EXPRESS.value
    label_prefix = "ECOM"
    default_service_name = "Ecom Express"
    status_rules = ECOM_EXPRESS_STATUS_RULES

    def __init__(self, username: str, password: str, base_url: str = "https://www.ecomexpress.in", **kwargs):
        if not username or not password:
            raise ValueError("Ecom Express username and password are required")
        self._username = username
        self._password = password
        super().__init__(base_url, **kwargs)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> Optional["EcomExpressCarrier"]:
        if not (settings.ECOM_EXPRESS_USERNAME and settings.ECOM_EXPRESS_PASSWORD):
            return None
        return cls(
            settings.ECOM_EXPRESS_USERNAME,
            settings.ECOM_EXPRESS_PASSWORD,
            base_url=settings.ECOM_EXPRESS_BASE_URL,
            timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
            **kwargs,
        )

    def credentials(self) -> Dict[str, str]:
        return {"username": self._username, "password": self._password}

    def tracking_url(self, awb_number: str) -> Optional[str]:
        return f"https://www.ecomexpress.in/track/{awb_number}"
