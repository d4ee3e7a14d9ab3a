"""
Shadowfax Carrier Implementation

API: https://www.shadowfax.in
- Auth: Bearer API key header, plus api_key + secret_key in the request body
- Routes live under /api/v1
"""
from typing import Dict, Optional

from shipflow.models.carrier import CarrierCode
from shipflow.models.shipment import TrackingStatus
from shipflow.modules.shipping.carriers.consignment import ConsignmentCarrier
from shipflow.modules.shipping.status import OUT_FOR_DELIVERY_RULE

SHADOWFAX_STATUS_RULES = (
    OUT_FOR_DELIVERY_RULE,
    (("delivered", "dl"), TrackingStatus.DELIVERED),
    (("transit", "it"), TrackingStatus.IN_TRANSIT),
    (("shipped", "pickup", "pu"), TrackingStatus.SHIPPED),
    (("pending", "created"), TrackingStatus.PENDING),
    (("cancel", "void"), TrackingStatus.CANCELLED),
)


class ShadowfaxCarrier(ConsignmentCarrier):
    """Shadowfax shipping carrier."""

    code = CarrierCode.SHADOWFAX.value
    label_prefix = "SF"
    default_service_name = "Shadowfax Express"
    status_rules = SHADOWFAX_STATUS_RULES
    api_prefix = "/api/v1"

    def __init__(self, api_key: str, secret_key: str, base_url: str = "https://www.shadowfax.in", **kwargs):
        if not api_key or not secret_key:
            raise ValueError("Shadowfax API key and secret key are required")
        self._api_key = api_key
        self._secret_key = secret_key
        super().__init__(base_url, **kwargs)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> Optional["ShadowfaxCarrier"]:
        if not (settings.SHADOWFAX_API_KEY and settings.SHADOWFAX_SECRET_KEY):
            return None
        return cls(
            settings.SHADOWFAX_API_KEY,
            settings.SHADOWFAX_SECRET_KEY,
            base_url=settings.SHADOWFAX_BASE_URL,
            timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
            **kwargs,
        )

    async def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def credentials(self) -> Dict[str, str]:
        return {"api_key": self._api_key, "secret_key": self._secret_key}

    def tracking_url(self, awb_number: str) -> Optional[str]:
        return f"https://www.shadowfax.in/track/{awb_number}"
