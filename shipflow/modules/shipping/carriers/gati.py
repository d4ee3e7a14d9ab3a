"""
Gati Carrier Implementation

API: https://www.gati.com
- Auth: Bearer API key header, plus client_id + api_key in the request body
"""
from typing import Dict, Optional

from shipflow.models.carrier import CarrierCode
from shipflow.models.shipment import TrackingStatus
from shipflow.modules.shipping.carriers.consignment import ConsignmentCarrier
from shipflow.modules.shipping.status import OUT_FOR_DELIVERY_RULE

GATI_STATUS_RULES = (
    OUT_FOR_DELIVERY_RULE,
    (("delivered", "dl"), TrackingStatus.DELIVERED),
    (("transit", "it"), TrackingStatus.IN_TRANSIT),
    (("shipped", "pickup", "pu"), TrackingStatus.SHIPPED),
    (("pending", "created"), TrackingStatus.PENDING),
    (("cancel", "void"), TrackingStatus.CANCELLED),
)


class GatiCarrier(ConsignmentCarrier):
    """Gati shipping carrier."""

    code = CarrierCode.GATI.value
    label_prefix = "GATI"
    default_service_name = "Gati Express"
    status_rules = GATI_STATUS_RULES

    def __init__(self, client_id: str, api_key: str, base_url: str = "https://www.gati.com", **kwargs):
        if not client_id or not api_key:
            raise ValueError("Gati client ID and API key are required")
        self._client_id = client_id
        self._api_key = api_key
        super().__init__(base_url, **kwargs)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> Optional["GatiCarrier"]:
        if not (settings.GATI_CLIENT_ID and settings.GATI_API_KEY):
            return None
        return cls(
            settings.GATI_CLIENT_ID,
            settings.GATI_API_KEY,
            base_url=settings.GATI_BASE_URL,
            timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
            **kwargs,
        )

    async def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def credentials(self) -> Dict[str, str]:
        return {"client_id": self._client_id, "api_key": self._api_key}

    def tracking_url(self, awb_number: str) -> Optional[str]:
        return f"https://www.gati.com/track/{awb_number}"
