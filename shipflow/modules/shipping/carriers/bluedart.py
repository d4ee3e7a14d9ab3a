"""
BlueDart Carrier Implementation

API: https://www.bluedart.com
- Auth: login_id + api_key in every request body
"""
from typing import Dict, Optional

from shipflow.models.carrier import CarrierCode
from shipflow.models.shipment import TrackingStatus
from shipflow.modules.shipping.carriers.consignment import ConsignmentCarrier
from shipflow.modules.shipping.status import OUT_FOR_DELIVERY_RULE

BLUEDART_STATUS_RULES = (
    OUT_FOR_DELIVERY_RULE,
    (("delivered", "dl"), TrackingStatus.DELIVERED),
    (("transit", "it"), TrackingStatus.IN_TRANSIT),
    (("shipped", "pickup", "picked", "pu"), TrackingStatus.SHIPPED),
    (("pending", "created"), TrackingStatus.PENDING),
    (("cancel", "void"), TrackingStatus.CANCELLED),
)


class BlueDartCarrier(ConsignmentCarrier):
    """BlueDart shipping carrier."""

    code = CarrierCode.BLUEDART.value
    label_prefix = "BD"
    default_service_name = "BlueDart Express"
    status_rules = BLUEDART_STATUS_RULES

    def __init__(self, api_key: str, login_id: str, base_url: str = "https://www.bluedart.com", **kwargs):
        if not api_key or not login_id:
            raise ValueError("BlueDart API key and login ID are required")
        self._api_key = api_key
        self._login_id = login_id
        super().__init__(base_url, **kwargs)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> Optional["BlueDartCarrier"]:
        if not (settings.BLUEDART_API_KEY and settings.BLUEDART_LOGIN_ID):
            return None
        return cls(
            settings.BLUEDART_API_KEY,
            settings.BLUEDART_LOGIN_ID,
            base_url=settings.BLUEDART_BASE_URL,
            timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
            **kwargs,
        )

    def credentials(self) -> Dict[str, str]:
        return {"login_id": self._login_id, "api_key": self._api_key}

    def tracking_url(self, awb_number: str) -> Optional[str]:
        return f"https://www.bluedart.com/track/{awb_number}"
