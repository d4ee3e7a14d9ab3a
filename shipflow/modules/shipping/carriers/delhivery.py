"""
Delhivery Carrier Implementation

API: https://track.delhivery.com
- Auth: static API token in `Authorization: Token <token>`
- Label: POST /api/p/label
- Tracking: GET /api/p/packages/json/?waybill=<awb>
- Cancel / void: POST /api/p/edit
"""
import logging
from typing import Any, Dict, Optional

from shipflow.core.exceptions import CarrierError
from shipflow.models.carrier import CarrierCode
from shipflow.models.shipment import TrackingStatus
from shipflow.modules.shipping.carriers.base import (
    Address,
    HTTPCarrier,
    LabelRequest,
    LabelResult,
    TrackingResult,
    first_present,
    format_number,
    grams_to_kg,
    parse_datetime,
)
from shipflow.modules.shipping.status import OUT_FOR_DELIVERY_RULE

logger = logging.getLogger(__name__)

DELHIVERY_STATUS_RULES = (
    OUT_FOR_DELIVERY_RULE,
    (("delivered", "dl"), TrackingStatus.DELIVERED),
    (("transit", "it"), TrackingStatus.IN_TRANSIT),
    (("shipped", "pickup", "picked", "pu"), TrackingStatus.SHIPPED),
    (("pending", "created", "cr"), TrackingStatus.PENDING),
    (("cancel", "void"), TrackingStatus.CANCELLED),
)


class DelhiveryCarrier(HTTPCarrier):
    """Delhivery shipping carrier."""

    code = CarrierCode.DELHIVERY.value
    label_prefix = "DLV"
    default_service_name = "Delhivery Surface"
    status_rules = DELHIVERY_STATUS_RULES

    def __init__(self, token: str, base_url: str = "https://track.delhivery.com", **kwargs):
        if not token:
            raise ValueError("Delhivery token is required")
        self._token = token
        super().__init__(base_url, **kwargs)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> Optional["DelhiveryCarrier"]:
        if not settings.DELHIVERY_TOKEN:
            return None
        return cls(
            settings.DELHIVERY_TOKEN,
            base_url=settings.DELHIVERY_BASE_URL,
            timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
            **kwargs,
        )

    async def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self._token}"}

    def tracking_url(self, awb_number: str) -> Optional[str]:
        return f"https://www.delhivery.com/track/{awb_number}"

    # ==================== Label ====================

    @staticmethod
    def _address(address: Address) -> Dict[str, Any]:
        data = {
            "name": address.name,
            "phone": address.phone,
            "add": address.address_line1,
            "pin": address.pincode,
            "city": address.city,
            "state": address.state,
            "country": address.country or "India",
        }
        if address.address_line2:
            data["address2"] = address.address_line2
        return data

    def build_label_payload(self, request: LabelRequest) -> Dict[str, Any]:
        pkg = request.package
        payload: Dict[str, Any] = {
            "shipment": self._address(request.delivery_address),
            "weight": grams_to_kg(pkg.weight_grams),
            "format": request.format.value,
        }
        for key, value in (
            ("length", pkg.length_cm),
            ("width", pkg.width_cm),
            ("height", pkg.height_cm),
            ("cod_amount", pkg.cod_amount),
        ):
            formatted = format_number(value)
            if formatted:
                payload[key] = formatted
        if request.order_number:
            payload["order"] = request.order_number
        if request.pickup_address:
            payload["pickup"] = self._address(request.pickup_address)
        return payload

    async def _create_label(self, request: LabelRequest) -> LabelResult:
        data = await self.call("POST", "/api/p/label", json=self.build_label_payload(request))

        waybill = first_present(data, "waybill", "AWB", "awb")
        if not waybill:
            raise CarrierError(
                "Delhivery label response carried no waybill",
                carrier_code=self.code,
                retryable=False,
            )
        packages = data.get("packages") or []
        package_status = packages[0] if packages else data

        return LabelResult(
            label_number=waybill,
            carrier_code=self.code,
            format=request.format,
            service_name=first_present(package_status, "service_type") or self.default_service_name,
            awb_number=waybill,
            label_url=first_present(data, "label_url", "labelUrl", "label"),
            tracking_url=self.tracking_url(waybill),
            estimated_delivery=parse_datetime(first_present(package_status, "estimated_delivery_date")),
        )

    # ==================== Tracking ====================

    async def _track(self, tracking_number: str) -> TrackingResult:
        data = await self.call("GET", "/api/p/packages/json/", params={"waybill": tracking_number})

        if isinstance(data, list):
            packages = data
        else:
            packages = data.get("packages") or [data]
        pkg = packages[0] if packages else {}

        scans = pkg.get("Scan") or pkg.get("scan_history") or []
        events = [
            self.build_update(
                raw_status=first_present(scan, "status", "scan_type"),
                occurred_at=first_present(scan, "scan_datetime", "time"),
                sub_status=first_present(scan, "sub_status", "scan_type"),
                description=first_present(scan, "remarks", "scan_detail", "status"),
                location=first_present(scan, "location", "city", "destination"),
                event_code=first_present(scan, "scan_type", "status_code"),
                raw=scan,
            )
            for scan in scans
        ]
        return self.build_tracking_result(
            tracking_number,
            events,
            fallback_raw_status=pkg.get("status"),
            fallback_location=pkg.get("destination"),
        )

    # ==================== Cancel / void ====================

    async def _cancel(self, tracking_number: str, reason: str) -> None:
        await self.call(
            "POST",
            "/api/p/edit",
            json={"waybill": tracking_number, "cancellation": True, "remarks": reason},
        )

    async def _void(self, label_number: str) -> None:
        await self.call("POST", "/api/p/edit", json={"waybill": label_number, "void": True})
