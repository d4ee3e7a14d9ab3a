"""
Consignment-API carriers (BlueDart, Ecom Express, Gati, Shadowfax)

These carriers expose the same REST shape and put their credentials in the
request body rather than in headers:
- Label: POST /api/shipment/create
- Tracking: GET /api/tracking/<awb>
- Cancel: POST /api/shipment/cancel
- Void: POST /api/label/<label>/void

Shadowfax serves the same routes under /api/v1.
"""
import logging
from abc import abstractmethod
from typing import Any, Dict
from urllib.parse import quote

from shipflow.core.exceptions import CarrierError
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

logger = logging.getLogger(__name__)


class ConsignmentCarrier(HTTPCarrier):
    """Shared request/response translation for consignment-style APIs."""

    api_prefix = "/api"

    @abstractmethod
    def credentials(self) -> Dict[str, str]:
        """Credential fields merged into every request body."""
        pass

    @staticmethod
    def _address(address: Address) -> Dict[str, Any]:
        return {
            "name": address.name,
            "address": address.address_line1,
            "address2": address.address_line2 or "",
            "city": address.city,
            "state": address.state,
            "pincode": address.pincode,
            "phone": address.phone,
            "country": address.country or "India",
        }

    def build_label_payload(self, request: LabelRequest) -> Dict[str, Any]:
        pkg = request.package
        shipment: Dict[str, Any] = {"weight": grams_to_kg(pkg.weight_grams)}
        for key, value in (
            ("length", pkg.length_cm),
            ("width", pkg.width_cm),
            ("height", pkg.height_cm),
            ("cod_amount", pkg.cod_amount),
        ):
            formatted = format_number(value)
            if formatted:
                shipment[key] = formatted
        if request.order_number:
            shipment["reference_number"] = request.order_number

        payload = {
            **self.credentials(),
            "consignee": self._address(request.delivery_address),
            "shipment": shipment,
            "label_format": request.format.value,
        }
        if request.pickup_address:
            payload["shipper"] = self._address(request.pickup_address)
        return payload

    async def _create_label(self, request: LabelRequest) -> LabelResult:
        data = await self.call(
            "POST",
            f"{self.api_prefix}/shipment/create",
            json=self.build_label_payload(request),
        )

        awb = first_present(data, "awb", "waybill_number", "tracking_number")
        if not awb:
            raise CarrierError(
                f"{self.code} label response carried no AWB",
                carrier_code=self.code,
                retryable=False,
            )
        shipment = data.get("shipment") or data

        return LabelResult(
            label_number=awb,
            carrier_code=self.code,
            format=request.format,
            service_name=first_present(shipment, "service_type") or self.default_service_name,
            awb_number=awb,
            label_url=first_present(data, "label_url", "label_pdf"),
            tracking_url=self.tracking_url(awb),
            estimated_delivery=parse_datetime(first_present(shipment, "estimated_delivery_date")),
        )

    async def _track(self, tracking_number: str) -> TrackingResult:
        data = await self.call("GET", f"{self.api_prefix}/tracking/{quote(tracking_number, safe='')}")

        shipment = data.get("shipment") or data
        history = shipment.get("tracking_history") or shipment.get("scans") or []
        events = [
            self.build_update(
                raw_status=first_present(scan, "status", "scan_type"),
                occurred_at=first_present(scan, "timestamp", "time"),
                sub_status=first_present(scan, "sub_status", "scan_type"),
                description=first_present(scan, "remarks", "description", "status"),
                location=first_present(scan, "location", "city", "destination"),
                event_code=first_present(scan, "scan_code", "status_code"),
                raw=scan,
            )
            for scan in history
        ]
        return self.build_tracking_result(
            tracking_number,
            events,
            fallback_raw_status=shipment.get("status"),
            fallback_location=shipment.get("destination"),
        )

    async def _cancel(self, tracking_number: str, reason: str) -> None:
        await self.call(
            "POST",
            f"{self.api_prefix}/shipment/cancel",
            json={
                **self.credentials(),
                "waybill": tracking_number,
                "cancellation_reason": reason,
            },
        )

    async def _void(self, label_number: str) -> None:
        await self.call(
            "POST",
            f"{self.api_prefix}/label/{quote(label_number, safe='')}/void",
            json=self.credentials(),
        )
