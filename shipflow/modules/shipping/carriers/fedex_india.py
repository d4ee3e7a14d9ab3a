"""
FedEx India Carrier Implementation

API: https://apis.fedex.com
- Auth: OAuth2 client credentials (POST /oauth/token), bearer token cached
  until 60s before expiry
- Label: POST /ship/v1/shipments
- Tracking: POST /track/v1/trackingnumbers
- Cancel: POST /ship/v1/shipments/cancel
- Void: POST /ship/v1/shipments/<label>/void
"""
import asyncio
import logging
from datetime import date
from typing import Any, Dict, Optional
from urllib.parse import quote

from shipflow.core.exceptions import CarrierError
from shipflow.models.carrier import CarrierCode
from shipflow.models.shipment import LabelFormat, TrackingStatus
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

FEDEX_INDIA_STATUS_RULES = (
    OUT_FOR_DELIVERY_RULE,
    (("delivered", "dl"), TrackingStatus.DELIVERED),
    (("transit", "it", "on_vehicle"), TrackingStatus.IN_TRANSIT),
    (("picked_up", "picked up", "pu"), TrackingStatus.SHIPPED),
    (("pending", "created"), TrackingStatus.PENDING),
    (("cancel", "void"), TrackingStatus.CANCELLED),
)

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60
DEFAULT_TOKEN_TTL_SECONDS = 3600


class FedExIndiaCarrier(HTTPCarrier):
    """FedEx India shipping carrier."""

    code = CarrierCode.FEDEX_INDIA.value
    label_prefix = "FEDEX"
    default_service_name = "FedEx Standard Overnight"
    status_rules = FEDEX_INDIA_STATUS_RULES

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        account_number: str,
        base_url: str = "https://apis.fedex.com",
        **kwargs,
    ):
        if not client_id or not client_secret or not account_number:
            raise ValueError("FedEx India client ID, client secret and account number are required")
        self._client_id = client_id
        self._client_secret = client_secret
        self._account_number = account_number
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()
        super().__init__(base_url, **kwargs)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> Optional["FedExIndiaCarrier"]:
        if not (settings.FEDEX_CLIENT_ID and settings.FEDEX_CLIENT_SECRET and settings.FEDEX_ACCOUNT_NUMBER):
            return None
        return cls(
            settings.FEDEX_CLIENT_ID,
            settings.FEDEX_CLIENT_SECRET,
            settings.FEDEX_ACCOUNT_NUMBER,
            base_url=settings.FEDEX_BASE_URL,
            timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
            **kwargs,
        )

    def tracking_url(self, awb_number: str) -> Optional[str]:
        return f"https://www.fedex.com/apps/fedextrack/?tracknumbers={awb_number}"

    # ==================== OAuth ====================

    def _token_valid(self) -> bool:
        return self._access_token is not None and self._clock() < self._token_expires_at

    async def ensure_token(self) -> str:
        """Return a cached bearer token, fetching a new one if expired."""
        if self._token_valid():
            return self._access_token

        async with self._token_lock:
            # Another task may have refreshed while we waited
            if self._token_valid():
                return self._access_token

            logger.info(f"{self.tag} Requesting OAuth access token")
            data = await self.http.request(
                "POST",
                "/oauth/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
            )
            token = first_present(data, "access_token")
            if not token:
                raise CarrierError(
                    "FedEx OAuth response carried no access token",
                    carrier_code=self.code,
                    retryable=False,
                )
            expires_in = data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
            self._access_token = token
            self._token_expires_at = self._clock() + expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
            return token

    async def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self.ensure_token()}"}

    async def call(self, method: str, path: str, **kwargs) -> Any:
        try:
            return await super().call(method, path, **kwargs)
        except CarrierError as e:
            if e.status_code == 401:
                # Token revoked early; next call re-authenticates
                self._access_token = None
            raise

    # ==================== Label ====================

    @staticmethod
    def _party(address: Address) -> Dict[str, Any]:
        return {
            "contact": {
                "personName": address.name,
                "phoneNumber": address.phone,
            },
            "address": {
                "streetLines": [line for line in (address.address_line1, address.address_line2) if line],
                "city": address.city,
                "stateOrProvinceCode": address.state,
                "postalCode": address.pincode,
                "countryCode": "IN",
            },
        }

    def build_label_payload(self, request: LabelRequest) -> Dict[str, Any]:
        pkg = request.package
        line_item: Dict[str, Any] = {
            "weight": {"value": grams_to_kg(pkg.weight_grams), "units": "KG"},
        }
        if pkg.length_cm and pkg.width_cm and pkg.height_cm:
            line_item["dimensions"] = {
                "length": format_number(pkg.length_cm),
                "width": format_number(pkg.width_cm),
                "height": format_number(pkg.height_cm),
                "units": "CM",
            }
        if pkg.cod_amount:
            line_item["specialServicesRequested"] = {
                "specialServiceTypes": ["COD"],
                "codDetail": {
                    "codCollectionAmount": {
                        "amount": format_number(pkg.cod_amount),
                        "currency": "INR",
                    },
                },
            }

        shipment: Dict[str, Any] = {
            "recipients": [self._party(request.delivery_address)],
            "shipDatestamp": date.today().isoformat(),
            "serviceType": "STANDARD_OVERNIGHT",
            "packagingType": "YOUR_PACKAGING",
            "pickupType": "USE_SCHEDULED_PICKUP",
            "shippingChargesPayment": {"paymentType": "SENDER"},
            "labelSpecification": {
                "imageType": "ZPL" if request.format == LabelFormat.ZPL else "PDF",
                "labelStockType": "PAPER_4X6",
            },
            "requestedPackageLineItems": [line_item],
        }
        if request.pickup_address:
            shipment["shipper"] = self._party(request.pickup_address)
        if request.order_number:
            shipment["customerReferences"] = [{
                "customerReferenceType": "CUSTOMER_REFERENCE",
                "value": request.order_number,
            }]

        return {
            "labelResponseOptions": request.format.value,
            "requestedShipment": shipment,
            "accountNumber": {"value": self._account_number},
        }

    async def _create_label(self, request: LabelRequest) -> LabelResult:
        data = await self.call("POST", "/ship/v1/shipments", json=self.build_label_payload(request))

        output = data.get("output") or data
        shipments = output.get("transactionShipments") or []
        shipment = shipments[0] if shipments else {}
        tracking_number = first_present(shipment, "masterTrackingNumber", "trackingNumber")
        if not tracking_number:
            raise CarrierError(
                "FedEx label response carried no tracking number",
                carrier_code=self.code,
                retryable=False,
            )
        label = shipment.get("label") or {}

        return LabelResult(
            label_number=tracking_number,
            carrier_code=self.code,
            format=request.format,
            service_name=first_present(shipment, "serviceType") or self.default_service_name,
            awb_number=tracking_number,
            label_url=first_present(label, "url") or first_present(shipment, "labelUrl"),
            tracking_url=self.tracking_url(tracking_number),
            estimated_delivery=parse_datetime(first_present(shipment, "estimatedDeliveryDate")),
        )

    # ==================== Tracking ====================

    async def _track(self, tracking_number: str) -> TrackingResult:
        data = await self.call(
            "POST",
            "/track/v1/trackingnumbers",
            json={
                "includeDetailedScans": True,
                "trackingInfo": [{"trackingNumberInfo": {"trackingNumber": tracking_number}}],
            },
        )

        output = data.get("output") or data
        complete = output.get("completeTrackResults") or []
        track_results = (complete[0].get("trackResults") if complete else None) or []
        track_result = track_results[0] if track_results else {}
        latest_detail = track_result.get("latestStatusDetail") or {}

        events = []
        for scan in track_result.get("scanEvents") or []:
            location = scan.get("scanLocation") or {}
            events.append(self.build_update(
                raw_status=first_present(scan, "eventType", "status"),
                occurred_at=first_present(scan, "date", "timestamp"),
                sub_status=first_present(scan, "eventDescription"),
                description=first_present(scan, "eventDescription", "status"),
                location=first_present(location, "city", "stateOrProvinceCode"),
                event_code=first_present(scan, "eventType"),
                raw=scan,
            ))

        return self.build_tracking_result(
            tracking_number,
            events,
            fallback_raw_status=first_present(latest_detail, "code", "description"),
            fallback_location=first_present(latest_detail.get("scanLocation") or {}, "city"),
        )

    # ==================== Cancel / void ====================

    async def _cancel(self, tracking_number: str, reason: str) -> None:
        await self.call(
            "POST",
            "/ship/v1/shipments/cancel",
            json={
                "accountNumber": {"value": self._account_number},
                "trackingNumber": tracking_number,
                "cancellationReason": reason,
            },
        )

    async def _void(self, label_number: str) -> None:
        await self.call("POST", f"/ship/v1/shipments/{quote(label_number, safe='')}/void")
