"""
Base Carrier Interface

- All carriers implement this interface
- Each carrier provides its own:
  - Request payload translation
  - Authentication
  - Response parsing
  - Status vocabulary (StatusNormalizer table)
- Every network call runs under RetryExecutor
- generate_label never fails the caller for carrier trouble: it returns a
  LabelOutcome whose label is synthetic (is_fallback=True) when the carrier
  could not be reached or rejected the request
- track_shipment / cancel_shipment / void_label return safe defaults
  (UNKNOWN / False) instead of raising
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from shipflow.core.exceptions import CarrierError, ShipflowError, ValidationError
from shipflow.core.http_client import CarrierHTTPClient
from shipflow.core.retry import RetryExecutor
from shipflow.models.shipment import LabelFormat, TrackingStatus
from shipflow.modules.shipping.status import StatusNormalizer

logger = logging.getLogger(__name__)


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass
class Address:
    """Pickup or delivery address."""
    name: Optional[str]
    address_line1: Optional[str]
    city: Optional[str]
    state: Optional[str]
    pincode: str
    phone: Optional[str] = None
    address_line2: Optional[str] = None
    country: str = "India"


@dataclass
class PackageDetails:
    """Package weight (grams) and dimensions (cm)."""
    weight_grams: Optional[int]
    length_cm: Optional[float] = None
    width_cm: Optional[float] = None
    height_cm: Optional[float] = None
    cod_amount: Optional[float] = None
    declared_value: Optional[float] = None


@dataclass
class LabelRequest:
    """Everything a carrier needs to issue a label."""
    shipment_id: int
    tracking_number: Optional[str]
    delivery_address: Optional[Address]
    package: Optional[PackageDetails]
    pickup_address: Optional[Address] = None
    order_number: Optional[str] = None
    format: LabelFormat = LabelFormat.PDF


@dataclass
class LabelResult:
    """Label issued by a carrier (or synthesized locally)."""
    label_number: str
    carrier_code: str
    format: LabelFormat = LabelFormat.PDF
    service_name: Optional[str] = None
    awb_number: Optional[str] = None
    label_url: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    is_fallback: bool = False


@dataclass
class LabelOutcome:
    """
    Result of generate_label.

    `label` is always present. `error` is set when the carrier call failed
    and `label` is the synthetic fallback.
    """
    label: LabelResult
    error: Optional[CarrierError] = None

    @property
    def fell_back(self) -> bool:
        return self.error is not None


@dataclass
class TrackingUpdate:
    """A single carrier scan, already normalized."""
    status: TrackingStatus
    raw_status: str
    occurred_at: datetime
    sub_status: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    event_code: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


@dataclass
class TrackingResult:
    """Current tracking state plus scan history."""
    tracking_number: str
    status: TrackingStatus
    raw_status: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    occurred_at: Optional[datetime] = None
    events: List[TrackingUpdate] = field(default_factory=list)


# =============================================================================
# Helpers
# =============================================================================

def grams_to_kg(grams: float) -> str:
    """Carrier APIs take kilograms with two decimals."""
    return f"{grams / 1000:.2f}"


def format_number(value: Optional[float]) -> Optional[str]:
    """30.0 -> "30", 12.5 -> "12.5", None/0 -> None."""
    if not value:
        return None
    return f"{value:g}"


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a carrier payload; None if unusable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def first_present(data: Optional[Dict[str, Any]], *keys: str) -> Any:
    """First truthy value among keys, else None."""
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """
    Abstract base class for all shipping carriers.

    Subclasses set `code`, `label_prefix`, `default_service_name` and
    `status_rules`, and implement the underscore methods. Each underscore
    method performs exactly one network operation; retry, fallback and safe
    defaults are handled here.
    """

    code: str = ""
    label_prefix: str = ""
    default_service_name: str = ""
    status_rules: tuple = ()

    def __init__(
        self,
        retry: Optional[RetryExecutor] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.retry = retry or RetryExecutor(carrier_code=self.code)
        if self.retry.carrier_code is None:
            self.retry.carrier_code = self.code
        self._clock = clock or time.time
        self.normalizer = StatusNormalizer(self.code, self.status_rules)

    @property
    def tag(self) -> str:
        return f"[{self.code}]"

    # ==================== Contract ====================

    async def generate_label(
        self,
        request: LabelRequest,
        timeout: Optional[float] = None,
    ) -> LabelOutcome:
        """
        Issue a label for a shipment.

        Raises:
            ValidationError: Weight or delivery address missing

        Returns:
            LabelOutcome; on carrier failure the label is a fallback and
            outcome.error holds the carrier error
        """
        self.validate_request(request)

        logger.info(
            f"{self.tag} generate_label shipment={request.shipment_id} "
            f"weight={request.package.weight_grams}g format={request.format.value}"
        )

        attempt = await self.retry.attempt(self._create_label, request, timeout=timeout)
        if attempt.ok:
            label = attempt.value
            logger.info(f"{self.tag} Label {label.label_number} issued for shipment {request.shipment_id}")
            return LabelOutcome(label=label)

        fallback = self.fallback_label(request)
        logger.warning(
            f"{self.tag} Label generation failed for shipment {request.shipment_id} "
            f"({attempt.error.message}); using fallback label {fallback.label_number}"
        )
        return LabelOutcome(label=fallback, error=attempt.error)

    async def track_shipment(
        self,
        tracking_number: str,
        timeout: Optional[float] = None,
    ) -> TrackingResult:
        """Current tracking state. UNKNOWN on any failure."""
        if not tracking_number:
            return self.unknown_tracking(tracking_number or "", "Tracking number is required")

        try:
            result = await self.retry.run(self._track, tracking_number, timeout=timeout)
        except ShipflowError as e:
            logger.error(f"{self.tag} track_shipment {tracking_number} failed: {e.message}")
            return self.unknown_tracking(tracking_number, "Unable to fetch tracking information")

        logger.info(
            f"{self.tag} track_shipment {tracking_number}: {result.status.value} "
            f"({len(result.events)} events)"
        )
        return result

    async def cancel_shipment(
        self,
        tracking_number: str,
        reason: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Best-effort cancellation. False on failure."""
        try:
            await self.retry.run(
                self._cancel,
                tracking_number,
                reason or "Cancelled by customer",
                timeout=timeout,
            )
        except ShipflowError as e:
            logger.error(f"{self.tag} cancel_shipment {tracking_number} failed: {e.message}")
            return False
        logger.info(f"{self.tag} Cancelled shipment {tracking_number}")
        return True

    async def void_label(
        self,
        label_number: str,
        timeout: Optional[float] = None,
    ) -> bool:
        """Best-effort label void. False on failure."""
        try:
            await self.retry.run(self._void, label_number, timeout=timeout)
        except ShipflowError as e:
            logger.error(f"{self.tag} void_label {label_number} failed: {e.message}")
            return False
        logger.info(f"{self.tag} Voided label {label_number}")
        return True

    async def close(self):
        """Release network resources. No-op for carriers without any."""
        return None

    # ==================== Shared behaviour ====================

    def validate_request(self, request: LabelRequest) -> None:
        if request.package is None or not request.package.weight_grams:
            raise ValidationError(
                f"Package weight is required for {self.code} label generation",
                field="weight_grams",
                details={"shipment_id": request.shipment_id},
            )
        if request.package.weight_grams < 0:
            raise ValidationError(
                "Package weight must be positive",
                field="weight_grams",
                details={"shipment_id": request.shipment_id},
            )
        if request.delivery_address is None or not request.delivery_address.pincode:
            raise ValidationError(
                f"Delivery address is required for {self.code} label generation",
                field="delivery_address",
                details={"shipment_id": request.shipment_id},
            )

    def fallback_label(self, request: LabelRequest) -> LabelResult:
        """Synthetic label: {prefix}-{shipment_id}-{epoch ms}, no label URL."""
        label_number = f"{self.label_prefix}-{request.shipment_id}-{int(self._clock() * 1000)}"
        return LabelResult(
            label_number=label_number,
            carrier_code=self.code,
            format=request.format,
            service_name=self.default_service_name,
            awb_number=label_number,
            label_url=None,
            tracking_url=self.tracking_url(label_number),
            is_fallback=True,
        )

    def unknown_tracking(self, tracking_number: str, description: str) -> TrackingResult:
        return TrackingResult(
            tracking_number=tracking_number,
            status=TrackingStatus.UNKNOWN,
            description=description,
            occurred_at=datetime.now(timezone.utc),
            events=[],
        )

    def build_update(
        self,
        raw_status: Any,
        occurred_at: Any,
        sub_status: Any = None,
        description: Any = None,
        location: Any = None,
        event_code: Any = None,
        raw: Optional[Dict[str, Any]] = None,
    ) -> TrackingUpdate:
        """Normalize one scan from a carrier payload."""
        raw_text = str(raw_status or "Unknown")
        return TrackingUpdate(
            status=self.normalizer.normalize(raw_text),
            raw_status=raw_text,
            occurred_at=parse_datetime(occurred_at) or datetime.now(timezone.utc),
            sub_status=str(sub_status) if sub_status else None,
            description=str(description) if description else None,
            location=str(location) if location else None,
            event_code=str(event_code) if event_code else None,
            raw=raw,
        )

    def build_tracking_result(
        self,
        tracking_number: str,
        events: List[TrackingUpdate],
        fallback_raw_status: Any = None,
        fallback_location: Any = None,
    ) -> TrackingResult:
        """Tracking result whose headline is the most recent scan."""
        if events:
            latest = max(events, key=lambda e: e.occurred_at)
            return TrackingResult(
                tracking_number=tracking_number,
                status=latest.status,
                raw_status=latest.raw_status,
                description=latest.description or latest.raw_status,
                location=latest.location or (str(fallback_location) if fallback_location else None),
                occurred_at=latest.occurred_at,
                events=events,
            )

        raw_text = str(fallback_raw_status or "Unknown")
        return TrackingResult(
            tracking_number=tracking_number,
            status=self.normalizer.normalize(raw_text),
            raw_status=raw_text,
            description=raw_text,
            location=str(fallback_location) if fallback_location else None,
            occurred_at=datetime.now(timezone.utc),
            events=[],
        )

    # ==================== Carrier-specific ====================

    @abstractmethod
    def tracking_url(self, awb_number: str) -> Optional[str]:
        """Public tracking page for an AWB."""
        pass

    @abstractmethod
    async def _create_label(self, request: LabelRequest) -> LabelResult:
        """One label-creation call. Raise on failure."""
        pass

    @abstractmethod
    async def _track(self, tracking_number: str) -> TrackingResult:
        """One tracking lookup. Raise on failure."""
        pass

    @abstractmethod
    async def _cancel(self, tracking_number: str, reason: str) -> None:
        """One cancellation call. Raise on failure."""
        pass

    @abstractmethod
    async def _void(self, label_number: str) -> None:
        """One void call. Raise on failure."""
        pass


class HTTPCarrier(BaseCarrier):
    """
    Carrier reached over HTTP through a CarrierHTTPClient.

    Subclasses add credentials via auth_headers() and/or the payload.
    """

    def __init__(
        self,
        base_url: str,
        retry: Optional[RetryExecutor] = None,
        timeout: float = 10.0,
        transport=None,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(retry=retry, clock=clock)
        self.http = CarrierHTTPClient(
            base_url,
            carrier_code=self.code,
            timeout=timeout,
            transport=transport,
        )

    async def auth_headers(self) -> Dict[str, str]:
        return {}

    async def call(self, method: str, path: str, **kwargs) -> Any:
        headers = {**(await self.auth_headers()), **kwargs.pop("headers", {})}
        return await self.http.request(method, path, headers=headers or None, **kwargs)

    async def close(self):
        await self.http.close()
