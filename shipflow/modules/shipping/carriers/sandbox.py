"""
Sandbox Carrier

Deterministic local carrier with no network access. Used:
- when a shipment's carrier has no registered client
- when the carrier descriptor has use_sandbox set
- in tests

Labels are numbered SANDBOX-{shipment_id}-{epoch ms} and carry no label URL.
"""
import logging
from typing import Optional

from shipflow.models.carrier import CarrierCode
from shipflow.models.shipment import TrackingStatus
from shipflow.modules.shipping.carriers.base import (
    BaseCarrier,
    LabelRequest,
    LabelResult,
    TrackingResult,
)
from shipflow.modules.shipping.status import OUT_FOR_DELIVERY_RULE

logger = logging.getLogger(__name__)

# Accepts the canonical names themselves plus common wording
SANDBOX_STATUS_RULES = (
    OUT_FOR_DELIVERY_RULE,
    (("delivered",), TrackingStatus.DELIVERED),
    (("in_transit", "in transit", "transit"), TrackingStatus.IN_TRANSIT),
    (("shipped", "pickup", "picked"), TrackingStatus.SHIPPED),
    (("pending", "created"), TrackingStatus.PENDING),
    (("cancel", "void"), TrackingStatus.CANCELLED),
)


class SandboxCarrier(BaseCarrier):
    """Stub carrier: every operation succeeds locally."""

    code = CarrierCode.SANDBOX.value
    label_prefix = "SANDBOX"
    default_service_name = "Sandbox Ground"
    status_rules = SANDBOX_STATUS_RULES

    def tracking_url(self, awb_number: str) -> Optional[str]:
        return None

    async def _create_label(self, request: LabelRequest) -> LabelResult:
        label_number = f"{self.label_prefix}-{request.shipment_id}-{int(self._clock() * 1000)}"
        logger.debug(f"{self.tag} Issued sandbox label {label_number}")
        return LabelResult(
            label_number=label_number,
            carrier_code=self.code,
            format=request.format,
            service_name=self.default_service_name,
            awb_number=label_number,
            label_url=None,
            tracking_url=None,
        )

    async def _track(self, tracking_number: str) -> TrackingResult:
        # No scan history in the sandbox
        return self.build_tracking_result(tracking_number, [], fallback_raw_status="Created")

    async def _cancel(self, tracking_number: str, reason: str) -> None:
        logger.debug(f"{self.tag} Cancelled {tracking_number}: {reason}")

    async def _void(self, label_number: str) -> None:
        logger.debug(f"{self.tag} Voided {label_number}")
