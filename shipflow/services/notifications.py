"""
Label notifications

Subscribed to "label.created" on the background dispatcher. Posts the
label summary to LABEL_WEBHOOK_URL; with no URL configured it only logs.
Errors propagate to the dispatcher's error channel.
"""
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class LabelWebhookNotifier:
    def __init__(
        self,
        url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or None
        self.timeout = timeout
        self.transport = transport
        self.sent = 0

    async def __call__(self, payload: Dict[str, Any]):
        if not self.url:
            logger.info(
                f"[LABEL] Shipment {payload.get('shipment_id')} label {payload.get('label_number')} "
                f"({payload.get('carrier_code')})"
            )
            return

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(self.url, json=payload)
            resp.raise_for_status()

        self.sent += 1
        logger.info(f"[LABEL] Webhook delivered for shipment {payload.get('shipment_id')}")
