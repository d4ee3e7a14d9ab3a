"""
HTTP client for carrier API calls.

Thin wrapper over httpx.AsyncClient shared by every carrier adapter:
- Base URL and default headers per carrier
- Per-call timeout (10s by default)
- JSON decoding with malformed-body detection
- Translation of transport/status failures into CarrierError so that
  RetryExecutor can classify them (4xx terminal, everything else retryable)

Retries are NOT done here; carriers wrap calls in RetryExecutor.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from shipflow.core.exceptions import CarrierError

logger = logging.getLogger(__name__)


class CarrierHTTPClient:
    """
    Async HTTP client bound to one carrier's base URL.

    Usage:
        async with CarrierHTTPClient("https://track.delhivery.com", carrier_code="DELHIVERY") as http:
            data = await http.request("GET", "/api/p/packages/json/", params={"waybill": awb})
    """

    def __init__(
        self,
        base_url: str,
        carrier_code: str,
        timeout: float = 10.0,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.carrier_code = carrier_code
        self.timeout = timeout
        self.default_headers = {
            "Accept": "application/json",
            **(default_headers or {}),
        }
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def init(self):
        """Initialize client without context manager. Must call close() when done."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.default_headers,
                transport=self._transport,
            )
        return self

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Perform one HTTP call and return the decoded JSON body.

        Raises:
            CarrierError: status_code set for HTTP errors (4xx => retryable=False),
                          unset for timeouts, network errors and malformed bodies
        """
        if not self._client:
            await self.init()

        tag = f"[{self.carrier_code}]"
        logger.debug(f"{tag} {method} {path}")

        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                data=data,
                params=params,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise CarrierError(
                f"Timeout calling {method} {path}",
                carrier_code=self.carrier_code,
            ) from e
        except httpx.HTTPError as e:
            raise CarrierError(
                f"Network error calling {method} {path}: {e}",
                carrier_code=self.carrier_code,
            ) from e

        if response.status_code >= 400:
            retryable = not (400 <= response.status_code < 500)
            if retryable:
                logger.warning(f"{tag} {method} {path} -> {response.status_code}")
            else:
                logger.error(f"{tag} Client error {response.status_code} on {method} {path}, not retryable")
            raise CarrierError(
                f"HTTP {response.status_code} from {self.carrier_code}",
                carrier_code=self.carrier_code,
                status_code=response.status_code,
                retryable=retryable,
                details={"body": response.text[:500]},
            )

        if not response.content:
            return {}

        try:
            body = response.json()
        except ValueError as e:
            raise CarrierError(
                f"Malformed JSON from {self.carrier_code}",
                carrier_code=self.carrier_code,
            ) from e

        # API-level failure under HTTP 200
        if isinstance(body, dict) and (body.get("error") or body.get("errors")):
            raise CarrierError(
                f"API error: {body.get('error') or body.get('errors')}",
                carrier_code=self.carrier_code,
            )

        return body

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)
