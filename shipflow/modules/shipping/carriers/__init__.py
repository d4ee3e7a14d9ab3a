"""
Carrier Registry

- CarrierRegistry maps a carrier code to its client instance
- Unknown / unconfigured codes resolve to the sandbox client, so label
  generation never fails because a carrier isn't wired up
- build_registry() constructs the registry once at process start from
  settings; there is no module-level mutable registry
"""
from typing import Callable, Dict, List, Optional
import logging

from shipflow.core.retry import RetryConfig, RetryExecutor
from shipflow.modules.shipping.carriers.base import BaseCarrier
from shipflow.modules.shipping.carriers.bluedart import BlueDartCarrier
from shipflow.modules.shipping.carriers.delhivery import DelhiveryCarrier
from shipflow.modules.shipping.carriers.ecom_express import EcomExpressCarrier
from shipflow.modules.shipping.carriers.fedex_india import FedExIndiaCarrier
from shipflow.modules.shipping.carriers.gati import GatiCarrier
from shipflow.modules.shipping.carriers.sandbox import SandboxCarrier
from shipflow.modules.shipping.carriers.shadowfax import ShadowfaxCarrier
from shipflow.modules.shipping.status import StatusNormalizer

logger = logging.getLogger(__name__)

# Network carriers built from settings, in registration order
NETWORK_CARRIERS = (
    DelhiveryCarrier,
    BlueDartCarrier,
    FedExIndiaCarrier,
    EcomExpressCarrier,
    GatiCarrier,
    ShadowfaxCarrier,
)


class CarrierRegistry:
    """
    Resolves carrier codes to client instances.

    Usage:
        registry = CarrierRegistry()
        registry.register(DelhiveryCarrier(token))
        client = registry.resolve("DELHIVERY")  # SandboxCarrier if not registered
    """

    def __init__(self, sandbox: Optional[BaseCarrier] = None):
        self.sandbox = sandbox or SandboxCarrier()
        self._clients: Dict[str, BaseCarrier] = {}

    @staticmethod
    def _key(code: str) -> str:
        return (code or "").strip().upper()

    def register(self, client: BaseCarrier, code: Optional[str] = None) -> BaseCarrier:
        key = self._key(code or client.code)
        if key in self._clients:
            logger.warning(f"Replacing registered carrier client for {key}")
        self._clients[key] = client
        logger.info(f"Registered carrier: {key} -> {client.__class__.__name__}")
        return client

    def get(self, code: str) -> Optional[BaseCarrier]:
        """Registered client for code, or None. The sandbox is always registered."""
        key = self._key(code)
        if key == self.sandbox.code:
            return self.sandbox
        return self._clients.get(key)

    def resolve(self, code: Optional[str], use_sandbox: bool = False) -> BaseCarrier:
        """Client for code, falling back to the sandbox client."""
        if use_sandbox:
            return self.sandbox
        client = self.get(code) if code else None
        if client is None:
            logger.info(f"No client registered for carrier {code!r}, using sandbox")
            return self.sandbox
        return client

    def normalizer_for(self, code: Optional[str]) -> StatusNormalizer:
        return self.resolve(code).normalizer

    @property
    def codes(self) -> List[str]:
        return [self.sandbox.code, *self._clients.keys()]

    def __contains__(self, code: str) -> bool:
        return self.get(code) is not None

    async def close(self):
        """Close every client's network resources."""
        for client in [self.sandbox, *self._clients.values()]:
            await client.close()


def build_registry(
    settings,
    transport=None,
    sleep: Optional[Callable] = None,
) -> CarrierRegistry:
    """
    Build the process-wide registry from settings.

    Carriers without configured credentials are skipped and resolve to the
    sandbox client.
    """
    config = RetryConfig(
        max_retries=settings.CARRIER_MAX_RETRIES,
        base_delay=settings.CARRIER_RETRY_BASE_DELAY_SECONDS,
    )
    registry = CarrierRegistry()

    for carrier_cls in NETWORK_CARRIERS:
        retry_kwargs = {"sleep": sleep} if sleep else {}
        retry = RetryExecutor(config, carrier_code=carrier_cls.code, **retry_kwargs)
        client = carrier_cls.from_settings(settings, retry=retry, transport=transport)
        if client is None:
            logger.debug(f"Carrier {carrier_cls.code} not configured, skipping")
            continue
        registry.register(client)

    logger.info(f"Carrier registry ready: {', '.join(registry.codes)}")
    return registry


__all__ = [
    "CarrierRegistry",
    "build_registry",
    "BaseCarrier",
    "SandboxCarrier",
    "DelhiveryCarrier",
    "BlueDartCarrier",
    "FedExIndiaCarrier",
    "EcomExpressCarrier",
    "GatiCarrier",
    "ShadowfaxCarrier",
]
