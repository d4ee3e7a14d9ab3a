import pytest

from shipflow.core.config import settings
from shipflow.modules.shipping.carriers import (
    CarrierRegistry,
    DelhiveryCarrier,
    FedExIndiaCarrier,
    GatiCarrier,
    SandboxCarrier,
    ShadowfaxCarrier,
    build_registry,
)


class TestCarrierRegistry:
    def test_unregistered_code_resolves_to_sandbox(self):
        registry = CarrierRegistry()
        assert isinstance(registry.resolve("DELHIVERY"), SandboxCarrier)
        assert isinstance(registry.resolve(None), SandboxCarrier)
        assert registry.get("DELHIVERY") is None

    def test_registered_client_resolved_case_insensitively(self):
        registry = CarrierRegistry()
        client = registry.register(DelhiveryCarrier("tok"))
        assert registry.resolve("delhivery") is client
        assert "DELHIVERY" in registry
        assert registry.codes == ["SANDBOX", "DELHIVERY"]

    def test_use_sandbox_overrides_registration(self):
        registry = CarrierRegistry()
        registry.register(DelhiveryCarrier("tok"))
        assert registry.resolve("DELHIVERY", use_sandbox=True) is registry.sandbox

    def test_normalizer_follows_client(self):
        registry = CarrierRegistry()
        registry.register(DelhiveryCarrier("tok"))
        assert registry.normalizer_for("DELHIVERY").carrier_code == "DELHIVERY"
        assert registry.normalizer_for("UNKNOWN_CARRIER").carrier_code == "SANDBOX"


class TestBuildRegistry:
    @pytest.mark.asyncio
    async def test_unconfigured_carriers_skipped(self):
        registry = build_registry(settings)
        assert registry.codes == ["SANDBOX"]
        await registry.close()

    @pytest.mark.asyncio
    async def test_configured_carriers_registered(self, fake_sleep):
        configured = settings.model_copy(update={
            "DELHIVERY_TOKEN": "tok",
            "FEDEX_CLIENT_ID": "id",
            "FEDEX_CLIENT_SECRET": "secret",
            "FEDEX_ACCOUNT_NUMBER": "510087000",
            "CARRIER_MAX_RETRIES": 5,
        })
        registry = build_registry(configured, sleep=fake_sleep)

        assert registry.codes == ["SANDBOX", "DELHIVERY", "FEDEX_INDIA"]
        delhivery = registry.get("DELHIVERY")
        assert isinstance(delhivery, DelhiveryCarrier)
        assert isinstance(registry.get("FEDEX_INDIA"), FedExIndiaCarrier)
        assert delhivery.retry.config.max_retries == 5
        assert delhivery.retry.carrier_code == "DELHIVERY"
        # Each carrier gets its own executor
        assert delhivery.retry is not registry.get("FEDEX_INDIA").retry
        await registry.close()

    @pytest.mark.asyncio
    async def test_gati_and_shadowfax_registered(self):
        configured = settings.model_copy(update={
            "GATI_CLIENT_ID": "client-1",
            "GATI_API_KEY": "gati-key",
            "SHADOWFAX_API_KEY": "sf-key",
            "SHADOWFAX_SECRET_KEY": "sf-secret",
        })
        registry = build_registry(configured)

        assert registry.codes == ["SANDBOX", "GATI", "SHADOWFAX"]
        assert isinstance(registry.get("GATI"), GatiCarrier)
        assert isinstance(registry.get("shadowfax"), ShadowfaxCarrier)
        assert registry.normalizer_for("GATI").carrier_code == "GATI"
        await registry.close()

    @pytest.mark.asyncio
    async def test_half_configured_carrier_skipped(self):
        configured = settings.model_copy(update={"SHADOWFAX_API_KEY": "sf-key"})
        registry = build_registry(configured)
        assert "SHADOWFAX" not in registry
        await registry.close()
