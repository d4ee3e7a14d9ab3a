"""
Tests for the background dispatcher, keyed locks and label webhook.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from shipflow.core.dispatcher import BackgroundDispatcher
from shipflow.core.locks import KeyedLockManager
from shipflow.services.notifications import LabelWebhookNotifier


class TestBackgroundDispatcher:
    @pytest.mark.asyncio
    async def test_delivers_to_subscribers(self):
        received = []

        async def handler(payload):
            received.append(payload)

        dispatcher = BackgroundDispatcher()
        dispatcher.subscribe("label.created", handler)
        await dispatcher.start()

        assert dispatcher.dispatch("label.created", {"shipment_id": 42})
        await dispatcher.drain()
        await dispatcher.stop()

        assert received == [{"shipment_id": 42}]
        assert dispatcher.delivered == 1
        assert not dispatcher.running

    @pytest.mark.asyncio
    async def test_handler_failure_goes_to_error_channel(self):
        errors = []
        received = []

        async def broken(payload):
            raise RuntimeError("webhook down")

        async def healthy(payload):
            received.append(payload)

        dispatcher = BackgroundDispatcher(on_error=errors.append)
        dispatcher.subscribe("label.created", broken)
        dispatcher.subscribe("label.created", healthy)
        await dispatcher.start()

        dispatcher.dispatch("label.created", {"shipment_id": 7})
        await dispatcher.stop()

        assert received == [{"shipment_id": 7}]
        assert len(dispatcher.failures) == 1
        failure = dispatcher.failures[0]
        assert failure.event == "label.created"
        assert failure.handler == "broken"
        assert "webhook down" in failure.error
        assert errors == [failure]

    @pytest.mark.asyncio
    async def test_failing_error_callback_is_contained(self):
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        on_error = MagicMock(side_effect=ValueError("callback broke"))

        dispatcher = BackgroundDispatcher(on_error=on_error)
        dispatcher.subscribe("label.created", handler)
        await dispatcher.start()

        dispatcher.dispatch("label.created", {"shipment_id": 1})
        dispatcher.dispatch("label.created", {"shipment_id": 2})
        await dispatcher.stop()

        assert handler.await_count == 2
        assert on_error.call_count == 2
        assert len(dispatcher.failures) == 2
        assert dispatcher.failures[0].handler == "AsyncMock"

    def test_dispatch_without_subscribers(self):
        dispatcher = BackgroundDispatcher()
        assert dispatcher.dispatch("label.created", {}) is False

    @pytest.mark.asyncio
    async def test_events_queued_before_start_are_delivered(self):
        received = []

        async def handler(payload):
            received.append(payload["n"])

        dispatcher = BackgroundDispatcher()
        dispatcher.subscribe("e", handler)
        dispatcher.dispatch("e", {"n": 1})
        dispatcher.dispatch("e", {"n": 2})

        await dispatcher.start()
        await dispatcher.stop()

        assert received == [1, 2]

    @pytest.mark.asyncio
    async def test_full_queue_drops_and_logs(self, caplog):
        received = []

        async def handler(payload):
            received.append(payload["n"])

        dispatcher = BackgroundDispatcher(max_queue=2)
        dispatcher.subscribe("e", handler)

        assert dispatcher.dispatch("e", {"n": 1})
        assert dispatcher.dispatch("e", {"n": 2})
        assert dispatcher.dispatch("e", {"n": 3}) is False
        assert dispatcher.dropped == 1
        assert "queue full" in caplog.text

        await dispatcher.start()
        await dispatcher.stop()

        assert received == [1, 2]
        assert dispatcher.dispatch("e", {"n": 4}) is True


class TestKeyedLockManager:
    @pytest.mark.asyncio
    async def test_same_key_serialized(self):
        locks = KeyedLockManager()
        order = []

        async def worker(name):
            async with locks.hold(42):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_interleave(self):
        locks = KeyedLockManager()
        order = []

        async def worker(key):
            async with locks.hold(key):
                order.append(f"{key}-in")
                await asyncio.sleep(0)
                order.append(f"{key}-out")

        await asyncio.gather(worker(1), worker(2))

        assert order.index("2-in") < order.index("1-out")


class TestLabelWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_payload(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(204)

        notifier = LabelWebhookNotifier("https://hooks.test/labels", transport=httpx.MockTransport(handler))
        await notifier({"shipment_id": 42, "label_number": "SANDBOX-42-1"})

        assert seen == [{"shipment_id": 42, "label_number": "SANDBOX-42-1"}]
        assert notifier.sent == 1

    @pytest.mark.asyncio
    async def test_failure_raises(self):
        notifier = LabelWebhookNotifier(
            "https://hooks.test/labels",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await notifier({"shipment_id": 42})

    @pytest.mark.asyncio
    async def test_without_url_only_logs(self):
        notifier = LabelWebhookNotifier("")
        await notifier({"shipment_id": 42})
        assert notifier.sent == 0
