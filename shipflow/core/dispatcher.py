"""
Background dispatcher for post-commit side effects.

Request paths hand events (e.g. "label.created") to the dispatcher and
return without awaiting delivery. A single worker task drains the queue
and runs the subscribed handlers. Handler failures never reach the
request path; they go to the error channel:
- logged at ERROR with the event name
- kept in `failures` (bounded) for inspection
- passed to an optional on_error callback

The queue is bounded; events dispatched while it is full are dropped
and logged.
"""
import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class DispatchFailure:
    """One handler failure."""
    event: str
    handler: str
    error: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BackgroundDispatcher:
    """
    In-process event queue with one worker task.

    Usage:
        dispatcher = BackgroundDispatcher()
        dispatcher.subscribe("label.created", notifier)
        await dispatcher.start()
        dispatcher.dispatch("label.created", {"shipment_id": 42})
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        max_failures: int = 100,
        max_queue: int = 1000,
        on_error: Optional[Callable[[DispatchFailure], Any]] = None,
    ):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._worker: Optional[asyncio.Task] = None
        self._running = False
        self._on_error = on_error
        self.failures: Deque[DispatchFailure] = deque(maxlen=max_failures)
        self.delivered = 0
        self.dropped = 0

    def subscribe(self, event: str, handler: Handler):
        self._handlers[event].append(handler)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            logger.warning("Background dispatcher already running")
            return
        self._running = True
        self._worker = asyncio.create_task(self._run())
        logger.info("Background dispatcher started")

    async def stop(self, drain: bool = True):
        """Stop the worker, by default after delivering what is queued."""
        if not self._running:
            return
        if drain:
            await self.drain()
        self._running = False
        if self._worker:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        logger.info("Background dispatcher stopped")

    def dispatch(self, event: str, payload: Dict[str, Any]) -> bool:
        """Queue an event. Returns False if nobody listens for it or the queue is full."""
        if not self._handlers.get(event):
            logger.debug(f"No handlers for {event}, dropping")
            return False
        try:
            self._queue.put_nowait((event, payload))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.error(f"Dispatcher queue full ({self._queue.maxsize}); dropped {event}")
            return False
        if not self._running:
            logger.warning(f"Dispatcher not running; {event} queued until start()")
        return True

    async def drain(self):
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def _run(self):
        while True:
            event, payload = await self._queue.get()
            try:
                await self._deliver(event, payload)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: str, payload: Dict[str, Any]):
        for handler in list(self._handlers.get(event, [])):
            name = getattr(handler, "__name__", handler.__class__.__name__)
            try:
                await handler(payload)
                self.delivered += 1
            except Exception as e:
                failure = DispatchFailure(
                    event=event,
                    handler=name,
                    error=f"{e.__class__.__name__}: {e}",
                    payload=payload,
                )
                self.failures.append(failure)
                logger.error(f"Handler {name} failed for {event}: {failure.error}")
                if self._on_error:
                    try:
                        self._on_error(failure)
                    except Exception as callback_error:
                        logger.error(f"Dispatcher on_error callback failed: {callback_error}")
