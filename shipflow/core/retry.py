"""
Bounded retry with exponential backoff for carrier network calls.

Every carrier operation runs through RetryExecutor:
- Success returns immediately
- HTTP 4xx (client error) is terminal: propagated without retry
- Anything else (timeout, 5xx, network error, malformed response) is
  retried after base_delay * 2^(attempt-1), up to max_retries attempts total
- On exhaustion the last error is propagated as a CarrierError

Backoff sleeps are asyncio suspension points and never block other work.
A caller-level timeout is checked only at retry boundaries, so an in-flight
request is never torn down mid-way.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from shipflow.core.exceptions import CarrierError, CarrierTimeoutError, ShipflowError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3              # Total attempts, first call included
    base_delay: float = 1.0           # Seconds before the first retry
    exponential_base: float = 2.0


@dataclass
class Attempt:
    """Outcome of a retried call: exactly one of value/error is meaningful."""
    value: Any = None
    error: Optional[CarrierError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_retryable(exc: BaseException) -> bool:
    """Classify a failure as transient (retry) or terminal (propagate)."""
    if isinstance(exc, CarrierError):
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            return False
        return exc.retryable
    if isinstance(exc, ShipflowError):
        # Validation / not-found / conflict are caller problems
        return False
    if isinstance(exc, httpx.HTTPStatusError):
        return not (400 <= exc.response.status_code < 500)
    return True


class RetryExecutor:
    """
    Wraps a single asynchronous network operation with bounded retry.

    Usage:
        executor = RetryExecutor(RetryConfig(max_retries=3, base_delay=1.0))
        data = await executor.run(client.post, "/api/p/label", json=payload)
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        carrier_code: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RetryConfig()
        self.carrier_code = carrier_code
        self._sleep = sleep
        self._clock = clock

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        cfg = self.config
        return cfg.base_delay * (cfg.exponential_base ** (attempt - 1))

    def _as_carrier_error(self, exc: BaseException) -> ShipflowError:
        """Normalise any failure into the Shipflow error taxonomy."""
        if isinstance(exc, ShipflowError):
            return exc
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            return CarrierError(
                f"HTTP {status} from carrier",
                carrier_code=self.carrier_code,
                status_code=status,
                retryable=not (400 <= status < 500),
            )
        if isinstance(exc, httpx.TimeoutException):
            return CarrierError("Carrier request timed out", carrier_code=self.carrier_code)
        if isinstance(exc, httpx.HTTPError):
            return CarrierError(f"Carrier network error: {exc}", carrier_code=self.carrier_code)
        return CarrierError(
            f"Unexpected carrier failure: {exc}",
            carrier_code=self.carrier_code,
        )

    async def run(
        self,
        operation: Callable[..., Awaitable[Any]],
        *args,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Any:
        """
        Execute operation with retry.

        Args:
            operation: Coroutine function performing one network call
            timeout: Optional caller deadline in seconds, checked at retry boundaries

        Returns:
            Whatever operation returns on success

        Raises:
            CarrierError: Terminal failure or retries exhausted
            CarrierTimeoutError: Deadline reached before the next attempt
            ShipflowError: Non-carrier errors raised by operation, unchanged
        """
        cfg = self.config
        tag = self.carrier_code or "carrier"
        deadline = self._clock() + timeout if timeout is not None else None
        last_exc: Optional[BaseException] = None

        for attempt in range(1, cfg.max_retries + 1):
            if deadline is not None and self._clock() >= deadline:
                raise CarrierTimeoutError(
                    f"Deadline reached after {attempt - 1} attempt(s)",
                    carrier_code=self.carrier_code,
                ) from last_exc

            try:
                return await operation(*args, **kwargs)
            except Exception as exc:
                last_exc = exc

                if not is_retryable(exc):
                    logger.error(f"[{tag}] Terminal failure, not retrying: {exc}")
                    error = self._as_carrier_error(exc)
                    if error is exc:
                        raise
                    raise error from exc

                if attempt >= cfg.max_retries:
                    break

                delay = self.backoff_delay(attempt)
                if deadline is not None and self._clock() + delay >= deadline:
                    raise CarrierTimeoutError(
                        f"Deadline would pass during backoff after attempt {attempt}",
                        carrier_code=self.carrier_code,
                    ) from exc

                logger.warning(
                    f"[{tag}] Attempt {attempt}/{cfg.max_retries} failed ({exc}), "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        logger.error(f"[{tag}] All {cfg.max_retries} attempts failed")
        error = self._as_carrier_error(last_exc)
        if error is last_exc:
            raise error
        raise error from last_exc

    async def attempt(
        self,
        operation: Callable[..., Awaitable[Any]],
        *args,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Attempt:
        """
        Like run(), but carrier failures come back as Attempt.error.

        Non-carrier errors (validation, not-found) still raise.
        """
        try:
            value = await self.run(operation, *args, timeout=timeout, **kwargs)
        except CarrierError as e:
            return Attempt(error=e)
        return Attempt(value=value)
