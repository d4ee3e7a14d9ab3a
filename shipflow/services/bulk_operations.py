"""
Bulk Operations

Fan-out of per-shipment work in fixed-size batches:
- items within a batch run concurrently, batches run one after another
- one item failing never aborts the rest; its error is collected as
  "Shipment {id}: {message}"
- every item runs in its own database session and transaction
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from shipflow.core.exceptions import ValidationError
from shipflow.models.shipment import LabelFormat
from shipflow.services.pickups import PickupService

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
MAX_BULK_LABELS = 100
MAX_BULK_PICKUPS = 50


@dataclass
class BatchResult:
    """Outcome of one bulk operation."""
    total: int
    successful: int = 0
    failed: int = 0
    successful_ids: List[int] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "successful_ids": self.successful_ids,
            "failed_ids": self.failed_ids,
            "errors": self.errors,
        }


class BatchCoordinator:
    """
    Runs an async operation over many shipment ids.

    Usage:
        coordinator = BatchCoordinator(batch_size=10)
        result = await coordinator.run_batch([1, 2, 3], generate_one, max_items=100)
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size

    async def run_batch(
        self,
        shipment_ids: Sequence[int],
        operation: Callable[[int], Awaitable[Any]],
        batch_size: Optional[int] = None,
        max_items: Optional[int] = None,
        operation_name: str = "operation",
    ) -> BatchResult:
        """
        Apply operation to every id and report per-item outcomes.

        Raises:
            ValidationError: No ids, or more than max_items
        """
        if not shipment_ids:
            raise ValidationError("At least one shipment ID is required", field="shipment_ids")
        if max_items is not None and len(shipment_ids) > max_items:
            raise ValidationError(
                f"Maximum {max_items} shipments per bulk {operation_name}",
                field="shipment_ids",
                details={"requested": len(shipment_ids), "limit": max_items},
            )

        size = batch_size or self.batch_size
        result = BatchResult(total=len(shipment_ids))

        for start in range(0, len(shipment_ids), size):
            chunk = list(shipment_ids[start:start + size])
            outcomes = await asyncio.gather(
                *(operation(shipment_id) for shipment_id in chunk),
                return_exceptions=True,
            )
            for shipment_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    result.failed += 1
                    result.failed_ids.append(shipment_id)
                    result.errors.append(f"Shipment {shipment_id}: {getattr(outcome, 'message', None) or outcome}")
                    logger.warning(f"Bulk {operation_name} failed for shipment {shipment_id}: {outcome}")
                else:
                    result.successful += 1
                    result.successful_ids.append(shipment_id)

        logger.info(
            f"Bulk {operation_name}: {result.successful}/{result.total} succeeded, {result.failed} failed"
        )
        return result


class BulkOperationsService:
    """
    Bulk label generation and pickup scheduling.

    session_factory yields a fresh AsyncSession per item;
    orchestrator_factory(db) builds a FulfillmentOrchestrator bound to it.
    """

    def __init__(
        self,
        session_factory: Callable,
        orchestrator_factory: Callable,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_labels: int = MAX_BULK_LABELS,
        max_pickups: int = MAX_BULK_PICKUPS,
    ):
        self.session_factory = session_factory
        self.orchestrator_factory = orchestrator_factory
        self.coordinator = BatchCoordinator(batch_size)
        self.max_labels = max_labels
        self.max_pickups = max_pickups

    async def generate_bulk_labels(
        self,
        shipment_ids: Sequence[int],
        label_format: LabelFormat = LabelFormat.PDF,
    ) -> BatchResult:
        async def generate_one(shipment_id: int):
            async with self.session_factory() as db:
                return await self.orchestrator_factory(db).create_label(shipment_id, label_format)

        return await self.coordinator.run_batch(
            shipment_ids,
            generate_one,
            max_items=self.max_labels,
            operation_name="label generation",
        )

    async def schedule_bulk_pickups(
        self,
        shipment_ids: Sequence[int],
        scheduled_at: datetime,
    ) -> BatchResult:
        if scheduled_at is None:
            raise ValidationError("Pickup time is required", field="scheduled_at")

        async def schedule_one(shipment_id: int):
            async with self.session_factory() as db:
                return await PickupService(db).schedule_pickup(shipment_id, scheduled_at)

        return await self.coordinator.run_batch(
            shipment_ids,
            schedule_one,
            max_items=self.max_pickups,
            operation_name="pickup scheduling",
        )
