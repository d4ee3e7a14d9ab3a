r"""
Shipment lifecycle

    PENDING -> SHIPPED -> IN_TRANSIT -> DELIVERED
        \__________\___________\______-> CANCELLED

Forward-only: a tracking status moves the shipment only when it ranks
above the current status. CANCELLED is a side branch reachable from any
non-terminal state. DELIVERED and CANCELLED are terminal.

Both the fulfillment orchestrator (PENDING -> SHIPPED on label creation)
and the tracking pipeline go through these functions; manual updates go
through validate_manual_transition().
"""
from datetime import datetime
from typing import Optional, Union

from shipflow.core.exceptions import ValidationError
from shipflow.models.shipment import ShipmentStatus, TrackingStatus

STATUS_RANK = {
    ShipmentStatus.PENDING: 0,
    ShipmentStatus.SHIPPED: 1,
    ShipmentStatus.IN_TRANSIT: 2,
    ShipmentStatus.DELIVERED: 3,
}

TERMINAL_STATUSES = frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED})


def is_terminal(status: ShipmentStatus) -> bool:
    return ShipmentStatus(status) in TERMINAL_STATUSES


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    """True if target is a legal automatic move from current."""
    current = ShipmentStatus(current)
    target = ShipmentStatus(target)
    if current in TERMINAL_STATUSES:
        return False
    if target == ShipmentStatus.CANCELLED:
        return True
    return STATUS_RANK[target] > STATUS_RANK[current]


def next_status(
    current: ShipmentStatus,
    observed: Union[TrackingStatus, ShipmentStatus],
) -> Optional[ShipmentStatus]:
    """
    Status the shipment should move to after observing a tracking status.

    Returns None when the observation must not change the shipment:
    UNKNOWN, terminal current state, or anything that would regress.
    """
    if observed == TrackingStatus.UNKNOWN:
        return None
    target = ShipmentStatus(observed.value)
    if not can_transition(current, target):
        return None
    return target


def fold_statuses(
    observed: list,
    initial: ShipmentStatus = ShipmentStatus.PENDING,
) -> ShipmentStatus:
    """Apply a sequence of observations in arrival order and return the final status."""
    status = initial
    for item in observed:
        moved = next_status(status, item)
        if moved is not None:
            status = moved
    return status


def validate_manual_transition(
    current: ShipmentStatus,
    target: ShipmentStatus,
    shipped_at: Optional[datetime] = None,
    delivered_at: Optional[datetime] = None,
) -> None:
    """
    Check an administrative status change.

    Manual updates may correct a status sideways or backwards, but never:
    - leave a terminal status
    - return to PENDING once shipped_at is set
    - set anything but DELIVERED once delivered_at is set

    Raises:
        ValidationError: The change would break a lifecycle invariant
    """
    current = ShipmentStatus(current)
    target = ShipmentStatus(target)
    if target == current:
        return

    if current in TERMINAL_STATUSES:
        raise ValidationError(
            f"Cannot change status of a {current.value} shipment",
            field="status",
            details={"current": current.value, "requested": target.value},
        )
    if target == ShipmentStatus.PENDING and shipped_at is not None:
        raise ValidationError(
            "Cannot set status back to PENDING once the shipment has shipped",
            field="status",
            details={"current": current.value, "requested": target.value},
        )
    if delivered_at is not None and target != ShipmentStatus.DELIVERED:
        raise ValidationError(
            "Cannot set a non-DELIVERED status once the shipment is delivered",
            field="status",
            details={"current": current.value, "requested": target.value},
        )
