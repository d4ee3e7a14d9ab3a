"""
Tests for the shipment lifecycle rules.
"""
from datetime import datetime, timezone
from itertools import permutations

import pytest

from shipflow.core.exceptions import ValidationError
from shipflow.models.shipment import ShipmentStatus, TrackingStatus
from shipflow.modules.shipping.state_machine import (
    can_transition,
    fold_statuses,
    is_terminal,
    next_status,
    validate_manual_transition,
)

SHIPPED_AT = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestAutomaticTransitions:
    @pytest.mark.parametrize("current,target,allowed", [
        (ShipmentStatus.PENDING, ShipmentStatus.SHIPPED, True),
        (ShipmentStatus.PENDING, ShipmentStatus.DELIVERED, True),
        (ShipmentStatus.SHIPPED, ShipmentStatus.IN_TRANSIT, True),
        (ShipmentStatus.IN_TRANSIT, ShipmentStatus.SHIPPED, False),
        (ShipmentStatus.IN_TRANSIT, ShipmentStatus.PENDING, False),
        (ShipmentStatus.SHIPPED, ShipmentStatus.SHIPPED, False),
        (ShipmentStatus.IN_TRANSIT, ShipmentStatus.CANCELLED, True),
        (ShipmentStatus.DELIVERED, ShipmentStatus.CANCELLED, False),
        (ShipmentStatus.CANCELLED, ShipmentStatus.DELIVERED, False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_unknown_never_moves(self):
        for status in ShipmentStatus:
            assert next_status(status, TrackingStatus.UNKNOWN) is None

    def test_terminal_statuses(self):
        assert is_terminal(ShipmentStatus.DELIVERED)
        assert is_terminal(ShipmentStatus.CANCELLED)
        assert not is_terminal(ShipmentStatus.IN_TRANSIT)


class TestMonotonicity:
    """Final status does not depend on arrival order."""

    @pytest.mark.parametrize("order", list(permutations([
        TrackingStatus.SHIPPED,
        TrackingStatus.IN_TRANSIT,
        TrackingStatus.DELIVERED,
        TrackingStatus.UNKNOWN,
    ])))
    def test_any_arrival_order_ends_delivered(self, order):
        assert fold_statuses(list(order)) == ShipmentStatus.DELIVERED

    @pytest.mark.parametrize("order", list(permutations([
        TrackingStatus.PENDING,
        TrackingStatus.SHIPPED,
        TrackingStatus.IN_TRANSIT,
    ])))
    def test_highest_rank_wins(self, order):
        assert fold_statuses(list(order)) == ShipmentStatus.IN_TRANSIT

    def test_first_terminal_status_sticks(self):
        assert fold_statuses([TrackingStatus.DELIVERED, TrackingStatus.CANCELLED]) == ShipmentStatus.DELIVERED
        assert fold_statuses([TrackingStatus.CANCELLED, TrackingStatus.DELIVERED]) == ShipmentStatus.CANCELLED


class TestManualTransitions:
    def test_sideways_correction_allowed(self):
        validate_manual_transition(ShipmentStatus.IN_TRANSIT, ShipmentStatus.SHIPPED, shipped_at=SHIPPED_AT)

    def test_back_to_pending_after_shipping_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_manual_transition(ShipmentStatus.SHIPPED, ShipmentStatus.PENDING, shipped_at=SHIPPED_AT)
        assert exc_info.value.details["field"] == "status"

    def test_delivered_at_requires_delivered(self):
        with pytest.raises(ValidationError):
            validate_manual_transition(
                ShipmentStatus.IN_TRANSIT,
                ShipmentStatus.SHIPPED,
                shipped_at=SHIPPED_AT,
                delivered_at=SHIPPED_AT,
            )

    def test_terminal_cannot_be_left(self):
        with pytest.raises(ValidationError):
            validate_manual_transition(ShipmentStatus.CANCELLED, ShipmentStatus.SHIPPED)

    def test_same_status_is_noop(self):
        validate_manual_transition(ShipmentStatus.DELIVERED, ShipmentStatus.DELIVERED, delivered_at=SHIPPED_AT)
