"""
Carrier status normalization

Every carrier reports status in its own free text / status codes. Each
carrier owns an ordered keyword table; the first row with a keyword that
appears (case-insensitively) in the raw status wins. Unmatched input maps
to UNKNOWN, which never moves a shipment.

Order matters: short codes like "dl" and "it" are checked in the order the
carrier documents them, so "Delivered" never reaches the transit row.
"""
from typing import Iterable, Sequence, Tuple

from shipflow.models.shipment import TrackingStatus

StatusRule = Tuple[Tuple[str, ...], TrackingStatus]


class StatusNormalizer:
    """
    Pure mapping from a carrier's raw status string to TrackingStatus.

    Usage:
        normalizer = StatusNormalizer("DELHIVERY", DELHIVERY_STATUS_RULES)
        normalizer.normalize("In Transit")  # TrackingStatus.IN_TRANSIT
    """

    def __init__(self, carrier_code: str, rules: Sequence[StatusRule]):
        self.carrier_code = carrier_code
        self._rules: Tuple[StatusRule, ...] = tuple(
            (tuple(keyword.lower() for keyword in keywords), status)
            for keywords, status in rules
        )

    @property
    def rules(self) -> Tuple[StatusRule, ...]:
        return self._rules

    def normalize(self, raw_status) -> TrackingStatus:
        text = str(raw_status or "").strip().lower()
        if not text:
            return TrackingStatus.UNKNOWN
        for keywords, status in self._rules:
            if any(keyword in text for keyword in keywords):
                return status
        return TrackingStatus.UNKNOWN

    def normalize_all(self, raw_statuses: Iterable[str]) -> list:
        return [self.normalize(raw) for raw in raw_statuses]

    def __repr__(self):
        return f"<StatusNormalizer(carrier={self.carrier_code}, rules={len(self._rules)})>"


# Listed first by every carrier table: none of their keywords match
# "out for delivery", which would otherwise be UNKNOWN
OUT_FOR_DELIVERY_RULE: StatusRule = (("out for delivery", "out_for_delivery"), TrackingStatus.IN_TRANSIT)
