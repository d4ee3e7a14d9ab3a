"""
Route serviceability

A route is serviceable when both pincodes are known zones. Warehouse
coverage (TAT days, ODA flag and fee) is returned alongside when the
shipment ships from a known warehouse.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from shipflow.models.rates import PincodeZone, WarehouseCoverage

logger = logging.getLogger(__name__)


@dataclass
class ZoneInfo:
    pincode: str
    zone: Optional[str] = None
    oda: bool = False


@dataclass
class CoverageInfo:
    warehouse_id: int
    pincode: str
    tat_days: Optional[int] = None
    is_oda: bool = False
    oda_fee: Optional[float] = None


@dataclass
class ServiceabilityResult:
    serviceable: bool
    origin_zone: Optional[ZoneInfo] = None
    destination_zone: Optional[ZoneInfo] = None
    warehouse_coverage: Optional[CoverageInfo] = None

    @property
    def is_oda_destination(self) -> bool:
        return bool(
            (self.destination_zone and self.destination_zone.oda)
            or (self.warehouse_coverage and self.warehouse_coverage.is_oda)
        )


class ServiceabilityService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _zone(self, pincode: str) -> Optional[ZoneInfo]:
        result = await self.db.execute(
            select(PincodeZone).where(PincodeZone.pincode == pincode)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return ZoneInfo(pincode=row.pincode, zone=row.zone, oda=bool(row.oda))

    async def _coverage(self, warehouse_id: int, pincode: str) -> Optional[CoverageInfo]:
        result = await self.db.execute(
            select(WarehouseCoverage).where(
                and_(
                    WarehouseCoverage.warehouse_id == warehouse_id,
                    WarehouseCoverage.pincode == pincode,
                )
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return CoverageInfo(
            warehouse_id=row.warehouse_id,
            pincode=row.pincode,
            tat_days=row.tat_days,
            is_oda=bool(row.is_oda),
            oda_fee=row.oda_fee,
        )

    async def check(
        self,
        origin_pincode: Optional[str],
        destination_pincode: Optional[str],
        warehouse_id: Optional[int] = None,
    ) -> ServiceabilityResult:
        if not origin_pincode or not destination_pincode:
            return ServiceabilityResult(serviceable=False)

        origin = await self._zone(origin_pincode)
        destination = await self._zone(destination_pincode)
        coverage = await self._coverage(warehouse_id, destination_pincode) if warehouse_id else None

        serviceable = origin is not None and destination is not None
        if not serviceable:
            logger.debug(f"Route {origin_pincode} -> {destination_pincode} not serviceable")

        return ServiceabilityResult(
            serviceable=serviceable,
            origin_zone=origin,
            destination_zone=destination,
            warehouse_coverage=coverage,
        )
