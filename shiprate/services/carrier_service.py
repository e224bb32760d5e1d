"""Carrier registry and company carrier enablement."""
import logging
from typing import Dict, List, Optional, Set
import uuid

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from shiprate.models.carrier import Carrier, CarrierPincode, CompanyCarrier
from shiprate.schemas.carrier import CarrierCreate

logger = logging.getLogger(__name__)


class CarrierService:
    """Service for carriers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[Carrier]:
        result = await self.db.execute(select(Carrier).where(Carrier.code == code.upper()))
        return result.scalar_one_or_none()

    async def list_carriers(self, is_active: Optional[bool] = None) -> List[Carrier]:
        stmt = select(Carrier).order_by(Carrier.name)
        if is_active is not None:
            stmt = stmt.where(Carrier.is_active == is_active)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_codes(self) -> Set[str]:
        result = await self.db.execute(select(Carrier.code))
        return set(result.scalars().all())

    async def create_carrier(self, data: CarrierCreate) -> Carrier:
        if await self.get_by_code(data.code):
            raise ValueError(f"Carrier {data.code} already exists")

        carrier = Carrier(
            **data.model_dump(exclude={"serviceability_mode"}),
            serviceability_mode=data.serviceability_mode.value,
        )
        self.db.add(carrier)
        await self.db.commit()
        return carrier

    async def add_pincodes(
        self,
        code: str,
        pincodes: List[str],
        pickup_available: bool = True,
        replace_existing: bool = False,
    ) -> int:
        """Add serviceable pincodes for a PINCODE_LIST carrier."""
        carrier = await self.get_by_code(code)
        if not carrier:
            raise ValueError(f"Carrier {code} not found")

        if replace_existing:
            await self.db.execute(delete(CarrierPincode).where(CarrierPincode.carrier_id == carrier.id))
            existing = set()
        else:
            result = await self.db.execute(
                select(CarrierPincode.pincode).where(CarrierPincode.carrier_id == carrier.id)
            )
            existing = set(result.scalars().all())

        added = 0
        for pincode in sorted(set(p.strip() for p in pincodes)):
            if pincode in existing:
                continue
            self.db.add(CarrierPincode(
                carrier_id=carrier.id,
                pincode=pincode,
                is_serviceable=True,
                pickup_available=pickup_available,
            ))
            added += 1

        await self.db.commit()
        return added

    async def enable_for_company(
        self,
        company_id: uuid.UUID,
        carrier_code: str,
        is_active: bool = True,
        priority: int = 100,
    ) -> CompanyCarrier:
        carrier = await self.get_by_code(carrier_code)
        if not carrier:
            raise ValueError(f"Carrier {carrier_code} not found")

        result = await self.db.execute(
            select(CompanyCarrier).where(
                CompanyCarrier.company_id == company_id,
                CompanyCarrier.carrier_id == carrier.id,
            )
        )
        link = result.scalar_one_or_none()
        if link:
            link.is_active = is_active
            link.priority = priority
        else:
            link = CompanyCarrier(
                company_id=company_id, carrier_id=carrier.id,
                is_active=is_active, priority=priority,
            )
            self.db.add(link)

        await self.db.commit()
        return link

    async def get_company_carriers(self, company_id: uuid.UUID) -> List[Carrier]:
        """Carriers that are active globally and enabled for the company."""
        result = await self.db.execute(
            select(Carrier)
            .join(CompanyCarrier, CompanyCarrier.carrier_id == Carrier.id)
            .where(
                CompanyCarrier.company_id == company_id,
                CompanyCarrier.is_active == True,  # noqa: E712
                Carrier.is_active == True,  # noqa: E712
            )
            .order_by(CompanyCarrier.priority, Carrier.name)
        )
        return list(result.scalars().all())

    async def get_listed_pincodes(
        self,
        carrier_ids: List[uuid.UUID],
        pincodes: List[str],
    ) -> Dict[uuid.UUID, Dict[str, CarrierPincode]]:
        """carrier_id -> {pincode: row} for the given pincodes only."""
        if not carrier_ids or not pincodes:
            return {}
        result = await self.db.execute(
            select(CarrierPincode).where(
                CarrierPincode.carrier_id.in_(carrier_ids),
                CarrierPincode.pincode.in_(pincodes),
            )
        )
        listed: Dict[uuid.UUID, Dict[str, CarrierPincode]] = {}
        for row in result.scalars().all():
            listed.setdefault(row.carrier_id, {})[row.pincode] = row
        return listed
