"""Zone and pincode reference data administration."""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shiprate.core.enum_utils import normalize_zone_code
from shiprate.models.zone import Zone, Pincode
from shiprate.services.zone_resolver import PincodeInfo

logger = logging.getLogger(__name__)

ZONE_NAMES = {
    "zoneA": "Local",
    "zoneB": "Within State",
    "zoneC": "Metro to Metro",
    "zoneD": "Regional",
    "zoneE": "Rest of India",
}


class ZoneService:
    """Service for zones and the pincode reference table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_zones(self) -> List[Zone]:
        result = await self.db.execute(select(Zone).order_by(Zone.code))
        return list(result.scalars().all())

    async def get_zone(self, code: str) -> Optional[Zone]:
        result = await self.db.execute(select(Zone).where(Zone.code == code))
        return result.scalar_one_or_none()

    async def ensure_zone(self, raw_code: str) -> Tuple[Optional[Zone], bool]:
        """
        Return (zone, created) for a zone reference.

        Known codes that have no row yet are created on the spot; anything
        that does not normalize to zoneA..zoneE returns (None, False).
        """
        code = normalize_zone_code(raw_code)
        if code is None:
            return None, False

        zone = await self.get_zone(code)
        if zone:
            return zone, False

        zone = Zone(code=code, name=ZONE_NAMES[code], pincodes=[])
        self.db.add(zone)
        await self.db.flush()
        logger.info(f"Auto-created zone {code}")
        return zone, True

    async def set_zone_pincodes(self, raw_code: str, pincodes: Iterable[str]) -> Zone:
        """Replace a zone's pincode membership."""
        zone, _ = await self.ensure_zone(raw_code)
        if zone is None:
            raise ValueError(f"Unknown zone code '{raw_code}'")
        zone.pincodes = sorted(set(pincodes))
        await self.db.commit()
        return zone

    async def get_pincode(self, pincode: str) -> Optional[Pincode]:
        return await self.db.get(Pincode, pincode)

    async def upsert_pincodes(self, rows: Iterable[PincodeInfo]) -> Dict[str, int]:
        """Insert or update reference rows. Caller reloads the resolver afterwards."""
        rows = list(rows)
        existing_result = await self.db.execute(
            select(Pincode).where(Pincode.pincode.in_([r.pincode for r in rows]))
        )
        existing = {p.pincode: p for p in existing_result.scalars().all()}

        created = updated = 0
        for row in rows:
            record = existing.get(row.pincode)
            if record is None:
                record = Pincode(pincode=row.pincode)
                self.db.add(record)
                existing[row.pincode] = record
                created += 1
            else:
                updated += 1
            record.circle = row.circle
            record.district = row.district
            record.city = row.city
            record.state = row.state
            record.region = row.region
            record.is_oda = row.is_oda

        await self.db.commit()
        logger.info(f"Pincode import: {created} created, {updated} updated")
        return {"created": created, "updated": updated}
