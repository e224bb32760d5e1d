"""
In-process cache of rate card snapshots.

Entries never expire on their own. Rate card edits only become visible to
pricing after an explicit invalidate_company() / clear(), which keeps every
calculation deterministic for the lifetime of a loaded snapshot.

Usage:
    cache = RateCardCache()
    snapshot = await cache.get_snapshot(db, rate_card_id)
    snapshot = await cache.get_company_default(db, company_id, "STANDARD")
    await cache.invalidate_company(company_id)
"""
import asyncio
import logging
import uuid
from typing import Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from shiprate.services.rate_card_service import RateCardService
from shiprate.services.rate_card_snapshot import RateCardSnapshot

logger = logging.getLogger(__name__)


class RateCardCache:
    """Snapshots by card id, plus company default card ids by (company, tier)."""

    def __init__(self):
        self._snapshots: Dict[uuid.UUID, RateCardSnapshot] = {}
        self._defaults: Dict[Tuple[uuid.UUID, str], Optional[uuid.UUID]] = {}
        self._lock = asyncio.Lock()

    async def get_snapshot(self, db: AsyncSession, rate_card_id: uuid.UUID) -> Optional[RateCardSnapshot]:
        snapshot = self._snapshots.get(rate_card_id)
        if snapshot is not None:
            return snapshot

        snapshot = await RateCardService(db).load_snapshot(rate_card_id)
        if snapshot is not None:
            async with self._lock:
                self._snapshots[rate_card_id] = snapshot
        return snapshot

    async def get_company_default(
        self,
        db: AsyncSession,
        company_id: uuid.UUID,
        tier: str,
    ) -> Optional[RateCardSnapshot]:
        key = (company_id, tier)
        if key in self._defaults:
            rate_card_id = self._defaults[key]
            if rate_card_id is None:
                return None
            return await self.get_snapshot(db, rate_card_id)

        snapshot = await RateCardService(db).load_company_default_snapshot(company_id, tier)
        async with self._lock:
            self._defaults[key] = snapshot.id if snapshot else None
            if snapshot is not None:
                self._snapshots[snapshot.id] = snapshot
        return snapshot

    async def invalidate_company(self, company_id: uuid.UUID) -> int:
        """Drop every cached entry of one company. Returns the number removed."""
        async with self._lock:
            card_ids = [cid for cid, snap in self._snapshots.items() if snap.company_id == company_id]
            for card_id in card_ids:
                del self._snapshots[card_id]
            default_keys = [key for key in self._defaults if key[0] == company_id]
            for key in default_keys:
                del self._defaults[key]
        logger.info(f"Invalidated pricing cache for company {company_id} ({len(card_ids)} cards)")
        return len(card_ids) + len(default_keys)

    async def clear(self) -> None:
        async with self._lock:
            self._snapshots.clear()
            self._defaults.clear()
        logger.info("Pricing cache cleared")

    def __len__(self) -> int:
        return len(self._snapshots)
