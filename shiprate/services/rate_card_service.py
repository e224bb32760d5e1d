"""Rate Card Store: async CRUD, versioning and company assignment."""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
import uuid

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from shiprate.core.exceptions import RateCardNotFound
from shiprate.models.rate_card import (
    RateCard, BaseRate, WeightRule, ZoneRule, ZoneMultiplier,
    CodSurchargeSlab, CompanyRateCardAssignment, RateCardStatus, ZonePricingMode,
)
from shiprate.schemas.rate_card import RateCardCreate
from shiprate.services.rate_card_snapshot import RateCardSnapshot, windows_overlap

logger = logging.getLogger(__name__)


def find_overlapping_windows(entries: Iterable) -> List[str]:
    """
    Overlap check for weight windows sharing a (carrier, service_type).

    Entries need carrier_code, service_type, min_weight_kg and max_weight_kg.
    Returns one message per overlapping pair.
    """
    errors = []
    seen = {}
    for entry in entries:
        key = (entry.carrier_code, entry.service_type)
        for other in seen.get(key, []):
            if windows_overlap(
                entry.min_weight_kg, entry.max_weight_kg,
                other.min_weight_kg, other.max_weight_kg,
            ):
                errors.append(
                    f"{key[0]}/{key[1]}: weight window [{entry.min_weight_kg}, {entry.max_weight_kg}) "
                    f"overlaps [{other.min_weight_kg}, {other.max_weight_kg})"
                )
        seen.setdefault(key, []).append(entry)
    return errors


class RateCardService:
    """Service for rate card persistence."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def _detail_options():
        return (
            selectinload(RateCard.base_rates),
            selectinload(RateCard.weight_rules),
            selectinload(RateCard.zone_rules),
            selectinload(RateCard.zone_multipliers),
            selectinload(RateCard.cod_slabs),
        )

    # ============================================
    # READ
    # ============================================

    async def get_rate_card(
        self,
        rate_card_id: uuid.UUID,
        include_details: bool = False
    ) -> Optional[RateCard]:
        """Get rate card by ID."""
        stmt = select(RateCard).where(RateCard.id == rate_card_id)
        if include_details:
            stmt = stmt.options(*self._detail_options())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_by_name(
        self,
        company_id: uuid.UUID,
        name: str,
        include_details: bool = True
    ) -> Optional[RateCard]:
        """Newest version of a named card for the company."""
        stmt = (
            select(RateCard)
            .where(RateCard.company_id == company_id, RateCard.name == name)
            .order_by(RateCard.version.desc())
            .limit(1)
        )
        if include_details:
            stmt = stmt.options(*self._detail_options())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_rate_cards(
        self,
        company_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        effective_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[RateCard], int]:
        """List rate cards with filters."""
        stmt = select(RateCard)
        count_stmt = select(func.count(RateCard.id))

        filters = []
        if company_id:
            filters.append(RateCard.company_id == company_id)
        if status:
            filters.append(RateCard.status == status)
        if effective_date:
            filters.append(or_(RateCard.effective_from.is_(None), RateCard.effective_from <= effective_date))
            filters.append(or_(RateCard.effective_to.is_(None), RateCard.effective_to >= effective_date))

        if filters:
            stmt = stmt.where(and_(*filters))
            count_stmt = count_stmt.where(and_(*filters))

        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        stmt = stmt.order_by(RateCard.name, RateCard.version.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    # ============================================
    # WRITE
    # ============================================

    async def create_rate_card(self, company_id: uuid.UUID, data: RateCardCreate) -> RateCard:
        """Create a rate card with its full rule set."""
        existing = await self.get_latest_by_name(company_id, data.name, include_details=False)
        if existing:
            raise ValueError(f"Rate card '{data.name}' already exists for this company")

        has_flat_prices = any(z.additional_price for z in data.zone_rules)
        if has_flat_prices and data.zone_multipliers:
            raise ValueError("A rate card can use flat zone prices or zone multipliers, not both")

        errors = find_overlapping_windows(data.base_rates) + find_overlapping_windows(data.weight_rules)
        if errors:
            raise ValueError("; ".join(errors))

        mode = data.zone_pricing_mode
        if mode is None:
            if data.zone_multipliers:
                mode = ZonePricingMode.MULTIPLIER
            elif data.zone_rules:
                mode = ZonePricingMode.FLAT
            else:
                mode = ZonePricingMode.NONE

        rate_card = RateCard(
            company_id=company_id,
            **data.model_dump(exclude={
                "base_rates", "weight_rules", "zone_rules", "zone_multipliers",
                "cod_slabs", "zone_pricing_mode", "status",
            }),
            status=data.status.value,
            zone_pricing_mode=mode.value,
        )
        for item in data.base_rates:
            rate_card.base_rates.append(BaseRate(**item.model_dump()))
        for item in data.weight_rules:
            rate_card.weight_rules.append(WeightRule(**item.model_dump()))
        for item in data.zone_rules:
            rate_card.zone_rules.append(ZoneRule(**item.model_dump()))
        for item in data.zone_multipliers:
            rate_card.zone_multipliers.append(ZoneMultiplier(**item.model_dump()))
        for index, item in enumerate(data.cod_slabs):
            rate_card.cod_slabs.append(CodSurchargeSlab(
                sort_order=index,
                charge_type=item.charge_type.value,
                **item.model_dump(exclude={"charge_type"}),
            ))

        self.db.add(rate_card)
        await self.db.commit()
        logger.info(f"Created rate card '{rate_card.name}' for company {company_id}")

        return await self.get_rate_card(rate_card.id, include_details=True)

    async def update_status(self, rate_card_id: uuid.UUID, status: RateCardStatus) -> RateCard:
        """Activate, deactivate or expire a card."""
        rate_card = await self.get_rate_card(rate_card_id)
        if not rate_card:
            raise RateCardNotFound(f"Rate card {rate_card_id} not found")

        rate_card.status = status.value
        await self.db.commit()
        return rate_card

    async def lock_rate_card(self, rate_card_id: uuid.UUID) -> RateCard:
        """Freeze a card once a booking references it."""
        rate_card = await self.get_rate_card(rate_card_id)
        if not rate_card:
            raise RateCardNotFound(f"Rate card {rate_card_id} not found")

        rate_card.is_locked = True
        await self.db.commit()
        return rate_card

    async def supersede(self, rate_card: RateCard) -> RateCard:
        """
        Copy a locked card into version + 1 and retire the original.

        The caller commits. `rate_card` must have its details loaded.
        """
        new_card = RateCard(
            company_id=rate_card.company_id,
            name=rate_card.name,
            description=rate_card.description,
            version=rate_card.version + 1,
            status=rate_card.status,
            effective_from=rate_card.effective_from,
            effective_to=rate_card.effective_to,
            zone_pricing_mode=rate_card.zone_pricing_mode,
            minimum_call=rate_card.minimum_call,
            fuel_surcharge_percent=rate_card.fuel_surcharge_percent,
            fuel_surcharge_base=rate_card.fuel_surcharge_base,
            cod_percentage=rate_card.cod_percentage,
            cod_minimum_charge=rate_card.cod_minimum_charge,
            remote_area_enabled=rate_card.remote_area_enabled,
            remote_area_surcharge=rate_card.remote_area_surcharge,
            gst_percent=rate_card.gst_percent,
            # Collections start loaded so later replaces never lazy-load
            base_rates=[],
            weight_rules=[],
            zone_rules=[],
            zone_multipliers=[],
            cod_slabs=[],
        )
        for b in rate_card.base_rates:
            new_card.base_rates.append(BaseRate(
                carrier_code=b.carrier_code, service_type=b.service_type,
                min_weight_kg=b.min_weight_kg, max_weight_kg=b.max_weight_kg,
                base_price=b.base_price,
            ))
        for r in rate_card.weight_rules:
            new_card.weight_rules.append(WeightRule(
                carrier_code=r.carrier_code, service_type=r.service_type,
                min_weight_kg=r.min_weight_kg, max_weight_kg=r.max_weight_kg,
                price_per_kg=r.price_per_kg,
            ))
        for z in rate_card.zone_rules:
            new_card.zone_rules.append(ZoneRule(
                zone_code=z.zone_code, carrier_code=z.carrier_code, service_type=z.service_type,
                additional_price=z.additional_price, transit_days=z.transit_days,
            ))
        for m in rate_card.zone_multipliers:
            new_card.zone_multipliers.append(ZoneMultiplier(zone_code=m.zone_code, factor=m.factor))
        for s in rate_card.cod_slabs:
            new_card.cod_slabs.append(CodSurchargeSlab(
                sort_order=s.sort_order, min_value=s.min_value, max_value=s.max_value,
                charge_type=s.charge_type, value=s.value,
            ))

        rate_card.status = RateCardStatus.INACTIVE.value
        self.db.add(new_card)
        await self.db.flush()

        # Assignments follow the live version
        result = await self.db.execute(
            select(CompanyRateCardAssignment).where(
                CompanyRateCardAssignment.rate_card_id == rate_card.id
            )
        )
        for assignment in result.scalars().all():
            assignment.rate_card_id = new_card.id

        logger.info(f"Rate card '{rate_card.name}' superseded: v{rate_card.version} -> v{new_card.version}")
        return new_card

    async def replace_entries(
        self,
        rate_card: RateCard,
        carrier_code: str,
        service_type: str,
        base_rates: List[BaseRate],
        weight_rules: List[WeightRule],
        zone_rules: List[ZoneRule],
    ) -> None:
        """Full replace of one (carrier, service_type) key. Other keys are untouched."""
        def keep(entry) -> bool:
            return not (entry.carrier_code == carrier_code and entry.service_type == service_type)

        rate_card.base_rates[:] = [e for e in rate_card.base_rates if keep(e)]
        rate_card.weight_rules[:] = [e for e in rate_card.weight_rules if keep(e)]
        rate_card.zone_rules[:] = [e for e in rate_card.zone_rules if keep(e)]
        # Orphans must be deleted before rows with the same unique key are inserted
        await self.db.flush()

        rate_card.base_rates.extend(base_rates)
        rate_card.weight_rules.extend(weight_rules)
        rate_card.zone_rules.extend(zone_rules)

    async def replace_zone_multipliers(self, rate_card: RateCard, multipliers: Dict[str, Decimal]) -> None:
        """Replace factors for the given zone codes."""
        rate_card.zone_multipliers[:] = [
            m for m in rate_card.zone_multipliers if m.zone_code not in multipliers
        ]
        await self.db.flush()
        rate_card.zone_multipliers.extend(
            ZoneMultiplier(zone_code=code, factor=factor) for code, factor in multipliers.items()
        )

    async def replace_cod_slabs(self, rate_card: RateCard, slabs: List[CodSurchargeSlab]) -> None:
        rate_card.cod_slabs[:] = []
        await self.db.flush()
        for index, slab in enumerate(slabs):
            slab.sort_order = index
            rate_card.cod_slabs.append(slab)

    # ============================================
    # COMPANY ASSIGNMENT
    # ============================================

    async def assign_to_company(
        self,
        company_id: uuid.UUID,
        rate_card_id: uuid.UUID,
        tier: str = "STANDARD",
    ) -> CompanyRateCardAssignment:
        """Set the company's default card for a tier, replacing any previous one."""
        rate_card = await self.get_rate_card(rate_card_id)
        if not rate_card:
            raise RateCardNotFound(f"Rate card {rate_card_id} not found")
        if rate_card.company_id != company_id:
            raise ValueError("Rate card belongs to another company")

        result = await self.db.execute(
            select(CompanyRateCardAssignment).where(
                CompanyRateCardAssignment.company_id == company_id,
                CompanyRateCardAssignment.tier == tier,
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment:
            assignment.rate_card_id = rate_card_id
        else:
            assignment = CompanyRateCardAssignment(
                company_id=company_id, tier=tier, rate_card_id=rate_card_id
            )
            self.db.add(assignment)

        await self.db.commit()
        return assignment

    async def get_company_default(
        self,
        company_id: uuid.UUID,
        tier: str = "STANDARD",
        include_details: bool = True,
    ) -> Optional[RateCard]:
        """Card assigned to the company for the tier, if any."""
        result = await self.db.execute(
            select(CompanyRateCardAssignment.rate_card_id).where(
                CompanyRateCardAssignment.company_id == company_id,
                CompanyRateCardAssignment.tier == tier,
            )
        )
        rate_card_id = result.scalar_one_or_none()
        if rate_card_id is None:
            return None
        return await self.get_rate_card(rate_card_id, include_details=include_details)

    # ============================================
    # SNAPSHOTS
    # ============================================

    async def load_snapshot(self, rate_card_id: uuid.UUID) -> Optional[RateCardSnapshot]:
        rate_card = await self.get_rate_card(rate_card_id, include_details=True)
        return RateCardSnapshot.from_model(rate_card) if rate_card else None

    async def load_company_default_snapshot(
        self,
        company_id: uuid.UUID,
        tier: str = "STANDARD",
    ) -> Optional[RateCardSnapshot]:
        rate_card = await self.get_company_default(company_id, tier)
        return RateCardSnapshot.from_model(rate_card) if rate_card else None
