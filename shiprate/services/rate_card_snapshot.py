"""
Immutable, Decimal-typed view of a rate card.

The calculator only ever sees these snapshots, never ORM objects, so a
calculation cannot touch the session and a cached card cannot change
underneath a running request.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from shiprate.models.rate_card import (
    RateCard, RateCardStatus, ZonePricingMode, FuelSurchargeBase, ChargeType,
)


def to_decimal(value, default: str = "0") -> Decimal:
    if value is None:
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def windows_overlap(min1: Decimal, max1: Decimal, min2: Decimal, max2: Decimal) -> bool:
    """Half-open [min, max) windows overlap; touching ends do not."""
    return min1 < max2 and min2 < max1


@dataclass(frozen=True)
class BaseRateEntry:
    carrier_code: str
    service_type: str
    min_weight: Decimal
    max_weight: Decimal
    base_price: Decimal

    def contains(self, weight: Decimal) -> bool:
        return self.min_weight <= weight < self.max_weight


@dataclass(frozen=True)
class WeightRuleEntry:
    carrier_code: str
    service_type: str
    min_weight: Decimal
    max_weight: Decimal
    price_per_kg: Decimal


@dataclass(frozen=True)
class ZoneRuleEntry:
    zone_code: str
    carrier_code: str
    service_type: str
    additional_price: Decimal
    transit_days: Optional[int] = None


@dataclass(frozen=True)
class CodSlabEntry:
    min_value: Decimal
    max_value: Decimal
    charge_type: str
    value: Decimal

    def contains(self, order_value: Decimal) -> bool:
        return self.min_value <= order_value < self.max_value

    def charge(self, order_value: Decimal) -> Decimal:
        if self.charge_type == ChargeType.PERCENTAGE.value:
            return order_value * self.value / Decimal("100")
        return self.value


@dataclass(frozen=True)
class RateCardSnapshot:
    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    version: int = 1
    status: str = RateCardStatus.ACTIVE.value
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    zone_pricing_mode: str = ZonePricingMode.NONE.value
    base_rates: Tuple[BaseRateEntry, ...] = ()
    weight_rules: Tuple[WeightRuleEntry, ...] = ()
    zone_rules: Tuple[ZoneRuleEntry, ...] = ()
    zone_multipliers: Dict[str, Decimal] = field(default_factory=dict)
    cod_slabs: Tuple[CodSlabEntry, ...] = ()
    minimum_call: Decimal = Decimal("0")
    fuel_surcharge_percent: Decimal = Decimal("0")
    fuel_surcharge_base: str = FuelSurchargeBase.FREIGHT.value
    cod_percentage: Optional[Decimal] = None
    cod_minimum_charge: Optional[Decimal] = None
    remote_area_enabled: bool = False
    remote_area_surcharge: Decimal = Decimal("0")
    gst_percent: Decimal = Decimal("18")

    def is_effective(self, on: date) -> bool:
        """ACTIVE and inside the effective-date window."""
        if self.status != RateCardStatus.ACTIVE.value:
            return False
        if self.effective_from and on < self.effective_from:
            return False
        if self.effective_to and on > self.effective_to:
            return False
        return True

    def base_rates_for(self, carrier_code: str, service_type: str) -> List[BaseRateEntry]:
        return [
            b for b in self.base_rates
            if b.carrier_code == carrier_code and b.service_type == service_type
        ]

    def weight_rules_for(self, carrier_code: str, service_type: str) -> List[WeightRuleEntry]:
        rules = [
            r for r in self.weight_rules
            if r.carrier_code == carrier_code and r.service_type == service_type
        ]
        return sorted(rules, key=lambda r: r.min_weight)

    def zone_rule_for(self, zone_code: str, carrier_code: str, service_type: str) -> Optional[ZoneRuleEntry]:
        for rule in self.zone_rules:
            if (
                rule.zone_code == zone_code
                and rule.carrier_code == carrier_code
                and rule.service_type == service_type
            ):
                return rule
        return None

    def priced_keys(self) -> Iterable[Tuple[str, str]]:
        """(carrier, service_type) pairs that have at least one base bracket."""
        return sorted({(b.carrier_code, b.service_type) for b in self.base_rates})

    @classmethod
    def from_model(cls, card: RateCard) -> "RateCardSnapshot":
        """Build from a RateCard whose child collections are loaded."""
        return cls(
            id=card.id,
            company_id=card.company_id,
            name=card.name,
            version=card.version or 1,
            status=card.status,
            effective_from=card.effective_from,
            effective_to=card.effective_to,
            zone_pricing_mode=card.zone_pricing_mode or ZonePricingMode.NONE.value,
            base_rates=tuple(
                BaseRateEntry(
                    carrier_code=b.carrier_code,
                    service_type=b.service_type,
                    min_weight=to_decimal(b.min_weight_kg),
                    max_weight=to_decimal(b.max_weight_kg),
                    base_price=to_decimal(b.base_price),
                )
                for b in card.base_rates
            ),
            weight_rules=tuple(
                WeightRuleEntry(
                    carrier_code=r.carrier_code,
                    service_type=r.service_type,
                    min_weight=to_decimal(r.min_weight_kg),
                    max_weight=to_decimal(r.max_weight_kg),
                    price_per_kg=to_decimal(r.price_per_kg),
                )
                for r in card.weight_rules
            ),
            zone_rules=tuple(
                ZoneRuleEntry(
                    zone_code=z.zone_code,
                    carrier_code=z.carrier_code,
                    service_type=z.service_type,
                    additional_price=to_decimal(z.additional_price),
                    transit_days=z.transit_days,
                )
                for z in card.zone_rules
            ),
            zone_multipliers={m.zone_code: to_decimal(m.factor, "1") for m in card.zone_multipliers},
            cod_slabs=tuple(
                CodSlabEntry(
                    min_value=to_decimal(s.min_value),
                    max_value=to_decimal(s.max_value),
                    charge_type=s.charge_type,
                    value=to_decimal(s.value),
                )
                for s in sorted(card.cod_slabs, key=lambda s: (s.sort_order, s.min_value))
            ),
            minimum_call=to_decimal(card.minimum_call),
            fuel_surcharge_percent=to_decimal(card.fuel_surcharge_percent),
            fuel_surcharge_base=card.fuel_surcharge_base or FuelSurchargeBase.FREIGHT.value,
            cod_percentage=to_decimal(card.cod_percentage) if card.cod_percentage is not None else None,
            cod_minimum_charge=(
                to_decimal(card.cod_minimum_charge) if card.cod_minimum_charge is not None else None
            ),
            remote_area_enabled=bool(card.remote_area_enabled),
            remote_area_surcharge=to_decimal(card.remote_area_surcharge),
            gst_percent=to_decimal(card.gst_percent, "18"),
        )
