"""
Pricing Engine.

Prices one shipment against one rate card, in this order:
0. Chargeable weight (actual vs volumetric)
1. Zone determination (validated external override, else internal)
2. Freight (base bracket, then per-kg weight rules above it)
3. Zone charge (flat add-on or freight multiplier, per card mode)
4. Fuel surcharge
5. COD surcharge
6. Remote-area surcharge
7-8. Subtotal and minimum-call floor
9. GST and total

Every step works on unrounded Decimals; amounts are rounded to 2 places only
when the breakdown is serialized.
"""
import logging
import uuid
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional, Tuple, Union

from shiprate.config import settings
from shiprate.core.enum_utils import is_canonical_zone_code
from shiprate.core.exceptions import UnknownPincode
from shiprate.models.rate_card import ZonePricingMode, FuelSurchargeBase
from shiprate.services.rate_card_snapshot import RateCardSnapshot, to_decimal
from shiprate.services.zone_resolver import ZoneResolver

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")
HUNDRED = Decimal("100")


class PaymentMode(str, Enum):
    PREPAID = "prepaid"
    COD = "cod"


class ZoneSource(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


class NotApplicableKind(str, Enum):
    NO_MATCHING_RATE = "NO_MATCHING_RATE"
    INVALID_RATE_CARD = "INVALID_RATE_CARD"


def money(value: Decimal) -> float:
    return float(value.quantize(MONEY, rounding=ROUND_HALF_UP))


class PriceRequest:
    """Request object for a single price calculation."""
    def __init__(
        self,
        company_id: uuid.UUID,
        origin_pincode: str,
        destination_pincode: str,
        weight_kg: Any,
        payment_mode: str = PaymentMode.PREPAID.value,
        order_value: Any = None,
        service_type: Optional[str] = None,
        carrier_code: Optional[str] = None,
        rate_card_id: Optional[uuid.UUID] = None,
        tier: Optional[str] = None,
        external_zone_override: Any = None,
        is_remote_location: Optional[bool] = None,
        length_cm: Any = None,
        width_cm: Any = None,
        height_cm: Any = None,
        is_return: bool = False,
    ):
        self.company_id = company_id
        self.origin_pincode = str(origin_pincode).strip()
        self.destination_pincode = str(destination_pincode).strip()
        self.weight_kg = to_decimal(weight_kg)
        self.payment_mode = str(payment_mode).lower()
        self.order_value = to_decimal(order_value) if order_value is not None else None
        self.service_type = service_type.upper() if service_type else None
        self.carrier_code = carrier_code
        self.rate_card_id = rate_card_id
        self.tier = tier
        self.external_zone_override = external_zone_override
        self.is_remote_location = is_remote_location
        self.length_cm = to_decimal(length_cm) if length_cm is not None else None
        self.width_cm = to_decimal(width_cm) if width_cm is not None else None
        self.height_cm = to_decimal(height_cm) if height_cm is not None else None
        self.is_return = is_return

    @property
    def is_cod(self) -> bool:
        return self.payment_mode == PaymentMode.COD.value

    def for_carrier(self, carrier_code: str, service_type: str) -> "PriceRequest":
        """Copy of this request pinned to one carrier and service type."""
        clone = PriceRequest.__new__(PriceRequest)
        clone.__dict__.update(self.__dict__)
        clone.carrier_code = carrier_code
        clone.service_type = service_type
        return clone


class PriceBreakdown:
    """Itemized price for one carrier/service on one card."""
    def __init__(
        self,
        carrier_code: str,
        service_type: str,
        rate_card: RateCardSnapshot,
        zone: str,
        zone_source: str,
        chargeable_weight: Decimal,
    ):
        self.carrier_code = carrier_code
        self.carrier_name: Optional[str] = None
        self.service_type = service_type
        self.rate_card_id = rate_card.id
        self.rate_card_name = rate_card.name
        self.rate_card_version = rate_card.version
        self.zone = zone
        self.zone_source = zone_source
        self.chargeable_weight = chargeable_weight
        self.pricing_provider = PricingEngine.PRICING_PROVIDER
        self.freight: Decimal = Decimal("0")
        self.zone_charge: Decimal = Decimal("0")
        self.fuel_charge: Decimal = Decimal("0")
        self.cod_charge: Decimal = Decimal("0")
        self.remote_area_charge: Decimal = Decimal("0")
        self.subtotal: Decimal = Decimal("0")
        self.minimum_call_applied: bool = False
        self.tax: Decimal = Decimal("0")
        self.total: Decimal = Decimal("0")
        self.transit_days: Optional[int] = None
        self.tags: list = []

    def to_dict(self) -> dict:
        return {
            "carrier": self.carrier_code,
            "carrier_name": self.carrier_name,
            "service_type": self.service_type,
            "rate_card_id": str(self.rate_card_id),
            "rate_card_name": self.rate_card_name,
            "rate_card_version": self.rate_card_version,
            "zone": self.zone,
            "zone_source": self.zone_source,
            "pricing_provider": self.pricing_provider,
            "chargeable_weight": float(self.chargeable_weight),
            "transit_days": self.transit_days,
            "breakdown": {
                "freight": money(self.freight),
                "zone_charge": money(self.zone_charge),
                "fuel_charge": money(self.fuel_charge),
                "cod_charge": money(self.cod_charge),
                "remote_area_charge": money(self.remote_area_charge),
                "subtotal": money(self.subtotal),
                "minimum_call_applied": self.minimum_call_applied,
                "tax": money(self.tax),
                "total": money(self.total),
            },
            "total": money(self.total),
            "tags": list(self.tags),
        }


class NotApplicable:
    """This card cannot price the shipment for this carrier; excluded, not an error."""
    def __init__(
        self,
        reason: str,
        kind: NotApplicableKind = NotApplicableKind.NO_MATCHING_RATE,
        carrier_code: Optional[str] = None,
        service_type: Optional[str] = None,
    ):
        self.reason = reason
        self.kind = kind
        self.carrier_code = carrier_code
        self.service_type = service_type

    def to_dict(self) -> dict:
        return {
            "applicable": False,
            "kind": self.kind.value,
            "reason": self.reason,
            "carrier": self.carrier_code,
            "service_type": self.service_type,
        }


PricingResult = Union[PriceBreakdown, NotApplicable]


class PricingEngine:
    """
    Stateless shipment pricing over a RateCardSnapshot.

    Holds only the zone resolver; nothing here writes to shared state, so
    one engine can serve concurrent calculations.
    """

    PRICING_PROVIDER = "internal"

    def __init__(self, zone_resolver: ZoneResolver, volumetric_divisor: Optional[int] = None):
        self.zone_resolver = zone_resolver
        self.volumetric_divisor = Decimal(volumetric_divisor or settings.VOLUMETRIC_DIVISOR)

    # ============================================
    # WEIGHT
    # ============================================

    def get_chargeable_weight(self, request: PriceRequest) -> Decimal:
        """Max of actual and volumetric weight."""
        if request.weight_kg <= 0:
            raise ValueError("weight must be greater than 0")
        dims = (request.length_cm, request.width_cm, request.height_cm)
        if not all(d is not None and d > 0 for d in dims):
            return request.weight_kg
        volumetric = request.length_cm * request.width_cm * request.height_cm / self.volumetric_divisor
        return max(request.weight_kg, volumetric)

    # ============================================
    # ZONE
    # ============================================

    def determine_zone(self, request: PriceRequest) -> Tuple[str, str]:
        """
        Returns (zone, zone_source).

        A well-formed override wins. Anything else is logged, dropped and
        replaced by internal classification.
        """
        override = request.external_zone_override
        if override is not None:
            if is_canonical_zone_code(override):
                return override, ZoneSource.EXTERNAL.value
            logger.warning(
                f"Discarding malformed external zone override {str(override)[:40]!r} "
                f"for {request.origin_pincode}->{request.destination_pincode}"
            )

        classification = self.zone_resolver.classify_zone(
            request.origin_pincode, request.destination_pincode
        )
        return classification.zone_code, ZoneSource.INTERNAL.value

    def is_remote(self, request: PriceRequest) -> bool:
        """Explicit flag wins; otherwise the destination's ODA marker."""
        if request.is_remote_location is not None:
            return bool(request.is_remote_location)
        try:
            return self.zone_resolver.resolve_pincode(request.destination_pincode).is_oda
        except UnknownPincode:
            return False

    # ============================================
    # CALCULATION
    # ============================================

    def calculate(
        self,
        request: PriceRequest,
        rate_card: RateCardSnapshot,
        on_date: Optional[date] = None,
        default_transit_days: Optional[int] = None,
        zone: Optional[Tuple[str, str]] = None,
    ) -> PricingResult:
        """
        Price request.carrier_code / request.service_type on rate_card.

        `zone` is a precomputed (zone, zone_source) pair; ranking classifies
        once and passes it to every carrier.
        """
        carrier = request.carrier_code
        service_type = request.service_type
        if not carrier or not service_type:
            raise ValueError("carrier and service type are required to calculate a price")

        if not rate_card.is_effective(on_date or date.today()):
            return NotApplicable(
                f"Rate card '{rate_card.name}' v{rate_card.version} is not active for this date",
                NotApplicableKind.INVALID_RATE_CARD,
                carrier,
                service_type,
            )

        weight = self.get_chargeable_weight(request)
        zone, zone_source = zone or self.determine_zone(request)

        freight = self._calculate_freight(rate_card, carrier, service_type, weight)
        if freight is None:
            return NotApplicable(
                f"No rate for {carrier}/{service_type} at {weight} kg",
                NotApplicableKind.NO_MATCHING_RATE,
                carrier,
                service_type,
            )

        result = PriceBreakdown(carrier, service_type, rate_card, zone, zone_source, weight)
        result.freight = freight

        result.zone_charge, transit_days = self._calculate_zone_charge(
            rate_card, zone, carrier, service_type, freight
        )
        result.transit_days = transit_days if transit_days is not None else default_transit_days

        fuel_base = freight
        if rate_card.fuel_surcharge_base == FuelSurchargeBase.FREIGHT_ZONE.value:
            fuel_base = freight + result.zone_charge
        result.fuel_charge = rate_card.fuel_surcharge_percent / HUNDRED * fuel_base

        if request.is_cod:
            result.cod_charge = self._calculate_cod_charge(rate_card, request.order_value)

        if rate_card.remote_area_enabled and self.is_remote(request):
            result.remote_area_charge = rate_card.remote_area_surcharge

        subtotal = (
            result.freight
            + result.zone_charge
            + result.fuel_charge
            + result.cod_charge
            + result.remote_area_charge
        )
        if subtotal < rate_card.minimum_call:
            subtotal = rate_card.minimum_call
            result.minimum_call_applied = True
        result.subtotal = subtotal

        result.tax = subtotal * rate_card.gst_percent / HUNDRED
        result.total = subtotal + result.tax
        return result

    def _calculate_freight(
        self,
        rate_card: RateCardSnapshot,
        carrier: str,
        service_type: str,
        weight: Decimal,
    ) -> Optional[Decimal]:
        """
        Base bracket containing the weight, or the highest bracket below it
        plus per-kg weight rules covering the excess. None if not priceable.
        """
        brackets = rate_card.base_rates_for(carrier, service_type)
        for bracket in brackets:
            if bracket.contains(weight):
                return bracket.base_price

        below = [b for b in brackets if b.max_weight <= weight]
        if not below:
            return None
        bracket = max(below, key=lambda b: b.max_weight)

        freight = bracket.base_price
        cursor = bracket.max_weight
        for rule in rate_card.weight_rules_for(carrier, service_type):
            if cursor >= weight:
                break
            if rule.max_weight <= cursor:
                continue
            if rule.min_weight > cursor:
                # Gap between the bracket ceiling and the next rule
                return None
            upper = min(rule.max_weight, weight)
            freight += rule.price_per_kg * (upper - cursor)
            cursor = upper

        if cursor < weight:
            return None
        return freight

    def _calculate_zone_charge(
        self,
        rate_card: RateCardSnapshot,
        zone: str,
        carrier: str,
        service_type: str,
        freight: Decimal,
    ) -> Tuple[Decimal, Optional[int]]:
        rule = rate_card.zone_rule_for(zone, carrier, service_type)
        transit_days = rule.transit_days if rule else None

        if rate_card.zone_pricing_mode == ZonePricingMode.FLAT.value:
            return (rule.additional_price if rule else Decimal("0")), transit_days

        if rate_card.zone_pricing_mode == ZonePricingMode.MULTIPLIER.value:
            factor = rate_card.zone_multipliers.get(zone, Decimal("1"))
            return freight * factor - freight, transit_days

        return Decimal("0"), transit_days

    def _calculate_cod_charge(self, rate_card: RateCardSnapshot, order_value: Optional[Decimal]) -> Decimal:
        if order_value is None:
            raise ValueError("order_value is required for COD shipments")

        for slab in rate_card.cod_slabs:
            if slab.contains(order_value):
                return slab.charge(order_value)

        if rate_card.cod_percentage is not None or rate_card.cod_minimum_charge is not None:
            percent_charge = order_value * (rate_card.cod_percentage or Decimal("0")) / HUNDRED
            return max(percent_charge, rate_card.cod_minimum_charge or Decimal("0"))

        return Decimal("0")
