"""
Rate Card Import Service

Bulk import of rate cards from CSV and Excel files.

Rows group by card name; each card is validated and upserted as one
aggregate. Rows are checked in a fixed order:
1. Required fields and number parsing (known carrier / service type)
2. Weight-window overlap within the card, per (carrier, service type)
3. Zone code existence (known codes auto-create their Zone row)

Invalid rows are reported and skipped; valid rows still import. A card
whose metadata columns disagree between rows, or which mixes flat zone
prices with zone multipliers, is rejected as a whole.

Expected columns (case and punctuation insensitive):
- Name, Carrier, Service Type, Base Price, Min Weight, Max Weight
- Zone, Zone Price, Status (optional)
- Price Per Kg: the row is a per-kg weight rule instead of a base bracket
- Transit Days, Zone Multiplier
- Effective From, Effective To, Minimum Call
- Fuel Surcharge, Fuel Surcharge Base, GST, Remote Area Surcharge
- COD Min, COD Max, COD Charge, COD Type
"""

import csv
import io
import logging
import re
from datetime import datetime, date
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Tuple
from uuid import UUID

import openpyxl
from sqlalchemy.ext.asyncio import AsyncSession

from shiprate.config import settings
from shiprate.core.enum_utils import normalize_choice
from shiprate.core.exceptions import RateCardImportError
from shiprate.models.rate_card import (
    RateCard, BaseRate, WeightRule, ZoneRule, CodSurchargeSlab,
    RateCardStatus, ServiceType, ZonePricingMode, FuelSurchargeBase, ChargeType,
)
from shiprate.schemas.rate_card import ImportResult, ImportRowError
from shiprate.services.carrier_service import CarrierService
from shiprate.services.rate_card_cache import RateCardCache
from shiprate.services.rate_card_service import RateCardService
from shiprate.services.rate_card_snapshot import windows_overlap
from shiprate.services.zone_service import ZoneService

logger = logging.getLogger(__name__)

# Normalized header -> field
COLUMN_ALIASES = {
    "name": "name",
    "ratecard": "name",
    "ratecardname": "name",
    "carrier": "carrier",
    "carriercode": "carrier",
    "servicetype": "service_type",
    "service": "service_type",
    "baseprice": "base_price",
    "minweight": "min_weight",
    "minweightkg": "min_weight",
    "maxweight": "max_weight",
    "maxweightkg": "max_weight",
    "zone": "zone",
    "zonecode": "zone",
    "zoneprice": "zone_price",
    "status": "status",
    "priceperkg": "price_per_kg",
    "transitdays": "transit_days",
    "zonemultiplier": "zone_multiplier",
    "effectivefrom": "effective_from",
    "effectiveto": "effective_to",
    "minimumcall": "minimum_call",
    "fuelsurcharge": "fuel_surcharge",
    "fuelsurchargepercent": "fuel_surcharge",
    "fuelsurchargebase": "fuel_surcharge_base",
    "gst": "gst",
    "gstpercent": "gst",
    "remoteareasurcharge": "remote_area_surcharge",
    "codmin": "cod_min",
    "codmax": "cod_max",
    "codcharge": "cod_charge",
    "codtype": "cod_type",
}

REQUIRED_COLUMNS = ["name", "carrier", "service_type", "base_price", "min_weight", "max_weight"]

DATE_FORMATS = ["%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d/%m/%y", "%d %b %Y", "%d-%b-%Y"]

# Decimal places each numeric field keeps once stored
DECIMAL_PLACES = {
    "min_weight": 3,
    "max_weight": 3,
    "base_price": 2,
    "price_per_kg": 2,
    "zone_price": 2,
    "zone_multiplier": 4,
    "minimum_call": 2,
    "fuel_surcharge": 3,
    "gst": 3,
    "remote_area_surcharge": 2,
    "cod_min": 2,
    "cod_max": 2,
    "cod_charge": 3,
}

BASE = "base"
WEIGHT = "weight"


def normalize_header(header: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header or "").lower())


def parse_number(value: Any) -> Optional[Decimal]:
    """Parse '1,250.50', '₹ 40', '18%' and native numbers. Blank is None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        text = str(value)
    else:
        text = re.sub(r"[₹%,\s]", "", str(value).strip())
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"'{value}' is not a number")
    if not number.is_finite():
        raise ValueError(f"'{value}' is not a number")
    return number


def decimal_places(number: Decimal) -> int:
    exponent = number.normalize().as_tuple().exponent
    return max(0, -exponent)


def parse_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"'{value}' is not a date")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ParsedRow:
    """One validated import row."""

    def __init__(self, row_number: int, name: str):
        self.row_number = row_number
        self.name = name
        self.carrier_code: str = ""
        self.service_type: str = ""
        self.kind: str = BASE
        self.min_weight: Decimal = Decimal("0")
        self.max_weight: Decimal = Decimal("0")
        self.price: Decimal = Decimal("0")
        self.zone_raw: Optional[str] = None
        self.zone_code: Optional[str] = None
        self.zone_price: Optional[Decimal] = None
        self.zone_multiplier: Optional[Decimal] = None
        self.transit_days: Optional[int] = None
        self.cod_slab: Optional[Tuple[Decimal, Decimal, str, Decimal]] = None
        self.metadata: Dict[str, Any] = {}

    @property
    def key(self) -> Tuple[str, str]:
        return self.carrier_code, self.service_type


class CardPlan:
    """Accumulated, validated content of one card within an import."""

    def __init__(self, name: str):
        self.name = name
        self.rows: List[ParsedRow] = []
        # kind -> (carrier, service) -> [(min, max, price)]
        self.windows: Dict[str, Dict[Tuple[str, str], List[Tuple[Decimal, Decimal, Decimal]]]] = {
            BASE: {},
            WEIGHT: {},
        }
        self.zone_rules: Dict[Tuple[str, str, str], Tuple[Decimal, Optional[int]]] = {}
        self.zone_multipliers: Dict[str, Decimal] = {}
        self.cod_slabs: List[Tuple[Decimal, Decimal, str, Decimal]] = []
        self.metadata: Dict[str, Any] = {}
        self.uses_zone_price = False
        self.uses_multiplier = False
        self.error: Optional[ImportRowError] = None

    @property
    def keys(self) -> List[Tuple[str, str]]:
        found = set(self.windows[BASE]) | set(self.windows[WEIGHT])
        found |= {(carrier, service) for _, carrier, service in self.zone_rules}
        return sorted(found)

    def check_window(self, row: ParsedRow) -> Optional[str]:
        """Overlap check against windows of the same kind already accepted for this card."""
        for low, high, price in self.windows[row.kind].get(row.key, []):
            if low == row.min_weight and high == row.max_weight:
                if price == row.price:
                    continue
                return (
                    f"Weight window [{row.min_weight}, {row.max_weight}) for {row.carrier_code}/"
                    f"{row.service_type} repeats with a different price ({row.price} vs {price})"
                )
            if windows_overlap(low, high, row.min_weight, row.max_weight):
                return (
                    f"Weight window [{row.min_weight}, {row.max_weight}) for {row.carrier_code}/"
                    f"{row.service_type} overlaps [{low}, {high})"
                )
        return None

    def check_zone_values(self, row: ParsedRow) -> Optional[str]:
        if row.zone_code is None:
            return None
        if row.zone_price is not None or row.transit_days is not None:
            existing = self.zone_rules.get((row.zone_code, row.carrier_code, row.service_type))
            if existing is not None:
                price, transit = existing
                if row.zone_price is not None and price != row.zone_price:
                    return f"Conflicting zone price for {row.zone_code} on {row.carrier_code}/{row.service_type}"
                if row.transit_days is not None and transit is not None and transit != row.transit_days:
                    return f"Conflicting transit days for {row.zone_code} on {row.carrier_code}/{row.service_type}"
        if row.zone_multiplier is not None:
            factor = self.zone_multipliers.get(row.zone_code)
            if factor is not None and factor != row.zone_multiplier:
                return f"Conflicting zone multiplier for {row.zone_code}"
        return None

    def add(self, row: ParsedRow) -> None:
        self.rows.append(row)
        windows = self.windows[row.kind].setdefault(row.key, [])
        if (row.min_weight, row.max_weight, row.price) not in windows:
            windows.append((row.min_weight, row.max_weight, row.price))

        if row.zone_code is not None:
            if row.zone_multiplier is not None:
                self.uses_multiplier = True
                self.zone_multipliers[row.zone_code] = row.zone_multiplier
            if row.zone_price is not None or row.transit_days is not None or row.zone_multiplier is None:
                rule_key = (row.zone_code, row.carrier_code, row.service_type)
                price, transit = self.zone_rules.get(rule_key, (Decimal("0"), None))
                if row.zone_price is not None:
                    self.uses_zone_price = True
                    price = row.zone_price
                if row.transit_days is not None:
                    transit = row.transit_days
                self.zone_rules[rule_key] = (price, transit)

        if row.cod_slab is not None and row.cod_slab not in self.cod_slabs:
            self.cod_slabs.append(row.cod_slab)

        for field, value in row.metadata.items():
            if field in self.metadata and self.metadata[field] != value:
                if self.error is None:
                    self.error = ImportRowError(
                        name=self.name,
                        row_number=row.row_number,
                        error=f"Conflicting '{field}' values across rows of rate card '{self.name}'",
                    )
                continue
            self.metadata.setdefault(field, value)

    def finalize(self) -> None:
        if self.error is None and self.uses_zone_price and self.uses_multiplier:
            self.error = ImportRowError(
                name=self.name,
                row_number=self.rows[0].row_number if self.rows else None,
                error=f"Rate card '{self.name}' mixes zone prices and zone multipliers",
            )


class RateCardImportService:
    """
    Service for importing rate cards from tabular files.
    """

    def __init__(self, db: AsyncSession, cache: Optional[RateCardCache] = None):
        self.db = db
        self.cache = cache
        self.rate_cards = RateCardService(db)
        self.zones = ZoneService(db)

    # ============================================
    # FILE PARSING
    # ============================================

    def parse_file(self, filename: str, content: bytes) -> List[Dict[str, Any]]:
        """Rows of a CSV or XLSX upload, keyed by original header."""
        filename = (filename or "").lower()
        if filename.endswith(".xlsx"):
            return self.parse_excel(content)
        if filename.endswith(".csv") or not filename:
            try:
                text = content.decode("utf-8-sig")
            except UnicodeDecodeError:
                text = content.decode("latin-1")
            return self.parse_csv(text)
        raise RateCardImportError("Unsupported file format. Please upload a CSV or XLSX file.")

    def parse_csv(self, content: str) -> List[Dict[str, Any]]:
        delimiter = ','
        first_line = content.split("\n", 1)[0]
        if '\t' in first_line:
            delimiter = '\t'
        elif ';' in first_line and ',' not in first_line:
            delimiter = ';'

        rows = list(csv.reader(io.StringIO(content), delimiter=delimiter))
        return self._rows_to_dicts(rows)

    def parse_excel(self, content: bytes, sheet_name: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(content), data_only=True, read_only=True)
        except Exception as e:
            raise RateCardImportError(f"Failed to read Excel file: {str(e)}")

        if sheet_name:
            if sheet_name not in workbook.sheetnames:
                raise RateCardImportError(f"Sheet '{sheet_name}' not found in workbook")
            sheet = workbook[sheet_name]
        else:
            sheet = workbook.active

        rows = [list(row) for row in sheet.iter_rows(values_only=True)]
        workbook.close()
        return self._rows_to_dicts(rows)

    def _rows_to_dicts(self, rows: List[List[Any]]) -> List[Dict[str, Any]]:
        if len(rows) < 2:
            raise RateCardImportError("File has no data rows")

        headers = [str(h).strip() if h is not None else "" for h in rows[0]]
        result = []
        for row in rows[1:]:
            result.append({
                header: row[idx] if idx < len(row) else None
                for idx, header in enumerate(headers)
                if header
            })
        return result

    # ============================================
    # ROW VALIDATION
    # ============================================

    def _normalize_row(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        row = {}
        for header, value in raw.items():
            field = COLUMN_ALIASES.get(normalize_header(header))
            if field and field not in row:
                row[field] = value
        return row

    def _parse_row(
        self,
        row_number: int,
        values: Dict[str, Any],
        carrier_codes: set,
    ) -> ParsedRow:
        """Step 1: presence and parsability. Raises ValueError with the first problem found."""
        name = str(values.get("name") or "").strip()
        parsed = ParsedRow(row_number, name)
        if not name:
            raise ValueError("Name is required")

        carrier = str(values.get("carrier") or "").strip().upper()
        if not carrier:
            raise ValueError("Carrier is required")
        if carrier not in carrier_codes:
            raise ValueError(f"Unknown carrier '{carrier}'")
        parsed.carrier_code = carrier

        service_type = normalize_choice(values.get("service_type"), ServiceType)
        if service_type is None:
            raise ValueError(f"Unknown service type '{values.get('service_type')}'")
        parsed.service_type = service_type.value

        min_weight = self._non_negative(values, "min_weight", "Min Weight")
        max_weight = self._non_negative(values, "max_weight", "Max Weight")
        if min_weight is None or max_weight is None:
            raise ValueError("Min Weight and Max Weight are required")
        if min_weight >= max_weight:
            raise ValueError(f"Min Weight ({min_weight}) must be less than Max Weight ({max_weight})")
        parsed.min_weight = min_weight
        parsed.max_weight = max_weight

        price_per_kg = self._non_negative(values, "price_per_kg", "Price Per Kg")
        if price_per_kg is not None:
            parsed.kind = WEIGHT
            parsed.price = price_per_kg
        else:
            base_price = self._non_negative(values, "base_price", "Base Price")
            if base_price is None:
                raise ValueError("Base Price is required")
            parsed.price = base_price

        zone = values.get("zone")
        if not _blank(zone):
            parsed.zone_raw = str(zone).strip()
        parsed.zone_price = self._non_negative(values, "zone_price", "Zone Price")
        multiplier = self._non_negative(values, "zone_multiplier", "Zone Multiplier")
        if multiplier is not None and multiplier <= 0:
            raise ValueError("Zone Multiplier must be greater than 0")
        parsed.zone_multiplier = multiplier
        transit = self._non_negative(values, "transit_days", "Transit Days")
        if transit is not None:
            if transit != transit.to_integral_value():
                raise ValueError("Transit Days must be a whole number")
            parsed.transit_days = int(transit)
        if parsed.zone_raw is None and (
            parsed.zone_price is not None or multiplier is not None or transit is not None
        ):
            raise ValueError("Zone is required when Zone Price, Zone Multiplier or Transit Days is set")

        parsed.cod_slab = self._parse_cod_slab(values)
        parsed.metadata = self._parse_metadata(values)
        return parsed

    def _non_negative(self, values: Dict[str, Any], field: str, label: str) -> Optional[Decimal]:
        try:
            number = parse_number(values.get(field))
        except ValueError:
            raise ValueError(f"{label}: '{values.get(field)}' is not a number")
        if number is not None and number < 0:
            raise ValueError(f"{label} must not be negative")
        places = DECIMAL_PLACES.get(field)
        if number is not None and places is not None and decimal_places(number) > places:
            raise ValueError(f"{label} allows at most {places} decimal places")
        return number

    def _parse_cod_slab(self, values: Dict[str, Any]) -> Optional[Tuple[Decimal, Decimal, str, Decimal]]:
        cod_min = self._non_negative(values, "cod_min", "COD Min")
        cod_max = self._non_negative(values, "cod_max", "COD Max")
        cod_charge = self._non_negative(values, "cod_charge", "COD Charge")
        if cod_min is None and cod_max is None and cod_charge is None:
            return None
        if cod_max is None or cod_charge is None:
            raise ValueError("COD Max and COD Charge are required for a COD slab")
        cod_min = cod_min or Decimal("0")
        if cod_min >= cod_max:
            raise ValueError("COD Min must be less than COD Max")

        charge_type = ChargeType.FLAT
        if not _blank(values.get("cod_type")):
            charge_type = normalize_choice(values.get("cod_type"), ChargeType)
            if charge_type is None:
                raise ValueError(f"Unknown COD Type '{values.get('cod_type')}'")
        return cod_min, cod_max, charge_type.value, cod_charge

    def _parse_metadata(self, values: Dict[str, Any]) -> Dict[str, Any]:
        metadata = {}

        if not _blank(values.get("status")):
            status = normalize_choice(values.get("status"), RateCardStatus)
            if status is None:
                raise ValueError(f"Unknown status '{values.get('status')}'")
            metadata["status"] = status.value

        for field in ("effective_from", "effective_to"):
            if not _blank(values.get(field)):
                metadata[field] = parse_date(values.get(field))

        numbers = [
            ("minimum_call", "minimum_call", "Minimum Call"),
            ("fuel_surcharge", "fuel_surcharge_percent", "Fuel Surcharge"),
            ("gst", "gst_percent", "GST"),
            ("remote_area_surcharge", "remote_area_surcharge", "Remote Area Surcharge"),
        ]
        for source, target, label in numbers:
            number = self._non_negative(values, source, label)
            if number is not None:
                metadata[target] = number

        if not _blank(values.get("fuel_surcharge_base")):
            base = normalize_choice(values.get("fuel_surcharge_base"), FuelSurchargeBase)
            if base is None:
                raise ValueError("Fuel Surcharge Base must be 'freight' or 'freight+zone'")
            metadata["fuel_surcharge_base"] = base.value

        if "effective_from" in metadata and "effective_to" in metadata:
            if metadata["effective_from"] > metadata["effective_to"]:
                raise ValueError("Effective From must not be after Effective To")
        return metadata

    # ============================================
    # IMPORT
    # ============================================

    async def import_file(
        self,
        company_id: UUID,
        filename: str,
        content: bytes,
        dry_run: bool = False,
    ) -> ImportResult:
        rows = self.parse_file(filename, content)
        return await self.import_rate_cards(company_id, rows, dry_run=dry_run)

    async def import_rate_cards(
        self,
        company_id: UUID,
        rows: List[Dict[str, Any]],
        dry_run: bool = False,
    ) -> ImportResult:
        """
        Validate and upsert rate cards from rows keyed by column header.

        Row numbers in errors count the header as row 1.
        """
        normalized = [self._normalize_row(raw) for raw in rows]
        if not any(not _blank(v) for row in normalized for v in row.values()):
            raise RateCardImportError("No rate card rows found")

        present = set()
        for row in normalized:
            present.update(row)
        missing = [c for c in REQUIRED_COLUMNS if c not in present]
        if missing:
            raise RateCardImportError(
                f"Missing required columns: {', '.join(missing)}",
                details={"missing": missing},
            )

        carrier_codes = await CarrierService(self.db).get_codes()
        result = ImportResult(dry_run=dry_run)
        plans: Dict[str, CardPlan] = {}

        for row_number, values in enumerate(normalized, start=2):
            if all(_blank(v) for v in values.values()):
                continue

            name = str(values.get("name") or "").strip() or None
            try:
                parsed = self._parse_row(row_number, values, carrier_codes)
            except ValueError as e:
                result.errors.append(ImportRowError(name=name, row_number=row_number, error=str(e)))
                continue

            plan = plans.setdefault(parsed.name, CardPlan(parsed.name))

            problem = plan.check_window(parsed)
            if problem is None and parsed.zone_raw is not None:
                zone, _ = await self.zones.ensure_zone(parsed.zone_raw)
                if zone is None:
                    problem = f"Unknown zone '{parsed.zone_raw}'"
                else:
                    parsed.zone_code = zone.code
            if problem is None:
                problem = plan.check_zone_values(parsed)

            if problem:
                result.errors.append(ImportRowError(name=name, row_number=row_number, error=problem))
                continue

            plan.add(parsed)

        for plan in plans.values():
            plan.finalize()
            if plan.error is not None:
                result.errors.append(plan.error)
                continue
            if not plan.rows:
                continue

            try:
                created = await self._apply_plan(company_id, plan)
            except ValueError as e:
                result.errors.append(ImportRowError(
                    name=plan.name, row_number=plan.rows[0].row_number, error=str(e)
                ))
                continue
            if created:
                result.created += 1
            else:
                result.updated += 1

        if dry_run:
            await self.db.rollback()
        else:
            await self.db.commit()
            if self.cache is not None:
                await self.cache.invalidate_company(company_id)

        logger.info(
            f"Rate card import for company {company_id}: {result.created} created, "
            f"{result.updated} updated, {len(result.errors)} errors"
            f"{' (dry run)' if dry_run else ''}"
        )
        return result

    async def _apply_plan(self, company_id: UUID, plan: CardPlan) -> bool:
        """Upsert one card. Returns True if a new card was created."""
        card = await self.rate_cards.get_latest_by_name(company_id, plan.name)
        created = card is None

        if created:
            card = RateCard(
                company_id=company_id,
                name=plan.name,
                version=1,
                status=RateCardStatus.ACTIVE.value,
                zone_pricing_mode=ZonePricingMode.NONE.value,
                gst_percent=Decimal(str(settings.DEFAULT_GST_PERCENT)),
                base_rates=[],
                weight_rules=[],
                zone_rules=[],
                zone_multipliers=[],
                cod_slabs=[],
            )
            self.db.add(card)
        else:
            self._check_zone_mode(card, plan)
            if card.is_locked:
                card = await self.rate_cards.supersede(card)

        if plan.uses_multiplier:
            card.zone_pricing_mode = ZonePricingMode.MULTIPLIER.value
        elif plan.uses_zone_price:
            card.zone_pricing_mode = ZonePricingMode.FLAT.value

        for field, value in plan.metadata.items():
            setattr(card, field, value)
        if "remote_area_surcharge" in plan.metadata:
            card.remote_area_enabled = plan.metadata["remote_area_surcharge"] > 0

        for carrier_code, service_type in plan.keys:
            key = (carrier_code, service_type)
            await self.rate_cards.replace_entries(
                card,
                carrier_code,
                service_type,
                base_rates=[
                    BaseRate(
                        carrier_code=carrier_code, service_type=service_type,
                        min_weight_kg=low, max_weight_kg=high, base_price=price,
                    )
                    for low, high, price in plan.windows[BASE].get(key, [])
                ],
                weight_rules=[
                    WeightRule(
                        carrier_code=carrier_code, service_type=service_type,
                        min_weight_kg=low, max_weight_kg=high, price_per_kg=price,
                    )
                    for low, high, price in plan.windows[WEIGHT].get(key, [])
                ],
                zone_rules=[
                    ZoneRule(
                        zone_code=zone_code, carrier_code=carrier_code, service_type=service_type,
                        additional_price=price, transit_days=transit,
                    )
                    for (zone_code, rule_carrier, rule_service), (price, transit) in plan.zone_rules.items()
                    if (rule_carrier, rule_service) == key
                ],
            )

        if plan.zone_multipliers:
            await self.rate_cards.replace_zone_multipliers(card, plan.zone_multipliers)

        if plan.cod_slabs:
            await self.rate_cards.replace_cod_slabs(card, [
                CodSurchargeSlab(min_value=low, max_value=high, charge_type=charge_type, value=value)
                for low, high, charge_type, value in sorted(plan.cod_slabs, key=lambda s: s[0])
            ])

        await self.db.flush()
        return created

    def _check_zone_mode(self, card: RateCard, plan: CardPlan) -> None:
        if plan.uses_multiplier and card.zone_pricing_mode == ZonePricingMode.FLAT.value:
            raise ValueError(
                f"Rate card '{plan.name}' uses flat zone prices; zone multipliers cannot be imported into it"
            )
        if plan.uses_zone_price and card.zone_pricing_mode == ZonePricingMode.MULTIPLIER.value:
            raise ValueError(
                f"Rate card '{plan.name}' uses zone multipliers; flat zone prices cannot be imported into it"
            )
