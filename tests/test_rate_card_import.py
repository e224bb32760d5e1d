import io
from datetime import date
from decimal import Decimal

import openpyxl
import pytest

from shiprate.core.exceptions import RateCardImportError
from shiprate.schemas.carrier import CarrierCreate
from shiprate.services.carrier_service import CarrierService
from shiprate.services.rate_card_import_service import (
    RateCardImportService,
    parse_number,
    parse_date,
    normalize_header,
)
from shiprate.services.rate_card_service import RateCardService
from shiprate.services.zone_service import ZoneService


HEADERS = {
    "zone": "Zone",
    "zone_price": "Zone Price",
    "zone_multiplier": "Zone Multiplier",
    "transit_days": "Transit Days",
    "price_per_kg": "Price Per Kg",
    "status": "Status",
    "effective_from": "Effective From",
    "effective_to": "Effective To",
    "minimum_call": "Minimum Call",
    "fuel_surcharge": "Fuel Surcharge %",
    "fuel_surcharge_base": "Fuel Surcharge Base",
    "gst": "GST",
    "remote_area_surcharge": "Remote Area Surcharge",
    "cod_min": "COD Min",
    "cod_max": "COD Max",
    "cod_charge": "COD Charge",
    "cod_type": "COD Type",
}


def row(name="Standard", carrier="DELHIVERY", service="Standard", base=40, min_w=0, max_w="0.5", **extra):
    values = {
        "Name": name,
        "Carrier": carrier,
        "Service Type": service,
        "Base Price": base,
        "Min Weight": min_w,
        "Max Weight": max_w,
    }
    for key, value in extra.items():
        values[HEADERS[key]] = value
    return values


class RecordingCache:
    def __init__(self):
        self.invalidated = []

    async def invalidate_company(self, company_id):
        self.invalidated.append(company_id)
        return 0


async def seed_carriers(factory):
    async with factory() as db:
        service = CarrierService(db)
        await service.create_carrier(CarrierCreate(code="DELHIVERY", name="Delhivery"))
        await service.create_carrier(CarrierCreate(code="BLUEDART", name="Blue Dart", service_types=["EXPRESS"]))


async def run_import(factory, company_id, rows, dry_run=False, cache=None):
    async with factory() as db:
        return await RateCardImportService(db, cache).import_rate_cards(company_id, rows, dry_run=dry_run)


async def load_card(factory, company_id, name="Standard"):
    async with factory() as db:
        return await RateCardService(db).get_latest_by_name(company_id, name)


def brackets(card, carrier="DELHIVERY", service="STANDARD"):
    return sorted(
        (b.min_weight_kg, b.max_weight_kg, b.base_price)
        for b in card.base_rates
        if b.carrier_code == carrier and b.service_type == service
    )


def errors(result):
    return [(e.row_number, e.error) for e in result.errors]


# ============================================
# VALIDATION ORDER AND ROW ERRORS
# ============================================

def test_import_creates_card_with_adjacent_brackets(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(base=40, min_w=0, max_w="0.5"),
            row(base=60, min_w="0.5", max_w=1),
        ])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.created == 1
    assert result.errors == []
    assert card.status == "ACTIVE"
    assert card.version == 1
    assert card.gst_percent == Decimal("18")
    assert brackets(card) == [
        (Decimal("0"), Decimal("0.5"), Decimal("40")),
        (Decimal("0.5"), Decimal("1"), Decimal("60")),
    ]


def test_overlapping_window_is_rejected(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(base=40, min_w=0, max_w=1),
            row(base=60, min_w="0.5", max_w=2),
        ])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.created == 1
    assert len(result.errors) == 1
    assert result.errors[0].row_number == 3
    assert "overlaps [0, 1)" in result.errors[0].error
    assert len(card.base_rates) == 1


def test_overlap_is_checked_per_carrier_and_service(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        return await run_import(factory, company_id, [
            row(carrier="DELHIVERY", service="Standard", min_w=0, max_w=1),
            row(carrier="DELHIVERY", service="Express", min_w=0, max_w=1),
            row(carrier="BLUEDART", service="Express", min_w=0, max_w=1),
        ])

    result = run_db(scenario)
    assert result.errors == []


def test_shared_bracket_across_zones(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(zone="A", zone_price=10, transit_days=2),
            row(zone="zoneB", zone_price=20, transit_days=3),
        ])
        async with factory() as db:
            zones = [z.code for z in await ZoneService(db).list_zones()]
        return result, await load_card(factory, company_id), zones

    result, card, zones = run_db(scenario)

    assert result.errors == []
    assert zones == ["zoneA", "zoneB"]
    assert card.zone_pricing_mode == "FLAT"
    assert len(card.base_rates) == 1
    assert sorted((z.zone_code, z.additional_price, z.transit_days) for z in card.zone_rules) == [
        ("zoneA", Decimal("10"), 2),
        ("zoneB", Decimal("20"), 3),
    ]


def test_repeated_window_with_different_price_is_rejected(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        return await run_import(factory, company_id, [
            row(base=40, zone="A", zone_price=10),
            row(base=45, zone="B", zone_price=20),
        ])

    result = run_db(scenario)
    assert result.errors[0].row_number == 3
    assert "different price" in result.errors[0].error


def test_unknown_zone_is_rejected(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        return await run_import(factory, company_id, [row(zone="zoneZ", zone_price=10)])

    result = run_db(scenario)
    assert errors(result) == [(2, "Unknown zone 'zoneZ'")]
    assert result.created == 0


def test_unknown_carrier_fails_only_its_row(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(carrier="FEDEX"),
            row(carrier="delhivery"),
        ])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.created == 1
    assert errors(result) == [(2, "Unknown carrier 'FEDEX'")]
    assert [b.carrier_code for b in card.base_rates] == ["DELHIVERY"]


@pytest.mark.parametrize("values,message", [
    ({"base": "abc"}, "Base Price: 'abc' is not a number"),
    ({"base": -5}, "Base Price must not be negative"),
    ({"min_w": 1, "max_w": 1}, "must be less than Max Weight"),
    ({"service": "Overnight"}, "Unknown service type"),
    ({"name": ""}, "Name is required"),
    ({"transit_days": 3}, "Zone is required"),
    ({"zone": "A", "transit_days": "2.5"}, "Transit Days must be a whole number"),
    ({"zone": "A", "zone_multiplier": 0}, "Zone Multiplier must be greater than 0"),
    ({"cod_max": 5000}, "COD Max and COD Charge are required"),
    ({"status": "pending"}, "Unknown status"),
    ({"effective_from": "tomorrow"}, "is not a date"),
    ({"base": "", "price_per_kg": "10.555", "min_w": 1, "max_w": 10}, "Price Per Kg allows at most 2 decimal places"),
    ({"min_w": 0, "max_w": "0.0004"}, "Max Weight allows at most 3 decimal places"),
    ({"base": "40.125"}, "Base Price allows at most 2 decimal places"),
    ({"base": "NaN"}, "Base Price: 'NaN' is not a number"),
])
def test_invalid_rows_are_reported(run_db, company_id, values, message):
    async def scenario(factory):
        await seed_carriers(factory)
        return await run_import(factory, company_id, [row(**values)])

    result = run_db(scenario)
    assert len(result.errors) == 1
    assert message in result.errors[0].error
    assert result.created == 0


def test_blank_rows_are_skipped_but_counted(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        blank = {key: "" for key in row()}
        return await run_import(factory, company_id, [row(), blank, row(carrier="NOPE")])

    result = run_db(scenario)
    assert errors(result) == [(4, "Unknown carrier 'NOPE'")]


def test_missing_required_columns(run_db, company_id):
    async def scenario(factory):
        rows = [{"Name": "Standard", "Carrier": "DELHIVERY", "Min Weight": 0, "Max Weight": 1}]
        return await run_import(factory, company_id, rows)

    with pytest.raises(RateCardImportError) as exc:
        run_db(scenario)
    assert exc.value.details["missing"] == ["service_type", "base_price"]


def test_file_without_rows(run_db, company_id):
    async def scenario(factory):
        return await run_import(factory, company_id, [{"Name": "", "Carrier": None}])

    with pytest.raises(RateCardImportError):
        run_db(scenario)


# ============================================
# UPSERT SEMANTICS
# ============================================

def test_reimport_replaces_only_imported_keys(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        await run_import(factory, company_id, [
            row(base=40, min_w=0, max_w="0.5"),
            row(base=60, min_w="0.5", max_w=1),
            row(carrier="BLUEDART", service="Express", base=80, min_w=0, max_w=1),
        ])
        result = await run_import(factory, company_id, [row(base=55, min_w=0, max_w=2)])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.created == 0
    assert result.updated == 1
    assert card.version == 1
    assert brackets(card) == [(Decimal("0"), Decimal("2"), Decimal("55"))]
    assert brackets(card, "BLUEDART", "EXPRESS") == [(Decimal("0"), Decimal("1"), Decimal("80"))]


def test_reimport_same_bracket_is_idempotent(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        rows = [row(zone="A", zone_price=10), row(zone="B", zone_price=20)]
        await run_import(factory, company_id, rows)
        await run_import(factory, company_id, rows)
        return await load_card(factory, company_id)

    card = run_db(scenario)
    assert len(card.base_rates) == 1
    assert len(card.zone_rules) == 2


def test_weight_rule_rows(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(base=40, min_w=0, max_w=1),
            row(base="", price_per_kg=20, min_w=1, max_w=10),
            row(base="", price_per_kg=15, min_w=10, max_w=50),
        ])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.errors == []
    assert len(card.base_rates) == 1
    assert sorted((r.min_weight_kg, r.price_per_kg) for r in card.weight_rules) == [
        (Decimal("1"), Decimal("20")),
        (Decimal("10"), Decimal("15")),
    ]


def test_weight_rule_overlap_is_checked_separately_from_brackets(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        return await run_import(factory, company_id, [
            row(base=40, min_w=0, max_w=5),
            row(base="", price_per_kg=20, min_w=1, max_w=10),
            row(base="", price_per_kg=15, min_w=5, max_w=20),
        ])

    result = run_db(scenario)
    assert [e.row_number for e in result.errors] == [4]


def test_zone_multiplier_rows(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(zone="A", zone_multiplier="1.0"),
            row(zone="E", zone_multiplier="1.75"),
        ])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.errors == []
    assert card.zone_pricing_mode == "MULTIPLIER"
    assert {m.zone_code: m.factor for m in card.zone_multipliers} == {
        "zoneA": Decimal("1.0"),
        "zoneE": Decimal("1.75"),
    }


def test_card_mixing_zone_modes_is_rejected(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(zone="A", zone_price=10),
            row(zone="B", zone_multiplier="1.2"),
        ])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.created == 0
    assert "mixes zone prices and zone multipliers" in result.errors[0].error
    assert card is None


def test_import_cannot_switch_existing_zone_mode(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        await run_import(factory, company_id, [row(zone="A", zone_price=10)])
        return await run_import(factory, company_id, [row(zone="C", zone_multiplier="1.5")])

    result = run_db(scenario)
    assert result.updated == 0
    assert "uses flat zone prices" in result.errors[0].error


def test_conflicting_metadata_rejects_card(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        return await run_import(factory, company_id, [
            row(fuel_surcharge=10),
            row(base=60, min_w="0.5", max_w=1, fuel_surcharge=12),
        ])

    result = run_db(scenario)

    assert result.created == 0
    assert errors(result) == [
        (3, "Conflicting 'fuel_surcharge_percent' values across rows of rate card 'Standard'"),
    ]


def test_card_metadata_and_cod_slabs(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        result = await run_import(factory, company_id, [
            row(
                minimum_call=35, fuel_surcharge="12.5%", fuel_surcharge_base="freight+zone",
                gst=18, remote_area_surcharge="₹ 50", status="Active",
                effective_from="01/04/2025", effective_to="2026-03-31",
                cod_min=0, cod_max=5000, cod_charge=40, cod_type="flat",
            ),
            row(base=60, min_w="0.5", max_w=1,
                cod_min=5000, cod_max="1,00,000", cod_charge="1.5", cod_type="Percentage"),
        ])
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.errors == []
    assert card.minimum_call == Decimal("35")
    assert card.fuel_surcharge_percent == Decimal("12.5")
    assert card.fuel_surcharge_base == "freight+zone"
    assert card.remote_area_enabled is True
    assert card.remote_area_surcharge == Decimal("50")
    assert card.effective_from == date(2025, 4, 1)
    assert card.effective_to == date(2026, 3, 31)
    assert [(s.sort_order, s.charge_type, s.value) for s in card.cod_slabs] == [
        (0, "FLAT", Decimal("40")),
        (1, "PERCENTAGE", Decimal("1.5")),
    ]
    assert card.cod_slabs[1].max_value == Decimal("100000")


def test_locked_card_is_superseded(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        await run_import(factory, company_id, [row(base=40, zone="A", zone_price=10)])

        async with factory() as db:
            service = RateCardService(db)
            original = await service.get_latest_by_name(company_id, "Standard")
            await service.assign_to_company(company_id, original.id, "STANDARD")
            await service.lock_rate_card(original.id)

        result = await run_import(factory, company_id, [row(base=45, min_w=0, max_w="0.5")])

        async with factory() as db:
            service = RateCardService(db)
            first = await service.get_rate_card(original.id, include_details=True)
            latest = await service.get_latest_by_name(company_id, "Standard")
            assigned = await service.get_company_default(company_id, "STANDARD")
        return result, first, latest, assigned

    result, first, latest, assigned = run_db(scenario)

    assert result.updated == 1
    assert first.status == "INACTIVE"
    assert brackets(first) == [(Decimal("0"), Decimal("0.5"), Decimal("40"))]
    assert latest.version == 2
    assert latest.status == "ACTIVE"
    assert latest.is_locked is False
    assert brackets(latest) == [(Decimal("0"), Decimal("0.5"), Decimal("45"))]
    assert assigned.id == latest.id


def test_superseded_card_gains_rule_kinds_missing_from_original(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        await run_import(factory, company_id, [
            row(base=40, min_w=0, max_w=1),
            row(carrier="BLUEDART", service="Express", base=70, min_w=0, max_w=1),
        ])

        async with factory() as db:
            service = RateCardService(db)
            original = await service.get_latest_by_name(company_id, "Standard")
            await service.lock_rate_card(original.id)

        result = await run_import(factory, company_id, [
            row(base=45, min_w=0, max_w=1),
            row(base="", price_per_kg=20, min_w=1, max_w=10),
        ])
        return result, await load_card(factory, company_id)

    result, latest = run_db(scenario)

    assert result.errors == []
    assert result.updated == 1
    assert latest.version == 2
    assert brackets(latest) == [(Decimal("0"), Decimal("1"), Decimal("45"))]
    assert brackets(latest, "BLUEDART", "EXPRESS") == [(Decimal("0"), Decimal("1"), Decimal("70"))]
    assert [(r.min_weight_kg, r.price_per_kg) for r in latest.weight_rules] == [
        (Decimal("1"), Decimal("20")),
    ]
    assert latest.zone_multipliers == []
    assert latest.cod_slabs == []


def test_dry_run_saves_nothing(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        cache = RecordingCache()
        result = await run_import(factory, company_id, [row(zone="A", zone_price=10)], dry_run=True, cache=cache)
        async with factory() as db:
            cards, total = await RateCardService(db).list_rate_cards(company_id=company_id)
            zones = await ZoneService(db).list_zones()
        return result, total, zones, cache

    result, total, zones, cache = run_db(scenario)

    assert result.dry_run is True
    assert result.created == 1
    assert total == 0
    assert zones == []
    assert cache.invalidated == []


def test_import_invalidates_company_cache(run_db, company_id):
    async def scenario(factory):
        await seed_carriers(factory)
        cache = RecordingCache()
        await run_import(factory, company_id, [row()], cache=cache)
        return cache

    assert run_db(scenario).invalidated == [company_id]


# ============================================
# FILE PARSING
# ============================================

def test_import_csv_file(run_db, company_id):
    content = (
        "\ufeffRate Card Name,Carrier Code,Service,Base Price (₹),Min Weight (kg),Max Weight (kg),Zone,Zone Price\n"
        "Standard,DELHIVERY,standard,\"1,250.50\",0,0.5,zone-a,10\n"
        "Standard,DELHIVERY,standard,\"1,250.50\",0,0.5,zone-b,20\n"
    ).encode("utf-8")

    async def scenario(factory):
        await seed_carriers(factory)
        async with factory() as db:
            result = await RateCardImportService(db).import_file(company_id, "cards.csv", content)
        return result, await load_card(factory, company_id)

    result, card = run_db(scenario)

    assert result.errors == []
    assert brackets(card) == [(Decimal("0"), Decimal("0.5"), Decimal("1250.50"))]
    assert sorted(z.zone_code for z in card.zone_rules) == ["zoneA", "zoneB"]


def test_parse_excel():
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["Name", "Carrier", "Service Type", "Base Price", "Min Weight", "Max Weight"])
    sheet.append(["Standard", "DELHIVERY", "Standard", 40, 0, 0.5])
    sheet.append(["Standard", "DELHIVERY", "Standard", 60, 0.5, 1])
    buffer = io.BytesIO()
    workbook.save(buffer)

    rows = RateCardImportService(None).parse_file("cards.xlsx", buffer.getvalue())

    assert len(rows) == 2
    assert rows[1]["Base Price"] == 60
    assert parse_number(rows[1]["Min Weight"]) == Decimal("0.5")


def test_parse_csv_detects_delimiter():
    service = RateCardImportService(None)

    rows = service.parse_csv("Name;Carrier\nStandard;DELHIVERY\n")
    assert rows == [{"Name": "Standard", "Carrier": "DELHIVERY"}]

    rows = service.parse_csv("Name\tCarrier\nStandard\tDELHIVERY\n")
    assert rows == [{"Name": "Standard", "Carrier": "DELHIVERY"}]


def test_parse_file_errors():
    service = RateCardImportService(None)

    with pytest.raises(RateCardImportError):
        service.parse_file("cards.pdf", b"%PDF")
    with pytest.raises(RateCardImportError):
        service.parse_file("cards.csv", b"Name,Carrier\n")
    with pytest.raises(RateCardImportError):
        service.parse_file("cards.xlsx", b"not a workbook")


@pytest.mark.parametrize("value,expected", [
    ("1,250.50", Decimal("1250.50")),
    ("₹ 40", Decimal("40")),
    ("18%", Decimal("18")),
    (12, Decimal("12")),
    (0.5, Decimal("0.5")),
    ("", None),
    (None, None),
])
def test_parse_number(value, expected):
    assert parse_number(value) == expected


def test_parse_number_rejects_text():
    with pytest.raises(ValueError):
        parse_number("forty")
    with pytest.raises(ValueError):
        parse_number("Infinity")


def test_parse_date_formats():
    assert parse_date("2025-04-01") == date(2025, 4, 1)
    assert parse_date("01/04/2025") == date(2025, 4, 1)
    assert parse_date("1 Apr 2025") == date(2025, 4, 1)
    assert parse_date("") is None


def test_normalize_header():
    assert normalize_header("Base Price (₹)") == "baseprice"
    assert normalize_header(" Min_Weight-kg ") == "minweightkg"
