"""
Seed reference data for local development.

Creates a handful of metro / non-metro pincodes, the five zones, two
carriers enabled for a demo company, and a sample rate card assigned as
that company's STANDARD card.

Usage:
    python scripts/seed_reference_data.py [company_uuid]
"""
import asyncio
import sys
from pathlib import Path
import uuid

sys.path.insert(0, str(Path(__file__).parent.parent))

from shiprate.database import async_session_factory, init_db
from shiprate.schemas.carrier import CarrierCreate
from shiprate.schemas.rate_card import RateCardCreate
from shiprate.services.carrier_service import CarrierService
from shiprate.services.rate_card_service import RateCardService
from shiprate.services.zone_resolver import PincodeInfo
from shiprate.services.zone_service import ZoneService, ZONE_NAMES


DEMO_COMPANY_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

PINCODES = [
    PincodeInfo("110001", "New Delhi", "Delhi", "Delhi", "New Delhi", "NORTH"),
    PincodeInfo("110020", "South Delhi", "Delhi", "Delhi", "New Delhi", "NORTH"),
    PincodeInfo("122001", "Gurgaon", "Haryana", "Haryana", "Gurgaon", "NORTH"),
    PincodeInfo("400001", "Mumbai", "Maharashtra", "Maharashtra", "Mumbai", "WEST"),
    PincodeInfo("411001", "Pune", "Maharashtra", "Maharashtra", "Pune", "WEST"),
    PincodeInfo("560001", "Bangalore", "Karnataka", "Karnataka", "Bangalore", "SOUTH"),
    PincodeInfo("600001", "Chennai", "Tamil Nadu", "Tamil Nadu", "Chennai", "SOUTH"),
    PincodeInfo("781001", "Kamrup Metropolitan", "Assam", "North East", "Guwahati", "EAST", is_oda=True),
]

CARRIERS = [
    CarrierCreate(code="DELHIVERY", name="Delhivery", service_types=["STANDARD", "EXPRESS"], default_transit_days=4),
    CarrierCreate(code="BLUEDART", name="Blue Dart", service_types=["EXPRESS"], default_transit_days=2),
]


def sample_rate_card() -> RateCardCreate:
    base_rates = []
    weight_rules = []
    zone_rules = []
    for carrier, service, base, per_kg in [
        ("DELHIVERY", "STANDARD", 40, 30),
        ("DELHIVERY", "EXPRESS", 60, 45),
        ("BLUEDART", "EXPRESS", 80, 55),
    ]:
        base_rates.append({"carrier_code": carrier, "service_type": service,
                           "min_weight_kg": 0, "max_weight_kg": "0.5", "base_price": base})
        base_rates.append({"carrier_code": carrier, "service_type": service,
                           "min_weight_kg": "0.5", "max_weight_kg": 1, "base_price": base + 20})
        weight_rules.append({"carrier_code": carrier, "service_type": service,
                             "min_weight_kg": 1, "max_weight_kg": 50, "price_per_kg": per_kg})
        for index, zone in enumerate(sorted(ZONE_NAMES)):
            zone_rules.append({"zone_code": zone, "carrier_code": carrier, "service_type": service,
                               "additional_price": 10 * index, "transit_days": 1 + index})

    return RateCardCreate(
        name="Standard D2C",
        description="Seeded sample card",
        minimum_call=35,
        fuel_surcharge_percent=10,
        cod_percentage="1.5",
        cod_minimum_charge=30,
        remote_area_enabled=True,
        remote_area_surcharge=50,
        base_rates=base_rates,
        weight_rules=weight_rules,
        zone_rules=zone_rules,
    )


async def seed(company_id: uuid.UUID):
    await init_db()

    async with async_session_factory() as db:
        zones = ZoneService(db)
        counts = await zones.upsert_pincodes(PINCODES)
        print(f"Pincodes: {counts['created']} created, {counts['updated']} updated")

        for code in sorted(ZONE_NAMES):
            await zones.ensure_zone(code)
        await db.commit()
        print(f"Zones: {', '.join(sorted(ZONE_NAMES))}")

        carriers = CarrierService(db)
        for data in CARRIERS:
            if await carriers.get_by_code(data.code):
                print(f"  Carrier {data.code} exists, skipping")
            else:
                await carriers.create_carrier(data)
                print(f"  Created carrier {data.code}")
            await carriers.enable_for_company(company_id, data.code)

        rate_cards = RateCardService(db)
        card = await rate_cards.get_latest_by_name(company_id, "Standard D2C", include_details=False)
        if card is None:
            card = await rate_cards.create_rate_card(company_id, sample_rate_card())
            print(f"  Created rate card {card.name} ({card.id})")
        await rate_cards.assign_to_company(company_id, card.id, "STANDARD")
        print(f"Assigned {card.name} v{card.version} as STANDARD for company {company_id}")


if __name__ == "__main__":
    target = uuid.UUID(sys.argv[1]) if len(sys.argv) > 1 else DEMO_COMPANY_ID
    asyncio.run(seed(target))
