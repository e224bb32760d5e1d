"""
API tests against the FastAPI app.

The app runs its real lifespan against the throwaway SQLite file configured
in conftest; every test starts from empty tables.
"""
import asyncio
import uuid

import pytest
from fastapi.testclient import TestClient

from shiprate.database import Base, engine
from shiprate.main import create_app


PINCODE_CSV = (
    "pincode,district,state,city,region,oda\n"
    "110001,New Delhi,Delhi,New Delhi,NORTH,no\n"
    "110020,New Delhi,Delhi,New Delhi,NORTH,no\n"
    "400001,Mumbai,Maharashtra,Mumbai,WEST,no\n"
    "781001,Kamrup Metropolitan,Assam,Guwahati,EAST,yes\n"
)

RATE_CARD = {
    "name": "Standard D2C",
    "zone_pricing_mode": "FLAT",
    "base_rates": [
        {"carrier_code": "DELHIVERY", "service_type": "STANDARD",
         "min_weight_kg": 0, "max_weight_kg": 1, "base_price": 40},
        {"carrier_code": "XPRESS", "service_type": "STANDARD",
         "min_weight_kg": 0, "max_weight_kg": 1, "base_price": 50},
    ],
    "zone_rules": [
        {"zone_code": "zoneC", "carrier_code": "DELHIVERY", "service_type": "STANDARD",
         "additional_price": 10, "transit_days": 3},
        {"zone_code": "zoneC", "carrier_code": "XPRESS", "service_type": "STANDARD",
         "additional_price": 10, "transit_days": 2},
    ],
}


@pytest.fixture
def client():
    async def reset():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(reset())
    with TestClient(create_app()) as test_client:
        yield test_client


def import_pincodes(client):
    response = client.post(
        "/api/v1/zones/pincodes/import",
        files={"file": ("pincodes.csv", PINCODE_CSV.encode("utf-8"), "text/csv")},
    )
    assert response.status_code == 200
    return response.json()


def create_carrier(client, code, name, **extra):
    response = client.post("/api/v1/carriers", json={"code": code, "name": name, **extra})
    assert response.status_code == 201
    return response.json()


def setup_company(client, company_id):
    """Reference data, two carriers and an assigned rate card."""
    import_pincodes(client)
    for code, name in (("delhivery", "Delhivery"), ("xpress", "Xpressbees")):
        create_carrier(client, code, name)
        response = client.post(
            "/api/v1/carriers/company",
            json={"company_id": str(company_id), "carrier_code": code},
        )
        assert response.status_code == 200

    response = client.post(f"/api/v1/rate-cards?company_id={company_id}", json=RATE_CARD)
    assert response.status_code == 201
    card = response.json()

    response = client.post(
        "/api/v1/rate-cards/assignments",
        json={"company_id": str(company_id), "rate_card_id": card["id"], "tier": "standard"},
    )
    assert response.status_code == 200
    assert response.json()["tier"] == "STANDARD"
    return card


def shipment(company_id, **extra):
    return {
        "company_id": str(company_id),
        "origin_pincode": "110001",
        "destination_pincode": "400001",
        "weight": 0.5,
        **extra,
    }


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"] == "connected"


# ============================================
# PRICING
# ============================================

def test_calculate_price(client, company_id):
    card = setup_company(client, company_id)

    response = client.post("/api/v1/pricing/calculate", json=shipment(company_id, carrier="delhivery"))

    assert response.status_code == 200
    data = response.json()
    assert data["applicable"] is True
    quote = data["quote"]
    assert quote["carrier"] == "DELHIVERY"
    assert quote["carrier_name"] == "Delhivery"
    assert quote["rate_card_id"] == card["id"]
    assert quote["zone"] == "zoneC"
    assert quote["zone_source"] == "internal"
    assert quote["transit_days"] == 3
    assert quote["breakdown"]["freight"] == 40.0
    assert quote["breakdown"]["zone_charge"] == 10.0
    assert quote["breakdown"]["tax"] == 9.0
    assert quote["total"] == 59.0


def test_calculate_not_applicable(client, company_id):
    setup_company(client, company_id)

    response = client.post("/api/v1/pricing/calculate", json=shipment(company_id, carrier="delhivery", weight=5))

    data = response.json()
    assert data["applicable"] is False
    assert data["kind"] == "NO_MATCHING_RATE"
    assert data["quote"] is None


def test_rank_carriers(client, company_id):
    setup_company(client, company_id)

    response = client.post("/api/v1/pricing/rank", json=shipment(company_id))

    assert response.status_code == 200
    data = response.json()
    assert data["total_options"] == 2
    assert [(o["carrier"], o["total"]) for o in data["options"]] == [("DELHIVERY", 59.0), ("XPRESS", 70.8)]
    assert data["options"][0]["tags"] == ["CHEAPEST", "RECOMMENDED"]
    assert data["options"][1]["tags"] == ["FASTEST"]
    assert data["recommendation"] == "DELHIVERY/STANDARD"
    assert data["message"] is None


def test_rank_excluded_carriers(client, company_id):
    setup_company(client, company_id)

    response = client.post("/api/v1/pricing/rank", json=shipment(company_id, excluded_carriers=["delhivery"]))

    assert [o["carrier"] for o in response.json()["options"]] == ["XPRESS"]


def test_rank_without_rates(client, company_id):
    setup_company(client, company_id)

    response = client.post("/api/v1/pricing/rank", json=shipment(uuid.uuid4()))

    assert response.status_code == 200
    data = response.json()
    assert data["options"] == []
    assert data["total_options"] == 0
    assert data["message"] == "No rates available"


def test_malformed_zone_override_is_ignored(client, company_id):
    setup_company(client, company_id)

    response = client.post(
        "/api/v1/pricing/rank",
        json=shipment(company_id, external_zone_override="zoneE; DROP TABLE rate_cards"),
    )

    data = response.json()
    assert data["zone"] == "zoneC"
    assert data["zone_source"] == "internal"


def test_valid_zone_override(client, company_id):
    setup_company(client, company_id)

    response = client.post(
        "/api/v1/pricing/calculate",
        json=shipment(company_id, carrier="xpress", external_zone_override="zoneA"),
    )

    quote = response.json()["quote"]
    assert quote["zone"] == "zoneA"
    assert quote["zone_source"] == "external"
    assert quote["total"] == 59.0


def test_unknown_pincode_is_bad_request(client, company_id):
    setup_company(client, company_id)

    response = client.post("/api/v1/pricing/rank", json=shipment(company_id, destination_pincode="999999"))

    assert response.status_code == 400
    assert "999999" in response.json()["detail"]


@pytest.mark.parametrize("extra", [
    {"weight": 0},
    {"origin_pincode": "11001"},
    {"payment_mode": "cod"},
    {"payment_mode": "card"},
    {"service_type": "hyperloop"},
])
def test_invalid_shipment_is_rejected(client, company_id, extra):
    response = client.post("/api/v1/pricing/rank", json=shipment(company_id, **extra))
    assert response.status_code == 422


def test_status_change_is_visible_to_pricing(client, company_id):
    card = setup_company(client, company_id)
    request = shipment(company_id, carrier="delhivery")
    assert client.post("/api/v1/pricing/calculate", json=request).json()["applicable"] is True

    response = client.put(f"/api/v1/rate-cards/{card['id']}/status", json={"status": "INACTIVE"})
    assert response.status_code == 200

    data = client.post("/api/v1/pricing/calculate", json=request).json()
    assert data["applicable"] is False
    assert data["kind"] == "INVALID_RATE_CARD"


# ============================================
# RATE CARDS
# ============================================

def test_rate_card_crud(client, company_id):
    card = setup_company(client, company_id)

    response = client.get(f"/api/v1/rate-cards/{card['id']}")
    assert response.status_code == 200
    detail = response.json()
    assert detail["zone_pricing_mode"] == "FLAT"
    assert len(detail["base_rates"]) == 2
    assert len(detail["zone_rules"]) == 2

    response = client.get("/api/v1/rate-cards", params={"company_id": str(company_id), "status": "ACTIVE"})
    assert response.json()["total"] == 1

    response = client.post(f"/api/v1/rate-cards/{card['id']}/lock")
    assert response.json()["is_locked"] is True

    assert client.get(f"/api/v1/rate-cards/{uuid.uuid4()}").status_code == 404
    assert client.post(f"/api/v1/rate-cards/{uuid.uuid4()}/lock").status_code == 404
    response = client.post(
        "/api/v1/rate-cards/assignments",
        json={"company_id": str(company_id), "rate_card_id": str(uuid.uuid4()), "tier": "STANDARD"},
    )
    assert response.status_code == 404


def test_create_rate_card_rejects_overlap(client, company_id):
    card = dict(RATE_CARD)
    card["base_rates"] = RATE_CARD["base_rates"] + [
        {"carrier_code": "DELHIVERY", "service_type": "STANDARD",
         "min_weight_kg": "0.5", "max_weight_kg": 2, "base_price": 60},
    ]

    response = client.post(f"/api/v1/rate-cards?company_id={company_id}", json=card)

    assert response.status_code == 400
    assert "overlaps" in response.json()["detail"]


def test_create_rate_card_rejects_excess_precision(client, company_id):
    card = dict(RATE_CARD)
    card["weight_rules"] = [
        {"carrier_code": "DELHIVERY", "service_type": "STANDARD",
         "min_weight_kg": 1, "max_weight_kg": 10, "price_per_kg": "10.555"},
    ]

    response = client.post(f"/api/v1/rate-cards?company_id={company_id}", json=card)

    assert response.status_code == 422


def test_import_rate_cards(client, company_id):
    create_carrier(client, "DELHIVERY", "Delhivery")
    content = (
        "Name,Carrier,Service Type,Base Price,Min Weight,Max Weight,Zone,Zone Price\n"
        "Surface,DELHIVERY,Standard,40,0,0.5,A,5\n"
        "Surface,DELHIVERY,Standard,40,0,0.5,E,25\n"
        "Surface,FEDEX,Standard,40,0,0.5,,\n"
    ).encode("utf-8")

    def upload(dry_run):
        return client.post(
            "/api/v1/rate-cards/import",
            files={"file": ("cards.csv", content, "text/csv")},
            data={"company_id": str(company_id), "dry_run": "true" if dry_run else "false"},
        )

    response = upload(dry_run=True)
    assert response.status_code == 200
    data = response.json()
    assert data["dry_run"] is True
    assert data["created"] == 1
    assert client.get("/api/v1/rate-cards", params={"company_id": str(company_id)}).json()["total"] == 0

    data = upload(dry_run=False).json()
    assert data["created"] == 1
    assert data["errors"] == [{"name": "Surface", "row_number": 4, "error": "Unknown carrier 'FEDEX'"}]
    assert client.get("/api/v1/rate-cards", params={"company_id": str(company_id)}).json()["total"] == 1

    zones = client.get("/api/v1/zones").json()
    assert [z["code"] for z in zones] == ["zoneA", "zoneE"]


def test_import_rejects_unsupported_file(client, company_id):
    response = client.post(
        "/api/v1/rate-cards/import",
        files={"file": ("cards.txt", b"Name\n", "text/plain")},
        data={"company_id": str(company_id)},
    )
    assert response.status_code == 400
    assert "Unsupported file format" in response.json()["detail"]


def test_import_without_rows_fails(client, company_id):
    response = client.post(
        "/api/v1/rate-cards/import",
        files={"file": ("cards.csv", b"Name,Carrier\n", "text/csv")},
        data={"company_id": str(company_id)},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Import failed: File has no data rows"


def test_cache_reload(client, company_id):
    setup_company(client, company_id)
    client.post("/api/v1/pricing/rank", json=shipment(company_id))

    response = client.post("/api/v1/rate-cards/cache/reload")
    assert response.json() == {"success": True, "removed": 1}


# ============================================
# ZONES AND CARRIERS
# ============================================

def test_pincode_import_and_lookup(client):
    assert import_pincodes(client) == {"created": 4, "updated": 0}
    assert import_pincodes(client) == {"created": 0, "updated": 4}

    response = client.get("/api/v1/zones/pincodes/781001")
    assert response.status_code == 200
    assert response.json()["is_oda"] is True

    assert client.get("/api/v1/zones/pincodes/999999").status_code == 404


def test_pincode_import_rejects_bad_file(client):
    response = client.post(
        "/api/v1/zones/pincodes/import",
        files={"file": ("pincodes.csv", b"pin,city\n110001,Delhi\n", "text/csv")},
    )
    assert response.status_code == 400


def test_classify_zone(client):
    import_pincodes(client)

    response = client.get("/api/v1/zones/classify", params={"origin": "110001", "destination": "400001"})
    assert response.status_code == 200
    data = response.json()
    assert data["zone_code"] == "zoneC"
    assert data["distance_band"] == "metro"

    response = client.get("/api/v1/zones/classify", params={"origin": "110001", "destination": "781001"})
    assert response.json()["zone_code"] == "zoneE"

    response = client.get("/api/v1/zones/classify", params={"origin": "110001", "destination": "999999"})
    assert response.status_code == 400


def test_zone_reload_and_membership(client):
    import_pincodes(client)

    response = client.post("/api/v1/zones/reload")
    assert response.json()["pincodes"] == 4

    response = client.put("/api/v1/zones/a/pincodes", json={"pincodes": ["110020", "110001", "110001"]})
    assert response.status_code == 200
    assert response.json()["code"] == "zoneA"
    assert response.json()["pincodes"] == ["110001", "110020"]

    assert client.put("/api/v1/zones/zoneQ/pincodes", json={"pincodes": []}).status_code == 404


def test_carriers(client, company_id):
    create_carrier(client, "ecom", "Ecom Express", serviceability_mode="PINCODE_LIST")

    response = client.post("/api/v1/carriers", json={"code": "ECOM", "name": "Duplicate"})
    assert response.status_code == 400

    response = client.post("/api/v1/carriers/ECOM/pincodes", json={"pincodes": ["400001", "110001"]})
    assert response.json() == {"success": True, "added": 2}

    response = client.post("/api/v1/carriers/NOPE/pincodes", json={"pincodes": ["400001"]})
    assert response.status_code == 404

    response = client.post(
        "/api/v1/carriers/company",
        json={"company_id": str(company_id), "carrier_code": "nope"},
    )
    assert response.status_code == 404

    carriers = client.get("/api/v1/carriers", params={"is_active": True}).json()
    assert [(c["code"], c["serviceability_mode"]) for c in carriers] == [("ECOM", "PINCODE_LIST")]


def test_api_serviceability_requires_url(client):
    response = client.post("/api/v1/carriers", json={"code": "APIX", "name": "Api", "serviceability_mode": "API"})
    assert response.status_code == 422
