import pytest
import fleetops.models as models
from fleetops.pricing import haversine_km, parse_number, rental_fare, rule_fare, zone_fare
from fleetops.test.support import setup_test_app, add_pricing_rule, add_service_type, fetch

RULE = {"base_fare": 50.0, "per_km_rate": 10.0, "per_minute_rate": 2.0, "minimum_fare": 100.0, "surge_multiplier": 1.0}


def test_rule_fare():
    assert rule_fare(RULE, 10, 30) == 210.0
    # per-minute charge needs a duration
    assert rule_fare(RULE, 10) == 150.0
    # minimum fare floor
    assert rule_fare(RULE, 1, 2) == 100.0
    assert rule_fare({**RULE, "surge_multiplier": 1.5}, 10, 30) == 315.0
    assert rule_fare({**RULE, "per_minute_rate": None}, 10, 30) == 150.0


def test_rental_and_zone_fares():
    package = {"base_price": 1200.0, "included_kilometers": 40.0, "extra_km_rate": 12.0}
    assert rental_fare(package, 30) == 1200.0
    assert rental_fare(package, 50) == 1320.0
    assert zone_fare({"fixed_price": 799.0, "base_price": 100.0, "per_km_rate": 5.0}, 20) == 799.0
    assert zone_fare({"fixed_price": None, "base_price": 100.0, "per_km_rate": 5.0}, 20) == 200.0


def test_parse_number():
    assert parse_number("10") == 10.0
    assert parse_number(" 2.5 ") == 2.5
    assert parse_number(7) == 7.0
    for bad in ("", "abc", None, "inf", "nan", True):
        assert parse_number(bad) is None


def test_haversine_km():
    assert haversine_km((28.6139, 77.2090), (28.6139, 77.2090)) == 0
    # Delhi to Mumbai is roughly 1150 km
    assert haversine_km((28.6139, 77.2090), (19.0760, 72.8777)) == pytest.approx(1150, rel=0.02)


def test_fare_calculator_endpoint(tmp_path):
    t = setup_test_app(tmp_path)
    service_id = add_service_type(t.engine, "city_ride")
    add_pricing_rule(t.engine, service_id)

    r = t.client.post("/v1/pricing/estimate", json={
        "serviceType": "city_ride", "vehicleType": "sedan", "distance": "10", "duration": "30",
    })
    assert r.status_code == 200
    assert r.json()["fare"] == 210.0
    assert r.json()["basis"] == "pricing_rule"

    r = t.client.post("/v1/pricing/estimate", json={"serviceType": "", "vehicleType": "sedan", "distance": "10"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Please select service type and vehicle type"

    r = t.client.post("/v1/pricing/estimate", json={"serviceType": "city_ride", "vehicleType": "sedan", "distance": "ten"})
    assert r.status_code == 400

    r = t.client.post("/v1/pricing/estimate", json={"serviceType": "city_ride", "vehicleType": "suv", "distance": "10"})
    assert r.status_code == 400


def test_rental_estimate_uses_package(tmp_path):
    t = setup_test_app(tmp_path)
    add_service_type(t.engine, "car_rental")
    with t.engine.begin() as conn:
        conn.execute(models.rental_packages.insert().values(
            id="pkg-4h", name="4 hours / 40 km", vehicle_type="sedan", duration_hours=4, included_kilometers=40.0,
            base_price=1200.0, extra_km_rate=12.0, extra_hour_rate=150.0, is_active=True,
        ))

    r = t.client.post("/v1/pricing/estimate", json={"serviceType": "car_rental", "vehicleType": "sedan", "distance": 45})
    assert r.status_code == 200
    assert r.json()["fare"] == 1260.0
    assert r.json()["source_id"] == "pkg-4h"


def test_pricing_rule_crud_with_soft_delete(tmp_path):
    t = setup_test_app(tmp_path)
    service_id = add_service_type(t.engine, "airport")

    r = t.client.post("/v1/pricing/rules", json={
        "service_type_id": service_id, "vehicle_type": "suv", "base_fare": 120, "per_km_rate": 18,
        "minimum_fare": 300, "surge_multiplier": 1,
    })
    assert r.status_code == 201
    rule = r.json()["data"]
    assert rule["free_waiting_time_minutes"] == 5
    assert rule["cancellation_fee"] == 0.0

    r = t.client.put(f"/v1/pricing/rules/{rule['id']}", json={
        "vehicle_type": "suv", "base_fare": 150, "per_km_rate": 18, "minimum_fare": 300, "surge_multiplier": 1.2,
    })
    assert r.status_code == 200
    assert r.json()["data"]["base_fare"] == 150.0

    r = t.client.get("/v1/pricing", params={"service": "airport"})
    assert [x["id"] for x in r.json()["pricing_rules"]] == [rule["id"]]
    assert r.json()["summaries"] == [{"service": "airport", "rules": 1, "average_base_fare": 150.0}]

    r = t.client.delete(f"/v1/pricing/rules/{rule['id']}")
    assert r.status_code == 200
    assert fetch(t.engine, models.pricing_rules, rule["id"])["is_active"] is False
    assert t.client.get("/v1/pricing").json()["pricing_rules"] == []

    r = t.client.post("/v1/pricing/rules", json={
        "service_type_id": service_id, "vehicle_type": "suv", "base_fare": -1, "per_km_rate": 18,
        "minimum_fare": 300, "surge_multiplier": 1,
    })
    assert r.status_code == 422
