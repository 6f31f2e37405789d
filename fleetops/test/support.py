import json
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, insert
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from fleetops.main import app
import fleetops.baas as baas
import fleetops.cache as cache
import fleetops.db as db
import fleetops.maps as maps
import fleetops.models as models


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.ttls = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        if ex:
            self.ttls[key] = ex

    async def delete(self, *keys):
        for key in keys:
            self.values.pop(key, None)
            self.ttls.pop(key, None)

    async def ping(self):
        return True


class BackendRecorder:
    """Stands in for the backend's HTTP side; records every request."""

    def __init__(self):
        self.requests = []
        self.rpc_results = {}
        self.function_results = {}
        self.failing = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        self.requests.append(SimpleNamespace(
            method=request.method, path=request.url.path, headers=request.headers, body=body,
        ))
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.failing):
            return httpx.Response(500, json={"message": "backend failure"})
        if path.startswith("/rest/v1/rpc/"):
            return httpx.Response(200, json=self.rpc_results.get(path.rsplit("/", 1)[1], []))
        if path.startswith("/functions/v1/"):
            return httpx.Response(200, json=self.function_results.get(path.rsplit("/", 1)[1], {"ok": True}))
        if path.startswith("/storage/v1/object/"):
            return httpx.Response(200, json={"Key": path})
        return httpx.Response(404)

    def calls(self, method, prefix):
        return [r for r in self.requests if r.method == method and r.path.startswith(prefix)]

    def json_body(self, req):
        return json.loads(req.body)


class MapsRecorder:
    def __init__(self):
        self.requests = []
        self.status = "OK"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json={"status": self.status, "routes": [{"summary": "test route"}]})


def setup_test_app(tmp_path):
    path = tmp_path / "fleetops.db"
    # tables are created and seeded synchronously; the app reads the same file async
    engine = create_engine(f"sqlite:///{path}")
    models.metadata.create_all(bind=engine)
    db.engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)

    fake_redis = FakeRedis()
    cache.redis_client = fake_redis

    backend = BackendRecorder()
    baas.client = baas.BackendClient("http://backend.test", "service-key", transport=httpx.MockTransport(backend))

    maps_api = MapsRecorder()
    maps.client = maps.MapsClient("maps-key", "http://maps.test/directions/json", transport=httpx.MockTransport(maps_api))

    client = TestClient(app)
    return SimpleNamespace(client=client, engine=engine, redis=fake_redis, backend=backend, maps=maps_api)


def _insert(engine, table, values):
    values.setdefault("id", str(uuid.uuid4()))
    with engine.begin() as conn:
        conn.execute(insert(table).values(**values))
    return values["id"]


def add_driver(engine, **values):
    row = {
        "full_name": "Ravi Kumar",
        "phone_no": "+919800000001",
        "license_number": "DL-0420110012345",
        "status": models.DRIVER_ACTIVE,
        "kyc_status": models.KYC_PENDING,
        "rating": 4.5,
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    row.update(values)
    return _insert(engine, models.drivers, row)


def add_vehicle(engine, **values):
    row = {
        "make": "Maruti",
        "model": "Dzire",
        "year": 2022,
        "license_plate": "DL01AB1234",
        "color": "White",
        "capacity": 4,
        "type": "sedan",
        "status": models.VEHICLE_ACTIVE,
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    row.update(values)
    return _insert(engine, models.vehicles, row)


def add_service_type(engine, name="city_ride", **values):
    row = {"name": name, "display_name": name.replace("_", " ").title(), "is_active": True}
    row.update(values)
    return _insert(engine, models.service_types, row)


def add_pricing_rule(engine, service_type_id, **values):
    row = {
        "service_type_id": service_type_id,
        "vehicle_type": "sedan",
        "base_fare": 50.0,
        "per_km_rate": 10.0,
        "per_minute_rate": 2.0,
        "minimum_fare": 100.0,
        "surge_multiplier": 1.0,
        "is_active": True,
    }
    row.update(values)
    return _insert(engine, models.pricing_rules, row)


def add_booking(engine, **values):
    row = {
        "pickup_address": "Connaught Place, New Delhi",
        "dropoff_address": "IGI Airport Terminal 3",
        "pickup_latitude": 28.6315,
        "pickup_longitude": 77.2167,
        "dropoff_latitude": 28.5562,
        "dropoff_longitude": 77.1000,
        "fare_amount": 450.0,
        "status": models.BOOKING_PENDING,
        "payment_status": models.PAY_PENDING,
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    row.update(values)
    return _insert(engine, models.bookings, row)


def add_user(engine, **values):
    row = {
        "role": "customer",
        "status": models.USER_ACTIVE,
        "full_name": "Asha Verma",
        "email": "asha@example.com",
        "phone_no": "+919811111111",
        "created_at": datetime.now(timezone.utc),
        "updated_at": datetime.now(timezone.utc),
    }
    row.update(values)
    return _insert(engine, models.user_management_view, row)


def fetch(engine, table, row_id):
    with engine.connect() as conn:
        return conn.execute(table.select().where(table.c.id == row_id)).mappings().first()


def count(engine, table):
    with engine.connect() as conn:
        return len(conn.execute(table.select()).all())
