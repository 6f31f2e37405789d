"""Live tracking: a periodic snapshot of active drivers and their current rides.

The poller stores the joined driver/booking/vehicle rows in Redis; map
payloads (markers, route requests, bounds) are built from that snapshot on
read so the driver filter needs no backend round trip.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import select, and_
from . import cache, db, models
from .config import settings
from .errors import reported
import logging

logger = logging.getLogger(__name__)

TRACKED_BOOKING_STATUSES = (models.BOOKING_ACCEPTED, models.BOOKING_STARTED)

MARKER_COLORS = {"pickup": "#F59E0B", "dropoff": "#EF4444"}
DRIVER_ACTIVE_COLOR = "#10B981"
DRIVER_OTHER_COLOR = "#3B82F6"
DRIVER_Z_INDEX = 1000
STOP_Z_INDEX = 500

DRIVER_FIELDS = ("id", "full_name", "status", "current_latitude", "current_longitude", "phone_no", "rating")
BOOKING_FIELDS = ("id", "driver_id", "vehicle_id", "pickup_address", "dropoff_address", "pickup_latitude",
                  "pickup_longitude", "dropoff_latitude", "dropoff_longitude", "status")
VEHICLE_FIELDS = ("id", "make", "model", "type", "license_plate")


def _columns(table, names):
    return [table.c[n] for n in names]


async def fetch_tracking_rows(conn) -> List[Dict[str, Any]]:
    """Active drivers, each with its accepted/started booking and that booking's vehicle."""
    with reported("Failed to fetch tracking data"):
        drivers = (await conn.execute(
            select(*_columns(models.drivers, DRIVER_FIELDS)).where(models.drivers.c.status == models.DRIVER_ACTIVE)
        )).all()
        bookings = (await conn.execute(
            select(*_columns(models.bookings, BOOKING_FIELDS)).where(models.bookings.c.status.in_(TRACKED_BOOKING_STATUSES))
        )).all()
        vehicle_ids = {b.vehicle_id for b in bookings if b.vehicle_id}
        vehicles = {}
        if vehicle_ids:
            rows = (await conn.execute(
                select(*_columns(models.vehicles, VEHICLE_FIELDS)).where(models.vehicles.c.id.in_(vehicle_ids))
            )).all()
            vehicles = {r.id: db.as_dict(r) for r in rows}

    result = []
    for driver in drivers:
        booking = next((db.as_dict(b) for b in bookings if b.driver_id == driver.id), None)
        result.append({
            "driver": db.as_dict(driver),
            "booking": booking,
            "vehicle": vehicles.get(booking["vehicle_id"]) if booking else None,
        })
    return result


def counters(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total_drivers": len(rows),
        "active_drivers": sum(1 for r in rows if r["driver"]["status"] == models.DRIVER_ACTIVE),
        "on_ride_drivers": sum(1 for r in rows if r["booking"] and r["booking"]["status"] == models.BOOKING_STARTED),
    }


def _position(lat, lng) -> Optional[Dict[str, float]]:
    # a zero coordinate counts as unknown
    if not lat or not lng:
        return None
    return {"lat": float(lat), "lng": float(lng)}


def driver_marker(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    driver, booking, vehicle = row["driver"], row["booking"], row["vehicle"]
    position = _position(driver["current_latitude"], driver["current_longitude"])
    if position is None:
        return None
    info = [f"Status: {driver['status']}", f"Phone: {driver['phone_no']}"]
    if driver.get("rating"):
        info.append(f"Rating: {driver['rating']}/5")
    if vehicle:
        info.append(f"Vehicle: {vehicle['make']} {vehicle['model']}")
    if booking:
        info.append(f"Booking: {booking['status']}")
    return {
        "key": f"driver-{driver['id']}",
        "kind": "driver",
        "position": position,
        "color": DRIVER_ACTIVE_COLOR if driver["status"] == models.DRIVER_ACTIVE else DRIVER_OTHER_COLOR,
        "title": f"{driver['full_name']} - {driver['status']}",
        "z_index": DRIVER_Z_INDEX,
        "info": {"heading": driver["full_name"], "lines": info},
    }


def stop_marker(booking: Dict[str, Any], kind: str) -> Optional[Dict[str, Any]]:
    position = _position(booking[f"{kind}_latitude"], booking[f"{kind}_longitude"])
    if position is None:
        return None
    address = booking[f"{kind}_address"]
    return {
        "key": f"{kind}-{booking['id']}",
        "kind": kind,
        "position": position,
        "color": MARKER_COLORS[kind],
        "title": f"{kind.capitalize()}: {address}",
        "z_index": STOP_Z_INDEX,
        "info": {"heading": f"{kind.capitalize()} Location", "lines": [address] if address else []},
    }


def route_request(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pickup to dropoff through the driver's position, when all three are known."""
    booking, driver = row["booking"], row["driver"]
    if not booking:
        return None
    origin = _position(booking["pickup_latitude"], booking["pickup_longitude"])
    destination = _position(booking["dropoff_latitude"], booking["dropoff_longitude"])
    via = _position(driver["current_latitude"], driver["current_longitude"])
    if not (origin and destination and via):
        return None
    return {
        "driver_id": driver["id"],
        "booking_id": booking["id"],
        "origin": origin,
        "destination": destination,
        "waypoints": [{"location": via, "stopover": True}],
        "travelMode": "DRIVING",
        "optimizeWaypoints": True,
    }


def bounds(markers: List[Dict[str, Any]]) -> Optional[Dict[str, float]]:
    if not markers:
        return None
    lats = [m["position"]["lat"] for m in markers]
    lngs = [m["position"]["lng"] for m in markers]
    return {"north": max(lats), "south": min(lats), "east": max(lngs), "west": min(lngs)}


def build_map_payload(rows: List[Dict[str, Any]], driver_id: Optional[str] = None,
                      only_on_trip: bool = False) -> Dict[str, Any]:
    selected = [r for r in rows if not driver_id or driver_id == "all" or r["driver"]["id"] == driver_id]
    if only_on_trip:
        selected = [r for r in selected if r["booking"] and r["booking"]["status"] in TRACKED_BOOKING_STATUSES]

    markers, routes = [], []
    for row in selected:
        candidates = [driver_marker(row)]
        if row["booking"]:
            candidates += [stop_marker(row["booking"], "pickup"), stop_marker(row["booking"], "dropoff")]
        markers.extend(m for m in candidates if m)
        route = route_request(row)
        if route:
            routes.append(route)

    return {
        "entries": selected,
        "markers": markers,
        "routes": routes,
        "bounds": bounds(markers),
        "counters": counters(rows),
    }


async def refresh_snapshot() -> Dict[str, Any]:
    async with db.get_conn() as conn:
        rows = await fetch_tracking_rows(conn)
    snapshot = {"updated_at": datetime.now(timezone.utc).isoformat(), "rows": rows}
    await cache.set_json(cache.redis_client, cache.TRACKING_SNAPSHOT_KEY, snapshot)
    logger.debug("tracking_snapshot_refreshed: drivers=%d", len(rows))
    return snapshot


async def get_snapshot(refresh: bool = False) -> Dict[str, Any]:
    snapshot = None if refresh else await cache.get_json(cache.redis_client, cache.TRACKING_SNAPSHOT_KEY)
    if snapshot is None:
        snapshot = await refresh_snapshot()
    return snapshot


# Ticks still running. The event loop keeps only weak references to tasks.
_refresh_tasks = set()


async def _refresh_tick():
    try:
        await refresh_snapshot()
    except Exception as e:
        logger.error("tracking_refresh: error during refresh: %s", e)


async def poll_tracking():
    """Refresh the snapshot every TRACKING_POLL_INTERVAL_SEC.

    Each tick runs as its own task, so a slow fetch may overlap the next one.
    """
    while True:
        task = asyncio.create_task(_refresh_tick())
        _refresh_tasks.add(task)
        task.add_done_callback(_refresh_tasks.discard)
        await asyncio.sleep(settings.TRACKING_POLL_INTERVAL_SEC)
