from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select, insert, update, and_, desc
from . import models, pricing
from .db import as_dict, assert_unchanged
from .errors import ActionRejected, RecordNotFound, reported
from .schemas import BookingCreate
import logging

logger = logging.getLogger(__name__)

# Which actions the status panel offers for a booking in a given status.
ASSIGNABLE_STATUSES = {models.BOOKING_PENDING, models.BOOKING_ACCEPTED}
FARE_EDITABLE_STATUSES = {models.BOOKING_PENDING, models.BOOKING_COMPLETED}
FINAL_STATUSES = {models.BOOKING_CANCELLED, models.BOOKING_COMPLETED}
ACTIVE_STATUSES = {models.BOOKING_ACCEPTED, models.BOOKING_STARTED}

SCHEDULE_WINDOW = timedelta(hours=48)


def allowed_actions(status: Optional[str]) -> Dict[str, bool]:
    return {
        "assign": status in ASSIGNABLE_STATUSES,
        "update_status": status not in FINAL_STATUSES,
        "edit_fare": status in FARE_EDITABLE_STATUSES,
        "cancel": status not in FINAL_STATUSES,
    }


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _contains(value: Optional[str], term: str) -> bool:
    return bool(value) and term in value.lower()


def filter_bookings(bookings: Iterable[Dict[str, Any]], search: str = "", status: str = "",
                    service_type: str = "", time_range: str = "", assignment_status: str = "",
                    now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Apply the bookings page filters to joined booking dicts.

    Empty values and "all" disable a filter.
    """
    now = now or datetime.now(timezone.utc)
    result = list(bookings)

    if search:
        term = search.lower()
        result = [
            b for b in result
            if _contains(b["id"], term)
            or _contains(b.get("pickup_address"), term)
            or _contains(b.get("dropoff_address"), term)
            or _contains((b.get("driver") or {}).get("full_name"), term)
            or _contains((b.get("vehicle") or {}).get("license_plate"), term)
        ]

    if status and status != "all":
        result = [b for b in result if b["status"] == status]

    if service_type and service_type != "all":
        result = [b for b in result if (b.get("service_type") or {}).get("name") == service_type]

    if time_range and time_range != "all":
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if time_range == "today":
            result = [b for b in result if _aware(b["created_at"]) >= today]
        elif time_range == "upcoming":
            result = [
                b for b in result
                if b.get("is_scheduled") and b.get("scheduled_time") and _aware(b["scheduled_time"]) > now
            ]
        elif time_range == "past_7_days":
            result = [b for b in result if _aware(b["created_at"]) >= now - timedelta(days=7)]
        elif time_range == "past_30_days":
            result = [b for b in result if _aware(b["created_at"]) >= now - timedelta(days=30)]

    if assignment_status and assignment_status != "all":
        if assignment_status == "assigned":
            result = [b for b in result if b.get("driver_id") and b.get("vehicle_id")]
        elif assignment_status == "partial":
            result = [b for b in result if bool(b.get("driver_id")) != bool(b.get("vehicle_id"))]
        elif assignment_status == "unassigned":
            result = [b for b in result if not b.get("driver_id") and not b.get("vehicle_id")]

    return result


def dashboard_stats(bookings: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "total_bookings": len(bookings),
        "pending_bookings": sum(1 for b in bookings if b["status"] == models.BOOKING_PENDING),
        "active_bookings": sum(1 for b in bookings if b["status"] in ACTIVE_STATUSES),
        "unassigned_bookings": sum(1 for b in bookings if not b.get("driver_id") or not b.get("vehicle_id")),
        "total_revenue": round(sum(b.get("fare_amount") or 0.0 for b in bookings if b["status"] == models.BOOKING_COMPLETED), 2),
    }


async def _rows_by_id(conn, table, ids) -> Dict[str, dict]:
    ids = {i for i in ids if i}
    if not ids:
        return {}
    rows = (await conn.execute(select(table).where(table.c.id.in_(ids)))).all()
    return {r._mapping["id"]: as_dict(r) for r in rows}


async def list_bookings(conn, **filters) -> Dict[str, Any]:
    """All bookings with service type, driver and vehicle joined, newest first."""
    with reported("Failed to load booking data"):
        rows = (await conn.execute(select(models.bookings).order_by(desc(models.bookings.c.created_at)))).all()
        bookings = [as_dict(r) for r in rows]
        services = await _rows_by_id(conn, models.service_types, (b["service_type_id"] for b in bookings))
        drivers = await _rows_by_id(conn, models.drivers, (b["driver_id"] for b in bookings))
        vehicles = await _rows_by_id(conn, models.vehicles, (b["vehicle_id"] for b in bookings))
    for b in bookings:
        b["service_type"] = services.get(b["service_type_id"])
        b["driver"] = drivers.get(b["driver_id"])
        b["vehicle"] = vehicles.get(b["vehicle_id"])
    return {"bookings": filter_bookings(bookings, **filters), "stats": dashboard_stats(bookings)}


async def get_booking(conn, booking_id: str) -> dict:
    with reported("Failed to load booking"):
        row = (await conn.execute(select(models.bookings).where(models.bookings.c.id == booking_id))).first()
    if not row:
        raise RecordNotFound("booking not found")
    return as_dict(row)


async def get_booking_detail(conn, booking_id: str) -> dict:
    booking = await get_booking(conn, booking_id)
    with reported("Failed to load booking"):
        related = {
            "driver": await _rows_by_id(conn, models.drivers, [booking["driver_id"]]),
            "vehicle": await _rows_by_id(conn, models.vehicles, [booking["vehicle_id"]]),
            "service_type": await _rows_by_id(conn, models.service_types, [booking["service_type_id"]]),
            "rental_package": await _rows_by_id(conn, models.rental_packages, [booking["rental_package_id"]]),
        }
        stops = (await conn.execute(
            select(models.booking_stops).where(models.booking_stops.c.booking_id == booking_id).order_by(models.booking_stops.c.stop_order)
        )).all()
        cancellations = (await conn.execute(
            select(models.booking_cancellations).where(models.booking_cancellations.c.booking_id == booking_id)
        )).all()
    for key, found in related.items():
        booking[key] = next(iter(found.values()), None)
    booking["stops"] = [as_dict(s) for s in stops]
    booking["cancellations"] = [as_dict(c) for c in cancellations]
    booking["allowed_actions"] = allowed_actions(booking["status"])
    return booking


async def available_resources(conn) -> Dict[str, List[dict]]:
    """Active drivers, and active vehicles nobody is driving yet."""
    with reported("Failed to load available drivers and vehicles"):
        drivers = (await conn.execute(
            select(models.drivers).where(models.drivers.c.status == models.DRIVER_ACTIVE).order_by(models.drivers.c.full_name)
        )).all()
        vehicles = (await conn.execute(
            select(models.vehicles)
            .where(and_(models.vehicles.c.status == models.VEHICLE_ACTIVE, models.vehicles.c.assigned_driver_id.is_(None)))
            .order_by(models.vehicles.c.make, models.vehicles.c.model)
        )).all()
    return {"drivers": [as_dict(d) for d in drivers], "vehicles": [as_dict(v) for v in vehicles]}


async def _write_booking(conn, booking_id: str, failure: str, **values):
    with reported(failure):
        await conn.execute(
            update(models.bookings).where(models.bookings.c.id == booking_id).values(
                **values, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()


async def assign_driver(conn, booking_id: str, driver_id: Optional[str], expected_updated_at=None) -> dict:
    if not driver_id:
        raise ActionRejected("Please select a driver")
    booking = await get_booking(conn, booking_id)
    if not allowed_actions(booking["status"])["assign"]:
        raise ActionRejected(f"Cannot assign a driver to a {booking['status']} booking")
    assert_unchanged(booking["updated_at"], expected_updated_at)
    with reported("Failed to assign driver"):
        found = (await conn.execute(select(models.drivers.c.id).where(models.drivers.c.id == driver_id))).first()
    if not found:
        raise ActionRejected("Selected driver does not exist")
    await _write_booking(conn, booking_id, "Failed to assign driver", driver_id=driver_id)
    logger.info("driver_assigned: booking=%s driver=%s", booking_id, driver_id)
    return await get_booking_detail(conn, booking_id)


async def assign_vehicle(conn, booking_id: str, vehicle_id: Optional[str], expected_updated_at=None) -> dict:
    if not vehicle_id:
        raise ActionRejected("Please select a vehicle")
    booking = await get_booking(conn, booking_id)
    if not allowed_actions(booking["status"])["assign"]:
        raise ActionRejected(f"Cannot assign a vehicle to a {booking['status']} booking")
    assert_unchanged(booking["updated_at"], expected_updated_at)
    now = datetime.now(timezone.utc)
    with reported("Failed to assign vehicle"):
        found = (await conn.execute(select(models.vehicles.c.id).where(models.vehicles.c.id == vehicle_id))).first()
        if not found:
            raise ActionRejected("Selected vehicle does not exist")
        await conn.execute(
            update(models.bookings).where(models.bookings.c.id == booking_id).values(vehicle_id=vehicle_id, updated_at=now)
        )
        # the vehicle follows the booking's driver
        await conn.execute(
            update(models.vehicles).where(models.vehicles.c.id == vehicle_id).values(
                assigned_driver_id=booking["driver_id"], updated_at=now
            )
        )
        await conn.commit()
    logger.info("vehicle_assigned: booking=%s vehicle=%s driver=%s", booking_id, vehicle_id, booking["driver_id"])
    return await get_booking_detail(conn, booking_id)


async def update_status(conn, booking_id: str, new_status: str, expected_updated_at=None) -> dict:
    booking = await get_booking(conn, booking_id)
    if new_status == booking["status"]:
        raise ActionRejected("Status is already set to this value")
    if new_status not in models.BOOKING_STATUSES:
        raise ActionRejected(f"Unknown booking status: {new_status}")
    if not allowed_actions(booking["status"])["update_status"]:
        raise ActionRejected(f"Status of a {booking['status']} booking cannot be changed")
    assert_unchanged(booking["updated_at"], expected_updated_at)

    values = {"status": new_status}
    now = datetime.now(timezone.utc)
    if new_status == models.BOOKING_STARTED and not booking["start_time"]:
        values["start_time"] = now
    elif new_status == models.BOOKING_COMPLETED and not booking["end_time"]:
        values["end_time"] = now
    await _write_booking(conn, booking_id, "Failed to update booking status", **values)
    logger.info("booking_status_updated: booking=%s from=%s to=%s", booking_id, booking["status"], new_status)
    return await get_booking_detail(conn, booking_id)


async def update_fare(conn, booking_id: str, raw_fare: Any, reason: Optional[str] = None,
                      expected_updated_at=None) -> dict:
    fare = pricing.parse_number(raw_fare)
    if fare is None or fare < 0:
        raise ActionRejected("Please enter a valid fare amount")
    booking = await get_booking(conn, booking_id)
    if not allowed_actions(booking["status"])["edit_fare"]:
        raise ActionRejected(f"Fare of a {booking['status']} booking cannot be edited")
    if booking["fare_amount"] is not None and fare == booking["fare_amount"]:
        raise ActionRejected("Fare is already set to this amount")
    assert_unchanged(booking["updated_at"], expected_updated_at)
    await _write_booking(conn, booking_id, "Failed to update fare", fare_amount=fare)
    logger.info("fare_updated: booking=%s old=%s new=%s reason=%s", booking_id, booking["fare_amount"], fare, (reason or "").strip())
    return await get_booking_detail(conn, booking_id)


async def cancel_booking(conn, booking_id: str, reason: Optional[str], expected_updated_at=None) -> dict:
    reason = (reason or "").strip()
    if not reason:
        raise ActionRejected("Please provide a cancellation reason")
    booking = await get_booking(conn, booking_id)
    if not allowed_actions(booking["status"])["cancel"]:
        raise ActionRejected("Booking cannot be cancelled in current status")
    assert_unchanged(booking["updated_at"], expected_updated_at)
    now = datetime.now(timezone.utc)
    with reported("Failed to cancel booking"):
        await conn.execute(
            update(models.bookings).where(models.bookings.c.id == booking_id).values(
                status=models.BOOKING_CANCELLED, cancellation_reason=reason, updated_at=now
            )
        )
        await conn.execute(
            insert(models.booking_cancellations).values(booking_id=booking_id, reason=reason, cancelled_at=now)
        )
        await conn.commit()
    logger.info("booking_cancelled: booking=%s reason=%s", booking_id, reason)
    return await get_booking_detail(conn, booking_id)


def _validate_new_booking(req: BookingCreate, now: datetime):
    if req.service_type == models.SERVICE_CAR_RENTAL:
        if not req.pickup or not req.vehicle_type:
            raise ActionRejected("Please fill in all required fields: pickup location and vehicle type")
    elif not req.pickup or not req.dropoff or not req.vehicle_type:
        raise ActionRejected("Please fill in all required fields: pickup location, dropoff location, and vehicle type")
    if req.is_scheduled:
        if not req.scheduled_time:
            raise ActionRejected("Please select both date and time for scheduled rides")
        when = _aware(req.scheduled_time)
        if when <= now or when > now + SCHEDULE_WINDOW:
            raise ActionRejected("Scheduled rides must be within the next 48 hours")


def _trip_distance(req: BookingCreate) -> Optional[float]:
    if req.distance_km is not None:
        return req.distance_km
    if req.pickup_coordinates and req.dropoff_coordinates:
        return round(pricing.haversine_km(
            (req.pickup_coordinates.lat, req.pickup_coordinates.lng),
            (req.dropoff_coordinates.lat, req.dropoff_coordinates.lng),
        ), 2)
    return None


async def create_booking(conn, req: BookingCreate) -> dict:
    """Create a pending booking priced by the shared fare function."""
    now = datetime.now(timezone.utc)
    _validate_new_booking(req, now)

    with reported("Failed to create booking"):
        service = await pricing.get_service_type(conn, req.service_type)
    if not service:
        raise ActionRejected("Invalid service type")

    distance = _trip_distance(req)
    if distance is None:
        if req.service_type == models.SERVICE_CAR_RENTAL or req.zone_pricing_id:
            distance = 0.0
        else:
            raise ActionRejected("Pickup and dropoff coordinates or a distance are required to price the ride")

    estimate = await pricing.estimate_fare(
        conn, req.service_type, req.vehicle_type, distance, req.duration_minutes,
        rental_package_id=req.rental_package_id, zone_pricing_id=req.zone_pricing_id,
    )
    fare = estimate["fare"]
    is_shared = req.service_type == models.SERVICE_SHARING
    if is_shared:
        fare = round(fare / req.passenger_count, 2)

    values = {
        "user_id": req.user_id,
        "service_type_id": service["id"],
        "pickup_address": req.pickup,
        "dropoff_address": req.dropoff or None,
        "pickup_latitude": req.pickup_coordinates.lat if req.pickup_coordinates else None,
        "pickup_longitude": req.pickup_coordinates.lng if req.pickup_coordinates else None,
        "dropoff_latitude": req.dropoff_coordinates.lat if req.dropoff_coordinates else None,
        "dropoff_longitude": req.dropoff_coordinates.lng if req.dropoff_coordinates else None,
        "distance_km": distance,
        "fare_amount": fare,
        "status": models.BOOKING_PENDING,
        "payment_status": models.PAY_PENDING,
        "payment_method": req.payment_method,
        "ride_type": "shared" if is_shared else ("rent" if req.service_type == models.SERVICE_CAR_RENTAL else "single"),
        "is_scheduled": req.is_scheduled,
        "scheduled_time": req.scheduled_time if req.is_scheduled else None,
        "is_shared": is_shared,
        "total_stops": len(req.stops),
        "created_at": now,
        "updated_at": now,
    }
    if estimate["basis"] == "rental_package":
        with reported("Failed to create booking"):
            package = as_dict((await conn.execute(
                select(models.rental_packages).where(models.rental_packages.c.id == estimate["source_id"])
            )).first())
        values.update(rental_package_id=package["id"], package_hours=package["duration_hours"],
                      included_km=package["included_kilometers"])
    elif estimate["basis"] == "zone_pricing":
        values["zone_pricing_id"] = estimate["source_id"]

    with reported("Failed to create booking"):
        res = await conn.execute(insert(models.bookings).returning(models.bookings.c.id).values(**values))
        booking_id = res.scalar_one()
        if req.stops:
            await conn.execute(insert(models.booking_stops), [
                {
                    "booking_id": booking_id,
                    "stop_order": stop.stop_order,
                    "address": stop.address,
                    "latitude": stop.coordinates.lat if stop.coordinates else None,
                    "longitude": stop.coordinates.lng if stop.coordinates else None,
                    "estimated_duration_minutes": stop.duration,
                    "stop_type": stop.stop_type,
                }
                for stop in req.stops
            ])
        await conn.commit()
    logger.info("booking_created: id=%s service=%s fare=%s", booking_id, req.service_type, fare)
    return await get_booking_detail(conn, booking_id)
