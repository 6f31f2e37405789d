from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from sqlalchemy import select, insert, update, delete, desc
from . import baas, models
from .db import as_dict, assert_unchanged
from .documents import list_vehicle_documents
from .drivers import remove_stored_files
from .errors import RecordNotFound, reported
from .schemas import AlertForm, MaintenanceLogForm, PerformanceForm, VehicleEditForm, VehicleForm
import logging
import time
import httpx

logger = logging.getLogger(__name__)

# form file field -> (bucket, vehicle column, object name inside <vehicle_id>/)
FILE_SLOTS = {
    "image": (baas.VEHICLE_IMAGES_BUCKET, "image_url", "image"),
    "insurance_document": (baas.VEHICLE_DOCUMENTS_BUCKET, "insurance_document_url", "insurance"),
    "registration_document": (baas.VEHICLE_DOCUMENTS_BUCKET, "registration_document_url", "registration"),
    "pollution_certificate": (baas.VEHICLE_DOCUMENTS_BUCKET, "pollution_certificate_url", "pollution"),
}

STATUS_GROUPS = {
    models.VEHICLE_MAINTENANCE: (models.VEHICLE_MAINTENANCE, models.VEHICLE_IN_MAINTENANCE),
    models.VEHICLE_OUT_OF_SERVICE: (models.VEHICLE_OUT_OF_SERVICE, models.VEHICLE_UNAVAILABLE),
}


def status_display_name(status: str) -> str:
    if status in STATUS_GROUPS[models.VEHICLE_MAINTENANCE]:
        return "Maintenance"
    if status in STATUS_GROUPS[models.VEHICLE_OUT_OF_SERVICE]:
        return "Out of Service"
    return status[:1].upper() + status[1:]


def type_display_name(vehicle_type: str) -> str:
    return vehicle_type[:1].upper() + vehicle_type[1:]


def display_name(vehicle: Mapping[str, Any]) -> str:
    name = " ".join(p for p in (vehicle.get("make"), vehicle.get("model")) if p)
    return f"{name} ({vehicle['license_plate']})" if vehicle.get("license_plate") else name


def filter_vehicles(vehicles: List[dict], search: str = "", status: str = "all") -> List[dict]:
    term = (search or "").lower()
    accepted = STATUS_GROUPS.get(status, (status,))
    return [
        v for v in vehicles
        if (not term or any(term in (v.get(f) or "").lower() for f in ("make", "model", "license_plate")))
        and (not status or status == "all" or v.get("status") in accepted)
    ]


def _decorate(vehicle: dict) -> dict:
    vehicle["status_display"] = status_display_name(vehicle.get("status") or "")
    vehicle["type_display"] = type_display_name(vehicle.get("type") or "")
    return vehicle


async def list_vehicles(conn, search: str = "", status: str = "all") -> List[dict]:
    with reported("Failed to fetch vehicles"):
        rows = (await conn.execute(select(models.vehicles).order_by(models.vehicles.c.make))).all()
    return [_decorate(v) for v in filter_vehicles([as_dict(r) for r in rows], search, status)]


async def get_vehicle(conn, vehicle_id: str) -> dict:
    with reported("Failed to fetch vehicle"):
        row = (await conn.execute(select(models.vehicles).where(models.vehicles.c.id == vehicle_id))).first()
    if not row:
        raise RecordNotFound("vehicle not found")
    return _decorate(as_dict(row))


async def _children(conn, table, vehicle_id: str, order_col) -> List[dict]:
    rows = (await conn.execute(select(table).where(table.c.vehicle_id == vehicle_id).order_by(desc(order_col)))).all()
    return [as_dict(r) for r in rows]


async def get_vehicle_detail(conn, vehicle_id: str) -> dict:
    """Vehicle with its assigned driver and every detail-page tab."""
    vehicle = await get_vehicle(conn, vehicle_id)
    with reported("Failed to fetch vehicle details"):
        driver = None
        if vehicle["assigned_driver_id"]:
            driver = as_dict((await conn.execute(
                select(models.drivers).where(models.drivers.c.id == vehicle["assigned_driver_id"])
            )).first())
        vehicle["maintenance_logs"] = await _children(
            conn, models.vehicle_maintenance_logs, vehicle_id, models.vehicle_maintenance_logs.c.maintenance_date)
        vehicle["performance"] = await _children(
            conn, models.vehicle_performance, vehicle_id, models.vehicle_performance.c.recorded_date)
        vehicle["alerts"] = await _children(
            conn, models.vehicle_alerts, vehicle_id, models.vehicle_alerts.c.created_at)
    vehicle["driver"] = driver
    vehicle["documents"] = await list_vehicle_documents(conn, vehicle_id)
    return vehicle


def _slot_path(vehicle_id: str, slot: str, upload: baas.Upload) -> str:
    _, _, name = FILE_SLOTS[slot]
    return f"{vehicle_id}/{name}.{baas.file_extension(upload.filename)}"


async def create_vehicle(conn, form: VehicleForm, files: Dict[str, baas.Upload]) -> Tuple[dict, List[str]]:
    """Insert the vehicle first, then upload each file under its id.

    A failed upload keeps the record and comes back as a warning.
    """
    now = datetime.now(timezone.utc)
    with reported("Failed to create vehicle"):
        res = await conn.execute(
            insert(models.vehicles).returning(models.vehicles.c.id).values(
                **form.model_dump(), created_at=now, updated_at=now
            )
        )
        vehicle_id = res.scalar_one()
        await conn.commit()
    logger.info("vehicle_created: id=%s plate=%s", vehicle_id, form.license_plate)

    warnings: List[str] = []
    urls = {}
    for slot, upload in files.items():
        if upload is None:
            continue
        bucket, column, _ = FILE_SLOTS[slot]
        try:
            urls[column] = await baas.client.upload(bucket, _slot_path(vehicle_id, slot, upload), upload.content, upload.content_type)
        except httpx.HTTPError as e:
            logger.error("vehicle_upload_failed: id=%s slot=%s err=%s", vehicle_id, slot, e)
            warnings.append(f"Failed to upload {slot.replace('_', ' ')}")

    if urls:
        with reported("Failed to update vehicle with files"):
            await conn.execute(update(models.vehicles).where(models.vehicles.c.id == vehicle_id).values(**urls))
            await conn.commit()
    return await get_vehicle(conn, vehicle_id), warnings


async def update_vehicle(conn, vehicle_id: str, form: VehicleEditForm,
                         files: Dict[str, baas.Upload]) -> Tuple[dict, List[str]]:
    vehicle = await get_vehicle(conn, vehicle_id)
    assert_unchanged(vehicle["updated_at"], form.expected_updated_at)
    warnings: List[str] = []
    values = form.model_dump(exclude={
        "remove_image", "remove_insurance_document", "remove_registration_document",
        "remove_pollution_certificate", "expected_updated_at",
    })

    for slot, (bucket, column, _) in FILE_SLOTS.items():
        current = vehicle[column]
        upload = files.get(slot)
        if getattr(form, f"remove_{slot}"):
            if current:
                await remove_stored_files(bucket, [current], warnings, slot.replace("_", " "))
            values[column] = None
        elif upload is not None:
            with reported(f"Failed to upload {slot.replace('_', ' ')}"):
                url = await baas.client.upload(
                    bucket, _slot_path(vehicle_id, slot, upload), upload.content, upload.content_type, upsert=True
                )
            # a different extension leaves the old object behind
            if current and current != url:
                await remove_stored_files(bucket, [current], warnings, f"old {slot.replace('_', ' ')}")
            values[column] = url

    with reported("Failed to update vehicle"):
        await conn.execute(
            update(models.vehicles).where(models.vehicles.c.id == vehicle_id).values(
                **values, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.info("vehicle_updated: id=%s", vehicle_id)
    return await get_vehicle(conn, vehicle_id), warnings


async def delete_vehicle(conn, vehicle_id: str) -> List[str]:
    vehicle = await get_vehicle(conn, vehicle_id)
    warnings: List[str] = []
    for bucket in (baas.VEHICLE_IMAGES_BUCKET, baas.VEHICLE_DOCUMENTS_BUCKET):
        urls = [vehicle[column] for b, column, _ in FILE_SLOTS.values() if b == bucket and vehicle[column]]
        if urls:
            await remove_stored_files(bucket, urls, warnings, "vehicle files")
    with reported("Failed to delete vehicle"):
        await conn.execute(delete(models.vehicles).where(models.vehicles.c.id == vehicle_id))
        await conn.commit()
    logger.info("vehicle_deleted: id=%s", vehicle_id)
    return warnings


# --- maintenance logs -------------------------------------------------------


async def get_maintenance_log(conn, log_id: str) -> dict:
    with reported("Failed to fetch maintenance log"):
        row = (await conn.execute(
            select(models.vehicle_maintenance_logs).where(models.vehicle_maintenance_logs.c.id == log_id)
        )).first()
    if not row:
        raise RecordNotFound("maintenance log not found")
    return as_dict(row)


async def add_maintenance_log(conn, vehicle_id: str, form: MaintenanceLogForm,
                              bill: Optional[baas.Upload] = None) -> dict:
    await get_vehicle(conn, vehicle_id)
    now = datetime.now(timezone.utc)
    with reported("Failed to add service record"):
        bill_url = None
        if bill is not None:
            path = f"{vehicle_id}/bills/{int(time.time() * 1000)}-{bill.filename or 'bill'}"
            bill_url = await baas.client.upload(baas.VEHICLE_DOCUMENTS_BUCKET, path, bill.content, bill.content_type)
        res = await conn.execute(
            insert(models.vehicle_maintenance_logs).returning(models.vehicle_maintenance_logs.c.id).values(
                vehicle_id=vehicle_id, bill_document_url=bill_url, created_at=now, updated_at=now, **form.model_dump()
            )
        )
        log_id = res.scalar_one()
        await conn.commit()
    logger.info("maintenance_log_added: vehicle=%s id=%s", vehicle_id, log_id)
    return await get_maintenance_log(conn, log_id)


async def update_maintenance_log(conn, log_id: str, form: MaintenanceLogForm) -> dict:
    await get_maintenance_log(conn, log_id)
    with reported("Failed to save maintenance log"):
        await conn.execute(
            update(models.vehicle_maintenance_logs).where(models.vehicle_maintenance_logs.c.id == log_id).values(
                **form.model_dump(), updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    return await get_maintenance_log(conn, log_id)


async def delete_maintenance_log(conn, log_id: str):
    await get_maintenance_log(conn, log_id)
    with reported("Failed to delete maintenance log"):
        await conn.execute(delete(models.vehicle_maintenance_logs).where(models.vehicle_maintenance_logs.c.id == log_id))
        await conn.commit()
    logger.info("maintenance_log_deleted: id=%s", log_id)


# --- performance ------------------------------------------------------------


def fuel_economy(distance: Optional[float], fuel: Optional[float]) -> Optional[float]:
    if distance and fuel and fuel > 0:
        return distance / fuel
    return None


def performance_summary(records: List[dict], today: Optional[date] = None) -> Dict[str, Any]:
    today = today or date.today()
    economies = [r["fuel_economy"] for r in records if r.get("fuel_economy")]
    return {
        "latest": records[0] if records else None,
        "average_fuel_economy": sum(economies) / len(economies) if economies else None,
        "total_distance": sum(r.get("distance_traveled") or 0.0 for r in records),
        "monthly_distance": sum(
            r.get("distance_traveled") or 0.0 for r in records
            if r["recorded_date"].year == today.year and r["recorded_date"].month == today.month
        ),
    }


async def add_performance_record(conn, vehicle_id: str, form: PerformanceForm) -> dict:
    """Record a reading; an odometer value also refreshes the vehicle's running figures."""
    vehicle = await get_vehicle(conn, vehicle_id)
    with reported("Failed to load performance data"):
        history = await _children(conn, models.vehicle_performance, vehicle_id, models.vehicle_performance.c.recorded_date)
    economy = fuel_economy(form.distance_traveled, form.fuel_consumed)
    now = datetime.now(timezone.utc)
    with reported("Failed to add performance record"):
        await conn.execute(
            insert(models.vehicle_performance).values(
                vehicle_id=vehicle_id, fuel_economy=economy, created_at=now, updated_at=now, **form.model_dump()
            )
        )
        if form.odometer_reading:
            monthly = performance_summary(history)["monthly_distance"]
            await conn.execute(
                update(models.vehicles).where(models.vehicles.c.id == vehicle_id).values(
                    current_odometer=form.odometer_reading,
                    average_fuel_economy=economy or vehicle["average_fuel_economy"],
                    monthly_distance=monthly + (form.distance_traveled or 0.0),
                    updated_at=now,
                )
            )
        await conn.commit()
    logger.info("performance_recorded: vehicle=%s odometer=%s", vehicle_id, form.odometer_reading)
    return await get_vehicle_detail(conn, vehicle_id)


# --- alerts -----------------------------------------------------------------


async def add_alert(conn, vehicle_id: str, form: AlertForm) -> dict:
    await get_vehicle(conn, vehicle_id)
    now = datetime.now(timezone.utc)
    with reported("Failed to create alert"):
        res = await conn.execute(
            insert(models.vehicle_alerts).returning(models.vehicle_alerts.c.id).values(
                vehicle_id=vehicle_id, is_resolved=False, created_at=now, updated_at=now, **form.model_dump()
            )
        )
        alert_id = res.scalar_one()
        await conn.commit()
    logger.info("vehicle_alert_created: vehicle=%s id=%s type=%s", vehicle_id, alert_id, form.alert_type)
    return await get_alert(conn, alert_id)


async def get_alert(conn, alert_id: str) -> dict:
    with reported("Failed to fetch alert"):
        row = (await conn.execute(select(models.vehicle_alerts).where(models.vehicle_alerts.c.id == alert_id))).first()
    if not row:
        raise RecordNotFound("alert not found")
    return as_dict(row)


async def resolve_alert(conn, alert_id: str) -> dict:
    await get_alert(conn, alert_id)
    now = datetime.now(timezone.utc)
    with reported("Failed to resolve alert"):
        await conn.execute(
            update(models.vehicle_alerts).where(models.vehicle_alerts.c.id == alert_id).values(
                is_resolved=True, resolved_date=now, updated_at=now
            )
        )
        await conn.commit()
    return await get_alert(conn, alert_id)
