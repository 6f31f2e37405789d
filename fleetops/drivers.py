from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select, update, delete, desc, or_
from . import baas, models
from .db import as_dict
from .errors import RecordNotFound, reported
from .schemas import DriverEditForm
import logging
import time
import httpx

logger = logging.getLogger(__name__)

RECENT_BOOKINGS_LIMIT = 10


async def list_drivers(conn, status: Optional[str] = None, search: Optional[str] = None) -> List[dict]:
    sel = select(models.drivers).order_by(desc(models.drivers.c.created_at))
    if status and status != "all":
        sel = sel.where(models.drivers.c.status == status)
    if search:
        pattern = f"%{search}%"
        sel = sel.where(or_(
            models.drivers.c.full_name.ilike(pattern),
            models.drivers.c.phone_no.ilike(pattern),
            models.drivers.c.license_number.ilike(pattern),
        ))
    with reported("Failed to fetch drivers"):
        rows = (await conn.execute(sel)).all()
    return [as_dict(r) for r in rows]


async def get_driver(conn, driver_id: str) -> dict:
    with reported("Failed to fetch driver"):
        row = (await conn.execute(select(models.drivers).where(models.drivers.c.id == driver_id))).first()
    if not row:
        raise RecordNotFound("driver not found")
    return as_dict(row)


async def upload_profile_picture(driver_id: str, upload: baas.Upload) -> str:
    path = f"{driver_id}-{int(time.time() * 1000)}.{baas.file_extension(upload.filename, 'jpg')}"
    with reported("Failed to upload profile picture"):
        return await baas.client.upload(baas.PROFILE_PICTURES_BUCKET, path, upload.content, upload.content_type)


async def remove_stored_files(bucket: str, urls, warnings: List[str], what: str):
    """Best-effort storage cleanup; a failure becomes a warning, not an error."""
    paths = [baas.client.object_path(bucket, url) for url in urls]
    try:
        await baas.client.remove(bucket, [p for p in paths if p])
    except httpx.HTTPError as e:
        logger.warning("storage_cleanup_failed: bucket=%s paths=%s err=%s", bucket, paths, e)
        warnings.append(f"Failed to remove {what}")


async def update_driver(conn, driver_id: str, form: DriverEditForm,
                        picture: Optional[baas.Upload] = None) -> Tuple[dict, List[str]]:
    """Update the profile and replace or remove the profile picture.

    A failed upload aborts the update; a failed removal of the old file only warns.
    """
    driver = await get_driver(conn, driver_id)
    warnings: List[str] = []
    current_url = driver["profile_picture_url"]
    picture_url = current_url

    if form.remove_profile_picture:
        if current_url:
            await remove_stored_files(baas.PROFILE_PICTURES_BUCKET, [current_url], warnings, "old profile picture")
        picture_url = None
    elif picture is not None:
        picture_url = await upload_profile_picture(driver_id, picture)
        if current_url:
            await remove_stored_files(baas.PROFILE_PICTURES_BUCKET, [current_url], warnings, "old profile picture")

    values = form.model_dump(exclude={"remove_profile_picture"})
    with reported("Failed to update driver"):
        await conn.execute(
            update(models.drivers).where(models.drivers.c.id == driver_id).values(
                **values, profile_picture_url=picture_url, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.info("driver_updated: id=%s picture_changed=%s", driver_id, picture_url != current_url)
    return await get_driver(conn, driver_id), warnings


async def delete_driver(conn, driver_id: str) -> List[str]:
    driver = await get_driver(conn, driver_id)
    warnings: List[str] = []
    if driver["profile_picture_url"]:
        await remove_stored_files(baas.PROFILE_PICTURES_BUCKET, [driver["profile_picture_url"]], warnings, "profile picture")
    kyc_urls = [driver["license_document_url"], driver["id_proof_document_url"]]
    if any(kyc_urls):
        await remove_stored_files(baas.KYC_DOCUMENTS_BUCKET, [u for u in kyc_urls if u], warnings, "KYC documents")
    with reported("Failed to delete driver"):
        await conn.execute(delete(models.drivers).where(models.drivers.c.id == driver_id))
        await conn.commit()
    logger.info("driver_deleted: id=%s", driver_id)
    return warnings


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


async def driver_performance(conn, driver_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    driver = await get_driver(conn, driver_id)
    now = now or datetime.now(timezone.utc)
    with reported("Failed to load performance data"):
        rows = (await conn.execute(
            select(models.bookings).where(models.bookings.c.driver_id == driver_id).order_by(desc(models.bookings.c.created_at))
        )).all()
    bookings = [as_dict(r) for r in rows]
    monthly = [
        b for b in bookings
        if b["created_at"] and _aware(b["created_at"]).year == now.year and _aware(b["created_at"]).month == now.month
    ]
    return {
        "total_trips": len(bookings),
        "completed_trips": sum(1 for b in bookings if b["status"] == models.BOOKING_COMPLETED),
        "cancelled_trips": sum(1 for b in bookings if b["status"] == models.BOOKING_CANCELLED),
        "avg_rating": driver["rating"] or 0.0,
        "total_earnings": round(sum(b["fare_amount"] or 0.0 for b in bookings), 2),
        "monthly_trips": len(monthly),
        "monthly_earnings": round(sum(b["fare_amount"] or 0.0 for b in monthly), 2),
        "recent_bookings": bookings[:RECENT_BOOKINGS_LIMIT],
    }


async def update_location(conn, driver_id: str, latitude: float, longitude: float) -> dict:
    await get_driver(conn, driver_id)
    with reported("Failed to update driver location"):
        await conn.execute(
            update(models.drivers).where(models.drivers.c.id == driver_id).values(
                current_latitude=latitude, current_longitude=longitude, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.debug("driver_location_updated: id=%s lat=%s lng=%s", driver_id, latitude, longitude)
    return await get_driver(conn, driver_id)
