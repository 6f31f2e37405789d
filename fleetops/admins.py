"""The signed-in admin's own profile."""
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from sqlalchemy import select, update
from . import baas, models
from .db import as_dict
from .drivers import remove_stored_files
from .errors import RecordNotFound, reported
from .schemas import AdminProfileForm
import logging
import time

logger = logging.getLogger(__name__)


async def get_profile(conn, admin_id: str) -> dict:
    with reported("Failed to load profile data"):
        row = (await conn.execute(select(models.admins).where(models.admins.c.id == admin_id))).first()
    if not row:
        raise RecordNotFound("admin not found")
    return as_dict(row)


async def upload_profile_picture(admin_id: str, upload: baas.Upload) -> str:
    # admins share the drivers' picture bucket under an admin- prefix
    path = f"admin-{admin_id}-{int(time.time() * 1000)}.{baas.file_extension(upload.filename, 'jpg')}"
    with reported("Failed to upload profile picture"):
        return await baas.client.upload(baas.PROFILE_PICTURES_BUCKET, path, upload.content, upload.content_type)


async def update_profile(conn, admin_id: str, form: AdminProfileForm,
                         picture: Optional[baas.Upload] = None) -> Tuple[dict, List[str]]:
    """Name, phone and region; email is fixed. A new picture replaces the old one."""
    admin = await get_profile(conn, admin_id)
    warnings: List[str] = []
    picture_url = admin["profile_picture_url"]
    if picture is not None:
        picture_url = await upload_profile_picture(admin_id, picture)
        if admin["profile_picture_url"]:
            await remove_stored_files(baas.PROFILE_PICTURES_BUCKET, [admin["profile_picture_url"]], warnings,
                                      "old profile picture")

    with reported("Failed to update profile"):
        await conn.execute(
            update(models.admins).where(models.admins.c.id == admin_id).values(
                **form.model_dump(), profile_picture_url=picture_url, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.info("admin_profile_updated: id=%s picture_changed=%s", admin_id, picture_url != admin["profile_picture_url"])
    return await get_profile(conn, admin_id), warnings
