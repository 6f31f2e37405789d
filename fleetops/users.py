from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import select, update, desc, or_
from . import baas, models
from .db import as_dict
from .errors import RecordNotFound, reported
import logging

logger = logging.getLogger(__name__)

ACTIVITY_LIMIT = 50


async def list_users(conn, role: Optional[str] = None, status: Optional[str] = None, search: Optional[str] = None,
                     date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> List[dict]:
    view = models.user_management_view
    sel = select(view).order_by(desc(view.c.created_at))
    if role and role != "all":
        sel = sel.where(view.c.role == role)
    if status and status != "all":
        sel = sel.where(view.c.status == status)
    if search:
        pattern = f"%{search}%"
        sel = sel.where(or_(view.c.full_name.ilike(pattern), view.c.email.ilike(pattern), view.c.phone_no.ilike(pattern)))
    if date_from is not None:
        sel = sel.where(view.c.created_at >= date_from)
    if date_to is not None:
        if date_to.time() == time.min:
            # a bare date covers that whole day
            sel = sel.where(view.c.created_at < date_to + timedelta(days=1))
        else:
            sel = sel.where(view.c.created_at <= date_to)
    with reported("Failed to fetch users"):
        rows = (await conn.execute(sel)).all()
    return [as_dict(r) for r in rows]


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def user_stats(users: List[dict], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return {
        "total_users": len(users),
        "active_users": sum(1 for u in users if u["status"] == models.USER_ACTIVE),
        "blocked_users": sum(1 for u in users if u["status"] == models.USER_BLOCKED),
        "new_users_this_month": sum(1 for u in users if u["created_at"] and _aware(u["created_at"]) >= month_start),
        "role_distribution": {f"{role}s": sum(1 for u in users if u["role"] == role) for role in models.USER_ROLES},
    }


async def get_stats(conn) -> Dict[str, Any]:
    view = models.user_management_view
    with reported("Failed to fetch user statistics"):
        rows = (await conn.execute(select(view.c.role, view.c.status, view.c.created_at))).all()
    return user_stats([as_dict(r) for r in rows])


async def get_user(conn, user_id: str) -> dict:
    view = models.user_management_view
    with reported("Failed to fetch user"):
        row = (await conn.execute(select(view).where(view.c.id == user_id))).first()
    if not row:
        raise RecordNotFound("user not found")
    return as_dict(row)


async def block_user(conn, user_id: str, reason: str, admin_id: Optional[str] = None) -> dict:
    await get_user(conn, user_id)
    with reported("Failed to block user"):
        await baas.client.rpc("toggle_user_block", {
            "user_uuid": user_id, "admin_uuid": admin_id, "action": "block", "reason": reason,
        })
    logger.info("user_blocked: user=%s admin=%s", user_id, admin_id)
    return await get_user(conn, user_id)


async def unblock_user(conn, user_id: str, admin_id: Optional[str] = None) -> dict:
    await get_user(conn, user_id)
    with reported("Failed to unblock user"):
        await baas.client.rpc("toggle_user_block", {"user_uuid": user_id, "admin_uuid": admin_id, "action": "unblock"})
    logger.info("user_unblocked: user=%s admin=%s", user_id, admin_id)
    return await get_user(conn, user_id)


async def delete_user(conn, user_id: str, admin_id: Optional[str] = None):
    await get_user(conn, user_id)
    with reported("Failed to delete user"):
        await baas.client.rpc("soft_delete_user", {"user_uuid": user_id, "admin_uuid": admin_id})
    logger.info("user_deleted: user=%s admin=%s", user_id, admin_id)


async def change_role(conn, user_id: str, new_role: str, admin_id: Optional[str] = None) -> dict:
    await get_user(conn, user_id)
    with reported("Failed to change user role"):
        await baas.client.rpc("change_user_role", {"user_uuid": user_id, "admin_uuid": admin_id, "new_role": new_role})
    logger.info("user_role_changed: user=%s role=%s admin=%s", user_id, new_role, admin_id)
    return await get_user(conn, user_id)


async def list_activities(conn, user_id: str) -> List[dict]:
    t = models.user_activities
    with reported("Failed to fetch user activities"):
        rows = (await conn.execute(
            select(t).where(t.c.user_id == user_id).order_by(desc(t.c.created_at)).limit(ACTIVITY_LIMIT)
        )).all()
    return [as_dict(r) for r in rows]


async def list_reviews(conn, user_id: str) -> List[dict]:
    """Reviews the user wrote or received."""
    t = models.reviews
    with reported("Failed to fetch user reviews"):
        rows = (await conn.execute(
            select(t).where(or_(t.c.reviewer_id == user_id, t.c.reviewed_id == user_id)).order_by(desc(t.c.created_at))
        )).all()
    return [as_dict(r) for r in rows]


async def moderate_review(conn, review_id: str, status: str, notes: Optional[str] = None,
                          admin_id: Optional[str] = None) -> dict:
    t = models.reviews
    now = datetime.now(timezone.utc)
    with reported("Failed to moderate review"):
        res = await conn.execute(
            update(t).where(t.c.id == review_id).values(
                status=status, moderated_by=admin_id, moderated_at=now, moderation_notes=notes, updated_at=now
            )
        )
        if res.rowcount == 0:
            raise RecordNotFound("review not found")
        await conn.commit()
        row = (await conn.execute(select(t).where(t.c.id == review_id))).first()
    logger.info("review_moderated: id=%s status=%s", review_id, status)
    return as_dict(row)
