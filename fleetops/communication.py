"""Conversations between admins and customers or drivers.

A thread may point at a customer, a driver and a booking. Messages carry the
ids of everyone who has read them in `read_by`; an admin's unread count is the
number of messages in a thread without their id.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import select, update, insert, desc
from . import models
from .db import as_dict
from .errors import ActionRejected, RecordNotFound, reported
from .schemas import ThreadCreate
import logging

logger = logging.getLogger(__name__)

PARTICIPANT_FIELDS = ("id", "full_name", "phone_no", "email")
BOOKING_FIELDS = ("id", "pickup_address", "dropoff_address", "status")
RECENT_BOOKINGS_LIMIT = 50

# Shown when the sender row is gone.
SENDER_FALLBACK_NAMES = {"admin": "Admin", "customer": "Customer", "driver": "Driver"}
SENDER_TABLES = {"admin": models.admins, "customer": models.customers, "driver": models.drivers}


def _pick(row: Optional[dict], fields) -> Optional[dict]:
    if row is None:
        return None
    return {f: row.get(f) for f in fields}


def is_unread(message: dict, admin_id: str) -> bool:
    return admin_id not in (message.get("read_by") or [])


def thread_stats(threads: List[dict]) -> Dict[str, int]:
    return {
        "total_threads": len(threads),
        "open_threads": sum(1 for t in threads if t["status"] == models.THREAD_OPEN),
        "in_progress_threads": sum(1 for t in threads if t["status"] == models.THREAD_IN_PROGRESS),
        "urgent_threads": sum(1 for t in threads if t["priority"] == "urgent"),
    }


async def _rows_by_id(conn, table, ids) -> Dict[str, dict]:
    ids = {i for i in ids if i}
    if not ids:
        return {}
    rows = (await conn.execute(select(table).where(table.c.id.in_(ids)))).all()
    return {r.id: as_dict(r) for r in rows}


async def list_threads(conn, admin_id: str) -> Dict[str, Any]:
    """Threads with their customer, driver and booking, most recently active first."""
    t = models.communication_threads
    with reported("Failed to fetch conversations"):
        rows = (await conn.execute(
            select(t).order_by(desc(t.c.last_message_at).nulls_last(), desc(t.c.created_at))
        )).all()
        threads = [as_dict(r) for r in rows]
        customers = await _rows_by_id(conn, models.customers, (th["customer_id"] for th in threads))
        drivers = await _rows_by_id(conn, models.drivers, (th["driver_id"] for th in threads))
        bookings = await _rows_by_id(conn, models.bookings, (th["booking_id"] for th in threads))
        read_marks = (await conn.execute(
            select(models.messages.c.thread_id, models.messages.c.read_by)
            .where(models.messages.c.thread_id.in_([th["id"] for th in threads]))
        )).all() if threads else []
    unread: Dict[str, int] = {}
    for m in read_marks:
        if is_unread(as_dict(m), admin_id):
            unread[m.thread_id] = unread.get(m.thread_id, 0) + 1
    for th in threads:
        th["customer"] = _pick(customers.get(th["customer_id"]), PARTICIPANT_FIELDS)
        th["driver"] = _pick(drivers.get(th["driver_id"]), PARTICIPANT_FIELDS)
        th["booking"] = _pick(bookings.get(th["booking_id"]), BOOKING_FIELDS)
        th["unread_count"] = unread.get(th["id"], 0)
    return {"threads": threads, "stats": thread_stats(threads)}


async def get_thread(conn, thread_id: str) -> dict:
    t = models.communication_threads
    with reported("Failed to fetch conversation"):
        row = (await conn.execute(select(t).where(t.c.id == thread_id))).first()
    if not row:
        raise RecordNotFound("conversation not found")
    return as_dict(row)


async def _sender_names(conn, messages: List[dict]) -> Dict[tuple, str]:
    names = {}
    for sender_type, table in SENDER_TABLES.items():
        found = await _rows_by_id(conn, table, (m["sender_id"] for m in messages if m["sender_type"] == sender_type))
        for sender_id, row in found.items():
            names[(sender_type, sender_id)] = row["full_name"]
    return names


async def get_messages(conn, thread_id: str, admin_id: str) -> List[dict]:
    """Messages of a thread, oldest first, with sender names and attachments.

    Everything returned is marked read by `admin_id`.
    """
    await get_thread(conn, thread_id)
    m = models.messages
    a = models.message_attachments
    with reported("Failed to fetch messages"):
        rows = (await conn.execute(select(m).where(m.c.thread_id == thread_id).order_by(m.c.created_at))).all()
        messages = [as_dict(r) for r in rows]
        names = await _sender_names(conn, messages)
        attachments: Dict[str, List[dict]] = {}
        if messages:
            for r in (await conn.execute(
                select(a).where(a.c.message_id.in_([msg["id"] for msg in messages])).order_by(a.c.created_at)
            )).all():
                attachments.setdefault(r.message_id, []).append(as_dict(r))

        unread = [msg for msg in messages if is_unread(msg, admin_id)]
        for msg in unread:
            await conn.execute(
                update(m).where(m.c.id == msg["id"]).values(read_by=list(msg.get("read_by") or []) + [admin_id])
            )
        if unread:
            await conn.commit()

    for msg in messages:
        msg["sender_name"] = names.get(
            (msg["sender_type"], msg["sender_id"]), SENDER_FALLBACK_NAMES.get(msg["sender_type"], "Unknown")
        )
        msg["attachments"] = attachments.get(msg["id"], [])
    if unread:
        logger.info("messages_read: thread=%s admin=%s count=%d", thread_id, admin_id, len(unread))
    return messages


async def _log_activity(conn, thread: dict, activity_type: str, description: str, admin_id: str):
    """One activity row for each participant of the thread."""
    for user_id in (thread["customer_id"], thread["driver_id"]):
        if user_id:
            await conn.execute(insert(models.user_activities).values(
                user_id=user_id, activity_type=activity_type, description=description,
                metadata={"thread_type": thread["thread_type"]}, booking_id=thread["booking_id"],
                thread_id=thread["id"], created_by=admin_id,
            ))


async def _insert_message(conn, thread: dict, admin_id: str, content: str, is_internal: bool) -> str:
    now = datetime.now(timezone.utc)
    message_id = (await conn.execute(
        insert(models.messages).returning(models.messages.c.id).values(
            thread_id=thread["id"], sender_id=admin_id, sender_type="admin", content=content,
            is_internal=is_internal, read_by=[admin_id], created_at=now, updated_at=now,
        )
    )).scalar_one()
    await conn.execute(
        update(models.communication_threads).where(models.communication_threads.c.id == thread["id"])
        .values(last_message_at=now, updated_at=now)
    )
    # internal notes stay off the participant's timeline
    if not is_internal:
        await _log_activity(conn, thread, "message_sent", "Admin sent a message", admin_id)
    return message_id


async def send_message(conn, thread_id: str, admin_id: str, content: str, is_internal: bool = False) -> dict:
    content = (content or "").strip()
    if not content:
        raise ActionRejected("Please enter a message")
    thread = await get_thread(conn, thread_id)
    with reported("Failed to send message"):
        message_id = await _insert_message(conn, thread, admin_id, content, is_internal)
        await conn.commit()
        row = (await conn.execute(select(models.messages).where(models.messages.c.id == message_id))).first()
    logger.info("message_sent: thread=%s admin=%s internal=%s", thread_id, admin_id, is_internal)
    return as_dict(row)


async def create_thread(conn, form: ThreadCreate, admin_id: str) -> dict:
    """Open a conversation and post its first message."""
    message = form.message.strip()
    if not message:
        raise ActionRejected("Please enter a message")
    if not form.customer_id and not form.driver_id:
        raise ActionRejected("Please select a customer or driver")
    t = models.communication_threads
    with reported("Failed to create conversation"):
        thread_id = (await conn.execute(insert(t).returning(t.c.id).values(
            thread_type=form.thread_type, subject=form.subject or None, customer_id=form.customer_id or None,
            driver_id=form.driver_id or None, booking_id=form.booking_id or None, priority=form.priority,
            status=models.THREAD_OPEN, created_by=admin_id,
        ))).scalar_one()
        thread = as_dict((await conn.execute(select(t).where(t.c.id == thread_id))).first())
        await _log_activity(conn, thread, "ticket_created", f"Conversation opened: {form.subject or form.thread_type}",
                            admin_id)
        await _insert_message(conn, thread, admin_id, message, False)
        await conn.commit()
    logger.info("thread_created: id=%s type=%s admin=%s", thread_id, form.thread_type, admin_id)
    return await get_thread(conn, thread_id)


async def update_thread_status(conn, thread_id: str, status: str) -> dict:
    if status not in models.THREAD_STATUSES:
        raise ActionRejected(f"Unknown conversation status: {status}")
    await get_thread(conn, thread_id)
    now = datetime.now(timezone.utc)
    t = models.communication_threads
    with reported("Failed to update status"):
        await conn.execute(update(t).where(t.c.id == thread_id).values(
            status=status, resolved_at=now if status == models.THREAD_RESOLVED else None, updated_at=now
        ))
        await conn.commit()
    logger.info("thread_status_updated: id=%s status=%s", thread_id, status)
    return await get_thread(conn, thread_id)


async def participants(conn) -> Dict[str, List[dict]]:
    """Customers, drivers and recent bookings a new conversation can refer to."""
    with reported("Failed to load participants"):
        customers = (await conn.execute(select(models.customers).order_by(models.customers.c.full_name))).all()
        drivers = (await conn.execute(select(models.drivers).order_by(models.drivers.c.full_name))).all()
        bookings = [as_dict(r) for r in (await conn.execute(
            select(models.bookings).order_by(desc(models.bookings.c.created_at)).limit(RECENT_BOOKINGS_LIMIT)
        )).all()]
        booking_customers = await _rows_by_id(conn, models.customers, (b["user_id"] for b in bookings))
        booking_drivers = await _rows_by_id(conn, models.drivers, (b["driver_id"] for b in bookings))
    recent = []
    for b in bookings:
        item = _pick(b, BOOKING_FIELDS)
        item["customer"] = _pick(booking_customers.get(b["user_id"]), ("id", "full_name", "phone_no"))
        item["driver"] = _pick(booking_drivers.get(b["driver_id"]), ("id", "full_name", "phone_no"))
        recent.append(item)
    return {
        "customers": [_pick(as_dict(r), PARTICIPANT_FIELDS) for r in customers],
        "drivers": [_pick(as_dict(r), PARTICIPANT_FIELDS) for r in drivers],
        "bookings": recent,
    }
