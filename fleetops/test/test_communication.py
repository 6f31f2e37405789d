from datetime import datetime, timedelta, timezone
import fleetops.models as models
from fleetops.communication import is_unread, thread_stats
from fleetops.test.support import setup_test_app, add_booking, add_driver, _insert, count, fetch

ADMIN = "6f1c2a9e-0000-4000-8000-000000000001"
OTHER_ADMIN = "6f1c2a9e-0000-4000-8000-000000000002"
HEADERS = {"X-Admin-Id": ADMIN}


def add_customer(engine, **values):
    row = {"full_name": "Asha Verma", "phone_no": "+919811111111", "email": "asha@example.com"}
    row.update(values)
    return _insert(engine, models.customers, row)


def add_thread(engine, **values):
    row = {"thread_type": "chat", "status": models.THREAD_OPEN, "priority": "normal",
           "created_at": datetime.now(timezone.utc)}
    row.update(values)
    return _insert(engine, models.communication_threads, row)


def add_message(engine, thread_id, **values):
    row = {"thread_id": thread_id, "sender_id": "someone", "sender_type": "customer", "content": "hello",
           "read_by": [], "created_at": datetime.now(timezone.utc)}
    row.update(values)
    return _insert(engine, models.messages, row)


def test_unread_and_stats():
    assert is_unread({"read_by": None}, ADMIN) is True
    assert is_unread({"read_by": [OTHER_ADMIN]}, ADMIN) is True
    assert is_unread({"read_by": [ADMIN]}, ADMIN) is False
    threads = [
        {"status": "open", "priority": "urgent"},
        {"status": "in_progress", "priority": "normal"},
        {"status": "resolved", "priority": "urgent"},
    ]
    assert thread_stats(threads) == {"total_threads": 3, "open_threads": 1, "in_progress_threads": 1,
                                     "urgent_threads": 2}


def test_threads_ordered_with_participants_and_unread_counts(tmp_path):
    t = setup_test_app(tmp_path)
    now = datetime.now(timezone.utc)
    customer_id = add_customer(t.engine)
    driver_id = add_driver(t.engine)
    booking_id = add_booking(t.engine, user_id=customer_id)
    quiet = add_thread(t.engine, subject="no messages yet", created_at=now)
    older = add_thread(t.engine, customer_id=customer_id, booking_id=booking_id, last_message_at=now - timedelta(hours=2))
    recent = add_thread(t.engine, driver_id=driver_id, priority="urgent", last_message_at=now - timedelta(minutes=5))
    add_message(t.engine, older, read_by=[ADMIN])
    add_message(t.engine, older, read_by=[OTHER_ADMIN])
    add_message(t.engine, older, read_by=None)
    add_message(t.engine, recent)

    r = t.client.get("/v1/communication/threads", headers=HEADERS)
    assert r.status_code == 200
    body = r.json()
    assert [th["id"] for th in body["threads"]] == [recent, older, quiet]
    by_id = {th["id"]: th for th in body["threads"]}
    assert by_id[older]["unread_count"] == 2
    assert by_id[recent]["unread_count"] == 1
    assert by_id[quiet]["unread_count"] == 0
    assert by_id[older]["customer"] == {"id": customer_id, "full_name": "Asha Verma", "phone_no": "+919811111111",
                                        "email": "asha@example.com"}
    assert by_id[older]["booking"]["pickup_address"] == "Connaught Place, New Delhi"
    assert by_id[recent]["driver"]["full_name"] == "Ravi Kumar"
    assert by_id[quiet]["customer"] is None
    assert body["stats"]["urgent_threads"] == 1

    assert t.client.get("/v1/communication/threads").status_code == 422


def test_messages_carry_sender_names_and_get_marked_read(tmp_path):
    t = setup_test_app(tmp_path)
    now = datetime.now(timezone.utc)
    customer_id = add_customer(t.engine)
    admin_id = _insert(t.engine, models.admins, {
        "id": ADMIN, "full_name": "Neha Admin", "email": "neha@example.com", "phone_no": "+919899999999",
    })
    thread_id = add_thread(t.engine, customer_id=customer_id)
    first = add_message(t.engine, thread_id, sender_id=customer_id, created_at=now - timedelta(minutes=3))
    second = add_message(t.engine, thread_id, sender_id=admin_id, sender_type="admin", read_by=[ADMIN],
                         created_at=now - timedelta(minutes=2))
    third = add_message(t.engine, thread_id, sender_id="gone", sender_type="driver",
                        created_at=now - timedelta(minutes=1))
    _insert(t.engine, models.message_attachments, {
        "message_id": first, "file_name": "receipt.pdf", "file_url": "http://backend.test/receipt.pdf",
    })

    r = t.client.get(f"/v1/communication/threads/{thread_id}/messages", headers=HEADERS)
    assert r.status_code == 200
    messages = r.json()
    assert [m["id"] for m in messages] == [first, second, third]
    assert [m["sender_name"] for m in messages] == ["Asha Verma", "Neha Admin", "Driver"]
    assert [a["file_name"] for a in messages[0]["attachments"]] == ["receipt.pdf"]
    assert messages[1]["attachments"] == []

    assert fetch(t.engine, models.messages, first)["read_by"] == [ADMIN]
    assert fetch(t.engine, models.messages, second)["read_by"] == [ADMIN]
    r = t.client.get("/v1/communication/threads", headers=HEADERS)
    assert r.json()["threads"][0]["unread_count"] == 0

    r = t.client.get("/v1/communication/threads/missing/messages", headers=HEADERS)
    assert r.status_code == 404


def test_send_message_updates_thread_and_logs_activity(tmp_path):
    t = setup_test_app(tmp_path)
    customer_id = add_customer(t.engine)
    thread_id = add_thread(t.engine, customer_id=customer_id)

    r = t.client.post(f"/v1/communication/threads/{thread_id}/messages", json={"content": "   "}, headers=HEADERS)
    assert r.status_code == 400
    assert r.json()["detail"] == "Please enter a message"
    assert count(t.engine, models.messages) == 0

    r = t.client.post(f"/v1/communication/threads/{thread_id}/messages", json={"content": " On our way "},
                      headers=HEADERS)
    assert r.status_code == 201
    assert r.json()["message"] == "Message sent successfully"
    message = r.json()["data"]
    assert message["content"] == "On our way"
    assert message["sender_type"] == "admin"
    assert message["read_by"] == [ADMIN]
    assert fetch(t.engine, models.communication_threads, thread_id)["last_message_at"] is not None

    r = t.client.post(f"/v1/communication/threads/{thread_id}/messages",
                      json={"content": "refund approved", "is_internal": True}, headers=HEADERS)
    assert r.status_code == 201

    activities = t.client.get(f"/v1/users/{customer_id}/activities").json()
    assert [a["activity_type"] for a in activities] == ["message_sent"]
    assert activities[0]["thread_id"] == thread_id
    assert activities[0]["created_by"] == ADMIN


def test_create_thread_posts_first_message(tmp_path):
    t = setup_test_app(tmp_path)
    customer_id = add_customer(t.engine)
    driver_id = add_driver(t.engine)

    r = t.client.post("/v1/communication/threads", json={"customer_id": customer_id, "message": ""}, headers=HEADERS)
    assert r.json()["detail"] == "Please enter a message"
    r = t.client.post("/v1/communication/threads", json={"message": "hi"}, headers=HEADERS)
    assert r.status_code == 400
    assert r.json()["detail"] == "Please select a customer or driver"
    assert count(t.engine, models.communication_threads) == 0

    r = t.client.post("/v1/communication/threads", headers=HEADERS, json={
        "thread_type": "support", "priority": "high", "subject": "Lost item",
        "customer_id": customer_id, "driver_id": driver_id, "message": "A bag was left in the car",
    })
    assert r.status_code == 201
    assert r.json()["message"] == "Conversation created successfully"
    thread = r.json()["data"]
    assert thread["status"] == "open"
    assert thread["created_by"] == ADMIN
    assert thread["last_message_at"] is not None

    messages = t.client.get(f"/v1/communication/threads/{thread['id']}/messages", headers=HEADERS).json()
    assert [m["content"] for m in messages] == ["A bag was left in the car"]
    kinds = sorted(a["activity_type"] for a in t.client.get(f"/v1/users/{driver_id}/activities").json())
    assert kinds == ["message_sent", "ticket_created"]


def test_thread_status_sets_resolved_at(tmp_path):
    t = setup_test_app(tmp_path)
    thread_id = add_thread(t.engine)

    r = t.client.post(f"/v1/communication/threads/{thread_id}/status", json={"status": "resolved"})
    assert r.status_code == 200
    assert r.json()["message"] == "Status updated to resolved"
    assert r.json()["data"]["resolved_at"] is not None

    r = t.client.post(f"/v1/communication/threads/{thread_id}/status", json={"status": "in_progress"})
    assert r.json()["data"]["resolved_at"] is None

    r = t.client.post(f"/v1/communication/threads/{thread_id}/status", json={"status": "archived"})
    assert r.status_code == 400
    assert fetch(t.engine, models.communication_threads, thread_id)["status"] == "in_progress"


def test_participants(tmp_path):
    t = setup_test_app(tmp_path)
    customer_id = add_customer(t.engine, full_name="Zoya Khan")
    add_customer(t.engine, full_name="Aman Gupta")
    driver_id = add_driver(t.engine)
    add_booking(t.engine, user_id=customer_id, driver_id=driver_id)

    body = t.client.get("/v1/communication/participants").json()
    assert [c["full_name"] for c in body["customers"]] == ["Aman Gupta", "Zoya Khan"]
    assert body["drivers"][0]["id"] == driver_id
    [booking] = body["bookings"]
    assert booking["customer"]["full_name"] == "Zoya Khan"
    assert booking["driver"]["full_name"] == "Ravi Kumar"
