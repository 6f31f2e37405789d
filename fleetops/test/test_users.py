from datetime import datetime, timedelta, timezone
import fleetops.models as models
from fleetops.users import user_stats
from fleetops.test.support import setup_test_app, add_user, _insert

ADMIN = "6f1c2a9e-0000-4000-8000-000000000001"


def test_user_stats():
    now = datetime(2026, 5, 20, tzinfo=timezone.utc)
    users = [
        {"role": "customer", "status": "active", "created_at": datetime(2026, 5, 2)},
        {"role": "customer", "status": "blocked", "created_at": datetime(2026, 4, 30, tzinfo=timezone.utc)},
        {"role": "driver", "status": "active", "created_at": datetime(2026, 5, 1, tzinfo=timezone.utc)},
        {"role": "admin", "status": "suspended", "created_at": None},
    ]
    stats = user_stats(users, now)
    assert stats["total_users"] == 4
    assert stats["active_users"] == 2
    assert stats["blocked_users"] == 1
    assert stats["new_users_this_month"] == 2
    assert stats["role_distribution"] == {"customers": 2, "drivers": 1, "vendors": 0, "admins": 1}


def test_list_users_filters(tmp_path):
    t = setup_test_app(tmp_path)
    add_user(t.engine, full_name="Asha Verma")
    add_user(t.engine, full_name="Vikram Singh", role="driver", email="vikram@example.com")
    add_user(t.engine, full_name="Old Account", status=models.USER_BLOCKED, email="old@example.com",
             created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

    assert len(t.client.get("/v1/users").json()) == 3
    assert [u["full_name"] for u in t.client.get("/v1/users", params={"role": "driver"}).json()] == ["Vikram Singh"]
    assert [u["full_name"] for u in t.client.get("/v1/users", params={"status": "blocked"}).json()] == ["Old Account"]
    assert [u["full_name"] for u in t.client.get("/v1/users", params={"search": "VIKRAM@"}).json()] == ["Vikram Singh"]
    r = t.client.get("/v1/users", params={"date_to": "2025-01-01T00:00:00"})
    assert [u["full_name"] for u in r.json()] == ["Old Account"]

    stats = t.client.get("/v1/users/stats").json()
    assert stats["total_users"] == 3
    assert stats["role_distribution"]["drivers"] == 1


def test_date_only_upper_bound_covers_whole_day(tmp_path):
    t = setup_test_app(tmp_path)
    add_user(t.engine, full_name="Morning", created_at=datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc))
    add_user(t.engine, full_name="Afternoon", created_at=datetime(2025, 1, 1, 15, 0, tzinfo=timezone.utc))
    add_user(t.engine, full_name="Next Day", created_at=datetime(2025, 1, 2, 0, 0, tzinfo=timezone.utc))

    r = t.client.get("/v1/users", params={"date_to": "2025-01-01"})
    assert [u["full_name"] for u in r.json()] == ["Afternoon", "Morning"]

    r = t.client.get("/v1/users", params={"date_to": "2025-01-01T12:00:00"})
    assert [u["full_name"] for u in r.json()] == ["Morning"]

    r = t.client.get("/v1/users", params={"date_from": "2025-01-01", "date_to": "2025-01-02"})
    assert len(r.json()) == 3


def test_block_and_unblock_call_rpc(tmp_path):
    t = setup_test_app(tmp_path)
    user_id = add_user(t.engine)

    r = t.client.post(f"/v1/users/{user_id}/block", json={"reason": "Abusive chat"}, headers={"X-Admin-Id": ADMIN})
    assert r.status_code == 200
    [call] = t.backend.calls("POST", "/rest/v1/rpc/toggle_user_block")
    assert t.backend.json_body(call) == {
        "user_uuid": user_id, "admin_uuid": ADMIN, "action": "block", "reason": "Abusive chat",
    }

    t.client.post(f"/v1/users/{user_id}/unblock", headers={"X-Admin-Id": ADMIN})
    calls = t.backend.calls("POST", "/rest/v1/rpc/toggle_user_block")
    assert t.backend.json_body(calls[1])["action"] == "unblock"

    r = t.client.post(f"/v1/users/{user_id}/block", json={"reason": ""})
    assert r.status_code == 422


def test_role_change_and_delete(tmp_path):
    t = setup_test_app(tmp_path)
    user_id = add_user(t.engine)

    r = t.client.post(f"/v1/users/{user_id}/role", json={"role": "vendor"}, headers={"X-Admin-Id": ADMIN})
    assert r.status_code == 200
    [call] = t.backend.calls("POST", "/rest/v1/rpc/change_user_role")
    assert t.backend.json_body(call) == {"user_uuid": user_id, "admin_uuid": ADMIN, "new_role": "vendor"}

    assert t.client.post(f"/v1/users/{user_id}/role", json={"role": "superuser"}).status_code == 422

    r = t.client.delete(f"/v1/users/{user_id}")
    assert r.status_code == 200
    [call] = t.backend.calls("POST", "/rest/v1/rpc/soft_delete_user")
    assert t.backend.json_body(call) == {"user_uuid": user_id, "admin_uuid": None}


def test_rpc_failure_is_reported(tmp_path):
    t = setup_test_app(tmp_path)
    user_id = add_user(t.engine)
    t.backend.failing.add("/rest/v1/rpc/")
    r = t.client.post(f"/v1/users/{user_id}/block", json={"reason": "spam"})
    assert r.status_code == 502
    assert r.json() == {"detail": "Failed to block user"}

    assert t.client.post("/v1/users/nobody/unblock").status_code == 404


def test_activities_and_reviews(tmp_path):
    t = setup_test_app(tmp_path)
    user_id = add_user(t.engine)
    now = datetime.now(timezone.utc)
    for i in range(55):
        _insert(t.engine, models.user_activities, {
            "user_id": user_id, "activity_type": "login", "description": f"login {i}",
            "created_at": now - timedelta(minutes=i),
        })
    written = _insert(t.engine, models.reviews, {"reviewer_id": user_id, "reviewed_id": "driver-1", "rating": 5})
    received = _insert(t.engine, models.reviews, {"reviewer_id": "customer-9", "reviewed_id": user_id, "rating": 2})
    _insert(t.engine, models.reviews, {"reviewer_id": "a", "reviewed_id": "b", "rating": 4})

    activities = t.client.get(f"/v1/users/{user_id}/activities").json()
    assert len(activities) == 50
    assert activities[0]["description"] == "login 0"

    reviews = t.client.get(f"/v1/users/{user_id}/reviews").json()
    assert {r["id"] for r in reviews} == {written, received}

    r = t.client.post(f"/v1/reviews/{received}/moderate", json={"status": "flagged", "notes": "rude"},
                      headers={"X-Admin-Id": ADMIN})
    assert r.status_code == 200
    review = r.json()["data"]
    assert review["status"] == "flagged"
    assert review["moderated_by"] == ADMIN
    assert review["moderation_notes"] == "rude"

    assert t.client.post("/v1/reviews/missing/moderate", json={"status": "archived"}).status_code == 404


def test_analytics(tmp_path):
    t = setup_test_app(tmp_path)
    t.backend.rpc_results["get_revenue_analytics"] = [{"total_revenue": 125000.0}, {"total_revenue": 1.0}]
    t.backend.rpc_results["get_booking_analytics"] = [{"total_bookings": 840}]

    r = t.client.get("/v1/analytics", params={"start_date": "2026-01-01T00:00:00", "end_date": "2026-01-31T00:00:00"})
    assert r.status_code == 200
    body = r.json()
    assert body["revenue"] == {"total_revenue": 125000.0}
    assert body["bookings"] == {"total_bookings": 840}
    assert body["drivers"] is None

    calls = [c for c in t.backend.requests if c.path.startswith("/rest/v1/rpc/")]
    assert len(calls) == 5
    assert t.backend.json_body(calls[0])["start_date"].startswith("2026-01-01T00:00:00")

    r = t.client.get("/v1/analytics", params={"start_date": "2026-02-01T00:00:00", "end_date": "2026-01-01T00:00:00"})
    assert r.status_code == 400

    t.backend.failing.add("/rest/v1/rpc/get_customer_analytics")
    r = t.client.get("/v1/analytics")
    assert r.status_code == 502
    assert r.json() == {"detail": "Failed to fetch analytics data"}
