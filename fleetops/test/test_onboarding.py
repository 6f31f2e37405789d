import json
from fleetops.cache import onboarding_key
from fleetops.test.support import setup_test_app

PROFILE = {
    "full_name": "Imran Khan",
    "email": "",
    "phone_no": "+910000000000",
    "license_number": "UP-14-2021-0098",
}


def start(t, phone="+919876543210"):
    r = t.client.post("/v1/onboarding/drivers", json={"phone_no": phone})
    assert r.status_code == 201
    return r.json()["data"]


def test_start_sends_otp_and_opens_session(tmp_path):
    t = setup_test_app(tmp_path)
    session = start(t)

    assert session["step"] == "otp"
    [call] = t.backend.calls("POST", "/functions/v1/send-driver-otp")
    assert t.backend.json_body(call) == {"phone": "+919876543210"}
    assert t.redis.ttls[onboarding_key(session["session_id"])] == 900

    r = t.client.get(f"/v1/onboarding/drivers/{session['session_id']}")
    assert r.json()["phone"] == "+919876543210"


def test_start_requires_phone(tmp_path):
    t = setup_test_app(tmp_path)
    r = t.client.post("/v1/onboarding/drivers", json={"phone_no": "  "})
    assert r.status_code == 400
    assert t.backend.requests == []


def test_otp_failure_is_reported(tmp_path):
    t = setup_test_app(tmp_path)
    t.backend.failing.add("/functions/")
    r = t.client.post("/v1/onboarding/drivers", json={"phone_no": "+919876543210"})
    assert r.status_code == 502
    assert r.json() == {"detail": "Failed to send OTP"}
    assert t.redis.values == {}


def test_otp_must_be_six_digits(tmp_path):
    t = setup_test_app(tmp_path)
    sid = start(t)["session_id"]

    for bad in ("12345", "1234567", "12a456"):
        r = t.client.post(f"/v1/onboarding/drivers/{sid}/otp", json={"otp": bad})
        assert r.status_code == 400
        assert r.json()["detail"] == "Please enter the 6-digit code"

    r = t.client.post(f"/v1/onboarding/drivers/{sid}/otp", json={"otp": "482913"})
    assert r.status_code == 200
    assert r.json()["data"]["step"] == "details"


def test_back_moves_one_step(tmp_path):
    t = setup_test_app(tmp_path)
    sid = start(t)["session_id"]
    t.client.post(f"/v1/onboarding/drivers/{sid}/otp", json={"otp": "482913"})

    assert t.client.post(f"/v1/onboarding/drivers/{sid}/back").json()["step"] == "otp"
    session = t.client.post(f"/v1/onboarding/drivers/{sid}/back").json()
    assert session["step"] == "phone"
    assert session["otp"] is None
    assert t.client.post(f"/v1/onboarding/drivers/{sid}/back").status_code == 400

    # resend from the phone step reuses the session
    r = t.client.post("/v1/onboarding/drivers", params={"session_id": sid}, json={"phone_no": "+919999999999"})
    assert r.json()["data"]["session_id"] == sid
    assert r.json()["data"]["phone"] == "+919999999999"


def test_details_rejected_before_otp(tmp_path):
    t = setup_test_app(tmp_path)
    sid = start(t)["session_id"]
    r = t.client.post(f"/v1/onboarding/drivers/{sid}/details", data={"form": json.dumps(PROFILE)})
    assert r.status_code == 400
    assert t.backend.calls("POST", "/functions/v1/create-driver") == []


def test_complete_creates_driver(tmp_path):
    t = setup_test_app(tmp_path)
    t.backend.function_results["create-driver"] = {"id": "drv-1"}
    sid = start(t)["session_id"]
    t.client.post(f"/v1/onboarding/drivers/{sid}/otp", json={"otp": "482913"})

    r = t.client.post(
        f"/v1/onboarding/drivers/{sid}/details",
        data={"form": json.dumps(PROFILE)},
        files={"profile_picture": ("face.jpeg", b"jpeg", "image/jpeg")},
    )
    assert r.status_code == 201
    assert r.json()["data"] == {"id": "drv-1"}
    assert r.json()["warnings"] == []

    [call] = t.backend.calls("POST", "/functions/v1/create-driver")
    body = t.backend.json_body(call)
    assert body["phone"] == "+919876543210"
    assert body["otp"] == "482913"
    assert body["profile"]["phone_no"] == "+919876543210"
    assert body["profile"]["email"] is None
    assert f"/drivers-profile-pictures/onboarding-{sid}-" in body["profile"]["profile_picture_url"]

    assert t.client.get(f"/v1/onboarding/drivers/{sid}").status_code == 404


def test_picture_failure_still_creates_driver(tmp_path):
    t = setup_test_app(tmp_path)
    sid = start(t)["session_id"]
    t.client.post(f"/v1/onboarding/drivers/{sid}/otp", json={"otp": "482913"})
    t.backend.failing.add("/storage/")

    r = t.client.post(
        f"/v1/onboarding/drivers/{sid}/details",
        data={"form": json.dumps(PROFILE)},
        files={"profile_picture": ("face.jpeg", b"jpeg", "image/jpeg")},
    )
    assert r.status_code == 201
    assert r.json()["warnings"] == ["Failed to upload profile picture, but driver will be created without it"]
    [call] = t.backend.calls("POST", "/functions/v1/create-driver")
    assert t.backend.json_body(call)["profile"]["profile_picture_url"] is None


def test_unknown_session(tmp_path):
    t = setup_test_app(tmp_path)
    r = t.client.post("/v1/onboarding/drivers/nope/otp", json={"otp": "123456"})
    assert r.status_code == 404
    assert r.json()["detail"] == "Onboarding session not found or expired"
