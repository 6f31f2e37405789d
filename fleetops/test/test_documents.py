import json
import fleetops.models as models
from fleetops.documents import document_status, review_allowed
from fleetops.test.support import setup_test_app, add_driver, add_vehicle, fetch, count


def test_document_status_badges():
    assert document_status(None, "approved") == "not_uploaded"
    assert document_status("", "pending") == "not_uploaded"
    assert document_status("http://x/license.pdf", "approved") == "approved"
    assert document_status("http://x/license.pdf", "rejected") == "rejected"
    assert document_status("http://x/license.pdf", "resubmission_requested") == "resubmission_requested"
    assert document_status("http://x/license.pdf", "pending") == "pending_review"
    assert document_status("http://x/license.pdf", None) == "pending_review"


def test_listing_shows_badges_and_driver_filter(tmp_path):
    t = setup_test_app(tmp_path)
    first = add_driver(t.engine, license_document_url="http://backend.test/lic.pdf")
    add_driver(t.engine, kyc_status=models.KYC_APPROVED)

    r = t.client.get("/v1/documents")
    assert r.status_code == 200
    assert len(r.json()) == 2

    r = t.client.get("/v1/documents", params={"driver_id": first})
    [driver] = r.json()
    assert driver["documents"]["license"]["status"] == "pending_review"
    assert driver["documents"]["id_proof"]["status"] == "not_uploaded"
    assert driver["review_allowed"] is True


def test_upload_kyc_document_resets_review(tmp_path):
    t = setup_test_app(tmp_path)
    driver_id = add_driver(t.engine, kyc_status=models.KYC_REJECTED, rejection_reason="blurry")

    r = t.client.post(
        f"/v1/drivers/{driver_id}/documents/license",
        files={"file": ("licence scan.PDF", b"%PDF-1.4", "application/pdf")},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["kyc_status"] == "pending"
    assert data["documents"]["license"]["status"] == "pending_review"

    [upload] = t.backend.calls("POST", "/storage/v1/object/drivers-kyc-documents/")
    assert upload.path.startswith(f"/storage/v1/object/drivers-kyc-documents/{driver_id}/license-")
    assert upload.path.endswith(".pdf")
    assert upload.headers["authorization"] == "Bearer service-key"
    assert fetch(t.engine, models.drivers, driver_id)["license_document_url"].startswith(
        "http://backend.test/storage/v1/object/public/drivers-kyc-documents/"
    )

    r = t.client.post(f"/v1/drivers/{driver_id}/documents/passport", files={"file": ("p.pdf", b"x", "application/pdf")})
    assert r.status_code == 400


def test_failed_upload_leaves_driver_untouched(tmp_path):
    t = setup_test_app(tmp_path)
    driver_id = add_driver(t.engine, kyc_status=models.KYC_APPROVED)
    t.backend.failing.add("/storage/")

    r = t.client.post(f"/v1/drivers/{driver_id}/documents/id_proof", files={"file": ("id.png", b"png", "image/png")})
    assert r.status_code == 502
    assert r.json() == {"detail": "Failed to upload document"}
    row = fetch(t.engine, models.drivers, driver_id)
    assert row["kyc_status"] == "approved"
    assert row["id_proof_document_url"] is None


def test_review_actions_only_while_pending(tmp_path):
    t = setup_test_app(tmp_path)
    driver_id = add_driver(t.engine, license_document_url="http://backend.test/lic.pdf")

    r = t.client.post(f"/v1/drivers/{driver_id}/kyc/reject", json={"reason": "  "})
    assert r.status_code == 400
    assert r.json()["detail"] == "Please provide a rejection reason"

    r = t.client.post(f"/v1/drivers/{driver_id}/kyc/reject", json={"reason": "License expired"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["kyc_status"] == "rejected"
    assert data["rejection_reason"] == "License expired"
    assert data["review_allowed"] is False

    r = t.client.post(f"/v1/drivers/{driver_id}/kyc/approve")
    assert r.status_code == 400
    assert fetch(t.engine, models.drivers, driver_id)["kyc_status"] == "rejected"


def test_approve_and_request_resubmission(tmp_path):
    t = setup_test_app(tmp_path)
    a = add_driver(t.engine)
    b = add_driver(t.engine)

    assert t.client.post(f"/v1/drivers/{a}/kyc/approve").json()["data"]["kyc_status"] == "approved"
    r = t.client.post(f"/v1/drivers/{b}/kyc/request-resubmission")
    assert r.json()["data"]["kyc_status"] == "resubmission_requested"


def test_vehicle_documents_add_verify_delete(tmp_path):
    t = setup_test_app(tmp_path)
    vehicle_id = add_vehicle(t.engine)
    form = {"document_type": "insurance", "issue_date": "2026-01-01", "expiry_date": "2027-01-01"}

    r = t.client.post(f"/v1/vehicles/{vehicle_id}/documents", data={"form": json.dumps(form)})
    assert r.status_code == 400
    assert r.json()["detail"] == "Please select a file and document type"

    r = t.client.post(
        f"/v1/vehicles/{vehicle_id}/documents",
        data={"form": json.dumps(form)},
        files={"file": ("policy.pdf", b"%PDF", "application/pdf")},
    )
    assert r.status_code == 201
    doc = r.json()["data"]
    assert doc["verified"] is False
    assert doc["document_url"].startswith(f"http://backend.test/storage/v1/object/public/vehicle-documents/{vehicle_id}/insurance-")

    r = t.client.post(f"/v1/vehicle-documents/{doc['id']}/verify")
    assert r.json()["message"] == "Document verified"
    r = t.client.post(f"/v1/vehicle-documents/{doc['id']}/verify")
    assert r.json()["message"] == "Document unverified"

    r = t.client.delete(f"/v1/vehicle-documents/{doc['id']}")
    assert r.status_code == 200
    [removal] = t.backend.calls("DELETE", "/storage/v1/object/vehicle-documents")
    assert t.backend.json_body(removal)["prefixes"][0].startswith(f"{vehicle_id}/insurance-")
    assert count(t.engine, models.vehicle_documents) == 0


def test_vehicle_document_form_is_validated(tmp_path):
    t = setup_test_app(tmp_path)
    vehicle_id = add_vehicle(t.engine)
    r = t.client.post(
        f"/v1/vehicles/{vehicle_id}/documents",
        data={"form": json.dumps({"document_type": "tax_receipt"})},
        files={"file": ("a.pdf", b"x", "application/pdf")},
    )
    assert r.status_code == 422


def test_review_needs_explicit_pending_status(tmp_path):
    assert review_allowed({"kyc_status": "pending"}) is True
    assert review_allowed({"kyc_status": None}) is False
    assert review_allowed({}) is False

    t = setup_test_app(tmp_path)
    driver_id = add_driver(t.engine, kyc_status=None, license_document_url="http://backend.test/lic.pdf")

    r = t.client.get("/v1/documents", params={"driver_id": driver_id})
    assert r.json()[0]["review_allowed"] is False

    r = t.client.post(f"/v1/drivers/{driver_id}/kyc/approve")
    assert r.status_code == 400
    assert r.json()["detail"] == "Documents are not awaiting review"
    assert fetch(t.engine, models.drivers, driver_id)["kyc_status"] is None
