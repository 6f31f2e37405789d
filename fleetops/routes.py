from fastapi import APIRouter, Depends, File, Form, Header, UploadFile
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from datetime import datetime, timedelta, timezone
from typing import Optional
from . import (
    admin_settings, admins, analytics, baas, bookings, cache, communication, db, documents, drivers, maps, models,
    onboarding, pricing, schemas, tracking, users, vehicles,
)
from .errors import ActionRejected, RecordNotFound
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


async def get_conn():
    async with db.get_conn() as conn:
        yield conn


def parse_form(model, raw: str):
    """Validate the JSON `form` field of a multipart request."""
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False))


async def read_upload(file: Optional[UploadFile]) -> Optional[baas.Upload]:
    if file is None or not getattr(file, "filename", None):
        return None
    return baas.Upload(file.filename, file.content_type, await file.read())


def done(message: str, data=None, warnings=None) -> schemas.ActionResult:
    return schemas.ActionResult(message=message, data=data, warnings=warnings or [])


@router.get("/health")
async def health():
    return {"status": "ok", "redis": await cache.ping(cache.redis_client)}


# --- bookings ---------------------------------------------------------------


@router.get("/bookings")
async def list_bookings(
    search: str = "",
    status: str = "all",
    service_type: str = "all",
    time_range: str = "all",
    assignment_status: str = "all",
    conn=Depends(get_conn),
):
    return await bookings.list_bookings(
        conn, search=search, status=status, service_type=service_type,
        time_range=time_range, assignment_status=assignment_status,
    )


@router.post("/bookings", response_model=schemas.ActionResult, status_code=201)
async def create_booking(req: schemas.BookingCreate, conn=Depends(get_conn)):
    booking = await bookings.create_booking(conn, req)
    return done("Booking created successfully", booking)


@router.get("/bookings/available-resources")
async def available_resources(conn=Depends(get_conn)):
    return await bookings.available_resources(conn)


@router.get("/bookings/{booking_id}", response_model=schemas.BookingDetail)
async def get_booking(booking_id: str, conn=Depends(get_conn)):
    return await bookings.get_booking_detail(conn, booking_id)


@router.post("/bookings/{booking_id}/assign-driver", response_model=schemas.ActionResult)
async def assign_driver(booking_id: str, req: schemas.AssignDriverRequest, conn=Depends(get_conn)):
    booking = await bookings.assign_driver(conn, booking_id, req.driver_id, req.expected_updated_at)
    return done("Driver assigned successfully", booking)


@router.post("/bookings/{booking_id}/assign-vehicle", response_model=schemas.ActionResult)
async def assign_vehicle(booking_id: str, req: schemas.AssignVehicleRequest, conn=Depends(get_conn)):
    booking = await bookings.assign_vehicle(conn, booking_id, req.vehicle_id, req.expected_updated_at)
    return done("Vehicle assigned successfully", booking)


@router.post("/bookings/{booking_id}/status", response_model=schemas.ActionResult)
async def update_booking_status(booking_id: str, req: schemas.StatusUpdateRequest, conn=Depends(get_conn)):
    booking = await bookings.update_status(conn, booking_id, req.status, req.expected_updated_at)
    return done(f"Booking status updated to {req.status}", booking)


@router.post("/bookings/{booking_id}/fare", response_model=schemas.ActionResult)
async def update_booking_fare(booking_id: str, req: schemas.FareUpdateRequest, conn=Depends(get_conn)):
    booking = await bookings.update_fare(conn, booking_id, req.fare, req.reason, req.expected_updated_at)
    return done("Fare updated successfully", booking)


@router.post("/bookings/{booking_id}/cancel", response_model=schemas.ActionResult)
async def cancel_booking(booking_id: str, req: schemas.CancelRequest, conn=Depends(get_conn)):
    booking = await bookings.cancel_booking(conn, booking_id, req.reason, req.expected_updated_at)
    return done("Booking cancelled successfully", booking)


# --- drivers ----------------------------------------------------------------


@router.get("/drivers")
async def list_drivers(status: Optional[str] = None, search: Optional[str] = None, conn=Depends(get_conn)):
    return await drivers.list_drivers(conn, status=status, search=search)


@router.get("/drivers/{driver_id}", response_model=schemas.Driver)
async def get_driver(driver_id: str, conn=Depends(get_conn)):
    return await drivers.get_driver(conn, driver_id)


@router.put("/drivers/{driver_id}", response_model=schemas.ActionResult)
async def update_driver(
    driver_id: str,
    form: str = Form(...),
    profile_picture: Optional[UploadFile] = File(None),
    conn=Depends(get_conn),
):
    data = parse_form(schemas.DriverEditForm, form)
    driver, warnings = await drivers.update_driver(conn, driver_id, data, await read_upload(profile_picture))
    return done("Driver updated successfully!", driver, warnings)


@router.delete("/drivers/{driver_id}", response_model=schemas.ActionResult)
async def delete_driver(driver_id: str, conn=Depends(get_conn)):
    warnings = await drivers.delete_driver(conn, driver_id)
    return done("Driver deleted successfully", warnings=warnings)


@router.get("/drivers/{driver_id}/performance")
async def driver_performance(driver_id: str, conn=Depends(get_conn)):
    return await drivers.driver_performance(conn, driver_id)


@router.post("/drivers/{driver_id}/location", response_model=schemas.ActionResult)
async def update_driver_location(driver_id: str, req: schemas.DriverLocation, conn=Depends(get_conn)):
    driver = await drivers.update_location(conn, driver_id, req.latitude, req.longitude)
    return done("Driver location updated", driver)


# --- driver onboarding ------------------------------------------------------


@router.post("/onboarding/drivers", status_code=201)
async def start_onboarding(req: schemas.OnboardingStart, session_id: Optional[str] = None):
    session = await onboarding.start(req.phone_no, session_id)
    return done("OTP sent successfully!", session)


@router.get("/onboarding/drivers/{session_id}")
async def get_onboarding(session_id: str):
    return await onboarding.get_session(session_id)


@router.post("/onboarding/drivers/{session_id}/otp")
async def submit_otp(session_id: str, req: schemas.OtpSubmit):
    session = await onboarding.submit_otp(session_id, req.otp)
    return done("Phone number confirmed", session)


@router.post("/onboarding/drivers/{session_id}/back")
async def onboarding_back(session_id: str):
    return await onboarding.back(session_id)


@router.post("/onboarding/drivers/{session_id}/details", response_model=schemas.ActionResult, status_code=201)
async def complete_onboarding(
    session_id: str,
    form: str = Form(...),
    profile_picture: Optional[UploadFile] = File(None),
):
    data = parse_form(schemas.DriverForm, form)
    created, warnings = await onboarding.complete(session_id, data, await read_upload(profile_picture))
    return done("Driver created successfully!", created, warnings)


# --- KYC documents ----------------------------------------------------------


@router.get("/documents")
async def list_driver_documents(driver_id: Optional[str] = None, conn=Depends(get_conn)):
    return await documents.list_driver_documents(conn, driver_id)


@router.post("/drivers/{driver_id}/documents/{document_type}", response_model=schemas.ActionResult)
async def upload_kyc_document(driver_id: str, document_type: str, file: UploadFile = File(...), conn=Depends(get_conn)):
    upload = await read_upload(file)
    if upload is None:
        raise ActionRejected("Please select a file")
    driver = await documents.upload_kyc_document(conn, driver_id, document_type, upload)
    return done("Document uploaded successfully", driver)


@router.post("/drivers/{driver_id}/kyc/approve", response_model=schemas.ActionResult)
async def approve_kyc(driver_id: str, conn=Depends(get_conn)):
    driver = await documents.set_kyc_status(conn, driver_id, models.KYC_APPROVED)
    return done("Document approved successfully", driver)


@router.post("/drivers/{driver_id}/kyc/reject", response_model=schemas.ActionResult)
async def reject_kyc(driver_id: str, req: schemas.KycRejectRequest, conn=Depends(get_conn)):
    driver = await documents.set_kyc_status(conn, driver_id, models.KYC_REJECTED, req.reason)
    return done("Document rejected successfully", driver)


@router.post("/drivers/{driver_id}/kyc/request-resubmission", response_model=schemas.ActionResult)
async def request_kyc_resubmission(driver_id: str, conn=Depends(get_conn)):
    driver = await documents.set_kyc_status(conn, driver_id, models.KYC_RESUBMISSION)
    return done("Document resubmission requested successfully", driver)


# --- vehicles ---------------------------------------------------------------


@router.get("/vehicles")
async def list_vehicles(search: str = "", status: str = "all", conn=Depends(get_conn)):
    return await vehicles.list_vehicles(conn, search, status)


@router.post("/vehicles", response_model=schemas.ActionResult, status_code=201)
async def create_vehicle(
    form: str = Form(...),
    image: Optional[UploadFile] = File(None),
    insurance_document: Optional[UploadFile] = File(None),
    registration_document: Optional[UploadFile] = File(None),
    pollution_certificate: Optional[UploadFile] = File(None),
    conn=Depends(get_conn),
):
    data = parse_form(schemas.VehicleForm, form)
    files = {
        "image": await read_upload(image),
        "insurance_document": await read_upload(insurance_document),
        "registration_document": await read_upload(registration_document),
        "pollution_certificate": await read_upload(pollution_certificate),
    }
    vehicle, warnings = await vehicles.create_vehicle(conn, data, files)
    return done("Vehicle created successfully!", vehicle, warnings)


@router.get("/vehicles/{vehicle_id}")
async def get_vehicle(vehicle_id: str, conn=Depends(get_conn)):
    return await vehicles.get_vehicle_detail(conn, vehicle_id)


@router.put("/vehicles/{vehicle_id}", response_model=schemas.ActionResult)
async def update_vehicle(
    vehicle_id: str,
    form: str = Form(...),
    image: Optional[UploadFile] = File(None),
    insurance_document: Optional[UploadFile] = File(None),
    registration_document: Optional[UploadFile] = File(None),
    pollution_certificate: Optional[UploadFile] = File(None),
    conn=Depends(get_conn),
):
    data = parse_form(schemas.VehicleEditForm, form)
    files = {
        "image": await read_upload(image),
        "insurance_document": await read_upload(insurance_document),
        "registration_document": await read_upload(registration_document),
        "pollution_certificate": await read_upload(pollution_certificate),
    }
    vehicle, warnings = await vehicles.update_vehicle(conn, vehicle_id, data, {k: v for k, v in files.items() if v})
    return done("Vehicle updated successfully!", vehicle, warnings)


@router.delete("/vehicles/{vehicle_id}", response_model=schemas.ActionResult)
async def delete_vehicle(vehicle_id: str, conn=Depends(get_conn)):
    warnings = await vehicles.delete_vehicle(conn, vehicle_id)
    return done("Vehicle deleted successfully!", warnings=warnings)


@router.get("/vehicles/{vehicle_id}/documents")
async def list_vehicle_documents(vehicle_id: str, conn=Depends(get_conn)):
    return await documents.list_vehicle_documents(conn, vehicle_id)


@router.post("/vehicles/{vehicle_id}/documents", response_model=schemas.ActionResult, status_code=201)
async def add_vehicle_document(
    vehicle_id: str,
    form: str = Form(...),
    file: Optional[UploadFile] = File(None),
    conn=Depends(get_conn),
):
    data = parse_form(schemas.VehicleDocumentForm, form)
    doc = await documents.add_vehicle_document(conn, vehicle_id, data, await read_upload(file))
    return done("Document uploaded successfully", doc)


@router.post("/vehicle-documents/{document_id}/verify", response_model=schemas.ActionResult)
async def toggle_vehicle_document(document_id: str, conn=Depends(get_conn)):
    doc = await documents.toggle_vehicle_document_verified(conn, document_id)
    return done(f"Document {'verified' if doc['verified'] else 'unverified'}", doc)


@router.delete("/vehicle-documents/{document_id}", response_model=schemas.ActionResult)
async def delete_vehicle_document(document_id: str, conn=Depends(get_conn)):
    warnings = await documents.delete_vehicle_document(conn, document_id)
    return done("Document deleted successfully", warnings=warnings)


@router.post("/vehicles/{vehicle_id}/maintenance-logs", response_model=schemas.ActionResult, status_code=201)
async def add_maintenance_log(
    vehicle_id: str,
    form: str = Form(...),
    bill_document: Optional[UploadFile] = File(None),
    conn=Depends(get_conn),
):
    data = parse_form(schemas.MaintenanceLogForm, form)
    log = await vehicles.add_maintenance_log(conn, vehicle_id, data, await read_upload(bill_document))
    return done("Service record added successfully", log)


@router.put("/maintenance-logs/{log_id}", response_model=schemas.ActionResult)
async def update_maintenance_log(log_id: str, req: schemas.MaintenanceLogForm, conn=Depends(get_conn)):
    log = await vehicles.update_maintenance_log(conn, log_id, req)
    return done("Maintenance log updated successfully!", log)


@router.delete("/maintenance-logs/{log_id}", response_model=schemas.ActionResult)
async def delete_maintenance_log(log_id: str, conn=Depends(get_conn)):
    await vehicles.delete_maintenance_log(conn, log_id)
    return done("Maintenance log deleted successfully!")


@router.post("/vehicles/{vehicle_id}/performance", response_model=schemas.ActionResult, status_code=201)
async def add_performance_record(vehicle_id: str, req: schemas.PerformanceForm, conn=Depends(get_conn)):
    vehicle = await vehicles.add_performance_record(conn, vehicle_id, req)
    return done("Performance record added successfully", vehicle)


@router.post("/vehicles/{vehicle_id}/alerts", response_model=schemas.ActionResult, status_code=201)
async def add_alert(vehicle_id: str, req: schemas.AlertForm, conn=Depends(get_conn)):
    alert = await vehicles.add_alert(conn, vehicle_id, req)
    return done("Alert created successfully", alert)


@router.post("/vehicle-alerts/{alert_id}/resolve", response_model=schemas.ActionResult)
async def resolve_alert(alert_id: str, conn=Depends(get_conn)):
    alert = await vehicles.resolve_alert(conn, alert_id)
    return done("Alert resolved", alert)


# --- pricing ----------------------------------------------------------------


@router.get("/pricing")
async def list_pricing(service: Optional[str] = None, conn=Depends(get_conn)):
    return await pricing.list_pricing(conn, service)


@router.post("/pricing/rules", response_model=schemas.ActionResult, status_code=201)
async def create_pricing_rule(req: schemas.PricingRuleCreate, conn=Depends(get_conn)):
    rule = await pricing.create_rule(conn, req.model_dump())
    return done("Pricing rule created successfully", rule)


@router.put("/pricing/rules/{rule_id}", response_model=schemas.ActionResult)
async def update_pricing_rule(rule_id: str, req: schemas.PricingRuleForm, conn=Depends(get_conn)):
    rule = await pricing.update_rule(conn, rule_id, req.model_dump())
    return done("Pricing rule updated successfully", rule)


@router.delete("/pricing/rules/{rule_id}", response_model=schemas.ActionResult)
async def delete_pricing_rule(rule_id: str, conn=Depends(get_conn)):
    rule = await pricing.deactivate_rule(conn, rule_id)
    return done("Pricing rule deleted successfully", rule)


@router.post("/pricing/estimate", response_model=schemas.FareEstimate)
async def estimate_fare(req: schemas.FareEstimateRequest, conn=Depends(get_conn)):
    distance = pricing.parse_number(req.distance)
    if distance is None:
        raise ActionRejected("Please enter a valid distance")
    duration = None
    if req.duration not in (None, ""):
        duration = pricing.parse_number(req.duration)
        if duration is None:
            raise ActionRejected("Please enter a valid duration")
    return await pricing.estimate_fare(
        conn, req.serviceType, req.vehicleType, distance, duration,
        rental_package_id=req.rentalPackageId, zone_pricing_id=req.zonePricingId,
    )


# --- analytics --------------------------------------------------------------


@router.get("/analytics")
async def get_analytics(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None):
    end = end_date or datetime.now(timezone.utc)
    start = start_date or end - timedelta(days=30)
    return await analytics.fetch_analytics(start, end)


# --- live tracking ----------------------------------------------------------


@router.get("/tracking")
async def get_tracking(driver_id: Optional[str] = None, only_on_trip: bool = False, refresh: bool = False):
    snapshot = await tracking.get_snapshot(refresh)
    payload = tracking.build_map_payload(snapshot["rows"], driver_id, only_on_trip)
    payload["last_update"] = snapshot["updated_at"]
    return payload


@router.get("/tracking/map-config")
async def get_map_config():
    return maps.client.map_config()


@router.get("/tracking/routes/{driver_id}")
async def get_route(driver_id: str):
    snapshot = await tracking.get_snapshot()
    row = next((r for r in snapshot["rows"] if r["driver"]["id"] == driver_id), None)
    if row is None:
        raise RecordNotFound("driver is not being tracked")
    request = tracking.route_request(row)
    if request is None:
        return {"request": None, "route": None}
    return {"request": request, "route": await maps.client.directions(request)}


# --- user management --------------------------------------------------------


@router.get("/users")
async def list_users(
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    conn=Depends(get_conn),
):
    return await users.list_users(conn, role, status, search, date_from, date_to)


@router.get("/users/stats")
async def user_stats(conn=Depends(get_conn)):
    return await users.get_stats(conn)


@router.get("/users/{user_id}", response_model=schemas.UserManagementRecord)
async def get_user(user_id: str, conn=Depends(get_conn)):
    return await users.get_user(conn, user_id)


@router.post("/users/{user_id}/block", response_model=schemas.ActionResult)
async def block_user(user_id: str, req: schemas.BlockRequest, x_admin_id: Optional[str] = Header(None), conn=Depends(get_conn)):
    user = await users.block_user(conn, user_id, req.reason, x_admin_id)
    return done("User blocked successfully", user)


@router.post("/users/{user_id}/unblock", response_model=schemas.ActionResult)
async def unblock_user(user_id: str, x_admin_id: Optional[str] = Header(None), conn=Depends(get_conn)):
    user = await users.unblock_user(conn, user_id, x_admin_id)
    return done("User unblocked successfully", user)


@router.delete("/users/{user_id}", response_model=schemas.ActionResult)
async def delete_user(user_id: str, x_admin_id: Optional[str] = Header(None), conn=Depends(get_conn)):
    await users.delete_user(conn, user_id, x_admin_id)
    return done("User deleted successfully")


@router.post("/users/{user_id}/role", response_model=schemas.ActionResult)
async def change_user_role(user_id: str, req: schemas.RoleChangeRequest, x_admin_id: Optional[str] = Header(None),
                           conn=Depends(get_conn)):
    user = await users.change_role(conn, user_id, req.role, x_admin_id)
    return done("User role updated successfully", user)


@router.get("/users/{user_id}/activities")
async def user_activities(user_id: str, conn=Depends(get_conn)):
    return await users.list_activities(conn, user_id)


@router.get("/users/{user_id}/reviews")
async def user_reviews(user_id: str, conn=Depends(get_conn)):
    return await users.list_reviews(conn, user_id)


@router.post("/reviews/{review_id}/moderate", response_model=schemas.ActionResult)
async def moderate_review(review_id: str, req: schemas.ReviewModeration, x_admin_id: Optional[str] = Header(None),
                          conn=Depends(get_conn)):
    review = await users.moderate_review(conn, review_id, req.status, req.notes, x_admin_id)
    return done("Review moderated successfully", review)


# --- communication ----------------------------------------------------------


@router.get("/communication/threads")
async def list_threads(x_admin_id: str = Header(...), conn=Depends(get_conn)):
    return await communication.list_threads(conn, x_admin_id)


@router.get("/communication/participants")
async def thread_participants(conn=Depends(get_conn)):
    return await communication.participants(conn)


@router.post("/communication/threads", response_model=schemas.ActionResult, status_code=201)
async def create_thread(req: schemas.ThreadCreate, x_admin_id: str = Header(...), conn=Depends(get_conn)):
    thread = await communication.create_thread(conn, req, x_admin_id)
    return done("Conversation created successfully", thread)


@router.get("/communication/threads/{thread_id}/messages")
async def thread_messages(thread_id: str, x_admin_id: str = Header(...), conn=Depends(get_conn)):
    return await communication.get_messages(conn, thread_id, x_admin_id)


@router.post("/communication/threads/{thread_id}/messages", response_model=schemas.ActionResult, status_code=201)
async def send_message(thread_id: str, req: schemas.MessageCreate, x_admin_id: str = Header(...),
                       conn=Depends(get_conn)):
    message = await communication.send_message(conn, thread_id, x_admin_id, req.content, req.is_internal)
    return done("Message sent successfully", message)


@router.post("/communication/threads/{thread_id}/status", response_model=schemas.ActionResult)
async def update_thread_status(thread_id: str, req: schemas.ThreadStatusUpdate, conn=Depends(get_conn)):
    thread = await communication.update_thread_status(conn, thread_id, req.status)
    return done(f"Status updated to {req.status}", thread)


# --- settings ---------------------------------------------------------------


@router.get("/settings/{category}")
async def list_settings(category: str):
    return await admin_settings.list_settings(category)


@router.put("/settings/{category}/{setting_key}", response_model=schemas.ActionResult)
async def update_setting(category: str, setting_key: str, req: schemas.SettingUpdate,
                         x_admin_id: Optional[str] = Header(None)):
    settings = await admin_settings.update_setting(category, setting_key, req.value, x_admin_id)
    return done("The setting has been updated successfully.", settings)


# --- admin profile ----------------------------------------------------------


@router.get("/profile")
async def get_profile(x_admin_id: str = Header(...), conn=Depends(get_conn)):
    return await admins.get_profile(conn, x_admin_id)


@router.put("/profile", response_model=schemas.ActionResult)
async def update_profile(
    form: str = Form(...),
    profile_picture: Optional[UploadFile] = File(None),
    x_admin_id: str = Header(...),
    conn=Depends(get_conn),
):
    data = parse_form(schemas.AdminProfileForm, form)
    admin, warnings = await admins.update_profile(conn, x_admin_id, data, await read_upload(profile_picture))
    return done("Profile updated successfully", admin, warnings)
