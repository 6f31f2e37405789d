import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Table,
    Column,
    Integer,
    String,
    Float,
    Date,
    DateTime,
    JSON,
    Boolean,
    MetaData,
    Text,
)


# Status constants
BOOKING_PENDING = "pending"
BOOKING_ACCEPTED = "accepted"
BOOKING_STARTED = "started"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"
BOOKING_NO_DRIVER = "no_driver"
BOOKING_IN_PROGRESS = "in_progress"
BOOKING_STATUSES = (
    BOOKING_PENDING,
    BOOKING_ACCEPTED,
    BOOKING_STARTED,
    BOOKING_COMPLETED,
    BOOKING_CANCELLED,
    BOOKING_NO_DRIVER,
)

PAY_PENDING = "pending"
PAY_PAID = "paid"
PAY_FAILED = "failed"
PAY_COMPLETED = "completed"

DRIVER_ACTIVE = "active"
DRIVER_INACTIVE = "inactive"
DRIVER_ON_BREAK = "on_break"
DRIVER_SUSPENDED = "suspended"
DRIVER_ON_RIDE = "on_ride"
DRIVER_OFFLINE = "offline"

KYC_PENDING = "pending"
KYC_APPROVED = "approved"
KYC_REJECTED = "rejected"
KYC_RESUBMISSION = "resubmission_requested"
KYC_STATUSES = (KYC_PENDING, KYC_APPROVED, KYC_REJECTED, KYC_RESUBMISSION)

VEHICLE_TYPES = ("sedan", "suv", "bike", "luxury", "van")

VEHICLE_ACTIVE = "active"
VEHICLE_MAINTENANCE = "maintenance"
VEHICLE_OUT_OF_SERVICE = "out_of_service"
VEHICLE_IN_MAINTENANCE = "in_maintenance"
VEHICLE_UNAVAILABLE = "unavailable"

VEHICLE_DOCUMENT_TYPES = ("registration", "insurance", "pollution_certificate", "fitness_certificate")

ALERT_TYPES = ("service_due", "document_expiry", "insurance_expiry", "pollution_expiry", "fitness_expiry", "custom")
ALERT_PRIORITIES = ("low", "medium", "high", "critical")

SERVICE_CITY_RIDE = "city_ride"
SERVICE_CAR_RENTAL = "car_rental"
SERVICE_AIRPORT = "airport"
SERVICE_OUTSTATION = "outstation"
SERVICE_SHARING = "sharing"

USER_ROLES = ("customer", "driver", "vendor", "admin")
USER_ACTIVE = "active"
USER_BLOCKED = "blocked"
USER_SUSPENDED = "suspended"

THREAD_TYPES = ("chat", "support", "booking")
THREAD_OPEN = "open"
THREAD_IN_PROGRESS = "in_progress"
THREAD_RESOLVED = "resolved"
THREAD_CLOSED = "closed"
THREAD_STATUSES = (THREAD_OPEN, THREAD_IN_PROGRESS, THREAD_RESOLVED, THREAD_CLOSED)
THREAD_PRIORITIES = ("low", "normal", "high", "urgent")
SENDER_TYPES = ("admin", "customer", "driver")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("role", String, nullable=False),
    Column("status", String, default=USER_ACTIVE),
    Column("blocked_at", DateTime(timezone=True), nullable=True),
    Column("blocked_by", String(36), nullable=True),
    Column("block_reason", Text, nullable=True),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    Column("last_login_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

customers = Table(
    "customers",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("full_name", String, nullable=False),
    Column("phone_no", String, nullable=False),
    Column("email", String, nullable=True),
    Column("dob", Date, nullable=True),
    Column("profile_picture_url", String, nullable=True),
    Column("loyalty_points", Integer, default=0),
    Column("preferred_payment_method", String, nullable=True),
    Column("referral_code", String, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

admins = Table(
    "admins",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("full_name", String, nullable=False),
    Column("email", String, nullable=False),
    Column("phone_no", String, nullable=False),
    Column("profile_picture_url", String, nullable=True),
    Column("assigned_region", String, nullable=True),
    Column("can_approve_bookings", Boolean, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

drivers = Table(
    "drivers",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("full_name", String, nullable=False),
    Column("phone_no", String, nullable=False),
    Column("email", String, nullable=True),
    Column("license_number", String, nullable=False),
    Column("profile_picture_url", String, nullable=True),
    Column("status", String, default=DRIVER_ACTIVE),
    Column("rating", Float, default=0.0),
    Column("total_rides", Integer, default=0),
    Column("current_latitude", Float, nullable=True),
    Column("current_longitude", Float, nullable=True),
    Column("joined_on", Date, nullable=True),
    Column("kyc_status", String, default=KYC_PENDING),
    Column("license_document_url", String, nullable=True),
    Column("id_proof_document_url", String, nullable=True),
    Column("rejection_reason", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

vehicles = Table(
    "vehicles",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("make", String, nullable=True),
    Column("model", String, nullable=True),
    Column("year", Integer, nullable=True),
    Column("license_plate", String, nullable=True),
    Column("color", String, nullable=True),
    Column("capacity", Integer, nullable=True),
    Column("type", String, nullable=True),
    Column("status", String, default=VEHICLE_ACTIVE),
    Column("image_url", String, nullable=True),
    Column("insurance_document_url", String, nullable=True),
    Column("registration_document_url", String, nullable=True),
    Column("pollution_certificate_url", String, nullable=True),
    Column("last_service_date", Date, nullable=True),
    Column("next_service_due_date", Date, nullable=True),
    Column("assigned_driver_id", String(36), nullable=True),
    Column("vendor_id", String(36), nullable=True),
    Column("current_odometer", Integer, nullable=True),
    Column("average_fuel_economy", Float, nullable=True),
    Column("monthly_distance", Float, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

vehicle_documents = Table(
    "vehicle_documents",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("vehicle_id", String(36), nullable=False),
    Column("document_type", String, nullable=False),
    Column("document_url", String, nullable=True),
    Column("issue_date", Date, nullable=True),
    Column("expiry_date", Date, nullable=True),
    Column("verified", Boolean, default=False),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

vehicle_maintenance_logs = Table(
    "vehicle_maintenance_logs",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("vehicle_id", String(36), nullable=False),
    Column("maintenance_date", Date, nullable=False),
    Column("description", Text, nullable=True),
    Column("cost", Float, nullable=True),
    Column("performed_by", String, nullable=True),
    Column("service_type", String, nullable=True),
    Column("odometer_reading", Integer, nullable=True),
    Column("next_service_due_date", Date, nullable=True),
    Column("next_service_due_km", Integer, nullable=True),
    Column("work_performed", Text, nullable=True),
    Column("service_center", String, nullable=True),
    Column("bill_document_url", String, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

vehicle_performance = Table(
    "vehicle_performance",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("vehicle_id", String(36), nullable=False),
    Column("recorded_date", Date, nullable=False),
    Column("odometer_reading", Integer, nullable=True),
    Column("fuel_consumed", Float, nullable=True),
    Column("distance_traveled", Float, nullable=True),
    Column("fuel_economy", Float, nullable=True),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

vehicle_alerts = Table(
    "vehicle_alerts",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("vehicle_id", String(36), nullable=False),
    Column("alert_type", String, nullable=False),
    Column("title", String, nullable=False),
    Column("description", Text, nullable=True),
    Column("due_date", Date, nullable=True),
    Column("priority", String, default="medium"),
    Column("is_resolved", Boolean, default=False),
    Column("resolved_date", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

service_types = Table(
    "service_types",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("name", String, nullable=False),
    Column("display_name", String, nullable=False),
    Column("description", Text, nullable=True),
    Column("is_active", Boolean, default=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

pricing_rules = Table(
    "pricing_rules",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("service_type_id", String(36), nullable=False),
    Column("vehicle_type", String, nullable=False),
    Column("base_fare", Float, nullable=False),
    Column("per_km_rate", Float, nullable=False),
    Column("per_minute_rate", Float, nullable=True),
    Column("minimum_fare", Float, nullable=False),
    Column("surge_multiplier", Float, default=1.0),
    Column("cancellation_fee", Float, default=0.0),
    Column("no_show_fee", Float, default=0.0),
    Column("waiting_charges_per_minute", Float, default=0.0),
    Column("free_waiting_time_minutes", Integer, default=5),
    Column("is_active", Boolean, default=True),
    Column("effective_from", DateTime(timezone=True), nullable=True),
    Column("effective_until", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

rental_packages = Table(
    "rental_packages",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("name", String, nullable=False),
    Column("vehicle_type", String, nullable=False),
    Column("duration_hours", Integer, nullable=False),
    Column("included_kilometers", Float, nullable=False),
    Column("base_price", Float, nullable=False),
    Column("extra_km_rate", Float, nullable=False),
    Column("extra_hour_rate", Float, nullable=False),
    Column("cancellation_fee", Float, default=0.0),
    Column("no_show_fee", Float, default=0.0),
    Column("waiting_limit_minutes", Integer, default=0),
    Column("is_active", Boolean, default=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

zone_pricing = Table(
    "zone_pricing",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("service_type_id", String(36), nullable=False),
    Column("zone_name", String, nullable=False),
    Column("from_location", String, nullable=False),
    Column("to_location", String, nullable=False),
    Column("vehicle_type", String, nullable=False),
    Column("fixed_price", Float, nullable=True),
    Column("base_price", Float, nullable=True),
    Column("per_km_rate", Float, nullable=True),
    Column("estimated_distance_km", Float, nullable=True),
    Column("estimated_duration_minutes", Integer, nullable=True),
    Column("is_active", Boolean, default=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

bookings = Table(
    "bookings",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("user_id", String(36), nullable=True),
    Column("driver_id", String(36), nullable=True),
    Column("vehicle_id", String(36), nullable=True),
    Column("pickup_address", String, nullable=True),
    Column("dropoff_address", String, nullable=True),
    Column("pickup_latitude", Float, nullable=True),
    Column("pickup_longitude", Float, nullable=True),
    Column("dropoff_latitude", Float, nullable=True),
    Column("dropoff_longitude", Float, nullable=True),
    Column("fare_amount", Float, default=0.0),
    Column("distance_km", Float, nullable=True),
    Column("status", String, default=BOOKING_PENDING),
    Column("payment_status", String, default=PAY_PENDING),
    Column("payment_method", String, nullable=True),
    Column("ride_type", String, nullable=True),
    Column("start_time", DateTime(timezone=True), nullable=True),
    Column("end_time", DateTime(timezone=True), nullable=True),
    Column("service_type_id", String(36), nullable=True),
    Column("rental_package_id", String(36), nullable=True),
    Column("zone_pricing_id", String(36), nullable=True),
    Column("scheduled_time", DateTime(timezone=True), nullable=True),
    Column("is_scheduled", Boolean, default=False),
    Column("is_shared", Boolean, default=False),
    Column("sharing_group_id", String(36), nullable=True),
    Column("total_stops", Integer, default=0),
    Column("package_hours", Integer, nullable=True),
    Column("included_km", Float, nullable=True),
    Column("extra_km_used", Float, default=0.0),
    Column("extra_hours_used", Float, default=0.0),
    Column("waiting_time_minutes", Integer, default=0),
    Column("cancellation_reason", Text, nullable=True),
    Column("no_show_reason", Text, nullable=True),
    Column("upgrade_charges", Float, default=0.0),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

booking_stops = Table(
    "booking_stops",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("booking_id", String(36), nullable=False),
    Column("stop_order", Integer, nullable=False),
    Column("address", String, nullable=False),
    Column("latitude", Float, nullable=True),
    Column("longitude", Float, nullable=True),
    Column("estimated_duration_minutes", Integer, default=0),
    Column("actual_arrival_time", DateTime(timezone=True), nullable=True),
    Column("actual_departure_time", DateTime(timezone=True), nullable=True),
    Column("stop_type", String, nullable=False),
    Column("is_completed", Boolean, default=False),
    Column("notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

booking_cancellations = Table(
    "booking_cancellations",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("booking_id", String(36), nullable=True),
    Column("user_id", String(36), nullable=True),
    Column("reason", Text, nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
)

# a view on the backend; reads only, writes go through RPCs
user_management_view = Table(
    "user_management_view",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("role", String),
    Column("status", String),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("blocked_at", DateTime(timezone=True), nullable=True),
    Column("blocked_by", String(36), nullable=True),
    Column("block_reason", Text, nullable=True),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    Column("last_login_at", DateTime(timezone=True), nullable=True),
    Column("full_name", String, nullable=True),
    Column("phone_no", String, nullable=True),
    Column("email", String, nullable=True),
    Column("profile_picture_url", String, nullable=True),
    Column("loyalty_points", Integer, nullable=True),
    Column("total_rides", Integer, nullable=True),
    Column("driver_rating", Float, nullable=True),
    Column("driver_status", String, nullable=True),
    Column("gst_number", String, nullable=True),
    Column("assigned_region", String, nullable=True),
)

user_activities = Table(
    "user_activities",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("user_id", String(36), nullable=False),
    Column("activity_type", String, nullable=False),
    Column("description", Text, nullable=False),
    Column("metadata", JSON, nullable=True),
    Column("booking_id", String(36), nullable=True),
    Column("thread_id", String(36), nullable=True),
    Column("created_by", String(36), nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
)

reviews = Table(
    "reviews",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("booking_id", String(36), nullable=True),
    Column("reviewer_id", String(36), nullable=False),
    Column("reviewed_id", String(36), nullable=False),
    Column("rating", Integer, nullable=True),
    Column("comment", Text, nullable=True),
    Column("status", String, default="active"),
    Column("moderated_by", String(36), nullable=True),
    Column("moderated_at", DateTime(timezone=True), nullable=True),
    Column("moderation_notes", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

communication_threads = Table(
    "communication_threads",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("thread_type", String, nullable=False),
    Column("status", String, default=THREAD_OPEN),
    Column("priority", String, default="normal"),
    Column("subject", String, nullable=True),
    Column("booking_id", String(36), nullable=True),
    Column("customer_id", String(36), nullable=True),
    Column("driver_id", String(36), nullable=True),
    Column("assigned_admin_id", String(36), nullable=True),
    Column("created_by", String(36), nullable=True),
    Column("resolved_at", DateTime(timezone=True), nullable=True),
    Column("last_message_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

# read_by is a text[] of reader ids on the backend
messages = Table(
    "messages",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("thread_id", String(36), nullable=False),
    Column("sender_id", String(36), nullable=False),
    Column("sender_type", String, nullable=False),
    Column("content", Text, nullable=False),
    Column("message_type", String, default="text"),
    Column("read_by", JSON, nullable=True),
    Column("is_internal", Boolean, default=False),
    Column("created_at", DateTime(timezone=True), default=_now),
    Column("updated_at", DateTime(timezone=True), default=_now),
)

message_attachments = Table(
    "message_attachments",
    metadata,
    Column("id", String(36), primary_key=True, default=_uuid),
    Column("message_id", String(36), nullable=False),
    Column("file_name", String, nullable=False),
    Column("file_url", String, nullable=False),
    Column("file_type", String, nullable=True),
    Column("file_size", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), default=_now),
)
