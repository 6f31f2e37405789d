from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, EmailStr, Field, field_validator

VehicleType = Literal["sedan", "suv", "bike", "luxury", "van"]
ServiceTypeName = Literal["city_ride", "car_rental", "airport", "outstation", "sharing"]


# ---------------------------------------------------------------------------
# Backend records. Shapes only; the backend owns the data.
# ---------------------------------------------------------------------------


class Record(BaseModel):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Driver(Record):
    full_name: str
    phone_no: str
    email: Optional[str] = None
    license_number: str
    profile_picture_url: Optional[str] = None
    status: Optional[str] = None
    rating: Optional[float] = None
    total_rides: Optional[int] = None
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    joined_on: Optional[date] = None
    kyc_status: Optional[str] = None
    license_document_url: Optional[str] = None
    id_proof_document_url: Optional[str] = None
    rejection_reason: Optional[str] = None


class Vehicle(Record):
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    license_plate: Optional[str] = None
    color: Optional[str] = None
    capacity: Optional[int] = None
    type: Optional[str] = None
    status: Optional[str] = None
    image_url: Optional[str] = None
    insurance_document_url: Optional[str] = None
    registration_document_url: Optional[str] = None
    pollution_certificate_url: Optional[str] = None
    last_service_date: Optional[date] = None
    next_service_due_date: Optional[date] = None
    assigned_driver_id: Optional[str] = None
    vendor_id: Optional[str] = None
    current_odometer: Optional[int] = None
    average_fuel_economy: Optional[float] = None
    monthly_distance: Optional[float] = None


class VehicleDocument(Record):
    vehicle_id: str
    document_type: str
    document_url: Optional[str] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    verified: bool = False
    notes: Optional[str] = None


class VehicleMaintenanceLog(Record):
    vehicle_id: str
    maintenance_date: date
    description: Optional[str] = None
    cost: Optional[float] = None
    performed_by: Optional[str] = None
    service_type: Optional[str] = None
    odometer_reading: Optional[int] = None
    next_service_due_date: Optional[date] = None
    next_service_due_km: Optional[int] = None
    work_performed: Optional[str] = None
    service_center: Optional[str] = None
    bill_document_url: Optional[str] = None


class VehiclePerformance(Record):
    vehicle_id: str
    recorded_date: date
    odometer_reading: Optional[int] = None
    fuel_consumed: Optional[float] = None
    distance_traveled: Optional[float] = None
    fuel_economy: Optional[float] = None
    notes: Optional[str] = None


class VehicleAlert(Record):
    vehicle_id: str
    alert_type: str
    title: str
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: str = "medium"
    is_resolved: bool = False
    resolved_date: Optional[datetime] = None


class ServiceType(Record):
    name: str
    display_name: str
    description: Optional[str] = None
    is_active: bool = True


class PricingRule(Record):
    service_type_id: str
    vehicle_type: str
    base_fare: float
    per_km_rate: float
    per_minute_rate: Optional[float] = None
    minimum_fare: float
    surge_multiplier: float = 1.0
    cancellation_fee: float = 0.0
    no_show_fee: float = 0.0
    waiting_charges_per_minute: float = 0.0
    free_waiting_time_minutes: int = 5
    is_active: bool = True
    effective_from: Optional[datetime] = None
    effective_until: Optional[datetime] = None


class RentalPackage(Record):
    name: str
    vehicle_type: str
    duration_hours: int
    included_kilometers: float
    base_price: float
    extra_km_rate: float
    extra_hour_rate: float
    cancellation_fee: float = 0.0
    no_show_fee: float = 0.0
    waiting_limit_minutes: int = 0
    is_active: bool = True


class ZonePricing(Record):
    service_type_id: str
    zone_name: str
    from_location: str
    to_location: str
    vehicle_type: str
    fixed_price: Optional[float] = None
    base_price: Optional[float] = None
    per_km_rate: Optional[float] = None
    estimated_distance_km: Optional[float] = None
    estimated_duration_minutes: Optional[int] = None
    is_active: bool = True


class BookingStop(Record):
    booking_id: str
    stop_order: int
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    estimated_duration_minutes: int = 0
    actual_arrival_time: Optional[datetime] = None
    actual_departure_time: Optional[datetime] = None
    stop_type: str
    is_completed: bool = False
    notes: Optional[str] = None


class BookingCancellation(BaseModel):
    id: str
    booking_id: Optional[str] = None
    user_id: Optional[str] = None
    reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class Booking(Record):
    user_id: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    pickup_address: Optional[str] = None
    dropoff_address: Optional[str] = None
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    dropoff_latitude: Optional[float] = None
    dropoff_longitude: Optional[float] = None
    fare_amount: Optional[float] = None
    distance_km: Optional[float] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    payment_method: Optional[str] = None
    ride_type: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    service_type_id: Optional[str] = None
    rental_package_id: Optional[str] = None
    zone_pricing_id: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    is_scheduled: Optional[bool] = None
    is_shared: Optional[bool] = None
    sharing_group_id: Optional[str] = None
    total_stops: Optional[int] = None
    package_hours: Optional[int] = None
    included_km: Optional[float] = None
    extra_km_used: Optional[float] = None
    extra_hours_used: Optional[float] = None
    waiting_time_minutes: Optional[int] = None
    cancellation_reason: Optional[str] = None
    no_show_reason: Optional[str] = None
    upgrade_charges: Optional[float] = None


class BookingDetail(Booking):
    driver: Optional[Driver] = None
    vehicle: Optional[Vehicle] = None
    service_type: Optional[ServiceType] = None
    rental_package: Optional[RentalPackage] = None
    stops: List[BookingStop] = []
    cancellations: List[BookingCancellation] = []
    allowed_actions: Dict[str, bool] = {}


class UserManagementRecord(Record):
    role: Optional[str] = None
    status: Optional[str] = None
    blocked_at: Optional[datetime] = None
    blocked_by: Optional[str] = None
    block_reason: Optional[str] = None
    deleted_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    full_name: Optional[str] = None
    phone_no: Optional[str] = None
    email: Optional[str] = None
    profile_picture_url: Optional[str] = None
    loyalty_points: Optional[int] = None
    total_rides: Optional[int] = None
    driver_rating: Optional[float] = None
    driver_status: Optional[str] = None
    gst_number: Optional[str] = None
    assigned_region: Optional[str] = None


class UserActivity(BaseModel):
    id: str
    user_id: str
    activity_type: str
    description: str
    metadata: Optional[Any] = None
    booking_id: Optional[str] = None
    thread_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class Review(Record):
    booking_id: Optional[str] = None
    reviewer_id: str
    reviewed_id: str
    rating: Optional[int] = None
    comment: Optional[str] = None
    status: Optional[str] = None
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None
    moderation_notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Forms and action payloads
# ---------------------------------------------------------------------------


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class ActionResult(BaseModel):
    """Outcome of a mutation: the operator-facing message plus the re-read record."""
    message: str
    warnings: List[str] = []
    data: Optional[Any] = None


class DriverForm(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone_no: str = Field(..., min_length=1, max_length=20)
    license_number: str = Field(..., min_length=1, max_length=50)
    status: Literal["active", "suspended", "offline"] = "active"

    @field_validator("full_name", "phone_no", "license_number")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class DriverEditForm(DriverForm):
    remove_profile_picture: bool = False


class VehicleForm(BaseModel):
    make: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    year: int
    license_plate: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    capacity: int = Field(..., ge=1)
    type: VehicleType
    status: Literal["active", "maintenance", "out_of_service"] = "active"
    assigned_driver_id: Optional[str] = None
    last_service_date: Optional[date] = None
    next_service_due_date: Optional[date] = None

    @field_validator("year")
    @classmethod
    def validate_year(cls, v):
        if v < 1900 or v > date.today().year + 1:
            raise ValueError("Invalid year")
        return v

    @field_validator("assigned_driver_id")
    @classmethod
    def empty_driver_is_none(cls, v):
        return v or None


class VehicleEditForm(VehicleForm):
    remove_image: bool = False
    remove_insurance_document: bool = False
    remove_registration_document: bool = False
    remove_pollution_certificate: bool = False
    expected_updated_at: Optional[datetime] = None


class VehicleDocumentForm(BaseModel):
    document_type: Literal["registration", "insurance", "pollution_certificate", "fitness_certificate"]
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None


class MaintenanceLogForm(BaseModel):
    service_type: Literal["regular", "major", "repair", "inspection", "emergency"] = "regular"
    maintenance_date: date
    description: Optional[str] = None
    work_performed: Optional[str] = None
    service_center: Optional[str] = None
    cost: Optional[float] = Field(None, ge=0)
    performed_by: Optional[str] = None
    odometer_reading: Optional[int] = Field(None, ge=0)
    next_service_due_date: Optional[date] = None
    next_service_due_km: Optional[int] = Field(None, ge=0)


class PerformanceForm(BaseModel):
    recorded_date: date
    odometer_reading: Optional[int] = Field(None, ge=0)
    fuel_consumed: Optional[float] = Field(None, ge=0)
    distance_traveled: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class AlertForm(BaseModel):
    alert_type: Literal["service_due", "document_expiry", "insurance_expiry", "pollution_expiry", "fitness_expiry", "custom"]
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: Literal["low", "medium", "high", "critical"] = "medium"


class PricingRuleForm(BaseModel):
    vehicle_type: str = Field(..., min_length=1)
    base_fare: float = Field(..., ge=0)
    per_km_rate: float = Field(..., ge=0)
    per_minute_rate: Optional[float] = Field(None, ge=0)
    minimum_fare: float = Field(..., ge=0)
    surge_multiplier: float = Field(..., gt=0)
    cancellation_fee: float = Field(0.0, ge=0)
    no_show_fee: float = Field(0.0, ge=0)
    waiting_charges_per_minute: float = Field(0.0, ge=0)
    free_waiting_time_minutes: int = Field(5, ge=0)


class PricingRuleCreate(PricingRuleForm):
    service_type_id: str = Field(..., min_length=1)


class FareEstimateRequest(BaseModel):
    serviceType: str = ""
    vehicleType: str = ""
    distance: Union[float, str] = 0
    duration: Union[float, str, None] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    rentalPackageId: Optional[str] = None
    zonePricingId: Optional[str] = None


class FareEstimate(BaseModel):
    service_type: str
    vehicle_type: str
    distance_km: float
    duration_minutes: Optional[float] = None
    fare: float
    basis: Literal["pricing_rule", "rental_package", "zone_pricing"]
    source_id: str


class StopIn(BaseModel):
    stop_order: int = Field(..., ge=1)
    address: str = Field(..., min_length=1)
    coordinates: Optional[Coordinates] = None
    duration: int = Field(0, ge=0)
    stop_type: Literal["pickup", "intermediate", "dropoff"] = "intermediate"


class BookingCreate(BaseModel):
    service_type: ServiceTypeName
    vehicle_type: str = ""
    pickup: str = ""
    dropoff: str = ""
    pickup_coordinates: Optional[Coordinates] = None
    dropoff_coordinates: Optional[Coordinates] = None
    distance_km: Optional[float] = Field(None, ge=0)
    duration_minutes: Optional[float] = Field(None, ge=0)
    is_scheduled: Optional[bool] = None
    scheduled_time: Optional[datetime] = None
    rental_package_id: Optional[str] = None
    zone_pricing_id: Optional[str] = None
    passenger_count: int = Field(1, ge=1, le=6)
    stops: List[StopIn] = []
    user_id: Optional[str] = None
    payment_method: Optional[str] = Field(None, max_length=50)


class AssignDriverRequest(BaseModel):
    driver_id: Optional[str] = None
    expected_updated_at: Optional[datetime] = None


class AssignVehicleRequest(BaseModel):
    vehicle_id: Optional[str] = None
    expected_updated_at: Optional[datetime] = None


class StatusUpdateRequest(BaseModel):
    status: str
    expected_updated_at: Optional[datetime] = None


class FareUpdateRequest(BaseModel):
    # raw operator input; parsed by the handler so bad input never reaches a write
    fare: Union[float, str, None] = None
    reason: Optional[str] = None
    expected_updated_at: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    expected_updated_at: Optional[datetime] = None


class KycRejectRequest(BaseModel):
    reason: Optional[str] = None


class OnboardingStart(BaseModel):
    phone_no: str = ""


class OtpSubmit(BaseModel):
    otp: str = ""


class DriverLocation(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class BlockRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RoleChangeRequest(BaseModel):
    role: Literal["customer", "driver", "vendor", "admin"]


class ReviewModeration(BaseModel):
    status: Literal["active", "flagged", "archived", "approved"]
    notes: Optional[str] = None


class ThreadCreate(BaseModel):
    thread_type: Literal["chat", "support", "booking"] = "chat"
    priority: Literal["low", "normal", "high", "urgent"] = "normal"
    subject: Optional[str] = None
    customer_id: Optional[str] = None
    driver_id: Optional[str] = None
    booking_id: Optional[str] = None
    message: str = ""


class MessageCreate(BaseModel):
    content: str = ""
    is_internal: bool = False


class ThreadStatusUpdate(BaseModel):
    status: str


class SettingUpdate(BaseModel):
    value: Any = None


class AdminProfileForm(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=200)
    phone_no: str = Field(..., min_length=1, max_length=20)
    assigned_region: Optional[str] = None

    @field_validator("full_name", "phone_no")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("assigned_region")
    @classmethod
    def blank_region(cls, v):
        if v is None:
            return None
        return v.strip() or None
