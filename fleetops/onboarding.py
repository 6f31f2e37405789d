"""Driver onboarding wizard: phone -> otp -> details.

Wizard state is kept in Redis per session so an operator can resume within
ONBOARDING_TTL_SEC. The OTP is only checked for shape here; the
`create-driver` function verifies it when the profile is submitted.
"""
import uuid
from typing import Any, Dict, List, Optional, Tuple
from . import baas, cache
from .config import settings
from .errors import ActionRejected, RecordNotFound, reported
from .schemas import DriverForm
import logging
import time
import httpx

logger = logging.getLogger(__name__)

STEP_PHONE = "phone"
STEP_OTP = "otp"
STEP_DETAILS = "details"

# the only backward moves the wizard allows
PREVIOUS_STEP = {STEP_OTP: STEP_PHONE, STEP_DETAILS: STEP_OTP}

OTP_LENGTH = 6


async def _save(session: Dict[str, Any]) -> Dict[str, Any]:
    await cache.set_json(cache.redis_client, cache.onboarding_key(session["session_id"]), session, settings.ONBOARDING_TTL_SEC)
    return session


async def get_session(session_id: str) -> Dict[str, Any]:
    session = await cache.get_json(cache.redis_client, cache.onboarding_key(session_id))
    if session is None:
        raise RecordNotFound("Onboarding session not found or expired")
    return session


def _require_step(session: Dict[str, Any], step: str):
    if session["step"] != step:
        raise ActionRejected(f"Onboarding is at the {session['step']} step")


async def start(phone_no: str, session_id: Optional[str] = None) -> Dict[str, Any]:
    """Send the OTP and open (or reopen, from the phone step) a session."""
    phone_no = (phone_no or "").strip()
    if not phone_no:
        raise ActionRejected("Please enter a phone number")
    if session_id:
        _require_step(await get_session(session_id), STEP_PHONE)
    with reported("Failed to send OTP"):
        await baas.client.invoke(baas.SEND_DRIVER_OTP, {"phone": phone_no})
    session = {"session_id": session_id or uuid.uuid4().hex, "step": STEP_OTP, "phone": phone_no, "otp": None}
    logger.info("onboarding_otp_sent: session=%s", session["session_id"])
    return await _save(session)


async def submit_otp(session_id: str, otp: str) -> Dict[str, Any]:
    session = await get_session(session_id)
    _require_step(session, STEP_OTP)
    otp = (otp or "").strip()
    if len(otp) != OTP_LENGTH or not otp.isdigit():
        raise ActionRejected(f"Please enter the {OTP_LENGTH}-digit code")
    session.update(step=STEP_DETAILS, otp=otp)
    return await _save(session)


async def back(session_id: str) -> Dict[str, Any]:
    session = await get_session(session_id)
    previous = PREVIOUS_STEP.get(session["step"])
    if previous is None:
        raise ActionRejected("Already at the first step")
    session["step"] = previous
    if previous == STEP_PHONE:
        session["otp"] = None
    return await _save(session)


async def complete(session_id: str, form: DriverForm,
                   picture: Optional[baas.Upload] = None) -> Tuple[Any, List[str]]:
    """Upload the optional picture, then hand the profile to `create-driver`.

    A failed picture upload does not stop driver creation.
    """
    session = await get_session(session_id)
    _require_step(session, STEP_DETAILS)
    warnings: List[str] = []

    profile = form.model_dump()
    # the verified phone wins over whatever the form carries
    profile["phone_no"] = session["phone"]
    profile["profile_picture_url"] = None
    if picture is not None:
        path = f"onboarding-{session_id}-{int(time.time() * 1000)}.{baas.file_extension(picture.filename, 'jpg')}"
        try:
            profile["profile_picture_url"] = await baas.client.upload(
                baas.PROFILE_PICTURES_BUCKET, path, picture.content, picture.content_type
            )
        except httpx.HTTPError as e:
            logger.error("onboarding_picture_upload_failed: session=%s err=%s", session_id, e)
            warnings.append("Failed to upload profile picture, but driver will be created without it")

    with reported("Failed to create driver profile"):
        created = await baas.client.invoke(baas.CREATE_DRIVER, {
            "phone": session["phone"],
            "otp": session["otp"],
            "profile": profile,
        })
    await cache.redis_client.delete(cache.onboarding_key(session_id))
    logger.info("onboarding_completed: session=%s", session_id)
    return created, warnings
