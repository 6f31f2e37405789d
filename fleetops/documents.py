"""Driver KYC review and vehicle document records.

A driver's KYC state lives on the driver row itself: two document URLs and
one `kyc_status` shared by both documents.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional
from sqlalchemy import select, insert, update, delete, desc
from . import baas, models
from .db import as_dict
from .drivers import get_driver, remove_stored_files
from .errors import ActionRejected, RecordNotFound, reported
from .schemas import VehicleDocumentForm
import logging
import time

logger = logging.getLogger(__name__)

NOT_UPLOADED = "not_uploaded"
PENDING_REVIEW = "pending_review"

# document type -> driver column holding its URL
DRIVER_DOCUMENTS = {
    "license": "license_document_url",
    "id_proof": "id_proof_document_url",
}


def document_status(url: Optional[str], kyc_status: Optional[str]) -> str:
    if not url:
        return NOT_UPLOADED
    if kyc_status in (models.KYC_APPROVED, models.KYC_REJECTED, models.KYC_RESUBMISSION):
        return kyc_status
    return PENDING_REVIEW


def review_allowed(driver: dict) -> bool:
    return driver.get("kyc_status") == models.KYC_PENDING


def with_document_badges(driver: dict) -> dict:
    driver["documents"] = {
        doc_type: {"url": driver[column], "status": document_status(driver[column], driver["kyc_status"])}
        for doc_type, column in DRIVER_DOCUMENTS.items()
    }
    driver["review_allowed"] = review_allowed(driver)
    return driver


async def list_driver_documents(conn, driver_id: Optional[str] = None) -> List[dict]:
    sel = select(models.drivers).order_by(desc(models.drivers.c.created_at))
    if driver_id:
        sel = sel.where(models.drivers.c.id == driver_id)
    with reported("Failed to fetch driver documents"):
        rows = (await conn.execute(sel)).all()
    return [with_document_badges(as_dict(r)) for r in rows]


async def upload_kyc_document(conn, driver_id: str, document_type: str, upload: baas.Upload) -> dict:
    column = DRIVER_DOCUMENTS.get(document_type)
    if column is None:
        raise ActionRejected(f"Unknown document type: {document_type}")
    await get_driver(conn, driver_id)
    path = f"{driver_id}/{document_type}-{int(time.time() * 1000)}.{baas.file_extension(upload.filename, 'pdf')}"
    with reported("Failed to upload document"):
        url = await baas.client.upload(baas.KYC_DOCUMENTS_BUCKET, path, upload.content, upload.content_type)
        # a new document always goes back to review
        await conn.execute(
            update(models.drivers).where(models.drivers.c.id == driver_id).values(
                **{column: url}, kyc_status=models.KYC_PENDING, updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.info("kyc_document_uploaded: driver=%s type=%s", driver_id, document_type)
    return with_document_badges(await get_driver(conn, driver_id))


async def set_kyc_status(conn, driver_id: str, status: str, reason: Optional[str] = None) -> dict:
    """Approve, reject or request resubmission; only while the review is pending."""
    if status not in (models.KYC_APPROVED, models.KYC_REJECTED, models.KYC_RESUBMISSION):
        raise ActionRejected(f"Unknown review action: {status}")
    reason = (reason or "").strip()
    if status == models.KYC_REJECTED and not reason:
        raise ActionRejected("Please provide a rejection reason")
    driver = await get_driver(conn, driver_id)
    if not review_allowed(driver):
        if driver["kyc_status"]:
            raise ActionRejected(f"Documents are already {driver['kyc_status']}")
        raise ActionRejected("Documents are not awaiting review")

    values = {"kyc_status": status, "updated_at": datetime.now(timezone.utc)}
    if reason:
        values["rejection_reason"] = reason
    with reported("Failed to update document status"):
        await conn.execute(update(models.drivers).where(models.drivers.c.id == driver_id).values(**values))
        await conn.commit()
    logger.info("kyc_status_updated: driver=%s status=%s", driver_id, status)
    return with_document_badges(await get_driver(conn, driver_id))


async def list_vehicle_documents(conn, vehicle_id: str) -> List[dict]:
    with reported("Failed to fetch vehicle documents"):
        rows = (await conn.execute(
            select(models.vehicle_documents)
            .where(models.vehicle_documents.c.vehicle_id == vehicle_id)
            .order_by(desc(models.vehicle_documents.c.created_at))
        )).all()
    return [as_dict(r) for r in rows]


async def get_vehicle_document(conn, document_id: str) -> dict:
    with reported("Failed to fetch vehicle document"):
        row = (await conn.execute(
            select(models.vehicle_documents).where(models.vehicle_documents.c.id == document_id)
        )).first()
    if not row:
        raise RecordNotFound("vehicle document not found")
    return as_dict(row)


async def add_vehicle_document(conn, vehicle_id: str, form: VehicleDocumentForm, upload: Optional[baas.Upload]) -> dict:
    if upload is None or not upload.content:
        raise ActionRejected("Please select a file and document type")
    with reported("Failed to load vehicle"):
        found = (await conn.execute(select(models.vehicles.c.id).where(models.vehicles.c.id == vehicle_id))).first()
    if not found:
        raise RecordNotFound("vehicle not found")
    if form.issue_date and form.expiry_date and form.expiry_date < form.issue_date:
        raise ActionRejected("Expiry date must be after the issue date")

    path = f"{vehicle_id}/{form.document_type}-{int(time.time() * 1000)}.{baas.file_extension(upload.filename, 'pdf')}"
    now = datetime.now(timezone.utc)
    with reported("Failed to upload document"):
        url = await baas.client.upload(baas.VEHICLE_DOCUMENTS_BUCKET, path, upload.content, upload.content_type)
        res = await conn.execute(
            insert(models.vehicle_documents).returning(models.vehicle_documents.c.id).values(
                vehicle_id=vehicle_id, document_url=url, verified=False, created_at=now, updated_at=now,
                **form.model_dump(),
            )
        )
        document_id = res.scalar_one()
        await conn.commit()
    logger.info("vehicle_document_added: vehicle=%s type=%s id=%s", vehicle_id, form.document_type, document_id)
    return await get_vehicle_document(conn, document_id)


async def toggle_vehicle_document_verified(conn, document_id: str) -> Dict[str, object]:
    doc = await get_vehicle_document(conn, document_id)
    with reported("Failed to update verification status"):
        await conn.execute(
            update(models.vehicle_documents).where(models.vehicle_documents.c.id == document_id).values(
                verified=not doc["verified"], updated_at=datetime.now(timezone.utc)
            )
        )
        await conn.commit()
    logger.info("vehicle_document_verified: id=%s verified=%s", document_id, not doc["verified"])
    return await get_vehicle_document(conn, document_id)


async def delete_vehicle_document(conn, document_id: str) -> List[str]:
    doc = await get_vehicle_document(conn, document_id)
    warnings: List[str] = []
    if doc["document_url"]:
        await remove_stored_files(baas.VEHICLE_DOCUMENTS_BUCKET, [doc["document_url"]], warnings, "document file")
    with reported("Failed to delete document"):
        await conn.execute(delete(models.vehicle_documents).where(models.vehicle_documents.c.id == document_id))
        await conn.commit()
    logger.info("vehicle_document_deleted: id=%s", document_id)
    return warnings
