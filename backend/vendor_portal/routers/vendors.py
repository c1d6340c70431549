from __future__ import annotations

from datetime import datetime, timezone
import logging
import math
import time
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from ..config import settings
from ..decisions import Decision, RejectionReason
from ..duplicates import SubmissionCandidate
from ..gate import SubmissionGate, iso_timestamp
from ..logging_utils import mask_email
from ..schemas import SubmissionStatsResponse, VendorRegistration, VendorSubmissionResponse, validate_country

router = APIRouter(prefix="/vendors", tags=["vendors"])
logger = logging.getLogger("vendor_portal.vendors")

UPLOAD_FIELD = "supportingDocuments"
ALLOWED_UPLOAD_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)
CONTACT_SUFFIX = " Please contact us directly if you need to update your information."


def client_ip_from_request(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _error(status_code: int, error: str, message: str, **fields: Any) -> JSONResponse:
    content = {"success": False, "message": message, "error": error, **fields}
    return JSONResponse(status_code=status_code, content=content)


def _rejection_message(decision: Decision) -> str:
    reason = decision.reason
    if reason is RejectionReason.ADDRESS_BLOCKED:
        return f"Too many submissions from this location. Try again in {decision.retry_after_minutes} minutes."
    if reason is RejectionReason.ADDRESS_RATE_LIMITED:
        return "Too many submissions from this location. Please try again later."
    if reason is RejectionReason.IDENTITY_RATE_LIMITED:
        hours_left = math.ceil((decision.retry_after_seconds or 0) / 3600)
        return f"A submission with this email already exists. Please wait {hours_left} hours before submitting again."
    if reason is RejectionReason.DUPLICATE_EMAIL:
        message = f"A submission with this email address was already submitted {decision.matched_age_hours} hours ago."
    elif reason is RejectionReason.DUPLICATE_PHONE_COMPANY:
        message = "A submission with this phone number and company combination already exists."
    elif reason is RejectionReason.DUPLICATE_IP_COMPANY:
        message = "A submission for this company from your location was already submitted."
    else:
        message = "This exact submission was already processed."
    return message + CONTACT_SUFFIX


def rejection_response(decision: Decision) -> JSONResponse:
    reason = decision.reason
    content: dict[str, Any] = {
        "success": False,
        "message": _rejection_message(decision),
        "error": reason.value,
    }
    headers: dict[str, str] = {}
    if decision.retry_after_seconds is not None:
        content["retryAfterSeconds"] = decision.retry_after_seconds
        content["blockTimeLeft"] = decision.retry_after_minutes
        headers["Retry-After"] = str(decision.retry_after_seconds)
    if decision.matched_record_age is not None:
        content["existingSubmissionId"] = decision.matched_submission_id
        content["hoursAgo"] = decision.matched_age_hours

    status_code = 429 if reason.is_rate_limit else 409
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def _read_submission(request: Request) -> tuple[dict[str, Any], list[UploadFile]]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        payload = await request.json()
        if not isinstance(payload, dict):
            raise ValueError("Request body must be a JSON object")
        return payload, []

    form = await request.form()
    fields = {key: value for key, value in form.multi_items() if isinstance(value, str)}
    uploads = [value for value in form.getlist(UPLOAD_FIELD) if isinstance(value, UploadFile)]
    return fields, uploads


async def _check_uploads(uploads: list[UploadFile]) -> Optional[JSONResponse]:
    if len(uploads) > settings.max_upload_files:
        return _error(
            400,
            "TOO_MANY_FILES",
            f"At most {settings.max_upload_files} supporting documents may be attached.",
        )

    limit_mb = settings.max_upload_bytes // (1024 * 1024)
    for upload in uploads:
        if upload.content_type not in ALLOWED_UPLOAD_TYPES:
            return _error(400, "FILE_TYPE_ERROR", "Only PDF and Word documents (DOC/DOCX) are allowed.")
        data = await upload.read()
        if len(data) > settings.max_upload_bytes:
            return _error(
                413,
                "FILE_SIZE_ERROR",
                f"One or more files are too large. Maximum size is {limit_mb}MB per file.",
            )
    return None


@router.post("", response_model=VendorSubmissionResponse)
async def submit_vendor_registration(request: Request):
    ip = client_ip_from_request(request)

    try:
        raw, uploads = await _read_submission(request)
    except ValueError:
        return _error(400, "VALIDATION_ERROR", "Request body must be a valid JSON object")

    upload_error = await _check_uploads(uploads)
    if upload_error is not None:
        return upload_error

    try:
        registration = VendorRegistration.model_validate(raw)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        return _error(400, "VALIDATION_ERROR", "Validation failed", errors=errors)

    country_error = validate_country(registration)
    if country_error is not None:
        return _error(400, "INVALID_COUNTRY_DATA", country_error)

    gate: SubmissionGate = request.app.state.gate
    decision = gate.admit(
        SubmissionCandidate(
            source_address=ip,
            email=registration.email,
            phone=registration.contact_no,
            company_name=registration.company_name,
        )
    )
    if not decision.allowed:
        return rejection_response(decision)

    reference_id = registration.reference_id or f"TOKEN-{str(int(time.time() * 1000))[-6:]}"
    logger.info(
        "Vendor registration stored",
        extra={
            "event": "vendor_registration_stored",
            "submission_id": decision.submission_id,
            "ip": ip,
            "email": mask_email(registration.email),
        },
    )
    return VendorSubmissionResponse(
        message="Vendor registration submitted successfully",
        reference_id=reference_id,
        submission_id=decision.submission_id,
        files_count=len(uploads),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/stats", response_model=SubmissionStatsResponse)
async def submission_stats(request: Request) -> SubmissionStatsResponse:
    gate: SubmissionGate = request.app.state.gate
    summary = gate.submission_summary()
    return SubmissionStatsResponse(
        total=summary.total,
        last_24_hours=summary.last_24_hours,
        last_7_days=summary.last_7_days,
        oldest_submission=iso_timestamp(summary.oldest_accepted_at),
        newest_submission=iso_timestamp(summary.newest_accepted_at),
    )
