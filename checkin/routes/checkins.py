"""Check-in routes for the three validation channels."""
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from checkin.validation.errors import (
    REASON_ALREADY_VALIDATED,
    REASON_AMBIGUOUS,
    REASON_IMAGE_REJECTED,
    REASON_NO_MATCH,
    REASON_PAYMENT_REQUIRED,
    REASON_PROVIDER_UNAVAILABLE,
    REASON_REGISTRATION_INACTIVE,
    REASON_UNKNOWN_REGISTRATION,
)
from checkin.validation.service import CheckInResult, CheckInService, get_check_in_service

router = APIRouter(prefix="/events/{event_id}", tags=["check-in"])

REASON_STATUS_CODES = {
    REASON_NO_MATCH: 404,
    REASON_UNKNOWN_REGISTRATION: 404,
    REASON_AMBIGUOUS: 409,
    REASON_ALREADY_VALIDATED: 409,
    REASON_PAYMENT_REQUIRED: 402,
    REASON_REGISTRATION_INACTIVE: 403,
    REASON_IMAGE_REJECTED: 422,
    REASON_PROVIDER_UNAVAILABLE: 503,
}


class CodeCheckIn(BaseModel):
    """QR payload or manual verification code typed by an operator."""
    code: str


def result_response(result: CheckInResult) -> JSONResponse:
    """Render a check-in result, using the status code that matches its reason."""
    status_code = 200 if result.validated else REASON_STATUS_CODES.get(result.reason, 400)
    return JSONResponse(result.model_dump(mode="json"), status_code=status_code)


@router.post("/check-in/face")
def check_in_face(
    event_id: UUID,
    photo: UploadFile = File(...),
    threshold: float | None = Form(None, ge=0, le=100),
    service: CheckInService = Depends(get_check_in_service),
):
    """
    Check in an attendee from a live photo.

    Searches the shared face index, keeps only faces enrolled for this event,
    resolves them to a single registration and validates it. Returns 200 with
    status "validated", or the rejection with a status code matching its
    reason (404 no match, 409 ambiguous or already validated, 402 payment
    required, 403 cancelled or inactive registration, 422 unusable image,
    503 provider unavailable). A threshold below the configured one is
    ignored.
    """
    result = service.check_in_face(event_id, photo.file.read(), threshold)
    return result_response(result)


@router.post("/check-in/code")
def check_in_code(
    event_id: UUID,
    body: CodeCheckIn,
    service: CheckInService = Depends(get_check_in_service),
):
    """
    Check in an attendee from a scanned QR code or a manual verification code.

    Manual codes are matched case-insensitively.
    """
    result = service.check_in_code(event_id, body.code)
    return result_response(result)


@router.post("/registrations/{registration_id}/check-in")
def check_in_registration(
    event_id: UUID,
    registration_id: UUID,
    service: CheckInService = Depends(get_check_in_service),
):
    """Check in a registration picked by an operator."""
    result = service.check_in_registration(event_id, registration_id)
    return result_response(result)
