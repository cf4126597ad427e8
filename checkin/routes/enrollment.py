"""Face enrollment routes."""
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from checkin.routes.checkins import REASON_STATUS_CODES
from checkin.validation.errors import (
    AlreadyEnrolled,
    CheckInRejected,
    ImageRejected,
    InvalidIdentity,
)
from checkin.validation.service import CheckInService, get_check_in_service

router = APIRouter(
    prefix="/events/{event_id}/registrations/{registration_id}/face", tags=["enrollment"]
)


def rejection_detail(e: CheckInRejected) -> dict:
    detail = {"reason": e.reason, "detail": e.detail or None}
    if isinstance(e, ImageRejected):
        detail["kind"] = e.kind
    return detail


@router.post("", status_code=201)
def enroll_face(
    event_id: UUID,
    registration_id: UUID,
    photo: UploadFile = File(...),
    service: CheckInService = Depends(get_check_in_service),
):
    """
    Enroll the attendee's face for this event.

    The photo must hold exactly one clearly detected face. A registration can
    only be enrolled once; revoke the existing face before enrolling again.
    """
    try:
        result = service.enroll(event_id, registration_id, photo.file.read())
    except AlreadyEnrolled as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidIdentity as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CheckInRejected as e:
        raise HTTPException(
            status_code=REASON_STATUS_CODES.get(e.reason, 400), detail=rejection_detail(e)
        )

    return {
        "face_id": result.face_id,
        "enrollment_key": result.enrollment_key,
        "confidence": result.confidence,
    }


@router.delete("")
def revoke_face(
    event_id: UUID,
    registration_id: UUID,
    service: CheckInService = Depends(get_check_in_service),
):
    """Remove the attendee's face from the index. Safe to repeat."""
    try:
        revoked = service.revoke(event_id, registration_id)
    except CheckInRejected as e:
        raise HTTPException(
            status_code=REASON_STATUS_CODES.get(e.reason, 400), detail=rejection_detail(e)
        )

    return {"success": True, "revoked": revoked}
