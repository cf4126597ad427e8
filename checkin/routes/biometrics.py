"""Biometric provider status route."""
from fastapi import APIRouter, Depends

from checkin.biometrics.matcher import BiometricMatcher, get_matcher
from checkin.core.config import settings

router = APIRouter(prefix="/biometrics", tags=["biometrics"])


@router.get("/status")
def biometrics_status(matcher: BiometricMatcher = Depends(get_matcher)):
    """Report whether face check-in is available and why not if it isn't."""
    return {
        **matcher.status(),
        "collection_id": settings.face_collection_id,
        "region": settings.aws_region,
    }
