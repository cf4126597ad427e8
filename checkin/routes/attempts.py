"""Audit trail routes."""
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from checkin.core.database import get_session
from checkin.models import ValidationAttempt
from checkin.validation.store import SqlAuditLog

router = APIRouter(prefix="/events/{event_id}/attempts", tags=["attempts"])


@router.get("", response_model=list[ValidationAttempt])
def list_attempts(
    event_id: UUID,
    since: datetime | None = None,
    until: datetime | None = None,
    outcome: str | None = None,
    session: Session = Depends(get_session),
):
    """
    List validation attempts for an event, newest first.

    ``since`` is inclusive and ``until`` exclusive. ``outcome`` filters on the
    stored outcome, e.g. "validated" or "rejected:NoMatch".
    """
    if since and until and since >= until:
        raise HTTPException(status_code=400, detail="'since' must be before 'until'")
    return SqlAuditLog(session).list_attempts(event_id, since, until, outcome)
