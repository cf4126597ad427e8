"""Registration store and audit log backed by SQLModel.

The check-in pipeline talks to storage through the two protocols below, so
the state machine does not care where registrations live. The SQL
implementations share the request's Session.
"""
import logging
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlmodel import Session, select

from checkin.biometrics.encoding import canonical_id
from checkin.models import Event, Registration, ValidationAttempt
from checkin.models.registration import ATTENDANCE_ATTENDED, ATTENDANCE_REGISTERED

logger = logging.getLogger(__name__)


class RegistrationStore(Protocol):
    def get_event(self, event_id) -> Event | None: ...

    def find_by_event(self, event_id) -> list[Registration]: ...

    def find_by_id(self, registration_id) -> Registration | None: ...

    def find_by_code(self, event_id, code: str) -> list[Registration]: ...

    def update_attendance(self, registration_id, attended_at: datetime, method: str) -> bool:
        """Mark attended if still registered. Returns False if nothing changed."""

    def link_enrollment(self, registration_id, enrollment_key: str, face_id: str) -> None: ...

    def clear_enrollment(self, registration_id) -> None: ...


class AuditLog(Protocol):
    def record(self, attempt: ValidationAttempt) -> None: ...

    def list_attempts(
        self,
        event_id,
        since: datetime | None = None,
        until: datetime | None = None,
        outcome: str | None = None,
    ) -> list[ValidationAttempt]: ...

    def purge_before(self, cutoff: datetime) -> int: ...


def as_uuid(value) -> UUID | None:
    """Parse an identifier into a UUID, or None if it is not one."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except ValueError:
        return None


class SqlRegistrationStore:
    """RegistrationStore over the Event and Registration tables."""

    def __init__(self, session: Session):
        self.session = session

    def get_event(self, event_id) -> Event | None:
        uid = as_uuid(event_id)
        return self.session.get(Event, uid) if uid else None

    def find_by_event(self, event_id) -> list[Registration]:
        uid = as_uuid(event_id)
        if uid is None:
            return []
        statement = select(Registration).where(Registration.event_id == uid)
        return list(self.session.exec(statement).all())

    def find_by_id(self, registration_id) -> Registration | None:
        uid = as_uuid(registration_id)
        if uid is None:
            return None
        # Always reload: another request may have validated it meanwhile
        return self.session.get(Registration, uid, populate_existing=True)

    def find_by_code(self, event_id, code: str) -> list[Registration]:
        uid = as_uuid(event_id)
        code = (code or "").strip()
        if uid is None or not code:
            return []
        statement = (
            select(Registration)
            .where(Registration.event_id == uid)
            .where(
                (Registration.qr_code == code)
                | (func.lower(Registration.manual_code) == code.lower())
            )
        )
        return list(self.session.exec(statement).all())

    def update_attendance(self, registration_id, attended_at: datetime, method: str) -> bool:
        statement = (
            update(Registration)
            .where(Registration.id == as_uuid(registration_id))
            .where(Registration.attendance_status == ATTENDANCE_REGISTERED)
            .values(
                attendance_status=ATTENDANCE_ATTENDED,
                validated_at=attended_at,
                validation_method=method,
            )
        )
        result = self.session.connection().execute(statement)
        self.session.commit()
        return result.rowcount == 1

    def link_enrollment(self, registration_id, enrollment_key: str, face_id: str) -> None:
        registration = self.find_by_id(registration_id)
        registration.enrollment_key = enrollment_key
        registration.face_id = face_id
        self.session.add(registration)
        self.session.commit()

    def clear_enrollment(self, registration_id) -> None:
        registration = self.find_by_id(registration_id)
        registration.enrollment_key = None
        registration.face_id = None
        self.session.add(registration)
        self.session.commit()


class SqlAuditLog:
    """AuditLog over the ValidationAttempt table."""

    def __init__(self, session: Session):
        self.session = session

    def record(self, attempt: ValidationAttempt) -> None:
        self.session.add(attempt)
        self.session.commit()

    def list_attempts(
        self,
        event_id,
        since: datetime | None = None,
        until: datetime | None = None,
        outcome: str | None = None,
    ) -> list[ValidationAttempt]:
        statement = select(ValidationAttempt).where(
            ValidationAttempt.event_id == canonical_id(event_id)
        )
        if since is not None:
            statement = statement.where(ValidationAttempt.attempted_at >= since)
        if until is not None:
            statement = statement.where(ValidationAttempt.attempted_at < until)
        if outcome is not None:
            statement = statement.where(ValidationAttempt.outcome == outcome)
        statement = statement.order_by(ValidationAttempt.attempted_at.desc())
        return list(self.session.exec(statement).all())

    def purge_before(self, cutoff: datetime) -> int:
        statement = delete(ValidationAttempt).where(ValidationAttempt.attempted_at < cutoff)
        result = self.session.connection().execute(statement)
        self.session.commit()
        logger.info(f"Purged {result.rowcount} validation attempts older than {cutoff}")
        return result.rowcount
