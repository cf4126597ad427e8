"""Check-in orchestration: the entry point used by the HTTP routes.

A face check-in runs:

    Matcher.search(photo) -> resolve(candidates, event) ->
    guard.with_lock(registration) -> StateMachine.validate(registration)

QR and manual check-ins skip the first two steps and go straight to the
lock and the state machine. Every call, whatever its outcome, leaves one
ValidationAttempt in the audit log.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import Depends
from pydantic import BaseModel
from sqlmodel import Session

from checkin.biometrics.encoding import canonical_id, encode_key
from checkin.biometrics.matcher import BiometricMatcher, EnrollmentResult, get_matcher
from checkin.core.config import settings
from checkin.core.database import get_session
from checkin.models import Registration, ValidationAttempt
from checkin.models.attempt import (
    CHANNEL_CODE,
    CHANNEL_FACE,
    CHANNEL_MANUAL,
    OUTCOME_VALIDATED,
    rejected_outcome,
)
from checkin.models.registration import (
    METHOD_FACE,
    METHOD_MANUAL_CODE,
    METHOD_MANUAL_ID,
    METHOD_QR,
)
from checkin.validation.errors import (
    REASON_AMBIGUOUS,
    AlreadyEnrolled,
    AlreadyValidated,
    Ambiguous,
    CheckInRejected,
    NoMatch,
    UnknownRegistration,
)
from checkin.validation.guard import (
    LockRegistry,
    check_in_locks,
    photo_lock_key,
    registration_lock_key,
)
from checkin.validation.resolution import resolve
from checkin.validation.state import CheckInStateMachine, ValidationOutcome, utc_now
from checkin.validation.store import (
    AuditLog,
    RegistrationStore,
    SqlAuditLog,
    SqlRegistrationStore,
)

logger = logging.getLogger(__name__)

STATUS_VALIDATED = "validated"
STATUS_REJECTED = "rejected"


class CheckInResult(BaseModel):
    """What a check-in call reports back to the API layer."""
    status: str
    registration_id: UUID | None = None
    attendee_name: str | None = None
    validated_at: datetime | None = None
    method: str | None = None
    reason: str | None = None
    detail: str | None = None
    similarity: float | None = None

    @property
    def validated(self) -> bool:
        return self.status == STATUS_VALIDATED


@dataclass
class _AttemptContext:
    """Facts gathered while a check-in runs, written to the audit log."""
    channel: str
    top_similarity: float | None = None
    candidate_count: int = 0
    registration_id: UUID | None = None


class CheckInService:
    """Runs check-ins and enrollments for one request."""

    def __init__(
        self,
        store: RegistrationStore,
        audit: AuditLog,
        matcher: BiometricMatcher,
        locks: LockRegistry = check_in_locks,
        *,
        name_fallback: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.audit = audit
        self.matcher = matcher
        self.locks = locks
        self.name_fallback = name_fallback
        self.state = CheckInStateMachine(store, clock=clock)

    # -- check-in channels -------------------------------------------------

    def check_in_face(self, event_id, photo: bytes, threshold: float | None = None) -> CheckInResult:
        """Check in whoever is in ``photo``."""
        context = _AttemptContext(channel=CHANNEL_FACE)
        return self._run(event_id, context, self._face, event_id, photo, threshold, context)

    def check_in_code(self, event_id, code: str) -> CheckInResult:
        """Check in the holder of a QR payload or manual verification code."""
        context = _AttemptContext(channel=CHANNEL_CODE)
        return self._run(event_id, context, self._code, event_id, code, context)

    def check_in_registration(self, event_id, registration_id) -> CheckInResult:
        """Check in a registration an operator picked by id."""
        context = _AttemptContext(
            channel=CHANNEL_MANUAL, registration_id=_uuid_or_none(registration_id)
        )
        return self._run(
            event_id, context, self._validate_locked, event_id, registration_id, METHOD_MANUAL_ID
        )

    def _face(self, event_id, photo: bytes, threshold: float | None, context: _AttemptContext):
        with self.locks.locked(photo_lock_key(event_id, photo)):
            candidates = self.matcher.search(photo, threshold)
            context.candidate_count = len(candidates)
            context.top_similarity = candidates[0].similarity if candidates else None
            if not candidates:
                raise NoMatch("No enrolled face matched")

            resolution = resolve(
                candidates,
                event_id,
                self.store.find_by_event(event_id),
                name_fallback=self.name_fallback,
            )
            if not resolution.resolved:
                if resolution.reason == REASON_AMBIGUOUS:
                    raise Ambiguous(resolution.detail)
                raise NoMatch(resolution.detail)

            context.registration_id = resolution.registration.id
            logger.info(
                f"Face resolved to registration {resolution.registration.id} "
                f"via {resolution.tier} match ({resolution.top_similarity:.1f}%)"
            )
            return self._validate_locked(event_id, resolution.registration.id, METHOD_FACE)

    def _code(self, event_id, code: str, context: _AttemptContext):
        code = (code or "").strip()
        matches = self.store.find_by_code(event_id, code)
        if not matches:
            raise UnknownRegistration("No registration with this code for this event")
        if len(matches) > 1:
            raise Ambiguous(f"{len(matches)} registrations share this code")

        registration = matches[0]
        context.registration_id = registration.id
        method = METHOD_QR if registration.qr_code == code else METHOD_MANUAL_CODE
        return self._validate_locked(event_id, registration.id, method)

    def _validate_locked(self, event_id, registration_id, method: str) -> ValidationOutcome:
        return self.locks.with_lock(
            registration_lock_key(event_id, registration_id),
            self.state.validate,
            registration_id,
            event_id,
            method,
        )

    def _run(self, event_id, context: _AttemptContext, fn, *args) -> CheckInResult:
        """Run one check-in, convert rejections to results and record the attempt."""
        try:
            outcome: ValidationOutcome = fn(*args)
        except CheckInRejected as e:
            result = CheckInResult(
                status=STATUS_REJECTED,
                registration_id=context.registration_id,
                reason=e.reason,
                detail=e.detail or None,
                similarity=context.top_similarity,
            )
            if isinstance(e, AlreadyValidated):
                result.validated_at = e.validated_at
            logger.info(
                f"Check-in rejected for event {canonical_id(event_id)} "
                f"via {context.channel}: {e.reason} {e.detail}"
            )
            self._record(event_id, context, rejected_outcome(e.reason), result.detail)
            return result

        registration = outcome.registration
        result = CheckInResult(
            status=STATUS_VALIDATED,
            registration_id=registration.id,
            attendee_name=registration.full_name,
            validated_at=outcome.validated_at,
            method=outcome.method,
            similarity=context.top_similarity,
        )
        self._record(event_id, context, OUTCOME_VALIDATED, f"Welcome {registration.full_name}")
        return result

    def _record(self, event_id, context: _AttemptContext, outcome: str, detail: str | None) -> None:
        attempt = ValidationAttempt(
            event_id=canonical_id(event_id),
            channel=context.channel,
            top_similarity=context.top_similarity,
            candidate_count=context.candidate_count,
            outcome=outcome,
            registration_id=context.registration_id,
            detail=detail,
        )
        try:
            self.audit.record(attempt)
        except Exception:
            # The check-in outcome stands even if the audit write fails
            logger.exception(f"Failed to record validation attempt for event {attempt.event_id}")

    # -- enrollment --------------------------------------------------------

    def _registration_in_event(self, event_id, registration_id) -> Registration:
        registration = self.store.find_by_id(registration_id)
        if registration is None or canonical_id(registration.event_id) != canonical_id(event_id):
            raise UnknownRegistration(f"Registration {registration_id} not found for this event")
        return registration

    def enroll(self, event_id, registration_id, photo: bytes) -> EnrollmentResult:
        """Enroll an attendee's face and link it to their registration.

        Raises:
            UnknownRegistration, AlreadyEnrolled, InvalidIdentity,
            ImageRejected, ProviderUnavailable
        """
        with self.locks.locked(registration_lock_key(event_id, registration_id)):
            registration = self._registration_in_event(event_id, registration_id)
            if registration.enrollment_key:
                raise AlreadyEnrolled(
                    f"{registration.full_name} is already enrolled as {registration.enrollment_key}"
                )

            key = encode_key(registration.event_id, registration.first_name, registration.last_name)
            result = self.matcher.enroll(
                photo,
                key,
                metadata={"registration_id": str(registration.id), "email": registration.email},
            )
            try:
                self.store.link_enrollment(registration.id, key, result.face_id)
            except Exception:
                logger.error(f"Failed to link {key} to registration {registration.id}, revoking face")
                try:
                    self.matcher.revoke(key, result.face_id)
                except Exception:
                    logger.exception(f"Could not revoke orphaned face {result.face_id} ({key})")
                raise
            return result

    def revoke(self, event_id, registration_id) -> bool:
        """Remove a registration's face from the index. Returns False if none was enrolled."""
        with self.locks.locked(registration_lock_key(event_id, registration_id)):
            registration = self._registration_in_event(event_id, registration_id)
            if not registration.enrollment_key:
                return False
            self.matcher.revoke(registration.enrollment_key, registration.face_id)
            self.store.clear_enrollment(registration.id)
            logger.info(f"Revoked face enrollment of registration {registration.id}")
            return True


def _uuid_or_none(value) -> UUID | None:
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        return None


def get_check_in_service(
    session: Session = Depends(get_session),
    matcher: BiometricMatcher = Depends(get_matcher),
) -> CheckInService:
    """Dependency building a CheckInService for the current request."""
    return CheckInService(
        SqlRegistrationStore(session),
        SqlAuditLog(session),
        matcher,
        check_in_locks,
        name_fallback=settings.name_fallback_enabled,
    )
