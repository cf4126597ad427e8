"""Check-in state machine: registered -> attended, exactly once.

Every validation channel (face match, QR code, manual code, manual id) ends
here, so they all share the same single-validation guarantee. Callers are
expected to hold the registration's lock from
``checkin.validation.guard``; the conditional write in the store backs the
guarantee up if they do not.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from checkin.biometrics.encoding import canonical_id
from checkin.models import Registration
from checkin.models.registration import PAYMENT_PAID
from checkin.validation.errors import (
    AlreadyValidated,
    PaymentRequired,
    RegistrationInactive,
    UnknownRegistration,
)
from checkin.validation.store import RegistrationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationOutcome:
    """A successful transition to attended."""
    registration: Registration
    validated_at: datetime
    method: str


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime read back from the database."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CheckInStateMachine:
    """Validates registrations against one RegistrationStore."""

    def __init__(self, store: RegistrationStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    def validate(self, registration_id, event_id, method: str) -> ValidationOutcome:
        """Mark a registration of ``event_id`` as attended.

        Raises:
            UnknownRegistration: no such registration in this event.
            RegistrationInactive: the registration was cancelled or
                deactivated. Nothing is written.
            PaymentRequired: the event is ticketed and the registration is
                not paid. Nothing is written.
            AlreadyValidated: the registration was validated before. Carries
                the original validated_at, in UTC, which is left untouched.
        """
        registration = self.store.find_by_id(registration_id)
        if registration is None or canonical_id(registration.event_id) != canonical_id(event_id):
            raise UnknownRegistration(f"Registration {registration_id} not found for this event")

        if not registration.is_active:
            raise RegistrationInactive(
                f"Registration is {registration.status}. Please contact support."
            )

        event = self.store.get_event(registration.event_id)
        if event is not None and event.is_ticketed and registration.payment_status != PAYMENT_PAID:
            raise PaymentRequired(
                f"Payment is {registration.payment_status} for {registration.full_name}"
            )

        if registration.is_attended:
            raise AlreadyValidated(
                as_utc(registration.validated_at),
                f"{registration.full_name} already checked in",
            )

        validated_at = self._clock()
        if not self.store.update_attendance(registration.id, validated_at, method):
            # Lost a race the lock should have prevented; report the winner's time
            current = self.store.find_by_id(registration.id)
            raise AlreadyValidated(
                as_utc(current.validated_at) if current else None,
                f"{registration.full_name} already checked in",
            )

        logger.info(f"Validated registration {registration.id} via {method}")
        return ValidationOutcome(registration=registration, validated_at=validated_at, method=method)
