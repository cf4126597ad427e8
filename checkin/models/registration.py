"""Registration model for event attendees.

This module defines the Registration model, the durable record a face
match, QR code or manual code must resolve to before an attendee is let in.
Registrations are created by the registration workflow; this service only
links enrolled faces to them and moves them from "registered" to
"attended".
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from checkin.models.event import Event

PAYMENT_UNPAID = "unpaid"
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"

ATTENDANCE_REGISTERED = "registered"
ATTENDANCE_ATTENDED = "attended"

REGISTRATION_ACTIVE = "active"
REGISTRATION_CANCELLED = "cancelled"
REGISTRATION_INACTIVE = "inactive"

METHOD_FACE = "face_recognition"
METHOD_QR = "qr_scan"
METHOD_MANUAL_CODE = "manual_code"
METHOD_MANUAL_ID = "manual_id"


class Registration(SQLModel, table=True):
    """One attendee's registration for one event.

    Attributes:
        id: Unique identifier (UUID).
        event_id: Foreign key to the Event registered for.
        first_name: Attendee first name as entered at registration.
        last_name: Attendee last name as entered at registration.
        email: Attendee contact address.
        enrollment_key: Key the attendee's face was enrolled under in the
            shared face index. Null until a face has been enrolled.
        face_id: Provider handle of the enrolled face, set together with
            enrollment_key.
        qr_code: Opaque QR payload issued with the ticket.
        manual_code: Short code an operator can type in when scanning fails.
            Matched case-insensitively.
        status: "active" while the registration stands. "cancelled" or
            "inactive" registrations are never let in.
        payment_status: One of "unpaid", "pending" or "paid". Only
            enforced for ticketed events.
        attendance_status: "registered" until validated, then "attended".
            Never moves back.
        validated_at: When the registration was validated. Immutable once set.
        validation_method: Channel that validated the registration:
            "face_recognition", "qr_scan", "manual_code" or "manual_id".
        event: Reference to the parent Event object.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="event.id", index=True)
    first_name: str
    last_name: str
    email: str
    enrollment_key: str | None = Field(default=None, index=True)
    face_id: str | None = None
    qr_code: str | None = Field(default=None, index=True, unique=True)
    manual_code: str | None = Field(default=None, index=True)
    status: str = Field(default=REGISTRATION_ACTIVE)
    payment_status: str = Field(default=PAYMENT_UNPAID)
    attendance_status: str = Field(default=ATTENDANCE_REGISTERED)
    validated_at: datetime | None = None
    validation_method: str | None = None

    # Relationship
    event: Optional["Event"] = Relationship(back_populates="registrations")

    @property
    def is_active(self) -> bool:
        return self.status == REGISTRATION_ACTIVE

    @property
    def is_attended(self) -> bool:
        return self.attendance_status == ATTENDANCE_ATTENDED

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
