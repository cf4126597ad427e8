"""Event model mirrored from the event store.

Events are owned by the organizer-facing application. This service only
needs to know which event a registration belongs to and whether the event
sells tickets, since ticketed events require payment before check-in.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from checkin.models.registration import Registration


class Event(SQLModel, table=True):
    """An event attendees check in to.

    Attributes:
        id: Unique identifier (UUID). Embedded in every enrollment key
            created for the event's registrations.
        name: Display name of the event.
        is_ticketed: If True, a registration must be paid before it can
            be validated.
        created_at: When the event was mirrored into this service.
        registrations: Registrations belonging to this event.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str
    is_ticketed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Relationships
    registrations: list["Registration"] = Relationship(back_populates="event")
