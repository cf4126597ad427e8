"""Validation attempt model for the check-in audit trail.

Every check-in call leaves exactly one ValidationAttempt behind, whatever
its outcome. Operators use these rows to diagnose false accepts and false
rejects after the fact, so they are append-only.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

OUTCOME_VALIDATED = "validated"

CHANNEL_FACE = "face"
CHANNEL_CODE = "code"
CHANNEL_MANUAL = "manual"


def rejected_outcome(reason: str) -> str:
    """Build the outcome string stored for a rejected attempt."""
    return f"rejected:{reason}"


class ValidationAttempt(SQLModel, table=True):
    """Audit record of one resolution and validation call.

    Attributes:
        id: Unique identifier (UUID).
        attempted_at: When the attempt finished.
        event_id: Event the attendee tried to check in to. Not a foreign
            key, so attempts against unknown events are still recorded.
        channel: How the attendee was identified: "face", "code" or "manual".
        top_similarity: Similarity of the best candidate returned by the
            face search, if any.
        candidate_count: Number of candidates above the threshold.
        outcome: "validated" or "rejected:<Reason>".
        registration_id: Registration the attempt resolved to, if any.
        detail: Human-readable explanation for operators.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    attempted_at: datetime = Field(default_factory=lambda: datetime.now(UTC), index=True)
    event_id: str = Field(index=True)
    channel: str
    top_similarity: float | None = None
    candidate_count: int = Field(default=0)
    outcome: str
    registration_id: UUID | None = None
    detail: str | None = None
