#!/usr/bin/env python3
"""
One-off script to remove every enrolled face of an event from the face index.

Run it after an event is over, or when an event is cancelled, so its
attendees' biometric data does not outlive it.

Usage:
    python scripts/revoke_event_faces.py [--dry-run] EVENT_ID

Options:
    --dry-run    Show which faces would be revoked without making changes
"""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from uuid import UUID

from sqlmodel import Session, select

from checkin.biometrics.matcher import init_matcher
from checkin.core.database import engine
from checkin.models import Event, Registration
from checkin.validation.errors import ProviderUnavailable
from checkin.validation.store import SqlRegistrationStore


def main(event_id: UUID, dry_run: bool = False):
    """Revoke the face enrollment of every registration of an event."""
    matcher = init_matcher()
    if not matcher.is_ready and not dry_run:
        print("Error: Biometric provider is not available.")
        print(f"  {matcher.status()['last_error'] or 'AWS credentials not configured'}")
        sys.exit(1)

    with Session(engine) as session:
        event = session.get(Event, event_id)
        if not event:
            print(f"Error: Event {event_id} not found.")
            sys.exit(1)

        statement = (
            select(Registration)
            .where(Registration.event_id == event_id)
            .where(Registration.enrollment_key.isnot(None))
            .order_by(Registration.last_name, Registration.first_name)
        )
        registrations = session.exec(statement).all()

        if not registrations:
            print(f"No enrolled faces for '{event.name}'.")
            return

        print(f"Found {len(registrations)} enrolled faces for '{event.name}':\n")

        store = SqlRegistrationStore(session)
        revoked = 0
        failed = 0
        for registration in registrations:
            print(f"  {registration.full_name}: {registration.enrollment_key}")
            if dry_run:
                continue
            try:
                matcher.revoke(registration.enrollment_key, registration.face_id)
            except ProviderUnavailable as e:
                print(f"    Error: {e}")
                failed += 1
                continue
            store.clear_enrollment(registration.id)
            revoked += 1

        print()
        if dry_run:
            print(f"[DRY RUN] Would revoke {len(registrations)} faces")
        else:
            print(f"Revoked {revoked} faces, {failed} failed")


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--dry-run"]
    if len(args) != 1:
        print(__doc__)
        sys.exit(2)
    try:
        event_id = UUID(args[0])
    except ValueError:
        print(f"Error: '{args[0]}' is not a valid event id.")
        sys.exit(2)
    main(event_id, dry_run="--dry-run" in sys.argv)
