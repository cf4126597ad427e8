"""Shared test fixtures."""

import threading
import time
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from checkin.biometrics.encoding import canonical_id, encode_key
from checkin.biometrics.matcher import BiometricMatcher, get_matcher
from checkin.biometrics.provider import DetectedFace, IndexedFace, ProviderMatch
from checkin.core.database import get_session
from checkin.main import app
from checkin.models import Event, Registration
from checkin.models.registration import (
    ATTENDANCE_ATTENDED,
    ATTENDANCE_REGISTERED,
    PAYMENT_PAID,
    PAYMENT_UNPAID,
)
from checkin.validation.guard import LockRegistry
from checkin.validation.service import CheckInService
from checkin.validation.store import SqlAuditLog, SqlRegistrationStore

JANE_PHOTO = b"jane-face-photo"
ENROLLED_AT_MS = 1700000000000


class FakeProvider:
    """In-memory FaceProvider.

    Faces indexed from a photo are found again when the same photo is
    searched. Tests can also script search hits per photo, script detector
    output, and queue exceptions raised by the next provider calls.
    """

    def __init__(self):
        self.faces: dict[str, str] = {}  # face_id -> external key
        self.indexed_photos: dict[bytes, str] = {}  # photo -> face_id
        self.scripted_matches: dict[bytes, list[ProviderMatch]] = {}
        self.detections: dict[bytes, list[DetectedFace]] = {}
        self.failures: list[Exception] = []
        self.calls: list[str] = []
        self.collection_created = False

    def _enter(self, operation: str):
        self.calls.append(operation)
        if self.failures:
            raise self.failures.pop(0)

    def add_face(self, face_id: str, external_key: str, photo: bytes | None = None):
        self.faces[face_id] = external_key
        if photo is not None:
            self.indexed_photos[photo] = face_id

    def will_match(self, photo: bytes, external_key: str, similarity: float, face_id: str = ""):
        face_id = face_id or f"face-{len(self.faces) + len(self.scripted_matches) + 1}"
        self.scripted_matches.setdefault(photo, []).append(
            ProviderMatch(face_id=face_id, external_key=external_key, similarity=similarity, confidence=99.9)
        )

    def ensure_collection(self) -> bool:
        self._enter("ensure_collection")
        created = not self.collection_created
        self.collection_created = True
        return created

    def detect_faces(self, image: bytes) -> list[DetectedFace]:
        self._enter("detect_faces")
        return self.detections.get(image, [DetectedFace(confidence=99.5)])

    def index_face(self, image: bytes, external_key: str) -> IndexedFace:
        self._enter("index_face")
        face_id = f"face-{len(self.faces) + 1}"
        self.add_face(face_id, external_key, image)
        return IndexedFace(face_id=face_id, external_key=external_key, confidence=99.5)

    def search_faces(self, image: bytes, threshold: float, max_faces: int) -> list[ProviderMatch]:
        self._enter("search_faces")
        if image in self.scripted_matches:
            return self.scripted_matches[image][:max_faces]
        face_id = self.indexed_photos.get(image)
        if face_id is None or face_id not in self.faces:
            return []
        return [ProviderMatch(face_id=face_id, external_key=self.faces[face_id], similarity=99.2, confidence=99.9)]

    def list_face_ids(self, external_key: str) -> list[str]:
        self._enter("list_face_ids")
        return [face_id for face_id, key in self.faces.items() if key == external_key]

    def delete_faces(self, face_ids: list[str]) -> list[str]:
        self._enter("delete_faces")
        return [face_id for face_id in face_ids if self.faces.pop(face_id, None) is not None]


class InMemoryRegistrationStore:
    """RegistrationStore over a dict, with a deliberately racy conditional update.

    The gap between the status check and the write lets unserialized callers
    double-validate, so concurrency tests can tell whether the lock held.
    """

    def __init__(self, events: list[Event], registrations: list[Registration]):
        self.events = {canonical_id(e.id): e for e in events}
        self.registrations = {canonical_id(r.id): r for r in registrations}
        self.writes = 0

    def get_event(self, event_id):
        return self.events.get(canonical_id(event_id))

    def find_by_event(self, event_id):
        target = canonical_id(event_id)
        return [r for r in self.registrations.values() if canonical_id(r.event_id) == target]

    def find_by_id(self, registration_id):
        return self.registrations.get(canonical_id(registration_id))

    def find_by_code(self, event_id, code):
        return [
            r for r in self.find_by_event(event_id)
            if r.qr_code == code or (r.manual_code or "").lower() == code.lower()
        ]

    def update_attendance(self, registration_id, attended_at, method):
        registration = self.find_by_id(registration_id)
        if registration.attendance_status != ATTENDANCE_REGISTERED:
            return False
        time.sleep(0.005)
        registration.attendance_status = ATTENDANCE_ATTENDED
        registration.validated_at = attended_at
        registration.validation_method = method
        self.writes += 1
        return True

    def link_enrollment(self, registration_id, enrollment_key, face_id):
        registration = self.find_by_id(registration_id)
        registration.enrollment_key = enrollment_key
        registration.face_id = face_id

    def clear_enrollment(self, registration_id):
        registration = self.find_by_id(registration_id)
        registration.enrollment_key = None
        registration.face_id = None


class InMemoryAuditLog:
    def __init__(self):
        self.attempts = []
        self._lock = threading.Lock()

    def record(self, attempt):
        with self._lock:
            self.attempts.append(attempt)

    def list_attempts(self, event_id, since=None, until=None, outcome=None):
        return [a for a in self.attempts if a.event_id == canonical_id(event_id)]

    def purge_before(self, cutoff):
        return 0


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create a new database session for each test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="fake_provider")
def fake_provider_fixture() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(name="sleeps")
def sleeps_fixture() -> list:
    """Backoff delays requested by the matcher, instead of real sleeps."""
    return []


@pytest.fixture(name="matcher")
def matcher_fixture(fake_provider: FakeProvider, sleeps: list) -> BiometricMatcher:
    """An initialized matcher over the fake provider."""
    matcher = BiometricMatcher(fake_provider, sleep=sleeps.append)
    assert matcher.initialize()
    return matcher


@pytest.fixture(name="service")
def service_fixture(session: Session, matcher: BiometricMatcher) -> CheckInService:
    """A CheckInService over the test database and the fake provider."""
    return CheckInService(
        SqlRegistrationStore(session), SqlAuditLog(session), matcher, LockRegistry()
    )


@pytest.fixture(name="client")
def client_fixture(session: Session, matcher: BiometricMatcher):
    """Create a test client with the test database session and fake provider."""

    def get_session_override():
        return session

    def get_matcher_override():
        return matcher

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_matcher] = get_matcher_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="sample_event")
def sample_event_fixture(session: Session) -> Event:
    """Create a free event for testing."""
    event = Event(id=uuid4(), name="Spring Meetup")
    session.add(event)
    session.commit()
    session.refresh(event)
    return event


@pytest.fixture(name="other_event")
def other_event_fixture(session: Session) -> Event:
    """Create a second free event, sharing the face index with the first."""
    event = Event(id=uuid4(), name="Autumn Meetup")
    session.add(event)
    session.commit()
    session.refresh(event)
    return event


@pytest.fixture(name="ticketed_event")
def ticketed_event_fixture(session: Session) -> Event:
    """Create a ticketed event for testing."""
    event = Event(id=uuid4(), name="Gala Dinner", is_ticketed=True)
    session.add(event)
    session.commit()
    session.refresh(event)
    return event


def make_registration(session: Session, event: Event, first_name: str, last_name: str, **kwargs) -> Registration:
    """Add a registration to ``event`` and return it."""
    registration = Registration(
        event_id=event.id,
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name}.{last_name}@example.com".lower().replace(" ", ""),
        **kwargs,
    )
    session.add(registration)
    session.commit()
    session.refresh(registration)
    return registration


def enroll(session: Session, provider: FakeProvider, registration: Registration, photo: bytes) -> str:
    """Link a face to ``registration`` directly, without going through the matcher."""
    key = encode_key(
        registration.event_id, registration.first_name, registration.last_name, ENROLLED_AT_MS
    )
    face_id = f"face-{registration.first_name.lower()}-{len(provider.faces) + 1}"
    provider.add_face(face_id, key, photo)
    registration.enrollment_key = key
    registration.face_id = face_id
    session.add(registration)
    session.commit()
    session.refresh(registration)
    return key


@pytest.fixture(name="jane")
def jane_fixture(session: Session, sample_event: Event, fake_provider: FakeProvider) -> Registration:
    """Jane Doe, registered for the sample event with her face enrolled."""
    registration = make_registration(
        session,
        sample_event,
        "Jane",
        "Doe",
        qr_code="QR-JANE-0001",
        manual_code="JD42",
        payment_status=PAYMENT_PAID,
    )
    enroll(session, fake_provider, registration, JANE_PHOTO)
    return registration


@pytest.fixture(name="unpaid_guest")
def unpaid_guest_fixture(session: Session, ticketed_event: Event) -> Registration:
    """A registration for the ticketed event that has not been paid."""
    return make_registration(
        session,
        ticketed_event,
        "Sam",
        "Unpaid",
        qr_code="QR-SAM-0001",
        payment_status=PAYMENT_UNPAID,
    )
