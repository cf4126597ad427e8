"""Contract of the external face detection and search provider.

The matcher only depends on this protocol. ``RekognitionProvider`` in
``checkin.biometrics.client`` implements it against AWS Rekognition; tests
plug in an in-memory fake.

Implementations translate their own errors: transient failures raise
``ProviderTransientError``, permanent ones ``ProviderUnavailable``, and
images the provider refuses ``ImageRejected``.
"""
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DetectedFace:
    """One face found by the detector."""
    confidence: float


@dataclass(frozen=True)
class IndexedFace:
    """A face stored in the collection."""
    face_id: str
    external_key: str
    confidence: float


@dataclass(frozen=True)
class ProviderMatch:
    """One raw search hit, before any business validation."""
    face_id: str
    external_key: str
    similarity: float
    confidence: float


class FaceProvider(Protocol):
    def ensure_collection(self) -> bool:
        """Create the face collection if absent. Returns True if created."""

    def detect_faces(self, image: bytes) -> list[DetectedFace]: ...

    def index_face(self, image: bytes, external_key: str) -> IndexedFace: ...

    def search_faces(self, image: bytes, threshold: float, max_faces: int) -> list[ProviderMatch]: ...

    def list_face_ids(self, external_key: str) -> list[str]: ...

    def delete_faces(self, face_ids: list[str]) -> list[str]: ...
