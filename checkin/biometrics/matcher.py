"""Biometric matcher: enrollment, search and revocation against the face index.

The matcher wraps a FaceProvider with the policy the rest of the pipeline
relies on:

    - Local preconditions (size ceiling, exactly one confident face) are
      checked before a face is indexed, so bad photos never reach the index.
    - Transient provider errors are retried with exponential backoff and
      then surfaced as ProviderUnavailable, never as "no match".
    - Search results are filtered and ranked locally; the provider's own
      threshold handling is not trusted.
    - Without a provider, or before ``initialize()`` succeeded, every call
      fails closed with ProviderUnavailable.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from checkin.biometrics.client import (
    RekognitionProvider,
    get_rekognition_client,
    has_valid_credentials,
)
from checkin.biometrics.provider import FaceProvider
from checkin.core.config import settings
from checkin.validation.errors import (
    IMAGE_LOW_CONFIDENCE,
    IMAGE_MULTIPLE_FACES,
    IMAGE_NO_FACE,
    IMAGE_TOO_LARGE,
    ImageRejected,
    ProviderTransientError,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class MatchCandidate:
    """One ranked search result that cleared the threshold."""
    enrollment_key: str
    similarity: float
    provider_confidence: float
    face_id: str = ""


@dataclass(frozen=True)
class EnrollmentResult:
    """Outcome of indexing one face."""
    face_id: str
    enrollment_key: str
    confidence: float
    metadata: dict = field(default_factory=dict)


class BiometricMatcher:
    """Retrying, thresholding adapter over a FaceProvider."""

    def __init__(
        self,
        provider: FaceProvider | None,
        *,
        threshold: float = 85.0,
        max_image_bytes: int = 5 * 1024 * 1024,
        min_face_confidence: float = 80.0,
        max_faces: int = 5,
        max_retries: int = 2,
        backoff_base_ms: int = 200,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.threshold = threshold
        self.max_image_bytes = max_image_bytes
        self.min_face_confidence = min_face_confidence
        self.max_faces = max_faces
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self._sleep = sleep
        self._ready = False
        self._last_error: str | None = None

    @property
    def is_configured(self) -> bool:
        return self.provider is not None

    @property
    def is_ready(self) -> bool:
        return self.provider is not None and self._ready

    def initialize(self) -> bool:
        """Create the face collection if absent. Run once at startup.

        Returns True when the matcher is ready. On failure the matcher stays
        in fail-closed mode and the error is kept for ``status()``.
        """
        if self.provider is None:
            logger.warning("Biometric provider not configured, face check-in disabled")
            return False
        try:
            self._call("ensure_collection", self.provider.ensure_collection)
        except (ProviderUnavailable, ImageRejected) as e:
            self._ready = False
            self._last_error = str(e)
            logger.error(f"Biometric provider initialization failed: {e}")
            return False
        self._ready = True
        self._last_error = None
        logger.info("Biometric provider initialized")
        return True

    def status(self) -> dict:
        return {
            "configured": self.is_configured,
            "ready": self.is_ready,
            "threshold": self.threshold,
            "last_error": self._last_error,
        }

    def _require_ready(self) -> FaceProvider:
        if self.provider is None:
            raise ProviderUnavailable("Biometric provider is not configured")
        if not self._ready:
            raise ProviderUnavailable("Biometric provider is not initialized")
        return self.provider

    def _call(self, operation: str, fn: Callable[..., T], *args) -> T:
        """Invoke a provider operation, retrying transient failures."""
        attempt = 0
        while True:
            try:
                return fn(*args)
            except ProviderTransientError as e:
                if attempt >= self.max_retries:
                    logger.error(f"{operation} failed after {attempt + 1} attempts: {e}")
                    raise ProviderUnavailable(f"{operation} failed: {e}") from e
                delay = self.backoff_base_ms * (2 ** attempt) / 1000
                attempt += 1
                logger.warning(
                    f"{operation} failed ({e}), retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                self._sleep(delay)

    def _check_size(self, photo: bytes) -> None:
        if not photo:
            raise ImageRejected(IMAGE_NO_FACE, "Empty image")
        if len(photo) > self.max_image_bytes:
            raise ImageRejected(
                IMAGE_TOO_LARGE,
                f"Image is {len(photo)} bytes, limit is {self.max_image_bytes}",
            )

    def validate_image(self, photo: bytes) -> float:
        """Check that a photo is fit for enrollment. Returns detector confidence."""
        self._check_size(photo)
        provider = self._require_ready()

        faces = self._call("detect_faces", provider.detect_faces, photo)
        if not faces:
            raise ImageRejected(IMAGE_NO_FACE, "No face detected in the image")
        if len(faces) > 1:
            raise ImageRejected(
                IMAGE_MULTIPLE_FACES,
                f"{len(faces)} faces detected, use an image with only one person",
            )
        confidence = faces[0].confidence
        if confidence < self.min_face_confidence:
            raise ImageRejected(
                IMAGE_LOW_CONFIDENCE,
                f"Face detection confidence {confidence:.1f} is below {self.min_face_confidence:.0f}",
            )
        return confidence

    def enroll(self, photo: bytes, key: str, metadata: dict | None = None) -> EnrollmentResult:
        """Index one face under ``key`` after checking the photo locally."""
        self.validate_image(photo)
        provider = self._require_ready()

        indexed = self._call("index_face", provider.index_face, photo, key)
        logger.info(f"Enrolled face {indexed.face_id} as {key}")
        return EnrollmentResult(
            face_id=indexed.face_id,
            enrollment_key=key,
            confidence=indexed.confidence,
            metadata=metadata or {},
        )

    def search(self, photo: bytes, threshold: float | None = None) -> list[MatchCandidate]:
        """Find enrolled faces similar to the one in ``photo``.

        Returns candidates with similarity at or above the threshold, best
        first. An empty list means no enrolled face is similar enough.
        A ``threshold`` override can only raise the configured threshold.
        """
        threshold = self.threshold if threshold is None else max(threshold, self.threshold)
        self._check_size(photo)
        provider = self._require_ready()

        matches = self._call(
            "search_faces", provider.search_faces, photo, threshold, self.max_faces
        )
        candidates = [
            MatchCandidate(
                enrollment_key=m.external_key,
                similarity=m.similarity,
                provider_confidence=m.confidence,
                face_id=m.face_id,
            )
            for m in matches
            if m.similarity >= threshold
        ]
        candidates.sort(key=lambda c: c.similarity, reverse=True)
        logger.debug(
            f"Face search returned {len(matches)} matches, {len(candidates)} at or above {threshold}"
        )
        return candidates

    def revoke(self, enrollment_key: str, face_id: str | None = None) -> bool:
        """Remove the face(s) enrolled under a key. Idempotent."""
        provider = self._require_ready()

        if face_id:
            face_ids = [face_id]
        else:
            face_ids = self._call("list_face_ids", provider.list_face_ids, enrollment_key)

        if face_ids:
            deleted = self._call("delete_faces", provider.delete_faces, face_ids)
            logger.info(f"Revoked {len(deleted)} face(s) enrolled as {enrollment_key}")
        else:
            logger.info(f"No enrolled face found for {enrollment_key}, nothing to revoke")
        return True


# Process-scoped matcher, built by init_matcher() at startup
_matcher: BiometricMatcher | None = None


def build_matcher() -> BiometricMatcher:
    """Build a matcher from settings, using Rekognition when credentials are set."""
    provider = None
    if has_valid_credentials():
        provider = RekognitionProvider(get_rekognition_client(), settings.face_collection_id)

    return BiometricMatcher(
        provider,
        threshold=settings.match_threshold,
        max_image_bytes=settings.max_image_bytes,
        min_face_confidence=settings.min_face_confidence,
        max_faces=settings.search_max_faces,
        max_retries=settings.provider_max_retries,
        backoff_base_ms=settings.provider_backoff_base_ms,
    )


def init_matcher() -> BiometricMatcher:
    """Build and initialize the process-wide matcher."""
    global _matcher
    _matcher = build_matcher()
    _matcher.initialize()
    return _matcher


def get_matcher() -> BiometricMatcher:
    """Dependency returning the process-wide matcher.

    Before init_matcher() has run this is an unconfigured matcher, which
    rejects every call with ProviderUnavailable.
    """
    global _matcher
    if _matcher is None:
        _matcher = BiometricMatcher(None)
    return _matcher
