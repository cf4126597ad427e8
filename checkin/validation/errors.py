"""Exceptions raised by the check-in pipeline.

Input defects and provider failures are raised where they are detected.
Business-rule rejections subclass CheckInRejected and carry the reason code
reported to the API layer; CheckInService turns them into CheckInResult
values instead of letting them escape.
"""

from datetime import datetime

REASON_NO_MATCH = "NoMatch"
REASON_AMBIGUOUS = "Ambiguous"
REASON_ALREADY_VALIDATED = "AlreadyValidated"
REASON_PAYMENT_REQUIRED = "PaymentRequired"
REASON_IMAGE_REJECTED = "ImageRejected"
REASON_PROVIDER_UNAVAILABLE = "ProviderUnavailable"
REASON_UNKNOWN_REGISTRATION = "UnknownRegistration"
REASON_REGISTRATION_INACTIVE = "RegistrationInactive"

IMAGE_TOO_LARGE = "TooLarge"
IMAGE_NO_FACE = "NoFace"
IMAGE_MULTIPLE_FACES = "MultipleFaces"
IMAGE_LOW_CONFIDENCE = "LowConfidence"


class CheckInError(Exception):
    """Base class for all check-in errors."""


class InvalidIdentity(CheckInError, ValueError):
    """Enrollment key parts are empty or not representable."""


class MalformedKey(CheckInError, ValueError):
    """An enrollment key could not be decoded."""


class ProviderTransientError(CheckInError):
    """A provider call failed in a way worth retrying."""


class CheckInRejected(CheckInError):
    """A check-in attempt was refused. Subclasses set ``reason``."""

    reason: str = ""

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.reason)
        self.detail = detail


class NoMatch(CheckInRejected):
    reason = REASON_NO_MATCH


class Ambiguous(CheckInRejected):
    reason = REASON_AMBIGUOUS


class UnknownRegistration(CheckInRejected):
    reason = REASON_UNKNOWN_REGISTRATION


class PaymentRequired(CheckInRejected):
    reason = REASON_PAYMENT_REQUIRED


class RegistrationInactive(CheckInRejected):
    """The registration was cancelled or deactivated."""

    reason = REASON_REGISTRATION_INACTIVE


class AlreadyValidated(CheckInRejected):
    """The registration was validated before; the original time is kept."""

    reason = REASON_ALREADY_VALIDATED

    def __init__(self, validated_at: datetime | None, detail: str = ""):
        super().__init__(detail)
        self.validated_at = validated_at


class ImageRejected(CheckInRejected):
    """The photo failed a local precondition; ``kind`` says which."""

    reason = REASON_IMAGE_REJECTED

    def __init__(self, kind: str, detail: str = ""):
        super().__init__(detail or kind)
        self.kind = kind


class ProviderUnavailable(CheckInRejected):
    """The biometric provider is unconfigured or kept failing."""

    reason = REASON_PROVIDER_UNAVAILABLE


class AlreadyEnrolled(CheckInError):
    """The registration already has a face enrolled; revoke it first."""
