from checkin.models.attempt import ValidationAttempt
from checkin.models.event import Event
from checkin.models.registration import Registration

__all__ = ["Event", "Registration", "ValidationAttempt"]
