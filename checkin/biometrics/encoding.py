"""Enrollment key encoding for the shared face index.

All events share one provider-side face collection, so the external id a
face is enrolled under has to say which event and which attendee it
belongs to:

    {event_id}_{first_name}_{last_name}_{timestamp_ms}

The separator is reserved: names may not contain it. Whitespace inside a
last name is collapsed to the separator and restored on decode. The first
name is a fixed single field, so whitespace inside it is collapsed to a
hyphen instead. The trailing millisecond timestamp keeps keys unique when the
same person enrolls twice.

The provider only accepts external ids matching ``[A-Za-z0-9_.\\-:]+`` of at
most 255 characters. Names are folded to ASCII and stripped of other
punctuation before encoding.
"""
import re
import time
import unicodedata
from datetime import UTC, datetime
from typing import NamedTuple
from uuid import UUID

from checkin.validation.errors import InvalidIdentity, MalformedKey

SEPARATOR = "_"
FIRST_NAME_JOINER = "-"
MAX_KEY_LENGTH = 255

_EVENT_ID_PATTERN = re.compile(r"[A-Za-z0-9.\-:]+")
_NAME_PATTERN = re.compile(r"[A-Za-z0-9.\-_]+")
_DISALLOWED_NAME_CHARS = re.compile(r"[^A-Za-z0-9.\-_\s]")


class DecodedKey(NamedTuple):
    """The four parts of an enrollment key."""
    event_id: str
    first_name: str
    last_name: str
    timestamp_ms: int

    @property
    def enrolled_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp_ms / 1000, tz=UTC)


def canonical_id(value) -> str:
    """Render an identifier the same way regardless of how it was stored.

    UUIDs (as objects, or as strings in any case, with or without hyphens)
    become the lowercase hyphenated form. Anything else is stringified and
    trimmed. Every event id comparison goes through this on both sides.
    """
    if isinstance(value, UUID):
        return str(value)
    text = str(value).strip()
    try:
        return str(UUID(text))
    except ValueError:
        return text


def normalize_name(value: str, joiner: str = SEPARATOR) -> str:
    """Fold a name to the form it takes inside an enrollment key.

    Accents are folded to ASCII, punctuation the provider cannot carry is
    dropped, and runs of whitespace become a single ``joiner``. Does not
    raise; ``encode_key`` validates the result.
    """
    folded = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    folded = _DISALLOWED_NAME_CHARS.sub("", folded)
    return joiner.join(folded.split())


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_key(event_id, first_name: str, last_name: str, timestamp_ms: int | None = None) -> str:
    """Build the enrollment key for one attendee's face.

    Raises:
        InvalidIdentity: if a part is empty after normalization, a name
            contains the reserved separator, or the key cannot be carried by
            the provider.
    """
    event_part = canonical_id(event_id) if event_id is not None else ""
    if not event_part:
        raise InvalidIdentity("Event id is required")
    if SEPARATOR in event_part or not _EVENT_ID_PATTERN.fullmatch(event_part):
        raise InvalidIdentity(f"Event id {event_part!r} cannot be used in an enrollment key")

    for label, raw in (("First name", first_name), ("Last name", last_name)):
        if raw and SEPARATOR in raw:
            raise InvalidIdentity(f"{label} may not contain {SEPARATOR!r}")

    first_part = normalize_name(first_name, joiner=FIRST_NAME_JOINER)
    last_part = normalize_name(last_name, joiner=SEPARATOR)
    if not first_part:
        raise InvalidIdentity("First name is empty")
    if not last_part:
        raise InvalidIdentity("Last name is empty")
    if not _NAME_PATTERN.fullmatch(first_part) or not _NAME_PATTERN.fullmatch(last_part):
        raise InvalidIdentity("Name contains characters that cannot be enrolled")

    if timestamp_ms is None:
        timestamp_ms = _now_ms()
    if timestamp_ms < 0:
        raise InvalidIdentity("Enrollment timestamp must not be negative")

    key = SEPARATOR.join([event_part, first_part, last_part, str(int(timestamp_ms))])
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidIdentity(f"Enrollment key exceeds {MAX_KEY_LENGTH} characters")
    return key


def decode_key(key: str) -> DecodedKey:
    """Split an enrollment key back into its parts.

    The event id and first name are taken from the left, the timestamp from
    the right; whatever is left in between is the last name.

    Raises:
        MalformedKey: if the key has fewer than four segments, an empty
            field, or a non-numeric timestamp.
    """
    if not key:
        raise MalformedKey("Empty enrollment key")

    parts = key.split(SEPARATOR)
    if len(parts) < 4:
        raise MalformedKey(f"Enrollment key {key!r} has {len(parts)} segments, expected at least 4")

    event_id, first_name, *last_parts, timestamp = parts
    if not event_id or not first_name or not all(last_parts):
        raise MalformedKey(f"Enrollment key {key!r} has an empty field")
    if not (timestamp.isascii() and timestamp.isdigit()):
        raise MalformedKey(f"Enrollment key {key!r} does not end in a timestamp")

    return DecodedKey(
        event_id=event_id,
        first_name=first_name,
        last_name=" ".join(last_parts),
        timestamp_ms=int(timestamp),
    )
