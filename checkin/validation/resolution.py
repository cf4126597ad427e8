"""Resolve ranked face matches to at most one registration.

The face index is shared by every event and knows nothing about them, so
its results are treated as claims. Each candidate's enrollment key says
which event it was enrolled for; only candidates whose claim matches the
event being checked in to are considered at all.

Surviving candidates are matched against the event's registrations in two
tiers:

    1. **exact**: a registration's stored enrollment_key equals the
       candidate key.
    2. **name**: the decoded first/last name equals a registration's name,
       case-insensitively after normalization. Covers registrations enrolled
       before keys were linked; can be switched off.

A tier that points at more than one registration is Ambiguous; the engine
never picks one. Rejecting is recoverable at the door, validating the wrong
person is not.
"""
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from checkin.biometrics.encoding import (
    FIRST_NAME_JOINER,
    SEPARATOR,
    DecodedKey,
    canonical_id,
    decode_key,
    normalize_name,
)
from checkin.biometrics.matcher import MatchCandidate
from checkin.models import Registration
from checkin.validation.errors import REASON_AMBIGUOUS, REASON_NO_MATCH, MalformedKey

logger = logging.getLogger(__name__)

TIER_EXACT = "exact"
TIER_NAME = "name"


@dataclass
class Resolution:
    """Result of one resolve() call.

    Exactly one of ``registration`` and ``reason`` is set.
    """
    registration: Registration | None
    reason: str | None
    tier: str | None = None
    top_similarity: float | None = None
    candidate_count: int = 0
    detail: str = ""

    @property
    def resolved(self) -> bool:
        return self.registration is not None


def name_signature(first_name: str, last_name: str) -> tuple[str, str]:
    """Comparable form of a name pair, as it would appear in a key."""
    return (
        normalize_name(first_name, joiner=FIRST_NAME_JOINER).casefold(),
        normalize_name(last_name, joiner=SEPARATOR).casefold(),
    )


def filter_to_event(
    candidates: Iterable[MatchCandidate], event_id
) -> list[tuple[MatchCandidate, DecodedKey]]:
    """Keep candidates whose key decodes and names the target event."""
    target = canonical_id(event_id)
    kept = []
    for candidate in candidates:
        try:
            decoded = decode_key(candidate.enrollment_key)
        except MalformedKey as e:
            logger.warning(f"Ignoring face with undecodable key: {e}")
            continue
        if canonical_id(decoded.event_id) != target:
            logger.info(
                f"Ignoring face enrolled for event {decoded.event_id} "
                f"(similarity {candidate.similarity:.1f}) while checking in to {target}"
            )
            continue
        kept.append((candidate, decoded))
    return kept


def _distinct(registrations: Iterable[Registration]) -> list[Registration]:
    seen = {}
    for registration in registrations:
        seen.setdefault(registration.id, registration)
    return list(seen.values())


def resolve(
    candidates: Sequence[MatchCandidate],
    event_id,
    registrations: Iterable[Registration],
    *,
    name_fallback: bool = True,
) -> Resolution:
    """Turn ranked match candidates into at most one registration of ``event_id``."""
    top_similarity = max((c.similarity for c in candidates), default=None)
    base = {"top_similarity": top_similarity, "candidate_count": len(candidates)}

    surviving = filter_to_event(candidates, event_id)
    if not surviving:
        detail = (
            "Face recognized but enrolled for a different event"
            if candidates
            else "No enrolled face matched"
        )
        return Resolution(registration=None, reason=REASON_NO_MATCH, detail=detail, **base)

    target = canonical_id(event_id)
    event_registrations = [r for r in registrations if canonical_id(r.event_id) == target]

    # Tier 1: stored enrollment link
    keys = {candidate.enrollment_key for candidate, _ in surviving}
    exact = _distinct(r for r in event_registrations if r.enrollment_key in keys)
    if len(exact) == 1:
        return Resolution(registration=exact[0], reason=None, tier=TIER_EXACT, **base)
    if len(exact) > 1:
        return Resolution(
            registration=None,
            reason=REASON_AMBIGUOUS,
            tier=TIER_EXACT,
            detail=f"{len(exact)} registrations are linked to the matched faces",
            **base,
        )

    if not name_fallback:
        return Resolution(
            registration=None,
            reason=REASON_NO_MATCH,
            detail="Face recognized but not linked to a registration for this event",
            **base,
        )

    # Tier 2: decoded name
    signatures = {name_signature(d.first_name, d.last_name) for _, d in surviving}
    by_name = _distinct(
        r for r in event_registrations
        if name_signature(r.first_name, r.last_name) in signatures
    )
    if len(by_name) == 1:
        return Resolution(registration=by_name[0], reason=None, tier=TIER_NAME, **base)
    if len(by_name) > 1:
        return Resolution(
            registration=None,
            reason=REASON_AMBIGUOUS,
            tier=TIER_NAME,
            detail=f"{len(by_name)} registrations share the matched name",
            **base,
        )

    return Resolution(
        registration=None,
        reason=REASON_NO_MATCH,
        detail="Face recognized but no registration found for this event",
        **base,
    )
