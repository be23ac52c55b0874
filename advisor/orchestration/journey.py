"""
Journey State Reconstructor

Routing state is never stored server-side. It is re-derived on every turn by
scanning the transcript oldest to newest: user messages contribute the journey
choice sentinel and the estimate profile, assistant messages contribute the
fork-offered marker. Later messages overwrite earlier values per field.
"""
import re
from typing import Optional, Sequence

from advisor.orchestration.markers import Marker, decode_choice, decode_marker, strip_choice
from advisor.orchestration.state import (
    EstimateProfile,
    JourneyChoice,
    JourneyState,
    Message,
    Role,
)
from advisor.services.estimate.ratebook import age_band
from advisor.services.policy_resolver import detect_needed_policy_type


STATE_NAMES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR", "california": "CA",
    "colorado": "CO", "connecticut": "CT", "delaware": "DE", "florida": "FL", "georgia": "GA",
    "hawaii": "HI", "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT", "vermont": "VT",
    "virginia": "VA", "washington": "WA", "west virginia": "WV", "wisconsin": "WI",
    "wyoming": "WY", "district of columbia": "DC",
}
STATE_CODES = frozenset(STATE_NAMES.values())

# Codes that collide with everyday words need a locative cue ("in OR").
AMBIGUOUS_CODES = frozenset({"IN", "OR", "ME", "OK", "HI", "DE", "PA", "MA", "LA", "ID", "CO", "AL"})

_CODE_RE = re.compile(
    r"\b(" + "|".join(sorted(STATE_CODES)) + r")\b"
)
_LOCATIVE_CODE_RE = re.compile(
    r"\b(?:in|from|to|live in|living in)\s+(" + "|".join(sorted(STATE_CODES)) + r")\b"
)
_NAME_RE = re.compile(
    r"\b(" + "|".join(re.escape(n) for n in sorted(STATE_NAMES, key=len, reverse=True)) + r")\b"
)
_AGE_RES = (
    re.compile(r"\b(?:i'?m|i am|aged?)\s+(\d{2})\b"),
    re.compile(r"\b(\d{2})\s*(?:years?[\s-]old|yo|y/o)\b"),
)


def extract_state_code(text: str) -> Optional[str]:
    """Two-letter jurisdiction named in a user message, if any (last mention wins)."""
    if not text:
        return None
    found = None
    position = -1
    for match in _CODE_RE.finditer(text):
        code = match.group(1)
        if code in AMBIGUOUS_CODES:
            continue
        if match.start() > position:
            found, position = code, match.start()
    for match in _LOCATIVE_CODE_RE.finditer(text):
        if match.start(1) > position:
            found, position = match.group(1), match.start(1)
    for match in _NAME_RE.finditer(text.lower()):
        if match.start() > position:
            found, position = STATE_NAMES[match.group(1)], match.start()
    return found


def extract_age_range(text: str) -> Optional[str]:
    lowered = (text or "").lower()
    for pattern in _AGE_RES:
        match = pattern.search(lowered)
        if match:
            band = age_band(int(match.group(1)))
            if band:
                return band
    return None


def reconstruct(transcript: Sequence[Message]) -> JourneyState:
    """
    Derive the journey state from a transcript prefix.

    Pure and idempotent: the transcript is only read, and the same prefix
    always yields an equal JourneyState.
    """
    choice = JourneyChoice.NONE
    state = None
    policy_type = None
    age_range = None
    asked_for_fork = False

    for message in transcript:
        if message.role == Role.USER:
            picked = decode_choice(message.content)
            if picked is not None:
                choice = picked
            body = strip_choice(message.content)
            state = extract_state_code(body) or state
            detected = detect_needed_policy_type(body)
            if detected is not None:
                policy_type = detected.value
            age_range = extract_age_range(body) or age_range
        elif message.role == Role.ASSISTANT:
            if decode_marker(message.content) == Marker.OFFER_FORK:
                asked_for_fork = True

    return JourneyState(
        journey_choice=choice,
        estimate_profile=EstimateProfile(
            state=state,
            policy_type=policy_type,
            age_range=age_range,
        ),
        asked_for_fork=asked_for_fork,
    )
