"""
Response Marker Protocol

Control signals travel to the presentation layer as a single bracketed token
at the end of the plain-text reply, e.g. "...your declarations page.\n\n[UPLOAD_POLICY]".
The presentation layer strips and interprets the token; nothing here renders it.

Choice sentinels travel the other way: when the user picks a branch of the
estimate/precise fork, the presentation layer sends the matching sentinel inside
the user message.

The token set is a versioned wire contract. Adding a member is a breaking
change for any consumer that pattern-matches on it, so bump MARKER_PROTOCOL_VERSION.
"""
import re
from enum import Enum
from typing import Optional, Tuple

from advisor.orchestration.state import JourneyChoice


MARKER_PROTOCOL_VERSION = "1"


class Marker(str, Enum):
    REQUEST_UPLOAD = "UPLOAD_POLICY"
    OFFER_FORK = "OFFER_FORK"
    OPEN_EXTERNAL_LINK = "OPEN_LINK"


class ChoiceSentinel(str, Enum):
    QUICK_ESTIMATE = "CHOICE_QUICK_ESTIMATE"
    PRECISE_QUOTE = "CHOICE_PRECISE_QUOTE"


_MARKER_TOKEN_RE = re.compile(
    r"\[(" + "|".join(re.escape(m.value) for m in Marker) + r")\]\s*$"
)
_CHOICE_TOKEN_RE = re.compile(
    r"\[(" + "|".join(re.escape(c.value) for c in ChoiceSentinel) + r")\]"
)

_CHOICE_TO_JOURNEY = {
    ChoiceSentinel.QUICK_ESTIMATE: JourneyChoice.QUICK_ESTIMATE,
    ChoiceSentinel.PRECISE_QUOTE: JourneyChoice.PRECISE_QUOTE,
}


def encode_marker(marker: Marker) -> str:
    return f"[{marker.value}]"


def annotate(text: str, signal: Optional[Marker] = None) -> str:
    """Append at most one marker token to `text`.

    Any marker token already trailing the text is replaced, so a reply never
    carries more than one.
    """
    body, _ = split_marker(text)
    if signal is None:
        return body
    if not body:
        return encode_marker(signal)
    return f"{body}\n\n{encode_marker(signal)}"


def split_marker(text: str) -> Tuple[str, Optional[Marker]]:
    """Separate a trailing marker token from the text body."""
    if not text:
        return "", None
    match = _MARKER_TOKEN_RE.search(text)
    if not match:
        return text.strip(), None
    return text[:match.start()].rstrip(), Marker(match.group(1))


def decode_marker(text: str) -> Optional[Marker]:
    """Trailing marker carried by an assistant message, if any."""
    return split_marker(text)[1]


def strip_marker(text: str) -> str:
    return split_marker(text)[0]


def encode_choice(choice: JourneyChoice) -> str:
    for sentinel, journey in _CHOICE_TO_JOURNEY.items():
        if journey == choice:
            return f"[{sentinel.value}]"
    raise ValueError(f"No sentinel for journey choice {choice!r}")


def decode_choice(text: str) -> Optional[JourneyChoice]:
    """Journey choice carried by a user message; the last sentinel wins."""
    if not text:
        return None
    found = _CHOICE_TOKEN_RE.findall(text)
    if not found:
        return None
    return _CHOICE_TO_JOURNEY[ChoiceSentinel(found[-1])]


def strip_choice(text: str) -> str:
    return _CHOICE_TOKEN_RE.sub("", text or "").strip()
