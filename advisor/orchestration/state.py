"""
Shared conversation types for routing and the review pipeline
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """One transcript entry. Immutable once appended."""
    role: Role
    content: str

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(role=Role(data["role"]), content=data.get("content") or "")

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


Transcript = Tuple[Message, ...]


def build_transcript(messages: Iterable[Message]) -> Transcript:
    """Freeze a message sequence, oldest first."""
    return tuple(messages)


def append_message(transcript: Sequence[Message], message: Message) -> Transcript:
    """Return a new transcript with `message` at the end; the input is untouched."""
    return tuple(transcript) + (message,)


class JourneyChoice(str, Enum):
    QUICK_ESTIMATE = "quickEstimate"
    PRECISE_QUOTE = "preciseQuote"
    NONE = "none"


@dataclass(frozen=True)
class EstimateProfile:
    state: Optional[str] = None
    policy_type: Optional[str] = None
    age_range: Optional[str] = None


@dataclass(frozen=True)
class JourneyState:
    """Per-turn routing state, always derived from the transcript."""
    journey_choice: JourneyChoice = JourneyChoice.NONE
    estimate_profile: EstimateProfile = field(default_factory=EstimateProfile)
    asked_for_fork: bool = False


class IntentCategory(str, Enum):
    PRICING = "pricing"
    POLICY_QUESTION = "policy_question"
    GAP_ANALYSIS = "gap_analysis"
    EDUCATIONAL = "educational"
    SMALL_TALK = "small_talk"
    UNCERTAIN = "uncertain"


class Recommendation(str, Enum):
    QUICK_ESTIMATE = "quick_estimate"
    PRECISE_QUOTE = "precise_quote"
    ANALYZE = "analyze"
    DIRECT_REPLY = "direct_reply"
    OFFER_FORK = "offer_fork"


@dataclass(frozen=True)
class Intent:
    """Classifier output for a single turn. Never cached across turns."""
    category: IntentCategory
    confidence: float
    signals: FrozenSet[str] = frozenset()
    recommendation: Recommendation = Recommendation.OFFER_FORK

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "confidence": self.confidence,
            "signals": sorted(self.signals),
            "recommendation": self.recommendation.value,
        }


DEFAULT_INTENT = Intent(
    category=IntentCategory.UNCERTAIN,
    confidence=0.5,
    signals=frozenset({"default"}),
    recommendation=Recommendation.OFFER_FORK,
)


@dataclass(frozen=True)
class StageResult:
    """Output of one pipeline stage."""
    text: str
    source_context: Optional[str] = None
    degraded: bool = False


class Route(str, Enum):
    """Processing path chosen for a turn; used for logging and tests."""
    QUICK_REPLY = "quick_reply"
    ESTIMATE = "estimate"
    POLICY_ANSWER = "policy_answer"
    UPLOAD_PROMPT = "upload_prompt"
    FORK_PROMPT = "fork_prompt"
    ANALYSIS = "analysis"
    DIRECT = "direct"
    INVENTORY = "inventory"
    DATA_LOOKUP = "data_lookup"


def recent_history(transcript: Sequence[Message], limit: int = 4) -> List[Message]:
    """Last `limit` messages of the transcript."""
    if limit <= 0:
        return []
    return list(transcript[-limit:])
