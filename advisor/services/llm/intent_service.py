"""
Intent Classification Service

Probabilistic fallback for utterances the fast path could not place.
This is a bounded AI task: one upstream call per turn, low temperature, small
output budget, and output constrained to a fixed set of categories.

Valid categories:
- pricing: User wants a price or quote
- policy_question: User asks about their own policy
- gap_analysis: User wants to know what they are missing
- educational: User asks how insurance works in general
- small_talk: Chit-chat
- uncertain: Cannot determine intent

The classifier never raises to its caller. Any failure (timeout, upstream
error, unparseable reply) yields DEFAULT_INTENT.
"""
import asyncio
import math
from typing import Any, Dict, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from advisor.core.config import settings
from advisor.core.exceptions import ClassificationFailure
from advisor.core.langfuse_handler import get_callback_config
from advisor.core.logging import logger
from advisor.orchestration.markers import strip_choice, strip_marker
from advisor.orchestration.routing import get_llm
from advisor.orchestration.state import (
    DEFAULT_INTENT,
    Intent,
    IntentCategory,
    JourneyChoice,
    JourneyState,
    Message,
    Recommendation,
    Role,
)
from advisor.orchestration.utils import extract_json_from_llm_response


CLASSIFIER_PROMPT = """You classify a customer's message to a personal-lines insurance advisor.

Available categories:
- pricing: wants to know what insurance costs, a quote, or how to save money
- policy_question: asks about their own existing policy, limits or deductibles
- gap_analysis: wants to know whether they are adequately covered or what they lack
- educational: asks how insurance works in general, definitions, concepts
- small_talk: greetings, thanks, chit-chat
- uncertain: none of the above

Available recommendations: quick_estimate, precise_quote, analyze, direct_reply, offer_fork

Respond with ONLY a JSON object, nothing else:
{"category": "<category>", "confidence": <0.0-1.0>, "signals": ["<short cue>", ...], "recommendation": "<recommendation>"}"""


DEFAULT_RECOMMENDATIONS = {
    IntentCategory.PRICING: Recommendation.OFFER_FORK,
    IntentCategory.POLICY_QUESTION: Recommendation.ANALYZE,
    IntentCategory.GAP_ANALYSIS: Recommendation.ANALYZE,
    IntentCategory.EDUCATIONAL: Recommendation.DIRECT_REPLY,
    IntentCategory.SMALL_TALK: Recommendation.DIRECT_REPLY,
    IntentCategory.UNCERTAIN: Recommendation.OFFER_FORK,
}

# Confidence assigned when the model answers with a bare category label.
LABEL_ONLY_CONFIDENCE = 0.5


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _parse_confidence(raw: Any) -> float:
    """Clamped confidence; anything that is not a finite number scores as a bare label."""
    if isinstance(raw, bool):
        return LABEL_ONLY_CONFIDENCE
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return LABEL_ONLY_CONFIDENCE
    if not math.isfinite(value):
        return LABEL_ONLY_CONFIDENCE
    return _clamp(value)


def parse_intent(content: str) -> Intent:
    """
    Parse a classifier reply into an Intent.

    Accepts a JSON object (possibly wrapped in prose or a code block) or a bare
    category label.

    Raises:
        ClassificationFailure: If the reply names no known category
    """
    data: Optional[Dict[str, Any]] = extract_json_from_llm_response(content)
    if data is None:
        label = (content or "").strip().strip('".').lower()
        try:
            category = IntentCategory(label)
        except ValueError:
            raise ClassificationFailure(f"Unparseable classifier reply: {content[:80]!r}")
        return Intent(
            category=category,
            confidence=LABEL_ONLY_CONFIDENCE,
            signals=frozenset({"label_only"}),
            recommendation=DEFAULT_RECOMMENDATIONS[category],
        )

    try:
        category = IntentCategory(str(data.get("category", "")).strip().lower())
    except ValueError:
        raise ClassificationFailure(f"Unknown category: {data.get('category')!r}")

    confidence = _parse_confidence(data.get("confidence", LABEL_ONLY_CONFIDENCE))

    try:
        recommendation = Recommendation(str(data.get("recommendation", "")).strip().lower())
    except ValueError:
        recommendation = DEFAULT_RECOMMENDATIONS[category]

    raw_signals = data.get("signals") or []
    if isinstance(raw_signals, str):
        raw_signals = [raw_signals]
    signals = frozenset(str(s).strip() for s in raw_signals if str(s).strip())

    return Intent(
        category=category,
        confidence=confidence,
        signals=signals,
        recommendation=recommendation,
    )


def should_offer_fork(intent: Intent, journey: JourneyState, threshold: Optional[float] = None) -> bool:
    """
    True when the turn should present the estimate/precise choice.

    At or above the threshold the classifier's recommendation is followed
    implicitly. Educational questions are answered directly. The fork is never
    offered twice in one conversation, nor after the user has already chosen.
    """
    threshold = settings.FORK_CONFIDENCE_THRESHOLD if threshold is None else threshold
    if journey.asked_for_fork or journey.journey_choice != JourneyChoice.NONE:
        return False
    if intent.category in (IntentCategory.EDUCATIONAL, IntentCategory.SMALL_TALK):
        return False
    if intent.confidence >= threshold:
        return False
    return intent.category in (IntentCategory.PRICING, IntentCategory.UNCERTAIN) or (
        intent.recommendation == Recommendation.OFFER_FORK
    )


class IntentService:
    """
    Service for classifying user intent with a single bounded upstream call.
    """

    def __init__(self, llm: Optional[BaseChatModel] = None, timeout: Optional[float] = None):
        self._llm = llm
        self.timeout = timeout if timeout is not None else settings.CLASSIFIER_TIMEOUT_SECONDS

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_llm(
                temperature=settings.CLASSIFIER_TEMPERATURE,
                max_tokens=settings.CLASSIFIER_MAX_TOKENS,
            )
        return self._llm

    def _build_messages(self, text: str, recent_history: Sequence[Message]):
        lines = []
        for message in recent_history:
            if message.role == Role.ASSISTANT:
                lines.append(f"assistant: {strip_marker(message.content)}")
            else:
                lines.append(f"user: {strip_choice(message.content)}")
        context = "\n".join(lines) if lines else "(none)"
        return [
            SystemMessage(content=CLASSIFIER_PROMPT),
            HumanMessage(content=f"Recent conversation:\n{context}\n\nMessage to classify: {text}"),
        ]

    async def classify(self, text: str, recent_history: Sequence[Message] = ()) -> Intent:
        """
        Classify user input into an Intent.

        Args:
            text: User's message
            recent_history: Last few transcript messages for context

        Returns:
            Intent; DEFAULT_INTENT on any failure
        """
        try:
            response = await asyncio.wait_for(
                self.llm.ainvoke(
                    self._build_messages(text, recent_history),
                    config=get_callback_config("classifier"),
                ),
                timeout=self.timeout,
            )
            content = response.content if isinstance(response.content, str) else str(response.content)
            intent = parse_intent(content)
        except asyncio.TimeoutError:
            logger.warning(f"Intent classification timed out after {self.timeout}s, using default")
            return DEFAULT_INTENT
        except ClassificationFailure as e:
            logger.warning(f"Intent classification unparseable, using default: {e}")
            return DEFAULT_INTENT
        except Exception as e:
            logger.error(f"Intent classification failed, using default: {e}")
            return DEFAULT_INTENT

        logger.info(
            f"Intent: {intent.category.value} ({intent.confidence:.2f}) -> {intent.recommendation.value}"
        )
        return intent


# Singleton instance
_intent_service: Optional[IntentService] = None


def get_intent_service() -> IntentService:
    """Get or create intent service singleton."""
    global _intent_service
    if _intent_service is None:
        _intent_service = IntentService()
    return _intent_service
