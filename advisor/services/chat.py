"""
Chat Service - per-turn routing for the advisor

Decides for each user utterance which processing path to take and returns a
plain-text reply carrying at most one marker token. Routing state comes from
the transcript only; nothing about the conversation is stored server-side.
"""
import re
from dataclasses import dataclass
from typing import Optional, Sequence

from advisor.core.config import settings
from advisor.core.exceptions import EstimateUnavailable, ToolQueryRejected
from advisor.core.logging import log_turn_event, logger
from advisor.orchestration.graphs.pipeline import ReviewPipeline
from advisor.orchestration.journey import reconstruct
from advisor.orchestration.markers import (
    Marker,
    annotate,
    decode_choice,
    decode_marker,
    strip_choice,
)
from advisor.orchestration.oracles import ConversationOracle, Ok
from advisor.orchestration.state import (
    Intent,
    IntentCategory,
    JourneyChoice,
    JourneyState,
    Message,
    Recommendation,
    Role,
    Route,
    append_message,
    build_transcript,
    recent_history,
)
from advisor.orchestration.tools.lookup import DataLookupOracle, needs_data_lookup
from advisor.orchestration.tools.transport import (
    ToolTransportPool,
    execute_tool,
    get_tool_pool,
    inventory_query,
)
from advisor.services.estimate import Ratebook, estimate
from advisor.services.knowledge import KnowledgeRetriever, NullRetriever
from advisor.services.llm.fast_path import FastPathCategory, classify as fast_classify
from advisor.services.llm.intent_service import IntentService, get_intent_service, should_offer_fork
from advisor.services.policy_resolver import (
    PolicyMatch,
    PolicyResolver,
    WrongPolicyType,
    detect_needed_policy_type,
    format_policy_type,
    format_policy_types,
)
from advisor.services.policy_store import PolicyRecord, PolicyStore, PolicyType, get_policy_store


SMALL_TALK_REPLY = "I'm doing great, thanks for asking! How can I help with your insurance needs?"

UPLOAD_PROMPT = (
    "I don't see any policy documents on file yet. Could you upload your insurance card, "
    "declarations page, or policy PDF so I can help you?"
)

FORK_PROMPT = (
    "Happy to help with pricing! Would you like a quick ballpark estimate based on typical "
    "rates, or a precise, personalized review based on your current policy?"
)

ESTIMATE_TYPE_PROMPT = (
    "Happy to give you a ballpark! Which type of insurance are you curious about: "
    "auto, homeowners, renters or umbrella?"
)

EMPTY_INVENTORY_REPLY = (
    "I don't see any policy documents on file for you yet. You can upload your insurance "
    "card, declarations page, or policy PDF whenever you're ready."
)

DECLINE_PATTERNS = (
    re.compile(r"\b(no|nope|nah|not now|later|skip|don'?t have|cant|can'?t|unable)\b"),
    re.compile(r"\b(without|general|instead)\b"),
    re.compile(r"\b(don'?t want to|rather not|prefer not)\b"),
)
GENERAL_QUESTION_RE = re.compile(
    r"^(what is|what are|how does|how do|explain|tell me about)\s+(a |an |the )?\s*"
    r"(deductible|coverage|insurance|policy|premium)"
)
EXISTING_POLICY_RE = re.compile(
    r"\b(on file|already have|already uploaded|have on file|i uploaded|use my|my existing|"
    r"my current|existing policy|current policy)\b"
)

# Categories that would otherwise check for a policy on file
POLICY_BOUND_CATEGORIES = (
    FastPathCategory.EXPLICIT_POLICY,
    FastPathCategory.POSSESSIVE_COVERAGE,
    FastPathCategory.GAP_ANALYSIS,
    FastPathCategory.QUOTE,
    FastPathCategory.INCONCLUSIVE,
)


def greeting_reply() -> str:
    return f"Hey! I'm {settings.ADVISOR_NAME}, your insurance advisor. What can I help you with today?"


def wrong_type_reply(resolution: WrongPolicyType) -> str:
    need = format_policy_type(resolution.need)
    have = format_policy_types(resolution.have)
    return (
        f"I can see your {have} policy on file, but I don't have your {need} policy yet. "
        f"Could you upload your {need} declarations page or policy PDF so I can answer that accurately?"
    )


def policy_context(record: PolicyRecord) -> str:
    """Source context for policy-grounded answers."""
    lines = [
        f"Policy type: {format_policy_type(record.policy_type)}",
        f"Carrier: {record.carrier}",
        "",
        "Policy analysis:",
        record.analysis_text,
    ]
    if record.structured_fields:
        lines.append("")
        lines.append("Extracted fields:")
        for key, value in sorted(record.structured_fields.items()):
            lines.append(f"- {key}: {value}")
    return "\n".join(lines)


def declined_upload(history: Sequence[Message], text: str) -> bool:
    """
    True when the user was just asked for an upload and declines it, or asks
    a general question instead. Referencing a policy on file is not a decline.
    """
    lowered = text.lower()
    if EXISTING_POLICY_RE.search(lowered):
        return False
    prompted = any(
        m.role == Role.ASSISTANT and decode_marker(m.content) == Marker.REQUEST_UPLOAD
        for m in recent_history(history)
    )
    if not prompted:
        return False
    if any(p.search(lowered) for p in DECLINE_PATTERNS):
        return True
    return bool(GENERAL_QUESTION_RE.search(lowered))


@dataclass(frozen=True)
class ChatReply:
    """Reply text (marker token included) plus routing metadata."""
    text: str
    route: Route
    marker: Optional[Marker] = None
    degraded: bool = False
    intent: Optional[Intent] = None


class ChatService:
    """Routes one user turn to a quick reply, an estimate, or the review pipeline."""

    def __init__(
        self,
        store: Optional[PolicyStore] = None,
        intent_service: Optional[IntentService] = None,
        pipeline: Optional[ReviewPipeline] = None,
        conversation: Optional[ConversationOracle] = None,
        retriever: Optional[KnowledgeRetriever] = None,
        tool_pool: Optional[ToolTransportPool] = None,
        ratebook: Optional[Ratebook] = None,
        data_lookup: Optional[DataLookupOracle] = None,
    ):
        self.store = store or get_policy_store()
        self.resolver = PolicyResolver(self.store)
        self.intent_service = intent_service or get_intent_service()
        self.pipeline = pipeline or ReviewPipeline()
        self.conversation = conversation or ConversationOracle()
        self.retriever = retriever or NullRetriever()
        self.tool_pool = tool_pool if tool_pool is not None else get_tool_pool()
        self.ratebook = ratebook
        if data_lookup is None and self.tool_pool is not None:
            data_lookup = DataLookupOracle(self.tool_pool)
        self.data_lookup = data_lookup

    async def respond(
        self,
        message: str,
        history: Sequence[Message] = (),
        identity: Optional[str] = None,
        policy_type: Optional[PolicyType] = None,
    ) -> ChatReply:
        """
        Process one user turn.

        Args:
            message: The new user utterance (may carry a choice sentinel)
            history: Transcript so far, oldest first
            identity: Caller identity for policy lookups
            policy_type: Caller-selected policy override

        Returns:
            ChatReply whose text carries at most one marker token
        """
        transcript = build_transcript(history)
        body = strip_choice(message)
        journey = reconstruct(append_message(transcript, Message(role=Role.USER, content=message)))
        needed = policy_type or detect_needed_policy_type(body)
        chosen = decode_choice(message)
        category = fast_classify(body)

        log_turn_event(
            route="inbound",
            identity=identity,
            details={
                "fast_path": category.value,
                "choice": chosen.value if chosen else None,
                "asked_for_fork": journey.asked_for_fork,
            },
        )

        if chosen == JourneyChoice.QUICK_ESTIMATE:
            reply = await self._estimate_turn(body, journey, needed)
        elif chosen == JourneyChoice.PRECISE_QUOTE:
            reply = await self._policy_turn(body, identity, needed)
        else:
            reply = await self._route(category, body, transcript, journey, identity, needed)

        log_turn_event(
            route=reply.route.value,
            identity=identity,
            details={"marker": reply.marker.value if reply.marker else None, "degraded": reply.degraded},
        )
        return reply

    async def _route(
        self,
        category: FastPathCategory,
        body: str,
        transcript: Sequence[Message],
        journey: JourneyState,
        identity: Optional[str],
        needed: Optional[PolicyType],
    ) -> ChatReply:
        if category == FastPathCategory.GREETING:
            return ChatReply(text=greeting_reply(), route=Route.QUICK_REPLY)

        if category == FastPathCategory.SMALL_TALK:
            return ChatReply(text=SMALL_TALK_REPLY, route=Route.QUICK_REPLY)

        if category == FastPathCategory.ESTIMATE_REQUEST:
            return await self._estimate_turn(body, journey, needed)

        if category in POLICY_BOUND_CATEGORIES and declined_upload(transcript, body):
            logger.info("User declined upload or wants general help, skipping policy check")
            return await self._general_turn(body)

        if self.data_lookup is not None and identity and needs_data_lookup(body):
            reply = await self._data_lookup_turn(body, transcript, identity)
            if reply is not None:
                return reply

        if category in (
            FastPathCategory.EXPLICIT_POLICY,
            FastPathCategory.POSSESSIVE_COVERAGE,
            FastPathCategory.GAP_ANALYSIS,
        ):
            return await self._policy_turn(body, identity, needed)

        if category == FastPathCategory.QUOTE:
            return await self._pricing_turn(body, journey, identity, needed)

        if category == FastPathCategory.STORED_RECORDS:
            return await self._inventory_turn(identity)

        intent = await self.intent_service.classify(body, recent_history(transcript))
        reply = await self._route_intent(intent, body, transcript, journey, identity, needed)
        return ChatReply(
            text=reply.text,
            route=reply.route,
            marker=reply.marker,
            degraded=reply.degraded,
            intent=intent,
        )

    async def _route_intent(
        self,
        intent: Intent,
        body: str,
        transcript: Sequence[Message],
        journey: JourneyState,
        identity: Optional[str],
        needed: Optional[PolicyType],
    ) -> ChatReply:
        if should_offer_fork(intent, journey):
            return self._fork_reply()

        if intent.category == IntentCategory.SMALL_TALK:
            return await self._direct_turn(body, transcript)

        if intent.category == IntentCategory.EDUCATIONAL:
            return await self._general_turn(body)

        if intent.category in (IntentCategory.POLICY_QUESTION, IntentCategory.GAP_ANALYSIS):
            return await self._policy_turn(body, identity, needed)

        if intent.category == IntentCategory.PRICING:
            wants_estimate = (
                journey.journey_choice == JourneyChoice.QUICK_ESTIMATE
                or intent.recommendation == Recommendation.QUICK_ESTIMATE
            )
            wants_precise = (
                journey.journey_choice == JourneyChoice.PRECISE_QUOTE
                or intent.recommendation == Recommendation.PRECISE_QUOTE
            )
            if wants_precise and not wants_estimate:
                return await self._policy_turn(body, identity, needed)
            if wants_estimate or needed is not None:
                return await self._estimate_turn(body, journey, needed)

        if intent.recommendation == Recommendation.ANALYZE:
            return await self._policy_turn(body, identity, needed)

        return await self._general_turn(body)

    async def _pricing_turn(
        self,
        body: str,
        journey: JourneyState,
        identity: Optional[str],
        needed: Optional[PolicyType],
    ) -> ChatReply:
        if journey.journey_choice == JourneyChoice.QUICK_ESTIMATE:
            return await self._estimate_turn(body, journey, needed)
        if journey.journey_choice == JourneyChoice.PRECISE_QUOTE:
            return await self._policy_turn(body, identity, needed)
        if not journey.asked_for_fork:
            return self._fork_reply()
        return await self._policy_turn(body, identity, needed)

    def _fork_reply(self) -> ChatReply:
        return ChatReply(
            text=annotate(FORK_PROMPT, Marker.OFFER_FORK),
            route=Route.FORK_PROMPT,
            marker=Marker.OFFER_FORK,
        )

    async def _estimate_turn(
        self,
        body: str,
        journey: JourneyState,
        needed: Optional[PolicyType],
    ) -> ChatReply:
        profile = journey.estimate_profile
        policy_type = needed
        if policy_type is None and profile.policy_type:
            policy_type = PolicyType(profile.policy_type)
        if policy_type is None:
            return ChatReply(text=ESTIMATE_TYPE_PROMPT, route=Route.ESTIMATE)

        try:
            result = estimate(policy_type, profile=profile, ratebook=self.ratebook)
        except EstimateUnavailable as e:
            logger.info(f"Estimate unavailable, answering through the pipeline: {e}")
            return await self._general_turn(body)

        framing = None
        if settings.ESTIMATE_FRAMING_ENABLED:
            outcome = await self.conversation.frame_estimate(body, format_policy_type(policy_type))
            if isinstance(outcome, Ok):
                framing = outcome.value

        logger.info(
            f"Estimate: {policy_type.value} {result.jurisdiction} {result.band} "
            f"(ratebook {result.ratebook_version})"
        )
        return ChatReply(text=result.render(framing), route=Route.ESTIMATE)

    async def _policy_turn(
        self,
        body: str,
        identity: Optional[str],
        needed: Optional[PolicyType],
    ) -> ChatReply:
        resolution = self.resolver.resolve(identity, needed)

        if isinstance(resolution, PolicyMatch):
            record = resolution.record
            logger.info(f"Found {record.policy_type.value} policy from {record.carrier}")
            result = await self.pipeline.run(body, policy_context(record))
            return ChatReply(text=annotate(result.text), route=Route.POLICY_ANSWER, degraded=result.degraded)

        if isinstance(resolution, WrongPolicyType):
            return ChatReply(
                text=annotate(wrong_type_reply(resolution), Marker.REQUEST_UPLOAD),
                route=Route.UPLOAD_PROMPT,
                marker=Marker.REQUEST_UPLOAD,
            )

        return ChatReply(
            text=annotate(UPLOAD_PROMPT, Marker.REQUEST_UPLOAD),
            route=Route.UPLOAD_PROMPT,
            marker=Marker.REQUEST_UPLOAD,
        )

    async def _general_turn(self, body: str) -> ChatReply:
        context = await self.retriever.retrieve(body)
        result = await self.pipeline.run(body, context)
        return ChatReply(text=annotate(result.text), route=Route.ANALYSIS, degraded=result.degraded)

    async def _direct_turn(self, body: str, transcript: Sequence[Message]) -> ChatReply:
        outcome = await self.conversation.reply(body, recent_history(transcript))
        if isinstance(outcome, Ok) and outcome.value:
            return ChatReply(text=annotate(outcome.value), route=Route.DIRECT)
        return ChatReply(text=SMALL_TALK_REPLY, route=Route.DIRECT, degraded=True)

    async def _inventory_turn(self, identity: Optional[str]) -> ChatReply:
        """List the policies on file, preferring the tool transport when configured."""
        entries = None
        if identity and self.tool_pool is not None:
            entries = await self._inventory_from_tools(identity)
        if entries is None and identity:
            entries = [
                (record.policy_type.value, record.carrier)
                for record in self.store.get_records_for_identity(identity)
            ]

        if not entries:
            return ChatReply(
                text=annotate(EMPTY_INVENTORY_REPLY, Marker.REQUEST_UPLOAD),
                route=Route.INVENTORY,
                marker=Marker.REQUEST_UPLOAD,
            )

        described = []
        for raw_type, carrier in entries:
            try:
                label = format_policy_type(PolicyType(raw_type))
            except ValueError:
                label = str(raw_type or "insurance")
            described.append(f"your {label} policy" + (f" with {carrier}" if carrier else ""))
        listing = described[0] if len(described) == 1 else ", ".join(described[:-1]) + " and " + described[-1]
        return ChatReply(text=f"Here's what I have on file for you: {listing}.", route=Route.INVENTORY)

    async def _inventory_from_tools(self, identity: str):
        """Rows from the tool transport as (policy_type, carrier) pairs, or None on failure."""
        try:
            async with self.tool_pool.borrow() as transport:
                rows = await execute_tool(
                    transport,
                    identity,
                    "execute_sql",
                    {"query": inventory_query(identity)},
                )
        except ToolQueryRejected as e:
            logger.warning(f"Inventory query rejected: {e}")
            return None
        except Exception as e:
            logger.error(f"Inventory lookup failed, using policy store: {e}")
            return None
        return [(row.get("policy_type"), row.get("carrier_name")) for row in rows]

    async def _data_lookup_turn(
        self,
        body: str,
        transcript: Sequence[Message],
        identity: str,
    ) -> Optional[ChatReply]:
        """Tool-calling answer from stored records, or None to use the standard path."""
        outcome = await self.data_lookup.answer(body, recent_history(transcript), identity)
        if isinstance(outcome, Ok):
            return ChatReply(text=annotate(outcome.value), route=Route.DATA_LOOKUP)
        logger.info(f"Data lookup unavailable ({outcome.kind.value}), using standard routing")
        return None
