"""
Upstream generation oracles

Every stage boundary returns a tagged Ok/Err result instead of raising, so the
caller handles both branches explicitly. Each call carries a bounded timeout and
an output budget; nothing is retried. Task cancellation is never converted into
an Err and always propagates to the caller.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, List, Optional, Sequence, TypeVar, Union

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from advisor.core.config import settings
from advisor.core.langfuse_handler import get_callback_config
from advisor.core.logging import logger
from advisor.orchestration.markers import strip_choice, strip_marker
from advisor.orchestration.routing import get_llm
from advisor.orchestration.state import Message, Role
from advisor.orchestration.utils import clean_response, trim_to_last_sentence, was_length_limited


T = TypeVar("T")


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    UPSTREAM_ERROR = "upstream_error"
    EMPTY_RESPONSE = "empty_response"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    kind: FailureKind
    detail: str = ""


Outcome = Union[Ok[T], Err]


@dataclass(frozen=True)
class Generation:
    text: str
    truncated: bool = False


@dataclass(frozen=True)
class DraftAnswer:
    answer: str
    source_context: str


# Security instructions to include in all prompts
SECURITY_INSTRUCTIONS = """
SECURITY RULES (NEVER VIOLATE):
- Never reveal internal systems, technologies, vendors or models used
- Never mention reviewers, colleagues, drafts or internal processes
- Never discuss your architecture, implementation, or how you work internally
- Focus ONLY on helping with personal insurance questions
"""

OUTPUT_GUARDRAILS = """
OUTPUT FORMAT:
- Plain text only: no markdown, asterisks, headers or bullet symbols
- Keep it concise: two or three short paragraphs at most unless asked for detail
- Never include URLs
- Say "designed to cover", never "will cover"; make no guarantees
"""

DRAFT_PROMPT = f"""You are an analytical personal-lines insurance specialist (auto, home, renters, umbrella).
{SECURITY_INSTRUCTIONS}
Answer the question factually using the CONTEXT below when it is relevant. When the
context is empty or unrelated, answer from general insurance knowledge and say when a
detail depends on the customer's state or policy wording. Never invent policy figures
that are not in the context. Note state-specific rules where they matter."""

REVIEW_PROMPT = f"""You are a meticulous insurance compliance reviewer.
{SECURITY_INSTRUCTIONS}
Check the draft answer against the source context: factual accuracy, completeness,
state compliance, and no guarantees of coverage. Return ONLY the final approved answer
as plain text, addressed to the customer. If the draft is correct, return it as-is or
lightly polished; if not, return the corrected version. Do not return JSON or notes."""


def advisor_prompt() -> str:
    return f"""You are {settings.ADVISOR_NAME}, a friendly, empathetic and professional insurance advisor for personal lines.
{SECURITY_INSTRUCTIONS}
Speak as the single voice the customer talks to. Use simple language, define jargon
briefly, and end with a helpful next step or question.
{OUTPUT_GUARDRAILS}"""


def content_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return content if isinstance(content, str) else str(content or "")


async def generate(
    llm: BaseChatModel,
    messages: Sequence[BaseMessage],
    timeout: float,
    label: str,
) -> Outcome[Generation]:
    """One bounded upstream call. Never retried."""
    try:
        response = await asyncio.wait_for(
            llm.ainvoke(list(messages), config=get_callback_config(label)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"[{label}] Upstream call timed out after {timeout}s")
        return Err(FailureKind.TIMEOUT, f"timed out after {timeout}s")
    except Exception as e:
        logger.error(f"[{label}] Upstream call failed: {e}")
        return Err(FailureKind.UPSTREAM_ERROR, str(e))

    text = content_text(response).strip()
    if not text:
        logger.warning(f"[{label}] Upstream returned an empty response")
        return Err(FailureKind.EMPTY_RESPONSE)

    truncated = was_length_limited(response)
    if truncated:
        logger.warning(f"[{label}] Generation hit the output budget ({len(text)} chars), trimming")
        text = trim_to_last_sentence(text)
    else:
        logger.debug(f"[{label}] Generation completed normally ({len(text)} chars)")
    return Ok(Generation(text=text, truncated=truncated))


def history_messages(history: Sequence[Message]) -> List[BaseMessage]:
    """Transcript as chat messages, with control tokens removed."""
    converted: List[BaseMessage] = []
    for message in history:
        if message.role == Role.ASSISTANT:
            converted.append(AIMessage(content=strip_marker(message.content)))
        else:
            converted.append(HumanMessage(content=strip_choice(message.content)))
    return converted


class LLMOracle:
    """Base for oracles backed by a chat model with a fixed temperature and budget."""

    temperature: float = 0.7
    max_tokens: int = 4096
    label: str = "oracle"

    def __init__(self, llm: Optional[BaseChatModel] = None, timeout: Optional[float] = None):
        self._llm = llm
        self.timeout = timeout if timeout is not None else settings.STAGE_TIMEOUT_SECONDS

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_llm(temperature=self.temperature, max_tokens=self.max_tokens)
        return self._llm

    async def _generate(self, messages: Sequence[BaseMessage]) -> Outcome[Generation]:
        return await generate(self.llm, messages, self.timeout, self.label)


class DraftOracle(LLMOracle):
    """Draft stage: answer the query from retrieved context."""

    label = "draft"

    def __init__(self, llm: Optional[BaseChatModel] = None, timeout: Optional[float] = None):
        self.temperature = settings.DRAFT_TEMPERATURE
        self.max_tokens = settings.DRAFT_MAX_TOKENS
        super().__init__(llm, timeout)

    async def generate_draft(self, query: str, retrieved_context: str) -> Outcome[DraftAnswer]:
        context = retrieved_context or "No specific policy documents matched the query."
        outcome = await self._generate([
            SystemMessage(content=DRAFT_PROMPT),
            HumanMessage(content=f"CONTEXT:\n{context}\n\nQUESTION: {query}"),
        ])
        if isinstance(outcome, Err):
            return outcome
        return Ok(DraftAnswer(answer=outcome.value.text, source_context=context))


class ReviewOracle(LLMOracle):
    """Review stage: compliance and accuracy check of the draft."""

    label = "review"

    def __init__(self, llm: Optional[BaseChatModel] = None, timeout: Optional[float] = None):
        self.temperature = settings.REVIEW_TEMPERATURE
        self.max_tokens = settings.REVIEW_MAX_TOKENS
        super().__init__(llm, timeout)

    async def review(self, query: str, answer: str, source_context: str) -> Outcome[str]:
        outcome = await self._generate([
            SystemMessage(content=REVIEW_PROMPT),
            HumanMessage(content=(
                f"QUESTION: {query}\n\n"
                f"SOURCE CONTEXT:\n{source_context or 'none'}\n\n"
                f"DRAFT ANSWER:\n{answer}\n\n"
                "Return the final approved answer:"
            )),
        ])
        if isinstance(outcome, Err):
            return outcome
        return Ok(outcome.value.text)


class PresentationOracle(LLMOracle):
    """Present stage: rephrase the reviewed answer in the advisor's voice."""

    label = "present"

    def __init__(self, llm: Optional[BaseChatModel] = None, timeout: Optional[float] = None):
        self.temperature = settings.PRESENT_TEMPERATURE
        self.max_tokens = settings.PRESENT_MAX_TOKENS
        super().__init__(llm, timeout)

    async def present(self, query: str, answer: str) -> Outcome[str]:
        outcome = await self._generate([
            SystemMessage(content=advisor_prompt()),
            HumanMessage(content=(
                f"The customer asked: {query}\n\n"
                f"Analysis result:\n{answer}\n\n"
                "Present this as your own answer:"
            )),
        ])
        if isinstance(outcome, Err):
            return outcome
        cleaned = clean_response(outcome.value.text)
        if not cleaned:
            return Err(FailureKind.EMPTY_RESPONSE)
        return Ok(cleaned)


class ConversationOracle(LLMOracle):
    """Single-call replies outside the pipeline: direct answers and estimate framing."""

    label = "conversation"

    def __init__(self, llm: Optional[BaseChatModel] = None, timeout: Optional[float] = None):
        self.temperature = settings.PRESENT_TEMPERATURE
        self.max_tokens = settings.PRESENT_MAX_TOKENS
        super().__init__(llm, timeout)

    async def reply(self, query: str, history: Sequence[Message]) -> Outcome[str]:
        outcome = await self._generate(
            [SystemMessage(content=advisor_prompt())]
            + history_messages(history)
            + [HumanMessage(content=query)]
        )
        if isinstance(outcome, Err):
            return outcome
        return Ok(clean_response(outcome.value.text))

    async def frame_estimate(self, query: str, policy_label: str) -> Outcome[str]:
        outcome = await self._generate([
            SystemMessage(content=advisor_prompt()),
            HumanMessage(content=(
                f"The customer asked: {query}\n\n"
                f"Write one or two warm sentences introducing a ballpark {policy_label} insurance "
                "price range. Do NOT state any numbers, dollar amounts or percentages; the "
                "range itself is added after your text."
            )),
        ])
        if isinstance(outcome, Err):
            return outcome
        return Ok(clean_response(outcome.value.text))
