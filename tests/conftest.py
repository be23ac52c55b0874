"""
Test configuration and fixtures for the advisor tests.

Upstream models and oracles are replaced by scripted doubles; nothing here
touches the network.
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import pytest
from langchain_core.messages import AIMessage
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from advisor.orchestration.graphs.pipeline import ReviewPipeline
from advisor.orchestration.oracles import DraftAnswer, Err, FailureKind, Ok
from advisor.orchestration.state import DEFAULT_INTENT, Intent, Message, Role
from advisor.orchestration.tools.transport import ToolTransport
from advisor.services.chat import ChatService
from advisor.services.estimate import load_ratebook
from advisor.services.policy_store import InMemoryPolicyStore, PolicyRecord, PolicyType


class ScriptedLLM:
    """Chat model double: returns canned replies in order and records every call."""

    def __init__(
        self,
        *replies: Union[str, AIMessage],
        error: Optional[BaseException] = None,
        delay: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.replies = list(replies) or [""]
        self.error = error
        self.delay = delay
        self.metadata = metadata or {}
        self.calls: List[list] = []
        self.bound_tools: List[Dict[str, Any]] = []

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self

    async def ainvoke(self, messages, config=None):
        self.calls.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, AIMessage):
            return reply
        return AIMessage(content=reply, response_metadata=dict(self.metadata))


def tool_call_reply(name: str, args: Dict[str, Any], call_id: str = "call-1") -> AIMessage:
    """A model turn that asks for one tool call."""
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


class RecordingTransport(ToolTransport):
    """Transport double that records dispatched calls and returns no rows."""

    def __init__(self, tools=("execute_sql",)):
        self.tools = list(tools)
        self.executed = []
        self.closed = False

    async def list_tools(self):
        return list(self.tools)

    async def execute(self, tool_name, args):
        self.executed.append((tool_name, args))
        return []

    async def close(self):
        self.closed = True


class StubDraftOracle:
    """Draft double; by default echoes the context so answers cite it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def generate_draft(self, query, retrieved_context):
        self.calls.append((query, retrieved_context))
        if self.fail:
            return Err(FailureKind.UPSTREAM_ERROR, "draft provider unavailable")
        return Ok(DraftAnswer(answer=f"Based on your policy: {retrieved_context}", source_context=retrieved_context))


class StubReviewOracle:
    def __init__(self, fail: bool = False, prefix: str = "Reviewed. "):
        self.fail = fail
        self.prefix = prefix
        self.calls = []

    async def review(self, query, answer, source_context):
        self.calls.append((query, answer, source_context))
        if self.fail:
            return Err(FailureKind.TIMEOUT, "timed out")
        return Ok(self.prefix + answer)


class StubPresentationOracle:
    def __init__(self, fail: bool = False, prefix: str = ""):
        self.fail = fail
        self.prefix = prefix
        self.calls = []

    async def present(self, query, answer):
        self.calls.append((query, answer))
        if self.fail:
            return Err(FailureKind.UPSTREAM_ERROR, "presentation provider unavailable")
        return Ok(self.prefix + answer)


class StubConversationOracle:
    def __init__(self, reply: str = "Glad to chat!", framing: str = "Here's a rough picture."):
        self.reply_text = reply
        self.framing = framing
        self.calls = []

    async def reply(self, query, history):
        self.calls.append(("reply", query))
        return Ok(self.reply_text)

    async def frame_estimate(self, query, policy_label):
        self.calls.append(("frame", query))
        return Ok(self.framing)


class StubIntentService:
    """Intent classifier double that counts calls."""

    def __init__(self, intent: Intent = DEFAULT_INTENT):
        self.intent = intent
        self.calls = []

    async def classify(self, text, recent_history=()):
        self.calls.append((text, list(recent_history)))
        return self.intent


@pytest.fixture
def ratebook():
    return load_ratebook()


@pytest.fixture
def store():
    return InMemoryPolicyStore()


@pytest.fixture
def auto_record():
    return PolicyRecord(
        policy_type=PolicyType.AUTO,
        carrier="Acme Mutual",
        analysis_text="Collision deductible is $500; comprehensive deductible is $250.",
        structured_fields={"collision_deductible": 500, "comprehensive_deductible": 250},
        uploaded_at=datetime(2026, 1, 15, 10, 30),
    )


@pytest.fixture
def draft_oracle():
    return StubDraftOracle()


@pytest.fixture
def review_oracle():
    return StubReviewOracle()


@pytest.fixture
def presentation_oracle():
    return StubPresentationOracle()


@pytest.fixture
def pipeline(draft_oracle, review_oracle, presentation_oracle):
    return ReviewPipeline(draft_oracle, review_oracle, presentation_oracle)


@pytest.fixture
def intent_service():
    return StubIntentService()


@pytest.fixture
def conversation():
    return StubConversationOracle()


@pytest.fixture
def chat_service(store, intent_service, pipeline, conversation, ratebook):
    return ChatService(
        store=store,
        intent_service=intent_service,
        pipeline=pipeline,
        conversation=conversation,
        ratebook=ratebook,
    )


def user(content: str) -> Message:
    return Message(role=Role.USER, content=content)


def assistant(content: str) -> Message:
    return Message(role=Role.ASSISTANT, content=content)


@pytest.fixture
def documents_engine():
    """In-memory SQLite with a user_documents table for the SQL tool transport."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE user_documents (user_id TEXT, policy_type TEXT, carrier_name TEXT, "
            "status TEXT, uploaded_at TEXT)"
        ))
        conn.execute(text(
            "INSERT INTO user_documents VALUES "
            "('user-1', 'auto', 'Acme Mutual', 'active', '2026-01-15'), "
            "('user-1', 'home', 'Beta Home', 'active', '2026-03-01'), "
            "('user-1', 'renters', 'Old Co', 'archived', '2024-01-01'), "
            "('user-2', 'umbrella', 'Other', 'active', '2026-02-01')"
        ))
    yield engine
    engine.dispose()
