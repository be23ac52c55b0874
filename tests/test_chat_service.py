"""
Tests for per-turn routing in the chat service.
"""

from datetime import datetime

import pytest

from advisor.core.config import settings
from advisor.orchestration.graphs.pipeline import DRAFT_FAILURE_APOLOGY, ReviewPipeline
from advisor.orchestration.markers import Marker, annotate, decode_marker, encode_choice
from advisor.orchestration.oracles import Ok
from advisor.orchestration.state import (
    Intent,
    IntentCategory,
    JourneyChoice,
    Recommendation,
    Route,
)
from advisor.orchestration.tools.lookup import DataLookupOracle
from advisor.orchestration.tools.transport import SqlToolTransport, ToolTransportPool, inventory_query
from advisor.services.chat import (
    EMPTY_INVENTORY_REPLY,
    ESTIMATE_TYPE_PROMPT,
    FORK_PROMPT,
    SMALL_TALK_REPLY,
    UPLOAD_PROMPT,
    ChatService,
    declined_upload,
)
from advisor.services.estimate import ESTIMATE_DISCLAIMER
from advisor.services.policy_store import PolicyRecord, PolicyType

from conftest import (
    RecordingTransport,
    ScriptedLLM,
    StubDraftOracle,
    StubIntentService,
    StubPresentationOracle,
    StubReviewOracle,
    assistant,
    tool_call_reply,
    user,
)


class MarkerEchoPresenter(StubPresentationOracle):
    """Presenter that appends a control token of its own."""

    async def present(self, query, answer):
        self.calls.append((query, answer))
        return Ok(answer + "\n\n[OFFER_FORK]")


def _home_record():
    return PolicyRecord(
        policy_type=PolicyType.HOME,
        carrier="Beta Home",
        analysis_text="Dwelling coverage is $350,000.",
        uploaded_at=datetime(2026, 3, 1, 9, 0),
    )


def _service(store, intent_service, pipeline, conversation, ratebook, **kwargs):
    return ChatService(
        store=store,
        intent_service=intent_service,
        pipeline=pipeline,
        conversation=conversation,
        ratebook=ratebook,
        **kwargs,
    )


FORK_TURN = assistant(annotate(FORK_PROMPT, Marker.OFFER_FORK))
UPLOAD_TURN = assistant(annotate(UPLOAD_PROMPT, Marker.REQUEST_UPLOAD))


class TestQuickReplies:
    @pytest.mark.asyncio
    async def test_greeting(self, chat_service, intent_service, draft_oracle):
        reply = await chat_service.respond("Hi")
        assert reply.route == Route.QUICK_REPLY
        assert reply.text.startswith("Hey! I'm Sam")
        assert reply.marker is None
        assert intent_service.calls == []
        assert draft_oracle.calls == []

    @pytest.mark.asyncio
    async def test_small_talk(self, chat_service, intent_service):
        reply = await chat_service.respond("how are you")
        assert reply.text == SMALL_TALK_REPLY
        assert intent_service.calls == []


class TestEstimates:
    @pytest.mark.asyncio
    async def test_ballpark_request(self, chat_service, intent_service, draft_oracle):
        reply = await chat_service.respond("roughly how much is auto insurance in CA")
        assert reply.route == Route.ESTIMATE
        assert "$1,900 to $3,100" in reply.text
        assert reply.text.endswith(ESTIMATE_DISCLAIMER)
        assert reply.marker is None
        assert intent_service.calls == []
        assert draft_oracle.calls == []

    @pytest.mark.asyncio
    async def test_quick_choice_uses_earlier_profile(self, chat_service):
        history = [user("can I get a quote for my car in TX"), FORK_TURN]
        reply = await chat_service.respond(encode_choice(JourneyChoice.QUICK_ESTIMATE), history)
        assert reply.route == Route.ESTIMATE
        assert "$1,700 to $2,800" in reply.text

    @pytest.mark.asyncio
    async def test_quick_choice_without_type_asks(self, chat_service):
        history = [user("can I get a quote"), FORK_TURN]
        reply = await chat_service.respond(encode_choice(JourneyChoice.QUICK_ESTIMATE), history)
        assert reply.text == ESTIMATE_TYPE_PROMPT

    @pytest.mark.asyncio
    async def test_high_confidence_pricing_intent(self, store, pipeline, conversation, ratebook):
        intent = Intent(
            category=IntentCategory.PRICING,
            confidence=0.95,
            recommendation=Recommendation.QUICK_ESTIMATE,
        )
        service = _service(store, StubIntentService(intent), pipeline, conversation, ratebook)
        reply = await service.respond("what would umbrella run")
        assert reply.route == Route.ESTIMATE
        assert "$150 to $400" in reply.text
        assert reply.intent == intent

    @pytest.mark.asyncio
    async def test_type_without_ratebook_entry_uses_pipeline(self, chat_service, draft_oracle):
        reply = await chat_service.respond("roughly how much is life insurance")
        assert reply.route == Route.ANALYSIS
        assert len(draft_oracle.calls) == 1
        assert "$" not in reply.text

    @pytest.mark.asyncio
    async def test_framing_precedes_range(self, chat_service, conversation, monkeypatch):
        monkeypatch.setattr(settings, "ESTIMATE_FRAMING_ENABLED", True)
        reply = await chat_service.respond("roughly how much is auto insurance in CA")
        assert reply.text.startswith(conversation.framing)
        assert reply.text.endswith(ESTIMATE_DISCLAIMER)
        assert "$1,900 to $3,100" in reply.text

    @pytest.mark.asyncio
    async def test_no_framing_call_by_default(self, chat_service, conversation):
        await chat_service.respond("roughly how much is auto insurance in CA")
        assert conversation.calls == []


class TestPolicyQuestions:
    @pytest.mark.asyncio
    async def test_nothing_on_file_requests_upload(self, chat_service, draft_oracle):
        reply = await chat_service.respond("what's my deductible", identity="user-1")
        assert reply.route == Route.UPLOAD_PROMPT
        assert reply.marker == Marker.REQUEST_UPLOAD
        assert reply.text.count("[UPLOAD_POLICY]") == 1
        assert reply.text.endswith("[UPLOAD_POLICY]")
        assert draft_oracle.calls == []

    @pytest.mark.asyncio
    async def test_answer_grounded_in_record(self, chat_service, store, auto_record, draft_oracle):
        store.set("user-1", auto_record)
        reply = await chat_service.respond("what's my deductible", identity="user-1")
        assert reply.route == Route.POLICY_ANSWER
        assert auto_record.analysis_text in reply.text
        assert reply.marker is None
        assert "Acme Mutual" in draft_oracle.calls[0][1]

    @pytest.mark.asyncio
    async def test_thanks_prefix_still_answers_from_policy(self, chat_service, store, auto_record, draft_oracle):
        store.set("user-1", auto_record)
        reply = await chat_service.respond("thanks, what's my deductible?", identity="user-1")
        assert reply.route == Route.POLICY_ANSWER
        assert auto_record.analysis_text in reply.text
        assert len(draft_oracle.calls) == 1

    @pytest.mark.asyncio
    async def test_anonymous_caller_requests_upload(self, chat_service):
        reply = await chat_service.respond("what's my deductible")
        assert reply.route == Route.UPLOAD_PROMPT
        assert reply.text == annotate(UPLOAD_PROMPT, Marker.REQUEST_UPLOAD)

    @pytest.mark.asyncio
    async def test_wrong_policy_type(self, chat_service, store):
        store.set("user-1", _home_record())
        reply = await chat_service.respond("does my car insurance cover rentals", identity="user-1")
        assert reply.marker == Marker.REQUEST_UPLOAD
        assert "homeowners" in reply.text
        assert "auto" in reply.text

    @pytest.mark.asyncio
    async def test_policy_type_override(self, chat_service, store, auto_record):
        store.set("user-1", auto_record)
        reply = await chat_service.respond("what's my deductible", identity="user-1", policy_type=PolicyType.HOME)
        assert reply.route == Route.UPLOAD_PROMPT
        assert "homeowners" in reply.text

    @pytest.mark.asyncio
    async def test_draft_failure_apologizes(self, store, intent_service, conversation, ratebook, auto_record):
        review = StubReviewOracle()
        pipeline = ReviewPipeline(StubDraftOracle(fail=True), review, StubPresentationOracle())
        service = _service(store, intent_service, pipeline, conversation, ratebook)
        store.set("user-1", auto_record)
        reply = await service.respond("what's my deductible", identity="user-1")
        assert reply.text == DRAFT_FAILURE_APOLOGY
        assert reply.marker is None
        assert review.calls == []

    @pytest.mark.asyncio
    async def test_generated_marker_is_stripped(self, store, intent_service, conversation, ratebook, auto_record):
        pipeline = ReviewPipeline(StubDraftOracle(), StubReviewOracle(), MarkerEchoPresenter())
        service = _service(store, intent_service, pipeline, conversation, ratebook)
        store.set("user-1", auto_record)
        reply = await service.respond("what's my deductible", identity="user-1")
        assert decode_marker(reply.text) is None
        assert "[OFFER_FORK]" not in reply.text


class TestFork:
    @pytest.mark.asyncio
    async def test_quote_offers_fork(self, chat_service, intent_service):
        reply = await chat_service.respond("can I get a quote")
        assert reply.route == Route.FORK_PROMPT
        assert reply.marker == Marker.OFFER_FORK
        assert reply.text.endswith("[OFFER_FORK]")
        assert intent_service.calls == []

    @pytest.mark.asyncio
    async def test_fork_offered_once(self, chat_service):
        history = [user("can I get a quote"), FORK_TURN]
        reply = await chat_service.respond("can I get a quote", history)
        assert reply.marker == Marker.REQUEST_UPLOAD
        assert reply.text.startswith(UPLOAD_PROMPT)

    @pytest.mark.asyncio
    async def test_precise_choice_runs_pipeline(self, chat_service, store, auto_record, draft_oracle):
        store.set("user-1", auto_record)
        history = [user("can I get a quote"), FORK_TURN]
        message = "I'd like a precise quote " + encode_choice(JourneyChoice.PRECISE_QUOTE)
        reply = await chat_service.respond(message, history, identity="user-1")
        assert reply.route == Route.POLICY_ANSWER
        assert draft_oracle.calls[0][0] == "I'd like a precise quote"

    @pytest.mark.asyncio
    async def test_uncertain_intent_offers_fork(self, chat_service, intent_service):
        reply = await chat_service.respond("tell me about bundling")
        assert reply.marker == Marker.OFFER_FORK
        assert len(intent_service.calls) == 1


class TestIntentRouting:
    @pytest.mark.asyncio
    async def test_educational(self, store, pipeline, conversation, ratebook):
        intent = Intent(category=IntentCategory.EDUCATIONAL, confidence=0.9)
        service = _service(store, StubIntentService(intent), pipeline, conversation, ratebook)
        reply = await service.respond("what is a deductible")
        assert reply.route == Route.ANALYSIS
        assert reply.marker is None

    @pytest.mark.asyncio
    async def test_small_talk_intent_replies_directly(self, store, pipeline, conversation, ratebook, draft_oracle):
        intent = Intent(category=IntentCategory.SMALL_TALK, confidence=0.95)
        service = _service(store, StubIntentService(intent), pipeline, conversation, ratebook)
        reply = await service.respond("tell me a joke")
        assert reply.route == Route.DIRECT
        assert reply.text == "Glad to chat!"
        assert draft_oracle.calls == []

    @pytest.mark.asyncio
    async def test_classifier_sees_recent_history(self, chat_service, intent_service):
        history = [user("hi"), assistant("Hey!")]
        await chat_service.respond("tell me about bundling", history)
        _, sent = intent_service.calls[0]
        assert [m.content for m in sent] == ["hi", "Hey!"]


class TestDeclinedUpload:
    @pytest.mark.asyncio
    async def test_decline_answers_generally(self, chat_service, intent_service):
        history = [user("what's my deductible"), UPLOAD_TURN]
        reply = await chat_service.respond("no, I don't have it handy", history)
        assert reply.route == Route.ANALYSIS
        assert intent_service.calls == []

    @pytest.mark.asyncio
    async def test_general_question_after_prompt(self, chat_service, intent_service):
        history = [user("what's my deductible"), UPLOAD_TURN]
        reply = await chat_service.respond("what is a deductible", history)
        assert reply.route == Route.ANALYSIS
        assert intent_service.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text",
        [
            "no, I don't have my policy handy, just explain generally",
            "skip that, am i underinsured",
            "nah, can I get a quote without it",
        ],
    )
    async def test_decline_naming_policy_does_not_prompt_again(self, chat_service, intent_service, draft_oracle, text):
        history = [user("what's my deductible"), UPLOAD_TURN]
        reply = await chat_service.respond(text, history, identity="user-1")
        assert reply.route == Route.ANALYSIS
        assert reply.marker is None
        assert "[UPLOAD_POLICY]" not in reply.text
        assert intent_service.calls == []
        assert len(draft_oracle.calls) == 1

    def test_reference_to_policy_on_file_is_not_a_decline(self):
        history = [UPLOAD_TURN]
        assert declined_upload(history, "no, use my existing policy") is False

    def test_no_prompt_no_decline(self):
        assert declined_upload([assistant("Sure thing.")], "no thanks") is False


class TestInventory:
    @pytest.mark.asyncio
    async def test_lists_store_records(self, chat_service, store, auto_record):
        store.set("user-1", auto_record)
        store.set("user-1", _home_record())
        reply = await chat_service.respond("list my policies", identity="user-1")
        assert reply.route == Route.INVENTORY
        assert "your auto policy with Acme Mutual" in reply.text
        assert "your homeowners policy with Beta Home" in reply.text
        assert reply.marker is None

    @pytest.mark.asyncio
    async def test_empty_inventory(self, chat_service):
        reply = await chat_service.respond("list my policies", identity="user-1")
        assert reply.text.startswith(EMPTY_INVENTORY_REPLY)
        assert reply.marker == Marker.REQUEST_UPLOAD

    @pytest.mark.asyncio
    async def test_tool_transport_inventory(self, store, intent_service, pipeline, conversation, ratebook, documents_engine):
        pool = ToolTransportPool(lambda: SqlToolTransport(engine=documents_engine))
        failing_lookup = DataLookupOracle(pool, llm=ScriptedLLM(error=RuntimeError("provider down")))
        service = _service(
            store, intent_service, pipeline, conversation, ratebook, tool_pool=pool, data_lookup=failing_lookup
        )
        reply = await service.respond("list my policies", identity="user-1")
        assert reply.route == Route.INVENTORY
        assert reply.text == (
            "Here's what I have on file for you: your homeowners policy with Beta Home "
            "and your auto policy with Acme Mutual."
        )
        assert not pool.in_use


class TestDataLookup:
    @pytest.mark.asyncio
    async def test_model_answers_from_stored_records(
        self, store, intent_service, pipeline, conversation, ratebook, documents_engine
    ):
        pool = ToolTransportPool(lambda: SqlToolTransport(engine=documents_engine))
        llm = ScriptedLLM(
            tool_call_reply("execute_sql", {"query": inventory_query("user-1")}),
            "You have auto coverage with Acme Mutual and a homeowners policy with Beta Home.",
        )
        service = _service(
            store, intent_service, pipeline, conversation, ratebook,
            tool_pool=pool, data_lookup=DataLookupOracle(pool, llm=llm),
        )
        reply = await service.respond("what do you have stored for me", identity="user-1")
        assert reply.route == Route.DATA_LOOKUP
        assert "Acme Mutual" in reply.text
        assert reply.marker is None
        assert intent_service.calls == []

    @pytest.mark.asyncio
    async def test_unscoped_model_query_never_runs(self, store, intent_service, pipeline, conversation, ratebook):
        transport = RecordingTransport()
        pool = ToolTransportPool(lambda: transport)
        llm = ScriptedLLM(
            tool_call_reply("execute_sql", {"query": "SELECT * FROM user_documents"}),
            "I couldn't find anything on file for you.",
        )
        service = _service(
            store, intent_service, pipeline, conversation, ratebook,
            tool_pool=pool, data_lookup=DataLookupOracle(pool, llm=llm),
        )
        reply = await service.respond("list my policies", identity="user-1")
        assert reply.route == Route.DATA_LOOKUP
        assert transport.executed == []

    @pytest.mark.asyncio
    async def test_anonymous_caller_skips_lookup(self, store, intent_service, pipeline, conversation, ratebook):
        pool = ToolTransportPool(RecordingTransport)
        llm = ScriptedLLM("should not be called")
        service = _service(
            store, intent_service, pipeline, conversation, ratebook,
            tool_pool=pool, data_lookup=DataLookupOracle(pool, llm=llm),
        )
        reply = await service.respond("list my policies")
        assert reply.route == Route.INVENTORY
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_empty_answer_falls_back_to_policy_path(
        self, store, intent_service, pipeline, conversation, ratebook, auto_record
    ):
        pool = ToolTransportPool(RecordingTransport)
        service = _service(
            store, intent_service, pipeline, conversation, ratebook,
            tool_pool=pool, data_lookup=DataLookupOracle(pool, llm=ScriptedLLM("")),
        )
        store.set("user-1", auto_record)
        reply = await service.respond("what's my deductible on file", identity="user-1")
        assert reply.route == Route.POLICY_ANSWER
