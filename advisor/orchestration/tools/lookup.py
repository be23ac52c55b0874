"""
Data lookup over the tool transport

Answers questions about the caller's stored records by letting the model call
the transport's read-only tools. Every model-composed call goes through
execute_tool, so an unsafe tool or an unscoped query is answered with an error
message and never reaches the transport. The loop is bounded; on any failure
the caller falls back to its standard path.
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage, ToolMessage

from advisor.core.config import settings
from advisor.core.exceptions import ToolQueryRejected
from advisor.core.langfuse_handler import get_callback_config
from advisor.core.logging import logger
from advisor.orchestration.oracles import (
    SECURITY_INSTRUCTIONS,
    Err,
    FailureKind,
    LLMOracle,
    Ok,
    Outcome,
    content_text,
    history_messages,
)
from advisor.orchestration.state import Message
from advisor.orchestration.tools.transport import (
    ToolTransport,
    ToolTransportPool,
    execute_tool,
    filter_safe_tools,
    validate_identity,
)
from advisor.orchestration.utils import clean_response


DATA_LOOKUP_PATTERNS = (
    re.compile(
        r"\b(all|list|show|get)\s+(me\s+)?(all\s+)?(of\s+)?(my\s+)?(policies|coverage|insurance|documents)\b"
    ),
    re.compile(r"\bhistory\b"),
    re.compile(r"\bprevious\s+(chats?|conversations?)\b"),
    re.compile(r"\bstored\b"),
    re.compile(r"\bon\s+file\b"),
    re.compile(r"\bsaved\b"),
)

TOOL_DESCRIPTIONS = {
    "list_tables": (
        "List the tables available for lookups.",
        {"type": "object", "properties": {}},
    ),
    "execute_sql": (
        "Run one read-only SELECT statement and return the rows.",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "A single SELECT statement"},
            },
            "required": ["query"],
        },
    ),
}


def needs_data_lookup(text: str) -> bool:
    """True when the message asks about stored records, history or saved documents."""
    lowered = (text or "").lower()
    return any(p.search(lowered) for p in DATA_LOOKUP_PATTERNS)


def tool_schema(name: str) -> Dict[str, Any]:
    description, parameters = TOOL_DESCRIPTIONS.get(
        name, (f"Read-only tool {name}.", {"type": "object", "properties": {}})
    )
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


def data_lookup_prompt(identity: str) -> str:
    return f"""You are {settings.ADVISOR_NAME}, an insurance advisor with read-only access to the customer's stored records.
{SECURITY_INSTRUCTIONS}
DATA ACCESS RULES (NEVER VIOLATE):
- The current customer's user id is '{identity}'
- Every query on user data must filter with exactly: WHERE user_id = '{identity}'
- Never use OR, IN, LIKE or negation on user_id, and never query other customers' data
- Only SELECT statements; never modify data
- Never reveal table names, SQL or tool names to the customer

Use the tools to look up what the customer asks about, then answer in plain
conversational text. If nothing is on file, say so and suggest uploading a policy."""


class DataLookupOracle(LLMOracle):
    """Bounded tool-calling turn over a borrowed transport."""

    label = "data_lookup"

    def __init__(
        self,
        pool: ToolTransportPool,
        llm: Optional[BaseChatModel] = None,
        timeout: Optional[float] = None,
        max_iterations: Optional[int] = None,
    ):
        self.temperature = settings.DATA_LOOKUP_TEMPERATURE
        self.max_tokens = settings.DATA_LOOKUP_MAX_TOKENS
        super().__init__(llm, timeout)
        self.pool = pool
        self.max_iterations = (
            max_iterations if max_iterations is not None else settings.DATA_LOOKUP_MAX_ITERATIONS
        )

    async def answer(self, query: str, history: Sequence[Message], identity: str) -> Outcome[str]:
        """
        Answer from the caller's stored records.

        Returns:
            Ok with the cleaned reply, or Err when the transport, the model or
            the loop produced no usable answer
        """
        try:
            validate_identity(identity)
            async with self.pool.borrow() as transport:
                return await self._converse(transport, query, history, identity)
        except ToolQueryRejected as e:
            logger.warning(f"[{self.label}] Lookup refused: {e}")
            return Err(FailureKind.UPSTREAM_ERROR, str(e))
        except asyncio.TimeoutError:
            logger.warning(f"[{self.label}] Lookup timed out")
            return Err(FailureKind.TIMEOUT, "lookup timed out")
        except Exception as e:
            logger.error(f"[{self.label}] Lookup failed: {e}")
            return Err(FailureKind.UPSTREAM_ERROR, str(e))

    async def _converse(
        self,
        transport: ToolTransport,
        query: str,
        history: Sequence[Message],
        identity: str,
    ) -> Outcome[str]:
        tools = filter_safe_tools(await transport.list_tools())
        if not tools:
            return Err(FailureKind.UPSTREAM_ERROR, "no permitted tools")
        model = self.llm.bind_tools([tool_schema(name) for name in tools])

        messages: List[BaseMessage] = [
            SystemMessage(content=data_lookup_prompt(identity)),
            *history_messages(history),
            HumanMessage(content=query),
        ]
        response = await self._invoke(model, messages)

        iterations = 0
        while response.tool_calls and iterations < self.max_iterations:
            iterations += 1
            logger.info(f"[{self.label}] Tool round {iterations}: {len(response.tool_calls)} call(s)")
            messages.append(response)
            for call in response.tool_calls:
                messages.append(await self._dispatch(transport, identity, call))
            response = await self._invoke(model, messages)

        text = clean_response(content_text(response))
        if not text:
            logger.warning(f"[{self.label}] No answer after {iterations} tool round(s)")
            return Err(FailureKind.EMPTY_RESPONSE)
        return Ok(text)

    async def _invoke(self, model: Any, messages: Sequence[BaseMessage]) -> Any:
        return await asyncio.wait_for(
            model.ainvoke(list(messages), config=get_callback_config(self.label)),
            timeout=self.timeout,
        )

    async def _dispatch(self, transport: ToolTransport, identity: str, call: Dict[str, Any]) -> ToolMessage:
        name = call.get("name", "")
        call_id = call.get("id") or name
        try:
            result = await execute_tool(transport, identity, name, call.get("args") or {})
            payload = {"result": result}
        except ToolQueryRejected as e:
            logger.warning(f"[{self.label}] Rejected {name}: {e}")
            payload = {"error": str(e)}
        except Exception as e:
            logger.error(f"[{self.label}] Tool {name} failed: {e}")
            payload = {"error": "Tool execution failed"}
        return ToolMessage(content=json.dumps(payload, default=str), tool_call_id=call_id)
