"""
Chat API routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from advisor.core import logger
from advisor.orchestration.markers import MARKER_PROTOCOL_VERSION, ChoiceSentinel, Marker
from advisor.orchestration.state import Message, Role
from advisor.services.chat import ChatService
from advisor.services.policy_store import PolicyType

router = APIRouter()


# Request/Response schemas
class ChatHistoryItem(BaseModel):
    role: Role
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    history: List[ChatHistoryItem] = []
    identity: Optional[str] = None
    policy_type: Optional[PolicyType] = None


class ChatResponse(BaseModel):
    response: str
    marker: Optional[str] = None


class MarkerProtocolResponse(BaseModel):
    version: str
    markers: List[str]
    choices: List[str]


def get_chat_service(request: Request) -> ChatService:
    """Chat service built at startup."""
    return request.app.state.chat_service


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Process one user turn and return the reply with its marker token."""
    history = [Message(role=item.role, content=item.content) for item in request.history]
    reply = await service.respond(
        request.message,
        history=history,
        identity=request.identity,
        policy_type=request.policy_type,
    )
    logger.debug(f"Chat reply via {reply.route.value} ({len(reply.text)} chars)")
    return ChatResponse(
        response=reply.text,
        marker=reply.marker.value if reply.marker else None,
    )


@router.get("/markers", response_model=MarkerProtocolResponse)
async def marker_protocol():
    """Marker tokens the presentation layer must recognize."""
    return MarkerProtocolResponse(
        version=MARKER_PROTOCOL_VERSION,
        markers=[m.value for m in Marker],
        choices=[c.value for c in ChoiceSentinel],
    )
