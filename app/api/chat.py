# =============================================================================
# Chat API — Search-Grounded Fan Assistant
# =============================================================================
#
# Provides POST /chat, which runs the chat graph
# (ground → compose → converse) in app/agents/chat.py.
#
# Each message costs one search call and one model call, so this is the
# only rate-limited endpoint. The handler is thin: auth, rate limit,
# error mapping.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.agents.chat import UNAVAILABLE_MESSAGE, ChatOrchestrator
from app.api.deps import get_chat_orchestrator, get_current_user
from app.errors import ServiceUnavailableError
from app.models.requests import ChatRequest
from app.models.responses import ChatResponse
from app.services.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Ask the fan assistant a question",
    description=(
        "Searches the organization's site and social profiles for recent "
        "information, then answers in the assistant persona."
    ),
)
async def chat_endpoint(
    request: ChatRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
) -> ChatResponse:
    await check_rate_limit(user_id, scope="chat")

    logger.info(
        "Chat request: user=%s, message='%s'", user_id, request.message[:80],
    )

    try:
        reply = await orchestrator.answer(request.message)
    except ServiceUnavailableError as e:
        # Gateway detail was already logged by the orchestrator
        raise HTTPException(status_code=500, detail=UNAVAILABLE_MESSAGE) from e

    return ChatResponse(response=reply)
