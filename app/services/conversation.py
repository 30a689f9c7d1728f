# =============================================================================
# Conversation Gateway — Single-Turn Chat Completion
# =============================================================================
#
# CONTRACT:
#   call(ConversationRequest) → ConversationReply
#   raises GatewayTimeoutError | GatewayAuthError | UpstreamError
#
# One system instruction, one user turn, no history. The reply text is
# returned untouched.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationRequest:
    system_instruction: str
    user_turn: str
    max_tokens: int
    temperature: float


@dataclass(frozen=True)
class ConversationReply:
    text: str


class ConversationGateway(Protocol):
    async def call(self, request: ConversationRequest) -> ConversationReply:
        ...


class LLMConversationGateway:
    """Conversation gateway backed by any LLMProvider."""

    def __init__(self, llm: LLMProvider) -> None:
        self._llm = llm

    async def call(self, request: ConversationRequest) -> ConversationReply:
        response = await self._llm.complete(
            messages=[{"role": "user", "content": request.user_turn}],
            system=request.system_instruction,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        logger.info(
            "Conversation reply: model=%s, tokens=%d+%d",
            response.model, response.input_tokens, response.output_tokens,
        )
        return ConversationReply(text=response.content)
