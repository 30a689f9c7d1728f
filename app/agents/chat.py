# =============================================================================
# Chat Orchestrator — Search-Grounded Single-Turn Answers
# =============================================================================
#
# Wires the search and conversation gateways into a LangGraph StateGraph:
#
#   START ──▶ ground ──▶ compose ──▶ converse ──▶ END
#
#   ground   — web search scoped to the organization's own sites
#   compose  — numbered context block + persona system instruction
#   converse — one call to the conversational model, reply returned as-is
#
# DESIGN DECISION: Grounding is best-effort.
# A failing search (timeout, bad key, odd payload) is logged and treated
# as zero results. The assistant still answers, just without context.
#
# DESIGN DECISION: The conversation call is NOT best-effort.
# If the model is unavailable we raise ServiceUnavailableError. There is
# no canned fallback answer: a stale or invented reply about match dates
# is worse than "try again later".
#
# DESIGN DECISION: Stateless.
# Nothing from a turn is kept. Each answer() call builds a fresh state and
# the compiled graph has no checkpointer.
#
# DESIGN DECISION: Gateways travel in the graph state.
# The graph is compiled once at module level; each ChatOrchestrator puts
# its own gateways into the initial state so tests and alternative
# providers never touch a global.
# =============================================================================

from __future__ import annotations

import logging

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.config import settings
from app.errors import ServiceUnavailableError
from app.services.conversation import ConversationGateway, ConversationRequest
from app.services.events import EventSink, LoggingEventSink
from app.services.web_search import (
    SearchGateway,
    SearchRequest,
    SearchResult,
    build_site_filter,
)

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Error processing your request. Please try again later."


# ---------------------------------------------------------------------------
# Chat State Schema
# ---------------------------------------------------------------------------


class ChatState(TypedDict, total=False):
    """
    State that flows through the chat graph.

    Uses total=False so nodes only need to return the keys they update.
    """

    # --- Input (set by ChatOrchestrator.answer) ---
    message: str
    search_gateway: SearchGateway
    conversation_gateway: ConversationGateway
    events: EventSink

    # --- Intermediate ---
    search_results: list[SearchResult]
    context_block: str
    system_instruction: str
    user_turn: str

    # --- Output ---
    reply: str


# ---------------------------------------------------------------------------
# Persona
# ---------------------------------------------------------------------------


def build_system_instruction() -> str:
    """Fixed persona and style policy for the fan assistant."""
    org = settings.organization_name
    site = settings.organization_site
    handle = settings.organization_handle
    return (
        f"You are the virtual assistant of {org}, one of the biggest "
        "esports organizations in Brazil. You are part of the "
        f'"Know Your Fan" system of {org}.\n\n'
        "Important rules:\n"
        "- Be clear and informative, but not overly detailed\n"
        "- Limit each answer to 2-3 sentences or one short paragraph\n"
        "- Include relevant context when appropriate\n"
        "- Use bullet points for lists\n"
        "- Keep a friendly and professional tone\n"
        f"- Focus on {org} topics only\n\n"
        "When you don't know something:\n"
        "- Say \"I don't have that information\"\n"
        f"- Suggest where to look: \"Check the {org} website ({site}) "
        f"or social media ({handle})\"\n"
        f"- For products: \"See the official {org} store\"\n"
        "- For events: \"Follow the calendar on the website or social "
        "media\"\n\n"
        "Keep answers informative, but avoid long texts."
    )


# ---------------------------------------------------------------------------
# Prompt Assembly
# ---------------------------------------------------------------------------


def render_context_block(results: list[SearchResult]) -> str:
    """
    Render search results as a numbered block, in gateway order.

    Returns "" for no results so the prompt carries no citation list the
    model could pretend to quote from.

    Example output:
        Recent information found:
        1. Event Calendar: Match on 03/15
        2. Roster: ...
    """
    if not results:
        return ""
    lines = [
        f"{index}. {result.title}: {result.snippet}"
        for index, result in enumerate(results, 1)
    ]
    return "Recent information found:\n" + "\n".join(lines)


def build_user_turn(context_block: str, message: str) -> str:
    question = f"User question: {message}"
    if not context_block:
        return question
    return f"{context_block}\n\n{question}"


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def ground_node(state: ChatState) -> dict:
    """Fetch grounding results. Any failure degrades to no results."""
    events = state["events"]
    query = f"{state['message']} {build_site_filter(settings.search_domains)}"

    try:
        results = await state["search_gateway"].call(
            SearchRequest(query=query, result_limit=settings.search_result_limit),
        )
    except Exception as e:
        events.emit(
            "chat.grounding_failed",
            error=type(e).__name__,
            detail=str(e),
        )
        results = []

    events.emit("chat.grounded", result_count=len(results))
    return {"search_results": results}


async def compose_node(state: ChatState) -> dict:
    context_block = render_context_block(state.get("search_results", []))
    return {
        "context_block": context_block,
        "system_instruction": build_system_instruction(),
        "user_turn": build_user_turn(context_block, state["message"]),
    }


async def converse_node(state: ChatState) -> dict:
    """Call the conversational model; any failure is fatal for the request."""
    request = ConversationRequest(
        system_instruction=state["system_instruction"],
        user_turn=state["user_turn"],
        max_tokens=settings.chat_max_tokens,
        temperature=settings.chat_temperature,
    )

    try:
        reply = await state["conversation_gateway"].call(request)
    except Exception as e:
        state["events"].emit(
            "chat.unavailable",
            error=type(e).__name__,
            detail=str(e),
        )
        raise ServiceUnavailableError(UNAVAILABLE_MESSAGE) from e

    return {"reply": reply.text}


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------
# Compiled once at module level. The compiled graph is reusable and safe
# for concurrent FastAPI requests.
# ---------------------------------------------------------------------------

_builder = StateGraph(ChatState)
_builder.add_node("ground", ground_node)
_builder.add_node("compose", compose_node)
_builder.add_node("converse", converse_node)

_builder.add_edge(START, "ground")
_builder.add_edge("ground", "compose")
_builder.add_edge("compose", "converse")
_builder.add_edge("converse", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class ChatOrchestrator:
    def __init__(
        self,
        search_gateway: SearchGateway,
        conversation_gateway: ConversationGateway,
        events: EventSink | None = None,
    ) -> None:
        self._search_gateway = search_gateway
        self._conversation_gateway = conversation_gateway
        self._events = events or LoggingEventSink()

    async def answer(self, user_message: str) -> str:
        """
        Answer one fan message.

        Raises:
            ServiceUnavailableError: The conversational model failed.
        """
        initial_state: ChatState = {
            "message": user_message,
            "search_gateway": self._search_gateway,
            "conversation_gateway": self._conversation_gateway,
            "events": self._events,
        }

        logger.info("Answering chat message: '%s'", user_message[:80])

        result = await graph.ainvoke(initial_state)

        self._events.emit(
            "chat.answered",
            grounded=bool(result.get("context_block")),
            reply_chars=len(result["reply"]),
        )
        return result["reply"]
