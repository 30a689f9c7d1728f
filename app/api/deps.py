# =============================================================================
# API Dependencies — Auth and Orchestrator Wiring
# =============================================================================
#
# 1. get_current_user()                — validate Bearer token → user id
# 2. get_verification_orchestrator()   — wired with store + gateway
# 3. get_chat_orchestrator()           — wired with search + conversation
#
# DESIGN DECISION: FastAPI dependency (not middleware) for auth.
# Each endpoint opts in via Depends(get_current_user), and tests replace
# any of these with app.dependency_overrides.
#
# DESIGN DECISION: Orchestrators are cached singletons.
# Building one creates SDK and HTTP clients with their own connection
# pools; doing that per request would waste setup time. LLM providers
# are built on first model call (LazyProvider), so a missing API key
# fails that call as a gateway auth error instead of crashing startup.
# =============================================================================

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.agents.chat import ChatOrchestrator
from app.agents.policy import ConfidenceThresholdPolicy
from app.agents.verification import DocumentVerificationOrchestrator
from app.config import settings
from app.services.auth import verify_user_token
from app.services.conversation import LLMConversationGateway
from app.services.document_store import get_document_store
from app.services.llm import (
    LazyProvider,
    create_provider_from_id,
    get_llm_provider,
)
from app.services.verifier import LLMVerificationGateway
from app.services.web_search import BingSearchGateway


# Security scheme for OpenAPI docs (shows "Authorize" button in Swagger UI)
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(
        _bearer_scheme,
    ),
) -> str:
    """
    FastAPI dependency that resolves the caller's user id.

    Raises:
        HTTPException 401: Missing or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Access denied. Provide "
            "'Authorization: Bearer <token>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = verify_user_token(credentials.credentials, settings.auth_secret)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = user_id
    return user_id


@lru_cache
def get_verification_orchestrator() -> DocumentVerificationOrchestrator:
    """Orchestrator for the document endpoints (cached)."""
    if settings.verification_provider:
        provider_id = settings.verification_provider
        llm = LazyProvider(lambda: create_provider_from_id(provider_id))
    else:
        llm = LazyProvider(get_llm_provider)
    return DocumentVerificationOrchestrator(
        store=get_document_store(),
        gateway=LLMVerificationGateway(llm),
        policy=ConfidenceThresholdPolicy(settings.verification_min_confidence),
    )


@lru_cache
def get_chat_orchestrator() -> ChatOrchestrator:
    """Orchestrator for POST /chat (cached)."""
    return ChatOrchestrator(
        search_gateway=BingSearchGateway(),
        conversation_gateway=LLMConversationGateway(
            LazyProvider(get_llm_provider),
        ),
    )
