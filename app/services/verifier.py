# =============================================================================
# Verification Gateway — Vision Model Document Check
# =============================================================================
#
# Asks a vision-capable model whether an uploaded file looks like a valid
# identity document and returns its structured verdict.
#
# CONTRACT:
#   call(VerificationRequest) → Verdict
#   raises GatewayTimeoutError | GatewayAuthError | UpstreamError
#          (UpstreamMalformedResponseError when the reply is not a verdict)
#
# NOTE: No pixel data is sent. The model reasons over the file's declared
# name and mime type against a fixed rubric. Classification of the verdict
# into Verified/Failed is NOT done here; see app/agents/policy.py.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config import settings
from app.errors import UpstreamMalformedResponseError
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)

_GATEWAY = "verification"

# Features a genuine ID is expected to show.
ID_DOCUMENT_RUBRIC: tuple[str, ...] = (
    "Official header or emblem",
    "Name and photo of the holder",
    "Document number",
    "Expiration date",
    "Security features",
)


@dataclass(frozen=True)
class VerificationRequest:
    document_name: str
    mime_type: str
    rubric: tuple[str, ...] = ID_DOCUMENT_RUBRIC


class Verdict(BaseModel):
    """Structured verdict as returned by the model."""

    is_valid_id: bool = Field(alias="isValidId")
    confidence: int = Field(ge=0, le=100)
    reason: str

    model_config = ConfigDict(populate_by_name=True)


class VerificationGateway(Protocol):
    async def call(self, request: VerificationRequest) -> Verdict:
        ...


def _system_prompt(rubric: tuple[str, ...]) -> str:
    features = "\n".join(f"- {item}" for item in rubric)
    return (
        "You are an AI assistant specialized in verifying ID documents.\n"
        "Your task is to check if the uploaded document appears to be a "
        "valid ID document.\n"
        "Look for common features of ID documents:\n"
        f"{features}\n\n"
        "Respond with ONLY a JSON object with the following structure:\n"
        "{\n"
        '  "isValidId": boolean,\n'
        '  "confidence": number between 0 and 100,\n'
        '  "reason": string\n'
        "}"
    )


# Models often wrap JSON in ```json fences despite instructions
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def parse_verdict(content: str) -> Verdict:
    """Parse and validate the model's JSON reply."""
    cleaned = _FENCE.sub("", content.strip())
    try:
        return Verdict.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as e:
        raise UpstreamMalformedResponseError(
            _GATEWAY, f"reply is not a verdict: {e}",
        ) from e


class LLMVerificationGateway:
    """Verification gateway backed by any LLMProvider."""

    def __init__(self, llm: LLMProvider, max_tokens: int | None = None) -> None:
        self._llm = llm
        self._max_tokens = max_tokens or settings.verification_max_tokens

    async def call(self, request: VerificationRequest) -> Verdict:
        user_message = (
            "Please verify if this document is a valid ID document.\n"
            f"Document name: {request.document_name}, "
            f"Type: {request.mime_type}"
        )

        response = await self._llm.complete(
            messages=[{"role": "user", "content": user_message}],
            system=_system_prompt(request.rubric),
            temperature=0.0,  # Deterministic judgement
            max_tokens=self._max_tokens,
        )

        verdict = parse_verdict(response.content)
        logger.info(
            "Verification verdict: valid=%s confidence=%d model=%s",
            verdict.is_valid_id, verdict.confidence, response.model,
        )
        return verdict
