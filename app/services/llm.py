# =============================================================================
# LLM Provider Layer — Model Access for the Verification & Chat Gateways
# =============================================================================
#
# Both model-backed gateways (verifier.py, conversation.py) talk to a
# model through one small interface, `LLMProvider.complete()`. Two
# implementations cover every vendor we use:
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         — Claude, native SDK
#   ├── OpenAICompatibleProvider  — OpenAI or any server speaking its API
#   ├── get_llm_provider()        — process-wide default (settings.llm_*)
#   ├── create_provider_from_id() — dedicated instance ("type/model@url")
#   └── LazyProvider              — defers either factory to first call
#
# DESIGN DECISION: SDK exceptions stop here.
# Timeouts, rejected keys, HTTP errors and unreadable bodies are re-raised
# as the gateway errors in app/errors.py. Nothing above this module imports
# anthropic or openai.
#
# DESIGN DECISION: One attempt per call.
# Both SDKs retry by default; we pass max_retries=0 and a per-call timeout
# (settings.llm_timeout_seconds). The orchestrators decide what a failure
# means, and neither of them retries.
# =============================================================================

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from types import ModuleType
from typing import Protocol

from app.config import settings
from app.errors import GatewayAuthError, GatewayTimeoutError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMResponse:
    """Text of one completion plus the usage numbers we log."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Run one completion.

        Args:
            messages: "user"/"assistant" turns. The system prompt goes in
                `system`, never in this list.
            system: System instruction (persona, rubric).
            temperature: None means settings.llm_temperature.
            max_tokens: None means settings.llm_max_tokens.

        Raises:
            GatewayTimeoutError, GatewayAuthError, UpstreamError
        """
        ...


# ---------------------------------------------------------------------------
# SDK Error Translation
# ---------------------------------------------------------------------------
# The two SDKs are generated from the same template and expose the same
# exception names, so one translator serves both. Order matters:
# APITimeoutError is a subclass of APIConnectionError, and the auth errors
# are subclasses of APIStatusError.
# ---------------------------------------------------------------------------


@contextmanager
def _translate_sdk_errors(sdk: ModuleType, gateway: str) -> Iterator[None]:
    try:
        yield
    except sdk.APITimeoutError as e:
        raise GatewayTimeoutError(gateway, "request timed out") from e
    except (sdk.AuthenticationError, sdk.PermissionDeniedError) as e:
        raise GatewayAuthError(gateway, f"rejected credentials ({e.status_code})") from e
    except sdk.APIStatusError as e:
        raise UpstreamError(gateway, f"HTTP {e.status_code}") from e
    except sdk.APIConnectionError as e:
        raise UpstreamError(gateway, f"connection failed: {e}") from e
    except (sdk.APIResponseValidationError, json.JSONDecodeError) as e:
        raise UpstreamError(gateway, f"unreadable response: {e}") from e


def _require_key(candidates: tuple[str | None, ...], env_hint: str) -> str:
    for key in candidates:
        if key:
            return key
    raise ValueError(f"No API key configured. Set {env_hint} in .env")


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Claude through the native SDK.

    Anthropic takes the system instruction as a top-level `system=` field;
    sending it as a "system" role message is rejected.
    """

    gateway = "anthropic"

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        import anthropic

        key = _require_key(
            (api_key, settings.llm_api_key, settings.anthropic_api_key),
            "LLM_API_KEY or ANTHROPIC_API_KEY",
        )
        self._sdk = anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
        self._model = model or settings.llm_model
        logger.info("AnthropicProvider ready (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        request: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or settings.llm_max_tokens,
            "temperature": (
                settings.llm_temperature if temperature is None else temperature
            ),
        }
        if system:
            request["system"] = system

        with _translate_sdk_errors(self._sdk, self.gateway):
            response = await self._client.messages.create(**request)

        text = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return LLMResponse(
            content=text,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI, or any server exposing the chat-completions API.

    Point it elsewhere with a base URL, e.g. for a vision model hosted by
    another vendor:
        VERIFICATION_PROVIDER=openai_compatible/qwen-vl-plus@https://host/v1
    """

    gateway = "openai_compatible"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        import openai

        key = _require_key(
            (api_key, settings.llm_api_key, settings.openai_api_key),
            "LLM_API_KEY or OPENAI_API_KEY",
        )
        base_url = base_url or settings.llm_base_url
        self._sdk = openai
        self._client = openai.AsyncOpenAI(
            api_key=key,
            base_url=base_url or None,
            timeout=settings.llm_timeout_seconds,
            max_retries=0,
        )
        self._model = model or settings.llm_model
        logger.info(
            "OpenAICompatibleProvider ready (model=%s, base_url=%s)",
            self._model, base_url or "default",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        turns = [{"role": "system", "content": system}] if system else []
        turns.extend(messages)

        with _translate_sdk_errors(self._sdk, self.gateway):
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=turns,
                max_tokens=max_tokens or settings.llm_max_tokens,
                temperature=(
                    settings.llm_temperature if temperature is None else temperature
                ),
            )

        if not response.choices:
            raise UpstreamError(self.gateway, "response has no choices")

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Default provider for the chat assistant (lazy singleton).

    settings.llm_provider selects "anthropic" or "openai_compatible".

    Raises:
        ValueError: No API key configured for the selected provider.
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "anthropic":
            _provider = AnthropicProvider()
        else:
            _provider = OpenAICompatibleProvider()
    return _provider


_PROVIDER_TYPES = ("anthropic", "openai_compatible")


def _parse_provider_id(provider_id: str) -> tuple[str, str, str | None]:
    """
    Split "type/model[@base_url]" into its parts.

    >>> _parse_provider_id("openai_compatible/gpt-4o")
    ('openai_compatible', 'gpt-4o', None)
    >>> _parse_provider_id("openai_compatible/qwen-vl-plus@https://host/v1")
    ('openai_compatible', 'qwen-vl-plus', 'https://host/v1')
    """
    provider_type, slash, rest = provider_id.partition("/")
    if not slash or not rest:
        raise ValueError(
            f"Invalid provider id '{provider_id}', expected "
            "'type/model' or 'type/model@base_url'"
        )
    if provider_type not in _PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}', "
            f"expected one of {list(_PROVIDER_TYPES)}"
        )
    model, _, base_url = rest.partition("@")
    return provider_type, model, base_url or None


def create_provider_from_id(
    provider_id: str,
    api_key: str | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Build a dedicated provider, independent of the default singleton.

    Used for settings.verification_provider: ID checks need a
    vision-capable model that is usually not the chat model.

    Raises:
        ValueError: Bad provider id or missing API key.
    """
    provider_type, model, base_url = _parse_provider_id(provider_id)
    if provider_type == "anthropic":
        return AnthropicProvider(api_key=api_key, model=model)
    return OpenAICompatibleProvider(api_key=api_key, model=model, base_url=base_url)


class LazyProvider:
    """
    Wraps a provider factory and calls it on the first completion.

    Gateways are wired at startup, but API keys are only needed when a
    model is actually called. A factory ValueError (missing key) is raised
    as GatewayAuthError from that call, which the orchestrators already
    turn into "verification_unavailable" or a 500 chat reply.
    """

    def __init__(self, factory: Callable[[], LLMProvider]) -> None:
        self._factory = factory
        self._provider: LLMProvider | None = None

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        if self._provider is None:
            try:
                self._provider = self._factory()
            except ValueError as e:
                raise GatewayAuthError("llm", str(e)) from e
        return await self._provider.complete(
            messages=messages,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
        )
