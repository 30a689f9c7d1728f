# =============================================================================
# Know Your Fan Configuration — Pydantic Settings
# =============================================================================
#
# Every tunable lives here: persona, model providers, verification
# thresholds, search scope, storage backend, auth secret and the chat
# rate limit. Values come from environment variables first, then .env,
# then the defaults below (e.g. `VERIFICATION_MIN_CONFIDENCE=80`).
#
# Defaults run the service locally with the in-memory document store and
# no external keys; model and search calls then fail as gateway auth
# errors, which the orchestrators already handle.
#
# USAGE:
#   from app.config import settings
#   settings.verification_min_confidence
# =============================================================================

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings. Field names map to upper-case env vars."""

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    app_name: str = "Know Your Fan API"
    app_version: str = "0.1.0"
    debug: bool = False  # also turns on SQL statement echo
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Organization Persona
    # -------------------------------------------------------------------------
    # The chat assistant speaks for a single esports organization and only
    # covers its topics. These values are interpolated into the system
    # instruction and the fallback phrasing ("check furia.gg or @furia").
    # -------------------------------------------------------------------------
    organization_name: str = "FURIA"
    organization_site: str = "furia.gg"
    organization_handle: str = "@furia"

    # -------------------------------------------------------------------------
    # Vendor Keys
    # -------------------------------------------------------------------------
    # Empty by default. A missing key fails only the calls that need it.
    # -------------------------------------------------------------------------
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    bing_api_key: str = ""

    # -------------------------------------------------------------------------
    # LLM Configuration — Multi-Provider
    # -------------------------------------------------------------------------
    # Provider-agnostic LLM layer shared by the conversation and
    # verification gateways:
    #   - "anthropic": Claude via native Anthropic SDK
    #   - "openai_compatible": Any OpenAI-compatible API (OpenAI itself,
    #     DeepSeek, Qwen, ...)
    #
    # Retries are disabled at the SDK level. A gateway call either returns
    # or fails once; retry policy belongs to the caller.
    # -------------------------------------------------------------------------
    llm_provider: str = "openai_compatible"  # "anthropic" or "openai_compatible"
    llm_base_url: str | None = None  # Only needed for openai_compatible
    llm_api_key: str | None = None   # Overrides provider-specific key if set
    llm_model: str = "gpt-4-turbo-preview"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1024
    llm_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Document Verification
    # -------------------------------------------------------------------------
    # verification_provider: provider id ("type/model[@base_url]") of the
    #   vision-capable model. None = reuse the default provider above.
    # verification_min_confidence: verdicts below this are Failed even when
    #   the model says the document looks valid.
    # verification_stale_after_seconds: a record stuck in Verifying longer
    #   than this (crashed worker) may be taken over by a new request.
    # ai_verified_document_types: types routed through the model. Anything
    #   else is marked Verified on request without a model call.
    # -------------------------------------------------------------------------
    verification_provider: str | None = "openai_compatible/gpt-4o"
    verification_max_tokens: int = 300
    verification_timeout_seconds: float = 45.0
    verification_min_confidence: int = 70
    verification_stale_after_seconds: float = 300.0
    ai_verified_document_types: list[str] = ["identity"]

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------
    # Small token budget keeps replies to a short paragraph; a fixed
    # temperature keeps the tone consistent across requests.
    # -------------------------------------------------------------------------
    chat_max_tokens: int = 250
    chat_temperature: float = 0.7

    # -------------------------------------------------------------------------
    # Web Search (Bing Web Search v7)
    # -------------------------------------------------------------------------
    # search_domains are OR-ed into a `site:` filter so grounding only comes
    # from the organization's own web properties.
    # -------------------------------------------------------------------------
    bing_search_endpoint: str = "https://api.bing.microsoft.com/v7.0/search"
    search_domains: list[str] = [
        "furia.gg",
        "twitter.com/furia",
        "instagram.com/furia",
    ]
    search_result_limit: int = 5
    search_timeout_seconds: float = 5.0

    # -------------------------------------------------------------------------
    # Document Store & Uploads
    # -------------------------------------------------------------------------
    # document_store_type:
    #   - "memory": process-local dict (default, nothing to provision)
    #   - "sql": SQLAlchemy async engine at database_url
    # -------------------------------------------------------------------------
    document_store_type: str = "memory"  # "memory" or "sql"
    database_url: str = "sqlite+aiosqlite:///./data/documents.db"
    upload_dir: str = "data/uploads"
    max_upload_bytes: int = 10 * 1024 * 1024

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------
    # Bearer tokens are HS256 JWTs issued by the identity service and signed
    # with this shared secret. This service only verifies them.
    # -------------------------------------------------------------------------
    auth_secret: str = "change-me"

    # -------------------------------------------------------------------------
    # Rate Limiting (chat only)
    # -------------------------------------------------------------------------
    # Every chat request costs one search call and one model call, so it is
    # the endpoint worth throttling. Redis-backed sliding window per user.
    # -------------------------------------------------------------------------
    rate_limit_enabled: bool = False
    rate_limit_rpm: int = 20
    rate_limit_redis_url: str = "redis://localhost:6379/2"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # Unrelated variables in a shared .env are ignored
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Cached Settings instance, for code that prefers a callable."""
    return Settings()


settings = get_settings()
