# =============================================================================
# Services Package — Gateways and Infrastructure
# =============================================================================
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - web_search.py: Search gateway (Bing Web Search v7 over httpx)
#   - verifier.py: Verification gateway (vision model verdict as JSON)
#   - conversation.py: Conversation gateway (single-turn completion)
#   - document_store.py: Keyed document records with compare-and-set
#     (in-memory, SQL)
#   - events.py: Structured observability hook
#   - auth.py: Bearer token signing/verification
#   - rate_limiter.py: Redis sliding-window limit for chat
# =============================================================================
