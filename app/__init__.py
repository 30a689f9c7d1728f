# =============================================================================
# Know Your Fan — Document Verification & Grounded Chat Service
# =============================================================================
# Backend for the fan portal: fans upload identity documents that are
# checked by a vision-capable model, and chat with an assistant whose
# answers are grounded in live web search results.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (documents, chat, health)
#   ├── agents/       → Orchestrators (document verification state machine,
#   │                    LangGraph chat pipeline, verdict policy)
#   ├── db/           → Async SQLAlchemy engine and ORM model for the SQL
#   │                    document store
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Gateways to external APIs (LLM providers, web
#                        search, verification, conversation), document
#                        store, auth tokens, rate limiting, event sink
# =============================================================================
