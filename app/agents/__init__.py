# =============================================================================
# Agents Package — Orchestration
# =============================================================================
#   - verification.py: per-(user, document type) state machine around the
#     verification gateway, with compare-and-set claims
#   - policy.py: pluggable verdict → Verified/Failed mapping
#   - chat.py: LangGraph pipeline — ground (web search) → compose prompt →
#     converse (single model call)
# =============================================================================
