# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - documents.py: Document upload, status and verification endpoints
#   - chat.py: Search-grounded fan assistant endpoint
#   - deps.py: Bearer-token auth and orchestrator wiring (Depends)
# =============================================================================
