# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Defines request/response schemas for the API.
# These are SEPARATE from the domain records (app/services/document_store.py)
# and the ORM model (app/db/models.py), so the public contract can evolve
# independently of storage.
# =============================================================================
