# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, kept separate from the ORM models
# in finchat/db/models.py so the public contract and the storage layout can
# change independently.
# =============================================================================
