# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine, session management, and ORM models.
#
# Key exports:
#   - get_session_factory: self-managed sessions (used by the pipeline)
#   - get_async_session: FastAPI dependency for request-scoped sessions
#   - Base: declarative base for all ORM models
# =============================================================================
