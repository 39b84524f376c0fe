# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - chat.py: Threads, messages (question submission) and inquiry details
#   - providers.py: Provider registry listing and performance metrics
#   - deps.py: Caller identity (X-User-Id) and pipeline dependencies
# =============================================================================
