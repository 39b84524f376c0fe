# =============================================================================
# Finance Chat Assistant — Multi-Provider Query Consolidation
# =============================================================================
# Answers a user's finance question by asking several independent answer
# providers at once, merging their replies into one confidence-weighted
# answer, and having the provider pool cross-rate the result. Every stage
# is persisted with strict inquiry status tracking.
#
# Package structure:
#   finchat/
#   ├── api/          → FastAPI route handlers (threads, messages, inquiries,
#   │                    provider registry + metrics)
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── pipeline/     → Gateway, dispatcher, consolidation, cross-rating and
#   │                    the inquiry orchestrator (LangGraph)
#   └── services/     → Admissibility gate, LLM providers, answer clients,
#                        pricing
# =============================================================================
