# =============================================================================
# Services Package — Collaborators of the Consolidation Pipeline
# =============================================================================
#   - admissibility.py: Keyword finance gate, financial context extraction
#     and prompt enhancement
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - answer_clients.py: Per-provider answer/rating clients (LLM-backed or
#     canned) and the client-spec factory
#   - pricing.py: Token pricing registry for provider cost accounting
# =============================================================================
