# =============================================================================
# Pipeline Package — Multi-Provider Query Consolidation
# =============================================================================
# Leaf-first:
#   - gateway.py: One provider behind a timeout; failures become values
#   - registry.py: ACTIVE providers from provider_configs → gateways
#   - dispatcher.py: Concurrent fan-out of a question to every gateway
#   - consolidation.py: Confidence-weighted merge of the replies
#   - rating.py: Concurrent cross-rating of the merged answer
#   - orchestrator.py: Inquiry lifecycle (create → process → finalize)
#     with the dispatch → consolidate → rate LangGraph
#   - errors.py: Pipeline exception hierarchy
# =============================================================================
