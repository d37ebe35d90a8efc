# =============================================================================
# Document Research Team
# =============================================================================
# A multi-agent research orchestrator over a small set of documents. One
# expert agent per document answers questions with page citations; a lead
# planner, a peer review board and an output auditor coordinate them.
#
# Package structure:
#   research_team/
#   ├── api/          → FastAPI route handlers (documents, turns)
#   ├── agents/       → Swarm, clarifier, planner, review boards, executor,
#   │                    synthesizer, profiler and the LangGraph turn graph
#   ├── models/       → Pydantic V2 domain models and API schemas
#   └── services/     → LLM providers, retry, JSON repair, citations,
#                        cancellation
# =============================================================================
