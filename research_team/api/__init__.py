# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - documents.py: expert briefing, listing, removal and profiling
#   - turns.py: research turns, clarification answers, cancellation
#   - deps.py: the shared ResearchTeam dependency
# =============================================================================
