# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
#   - domain.py: plans, verdicts, clarifications, turn results
#   - requests.py / responses.py: API wire schemas
#
# DESIGN DECISION: API schemas are separate from domain models so the
# wire shape can stay stable while the orchestration types evolve.
# =============================================================================
