# =============================================================================
# API Dependencies — Shared Research Team
# =============================================================================
#
# One ResearchTeam per process: it owns the agent swarm, the conversation
# history and the single live run, so every route must see the same one.
#
# DESIGN DECISION: FastAPI dependency (not a module global imported by the
# routers). Tests swap in a team built on a scripted provider through
# app.dependency_overrides[get_research_team].
# =============================================================================

from __future__ import annotations

import logging

from research_team.agents.orchestrator import ResearchTeam

logger = logging.getLogger(__name__)

_team: ResearchTeam | None = None


def get_research_team() -> ResearchTeam:
    """
    Return the process-wide ResearchTeam, creating it on first use.

    Creation resolves the configured LLM provider, so a missing API key
    surfaces here as a ValueError.
    """
    global _team
    if _team is None:
        _team = ResearchTeam()
        logger.info("Research team created")
    return _team


def reset_research_team() -> None:
    """Drop the shared team (used on shutdown)."""
    global _team
    if _team is not None:
        _team.reset_conversation()
        _team.swarm.clear()
    _team = None
