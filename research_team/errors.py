# =============================================================================
# Error Taxonomy
# =============================================================================
#
#   ResearchTeamError
#   ├── TransientRemoteFailure   — rate limit / overload, retries exhausted
#   ├── PermanentRemoteFailure   — any other remote error
#   ├── UnparsableOutput         — no structured value recoverable from text
#   ├── AgentUnavailable         — no agent briefed for a document id
#   ├── DocumentLimitExceeded    — briefing would exceed max_documents
#   ├── ClarificationIncomplete  — answers missing for a question
#   └── Cancelled                — user stopped the run
#
# Only the ResearchTeam turn handler converts these into TurnOutcome values;
# everything below it lets them propagate.
# =============================================================================

from __future__ import annotations


class ResearchTeamError(RuntimeError):
    """Base class for research team failures."""


class TransientRemoteFailure(ResearchTeamError):
    """Raised when a rate-limited or overloaded call exhausts its retries."""


class PermanentRemoteFailure(ResearchTeamError):
    """Raised when the remote model fails with a non-retryable error."""


class UnparsableOutput(ResearchTeamError):
    """Raised when every JSON recovery strategy fails."""


class AgentUnavailable(ResearchTeamError):
    """Raised when a question targets a document with no briefed agent."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"No agent is briefed for document '{document_id}'")
        self.document_id = document_id


class DocumentLimitExceeded(ResearchTeamError):
    """Raised when briefing would exceed the configured document limit."""


class ClarificationIncomplete(ResearchTeamError, ValueError):
    """Raised when clarification answers are submitted before every question has one."""


class Cancelled(ResearchTeamError):
    """Raised at a suspension point once the current run has been cancelled."""

    def __init__(self, message: str = "Run cancelled by user") -> None:
        super().__init__(message)
