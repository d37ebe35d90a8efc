# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# DESIGN DECISION: Separate response models from domain models.
# TurnOutcome carries the full collaboration record with live Plan and
# verdict objects; the response flattens it into a stable wire shape and
# leaves out nothing the client needs to replay the review rounds.
# =============================================================================

from typing import Any

from pydantic import BaseModel, Field

from research_team.models.domain import (
    BriefingReport,
    Citation,
    ClarificationRequest,
    CollaborationEntry,
    TurnOutcome,
)


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class BriefingResponse(BaseModel):
    """Response for POST /documents."""

    briefed: list[str]
    failed: list[str]
    cancelled: bool = False
    message: str | None = None

    @classmethod
    def from_report(cls, report: BriefingReport) -> "BriefingResponse":
        return cls(
            briefed=report.briefed,
            failed=report.failed,
            cancelled=report.cancelled,
            message=report.message,
        )


class AgentListResponse(BaseModel):
    """Response for GET /documents — ids of the ready experts."""

    documents: list[str]
    max_documents: int


class CollaborationItem(BaseModel):
    kind: str
    round: int
    timestamp: float
    payload: dict[str, Any]

    @classmethod
    def from_entry(cls, entry: CollaborationEntry) -> "CollaborationItem":
        return cls(
            kind=entry.kind.value,
            round=entry.round,
            timestamp=entry.timestamp,
            payload=entry.payload.model_dump(mode="json"),
        )


class TurnResponse(BaseModel):
    """Response for POST /turns and POST /turns/clarifications."""

    status: str = Field(
        description="DONE, CANCELLED, FAILED, NEEDS_CLARIFICATION or REJECTED",
    )
    message: str | None = None
    reasoning_trace: str | None = None
    report: str | None = None
    citations: list[Citation] = Field(default_factory=list)
    clarification: ClarificationRequest | None = None
    plan: dict[str, Any] | None = None
    collaboration: list[CollaborationItem] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: TurnOutcome) -> "TurnResponse":
        result = outcome.result
        return cls(
            status=outcome.status.value,
            message=outcome.message,
            reasoning_trace=result.reasoning_trace if result else None,
            report=result.report if result else None,
            citations=result.citations if result else [],
            clarification=outcome.clarification,
            plan=outcome.plan.model_dump(mode="json") if outcome.plan else None,
            collaboration=[
                CollaborationItem.from_entry(entry) for entry in outcome.collaboration
            ],
        )


class CancelResponse(BaseModel):
    cancelled: bool
