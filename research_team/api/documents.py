# =============================================================================
# Documents API — Expert Briefing and Profiling
# =============================================================================
#
#   POST   /documents           brief one document expert per document
#   GET    /documents           ids of the ready experts
#   DELETE /documents/{id}      dismiss an expert
#   POST   /documents/analyze   dashboard profiles (title, summary, insights)
#
# Documents arrive as text (optionally split into pages). File upload and
# PDF parsing happen before this API.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from research_team.agents.orchestrator import ResearchTeam
from research_team.api.deps import get_research_team
from research_team.config import settings
from research_team.models.domain import DocumentAnalysis
from research_team.models.requests import AnalyzeRequest, BriefRequest
from research_team.models.responses import AgentListResponse, BriefingResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.post(
    "",
    response_model=BriefingResponse,
    summary="Brief document experts",
    description=(
        "Create one expert agent per document and load the document into "
        "its session. Individual failures are reported in `failed`; the "
        "request is rejected with 409 if it would exceed the document limit."
    ),
)
async def brief_documents(
    request: BriefRequest,
    team: ResearchTeam = Depends(get_research_team),
) -> BriefingResponse:
    logger.info("Brief request: %d documents", len(request.documents))
    report = await team.brief_documents(request.documents)
    if report.rejected:
        raise HTTPException(status_code=409, detail=report.message)
    return BriefingResponse.from_report(report)


@router.get("", response_model=AgentListResponse, summary="List ready experts")
async def list_documents(
    team: ResearchTeam = Depends(get_research_team),
) -> AgentListResponse:
    return AgentListResponse(
        documents=team.list_active_agents(),
        max_documents=settings.max_documents,
    )


@router.delete("/{document_id}", status_code=204, summary="Dismiss an expert")
async def remove_document(
    document_id: str,
    team: ResearchTeam = Depends(get_research_team),
) -> None:
    if not team.remove_document(document_id):
        raise HTTPException(
            status_code=404,
            detail=f"No expert is briefed for document '{document_id}'.",
        )


@router.post(
    "/analyze",
    response_model=list[DocumentAnalysis],
    summary="Profile documents for the dashboard",
)
async def analyze_documents(
    request: AnalyzeRequest,
    team: ResearchTeam = Depends(get_research_team),
) -> list[DocumentAnalysis]:
    return await team.analyze_documents(request.documents)
