# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for request body validation (automatic 422 errors),
# OpenAPI documentation and handler type hints.
# =============================================================================

from pydantic import BaseModel, Field

from research_team.models.domain import Document


class BriefRequest(BaseModel):
    """
    Request body for POST /documents — brief one expert per document.

    Example:
        {
            "documents": [
                {"document_id": "Q3_Report.pdf", "pages": ["...", "..."]}
            ]
        }
    """

    documents: list[Document] = Field(
        ...,
        min_length=1,
        description="Documents to brief. Re-briefing a known id replaces its expert.",
    )


class AnalyzeRequest(BaseModel):
    """Request body for POST /documents/analyze — dashboard profiles."""

    documents: list[Document] = Field(..., min_length=1)


class TurnRequest(BaseModel):
    """
    Request body for POST /turns — ask the research team a question.

    Example:
        {
            "query": "Compare revenue trends across Q3_Report.pdf and Q4_Report.pdf",
            "active_documents": ["Q3_Report.pdf", "Q4_Report.pdf"]
        }
    """

    query: str = Field(
        ...,
        min_length=1,
        max_length=8000,
        description="The research question",
    )

    # Restrict planning to a subset of briefed experts.
    # Unknown ids are ignored; omitted or empty means every expert.
    active_documents: list[str] | None = Field(
        default=None,
        description="Document ids the planner may use. Omit to use all.",
    )


class ClarificationAnswersRequest(BaseModel):
    """
    Request body for POST /turns/clarifications.

    Example:
        {
            "answers": {"q1": ["opt2"], "q2": ["opt1", "opt3"]},
            "custom_inputs": {"q3": "Only the European segment"}
        }
    """

    answers: dict[str, list[str]] = Field(
        ..., description="Selected option ids per question id",
    )
    custom_inputs: dict[str, str] = Field(
        default_factory=dict,
        description="Free-form text for questions answered with a custom option",
    )
