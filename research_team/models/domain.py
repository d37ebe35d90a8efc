# =============================================================================
# Domain Models — Plans, Verdicts, Clarifications, Turn Results
# =============================================================================
#
# These are the plain data structures the orchestration core consumes and
# produces. Models that the LLM emits (Plan, PlanVerdict, OutputVerdict,
# ClarificationRequest, DocumentAnalysis) double as output schemas: their
# `model_json_schema()` is sent with the prompt, and the parsed JSON is
# validated back through `model_validate()`.
#
# DESIGN DECISION: Plans and verdicts are frozen. Refining a plan produces
# a new Plan value; nothing mutates a plan in place.
# =============================================================================

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class Document(BaseModel):
    """A document to brief an agent with. `document_id` is usually the file name."""

    document_id: str = Field(min_length=1)
    content: str = ""
    pages: list[str] | None = None

    def full_text(self) -> str:
        """Document text with `[Page N]` markers when pages are known."""
        if not self.pages:
            return self.content
        return "\n\n".join(
            f"[Page {number}]\n{text}"
            for number, text in enumerate(self.pages, 1)
        )


class KeyInsight(BaseModel):
    title: str = Field(description="Short label for this insight")
    description: str = Field(description="The actual fact, number, or finding")
    citation_quote: str = Field(description="Exact short phrase from the document")
    context_block: str = Field(description="Extended text surrounding the quote")
    page_reference: str | None = None
    category: str | None = Field(
        default=None, description="e.g. 'Stat', 'Person', 'Date', 'Concept'",
    )


class DocumentAnalysis(BaseModel):
    """Dashboard profile of one document."""

    source_file: str = ""
    doc_title: str = Field(description="Official title or main subject")
    doc_type: str = Field(
        description="e.g. 'Scientific Paper', 'Financial Report', 'Legal Contract'",
    )
    summary: str = Field(description="2-3 sentence summary of the document")
    topics: list[str] = Field(default_factory=list, description="3-5 main topics")
    key_insights: list[KeyInsight] = Field(
        default_factory=list, description="4-6 most important findings",
    )


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class PlanType(str, Enum):
    SIMPLE_FACT = "SIMPLE_FACT"
    DEEP_ANALYSIS = "DEEP_ANALYSIS"


def _upper_token(value: object) -> object:
    """Accept "deep_analysis" / "approved" spellings from the model."""
    if isinstance(value, str):
        return value.strip().upper().replace(" ", "_")
    return value


class Task(BaseModel):
    """One question routed to one document agent."""

    model_config = ConfigDict(frozen=True)

    target_document_id: str = Field(description="Exact name of the document to ask")
    specific_question: str = Field(description="Precise question for that document's expert")
    rationale: str = Field(default="", description="Why this question is needed")


class PlanStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    description: str = ""
    tasks: tuple[Task, ...] = ()


class Plan(BaseModel):
    """A structured, multi-step breakdown of sub-questions."""

    model_config = ConfigDict(frozen=True)

    plan_type: PlanType = Field(
        description=(
            "SIMPLE_FACT = retrieval, summarization. DEEP_ANALYSIS = complex "
            "reasoning, cross-document synthesis, thematic analysis."
        ),
    )
    reasoning: str = Field(default="", description="Your thought process")
    strategy_summary: str = Field(
        default="", description="Explanation of the research strategy",
    )
    steps: tuple[PlanStep, ...] = ()

    @field_validator("plan_type", mode="before")
    @classmethod
    def normalise_plan_type(cls, value: object) -> object:
        return _upper_token(value)

    def all_tasks(self) -> list[Task]:
        """Every task of every step, flattened in plan order."""
        return [task for step in self.steps for task in step.tasks]

    def referenced_documents(self) -> set[str]:
        return {task.target_document_id for task in self.all_tasks()}

    @property
    def needs_review(self) -> bool:
        """Only deep analyses with at least one task go to the review board."""
        return self.plan_type is PlanType.DEEP_ANALYSIS and bool(self.all_tasks())


class PlanFeedback(BaseModel):
    """Failure context handed back to the planner for a remediation plan."""

    feedback: str
    previous_plan: Plan


# ---------------------------------------------------------------------------
# Verdicts
# ---------------------------------------------------------------------------


class Outcome(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PlanVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Outcome = Field(
        description=(
            "APPROVED if the plan is strategic and comprehensive. REJECTED if "
            "it is too basic or misses key aspects of the user's query."
        ),
    )
    critique: str = Field(default="", description="Explain the reasoning")
    improvements: str | None = Field(
        default=None, description="Directives for the Lead Researcher",
    )

    @field_validator("outcome", mode="before")
    @classmethod
    def normalise_outcome(cls, value: object) -> object:
        return _upper_token(value)

    @property
    def approved(self) -> bool:
        return self.outcome is Outcome.APPROVED


class OutputVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: Outcome = Field(
        description=(
            "REJECTED if data is missing or the synthesis is hallucinated. "
            "APPROVED if high quality."
        ),
    )
    quality_assessment: str = Field(default="", description="Review of the final output")
    missing_data_suspected: bool = Field(
        default=False,
        description="True if the answer claims 'Not Found' but it likely exists",
    )
    remediation: str | None = Field(default=None, description="How to fix the answer")

    @field_validator("outcome", mode="before")
    @classmethod
    def normalise_outcome(cls, value: object) -> object:
        return _upper_token(value)

    @property
    def approved(self) -> bool:
        return self.outcome is Outcome.APPROVED


# ---------------------------------------------------------------------------
# Collaboration Record
# ---------------------------------------------------------------------------


class CollaborationKind(str, Enum):
    PLAN_PROPOSAL = "PLAN_PROPOSAL"
    PLAN_CRITIQUE = "PLAN_CRITIQUE"
    OUTPUT_AUDIT = "OUTPUT_AUDIT"


class CollaborationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: CollaborationKind
    round: int = Field(ge=0)
    payload: Plan | PlanVerdict | OutputVerdict
    timestamp: float = Field(default_factory=time.time)


class CollaborationRecord:
    """
    Append-only log of plan proposals, critiques and audits for one turn.

    Used for observability and replay only. Rounds must not decrease within
    a kind; `next_round(kind)` returns the round after the latest one.
    """

    def __init__(
        self,
        listener: Callable[[CollaborationEntry], None] | None = None,
    ) -> None:
        self._entries: list[CollaborationEntry] = []
        self._listener = listener

    def append(
        self,
        kind: CollaborationKind,
        round_number: int,
        payload: Plan | PlanVerdict | OutputVerdict,
    ) -> CollaborationEntry:
        last = self.last_round(kind)
        if last is not None and round_number < last:
            raise ValueError(
                f"Round {round_number} for {kind.value} precedes round {last}"
            )
        entry = CollaborationEntry(kind=kind, round=round_number, payload=payload)
        self._entries.append(entry)
        if self._listener is not None:
            self._listener(entry)
        return entry

    def last_round(self, kind: CollaborationKind) -> int | None:
        for entry in reversed(self._entries):
            if entry.kind is kind:
                return entry.round
        return None

    def next_round(self, kind: CollaborationKind) -> int:
        last = self.last_round(kind)
        return 0 if last is None else last + 1

    @property
    def entries(self) -> tuple[CollaborationEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Clarification
# ---------------------------------------------------------------------------


class ClarificationOption(BaseModel):
    id: str
    text: str = Field(description="The text of the option")
    is_freeform_slot: bool = Field(
        default=False,
        description="TRUE for a final option that lets the user type an answer",
    )


class ClarificationQuestion(BaseModel):
    id: str
    text: str = Field(description="The clarification question itself")
    allows_multiple: bool = Field(
        default=False,
        description="True if the user can select multiple options",
    )
    options: list[ClarificationOption] = Field(
        default_factory=list, description="3 to 5 options; the last one may be free-form",
    )

    def option(self, option_id: str) -> ClarificationOption | None:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None


class ClarificationRequest(BaseModel):
    needs_clarification: bool = Field(
        description="True if the query is vague or open to several interpretations",
    )
    questions: list[ClarificationQuestion] = Field(
        default_factory=list, description="3 to 4 distinct clarification questions",
    )

    @classmethod
    def not_needed(cls) -> ClarificationRequest:
        return cls(needs_clarification=False, questions=[])

    @property
    def pending(self) -> bool:
        return self.needs_clarification and bool(self.questions)


# ---------------------------------------------------------------------------
# Execution & Turn Results
# ---------------------------------------------------------------------------


class TaskResult(BaseModel):
    """Answer of one document agent to one task; `error` set on failure."""

    document_id: str
    question: str
    answer: str
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class HistoryMessage(BaseModel):
    role: Literal["user", "model"]
    text: str | None = None
    has_plan: bool = False


class Citation(BaseModel):
    """A parsed <claim> span of the visible report."""

    content: str
    source: str = ""
    page: str = ""
    quote: str = ""
    logic: str = ""


class TurnResult(BaseModel):
    """Terminal artifact of one user turn."""

    reasoning_trace: str = ""
    report: str
    citations: list[Citation] = Field(default_factory=list)


class TurnStatus(str, Enum):
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    NEEDS_CLARIFICATION = "NEEDS_CLARIFICATION"
    REJECTED = "REJECTED"


class TurnOutcome(BaseModel):
    """Typed result handed to the presentation layer for every turn action."""

    status: TurnStatus
    result: TurnResult | None = None
    clarification: ClarificationRequest | None = None
    plan: Plan | None = None
    collaboration: list[CollaborationEntry] = Field(default_factory=list)
    message: str | None = None


class BriefingReport(BaseModel):
    briefed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    cancelled: bool = False
    rejected: bool = False  # document limit; nothing was briefed
    message: str | None = None


class ProgressEvent(BaseModel):
    """Status line or collaboration entry emitted while a turn runs."""

    kind: Literal["status", "collaboration"]
    message: str | None = None
    entry: CollaborationEntry | None = None
