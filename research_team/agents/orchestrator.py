# =============================================================================
# LangGraph Orchestrator — Research Turn State Machine
# =============================================================================
#
# One user turn runs through a LangGraph StateGraph:
#
#   START ──▶ plan ──▶ review ──▶ execute ──▶ audit ──┬──▶ END
#              ▲                                      │
#              └──── remediate (audit REJECTED) ──────┘
#
#   plan     create_plan(), or a remediation plan carrying the audit feedback
#   review   run_plan_review(): critique-and-refine, bounded rounds
#   execute  parallel fan-out to document experts, then synthesis
#   audit    output review board; DEEP_ANALYSIS plans and remediation
#            attempts only
#
# The clarification gate runs before the graph, in ResearchTeam.submit_query,
# because a clarification pauses the turn until the user answers.
#
# DESIGN DECISION: The only loop edge is audit ──▶ plan, bounded by
# output_audit_max_retries. The plan/review loop lives inside the review
# node (bounded by plan_review_max_rounds), the same way the agentic retry
# loop lives inside a single node rather than as graph edges.
#
# DESIGN DECISION: Collaborators (LLM provider, agent swarm, run token,
# collaboration record) travel in state. They are not serialisable, which
# is safe because no checkpointer is configured.
#
# DESIGN DECISION: Graph compiled once at module level.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from research_team.agents.clarifier import (
    ClarificationForm,
    build_clarified_query,
    generate_clarification,
)
from research_team.agents.executor import execute_plan
from research_team.agents.planner import create_plan
from research_team.agents.profiler import analyze_documents
from research_team.agents.review_board import audit_output, run_plan_review
from research_team.agents.swarm import AgentSwarm
from research_team.config import settings
from research_team.errors import Cancelled, ClarificationIncomplete, ResearchTeamError
from research_team.models.domain import (
    BriefingReport,
    ClarificationRequest,
    CollaborationEntry,
    CollaborationKind,
    CollaborationRecord,
    Document,
    DocumentAnalysis,
    HistoryMessage,
    OutputVerdict,
    Plan,
    PlanFeedback,
    PlanType,
    ProgressEvent,
    TurnOutcome,
    TurnResult,
    TurnStatus,
)
from research_team.services.cancellation import CancellableRun, RunScope
from research_team.services.llm import LLMProvider, get_llm_provider

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Execution stopped by user."
MISSING_DATA_FEEDBACK = "Missing Data detected."
NO_EXPERTS_MESSAGE = "Expert Panel not initialized."

ProgressCallback = Callable[[ProgressEvent], None]
StatusCallback = Callable[[str], None]


# ---------------------------------------------------------------------------
# Turn State Schema
# ---------------------------------------------------------------------------


class TurnState(TypedDict, total=False):
    """
    State that flows through the turn graph.

    total=False so nodes only return the keys they update.
    """

    # --- Input (set by ResearchTeam) ---
    query: str
    documents: list[str]
    history: list[HistoryMessage]

    # --- Collaborators (not serialisable; no checkpointer) ---
    llm: LLMProvider
    swarm: AgentSwarm
    run: CancellableRun
    record: CollaborationRecord
    on_status: StatusCallback | None

    # --- Intermediate ---
    plan: Plan
    feedback: PlanFeedback | None
    attempt: int
    verdict: OutputVerdict | None
    remediate: bool

    # --- Output ---
    result: TurnResult


def _status(state: TurnState, message: str) -> None:
    callback = state.get("on_status")
    if callback:
        callback(message)


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def plan_node(state: TurnState) -> dict:
    """Draft the execution plan (a remediation plan when feedback is set)."""
    feedback = state.get("feedback")
    _status(
        state,
        "Research Lead: Re-planning after audit..." if feedback
        else "Research Lead: Formulating Strategy...",
    )
    plan = await create_plan(
        query=state["query"],
        active_documents=state["documents"],
        history=state.get("history", []),
        llm=state["llm"],
        run=state["run"],
        failure_feedback=feedback,
    )
    record = state["record"]
    record.append(
        CollaborationKind.PLAN_PROPOSAL,
        record.next_round(CollaborationKind.PLAN_PROPOSAL),
        plan,
    )
    return {"plan": plan}


async def review_node(state: TurnState) -> dict:
    """Run the plan review board until approval or the round cap."""
    plan = await run_plan_review(
        query=state["query"],
        plan=state["plan"],
        available_documents=state["documents"],
        llm=state["llm"],
        run=state["run"],
        record=state["record"],
        on_status=state.get("on_status"),
    )
    return {"plan": plan}


async def execute_node(state: TurnState) -> dict:
    """Fan out to the document experts and synthesize the report."""
    result = await execute_plan(
        plan=state["plan"],
        history=state.get("history", []),
        swarm=state["swarm"],
        llm=state["llm"],
        run=state["run"],
        on_status=state.get("on_status"),
    )
    return {"result": result}


async def audit_node(state: TurnState) -> dict:
    """
    Audit the report and decide whether one more remediation cycle runs.

    SIMPLE_FACT first attempts are not audited.
    """
    plan = state["plan"]
    attempt = state.get("attempt", 0)
    if plan.plan_type is not PlanType.DEEP_ANALYSIS and attempt == 0:
        return {"verdict": None, "remediate": False}

    _status(state, "Peer Review Board: Auditing final report...")
    verdict = await audit_output(
        query=state["query"],
        report=state["result"].report,
        plan=plan,
        llm=state["llm"],
        run=state["run"],
    )
    state["record"].append(CollaborationKind.OUTPUT_AUDIT, attempt, verdict)

    if verdict.approved:
        _status(state, "Peer Review Board: Report approved.")
        return {"verdict": verdict, "remediate": False}

    if attempt < settings.output_audit_max_retries:
        logger.info("Output audit rejected report; remediation attempt %d", attempt + 1)
        _status(state, "Peer Review Board: Report rejected. Remediating...")
        return {
            "verdict": verdict,
            "remediate": True,
            "attempt": attempt + 1,
            "feedback": PlanFeedback(
                feedback=verdict.remediation or MISSING_DATA_FEEDBACK,
                previous_plan=plan,
            ),
        }

    logger.info("Output audit rejected report; retry budget spent, accepting")
    return {"verdict": verdict, "remediate": False}


def route_after_audit(state: TurnState) -> str:
    return "plan" if state.get("remediate") else END


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(TurnState)
_builder.add_node("plan", plan_node)
_builder.add_node("review", review_node)
_builder.add_node("execute", execute_node)
_builder.add_node("audit", audit_node)

_builder.add_edge(START, "plan")
_builder.add_edge("plan", "review")
_builder.add_edge("review", "execute")
_builder.add_edge("execute", "audit")
_builder.add_conditional_edges("audit", route_after_audit, ["plan", END])

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Research Team — Turn Handler
# ---------------------------------------------------------------------------


@dataclass
class PendingClarification:
    query: str
    request: ClarificationRequest
    active_documents: list[str] | None


class ResearchTeam:
    """
    Session-level facade: the agent swarm, conversation history, pending
    clarification and the single live run.

    Every public action returns a typed result. Cancelled becomes
    CANCELLED, package errors become FAILED with their message, and any
    other exception is logged with its traceback and reported as FAILED.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        swarm: AgentSwarm | None = None,
    ) -> None:
        self.llm = llm or get_llm_provider()
        self.swarm = swarm or AgentSwarm(self.llm)
        self.history: list[HistoryMessage] = []
        self.pending: PendingClarification | None = None
        self._scope = RunScope()

    # --- Documents ---------------------------------------------------------

    async def brief_documents(
        self,
        documents: Iterable[Document],
        on_progress: ProgressCallback | None = None,
    ) -> BriefingReport:
        """Brief one expert per document. Replaces experts for known ids."""
        docs = list(documents)
        new_ids = {d.document_id for d in docs} - set(self.swarm.list_agents())
        if len(self.swarm) + len(new_ids) > settings.max_documents:
            message = (
                f"Limit reached. You can analyze a maximum of "
                f"{settings.max_documents} documents at a time."
            )
            logger.warning(message)
            return BriefingReport(
                failed=[d.document_id for d in docs], rejected=True, message=message,
            )

        run = self._scope.start("briefing")

        def progress(index: int, total: int, message: str) -> None:
            if on_progress:
                on_progress(ProgressEvent(kind="status", message=message))

        try:
            briefed, failed = await self.swarm.brief_all(docs, run, progress)
        except Cancelled:
            return BriefingReport(cancelled=True, message=STOPPED_MESSAGE)
        finally:
            self._scope.finish(run)

        logger.info("Briefing complete: %d briefed, %d failed", len(briefed), len(failed))
        return BriefingReport(briefed=briefed, failed=failed)

    async def analyze_documents(
        self,
        documents: Iterable[Document],
        on_progress: ProgressCallback | None = None,
    ) -> list[DocumentAnalysis]:
        """Dashboard profiles for `documents`; empty when cancelled."""
        run = self._scope.start("analysis")

        def progress(index: int, total: int, message: str) -> None:
            if on_progress:
                on_progress(ProgressEvent(kind="status", message=message))

        try:
            return await analyze_documents(documents, self.llm, run, progress)
        except Cancelled:
            logger.info("Document analysis cancelled")
            return []
        finally:
            self._scope.finish(run)

    def remove_document(self, document_id: str) -> bool:
        return self.swarm.remove(document_id)

    def list_active_agents(self) -> list[str]:
        return self.swarm.list_agents()

    # --- Turns -------------------------------------------------------------

    def cancel_current_turn(self) -> bool:
        """Cancel whatever action is running. Returns False if none was."""
        return self._scope.cancel_current()

    def start_turn(self) -> CancellableRun:
        """Install a fresh turn run, superseding the live one."""
        return self._scope.start("turn")

    def cancel_run(self, run: CancellableRun) -> bool:
        """
        Cancel `run` only while it is still the live run.

        A run that was already superseded is left alone, so a stale caller
        can never cancel the action that replaced it.
        """
        if not self._scope.is_current(run):
            return False
        return self._scope.cancel_current()

    def reset_conversation(self) -> None:
        self._scope.cancel_current()
        self.history = []
        self.pending = None
        logger.info("Conversation reset")

    def _select_documents(self, active_documents: Sequence[str] | None) -> list[str]:
        """Restrict to briefed agents; unknown ids are ignored, empty means all."""
        agents = self.swarm.list_agents()
        if not active_documents:
            return agents
        selected = [doc_id for doc_id in active_documents if doc_id in agents]
        return selected or agents

    async def submit_query(
        self,
        text: str,
        active_documents: Sequence[str] | None = None,
        on_progress: ProgressCallback | None = None,
        run: CancellableRun | None = None,
    ) -> TurnOutcome:
        """
        Start a turn: clarification gate, then the research graph.

        Returns NEEDS_CLARIFICATION (and keeps the request pending) when the
        query is too vague to plan against. `run` is a run obtained from
        `start_turn()`; a fresh one is started when omitted.
        """
        run = run or self._scope.start("turn")
        self.pending = None
        documents = self._select_documents(active_documents)
        if not documents:
            self._scope.finish(run)
            return TurnOutcome(status=TurnStatus.FAILED, message=NO_EXPERTS_MESSAGE)
        on_status = _status_emitter(on_progress)

        try:
            on_status("Research Lead: Assessing query clarity...")
            request = await generate_clarification(text, documents, self.llm, run)
        except Cancelled:
            self._scope.finish(run)
            return TurnOutcome(status=TurnStatus.CANCELLED, message=STOPPED_MESSAGE)

        if request.pending:
            self._scope.finish(run)
            if run.cancelled:
                return TurnOutcome(status=TurnStatus.CANCELLED, message=STOPPED_MESSAGE)
            self.pending = PendingClarification(
                query=text,
                request=request,
                active_documents=list(active_documents) if active_documents else None,
            )
            logger.info("Turn paused for %d clarification questions", len(request.questions))
            return TurnOutcome(
                status=TurnStatus.NEEDS_CLARIFICATION, clarification=request,
            )

        return await self._run_turn(text, text, documents, run, on_progress)

    async def submit_clarification_answers(
        self,
        answers: dict[str, list[str]],
        custom_inputs: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TurnOutcome:
        """
        Resume the paused turn with the user's answers.

        Incomplete answers return REJECTED and keep the clarification pending.
        """
        pending = self.pending
        if pending is None:
            return TurnOutcome(
                status=TurnStatus.REJECTED, message="No clarification is pending.",
            )

        form = ClarificationForm(pending.request)
        try:
            for question_id, option_ids in answers.items():
                for option_id in dict.fromkeys(option_ids):
                    form.select(question_id, option_id)
            for question_id, text in (custom_inputs or {}).items():
                form.set_custom_text(question_id, text)
            block = form.render()
        except ClarificationIncomplete as e:
            return TurnOutcome(
                status=TurnStatus.REJECTED,
                clarification=pending.request,
                message=str(e),
            )

        self.pending = None
        run = self._scope.start("turn")
        query = build_clarified_query(pending.query, block)
        documents = self._select_documents(pending.active_documents)
        if not documents:
            self._scope.finish(run)
            return TurnOutcome(status=TurnStatus.FAILED, message=NO_EXPERTS_MESSAGE)
        return await self._run_turn(query, pending.query, documents, run, on_progress)

    async def _run_turn(
        self,
        query: str,
        display_query: str,
        documents: list[str],
        run: CancellableRun,
        on_progress: ProgressCallback | None,
    ) -> TurnOutcome:
        record = CollaborationRecord(listener=_entry_emitter(on_progress))
        initial_state: TurnState = {
            "query": query,
            "documents": documents,
            "history": list(self.history),
            "llm": self.llm,
            "swarm": self.swarm,
            "run": run,
            "record": record,
            "on_status": _status_emitter(on_progress),
            "feedback": None,
            "attempt": 0,
        }

        logger.info(
            "Invoking turn graph: query='%s', documents=%d",
            display_query[:80], len(documents),
        )
        try:
            final = await graph.ainvoke(initial_state)
        except Cancelled:
            return self._outcome(TurnStatus.CANCELLED, record, message=STOPPED_MESSAGE)
        except ResearchTeamError as e:
            logger.error("Turn failed: %s", e)
            return self._outcome(TurnStatus.FAILED, record, message=str(e))
        except Exception as e:
            logger.exception("Unexpected turn failure")
            return self._outcome(
                TurnStatus.FAILED, record, message=f"Unexpected error: {e}",
            )
        finally:
            self._scope.finish(run)

        if run.cancelled:
            logger.info("Discarding result of superseded run %s", run.run_id)
            return self._outcome(TurnStatus.CANCELLED, record, message=STOPPED_MESSAGE)

        result: TurnResult = final["result"]
        self.history.extend([
            HistoryMessage(role="user", text=display_query),
            HistoryMessage(role="model", text=result.report, has_plan=True),
        ])
        logger.info(
            "Turn complete: citations=%d, remediation_attempts=%d",
            len(result.citations), final.get("attempt", 0),
        )
        return self._outcome(
            TurnStatus.DONE, record, result=result, plan=final.get("plan"),
        )

    @staticmethod
    def _outcome(
        status: TurnStatus,
        record: CollaborationRecord,
        **fields,
    ) -> TurnOutcome:
        return TurnOutcome(status=status, collaboration=list(record.entries), **fields)


def _status_emitter(on_progress: ProgressCallback | None) -> StatusCallback:
    def emit(message: str) -> None:
        if on_progress:
            on_progress(ProgressEvent(kind="status", message=message))
    return emit


def _entry_emitter(
    on_progress: ProgressCallback | None,
) -> Callable[[CollaborationEntry], None] | None:
    if on_progress is None:
        return None

    def emit(entry: CollaborationEntry) -> None:
        on_progress(ProgressEvent(kind="collaboration", entry=entry))
    return emit
