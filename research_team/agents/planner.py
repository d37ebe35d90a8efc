# =============================================================================
# Planner — Lead Researcher Execution Plans
# =============================================================================
#
# Turns the user query into a structured Plan: a plan type, a strategy, and
# ordered steps of per-document tasks.
#
#   create_plan()  — first draft, or a remediation plan when the output
#                    review board rejected the previous report
#   refine_plan()  — new plan answering a plan review board rejection
#
# Both run on the reasoning model with a large thinking budget. Unlike the
# review boards, planning has no lenient fallback: empty, unparsable or
# schema-invalid output fails the turn with UnparsableOutput. A default plan
# is never fabricated.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import ValidationError

from research_team.agents.prompts import render_prompt
from research_team.config import settings
from research_team.errors import UnparsableOutput
from research_team.models.domain import HistoryMessage, Plan, PlanFeedback, PlanVerdict
from research_team.services.cancellation import CancellableRun
from research_team.services.json_repair import parse_structured
from research_team.services.llm import LLMProvider
from research_team.services.retry import call_with_retry

logger = logging.getLogger(__name__)


def format_documents(document_ids: Sequence[str]) -> str:
    """Bulleted document list for prompts."""
    if not document_ids:
        return "- (none)"
    return "\n".join(f"- {doc_id}" for doc_id in document_ids)


def format_history(
    history: Sequence[HistoryMessage],
    window: int | None = None,
    plan_placeholder: bool = True,
) -> str:
    """
    Render the last `window` messages as ROLE: text lines.

    Messages that only carried a plan render as "(Plan Generated)" when
    `plan_placeholder` is set, otherwise as an empty line body.
    """
    window = window or settings.history_window
    lines = []
    for message in list(history)[-window:]:
        if message.text:
            content = message.text
        elif plan_placeholder:
            content = "(Plan Generated)" if message.has_plan else "(Thinking)"
        else:
            content = ""
        lines.append(f"{message.role.upper()}: {content}")
    return "\n".join(lines) or "(no previous messages)"


def plan_to_json(plan: Plan) -> str:
    return plan.model_dump_json()


async def create_plan(
    query: str,
    active_documents: Sequence[str],
    history: Sequence[HistoryMessage],
    llm: LLMProvider,
    run: CancellableRun,
    failure_feedback: PlanFeedback | None = None,
) -> Plan:
    """
    Draft an execution plan for `query` over `active_documents`.

    Args:
        query: The user query (with any clarification block appended).
        active_documents: Document ids the experts can be asked about.
        history: Conversation so far; only the last `history_window`
            messages are used.
        llm: Model provider.
        run: Run token for cancellation.
        failure_feedback: Remediation context after a rejected report.

    Raises:
        UnparsableOutput: The model produced no usable plan.
        Cancelled: The run was cancelled.
    """
    sections = [
        render_prompt(
            "plan_context",
            documents=format_documents(active_documents),
            history=format_history(history),
            query=query,
        ),
    ]
    if failure_feedback is not None:
        sections.append(render_prompt(
            "plan_remediation",
            feedback=failure_feedback.feedback,
            previous_plan=plan_to_json(failure_feedback.previous_plan),
        ))
    sections.append(render_prompt("plan_rules"))

    logger.info(
        "Planner drafting %s plan over %d documents",
        "remediation" if failure_feedback else "initial",
        len(active_documents),
    )
    return await generate_plan("\n\n".join(sections), llm, run)


async def refine_plan(
    query: str,
    plan: Plan,
    verdict: PlanVerdict,
    active_documents: Sequence[str],
    llm: LLMProvider,
    run: CancellableRun,
) -> Plan:
    """Produce a new plan that addresses a review board rejection."""
    prompt = render_prompt(
        "plan_refinement",
        documents=format_documents(active_documents),
        query=query,
        previous_plan=plan_to_json(plan),
        critique=verdict.critique or "(none)",
        improvements=verdict.improvements or "(none)",
    )
    logger.info("Planner refining plan after rejection")
    return await generate_plan(prompt, llm, run)


async def generate_plan(prompt: str, llm: LLMProvider, run: CancellableRun) -> Plan:
    """Run one planning call and validate the output into a Plan."""
    run.raise_if_cancelled()
    response = await call_with_retry(
        lambda: llm.generate(
            prompt,
            Plan.model_json_schema(),
            thinking_budget=settings.planner_thinking_budget,
            model=settings.llm_reasoning_model,
        ),
        token=run,
        max_attempts=settings.planner_retry_attempts,
        base_delay_ms=settings.planner_retry_base_delay_ms,
    )
    if not response.content:
        raise UnparsableOutput("Orchestrator failed: empty plan output.")

    try:
        plan = Plan.model_validate(parse_structured(response.content))
    except ValidationError as e:
        raise UnparsableOutput(f"Plan output does not match the schema: {e}") from e

    logger.info(
        "Plan ready: type=%s, steps=%d, tasks=%d",
        plan.plan_type.value, len(plan.steps), len(plan.all_tasks()),
    )
    return plan
