# =============================================================================
# Synthesizer — Cited Report from Expert Findings
# =============================================================================
#
# One reasoning-model call merges every expert answer into the final report.
# The model opens with a <thinking> block (kept as the reasoning trace) and
# wraps every fact in a <claim> span:
#
#   <claim source="Doc.pdf" page="10" quote="Project starts June">June</claim>
#
# Thinking budget scales with the plan: DEEP_ANALYSIS gets the large budget,
# SIMPLE_FACT the small one.
# =============================================================================

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from research_team.agents.planner import format_history
from research_team.agents.prompts import render_prompt
from research_team.config import settings
from research_team.errors import UnparsableOutput
from research_team.models.domain import (
    Citation,
    HistoryMessage,
    Plan,
    PlanType,
    TaskResult,
    TurnResult,
)
from research_team.services.cancellation import CancellableRun
from research_team.services.citations import extract_citations
from research_team.services.llm import LLMProvider
from research_team.services.retry import call_with_retry

logger = logging.getLogger(__name__)

_THINKING_RE = re.compile(r"<thinking>([\s\S]*?)</thinking>")


def split_reasoning(text: str) -> tuple[str, str]:
    """
    Separate the leading <thinking> block from the visible report.

    Returns:
        (reasoning_trace, report); the trace is empty when no block exists.
    """
    match = _THINKING_RE.search(text)
    if match is None:
        return "", text.strip()
    report = (text[:match.start()] + text[match.end():]).strip()
    return match.group(1).strip(), report


def format_reports(results: Sequence[TaskResult]) -> str:
    if not results:
        return "(no expert reports)"
    return "\n\n".join(
        f'SOURCE: "{r.document_id}"\nQUESTION: {r.question}\nCONTENT: {r.answer}'
        for r in results
    )


async def synthesize(
    plan: Plan,
    history: Sequence[HistoryMessage],
    results: Sequence[TaskResult],
    llm: LLMProvider,
    run: CancellableRun,
) -> TurnResult:
    """
    Produce the final cited report for `plan` from the expert `results`.

    Raises:
        UnparsableOutput: The model returned nothing.
        Cancelled: The run was cancelled.
    """
    deep = plan.plan_type is PlanType.DEEP_ANALYSIS
    budget = (
        settings.synthesis_thinking_budget_deep if deep
        else settings.synthesis_thinking_budget_simple
    )
    prompt = render_prompt(
        "synthesis",
        mode="DEEP ANALYSIS" if deep else "PRECISE ANSWER",
        strategy=plan.strategy_summary,
        history=format_history(history, plan_placeholder=False),
        reports=format_reports(results),
    )

    run.raise_if_cancelled()
    response = await call_with_retry(
        lambda: llm.generate(
            prompt,
            thinking_budget=budget,
            model=settings.llm_reasoning_model,
        ),
        token=run,
        max_attempts=settings.retry_max_attempts,
        base_delay_ms=settings.synthesis_retry_base_delay_ms,
    )
    if not response.content or not response.content.strip():
        raise UnparsableOutput("Synthesis failed: the model returned no report.")

    reasoning, report = split_reasoning(response.content)
    citations = [
        Citation(
            content=claim.content,
            source=claim.source,
            page=claim.page,
            quote=claim.quote,
            logic=claim.logic,
        )
        for claim in extract_citations(report)
    ]
    logger.info(
        "Synthesis complete: mode=%s, findings=%d, citations=%d",
        plan.plan_type.value, len(results), len(citations),
    )
    return TurnResult(reasoning_trace=reasoning, report=report, citations=citations)
