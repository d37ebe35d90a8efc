# =============================================================================
# Peer Review Board — Plan Critique and Output Audit
# =============================================================================
#
# Two adversarial checkpoints around execution:
#
#   PLAN REVIEW   review_plan() / run_plan_review()
#     Deterministic rejection heuristics run first (find_plan_defects):
#       1. single-step plan for a comparison / complex query
#       2. relevant documents that no task queries
#       3. non-specific task questions
#       4. generic strategy explanation
#     Any defect rejects the plan without a model call. Otherwise the model
#     judges the plan holistically against the same criteria. Rejections
#     feed refine_plan() for up to plan_review_max_rounds rounds; the last
#     produced plan goes to execution whatever its final verdict.
#
#   OUTPUT AUDIT  audit_output()
#     Judges whether the synthesized report answers the query and whether
#     its conclusions are supported; flags suspicious "not found" answers.
#
# DESIGN DECISION: Review is an optimization, not a correctness gate. A
# board call that fails (remote error, unparsable or invalid JSON) approves
# with a logged default verdict instead of blocking the turn. Cancellation
# still propagates.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Sequence

from pydantic import ValidationError

from research_team.agents.planner import plan_to_json, refine_plan
from research_team.agents.prompts import render_prompt
from research_team.config import settings
from research_team.errors import Cancelled, ResearchTeamError
from research_team.models.domain import (
    CollaborationKind,
    CollaborationRecord,
    Outcome,
    OutputVerdict,
    Plan,
    PlanVerdict,
)
from research_team.services.cancellation import CancellableRun
from research_team.services.json_repair import parse_structured
from research_team.services.llm import LLMProvider
from research_team.services.retry import call_with_retry

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

# ---------------------------------------------------------------------------
# Rejection Heuristics
# ---------------------------------------------------------------------------

COMPARISON_KEYWORDS = (
    "compare", "comparison", "versus", " vs ", " vs.", "difference between",
    "differences", "compared to", "relative to", "better than", "worse than",
    "contrast", "across", "trend", "both", "each of", "relationship between",
    "thematic", "in depth", "deep dive",
)

VAGUE_QUESTION_PATTERNS = (
    "tell me about",
    "tell me everything",
    "what does it say",
    "what does this document say",
    "what is in",
    "summarize this",
    "summarise this",
    "summarize the document",
    "summarise the document",
    "give me information",
    "anything relevant",
    "any information",
)

GENERIC_STRATEGY_PATTERNS = (
    "analyze the documents",
    "analyse the documents",
    "look at the documents",
    "gather information",
    "answer the question",
    "ask the experts",
    "query the documents",
)


def is_comparison_query(query: str) -> bool:
    """Keyword heuristic for queries implying comparison or multi-part analysis."""
    padded = f" {query.lower()} "
    return any(keyword in padded for keyword in COMPARISON_KEYWORDS)


def documents_named_in(query: str, document_ids: Sequence[str]) -> list[str]:
    """Documents referenced by full name or by file stem in the query."""
    lowered = query.lower()
    named = []
    for doc_id in document_ids:
        name = doc_id.lower()
        stem = name.rsplit(".", 1)[0]
        if name in lowered:
            named.append(doc_id)
        elif len(stem) >= 4 and re.search(rf"\b{re.escape(stem)}\b", lowered):
            named.append(doc_id)
    return named


def relevant_documents(query: str, available_documents: Sequence[str]) -> list[str]:
    """
    Documents a good plan must query.

    Named documents when the query names any; every available document for
    a comparison query; otherwise none (left to the model's judgment).
    """
    named = documents_named_in(query, available_documents)
    if named:
        return named
    if is_comparison_query(query) and len(available_documents) > 1:
        return list(available_documents)
    return []


def _word_count(text: str) -> int:
    return len(text.split())


def find_plan_defects(
    query: str,
    plan: Plan,
    available_documents: Sequence[str],
) -> list[tuple[str, str]]:
    """
    Apply the deterministic rejection heuristics.

    Returns:
        (criticism, directive) pairs; empty when no heuristic fires.
    """
    defects: list[tuple[str, str]] = []

    if is_comparison_query(query) and len(plan.steps) == 1:
        defects.append((
            "Single-Step Logic for Complex Queries: the query calls for "
            "comparison or deep analysis but the plan has only one step.",
            "Break the work into separate extraction and comparison steps.",
        ))

    unqueried = [
        doc_id for doc_id in relevant_documents(query, available_documents)
        if doc_id not in plan.referenced_documents()
    ]
    if unqueried:
        defects.append((
            "Missing Cross-Referencing: relevant documents are never queried: "
            + ", ".join(unqueried) + ".",
            "Add tasks addressed to " + ", ".join(unqueried) + ".",
        ))

    vague = []
    for task in plan.all_tasks():
        question = task.specific_question.strip()
        lowered = question.lower()
        if (
            _word_count(question) < settings.review_min_question_words
            or any(pattern in lowered for pattern in VAGUE_QUESTION_PATTERNS)
        ):
            vague.append(f'"{question}" ({task.target_document_id})')
    if vague:
        defects.append((
            "Vague Questions: tasks ask non-specific questions: "
            + "; ".join(vague) + ".",
            "Rewrite each task as a precise question naming the metric, "
            "period or concept to extract.",
        ))

    strategy = plan.strategy_summary.strip()
    if (
        _word_count(strategy) < settings.review_min_strategy_words
        or any(pattern in strategy.lower() for pattern in GENERIC_STRATEGY_PATTERNS)
        and _word_count(strategy) < 2 * settings.review_min_strategy_words
    ):
        defects.append((
            "Shallow Strategy: the strategy explanation is generic.",
            "Explain how the per-document findings will be combined to "
            "answer this specific query.",
        ))

    return defects


# ---------------------------------------------------------------------------
# Plan Review
# ---------------------------------------------------------------------------


async def review_plan(
    query: str,
    plan: Plan,
    available_documents: Sequence[str],
    llm: LLMProvider,
    run: CancellableRun,
) -> PlanVerdict:
    """Critique one plan. Heuristic defects reject without a model call."""
    run.raise_if_cancelled()

    defects = find_plan_defects(query, plan, available_documents)
    if defects:
        logger.info("Plan rejected by heuristics: %d defect(s)", len(defects))
        return PlanVerdict(
            outcome=Outcome.REJECTED,
            critique=" ".join(criticism for criticism, _ in defects),
            improvements=" ".join(directive for _, directive in defects),
        )

    prompt = render_prompt(
        "plan_review",
        query=query,
        documents=json.dumps(list(available_documents)),
        plan=plan_to_json(plan),
    )
    try:
        response = await call_with_retry(
            lambda: llm.generate(
                prompt, PlanVerdict.model_json_schema(), temperature=0.1,
            ),
            token=run,
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
        )
        if not response.content:
            raise ValueError("empty verdict")
        return PlanVerdict.model_validate(parse_structured(response.content))
    except Cancelled:
        raise
    except (ResearchTeamError, ValidationError, ValueError) as e:
        logger.warning("Plan review failed: %s. Auto-approving.", e)
        return PlanVerdict(
            outcome=Outcome.APPROVED, critique="Auto-approved on error",
        )


async def run_plan_review(
    query: str,
    plan: Plan,
    available_documents: Sequence[str],
    llm: LLMProvider,
    run: CancellableRun,
    record: CollaborationRecord,
    max_rounds: int | None = None,
    on_status: StatusCallback | None = None,
) -> Plan:
    """
    Critique-and-refine loop.

    SIMPLE_FACT plans and plans without tasks skip review entirely. Otherwise
    each round reviews the current plan; a rejection produces a refined
    plan. Stops at the first approval or after `max_rounds` rounds.

    Returns:
        The last plan produced.
    """
    if not plan.needs_review:
        logger.info(
            "Skipping plan review: type=%s, tasks=%d",
            plan.plan_type.value, len(plan.all_tasks()),
        )
        return plan

    max_rounds = max_rounds or settings.plan_review_max_rounds
    base_round = record.last_round(CollaborationKind.PLAN_CRITIQUE) or 0
    current = plan

    for i in range(1, max_rounds + 1):
        run.raise_if_cancelled()
        round_number = base_round + i
        if on_status:
            on_status(f"Peer Review (Round {i}/{max_rounds})...")

        verdict = await review_plan(query, current, available_documents, llm, run)
        record.append(CollaborationKind.PLAN_CRITIQUE, round_number, verdict)

        if verdict.approved:
            if on_status:
                on_status("Peer Review: Approved. Proceeding.")
            logger.info("Plan approved in round %d", i)
            break

        if on_status:
            on_status(f"Research Lead (Round {i}): Improving strategy...")
        current = await refine_plan(
            query, current, verdict, available_documents, llm, run,
        )
        record.append(CollaborationKind.PLAN_PROPOSAL, round_number, current)

        if not current.needs_review:
            logger.info("Refined plan no longer needs review; stopping")
            break
    else:
        logger.info("Plan review hit the %d-round cap", max_rounds)

    return current


# ---------------------------------------------------------------------------
# Output Audit
# ---------------------------------------------------------------------------


async def audit_output(
    query: str,
    report: str,
    plan: Plan,
    llm: LLMProvider,
    run: CancellableRun,
) -> OutputVerdict:
    """Audit the synthesized report. Failures approve with a default verdict."""
    run.raise_if_cancelled()
    prompt = render_prompt(
        "output_audit",
        query=query,
        strategy=plan.strategy_summary or "(none)",
        report=report,
    )
    try:
        response = await call_with_retry(
            lambda: llm.generate(
                prompt, OutputVerdict.model_json_schema(), temperature=0.1,
            ),
            token=run,
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
        )
        if not response.content:
            raise ValueError("empty verdict")
        verdict = OutputVerdict.model_validate(parse_structured(response.content))
    except Cancelled:
        raise
    except (ResearchTeamError, ValidationError, ValueError) as e:
        logger.warning("Output audit failed: %s. Auto-approving.", e)
        return OutputVerdict(
            outcome=Outcome.APPROVED,
            quality_assessment="Auto-approved on error",
            missing_data_suspected=False,
        )

    logger.info(
        "Output audit: %s (missing_data_suspected=%s)",
        verdict.outcome.value, verdict.missing_data_suspected,
    )
    return verdict
