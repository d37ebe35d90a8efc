# =============================================================================
# Task Executor — Parallel Fan-Out to Document Experts
# =============================================================================
#
# Every task of every step is sent to its document agent concurrently.
# Each leg fails in isolation:
#
#   no agent for the document   -> "Error: Expert not assigned."
#   remote / retry failure      -> "Error: Retrieval failed."
#
# Only cancellation escapes the fan-out. Synthesis starts after every leg
# has settled, so the report always sees the complete result set.
#
# DESIGN DECISION: asyncio.gather(return_exceptions=True) rather than
# TaskGroup. One failing leg must not cancel its siblings.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from research_team.agents.swarm import AgentSwarm
from research_team.agents.synthesizer import synthesize
from research_team.errors import AgentUnavailable, Cancelled
from research_team.models.domain import HistoryMessage, Plan, Task, TaskResult, TurnResult
from research_team.services.cancellation import CancellableRun
from research_team.services.llm import LLMProvider

logger = logging.getLogger(__name__)

EXPERT_NOT_ASSIGNED = "Error: Expert not assigned."
RETRIEVAL_FAILED = "Error: Retrieval failed."


async def _run_task(task: Task, swarm: AgentSwarm, run: CancellableRun) -> TaskResult:
    run.raise_if_cancelled()
    answer = await swarm.ask(task.target_document_id, task.specific_question, run)
    run.raise_if_cancelled()
    return TaskResult(
        document_id=task.target_document_id,
        question=task.specific_question,
        answer=answer,
    )


def _failed(task: Task, message: str, error: BaseException) -> TaskResult:
    return TaskResult(
        document_id=task.target_document_id,
        question=task.specific_question,
        answer=message,
        error=str(error) or type(error).__name__,
    )


async def dispatch_tasks(
    plan: Plan,
    swarm: AgentSwarm,
    run: CancellableRun,
) -> list[TaskResult]:
    """
    Ask every task's document agent concurrently.

    Returns:
        One TaskResult per task, in plan order.

    Raises:
        Cancelled: The run was cancelled before, during or after fan-out.
    """
    tasks = plan.all_tasks()
    run.raise_if_cancelled()
    if not tasks:
        return []

    outcomes = await asyncio.gather(
        *(_run_task(task, swarm, run) for task in tasks),
        return_exceptions=True,
    )

    results: list[TaskResult] = []
    for task, outcome in zip(tasks, outcomes):
        if isinstance(outcome, Cancelled):
            raise outcome
        if isinstance(outcome, AgentUnavailable):
            logger.warning("No expert for %s; task skipped", task.target_document_id)
            results.append(_failed(task, EXPERT_NOT_ASSIGNED, outcome))
        elif isinstance(outcome, Exception):
            logger.error(
                "Task for %s failed: %s", task.target_document_id, outcome,
            )
            results.append(_failed(task, RETRIEVAL_FAILED, outcome))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results.append(outcome)

    run.raise_if_cancelled()
    failures = sum(1 for r in results if r.failed)
    logger.info("Dispatched %d tasks (%d failed)", len(results), failures)
    return results


async def execute_plan(
    plan: Plan,
    history: Sequence[HistoryMessage],
    swarm: AgentSwarm,
    llm: LLMProvider,
    run: CancellableRun,
    on_status: Callable[[str], None] | None = None,
) -> TurnResult:
    """Dispatch the plan's tasks, then synthesize the findings into a report."""
    task_count = len(plan.all_tasks())
    if task_count and on_status:
        on_status(f"Execution: Deploying {task_count} tasks...")

    results = await dispatch_tasks(plan, swarm, run)

    if results and on_status:
        on_status(f"Synthesizing {len(results)} expert findings...")
    return await synthesize(plan, history, results, llm, run)
