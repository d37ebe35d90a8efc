# =============================================================================
# Unit Tests — Task Executor & Synthesizer
# =============================================================================

from __future__ import annotations

import asyncio

import pytest
from fakes import DEFAULT_REPORT, ScriptedLLM, default_agent_answer, plan_json

from research_team.agents.executor import (
    EXPERT_NOT_ASSIGNED,
    RETRIEVAL_FAILED,
    dispatch_tasks,
    execute_plan,
)
from research_team.agents.swarm import AgentSwarm
from research_team.agents.synthesizer import split_reasoning, synthesize
from research_team.config import settings
from research_team.errors import Cancelled, UnparsableOutput
from research_team.models.domain import Document, HistoryMessage, Plan, TaskResult
from research_team.services.cancellation import CancellableRun


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _briefed_swarm(llm: ScriptedLLM, *names: str) -> AgentSwarm:
    swarm = AgentSwarm(llm)
    _run(swarm.brief_all(
        [Document(document_id=name, content=f"Text of {name}") for name in names],
        CancellableRun(),
    ))
    return swarm


def _two_doc_plan(plan_type: str = "DEEP_ANALYSIS") -> Plan:
    return Plan.model_validate_json(plan_json(plan_type, [
        [("A.pdf", "What was revenue for 2023 in A.pdf?"),
         ("B.pdf", "What was revenue for 2023 in B.pdf?")],
    ]))


# ---------------------------------------------------------------------------
# Test: dispatch_tasks
# ---------------------------------------------------------------------------


class TestDispatchTasks:
    def test_results_in_plan_order(self):
        llm = ScriptedLLM()
        swarm = _briefed_swarm(llm, "A.pdf", "B.pdf")

        results = _run(dispatch_tasks(_two_doc_plan(), swarm, CancellableRun()))

        assert [r.document_id for r in results] == ["A.pdf", "B.pdf"]
        assert all(not r.failed for r in results)
        assert "(B.pdf)" in results[1].answer

    def test_missing_agent_fails_in_isolation(self):
        llm = ScriptedLLM()
        swarm = _briefed_swarm(llm, "A.pdf")

        results = _run(dispatch_tasks(_two_doc_plan(), swarm, CancellableRun()))

        assert not results[0].failed
        assert results[1].answer == EXPERT_NOT_ASSIGNED
        assert results[1].failed

    def test_agent_removed_during_fan_out(self):
        swarm_ref: list[AgentSwarm] = []

        def answer(session, message):
            if session.document_id == "A.pdf" and not message.startswith("DOCUMENT:"):
                swarm_ref[0].remove("B.pdf")
            return default_agent_answer(session, message)

        llm = ScriptedLLM(agent_answer=answer)
        swarm = _briefed_swarm(llm, "A.pdf", "B.pdf")
        swarm_ref.append(swarm)

        results = _run(dispatch_tasks(_two_doc_plan(), swarm, CancellableRun()))

        assert not results[0].failed
        assert results[1].answer == EXPERT_NOT_ASSIGNED

    def test_remote_failure_becomes_retrieval_failed(self):
        def answer(session, message):
            if session.document_id == "B.pdf" and not message.startswith("DOCUMENT:"):
                return ValueError("context window exceeded")
            return default_agent_answer(session, message)

        llm = ScriptedLLM(agent_answer=answer)
        swarm = _briefed_swarm(llm, "A.pdf", "B.pdf")

        results = _run(dispatch_tasks(_two_doc_plan(), swarm, CancellableRun()))

        assert not results[0].failed
        assert results[1].answer == RETRIEVAL_FAILED
        assert "context window exceeded" in results[1].error

    def test_cancellation_during_fan_out_escapes(self):
        run = CancellableRun()

        def answer(session, message):
            if not message.startswith("DOCUMENT:"):
                run.cancel()
            return default_agent_answer(session, message)

        llm = ScriptedLLM(agent_answer=answer)
        swarm = _briefed_swarm(llm, "A.pdf", "B.pdf")

        with pytest.raises(Cancelled):
            _run(dispatch_tasks(_two_doc_plan(), swarm, run))

    def test_precancelled_run_sends_nothing(self):
        llm = ScriptedLLM()
        swarm = _briefed_swarm(llm, "A.pdf", "B.pdf")
        run = CancellableRun()
        run.cancel()

        with pytest.raises(Cancelled):
            _run(dispatch_tasks(_two_doc_plan(), swarm, run))
        assert all(len(s.messages) == 1 for s in llm.sessions)  # briefing only

    def test_zero_tasks(self):
        plan = Plan.model_validate_json(plan_json(steps=[]))
        assert _run(dispatch_tasks(plan, AgentSwarm(ScriptedLLM()), CancellableRun())) == []


# ---------------------------------------------------------------------------
# Test: execute_plan
# ---------------------------------------------------------------------------


class TestExecutePlan:
    def test_dispatch_then_synthesize(self):
        llm = ScriptedLLM()
        swarm = _briefed_swarm(llm, "A.pdf", "B.pdf")
        statuses = []

        result = _run(execute_plan(
            _two_doc_plan(), [], swarm, llm, CancellableRun(), statuses.append,
        ))

        assert result.reasoning_trace == "Merge the expert findings."
        assert result.citations[0].source == "A.pdf"
        assert statuses == [
            "Execution: Deploying 2 tasks...",
            "Synthesizing 2 expert findings...",
        ]
        prompt = llm.stage_calls("synthesis")[0].prompt
        assert 'SOURCE: "B.pdf"\nQUESTION: What was revenue for 2023 in B.pdf?' in prompt

    def test_zero_tasks_go_straight_to_synthesis(self):
        llm = ScriptedLLM()
        plan = Plan.model_validate_json(plan_json(steps=[]))
        statuses = []

        _run(execute_plan(plan, [], AgentSwarm(llm), llm, CancellableRun(), statuses.append))

        assert statuses == []
        assert "(no expert reports)" in llm.stage_calls("synthesis")[0].prompt


# ---------------------------------------------------------------------------
# Test: Synthesizer
# ---------------------------------------------------------------------------


class TestSplitReasoning:
    def test_leading_block(self):
        assert split_reasoning("<thinking> plan it </thinking>\nThe answer.") == (
            "plan it", "The answer.",
        )

    def test_no_block(self):
        assert split_reasoning("  Just the answer. ") == ("", "Just the answer.")

    def test_multiline_block(self):
        trace, report = split_reasoning("<thinking>a\nb</thinking>Report")
        assert trace == "a\nb"
        assert report == "Report"


class TestSynthesize:
    RESULTS = [TaskResult(document_id="A.pdf", question="Revenue?", answer="12%")]

    def test_deep_analysis_mode_and_budget(self):
        llm = ScriptedLLM()
        _run(synthesize(_two_doc_plan("DEEP_ANALYSIS"), [], self.RESULTS, llm, CancellableRun()))
        [call] = llm.calls
        assert "MODE: DEEP ANALYSIS" in call.prompt
        assert call.kwargs["thinking_budget"] == settings.synthesis_thinking_budget_deep
        assert call.schema is None

    def test_simple_fact_mode_and_budget(self):
        llm = ScriptedLLM()
        _run(synthesize(_two_doc_plan("SIMPLE_FACT"), [], self.RESULTS, llm, CancellableRun()))
        [call] = llm.calls
        assert "MODE: PRECISE ANSWER" in call.prompt
        assert call.kwargs["thinking_budget"] == settings.synthesis_thinking_budget_simple

    def test_history_has_no_plan_placeholder(self):
        llm = ScriptedLLM()
        history = [
            HistoryMessage(role="user", text="Earlier question"),
            HistoryMessage(role="model", has_plan=True),
        ]
        _run(synthesize(_two_doc_plan(), history, self.RESULTS, llm, CancellableRun()))
        prompt = llm.calls[0].prompt
        assert "USER: Earlier question" in prompt
        assert "(Plan Generated)" not in prompt

    def test_citations_extracted(self):
        llm = ScriptedLLM({"synthesis": DEFAULT_REPORT})
        result = _run(synthesize(_two_doc_plan(), [], self.RESULTS, llm, CancellableRun()))
        [citation] = result.citations
        assert citation.content == "12%"
        assert citation.page == "3"
        assert citation.quote == "revenue rose 12%"
        assert "<thinking>" not in result.report

    def test_empty_output_is_fatal(self):
        llm = ScriptedLLM({"synthesis": "   "})
        with pytest.raises(UnparsableOutput):
            _run(synthesize(_two_doc_plan(), [], self.RESULTS, llm, CancellableRun()))
