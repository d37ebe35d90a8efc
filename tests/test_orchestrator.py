# =============================================================================
# Integration Tests — Research Team Turn Handling
# =============================================================================
#
# Drives ResearchTeam end to end (clarification gate, LangGraph turn graph,
# review boards, fan-out and synthesis) against the scripted provider.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

from fakes import ScriptedLLM, deep_plan_json, default_agent_answer, plan_json

from research_team.agents.orchestrator import ResearchTeam
from research_team.config import settings
from research_team.errors import UnparsableOutput
from research_team.models.domain import CollaborationKind, Document, PlanType, TurnStatus


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


COMPARE_QUERY = "Compare revenue trends across A.pdf and B.pdf"

CLARIFICATION = json.dumps({
    "needs_clarification": True,
    "questions": [
        {
            "id": "q1",
            "text": "Which period?",
            "allows_multiple": False,
            "options": [
                {"id": "a", "text": "FY2023"},
                {"id": "b", "text": "Other", "is_freeform_slot": True},
            ],
        },
        {
            "id": "q2",
            "text": "Which metrics?",
            "allows_multiple": True,
            "options": [
                {"id": "x", "text": "Revenue"},
                {"id": "y", "text": "Margin"},
            ],
        },
    ],
})

REJECTED_AUDIT = json.dumps({
    "outcome": "REJECTED",
    "quality_assessment": "B.pdf figures are missing.",
    "missing_data_suspected": True,
    "remediation": "Ask B.pdf for its 2023 revenue.",
})


def _team(llm: ScriptedLLM, *names: str) -> ResearchTeam:
    team = ResearchTeam(llm=llm)
    names = names or ("A.pdf", "B.pdf")
    _run(team.brief_documents(
        [Document(document_id=name, content=f"Text of {name}") for name in names],
    ))
    return team


def _kinds(outcome) -> list[tuple[CollaborationKind, int]]:
    return [(entry.kind, entry.round) for entry in outcome.collaboration]


# ---------------------------------------------------------------------------
# Test: Documents
# ---------------------------------------------------------------------------


class TestDocuments:
    def test_brief_and_list(self):
        team = _team(ScriptedLLM(), "A.pdf", "B.pdf")
        assert team.list_active_agents() == ["A.pdf", "B.pdf"]

    def test_briefing_progress(self):
        team = ResearchTeam(llm=ScriptedLLM())
        events = []
        report = _run(team.brief_documents(
            [Document(document_id="A.pdf", content="text")], events.append,
        ))
        assert report.briefed == ["A.pdf"]
        assert [e.message for e in events] == [
            "Briefing Document Expert for A.pdf...",
            "Research Team Ready.",
        ]

    def test_limit_rejects_whole_batch(self, monkeypatch):
        monkeypatch.setattr(settings, "max_documents", 2)
        team = _team(ScriptedLLM(), "A.pdf", "B.pdf")

        report = _run(team.brief_documents([Document(document_id="C.pdf", content="x")]))

        assert report.rejected
        assert report.failed == ["C.pdf"]
        assert "maximum of 2 documents" in report.message
        assert team.list_active_agents() == ["A.pdf", "B.pdf"]

    def test_rebriefing_known_document_is_within_limit(self, monkeypatch):
        monkeypatch.setattr(settings, "max_documents", 2)
        team = _team(ScriptedLLM(), "A.pdf", "B.pdf")

        report = _run(team.brief_documents([Document(document_id="A.pdf", content="v2")]))

        assert not report.rejected
        assert report.briefed == ["A.pdf"]

    def test_remove_document(self):
        team = _team(ScriptedLLM(), "A.pdf", "B.pdf")
        assert team.remove_document("A.pdf")
        assert not team.remove_document("A.pdf")
        assert team.list_active_agents() == ["B.pdf"]

    def test_analyze_documents(self):
        team = ResearchTeam(llm=ScriptedLLM())
        profiles = _run(team.analyze_documents([Document(document_id="A.pdf", content="x")]))
        assert profiles[0].doc_title == "Annual Report 2023"


# ---------------------------------------------------------------------------
# Test: Simple and deep turns
# ---------------------------------------------------------------------------


class TestTurns:
    def test_simple_fact_turn(self):
        llm = ScriptedLLM()
        team = _team(llm)

        outcome = _run(team.submit_query("What was revenue in A.pdf for 2023?"))

        assert outcome.status is TurnStatus.DONE
        assert outcome.result.citations[0].source == "A.pdf"
        assert outcome.plan.plan_type is PlanType.SIMPLE_FACT
        assert _kinds(outcome) == [(CollaborationKind.PLAN_PROPOSAL, 0)]
        assert llm.stage_calls("review") == []
        assert llm.stage_calls("audit") == []

    def test_history_appended(self):
        team = _team(ScriptedLLM())
        _run(team.submit_query("What was revenue in A.pdf for 2023?"))

        assert [m.role for m in team.history] == ["user", "model"]
        assert team.history[0].text == "What was revenue in A.pdf for 2023?"
        assert team.history[1].has_plan

    def test_history_reaches_next_plan(self):
        llm = ScriptedLLM()
        team = _team(llm)
        _run(team.submit_query("What was revenue in A.pdf for 2023?"))
        _run(team.submit_query("And the year before?"))

        prompt = llm.stage_calls("plan")[1].prompt
        assert "USER: What was revenue in A.pdf for 2023?" in prompt

    def test_deep_turn_reviewed_and_audited(self):
        llm = ScriptedLLM({"plan": deep_plan_json()})
        team = _team(llm)

        outcome = _run(team.submit_query(COMPARE_QUERY))

        assert outcome.status is TurnStatus.DONE
        assert _kinds(outcome) == [
            (CollaborationKind.PLAN_PROPOSAL, 0),
            (CollaborationKind.PLAN_CRITIQUE, 1),
            (CollaborationKind.OUTPUT_AUDIT, 0),
        ]
        # Both experts were consulted in the first step
        assert {s.document_id for s in llm.sessions if len(s.messages) > 1} == {
            "A.pdf", "B.pdf",
        }

    def test_rejected_plan_is_refined(self):
        single_file = plan_json("DEEP_ANALYSIS", [
            [("A.pdf", "What quarterly revenue figures does A.pdf report for 2023?")],
            [("A.pdf", "Which factors does management cite for the revenue change?")],
        ])
        llm = ScriptedLLM({"plan": single_file, "refine": deep_plan_json()})
        team = _team(llm)

        outcome = _run(team.submit_query(COMPARE_QUERY))

        assert outcome.status is TurnStatus.DONE
        assert _kinds(outcome)[:4] == [
            (CollaborationKind.PLAN_PROPOSAL, 0),
            (CollaborationKind.PLAN_CRITIQUE, 1),
            (CollaborationKind.PLAN_PROPOSAL, 1),
            (CollaborationKind.PLAN_CRITIQUE, 2),
        ]
        assert not outcome.collaboration[1].payload.approved
        assert outcome.plan.referenced_documents() == {"A.pdf", "B.pdf"}

    def test_audit_remediation_cycle(self):
        llm = ScriptedLLM({
            "plan": deep_plan_json(),
            "audit": [REJECTED_AUDIT, ScriptedLLM.DEFAULTS["audit"]],
        })
        team = _team(llm)

        outcome = _run(team.submit_query(COMPARE_QUERY))

        assert outcome.status is TurnStatus.DONE
        assert len(llm.stage_calls("plan")) == 2
        assert len(llm.stage_calls("synthesis")) == 2
        remediation_prompt = llm.stage_calls("plan")[1].prompt
        assert "REASON: Ask B.pdf for its 2023 revenue." in remediation_prompt
        assert _kinds(outcome) == [
            (CollaborationKind.PLAN_PROPOSAL, 0),
            (CollaborationKind.PLAN_CRITIQUE, 1),
            (CollaborationKind.OUTPUT_AUDIT, 0),
            (CollaborationKind.PLAN_PROPOSAL, 1),
            (CollaborationKind.PLAN_CRITIQUE, 2),
            (CollaborationKind.OUTPUT_AUDIT, 1),
        ]

    def test_audit_retry_budget_then_accept(self):
        llm = ScriptedLLM({"plan": deep_plan_json(), "audit": REJECTED_AUDIT})
        team = _team(llm)

        outcome = _run(team.submit_query(COMPARE_QUERY))

        assert outcome.status is TurnStatus.DONE
        assert len(llm.stage_calls("audit")) == settings.output_audit_max_retries + 1
        assert len(llm.stage_calls("plan")) == settings.output_audit_max_retries + 1

    def test_remediation_of_simple_plan_is_audited(self):
        rejected_without_fix = json.dumps({"outcome": "REJECTED", "missing_data_suspected": True})
        llm = ScriptedLLM({
            "plan": [deep_plan_json(), plan_json()],
            "audit": [rejected_without_fix, ScriptedLLM.DEFAULTS["audit"]],
        })
        team = _team(llm)

        _run(team.submit_query(COMPARE_QUERY))

        assert "REASON: Missing Data detected." in llm.stage_calls("plan")[1].prompt
        # The remediation plan is SIMPLE_FACT, yet it is still audited
        assert len(llm.stage_calls("audit")) == 2

    def test_active_document_selection(self):
        llm = ScriptedLLM()
        team = _team(llm, "A.pdf", "B.pdf", "C.pdf")

        _run(team.submit_query("What was revenue?", active_documents=["B.pdf", "Z.pdf"]))

        prompt = llm.stage_calls("plan")[0].prompt
        assert "- B.pdf" in prompt
        assert "- A.pdf" not in prompt
        assert "- C.pdf" not in prompt

    def test_progress_events(self):
        team = _team(ScriptedLLM())
        events = []

        _run(team.submit_query("What was revenue in A.pdf for 2023?", on_progress=events.append))

        statuses = [e.message for e in events if e.kind == "status"]
        assert statuses[:2] == [
            "Research Lead: Assessing query clarity...",
            "Research Lead: Formulating Strategy...",
        ]
        assert "Execution: Deploying 1 tasks..." in statuses
        entries = [e.entry for e in events if e.kind == "collaboration"]
        assert [entry.kind for entry in entries] == [CollaborationKind.PLAN_PROPOSAL]


# ---------------------------------------------------------------------------
# Test: Failures and cancellation
# ---------------------------------------------------------------------------


class TestFailures:
    def test_planner_failure(self):
        llm = ScriptedLLM({"plan": "no plan here"})
        team = _team(llm)

        outcome = _run(team.submit_query("What was revenue?"))

        assert outcome.status is TurnStatus.FAILED
        assert outcome.message
        assert team.history == []

    def test_synthesis_failure(self):
        llm = ScriptedLLM({"synthesis": UnparsableOutput("Synthesis failed: empty")})
        team = _team(llm)

        outcome = _run(team.submit_query("What was revenue?"))

        assert outcome.status is TurnStatus.FAILED
        assert "Synthesis failed" in outcome.message

    def test_unexpected_error(self):
        team = _team(ScriptedLLM())
        with patch(
            "research_team.agents.orchestrator.execute_plan",
            AsyncMock(side_effect=KeyError("boom")),
        ):
            outcome = _run(team.submit_query("What was revenue?"))

        assert outcome.status is TurnStatus.FAILED
        assert outcome.message.startswith("Unexpected error:")

    def test_cancel_mid_turn(self):
        team_ref: list[ResearchTeam] = []

        def answer(session, message):
            if not message.startswith("DOCUMENT:"):
                team_ref[0].cancel_current_turn()
            return default_agent_answer(session, message)

        llm = ScriptedLLM(agent_answer=answer)
        team = _team(llm)
        team_ref.append(team)

        outcome = _run(team.submit_query("What was revenue?"))

        assert outcome.status is TurnStatus.CANCELLED
        assert outcome.message == "Execution stopped by user."
        assert llm.stage_calls("synthesis") == []
        assert team.history == []

    def test_new_turn_supersedes_running_turn(self):
        llm = ScriptedLLM()
        team = _team(llm)

        async def both():
            return await asyncio.gather(
                team.submit_query("First question?"),
                team.submit_query("Second question?"),
            )

        first, second = _run(both())

        assert first.status is TurnStatus.CANCELLED
        assert second.status is TurnStatus.DONE
        assert [m.text for m in team.history] == [
            "Second question?", second.result.report,
        ]

    def test_cancel_with_nothing_running(self):
        assert not ResearchTeam(llm=ScriptedLLM()).cancel_current_turn()

    def test_cancel_run_stops_live_run(self):
        team = ResearchTeam(llm=ScriptedLLM())
        run = team.start_turn()
        assert team.cancel_run(run)
        assert run.cancelled
        assert not team.cancel_current_turn()

    def test_superseded_stream_disconnect_spares_newer_turn(self):
        llm = ScriptedLLM()
        team = _team(llm)

        async def scenario():
            stream_run = team.start_turn()
            first = asyncio.create_task(team.submit_query("First question?", run=stream_run))
            await asyncio.sleep(0)
            second = asyncio.create_task(team.submit_query("Second question?"))
            await asyncio.sleep(0)
            # The first client goes away after the second turn took over
            cancelled = team.cancel_run(stream_run)
            return cancelled, await first, await second

        cancelled, first, second = _run(scenario())

        assert not cancelled
        assert first.status is TurnStatus.CANCELLED
        assert second.status is TurnStatus.DONE

    def test_turn_without_experts_fails_before_planning(self):
        llm = ScriptedLLM()
        team = ResearchTeam(llm=llm)

        outcome = _run(team.submit_query("What was revenue?"))

        assert outcome.status is TurnStatus.FAILED
        assert outcome.message == "Expert Panel not initialized."
        assert llm.calls == []
        assert not team.cancel_current_turn()


# ---------------------------------------------------------------------------
# Test: Clarification
# ---------------------------------------------------------------------------


class TestClarification:
    def test_vague_query_pauses_turn(self):
        llm = ScriptedLLM({"clarification": CLARIFICATION})
        team = _team(llm)

        outcome = _run(team.submit_query("summarize"))

        assert outcome.status is TurnStatus.NEEDS_CLARIFICATION
        assert [q.id for q in outcome.clarification.questions] == ["q1", "q2"]
        assert team.pending is not None
        assert llm.stage_calls("plan") == []

    def test_incomplete_answers_keep_pending(self):
        team = _team(ScriptedLLM({"clarification": CLARIFICATION}))
        _run(team.submit_query("summarize"))

        outcome = _run(team.submit_clarification_answers({"q1": ["a"]}))

        assert outcome.status is TurnStatus.REJECTED
        assert "q2" in outcome.message
        assert team.pending is not None

    def test_answers_resume_turn(self):
        llm = ScriptedLLM({"clarification": CLARIFICATION})
        team = _team(llm)
        _run(team.submit_query("summarize"))

        outcome = _run(team.submit_clarification_answers(
            {"q1": ["b"], "q2": ["x", "y"]}, {"q1": "H1 2022"},
        ))

        assert outcome.status is TurnStatus.DONE
        prompt = llm.stage_calls("plan")[0].prompt
        assert "[USER CLARIFICATIONS]:" in prompt
        assert 'Custom: "H1 2022"' in prompt
        assert "Revenue, Margin" in prompt
        assert team.pending is None
        assert team.history[0].text == "summarize"

    def test_answers_without_pending(self):
        outcome = _run(ResearchTeam(llm=ScriptedLLM()).submit_clarification_answers({}))
        assert outcome.status is TurnStatus.REJECTED
        assert outcome.message == "No clarification is pending."

    def test_new_query_drops_pending(self):
        llm = ScriptedLLM({"clarification": [CLARIFICATION, json.dumps(
            {"needs_clarification": False, "questions": []}
        )]})
        team = _team(llm)
        _run(team.submit_query("summarize"))

        outcome = _run(team.submit_query("What was revenue in A.pdf?"))

        assert outcome.status is TurnStatus.DONE
        assert team.pending is None

    def test_reset_conversation(self):
        llm = ScriptedLLM({"clarification": [
            json.dumps({"needs_clarification": False, "questions": []}),
            CLARIFICATION,
        ]})
        team = _team(llm)
        _run(team.submit_query("What was revenue in A.pdf?"))
        _run(team.submit_query("summarize"))
        assert team.history and team.pending

        team.reset_conversation()

        assert team.pending is None
        assert team.history == []
