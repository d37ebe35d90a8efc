# =============================================================================
# Unit Tests — Agent Swarm (Document Experts)
# =============================================================================

from __future__ import annotations

import asyncio

import pytest
from fakes import ScriptedLLM, default_agent_answer

from research_team.agents.swarm import AgentSwarm
from research_team.errors import (
    AgentUnavailable,
    Cancelled,
    DocumentLimitExceeded,
    PermanentRemoteFailure,
)
from research_team.models.domain import Document
from research_team.services.cancellation import CancellableRun


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _doc(name: str, pages: list[str] | None = None) -> Document:
    return Document(document_id=name, content=f"Content of {name}", pages=pages)


def _failing_briefing(*failing: str):
    def answer(session, message):
        if message.startswith("DOCUMENT:") and session.document_id in failing:
            return ValueError("document rejected")
        return default_agent_answer(session, message)
    return answer


# ---------------------------------------------------------------------------
# Test: Briefing
# ---------------------------------------------------------------------------


class TestBrief:
    def test_session_directive_and_briefing(self):
        llm = ScriptedLLM()
        swarm = AgentSwarm(llm)
        _run(swarm.brief(_doc("A.pdf", pages=["Intro", "Revenue rose 12%"]), CancellableRun()))

        [session] = llm.sessions
        assert 'dedicated ONLY to the file: "A.pdf"' in session.system
        assert "[[Page: X | Quote:" in session.system
        assert "[Page 2]\nRevenue rose 12%" in session.messages[0]
        assert session.messages[0].endswith("Confirm you have reviewed the document and are ready.")
        assert swarm.list_agents() == ["A.pdf"]

    def test_rebrief_replaces_and_disposes(self):
        llm = ScriptedLLM()
        swarm = AgentSwarm(llm)
        run = CancellableRun()
        _run(swarm.brief(_doc("A.pdf"), run))
        _run(swarm.brief(_doc("A.pdf"), run))

        old, new = llm.sessions
        assert old.disposed
        assert not new.disposed
        assert len(swarm) == 1

    def test_limit_blocks_new_documents(self):
        swarm = AgentSwarm(ScriptedLLM(), max_documents=2)
        run = CancellableRun()
        _run(swarm.brief(_doc("A.pdf"), run))
        _run(swarm.brief(_doc("B.pdf"), run))

        with pytest.raises(DocumentLimitExceeded):
            _run(swarm.brief(_doc("C.pdf"), run))
        # Re-briefing a known document is still allowed at the limit
        _run(swarm.brief(_doc("A.pdf"), run))
        assert swarm.list_agents() == ["A.pdf", "B.pdf"]

    def test_failed_briefing_disposes_session(self):
        llm = ScriptedLLM(agent_answer=_failing_briefing("A.pdf"))
        swarm = AgentSwarm(llm)

        with pytest.raises(PermanentRemoteFailure):
            _run(swarm.brief(_doc("A.pdf"), CancellableRun()))

        assert llm.sessions[0].disposed
        assert "A.pdf" not in swarm

    def test_cancelled_run_creates_no_session(self):
        llm = ScriptedLLM()
        run = CancellableRun()
        run.cancel()
        with pytest.raises(Cancelled):
            _run(AgentSwarm(llm).brief(_doc("A.pdf"), run))
        assert llm.sessions == []


class TestBriefAll:
    def test_failures_are_skipped(self):
        llm = ScriptedLLM(agent_answer=_failing_briefing("B.pdf"))
        swarm = AgentSwarm(llm)
        progress = []

        briefed, failed = _run(swarm.brief_all(
            [_doc("A.pdf"), _doc("B.pdf"), _doc("C.pdf")],
            CancellableRun(),
            lambda i, total, msg: progress.append((i, total, msg)),
        ))

        assert briefed == ["A.pdf", "C.pdf"]
        assert failed == ["B.pdf"]
        assert progress[0] == (0, 3, "Briefing Document Expert for A.pdf...")
        assert progress[-1] == (3, 3, "Research Team Ready.")

    def test_limit_failure_is_per_document(self):
        swarm = AgentSwarm(ScriptedLLM(), max_documents=1)
        briefed, failed = _run(swarm.brief_all(
            [_doc("A.pdf"), _doc("B.pdf")], CancellableRun(),
        ))
        assert briefed == ["A.pdf"]
        assert failed == ["B.pdf"]

    def test_cancellation_stops_batch(self):
        run = CancellableRun()
        run.cancel()
        with pytest.raises(Cancelled):
            _run(AgentSwarm(ScriptedLLM()).brief_all([_doc("A.pdf")], run))


# ---------------------------------------------------------------------------
# Test: Asking and removing
# ---------------------------------------------------------------------------


class TestAskAndRemove:
    def test_ask_uses_agent_session(self):
        llm = ScriptedLLM()
        swarm = AgentSwarm(llm)
        run = CancellableRun()
        _run(swarm.brief(_doc("A.pdf"), run))

        answer = _run(swarm.ask("A.pdf", "What was revenue in 2023?", run))

        assert "[[Page: 3" in answer
        assert llm.sessions[0].messages[-1] == "What was revenue in 2023?"

    def test_ask_unknown_agent(self):
        with pytest.raises(AgentUnavailable) as exc_info:
            _run(AgentSwarm(ScriptedLLM()).ask("Z.pdf", "question?", CancellableRun()))
        assert exc_info.value.document_id == "Z.pdf"

    def test_remove_disposes(self):
        llm = ScriptedLLM()
        swarm = AgentSwarm(llm)
        _run(swarm.brief(_doc("A.pdf"), CancellableRun()))

        assert swarm.remove("A.pdf") is True
        assert llm.sessions[0].disposed
        assert swarm.list_agents() == []
        assert swarm.remove("A.pdf") is False

    def test_clear(self):
        swarm = AgentSwarm(ScriptedLLM())
        run = CancellableRun()
        _run(swarm.brief_all([_doc("A.pdf"), _doc("B.pdf")], run))
        swarm.clear()
        assert len(swarm) == 0
