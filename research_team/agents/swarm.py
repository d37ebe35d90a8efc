# =============================================================================
# Agent Swarm — One Document Expert per Briefed Document
# =============================================================================
#
# Each briefed document gets its own conversational session, seeded with
# the document's full content and a directive that confines the agent to
# that document and forces an inline citation after every claim:
#
#   The deadline is Q4 [[Page: 5 | Quote: "completion expected by Q4"]]
#
# The swarm is the only mutable state shared across a turn. Entries are
# replaced whole (briefing a document again disposes the old session), and
# only the ResearchTeam turn handler adds or removes them, between turns.
# Task execution only reads entries through `ask`.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from research_team.agents.prompts import render_prompt
from research_team.config import settings
from research_team.errors import AgentUnavailable, Cancelled, DocumentLimitExceeded
from research_team.models.domain import Document
from research_team.services.cancellation import CancellableRun
from research_team.services.llm import LLMProvider, Session
from research_team.services.retry import call_with_retry

logger = logging.getLogger(__name__)

BriefingProgress = Callable[[int, int, str], None]


@dataclass
class DocumentAgent:
    """A persistent session scoped to one document."""

    document_id: str
    session: Session
    ready: bool = False


class AgentSwarm:
    """
    Registry mapping document ids to their document agents.

    Sessions are never shared across documents; callers only see `ask`,
    `remove` and the list of ids.
    """

    def __init__(self, llm: LLMProvider, max_documents: int | None = None) -> None:
        self._llm = llm
        self._agents: dict[str, DocumentAgent] = {}
        self._max_documents = max_documents or settings.max_documents

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def list_agents(self) -> list[str]:
        """Ids of all ready agents, in briefing order."""
        return [doc_id for doc_id, agent in self._agents.items() if agent.ready]

    async def brief(self, document: Document, run: CancellableRun) -> DocumentAgent:
        """
        Create a session for `document` and load the document into it.

        Raises:
            Cancelled: The run was cancelled.
            DocumentLimitExceeded: A new document would exceed the limit.
            ResearchTeamError: The briefing call failed.
        """
        doc_id = document.document_id
        if doc_id not in self._agents and len(self._agents) >= self._max_documents:
            raise DocumentLimitExceeded(
                f"You can brief a maximum of {self._max_documents} documents at a time."
            )

        run.raise_if_cancelled()
        session = self._llm.create_session(
            render_prompt("agent_directive", document_id=doc_id),
            temperature=0.2,
        )
        briefing = render_prompt(
            "agent_briefing", document_id=doc_id, content=document.full_text(),
        )

        try:
            await call_with_retry(
                lambda: session.send(briefing),
                token=run,
                max_attempts=settings.retry_max_attempts,
                base_delay_ms=settings.briefing_retry_base_delay_ms,
            )
        except BaseException:
            session.dispose()
            raise

        agent = DocumentAgent(document_id=doc_id, session=session, ready=True)
        previous = self._agents.get(doc_id)
        self._agents[doc_id] = agent
        if previous is not None:
            previous.session.dispose()

        logger.info("Document expert briefed: %s", doc_id)
        return agent

    async def brief_all(
        self,
        documents: Iterable[Document],
        run: CancellableRun,
        on_progress: BriefingProgress | None = None,
    ) -> tuple[list[str], list[str]]:
        """
        Brief documents one after another.

        A failure on one document is logged and skipped; only cancellation
        stops the batch.

        Returns:
            (briefed_ids, failed_ids)
        """
        docs = list(documents)
        briefed: list[str] = []
        failed: list[str] = []

        for index, document in enumerate(docs):
            run.raise_if_cancelled()
            if on_progress:
                on_progress(
                    index, len(docs),
                    f"Briefing Document Expert for {document.document_id}...",
                )
            try:
                await self.brief(document, run)
            except Cancelled:
                raise
            except Exception as e:
                logger.error(
                    "Failed to brief expert for %s: %s", document.document_id, e,
                )
                failed.append(document.document_id)
                continue
            briefed.append(document.document_id)

        if on_progress:
            on_progress(len(docs), len(docs), "Research Team Ready.")
        return briefed, failed

    async def ask(self, agent_id: str, question: str, run: CancellableRun) -> str:
        """
        Send one question through the agent's existing session.

        Raises:
            AgentUnavailable: No agent is registered for `agent_id`.
        """
        agent = self._agents.get(agent_id)
        if agent is None or not agent.ready:
            raise AgentUnavailable(agent_id)

        response = await call_with_retry(
            lambda: agent.session.send(question),
            token=run,
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
        )
        return response.content

    def remove(self, agent_id: str) -> bool:
        """Dispose and forget the agent. Returns False if it was unknown."""
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False
        agent.session.dispose()
        logger.info("Document expert removed: %s", agent_id)
        return True

    def clear(self) -> None:
        for agent_id in list(self._agents):
            self.remove(agent_id)
