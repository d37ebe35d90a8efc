# =============================================================================
# Clarification Gate — Human-in-the-Loop Disambiguation
# =============================================================================
#
# Before planning, the model decides whether the raw query is too vague to
# plan against ("summarize", "compare them"). If so, the turn pauses and
# the caller receives 3-4 multiple-choice questions. The answers are folded
# back into the query as a synthetic block:
#
#   <original query>
#
#   [USER CLARIFICATIONS]:
#   Question: "Which period?"
#   Answer(s): FY2023
#
# DESIGN DECISION: A failing clarification call never blocks the turn. Any
# error other than cancellation is logged and treated as "no clarification
# needed", mirroring the lenient self-evaluation of the review boards.
# =============================================================================

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from research_team.agents.prompts import render_prompt
from research_team.config import settings
from research_team.errors import Cancelled, ClarificationIncomplete, ResearchTeamError
from research_team.models.domain import ClarificationQuestion, ClarificationRequest
from research_team.services.cancellation import CancellableRun
from research_team.services.json_repair import parse_structured
from research_team.services.llm import LLMProvider
from research_team.services.retry import call_with_retry

logger = logging.getLogger(__name__)

CLARIFICATION_HEADER = "[USER CLARIFICATIONS]:"


async def generate_clarification(
    query: str,
    document_ids: list[str],
    llm: LLMProvider,
    run: CancellableRun,
) -> ClarificationRequest:
    """
    Ask the model whether `query` needs disambiguation.

    Returns:
        A ClarificationRequest; `ClarificationRequest.not_needed()` when the
        query is specific or the call failed.
    """
    prompt = render_prompt(
        "clarification", documents=json.dumps(document_ids), query=query,
    )

    try:
        response = await call_with_retry(
            lambda: llm.generate(
                prompt,
                ClarificationRequest.model_json_schema(),
                temperature=0.3,
            ),
            token=run,
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
        )
        if not response.content:
            return ClarificationRequest.not_needed()
        request = ClarificationRequest.model_validate(
            parse_structured(response.content)
        )
    except Cancelled:
        raise
    except (ResearchTeamError, ValidationError) as e:
        logger.warning(
            "Clarification check failed: %s. Proceeding without clarification.", e,
        )
        return ClarificationRequest.not_needed()

    if request.needs_clarification and not request.questions:
        return ClarificationRequest.not_needed()

    logger.info(
        "Clarification check: needs_clarification=%s, questions=%d",
        request.needs_clarification, len(request.questions),
    )
    return request


class ClarificationForm:
    """
    The user's in-progress answers to a ClarificationRequest.

    Single-choice questions hold at most one selection: selecting again
    replaces the previous choice. Multi-choice questions toggle.
    """

    def __init__(self, request: ClarificationRequest) -> None:
        self.request = request
        self._questions = {q.id: q for q in request.questions}
        self._selections: dict[str, list[str]] = {}
        self._custom_text: dict[str, str] = {}

    def _question(self, question_id: str) -> ClarificationQuestion:
        try:
            return self._questions[question_id]
        except KeyError:
            raise ClarificationIncomplete(
                f"Unknown clarification question '{question_id}'"
            ) from None

    def select(self, question_id: str, option_id: str) -> list[str]:
        """Select (or, for multi-choice, toggle) an option. Returns the selection."""
        question = self._question(question_id)
        option = question.option(option_id)
        if option is None:
            raise ClarificationIncomplete(
                f"Unknown option '{option_id}' for question '{question_id}'"
            )

        current = self._selections.get(question_id, [])
        if question.allows_multiple:
            if option_id in current:
                current = [o for o in current if o != option_id]
            else:
                current = [*current, option_id]
        else:
            current = [option_id]
            if not option.is_freeform_slot:
                self._custom_text.pop(question_id, None)

        self._selections[question_id] = current
        return list(current)

    def set_custom_text(self, question_id: str, text: str) -> None:
        self._question(question_id)
        self._custom_text[question_id] = text

    def selections(self, question_id: str) -> list[str]:
        return list(self._selections.get(question_id, []))

    def missing_questions(self) -> list[str]:
        return [
            q.id for q in self.request.questions
            if not self._selections.get(q.id)
        ]

    def is_complete(self) -> bool:
        return not self.missing_questions()

    def render(self) -> str:
        """
        Serialize the answers as the clarification block.

        Raises:
            ClarificationIncomplete: Some question has no selection.
        """
        missing = self.missing_questions()
        if missing:
            raise ClarificationIncomplete(
                f"Answer every clarification question first (missing: {', '.join(missing)})"
            )

        blocks = []
        for question in self.request.questions:
            answers = []
            for option_id in self._selections[question.id]:
                option = question.option(option_id)
                custom = self._custom_text.get(question.id, "").strip()
                if option.is_freeform_slot and custom:
                    answers.append(f'Custom: "{custom}"')
                else:
                    answers.append(option.text)
            blocks.append(
                f'Question: "{question.text}"\nAnswer(s): {", ".join(answers)}'
            )
        return "\n\n".join(blocks)


def build_clarified_query(original_query: str, answers_block: str) -> str:
    """Append the clarification block to the original query."""
    return f"{original_query}\n\n{CLARIFICATION_HEADER}\n{answers_block}"
