# =============================================================================
# Document Profiler — Dashboard Summaries
# =============================================================================
#
# Profiles each document independently of the agent swarm: title, type,
# a 2-3 sentence summary, 3-5 topics and 4-6 key insights, each grounded in
# an exact quote and its surrounding paragraph.
#
# A document that cannot be profiled yields an "Analysis Failed" record
# instead of failing the batch. Only cancellation stops the batch.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from pydantic import ValidationError

from research_team.agents.prompts import render_prompt
from research_team.config import settings
from research_team.errors import Cancelled, ResearchTeamError, UnparsableOutput
from research_team.models.domain import Document, DocumentAnalysis
from research_team.services.cancellation import CancellableRun
from research_team.services.json_repair import parse_structured
from research_team.services.llm import LLMProvider
from research_team.services.retry import call_with_retry

logger = logging.getLogger(__name__)

AnalysisProgress = Callable[[int, int, str], None]

_DEFAULTS = {
    "doc_title": "Untitled Document",
    "doc_type": "Document",
    "summary": "No summary available.",
}


def failed_analysis(document_id: str, reason: str) -> DocumentAnalysis:
    return DocumentAnalysis(
        source_file=document_id,
        doc_title="Analysis Failed",
        doc_type="Error",
        summary=f"Could not analyze file: {reason or 'Unknown error'}",
    )


async def analyze_document(
    document: Document,
    llm: LLMProvider,
    run: CancellableRun,
) -> DocumentAnalysis:
    """Profile one document; errors other than cancellation become a failed record."""
    try:
        run.raise_if_cancelled()
        prompt = render_prompt(
            "analysis_request",
            document_id=document.document_id,
            content=document.full_text(),
        )
        response = await call_with_retry(
            lambda: llm.generate(
                prompt,
                DocumentAnalysis.model_json_schema(),
                system=render_prompt("analysis_system"),
                temperature=0.1,
                max_tokens=settings.llm_max_tokens,
                thinking_budget=settings.analysis_thinking_budget,
            ),
            token=run,
            max_attempts=settings.analysis_retry_attempts,
            base_delay_ms=settings.briefing_retry_base_delay_ms,
        )
        if not response.content:
            raise UnparsableOutput("No response")

        data = parse_structured(response.content)
        if not isinstance(data, dict):
            raise UnparsableOutput("Failed to parse AI response.")
        for key, default in _DEFAULTS.items():
            if not data.get(key):
                data[key] = default
        data["source_file"] = document.document_id
        return DocumentAnalysis.model_validate(data)

    except Cancelled:
        raise
    except (ResearchTeamError, ValidationError) as e:
        logger.error("Analysis failed for %s: %s", document.document_id, e)
        return failed_analysis(document.document_id, str(e))


async def analyze_documents(
    documents: Iterable[Document],
    llm: LLMProvider,
    run: CancellableRun,
    on_progress: AnalysisProgress | None = None,
) -> list[DocumentAnalysis]:
    """Profile documents one after another, in order."""
    docs = list(documents)
    results = []
    for index, document in enumerate(docs):
        run.raise_if_cancelled()
        if on_progress:
            on_progress(
                index, len(docs), f"Analyzing structure: {document.document_id}...",
            )
        results.append(await analyze_document(document, llm, run))
    return results
