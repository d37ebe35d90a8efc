# =============================================================================
# Turns API — Research Questions, Clarifications and Cancellation
# =============================================================================
#
#   POST   /turns                  run one research turn
#   POST   /turns/stream           same, streamed as NDJSON progress events
#   POST   /turns/clarifications   resume a turn paused for clarification
#   POST   /turns/cancel           stop the running turn
#   DELETE /turns/history          forget the conversation
#
# Turn failures are not HTTP errors: the response carries status FAILED or
# CANCELLED with a message. Only malformed clarification submissions are
# rejected with 422.
#
# DESIGN DECISION: NDJSON over SSE for the stream. Each line is a complete
# JSON object ({"event": "status" | "collaboration" | "result", ...}), which
# any HTTP client can consume line by line.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from starlette.responses import StreamingResponse

from research_team.agents.orchestrator import ResearchTeam
from research_team.api.deps import get_research_team
from research_team.models.domain import ProgressEvent, TurnStatus
from research_team.models.requests import ClarificationAnswersRequest, TurnRequest
from research_team.models.responses import (
    CancelResponse,
    CollaborationItem,
    TurnResponse,
)
from research_team.services.cancellation import CancellableRun

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/turns", tags=["Research Turns"])


@router.post(
    "",
    response_model=TurnResponse,
    summary="Ask the research team",
    description=(
        "Runs the clarification gate, planning, peer review, parallel expert "
        "queries, synthesis and output audit. Returns NEEDS_CLARIFICATION "
        "with questions when the query is too vague to plan against."
    ),
)
async def submit_turn(
    request: TurnRequest,
    team: ResearchTeam = Depends(get_research_team),
) -> TurnResponse:
    logger.info("Turn request: query='%s'", request.query[:80])
    outcome = await team.submit_query(request.query, request.active_documents)
    return TurnResponse.from_outcome(outcome)


@router.post("/stream", summary="Ask the research team, streaming progress")
async def stream_turn(
    request: TurnRequest,
    team: ResearchTeam = Depends(get_research_team),
) -> StreamingResponse:
    queue: asyncio.Queue[ProgressEvent | TurnResponse] = asyncio.Queue()

    async def run_turn(run: CancellableRun) -> None:
        try:
            outcome = await team.submit_query(
                request.query, request.active_documents, queue.put_nowait, run=run,
            )
            queue.put_nowait(TurnResponse.from_outcome(outcome))
        except Exception as e:
            logger.exception("Streamed turn crashed")
            queue.put_nowait(
                TurnResponse(status=TurnStatus.FAILED.value, message=str(e))
            )

    async def events() -> AsyncIterator[str]:
        run = team.start_turn()
        task = asyncio.create_task(run_turn(run))
        finished = False
        try:
            while True:
                item = await queue.get()
                if isinstance(item, TurnResponse):
                    finished = True
                    yield json.dumps({"event": "result", **item.model_dump(mode="json")}) + "\n"
                    break
                yield _encode_event(item)
        finally:
            if not finished:
                # Client went away mid-turn. A superseded run is left alone.
                team.cancel_run(run)
            await task

    return StreamingResponse(events(), media_type="application/x-ndjson")


def _encode_event(event: ProgressEvent) -> str:
    if event.kind == "collaboration" and event.entry is not None:
        body = {
            "event": "collaboration",
            **CollaborationItem.from_entry(event.entry).model_dump(mode="json"),
        }
    else:
        body = {"event": "status", "message": event.message}
    return json.dumps(body) + "\n"


@router.post(
    "/clarifications",
    response_model=TurnResponse,
    summary="Answer the pending clarification questions",
)
async def submit_clarifications(
    request: ClarificationAnswersRequest,
    team: ResearchTeam = Depends(get_research_team),
) -> TurnResponse:
    outcome = await team.submit_clarification_answers(
        request.answers, request.custom_inputs,
    )
    if outcome.status is TurnStatus.REJECTED:
        raise HTTPException(status_code=422, detail=outcome.message)
    return TurnResponse.from_outcome(outcome)


@router.post("/cancel", response_model=CancelResponse, summary="Stop the running turn")
async def cancel_turn(
    team: ResearchTeam = Depends(get_research_team),
) -> CancelResponse:
    return CancelResponse(cancelled=team.cancel_current_turn())


@router.delete("/history", status_code=204, summary="Forget the conversation")
async def reset_history(
    team: ResearchTeam = Depends(get_research_team),
) -> None:
    team.reset_conversation()
