"""Quiz submission endpoint.

  POST /quiz/submit
  -> upsert session_summary (counts and time take the max: resubmits are no-ops)
  -> one individual_answer per answerDetails item, deduped
  -> fanout quiz_submitted
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from quiz_progress.api.dependencies import require_user
from quiz_progress.api.schemas import CamelModel, StatsOut
from quiz_progress.models.principal import Principal
from quiz_progress.models.requests import QuizSubmitIn
from quiz_progress.services.registry import gateway

router = APIRouter(prefix="/quiz", tags=["quiz"])


class QuizSubmitOut(CamelModel):
    success: bool = True
    id: str
    question_set_id: str
    timestamp: datetime
    answers_recorded: int
    stats: StatsOut


@router.post("/submit", response_model=QuizSubmitOut)
async def submit_quiz(
    payload: QuizSubmitIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> QuizSubmitOut:
    result = await gateway.ingest_quiz_submission(principal, payload)
    return QuizSubmitOut(
        id=result.summary.id,
        question_set_id=result.summary.question_set_id,
        timestamp=result.summary.updated_at,
        answers_recorded=result.answers_written,
        stats=StatsOut.from_stats(result.stats),
    )
