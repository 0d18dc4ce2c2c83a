"""Progress ingestion, stats and maintenance endpoints.

  POST   /progress/update                         individual answer (deduped)
  POST   /progress/detailed                       nested-shape answer (deduped)
  GET    /progress/stats/{user_id}[/{set_id}]     read-through cached stats
  GET    /progress/summary/{user_id}              overall + per-set + per-type
  GET    /progress/records/{user_id}              paginated rows
  PATCH  /progress/records/{user_id}/{progress_id}  edit one row, re-aggregate
  DELETE /progress/{user_id}/{progress_id}        delete one row, re-aggregate
  DELETE /progress/reset/{user_id}/{set_id}       delete a set's rows

The beacon endpoints live in beacon.py; they never raise to the client.
"""

from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Header, Query, status

from quiz_progress.api.dependencies import require_user
from quiz_progress.api.schemas import (
    CamelModel,
    ProgressRecordOut,
    StatsOut,
    TypeStatsOut,
)
from quiz_progress.models.principal import Principal
from quiz_progress.models.progress import RecordType
from quiz_progress.models.requests import DetailedIn, RecordEditIn, UpdateIn
from quiz_progress.services.registry import aggregator, gateway

router = APIRouter(prefix="/progress", tags=["progress"])

_SORT_FIELDS = {
    "lastAccessed": "last_accessed",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "timeSpent": "time_spent",
}


class UpdateOut(CamelModel):
    success: bool = True
    id: str
    duplicate: bool
    stats: StatsOut


class DetailedOut(CamelModel):
    success: bool = True
    progress: ProgressRecordOut
    duplicate: bool
    stats: StatsOut


class SummaryOut(CamelModel):
    overall: StatsOut
    by_set: list[StatsOut]
    by_type: list[TypeStatsOut]


class RecordsOut(CamelModel):
    items: list[ProgressRecordOut]
    total: int
    page: int
    limit: int
    total_pages: int


class EditOut(CamelModel):
    success: bool = True
    progress: ProgressRecordOut
    stats: StatsOut


class DeleteOut(CamelModel):
    success: bool = True
    stats: StatsOut


class ResetOut(CamelModel):
    success: bool = True
    deleted_count: int


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.post("/update", response_model=UpdateOut)
async def update_progress(
    payload: UpdateIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> UpdateOut:
    result = await gateway.ingest_update(principal, payload)
    return UpdateOut(
        id=result.event.id,
        duplicate=result.duplicate,
        stats=StatsOut.from_stats(result.stats),
    )


@router.post(
    "/detailed",
    response_model=DetailedOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_detailed_progress(
    payload: DetailedIn,
    principal: Annotated[Principal, Depends(require_user)],
    user_agent: Annotated[str | None, Header()] = None,
) -> DetailedOut:
    result = await gateway.ingest_detailed(principal, payload, user_agent=user_agent)
    return DetailedOut(
        progress=ProgressRecordOut.from_event(result.event),
        duplicate=result.duplicate,
        stats=StatsOut.from_stats(result.stats),
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/stats/{user_id}", response_model=StatsOut)
async def get_user_stats(
    user_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> StatsOut:
    stats = await aggregator.get_stats(principal, user_id)
    return StatsOut.from_stats(stats)


@router.get("/stats/{user_id}/{question_set_id}", response_model=StatsOut)
async def get_question_set_stats(
    user_id: str,
    question_set_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> StatsOut:
    stats = await aggregator.get_stats(principal, user_id, question_set_id)
    return StatsOut.from_stats(stats)


@router.get("/summary/{user_id}", response_model=SummaryOut)
async def get_progress_summary(
    user_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> SummaryOut:
    summary = await aggregator.summarize(principal, user_id)
    return SummaryOut(
        overall=StatsOut.from_stats(summary.overall),
        by_set=[StatsOut.from_stats(s) for s in summary.by_set],
        by_type=[TypeStatsOut.from_stats(t) for t in summary.by_type],
    )


@router.get("/records/{user_id}", response_model=RecordsOut)
async def list_progress_records(
    user_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    question_set_id: Annotated[str | None, Query(alias="questionSetId")] = None,
    record_type: Annotated[RecordType | None, Query(alias="recordType")] = None,
    is_correct: Annotated[bool | None, Query(alias="isCorrect")] = None,
    sort: Annotated[
        Literal["lastAccessed", "createdAt", "updatedAt", "timeSpent"], Query()
    ] = "lastAccessed",
    order: Annotated[Literal["asc", "desc"], Query()] = "desc",
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> RecordsOut:
    result = await aggregator.list_records(
        principal,
        user_id,
        question_set_id=question_set_id,
        record_type=record_type,
        is_correct=is_correct,
        sort=_SORT_FIELDS[sort],
        descending=order == "desc",
        page=page,
        limit=limit,
    )
    return RecordsOut(
        items=[ProgressRecordOut.from_event(e) for e in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@router.patch("/records/{user_id}/{progress_id}", response_model=EditOut)
async def edit_progress_record(
    user_id: str,
    progress_id: str,
    payload: RecordEditIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> EditOut:
    result = await gateway.update_event(principal, user_id, progress_id, payload)
    return EditOut(
        progress=ProgressRecordOut.from_event(result.event),
        stats=StatsOut.from_stats(result.stats),
    )


@router.delete("/reset/{user_id}/{question_set_id}", response_model=ResetOut)
async def reset_question_set_progress(
    user_id: str,
    question_set_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> ResetOut:
    deleted = await gateway.reset_question_set(principal, user_id, question_set_id)
    return ResetOut(deleted_count=deleted)


@router.delete("/{user_id}/{progress_id}", response_model=DeleteOut)
async def delete_progress_record(
    user_id: str,
    progress_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> DeleteOut:
    stats = await gateway.delete_event(principal, user_id, progress_id)
    return DeleteOut(stats=StatsOut.from_stats(stats))
